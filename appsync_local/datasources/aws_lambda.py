"""
Lambda data source.

Request descriptor: {"operation": "Invoke", "payload": ...}

With a local `file`, the file's handler(ctx) runs in-process with the
payload as ctx.arguments. Without one, the payload is echoed back.
"""

from __future__ import annotations

import logging
from typing import Any

from ..config import LambdaDataSource
from ..context import create_context
from ..loader import call_handler, load_lambda_handler

logger = logging.getLogger(__name__)


class LambdaAdapter:
    async def execute(self, data_source: LambdaDataSource, request: dict[str, Any]) -> Any:
        if request.get("operation") != "Invoke" or request.get("payload") is None:
            raise ValueError(
                'Lambda data source request must return {"operation": "Invoke", "payload": ...}'
            )

        payload = request["payload"]

        if data_source.config.file:
            handler = load_lambda_handler(data_source.config.file)
            arguments = payload if isinstance(payload, dict) else {"payload": payload}
            ctx = create_context(arguments=arguments)
            logger.debug(f"[lambda:{data_source.name}] Invoking {data_source.config.file}")
            return await call_handler(handler, ctx)

        logger.warning(
            f"[lambda:{data_source.name}] No local file specified, returning payload as-is"
        )
        return payload
