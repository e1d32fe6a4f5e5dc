"""
DynamoDB data source.

Three stages per call:

1. translate_dynamo_request(): resolver-facing camelCase request ->
   (operation, PascalCase params) with native values
2. marshal + call the low-level aioboto3 client
3. reshape the raw response into the resolver-facing result

Expression fragments (key condition, filter, condition, update,
projection) are merged into shared ExpressionAttributeNames /
ExpressionAttributeValues maps. A fragment never overwrites an entry
contributed by another fragment; a clashing placeholder is renamed inside
that fragment's expression instead.

Resolver-facing results:
    GetItem                 item | None
    PutItem                 the written item
    UpdateItem/DeleteItem   attributes (ALL_NEW / ALL_OLD)
    Query/Scan/Sync         {"items", "nextToken", "scannedCount"}
    BatchGetItem            {"data": {table: [items]}, "unprocessedKeys"}
    BatchPutItem            {"data": {table: [items]}, "unprocessedItems"}
    BatchDeleteItem         {"data": {table: [keys]}, "unprocessedKeys"}
    TransactGetItems        {"items": [item | None]}
    TransactWriteItems      {"keys": [key]}
"""

from __future__ import annotations

import base64
import json
import logging
import re
from contextlib import AsyncExitStack
from decimal import Decimal
from typing import Any

import aioboto3
from boto3.dynamodb.types import Binary, TypeDeserializer, TypeSerializer

from ..config import DynamoDataSource, DynamoDBConfig
from .cache import ResourceCache

logger = logging.getLogger(__name__)

_serializer = TypeSerializer()
_deserializer = TypeDeserializer()


# =============================================================================
# Expression fragments
# =============================================================================


def _free_placeholder(
    target: dict[str, Any], placeholder: str, value: Any, taken: set[str]
) -> str:
    if placeholder not in target or target[placeholder] == value:
        return placeholder
    suffix = 1
    while True:
        candidate = f"{placeholder}_{suffix}"
        if candidate not in taken and (candidate not in target or target[candidate] == value):
            return candidate
        suffix += 1


def merge_fragment(params: dict[str, Any], fragment: dict[str, Any]) -> str:
    """
    Merge a fragment's names/values into params.

    Free names for clashing placeholders are chosen first, skipping names
    the fragment itself uses, and the expression is rewritten in a single
    pass so one rename never feeds into another.

    Returns:
        The fragment's expression, with any renamed placeholders rewritten
    """
    expression = fragment.get("expression", "")
    sections = [
        (fragment.get(section) or {}, attr)
        for section, attr in (
            ("expressionNames", "ExpressionAttributeNames"),
            ("expressionValues", "ExpressionAttributeValues"),
        )
    ]
    taken = {placeholder for entries, _ in sections for placeholder in entries}
    renames: dict[str, str] = {}

    for entries, attr in sections:
        if not entries:
            continue
        target = params.setdefault(attr, {})
        for placeholder, value in entries.items():
            key = _free_placeholder(target, placeholder, value, taken)
            if key != placeholder:
                renames[placeholder] = key
                taken.add(key)
            target[key] = value

    if renames:
        pattern = "|".join(re.escape(old) for old in sorted(renames, key=len, reverse=True))
        expression = re.sub(
            f"(?:{pattern})(?!\\w)", lambda m: renames[m.group(0)], expression
        )
    return expression


def _projection_fragment(projection: Any) -> dict[str, Any]:
    if isinstance(projection, dict):
        return projection
    fields = list(projection)
    return {
        "expression": ", ".join(f"#p{i}" for i in range(len(fields))),
        "expressionNames": {f"#p{i}": name for i, name in enumerate(fields)},
    }


def _apply_condition(params: dict[str, Any], condition: dict[str, Any]) -> None:
    params["ConditionExpression"] = merge_fragment(params, condition)


def _apply_filter(params: dict[str, Any], filter_obj: dict[str, Any]) -> None:
    params["FilterExpression"] = merge_fragment(params, filter_obj)


def _apply_projection(params: dict[str, Any], projection: Any) -> None:
    params["ProjectionExpression"] = merge_fragment(params, _projection_fragment(projection))


def encode_next_token(last_evaluated_key: dict[str, Any] | None) -> str | None:
    if not last_evaluated_key:
        return None
    payload = json.dumps(last_evaluated_key, separators=(",", ":"), default=str)
    return base64.b64encode(payload.encode("utf-8")).decode("ascii")


def decode_next_token(token: str) -> dict[str, Any]:
    return json.loads(base64.b64decode(token).decode("utf-8"))


# =============================================================================
# Translation
# =============================================================================


def _translate_get_item(params: dict[str, Any], request: dict[str, Any]) -> None:
    if "key" in request:
        params["Key"] = request["key"]
    if request.get("consistentRead") is not None:
        params["ConsistentRead"] = request["consistentRead"]
    if request.get("projection"):
        _apply_projection(params, request["projection"])


def _translate_put_item(params: dict[str, Any], request: dict[str, Any]) -> None:
    params["Item"] = {**(request.get("key") or {}), **(request.get("attributeValues") or {})}
    if request.get("condition"):
        _apply_condition(params, request["condition"])


def _translate_update_item(params: dict[str, Any], request: dict[str, Any]) -> None:
    if "key" in request:
        params["Key"] = request["key"]
    if request.get("update"):
        params["UpdateExpression"] = merge_fragment(params, request["update"])
    if request.get("condition"):
        _apply_condition(params, request["condition"])
    params["ReturnValues"] = "ALL_NEW"


def _translate_delete_item(params: dict[str, Any], request: dict[str, Any]) -> None:
    if "key" in request:
        params["Key"] = request["key"]
    if request.get("condition"):
        _apply_condition(params, request["condition"])
    params["ReturnValues"] = "ALL_OLD"


def _apply_scan_query_options(params: dict[str, Any], request: dict[str, Any]) -> None:
    if request.get("index"):
        params["IndexName"] = request["index"]
    if request.get("limit"):
        params["Limit"] = request["limit"]
    if request.get("nextToken"):
        params["ExclusiveStartKey"] = decode_next_token(request["nextToken"])
    if request.get("consistentRead") is not None:
        params["ConsistentRead"] = request["consistentRead"]
    if request.get("select"):
        params["Select"] = request["select"]
    if request.get("filter"):
        _apply_filter(params, request["filter"])
    if request.get("projection"):
        _apply_projection(params, request["projection"])


def _translate_query(params: dict[str, Any], request: dict[str, Any]) -> None:
    if request.get("query"):
        params["KeyConditionExpression"] = merge_fragment(params, request["query"])
    _apply_scan_query_options(params, request)
    if request.get("scanIndexForward") is not None:
        params["ScanIndexForward"] = request["scanIndexForward"]


def _translate_scan(params: dict[str, Any], request: dict[str, Any]) -> None:
    _apply_scan_query_options(params, request)
    if request.get("totalSegments") is not None:
        params["TotalSegments"] = request["totalSegments"]
    if request.get("segment") is not None:
        params["Segment"] = request["segment"]


def _translate_sync(params: dict[str, Any], request: dict[str, Any]) -> None:
    _translate_query(params, request)
    params["ConsistentRead"] = True


def _translate_batch_get(params: dict[str, Any], request: dict[str, Any]) -> None:
    del params["TableName"]
    items: dict[str, Any] = {}
    for table, spec in (request.get("tables") or {}).items():
        if "keys" not in spec:
            items[table] = spec
            continue
        table_params: dict[str, Any] = {"Keys": list(spec["keys"])}
        if spec.get("consistentRead") is not None:
            table_params["ConsistentRead"] = spec["consistentRead"]
        if spec.get("projection"):
            _apply_projection(table_params, spec["projection"])
        items[table] = table_params
    params["RequestItems"] = items


def _translate_batch_put(params: dict[str, Any], request: dict[str, Any]) -> None:
    del params["TableName"]
    params["RequestItems"] = {
        table: [r if "PutRequest" in r else {"PutRequest": {"Item": r}} for r in rows]
        for table, rows in (request.get("tables") or {}).items()
    }


def _translate_batch_delete(params: dict[str, Any], request: dict[str, Any]) -> None:
    del params["TableName"]
    params["RequestItems"] = {
        table: [r if "DeleteRequest" in r else {"DeleteRequest": {"Key": r}} for r in rows]
        for table, rows in (request.get("tables") or {}).items()
    }


def _translate_transact_get(params: dict[str, Any], request: dict[str, Any]) -> None:
    table_name = params.pop("TableName")
    transact: list[dict[str, Any]] = []
    for item in request.get("transactItems") or []:
        if "Get" in item:
            transact.append(item)
            continue
        get: dict[str, Any] = {"TableName": item.get("table", table_name), "Key": item["key"]}
        if item.get("projection"):
            _apply_projection(get, item["projection"])
        transact.append({"Get": get})
    params["TransactItems"] = transact


def _transact_write_action(item: dict[str, Any], table_name: str) -> dict[str, Any]:
    operation = item.get("operation")
    action: dict[str, Any] = {"TableName": item.get("table", table_name)}

    if operation == "PutItem":
        action["Item"] = {**(item.get("key") or {}), **(item.get("attributeValues") or {})}
        wrapper = "Put"
    elif operation == "UpdateItem":
        action["Key"] = item["key"]
        if item.get("update"):
            action["UpdateExpression"] = merge_fragment(action, item["update"])
        wrapper = "Update"
    elif operation == "DeleteItem":
        action["Key"] = item["key"]
        wrapper = "Delete"
    elif operation == "ConditionCheck":
        action["Key"] = item["key"]
        wrapper = "ConditionCheck"
    else:
        raise ValueError(f"Unsupported TransactWriteItems operation: {operation}")

    if item.get("condition"):
        _apply_condition(action, item["condition"])
        if item["condition"].get("returnValuesOnConditionCheckFailure"):
            action["ReturnValuesOnConditionCheckFailure"] = "ALL_OLD"
    return {wrapper: action}


def _translate_transact_write(params: dict[str, Any], request: dict[str, Any]) -> None:
    table_name = params.pop("TableName")
    params["TransactItems"] = [
        item if {"Put", "Update", "Delete", "ConditionCheck"} & item.keys()
        else _transact_write_action(item, table_name)
        for item in request.get("transactItems") or []
    ]


_TRANSLATORS = {
    "GetItem": _translate_get_item,
    "PutItem": _translate_put_item,
    "UpdateItem": _translate_update_item,
    "DeleteItem": _translate_delete_item,
    "Query": _translate_query,
    "Scan": _translate_scan,
    "Sync": _translate_sync,
    "BatchGetItem": _translate_batch_get,
    "BatchPutItem": _translate_batch_put,
    "BatchDeleteItem": _translate_batch_delete,
    "TransactGetItems": _translate_transact_get,
    "TransactWriteItems": _translate_transact_write,
}


def translate_dynamo_request(
    request: dict[str, Any],
    table_name: str,
) -> tuple[str, dict[str, Any]]:
    """
    Translate a resolver request descriptor into low-level params.

    Example:
        translate_dynamo_request(
            {"operation": "Query",
             "query": {"expression": "id = :id", "expressionValues": {":id": "1"}}},
            "T",
        )
        -> ("Query", {"TableName": "T", "KeyConditionExpression": "id = :id",
                      "ExpressionAttributeValues": {":id": "1"}})

    Raises:
        ValueError: Operation has no translator
    """
    operation = request.get("operation")
    translator = _TRANSLATORS.get(operation)  # type: ignore[arg-type]
    if translator is None:
        raise ValueError(f"Unsupported DynamoDB operation: {operation}")

    params: dict[str, Any] = {"TableName": table_name}
    translator(params, request)
    return operation, params  # type: ignore[return-value]


# =============================================================================
# Marshalling
# =============================================================================


def _prepare(value: Any) -> Any:
    """Floats are not accepted by TypeSerializer; send them as Decimal."""
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: _prepare(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_prepare(v) for v in value]
    if isinstance(value, (set, frozenset)):
        return {_prepare(v) for v in value}
    return value


def _restore(value: Any) -> Any:
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {k: _restore(v) for k, v in value.items()}
    if isinstance(value, (list, set, frozenset)):
        return [_restore(v) for v in value]
    if isinstance(value, Binary):
        return bytes(value.value)
    return value


def marshal_item(item: dict[str, Any]) -> dict[str, Any]:
    return {k: _serializer.serialize(_prepare(v)) for k, v in item.items()}


def unmarshal_item(item: dict[str, Any] | None) -> dict[str, Any] | None:
    if item is None:
        return None
    return {k: _restore(_deserializer.deserialize(v)) for k, v in item.items()}


_VALUE_KEYS = ("Key", "Item", "ExclusiveStartKey", "ExpressionAttributeValues")


def _marshal_part(part: dict[str, Any]) -> dict[str, Any]:
    marshalled = dict(part)
    for key in _VALUE_KEYS:
        if key in marshalled:
            marshalled[key] = marshal_item(marshalled[key])
    if "Keys" in marshalled:
        marshalled["Keys"] = [marshal_item(k) for k in marshalled["Keys"]]
    return marshalled


def marshal_params(params: dict[str, Any]) -> dict[str, Any]:
    """Convert every native value in translated params to attribute values."""
    marshalled = _marshal_part(params)

    if "RequestItems" in params:
        request_items: dict[str, Any] = {}
        for table, spec in params["RequestItems"].items():
            if isinstance(spec, dict):
                request_items[table] = _marshal_part(spec)
            else:
                request_items[table] = [
                    {action: _marshal_part(body) for action, body in write.items()}
                    for write in spec
                ]
        marshalled["RequestItems"] = request_items

    if "TransactItems" in params:
        marshalled["TransactItems"] = [
            {action: _marshal_part(body) for action, body in item.items()}
            for item in params["TransactItems"]
        ]

    return marshalled


# =============================================================================
# Execution
# =============================================================================

_CLIENT_METHODS = {
    "GetItem": "get_item",
    "PutItem": "put_item",
    "UpdateItem": "update_item",
    "DeleteItem": "delete_item",
    "Query": "query",
    "Scan": "scan",
    "Sync": "query",
    "BatchGetItem": "batch_get_item",
    "BatchPutItem": "batch_write_item",
    "BatchDeleteItem": "batch_write_item",
    "TransactGetItems": "transact_get_items",
    "TransactWriteItems": "transact_write_items",
}


def _page(response: dict[str, Any]) -> dict[str, Any]:
    items = [unmarshal_item(i) for i in response.get("Items", [])]
    return {
        "items": items,
        "nextToken": encode_next_token(unmarshal_item(response.get("LastEvaluatedKey"))),
        "scannedCount": response.get("ScannedCount", len(items)),
    }


def _unprocessed_writes(response: dict[str, Any], action: str, field: str) -> dict[str, list[Any]]:
    return {
        table: [unmarshal_item(w[action][field]) for w in writes]
        for table, writes in (response.get("UnprocessedItems") or {}).items()
    }


def _written(params: dict[str, Any], action: str, field: str) -> dict[str, list[Any]]:
    return {
        table: [w[action][field] for w in writes]
        for table, writes in params.get("RequestItems", {}).items()
    }


def reshape_response(
    operation: str,
    params: dict[str, Any],
    response: dict[str, Any],
    request: dict[str, Any] | None = None,
) -> Any:
    """
    Reshape a raw low-level response into the resolver-facing result.

    TransactWriteItems reports each action's key attributes, taken from the
    request item's `key` (a Put only carries the merged item in params).
    """
    if operation == "GetItem":
        return unmarshal_item(response.get("Item"))
    if operation == "PutItem":
        return params["Item"]
    if operation in ("UpdateItem", "DeleteItem"):
        return unmarshal_item(response.get("Attributes"))
    if operation in ("Query", "Scan", "Sync"):
        return _page(response)
    if operation == "BatchGetItem":
        return {
            "data": {
                table: [unmarshal_item(i) for i in items]
                for table, items in (response.get("Responses") or {}).items()
            },
            "unprocessedKeys": {
                table: [unmarshal_item(k) for k in spec.get("Keys", [])]
                for table, spec in (response.get("UnprocessedKeys") or {}).items()
            },
        }
    if operation == "BatchPutItem":
        return {
            "data": _written(params, "PutRequest", "Item"),
            "unprocessedItems": _unprocessed_writes(response, "PutRequest", "Item"),
        }
    if operation == "BatchDeleteItem":
        return {
            "data": _written(params, "DeleteRequest", "Key"),
            "unprocessedKeys": _unprocessed_writes(response, "DeleteRequest", "Key"),
        }
    if operation == "TransactGetItems":
        return {"items": [unmarshal_item(r.get("Item")) for r in response.get("Responses", [])]}
    if operation == "TransactWriteItems":
        requested = (request or {}).get("transactItems") or []
        keys = []
        for index, item in enumerate(params["TransactItems"]):
            body = next(iter(item.values()))
            source = requested[index] if index < len(requested) else {}
            keys.append(source.get("key") or body.get("Key"))
        return {"keys": keys}
    return response


async def execute_dynamo_operation(
    client: Any,
    operation: str,
    params: dict[str, Any],
    request: dict[str, Any] | None = None,
) -> Any:
    """
    Run translated params on a low-level DynamoDB client.

    Raises:
        ValueError: Operation has no client mapping
    """
    method_name = _CLIENT_METHODS.get(operation)
    if method_name is None:
        raise ValueError(f"Unsupported DynamoDB operation: {operation}")

    method = getattr(client, method_name)
    response = await method(**marshal_params(params))
    return reshape_response(operation, params, response, request)


class DynamoDBAdapter:
    """
    Executes DYNAMODB data source requests.

    Clients are cached per data source and closed by close().
    """

    def __init__(self):
        self._clients: ResourceCache[Any] = ResourceCache("dynamodb")
        self._exit_stack = AsyncExitStack()

    async def _create_client(self, config: DynamoDBConfig) -> Any:
        kwargs: dict[str, Any] = {"region_name": config.region}
        if config.endpoint:
            kwargs["endpoint_url"] = config.endpoint
        if config.access_key_id and config.secret_access_key:
            kwargs["aws_access_key_id"] = config.access_key_id
            kwargs["aws_secret_access_key"] = config.secret_access_key

        session = aioboto3.Session()
        return await self._exit_stack.enter_async_context(session.client("dynamodb", **kwargs))

    async def get_client(self, data_source: DynamoDataSource) -> Any:
        return await self._clients.get_or_create(
            data_source.name,
            lambda: self._create_client(data_source.config),
        )

    async def execute(self, data_source: DynamoDataSource, request: dict[str, Any]) -> Any:
        operation, params = translate_dynamo_request(request, data_source.config.table_name)
        logger.debug(f"[dynamodb:{data_source.name}] {operation}")
        client = await self.get_client(data_source)
        return await execute_dynamo_operation(client, operation, params, request)

    async def close(self) -> None:
        self._clients.drain()
        await self._exit_stack.aclose()
        self._exit_stack = AsyncExitStack()
