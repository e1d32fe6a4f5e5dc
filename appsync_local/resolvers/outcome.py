"""
Step outcomes.

A resolver step either continues with a value or returns early with a
payload. EarlyReturnSignal raised by ctx.runtime.early_return() is turned
into an EarlyReturn outcome at the handler boundary, so the state machines
branch on values instead of catching the signal themselves.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union

from ..errors import EarlyReturnSignal
from ..loader import Handler, call_handler


@dataclass(frozen=True)
class Continue:
    value: Any = None


@dataclass(frozen=True)
class EarlyReturn:
    value: Any = None


StepOutcome = Union[Continue, EarlyReturn]


async def run_step(handler: Handler, ctx: Any) -> StepOutcome:
    """Run one handler; any exception other than the early-return signal propagates."""
    try:
        value = await call_handler(handler, ctx)
    except EarlyReturnSignal as signal:
        return EarlyReturn(signal.data)
    return Continue(value)
