"""
Resolver execution engine: unit and pipeline state machines.
"""

from .base import FieldResolver, ResolverState
from .builder import ResolverMap, build_resolver_map
from .outcome import Continue, EarlyReturn, StepOutcome, run_step
from .pipeline import PipelineResolver
from .unit import UnitResolver

__all__ = [
    "Continue",
    "EarlyReturn",
    "FieldResolver",
    "PipelineResolver",
    "ResolverMap",
    "ResolverState",
    "StepOutcome",
    "UnitResolver",
    "build_resolver_map",
    "run_step",
]
