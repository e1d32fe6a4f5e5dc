"""
Error taxonomy for appsync-local.

Every error raised by the engine derives from AppSyncLocalError, except the
internal EarlyReturnSignal which is a control-flow token and is always
intercepted by the resolver driver that owns the invocation.

Propagation:
    - EarlyReturnSignal: caught inside the engine, never surfaced
    - everything else: propagates unchanged to the GraphQL layer, which
      fails the field without aborting sibling fields
"""

from __future__ import annotations

from typing import Any


class AppSyncLocalError(Exception):
    """Base exception for appsync-local errors."""


# =============================================================================
# Configuration
# =============================================================================


class ConfigurationError(AppSyncLocalError):
    """Raised for an unknown data source, resolver or malformed module."""


# =============================================================================
# Limits
# =============================================================================


class LimitError(AppSyncLocalError):
    """
    Raised when a service limit is violated.

    Attributes:
        limit: Limit name (e.g. "RESOLVER_CODE_SIZE_BYTES")
        actual: Observed value
        maximum: Configured ceiling
    """

    def __init__(self, limit: str, actual: int | float, maximum: int | float, message: str):
        super().__init__(message)
        self.limit = limit
        self.actual = actual
        self.maximum = maximum

    def to_dict(self) -> dict[str, Any]:
        return {
            "limit": self.limit,
            "actual": self.actual,
            "maximum": self.maximum,
        }


class ResolverTimeoutError(LimitError):
    """Raised when a resolver invocation loses the race against its deadline."""


# =============================================================================
# Data sources
# =============================================================================


class DataSourceError(AppSyncLocalError):
    """
    Wraps a backend failure with the data source name.

    The message always carries the data source name and the underlying
    cause's message; the original exception is kept in `cause`.
    """

    def __init__(
        self,
        data_source: str,
        message: str,
        *,
        source_type: str = "",
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.data_source = data_source
        self.source_type = source_type
        self.cause = cause

    @classmethod
    def wrap(cls, data_source: str, source_type: str, exc: BaseException) -> DataSourceError:
        """Build the wrapped error for a failed `source_type` call."""
        return cls(
            data_source,
            f"{source_type} operation failed for '{data_source}': {exc}",
            source_type=source_type,
            cause=exc,
        )


# =============================================================================
# Resolver code
# =============================================================================


class UserResolverError(AppSyncLocalError):
    """
    Raised by resolver code through util.error() / util.unauthorized().

    Attributes:
        error_type: Optional error type reported to the client
        data: Optional payload attached to the error
        error_info: Optional extra error information
    """

    def __init__(
        self,
        message: str,
        error_type: str | None = None,
        data: Any = None,
        error_info: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_type = error_type
        self.data = data
        self.error_info = error_info or {}


class EarlyReturnSignal(Exception):
    """
    Raised by ctx.runtime.early_return() to leave the current handler.

    Not an AppSyncLocalError. It is intercepted at the handler boundary and
    turned into an EarlyReturn outcome.
    """

    def __init__(self, data: Any = None):
        self.data = data
        super().__init__("EarlyReturn")
