"""Gateway error taxonomy.

Every failure that reaches a caller is a ``GatewayError``; the HTTP status of the
error envelope is derived from its kind.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    CONFIG_MISSING = "config_missing"
    BAD_REQUEST = "bad_request"
    UPSTREAM_STATUS = "upstream_status"
    UPSTREAM_TIMEOUT = "upstream_timeout"
    UPSTREAM_UNREACHABLE = "upstream_unreachable"
    INTERNAL = "internal"


_STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.CONFIG_MISSING: 500,
    ErrorKind.BAD_REQUEST: 400,
    ErrorKind.UPSTREAM_TIMEOUT: 504,
    ErrorKind.UPSTREAM_UNREACHABLE: 502,
    ErrorKind.INTERNAL: 500,
}

_SUMMARY_BY_KIND: dict[ErrorKind, str] = {
    ErrorKind.CONFIG_MISSING: "API key not configured",
    ErrorKind.BAD_REQUEST: "Bad request",
    ErrorKind.UPSTREAM_STATUS: "Upstream API error",
    ErrorKind.UPSTREAM_TIMEOUT: "Gateway Timeout",
    ErrorKind.UPSTREAM_UNREACHABLE: "Request failed",
    ErrorKind.INTERNAL: "Internal server error",
}


class GatewayError(Exception):
    """Raised by any gateway component; rendered as the uniform error envelope."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        summary: str | None = None,
        upstream_status: int | None = None,
        details: Any = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.summary = summary or _SUMMARY_BY_KIND[kind]
        self.upstream_status = upstream_status
        self.details = details
        self.retryable = retryable

    @property
    def status_code(self) -> int:
        if self.kind == ErrorKind.UPSTREAM_STATUS:
            return self.upstream_status or 502
        return _STATUS_BY_KIND[self.kind]

    @classmethod
    def bad_request(cls, message: str, details: Any = None) -> GatewayError:
        return cls(ErrorKind.BAD_REQUEST, message, details=details)

    @classmethod
    def config_missing(cls, setting_name: str) -> GatewayError:
        return cls(
            ErrorKind.CONFIG_MISSING,
            f"Please set {setting_name} in your environment variables",
        )

    @classmethod
    def internal(cls, exc: BaseException) -> GatewayError:
        return cls(
            ErrorKind.INTERNAL,
            str(exc) or type(exc).__name__,
            details={"name": type(exc).__name__},
        )

    def __repr__(self) -> str:
        return f"GatewayError(kind={self.kind.value!r}, status={self.status_code}, message={self.message!r})"
