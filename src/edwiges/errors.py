"""
Exception types for Edwiges.

Construction errors are raised synchronously. Transport and identity errors are
delivered on the owning emitter's ``error`` signal instead of being raised out
of a receive loop.
"""

from __future__ import annotations

from typing import Any


class EdwigesError(Exception):
    """Base class for all Edwiges errors."""


class ClientConfigError(EdwigesError, ValueError):
    """Raised when a client, pool or cluster is constructed with invalid parameters."""


class GatewayError(EdwigesError):
    """Base class for per-connection transport errors."""

    def __init__(self, message: str, shard_id: int | None = None) -> None:
        super().__init__(message)
        self.shard_id = shard_id


class GatewayConnectError(GatewayError):
    """Raised (and reported) when the gateway socket cannot be opened."""


class MalformedPayloadError(GatewayError):
    """A frame could not be parsed into a gateway envelope."""

    def __init__(self, message: str, raw: str | bytes | None = None, shard_id: int | None = None) -> None:
        super().__init__(message, shard_id=shard_id)
        self.raw = raw


class RestError(EdwigesError):
    """Non-success response from the REST API."""

    def __init__(self, message: str, status: int, body: Any = None) -> None:
        super().__init__(message)
        self.status = status
        self.body = body


class RateLimitError(RestError):
    """Raised on HTTP 429."""

    def __init__(
        self,
        message: str,
        status: int = 429,
        body: Any = None,
        retry_after_ms: int | None = None,
        is_global: bool = False,
    ) -> None:
        super().__init__(message, status=status, body=body)
        self.retry_after_ms = retry_after_ms
        self.is_global = is_global


class IdentityResolutionError(EdwigesError):
    """The authenticated identity could not be resolved at startup.

    When this happens the client refuses to open any gateway session.
    """

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class ClusterError(EdwigesError):
    """Worker process orchestration failure."""
