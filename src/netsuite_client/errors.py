"""
Failure taxonomy for the NetSuite request engine.

Every terminal failure raised by the executor or the batch scheduler is one
of the classes below.  Transient classes (rate limit, server, network) are
only raised once the retry policy is exhausted; the others are raised on
first occurrence.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .parser import RateLimitInfo


class NetSuiteError(RuntimeError):
    """
    Base class for all engine failures.

    Attributes:
        endpoint: Request path the failure belongs to, if known.
        status: Terminal HTTP status, or ``None`` when no response applies.
        item_index: Position in the batch input, set by the scheduler.
    """

    status: int | None = None

    def __init__(self, message: str, *, endpoint: str | None = None):
        super().__init__(message)
        self.message = message
        self.endpoint = endpoint
        self.item_index: int | None = None

    def __str__(self) -> str:
        text = self.message
        if self.endpoint:
            text = f"{text} [{self.endpoint}]"
        if self.item_index is not None:
            text = f"{text} (batch item {self.item_index})"
        return text


class AuthError(NetSuiteError):
    """Missing credentials or a failed token refresh.  Never retried."""

    def __init__(self, message: str, *, endpoint: str | None = None, status: int | None = None):
        super().__init__(message, endpoint=endpoint)
        self.status = status


class RateLimitError(NetSuiteError):
    """HTTP 429 persisted after every allowed attempt."""

    status = 429

    def __init__(
        self,
        message: str,
        *,
        endpoint: str | None = None,
        attempts: int = 0,
        rate_limit: RateLimitInfo | None = None,
    ):
        super().__init__(message, endpoint=endpoint)
        self.attempts = attempts
        self.rate_limit = rate_limit


class ServerError(NetSuiteError):
    """HTTP 5xx persisted after every allowed attempt."""

    def __init__(self, message: str, *, status: int, endpoint: str | None = None, attempts: int = 0):
        super().__init__(message, endpoint=endpoint)
        self.status = status
        self.attempts = attempts


class NetworkError(NetSuiteError):
    """Transport-level fault persisted after every allowed attempt."""

    def __init__(self, message: str, *, endpoint: str | None = None, attempts: int = 0):
        super().__init__(message, endpoint=endpoint)
        self.attempts = attempts


class RemoteError(NetSuiteError):
    """Non-success status that is not retryable (4xx other than 401/429)."""

    def __init__(self, message: str, *, status: int, endpoint: str | None = None, body_excerpt: str = ""):
        super().__init__(message, endpoint=endpoint)
        self.status = status
        self.body_excerpt = body_excerpt


class DecodeError(NetSuiteError):
    """Success status with a body that is not valid JSON."""

    def __init__(self, message: str, *, endpoint: str | None = None, body_excerpt: str = ""):
        super().__init__(message, endpoint=endpoint)
        self.body_excerpt = body_excerpt
