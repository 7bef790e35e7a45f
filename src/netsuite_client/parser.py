"""
Rate-limit header parsing and response body decoding.

No I/O occurs here; all functions are pure transformations of header
mappings and strings to support easy unit testing.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from typing import Any, Mapping

from .errors import DecodeError

# Header families seen in front of NetSuite, in lookup order
RATE_LIMIT_HEADER_PREFIXES: tuple[str, ...] = (
    "x-rate-limit-",
    "x-ratelimit-",
    "ratelimit-",
)


@dataclass(frozen=True)
class RateLimitInfo:
    """Normalized view of upstream throttling headers; any field may be absent."""

    limit: int | None = None
    remaining: int | None = None
    reset_epoch_seconds: int | None = None
    retry_after_seconds: int | None = None

    def is_empty(self) -> bool:
        return all(value is None for value in asdict(self).values())

    def to_dict(self) -> dict[str, int | None]:
        return asdict(self)


def _parse_int(value: str | None) -> int | None:
    """Parse a header value as an integer; ``None`` when absent or malformed."""
    if value is None:
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def _first_header(headers: Mapping[str, str], suffix: str) -> str | None:
    for prefix in RATE_LIMIT_HEADER_PREFIXES:
        value = headers.get(prefix + suffix)
        if value:
            return value
    return None


def parse_rate_limit_headers(headers: Mapping[str, str] | None) -> RateLimitInfo:
    """
    Extract rate-limit metadata from response headers.

    Reads ``limit``, ``remaining`` and ``reset`` under the
    ``X-Rate-Limit-*``, ``X-RateLimit-*`` and ``RateLimit-*`` families (first
    present family wins per field) plus the standard ``Retry-After``.
    Header names are matched case-insensitively.

    Args:
        headers: Response header mapping (plain dict or requests'
                 ``CaseInsensitiveDict``).

    Returns:
        :class:`RateLimitInfo` with unparsable or absent values left ``None``.
    """
    if not headers:
        return RateLimitInfo()

    lowered = {str(name).lower(): value for name, value in headers.items()}

    return RateLimitInfo(
        limit=_parse_int(_first_header(lowered, "limit")),
        remaining=_parse_int(_first_header(lowered, "remaining")),
        reset_epoch_seconds=_parse_int(_first_header(lowered, "reset")),
        retry_after_seconds=_parse_int(lowered.get("retry-after")),
    )


# ---------------------------------------------------------------------------
# Body decoding
# ---------------------------------------------------------------------------

def success_marker(status: int) -> dict[str, Any]:
    """
    Synthetic payload returned for a success response with an empty body.

    PATCH and DELETE against record endpoints typically answer 204.
    """
    return {
        "success": True,
        "message": "Operation completed successfully",
        "status": status,
    }


def body_excerpt(text: str | None, limit: int = 500) -> str:
    """Return at most ``limit`` characters of a response body for messages."""
    text = text or ""
    if len(text) <= limit:
        return text
    return text[:limit] + "…"


def decode_response_body(text: str | None, status: int, endpoint: str | None = None) -> Any:
    """
    Decode the text body of a success response.

    Args:
        text: Raw response body.
        status: HTTP status (echoed in the success marker).
        endpoint: Request path, used in error messages.

    Returns:
        Decoded JSON value, or :func:`success_marker` for an empty body.

    Raises:
        DecodeError: Body is not valid JSON, or decodes to ``null``.
    """
    if text is None or not text.strip():
        return success_marker(status)

    try:
        payload = json.loads(text)
    except ValueError as exc:
        raise DecodeError(
            f"Invalid JSON response from NetSuite: {exc}",
            endpoint=endpoint,
            body_excerpt=body_excerpt(text),
        ) from exc

    if payload is None:
        raise DecodeError(
            "Empty JSON document in NetSuite response",
            endpoint=endpoint,
            body_excerpt=body_excerpt(text),
        )
    return payload
