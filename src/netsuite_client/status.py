"""
Rate-limit probe and health reporting.

The probe issues one HEAD request against a lightweight record endpoint
and reads the throttling headers; it never retries and never raises.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone

import requests

from .config import (
    ASSUMED_LIMIT,
    CRITICAL_PERCENT,
    RATE_LIMIT_PROBE_PATH,
    WARNING_PERCENT,
)
from .errors import NetSuiteError
from .executor import RequestExecutor
from .parser import RateLimitInfo, parse_rate_limit_headers

logger = logging.getLogger(__name__)

HEALTHY = "healthy"
WARNING = "warning"
CRITICAL = "critical"


def check_rate_limit(executor: RequestExecutor, endpoint: str = RATE_LIMIT_PROBE_PATH) -> RateLimitInfo:
    """
    Probe the API and return the current rate-limit headers.

    Args:
        executor: Executor bound to the active session.
        endpoint: Path to probe with a HEAD request.

    Returns:
        Parsed :class:`RateLimitInfo`; empty when the probe fails.
    """
    try:
        response = executor.probe(endpoint)
    except (NetSuiteError, requests.RequestException) as exc:
        logger.error("Failed to check NetSuite rate limit: %s", exc)
        return RateLimitInfo()
    return parse_rate_limit_headers(response.headers)


def classify_health(info: RateLimitInfo) -> tuple[str, float | None]:
    """
    Derive the health tier from remaining/limit.

    Returns:
        Tuple of (tier, percentage remaining or ``None`` when unknown).
    """
    if info.remaining is None:
        return HEALTHY, None

    limit = info.limit or ASSUMED_LIMIT
    percentage = info.remaining / limit * 100
    if percentage <= CRITICAL_PERCENT:
        return CRITICAL, percentage
    if percentage <= WARNING_PERCENT:
        return WARNING, percentage
    return HEALTHY, percentage


def rate_limit_status(info: RateLimitInfo, now: float | None = None) -> dict:
    """
    Build a health report for a :class:`RateLimitInfo`.

    Args:
        info: Parsed rate-limit headers.
        now: Current epoch seconds (defaults to ``time.time()``).

    Returns:
        Dict with keys ``status``, ``timestamp``, ``rate_limit`` (limit,
        remaining, reset_time, reset_in, retry_after), ``warning`` and
        ``recommendations``.
    """
    now = time.time() if now is None else now
    tier, percentage = classify_health(info)

    reset_in = None
    if info.reset_epoch_seconds is not None and info.reset_epoch_seconds > int(now):
        reset_in = info.reset_epoch_seconds - int(now)

    warning = None
    if tier == CRITICAL:
        warning = f"Only {info.remaining} requests remaining ({percentage:.1f}%)"
    elif tier == WARNING:
        warning = f"{info.remaining} requests remaining ({percentage:.1f}%)"

    if tier == CRITICAL:
        wait = f"{reset_in} seconds" if reset_in else "for rate limit reset"
        recommendations = [
            "Stop making non-essential requests immediately",
            "Implement request queuing with delays",
            f"Wait {wait} before resuming",
        ]
    elif tier == WARNING:
        recommendations = [
            "Reduce request frequency",
            "Consider batching requests",
            "Monitor rate limit status more frequently",
        ]
    else:
        recommendations = ["Rate limit status is healthy"]

    return {
        "status": tier,
        "timestamp": datetime.fromtimestamp(now, tz=timezone.utc).isoformat(),
        "rate_limit": {
            "limit": info.limit,
            "remaining": info.remaining,
            "reset_time": info.reset_epoch_seconds,
            "reset_in": reset_in,
            "retry_after": info.retry_after_seconds,
        },
        "warning": warning,
        "recommendations": recommendations,
    }


def print_rate_limit_status(report: dict) -> None:
    """Print a :func:`rate_limit_status` report for operators."""
    rl = report["rate_limit"]
    sep = "=" * 60
    print(f"\n{sep}")
    print(f"NETSUITE RATE LIMIT: {report['status'].upper()}")
    print(f"  Remaining:  {rl['remaining'] if rl['remaining'] is not None else 'unknown'}"
          f" / {rl['limit'] if rl['limit'] is not None else 'unknown'}")
    if rl["reset_in"] is not None:
        print(f"  Resets in:  {rl['reset_in']}s")
    if report["warning"]:
        print(f"  Warning:    {report['warning']}")
    for rec in report["recommendations"]:
        print(f"  - {rec}")
    print(f"{sep}\n")
