"""
Retry policies, response classification, and exponential backoff.

Policies are immutable and selected by name from ``RETRY_POLICIES``.  The
backoff schedule doubles from ``base_delay`` per attempt, adds up to 10 %
jitter and is capped at ``max_delay``; a server-supplied ``Retry-After``
always replaces the computed value (still capped).
"""

from __future__ import annotations

import random
from dataclasses import dataclass, replace
from types import MappingProxyType
from typing import Mapping

from .config import DEFAULT_RETRY_STRATEGY, JITTER_FRACTION, RETRY_POLICY_TABLE


# ---------------------------------------------------------------------------
# Policy model and registry
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RetryPolicy:
    """
    Named bundle of attempt count and delay bounds.

    Attributes:
        name: Registry key (``'standard'`` etc.) or a custom label.
        max_attempts: Total sends allowed, initial call included.
        base_delay: Backoff in seconds before the second attempt.
        max_delay: Ceiling in seconds for any single delay.
    """

    name: str
    max_attempts: int
    base_delay: float
    max_delay: float

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.base_delay < 0:
            raise ValueError(f"base_delay must be >= 0, got {self.base_delay}")
        if self.base_delay > self.max_delay:
            raise ValueError(
                f"base_delay ({self.base_delay}) must not exceed "
                f"max_delay ({self.max_delay})"
            )


RETRY_POLICIES: Mapping[str, RetryPolicy] = MappingProxyType({
    name: RetryPolicy(name=name, **params)
    for name, params in RETRY_POLICY_TABLE.items()
})


def get_retry_policy(policy: str | RetryPolicy = DEFAULT_RETRY_STRATEGY) -> RetryPolicy:
    """
    Resolve a retry strategy name to its policy.

    Args:
        policy: Strategy name from ``RETRY_POLICIES``, or a policy instance
                (returned unchanged).

    Returns:
        The matching :class:`RetryPolicy`.

    Raises:
        ValueError: If the name is not registered.
    """
    if isinstance(policy, RetryPolicy):
        return policy
    try:
        return RETRY_POLICIES[policy]
    except KeyError:
        valid = ", ".join(sorted(RETRY_POLICIES))
        raise ValueError(
            f"Unknown retry strategy '{policy}'. Valid strategies: {valid}"
        ) from None


def create_retry_policy(name: str = "custom", **overrides: int | float) -> RetryPolicy:
    """
    Derive a policy from ``standard`` with selected fields replaced.

    Args:
        name: Label for the new policy.
        **overrides: Any of ``max_attempts``, ``base_delay``, ``max_delay``.

    Returns:
        New validated :class:`RetryPolicy`.
    """
    return replace(RETRY_POLICIES[DEFAULT_RETRY_STRATEGY], name=name, **overrides)


# ---------------------------------------------------------------------------
# Response classification
# ---------------------------------------------------------------------------

class ResponseClass:
    """
    Status category constants driving the executor's next transition.

    Transient categories are retried with backoff; ``UNAUTHORIZED`` triggers
    a single token refresh; the rest are terminal on first occurrence.
    """

    SUCCESS = "success"
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    UNAUTHORIZED = "unauthorized"
    CLIENT_ERROR = "client_error"
    NETWORK_ERROR = "network_error"

    RETRIABLE: frozenset[str] = frozenset({RATE_LIMITED, SERVER_ERROR, NETWORK_ERROR})

    @staticmethod
    def classify(status: int) -> str:
        """
        Map an HTTP status code to a response category.

        Args:
            status: HTTP status code of the response.

        Returns:
            One of the category constants.
        """
        if 200 <= status < 300:
            return ResponseClass.SUCCESS
        if status == 429:
            return ResponseClass.RATE_LIMITED
        if status == 401:
            return ResponseClass.UNAUTHORIZED
        if status >= 500:
            return ResponseClass.SERVER_ERROR
        return ResponseClass.CLIENT_ERROR


def should_retry(category: str, attempt: int, policy: RetryPolicy) -> bool:
    """
    Decide whether a failed attempt may be followed by another one.

    Args:
        category: Category from :meth:`ResponseClass.classify`.
        attempt: 0-based index of the attempt that just failed.
        policy: Active retry policy.

    Returns:
        ``True`` if the category is transient and attempts remain.
    """
    return category in ResponseClass.RETRIABLE and attempt + 1 < policy.max_attempts


# ---------------------------------------------------------------------------
# Backoff
# ---------------------------------------------------------------------------

def compute_delay(
    attempt: int,
    policy: RetryPolicy,
    retry_after_seconds: int | None = None,
    rng: random.Random | None = None,
) -> float:
    """
    Return the wait in seconds before the attempt after ``attempt``.

    Args:
        attempt: 0-based index of the attempt that just failed.
        policy: Active retry policy.
        retry_after_seconds: Server-dictated wait from ``Retry-After``.
        rng: Random source for jitter; a private instance keeps runs
             reproducible when seeded.

    Returns:
        Delay in seconds, never above ``policy.max_delay``.
    """
    if retry_after_seconds is not None:
        return float(min(max(retry_after_seconds, 0), policy.max_delay))

    exponential = policy.base_delay * (2 ** attempt)
    jitter = (rng or random).uniform(0, JITTER_FRACTION * exponential)
    return min(exponential + jitter, policy.max_delay)
