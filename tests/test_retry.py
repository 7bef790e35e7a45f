"""
Unit tests for src/netsuite_client/retry.py.

Covers the policy registry, policy validation, response classification,
the retry decision, and the backoff calculator (exponential growth, jitter
bounds, cap, and Retry-After precedence).
"""

from __future__ import annotations

import dataclasses
import random

import pytest

from src.netsuite_client.retry import (
    RETRY_POLICIES,
    ResponseClass,
    RetryPolicy,
    compute_delay,
    create_retry_policy,
    get_retry_policy,
    should_retry,
)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

class TestRetryPolicyRegistry:

    @pytest.mark.parametrize("name, attempts, base, cap", [
        ("aggressive", 2, 0.5, 5.0),
        ("standard", 4, 1.0, 30.0),
        ("patient", 6, 2.0, 60.0),
        ("background", 11, 5.0, 300.0),
    ])
    def test_registered_values(self, name, attempts, base, cap):
        policy = RETRY_POLICIES[name]
        assert policy.name == name
        assert policy.max_attempts == attempts
        assert policy.base_delay == base
        assert policy.max_delay == cap

    def test_registry_is_read_only(self):
        with pytest.raises(TypeError):
            RETRY_POLICIES["standard"] = RetryPolicy("x", 1, 0.0, 0.0)

    def test_policy_is_frozen(self):
        with pytest.raises(dataclasses.FrozenInstanceError):
            RETRY_POLICIES["standard"].max_attempts = 99

    def test_get_by_name(self):
        assert get_retry_policy("patient") is RETRY_POLICIES["patient"]

    def test_default_is_standard(self):
        assert get_retry_policy() is RETRY_POLICIES["standard"]

    def test_instance_passes_through(self):
        policy = RetryPolicy("custom", 1, 0.1, 0.2)
        assert get_retry_policy(policy) is policy

    def test_unknown_name_lists_valid_names(self):
        with pytest.raises(ValueError, match="aggressive, background, patient, standard"):
            get_retry_policy("reckless")


class TestRetryPolicyValidation:

    def test_zero_attempts_rejected(self):
        with pytest.raises(ValueError, match="max_attempts"):
            RetryPolicy("bad", 0, 1.0, 2.0)

    def test_base_above_cap_rejected(self):
        with pytest.raises(ValueError, match="must not exceed"):
            RetryPolicy("bad", 3, 10.0, 5.0)

    def test_negative_base_rejected(self):
        with pytest.raises(ValueError, match="base_delay"):
            RetryPolicy("bad", 3, -1.0, 5.0)

    def test_create_retry_policy_overrides_standard(self):
        policy = create_retry_policy("single", max_attempts=1)
        assert policy.name == "single"
        assert policy.max_attempts == 1
        assert policy.base_delay == RETRY_POLICIES["standard"].base_delay
        assert policy.max_delay == RETRY_POLICIES["standard"].max_delay

    def test_create_retry_policy_validates(self):
        with pytest.raises(ValueError):
            create_retry_policy(base_delay=100.0)


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

class TestResponseClass:

    @pytest.mark.parametrize("status, expected", [
        (200, ResponseClass.SUCCESS),
        (204, ResponseClass.SUCCESS),
        (429, ResponseClass.RATE_LIMITED),
        (401, ResponseClass.UNAUTHORIZED),
        (500, ResponseClass.SERVER_ERROR),
        (503, ResponseClass.SERVER_ERROR),
        (400, ResponseClass.CLIENT_ERROR),
        (403, ResponseClass.CLIENT_ERROR),
        (404, ResponseClass.CLIENT_ERROR),
    ])
    def test_classify(self, status, expected):
        assert ResponseClass.classify(status) == expected

    def test_transient_retried_while_attempts_remain(self):
        policy = RETRY_POLICIES["standard"]
        assert should_retry(ResponseClass.SERVER_ERROR, 0, policy)
        assert should_retry(ResponseClass.NETWORK_ERROR, 2, policy)
        assert not should_retry(ResponseClass.RATE_LIMITED, 3, policy)

    def test_permanent_never_retried(self):
        policy = RETRY_POLICIES["background"]
        assert not should_retry(ResponseClass.CLIENT_ERROR, 0, policy)
        assert not should_retry(ResponseClass.UNAUTHORIZED, 0, policy)

    def test_single_attempt_policy_never_retries(self):
        policy = RetryPolicy("once", 1, 1.0, 1.0)
        assert not should_retry(ResponseClass.SERVER_ERROR, 0, policy)


# ---------------------------------------------------------------------------
# Backoff
# ---------------------------------------------------------------------------

class TestComputeDelay:

    @pytest.mark.parametrize("name", sorted(RETRY_POLICIES))
    def test_monotonic_and_capped(self, name):
        policy = RETRY_POLICIES[name]
        rng = random.Random(1234)
        delays = [compute_delay(a, policy, rng=rng) for a in range(policy.max_attempts + 1)]
        assert all(later >= earlier for earlier, later in zip(delays, delays[1:]))
        assert all(d <= policy.max_delay for d in delays)

    def test_jitter_within_ten_percent(self):
        policy = RETRY_POLICIES["standard"]
        rng = random.Random(99)
        for attempt in range(3):
            base = policy.base_delay * 2 ** attempt
            delay = compute_delay(attempt, policy, rng=rng)
            assert base <= delay <= base * 1.1

    def test_seeded_rng_is_reproducible(self):
        policy = RETRY_POLICIES["patient"]
        first = compute_delay(2, policy, rng=random.Random(5))
        second = compute_delay(2, policy, rng=random.Random(5))
        assert first == second

    @pytest.mark.parametrize("attempt", [0, 1, 2, 3])
    def test_retry_after_wins_regardless_of_attempt(self, attempt):
        assert compute_delay(attempt, RETRY_POLICIES["standard"], retry_after_seconds=5) == 5.0

    def test_retry_after_capped_at_max_delay(self):
        assert compute_delay(0, RETRY_POLICIES["aggressive"], retry_after_seconds=60) == 5.0

    def test_retry_after_zero_is_respected(self):
        assert compute_delay(3, RETRY_POLICIES["standard"], retry_after_seconds=0) == 0.0

    def test_large_attempt_hits_cap(self):
        policy = RETRY_POLICIES["standard"]
        assert compute_delay(20, policy, rng=random.Random(0)) == policy.max_delay
