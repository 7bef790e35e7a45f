"""
Retry policies, batch scheduling defaults, and rate-limit thresholds.

This is the AUTHORITATIVE source for all retry and scheduling constants.
src/netsuite_client/config.py imports from here; do not maintain parallel
copies.

Policy selection guide:
- aggressive  — interactive lookups that should fail fast
- standard    — default for reads and writes
- patient     — critical writes that should survive a long throttle
- background  — unattended jobs that can wait several minutes
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Retry policy table
# ---------------------------------------------------------------------------
#
# Fields:
#   max_attempts  — total sends allowed (initial call + retries), >= 1
#   base_delay    — backoff for attempt 0 in seconds; doubles per attempt
#   max_delay     — ceiling for both computed backoff and Retry-After

RETRY_POLICY_TABLE: dict[str, dict[str, int | float]] = {
    "aggressive": {"max_attempts": 2,  "base_delay": 0.5, "max_delay": 5.0},
    "standard":   {"max_attempts": 4,  "base_delay": 1.0, "max_delay": 30.0},
    "patient":    {"max_attempts": 6,  "base_delay": 2.0, "max_delay": 60.0},
    "background": {"max_attempts": 11, "base_delay": 5.0, "max_delay": 300.0},
}

DEFAULT_RETRY_STRATEGY: str = "standard"

# Upper bound of the uniform jitter, as a fraction of the exponential delay
JITTER_FRACTION: float = 0.10

# ---------------------------------------------------------------------------
# Token refresh
# ---------------------------------------------------------------------------

# Fixed pause between a successful refresh and the resend
REFRESH_PAUSE_SECONDS: float = 0.2

# ---------------------------------------------------------------------------
# Batch scheduling
# ---------------------------------------------------------------------------

DEFAULT_CONCURRENCY: int = 3
CONCURRENT_DELAY_SECONDS: float = 0.1   # pause between concurrent windows
SEQUENTIAL_DELAY_SECONDS: float = 0.25  # pause between sequential writes

# ---------------------------------------------------------------------------
# Rate-limit monitoring
# ---------------------------------------------------------------------------

RATE_LIMIT_LOW_WATER_MARK: int = 10   # warn when fewer requests remain
CRITICAL_PERCENT: float = 10.0        # remaining/limit <= 10 % → critical
WARNING_PERCENT: float = 25.0         # remaining/limit <= 25 % → warning
ASSUMED_LIMIT: int = 100              # used when the limit header is absent
