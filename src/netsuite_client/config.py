"""
Engine configuration, environment lookups, and project path constants.

All constants used across the engine modules are centralized here so that
config is separated from logic.  Endpoint and retry tables live in the
top-level ``config`` package and are re-exported from this module.
"""

from __future__ import annotations

import os
from pathlib import Path

from config.netsuite_config import (
    ACCOUNT_ID_ENV,
    API_HOST_TEMPLATE,
    CLIENT_ID_ENV,
    RATE_LIMIT_PROBE_PATH,
    RECORD_BASE_PATH,
    REQUEST_TIMEOUT_SECONDS,
    SERIAL_NUMBER_FIELD,
    SUITEQL_HEADERS,
    SUITEQL_PATH,
    TOKEN_PATH,
)
from config.retry_params import (
    ASSUMED_LIMIT,
    CONCURRENT_DELAY_SECONDS,
    CRITICAL_PERCENT,
    DEFAULT_CONCURRENCY,
    DEFAULT_RETRY_STRATEGY,
    JITTER_FRACTION,
    RATE_LIMIT_LOW_WATER_MARK,
    REFRESH_PAUSE_SECONDS,
    RETRY_POLICY_TABLE,
    SEQUENTIAL_DELAY_SECONDS,
    WARNING_PERCENT,
)

__all__ = [
    "ACCOUNT_ID_ENV",
    "ASSUMED_LIMIT",
    "BATCH_LEDGER_PATH",
    "CLIENT_ID_ENV",
    "CONCURRENT_DELAY_SECONDS",
    "CRITICAL_PERCENT",
    "DEFAULT_CONCURRENCY",
    "DEFAULT_RETRY_STRATEGY",
    "JITTER_FRACTION",
    "LOGS_DIR",
    "PROJECT_ROOT",
    "RATE_LIMIT_LOW_WATER_MARK",
    "RATE_LIMIT_PROBE_PATH",
    "RECORD_BASE_PATH",
    "REFRESH_PAUSE_SECONDS",
    "REQUEST_TIMEOUT_SECONDS",
    "RETRY_POLICY_TABLE",
    "SEQUENTIAL_DELAY_SECONDS",
    "SERIAL_NUMBER_FIELD",
    "SUITEQL_HEADERS",
    "SUITEQL_PATH",
    "TOKEN_PATH",
    "WARNING_PERCENT",
    "get_api_base_url",
    "get_client_id",
]

# ---------------------------------------------------------------------------
# Project paths
# ---------------------------------------------------------------------------

# Resolve from this file: src/netsuite_client/config.py → src → root
PROJECT_ROOT = Path(__file__).resolve().parents[2]

LOGS_DIR = PROJECT_ROOT / "logs"
BATCH_LEDGER_PATH = LOGS_DIR / "batch_ledger.csv"


# ---------------------------------------------------------------------------
# Environment lookups
# ---------------------------------------------------------------------------

def get_api_base_url(account_id: str | None = None) -> str:
    """
    Return the SuiteTalk base URL for the configured account.

    Args:
        account_id: Explicit account id; falls back to the
                    ``NETSUITE_ACCOUNT_ID`` environment variable.

    Returns:
        Base URL without a trailing slash, e.g.
        ``'https://1234567-sb1.suitetalk.api.netsuite.com'``.

    Raises:
        ValueError: If no account id is given and the variable is unset.
    """
    account = account_id or os.getenv(ACCOUNT_ID_ENV)
    if not account:
        raise ValueError(
            f"NetSuite account id not found. Set the '{ACCOUNT_ID_ENV}' "
            "environment variable or pass account_id explicitly."
        )
    host_account = account.strip().lower().replace("_", "-")
    return API_HOST_TEMPLATE.format(account=host_account)


def get_client_id() -> str | None:
    """Return the OAuth2 client id from the environment, or ``None``."""
    return os.getenv(CLIENT_ID_ENV) or None
