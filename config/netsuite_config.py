"""
NetSuite account, endpoint, and authentication configuration.

This is the AUTHORITATIVE source for endpoint configuration.
src/netsuite_client/config.py imports from here; do not maintain parallel
copies.

BEFORE RUNNING:
1. Set NETSUITE_ACCOUNT_ID to the account the OAuth2 integration belongs to
   (sandbox ids such as ``1234567_SB1`` are accepted as-is).
2. Set NETSUITE_ID to the OAuth2 client id of the integration record; it is
   needed whenever an access token has to be refreshed.

ENVIRONMENT VARIABLES REQUIRED:
    NETSUITE_ACCOUNT_ID  — account id used to build the SuiteTalk host name
    NETSUITE_ID          — OAuth2 client id for the refresh-token grant
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Environment variables
# ---------------------------------------------------------------------------

ACCOUNT_ID_ENV: str = "NETSUITE_ACCOUNT_ID"
CLIENT_ID_ENV: str = "NETSUITE_ID"

# ---------------------------------------------------------------------------
# Host and endpoint paths
# ---------------------------------------------------------------------------
#
# NetSuite host names use the lower-cased account id with underscores
# replaced by hyphens (1234567_SB1 → 1234567-sb1).

API_HOST_TEMPLATE: str = "https://{account}.suitetalk.api.netsuite.com"

TOKEN_PATH: str = "/services/rest/auth/oauth2/v1/token"
SUITEQL_PATH: str = "/services/rest/query/v1/suiteql"
RECORD_BASE_PATH: str = "/services/rest/record/v1"

# Lightweight record used by the rate-limit probe (HEAD request)
RATE_LIMIT_PROBE_PATH: str = f"{RECORD_BASE_PATH}/account"

# Custom transaction-line field holding newline-separated serial numbers
SERIAL_NUMBER_FIELD: str = "custcol_nsts_bike_serial_number"

# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------

# requests has no default timeout; (connect, read) in seconds
REQUEST_TIMEOUT_SECONDS: tuple[int, int] = (10, 60)

# SuiteQL queries must not be cached server-side between pages
SUITEQL_HEADERS: dict[str, str] = {
    "Prefer": "transient",
    "Accept": "application/json",
    "Content-Type": "application/json",
}
