"""
src/netsuite_client — outbound request engine for the NetSuite REST / SuiteQL API.

Module layout
-------------
config.py     — endpoint paths, retry table, batch defaults, path constants
errors.py     — failure taxonomy (AuthError, RateLimitError, ServerError, ...)
retry.py      — retry policies, response classification, exponential backoff
parser.py     — rate-limit header parsing, response body decoding
transport.py  — one HTTP exchange over requests
auth.py       — session token contract, single-flight refresh-token exchange
executor.py   — request model and the single-request state machine
batch.py      — execution-mode selection, windowed/sequential runs, ledger
status.py     — rate-limit probe and health report
records.py    — SuiteQL and sales-order helpers

Public interface
----------------
Bind an executor to a session:
    executor = RequestExecutor(session)

Perform requests:
    single_request(endpoint, method, body, headers, retry_strategy, executor=executor)
    batch_request(requests, concurrency, inter_batch_delay, retry_strategy, executor=executor)

Monitor throttling:
    rate_limit_status(check_rate_limit(executor))
"""

from .auth import InMemorySession, SessionHandle, TokenPair
from .batch import (
    ExecutionMode,
    batch_request,
    run_batch,
    select_execution_mode,
    summarize_batch_ledger,
    write_batch_ledger,
)
from .errors import (
    AuthError,
    DecodeError,
    NetSuiteError,
    NetworkError,
    RateLimitError,
    RemoteError,
    ServerError,
)
from .executor import ExecutionState, RequestExecutor, RequestSpec, single_request
from .parser import RateLimitInfo, parse_rate_limit_headers
from .records import (
    fetch_sales_order,
    fetch_sales_order_items,
    find_sales_order_id,
    run_suiteql,
    submit_serial_numbers,
)
from .retry import (
    RETRY_POLICIES,
    RetryPolicy,
    compute_delay,
    create_retry_policy,
    get_retry_policy,
)
from .status import check_rate_limit, print_rate_limit_status, rate_limit_status

__all__ = [
    # Session
    "InMemorySession",
    "SessionHandle",
    "TokenPair",
    # Execution
    "RequestExecutor",
    "RequestSpec",
    "ExecutionState",
    "single_request",
    # Batch
    "ExecutionMode",
    "select_execution_mode",
    "run_batch",
    "batch_request",
    "write_batch_ledger",
    "summarize_batch_ledger",
    # Retry policy
    "RETRY_POLICIES",
    "RetryPolicy",
    "get_retry_policy",
    "create_retry_policy",
    "compute_delay",
    # Rate limits
    "RateLimitInfo",
    "parse_rate_limit_headers",
    "check_rate_limit",
    "rate_limit_status",
    "print_rate_limit_status",
    # Records
    "run_suiteql",
    "fetch_sales_order",
    "find_sales_order_id",
    "fetch_sales_order_items",
    "submit_serial_numbers",
    # Errors
    "NetSuiteError",
    "AuthError",
    "RateLimitError",
    "ServerError",
    "NetworkError",
    "RemoteError",
    "DecodeError",
]
