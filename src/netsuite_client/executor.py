"""
Request construction and the single-request executor.

One logical call is a bounded state machine:

    RESOLVING_TOKEN → SENDING → DONE_SUCCESS
                         ├──→ AWAITING_RETRY_DELAY → RESOLVING_TOKEN   (429, 5xx, transport fault)
                         ├──→ REFRESHING_TOKEN → RESOLVING_TOKEN       (first 401 only)
                         └──→ DONE_FAILURE

Every retryable branch consumes one attempt of the active policy; once the
attempts are spent the branch leads to DONE_FAILURE instead.  The resend
after a token refresh does not consume an attempt because at most one
refresh happens per call.
"""

from __future__ import annotations

import enum
import logging
import random
import threading
import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Mapping

import requests
from requests.structures import CaseInsensitiveDict

from .auth import SessionHandle, refresh_session_tokens
from .config import (
    DEFAULT_RETRY_STRATEGY,
    RATE_LIMIT_LOW_WATER_MARK,
    REFRESH_PAUSE_SECONDS,
    TOKEN_PATH,
    get_api_base_url,
    get_client_id,
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
from .parser import RateLimitInfo, body_excerpt, decode_response_body, parse_rate_limit_headers
from .retry import ResponseClass, RetryPolicy, compute_delay, get_retry_policy, should_retry
from .transport import HttpResponse, RequestsTransport, Transport

logger = logging.getLogger(__name__)

ALLOWED_METHODS: frozenset[str] = frozenset({"GET", "POST", "PUT", "PATCH", "DELETE"})


# ---------------------------------------------------------------------------
# Request model
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RequestSpec:
    """
    One logical NetSuite request, built by the caller and never mutated.

    Attributes:
        endpoint: Path below the account base URL (or an absolute URL).
        method: One of ``GET``, ``POST``, ``PUT``, ``PATCH``, ``DELETE``.
        body: JSON-serializable payload, or ``None``.
        headers: Extra headers; they override the engine defaults.
    """

    endpoint: str
    method: str = "GET"
    body: Any = None
    headers: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        method = str(self.method).upper()
        if method not in ALLOWED_METHODS:
            raise ValueError(
                f"Unsupported HTTP method '{self.method}'. "
                f"Expected one of: {', '.join(sorted(ALLOWED_METHODS))}"
            )
        if not self.endpoint:
            raise ValueError("RequestSpec.endpoint must not be empty")
        object.__setattr__(self, "method", method)
        object.__setattr__(self, "headers", MappingProxyType(dict(self.headers or {})))

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> RequestSpec:
        """Build a spec from ``{'endpoint', 'method', 'body'?, 'headers'?}``."""
        return cls(
            endpoint=data["endpoint"],
            method=data.get("method", "GET"),
            body=data.get("body"),
            headers=data.get("headers") or {},
        )


class ExecutionState(enum.Enum):
    RESOLVING_TOKEN = "resolving_token"
    SENDING = "sending"
    AWAITING_RETRY_DELAY = "awaiting_retry_delay"
    REFRESHING_TOKEN = "refreshing_token"
    DONE_SUCCESS = "done_success"
    DONE_FAILURE = "done_failure"


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------

class RequestExecutor:
    """
    Performs single NetSuite requests with retry, backoff and token refresh.

    One executor can be shared by the threads of a batch run; per-call state
    lives on the stack of :meth:`execute`.

    Args:
        session: Source and sink of the session's OAuth2 tokens.
        transport: HTTP transport; defaults to :class:`RequestsTransport`.
        base_url: Account base URL; defaults to the one derived from
                  ``NETSUITE_ACCOUNT_ID``.
        client_id: OAuth2 client id; defaults to ``NETSUITE_ID``.
        sleep: Blocking sleep function (injectable for tests).
        rng: Random source for backoff jitter.
    """

    def __init__(
        self,
        session: SessionHandle,
        *,
        transport: Transport | None = None,
        base_url: str | None = None,
        client_id: str | None = None,
        sleep: Callable[[float], None] = time.sleep,
        rng: random.Random | None = None,
    ):
        self.session = session
        self.transport = transport or RequestsTransport()
        self.base_url = (base_url or get_api_base_url()).rstrip("/")
        self.client_id = client_id if client_id is not None else get_client_id()
        self.sleep = sleep
        self.rng = rng or random.Random()
        self._local = threading.local()

    # -- helpers -------------------------------------------------------------

    @property
    def last_trace(self) -> list[ExecutionState]:
        """States visited by the most recent call on the current thread."""
        return list(getattr(self._local, "trace", []))

    @property
    def token_url(self) -> str:
        return self.build_url(TOKEN_PATH)

    def build_url(self, endpoint: str) -> str:
        if endpoint.startswith(("http://", "https://")):
            return endpoint
        if not endpoint.startswith("/"):
            endpoint = "/" + endpoint
        return f"{self.base_url}{endpoint}"

    @staticmethod
    def build_headers(access_token: str, extra: Mapping[str, str] | None = None) -> CaseInsensitiveDict:
        """
        Construct request headers; caller-supplied ``extra`` wins on conflicts.

        Names are matched case-insensitively, so ``content-type`` replaces
        the default ``Content-Type`` rather than being sent alongside it.

        Args:
            access_token: Current OAuth2 access token.
            extra: Caller headers from the :class:`RequestSpec`.

        Returns:
            Case-insensitive mapping of header name → value.
        """
        headers = CaseInsensitiveDict({
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        })
        headers.update(extra or {})
        return headers

    def _resolve_access_token(self, endpoint: str) -> str:
        access_token = self.session.get_access_token()
        if not access_token:
            raise AuthError("NetSuite access token is not available", endpoint=endpoint)
        if not self.session.get_refresh_token():
            raise AuthError("NetSuite refresh token is not available", endpoint=endpoint)
        return access_token

    @staticmethod
    def _log_rate_limit(info: RateLimitInfo) -> None:
        if info.remaining is None:
            return
        logger.debug(
            "NetSuite API: %s/%s requests remaining",
            info.remaining,
            info.limit if info.limit is not None else "unknown",
        )
        if info.remaining < RATE_LIMIT_LOW_WATER_MARK:
            logger.warning(
                "NetSuite rate limit warning: only %s requests remaining",
                info.remaining,
            )

    # -- public API ----------------------------------------------------------

    def execute(self, spec: RequestSpec, policy: str | RetryPolicy = DEFAULT_RETRY_STRATEGY) -> Any:
        """
        Execute one logical request and return its decoded payload.

        Args:
            spec: The request to perform.
            policy: Retry strategy name or :class:`RetryPolicy`.

        Returns:
            Decoded JSON body, or the success marker dict for an empty body.

        Raises:
            AuthError: Missing tokens, failed refresh, or 401 after refresh.
            RateLimitError: 429 on every allowed attempt.
            ServerError: 5xx on every allowed attempt.
            NetworkError: Transport fault on every allowed attempt.
            RemoteError: Any other non-success status (not retried).
            DecodeError: Success status with a malformed body (not retried).
        """
        policy = get_retry_policy(policy)
        endpoint = spec.endpoint
        url = self.build_url(endpoint)

        trace: list[ExecutionState] = []
        self._local.trace = trace

        state = ExecutionState.RESOLVING_TOKEN
        attempt = 0
        refreshed = False
        access_token = ""
        pending_delay = 0.0
        result: Any = None
        failure: NetSuiteError | None = None
        failure_cause: BaseException | None = None

        while True:
            trace.append(state)

            if state is ExecutionState.RESOLVING_TOKEN:
                try:
                    access_token = self._resolve_access_token(endpoint)
                except AuthError as exc:
                    failure = exc
                    state = ExecutionState.DONE_FAILURE
                    continue
                state = ExecutionState.SENDING

            elif state is ExecutionState.SENDING:
                try:
                    response = self.transport.send(
                        spec.method,
                        url,
                        headers=self.build_headers(access_token, spec.headers),
                        json_body=spec.body,
                    )
                except requests.RequestException as exc:
                    if should_retry(ResponseClass.NETWORK_ERROR, attempt, policy):
                        pending_delay = compute_delay(attempt, policy, rng=self.rng)
                        logger.warning(
                            "Network error on %s %s: %s. Attempt %d/%d. Retrying in %.2fs",
                            spec.method, endpoint, exc, attempt + 1, policy.max_attempts, pending_delay,
                        )
                        attempt += 1
                        state = ExecutionState.AWAITING_RETRY_DELAY
                    else:
                        failure = NetworkError(
                            f"Network error after {attempt + 1} attempt(s): {exc}",
                            endpoint=endpoint,
                            attempts=attempt + 1,
                        )
                        failure_cause = exc
                        state = ExecutionState.DONE_FAILURE
                    continue

                state, pending_delay, result, failure = self._handle_response(
                    response, spec, policy, attempt, refreshed,
                )
                if state is ExecutionState.AWAITING_RETRY_DELAY:
                    attempt += 1

            elif state is ExecutionState.AWAITING_RETRY_DELAY:
                self.sleep(pending_delay)
                state = ExecutionState.RESOLVING_TOKEN

            elif state is ExecutionState.REFRESHING_TOKEN:
                refreshed = True
                try:
                    refresh_session_tokens(
                        self.session,
                        access_token,
                        client_id=self.client_id,
                        transport=self.transport,
                        token_url=self.token_url,
                    )
                except AuthError as exc:
                    if exc.endpoint is None:
                        exc.endpoint = endpoint
                    failure = exc
                    state = ExecutionState.DONE_FAILURE
                    continue
                self.sleep(REFRESH_PAUSE_SECONDS)
                state = ExecutionState.RESOLVING_TOKEN

            elif state is ExecutionState.DONE_SUCCESS:
                logger.debug("NetSuite %s %s succeeded", spec.method, endpoint)
                return result

            else:  # DONE_FAILURE
                logger.error(
                    "NetSuite %s %s failed: %s (status=%s, attempt=%d)",
                    spec.method, endpoint, failure, failure.status, attempt + 1,
                )
                if failure_cause is not None:
                    raise failure from failure_cause
                raise failure

    def _handle_response(
        self,
        response: HttpResponse,
        spec: RequestSpec,
        policy: RetryPolicy,
        attempt: int,
        refreshed: bool,
    ) -> tuple[ExecutionState, float, Any, NetSuiteError | None]:
        """Map one response to (next state, delay, result, failure)."""
        endpoint = spec.endpoint
        info = parse_rate_limit_headers(response.headers)
        self._log_rate_limit(info)
        category = ResponseClass.classify(response.status)

        if category == ResponseClass.SUCCESS:
            try:
                payload = decode_response_body(response.text, response.status, endpoint)
            except DecodeError as exc:
                return ExecutionState.DONE_FAILURE, 0.0, None, exc
            return ExecutionState.DONE_SUCCESS, 0.0, payload, None

        if category == ResponseClass.RATE_LIMITED:
            if should_retry(category, attempt, policy):
                delay = compute_delay(attempt, policy, info.retry_after_seconds, rng=self.rng)
                logger.warning(
                    "NetSuite rate limit hit on %s. Attempt %d/%d. Retrying in %.2fs",
                    endpoint, attempt + 1, policy.max_attempts, delay,
                )
                return ExecutionState.AWAITING_RETRY_DELAY, delay, None, None
            return ExecutionState.DONE_FAILURE, 0.0, None, RateLimitError(
                f"Rate limit exceeded after {attempt + 1} attempt(s)",
                endpoint=endpoint,
                attempts=attempt + 1,
                rate_limit=info,
            )

        if category == ResponseClass.SERVER_ERROR:
            if should_retry(category, attempt, policy):
                delay = compute_delay(attempt, policy, rng=self.rng)
                logger.warning(
                    "NetSuite API error %d on %s. Attempt %d/%d. Retrying in %.2fs",
                    response.status, endpoint, attempt + 1, policy.max_attempts, delay,
                )
                return ExecutionState.AWAITING_RETRY_DELAY, delay, None, None
            return ExecutionState.DONE_FAILURE, 0.0, None, ServerError(
                f"NetSuite server error {response.status} after {attempt + 1} attempt(s)",
                status=response.status,
                endpoint=endpoint,
                attempts=attempt + 1,
            )

        if category == ResponseClass.UNAUTHORIZED:
            if refreshed:
                return ExecutionState.DONE_FAILURE, 0.0, None, AuthError(
                    "NetSuite rejected the refreshed access token",
                    endpoint=endpoint,
                    status=response.status,
                )
            return ExecutionState.REFRESHING_TOKEN, 0.0, None, None

        return ExecutionState.DONE_FAILURE, 0.0, None, RemoteError(
            f"NetSuite API error: {response.status}",
            status=response.status,
            endpoint=endpoint,
            body_excerpt=body_excerpt(response.text),
        )

    def probe(self, endpoint: str) -> HttpResponse:
        """
        Send one HEAD request with the current token, without retries.

        Raises:
            AuthError: No access token in the session.
            requests.RequestException: Transport fault.
        """
        access_token = self.session.get_access_token()
        if not access_token:
            raise AuthError("NetSuite access token is not available", endpoint=endpoint)
        headers = {
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/json",
        }
        return self.transport.send("HEAD", self.build_url(endpoint), headers=headers)

    def release_idle_connections(self) -> None:
        """Close HTTP sessions left behind by worker threads that have exited."""
        close_idle = getattr(self.transport, "close_idle_sessions", None)
        if close_idle is not None:
            closed = close_idle()
            logger.debug("Closed %d idle HTTP session(s)", closed)

    def close(self) -> None:
        """Close the transport's HTTP sessions on every thread."""
        close = getattr(self.transport, "close", None)
        if close is not None:
            close()


# ---------------------------------------------------------------------------
# Caller entry point
# ---------------------------------------------------------------------------

def single_request(
    endpoint: str,
    method: str = "GET",
    body: Any = None,
    headers: Mapping[str, str] | None = None,
    retry_strategy: str | RetryPolicy = DEFAULT_RETRY_STRATEGY,
    *,
    executor: RequestExecutor,
) -> Any:
    """
    Perform one NetSuite request under a named retry strategy.

    Args:
        endpoint: Path below the account base URL.
        method: HTTP method.
        body: JSON-serializable payload.
        headers: Extra headers overriding the defaults.
        retry_strategy: ``'aggressive'``, ``'standard'``, ``'patient'`` or
                        ``'background'`` (or a policy instance).
        executor: Executor bound to the active session.

    Returns:
        Decoded payload (see :meth:`RequestExecutor.execute`).
    """
    spec = RequestSpec(endpoint=endpoint, method=method, body=body, headers=headers or {})
    return executor.execute(spec, retry_strategy)
