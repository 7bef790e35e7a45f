"""
Session token contract and OAuth2 refresh-token exchange.

The engine never owns credentials.  It reads them through a
:class:`SessionHandle` at the start of each call and, after a successful
refresh, writes the new pair back through the same handle before the
original request is resumed.

Refreshes are single-flight per session: concurrent calls that hit 401 with
the same stale access token wait on one lock, and only the first of them
calls the token endpoint.  The others pick up the pair it stored.
"""

from __future__ import annotations

import json
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Protocol

import requests

from .errors import AuthError
from .parser import body_excerpt
from .transport import Transport

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str

    def __repr__(self) -> str:
        return "TokenPair(access_token=***, refresh_token=***)"


class SessionHandle(Protocol):
    """
    Read/write access to the tokens of the active user session.

    A handle may also expose a ``refresh_lock`` attribute (any context
    manager, typically a ``threading.Lock``) that serializes refreshes of
    that session.  Handles without one share a lock keyed by object
    identity, so they need not be hashable or weak-referenceable.
    """

    def get_access_token(self) -> str | None:
        ...

    def get_refresh_token(self) -> str | None:
        ...

    def save_tokens(self, tokens: TokenPair) -> None:
        ...


class InMemorySession:
    """Process-local :class:`SessionHandle`, e.g. for scripts and tests."""

    def __init__(self, access_token: str | None = None, refresh_token: str | None = None):
        self._lock = threading.Lock()
        self.refresh_lock = threading.Lock()
        self._access_token = access_token
        self._refresh_token = refresh_token

    def get_access_token(self) -> str | None:
        with self._lock:
            return self._access_token

    def get_refresh_token(self) -> str | None:
        with self._lock:
            return self._refresh_token

    def save_tokens(self, tokens: TokenPair) -> None:
        with self._lock:
            self._access_token = tokens.access_token
            self._refresh_token = tokens.refresh_token


# ---------------------------------------------------------------------------
# Token endpoint exchange
# ---------------------------------------------------------------------------

def refresh_access_token(
    client_id: str,
    refresh_token: str,
    *,
    transport: Transport,
    token_url: str,
) -> TokenPair:
    """
    Exchange a refresh token for a new access/refresh token pair.

    Performs a single POST with a URL-encoded ``grant_type=refresh_token``
    body.  There is no retry here: a failed refresh is terminal for the
    calling request.

    Args:
        client_id: OAuth2 client id of the integration record.
        refresh_token: Refresh token currently held by the session.
        transport: Transport used for the exchange.
        token_url: Absolute URL of the token endpoint.

    Returns:
        New :class:`TokenPair`.

    Raises:
        AuthError: Transport fault, non-2xx status, or a body without
                   ``access_token`` / ``refresh_token``.
    """
    form = {
        "grant_type": "refresh_token",
        "refresh_token": refresh_token,
        "client_id": client_id,
    }
    headers = {
        "Content-Type": "application/x-www-form-urlencoded",
        "Accept": "application/json",
    }

    try:
        response = transport.send("POST", token_url, headers=headers, form=form)
    except requests.RequestException as exc:
        raise AuthError(f"Token refresh failed: {exc}", endpoint=token_url) from exc

    if not response.ok:
        raise AuthError(
            f"Token refresh rejected with HTTP {response.status}: "
            f"{body_excerpt(response.text, 200)}",
            endpoint=token_url,
        )

    try:
        payload = json.loads(response.text)
        return TokenPair(
            access_token=str(payload["access_token"]),
            refresh_token=str(payload["refresh_token"]),
        )
    except (ValueError, KeyError, TypeError) as exc:
        raise AuthError(
            f"Malformed token refresh response: {exc}",
            endpoint=token_url,
        ) from exc


# ---------------------------------------------------------------------------
# Single-flight refresh per session
# ---------------------------------------------------------------------------

# Fallback locks for handles without a ``refresh_lock`` attribute, keyed by
# id(session).  An entry lives only while some caller holds or waits on it,
# so a recycled id never inherits a lock from a dead session.
_fallback_locks: dict[int, list] = {}
_fallback_locks_guard = threading.Lock()


@contextmanager
def _refresh_lock_for(session: SessionHandle) -> Iterator[None]:
    own_lock = getattr(session, "refresh_lock", None)
    if own_lock is not None:
        with own_lock:
            yield
        return

    key = id(session)
    with _fallback_locks_guard:
        entry = _fallback_locks.setdefault(key, [threading.Lock(), 0])
        entry[1] += 1
    try:
        with entry[0]:
            yield
    finally:
        with _fallback_locks_guard:
            entry[1] -= 1
            if entry[1] == 0:
                del _fallback_locks[key]


def refresh_session_tokens(
    session: SessionHandle,
    stale_access_token: str,
    *,
    client_id: str | None,
    transport: Transport,
    token_url: str,
) -> TokenPair:
    """
    Refresh the session's tokens unless another call already did.

    Args:
        session: Session whose tokens are refreshed.
        stale_access_token: Access token that was rejected with 401.
        client_id: OAuth2 client id; ``None`` is an :class:`AuthError`.
        transport: Transport used for the exchange.
        token_url: Absolute URL of the token endpoint.

    Returns:
        The token pair now stored in the session.

    Raises:
        AuthError: Missing client id or refresh token, or a failed exchange.
    """
    with _refresh_lock_for(session):
        current_access = session.get_access_token()
        current_refresh = session.get_refresh_token()

        if current_access and current_refresh and current_access != stale_access_token:
            logger.info("Access token already refreshed by a concurrent request")
            return TokenPair(current_access, current_refresh)

        if not client_id:
            raise AuthError("No OAuth2 client id configured, unable to refresh token")
        if not current_refresh:
            raise AuthError("No refresh token in session, unable to refresh token")

        logger.info("NetSuite access token expired, refreshing")
        tokens = refresh_access_token(
            client_id,
            current_refresh,
            transport=transport,
            token_url=token_url,
        )
        session.save_tokens(tokens)
        return tokens
