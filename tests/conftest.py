"""
Shared pytest fixtures for the NetSuite request engine tests.

No test touches the network.  ``FakeTransport`` stands in for
``RequestsTransport``: it answers from a scripted queue (one entry per API
call) or from a handler function, and records every call it receives.
Token-endpoint calls are answered from a separate queue so that refresh
behaviour can be asserted independently of the API calls.
"""

from __future__ import annotations

import json
import random
import threading
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable

import pytest
from requests.structures import CaseInsensitiveDict

from src.netsuite_client.auth import InMemorySession
from src.netsuite_client.config import TOKEN_PATH
from src.netsuite_client.executor import RequestExecutor
from src.netsuite_client.transport import HttpResponse

BASE_URL = "https://1234567-sb1.suitetalk.api.netsuite.com"
CLIENT_ID = "client-123"


# ---------------------------------------------------------------------------
# Response helpers
# ---------------------------------------------------------------------------

def make_response(
    status: int = 200,
    body: Any = None,
    headers: dict[str, str] | None = None,
) -> HttpResponse:
    """Build an HttpResponse; dict/list bodies are JSON-encoded, str kept as-is."""
    if body is None:
        text = ""
    elif isinstance(body, str):
        text = body
    else:
        text = json.dumps(body)
    return HttpResponse(status=status, headers=headers or {}, text=text)


def token_response(access: str = "access-2", refresh: str = "refresh-2") -> HttpResponse:
    return make_response(200, {
        "access_token": access,
        "refresh_token": refresh,
        "expires_in": 3600,
        "token_type": "bearer",
    })


# ---------------------------------------------------------------------------
# Fake transport
# ---------------------------------------------------------------------------

class FakeTransport:
    """
    Scripted stand-in for RequestsTransport.

    Script entries may be an HttpResponse (returned) or an exception
    instance (raised).  A ``handler(method, url, headers, json_body)``
    replaces the API script entirely when given.
    Recorded headers are case-insensitive, as they are on the wire.
    """

    def __init__(
        self,
        script: list | None = None,
        *,
        handler: Callable[..., HttpResponse] | None = None,
        token_script: list | None = None,
    ):
        self.script = deque(script or [])
        self.token_script = deque(token_script or [])
        self.handler = handler
        self.calls: list[dict] = []
        self._lock = threading.Lock()

    def send(self, method, url, *, headers, json_body=None, form=None):
        call = {
            "method": method,
            "url": url,
            "headers": CaseInsensitiveDict(headers),
            "json_body": json_body,
            "form": dict(form) if form is not None else None,
        }
        with self._lock:
            self.calls.append(call)
            if url.endswith(TOKEN_PATH):
                entry = self.token_script.popleft()
            elif self.handler is None:
                entry = self.script.popleft()
            else:
                entry = None

        if entry is None:
            entry = self.handler(method, url, call["headers"], json_body)
        if isinstance(entry, BaseException):
            raise entry
        return entry

    @property
    def api_calls(self) -> list[dict]:
        return [c for c in self.calls if not c["url"].endswith(TOKEN_PATH)]

    @property
    def token_calls(self) -> list[dict]:
        return [c for c in self.calls if c["url"].endswith(TOKEN_PATH)]


# ---------------------------------------------------------------------------
# Session handles without an own refresh lock
# ---------------------------------------------------------------------------

@dataclass
class RecordSession:
    """Plain dataclass handle: unhashable (``__hash__`` is None)."""

    access_token: str | None = None
    refresh_token: str | None = None

    def get_access_token(self):
        return self.access_token

    def get_refresh_token(self):
        return self.refresh_token

    def save_tokens(self, tokens):
        self.access_token = tokens.access_token
        self.refresh_token = tokens.refresh_token


class SlottedSession:
    """``__slots__`` handle: cannot be weak-referenced."""

    __slots__ = ("access_token", "refresh_token")

    def __init__(self, access_token=None, refresh_token=None):
        self.access_token = access_token
        self.refresh_token = refresh_token

    def get_access_token(self):
        return self.access_token

    def get_refresh_token(self):
        return self.refresh_token

    def save_tokens(self, tokens):
        self.access_token = tokens.access_token
        self.refresh_token = tokens.refresh_token


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def session():
    """Session holding a valid-looking token pair."""
    return InMemorySession(access_token="access-1", refresh_token="refresh-1")


@pytest.fixture
def sleeps():
    """Records every delay the executor or scheduler asks for."""
    return []


@pytest.fixture
def make_executor(session, sleeps):
    """Factory building a RequestExecutor around a FakeTransport."""

    def _make(transport: FakeTransport, for_session=None, **overrides) -> RequestExecutor:
        kwargs = {
            "transport": transport,
            "base_url": BASE_URL,
            "client_id": CLIENT_ID,
            "sleep": sleeps.append,
            "rng": random.Random(7),
        }
        kwargs.update(overrides)
        return RequestExecutor(for_session if for_session is not None else session, **kwargs)

    return _make
