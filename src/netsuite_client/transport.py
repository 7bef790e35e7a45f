"""
Single HTTP exchange over ``requests``.

The transport performs exactly one request per call and never retries;
retry, refresh and backoff decisions belong to the executor.  Low-level
faults surface as ``requests.RequestException`` subclasses.
"""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol

import requests

from .config import REQUEST_TIMEOUT_SECONDS


@dataclass(frozen=True)
class HttpResponse:
    """Status, headers and text body of one completed exchange."""

    status: int
    headers: Mapping[str, str] = field(default_factory=dict)
    text: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class Transport(Protocol):
    """Anything able to perform one HTTP exchange."""

    def send(
        self,
        method: str,
        url: str,
        *,
        headers: Mapping[str, str],
        json_body: Any = None,
        form: Mapping[str, str] | None = None,
    ) -> HttpResponse:
        ...


class RequestsTransport:
    """
    :class:`Transport` backed by a ``requests.Session``.

    ``requests.Session`` is not documented as thread-safe, so each worker
    thread of the batch scheduler gets its own session.  Every session is
    registered with the thread that created it; :meth:`close_idle_sessions`
    closes those whose thread has exited and :meth:`close` closes them all.
    """

    def __init__(self, timeout: tuple[int, int] | float = REQUEST_TIMEOUT_SECONDS):
        self.timeout = timeout
        self._local = threading.local()
        self._sessions: dict[threading.Thread, requests.Session] = {}
        self._sessions_lock = threading.Lock()

    @property
    def session(self) -> requests.Session:
        sess = getattr(self._local, "session", None)
        if sess is None:
            sess = requests.Session()
            self._local.session = sess
            with self._sessions_lock:
                self._sessions[threading.current_thread()] = sess
        return sess

    @property
    def open_sessions(self) -> int:
        with self._sessions_lock:
            return len(self._sessions)

    def send(
        self,
        method: str,
        url: str,
        *,
        headers: Mapping[str, str],
        json_body: Any = None,
        form: Mapping[str, str] | None = None,
    ) -> HttpResponse:
        data: Any = None
        if form is not None:
            data = dict(form)
        elif json_body is not None:
            data = json.dumps(json_body)

        resp = self.session.request(
            method,
            url,
            headers=dict(headers),
            data=data,
            timeout=self.timeout,
        )
        return HttpResponse(
            status=resp.status_code,
            headers=dict(resp.headers),
            text=resp.text or "",
        )

    def close_idle_sessions(self) -> int:
        """
        Close the sessions of threads that have exited.

        Returns:
            Number of sessions closed.
        """
        with self._sessions_lock:
            idle = [thread for thread in self._sessions if not thread.is_alive()]
            closing = [self._sessions.pop(thread) for thread in idle]
        for sess in closing:
            sess.close()
        return len(closing)

    def close(self) -> None:
        """Close every session created by this transport, on any thread."""
        with self._sessions_lock:
            closing = list(self._sessions.values())
            self._sessions.clear()
            self._local = threading.local()
        for sess in closing:
            sess.close()
