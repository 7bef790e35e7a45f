"""
Unit tests for src/netsuite_client/batch.py.

Covers the execution-mode pre-pass, strict sequential execution for
batches containing PATCH, windowed concurrent execution with input-order
results, abort semantics in both modes (positional context, no later
items started, failure class preserved), argument validation, and the CSV
batch ledger, plus closing of worker-thread HTTP sessions.
"""

from __future__ import annotations

import threading
import time

import pandas as pd
import pytest
import requests

from src.netsuite_client.batch import (
    ExecutionMode,
    batch_request,
    run_batch,
    select_execution_mode,
    summarize_batch_ledger,
    write_batch_ledger,
)
from src.netsuite_client.config import CONCURRENT_DELAY_SECONDS, SEQUENTIAL_DELAY_SECONDS
from src.netsuite_client.errors import RemoteError, ServerError
from src.netsuite_client.executor import RequestSpec
from src.netsuite_client.transport import RequestsTransport

from .conftest import FakeTransport, make_response


def _item_index(url: str) -> int:
    return int(url.rsplit("/", 1)[-1])


def _gets(n: int) -> list[RequestSpec]:
    return [RequestSpec(f"/services/rest/record/v1/items/{i}") for i in range(n)]


class DummyResponse:
    def __init__(self, status_code=200, text="", headers=None):
        self.status_code = status_code
        self.text = text
        self.headers = headers or {}


class InFlightTracker:
    """Handler that answers ``{"index": i}`` and records peak parallelism."""

    def __init__(self, pause: float = 0.02):
        self.pause = pause
        self.in_flight = 0
        self.peak = 0
        self._lock = threading.Lock()

    def __call__(self, method, url, headers, json_body):
        with self._lock:
            self.in_flight += 1
            self.peak = max(self.peak, self.in_flight)
        time.sleep(self.pause)
        with self._lock:
            self.in_flight -= 1
        return make_response(200, {"index": _item_index(url), "method": method})


# ---------------------------------------------------------------------------
# Mode selection
# ---------------------------------------------------------------------------

class TestSelectExecutionMode:

    def test_all_reads_are_concurrent(self):
        assert select_execution_mode(_gets(3)) is ExecutionMode.CONCURRENT

    def test_any_patch_forces_sequential(self):
        items = [RequestSpec("/a"), RequestSpec("/b", "PATCH", {"x": 1})]
        assert select_execution_mode(items) is ExecutionMode.SEQUENTIAL

    def test_other_writes_stay_concurrent(self):
        items = [RequestSpec("/a", "POST", {}), RequestSpec("/b", "PUT", {}), RequestSpec("/c", "DELETE")]
        assert select_execution_mode(items) is ExecutionMode.CONCURRENT


# ---------------------------------------------------------------------------
# Sequential mode
# ---------------------------------------------------------------------------

class TestSequential:

    def test_get_and_patch_never_overlap(self, make_executor, sleeps):
        tracker = InFlightTracker()
        items = [
            RequestSpec("/services/rest/record/v1/salesorder/9/item/0"),
            RequestSpec("/services/rest/record/v1/salesorder/9/item/1", "PATCH", {"memo": "x"}),
        ]
        results = run_batch(items, make_executor(FakeTransport(handler=tracker)), concurrency=10)

        assert tracker.peak == 1
        assert [r["index"] for r in results] == [0, 1]
        assert sleeps == [SEQUENTIAL_DELAY_SECONDS]

    def test_failure_aborts_before_next_item(self, make_executor):
        transport = FakeTransport([
            make_response(204),
            make_response(404, {"title": "line not found"}),
        ])
        items = [RequestSpec(f"/line/{i}", "PATCH", {"v": i}) for i in range(3)]

        with pytest.raises(RemoteError) as excinfo:
            run_batch(items, make_executor(transport))

        assert excinfo.value.item_index == 1
        assert "batch item 1" in str(excinfo.value)
        assert [c["url"].rsplit("/", 1)[-1] for c in transport.calls] == ["0", "1"]

    def test_custom_delay(self, make_executor, sleeps):
        transport = FakeTransport([make_response(204)] * 3)
        items = [RequestSpec(f"/line/{i}", "PATCH", {}) for i in range(3)]
        run_batch(items, make_executor(transport), inter_batch_delay=1.5)
        assert sleeps == [1.5, 1.5]


# ---------------------------------------------------------------------------
# Concurrent mode
# ---------------------------------------------------------------------------

class TestConcurrent:

    def test_results_follow_input_order(self, make_executor, sleeps):
        completed: list[int] = []
        item_three_done = threading.Event()

        def handler(method, url, headers, json_body):
            index = _item_index(url)
            if index == 2:
                # Held back until its window sibling has finished
                item_three_done.wait(timeout=5)
            completed.append(index)
            if index == 3:
                item_three_done.set()
            return make_response(200, {"index": index})

        results = run_batch(_gets(5), make_executor(FakeTransport(handler=handler)), concurrency=2)

        assert [r["index"] for r in results] == [0, 1, 2, 3, 4]
        assert completed.index(3) < completed.index(2)
        assert sleeps == [CONCURRENT_DELAY_SECONDS, CONCURRENT_DELAY_SECONDS]

    def test_window_runs_in_parallel(self, make_executor):
        tracker = InFlightTracker(pause=0.1)
        run_batch(_gets(3), make_executor(FakeTransport(handler=tracker)), concurrency=3)
        assert tracker.peak == 3

    def test_window_size_bounds_parallelism(self, make_executor):
        tracker = InFlightTracker(pause=0.05)
        run_batch(_gets(6), make_executor(FakeTransport(handler=tracker)), concurrency=2)
        assert tracker.peak <= 2

    def test_failure_aborts_after_window_settles(self, make_executor):
        requested: list[int] = []

        def handler(method, url, headers, json_body):
            index = _item_index(url)
            requested.append(index)
            if index == 2:
                return make_response(404, {"title": "missing"})
            return make_response(200, {"index": index})

        with pytest.raises(RemoteError) as excinfo:
            run_batch(_gets(6), make_executor(FakeTransport(handler=handler)), concurrency=2)

        assert excinfo.value.item_index == 2
        assert sorted(requested) == [0, 1, 2, 3]

    def test_lowest_failing_index_is_reported(self, make_executor):
        def handler(method, url, headers, json_body):
            if _item_index(url) == 0:
                time.sleep(0.05)
                return make_response(500)
            return make_response(404)

        # Item 1 fails first in wall-clock time; item 0 still wins
        with pytest.raises(ServerError) as excinfo:
            run_batch(_gets(2), make_executor(FakeTransport(handler=handler)), concurrency=2,
                      policy="aggressive")
        assert excinfo.value.item_index == 0
        assert excinfo.value.status == 500

    def test_failure_class_preserved(self, make_executor):
        transport = FakeTransport(handler=lambda *a: make_response(503))
        with pytest.raises(ServerError) as excinfo:
            run_batch(_gets(1), make_executor(transport), policy="aggressive")
        assert excinfo.value.status == 503
        assert excinfo.value.item_index == 0


# ---------------------------------------------------------------------------
# HTTP session cleanup
# ---------------------------------------------------------------------------

class TestWorkerSessions:
    """Worker-thread HTTP sessions are closed when a concurrent run ends."""

    @pytest.fixture
    def wire(self, monkeypatch):
        record = {"closed": []}

        def fake_request(session, method, url, **kwargs):
            status = 404 if url.endswith("/items/1") else 200
            return DummyResponse(status, "{}")

        monkeypatch.setattr(requests.Session, "request", fake_request)
        monkeypatch.setattr(requests.Session, "close", lambda session: record["closed"].append(session))
        return record

    def test_sessions_closed_after_success(self, make_executor, wire):
        transport = RequestsTransport()
        run_batch(_gets(4), make_executor(transport), concurrency=2)

        assert wire["closed"]
        assert transport.open_sessions == 0

    def test_sessions_closed_after_abort(self, make_executor, wire):
        transport = RequestsTransport()
        with pytest.raises(RemoteError):
            run_batch(_gets(4), make_executor(transport), concurrency=2)

        assert wire["closed"]
        assert transport.open_sessions == 0

    def test_executor_close(self, make_executor, wire):
        transport = RequestsTransport()
        executor = make_executor(transport)
        executor.execute(RequestSpec("/services/rest/record/v1/items/0"))
        assert transport.open_sessions == 1

        executor.close()
        assert transport.open_sessions == 0
        assert len(wire["closed"]) == 1


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------

class TestInputs:

    def test_empty_batch(self, make_executor):
        assert run_batch([], make_executor(FakeTransport())) == []

    @pytest.mark.parametrize("concurrency", [0, -1])
    def test_invalid_concurrency(self, make_executor, concurrency):
        with pytest.raises(ValueError, match="concurrency"):
            run_batch(_gets(1), make_executor(FakeTransport()), concurrency=concurrency)

    def test_negative_delay(self, make_executor):
        with pytest.raises(ValueError, match="inter_batch_delay"):
            run_batch(_gets(1), make_executor(FakeTransport()), inter_batch_delay=-1)

    def test_mappings_accepted(self, make_executor):
        transport = FakeTransport(handler=InFlightTracker(pause=0))
        results = batch_request(
            [{"endpoint": "/x/0"}, {"endpoint": "/x/1", "method": "post", "body": {"a": 1}}],
            retry_strategy="aggressive",
            executor=make_executor(transport),
        )
        assert [r["method"] for r in results] == ["GET", "POST"]

    def test_unknown_strategy(self, make_executor):
        with pytest.raises(ValueError, match="Unknown retry strategy"):
            batch_request(_gets(1), retry_strategy="eventually", executor=make_executor(FakeTransport()))


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------

class TestBatchLedger:

    def test_ledger_written_on_abort(self, make_executor, tmp_path):
        def handler(method, url, headers, json_body):
            if _item_index(url) == 1:
                return make_response(404)
            return make_response(200, {})

        ledger = tmp_path / "ledger.csv"
        with pytest.raises(RemoteError):
            run_batch(_gets(5), make_executor(FakeTransport(handler=handler)),
                      concurrency=2, ledger_path=ledger)

        df = pd.read_csv(ledger)
        assert list(df["outcome"]) == ["discarded", "failed", "not_started", "not_started", "not_started"]
        assert df.loc[1, "error_class"] == "RemoteError"
        assert int(df.loc[1, "status"]) == 404

    def test_ledger_written_on_success(self, make_executor, tmp_path):
        ledger = tmp_path / "logs" / "ledger.csv"
        run_batch(_gets(3), make_executor(FakeTransport(handler=InFlightTracker(pause=0))),
                  ledger_path=ledger)
        assert list(pd.read_csv(ledger)["outcome"]) == ["succeeded"] * 3

    def test_summary_counts(self, tmp_path, capsys):
        ledger = tmp_path / "ledger.csv"
        items = _gets(4)
        write_batch_ledger(
            items,
            ["succeeded", "failed", "discarded", "not_started"],
            {1: RemoteError("boom", status=400)},
            log_path=ledger,
        )
        counts = summarize_batch_ledger(ledger)
        assert counts == {"succeeded": 1, "failed": 1, "discarded": 1, "not_started": 1, "total": 4}
        assert "BATCH LEDGER" in capsys.readouterr().out

    def test_summary_missing_ledger(self, tmp_path):
        assert summarize_batch_ledger(tmp_path / "absent.csv") == {}
