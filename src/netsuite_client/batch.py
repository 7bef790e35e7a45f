"""
Batch scheduling: execution-mode selection, windowed and sequential runs,
and the CSV batch ledger.

Execution rules:
- Any PATCH in the batch forces strictly sequential execution.  Line-item
  PATCHes against one parent record must not race: NetSuite offers no
  compare-and-swap across lines sharing a parent.
- Otherwise items run in fixed windows of ``concurrency`` items; a window
  is always allowed to settle before a failure is reported.
- Results are returned in input order; the first unrecovered failure aborts
  the run and nothing after it is started.
"""

from __future__ import annotations

import enum
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Any, Iterable, Mapping, Sequence

import pandas as pd

from .config import (
    BATCH_LEDGER_PATH,
    CONCURRENT_DELAY_SECONDS,
    DEFAULT_CONCURRENCY,
    DEFAULT_RETRY_STRATEGY,
    SEQUENTIAL_DELAY_SECONDS,
)
from .errors import NetSuiteError
from .executor import RequestExecutor, RequestSpec
from .retry import RetryPolicy, get_retry_policy

logger = logging.getLogger(__name__)

# Ledger outcome values
SUCCEEDED = "succeeded"
FAILED = "failed"
DISCARDED = "discarded"
NOT_STARTED = "not_started"

LEDGER_COLUMNS: list[str] = [
    "position",
    "method",
    "endpoint",
    "outcome",
    "error_class",
    "status",
]


class ExecutionMode(enum.Enum):
    CONCURRENT = "concurrent"
    SEQUENTIAL = "sequential"


def select_execution_mode(items: Iterable[RequestSpec]) -> ExecutionMode:
    """
    Classify a batch before it runs.

    Args:
        items: Request specs of the batch.

    Returns:
        ``SEQUENTIAL`` if any item is a PATCH, else ``CONCURRENT``.
    """
    if any(item.method == "PATCH" for item in items):
        return ExecutionMode.SEQUENTIAL
    return ExecutionMode.CONCURRENT


def _coerce_items(items: Iterable[RequestSpec | Mapping[str, Any]]) -> list[RequestSpec]:
    return [
        item if isinstance(item, RequestSpec) else RequestSpec.from_mapping(item)
        for item in items
    ]


def _attach_position(exc: BaseException, index: int) -> None:
    if isinstance(exc, NetSuiteError):
        exc.item_index = index


# ---------------------------------------------------------------------------
# Execution modes
# ---------------------------------------------------------------------------

def _run_sequential(
    specs: Sequence[RequestSpec],
    executor: RequestExecutor,
    policy: RetryPolicy,
    delay: float,
    outcomes: list[str],
    failures: dict[int, BaseException],
) -> list[Any]:
    results: list[Any] = []
    total = len(specs)

    for i, spec in enumerate(specs):
        logger.info("Processing sequential request %d/%d: %s %s", i + 1, total, spec.method, spec.endpoint)
        try:
            result = executor.execute(spec, policy)
        except Exception as exc:
            outcomes[i] = FAILED
            failures[i] = exc
            _attach_position(exc, i)
            logger.error("Sequential request %d/%d failed: %s %s: %s", i + 1, total, spec.method, spec.endpoint, exc)
            raise

        outcomes[i] = SUCCEEDED
        results.append(result)

        # Delay between requests, not after the last one
        if i < total - 1 and delay > 0:
            executor.sleep(delay)

    return results


def _run_concurrent(
    specs: Sequence[RequestSpec],
    executor: RequestExecutor,
    policy: RetryPolicy,
    concurrency: int,
    delay: float,
    outcomes: list[str],
    failures: dict[int, BaseException],
) -> list[Any]:
    results: list[Any] = []
    total = len(specs)

    try:
        with ThreadPoolExecutor(max_workers=concurrency, thread_name_prefix="netsuite-batch") as pool:
            for start in range(0, total, concurrency):
                window = range(start, min(start + concurrency, total))
                futures: list[Future] = [
                    pool.submit(executor.execute, specs[i], policy) for i in window
                ]

                window_results: list[Any] = []
                first_failure: BaseException | None = None

                # Settle every future of the window before deciding anything
                for i, future in zip(window, futures):
                    exc = future.exception()
                    if exc is None:
                        outcomes[i] = SUCCEEDED
                        window_results.append(future.result())
                        logger.debug("Request %d/%d succeeded: %s", i + 1, total, specs[i].endpoint)
                        continue

                    outcomes[i] = FAILED
                    failures[i] = exc
                    _attach_position(exc, i)
                    logger.error(
                        "Request %d/%d failed: %s %s: %s",
                        i + 1, total, specs[i].method, specs[i].endpoint, exc,
                    )
                    if first_failure is None:
                        first_failure = exc

                if first_failure is not None:
                    for i in window:
                        if outcomes[i] == SUCCEEDED:
                            outcomes[i] = DISCARDED
                    raise first_failure

                results.extend(window_results)

                if window.stop < total and delay > 0:
                    executor.sleep(delay)
    finally:
        # Workers are joined once the pool exits; their HTTP sessions are idle
        executor.release_idle_connections()

    return results


def run_batch(
    items: Sequence[RequestSpec | Mapping[str, Any]],
    executor: RequestExecutor,
    *,
    concurrency: int | None = None,
    inter_batch_delay: float | None = None,
    policy: str | RetryPolicy = DEFAULT_RETRY_STRATEGY,
    ledger_path: Path | None = None,
) -> list[Any]:
    """
    Execute an ordered list of requests and return their payloads in order.

    Args:
        items: Request specs, or mappings with ``endpoint``, ``method`` and
               optional ``body`` / ``headers``.
        executor: Executor bound to the active session.
        concurrency: Window size for concurrent mode (ignored when the
                     batch is forced sequential).
        inter_batch_delay: Seconds between windows (concurrent) or between
                           items (sequential); mode default when ``None``.
        policy: Retry strategy name or policy for every item.
        ledger_path: If given, a CSV ledger of the run is written there,
                     whether it succeeds or aborts.

    Returns:
        List of decoded payloads, one per item, in input order.

    Raises:
        NetSuiteError: The first unrecovered item failure, with
                       ``item_index`` set to the item's position.
        ValueError: ``concurrency < 1`` or a negative delay.
    """
    specs = _coerce_items(items)
    concurrency = DEFAULT_CONCURRENCY if concurrency is None else concurrency
    if concurrency < 1:
        raise ValueError(f"concurrency must be >= 1, got {concurrency}")
    if inter_batch_delay is not None and inter_batch_delay < 0:
        raise ValueError(f"inter_batch_delay must be >= 0, got {inter_batch_delay}")

    resolved_policy = get_retry_policy(policy)
    if not specs:
        return []

    mode = select_execution_mode(specs)
    outcomes = [NOT_STARTED] * len(specs)
    failures: dict[int, BaseException] = {}

    try:
        if mode is ExecutionMode.SEQUENTIAL:
            delay = SEQUENTIAL_DELAY_SECONDS if inter_batch_delay is None else inter_batch_delay
            logger.info("Detected PATCH operations, running %d requests sequentially", len(specs))
            results = _run_sequential(specs, executor, resolved_policy, delay, outcomes, failures)
        else:
            delay = CONCURRENT_DELAY_SECONDS if inter_batch_delay is None else inter_batch_delay
            logger.info("Running %d requests in windows of %d", len(specs), concurrency)
            results = _run_concurrent(specs, executor, resolved_policy, concurrency, delay, outcomes, failures)
    finally:
        if ledger_path is not None:
            write_batch_ledger(specs, outcomes, failures, log_path=ledger_path)

    return results


def batch_request(
    requests: Sequence[RequestSpec | Mapping[str, Any]],
    concurrency: int | None = None,
    inter_batch_delay: float | None = None,
    retry_strategy: str | RetryPolicy = DEFAULT_RETRY_STRATEGY,
    *,
    executor: RequestExecutor,
    ledger_path: Path | None = None,
) -> list[Any]:
    """Caller entry point for :func:`run_batch` using a retry strategy name."""
    return run_batch(
        requests,
        executor,
        concurrency=concurrency,
        inter_batch_delay=inter_batch_delay,
        policy=retry_strategy,
        ledger_path=ledger_path,
    )


# ---------------------------------------------------------------------------
# Batch ledger
# ---------------------------------------------------------------------------

def write_batch_ledger(
    items: Sequence[RequestSpec],
    outcomes: Sequence[str],
    failures: Mapping[int, BaseException] | None = None,
    log_path: Path = BATCH_LEDGER_PATH,
) -> pd.DataFrame:
    """
    Write one CSV row per batch item describing what happened to it.

    The file is overwritten: a ledger describes exactly one run.

    Args:
        items: Request specs in input order.
        outcomes: Per-item outcome (``succeeded``, ``failed``, ``discarded``,
                  ``not_started``).
        failures: Position → exception for failed items.
        log_path: Destination CSV path.

    Returns:
        The ledger DataFrame that was written.
    """
    failures = failures or {}
    rows = []
    for position, (spec, outcome) in enumerate(zip(items, outcomes)):
        exc = failures.get(position)
        rows.append({
            "position": position,
            "method": spec.method,
            "endpoint": spec.endpoint,
            "outcome": outcome,
            "error_class": type(exc).__name__ if exc is not None else None,
            "status": getattr(exc, "status", None) if exc is not None else None,
        })

    log_path.parent.mkdir(parents=True, exist_ok=True)
    ledger_df = pd.DataFrame(rows, columns=LEDGER_COLUMNS)
    ledger_df.to_csv(log_path, index=False)
    logger.info("Batch ledger (%d items) written to %s", len(rows), log_path)
    return ledger_df


def summarize_batch_ledger(log_path: Path = BATCH_LEDGER_PATH) -> dict[str, int]:
    """
    Report per-outcome counts from a batch ledger CSV.

    Args:
        log_path: Path to the ledger written by :func:`write_batch_ledger`.

    Returns:
        Dict mapping outcome → count, plus ``total``.  Empty dict if the
        ledger does not exist.
    """
    if not log_path.exists():
        print(f"No batch ledger found at {log_path}")
        return {}

    df = pd.read_csv(log_path)
    counts = {outcome: int((df["outcome"] == outcome).sum())
              for outcome in (SUCCEEDED, FAILED, DISCARDED, NOT_STARTED)}
    counts["total"] = len(df)

    sep = "=" * 60
    print(f"\n{sep}")
    print("BATCH LEDGER")
    print(f"  Items:        {counts['total']:,}")
    print(f"  Succeeded:    {counts[SUCCEEDED]:,}")
    print(f"  Failed:       {counts[FAILED]:,}")
    print(f"  Discarded:    {counts[DISCARDED]:,}")
    print(f"  Not started:  {counts[NOT_STARTED]:,}")
    print(f"{sep}\n")

    return counts
