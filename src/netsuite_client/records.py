"""
Sales-order and SuiteQL helpers built on the request engine.

These are thin callers: every network exchange goes through
:func:`executor.single_request` or :func:`batch.batch_request`.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Mapping, Sequence
from urllib.parse import urlparse

from .batch import batch_request
from .config import RECORD_BASE_PATH, SERIAL_NUMBER_FIELD, SUITEQL_HEADERS, SUITEQL_PATH
from .executor import RequestExecutor, RequestSpec, single_request

logger = logging.getLogger(__name__)

ITEM_DETAIL_CONCURRENCY = 5
ITEM_DETAIL_DELAY_SECONDS = 0.1


def normalize_query(query: str) -> str:
    """Collapse all whitespace runs in a SuiteQL statement to single spaces."""
    return re.sub(r"\s+", " ", query).strip()


def quote_literal(value: str) -> str:
    """Quote a string literal for SuiteQL, doubling embedded single quotes."""
    return "'" + str(value).replace("'", "''") + "'"


def run_suiteql(
    query: str,
    executor: RequestExecutor,
    retry_strategy: str = "aggressive",
) -> dict[str, Any]:
    """
    Run a SuiteQL query and return the decoded result page.

    Args:
        query: SuiteQL statement; whitespace is normalized before sending.
        executor: Executor bound to the active session.
        retry_strategy: Retry strategy for the request.

    Returns:
        Result page dict (``items``, ``count``, ``hasMore``, ...).
    """
    return single_request(
        SUITEQL_PATH,
        "POST",
        body={"q": normalize_query(query)},
        headers=SUITEQL_HEADERS,
        retry_strategy=retry_strategy,
        executor=executor,
    )


def find_sales_order_id(so_number: str, executor: RequestExecutor) -> str | None:
    """
    Look up a sales order's internal id by its document number.

    Returns:
        Internal id as a string, or ``None`` when no sales order matches.
    """
    query = f"""
        SELECT
            Transaction.tranid,
            Transaction.id,
            Transaction.trandate
        FROM
            Transaction
        WHERE
            Transaction.type = 'SalesOrd'
        AND Transaction.tranid = {quote_literal(so_number)}
    """
    page = run_suiteql(query, executor)
    items = page.get("items") or []
    if not items:
        logger.info("No sales order found for number %s", so_number)
        return None
    return str(items[0]["id"])


def fetch_sales_order(so_id: str, executor: RequestExecutor) -> dict[str, Any]:
    """Fetch one sales-order record by internal id (``standard`` retries)."""
    record = single_request(
        f"{RECORD_BASE_PATH}/salesorder/{so_id}",
        "GET",
        retry_strategy="standard",
        executor=executor,
    )
    logger.info("Retrieved sales order %s", so_id)
    return record


def _item_detail_path(item: Mapping[str, Any]) -> str:
    links = item.get("links") or []
    href = links[0].get("href") if links else None
    path = urlparse(href).path if href else ""
    if not path:
        raise ValueError(f"Invalid link for sales order item: {links[:1]}")
    return path


def fetch_sales_order_items(so_id: str, executor: RequestExecutor) -> list[dict[str, Any]]:
    """
    Fetch every line item of a sales order with full details.

    The item sublist only carries links; each link is fetched in a
    concurrent batch and the details are returned sorted by ``line``.

    Raises:
        ValueError: A sublist entry has no usable link.
    """
    sublist = single_request(
        f"{RECORD_BASE_PATH}/salesOrder/{so_id}/item",
        "GET",
        retry_strategy="aggressive",
        executor=executor,
    )
    entries = sublist.get("items") or []
    logger.info("Found %d items for sales order %s", len(entries), so_id)
    if not entries:
        return []

    detail_requests = [RequestSpec(endpoint=_item_detail_path(entry)) for entry in entries]
    details = batch_request(
        detail_requests,
        concurrency=ITEM_DETAIL_CONCURRENCY,
        inter_batch_delay=ITEM_DETAIL_DELAY_SECONDS,
        retry_strategy="aggressive",
        executor=executor,
    )
    return sorted(details, key=lambda detail: detail.get("line", 0))


def submit_serial_numbers(
    so_id: str,
    serial_numbers: Sequence[Mapping[str, Any]],
    executor: RequestExecutor,
) -> dict[str, Any]:
    """
    Write serial numbers onto sales-order line items.

    Args:
        so_id: Internal id of the sales order.
        serial_numbers: Entries of ``{'item_line_id': int,
                        'serial_numbers': list[str]}``.
        executor: Executor bound to the active session.

    Returns:
        ``{'success': True, 'processed': n, 'sales_order_id': so_id}``.

    Raises:
        ValueError: Missing sales order id or no serial-number entries.
    """
    if not so_id or not serial_numbers:
        raise ValueError("Missing sales order id or serial numbers")

    patches = [
        RequestSpec(
            endpoint=f"{RECORD_BASE_PATH}/salesorder/{so_id}/item/{entry['item_line_id']}",
            method="PATCH",
            body={SERIAL_NUMBER_FIELD: "\n".join(entry["serial_numbers"])},
        )
        for entry in serial_numbers
    ]

    logger.info("Updating serial numbers on %d lines of sales order %s", len(patches), so_id)
    results = batch_request(patches, retry_strategy="standard", executor=executor)
    return {"success": True, "processed": len(results), "sales_order_id": so_id}
