"""
Batch runners -- apply one calculator to many entities on one rule snapshot.

Contract:
    ``run_payroll_batch``, ``run_vat_batch`` and ``run_depreciation_batch``
    resolve the rules they need once, then process every item in order and
    return a ``BatchRunResult``.

Architecture: farmbook_batch.  Imports from farmbook_engines and
    farmbook_kernel only.  Holds no state between runs.

Invariants enforced:
    - One rule snapshot per batch: every item sees the same rule values.
    - Item isolation: a failing item never aborts the batch.  A
      FarmbookError is recorded under its own ``code``; any other
      exception under ``UNHANDLED_EXCEPTION``.
    - A depreciation period already posted is SKIPPED, not FAILED.
    - Configuration errors while resolving the snapshot propagate: no item
      can be computed without it.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable, Sequence
from datetime import date
from typing import Any, TypeVar
from uuid import uuid4

from farmbook_batch.types import (
    BatchItemResult,
    BatchItemStatus,
    BatchJobStatus,
    BatchRunResult,
)
from farmbook_engines.depreciation import Asset, depreciate
from farmbook_engines.insurance import InsuranceConfig
from farmbook_engines.payroll import WorkerPeriodFacts, compose_payroll
from farmbook_engines.pit import PITRates
from farmbook_engines.progressive import brackets_from_rules
from farmbook_engines.vat import VATInvoiceFacts, VATRules, evaluate_vat
from farmbook_kernel.domain.rule_registry import RuleRegistry
from farmbook_kernel.exceptions import FarmbookError
from farmbook_kernel.logging_config import LogContext, get_logger

logger = get_logger("batch.runner")

T = TypeVar("T")

# (status, result) for one processed item.
ItemOutcome = tuple[BatchItemStatus, Any]


def _run_items(
    batch_type: str,
    items: Iterable[T],
    key_of: Callable[[int, T], str],
    process: Callable[[T], ItemOutcome],
    period: str | None = None,
) -> BatchRunResult:
    batch_id = uuid4()
    start_time = time.monotonic()
    succeeded = 0
    failed = 0
    skipped = 0
    item_results: list[BatchItemResult] = []

    logger.info("batch_started", extra={
        "batch_id": str(batch_id),
        "batch_type": batch_type,
    })

    for index, item in enumerate(items):
        item_key = key_of(index, item)
        item_start = time.monotonic()
        with LogContext.bind(batch_id=str(batch_id), entity_id=item_key, period=period):
            try:
                status, result = process(item)
                item_result = BatchItemResult(
                    item_index=index,
                    item_key=item_key,
                    status=status,
                    result=result,
                    duration_ms=int((time.monotonic() - item_start) * 1000),
                )
                if status == BatchItemStatus.SKIPPED:
                    skipped += 1
                else:
                    succeeded += 1

            except FarmbookError as exc:
                failed += 1
                item_result = BatchItemResult(
                    item_index=index,
                    item_key=item_key,
                    status=BatchItemStatus.FAILED,
                    error_code=exc.code,
                    error_message=str(exc),
                    duration_ms=int((time.monotonic() - item_start) * 1000),
                )
                logger.warning("batch_item_failed", extra={
                    "item_key": item_key,
                    "error_code": exc.code,
                    "error_message": str(exc),
                })

            except Exception as exc:
                failed += 1
                item_result = BatchItemResult(
                    item_index=index,
                    item_key=item_key,
                    status=BatchItemStatus.FAILED,
                    error_code="UNHANDLED_EXCEPTION",
                    error_message=str(exc),
                    duration_ms=int((time.monotonic() - item_start) * 1000),
                )
                logger.exception("batch_item_unhandled_exception", extra={
                    "item_key": item_key,
                    "exception_type": type(exc).__name__,
                })

        item_results.append(item_result)

    # Determine final status
    if failed == 0:
        status = BatchJobStatus.COMPLETED
    elif succeeded == 0 and skipped == 0:
        status = BatchJobStatus.FAILED
    else:
        status = BatchJobStatus.PARTIALLY_COMPLETED

    total_duration = int((time.monotonic() - start_time) * 1000)
    logger.info("batch_completed", extra={
        "batch_id": str(batch_id),
        "batch_type": batch_type,
        "status": status.value,
        "succeeded": succeeded,
        "failed": failed,
        "skipped": skipped,
        "duration_ms": total_duration,
    })

    return BatchRunResult(
        batch_id=batch_id,
        batch_type=batch_type,
        status=status,
        total_items=len(item_results),
        succeeded=succeeded,
        failed=failed,
        skipped=skipped,
        item_results=tuple(item_results),
        duration_ms=total_duration,
    )


def run_payroll_batch(
    items: Sequence[WorkerPeriodFacts],
    rules: RuleRegistry,
    as_of: date,
) -> BatchRunResult:
    """Compose payroll for every worker-period with one rule snapshot."""
    config = InsuranceConfig.from_rules(rules, as_of)
    brackets = brackets_from_rules(rules, as_of)
    pit_rates = (
        PITRates.from_rules(rules, as_of)
        if any(f.pit_method_facts is not None for f in items)
        else None
    )

    def process(facts: WorkerPeriodFacts) -> ItemOutcome:
        return BatchItemStatus.SUCCEEDED, compose_payroll(facts, config, brackets, pit_rates)

    return _run_items(
        "payroll",
        items,
        lambda i, f: f.worker_id or f"worker-{i}",
        process,
    )


def run_vat_batch(
    invoices: Sequence[VATInvoiceFacts],
    rules: RuleRegistry,
    as_of: date,
) -> BatchRunResult:
    """
    Validate every invoice against the VAT rules in effect on ``as_of``.

    A rejected deduction is a SUCCEEDED item: the validation ran and its
    verdict is in the result.  Only malformed facts fail an item.
    """
    vat_rules = VATRules.from_rules(rules, as_of)

    def process(invoice: VATInvoiceFacts) -> ItemOutcome:
        return BatchItemStatus.SUCCEEDED, evaluate_vat(invoice, as_of, vat_rules)

    return _run_items(
        "vat",
        invoices,
        lambda i, inv: inv.invoice_id or f"invoice-{i}",
        process,
    )


def run_depreciation_batch(
    assets: Sequence[Asset],
    period: str,
    rules: RuleRegistry,
) -> BatchRunResult:
    """Post ``period`` against every asset; reposts are SKIPPED."""

    def process(asset: Asset) -> ItemOutcome:
        posting = depreciate(asset, period, rules)
        if posting.already_posted:
            return BatchItemStatus.SKIPPED, posting
        return BatchItemStatus.SUCCEEDED, posting

    return _run_items(
        "depreciation",
        assets,
        lambda i, a: a.asset_id or f"asset-{i}",
        process,
        period=period,
    )
