"""
farmbook_batch.types -- Pure frozen dataclasses for batch runs.

ZERO I/O.  Frozen dataclasses with enum status fields and tuples for
immutable collections.

Invariants enforced:
    - All DTOs are frozen dataclasses (immutable).
    - ``succeeded + failed + skipped == total_items`` on every run result.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any
from uuid import UUID


# =============================================================================
# Status enums
# =============================================================================


class BatchJobStatus(str, Enum):
    """Run-level outcome."""

    COMPLETED = "completed"  # No item failed
    FAILED = "failed"  # Every item failed
    PARTIALLY_COMPLETED = "partially_completed"  # Some items failed


class BatchItemStatus(str, Enum):
    """Per-item outcome within a batch run."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"  # Already processed (e.g., depreciation repost)


# =============================================================================
# Result DTOs
# =============================================================================


@dataclass(frozen=True)
class BatchItemResult:
    """Immutable result of processing a single batch item.

    A failed item carries the ``code`` of the FarmbookError that stopped
    it, or ``UNHANDLED_EXCEPTION`` for anything else.
    """

    item_index: int  # 0-indexed position in the batch
    item_key: str  # Business identifier (worker_id, invoice_id, asset_id)
    status: BatchItemStatus
    error_code: str | None = None
    error_message: str | None = None
    result: Any = None  # PayrollResult, VATValidationResult, DepreciationPosting
    duration_ms: int = 0


@dataclass(frozen=True)
class BatchRunResult:
    """Immutable result of one batch run."""

    batch_id: UUID
    batch_type: str
    status: BatchJobStatus
    total_items: int
    succeeded: int
    failed: int
    skipped: int
    item_results: tuple[BatchItemResult, ...] = ()
    duration_ms: int = 0

    @property
    def results(self) -> tuple[Any, ...]:
        """Result objects of the succeeded items, in batch order."""
        return tuple(
            r.result for r in self.item_results if r.status == BatchItemStatus.SUCCEEDED
        )

    @property
    def failures(self) -> tuple[BatchItemResult, ...]:
        return tuple(r for r in self.item_results if r.status == BatchItemStatus.FAILED)
