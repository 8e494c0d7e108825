"""
farmbook_batch -- Run a calculator over many workers, invoices or assets.

Each run resolves its rules once and isolates item failures.
"""

from farmbook_batch.runner import (
    run_depreciation_batch,
    run_payroll_batch,
    run_vat_batch,
)
from farmbook_batch.types import (
    BatchItemResult,
    BatchItemStatus,
    BatchJobStatus,
    BatchRunResult,
)

__all__ = [
    "BatchItemResult",
    "BatchItemStatus",
    "BatchJobStatus",
    "BatchRunResult",
    "run_depreciation_batch",
    "run_payroll_batch",
    "run_vat_batch",
]
