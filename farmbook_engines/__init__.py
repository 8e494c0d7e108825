"""
Module: farmbook_engines
Responsibility:
    Package entrypoint that re-exports the public symbols of the pure tax
    and payroll calculators.  This is the canonical import surface for
    callers such as ``farmbook_batch``.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import farmbook_kernel and sibling engine modules.
    MUST NOT import farmbook_batch or touch the database.

Invariants enforced:
    - Purity: engines NEVER call ``datetime.now()`` or ``date.today()``.
      Evaluation dates and periods are explicit parameters.
    - Decimal-only arithmetic: every amount is ``Money``; floats are
      rejected at construction.
    - Determinism: identical facts and rules always produce identical
      results.

Failure modes:
    - InvalidFactsError on malformed facts, raised before any arithmetic.
    - ConfigurationError subclasses when a rule is missing or ambiguous.

Audit relevance:
    Every top-level calculator is wrapped in ``@traced_engine`` (see
    ``farmbook_engines.tracer``), which emits a FARMBOOK_ENGINE_TRACE
    record with engine name, version and input fingerprint.

Usage:
    from farmbook_engines import compose_payroll_from_rules, validate_vat
    from farmbook_engines import depreciate, aggregate_cit_from_rules
"""

from farmbook_kernel.logging_config import get_logger

logger = get_logger("engines")

from farmbook_engines.cit import (
    AddBackCategory,
    AdjustmentType,
    CITAdjustment,
    CITContext,
    CITResult,
    ExpenseCategory,
    ExpenseFacts,
    aggregate_cit,
    aggregate_cit_from_rules,
    detect_add_backs,
)
from farmbook_engines.depreciation import (
    Asset,
    AssetCategory,
    AssetStatus,
    DepreciationPosting,
    DisposalResult,
    depreciate,
    depreciation_schedule,
    dispose,
    validate_useful_life,
)
from farmbook_engines.insurance import (
    EmployeeContribution,
    EmployerContribution,
    InsuranceConfig,
    InsuranceSplit,
    contributions,
)
from farmbook_engines.payroll import (
    PayLine,
    PayrollResult,
    PayrollStatus,
    SalaryType,
    WorkerPeriodFacts,
    WorkerType,
    compose_payroll,
    compose_payroll_from_rules,
)
from farmbook_engines.pit import (
    LaborType,
    PITMethod,
    PITMethodDecision,
    PITMethodFacts,
    PITRates,
    PITResult,
    calculate_pit,
    select_pit_method,
)
from farmbook_engines.progressive import (
    BracketSlice,
    TaxBracket,
    bracket_breakdown,
    brackets_from_rules,
    progressive_tax,
)
from farmbook_engines.vat import (
    PaymentMethod,
    SupplierStatus,
    UsagePurpose,
    VATBatchSummary,
    VATInvoiceFacts,
    VATIssue,
    VATRules,
    VATValidationResult,
    evaluate_vat,
    summarize_vat,
    validate_vat,
)

__all__ = [
    # Progressive tax
    "TaxBracket",
    "BracketSlice",
    "progressive_tax",
    "bracket_breakdown",
    "brackets_from_rules",
    # Insurance
    "InsuranceConfig",
    "InsuranceSplit",
    "EmployeeContribution",
    "EmployerContribution",
    "contributions",
    # PIT
    "PITMethod",
    "LaborType",
    "PITMethodFacts",
    "PITRates",
    "PITMethodDecision",
    "PITResult",
    "select_pit_method",
    "calculate_pit",
    # Payroll
    "SalaryType",
    "WorkerType",
    "PayrollStatus",
    "PayLine",
    "WorkerPeriodFacts",
    "PayrollResult",
    "compose_payroll",
    "compose_payroll_from_rules",
    # VAT
    "PaymentMethod",
    "SupplierStatus",
    "UsagePurpose",
    "VATInvoiceFacts",
    "VATIssue",
    "VATRules",
    "VATValidationResult",
    "VATBatchSummary",
    "validate_vat",
    "evaluate_vat",
    "summarize_vat",
    # Depreciation
    "AssetCategory",
    "AssetStatus",
    "Asset",
    "DepreciationPosting",
    "DisposalResult",
    "depreciate",
    "depreciation_schedule",
    "dispose",
    "validate_useful_life",
    # CIT
    "AdjustmentType",
    "ExpenseCategory",
    "AddBackCategory",
    "ExpenseFacts",
    "CITContext",
    "CITAdjustment",
    "CITResult",
    "detect_add_backs",
    "aggregate_cit",
    "aggregate_cit_from_rules",
]
