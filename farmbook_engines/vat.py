"""
Module: farmbook_engines.vat -- Input VAT deduction validator.

Responsibility:
    Decides whether the input VAT on one purchase invoice may be deducted:
    fully, partially (with a deduction ratio), or not at all.  Each check
    is independent and reads its threshold from the rule registry.  Errors
    block the deduction; warnings are advisory and never change a figure.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Rule violations are values, not exceptions: an inadmissible invoice
      is an expected outcome reported in ``errors``.
    - Any error gives ``deductible_amount == 0`` and
      ``non_deductible_amount == vat_amount``.
    - Partial deduction: ``deductible = round(vat_amount * ratio)`` and
      ``non_deductible = vat_amount - deductible``; the two always add up
      to ``vat_amount``.
    - Warnings never alter ``is_deductible`` or any amount.

Failure modes:
    - InvalidFactsError for negative amounts or missing seat / head counts.
    - RuleNotConfiguredError / RuleAmbiguousError when a VAT rule is
      missing or overlapping on the evaluation date.

Audit relevance:
    Every issue carries a stable code, the rule code it came from and the
    legal reference of that rule, so a rejected deduction can be defended
    line by line in a tax inspection.

Usage:
    result = validate_vat(invoice, date(2025, 3, 31), registry)
    if not result.is_deductible:
        print([e.code for e in result.errors])
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum

from farmbook_engines.tracer import traced_engine
from farmbook_kernel.domain.rule_registry import RuleRegistry
from farmbook_kernel.domain.rules import TaxRule
from farmbook_kernel.domain.values import Money, Percentage
from farmbook_kernel.exceptions import InvalidFactsError
from farmbook_kernel.logging_config import get_logger

logger = get_logger("engines.vat")

# Tolerance for VAT amount vs goods_value * rate, in đồng.
VAT_AMOUNT_TOLERANCE = Decimal("1")


class PaymentMethod(str, Enum):
    CASH = "CASH"
    BANK_TRANSFER = "BANK_TRANSFER"
    CARD = "CARD"
    OTHER = "OTHER"


class SupplierStatus(str, Enum):
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    CLOSED = "CLOSED"
    BANKRUPT = "BANKRUPT"


class UsagePurpose(str, Enum):
    BUSINESS = "BUSINESS"
    PERSONAL = "PERSONAL"
    WELFARE_FUND = "WELFARE_FUND"
    MIXED = "MIXED"


_INACTIVE_SUPPLIER = frozenset({
    SupplierStatus.SUSPENDED,
    SupplierStatus.CLOSED,
    SupplierStatus.BANKRUPT,
})


@dataclass(frozen=True)
class VATInvoiceFacts:
    """The invoice fields the validator reads."""

    invoice_date: date
    goods_value: Money
    vat_rate: Percentage
    vat_amount: Money
    total_amount: Money
    payment_method: PaymentMethod
    invoice_number: str | None = None
    supplier_tax_code: str | None = None
    is_vehicle: bool = False
    vehicle_seats: int | None = None
    is_entertainment: bool = False
    number_of_persons: int | None = None
    invoice_id: str | None = None
    supplier_status: SupplierStatus = SupplierStatus.ACTIVE
    usage_purpose: UsagePurpose = UsagePurpose.BUSINESS
    business_use_ratio: Percentage | None = None
    is_transport_business: bool = False

    def __post_init__(self) -> None:
        for name in ("goods_value", "vat_amount", "total_amount"):
            value = getattr(self, name)
            if not isinstance(value, Money):
                object.__setattr__(self, name, Money.of(value))
        if not isinstance(self.vat_rate, Percentage):
            object.__setattr__(self, "vat_rate", Percentage.of(self.vat_rate))
        if self.business_use_ratio is not None and not isinstance(self.business_use_ratio, Percentage):
            object.__setattr__(self, "business_use_ratio", Percentage.of(self.business_use_ratio))


@dataclass(frozen=True)
class VATIssue:
    """One error or warning, with a stable machine-readable code."""

    code: str
    message: str
    rule_code: str | None = None
    legal_reference: str | None = None


@dataclass(frozen=True)
class VATValidationResult:
    invoice_id: str | None
    is_deductible: bool
    is_partial: bool
    deduction_ratio: Decimal | None
    vat_amount: Money
    deductible_amount: Money
    non_deductible_amount: Money
    errors: tuple[VATIssue, ...] = ()
    warnings: tuple[VATIssue, ...] = ()
    applied_rules: tuple[str, ...] = ()

    @property
    def error_codes(self) -> tuple[str, ...]:
        return tuple(e.code for e in self.errors)

    @property
    def warning_codes(self) -> tuple[str, ...]:
        return tuple(w.code for w in self.warnings)


@dataclass(frozen=True)
class VATRules:
    """The VAT rules in effect on one evaluation date."""

    cash_limit: TaxRule
    retention_years: TaxRule
    vehicle_min_seats: TaxRule
    car_luxury_cap: TaxRule
    entertainment_per_person: TaxRule
    mixed_use_ratio: TaxRule

    @classmethod
    def from_rules(cls, rules: RuleRegistry, as_of: date) -> VATRules:
        # Typed accessors validate the value type of each rule.
        rules.money("VAT_CASH_LIMIT", as_of)
        rules.count("VAT_INVOICE_RETENTION_YEARS", as_of)
        rules.count("VAT_VEHICLE_MIN_SEATS", as_of)
        rules.money("VAT_CAR_LUXURY_CAP", as_of)
        rules.money("VAT_ENTERTAINMENT_PER_PERSON", as_of)
        rules.percentage("VAT_MIXED_USE_RATIO", as_of)
        return cls(
            cash_limit=rules.resolve("VAT_CASH_LIMIT", as_of),
            retention_years=rules.resolve("VAT_INVOICE_RETENTION_YEARS", as_of),
            vehicle_min_seats=rules.resolve("VAT_VEHICLE_MIN_SEATS", as_of),
            car_luxury_cap=rules.resolve("VAT_CAR_LUXURY_CAP", as_of),
            entertainment_per_person=rules.resolve("VAT_ENTERTAINMENT_PER_PERSON", as_of),
            mixed_use_ratio=rules.resolve("VAT_MIXED_USE_RATIO", as_of),
        )


@dataclass(frozen=True)
class VATBatchSummary:
    """Aggregate of many validation results for a period report."""

    total_invoices: int
    deductible_count: int
    partial_count: int
    rejected_count: int
    total_vat: Money
    total_deductible: Money
    total_non_deductible: Money
    error_counts: dict[str, int] = field(default_factory=dict)
    warning_counts: dict[str, int] = field(default_factory=dict)


def _issue(code: str, message: str, rule: TaxRule | None = None) -> VATIssue:
    return VATIssue(
        code=code,
        message=message,
        rule_code=rule.code if rule else None,
        legal_reference=rule.legal_reference if rule else None,
    )


def _years_before(d: date, years: int) -> date:
    try:
        return d.replace(year=d.year - years)
    except ValueError:
        # 29 February in a non-leap target year
        return d.replace(year=d.year - years, day=28)


def validate_invoice_facts(invoice: VATInvoiceFacts) -> None:
    """
    Reject malformed invoice facts.

    Raises:
        InvalidFactsError: listing every problem found.
    """
    problems: list[tuple[str, str]] = []
    for name in ("goods_value", "vat_amount", "total_amount"):
        if getattr(invoice, name).is_negative:
            problems.append((name, "must be >= 0"))
    if invoice.vat_rate.value < 0:
        problems.append(("vat_rate", "must be >= 0"))
    if invoice.is_vehicle and (invoice.vehicle_seats is None or invoice.vehicle_seats < 1):
        problems.append(("vehicle_seats", "required for vehicle invoices"))
    if invoice.is_entertainment and (invoice.number_of_persons is None or invoice.number_of_persons < 1):
        problems.append(("number_of_persons", "required for entertainment invoices"))
    ratio = invoice.business_use_ratio
    if ratio is not None and not (0 <= ratio.value <= 100):
        problems.append(("business_use_ratio", "must be between 0 and 100"))
    if problems:
        raise InvalidFactsError("vat_invoice", tuple(problems))


def evaluate_vat(invoice: VATInvoiceFacts, as_of: date, vat_rules: VATRules) -> VATValidationResult:
    """
    Run every check against pre-resolved rules.

    Preconditions:
        - ``vat_rules`` was resolved for ``as_of``.
    Postconditions:
        - ``deductible_amount + non_deductible_amount == vat_amount``.
    Raises:
        InvalidFactsError: on malformed facts.
    """
    validate_invoice_facts(invoice)

    errors: list[VATIssue] = []
    warnings: list[VATIssue] = []
    applied: list[str] = []

    if not invoice.invoice_number:
        warnings.append(_issue("MISSING_INVOICE_NUMBER", "Invoice number is missing"))

    if not invoice.supplier_tax_code or not invoice.supplier_tax_code.strip():
        errors.append(_issue(
            "MISSING_SUPPLIER_MST", "Supplier tax code (MST) is missing; input VAT is not deductible",
        ))

    if invoice.supplier_status in _INACTIVE_SUPPLIER:
        errors.append(_issue(
            "SUPPLIER_INACTIVE",
            f"Supplier is {invoice.supplier_status.value}; input VAT is not deductible",
        ))

    retention = vat_rules.retention_years
    cutoff = _years_before(as_of, int(retention.value))
    if invoice.invoice_date < cutoff:
        errors.append(_issue(
            "INVOICE_EXPIRED",
            f"Invoice dated {invoice.invoice_date.isoformat()} is older than "
            f"{int(retention.value)} years",
            retention,
        ))
        applied.append(retention.code)

    cash_rule = vat_rules.cash_limit
    if invoice.payment_method == PaymentMethod.CASH and invoice.total_amount >= cash_rule.as_money():
        errors.append(_issue(
            "CASH_PAYMENT_OVER_LIMIT",
            f"Invoice total {invoice.total_amount.amount} paid in cash reaches the "
            f"{cash_rule.value} non-cash payment threshold",
            cash_rule,
        ))
        applied.append(cash_rule.code)

    if invoice.usage_purpose in (UsagePurpose.PERSONAL, UsagePurpose.WELFARE_FUND):
        errors.append(_issue(
            "NON_BUSINESS_EXPENSE",
            f"Purchase for {invoice.usage_purpose.value} use does not serve taxable business",
        ))

    seats_rule = vat_rules.vehicle_min_seats
    if (
        invoice.is_vehicle
        and not invoice.is_transport_business
        and invoice.vehicle_seats < int(seats_rule.value)
    ):
        errors.append(_issue(
            "VEHICLE_UNDER_9_SEATS",
            f"Passenger car with {invoice.vehicle_seats} seats (< {int(seats_rule.value)}) "
            f"outside a transport business",
            seats_rule,
        ))
        applied.append(seats_rule.code)

    ent_rule = vat_rules.entertainment_per_person
    if invoice.is_entertainment:
        per_person = invoice.total_amount / invoice.number_of_persons
        if per_person > ent_rule.as_money():
            warnings.append(_issue(
                "ENTERTAINMENT_EXCEEDED",
                f"Entertainment spend {per_person.round().amount} per person exceeds "
                f"{ent_rule.value}",
                ent_rule,
            ))
            applied.append(ent_rule.code)

    expected_vat = invoice.vat_rate.apply(invoice.goods_value).round()
    if abs(expected_vat.amount - invoice.vat_amount.amount) > VAT_AMOUNT_TOLERANCE:
        warnings.append(_issue(
            "VAT_AMOUNT_MISMATCH",
            f"VAT amount {invoice.vat_amount.amount} differs from goods value x rate "
            f"({expected_vat.amount})",
        ))

    vat = invoice.vat_amount
    if errors:
        result = VATValidationResult(
            invoice_id=invoice.invoice_id,
            is_deductible=False,
            is_partial=False,
            deduction_ratio=None,
            vat_amount=vat,
            deductible_amount=Money.zero(),
            non_deductible_amount=vat,
            errors=tuple(errors),
            warnings=tuple(warnings),
            applied_rules=tuple(applied),
        )
    else:
        ratio = _partial_ratio(invoice, vat_rules, warnings, applied)
        if ratio is None:
            deductible, non_deductible = vat, Money.zero()
        else:
            deductible = (vat * ratio).round()
            non_deductible = vat - deductible
        result = VATValidationResult(
            invoice_id=invoice.invoice_id,
            is_deductible=True,
            is_partial=ratio is not None,
            deduction_ratio=ratio,
            vat_amount=vat,
            deductible_amount=deductible,
            non_deductible_amount=non_deductible,
            errors=(),
            warnings=tuple(warnings),
            applied_rules=tuple(applied),
        )

    logger.info("vat_validation_completed", extra={
        "invoice_id": invoice.invoice_id,
        "is_deductible": result.is_deductible,
        "is_partial": result.is_partial,
        "deductible_amount": str(result.deductible_amount.amount),
        "error_codes": list(result.error_codes),
        "warning_codes": list(result.warning_codes),
    })
    return result


def _partial_ratio(
    invoice: VATInvoiceFacts,
    vat_rules: VATRules,
    warnings: list[VATIssue],
    applied: list[str],
) -> Decimal | None:
    """Combined deduction ratio of every partial rule that applies, or None."""
    ratio: Decimal | None = None

    cap_rule = vat_rules.car_luxury_cap
    cap = cap_rule.as_money()
    if invoice.is_vehicle and not invoice.is_transport_business and invoice.goods_value > cap:
        car_ratio = cap.amount / invoice.goods_value.amount
        ratio = car_ratio
        warnings.append(_issue(
            "CAR_LUXURY_CAP",
            f"Vehicle value {invoice.goods_value.amount} exceeds {cap.amount}; "
            f"only {(car_ratio * 100).quantize(Decimal('0.01'))}% of input VAT is deductible",
            cap_rule,
        ))
        applied.append(cap_rule.code)

    if invoice.usage_purpose == UsagePurpose.MIXED:
        mixed_rule = vat_rules.mixed_use_ratio
        share = invoice.business_use_ratio or mixed_rule.as_percentage()
        ratio = share.fraction if ratio is None else ratio * share.fraction
        warnings.append(_issue(
            "MIXED_USE_PARTIAL",
            f"Mixed personal and business use; {share} of input VAT is deductible",
            mixed_rule,
        ))
        applied.append(mixed_rule.code)

    return ratio


@traced_engine("vat_validation", "1.0", fingerprint_fields=("invoice", "as_of"))
def validate_vat(invoice: VATInvoiceFacts, as_of: date, rules: RuleRegistry) -> VATValidationResult:
    """
    Validate one invoice against the VAT rules in effect on ``as_of``.

    Raises:
        InvalidFactsError: on malformed facts.
        RuleNotConfiguredError / RuleAmbiguousError: on rule store problems.
    """
    return evaluate_vat(invoice, as_of, VATRules.from_rules(rules, as_of))


def summarize_vat(results: Iterable[VATValidationResult]) -> VATBatchSummary:
    """Counts and totals across many validation results."""
    results = list(results)
    errors: Counter[str] = Counter()
    warnings: Counter[str] = Counter()
    for r in results:
        errors.update(r.error_codes)
        warnings.update(r.warning_codes)

    return VATBatchSummary(
        total_invoices=len(results),
        deductible_count=sum(1 for r in results if r.is_deductible and not r.is_partial),
        partial_count=sum(1 for r in results if r.is_partial),
        rejected_count=sum(1 for r in results if not r.is_deductible),
        total_vat=Money.sum(r.vat_amount for r in results),
        total_deductible=Money.sum(r.deductible_amount for r in results),
        total_non_deductible=Money.sum(r.non_deductible_amount for r in results),
        error_counts=dict(errors),
        warning_counts=dict(warnings),
    )
