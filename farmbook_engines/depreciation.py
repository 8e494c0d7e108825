"""
Fixed Asset Depreciation (``farmbook_engines.depreciation``).

Responsibility
--------------
Straight-line monthly depreciation with the corporate-tax cap on passenger
vehicles, terminal disposal with gain/loss, a forward schedule, and the
statutory useful-life check per asset category.

Two monthly figures are produced for every posting:

* **book** -- ``(original_cost - residual_value) / useful_life_months``,
  the amount that moves ``accumulated_depreciation`` and ``book_value``;
* **tax** -- the same formula on the capped base.  For a VEHICLE outside a
  transport business whose cost exceeds ``CIT_VEHICLE_CAP`` the base is
  the cap, so the two figures diverge.

Architecture position
---------------------
**Engines layer** -- pure functions, no I/O.  The Ledger owns the asset
record; every operation here returns a NEW ``Asset`` and never mutates
its argument.

Invariants enforced
-------------------
* Idempotent per ``(asset_id, period)``: a period already in
  ``posted_periods`` returns ``already_posted=True`` and the asset as-is.
* ``book_value`` never drops below ``residual_value``; the last month of
  the useful life absorbs the rounding left by earlier months.
* Tax postings never exceed the capped base: ``accumulated_tax_depreciation``
  bounds the last month, and periods past the useful life (or after the
  depreciable base is used up) post zero for both figures.
* Disposal is terminal: ACTIVE -> DISPOSED (no proceeds) or SOLD.
* All amounts are ``Money`` rounded to a whole đồng -- NEVER ``float``.

Failure modes
-------------
* Depreciating a disposed asset  -> ``AssetDisposedError``.
* Disposing twice  -> ``AssetAlreadyDisposedError``.
* Malformed asset or period  -> ``InvalidFactsError``.
* Life outside the legal range  -> ``InvalidUsefulLifeError``.

Audit relevance
---------------
The gap between book and tax depreciation on capped vehicles is exactly
the CIT add-back ``VEHICLE_DEPRECIATION`` in ``farmbook_engines.cit``.
"""

from __future__ import annotations

import calendar
import re
from dataclasses import dataclass, replace
from datetime import date
from enum import Enum

from farmbook_engines.tracer import traced_engine
from farmbook_kernel.domain.rule_registry import RuleRegistry
from farmbook_kernel.domain.values import Money
from farmbook_kernel.exceptions import (
    AssetAlreadyDisposedError,
    AssetDisposedError,
    InvalidFactsError,
    InvalidUsefulLifeError,
)
from farmbook_kernel.logging_config import get_logger

logger = get_logger("engines.depreciation")

_PERIOD_RE = re.compile(r"^(\d{4})-(0[1-9]|1[0-2])$")


class AssetCategory(str, Enum):
    MACHINERY = "MACHINERY"
    VEHICLE = "VEHICLE"
    BUILDING = "BUILDING"
    EQUIPMENT = "EQUIPMENT"
    LIVESTOCK = "LIVESTOCK"
    OTHER = "OTHER"


class AssetStatus(str, Enum):
    """Asset lifecycle states."""
    ACTIVE = "ACTIVE"
    DISPOSED = "DISPOSED"  # written off, no proceeds
    SOLD = "SOLD"


@dataclass(frozen=True)
class Asset:
    """A fixed asset as the Ledger hands it to the engine."""
    asset_id: str
    category: AssetCategory
    original_cost: Money
    useful_life_months: int
    accumulated_depreciation: Money = Money.zero()
    book_value: Money | None = None
    max_deductible_value: Money | None = None
    status: AssetStatus = AssetStatus.ACTIVE
    residual_value: Money = Money.zero()
    posted_periods: frozenset[str] = frozenset()
    is_transport_business: bool = False
    accumulated_tax_depreciation: Money = Money.zero()

    def __post_init__(self) -> None:
        for name in (
            "original_cost",
            "accumulated_depreciation",
            "residual_value",
            "accumulated_tax_depreciation",
        ):
            value = getattr(self, name)
            if not isinstance(value, Money):
                object.__setattr__(self, name, Money.of(value))
        if self.max_deductible_value is not None and not isinstance(self.max_deductible_value, Money):
            object.__setattr__(self, "max_deductible_value", Money.of(self.max_deductible_value))
        if self.book_value is None:
            object.__setattr__(self, "book_value", self.original_cost - self.accumulated_depreciation)
        elif not isinstance(self.book_value, Money):
            object.__setattr__(self, "book_value", Money.of(self.book_value))
        if not isinstance(self.posted_periods, frozenset):
            object.__setattr__(self, "posted_periods", frozenset(self.posted_periods))

    @property
    def is_terminated(self) -> bool:
        return self.status != AssetStatus.ACTIVE


@dataclass(frozen=True)
class DepreciationPosting:
    """Outcome of posting one period against one asset."""
    asset_id: str
    period: str
    tax_monthly: Money
    book_monthly: Money
    posted_amount: Money
    tax_posted_amount: Money
    asset: Asset
    already_posted: bool = False

    @property
    def non_deductible_amount(self) -> Money:
        """Book depreciation the tax base does not allow."""
        return (self.posted_amount - self.tax_posted_amount).clamp_min()


@dataclass(frozen=True)
class DisposalResult:
    asset: Asset
    disposal_date: date
    disposed_value: Money
    book_value: Money
    gain_loss: Money

    @property
    def is_gain(self) -> bool:
        return not self.gain_loss.is_negative


def parse_period(period: str) -> tuple[int, int]:
    """Split ``YYYY-MM`` into (year, month); raise InvalidFactsError otherwise."""
    match = _PERIOD_RE.match(period or "")
    if match is None:
        raise InvalidFactsError("asset", (("period", f"must be YYYY-MM, got {period!r}"),))
    return int(match.group(1)), int(match.group(2))


def period_end(period: str) -> date:
    year, month = parse_period(period)
    return date(year, month, calendar.monthrange(year, month)[1])


def next_period(period: str) -> str:
    year, month = parse_period(period)
    if month == 12:
        return f"{year + 1}-01"
    return f"{year}-{month + 1:02d}"


def validate_asset(asset: Asset) -> None:
    problems: list[tuple[str, str]] = []
    if not asset.asset_id:
        problems.append(("asset_id", "is required"))
    if asset.useful_life_months <= 0:
        problems.append(("useful_life_months", "must be > 0"))
    if asset.original_cost.is_negative:
        problems.append(("original_cost", "must be >= 0"))
    if asset.residual_value.is_negative:
        problems.append(("residual_value", "must be >= 0"))
    if asset.residual_value > asset.original_cost:
        problems.append(("residual_value", "must not exceed original_cost"))
    if asset.accumulated_depreciation.is_negative:
        problems.append(("accumulated_depreciation", "must be >= 0"))
    if asset.accumulated_tax_depreciation.is_negative:
        problems.append(("accumulated_tax_depreciation", "must be >= 0"))
    if problems:
        raise InvalidFactsError("asset", tuple(problems))


def is_vehicle_capped(asset: Asset, cap: Money) -> bool:
    return (
        asset.category == AssetCategory.VEHICLE
        and not asset.is_transport_business
        and asset.original_cost > cap
    )


def monthly_figures(asset: Asset, vehicle_cap: Money) -> tuple[Money, Money]:
    """
    (tax, book) monthly depreciation before end-of-life adjustment.

    Preconditions:
        - ``asset`` passed ``validate_asset``.
    Postconditions:
        - Both figures are rounded to a whole đồng.
        - ``tax <= book``.
    """
    life = asset.useful_life_months
    book_base = asset.original_cost - asset.residual_value
    return (_tax_base(asset, vehicle_cap) / life).round(), (book_base / life).round()


def _tax_base(asset: Asset, vehicle_cap: Money) -> Money:
    book_base = asset.original_cost - asset.residual_value
    return min(book_base, vehicle_cap) if is_vehicle_capped(asset, vehicle_cap) else book_base


def _post(asset: Asset, period: str, vehicle_cap: Money) -> DepreciationPosting:
    tax_monthly, book_monthly = monthly_figures(asset, vehicle_cap)

    if period in asset.posted_periods:
        return DepreciationPosting(
            asset_id=asset.asset_id,
            period=period,
            tax_monthly=tax_monthly,
            book_monthly=book_monthly,
            posted_amount=Money.zero(),
            tax_posted_amount=Money.zero(),
            asset=asset,
            already_posted=True,
        )

    month_number = len(asset.posted_periods) + 1
    remaining = (asset.book_value - asset.residual_value).clamp_min()
    tax_remaining = (_tax_base(asset, vehicle_cap) - asset.accumulated_tax_depreciation).clamp_min()
    if month_number > asset.useful_life_months or not remaining.is_positive:
        # Fully depreciated: the period is recorded, nothing moves.
        posted = Money.zero()
        tax_posted = Money.zero()
    elif month_number == asset.useful_life_months:
        posted = remaining
        tax_posted = min(tax_remaining, posted)
    else:
        posted = min(book_monthly, remaining)
        tax_posted = min(tax_monthly, posted, tax_remaining)

    capped = is_vehicle_capped(asset, vehicle_cap)
    updated = replace(
        asset,
        accumulated_depreciation=asset.accumulated_depreciation + posted,
        accumulated_tax_depreciation=asset.accumulated_tax_depreciation + tax_posted,
        book_value=asset.book_value - posted,
        max_deductible_value=vehicle_cap if capped else asset.max_deductible_value,
        posted_periods=asset.posted_periods | {period},
    )
    return DepreciationPosting(
        asset_id=asset.asset_id,
        period=period,
        tax_monthly=tax_monthly,
        book_monthly=book_monthly,
        posted_amount=posted,
        tax_posted_amount=tax_posted,
        asset=updated,
    )


@traced_engine("depreciation", "1.0", fingerprint_fields=("asset", "period"))
def depreciate(asset: Asset, period: str, rules: RuleRegistry) -> DepreciationPosting:
    """
    Post one month of straight-line depreciation.

    ``CIT_VEHICLE_CAP`` is resolved at the last day of ``period``.

    Raises:
        AssetDisposedError: if the asset is DISPOSED or SOLD.
        InvalidFactsError: on a malformed asset or period.
    """
    if asset.is_terminated:
        raise AssetDisposedError(asset.asset_id, asset.status.value)
    validate_asset(asset)
    vehicle_cap = rules.money("CIT_VEHICLE_CAP", period_end(period))

    posting = _post(asset, period, vehicle_cap)
    if posting.already_posted:
        logger.info("depreciation_already_posted", extra={
            "asset_id": asset.asset_id,
            "period": period,
        })
    else:
        logger.info("depreciation_posted", extra={
            "asset_id": asset.asset_id,
            "period": period,
            "book_amount": str(posting.posted_amount.amount),
            "tax_amount": str(posting.tax_posted_amount.amount),
            "book_value": str(posting.asset.book_value.amount),
        })
    return posting


def depreciation_schedule(
    asset: Asset,
    start_period: str,
    rules: RuleRegistry,
) -> tuple[DepreciationPosting, ...]:
    """
    Project postings from ``start_period`` until the useful life is used up
    or book value reaches the residual value.

    The vehicle cap is resolved once, at the end of ``start_period``.
    """
    if asset.is_terminated:
        raise AssetDisposedError(asset.asset_id, asset.status.value)
    validate_asset(asset)
    vehicle_cap = rules.money("CIT_VEHICLE_CAP", period_end(start_period))

    schedule: list[DepreciationPosting] = []
    current, period = asset, start_period
    while (
        len(current.posted_periods) < current.useful_life_months
        and current.book_value > current.residual_value
    ):
        posting = _post(current, period, vehicle_cap)
        if not posting.already_posted:
            schedule.append(posting)
        current, period = posting.asset, next_period(period)
    return tuple(schedule)


def dispose(
    asset: Asset,
    disposal_date: date,
    disposed_value: Money | None = None,
) -> DisposalResult:
    """
    Retire an asset.

    Proceeds above zero make it SOLD, otherwise DISPOSED.
    ``gain_loss = disposed_value - book_value``; negative is a loss.

    Raises:
        AssetAlreadyDisposedError: if the asset is already terminated.
        InvalidFactsError: on negative proceeds.
    """
    if asset.is_terminated:
        raise AssetAlreadyDisposedError(asset.asset_id, asset.status.value)
    proceeds = disposed_value if disposed_value is not None else Money.zero()
    if proceeds.is_negative:
        raise InvalidFactsError("disposal", (("disposed_value", "must be >= 0"),))

    status = AssetStatus.SOLD if proceeds.is_positive else AssetStatus.DISPOSED
    gain_loss = proceeds - asset.book_value
    result = DisposalResult(
        asset=replace(asset, status=status),
        disposal_date=disposal_date,
        disposed_value=proceeds,
        book_value=asset.book_value,
        gain_loss=gain_loss,
    )
    logger.info("asset_disposed", extra={
        "asset_id": asset.asset_id,
        "status": status.value,
        "disposed_value": str(proceeds.amount),
        "gain_loss": str(gain_loss.amount),
    })
    return result


def validate_useful_life(
    category: AssetCategory,
    years: int,
    as_of: date,
    rules: RuleRegistry,
) -> None:
    """
    Check a useful life in years against ``ASSET_LIFE_MIN_<CAT>`` and
    ``ASSET_LIFE_MAX_<CAT>``.

    Raises:
        InvalidUsefulLifeError: outside the inclusive range.
        RuleNotConfiguredError: if the category has no limits.
    """
    min_years = rules.count(f"ASSET_LIFE_MIN_{category.value}", as_of)
    max_years = rules.count(f"ASSET_LIFE_MAX_{category.value}", as_of)
    if not (min_years <= years <= max_years):
        raise InvalidUsefulLifeError(category.value, years, min_years, max_years)
