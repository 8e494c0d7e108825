"""
Typed Exception Hierarchy for the Farmbook tax and payroll engine.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from FarmbookError:

    FarmbookError (base)
    |
    +-- ConfigurationError
    |   +-- RuleNotConfiguredError
    |   +-- RuleAmbiguousError
    |   +-- InvalidRuleValueError
    |   +-- InvalidRuleConditionError
    |   +-- InvalidBracketTableError
    |   +-- RuleSetIntegrityError
    |
    +-- ValidationError
    |   +-- InvalidFactsError
    |
    +-- AssetError
        +-- AssetDisposedError
        +-- AssetAlreadyDisposedError
        +-- InvalidUsefulLifeError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Configuration   | RULE_NOT_CONFIGURED         | No active rule in effect for code/date
                | RULE_AMBIGUOUS              | >1 active rule in effect for code/date
                | INVALID_RULE_VALUE          | Rule value has the wrong type or sign
                | INVALID_RULE_CONDITION      | Rule condition uses an unknown predicate
                | INVALID_BRACKET_TABLE       | Brackets not ascending / not open-ended
                | RULE_SET_INTEGRITY          | Rule set file fails integrity checks
----------------|-----------------------------|-----------------------------------------
Validation      | INVALID_FACTS               | Negative / non-finite / missing facts
----------------|-----------------------------|-----------------------------------------
Asset           | ASSET_DISPOSED              | Depreciating a disposed or sold asset
                | ASSET_ALREADY_DISPOSED      | Disposing an asset twice
                | INVALID_USEFUL_LIFE         | Useful life outside the legal range

===============================================================================
HANDLING PATTERNS
===============================================================================

1. CONFIGURATION ERRORS ARE FATAL FOR THE ENTITY:

    try:
        result = compose_payroll_from_rules(facts, rules, as_of)
    except ConfigurationError as e:
        alert_operator(e.code, e.rule_code)  # never substitute a default

2. VALIDATION ERRORS CARRY EVERY FIELD PROBLEM:

    except InvalidFactsError as e:
        return {"error": e.code, "fields": dict(e.field_errors)}

3. VAT RULE VIOLATIONS ARE NOT EXCEPTIONS. They are returned as
   ``VATIssue`` values in ``VATValidationResult.errors``.

Every exception has a class-level ``code`` and stores its context as
attributes, so it survives logging and serialization without message parsing.
"""

from __future__ import annotations

from datetime import date


class FarmbookError(Exception):
    """
    Base exception for all engine errors.

    All subclasses must have a `code` class attribute
    for machine-readable error identification.
    """

    code: str = "FARMBOOK_ERROR"


# Configuration exceptions


class ConfigurationError(FarmbookError):
    """Base exception for rule configuration errors."""

    code: str = "CONFIGURATION_ERROR"


class RuleNotConfiguredError(ConfigurationError):
    """No active rule with the given code is in effect on the date."""

    code: str = "RULE_NOT_CONFIGURED"

    def __init__(self, rule_code: str, as_of: date):
        self.rule_code = rule_code
        self.as_of = as_of
        super().__init__(
            f"No active rule {rule_code} in effect on {as_of.isoformat()}"
        )


class RuleAmbiguousError(ConfigurationError):
    """
    More than one active rule with the same code is in effect on the date.

    The rule store has overlapping windows; the engine refuses to pick one.
    """

    code: str = "RULE_AMBIGUOUS"

    def __init__(self, rule_code: str, as_of: date, match_count: int):
        self.rule_code = rule_code
        self.as_of = as_of
        self.match_count = match_count
        super().__init__(
            f"{match_count} active rules {rule_code} in effect on "
            f"{as_of.isoformat()}; expected exactly one"
        )


class InvalidRuleValueError(ConfigurationError):
    """A rule value cannot be used the way the caller asked."""

    code: str = "INVALID_RULE_VALUE"

    def __init__(self, rule_code: str, reason: str):
        self.rule_code = rule_code
        self.reason = reason
        super().__init__(f"Rule {rule_code} has an invalid value: {reason}")


class InvalidRuleConditionError(ConfigurationError):
    """A rule condition cannot be evaluated."""

    code: str = "INVALID_RULE_CONDITION"

    def __init__(self, rule_code: str, problems: tuple[str, ...]):
        self.rule_code = rule_code
        self.problems = problems
        super().__init__(f"Rule {rule_code} has an invalid condition: " + "; ".join(problems))


class InvalidBracketTableError(ConfigurationError):
    """Progressive bracket table is not ascending or not open-ended."""

    code: str = "INVALID_BRACKET_TABLE"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid tax bracket table: {reason}")


class RuleSetIntegrityError(ConfigurationError):
    """A rule set failed integrity validation on load."""

    code: str = "RULE_SET_INTEGRITY"

    def __init__(self, rule_set_id: str, errors: tuple[str, ...]):
        self.rule_set_id = rule_set_id
        self.errors = errors
        super().__init__(
            f"Rule set {rule_set_id} failed integrity checks: "
            + "; ".join(errors)
        )


# Validation exceptions


class ValidationError(FarmbookError):
    """Base exception for rejected input facts."""

    code: str = "VALIDATION_ERROR"


class InvalidFactsError(ValidationError):
    """
    Input facts were rejected before any calculation began.

    ``field_errors`` holds one ``(field, message)`` pair per problem so the
    caller can correct every field in one resubmission.
    """

    code: str = "INVALID_FACTS"

    def __init__(self, entity: str, field_errors: tuple[tuple[str, str], ...]):
        self.entity = entity
        self.field_errors = field_errors
        details = ", ".join(f"{f}: {m}" for f, m in field_errors)
        super().__init__(f"Invalid {entity} facts: {details}")


# Asset exceptions


class AssetError(FarmbookError):
    """Base exception for fixed asset errors."""

    code: str = "ASSET_ERROR"


class AssetDisposedError(AssetError):
    """Depreciation cannot post against a disposed or sold asset."""

    code: str = "ASSET_DISPOSED"

    def __init__(self, asset_id: str, status: str):
        self.asset_id = asset_id
        self.status = status
        super().__init__(f"Asset {asset_id} is {status}; no further depreciation")


class AssetAlreadyDisposedError(AssetError):
    """Disposal is terminal and cannot happen twice."""

    code: str = "ASSET_ALREADY_DISPOSED"

    def __init__(self, asset_id: str, status: str):
        self.asset_id = asset_id
        self.status = status
        super().__init__(f"Asset {asset_id} is already {status}")


class InvalidUsefulLifeError(AssetError):
    """Useful life falls outside the legal range for its category."""

    code: str = "INVALID_USEFUL_LIFE"

    def __init__(self, category: str, years: int, min_years: int, max_years: int):
        self.category = category
        self.years = years
        self.min_years = min_years
        self.max_years = max_years
        super().__init__(
            f"Useful life {years} years for {category} outside "
            f"allowed range {min_years}-{max_years}"
        )
