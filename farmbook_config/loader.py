"""
Rule Set Loader (``farmbook_config.loader``).

Responsibility
--------------
Loads YAML rule-set files and parses them into immutable
``farmbook_kernel.domain.rules.TaxRule`` records wrapped in a ``RuleSet``.

Architecture position
---------------------
**Config layer** -- infrastructure tooling.  Depends on the kernel domain
types only; has no dependency on engines or the database.

Invariants enforced
-------------------
* All parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages; no silent defaults for required fields.
* Money and rate values must be quoted strings or integers in YAML.  YAML
  floats are rejected so no binary rounding error enters the engine.
* ``compute_checksum`` produces a deterministic SHA-256 hash for rule-set
  identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys in a rule mapping  -> ``KeyError`` propagates.
* Unknown enum value or bad date  -> ``ValueError``.

Audit relevance
---------------
``compute_checksum`` lets auditors verify that the rules used for a run
match a known, version-controlled baseline.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml

from farmbook_kernel.domain.rule_registry import RuleRegistry
from farmbook_kernel.domain.rules import RuleAction, RuleType, RuleValueType, TaxRule
from farmbook_kernel.domain.values import to_decimal


@dataclass(frozen=True)
class RuleSet:
    """
    A loaded, checksummed collection of rules.

    Guarantees:
        - ``rules`` is an immutable tuple in file order.
        - ``checksum`` is the SHA-256 of the canonical rule content.
    """

    rule_set_id: str
    version: int
    jurisdiction: str
    currency: str
    rules: tuple[TaxRule, ...]
    checksum: str
    source_path: str | None = None

    def __post_init__(self) -> None:
        if not self.rule_set_id:
            raise ValueError("rule_set_id is required")
        if self.version < 1:
            raise ValueError(f"version must be >= 1, got {self.version}")

    def registry(self) -> RuleRegistry:
        """Snapshot the rules into a resolver."""
        return RuleRegistry(self.rules)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def parse_date(value: Any) -> date:
    """
    Parse a date from YAML (string or date object).

    Raises:
        ValueError: if ``value`` is not a valid date representation.
    """
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return date.fromisoformat(value)
    raise ValueError(f"Cannot parse date from {value!r}")


def parse_decimal(value: Any, label: str) -> Decimal:
    """Parse a Decimal from a YAML string or int; floats are refused."""
    if isinstance(value, float):
        raise ValueError(f"{label} must be quoted in YAML, got float {value!r}")
    return to_decimal(value, label)


def parse_condition(value: Any, label: str) -> dict[str, Any] | None:
    """
    Copy a rule condition into plain JSON-safe values.

    YAML dates become ISO strings so the condition survives a JSON column.
    Predicates and operands are checked by ``validate_rule_set``.
    """
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ValueError(f"{label} must be a mapping, got {type(value).__name__}")
    return _plain(value)


def _plain(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(k): _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    if isinstance(value, date):
        return value.isoformat()
    return value


def parse_rule(data: dict[str, Any]) -> TaxRule:
    """
    Parse a ``TaxRule`` from a dict.

    Preconditions:
        - ``data`` has keys ``code``, ``rule_type``, ``category``,
          ``action``, ``value``, ``value_type``, ``effective_from``.
    Raises:
        KeyError: if a required key is missing.
        ValueError: on bad enums, dates or numbers.
    """
    code = data["code"]
    limit = data.get("limit_value")
    until = data.get("effective_until")
    return TaxRule(
        code=code,
        rule_type=RuleType(data["rule_type"]),
        category=data["category"],
        action=RuleAction(data["action"]),
        value=parse_decimal(data["value"], f"{code}.value"),
        value_type=RuleValueType(data["value_type"]),
        effective_from=parse_date(data["effective_from"]),
        effective_until=parse_date(until) if until is not None else None,
        is_active=bool(data.get("is_active", True)),
        limit_value=parse_decimal(limit, f"{code}.limit_value") if limit is not None else None,
        name=data.get("name", ""),
        description=data.get("description", ""),
        legal_reference=data.get("legal_reference"),
        condition=parse_condition(data.get("condition"), f"{code}.condition"),
    )


def _rule_to_canonical(rule: TaxRule) -> dict[str, Any]:
    return {
        "code": rule.code,
        "rule_type": rule.rule_type.value,
        "category": rule.category,
        "action": rule.action.value,
        "value": str(rule.value.normalize()),
        "value_type": rule.value_type.value,
        "limit_value": str(rule.limit_value.normalize()) if rule.limit_value is not None else None,
        "effective_from": rule.effective_from.isoformat(),
        "effective_until": rule.effective_until.isoformat() if rule.effective_until else None,
        "is_active": rule.is_active,
        "condition": rule.condition,
    }


def compute_checksum(rules: tuple[TaxRule, ...] | list[TaxRule]) -> str:
    """
    Deterministic SHA-256 over the legally significant rule fields.

    Rule order and descriptive text (name, description, reference) do not
    affect the checksum.
    """
    canonical = sorted(
        (_rule_to_canonical(r) for r in rules),
        key=lambda d: (d["code"], d["effective_from"]),
    )
    payload = json.dumps(canonical, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def parse_rule_set(data: dict[str, Any], source_path: str | None = None) -> RuleSet:
    """Parse a whole rule-set document."""
    rules = tuple(parse_rule(r) for r in data.get("rules", []))
    return RuleSet(
        rule_set_id=data["rule_set_id"],
        version=int(data.get("version", 1)),
        jurisdiction=data.get("jurisdiction", "VN"),
        currency=data.get("currency", "VND"),
        rules=rules,
        checksum=compute_checksum(rules),
        source_path=source_path,
    )
