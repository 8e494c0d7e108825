"""
farmbook_config -- rule-set loading for the tax and payroll engine.

Responsibility:
    Provides ``load_rule_set()``, which reads a YAML rule set (the shipped
    Vietnamese default, or a file supplied by the caller), validates its
    integrity and returns an immutable ``RuleSet``.  ``RuleSet.registry()``
    turns it into the ``RuleRegistry`` snapshot every calculator consumes.

Architecture position:
    Configuration -- sits above ``farmbook_kernel`` and beside the SQLAlchemy
    rule store.  The kernel MUST NEVER import from ``farmbook_config``.

Invariants enforced:
    - Integrity on load: overlapping active windows for one code are
      rejected with ``RuleSetIntegrityError`` instead of surfacing later
      as an ambiguous resolution mid-payroll.
    - Deterministic checksum: the same rules always give the same checksum.

Failure modes:
    - ``FileNotFoundError`` -- the rule-set file does not exist.
    - ``ValueError`` / ``KeyError`` -- malformed rule mappings.
    - ``RuleSetIntegrityError`` -- integrity validation failed.

Audit relevance:
    Every successful load emits a ``FARMBOOK_RULESET_TRACE`` log entry with
    the rule-set id, version and checksum, tying each computation back to
    the exact rule version that governed it.
"""

from __future__ import annotations

from pathlib import Path

from farmbook_config.loader import RuleSet, compute_checksum, load_yaml_file, parse_rule_set
from farmbook_config.validator import validate_rule_set
from farmbook_kernel.exceptions import RuleSetIntegrityError
from farmbook_kernel.logging_config import get_logger

_logger = get_logger("config")

DEFAULT_RULE_SET_PATH = Path(__file__).parent / "sets" / "vn_default.yaml"

__all__ = [
    "DEFAULT_RULE_SET_PATH",
    "RuleSet",
    "compute_checksum",
    "load_rule_set",
    "validate_rule_set",
]


def load_rule_set(path: Path | str | None = None, validate: bool = True) -> RuleSet:
    """
    Load a rule set from YAML.

    Preconditions:
        - ``path`` points to a rule-set YAML file, or is None for the
          shipped Vietnamese default.
    Postconditions:
        - Returns a frozen ``RuleSet``; when ``validate`` is true it has
          no overlapping active windows and no negative values.
    Raises:
        FileNotFoundError: if the file does not exist.
        RuleSetIntegrityError: if ``validate`` and integrity checks fail.
    """
    source = Path(path) if path is not None else DEFAULT_RULE_SET_PATH
    rule_set = parse_rule_set(load_yaml_file(source), source_path=str(source))

    if validate:
        errors = validate_rule_set(rule_set.rules)
        if errors:
            _logger.error("rule_set_integrity_failed", extra={
                "rule_set_id": rule_set.rule_set_id,
                "errors": list(errors),
            })
            raise RuleSetIntegrityError(rule_set.rule_set_id, errors)

    _logger.info(
        "FARMBOOK_RULESET_TRACE",
        extra={
            "trace_type": "FARMBOOK_RULESET_TRACE",
            "rule_set_id": rule_set.rule_set_id,
            "rule_set_version": rule_set.version,
            "checksum": rule_set.checksum,
            "rule_count": len(rule_set.rules),
            "source_path": rule_set.source_path,
        },
    )
    return rule_set
