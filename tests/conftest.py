"""
Pytest fixtures for the farmbook tax engine test suite.

Provides:
- The shipped Vietnamese rule set and its registry
- Insurance config and PIT bracket table resolved from it
- An in-memory SQLite session for rule store tests
- Structured log capture
"""

import json
import logging
from datetime import date
from io import StringIO
from typing import Generator

import pytest
from sqlalchemy.orm import Session

from farmbook_config import load_rule_set
from farmbook_engines.insurance import InsuranceConfig
from farmbook_engines.pit import PITRates
from farmbook_engines.progressive import brackets_from_rules
from farmbook_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session,
    init_engine_from_url,
    reset_engine,
)
from farmbook_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)

AS_OF = date(2025, 1, 31)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture farmbook logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs):
            compose_payroll(...)
            logs = captured_logs()
            assert any(r["message"] == "payroll_computed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("farmbook")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Rule fixtures
# =============================================================================


@pytest.fixture(scope="session")
def rule_set():
    """The shipped VN_DEFAULT rule set."""
    return load_rule_set()


@pytest.fixture(scope="session")
def registry(rule_set):
    return rule_set.registry()


@pytest.fixture
def as_of() -> date:
    return AS_OF


@pytest.fixture
def insurance_config(registry, as_of) -> InsuranceConfig:
    return InsuranceConfig.from_rules(registry, as_of)


@pytest.fixture
def brackets(registry, as_of):
    return brackets_from_rules(registry, as_of)


@pytest.fixture
def pit_rates(registry, as_of) -> PITRates:
    return PITRates.from_rules(registry, as_of)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def session() -> Generator[Session, None, None]:
    """Fresh in-memory SQLite database with the rule table created."""
    init_engine_from_url("sqlite:///:memory:")
    create_tables()
    s = get_session()
    try:
        yield s
    finally:
        s.close()
        drop_tables()
        reset_engine()
