"""
Pytest fixtures for the WBS engine test suite.

Provides:
- Structured logging configured for the whole session
- A log capture fixture returning parsed JSON records
- Small line-item builders and a reference project tree
"""

import json
import logging
from decimal import Decimal
from io import StringIO

import pytest

from tests.builders import category, priced
from wbs_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())
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
    Capture wbs_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs):
            build_tree(items)
            logs = captured_logs()
            assert any(r["message"] == "tree_built" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("wbs_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


@pytest.fixture
def bdi():
    return Decimal("20")


@pytest.fixture
def project_items():
    """
    Reference project::

        1    Site works            (category)
        1.1    Excavation          item  100 m3 @ 10.00, previous 40, current 20
        1.2    Backfill            item   50 m3 @  8.00
        2    Structure             (category)
        2.1    Foundations         (category)
        2.1.1    Concrete          item   12 m3 @ 450.00, current 6
        2.1.2    Rebar             item  800 kg @   7.50, previous 200
        2.2    Masonry             item  300 m2 @  35.00
    """
    return [
        category("site", "Site works", order=0),
        priced("exc", "site", 0, "100", "10.00", "m3", "Excavation",
               previous_quantity="40", current_quantity="20"),
        priced("back", "site", 1, "50", "8.00", "m3", "Backfill"),
        category("struct", "Structure", order=1),
        category("found", "Foundations", parent_id="struct", order=0),
        priced("conc", "found", 0, "12", "450.00", "m3", "Concrete", current_quantity="6"),
        priced("rebar", "found", 1, "800", "7.50", "kg", "Rebar", previous_quantity="200"),
        priced("mason", "struct", 1, "300", "35.00", "m2", "Masonry"),
    ]
