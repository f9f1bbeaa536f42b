"""Root pytest configuration: opt-in gating for live-database tests."""

import os
from pathlib import Path

import pytest

INTEGRATION_DIR = Path(__file__).parent / "tests" / "integration"


def pytest_collection_modifyitems(config, items):
    """Mark tests under tests/integration and skip them unless RUN_INTEGRATION_TESTS=1."""
    for item in items:
        if INTEGRATION_DIR in Path(str(item.fspath)).parents:
            item.add_marker(pytest.mark.integration)

    if os.getenv("RUN_INTEGRATION_TESTS", "0") == "1":
        return
    skip_live = pytest.mark.skip(reason="Live PostgreSQL tests need RUN_INTEGRATION_TESTS=1")
    for item in items:
        if item.get_closest_marker("integration"):
            item.add_marker(skip_live)
