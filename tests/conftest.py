"""Pytest configuration for datastore test runs."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest


def pytest_sessionstart() -> None:
    """Add src directory to sys.path so core, store and fileio import."""
    project_root = Path(__file__).resolve().parent.parent
    src_path = project_root / "src"
    if str(src_path) not in sys.path:
        sys.path.insert(0, str(src_path))


@pytest.fixture
def fixture_bundle():
    """Bundle over tests/fixtures/bundle."""
    from core.bundle import Bundle
    from tests.fixture_paths import bundle_fixture_dir

    return Bundle.from_directory(bundle_fixture_dir())
