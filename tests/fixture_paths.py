"""Shared fixture path helpers for datastore tests."""

from __future__ import annotations

from pathlib import Path

BUNDLE_FIXTURE_DIR = "bundle"


def fixture_path(relative_path: str) -> Path:
    """Resolve a fixture path relative to tests/fixtures.

    Args:
        relative_path: Path under fixtures root.

    Returns:
        Absolute fixture path.
    """
    tests_root = Path(__file__).resolve().parent
    return tests_root / "fixtures" / relative_path


def bundle_fixture_dir() -> Path:
    """Return the read-only bundle holding model and codec fixtures."""
    return fixture_path(BUNDLE_FIXTURE_DIR)
