"""Shared typed models.

This module defines immutable result and descriptor types used by the
store and fileio layers to keep interfaces explicit and stable.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

from core.constants import STORE_TYPE_SQLITE


class ContextRole(str, Enum):
    """Which of the coordinator's two contexts a caller works with."""

    MAIN = "main"
    BACKGROUND = "background"


class CoordinatorState(str, Enum):
    """Lifecycle of a context coordinator."""

    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"
    SAVING = "saving"


class SaveStatus(str, Enum):
    """Outcome of a save request."""

    SAVED = "saved"
    NO_CHANGES = "no_changes"
    FAILED = "failed"
    PARENT_FAILED = "parent_failed"


@dataclass(frozen=True)
class SaveResult:
    """Result of saving one context and, optionally, its parent.

    Attributes:
        status: Save outcome.
        context_name: Name of the context that failed, or that saved last.
        message: Error description when the save failed.
    """

    status: SaveStatus
    context_name: str
    message: str | None = None

    @property
    def ok(self) -> bool:
        """Whether every requested level was persisted."""
        return self.status in (SaveStatus.SAVED, SaveStatus.NO_CHANGES)

    @property
    def partially_durable(self) -> bool:
        """Whether the child saved but its parent did not."""
        return self.status is SaveStatus.PARENT_FAILED


@dataclass(frozen=True)
class StoreDescription:
    """Descriptor of a persistent store file.

    Attributes:
        path: Store file location.
        store_type: Engine store type identifier.
        infer_mapping: Whether schema differences are inferred on load.
        migrate_automatically: Whether missing tables and columns are added.
    """

    path: Path
    store_type: str = STORE_TYPE_SQLITE
    infer_mapping: bool = True
    migrate_automatically: bool = True


class CodecErrorKind(str, Enum):
    """Reason a file codec operation produced no value."""

    NOT_FOUND = "not_found"
    CORRUPT = "corrupt"
    SCHEMA_MISMATCH = "schema_mismatch"
    IO_ERROR = "io_error"
    DIRECTORY_UNAVAILABLE = "directory_unavailable"
    ENCODE_FAILED = "encode_failed"


@dataclass(frozen=True)
class CodecResult:
    """Result of a file codec operation.

    Attributes:
        value: Decoded value on load, written path on save, or None.
        error_kind: Failure reason, None on success.
        message: Human-readable failure description.
    """

    value: Any = None
    error_kind: CodecErrorKind | None = None
    message: str | None = None

    @property
    def ok(self) -> bool:
        """Whether the operation succeeded."""
        return self.error_kind is None

    @classmethod
    def failure(cls, error_kind: CodecErrorKind, message: str) -> "CodecResult":
        """Build a failed result with no value."""
        return cls(value=None, error_kind=error_kind, message=message)
