"""Datastore exception hierarchy.

This module defines traceable domain errors with clear boundaries.
Each subsystem raises a specific error type for debuggability.
"""

from __future__ import annotations


class DataStoreError(Exception):
    """Base exception for all datastore failures."""


class DataStoreConfigError(DataStoreError):
    """Raised for invalid runtime configuration."""


class ModelError(DataStoreError):
    """Raised for invalid object model definitions or unknown entities."""


class StoreLoadError(DataStoreError):
    """Raised when the persistent store cannot be opened.

    Store loading happens once at setup. A failure leaves the process
    without a usable store and is treated as fatal.
    """


class SaveError(DataStoreError):
    """Raised when a context cannot persist its pending changes."""


class FetchError(DataStoreError):
    """Raised when a fetch request cannot be executed."""


class MergeConflictError(SaveError):
    """Raised when a save violates a uniqueness constraint under the error policy."""


class FileStoreError(DataStoreError):
    """Raised for codec file store failures."""


class DirectoryUnavailableError(FileStoreError):
    """Raised when the writable documents directory cannot be created."""


class SchemaMismatchError(FileStoreError):
    """Raised when decoded JSON does not fit the requested target type."""
