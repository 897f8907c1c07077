"""Core constants used across datastore modules.

This module centralizes non-domain-specific constants.
Keeping values here avoids magic literals in business logic.
"""

from __future__ import annotations

from pathlib import Path

DEFAULT_DATA_ROOT = Path(".datastore")
DOCUMENTS_DIR_NAME = "documents"
DEFAULT_LOG_LEVEL = "INFO"
SUPPORTED_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
STORE_TYPE_SQLITE = "sqlite"
STORE_FILE_EXTENSION = "sqlite"
MODEL_FILE_EXTENSION = "datamodel.json"
OBJECT_ID_SCHEME = "x-datastore"
PRIMARY_KEY_COLUMN = "_object_id"
MAIN_CONTEXT_NAME = "Main context"
PRIVATE_CONTEXT_NAME = "Private context"
PARENT_CONTEXT_NAME = "Parent context"
DEFAULT_CONTEXT_NAME = "Context"
JSON_INDENT = 2
TEXT_ENCODING = "utf-8"
