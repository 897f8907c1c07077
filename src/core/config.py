"""Runtime configuration model for the datastore.

This module owns all environment variable and YAML parsing and validation.
Other modules consume a typed config object instead of raw env reads.
"""

from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path
from typing import Any, Mapping, cast

import yaml

from core.constants import (
    DEFAULT_DATA_ROOT,
    DEFAULT_LOG_LEVEL,
    DOCUMENTS_DIR_NAME,
    SUPPORTED_LOG_LEVELS,
)
from core.errors import DataStoreConfigError

_TRUE_VALUES = ("1", "true", "yes", "on")
_FALSE_VALUES = ("0", "false", "no", "off")


@dataclass(frozen=True)
class DataStoreConfig:
    """Validated runtime configuration.

    Attributes:
        data_root: Directory that holds persistent store files.
        documents_dir: Writable directory used by the file codec store.
        bundle_dir: Optional read-only resource directory for model
            definitions and packaged files.
        load_store_by_default: Whether creating a container also loads
            its persistent store.
        log_level: Minimum structured log level.
    """

    data_root: Path
    documents_dir: Path
    bundle_dir: Path | None = None
    load_store_by_default: bool = True
    log_level: str = DEFAULT_LOG_LEVEL

    @classmethod
    def from_env(cls) -> "DataStoreConfig":
        """Build config from process environment variables.

        Returns:
            A validated config object.

        Raises:
            DataStoreConfigError: If environment values are invalid.
        """
        return cls.from_mapping(
            {
                "data_root": os.getenv("DATASTORE_DATA_ROOT"),
                "documents_dir": os.getenv("DATASTORE_DOCUMENTS_DIR"),
                "bundle_dir": os.getenv("DATASTORE_BUNDLE_DIR"),
                "load_store_by_default": os.getenv("DATASTORE_LOAD_STORE_BY_DEFAULT"),
                "log_level": os.getenv("DATASTORE_LOG_LEVEL"),
            }
        )

    @classmethod
    def from_yaml(cls, config_path: str | Path) -> "DataStoreConfig":
        """Build config from a YAML file with the same keys as the dataclass.

        Args:
            config_path: Path to the YAML config file.

        Returns:
            A validated config object.

        Raises:
            DataStoreConfigError: If the file is missing, malformed, or invalid.
        """
        path = Path(config_path).expanduser()
        if not path.is_file():
            raise DataStoreConfigError(
                f"Config file not found at {path}. Provide an existing YAML file."
            )
        try:
            payload = cast(object, yaml.safe_load(path.read_text(encoding="utf-8")))
        except yaml.YAMLError as error:
            raise DataStoreConfigError(
                f"Failed to parse config file {path}: {error}. Fix the YAML syntax."
            ) from error
        if payload is None:
            payload = {}
        if not isinstance(payload, dict):
            raise DataStoreConfigError(
                f"Invalid config file {path}: expected a mapping at top level."
            )
        return cls.from_mapping(cast(dict[str, Any], payload))

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "DataStoreConfig":
        """Build config from raw values, applying defaults for missing keys.

        Args:
            values: Raw config values keyed by field name.

        Returns:
            A validated config object.

        Raises:
            DataStoreConfigError: If a value cannot be parsed.
        """
        data_root = _resolve_path(values.get("data_root")) or DEFAULT_DATA_ROOT.resolve()
        documents_dir = _resolve_path(values.get("documents_dir")) or (
            data_root / DOCUMENTS_DIR_NAME
        )
        return cls(
            data_root=data_root,
            documents_dir=documents_dir,
            bundle_dir=_resolve_path(values.get("bundle_dir")),
            load_store_by_default=_parse_bool(
                "load_store_by_default", values.get("load_store_by_default"), True
            ),
            log_level=_parse_log_level(values.get("log_level")),
        )


def _resolve_path(raw_value: object) -> Path | None:
    if raw_value is None or raw_value == "":
        return None
    return Path(str(raw_value)).expanduser().resolve()


def _parse_bool(field_name: str, raw_value: object, default: bool) -> bool:
    """Parse a boolean config value.

    Args:
        field_name: Config key used in error messages.
        raw_value: Raw value from environment or YAML.
        default: Value used when the key is absent.

    Returns:
        Parsed boolean.

    Raises:
        DataStoreConfigError: If value is not a recognized boolean.
    """
    if raw_value is None or raw_value == "":
        return default
    if isinstance(raw_value, bool):
        return raw_value
    normalized = str(raw_value).strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    raise DataStoreConfigError(
        f"Invalid {field_name} value: expected a boolean, got '{raw_value}'. "
        f"Use one of {', '.join(_TRUE_VALUES + _FALSE_VALUES)}."
    )


def _parse_log_level(raw_value: object) -> str:
    """Parse and validate a log level name."""
    if raw_value is None or raw_value == "":
        return DEFAULT_LOG_LEVEL
    level = str(raw_value).strip().upper()
    if level not in SUPPORTED_LOG_LEVELS:
        raise DataStoreConfigError(
            f"Invalid log_level value '{raw_value}'. "
            f"Supported levels: {', '.join(SUPPORTED_LOG_LEVELS)}."
        )
    return level
