"""Shared object model and config builders for tests."""

from __future__ import annotations

from pathlib import Path

from core.config import DataStoreConfig
from store.object_model import AttributeType, ObjectModel


def notes_model() -> ObjectModel:
    """Build the two-entity model used across store tests."""
    model = ObjectModel(name="Notes")
    note = model.add_entity("Note")
    note.add_attribute("title", AttributeType.STRING, is_unique=True)
    note.add_attribute("body", AttributeType.STRING)
    note.add_attribute("priority", AttributeType.INTEGER, default=0)
    note.add_attribute("archived", AttributeType.BOOLEAN, default=False)
    tag = model.add_entity("Tag")
    tag.add_attribute("label", AttributeType.STRING, is_optional=False)
    return model


def config_for(tmp_path: Path, load_store_by_default: bool = True) -> DataStoreConfig:
    """Build a config rooted in a temporary directory."""
    return DataStoreConfig.from_mapping(
        {
            "data_root": str(tmp_path / "store"),
            "documents_dir": str(tmp_path / "documents"),
            "load_store_by_default": load_store_by_default,
        }
    )
