"""Unit tests for the SQLite store coordinator."""

from __future__ import annotations

import sqlite3

import pytest

from core.errors import FetchError, MergeConflictError, StoreLoadError
from core.types import StoreDescription
from store.managed_object import ObjectID
from store.object_model import AttributeType
from store.predicate import FetchRequest, Predicate
from store.store_coordinator import ChangeSet, MergePolicy, StoreCoordinator
from tests.model_fixtures import notes_model


def _loaded_coordinator(tmp_path) -> StoreCoordinator:
    coordinator = StoreCoordinator(notes_model())
    coordinator.add_persistent_store(StoreDescription(path=tmp_path / "Notes.sqlite"))
    return coordinator


def _insert_note(coordinator: StoreCoordinator, **values: object) -> ObjectID:
    object_id = coordinator.new_object_id("Note")
    coordinator.apply_changes(ChangeSet(inserted=[(object_id, dict(values))]))
    return object_id


def test_add_persistent_store_creates_entity_tables(tmp_path) -> None:
    """Adding a store should create one table per entity."""
    _loaded_coordinator(tmp_path)

    connection = sqlite3.connect(tmp_path / "Notes.sqlite")
    tables = {row[0] for row in connection.execute("SELECT name FROM sqlite_master")}
    connection.close()

    assert {"Note", "Tag"} <= tables


def test_add_persistent_store_is_idempotent(tmp_path) -> None:
    """Adding the same store twice should keep a single attachment."""
    coordinator = _loaded_coordinator(tmp_path)

    coordinator.add_persistent_store(StoreDescription(path=tmp_path / "Notes.sqlite"))

    assert len(coordinator.persistent_stores) == 1


def test_add_persistent_store_rejects_second_path(tmp_path) -> None:
    """A coordinator should refuse a different second store."""
    coordinator = _loaded_coordinator(tmp_path)

    with pytest.raises(StoreLoadError):
        coordinator.add_persistent_store(StoreDescription(path=tmp_path / "Other.sqlite"))


def test_add_persistent_store_raises_when_root_is_a_file(tmp_path) -> None:
    """An unusable data root should fail to load."""
    blocker = tmp_path / "blocker"
    blocker.write_text("x", encoding="utf-8")
    coordinator = StoreCoordinator(notes_model())

    with pytest.raises(StoreLoadError):
        coordinator.add_persistent_store(StoreDescription(path=blocker / "Notes.sqlite"))


def test_migration_adds_new_attribute_column(tmp_path) -> None:
    """Reopening with a wider model should add the missing column."""
    _loaded_coordinator(tmp_path).close()
    model = notes_model()
    model.entity("Note").add_attribute("color", AttributeType.STRING)
    coordinator = StoreCoordinator(model)
    coordinator.add_persistent_store(StoreDescription(path=tmp_path / "Notes.sqlite"))

    object_id = _insert_note(coordinator, title="a", color="red")

    assert coordinator.row_for(object_id)["color"] == "red"


def test_migration_disabled_rejects_schema_drift(tmp_path) -> None:
    """Without automatic migration, missing columns should fail the load."""
    _loaded_coordinator(tmp_path).close()
    model = notes_model()
    model.entity("Note").add_attribute("color", AttributeType.STRING)
    coordinator = StoreCoordinator(model)
    description = StoreDescription(path=tmp_path / "Notes.sqlite", migrate_automatically=False)

    with pytest.raises(StoreLoadError):
        coordinator.add_persistent_store(description)


def test_fetch_rows_without_store_raises(tmp_path) -> None:
    """Fetching before a store is added should raise."""
    coordinator = StoreCoordinator(notes_model())

    with pytest.raises(FetchError):
        coordinator.fetch_rows(FetchRequest("Note"))


def test_fetch_rows_applies_predicate_and_order(tmp_path) -> None:
    """Store fetches should filter and sort in SQL."""
    coordinator = _loaded_coordinator(tmp_path)
    for priority in (1, 3, 2):
        _insert_note(coordinator, title=f"n{priority}", priority=priority)

    rows = coordinator.fetch_rows(
        FetchRequest("Note", Predicate.where("priority", ">", 1), sort_by=("-priority",))
    )

    assert [values["priority"] for _, values in rows] == [3, 2]


def test_update_writes_only_changed_properties(tmp_path) -> None:
    """Updates should leave untouched columns as stored."""
    coordinator = _loaded_coordinator(tmp_path)
    object_id = _insert_note(coordinator, title="a", body="first")

    coordinator.apply_changes(ChangeSet(updated=[(object_id, {"priority": 5})]))

    assert coordinator.row_for(object_id)["body"] == "first"


def test_unique_insert_merges_into_existing_row(tmp_path) -> None:
    """A unique collision should merge into the existing row and remap the id."""
    coordinator = _loaded_coordinator(tmp_path)
    existing_id = _insert_note(coordinator, title="same", body="kept")
    new_id = coordinator.new_object_id("Note")

    remapped = coordinator.apply_changes(
        ChangeSet(inserted=[(new_id, {"title": "same", "priority": 9})])
    )

    assert remapped == {new_id: existing_id}
    assert coordinator.row_for(existing_id) == {
        "title": "same",
        "body": "kept",
        "priority": 9,
        "archived": None,
    }


def test_unique_insert_raises_under_error_policy(tmp_path) -> None:
    """The error policy should reject unique collisions."""
    coordinator = _loaded_coordinator(tmp_path)
    _insert_note(coordinator, title="same")
    new_id = coordinator.new_object_id("Note")

    with pytest.raises(MergeConflictError):
        coordinator.apply_changes(
            ChangeSet(inserted=[(new_id, {"title": "same"})]),
            MergePolicy.ERROR,
        )


def test_batch_delete_returns_deleted_ids(tmp_path) -> None:
    """Batch delete should remove matching rows and report their ids."""
    coordinator = _loaded_coordinator(tmp_path)
    keep_id = _insert_note(coordinator, title="keep", priority=1)
    drop_id = _insert_note(coordinator, title="drop", priority=5)

    deleted = coordinator.batch_delete("Note", Predicate.where("priority", ">", 2))

    assert deleted == [drop_id]
    assert coordinator.row_for(keep_id) is not None
