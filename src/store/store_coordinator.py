"""SQLite-backed persistent store coordinator.

This module owns the store connection shared by every context on one
container. It creates and migrates entity tables, runs fetches and
batch deletes, and applies context change sets in one transaction.
Saves from different contexts serialize on a single engine lock.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
import sqlite3
import threading
from typing import Any

from core.constants import PRIMARY_KEY_COLUMN
from core.errors import FetchError, MergeConflictError, SaveError, StoreLoadError
from core.logging_config import get_logger
from core.types import StoreDescription
from store.managed_object import ObjectID
from store.object_model import EntityDescription, ObjectModel
from store.predicate import FetchRequest, Predicate, quote_identifier

_LOGGER = get_logger(__name__)


class MergePolicy(str, Enum):
    """Conflict handling applied when a change set reaches the store.

    ``PROPERTY_TRUMP`` writes only changed properties, so for each property
    the most recently saved value wins; inserts that collide on a unique
    attribute merge into the existing row. ``ERROR`` rejects such
    collisions.
    """

    PROPERTY_TRUMP = "property_trump"
    ERROR = "error"


@dataclass
class ChangeSet:
    """Pending changes pushed out of one context.

    Attributes:
        inserted: New objects with their assigned values.
        updated: Existing objects with only their changed values.
        deleted: Identifiers of deleted objects.
    """

    inserted: list[tuple[ObjectID, dict[str, Any]]] = field(default_factory=list)
    updated: list[tuple[ObjectID, dict[str, Any]]] = field(default_factory=list)
    deleted: list[ObjectID] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.inserted or self.updated or self.deleted)


class StoreCoordinator:
    """Shared gateway between object contexts and the store file."""

    def __init__(self, model: ObjectModel, logger: Any | None = None) -> None:
        self._model = model
        self._logger = logger or _LOGGER
        self._lock = threading.RLock()
        self._connection: sqlite3.Connection | None = None
        self._description: StoreDescription | None = None

    @property
    def model(self) -> ObjectModel:
        return self._model

    @property
    def persistent_stores(self) -> tuple[StoreDescription, ...]:
        with self._lock:
            return (self._description,) if self._description is not None else ()

    def add_persistent_store(self, description: StoreDescription) -> StoreDescription:
        """Open the store file and bring its schema in line with the model.

        Adding the same store twice returns the existing description.

        Args:
            description: Store to open.

        Returns:
            The attached store description.

        Raises:
            StoreLoadError: If the file cannot be opened or migrated, or a
                different store is already attached.
        """
        with self._lock:
            if self._description is not None:
                if self._description.path == description.path:
                    return self._description
                raise StoreLoadError(
                    f"Coordinator already has a store at {self._description.path}; "
                    f"cannot also add {description.path}."
                )
            try:
                description.path.parent.mkdir(parents=True, exist_ok=True)
                connection = sqlite3.connect(str(description.path), check_same_thread=False)
            except (OSError, sqlite3.Error) as error:
                raise StoreLoadError(
                    f"Failed to open store at {description.path}: {error}. "
                    "Check that the data root is writable."
                ) from error
            try:
                self._migrate(connection, description)
            except (sqlite3.Error, StoreLoadError) as error:
                connection.close()
                if isinstance(error, StoreLoadError):
                    raise
                raise StoreLoadError(
                    f"Failed to prepare store schema at {description.path}: {error}."
                ) from error
            self._connection = connection
            self._description = description
            self._logger.info(
                "persistent_store_added",
                path=str(description.path),
                entity_count=len(self._model.entities),
            )
            return description

    def close(self) -> None:
        """Close the store connection, detaching the store."""
        with self._lock:
            if self._connection is not None:
                self._connection.close()
            self._connection = None
            self._description = None

    def new_object_id(self, entity_name: str) -> ObjectID:
        """Assign an identifier for a newly inserted object."""
        self._model.entity(entity_name)
        return ObjectID.new(entity_name)

    def fetch_rows(self, request: FetchRequest) -> list[tuple[ObjectID, dict[str, Any]]]:
        """Run a fetch request against the store.

        Raises:
            FetchError: If no store is attached or the query fails.
        """
        entity = self._model.entity(request.entity_name)
        where_sql, params = _where_clause(entity, request.predicate)
        sql = f"SELECT * FROM {quote_identifier(entity.name)} WHERE {where_sql}"
        order_terms = [
            f"{quote_identifier(name)} {'DESC' if descending else 'ASC'}"
            for name, descending in request.sort_keys()
        ]
        if order_terms:
            sql += " ORDER BY " + ", ".join(order_terms)
        if request.limit is not None:
            sql += " LIMIT ?"
            params.append(request.limit)
        with self._lock:
            connection = self._require_connection(FetchError)
            try:
                cursor = connection.execute(sql, params)
                rows = cursor.fetchall()
                columns = [column[0] for column in cursor.description]
            except sqlite3.Error as error:
                raise FetchError(
                    f"Failed to fetch {entity.name} from store: {error}."
                ) from error
        return [_decode_row(entity, columns, row) for row in rows]

    def row_for(self, object_id: ObjectID) -> dict[str, Any] | None:
        """Return the stored values for one object, or None when absent."""
        entity = self._model.entity(object_id.entity_name)
        sql = (
            f"SELECT * FROM {quote_identifier(entity.name)} "
            f"WHERE {quote_identifier(PRIMARY_KEY_COLUMN)} = ?"
        )
        with self._lock:
            connection = self._require_connection(FetchError)
            try:
                cursor = connection.execute(sql, (object_id.key,))
                row = cursor.fetchone()
                columns = [column[0] for column in cursor.description]
            except sqlite3.Error as error:
                raise FetchError(f"Failed to read object {object_id}: {error}.") from error
        if row is None:
            return None
        return _decode_row(entity, columns, row)[1]

    def apply_changes(
        self,
        changes: ChangeSet,
        merge_policy: MergePolicy = MergePolicy.PROPERTY_TRUMP,
    ) -> dict[ObjectID, ObjectID]:
        """Write a change set in one transaction.

        Args:
            changes: Pending context changes.
            merge_policy: Conflict handling for unique-attribute collisions.

        Returns:
            Identifier remapping for inserts merged into existing rows.

        Raises:
            SaveError: If no store is attached or the write fails.
            MergeConflictError: If a unique collision occurs under ``ERROR``.
        """
        remapped: dict[ObjectID, ObjectID] = {}
        if changes.is_empty:
            return remapped
        with self._lock:
            connection = self._require_connection(SaveError)
            try:
                with connection:
                    for object_id, values in changes.inserted:
                        existing = self._insert(connection, object_id, values, merge_policy)
                        if existing is not None:
                            remapped[object_id] = existing
                    for object_id, values in changes.updated:
                        self._update(connection, object_id, values)
                    for object_id in changes.deleted:
                        self._delete(connection, object_id)
            except sqlite3.Error as error:
                raise SaveError(f"Store rejected save: {error}.") from error
        return remapped

    def batch_delete(self, entity_name: str, predicate: Predicate | None = None) -> list[ObjectID]:
        """Delete matching rows directly in the store.

        Contexts are not consulted; callers merge the returned identifiers
        into any context that may hold the deleted objects.

        Raises:
            SaveError: If no store is attached or the delete fails.
        """
        entity = self._model.entity(entity_name)
        where_sql, params = _where_clause(entity, predicate)
        table = quote_identifier(entity.name)
        key_column = quote_identifier(PRIMARY_KEY_COLUMN)
        with self._lock:
            connection = self._require_connection(SaveError)
            try:
                with connection:
                    keys = [
                        row[0]
                        for row in connection.execute(
                            f"SELECT {key_column} FROM {table} WHERE {where_sql}", params
                        )
                    ]
                    connection.execute(f"DELETE FROM {table} WHERE {where_sql}", params)
            except sqlite3.Error as error:
                raise SaveError(f"Batch delete of {entity.name} failed: {error}.") from error
        return [ObjectID(entity_name=entity.name, key=str(key)) for key in keys]

    def _insert(
        self,
        connection: sqlite3.Connection,
        object_id: ObjectID,
        values: dict[str, Any],
        merge_policy: MergePolicy,
    ) -> ObjectID | None:
        entity = self._model.entity(object_id.entity_name)
        existing = _find_unique_match(connection, entity, values)
        if existing is not None:
            if merge_policy is MergePolicy.ERROR:
                raise MergeConflictError(
                    f"Insert of {entity.name} collides with existing object {existing} "
                    "on a unique attribute."
                )
            self._update(connection, existing, values)
            return existing
        columns = [PRIMARY_KEY_COLUMN, *values.keys()]
        stored = [object_id.key] + [
            entity.attribute(name).attribute_type.to_storage(value)
            for name, value in values.items()
        ]
        column_sql = ", ".join(quote_identifier(name) for name in columns)
        placeholders = ", ".join("?" for _ in columns)
        connection.execute(
            f"INSERT INTO {quote_identifier(entity.name)} ({column_sql}) VALUES ({placeholders})",
            stored,
        )
        return None

    def _update(
        self,
        connection: sqlite3.Connection,
        object_id: ObjectID,
        values: dict[str, Any],
    ) -> None:
        if not values:
            return
        entity = self._model.entity(object_id.entity_name)
        assignments = ", ".join(f"{quote_identifier(name)} = ?" for name in values)
        stored = [
            entity.attribute(name).attribute_type.to_storage(value)
            for name, value in values.items()
        ]
        cursor = connection.execute(
            f"UPDATE {quote_identifier(entity.name)} SET {assignments} "
            f"WHERE {quote_identifier(PRIMARY_KEY_COLUMN)} = ?",
            [*stored, object_id.key],
        )
        if cursor.rowcount == 0:
            self._logger.warning("update_target_missing", object_id=object_id.uri)

    def _delete(self, connection: sqlite3.Connection, object_id: ObjectID) -> None:
        connection.execute(
            f"DELETE FROM {quote_identifier(object_id.entity_name)} "
            f"WHERE {quote_identifier(PRIMARY_KEY_COLUMN)} = ?",
            (object_id.key,),
        )

    def _migrate(self, connection: sqlite3.Connection, description: StoreDescription) -> None:
        """Create missing tables, columns and unique indexes."""
        for entity in self._model.entities.values():
            table = quote_identifier(entity.name)
            existing_columns = _table_columns(connection, entity.name)
            if not existing_columns:
                column_defs = [f"{quote_identifier(PRIMARY_KEY_COLUMN)} TEXT PRIMARY KEY"] + [
                    f"{quote_identifier(attribute.name)} {attribute.attribute_type.sql_type}"
                    for attribute in entity.attributes
                ]
                connection.execute(f"CREATE TABLE {table} ({', '.join(column_defs)})")
            else:
                missing = [
                    attribute
                    for attribute in entity.attributes
                    if attribute.name not in existing_columns
                ]
                if missing and not description.migrate_automatically:
                    raise StoreLoadError(
                        f"Store at {description.path} is missing columns "
                        f"{[attribute.name for attribute in missing]} for {entity.name} "
                        "and automatic migration is disabled."
                    )
                for attribute in missing:
                    connection.execute(
                        f"ALTER TABLE {table} ADD COLUMN "
                        f"{quote_identifier(attribute.name)} {attribute.attribute_type.sql_type}"
                    )
            for constraint in entity.uniqueness_constraints:
                index_name = quote_identifier(f"uq_{entity.name}_{'_'.join(constraint)}")
                columns = ", ".join(quote_identifier(name) for name in constraint)
                connection.execute(
                    f"CREATE UNIQUE INDEX IF NOT EXISTS {index_name} ON {table} ({columns})"
                )
        connection.commit()

    def _require_connection(self, error_type: type[Exception]) -> sqlite3.Connection:
        if self._connection is None:
            raise error_type(
                "No persistent store is loaded. Call load_store() before using the context."
            )
        return self._connection


def _where_clause(
    entity: EntityDescription,
    predicate: Predicate | None,
) -> tuple[str, list[object]]:
    if predicate is None:
        return "1", []
    predicate.validate(entity)
    return predicate.to_sql(entity)


def _find_unique_match(
    connection: sqlite3.Connection,
    entity: EntityDescription,
    values: dict[str, Any],
) -> ObjectID | None:
    """Return the existing object sharing a unique attribute value."""
    for constraint in entity.uniqueness_constraints:
        if any(values.get(name) is None for name in constraint):
            continue
        conditions = " AND ".join(f"{quote_identifier(name)} = ?" for name in constraint)
        params = [
            entity.attribute(name).attribute_type.to_storage(values[name]) for name in constraint
        ]
        row = connection.execute(
            f"SELECT {quote_identifier(PRIMARY_KEY_COLUMN)} FROM {quote_identifier(entity.name)} "
            f"WHERE {conditions}",
            params,
        ).fetchone()
        if row is not None:
            return ObjectID(entity_name=entity.name, key=str(row[0]))
    return None


def _table_columns(connection: sqlite3.Connection, table_name: str) -> set[str]:
    rows = connection.execute(f"PRAGMA table_info({quote_identifier(table_name)})").fetchall()
    return {str(row[1]) for row in rows}


def _decode_row(
    entity: EntityDescription,
    columns: list[str],
    row: tuple[Any, ...],
) -> tuple[ObjectID, dict[str, Any]]:
    raw = dict(zip(columns, row))
    object_id = ObjectID(entity_name=entity.name, key=str(raw[PRIMARY_KEY_COLUMN]))
    values = {
        attribute.name: attribute.attribute_type.from_storage(raw.get(attribute.name))
        for attribute in entity.attributes
    }
    return object_id, values


def store_path(data_root: Path, model_name: str, extension: str) -> Path:
    """Return the store file location for a model."""
    return data_root / f"{model_name}.{extension}"
