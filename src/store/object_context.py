"""Object contexts: units of work over a persistent store.

This module tracks inserted, updated and deleted objects, serves fetches
that include pending changes, and saves either into a parent context or
into the store coordinator. Private contexts run their work on one
dedicated worker thread while the caller blocks.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from enum import Enum
import threading
from typing import Any, Callable, Iterable, Mapping, TypeVar

from core.constants import DEFAULT_CONTEXT_NAME, PARENT_CONTEXT_NAME, PRIVATE_CONTEXT_NAME
from core.errors import DataStoreError, FetchError, SaveError
from core.logging_config import get_logger
from core.types import SaveResult, SaveStatus
from store.managed_object import ManagedObject, ObjectID
from store.object_model import ObjectModel
from store.predicate import FetchRequest, Predicate
from store.store_coordinator import ChangeSet, MergePolicy, StoreCoordinator

_LOGGER = get_logger(__name__)

_T = TypeVar("_T")

DELETED_OBJECTS_KEY = "deleted"
UPDATED_OBJECTS_KEY = "updated"


class ConcurrencyType(str, Enum):
    """Where a context's work executes."""

    MAIN = "main"
    PRIVATE = "private"


class ObjectContext:
    """Unit-of-work scope tracking pending changes before persistence.

    A context is either a root, saving into a ``StoreCoordinator``, or a
    child, saving into its parent context. Children hold a plain reference
    to the parent and never own it.
    """

    def __init__(
        self,
        concurrency_type: ConcurrencyType,
        coordinator: StoreCoordinator | None = None,
        parent: "ObjectContext | None" = None,
        merge_policy: MergePolicy = MergePolicy.PROPERTY_TRUMP,
        name: str = DEFAULT_CONTEXT_NAME,
        logger: Any | None = None,
    ) -> None:
        """Initialize a context.

        Args:
            concurrency_type: Main-thread or private-queue execution.
            coordinator: Store coordinator for root contexts.
            parent: Parent context for child contexts.
            merge_policy: Conflict handling applied on save.
            name: Label used in log events.
            logger: Structured logger; module logger when omitted.

        Raises:
            DataStoreError: Unless exactly one of coordinator and parent is given.
        """
        if (coordinator is None) == (parent is None):
            raise DataStoreError("A context needs exactly one of a store coordinator or a parent.")
        self._concurrency_type = concurrency_type
        if coordinator is None:
            coordinator = parent.coordinator  # type: ignore[union-attr]
        self._coordinator = coordinator
        self._parent = parent
        self.merge_policy = merge_policy
        self.name = name
        self.should_delete_inaccessible_faults = False
        self._logger = logger or _LOGGER
        self._lock = threading.RLock()
        self._worker_ident: int | None = None
        self._executor: ThreadPoolExecutor | None = None
        if concurrency_type is ConcurrencyType.PRIVATE:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"context-{name}")
        self._registered: dict[ObjectID, ManagedObject] = {}
        self._inserted: dict[ObjectID, ManagedObject] = {}
        self._updated: dict[ObjectID, ManagedObject] = {}
        self._deleted: dict[ObjectID, ManagedObject] = {}

    @property
    def concurrency_type(self) -> ConcurrencyType:
        return self._concurrency_type

    @property
    def parent(self) -> "ObjectContext | None":
        return self._parent

    @property
    def coordinator(self) -> StoreCoordinator:
        return self._coordinator

    @property
    def model(self) -> ObjectModel:
        return self._coordinator.model

    @property
    def has_changes(self) -> bool:
        with self._lock:
            return bool(self._inserted or self._updated or self._deleted)

    @property
    def registered_objects(self) -> tuple[ManagedObject, ...]:
        with self._lock:
            return tuple(self._registered.values())

    def perform_and_wait(self, work: Callable[[], _T]) -> _T:
        """Run work on this context's queue and block until it finishes.

        Main contexts run the work inline. Private contexts hand it to
        their worker thread; calls made from that worker run inline.
        """
        if self._executor is None or threading.get_ident() == self._worker_ident:
            return self._run_locked(work)
        return self._executor.submit(self._run_on_worker, work).result()

    def child_context(
        self,
        name: str = PRIVATE_CONTEXT_NAME,
        logger: Any | None = None,
    ) -> "ObjectContext":
        """Create a private-queue child that saves into this context."""
        child = ObjectContext(
            ConcurrencyType.PRIVATE,
            parent=self,
            merge_policy=MergePolicy.PROPERTY_TRUMP,
            name=name,
            logger=logger or self._logger,
        )
        child.should_delete_inaccessible_faults = True
        return child

    def insert(self, entity_name: str, **values: Any) -> ManagedObject:
        """Create a new object with attribute defaults and the given values.

        Raises:
            ModelError: If the entity or a value is invalid.
        """
        entity = self.model.entity(entity_name)
        entity.validate_values(values)

        def _insert() -> ManagedObject:
            object_id = self._coordinator.new_object_id(entity_name)
            managed = ManagedObject(entity, object_id, self)
            initial = {
                attribute.name: attribute.default
                for attribute in entity.attributes
                if attribute.default is not None
            }
            initial.update(values)
            managed._apply_changes(initial)
            managed.is_inserted = True
            self._registered[object_id] = managed
            self._inserted[object_id] = managed
            return managed

        return self.perform_and_wait(_insert)

    def delete(self, managed: ManagedObject) -> None:
        """Mark an object for deletion on the next save.

        Raises:
            DataStoreError: If the object belongs to another context.
        """
        if managed.context is not self:
            raise DataStoreError(
                f"Object {managed.object_id} belongs to context '{managed.context.name}', "
                f"not '{self.name}'."
            )

        def _delete() -> None:
            object_id = managed.object_id
            self._updated.pop(object_id, None)
            if self._inserted.pop(object_id, None) is not None:
                self._registered.pop(object_id, None)
            else:
                self._deleted[object_id] = managed
            managed.is_deleted = True

        self.perform_and_wait(_delete)

    def object_with_id(self, object_id: ObjectID) -> ManagedObject | None:
        """Return the registered or stored object for an identifier."""

        def _lookup() -> ManagedObject | None:
            registered = self._registered.get(object_id)
            if registered is not None:
                return None if registered.is_deleted else registered
            values = self._inherited_row(object_id)
            if values is None:
                return None
            return self._materialize(object_id, values)

        return self.perform_and_wait(_lookup)

    def execute_fetch(self, request: FetchRequest) -> list[ManagedObject]:
        """Fetch objects, including pending changes of this context and its ancestors.

        Raises:
            DataStoreError: If the request is invalid or the store fails.
        """
        return self.perform_and_wait(lambda: self._fetch_locked(request))

    def fetch_and_wait(self, request: FetchRequest) -> list[ManagedObject]:
        """Fetch objects, returning an empty list on failure."""
        try:
            return self.execute_fetch(request)
        except DataStoreError as error:
            self._logger.error(
                "fetch_failed",
                context=self.name,
                entity_name=request.entity_name,
                error=str(error),
            )
            return []

    def save(self) -> bool:
        """Persist pending changes to the parent context or the store.

        Returns:
            Whether there were changes to persist.

        Raises:
            SaveError: If the store is missing or rejects the changes.
        """
        return self.perform_and_wait(self._save_locked)

    def save_with_result(self, context_name: str | None = None) -> SaveResult:
        """Save this context and report the outcome without raising."""
        label = context_name or self.name
        if not self._coordinator.persistent_stores:
            self._logger.error("save_failed", context=label, reason="no_persistent_store")
            return SaveResult(SaveStatus.FAILED, label, "No persistent store is loaded.")
        try:
            saved = self.save()
        except DataStoreError as error:
            self._logger.error("save_failed", context=label, error=str(error))
            return SaveResult(SaveStatus.FAILED, label, str(error))
        if not saved:
            return SaveResult(SaveStatus.NO_CHANGES, label)
        self._logger.info("context_saved", context=label)
        return SaveResult(SaveStatus.SAVED, label)

    def save_changes(self, context_name: str = DEFAULT_CONTEXT_NAME) -> bool:
        """Save this context, logging instead of raising on failure."""
        return self.save_with_result(context_name).ok

    def save_private_and_parent(self) -> SaveResult:
        """Save this context and then its parent.

        A root context has nothing above it, so its own result is returned.
        When the child saves but the parent does not, the result reports
        ``PARENT_FAILED``: the changes sit in the parent unsaved.
        """
        child_result = self.save_with_result(PRIVATE_CONTEXT_NAME)
        if not child_result.ok or self._parent is None:
            return child_result
        parent_result = self._parent.save_with_result(PARENT_CONTEXT_NAME)
        if not parent_result.ok:
            return SaveResult(SaveStatus.PARENT_FAILED, PARENT_CONTEXT_NAME, parent_result.message)
        if SaveStatus.SAVED in (child_result.status, parent_result.status):
            return SaveResult(SaveStatus.SAVED, PARENT_CONTEXT_NAME)
        return SaveResult(SaveStatus.NO_CHANGES, PARENT_CONTEXT_NAME)

    def execute_batch_delete(
        self,
        entity_name: str,
        predicate: Predicate | None = None,
    ) -> list[ObjectID]:
        """Delete matching rows directly in the store, bypassing the context.

        Raises:
            DataStoreError: If the entity is unknown or the store fails.
        """
        return self.perform_and_wait(
            lambda: self._coordinator.batch_delete(entity_name, predicate)
        )

    def clear_objects(self, entity_name: str, predicate: Predicate | None = None) -> list[ObjectID]:
        """Batch delete matching objects, invalidate them in memory, and save.

        Failures are logged and yield an empty list.
        """

        def _clear() -> list[ObjectID]:
            deleted_ids = self._coordinator.batch_delete(entity_name, predicate)
            merge_changes_from_remote_save(
                {DELETED_OBJECTS_KEY: deleted_ids},
                list(self.lineage()),
            )
            self._logger.info(
                "batch_delete_completed",
                context=self.name,
                entity_name=entity_name,
                deleted_count=len(deleted_ids),
            )
            self.save_changes(self.name)
            return deleted_ids

        try:
            return self.perform_and_wait(_clear)
        except DataStoreError as error:
            self._logger.error(
                "batch_delete_failed",
                context=self.name,
                entity_name=entity_name,
                error=str(error),
            )
            return []

    def clear_all_objects(self, entity_names: Iterable[str]) -> list[ObjectID]:
        """Clear every object of each named entity."""
        deleted: list[ObjectID] = []
        for entity_name in entity_names:
            deleted.extend(self.clear_objects(entity_name))
        return deleted

    def reset(self) -> None:
        """Discard pending changes and forget registered objects."""

        def _reset() -> None:
            self._registered.clear()
            self._inserted.clear()
            self._updated.clear()
            self._deleted.clear()

        self.perform_and_wait(_reset)

    def lineage(self) -> Iterable["ObjectContext"]:
        """Yield this context followed by each ancestor."""
        context: ObjectContext | None = self
        while context is not None:
            yield context
            context = context.parent

    def close(self) -> None:
        """Stop the private worker thread, if any."""
        if self._executor is not None:
            self._executor.shutdown(wait=True)

    def _run_on_worker(self, work: Callable[[], _T]) -> _T:
        self._worker_ident = threading.get_ident()
        return self._run_locked(work)

    def _run_locked(self, work: Callable[[], _T]) -> _T:
        with self._lock:
            return work()

    def _mark_updated(self, managed: ManagedObject) -> None:
        with self._lock:
            object_id = managed.object_id
            if object_id not in self._inserted and object_id not in self._deleted:
                self._updated[object_id] = managed

    def _fetch_locked(self, request: FetchRequest) -> list[ManagedObject]:
        entity = self.model.entity(request.entity_name)
        if request.predicate is not None:
            request.predicate.validate(entity)
        for attribute, _ in request.sort_keys():
            entity.attribute(attribute)
        clean = not any(context._has_pending_for(entity.name) for context in self.lineage())
        store_request = request if clean else FetchRequest(entity_name=entity.name)
        rows = self._inherited_rows(store_request)
        results: list[ManagedObject] = []
        for object_id, values in rows.items():
            if object_id in self._deleted:
                continue
            results.append(self._materialize(object_id, values))
        results.extend(
            managed for object_id, managed in self._inserted.items()
            if object_id.entity_name == entity.name and object_id not in rows
        )
        if request.predicate is not None:
            results = [item for item in results if request.predicate.evaluate(item.values())]
        return _sort_and_limit(results, request)

    def _has_pending_for(self, entity_name: str) -> bool:
        with self._lock:
            return any(
                object_id.entity_name == entity_name
                for pending in (self._inserted, self._updated, self._deleted)
                for object_id in pending
            )

    def _inherited_rows(self, request: FetchRequest) -> dict[ObjectID, dict[str, Any]]:
        """Rows as seen by this context before its own pending changes."""
        parent = self._parent
        if parent is None:
            return dict(self._coordinator.fetch_rows(request))
        return parent.perform_and_wait(lambda: parent._rows_with_pending(request))

    def _rows_with_pending(self, request: FetchRequest) -> dict[ObjectID, dict[str, Any]]:
        rows = self._inherited_rows(request)
        for object_id in self._deleted:
            rows.pop(object_id, None)
        for object_id, managed in self._updated.items():
            if object_id in rows:
                rows[object_id] = {**rows[object_id], **managed.changed_values()}
        for object_id, managed in self._inserted.items():
            if object_id.entity_name == request.entity_name:
                rows[object_id] = managed.values()
        return rows

    def _inherited_row(self, object_id: ObjectID) -> dict[str, Any] | None:
        parent = self._parent
        if parent is None:
            return self._coordinator.row_for(object_id)
        return parent.perform_and_wait(lambda: parent._row_with_pending(object_id))

    def _row_with_pending(self, object_id: ObjectID) -> dict[str, Any] | None:
        if object_id in self._deleted:
            return None
        registered = self._registered.get(object_id)
        if registered is not None and registered.is_inserted:
            return registered.values()
        row = self._inherited_row(object_id)
        if row is not None and registered is not None:
            row = {**row, **registered.changed_values()}
        return row

    def _materialize(self, object_id: ObjectID, values: Mapping[str, Any]) -> ManagedObject:
        managed = self._registered.get(object_id)
        if managed is None:
            entity = self.model.entity(object_id.entity_name)
            managed = ManagedObject(entity, object_id, self, values)
            self._registered[object_id] = managed
        elif not managed.is_inserted:
            managed._refresh(values)
        return managed

    def _save_locked(self) -> bool:
        if not (self._inserted or self._updated or self._deleted):
            return False
        for managed in self._inserted.values():
            missing = managed.entity.missing_required(managed.values())
            if missing:
                raise SaveError(
                    f"Cannot save {managed.object_id}: required attributes {missing} are empty."
                )
        changes = ChangeSet(
            inserted=[
                (object_id, managed.changed_values())
                for object_id, managed in self._inserted.items()
            ],
            updated=[
                (object_id, managed.changed_values())
                for object_id, managed in self._updated.items()
                if managed.has_changes
            ],
            deleted=list(self._deleted),
        )
        remapped: dict[ObjectID, ObjectID] = {}
        parent = self._parent
        if parent is not None:
            parent.perform_and_wait(lambda: parent._merge_child_changes(changes))
        else:
            remapped = self._coordinator.apply_changes(changes, self.merge_policy)
        self._commit_pending(remapped)
        return True

    def _merge_child_changes(self, changes: ChangeSet) -> None:
        """Fold a child's saved changes into this context's pending changes.

        Properties the child changed replace this context's pending values
        for the same properties; other pending values are kept.
        """
        for object_id, values in changes.inserted:
            managed = self._registered.get(object_id)
            if managed is None:
                entity = self.model.entity(object_id.entity_name)
                managed = ManagedObject(entity, object_id, self)
                managed.is_inserted = True
                self._registered[object_id] = managed
                self._inserted[object_id] = managed
            managed._apply_changes(values)
        for object_id, values in changes.updated:
            if object_id in self._deleted:
                continue
            managed = self._registered.get(object_id)
            if managed is None:
                row = self._inherited_row(object_id)
                if row is None:
                    self._logger.warning(
                        "merge_target_missing", context=self.name, object_id=object_id.uri
                    )
                    continue
                managed = self._materialize(object_id, row)
            managed._apply_changes(values)
            if not managed.is_inserted:
                self._updated[object_id] = managed
        for object_id in changes.deleted:
            managed = self._registered.pop(object_id, None)
            self._updated.pop(object_id, None)
            if managed is not None and self._inserted.pop(object_id, None) is not None:
                managed.is_deleted = True
                continue
            if managed is None:
                entity = self.model.entity(object_id.entity_name)
                managed = ManagedObject(entity, object_id, self)
            managed.is_deleted = True
            self._deleted[object_id] = managed

    def _commit_pending(self, remapped: Mapping[ObjectID, ObjectID]) -> None:
        for managed in self._inserted.values():
            managed.is_inserted = False
            managed._commit()
        for managed in self._updated.values():
            managed._commit()
        for object_id in self._deleted:
            self._registered.pop(object_id, None)
        self._inserted.clear()
        self._updated.clear()
        self._deleted.clear()
        for old_id, new_id in remapped.items():
            managed = self._registered.pop(old_id, None)
            if managed is None:
                continue
            managed._rebind(new_id)
            self._registered[new_id] = managed

    def _invalidate(self, object_ids: Iterable[ObjectID]) -> None:
        for object_id in object_ids:
            self._inserted.pop(object_id, None)
            self._updated.pop(object_id, None)
            self._deleted.pop(object_id, None)
            managed = self._registered.pop(object_id, None)
            if managed is not None:
                managed._invalidate()

    def _refresh_objects(self, object_ids: Iterable[ObjectID]) -> None:
        for object_id in object_ids:
            managed = self._registered.get(object_id)
            if managed is None or managed.is_inserted:
                continue
            row = self._inherited_row(object_id)
            if row is None:
                self._invalidate([object_id])
            else:
                managed._refresh(row)


def merge_changes_from_remote_save(
    changes: Mapping[str, Iterable[ObjectID]],
    contexts: Iterable[ObjectContext],
) -> None:
    """Apply store-level changes made outside the given contexts.

    Deleted identifiers invalidate registered objects and drop pending
    changes to them. Updated identifiers refresh committed values while
    keeping pending changes on top.

    Args:
        changes: Identifier lists keyed by ``"deleted"`` and ``"updated"``.
        contexts: Contexts to bring up to date.
    """
    deleted = list(changes.get(DELETED_OBJECTS_KEY, ()))
    updated = list(changes.get(UPDATED_OBJECTS_KEY, ()))
    for context in contexts:
        if deleted:
            context.perform_and_wait(lambda context=context: context._invalidate(deleted))
        if updated:
            context.perform_and_wait(lambda context=context: context._refresh_objects(updated))


def _sort_and_limit(results: list[ManagedObject], request: FetchRequest) -> list[ManagedObject]:
    for attribute, descending in reversed(request.sort_keys()):
        present = [item for item in results if item.get(attribute) is not None]
        missing = [item for item in results if item.get(attribute) is None]
        try:
            present.sort(key=lambda item: item.get(attribute), reverse=descending)
        except TypeError as error:
            raise FetchError(
                f"Cannot sort {request.entity_name} by '{attribute}': {error}. "
                "Store comparable values, for example only timezone-aware dates."
            ) from error
        results = missing + present if not descending else present + missing
    if request.limit is not None:
        results = results[: request.limit]
    return results
