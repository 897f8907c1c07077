"""Managed object identity and change tracking.

This module defines store-assigned object identifiers and the
in-memory objects a context hands out, with per-property change
tracking used by the property-level merge policy.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Mapping
import uuid

from core.constants import OBJECT_ID_SCHEME
from core.errors import FetchError
from store.object_model import EntityDescription

if TYPE_CHECKING:
    from store.object_context import ObjectContext


@dataclass(frozen=True)
class ObjectID:
    """Opaque, store-assigned object identity."""

    entity_name: str
    key: str

    @classmethod
    def new(cls, entity_name: str) -> "ObjectID":
        return cls(entity_name=entity_name, key=uuid.uuid4().hex)

    @property
    def uri(self) -> str:
        return f"{OBJECT_ID_SCHEME}://{self.entity_name}/{self.key}"

    def __str__(self) -> str:
        return self.uri


class ManagedObject:
    """One entity instance registered in an object context.

    Reads return the pending value for a property when one exists and the
    last committed value otherwise. Writes are recorded per property so a
    save only touches the properties that actually changed.
    """

    def __init__(
        self,
        entity: EntityDescription,
        object_id: ObjectID,
        context: "ObjectContext",
        committed_values: Mapping[str, Any] | None = None,
    ) -> None:
        self._entity = entity
        self._object_id = object_id
        self._context = context
        self._committed: dict[str, Any] = dict(committed_values or {})
        self._changes: dict[str, Any] = {}
        self.is_inserted = False
        self.is_deleted = False
        self.is_invalidated = False

    @property
    def object_id(self) -> ObjectID:
        return self._object_id

    @property
    def entity(self) -> EntityDescription:
        return self._entity

    @property
    def context(self) -> "ObjectContext":
        return self._context

    @property
    def has_changes(self) -> bool:
        return bool(self._changes)

    def get(self, name: str) -> Any:
        """Return an attribute value.

        Raises:
            ModelError: If the entity has no such attribute.
            FetchError: If the object's row no longer exists and the
                context does not delete inaccessible faults.
        """
        self._entity.attribute(name)
        if self.is_invalidated:
            if not self._context.should_delete_inaccessible_faults:
                raise FetchError(
                    f"Object {self._object_id} was deleted from the store and can no "
                    "longer be read. Fetch it again before accessing it."
                )
            self.is_deleted = True
            return None
        if name in self._changes:
            return self._changes[name]
        return self._committed.get(name)

    def set(self, name: str, value: Any) -> None:
        """Record a pending change for one attribute.

        Raises:
            ModelError: If the attribute is unknown or the value has the wrong type.
            FetchError: If the object was deleted or invalidated.
        """
        self._entity.validate_values({name: value})
        if self.is_deleted or self.is_invalidated:
            raise FetchError(f"Cannot modify deleted object {self._object_id}.")
        self._changes[name] = value
        self._context._mark_updated(self)

    def __getitem__(self, name: str) -> Any:
        return self.get(name)

    def __setitem__(self, name: str, value: Any) -> None:
        self.set(name, value)

    def values(self) -> dict[str, Any]:
        """Return committed values overlaid with pending changes."""
        merged = {name: self._committed.get(name) for name in self._entity.attribute_names}
        merged.update(self._changes)
        return merged

    def changed_values(self) -> dict[str, Any]:
        return dict(self._changes)

    def committed_values(self) -> dict[str, Any]:
        return dict(self._committed)

    def _apply_changes(self, changes: Mapping[str, Any]) -> None:
        self._changes.update(changes)

    def _refresh(self, committed_values: Mapping[str, Any]) -> None:
        # Pending changes stay on top of the refreshed snapshot.
        self._committed = dict(committed_values)

    def _commit(self) -> None:
        self._committed.update(self._changes)
        self._changes.clear()

    def _rebind(self, object_id: ObjectID) -> None:
        self._object_id = object_id

    def _invalidate(self) -> None:
        self._changes.clear()
        self.is_invalidated = True

    def __repr__(self) -> str:
        state = "invalidated" if self.is_invalidated else "deleted" if self.is_deleted else "live"
        return f"<ManagedObject {self._object_id.uri} ({state})>"
