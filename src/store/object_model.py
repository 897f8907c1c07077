"""Object model definitions.

This module describes entities and their typed attributes, converts
attribute values to and from their stored form, and loads model
definitions from read-only bundles.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
import json
import re
from typing import Any, Mapping

from core.bundle import Bundle
from core.constants import MODEL_FILE_EXTENSION, PRIMARY_KEY_COLUMN
from core.errors import ModelError

_IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class AttributeType(str, Enum):
    """Supported attribute value types."""

    STRING = "string"
    INTEGER = "integer"
    FLOAT = "float"
    BOOLEAN = "boolean"
    DATE = "date"
    BINARY = "binary"

    @property
    def sql_type(self) -> str:
        return _SQL_TYPES[self]

    def accepts(self, value: object) -> bool:
        """Return whether a Python value is valid for this type."""
        if value is None:
            return True
        if self is AttributeType.STRING:
            return isinstance(value, str)
        if self is AttributeType.INTEGER:
            return isinstance(value, int) and not isinstance(value, bool)
        if self is AttributeType.FLOAT:
            return isinstance(value, (int, float)) and not isinstance(value, bool)
        if self is AttributeType.BOOLEAN:
            return isinstance(value, bool)
        if self is AttributeType.DATE:
            return isinstance(value, datetime)
        return isinstance(value, (bytes, bytearray, memoryview))

    def to_storage(self, value: object) -> object:
        """Convert a Python value to its SQLite representation."""
        if value is None:
            return None
        if self is AttributeType.BOOLEAN:
            return 1 if value else 0
        if self is AttributeType.DATE:
            return value.isoformat()  # type: ignore[union-attr]
        if self is AttributeType.BINARY:
            return bytes(value)  # type: ignore[arg-type]
        if self is AttributeType.FLOAT:
            return float(value)  # type: ignore[arg-type]
        return value

    def from_storage(self, value: object) -> object:
        """Convert a SQLite column value back to its Python form."""
        if value is None:
            return None
        if self is AttributeType.BOOLEAN:
            return bool(value)
        if self is AttributeType.DATE:
            return datetime.fromisoformat(str(value))
        if self is AttributeType.BINARY:
            return bytes(value)  # type: ignore[arg-type]
        if self is AttributeType.FLOAT:
            return float(value)  # type: ignore[arg-type]
        return value


_SQL_TYPES = {
    AttributeType.STRING: "TEXT",
    AttributeType.INTEGER: "INTEGER",
    AttributeType.FLOAT: "REAL",
    AttributeType.BOOLEAN: "INTEGER",
    AttributeType.DATE: "TEXT",
    AttributeType.BINARY: "BLOB",
}


@dataclass(frozen=True)
class AttributeDescription:
    """One named, typed entity attribute.

    Attributes:
        name: Attribute name, also the store column name.
        attribute_type: Value type.
        is_unique: Whether the attribute forms a uniqueness constraint.
        is_optional: Whether the attribute may be left empty.
        default: Value assigned to newly inserted objects.
    """

    name: str
    attribute_type: AttributeType
    is_unique: bool = False
    is_optional: bool = True
    default: Any = None


@dataclass
class EntityDescription:
    """Schema of one record type."""

    name: str
    attributes: list[AttributeDescription] = field(default_factory=list)
    uniqueness_constraints: list[tuple[str, ...]] = field(default_factory=list)

    def __post_init__(self) -> None:
        _validate_identifier("entity", self.name)

    def add_attribute(
        self,
        name: str,
        attribute_type: AttributeType,
        is_unique: bool = False,
        is_optional: bool = True,
        default: Any = None,
    ) -> AttributeDescription:
        """Append an attribute and register its uniqueness constraint.

        Args:
            name: Attribute name.
            attribute_type: Value type.
            is_unique: Whether values must be unique across the entity.
            is_optional: Whether the attribute may be left empty.
            default: Value assigned to newly inserted objects.

        Returns:
            The created attribute description.

        Raises:
            ModelError: If the name is invalid or already used.
        """
        _validate_identifier("attribute", name)
        if name == PRIMARY_KEY_COLUMN:
            raise ModelError(f"Attribute name '{name}' is reserved for object identifiers.")
        if name in self.attribute_names:
            raise ModelError(f"Entity {self.name} already defines attribute '{name}'.")
        if not attribute_type.accepts(default):
            raise ModelError(
                f"Default for {self.name}.{name} does not match type {attribute_type.value}."
            )
        attribute = AttributeDescription(
            name=name,
            attribute_type=attribute_type,
            is_unique=is_unique,
            is_optional=is_optional,
            default=default,
        )
        self.attributes.append(attribute)
        if is_unique:
            self.uniqueness_constraints.append((name,))
        return attribute

    @property
    def attribute_names(self) -> tuple[str, ...]:
        return tuple(attribute.name for attribute in self.attributes)

    def attribute(self, name: str) -> AttributeDescription:
        """Return the attribute named ``name``.

        Raises:
            ModelError: If the entity has no such attribute.
        """
        for attribute in self.attributes:
            if attribute.name == name:
                return attribute
        raise ModelError(f"Entity {self.name} has no attribute named '{name}'.")

    def validate_values(self, values: Mapping[str, object]) -> None:
        """Check attribute names and value types.

        Raises:
            ModelError: If a name is unknown or a value has the wrong type.
        """
        for name, value in values.items():
            attribute = self.attribute(name)
            if not attribute.attribute_type.accepts(value):
                raise ModelError(
                    f"Invalid value for {self.name}.{name}: expected "
                    f"{attribute.attribute_type.value}, got {type(value).__name__}."
                )

    def missing_required(self, values: Mapping[str, object]) -> list[str]:
        """Return names of non-optional attributes without a value."""
        return [
            attribute.name
            for attribute in self.attributes
            if not attribute.is_optional and values.get(attribute.name) is None
        ]


@dataclass
class ObjectModel:
    """Named collection of entity descriptions."""

    name: str
    entities: dict[str, EntityDescription] = field(default_factory=dict)

    def add_entity(self, name: str) -> EntityDescription:
        """Create and register an empty entity.

        Raises:
            ModelError: If the entity name is invalid or already used.
        """
        if name in self.entities:
            raise ModelError(f"Model {self.name} already defines entity '{name}'.")
        entity = EntityDescription(name=name)
        self.entities[name] = entity
        return entity

    def entity(self, name: str) -> EntityDescription:
        """Return the entity named ``name``.

        Raises:
            ModelError: If the model has no such entity.
        """
        entity = self.entities.get(name)
        if entity is None:
            raise ModelError(
                f"Model {self.name} has no entity named '{name}'. "
                f"Known entities: {', '.join(sorted(self.entities)) or 'none'}."
            )
        return entity

    @classmethod
    def from_dict(cls, name: str, payload: Mapping[str, Any]) -> "ObjectModel":
        """Build a model from its JSON definition.

        The payload has the shape
        ``{"entities": [{"name": ..., "attributes": [{"name": ..., "type": ...}]}]}``.

        Raises:
            ModelError: If the definition is malformed.
        """
        model = cls(name=name)
        entity_payloads = payload.get("entities")
        if not isinstance(entity_payloads, list):
            raise ModelError(f"Model {name} definition must contain an 'entities' list.")
        for entity_payload in entity_payloads:
            try:
                entity = model.add_entity(str(entity_payload["name"]))
                for attribute_payload in entity_payload.get("attributes", []):
                    entity.add_attribute(
                        name=str(attribute_payload["name"]),
                        attribute_type=AttributeType(attribute_payload["type"]),
                        is_unique=bool(attribute_payload.get("unique", False)),
                        is_optional=bool(attribute_payload.get("optional", True)),
                        default=attribute_payload.get("default"),
                    )
            except (KeyError, TypeError, ValueError) as error:
                raise ModelError(
                    f"Invalid entity definition in model {name}: {error}. "
                    "Each entity needs a name and attributes with name and type."
                ) from error
        return model


def load_object_model(model_name: str, bundle: Bundle) -> ObjectModel | None:
    """Load ``<model_name>.datamodel.json`` from a bundle.

    Args:
        model_name: Model name, also the resource base name.
        bundle: Read-only resource bundle.

    Returns:
        Parsed model, or None when the resource is missing.

    Raises:
        ModelError: If the resource exists but is malformed.
    """
    resource = bundle.resource(model_name, MODEL_FILE_EXTENSION)
    if resource is None:
        return None
    try:
        payload = json.loads(resource.read_text(encoding="utf-8"))
    except json.JSONDecodeError as error:
        raise ModelError(
            f"Failed to parse model definition {model_name}: {error.msg}. "
            "Fix the model JSON in the bundle."
        ) from error
    if not isinstance(payload, dict):
        raise ModelError(f"Model definition {model_name} must be a JSON object.")
    return ObjectModel.from_dict(model_name, payload)


def _validate_identifier(kind: str, name: str) -> None:
    if not _IDENTIFIER_PATTERN.match(name):
        raise ModelError(
            f"Invalid {kind} name '{name}': use letters, digits and underscores, "
            "starting with a letter or underscore."
        )
