"""Fetch predicates and requests.

This module defines attribute comparisons that evaluate in memory and
compile to parameterized SQL, plus the fetch request model.
"""

from __future__ import annotations

from dataclasses import dataclass
import operator
from typing import Any, Callable, Mapping

from core.errors import FetchError
from store.object_model import EntityDescription

_OPERATORS: dict[str, tuple[str, Callable[[Any, Any], bool]]] = {
    "==": ("=", operator.eq),
    "!=": ("!=", operator.ne),
    "<": ("<", operator.lt),
    "<=": ("<=", operator.le),
    ">": (">", operator.gt),
    ">=": (">=", operator.ge),
    "in": ("IN", lambda left, right: left in right),
}


@dataclass(frozen=True)
class Comparison:
    """One ``attribute <operator> value`` test."""

    attribute: str
    operator: str
    value: Any

    def __post_init__(self) -> None:
        if self.operator not in _OPERATORS:
            raise FetchError(
                f"Unsupported predicate operator '{self.operator}'. "
                f"Use one of {', '.join(_OPERATORS)}."
            )
        if self.operator == "in" and isinstance(self.value, (str, bytes)):
            raise FetchError("The 'in' operator needs a collection of values, not a string.")

    def evaluate(self, values: Mapping[str, Any]) -> bool:
        """Evaluate against an object's attribute values."""
        left = values.get(self.attribute)
        if self.operator == "in":
            return left in tuple(self.value)
        if left is None or self.value is None:
            if self.operator == "==":
                return left is None and self.value is None
            if self.operator == "!=":
                return (left is None) != (self.value is None)
            return False
        try:
            return _OPERATORS[self.operator][1](left, self.value)
        except TypeError:
            return False

    def to_sql(self, entity: EntityDescription) -> tuple[str, list[object]]:
        """Compile to a SQL fragment with bound parameters."""
        attribute_type = entity.attribute(self.attribute).attribute_type
        column = quote_identifier(self.attribute)
        if self.operator == "in":
            members = [attribute_type.to_storage(item) for item in self.value]
            if not members:
                return "0", []
            placeholders = ", ".join("?" for _ in members)
            return f"{column} IN ({placeholders})", members
        if self.value is None:
            if self.operator == "==":
                return f"{column} IS NULL", []
            if self.operator == "!=":
                return f"{column} IS NOT NULL", []
            return "0", []
        stored_value = attribute_type.to_storage(self.value)
        if self.operator == "!=":
            return f"({column} != ? OR {column} IS NULL)", [stored_value]
        sql_operator = _OPERATORS[self.operator][0]
        return f"{column} {sql_operator} ?", [stored_value]


@dataclass(frozen=True)
class Predicate:
    """Conjunction of attribute comparisons.

    Build with ``Predicate.where("title", "==", "draft")`` and chain
    further clauses with ``.and_where(...)`` or the ``&`` operator.
    """

    comparisons: tuple[Comparison, ...]

    @classmethod
    def where(cls, attribute: str, operator_name: str, value: Any) -> "Predicate":
        return cls((Comparison(attribute, operator_name, value),))

    def and_where(self, attribute: str, operator_name: str, value: Any) -> "Predicate":
        return Predicate(self.comparisons + (Comparison(attribute, operator_name, value),))

    def __and__(self, other: "Predicate") -> "Predicate":
        return Predicate(self.comparisons + other.comparisons)

    def validate(self, entity: EntityDescription) -> None:
        """Ensure every compared attribute exists on the entity.

        Raises:
            ModelError: If an attribute is unknown.
        """
        for comparison in self.comparisons:
            entity.attribute(comparison.attribute)

    def evaluate(self, values: Mapping[str, Any]) -> bool:
        return all(comparison.evaluate(values) for comparison in self.comparisons)

    def to_sql(self, entity: EntityDescription) -> tuple[str, list[object]]:
        """Compile to a SQL ``WHERE`` body and its parameters."""
        clauses: list[str] = []
        params: list[object] = []
        for comparison in self.comparisons:
            clause, clause_params = comparison.to_sql(entity)
            clauses.append(clause)
            params.extend(clause_params)
        return " AND ".join(clauses) or "1", params


@dataclass(frozen=True)
class FetchRequest:
    """Query for objects of one entity.

    Attributes:
        entity_name: Entity to fetch.
        predicate: Optional filter; all objects when omitted.
        sort_by: Attribute names; a leading ``-`` sorts descending.
        limit: Optional maximum number of results.
    """

    entity_name: str
    predicate: Predicate | None = None
    sort_by: tuple[str, ...] = ()
    limit: int | None = None

    def sort_keys(self) -> list[tuple[str, bool]]:
        """Return ``(attribute, descending)`` pairs in priority order."""
        return [(key.lstrip("-"), key.startswith("-")) for key in self.sort_by]


def quote_identifier(name: str) -> str:
    """Quote an entity or attribute name for SQL."""
    return '"' + name.replace('"', '""') + '"'
