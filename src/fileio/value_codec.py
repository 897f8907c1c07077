"""JSON value codec.

This module converts serializable values (dataclasses, mappings,
sequences, enums, dates and primitives) to pretty-printed JSON and
decodes JSON back into a requested target type.
"""

from __future__ import annotations

from dataclasses import MISSING, fields, is_dataclass
from datetime import date, datetime
from enum import Enum
import json
from pathlib import Path
import types
from typing import Any, Mapping, Union, get_args, get_origin, get_type_hints

from core.constants import JSON_INDENT, TEXT_ENCODING
from core.errors import SchemaMismatchError


def to_json_compatible(value: Any) -> Any:
    """Convert a value into plain JSON types.

    Raises:
        TypeError: If the value contains an unsupported type.
    """
    if isinstance(value, Enum):
        return to_json_compatible(value.value)
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Path):
        return str(value)
    if is_dataclass(value) and not isinstance(value, type):
        return {item.name: to_json_compatible(getattr(value, item.name)) for item in fields(value)}
    if isinstance(value, Mapping):
        return {str(key): to_json_compatible(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_json_compatible(item) for item in value]
    raise TypeError(f"Value of type {type(value).__name__} is not JSON serializable.")


def encode_value(value: Any) -> bytes:
    """Encode a value as pretty-printed UTF-8 JSON bytes.

    Raises:
        TypeError: If the value contains an unsupported type.
        RecursionError: If the value contains a reference cycle.
    """
    payload = to_json_compatible(value)
    return json.dumps(payload, indent=JSON_INDENT, ensure_ascii=False).encode(TEXT_ENCODING)


def decode_bytes(data: bytes, target: Any = None) -> Any:
    """Decode UTF-8 JSON bytes, optionally into a target type.

    Raises:
        ValueError: If the bytes are not valid UTF-8 JSON.
        SchemaMismatchError: If the payload does not fit ``target``.
    """
    payload = json.loads(data.decode(TEXT_ENCODING))
    return from_json_compatible(payload, target)


def from_json_compatible(payload: Any, target: Any = None) -> Any:
    """Build a value of type ``target`` from plain JSON data.

    ``None`` or ``Any`` returns the payload unchanged.

    Raises:
        SchemaMismatchError: If the payload does not fit ``target``.
    """
    if target is None or target is Any:
        return payload
    origin = get_origin(target)
    if origin is Union or origin is types.UnionType:
        return _decode_union(payload, target)
    if origin in (list, tuple, set, frozenset):
        return _decode_sequence(payload, target, origin)
    if origin is dict:
        return _decode_mapping(payload, target)
    if isinstance(target, type) and is_dataclass(target):
        return _decode_dataclass(payload, target)
    if isinstance(target, type) and issubclass(target, Enum):
        try:
            return target(payload)
        except ValueError as error:
            raise SchemaMismatchError(f"{payload!r} is not a valid {target.__name__}.") from error
    if target in (datetime, date):
        return _decode_date(payload, target)
    if target is Path:
        _expect(payload, str, target)
        return Path(payload)
    if target is float:
        if isinstance(payload, bool) or not isinstance(payload, (int, float)):
            raise _mismatch(payload, target)
        return float(payload)
    if target is int:
        if isinstance(payload, bool) or not isinstance(payload, int):
            raise _mismatch(payload, target)
        return payload
    if target in (str, bool):
        _expect(payload, target, target)
        return payload
    if target in (list, dict):
        _expect(payload, target, target)
        return payload
    raise SchemaMismatchError(f"Unsupported decode target {target!r}.")


def _decode_union(payload: Any, target: Any) -> Any:
    options = get_args(target)
    if payload is None:
        if type(None) in options:
            return None
        raise _mismatch(payload, target)
    for option in options:
        if option is type(None):
            continue
        try:
            return from_json_compatible(payload, option)
        except SchemaMismatchError:
            continue
    raise _mismatch(payload, target)


def _decode_sequence(payload: Any, target: Any, origin: type) -> Any:
    _expect(payload, list, target)
    args = get_args(target)
    if origin is tuple and args and args[-1] is not Ellipsis:
        if len(args) != len(payload):
            raise SchemaMismatchError(
                f"Expected {len(args)} items for {target!r}, got {len(payload)}."
            )
        return tuple(from_json_compatible(item, arg) for item, arg in zip(payload, args))
    item_type = args[0] if args else None
    return origin(from_json_compatible(item, item_type) for item in payload)


def _decode_mapping(payload: Any, target: Any) -> dict[Any, Any]:
    _expect(payload, dict, target)
    args = get_args(target)
    key_type, value_type = args if len(args) == 2 else (None, None)
    return {
        _decode_key(key, key_type): from_json_compatible(item, value_type)
        for key, item in payload.items()
    }


def _decode_key(key: str, key_type: Any) -> Any:
    """Rebuild a mapping key that was written as a JSON object key string."""
    if key_type is None or key_type is Any or key_type is str:
        return key
    if isinstance(key_type, type) and issubclass(key_type, Enum):
        for member in key_type:
            if str(to_json_compatible(member)) == key:
                return member
        raise SchemaMismatchError(f"{key!r} is not a valid {key_type.__name__} key.")
    if key_type is bool:
        if key not in ("True", "False"):
            raise _mismatch(key, key_type)
        return key == "True"
    if key_type in (int, float):
        try:
            return key_type(key)
        except ValueError as error:
            raise _mismatch(key, key_type) from error
    return from_json_compatible(key, key_type)


def _decode_dataclass(payload: Any, target: type) -> Any:
    _expect(payload, dict, target)
    try:
        hints = get_type_hints(target)
    except NameError as error:
        raise SchemaMismatchError(
            f"Cannot resolve field types of {target.__name__}: {error}."
        ) from error
    kwargs: dict[str, Any] = {}
    for item in fields(target):
        if not item.init:
            continue
        if item.name in payload:
            kwargs[item.name] = from_json_compatible(payload[item.name], hints.get(item.name))
        elif item.default is MISSING and item.default_factory is MISSING:
            raise SchemaMismatchError(
                f"Missing required field '{item.name}' for {target.__name__}."
            )
    return target(**kwargs)


def _decode_date(payload: Any, target: type) -> Any:
    _expect(payload, str, target)
    try:
        if target is datetime:
            return datetime.fromisoformat(payload)
        return date.fromisoformat(payload)
    except ValueError as error:
        raise SchemaMismatchError(f"{payload!r} is not an ISO {target.__name__}.") from error


def _expect(payload: Any, expected: type, target: Any) -> None:
    if not isinstance(payload, expected):
        raise _mismatch(payload, target)


def _mismatch(payload: Any, target: Any) -> SchemaMismatchError:
    name = getattr(target, "__name__", repr(target))
    return SchemaMismatchError(f"Cannot decode {type(payload).__name__} as {name}.")
