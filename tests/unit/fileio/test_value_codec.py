"""Unit tests for the JSON value codec."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional

import pytest

from core.errors import SchemaMismatchError
from fileio.value_codec import decode_bytes, encode_value, from_json_compatible, to_json_compatible


class Mood(str, Enum):
    CALM = "calm"
    BUSY = "busy"


@dataclass(frozen=True)
class Entry:
    title: str
    mood: Mood
    written_at: datetime
    attachment: Optional[Path] = None


def test_to_json_compatible_flattens_nested_values() -> None:
    """Dataclasses, enums and dates should become plain JSON values."""
    entry = Entry("day one", Mood.CALM, datetime(2024, 1, 2, 3, 4, 5))

    payload = to_json_compatible(entry)

    assert payload == {
        "title": "day one",
        "mood": "calm",
        "written_at": "2024-01-02T03:04:05",
        "attachment": None,
    }


def test_to_json_compatible_rejects_unknown_types() -> None:
    """Arbitrary objects should not be silently stringified."""
    with pytest.raises(TypeError):
        to_json_compatible({"value": object()})


def test_encode_value_keeps_non_ascii_text() -> None:
    """Encoded JSON should keep unicode characters unescaped."""
    assert encode_value("café").decode("utf-8") == '"café"'


def test_decode_bytes_builds_nested_dataclass() -> None:
    """Decoding with a target should rebuild typed fields."""
    data = (
        b'{"title": "t", "mood": "busy", '
        b'"written_at": "2024-01-02T00:00:00", "attachment": "a.txt"}'
    )

    entry = decode_bytes(data, Entry)

    assert entry == Entry("t", Mood.BUSY, datetime(2024, 1, 2), Path("a.txt"))


def test_decode_bytes_rejects_invalid_json() -> None:
    """Malformed JSON should raise a value error."""
    with pytest.raises(ValueError):
        decode_bytes(b"{oops")


def test_from_json_compatible_ignores_unknown_keys() -> None:
    """Extra payload keys should not break decoding."""
    payload = {"title": "t", "mood": "calm", "written_at": "2024-01-02T00:00:00", "extra": 1}

    assert from_json_compatible(payload, Entry).title == "t"


def test_from_json_compatible_requires_missing_fields() -> None:
    """Required dataclass fields must be present."""
    with pytest.raises(SchemaMismatchError):
        from_json_compatible({"title": "t"}, Entry)


def test_from_json_compatible_rejects_bad_enum_value() -> None:
    """Unknown enum values should be a schema mismatch."""
    with pytest.raises(SchemaMismatchError):
        from_json_compatible("sleepy", Mood)


def test_from_json_compatible_rejects_bool_as_int() -> None:
    """Booleans should not pass as integers."""
    with pytest.raises(SchemaMismatchError):
        from_json_compatible(True, int)


def test_from_json_compatible_decodes_typed_collections() -> None:
    """Generic collections should decode their items."""
    payload = {"a": ["2024-01-01T00:00:00"]}

    decoded = from_json_compatible(payload, dict[str, list[datetime]])

    assert decoded == {"a": [datetime(2024, 1, 1)]}


def test_from_json_compatible_rebuilds_enum_keys() -> None:
    """Mapping keys should decode into their declared key types."""
    decoded = from_json_compatible({"calm": 1, "busy": 2}, dict[Mood, int])

    assert decoded == {Mood.CALM: 1, Mood.BUSY: 2}


def test_from_json_compatible_rejects_bad_int_key() -> None:
    """Keys that do not parse as the key type should be a schema mismatch."""
    with pytest.raises(SchemaMismatchError):
        from_json_compatible({"one": "a"}, dict[int, str])
