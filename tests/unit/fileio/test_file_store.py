"""Unit tests for the file codec store."""

from __future__ import annotations

from dataclasses import dataclass, field
import json

from core.types import CodecErrorKind
from fileio.file_store import FileFormat, FileStore
from tests.model_fixtures import config_for


@dataclass(frozen=True)
class Settings:
    theme: str
    font_size: int
    recent_files: list[str] = field(default_factory=list)


def test_resolve_path_uses_format_extension(tmp_path) -> None:
    """Paths should be the name plus the format extension."""
    store = FileStore(tmp_path / "documents")

    assert store.resolve_path("notes", FileFormat.TEXT) == tmp_path / "documents" / "notes.txt"


def test_from_config_uses_documents_dir(tmp_path) -> None:
    """Stores built from config should write to the documents directory."""
    config = config_for(tmp_path)

    assert FileStore.from_config(config).directory == config.documents_dir


def test_json_save_then_load_returns_same_value(tmp_path) -> None:
    """Saved dataclasses should load back equal when given a target."""
    store = FileStore(tmp_path)
    settings = Settings(theme="light", font_size=12, recent_files=["x.txt"])
    store.save(settings, "settings")

    result = store.load("settings", FileFormat.JSON, target=Settings)

    assert result.value == settings


def test_json_save_is_pretty_printed(tmp_path) -> None:
    """JSON files should be indented for readability."""
    store = FileStore(tmp_path)

    path = store.save({"a": 1}, "pretty").value

    assert path.read_text(encoding="utf-8") == json.dumps({"a": 1}, indent=2)


def test_save_overwrites_existing_file(tmp_path) -> None:
    """The last save of a name should win."""
    store = FileStore(tmp_path)
    store.save({"version": 1}, "state")
    store.save({"version": 2}, "state")

    assert store.load("state").value == {"version": 2}


def test_text_save_then_load_round_trips(tmp_path) -> None:
    """Text files should decode back into the saved value."""
    store = FileStore(tmp_path)
    store.save(["first", "second"], "lines", FileFormat.TEXT)

    assert store.load("lines", FileFormat.TEXT).value == ["first", "second"]


def test_text_save_leaves_no_temporary_files(tmp_path) -> None:
    """Atomic text writes should clean up after themselves."""
    store = FileStore(tmp_path)
    store.save("hello", "greeting", FileFormat.TEXT)

    assert [path.name for path in tmp_path.iterdir()] == ["greeting.txt"]


def test_read_text_returns_file_contents(tmp_path) -> None:
    """Raw text reads should return the encoded contents."""
    store = FileStore(tmp_path)
    store.save("hello", "greeting", FileFormat.TEXT)

    assert store.read_text("greeting") == '"hello"'


def test_read_data_returns_none_for_missing_file(tmp_path) -> None:
    """Raw reads of missing files should return None."""
    assert FileStore(tmp_path).read_data("missing") is None


def test_load_missing_file_reports_not_found(tmp_path) -> None:
    """Loading a name never saved should report absence without a value."""
    result = FileStore(tmp_path).load("missing")

    assert (result.value, result.error_kind) == (None, CodecErrorKind.NOT_FOUND)


def test_load_corrupt_file_reports_corrupt(tmp_path) -> None:
    """Undecodable file contents should report corruption."""
    (tmp_path / "bad.json").write_text("{not json", encoding="utf-8")

    result = FileStore(tmp_path).load("bad")

    assert result.error_kind is CodecErrorKind.CORRUPT


def test_load_with_wrong_shape_reports_schema_mismatch(tmp_path) -> None:
    """Valid JSON that does not fit the target should report a mismatch."""
    store = FileStore(tmp_path)
    store.save({"theme": "dark"}, "settings")

    result = store.load("settings", target=Settings)

    assert result.error_kind is CodecErrorKind.SCHEMA_MISMATCH


def test_save_unsupported_value_reports_encode_failure(tmp_path) -> None:
    """Values without a JSON form should fail to encode."""
    result = FileStore(tmp_path).save(object(), "opaque")

    assert result.error_kind is CodecErrorKind.ENCODE_FAILED


def test_save_into_blocked_directory_reports_unavailable(tmp_path) -> None:
    """A file in place of the directory should make it unavailable."""
    blocker = tmp_path / "documents"
    blocker.write_text("", encoding="utf-8")

    result = FileStore(blocker).save({"a": 1}, "state")

    assert result.error_kind is CodecErrorKind.DIRECTORY_UNAVAILABLE


def test_delete_file_removes_saved_file(tmp_path) -> None:
    """Deleting a saved name should remove its file."""
    store = FileStore(tmp_path)
    store.save({"a": 1}, "state")

    assert store.delete_file("state") is True
    assert not (tmp_path / "state.json").exists()


def test_delete_file_is_idempotent(tmp_path) -> None:
    """Deleting a missing file should not fail."""
    store = FileStore(tmp_path)
    store.save({"a": 1}, "state")
    store.delete_file("state")

    assert store.delete_file("state") is False


def test_load_from_bundle_decodes_resource(tmp_path, fixture_bundle) -> None:
    """Bundled JSON resources should decode into the target type."""
    store = FileStore(tmp_path)

    result = store.load_from_bundle("settings", FileFormat.JSON, fixture_bundle, Settings)

    assert result.value == Settings(theme="dark", font_size=14, recent_files=["a.txt", "b.txt"])


def test_load_from_bundle_reports_corrupt_resource(tmp_path, fixture_bundle) -> None:
    """Bundled resources that are not JSON should report corruption."""
    result = FileStore(tmp_path).load_from_bundle("broken", FileFormat.JSON, fixture_bundle)

    assert result.error_kind is CodecErrorKind.CORRUPT


def test_load_from_bundle_reports_missing_resource(tmp_path, fixture_bundle) -> None:
    """Missing bundle resources should report absence."""
    result = FileStore(tmp_path).load_from_bundle("absent", FileFormat.JSON, fixture_bundle)

    assert result.error_kind is CodecErrorKind.NOT_FOUND


def test_decode_string_builds_target_value(tmp_path) -> None:
    """JSON strings held in memory should decode like files."""
    result = FileStore(tmp_path).decode_string('{"theme": "dark", "font_size": 9}', Settings)

    assert result.value == Settings(theme="dark", font_size=9)


def test_int_keyed_mapping_round_trips(tmp_path) -> None:
    """Non-string mapping keys should be rebuilt from their JSON key strings."""
    store = FileStore(tmp_path)
    store.save({1: "a", 2: "b"}, "lookup")

    result = store.load("lookup", target=dict[int, str])

    assert result.value == {1: "a", 2: "b"}


def test_load_deeply_nested_file_reports_corrupt(tmp_path) -> None:
    """Input nested past the recursion limit should fail soft."""
    (tmp_path / "nested.json").write_text("[" * 200000 + "]" * 200000, encoding="utf-8")

    result = FileStore(tmp_path).load("nested")

    assert (result.value, result.error_kind) == (None, CodecErrorKind.CORRUPT)
