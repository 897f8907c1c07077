"""File codec store.

This module saves serializable values to named files in one writable
directory as JSON or text, and reads them back from that directory or
from a read-only bundle. Every operation reports failures through a
``CodecResult`` and a log event instead of raising.
"""

from __future__ import annotations

from enum import Enum
import os
from pathlib import Path
import tempfile
from typing import Any

from core.bundle import Bundle
from core.config import DataStoreConfig
from core.constants import TEXT_ENCODING
from core.errors import DirectoryUnavailableError, SchemaMismatchError
from core.logging_config import configure_logging, get_logger
from core.types import CodecErrorKind, CodecResult
from fileio.value_codec import decode_bytes, encode_value

_LOGGER = get_logger(__name__)


class FileFormat(str, Enum):
    """On-disk file format, valued by its file extension."""

    TEXT = "txt"
    JSON = "json"

    @property
    def extension(self) -> str:
        return self.value


class FileStore:
    """Named-file codec store over a single writable directory."""

    def __init__(self, directory: Path, logger: Any | None = None) -> None:
        self._directory = directory
        self._logger = logger or _LOGGER

    @classmethod
    def from_config(cls, config: DataStoreConfig, logger: Any | None = None) -> "FileStore":
        """Create a store over the configured documents directory."""
        if logger is None:
            configure_logging(config.log_level)
        return cls(config.documents_dir, logger=logger)

    @property
    def directory(self) -> Path:
        return self._directory

    def resolve_path(self, name: str, fmt: FileFormat = FileFormat.JSON) -> Path:
        """Map a name and format to a path inside the writable directory.

        The directory is created when missing.

        Args:
            name: File base name.
            fmt: File format, which picks the extension.

        Returns:
            ``<directory>/<name>.<extension>``.

        Raises:
            DirectoryUnavailableError: If the directory cannot be created.
        """
        try:
            self._directory.mkdir(parents=True, exist_ok=True)
        except OSError as error:
            raise DirectoryUnavailableError(
                f"Documents directory {self._directory} is unavailable: {error}. "
                "Point documents_dir at a writable location."
            ) from error
        return self._directory / f"{name}.{fmt.extension}"

    def save(self, value: Any, name: str, fmt: FileFormat = FileFormat.JSON) -> CodecResult:
        """Encode a value and write it to ``name``.

        Text files are replaced atomically; JSON files are written in place.

        Args:
            value: Serializable value.
            name: File base name.
            fmt: File format.

        Returns:
            Result whose value is the written path.
        """
        try:
            path = self.resolve_path(name, fmt)
        except DirectoryUnavailableError as error:
            return self._failed(
                "file_save_failed", name, fmt, CodecErrorKind.DIRECTORY_UNAVAILABLE, error
            )
        try:
            data = encode_value(value)
        except (TypeError, ValueError, RecursionError) as error:
            return self._failed("file_save_failed", name, fmt, CodecErrorKind.ENCODE_FAILED, error)
        try:
            if fmt is FileFormat.TEXT:
                _write_text_atomically(path, data.decode(TEXT_ENCODING))
            else:
                path.write_bytes(data)
        except OSError as error:
            return self._failed("file_save_failed", name, fmt, CodecErrorKind.IO_ERROR, error)
        self._logger.info("file_saved", name=name, format=fmt.value, path=str(path))
        return CodecResult(value=path)

    def load(
        self,
        name: str,
        fmt: FileFormat = FileFormat.JSON,
        target: Any = None,
    ) -> CodecResult:
        """Read ``name`` from the writable directory and decode it.

        Args:
            name: File base name.
            fmt: File format.
            target: Optional type to decode into; raw JSON when omitted.

        Returns:
            Result holding the decoded value, or the failure kind.
        """
        try:
            path = self.resolve_path(name, fmt)
        except DirectoryUnavailableError as error:
            return self._failed(
                "file_load_failed", name, fmt, CodecErrorKind.DIRECTORY_UNAVAILABLE, error
            )
        try:
            data = path.read_bytes()
        except FileNotFoundError as error:
            return self._failed("file_load_failed", name, fmt, CodecErrorKind.NOT_FOUND, error)
        except OSError as error:
            return self._failed("file_load_failed", name, fmt, CodecErrorKind.IO_ERROR, error)
        result = self._decode(data, target, name, fmt)
        if result.ok:
            self._logger.info("file_loaded", name=name, format=fmt.value)
        return result

    def load_from_bundle(
        self,
        name: str,
        fmt: FileFormat,
        bundle: Bundle,
        target: Any = None,
    ) -> CodecResult:
        """Read and decode a packaged resource from a read-only bundle."""
        try:
            data = bundle.read_bytes(name, fmt.extension)
        except FileNotFoundError as error:
            return self._failed("bundle_load_failed", name, fmt, CodecErrorKind.NOT_FOUND, error)
        except OSError as error:
            return self._failed("bundle_load_failed", name, fmt, CodecErrorKind.IO_ERROR, error)
        return self._decode(data, target, name, fmt)

    def decode_string(self, text: str, target: Any = None) -> CodecResult:
        """Decode a JSON string held in memory."""
        try:
            data = text.encode(TEXT_ENCODING)
        except UnicodeEncodeError as error:
            return self._failed(
                "string_decode_failed", "<string>", FileFormat.TEXT, CodecErrorKind.CORRUPT, error
            )
        return self._decode(data, target, "<string>", FileFormat.TEXT)

    def read_data(self, name: str, fmt: FileFormat = FileFormat.JSON) -> bytes | None:
        """Return a file's raw bytes, or None when it cannot be read."""
        try:
            return self.resolve_path(name, fmt).read_bytes()
        except (OSError, DirectoryUnavailableError) as error:
            self._logger.warning("file_read_failed", name=name, format=fmt.value, error=str(error))
            return None

    def read_text(self, name: str) -> str | None:
        """Return a text file's contents, or None when it cannot be read."""
        try:
            return self.resolve_path(name, FileFormat.TEXT).read_text(encoding=TEXT_ENCODING)
        except (OSError, UnicodeDecodeError, DirectoryUnavailableError) as error:
            self._logger.warning(
                "file_read_failed", name=name, format=FileFormat.TEXT.value, error=str(error)
            )
            return None

    def delete_file(self, name: str, fmt: FileFormat = FileFormat.JSON) -> bool:
        """Remove a file if present.

        Returns:
            Whether a file was removed. A missing file is not an error.
        """
        try:
            self.resolve_path(name, fmt).unlink()
        except FileNotFoundError:
            return False
        except (OSError, DirectoryUnavailableError) as error:
            self._logger.warning(
                "file_delete_failed", name=name, format=fmt.value, error=str(error)
            )
            return False
        self._logger.info("file_deleted", name=name, format=fmt.value)
        return True

    def _decode(self, data: bytes, target: Any, name: str, fmt: FileFormat) -> CodecResult:
        try:
            return CodecResult(value=decode_bytes(data, target))
        except SchemaMismatchError as error:
            return self._failed(
                "file_decode_failed", name, fmt, CodecErrorKind.SCHEMA_MISMATCH, error
            )
        except (ValueError, TypeError, RecursionError) as error:
            return self._failed("file_decode_failed", name, fmt, CodecErrorKind.CORRUPT, error)

    def _failed(
        self,
        event: str,
        name: str,
        fmt: FileFormat,
        kind: CodecErrorKind,
        error: Exception,
    ) -> CodecResult:
        self._logger.warning(event, name=name, format=fmt.value, kind=kind.value, error=str(error))
        return CodecResult.failure(kind, str(error))


def _write_text_atomically(path: Path, text: str) -> None:
    """Write text to a sibling temporary file, then replace ``path``."""
    descriptor, temp_name = tempfile.mkstemp(
        dir=path.parent, prefix=f".{path.name}.", suffix=".tmp"
    )
    try:
        with os.fdopen(descriptor, "w", encoding=TEXT_ENCODING) as handle:
            handle.write(text)
        os.replace(temp_name, path)
    except OSError:
        Path(temp_name).unlink(missing_ok=True)
        raise
