"""Read-only resource bundles.

This module locates packaged resources by name and extension.
Bundles back model definitions and read-only codec files.
"""

from __future__ import annotations

from importlib import resources
from importlib.resources.abc import Traversable
from pathlib import Path


class Bundle:
    """Read-only resource location.

    A bundle wraps either a plain directory or the resource root of an
    installed package. Nothing is ever written through a bundle.
    """

    def __init__(self, root: Path | Traversable) -> None:
        self._root = root

    @classmethod
    def from_directory(cls, directory: str | Path) -> "Bundle":
        """Create a bundle rooted at a filesystem directory."""
        return cls(Path(directory).expanduser().resolve())

    @classmethod
    def from_package(cls, package: str) -> "Bundle":
        """Create a bundle over an importable package's resources.

        Args:
            package: Dotted package name.

        Returns:
            Bundle reading from the package's resource root.
        """
        return cls(resources.files(package))

    @property
    def root(self) -> Path | Traversable:
        return self._root

    def resource(self, name: str, extension: str) -> Traversable | None:
        """Return the resource for ``<name>.<extension>`` when present."""
        candidate = self._root / f"{name}.{extension}"
        if not candidate.is_file():
            return None
        return candidate

    def read_bytes(self, name: str, extension: str) -> bytes:
        """Read a resource's raw bytes.

        Raises:
            FileNotFoundError: If the resource does not exist.
        """
        candidate = self.resource(name, extension)
        if candidate is None:
            raise FileNotFoundError(f"No bundle resource named {name}.{extension} in {self._root}")
        return candidate.read_bytes()
