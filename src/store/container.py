"""Persistent container.

This module bundles an object model, its store coordinator and the main
context for one named store file.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable

from core.constants import MAIN_CONTEXT_NAME, STORE_FILE_EXTENSION
from core.errors import StoreLoadError
from core.types import StoreDescription
from store.object_context import ConcurrencyType, ObjectContext
from store.object_model import ObjectModel
from store.store_coordinator import StoreCoordinator, store_path

StoreLoadHandler = Callable[[StoreDescription, Exception | None], None]


class PersistentContainer:
    """Owner of one store coordinator and its main ("view") context."""

    def __init__(
        self,
        name: str,
        model: ObjectModel,
        data_root: Path,
        logger: Any | None = None,
    ) -> None:
        self.name = name
        self._model = model
        self._coordinator = StoreCoordinator(model, logger=logger)
        self._view_context = ObjectContext(
            ConcurrencyType.MAIN,
            coordinator=self._coordinator,
            name=MAIN_CONTEXT_NAME,
            logger=logger,
        )
        self.store_descriptions = [
            StoreDescription(path=store_path(data_root, name, STORE_FILE_EXTENSION))
        ]

    @property
    def model(self) -> ObjectModel:
        return self._model

    @property
    def coordinator(self) -> StoreCoordinator:
        return self._coordinator

    @property
    def view_context(self) -> ObjectContext:
        return self._view_context

    def load_persistent_stores(self, handler: StoreLoadHandler) -> None:
        """Attach every described store, reporting each outcome to ``handler``."""
        for description in self.store_descriptions:
            error: Exception | None = None
            try:
                self._coordinator.add_persistent_store(description)
            except StoreLoadError as load_error:
                error = load_error
            handler(description, error)

    def new_background_context(self) -> ObjectContext:
        """Create a private-queue root context on the shared coordinator."""
        return ObjectContext(ConcurrencyType.PRIVATE, coordinator=self._coordinator)

    def close(self) -> None:
        self._coordinator.close()
