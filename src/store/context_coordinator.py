"""Context coordinator.

This module owns a persistent container, its main context and a private
background context parented to the main context. It routes work to the
right context and coordinates save-then-push-to-parent semantics.
"""

from __future__ import annotations

from pathlib import Path
import threading
from typing import Any, Callable, Iterable, Protocol, runtime_checkable

from core.bundle import Bundle
from core.config import DataStoreConfig
from core.constants import PRIVATE_CONTEXT_NAME, STORE_FILE_EXTENSION
from core.errors import DataStoreError, ModelError, StoreLoadError
from core.logging_config import configure_logging, get_logger
from core.types import ContextRole, CoordinatorState, SaveResult, StoreDescription
from store.container import PersistentContainer
from store.managed_object import ManagedObject, ObjectID
from store.object_context import ConcurrencyType, ObjectContext
from store.object_model import ObjectModel, load_object_model
from store.predicate import FetchRequest, Predicate
from store.store_coordinator import MergePolicy, StoreCoordinator, store_path

_LOGGER = get_logger(__name__)

StoreLoadCompletion = Callable[[StoreDescription, Exception | None], None]


@runtime_checkable
class ContextProvider(Protocol):
    """Capability contract: hand out a current context and save it."""

    def current_context(self) -> ObjectContext: ...

    def save_changes(self, context: ObjectContext | None = None) -> SaveResult: ...


class ContextCoordinator:
    """Coordinator over one model's main and background contexts.

    The container, the main context and the background context are
    created on first use and then kept for the coordinator's lifetime.
    """

    def __init__(
        self,
        model_name: str,
        config: DataStoreConfig,
        model: ObjectModel | None = None,
        bundle: Bundle | None = None,
        logger: Any | None = None,
    ) -> None:
        """Initialize a coordinator.

        Args:
            model_name: Model name, also the store file base name.
            config: Runtime configuration.
            model: Object model; loaded from the bundle when omitted.
            bundle: Resource bundle holding the model definition; the
                configured bundle directory when omitted.
            logger: Structured logger; module logger when omitted.
        """
        self.model_name = model_name
        self._config = config
        if logger is None:
            configure_logging(config.log_level)
        self._model = model
        if bundle is None and config.bundle_dir is not None:
            bundle = Bundle.from_directory(config.bundle_dir)
        self._bundle = bundle
        self._logger = logger or _LOGGER
        self._lock = threading.RLock()
        self._state = CoordinatorState.UNINITIALIZED
        self._container: PersistentContainer | None = None
        self._background_context: ObjectContext | None = None
        self._description: StoreDescription | None = None
        # Overlapping saves share one SAVING period; the last one out restores the state.
        self._saves_in_flight = 0
        self._state_before_save = CoordinatorState.UNINITIALIZED

    @property
    def state(self) -> CoordinatorState:
        return self._state

    @property
    def container(self) -> PersistentContainer:
        with self._lock:
            if self._container is None:
                self._container = self.make_container()
            return self._container

    @property
    def main_context(self) -> ObjectContext:
        return self.container.view_context

    @property
    def background_context(self) -> ObjectContext:
        with self._lock:
            if self._background_context is None:
                self._background_context = self.main_context.child_context(
                    PRIVATE_CONTEXT_NAME, logger=self._logger
                )
            return self._background_context

    def make_container(self) -> PersistentContainer:
        """Build the container, loading its store when configured to.

        Raises:
            ModelError: If no model was given and the bundle has none.
            StoreLoadError: If loading by default fails.
        """
        container = PersistentContainer(
            self.model_name,
            self._resolve_model(),
            self._config.data_root,
            logger=self._logger,
        )
        if self._config.load_store_by_default:
            self._load_into(container, None)
        return container

    def context_for(self, role: ContextRole) -> ObjectContext:
        """Return the context for an explicit role."""
        if role is ContextRole.MAIN:
            return self.main_context
        return self.background_context

    def current_context(self) -> ObjectContext:
        """Main context on the main thread, background context elsewhere."""
        return self.context_for(_calling_role())

    def save_changes(self, context: ObjectContext | None = None) -> SaveResult:
        """Persist a context; a child context also persists its parent.

        Args:
            context: Context to save; chosen by calling thread when omitted.

        Returns:
            Outcome per level; failures are logged, never raised.
        """
        target = context or self.current_context()
        with self._lock:
            if self._saves_in_flight == 0:
                self._state_before_save = self._state
            self._saves_in_flight += 1
            self._state = CoordinatorState.SAVING
        try:
            if target.parent is None:
                result = target.save_with_result(target.name)
            else:
                result = target.save_private_and_parent()
        finally:
            with self._lock:
                self._saves_in_flight -= 1
                if self._saves_in_flight == 0:
                    self._state = self._state_before_save
        if result.partially_durable:
            self._logger.warning(
                "save_partially_durable",
                context=target.name,
                failed_context=result.context_name,
                error=result.message,
            )
        return result

    def load_store(self, on_completion: StoreLoadCompletion | None = None) -> StoreDescription:
        """Open or create the store, reporting the outcome to ``on_completion``.

        Calling again after a successful load returns the same description.

        Raises:
            StoreLoadError: If the store cannot be opened. This is fatal.
        """
        with self._lock:
            if self._container is None:
                self._container = PersistentContainer(
                    self.model_name,
                    self._resolve_model(),
                    self._config.data_root,
                    logger=self._logger,
                )
            return self._load_into(self._container, on_completion)

    def clear_entities(
        self,
        entity_names: Iterable[str],
        predicate: Predicate | None = None,
        context: ObjectContext | None = None,
    ) -> list[ObjectID]:
        """Batch delete matching objects of each entity and save the context.

        Deleted identifiers are merged into the context and its ancestors
        so registered objects are invalidated before the save.
        """
        target = context or self.current_context()
        deleted: list[ObjectID] = []
        for entity_name in entity_names:
            deleted.extend(target.clear_objects(entity_name, predicate))
        return deleted

    def fetch(
        self,
        request: FetchRequest,
        context: ObjectContext | None = None,
    ) -> list[ManagedObject]:
        """Run a blocking fetch; failures are logged and yield ``[]``."""
        target = context or self.current_context()
        return target.fetch_and_wait(request)

    def close(self) -> None:
        """Stop the background worker and close the store."""
        with self._lock:
            if self._background_context is not None:
                self._background_context.close()
            if self._container is not None:
                self._container.close()
            self._background_context = None
            self._container = None
            self._description = None
            self._state = CoordinatorState.UNINITIALIZED

    def _load_into(
        self,
        container: PersistentContainer,
        on_completion: StoreLoadCompletion | None,
    ) -> StoreDescription:
        with self._lock:
            if self._state is not CoordinatorState.UNINITIALIZED and self._description is not None:
                if on_completion is not None:
                    on_completion(self._description, None)
                return self._description
            self._state = CoordinatorState.LOADING
            outcomes: list[tuple[StoreDescription, Exception | None]] = []
            container.load_persistent_stores(
                lambda description, error: outcomes.append((description, error))
            )
            description, error = outcomes[0]
            if on_completion is not None:
                on_completion(description, error)
            if error is not None:
                self._state = CoordinatorState.UNINITIALIZED
                self._logger.error(
                    "store_load_failed", model_name=self.model_name, error=str(error)
                )
                raise StoreLoadError(
                    f"Could not load store for model {self.model_name}: {error}"
                ) from error
            self._description = description
            self._state = CoordinatorState.READY
            self._logger.info(
                "store_loaded", model_name=self.model_name, path=str(description.path)
            )
            return description

    def _resolve_model(self) -> ObjectModel:
        if self._model is not None:
            return self._model
        if self._bundle is None:
            raise ModelError(
                f"No object model for {self.model_name}: pass a model or configure a bundle."
            )
        model = load_object_model(self.model_name, self._bundle)
        if model is None:
            raise ModelError(
                f"Model definition {self.model_name} not found in bundle {self._bundle.root}."
            )
        self._model = model
        return model


def open_standalone_context(
    model_name: str,
    bundle: Bundle,
    data_root: Path,
    logger: Any | None = None,
) -> ObjectContext | None:
    """Open a private-queue context with its own store coordinator.

    Args:
        model_name: Model resource name and store file base name.
        bundle: Bundle holding ``<model_name>.datamodel.json``.
        data_root: Directory for the store file.
        logger: Structured logger; module logger when omitted.

    Returns:
        The context, or None when the model or store is unavailable.
    """
    active_logger = logger or _LOGGER
    try:
        model = load_object_model(model_name, bundle)
    except ModelError as error:
        active_logger.error("standalone_model_invalid", model_name=model_name, error=str(error))
        return None
    if model is None:
        active_logger.error("standalone_model_missing", model_name=model_name)
        return None
    coordinator = StoreCoordinator(model, logger=active_logger)
    try:
        coordinator.add_persistent_store(
            StoreDescription(path=store_path(data_root, model_name, STORE_FILE_EXTENSION))
        )
    except DataStoreError as error:
        active_logger.error("standalone_store_failed", model_name=model_name, error=str(error))
        return None
    return ObjectContext(
        ConcurrencyType.PRIVATE,
        coordinator=coordinator,
        merge_policy=MergePolicy.PROPERTY_TRUMP,
        logger=active_logger,
    )


def _calling_role() -> ContextRole:
    if threading.current_thread() is threading.main_thread():
        return ContextRole.MAIN
    return ContextRole.BACKGROUND
