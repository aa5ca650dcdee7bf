from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from threading import Lock
from typing import TYPE_CHECKING, Any, TypeVar

from pydantic import BaseModel, ValidationError

from fallback_router.errors import FallbackError, ImportParseError
from fallback_router.models import FallbackConfiguration, VirtualModel, default_configuration
from fallback_router.persistence import InMemoryStore
from fallback_router.route_state import RouteState, RouteStateCache, stale_reason

if TYPE_CHECKING:
    from collections.abc import Callable

    from fallback_router.persistence import ConfigurationBackend

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_ROUTE_STATE_TTL_SECONDS = 3600.0


@dataclass(frozen=True, slots=True)
class ResolutionView:
    """Consistent read of everything one resolution needs, taken under the lock."""

    enabled: bool
    model: VirtualModel | None
    model_revision: int
    generation: int
    cached_state: RouteState | None


def _format_validation_error(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ()))
        message = error.get("msg", "invalid value")
        parts.append(f"{location}: {message}" if location else message)
    return "; ".join(parts) or str(exc)


class ConfigurationStore:
    """Owner of the fallback configuration and the route-state map.

    Mutations run validate -> apply to a deep copy -> swap under a single lock,
    then persist outside it. Reads return copies so callers never hold live
    configuration objects.
    """

    def __init__(
        self,
        backend: ConfigurationBackend | None = None,
        *,
        route_state_ttl_seconds: float = DEFAULT_ROUTE_STATE_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._backend: ConfigurationBackend = backend or InMemoryStore()
        self._route_state_ttl_seconds = max(0.0, float(route_state_ttl_seconds))
        self._clock = clock
        self._lock = Lock()
        self._persist_lock = Lock()
        self._config = default_configuration()
        self._version = 0
        self._generation = 0
        self._revisions: dict[str, int] = {}
        self._route_states = RouteStateCache()
        self._persisted_version = 0
        self.last_persistence_error: str | None = None

    @property
    def version(self) -> int:
        with self._lock:
            return self._version

    @property
    def route_state_ttl_seconds(self) -> float:
        return self._route_state_ttl_seconds

    def now(self) -> float:
        return self._clock()

    def load(self) -> bool:
        """Replace in-memory state with the backend document, if it is valid.

        A missing document leaves defaults in place. An unreadable or invalid
        document is logged and ignored; it is not overwritten until the next
        mutation.
        """
        try:
            payload = self._backend.load(default=None)
        except Exception as exc:
            logger.warning("fallback_config_load_failed error=%s", exc)
            return False
        if payload is None:
            return False
        try:
            config = FallbackConfiguration.from_wire(payload)
        except ValidationError as exc:
            logger.warning(
                "fallback_config_invalid error=%s",
                _format_validation_error(exc),
            )
            return False
        with self._lock:
            self._replace_locked(config)
            self._persisted_version = self._version
        logger.info(
            "fallback_config_loaded enabled=%s virtual_models=%d",
            config.is_enabled,
            len(config.virtual_models),
        )
        return True

    def snapshot(self) -> FallbackConfiguration:
        with self._lock:
            return self._config.model_copy(deep=True)

    @property
    def is_enabled(self) -> bool:
        with self._lock:
            return self._config.is_enabled

    def mutate(
        self,
        mutator: Callable[[FallbackConfiguration], T | FallbackError],
    ) -> T | FallbackError:
        """Apply ``mutator`` to a working copy and commit it if it succeeds.

        The mutator returns either a result or a ``FallbackError``; an error
        discards the working copy so nothing is half-applied.
        """
        with self._lock:
            working = self._config.model_copy(deep=True)
            result = mutator(working)
            if isinstance(result, FallbackError):
                return result
            if isinstance(result, BaseModel):
                result = result.model_copy(deep=True)
            if not self._commit_locked(working):
                return result
            payload = self._config.to_wire()
            version = self._version
        self._persist(payload, version)
        return result

    def replace(self, config: FallbackConfiguration) -> None:
        with self._lock:
            self._replace_locked(config.model_copy(deep=True))
            payload = self._config.to_wire()
            version = self._version
        self._persist(payload, version)

    def import_json(self, text: str | bytes) -> ImportParseError | None:
        try:
            config = FallbackConfiguration.from_json(text)
        except ValidationError as exc:
            message = _format_validation_error(exc)
            logger.warning("fallback_config_import_rejected error=%s", message)
            return ImportParseError(f"Invalid fallback configuration: {message}")
        self.replace(config)
        logger.info(
            "fallback_config_imported enabled=%s virtual_models=%d",
            config.is_enabled,
            len(config.virtual_models),
        )
        return None

    def export_json(self) -> str:
        with self._lock:
            return self._config.to_json()

    def _commit_locked(self, working: FallbackConfiguration) -> bool:
        current = self._config
        before = {model.id: model for model in current.virtual_models}
        after = {model.id: model for model in working.virtual_models}
        changed = [
            model
            for model_id, model in after.items()
            if model_id not in before or before[model_id].model_dump() != model.model_dump()
        ]
        removed = [model for model_id, model in before.items() if model_id not in after]
        global_changed = working.is_enabled != current.is_enabled
        reordered = list(before) != list(after)
        if not (changed or removed or global_changed or reordered):
            return False

        self._version += 1
        self._config = working
        for model in changed:
            self._revisions[model.id] = self._version
            previous = before.get(model.id)
            if previous is not None:
                self._route_states.pop(previous.name)
            self._route_states.pop(model.name)
        for model in removed:
            self._revisions.pop(model.id, None)
            self._route_states.pop(model.name)
        if global_changed:
            self._generation += 1
            self._route_states.clear()
        return True

    def _replace_locked(self, config: FallbackConfiguration) -> None:
        self._version += 1
        self._generation += 1
        self._config = config
        self._revisions = {model.id: self._version for model in config.virtual_models}
        self._route_states.clear()

    def _persist(self, payload: dict[str, Any], version: int) -> bool:
        with self._persist_lock:
            if version <= self._persisted_version:
                return True
            try:
                self._backend.write(payload)
            except Exception as exc:
                self.last_persistence_error = str(exc)
                logger.warning(
                    "fallback_config_persist_failed version=%d error=%s",
                    version,
                    exc,
                )
                return False
            self._persisted_version = version
            self.last_persistence_error = None
            return True

    def read_for_resolution(self, name: str) -> ResolutionView:
        with self._lock:
            config = self._config
            model = config.find_by_name(name) if config.is_enabled else None
            if model is None:
                return ResolutionView(
                    enabled=config.is_enabled,
                    model=None,
                    model_revision=0,
                    generation=self._generation,
                    cached_state=None,
                )
            revision = self._revisions.get(model.id, 0)
            cached = self._route_states.get(model.name)
            if cached is not None:
                reason = stale_reason(
                    cached,
                    model,
                    model_revision=revision,
                    generation=self._generation,
                    now=self._clock(),
                    ttl_seconds=self._route_state_ttl_seconds,
                )
                if reason is not None:
                    self._route_states.pop(model.name)
                    logger.debug(
                        "fallback_route_state_stale name=%s reason=%s",
                        model.name,
                        reason,
                    )
                    cached = None
            return ResolutionView(
                enabled=True,
                model=model.model_copy(deep=True),
                model_revision=revision,
                generation=self._generation,
                cached_state=cached,
            )

    def record_route_state(self, state: RouteState) -> bool:
        """Store ``state`` only if the model is unchanged since it was read."""
        with self._lock:
            if not self._is_current_locked(
                state.virtual_model_id,
                state.model_revision,
                state.generation,
            ):
                return False
            self._route_states.put(state)
            return True

    def drop_route_state(
        self,
        name: str,
        *,
        virtual_model_id: str | None = None,
        model_revision: int | None = None,
        generation: int | None = None,
    ) -> bool:
        with self._lock:
            if (
                virtual_model_id is not None
                and model_revision is not None
                and generation is not None
                and not self._is_current_locked(virtual_model_id, model_revision, generation)
            ):
                return False
            return self._route_states.pop(name) is not None

    def _is_current_locked(self, model_id: str, revision: int, generation: int) -> bool:
        if generation != self._generation:
            return False
        if model_id not in self._revisions:
            return False
        return self._revisions[model_id] == revision

    def get_route_state(self, name: str) -> RouteState | None:
        with self._lock:
            return self._route_states.get(name)

    def get_all_route_states(self) -> list[RouteState]:
        with self._lock:
            return self._route_states.values()

    def clear_all_route_states(self) -> int:
        with self._lock:
            count = len(self._route_states)
            self._route_states.clear()
            return count
