from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

from fallback_router.errors import FallbackError, ImportParseError
from fallback_router.models import (
    FallbackConfiguration,
    FallbackEntry,
    VirtualModel,
    default_configuration,
)
from fallback_router.persistence import InMemoryStore, JsonFileStore
from fallback_router.registry import VirtualModelRegistry
from fallback_router.resolver import QuotaAwareResolver, QuotaChecker
from fallback_router.store import DEFAULT_ROUTE_STATE_TTL_SECONDS, ConfigurationStore

if TYPE_CHECKING:
    from collections.abc import Callable

    from fallback_router.errors import ResolveOutcome
    from fallback_router.persistence import ConfigurationBackend
    from fallback_router.providers import AIProvider
    from fallback_router.route_state import RouteState
    from fallback_router.settings import Settings

logger = logging.getLogger(__name__)

__all__ = ["FallbackService"]


class FallbackService:
    """Process-wide entry point for virtual model configuration and resolution.

    Construct one instance at startup and hand it to the CLI or dispatch layer;
    there is no module-level singleton.
    """

    def __init__(
        self,
        backend: ConfigurationBackend | None = None,
        *,
        route_state_ttl_seconds: float = DEFAULT_ROUTE_STATE_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
        load: bool = True,
    ) -> None:
        self.store = ConfigurationStore(
            backend,
            route_state_ttl_seconds=route_state_ttl_seconds,
            clock=clock,
        )
        self.registry = VirtualModelRegistry(self.store)
        self.resolver = QuotaAwareResolver(self.store)
        if load:
            self.store.load()

    @classmethod
    def from_settings(cls, settings: Settings) -> FallbackService:
        backend: ConfigurationBackend
        if settings.fallback_persistence_enabled:
            backend = JsonFileStore(settings.fallback_config_path)
        else:
            backend = InMemoryStore()
        return cls(
            backend,
            route_state_ttl_seconds=settings.route_state_ttl_seconds,
        )

    @property
    def last_persistence_error(self) -> str | None:
        return self.store.last_persistence_error

    @property
    def is_enabled(self) -> bool:
        return self.store.is_enabled

    def set_enabled(self, enabled: bool) -> bool:
        def _apply(config: FallbackConfiguration) -> bool:
            config.is_enabled = bool(enabled)
            return config.is_enabled

        result = self.store.mutate(_apply)
        logger.info("fallback_global_enabled enabled=%s", result)
        return bool(result)

    def list_virtual_models(self) -> list[VirtualModel]:
        return self.registry.list_virtual_models()

    def get_virtual_model(self, model_id: str) -> VirtualModel | None:
        return self.registry.get_virtual_model(model_id)

    def find_virtual_model(self, name: str) -> VirtualModel | None:
        return self.registry.find_virtual_model(name)

    def lookup_virtual_model(self, name_or_id: str) -> VirtualModel | None:
        return self.registry.lookup(name_or_id)

    def is_virtual_model(self, name: str) -> bool:
        return self.registry.is_virtual_model(name)

    def enabled_virtual_model_names(self) -> list[str]:
        return self.registry.enabled_virtual_model_names()

    def add_virtual_model(self, name: str) -> VirtualModel | FallbackError:
        return self.registry.add_virtual_model(name)

    def remove_virtual_model(self, model_id: str) -> VirtualModel | FallbackError:
        return self.registry.remove_virtual_model(model_id)

    def rename_virtual_model(self, model_id: str, new_name: str) -> VirtualModel | FallbackError:
        return self.registry.rename_virtual_model(model_id, new_name)

    def toggle_virtual_model(self, model_id: str) -> VirtualModel | FallbackError:
        return self.registry.toggle_virtual_model(model_id)

    def set_virtual_model_enabled(
        self,
        model_id: str,
        enabled: bool,
    ) -> VirtualModel | FallbackError:
        return self.registry.set_virtual_model_enabled(model_id, enabled)

    def add_fallback_entry(
        self,
        model_id: str,
        provider: AIProvider | str,
        model_name: str,
    ) -> FallbackEntry | FallbackError:
        return self.registry.add_fallback_entry(model_id, provider, model_name)

    def remove_fallback_entry(self, model_id: str, entry_id: str) -> FallbackEntry | FallbackError:
        return self.registry.remove_fallback_entry(model_id, entry_id)

    def move_fallback_entry(
        self,
        model_id: str,
        from_index: int,
        to_index: int,
    ) -> VirtualModel | FallbackError:
        return self.registry.move_fallback_entry(model_id, from_index, to_index)

    async def resolve_model(self, name: str, quota_checker: QuotaChecker) -> ResolveOutcome:
        return await self.resolver.resolve_model(name, quota_checker)

    def resolve_model_sync(self, name: str, quota_checker: QuotaChecker) -> ResolveOutcome:
        return self.resolver.resolve_model_sync(name, quota_checker)

    def get_route_state(self, name: str) -> RouteState | None:
        return self.store.get_route_state(name)

    def get_all_route_states(self) -> list[RouteState]:
        return self.store.get_all_route_states()

    def clear_route_state(self, name: str) -> bool:
        return self.store.drop_route_state(name)

    def clear_all_route_states(self) -> int:
        cleared = self.store.clear_all_route_states()
        logger.info("fallback_route_states_cleared count=%d", cleared)
        return cleared

    def report_route_failure(self, name: str) -> bool:
        """Forget the cached route after the dispatch layer saw it fail."""
        dropped = self.store.drop_route_state(name)
        if dropped:
            logger.info("fallback_route_failure_reported name=%s", name)
        return dropped

    def export_configuration(self) -> str:
        return self.store.export_json()

    def import_configuration(self, payload: str | bytes) -> ImportParseError | None:
        return self.store.import_json(payload)

    def reset_to_defaults(self) -> None:
        self.store.replace(default_configuration())
        logger.info("fallback_config_reset")
