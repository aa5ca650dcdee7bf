from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from fallback_router.errors import (
    NoRouteAvailable,
    NotAVirtualModel,
    Resolution,
    ResolveOutcome,
)
from fallback_router.providers import AIProvider
from fallback_router.route_state import RouteEntry, RouteState

if TYPE_CHECKING:
    from fallback_router.models import FallbackEntry
    from fallback_router.store import ConfigurationStore

logger = logging.getLogger(__name__)

QuotaChecker = Callable[[AIProvider, str], bool | Awaitable[bool]]


async def _has_capacity(quota_checker: QuotaChecker, entry: FallbackEntry) -> bool:
    try:
        result = quota_checker(entry.provider, entry.model_id)
        if inspect.isawaitable(result):
            result = await result
    except Exception as exc:
        logger.warning(
            "quota_check_failed provider=%s model=%s error=%s",
            entry.provider.value,
            entry.model_id,
            exc,
        )
        return False
    return bool(result)


class QuotaAwareResolver:
    """Resolve a virtual model name to the first backend with capacity.

    Entries are checked one at a time in priority order, never concurrently:
    a checker may reserve capacity as a side effect, and lower-priority checks
    are wasted once a higher-priority entry succeeds. The store lock is only
    taken to read the model and to record the outcome, never around a check.
    """

    def __init__(self, store: ConfigurationStore) -> None:
        self._store = store

    async def resolve_model(self, name: str, quota_checker: QuotaChecker) -> ResolveOutcome:
        view = self._store.read_for_resolution(name)
        model = view.model
        if not view.enabled or model is None or not model.is_enabled:
            return NotAVirtualModel(requested_model=name)

        cached = view.cached_state
        if cached is not None:
            logger.debug(
                "fallback_route_cache_hit name=%s provider=%s model=%s index=%d",
                model.name,
                cached.current_entry.provider.value,
                cached.current_entry.model_id,
                cached.current_entry_index,
            )
            return Resolution(
                provider=cached.current_entry.provider,
                model_id=cached.current_entry.model_id,
                virtual_model_name=model.name,
                fallback_index=cached.current_entry_index,
                from_cache=True,
            )

        entries = model.sorted_entries()
        for index, entry in enumerate(entries):
            if not await _has_capacity(quota_checker, entry):
                logger.debug(
                    "fallback_entry_unavailable name=%s provider=%s model=%s index=%d",
                    model.name,
                    entry.provider.value,
                    entry.model_id,
                    index,
                )
                continue
            recorded = self._store.record_route_state(
                RouteState(
                    virtual_model_name=model.name,
                    current_entry=RouteEntry.from_entry(entry),
                    current_entry_index=index,
                    total_entries_at_capture=len(entries),
                    last_updated=self._store.now(),
                    virtual_model_id=model.id,
                    model_revision=view.model_revision,
                    generation=view.generation,
                )
            )
            logger.info(
                "fallback_resolved name=%s provider=%s model=%s index=%d recorded=%s",
                model.name,
                entry.provider.value,
                entry.model_id,
                index,
                recorded,
            )
            return Resolution(
                provider=entry.provider,
                model_id=entry.model_id,
                virtual_model_name=model.name,
                fallback_index=index,
            )

        self._store.drop_route_state(
            model.name,
            virtual_model_id=model.id,
            model_revision=view.model_revision,
            generation=view.generation,
        )
        logger.warning(
            "fallback_exhausted name=%s attempted=%d",
            model.name,
            len(entries),
        )
        return NoRouteAvailable(virtual_model_name=model.name, attempted=len(entries))

    def resolve_model_sync(self, name: str, quota_checker: QuotaChecker) -> ResolveOutcome:
        """Blocking wrapper for callers without an event loop."""
        return asyncio.run(self.resolve_model(name, quota_checker))
