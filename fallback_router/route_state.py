from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from fallback_router.providers import AIProvider

if TYPE_CHECKING:
    from fallback_router.models import FallbackEntry, VirtualModel


@dataclass(frozen=True, slots=True)
class RouteEntry:
    provider: AIProvider
    model_id: str

    @classmethod
    def from_entry(cls, entry: FallbackEntry) -> RouteEntry:
        return cls(provider=entry.provider, model_id=entry.model_id)

    def matches(self, entry: FallbackEntry) -> bool:
        return self.provider == entry.provider and self.model_id == entry.model_id


@dataclass(frozen=True, slots=True)
class RouteState:
    virtual_model_name: str
    current_entry: RouteEntry
    current_entry_index: int
    total_entries_at_capture: int
    last_updated: float
    virtual_model_id: str
    model_revision: int
    generation: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "virtualModelName": self.virtual_model_name,
            "currentEntry": {
                "provider": self.current_entry.provider.value,
                "modelId": self.current_entry.model_id,
            },
            "currentEntryIndex": self.current_entry_index,
            "totalEntries": self.total_entries_at_capture,
            "lastUpdated": round(self.last_updated, 3),
        }


def route_display(state: RouteState) -> str:
    entry = state.current_entry
    return f"{entry.provider.display_name} → {entry.model_id}"


def route_progress(state: RouteState) -> str:
    return f"{state.current_entry_index + 1}/{state.total_entries_at_capture}"


def stale_reason(
    state: RouteState,
    model: VirtualModel | None,
    *,
    model_revision: int,
    generation: int,
    now: float,
    ttl_seconds: float,
) -> str | None:
    """Return why a cached route can no longer be trusted, or ``None`` if it can."""
    if model is None or model.id != state.virtual_model_id:
        return "model_missing"
    if model.name != state.virtual_model_name:
        return "renamed"
    if not model.is_enabled:
        return "disabled"
    if generation != state.generation:
        return "generation_changed"
    if model_revision != state.model_revision:
        return "revision_changed"
    entries = model.sorted_entries()
    if len(entries) != state.total_entries_at_capture:
        return "entry_count_changed"
    index = state.current_entry_index
    if index < 0 or index >= len(entries) or not state.current_entry.matches(entries[index]):
        return "entry_changed"
    if ttl_seconds > 0 and now - state.last_updated >= ttl_seconds:
        return "expired"
    return None


class RouteStateCache:
    """Last successful resolution per virtual model name.

    Not synchronized; the owning ``ConfigurationStore`` holds its lock around
    every call.
    """

    def __init__(self) -> None:
        self._states: dict[str, RouteState] = {}

    def get(self, name: str) -> RouteState | None:
        return self._states.get(name)

    def put(self, state: RouteState) -> None:
        self._states[state.virtual_model_name] = state

    def pop(self, name: str) -> RouteState | None:
        return self._states.pop(name, None)

    def clear(self) -> None:
        self._states.clear()

    def values(self) -> list[RouteState]:
        return sorted(self._states.values(), key=lambda state: state.virtual_model_name)

    def __len__(self) -> int:
        return len(self._states)

    def __contains__(self, name: object) -> bool:
        return name in self._states
