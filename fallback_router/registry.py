from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fallback_router.errors import (
    Conflict,
    FallbackError,
    InvalidIndex,
    InvalidName,
    NotFound,
    UnknownProvider,
)
from fallback_router.models import (
    FallbackConfiguration,
    FallbackEntry,
    VirtualModel,
    renumber_entries,
)
from fallback_router.providers import AIProvider, parse_provider

if TYPE_CHECKING:
    from fallback_router.store import ConfigurationStore

logger = logging.getLogger(__name__)


def _normalize_name(name: str) -> str | None:
    if not isinstance(name, str):
        return None
    normalized = name.strip()
    return normalized or None


def _model_not_found(model_id: str) -> NotFound:
    return NotFound(f"Virtual model not found: {model_id}")


class VirtualModelRegistry:
    """CRUD over virtual models and their ordered fallback entries.

    Every operation either returns its result or a ``FallbackError`` value;
    failed operations leave the configuration untouched.
    """

    def __init__(self, store: ConfigurationStore) -> None:
        self._store = store

    def list_virtual_models(self) -> list[VirtualModel]:
        return self._store.snapshot().virtual_models

    def get_virtual_model(self, model_id: str) -> VirtualModel | None:
        return self._store.snapshot().get(model_id)

    def find_virtual_model(self, name: str) -> VirtualModel | None:
        """Case-insensitive lookup, as used by operators addressing a model by name."""
        return self._store.snapshot().find_by_name_folded(name)

    def lookup(self, name_or_id: str) -> VirtualModel | None:
        config = self._store.snapshot()
        return config.get(name_or_id) or config.find_by_name_folded(name_or_id)

    def is_virtual_model(self, name: str) -> bool:
        config = self._store.snapshot()
        model = config.find_by_name(name)
        return model is not None and model.is_enabled

    def enabled_virtual_model_names(self) -> list[str]:
        return self._store.snapshot().enabled_model_names()

    def add_virtual_model(self, name: str) -> VirtualModel | FallbackError:
        normalized = _normalize_name(name)
        if normalized is None:
            return InvalidName("Virtual model name must not be empty")

        def _apply(config: FallbackConfiguration) -> VirtualModel | FallbackError:
            if config.name_taken(normalized):
                return Conflict(f"Virtual model already exists: {normalized}")
            model = VirtualModel(name=normalized)
            config.virtual_models.append(model)
            return model

        result = self._store.mutate(_apply)
        if isinstance(result, VirtualModel):
            logger.info("virtual_model_added id=%s name=%s", result.id, result.name)
        return result

    def remove_virtual_model(self, model_id: str) -> VirtualModel | FallbackError:
        def _apply(config: FallbackConfiguration) -> VirtualModel | FallbackError:
            model = config.get(model_id)
            if model is None:
                return _model_not_found(model_id)
            config.virtual_models = [item for item in config.virtual_models if item.id != model_id]
            return model

        result = self._store.mutate(_apply)
        if isinstance(result, VirtualModel):
            logger.info("virtual_model_removed id=%s name=%s", result.id, result.name)
        return result

    def rename_virtual_model(self, model_id: str, new_name: str) -> VirtualModel | FallbackError:
        normalized = _normalize_name(new_name)
        if normalized is None:
            return InvalidName("Virtual model name must not be empty")

        def _apply(config: FallbackConfiguration) -> VirtualModel | FallbackError:
            model = config.get(model_id)
            if model is None:
                return _model_not_found(model_id)
            if config.name_taken(normalized, exclude_id=model_id):
                return Conflict(f"Virtual model already exists: {normalized}")
            model.name = normalized
            return model

        return self._store.mutate(_apply)

    def set_virtual_model_enabled(
        self,
        model_id: str,
        enabled: bool,
    ) -> VirtualModel | FallbackError:
        def _apply(config: FallbackConfiguration) -> VirtualModel | FallbackError:
            model = config.get(model_id)
            if model is None:
                return _model_not_found(model_id)
            model.is_enabled = bool(enabled)
            return model

        return self._store.mutate(_apply)

    def toggle_virtual_model(self, model_id: str) -> VirtualModel | FallbackError:
        def _apply(config: FallbackConfiguration) -> VirtualModel | FallbackError:
            model = config.get(model_id)
            if model is None:
                return _model_not_found(model_id)
            model.is_enabled = not model.is_enabled
            return model

        return self._store.mutate(_apply)

    def add_fallback_entry(
        self,
        model_id: str,
        provider: AIProvider | str,
        model_name: str,
    ) -> FallbackEntry | FallbackError:
        parsed_provider = parse_provider(provider)
        if parsed_provider is None:
            return UnknownProvider(f"Unknown provider: {provider}")
        normalized = _normalize_name(model_name)
        if normalized is None:
            return InvalidName("Fallback entry model id must not be empty")

        def _apply(config: FallbackConfiguration) -> FallbackEntry | FallbackError:
            model = config.get(model_id)
            if model is None:
                return _model_not_found(model_id)
            priorities = [entry.priority for entry in model.fallback_entries]
            next_priority = max(priorities, default=-1) + 1
            entry = FallbackEntry(
                provider=parsed_provider,
                model_id=normalized,
                priority=next_priority,
            )
            model.fallback_entries.append(entry)
            return entry

        result = self._store.mutate(_apply)
        if isinstance(result, FallbackEntry):
            logger.info(
                "fallback_entry_added model_id=%s provider=%s model=%s priority=%d",
                model_id,
                result.provider.value,
                result.model_id,
                result.priority,
            )
        return result

    def remove_fallback_entry(
        self,
        model_id: str,
        entry_id: str,
    ) -> FallbackEntry | FallbackError:
        def _apply(config: FallbackConfiguration) -> FallbackEntry | FallbackError:
            model = config.get(model_id)
            if model is None:
                return _model_not_found(model_id)
            entry = model.find_entry(entry_id)
            if entry is None:
                return NotFound(f"Fallback entry not found: {entry_id}")
            remaining = [item for item in model.fallback_entries if item.id != entry_id]
            model.fallback_entries = renumber_entries(remaining)
            return entry

        return self._store.mutate(_apply)

    def move_fallback_entry(
        self,
        model_id: str,
        from_index: int,
        to_index: int,
    ) -> VirtualModel | FallbackError:
        def _apply(config: FallbackConfiguration) -> VirtualModel | FallbackError:
            model = config.get(model_id)
            if model is None:
                return _model_not_found(model_id)
            ordered = model.sorted_entries()
            count = len(ordered)
            for label, index in (("from", from_index), ("to", to_index)):
                if not 0 <= index < count:
                    return InvalidIndex(
                        f"Index out of range: {label}={index} (entries={count})"
                    )
            moved = ordered.pop(from_index)
            ordered.insert(to_index, moved)
            for position, entry in enumerate(ordered):
                entry.priority = position
            model.fallback_entries = ordered
            return model

        return self._store.mutate(_apply)
