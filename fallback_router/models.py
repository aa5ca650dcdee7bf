from __future__ import annotations

import json
from typing import Any, ClassVar
from uuid import uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    StrictInt,
    StrictStr,
    ValidationInfo,
    field_validator,
    model_validator,
)

from fallback_router.providers import AIProvider, parse_provider


def new_id() -> str:
    return str(uuid4())


WIRE_CONTEXT: dict[str, Any] = {"wire": True}


class _WireModel(BaseModel):
    """Base for models that are also read from exported JSON documents.

    In-code construction may rely on field defaults and snake_case names.
    Documents validated with ``WIRE_CONTEXT`` must carry exactly the
    camelCase keys listed in ``wire_keys``.
    """

    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    wire_keys: ClassVar[frozenset[str]] = frozenset()

    @model_validator(mode="before")
    @classmethod
    def _check_wire_keys(cls, data: Any, info: ValidationInfo) -> Any:
        if not (info.context or {}).get("wire") or not isinstance(data, dict):
            return data
        missing = sorted(cls.wire_keys - data.keys())
        if missing:
            raise ValueError(f"missing required key(s): {', '.join(missing)}")
        unexpected = sorted(set(data) - cls.wire_keys)
        if unexpected:
            raise ValueError(f"unexpected key(s): {', '.join(unexpected)}")
        return data


class FallbackEntry(_WireModel):
    wire_keys: ClassVar[frozenset[str]] = frozenset({"id", "provider", "modelId", "priority"})

    id: StrictStr = Field(default_factory=new_id)
    provider: AIProvider
    model_id: StrictStr = Field(alias="modelId")
    priority: StrictInt = 0

    @field_validator("provider", mode="before")
    @classmethod
    def _parse_provider(cls, value: Any) -> AIProvider:
        provider = parse_provider(value)
        if provider is None:
            raise ValueError(f"unknown provider: {value!r}")
        return provider

    @field_validator("id", "model_id")
    @classmethod
    def _require_text(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("must be a non-empty string")
        return normalized

    @property
    def display_name(self) -> str:
        return f"{self.provider.display_name} → {self.model_id}"


def renumber_entries(entries: list[FallbackEntry]) -> list[FallbackEntry]:
    """Sort entries by priority (stable on position) and rewrite priorities to 0..n-1."""
    ordered = sorted(enumerate(entries), key=lambda item: (item[1].priority, item[0]))
    renumbered: list[FallbackEntry] = []
    for index, (_, entry) in enumerate(ordered):
        entry.priority = index
        renumbered.append(entry)
    return renumbered


class VirtualModel(_WireModel):
    wire_keys: ClassVar[frozenset[str]] = frozenset({"id", "name", "isEnabled", "fallbackEntries"})

    id: StrictStr = Field(default_factory=new_id)
    name: StrictStr
    is_enabled: StrictBool = Field(default=True, alias="isEnabled")
    fallback_entries: list[FallbackEntry] = Field(
        default_factory=list,
        alias="fallbackEntries",
    )

    @field_validator("id", "name")
    @classmethod
    def _require_text(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("must be a non-empty string")
        return normalized

    @model_validator(mode="after")
    def _normalize_entries(self) -> VirtualModel:
        seen: set[str] = set()
        for entry in self.fallback_entries:
            if entry.id in seen:
                raise ValueError(
                    f"duplicate fallback entry id '{entry.id}' in virtual model '{self.name}'"
                )
            seen.add(entry.id)
        self.fallback_entries = renumber_entries(list(self.fallback_entries))
        return self

    def sorted_entries(self) -> list[FallbackEntry]:
        return sorted(self.fallback_entries, key=lambda entry: entry.priority)

    def find_entry(self, entry_id: str) -> FallbackEntry | None:
        for entry in self.fallback_entries:
            if entry.id == entry_id:
                return entry
        return None


class FallbackConfiguration(_WireModel):
    wire_keys: ClassVar[frozenset[str]] = frozenset({"isEnabled", "virtualModels"})

    is_enabled: StrictBool = Field(default=False, alias="isEnabled")
    virtual_models: list[VirtualModel] = Field(
        default_factory=list,
        alias="virtualModels",
    )

    @model_validator(mode="after")
    def _check_uniqueness(self) -> FallbackConfiguration:
        ids: set[str] = set()
        names: set[str] = set()
        for model in self.virtual_models:
            if model.id in ids:
                raise ValueError(f"duplicate virtual model id '{model.id}'")
            folded = model.name.casefold()
            if folded in names:
                raise ValueError(f"duplicate virtual model name '{model.name}'")
            ids.add(model.id)
            names.add(folded)
        return self

    def get(self, model_id: str) -> VirtualModel | None:
        for model in self.virtual_models:
            if model.id == model_id:
                return model
        return None

    def find_by_name(self, name: str) -> VirtualModel | None:
        for model in self.virtual_models:
            if model.name == name:
                return model
        return None

    def find_by_name_folded(self, name: str) -> VirtualModel | None:
        folded = name.strip().casefold()
        for model in self.virtual_models:
            if model.name.casefold() == folded:
                return model
        return None

    def name_taken(self, name: str, *, exclude_id: str | None = None) -> bool:
        existing = self.find_by_name_folded(name)
        return existing is not None and existing.id != exclude_id

    def enabled_model_names(self) -> list[str]:
        return [model.name for model in self.virtual_models if model.is_enabled]

    def to_wire(self) -> dict[str, Any]:
        payload = self.model_dump(by_alias=True, mode="json")
        for model in payload["virtualModels"]:
            model["fallbackEntries"].sort(key=lambda entry: entry["priority"])
        return payload

    def to_json(self) -> str:
        return json.dumps(self.to_wire(), indent=2, ensure_ascii=False)

    @classmethod
    def from_json(cls, text: str | bytes) -> FallbackConfiguration:
        return cls.model_validate_json(text, context=WIRE_CONTEXT)

    @classmethod
    def from_wire(cls, payload: Any) -> FallbackConfiguration:
        return cls.model_validate(payload, context=WIRE_CONTEXT)


def default_configuration() -> FallbackConfiguration:
    return FallbackConfiguration(is_enabled=False, virtual_models=[])
