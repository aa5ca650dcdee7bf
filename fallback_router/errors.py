from __future__ import annotations

from dataclasses import dataclass, field
from typing import ClassVar

from fallback_router.providers import AIProvider

__all__ = [
    "Conflict",
    "FallbackError",
    "ImportParseError",
    "InvalidIndex",
    "InvalidName",
    "NoRouteAvailable",
    "NotAVirtualModel",
    "NotFound",
    "Resolution",
    "ResolveOutcome",
    "UnknownProvider",
]


@dataclass(frozen=True, slots=True)
class FallbackError:
    """Base for failures returned (not raised) by registry and import calls."""

    kind: ClassVar[str] = "error"
    message: str

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True, slots=True)
class NotFound(FallbackError):
    kind: ClassVar[str] = "not_found"


@dataclass(frozen=True, slots=True)
class Conflict(FallbackError):
    kind: ClassVar[str] = "conflict"


@dataclass(frozen=True, slots=True)
class InvalidIndex(FallbackError):
    kind: ClassVar[str] = "invalid_index"


@dataclass(frozen=True, slots=True)
class InvalidName(FallbackError):
    kind: ClassVar[str] = "invalid_name"


@dataclass(frozen=True, slots=True)
class UnknownProvider(FallbackError):
    kind: ClassVar[str] = "unknown_provider"


@dataclass(frozen=True, slots=True)
class ImportParseError(FallbackError):
    kind: ClassVar[str] = "import_parse_error"


@dataclass(frozen=True, slots=True)
class Resolution:
    provider: AIProvider
    model_id: str
    virtual_model_name: str
    fallback_index: int
    from_cache: bool = field(default=False, compare=False)


@dataclass(frozen=True, slots=True)
class NotAVirtualModel:
    """The name is not an active virtual model; route it literally."""

    requested_model: str


@dataclass(frozen=True, slots=True)
class NoRouteAvailable:
    """Every entry in the chain reported no capacity."""

    virtual_model_name: str
    attempted: int = 0


ResolveOutcome = Resolution | NotAVirtualModel | NoRouteAvailable
