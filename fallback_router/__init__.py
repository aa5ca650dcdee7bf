from fallback_router.errors import (
    Conflict,
    FallbackError,
    ImportParseError,
    InvalidIndex,
    InvalidName,
    NoRouteAvailable,
    NotAVirtualModel,
    NotFound,
    Resolution,
    UnknownProvider,
)
from fallback_router.models import FallbackConfiguration, FallbackEntry, VirtualModel
from fallback_router.providers import AIProvider
from fallback_router.route_state import RouteState
from fallback_router.service import FallbackService

__all__ = [
    "AIProvider",
    "Conflict",
    "FallbackConfiguration",
    "FallbackEntry",
    "FallbackError",
    "FallbackService",
    "ImportParseError",
    "InvalidIndex",
    "InvalidName",
    "NoRouteAvailable",
    "NotAVirtualModel",
    "NotFound",
    "Resolution",
    "RouteState",
    "UnknownProvider",
    "VirtualModel",
]
