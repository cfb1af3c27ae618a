from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

FROZEN_REASON_CODES: frozenset[str] = frozenset(
    {
        "invalid_coordinate",
        "no_network_nearby",
        "no_accessible_route",
        "empty_dataset",
        "graph_unavailable",
    }
)


@dataclass
class RoutingError(ValueError):
    reason_code: str
    message: str
    details: dict[str, Any] | None = None

    def __str__(self) -> str:
        return self.message


@dataclass
class InvalidCoordinate(RoutingError):
    reason_code: str = "invalid_coordinate"
    message: str = "Coordinate must contain finite numeric lat/lon values."
    details: dict[str, Any] | None = None


@dataclass
class NoNetworkNearby(RoutingError):
    reason_code: str = "no_network_nearby"
    message: str = "No sidewalk segment within the snap radius."
    details: dict[str, Any] | None = None


@dataclass
class PathNotFound(RoutingError):
    """Raised per tier when the snapped endpoints are not joined by traversable segments."""

    reason_code: str = "no_accessible_route"
    message: str = "no path"
    details: dict[str, Any] | None = field(default=None)


@dataclass
class EmptyDatasetError(RoutingError):
    reason_code: str = "empty_dataset"
    message: str = "Segment dataset is empty."
    details: dict[str, Any] | None = None


@dataclass
class GraphUnavailableError(RoutingError):
    reason_code: str = "graph_unavailable"
    message: str = "Segment graph has not been loaded."
    details: dict[str, Any] | None = None


def normalize_reason_code(reason_code: str, *, default: str = "no_accessible_route") -> str:
    code = str(reason_code or "").strip()
    if code in FROZEN_REASON_CODES:
        return code
    return default
