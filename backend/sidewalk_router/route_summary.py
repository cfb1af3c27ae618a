from __future__ import annotations

from typing import Any

from .settings import settings

ISSUE_LABELS: dict[str, str] = {
    "kerb_high": "higher curb present",
    "surface_gravel": "gravel surface",
    "surface_cobblestone": "cobblestone surface",
    "narrow_width": "narrow sidewalk width",
    "steep_incline": "steep incline",
    "moderate_incline": "moderate incline",
    "wheelchair_tag_no": "marked not wheelchair accessible",
}

ISSUE_WARNINGS: dict[str, str] = {
    "kerb_high": "Route uses segments without lowered curbs",
    "surface_gravel": "Route includes loose gravel",
    "surface_cobblestone": "Route includes cobblestone sections",
    "narrow_width": "Route includes narrow sidewalks",
    "steep_incline": "Route includes steep inclines",
    "wheelchair_tag_no": "Route includes segments tagged as not wheelchair accessible",
}

PAVED_SURFACES = frozenset({"asphalt", "paved", "concrete", "paving_stones"})


def describe_issue(issue: str) -> str:
    if issue in ISSUE_LABELS:
        return ISSUE_LABELS[issue]
    if issue.startswith("surface_"):
        return f"{issue.split('_', 1)[1]} surface"
    return issue.replace("_", " ")


def speed_kmh(mobility: str) -> float:
    if mobility == "wheelchair":
        return float(settings.wheelchair_speed_kmh)
    return float(settings.walking_speed_kmh)


def summarize_route(route: dict[str, Any], *, mobility: str) -> dict[str, Any]:
    """Duration estimate, features and warnings derived from a route payload."""
    segments = route.get("segments", []) or []
    features: list[str] = []
    warnings: list[str] = []
    if segments and all(seg.get("accessible") for seg in segments):
        features.append("All traversed segments marked wheelchair-passable")
    if any(str(seg.get("tags", {}).get("surface", "")) in PAVED_SURFACES for seg in segments):
        features.append("Continuous paved surface coverage")
    for seg in segments:
        for issue in seg.get("issues", []):
            warning = ISSUE_WARNINGS.get(issue) or f"Potential issue: {describe_issue(issue)}"
            if warning not in warnings:
                warnings.append(warning)
    if segments and not warnings:
        features.append("No critical accessibility issues detected along the route")
    distance_m = float(route.get("metrics", {}).get("total_distance_m", 0.0))
    kmh = speed_kmh(mobility)
    return {
        "mobility": mobility,
        "estimated_speed_kmh": kmh,
        "estimated_duration_s": round((distance_m / 1000.0) / kmh * 3600.0, 1),
        "features": features,
        "warnings": warnings,
        "issue_labels": {
            issue: describe_issue(issue)
            for seg in segments
            for issue in seg.get("issues", [])
        },
    }
