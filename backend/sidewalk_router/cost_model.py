from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from .segments import Segment

# Score deductions per derived issue. Unlisted surface_* issues use the generic
# unpaved deduction.
ISSUE_PENALTIES: dict[str, float] = {
    "kerb_high": 0.2,
    "surface_gravel": 0.25,
    "surface_cobblestone": 0.2,
    "steep_incline": 0.3,
    "moderate_incline": 0.1,
    "narrow_width": 0.15,
    "wheelchair_tag_no": 0.5,
}
UNPAVED_SURFACE_PENALTY = 0.2
DEFAULT_PENALTY_WEIGHT = 2.0
DEFAULT_STRICT_MIN_SCORE = 0.8


@dataclass(frozen=True)
class RoutingConstraint:
    label: str
    allow_limited_segments: bool = False
    limited_threshold: float = 0.0
    allow_non_accessible: bool = False

    def __post_init__(self) -> None:
        if not (0.0 <= float(self.limited_threshold) <= 1.0):
            raise ValueError("limited_threshold must be within [0, 1]")

    def min_score(self, *, strict_min_score: float = DEFAULT_STRICT_MIN_SCORE) -> float:
        # Limited tiers open every score; limited_threshold only raises the strict floor.
        if self.allow_limited_segments:
            return 0.0
        return max(float(self.limited_threshold), float(strict_min_score))

    def to_dict(self) -> dict[str, object]:
        return {
            "label": self.label,
            "allow_limited_segments": bool(self.allow_limited_segments),
            "limited_threshold": float(self.limited_threshold),
            "allow_non_accessible": bool(self.allow_non_accessible),
        }


STRICT = RoutingConstraint(label="strict", allow_limited_segments=False, allow_non_accessible=False)
LIMITED = RoutingConstraint(
    label="limited",
    allow_limited_segments=True,
    limited_threshold=0.6,
    allow_non_accessible=False,
)
FALLBACK = RoutingConstraint(
    label="fallback",
    allow_limited_segments=True,
    limited_threshold=0.45,
    allow_non_accessible=True,
)
DEFAULT_TIERS: tuple[RoutingConstraint, ...] = (STRICT, LIMITED, FALLBACK)


@dataclass(frozen=True)
class Cost:
    distance_m: float
    accessibility_penalty: float
    score: float

    @property
    def total(self) -> float:
        return self.distance_m + self.accessibility_penalty


@dataclass(frozen=True)
class Excluded:
    reason: str


def issue_penalty(issue: str) -> float:
    if issue in ISSUE_PENALTIES:
        return ISSUE_PENALTIES[issue]
    if issue.startswith("surface_"):
        return UNPAVED_SURFACE_PENALTY
    return 0.0


def segment_score(segment: Segment) -> float:
    score = 1.0 - sum(issue_penalty(issue) for issue in sorted(segment.issues))
    return max(0.0, min(1.0, score))


def evaluate_segment(
    segment: Segment,
    constraint: RoutingConstraint,
    *,
    penalty_weight: float = DEFAULT_PENALTY_WEIGHT,
    strict_min_score: float = DEFAULT_STRICT_MIN_SCORE,
) -> Cost | Excluded:
    score = segment_score(segment)
    if not segment.attributes.wheelchair_passable and not constraint.allow_non_accessible:
        return Excluded(reason="not_wheelchair_passable")
    if score < constraint.min_score(strict_min_score=strict_min_score):
        return Excluded(reason="below_score_threshold")
    distance_m = float(segment.length_m)
    penalty = distance_m * (1.0 - score) * max(0.0, float(penalty_weight))
    return Cost(distance_m=distance_m, accessibility_penalty=penalty, score=score)


def is_relaxation_of(
    looser: RoutingConstraint,
    stricter: RoutingConstraint,
    *,
    strict_min_score: float = DEFAULT_STRICT_MIN_SCORE,
) -> bool:
    """True when every segment feasible under ``stricter`` is feasible under ``looser``."""
    if stricter.allow_non_accessible and not looser.allow_non_accessible:
        return False
    return looser.min_score(strict_min_score=strict_min_score) <= stricter.min_score(
        strict_min_score=strict_min_score
    )


def validate_tier_order(
    tiers: Sequence[RoutingConstraint],
    *,
    strict_min_score: float = DEFAULT_STRICT_MIN_SCORE,
) -> tuple[RoutingConstraint, ...]:
    ordered = tuple(tiers)
    if not ordered:
        raise ValueError("at least one routing tier is required")
    labels = [tier.label for tier in ordered]
    if len(set(labels)) != len(labels):
        raise ValueError(f"tier labels must be unique: {labels}")
    for idx in range(1, len(ordered)):
        if not is_relaxation_of(ordered[idx], ordered[idx - 1], strict_min_score=strict_min_score):
            raise ValueError(
                f"tier {ordered[idx].label!r} is stricter than preceding tier {ordered[idx - 1].label!r}"
            )
    return ordered
