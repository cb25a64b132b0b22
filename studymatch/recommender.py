from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .data_models import CandidateMatch, Profile


REASON_SEPARATOR = " • "
FALLBACK_REASON = "Potential study partner match"
STREAK_WINDOW_DAYS = 30.0


@dataclass(frozen=True)
class ScoreWeights:
    w_subjects: float = 0.30
    w_schedule: float = 0.25
    w_learning_style: float = 0.15
    w_exam_goal: float = 0.10
    w_streak: float = 0.10
    w_behavior: float = 0.10

    # placeholder until a real engagement signal exists
    behavior_baseline: float = 0.7


DEFAULT_WEIGHTS = ScoreWeights()


def _normalized(values: Optional[Iterable[str]]) -> set:
    if not values:
        return set()
    return {str(v).strip().lower() for v in values if v is not None and str(v).strip()}


def overlap(a: Optional[Iterable[str]], b: Optional[Iterable[str]]) -> float:
    """Case-insensitive Jaccard similarity; 0.0 when either side is empty."""
    sa = _normalized(a)
    sb = _normalized(b)
    if not sa or not sb:
        return 0.0
    return len(sa & sb) / len(sa | sb)


def _learning_style_affinity(a: Optional[str], b: Optional[str]) -> float:
    # exact match; unlike exam goals, style labels are case-sensitive
    if not a or not b:
        return 0.0
    return 1.0 if a == b else 0.5


def _exam_goal_affinity(a: Optional[str], b: Optional[str]) -> float:
    if not a or not b:
        return 0.0
    return 1.0 if a.strip().lower() == b.strip().lower() else 0.3


def _streak_similarity(a: Optional[int], b: Optional[int]) -> float:
    gap = abs(int(a or 0) - int(b or 0))
    return max(0.0, 1.0 - gap / STREAK_WINDOW_DAYS)


def score_breakdown(p1: Profile, p2: Profile) -> Dict[str, float]:
    """Per-component similarity values in [0, 1], before weighting."""
    return {
        "subjects": overlap(p1.subjects, p2.subjects),
        "schedule": overlap(p1.preferred_times, p2.preferred_times),
        "learning_style": _learning_style_affinity(p1.learning_style, p2.learning_style),
        "exam_goal": _exam_goal_affinity(p1.exam_goal, p2.exam_goal),
        "streak": _streak_similarity(p1.study_streak, p2.study_streak),
    }


def score_pair(
    p1: Profile, p2: Profile, weights: ScoreWeights = DEFAULT_WEIGHTS
) -> Tuple[int, Dict[str, float]]:
    comps = score_breakdown(p1, p2)
    total = (
        weights.w_subjects * comps["subjects"]
        + weights.w_schedule * comps["schedule"]
        + weights.w_learning_style * comps["learning_style"]
        + weights.w_exam_goal * comps["exam_goal"]
        + weights.w_streak * comps["streak"]
        + weights.w_behavior * weights.behavior_baseline
    )
    # round half up; weights sum to 1 so the result already sits in [0, 100]
    score = int(math.floor(total * 100 + 0.5))
    return max(0, min(100, score)), comps


def _display_overlap(a: Sequence[str], b: Sequence[str]) -> List[str]:
    """Overlapping values in a's spelling, alphabetical by lowercase key."""
    b_keys = _normalized(b)
    seen: Dict[str, str] = {}
    for value in a or []:
        key = str(value).strip().lower()
        if key in b_keys and key not in seen:
            seen[key] = str(value).strip()
    return [seen[k] for k in sorted(seen)]


def match_reason(p1: Profile, p2: Profile) -> str:
    reasons: List[str] = []

    common_subjects = _display_overlap(p1.subjects, p2.subjects)
    if common_subjects:
        reasons.append("Both study " + ", ".join(common_subjects[:2]))

    if _normalized(p1.preferred_times) & _normalized(p2.preferred_times):
        reasons.append("Similar study schedule")

    if p1.learning_style and _learning_style_affinity(p1.learning_style, p2.learning_style) == 1.0:
        reasons.append("Same learning style")

    if p1.exam_goal and _exam_goal_affinity(p1.exam_goal, p2.exam_goal) == 1.0:
        reasons.append(f"Same exam goal: {p1.exam_goal}")

    if not reasons:
        return FALLBACK_REASON
    return REASON_SEPARATOR.join(reasons)


def compatibility(p1: Profile, p2: Profile, weights: ScoreWeights = DEFAULT_WEIGHTS) -> Tuple[int, str]:
    """Deterministic base score and reason for a profile pair."""
    score, _ = score_pair(p1, p2, weights)
    return score, match_reason(p1, p2)


def rank_candidates(candidates: Iterable[CandidateMatch]) -> List[CandidateMatch]:
    """Base score descending, candidate id ascending on ties."""
    return sorted(candidates, key=lambda c: (-c.base_score, c.user.id))


def top_k(candidates: Iterable[CandidateMatch], k: int) -> Tuple[List[CandidateMatch], List[CandidateMatch]]:
    """Split ranked candidates into the first k (to enrich) and the rest."""
    ranked = rank_candidates(candidates)
    k = max(0, k)
    return ranked[:k], ranked[k:]
