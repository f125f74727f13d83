"""
Compatibility scoring between two skill profiles.

score(a, b):
    +10 for each skill a needs that b offers
    +10 for each skill b needs that a offers
    +5 when both majors are set and equal ignoring case

percentage(a, b) clips the raw score at 100 and reads it as a percent.
Both functions are pure and symmetric in their arguments.
"""
from dataclasses import dataclass
from typing import Iterable, List, Optional

from app.schemas.records import UserProfile

SKILL_MATCH_POINTS = 10
MAJOR_MATCH_POINTS = 5
PERCENTAGE_BASE = 100


@dataclass
class PeerMatch:
    """A candidate peer with their compatibility against the viewing user."""
    profile: UserProfile
    score: int
    percentage: int


def _needs_met(needing: UserProfile, offering: UserProfile) -> int:
    offered = set(offering.skills_offered)
    return sum(1 for skill in needing.skills_needed if skill in offered)


def _same_major(a: UserProfile, b: UserProfile) -> bool:
    major_a = a.major.strip().lower()
    major_b = b.major.strip().lower()
    # Two blank majors are equal strings but not a shared major
    return bool(major_a) and major_a == major_b


def score(a: UserProfile, b: UserProfile) -> int:
    """Raw compatibility score, unbounded above."""
    total = _needs_met(a, b) * SKILL_MATCH_POINTS
    total += _needs_met(b, a) * SKILL_MATCH_POINTS
    if _same_major(a, b):
        total += MAJOR_MATCH_POINTS
    return total


def percentage_from_score(raw_score: int) -> int:
    """Normalise a raw score into [0, 100]."""
    return max(0, min(round(raw_score / PERCENTAGE_BASE * 100), 100))


def percentage(a: UserProfile, b: UserProfile) -> int:
    """Compatibility as a display percentage."""
    return percentage_from_score(score(a, b))


def rank_peers(user: UserProfile, candidates: Iterable[UserProfile], limit: Optional[int] = None) -> List[PeerMatch]:
    """
    Rank candidate peers for ``user``.

    Skips the user themself and incomplete profiles. Ordered by percentage,
    highest first; candidates with equal percentage keep their input order.
    """
    matches = []
    for candidate in candidates:
        if candidate.id == user.id or not candidate.is_complete:
            continue
        raw = score(user, candidate)
        matches.append(PeerMatch(profile=candidate, score=raw, percentage=percentage_from_score(raw)))

    # list.sort is stable
    matches.sort(key=lambda m: m.percentage, reverse=True)
    if limit is not None:
        matches = matches[:limit]
    return matches
