"""
Candidate Scorer.

Ranks candidates for a work item. Higher is better; scores are floored at 0.

    + category success rate × 30        (profile required)
    + speed bonus, up to 20             (profile required, faster = higher)
    + reliability × 20                  (profile required)
    − 5 per active item                 (every candidate)
    + role fit × 15                     (fixed role/category matrix)
    + experience score × 10
    × priority multiplier

The workload penalty applies to users without history too, so the score is
strictly decreasing in workload for every candidate while above the floor.
"""

from __future__ import annotations

import logging

from assignment_engine.services.profile_builder import ProfileCache, UserPerformanceProfile
from assignment_engine.services.workload import Candidate

logger = logging.getLogger(__name__)

SUCCESS_WEIGHT = 30.0
SPEED_WEIGHT = 20.0
SPEED_REFERENCE_HOURS = 8.0
RELIABILITY_WEIGHT = 20.0
WORKLOAD_PENALTY = 5.0
ROLE_FIT_WEIGHT = 15.0
EXPERIENCE_WEIGHT = 10.0

DEFAULT_ROLE_FIT = 0.5
ROLE_FIT = {
    "analyst": {
        "assessment_approval": 0.7, "evidence_review": 0.9,
        "compliance_review": 0.8, "remediation_approval": 0.6,
    },
    "auditor": {
        "assessment_approval": 0.9, "evidence_review": 0.8,
        "compliance_review": 0.9, "remediation_approval": 0.7,
    },
    "manager": {
        "assessment_approval": 0.8, "evidence_review": 0.6,
        "compliance_review": 0.7, "remediation_approval": 0.9,
    },
    "compliance_officer": {
        "assessment_approval": 0.9, "evidence_review": 0.7,
        "compliance_review": 0.9, "remediation_approval": 0.8,
    },
}

DEFAULT_EXPERIENCE_SCORE = 0.7
EXPERIENCE_SCORES = {"junior": 0.6, "mid": 0.8, "senior": 0.9, "expert": 1.0}

PRIORITY_MULTIPLIERS = {"critical": 1.3, "high": 1.1, "medium": 1.0, "low": 0.9}

# Confidence needs a meaningful track record in the category
CONFIDENCE_MIN_CATEGORY_ITEMS = 5


def role_fit(role: str | None, category: str | None) -> float:
    return ROLE_FIT.get(role or "", {}).get(category or "", DEFAULT_ROLE_FIT)


def experience_score(level: str | None) -> float:
    return EXPERIENCE_SCORES.get(level or "", DEFAULT_EXPERIENCE_SCORE)


def priority_multiplier(priority: str | None) -> float:
    return PRIORITY_MULTIPLIERS.get(priority or "", 1.0)


def speed_bonus(avg_hours: float) -> float:
    """Diminishing bonus: 20 at zero hours, 10 at eight hours, → 0 as hours grow."""
    return SPEED_WEIGHT / (1 + max(avg_hours, 0.0) / SPEED_REFERENCE_HOURS)


class CandidateScorer:
    """Scores candidates against a task using the shared profile cache."""

    def __init__(self, profiles: ProfileCache) -> None:
        self.profiles = profiles

    def _profile(self, candidate: Candidate) -> UserPerformanceProfile | None:
        return self.profiles.get(candidate.user_id)

    def score(self, candidate: Candidate, task) -> float:
        category = getattr(task, "category", None)
        total = 0.0

        profile = self._profile(candidate)
        if profile is not None:
            stats = profile.expertise_for(category)
            if stats is not None:
                total += stats.success_rate * SUCCESS_WEIGHT
                if stats.avg_hours is not None:
                    total += speed_bonus(stats.avg_hours)
            total += profile.reliability * RELIABILITY_WEIGHT

        total -= WORKLOAD_PENALTY * candidate.active_items
        total += role_fit(candidate.role, category) * ROLE_FIT_WEIGHT
        total += experience_score(candidate.experience_level) * EXPERIENCE_WEIGHT
        total *= priority_multiplier(getattr(task, "priority", None))

        return max(0.0, round(total, 4))

    def confidence(self, candidate: Candidate, task) -> float:
        """Confidence in [0.1, 1.0] that this is a good match."""
        value = 0.5
        profile = self._profile(candidate)
        if profile is not None:
            stats = profile.expertise_for(getattr(task, "category", None))
            if stats is not None and stats.count > CONFIDENCE_MIN_CATEGORY_ITEMS:
                value += stats.success_rate * 0.3
            value += profile.reliability * 0.2
        return round(min(1.0, max(0.1, value)), 2)

    def reasoning(self, candidate: Candidate, task) -> str:
        """One-line explanation of why this candidate was chosen."""
        category = getattr(task, "category", None) or "general"
        parts = []
        profile = self._profile(candidate)
        stats = profile.expertise_for(category) if profile else None
        if stats is not None:
            parts.append(f"{candidate.name} completed {stats.completed} {category} tasks")
            parts.append(f"{stats.success_rate:.0%} success rate")
        else:
            parts.append(f"No {category} history for {candidate.name}")
        if profile is not None:
            parts.append(f"{profile.reliability:.0%} reliability")
        parts.append(f"Current workload: {candidate.active_items} tasks")
        parts.append(f"Role match: {candidate.role}")
        return "; ".join(parts)
