"""
Profile Builder.

Turns the assignment history snapshot into per-user performance profiles:
volume, reliability, average completion time, per-category expertise and
weekly workload capacity.

Profiles live in a ``ProfileCache`` that is replaced wholesale by
``rebuild()``. There is no partial-update path; callers that see no profile
for a user treat them as unknown and fall back to defaults.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from statistics import mean
from types import MappingProxyType
from typing import Callable, Iterable, Mapping

from assignment_engine.services.history_service import HistoryRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CategoryStats:
    """A user's track record in one workflow category."""

    count: int
    completed: int
    avg_hours: float | None
    success_rate: float

    def to_dict(self) -> dict:
        return {
            "count": self.count,
            "completed": self.completed,
            "avg_hours": self.avg_hours,
            "success_rate": self.success_rate,
        }


@dataclass(frozen=True)
class UserPerformanceProfile:
    """Derived performance summary for one user. Never the system of record."""

    user_id: int
    total_items: int
    completed_items: int
    reliability: float
    avg_completion_hours: float | None
    workload_capacity: float
    expertise: Mapping[str, CategoryStats] = field(default_factory=dict)

    def expertise_for(self, category: str | None) -> CategoryStats | None:
        if not category:
            return None
        return self.expertise.get(category)

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "total_items": self.total_items,
            "completed_items": self.completed_items,
            "reliability": self.reliability,
            "avg_completion_hours": self.avg_completion_hours,
            "workload_capacity": self.workload_capacity,
            "expertise": {k: v.to_dict() for k, v in self.expertise.items()},
        }


def _category_stats(records: list[HistoryRecord]) -> CategoryStats:
    hours = [r.completion_hours for r in records if r.completed]
    return CategoryStats(
        count=len(records),
        completed=len(hours),
        avg_hours=round(mean(hours), 2) if hours else None,
        success_rate=round(len(hours) / len(records), 4),
    )


def _weekly_capacity(records: list[HistoryRecord]) -> float:
    """Mean number of items assigned per ISO week the user was active in."""
    weeks: dict[tuple[int, int], int] = defaultdict(int)
    for r in records:
        iso = r.assigned_at.isocalendar()
        weeks[(iso[0], iso[1])] += 1
    return round(mean(weeks.values()), 2) if weeks else 0.0


def build_profiles(history: Iterable[HistoryRecord]) -> dict[int, UserPerformanceProfile]:
    """Build one profile per user referenced in ``history``.

    Pure function: no database access, no side effects.
    """
    by_user: dict[int, list[HistoryRecord]] = defaultdict(list)
    for record in history:
        by_user[record.user_id].append(record)

    profiles = {}
    for user_id, records in by_user.items():
        hours = [r.completion_hours for r in records if r.completed]

        by_category: dict[str, list[HistoryRecord]] = defaultdict(list)
        for r in records:
            if r.category:
                by_category[r.category].append(r)

        profiles[user_id] = UserPerformanceProfile(
            user_id=user_id,
            total_items=len(records),
            completed_items=len(hours),
            reliability=round(len(hours) / len(records), 4),
            avg_completion_hours=round(mean(hours), 2) if hours else None,
            workload_capacity=_weekly_capacity(records),
            expertise=MappingProxyType(
                {cat: _category_stats(rs) for cat, rs in by_category.items()}
            ),
        )
    return profiles


class ProfileCache:
    """Rebuildable, read-only view of user performance profiles."""

    def __init__(self) -> None:
        self._profiles: Mapping[int, UserPerformanceProfile] = MappingProxyType({})
        self.built_at: datetime | None = None

    def rebuild(
        self,
        history: Iterable[HistoryRecord] | None = None,
        *,
        loader: Callable[[], Iterable[HistoryRecord]] | None = None,
        now: datetime | None = None,
    ) -> int:
        """Replace every profile from a fresh history snapshot.

        Either pass ``history`` directly or a ``loader`` callable. A loader
        failure leaves the cache empty (all users unknown) instead of raising.

        Returns:
            Number of profiles built.
        """
        if history is None:
            try:
                history = list(loader()) if loader else []
            except Exception:
                logger.warning("History unavailable; continuing with empty profiles", exc_info=True)
                history = []

        self._profiles = MappingProxyType(build_profiles(history))
        self.built_at = now
        logger.info("Profile cache rebuilt: %d users", len(self._profiles))
        return len(self._profiles)

    def get(self, user_id: int) -> UserPerformanceProfile | None:
        return self._profiles.get(user_id)

    @property
    def profiles(self) -> Mapping[int, UserPerformanceProfile]:
        return self._profiles

    def __len__(self) -> int:
        return len(self._profiles)

    def __contains__(self, user_id) -> bool:
        return user_id in self._profiles
