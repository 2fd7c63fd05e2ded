"""
Assignment history loader.

Loads the trailing window of Primary assignments joined with their work
items and users. The same snapshot feeds the profile builder, the pattern
analyzer and predictor training, so all three see identical data.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import select

from assignment_engine.models import db
from assignment_engine.models.assignment import Assignment
from assignment_engine.models.directory import User
from assignment_engine.models.work_item import WorkItem
from assignment_engine.utils.helpers import as_utc, utcnow

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_DAYS = 180
DEFAULT_LIMIT = 1000


@dataclass(frozen=True)
class HistoryRecord:
    """One Primary assignment as seen by the learning components."""

    assignment_id: int
    work_item_id: int
    user_id: int
    user_role: str
    experience_level: str
    category: str
    priority: str
    status: str
    assigned_at: datetime
    completed_at: datetime | None = None

    @property
    def completed(self) -> bool:
        return self.status == "Completed" and self.completed_at is not None

    @property
    def completion_hours(self) -> float | None:
        """Hours from assignment to completion, or None when not completed."""
        if not self.completed:
            return None
        hours = (self.completed_at - self.assigned_at).total_seconds() / 3600
        return max(hours, 0.0)


def load_assignment_history(
    window_days: int = DEFAULT_WINDOW_DAYS,
    limit: int = DEFAULT_LIMIT,
    now: datetime | None = None,
) -> list[HistoryRecord]:
    """Return the most recent Primary assignments inside the window.

    Rejected and Transferred rows are included: they count as assigned but
    not completed, which is what reliability is measured against.

    Args:
        window_days: Trailing window measured on ``assigned_at``.
        limit: Maximum number of rows (most recent first).
        now: Reference time; defaults to the current UTC time.

    Returns:
        List of HistoryRecord, newest first.
    """
    now = now or utcnow()
    cutoff = now - timedelta(days=window_days)

    stmt = (
        select(Assignment, WorkItem, User)
        .join(WorkItem, Assignment.work_item_id == WorkItem.id)
        .join(User, Assignment.user_id == User.id)
        .where(
            Assignment.assignment_type == "Primary",
            Assignment.assigned_at >= cutoff,
        )
        .order_by(Assignment.assigned_at.desc(), Assignment.id.desc())
        .limit(limit)
    )

    records = []
    for assignment, item, user in db.session.execute(stmt).all():
        records.append(HistoryRecord(
            assignment_id=assignment.id,
            work_item_id=item.id,
            user_id=user.id,
            user_role=user.role or "",
            experience_level=user.experience_level or "mid",
            category=item.category or "",
            priority=item.priority or "medium",
            status=assignment.status,
            assigned_at=as_utc(assignment.assigned_at),
            completed_at=as_utc(assignment.completed_at),
        ))

    logger.debug("Loaded %d history records (window=%dd)", len(records), window_days)
    return records
