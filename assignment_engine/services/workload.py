"""
Workload queries and the Candidate value object.

A Candidate is a directory user plus the workload figures the scorer, the
predictor and the rule engine need. Counts are read fresh from the database
on each call; callers may hold them batch-locally.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Iterable

from sqlalchemy import func, select

from assignment_engine.models import db
from assignment_engine.models.assignment import ACTIVE_ASSIGNMENT_STATUSES, Assignment
from assignment_engine.models.directory import User
from assignment_engine.models.sla import SLA_STATUS_BREACHED, SLARecord
from assignment_engine.models.work_item import TERMINAL_ITEM_STATUSES, WorkItem

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Candidate:
    """A user considered for an assignment."""

    user_id: int
    name: str
    role: str
    experience_level: str = "mid"
    organization_id: int | None = None
    region: str | None = None
    active_items: int = 0
    breached_items: int = 0

    @classmethod
    def from_user(cls, user: User, active_items: int = 0, breached_items: int = 0) -> "Candidate":
        return cls(
            user_id=user.id,
            name=user.display_name,
            role=user.role or "",
            experience_level=user.experience_level or "mid",
            organization_id=user.organization_id,
            region=user.region or (user.organization.region if user.organization else None),
            active_items=active_items,
            breached_items=breached_items,
        )

    @property
    def workload_score(self) -> int:
        """Rule-engine load: active assignments plus two per breached SLA."""
        return self.active_items + 2 * self.breached_items

    def with_extra_item(self) -> "Candidate":
        return replace(self, active_items=self.active_items + 1)

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "name": self.name,
            "role": self.role,
            "experience_level": self.experience_level,
            "organization_id": self.organization_id,
            "region": self.region,
            "active_items": self.active_items,
            "breached_items": self.breached_items,
        }


def active_workload_counts(user_ids: Iterable[int] | None = None) -> dict[int, int]:
    """Active (Assigned / Accepted / In Progress) assignments per user.

    Assignments on completed or cancelled work items are not counted.
    """
    stmt = (
        select(Assignment.user_id, func.count(Assignment.id))
        .join(WorkItem, Assignment.work_item_id == WorkItem.id)
        .where(
            Assignment.status.in_(ACTIVE_ASSIGNMENT_STATUSES),
            WorkItem.status.notin_(TERMINAL_ITEM_STATUSES),
        )
        .group_by(Assignment.user_id)
    )
    if user_ids is not None:
        stmt = stmt.where(Assignment.user_id.in_(list(user_ids)))
    return {user_id: count for user_id, count in db.session.execute(stmt).all()}


def breached_sla_counts(user_ids: Iterable[int] | None = None) -> dict[int, int]:
    """Open Breached SLA records per responsible user."""
    stmt = (
        select(SLARecord.assigned_to_id, func.count(SLARecord.id))
        .where(
            SLARecord.status == SLA_STATUS_BREACHED,
            SLARecord.assigned_to_id.is_not(None),
        )
        .group_by(SLARecord.assigned_to_id)
    )
    if user_ids is not None:
        stmt = stmt.where(SLARecord.assigned_to_id.in_(list(user_ids)))
    return {user_id: count for user_id, count in db.session.execute(stmt).all()}


def candidates_for_users(users: list[User], *, with_breaches: bool = False) -> list[Candidate]:
    """Wrap users into Candidates with current workload figures."""
    ids = [u.id for u in users]
    if not ids:
        return []
    active = active_workload_counts(ids)
    breached = breached_sla_counts(ids) if with_breaches else {}
    return [Candidate.from_user(u, active.get(u.id, 0), breached.get(u.id, 0)) for u in users]


def load_eligible_candidates(roles: Iterable[str], max_active: int) -> list[Candidate]:
    """Active users in ``roles`` whose active workload is below ``max_active``.

    Ordered by user id so downstream tie-breaking is deterministic.
    """
    stmt = (
        select(User)
        .where(User.is_active.is_(True), User.role.in_(list(roles)))
        .order_by(User.id)
    )
    users = list(db.session.execute(stmt).scalars())
    candidates = [c for c in candidates_for_users(users) if c.active_items < max_active]
    logger.debug("Loaded %d eligible candidates (of %d users)", len(candidates), len(users))
    return candidates
