"""
SLA Tracker.

Keeps every open SLA record's status and compliance percentage current.

State machine:
    On Track ⇄ At Risk ⇄ Breached   (recomputed from the clock, revisitable)
    any open state → Completed      (mark_item_completed, externally triggered)
    any open state → Cancelled      (cancel_item)
    Completed / Cancelled are terminal.

Rules (all durations in seconds of the record's own window):
    total     = target_time − start_time
    remaining = target_time − now
    remaining < 0                  → Breached, compliance 0
    remaining < threshold × total  → At Risk,  compliance = remaining / total × 100
    otherwise                      → On Track, compliance = remaining / total × 100
    compliance is always clamped to [0, 100].

``compute_sla_state`` is pure; everything else persists. Recomputation is
idempotent for a given ``now``. Notifications on status changes are
fire-and-forget and never block the recompute.
"""

from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from assignment_engine.core.exceptions import ValidationError
from assignment_engine.models import db
from assignment_engine.models.sla import (
    OPEN_SLA_STATUSES,
    SLA_STATUS_AT_RISK,
    SLA_STATUS_BREACHED,
    SLA_STATUS_CANCELLED,
    SLA_STATUS_COMPLETED,
    SLA_STATUS_ON_TRACK,
    SLARecord,
)
from assignment_engine.services.notification import NotificationService
from assignment_engine.utils.helpers import as_utc, utcnow

logger = logging.getLogger(__name__)

DEFAULT_AT_RISK_THRESHOLD = 0.2

_ESCALATING_STATUSES = (SLA_STATUS_AT_RISK, SLA_STATUS_BREACHED)
_STATUS_SEVERITY = {SLA_STATUS_AT_RISK: "warning", SLA_STATUS_BREACHED: "error"}


@dataclass(frozen=True)
class SLAState:
    """Computed snapshot of an SLA window at one instant."""

    status: str
    compliance_percentage: float
    hours_remaining: float
    hours_overdue: float
    days_remaining: int
    days_overdue: int
    breach_reason: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


def _clamp_percentage(value: float) -> float:
    return round(min(100.0, max(0.0, value)), 2)


def compute_sla_state(
    start_time: datetime,
    target_time: datetime,
    now: datetime,
    at_risk_threshold: float = DEFAULT_AT_RISK_THRESHOLD,
) -> SLAState:
    """Classify an SLA window at ``now``. Pure function.

    Args:
        start_time: When the window opened.
        target_time: When the work is due.
        now: Evaluation instant.
        at_risk_threshold: Share of the total window below which the record
            is At Risk.

    Returns:
        SLAState with status, clamped compliance and remaining/overdue figures.
    """
    start_time, target_time, now = as_utc(start_time), as_utc(target_time), as_utc(now)
    total = (target_time - start_time).total_seconds()
    remaining = (target_time - now).total_seconds()

    if remaining < 0:
        overdue = -remaining
        hours_overdue = round(overdue / 3600, 2)
        return SLAState(
            status=SLA_STATUS_BREACHED,
            compliance_percentage=0.0,
            hours_remaining=0.0,
            hours_overdue=hours_overdue,
            days_remaining=0,
            days_overdue=int(overdue // 86400),
            breach_reason=f"Target time exceeded by {hours_overdue:.1f} hours",
        )

    fraction = remaining / total if total > 0 else 0.0
    status = SLA_STATUS_AT_RISK if fraction < at_risk_threshold else SLA_STATUS_ON_TRACK
    return SLAState(
        status=status,
        compliance_percentage=_clamp_percentage(fraction * 100),
        hours_remaining=round(remaining / 3600, 2),
        hours_overdue=0.0,
        days_remaining=int(remaining // 86400),
        days_overdue=0,
    )


# ═══════════════════════════════════════════════════════════════════════════
#  Record lookup / creation
# ═══════════════════════════════════════════════════════════════════════════


def get_open_record(item_type: str, item_id: int) -> SLARecord | None:
    stmt = select(SLARecord).where(
        SLARecord.item_type == item_type,
        SLARecord.item_id == item_id,
        SLARecord.status.in_(OPEN_SLA_STATUSES),
    )
    return db.session.execute(stmt).scalars().first()


def open_sla_record(
    item,
    *,
    start_time: datetime,
    target_time: datetime,
    target_unit: str,
    target_value: int,
    assigned_to_id: int | None = None,
    responsible_persons: list | None = None,
    now: datetime | None = None,
    at_risk_threshold: float = DEFAULT_AT_RISK_THRESHOLD,
) -> SLARecord:
    """Return the item's open SLA record, creating it when none exists.

    An existing open record keeps its window (re-assignment does not reset the
    clock) but takes the new responsible person. A concurrent insert losing
    the partial unique index is treated as "already opened".

    Does not commit; the caller owns the transaction.
    """
    if as_utc(start_time) > as_utc(target_time):
        raise ValidationError("SLA start time must not be after target time",
                              details={"start_time": start_time.isoformat(),
                                       "target_time": target_time.isoformat()})

    existing = get_open_record(item.item_type, item.id)
    if existing is not None:
        if assigned_to_id is not None:
            existing.assigned_to_id = assigned_to_id
        if responsible_persons is not None:
            existing.responsible_persons = responsible_persons
        return existing

    now = now or utcnow()
    state = compute_sla_state(start_time, target_time, now, at_risk_threshold)
    record = SLARecord(
        item_type=item.item_type,
        item_id=item.id,
        sla_name=f"{item.item_type.title()}: {item.title}"[:300],
        sla_target_unit=target_unit,
        sla_target_value=target_value,
        start_time=start_time,
        target_time=target_time,
        assigned_to_id=assigned_to_id,
        responsible_persons=responsible_persons or [],
        escalation_history=[],
    )
    _apply_state(record, state, now)
    try:
        with db.session.begin_nested():
            db.session.add(record)
    except IntegrityError:
        logger.info("Open SLA record already exists; reusing it",
                    extra={"item_type": item.item_type, "work_item_id": item.id})
        existing = get_open_record(item.item_type, item.id)
        if existing is None:
            raise
        return existing
    return record


# ═══════════════════════════════════════════════════════════════════════════
#  Recomputation
# ═══════════════════════════════════════════════════════════════════════════


def _apply_state(record: SLARecord, state: SLAState, now: datetime) -> str | None:
    """Copy ``state`` onto ``record``. Returns the previous status when it changed."""
    previous = record.status
    record.status = state.status
    record.compliance_percentage = state.compliance_percentage
    record.hours_remaining = state.hours_remaining
    record.hours_overdue = state.hours_overdue
    record.days_remaining = state.days_remaining
    record.days_overdue = state.days_overdue
    record.breach_reason = state.breach_reason
    record.last_computed_at = now

    if previous is not None and previous != state.status:
        if state.status in _ESCALATING_STATUSES:
            record.escalation_history = list(record.escalation_history or []) + [{
                "from": previous,
                "to": state.status,
                "at": now.isoformat(),
                "compliance_percentage": state.compliance_percentage,
            }]
        return previous
    return None


def _notify_status_change(record: SLARecord, previous: str) -> None:
    severity = _STATUS_SEVERITY.get(record.status, "info")
    NotificationService.notify_safely(
        title=f"SLA {record.status}: {record.sla_name}",
        message=(f"Status changed from {previous} to {record.status}; "
                 f"compliance {record.compliance_percentage}%."),
        category="sla",
        severity=severity,
        recipient_id=record.assigned_to_id,
        entity_type=record.item_type,
        entity_id=record.item_id,
    )


def _threshold(at_risk_threshold: float | None) -> float:
    if at_risk_threshold is not None:
        return at_risk_threshold
    try:
        from flask import current_app
        return float(current_app.config.get("AT_RISK_THRESHOLD", DEFAULT_AT_RISK_THRESHOLD))
    except RuntimeError:
        return DEFAULT_AT_RISK_THRESHOLD


def recompute_record(record: SLARecord, now: datetime, at_risk_threshold: float | None = None):
    """Recompute one open record in place. Returns the previous status if it changed."""
    if not record.is_open:
        return None
    state = compute_sla_state(record.start_time, record.target_time, now, _threshold(at_risk_threshold))
    return _apply_state(record, state, now)


def update_sla_tracking(item_type: str, item_id: int, now: datetime | None = None) -> list[dict]:
    """Recompute the open SLA record(s) of one item and persist the result.

    Returns:
        List of record dicts after recomputation (empty when the item has no
        open record).
    """
    now = now or utcnow()
    stmt = select(SLARecord).where(
        SLARecord.item_type == item_type,
        SLARecord.item_id == item_id,
        SLARecord.status.in_(OPEN_SLA_STATUSES),
    )
    records = list(db.session.execute(stmt).scalars())

    changes = []
    for record in records:
        previous = recompute_record(record, now)
        if previous is not None:
            changes.append((record, previous))
    db.session.commit()

    for record, previous in changes:
        logger.info("SLA status %s -> %s", previous, record.status,
                    extra={"item_type": item_type, "work_item_id": item_id,
                           "sla_status": record.status})
        _notify_status_change(record, previous)

    return [r.to_dict() for r in records]


def recompute_all_sla(now: datetime | None = None) -> dict:
    """Recompute every open SLA record.

    Each record is committed on its own; a failure is rolled back, logged and
    skipped so one bad row cannot stall the sweep.

    Returns:
        Summary dict: processed, changed, failed, by_status.
    """
    now = now or utcnow()
    ids = list(db.session.execute(
        select(SLARecord.id).where(SLARecord.status.in_(OPEN_SLA_STATUSES)).order_by(SLARecord.id)
    ).scalars())

    summary = {"processed": 0, "changed": 0, "failed": 0,
               "by_status": {SLA_STATUS_ON_TRACK: 0, SLA_STATUS_AT_RISK: 0, SLA_STATUS_BREACHED: 0}}
    for record_id in ids:
        try:
            record = db.session.get(SLARecord, record_id)
            if record is None or not record.is_open:
                continue
            previous = recompute_record(record, now)
            db.session.commit()
        except Exception:
            db.session.rollback()
            summary["failed"] += 1
            logger.exception("SLA recompute failed for record %s", record_id)
            continue

        summary["processed"] += 1
        summary["by_status"][record.status] = summary["by_status"].get(record.status, 0) + 1
        if previous is not None:
            summary["changed"] += 1
            _notify_status_change(record, previous)

    logger.info("SLA recompute: %d processed, %d changed, %d failed",
                summary["processed"], summary["changed"], summary["failed"])
    return summary


# ═══════════════════════════════════════════════════════════════════════════
#  Terminal transitions
# ═══════════════════════════════════════════════════════════════════════════


def _open_records_for(item_id: int) -> list[SLARecord]:
    stmt = select(SLARecord).where(
        SLARecord.item_id == item_id,
        SLARecord.status.in_(OPEN_SLA_STATUSES),
    )
    return list(db.session.execute(stmt).scalars())


def mark_item_completed(item_id: int, completed_at: datetime | None = None,
                        commit: bool = True) -> list[dict]:
    """Close the item's open SLA record(s) as Completed.

    Completion on or before target freezes compliance at 100; late completion
    freezes the breached figures computed at the completion instant.
    """
    completed_at = completed_at or utcnow()
    records = _open_records_for(item_id)
    for record in records:
        if as_utc(completed_at) <= as_utc(record.target_time):
            record.compliance_percentage = 100.0
            record.hours_overdue = 0.0
            record.days_overdue = 0
            record.breach_reason = None
        else:
            state = compute_sla_state(record.start_time, record.target_time, completed_at,
                                      _threshold(None))
            _apply_state(record, state, completed_at)
        record.status = SLA_STATUS_COMPLETED
        record.actual_completion_time = completed_at
        record.last_computed_at = completed_at
        logger.info("SLA completed (%.0f%%)", record.compliance_percentage,
                    extra={"item_type": record.item_type, "work_item_id": item_id})
    if commit:
        db.session.commit()
    return [r.to_dict() for r in records]


def cancel_item(item_id: int, now: datetime | None = None, commit: bool = True) -> list[dict]:
    """Close the item's open SLA record(s) as Cancelled; compliance stays frozen."""
    now = now or utcnow()
    records = _open_records_for(item_id)
    for record in records:
        record.status = SLA_STATUS_CANCELLED
        record.last_computed_at = now
    if commit:
        db.session.commit()
    return [r.to_dict() for r in records]


# ═══════════════════════════════════════════════════════════════════════════
#  Queries
# ═══════════════════════════════════════════════════════════════════════════


def list_sla_records(status: str | None = None, item_type: str | None = None,
                     limit: int = 200) -> list[dict]:
    stmt = select(SLARecord)
    if status:
        stmt = stmt.where(SLARecord.status == status)
    if item_type:
        stmt = stmt.where(SLARecord.item_type == item_type)
    stmt = stmt.order_by(SLARecord.target_time.asc(), SLARecord.id.asc()).limit(limit)
    return [r.to_dict() for r in db.session.execute(stmt).scalars()]


def get_item_sla(item_type: str, item_id: int) -> list[dict]:
    """Every SLA record (open and closed) of one item, oldest first."""
    stmt = (
        select(SLARecord)
        .where(SLARecord.item_type == item_type, SLARecord.item_id == item_id)
        .order_by(SLARecord.id.asc())
    )
    return [r.to_dict() for r in db.session.execute(stmt).scalars()]


# ═══════════════════════════════════════════════════════════════════════════
#  SLA window
# ═══════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class SLAWindow:
    start_time: datetime
    target_time: datetime
    unit: str
    value: int

    def to_dict(self) -> dict:
        return {
            "start_time": self.start_time.isoformat(),
            "target_time": self.target_time.isoformat(),
            "unit": self.unit,
            "value": self.value,
        }


def sla_window_for(
    item,
    now: datetime,
    *,
    plan_days: int,
    task_hours: int,
    override: int | None = None,
    use_due_date: bool = False,
) -> SLAWindow:
    """Work out the SLA window that opens at ``now`` for ``item``.

    Precedence: explicit ``override`` (days for plans, hours for tasks), then
    the item's due date when ``use_due_date`` is set, then the item's stored
    override, then the configured default. A due date already in the past
    yields a window ending at the due date, which recomputes as Breached.
    """
    now = as_utc(now)
    if override is None and use_due_date and item.due_at is not None:
        target = as_utc(item.due_at)
        start = min(now, target)
        hours = max(0, math.ceil((target - start).total_seconds() / 3600))
        return SLAWindow(start, target, "hours", hours)

    if item.item_type == "plan":
        days = override if override is not None else (item.sla_target_days or plan_days)
        return SLAWindow(now, now + timedelta(days=days), "days", int(days))

    hours = override if override is not None else (item.sla_target_hours or task_hours)
    return SLAWindow(now, now + timedelta(hours=hours), "hours", int(hours))
