"""
Compliance Assignment Engine
SLA tracking model.

Models:
    - SLARecord: target window and computed compliance state of one work item

One *open* record per (item_type, item_id) is guaranteed by a partial unique
index on PostgreSQL and SQLite, backed by get-or-create in sla_tracker.
Completed and Cancelled records are terminal and never reopened.
"""

from datetime import datetime, timezone

from assignment_engine.models import db


# ── Constants ────────────────────────────────────────────────────────────────

SLA_STATUS_ON_TRACK = "On Track"
SLA_STATUS_AT_RISK = "At Risk"
SLA_STATUS_BREACHED = "Breached"
SLA_STATUS_COMPLETED = "Completed"
SLA_STATUS_CANCELLED = "Cancelled"

SLA_STATUSES = {
    SLA_STATUS_ON_TRACK, SLA_STATUS_AT_RISK, SLA_STATUS_BREACHED,
    SLA_STATUS_COMPLETED, SLA_STATUS_CANCELLED,
}
OPEN_SLA_STATUSES = (SLA_STATUS_ON_TRACK, SLA_STATUS_AT_RISK, SLA_STATUS_BREACHED)

_OPEN_RECORD_WHERE = db.text("status NOT IN ('Completed', 'Cancelled')")


class SLARecord(db.Model):
    """
    SLA window for a plan or task.

    ``compliance_percentage`` is the share of the window still remaining,
    clamped to [0, 100]. It is frozen when the record reaches a terminal status.
    """

    __tablename__ = "sla_records"
    __table_args__ = (
        db.Index(
            "uq_sla_open_item", "item_type", "item_id", unique=True,
            sqlite_where=_OPEN_RECORD_WHERE,
            postgresql_where=_OPEN_RECORD_WHERE,
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    item_type = db.Column(db.String(10), nullable=False, comment="plan or task")
    item_id = db.Column(
        db.Integer, db.ForeignKey("work_items.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    sla_name = db.Column(db.String(300), default="")
    sla_target_unit = db.Column(db.String(10), default="hours", comment="days or hours")
    sla_target_value = db.Column(db.Integer, nullable=False)

    start_time = db.Column(db.DateTime(timezone=True), nullable=False)
    target_time = db.Column(db.DateTime(timezone=True), nullable=False)
    actual_completion_time = db.Column(db.DateTime(timezone=True), nullable=True)

    status = db.Column(db.String(20), default=SLA_STATUS_ON_TRACK, index=True,
                       comment="On Track, At Risk, Breached, Completed, Cancelled")
    compliance_percentage = db.Column(db.Float, default=100.0)
    hours_remaining = db.Column(db.Float, nullable=True)
    hours_overdue = db.Column(db.Float, nullable=True)
    days_remaining = db.Column(db.Integer, nullable=True)
    days_overdue = db.Column(db.Integer, nullable=True)
    breach_reason = db.Column(db.Text, nullable=True)

    assigned_to_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True,
        comment="Primary responsible at the time the window opened",
    )
    responsible_persons = db.Column(db.JSON, default=list)
    escalation_history = db.Column(db.JSON, default=list,
                                   comment="Status changes into At Risk / Breached")
    last_computed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    @property
    def is_open(self):
        return self.status in OPEN_SLA_STATUSES

    def to_dict(self):
        return {
            "id": self.id,
            "item_type": self.item_type,
            "item_id": self.item_id,
            "sla_name": self.sla_name,
            "sla_target_unit": self.sla_target_unit,
            "sla_target_value": self.sla_target_value,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "target_time": self.target_time.isoformat() if self.target_time else None,
            "actual_completion_time": (
                self.actual_completion_time.isoformat() if self.actual_completion_time else None
            ),
            "status": self.status,
            "compliance_percentage": self.compliance_percentage,
            "hours_remaining": self.hours_remaining,
            "hours_overdue": self.hours_overdue,
            "days_remaining": self.days_remaining,
            "days_overdue": self.days_overdue,
            "breach_reason": self.breach_reason,
            "assigned_to_id": self.assigned_to_id,
            "responsible_persons": self.responsible_persons or [],
            "escalation_history": self.escalation_history or [],
            "last_computed_at": self.last_computed_at.isoformat() if self.last_computed_at else None,
        }

    def __repr__(self):
        return f"<SLARecord {self.item_type}:{self.item_id} [{self.status}] {self.compliance_percentage}%>"
