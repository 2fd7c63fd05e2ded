"""
Compliance Assignment Engine
Assignment model.

Models:
    - Assignment: (work item, user) relation with type and lifecycle status

Invariants:
    - (work_item_id, user_id) is unique, enforced by the database.
    - At most one Primary holder per work item, enforced by
      assignment_service because SQLite cannot express it as an index.
    - Rows are never deleted; ending an assignment is a status change.
"""

from datetime import datetime, timezone

from assignment_engine.models import db


# ── Constants ────────────────────────────────────────────────────────────────

ASSIGNMENT_TYPES = {"Primary", "Secondary", "Reviewer", "Approver", "Observer", "Escalation"}

# Statuses that count towards a user's workload
ACTIVE_ASSIGNMENT_STATUSES = ("Assigned", "Accepted", "In Progress")

# Statuses that release the (item, user) slot; the row stays for audit
RELEASED_ASSIGNMENT_STATUSES = ("Rejected", "Transferred")


class Assignment(db.Model):
    """One user's responsibility for one work item."""

    __tablename__ = "assignments"
    __table_args__ = (
        db.UniqueConstraint("work_item_id", "user_id", name="uq_assignment_item_user"),
    )

    id = db.Column(db.Integer, primary_key=True)
    work_item_id = db.Column(
        db.Integer, db.ForeignKey("work_items.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    user_role = db.Column(db.String(50), default="", comment="Role snapshot at assignment time")
    assignment_type = db.Column(db.String(20), default="Primary",
                                comment="Primary, Secondary, Reviewer, Approver, Observer, Escalation")
    status = db.Column(db.String(20), default="Assigned", index=True,
                       comment="Assigned, Accepted, In Progress, Completed, Rejected, Transferred")

    is_auto_assigned = db.Column(db.Boolean, default=False)
    assignment_reason = db.Column(db.JSON, nullable=True,
                                  comment="Rule or score that produced this assignment")
    estimated_hours = db.Column(db.Float, nullable=True)
    confidence = db.Column(db.Float, nullable=True)

    assigned_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    accepted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    work_item = db.relationship("WorkItem", back_populates="assignments")
    user = db.relationship("User")

    @property
    def is_active(self):
        return self.status in ACTIVE_ASSIGNMENT_STATUSES

    def to_dict(self):
        return {
            "id": self.id,
            "work_item_id": self.work_item_id,
            "user_id": self.user_id,
            "user_name": self.user.display_name if self.user else None,
            "user_role": self.user_role,
            "assignment_type": self.assignment_type,
            "status": self.status,
            "is_auto_assigned": self.is_auto_assigned,
            "assignment_reason": self.assignment_reason,
            "estimated_hours": self.estimated_hours,
            "confidence": self.confidence,
            "assigned_at": self.assigned_at.isoformat() if self.assigned_at else None,
            "accepted_at": self.accepted_at.isoformat() if self.accepted_at else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }

    def __repr__(self):
        return f"<Assignment item={self.work_item_id} user={self.user_id} {self.assignment_type}/{self.status}>"
