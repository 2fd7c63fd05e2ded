"""
Compliance Assignment Engine
Notification model.

Models:
    - Notification: in-app notice raised when an SLA record changes status
      or an optimizer batch leaves items unassigned

The engine only writes rows; delivery (email, SMS, push) belongs to an
external collaborator that reads this table.
"""

from datetime import datetime, timezone

from assignment_engine.models import db


# ── Constants ────────────────────────────────────────────────────────────────

NOTIFICATION_CATEGORIES = ("sla", "bottleneck", "assignment", "system")
NOTIFICATION_SEVERITIES = ("info", "warning", "error")


class Notification(db.Model):
    """
    A notice for one user, or for every engine operator when
    ``recipient_id`` is NULL (bottleneck summaries).

    ``entity_type`` / ``entity_id`` point back at what triggered it: a plan
    or task for SLA changes, ``batch`` for optimizer summaries.
    """

    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    recipient_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True,
    )
    title = db.Column(db.String(300), nullable=False)
    message = db.Column(db.Text, default="")
    category = db.Column(db.String(30), default="system", comment="sla, bottleneck, assignment, system")
    severity = db.Column(db.String(20), default="info")
    entity_type = db.Column(db.String(30), default="", comment="plan, task or batch")
    entity_id = db.Column(db.Integer, nullable=True)
    is_read = db.Column(db.Boolean, default=False)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    @property
    def is_broadcast(self) -> bool:
        return self.recipient_id is None

    def mark_read(self, at=None):
        if not self.is_read:
            self.is_read = True
            self.read_at = at or datetime.now(timezone.utc)

    def to_dict(self):
        data = {
            column: getattr(self, column)
            for column in ("id", "recipient_id", "title", "message", "category", "severity",
                           "entity_type", "entity_id", "is_read")
        }
        data["is_broadcast"] = self.is_broadcast
        data["read_at"] = self.read_at.isoformat() if self.read_at else None
        data["created_at"] = self.created_at.isoformat() if self.created_at else None
        return data

    def __repr__(self):
        return f"<Notification {self.id} [{self.category}/{self.severity}] to={self.recipient_id}>"
