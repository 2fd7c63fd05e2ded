"""
Compliance Assignment Engine
Optimizer audit models.

Models:
    - OptimizationLog: one row per optimizer decision or bottleneck
    - OptimizationReport: daily summary produced by the report job
"""

from datetime import datetime, timezone

from assignment_engine.models import db


# ── Constants ────────────────────────────────────────────────────────────────

LOG_TYPE_ASSIGNMENT = "auto_assignment"
LOG_TYPE_BOTTLENECK = "bottleneck"


class OptimizationLog(db.Model):
    """Audit trail of what the optimizer decided, and why."""

    __tablename__ = "optimization_logs"

    id = db.Column(db.Integer, primary_key=True)
    log_type = db.Column(db.String(30), nullable=False, index=True,
                         comment="auto_assignment or bottleneck")
    batch_id = db.Column(db.String(40), nullable=True, index=True)
    work_item_id = db.Column(
        db.Integer, db.ForeignKey("work_items.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    score = db.Column(db.Float, nullable=True)
    confidence = db.Column(db.Float, nullable=True)
    estimated_hours = db.Column(db.Float, nullable=True)
    reasoning = db.Column(db.Text, default="")

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           index=True)

    def to_dict(self):
        return {
            "id": self.id,
            "log_type": self.log_type,
            "batch_id": self.batch_id,
            "work_item_id": self.work_item_id,
            "user_id": self.user_id,
            "score": self.score,
            "confidence": self.confidence,
            "estimated_hours": self.estimated_hours,
            "reasoning": self.reasoning,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<OptimizationLog {self.log_type} item={self.work_item_id} user={self.user_id}>"


class OptimizationReport(db.Model):
    """Persisted daily optimization report."""

    __tablename__ = "optimization_reports"

    id = db.Column(db.Integer, primary_key=True)
    report_date = db.Column(db.Date, nullable=False, index=True)
    payload = db.Column(db.JSON, default=dict)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "report_date": self.report_date.isoformat() if self.report_date else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            **(self.payload or {}),
        }

    def __repr__(self):
        return f"<OptimizationReport {self.report_date}>"
