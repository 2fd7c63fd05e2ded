"""
Compliance Assignment Engine
Scheduling models.

Models:
    - ScheduledJob: one row per registered engine job (interval + run history)
    - JobLock: named advisory lock with expiry, keeps optimizer batches from
      overlapping across processes
"""

from datetime import datetime, timedelta, timezone

from assignment_engine.models import db
from assignment_engine.utils.helpers import as_utc


# ── Constants ────────────────────────────────────────────────────────────────

JOB_STATUS_ACTIVE = "active"
JOB_STATUS_PAUSED = "paused"


class ScheduledJob(db.Model):
    """
    Persisted state of an engine job.

    The job function lives in the in-process registry
    (``scheduler_service.register_job``); this row holds what must survive a
    restart: the interval, the enabled flag and the last outcome.
    """

    __tablename__ = "scheduled_jobs"

    id = db.Column(db.Integer, primary_key=True)
    job_name = db.Column(db.String(100), unique=True, nullable=False,
                         comment="assignment_optimizer, sla_recompute, engine_rebuild, ...")
    description = db.Column(db.String(500), default="")
    interval_minutes = db.Column(db.Integer, nullable=False, default=1440)
    status = db.Column(db.String(20), default=JOB_STATUS_ACTIVE, comment="active or paused")
    is_enabled = db.Column(db.Boolean, default=True)

    last_run_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_run_status = db.Column(db.String(20), nullable=True, comment="success, failed, skipped")
    last_run_duration_ms = db.Column(db.Integer, nullable=True)
    last_run_result = db.Column(db.JSON, nullable=True)
    run_count = db.Column(db.Integer, default=0)
    error_count = db.Column(db.Integer, default=0)
    last_error = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    @property
    def next_run_at(self):
        """When the job is next due; None means "now" (never ran)."""
        if self.last_run_at is None:
            return None
        return as_utc(self.last_run_at) + timedelta(minutes=self.interval_minutes or 1440)

    def record_run(self, *, status, duration_ms, result=None, error=None, at=None):
        self.last_run_at = at or datetime.now(timezone.utc)
        self.last_run_status = status
        self.last_run_duration_ms = duration_ms
        self.last_run_result = result
        self.run_count = (self.run_count or 0) + 1
        if status == "failed":
            self.error_count = (self.error_count or 0) + 1
            self.last_error = error

    def to_dict(self):
        next_run = self.next_run_at
        return {
            "id": self.id,
            "job_name": self.job_name,
            "description": self.description,
            "interval_minutes": self.interval_minutes,
            "status": self.status,
            "is_enabled": self.is_enabled,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "next_run_at": next_run.isoformat() if next_run else None,
            "last_run_status": self.last_run_status,
            "last_run_duration_ms": self.last_run_duration_ms,
            "last_run_result": self.last_run_result,
            "run_count": self.run_count,
            "error_count": self.error_count,
            "last_error": self.last_error,
        }

    def __repr__(self):
        return f"<ScheduledJob {self.job_name} every {self.interval_minutes}m [{self.status}]>"


class JobLock(db.Model):
    """
    Advisory lock row.

    Held while a row with the name exists and ``expires_at`` is in the future.
    An expired row may be taken over, so a crashed holder blocks the queue for
    at most its TTL.
    """

    __tablename__ = "job_locks"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), unique=True, nullable=False)
    holder = db.Column(db.String(100), default="", comment="Batch id of the current holder")
    acquired_at = db.Column(db.DateTime(timezone=True), nullable=False)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def __repr__(self):
        return f"<JobLock {self.name} held by {self.holder} until {self.expires_at}>"
