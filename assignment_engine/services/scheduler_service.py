"""
Compliance Assignment Engine
Scheduler Service.

The engine's background work (optimizer batches, SLA sweeps, engine
rebuilds, the daily report) runs as interval jobs:

    - register_job: decorator adding a function to the in-process registry
    - SchedulerService: syncs the registry into ScheduledJob rows, runs a job
      and records the outcome, lists and toggles jobs
    - run_due_jobs: one tick of the ``flask run-scheduler`` loop; due jobs
      run one after another, never concurrently
    - acquire_lock / renew_lock / release_lock: named JobLock rows that keep
      an optimizer batch started from the API from overlapping the scheduled
      one; the running batch renews its lock between items
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from flask import Flask
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError

from assignment_engine.models import db
from assignment_engine.models.scheduling import (
    JOB_STATUS_ACTIVE,
    JOB_STATUS_PAUSED,
    JobLock,
    ScheduledJob,
)
from assignment_engine.utils.helpers import as_utc, utcnow

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Job Registry
# ═══════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class JobDefinition:
    name: str
    func: Callable
    interval_minutes: int
    description: str


_job_registry: dict[str, JobDefinition] = {}


def register_job(name: str, interval_minutes: int = 1440, description: str = ""):
    """Register ``func`` as the job ``name``, due every ``interval_minutes``.

    Usage:
        @register_job("sla_recompute", interval_minutes=5)
        def run_sla_recompute(app):
            ...
    """
    def decorator(func: Callable) -> Callable:
        summary = description or (func.__doc__ or name).strip().splitlines()[0]
        _job_registry[name] = JobDefinition(name, func, interval_minutes, summary)
        return func
    return decorator


def get_registered_jobs() -> dict[str, JobDefinition]:
    return dict(_job_registry)


def _job_row(job_name: str) -> ScheduledJob | None:
    return db.session.execute(
        select(ScheduledJob).where(ScheduledJob.job_name == job_name)
    ).scalars().first()


class SchedulerService:
    """Runs registered jobs inside the Flask app context and persists their history."""

    _app: Flask | None = None

    @classmethod
    def init_app(cls, app: Flask) -> None:
        cls._app = app
        app.extensions["scheduler"] = cls
        logger.debug("Scheduler bound to app with %d registered jobs", len(_job_registry))

    @classmethod
    def ensure_jobs_registered(cls) -> list[ScheduledJob]:
        """Create a ScheduledJob row for every registered job that has none.

        Existing rows are left alone so an operator's toggle survives restarts.
        """
        known = set(db.session.execute(select(ScheduledJob.job_name)).scalars())
        created = [
            ScheduledJob(
                job_name=definition.name,
                description=definition.description,
                interval_minutes=definition.interval_minutes,
                status=JOB_STATUS_ACTIVE,
                is_enabled=True,
                run_count=0,
                error_count=0,
            )
            for definition in _job_registry.values()
            if definition.name not in known
        ]
        if created:
            db.session.add_all(created)
            db.session.commit()
            logger.info("Registered %d scheduled job row(s)", len(created))
        return created

    @classmethod
    def run_job(cls, job_name: str, now: datetime | None = None) -> dict:
        """Run one job now and record the outcome on its ScheduledJob row.

        A job returning ``{"status": "skipped"}`` (optimizer lock held) is
        recorded as skipped; an exception is rolled back and recorded as
        failed. Neither propagates.

        Returns:
            Dict with job_name, status, duration_ms, result and error.
        """
        definition = _job_registry.get(job_name)
        if definition is None:
            return {"job_name": job_name, "status": "error", "error": f"Unknown job: {job_name}"}
        if cls._app is None:
            return {"job_name": job_name, "status": "error", "error": "Scheduler not initialized"}

        started = time.monotonic()
        result, error, status = None, None, "success"
        try:
            result = definition.func(cls._app)
            if isinstance(result, dict) and result.get("status") == "skipped":
                status = "skipped"
        except Exception as exc:
            db.session.rollback()
            status, error = "failed", str(exc)
            logger.exception("Job %s failed", job_name, extra={"job_name": job_name})
        duration_ms = int((time.monotonic() - started) * 1000)

        try:
            row = _job_row(job_name)
            if row is not None:
                row.record_run(
                    status=status,
                    duration_ms=duration_ms,
                    result=result if isinstance(result, dict) else {"output": str(result)},
                    error=error,
                    at=now,
                )
                db.session.commit()
        except Exception:
            db.session.rollback()
            logger.exception("Could not record run of %s", job_name, extra={"job_name": job_name})

        logger.info("Job %s: %s", job_name, status,
                    extra={"job_name": job_name, "duration_ms": duration_ms})
        return {
            "job_name": job_name,
            "status": status,
            "duration_ms": duration_ms,
            "result": result,
            "error": error,
        }

    @classmethod
    def list_jobs(cls) -> list[dict]:
        """Every registered job with its interval and persisted row (if any)."""
        jobs = []
        for definition in _job_registry.values():
            row = _job_row(definition.name)
            jobs.append({
                "job_name": definition.name,
                "description": definition.description,
                "interval_minutes": definition.interval_minutes,
                "db_record": row.to_dict() if row else None,
            })
        return jobs

    @classmethod
    def get_job_status(cls, job_name: str) -> dict | None:
        row = _job_row(job_name)
        return row.to_dict() if row else None

    @classmethod
    def toggle_job(cls, job_name: str, enabled: bool) -> dict | None:
        """Enable or pause a job. Returns None when the job has no row."""
        row = _job_row(job_name)
        if row is None:
            return None
        row.is_enabled = enabled
        row.status = JOB_STATUS_ACTIVE if enabled else JOB_STATUS_PAUSED
        db.session.commit()
        logger.info("Job %s %s", job_name, row.status, extra={"job_name": job_name})
        return row.to_dict()


def is_job_due(job: ScheduledJob, now: datetime) -> bool:
    """An enabled job is due when it never ran or its interval has elapsed."""
    if not job.is_enabled:
        return False
    next_run = job.next_run_at
    return next_run is None or next_run <= as_utc(now)


def run_due_jobs(now: datetime | None = None) -> list[dict]:
    """One scheduler tick: run every due job, in row order, one at a time.

    A slow optimizer batch simply delays the rest of the tick.
    """
    now = now or utcnow()
    SchedulerService.ensure_jobs_registered()
    due = [
        job.job_name
        for job in db.session.execute(select(ScheduledJob).order_by(ScheduledJob.id)).scalars()
        if job.job_name in _job_registry and is_job_due(job, now)
    ]
    return [SchedulerService.run_job(name, now=now) for name in due]


# ═══════════════════════════════════════════════════════════════════════════
#  Advisory locks
# ═══════════════════════════════════════════════════════════════════════════


def acquire_lock(name: str, holder: str, ttl_seconds: int, now: datetime | None = None) -> bool:
    """Try to take the named lock. Returns False while another holder has it.

    An expired lock row is taken over with a conditional UPDATE, so of two
    processes racing for the same expired row only one wins. A fresh insert
    relies on the unique ``name`` column: the loser gets an IntegrityError.
    """
    now = now or utcnow()
    expires = now + timedelta(seconds=ttl_seconds)

    lock = db.session.execute(select(JobLock).where(JobLock.name == name)).scalars().first()
    if lock is not None:
        if as_utc(lock.expires_at) > now:
            logger.info("Lock %s held by %s until %s", name, lock.holder, lock.expires_at)
            return False
        previous = lock.holder
        if not _take_over_expired(name, holder, now, expires):
            logger.info("Expired lock %s claimed by a concurrent holder", name)
            return False
        logger.warning("Took over expired lock %s from %s", name, previous)
        return True

    try:
        db.session.add(JobLock(name=name, holder=holder, acquired_at=now, expires_at=expires))
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        logger.info("Lock %s taken by a concurrent holder", name)
        return False
    return True


def _take_over_expired(name: str, holder: str, now: datetime, expires: datetime) -> bool:
    result = db.session.execute(
        update(JobLock)
        .where(JobLock.name == name, JobLock.expires_at <= now)
        .values(holder=holder, acquired_at=now, expires_at=expires)
        .execution_options(synchronize_session=False)
    )
    db.session.commit()
    return result.rowcount == 1


def renew_lock(name: str, holder: str, ttl_seconds: int, now: datetime | None = None) -> bool:
    """Push the expiry of a lock ``holder`` still owns; False once it was lost.

    Long batches call this between items so the lock cannot expire under them.
    """
    now = now or utcnow()
    result = db.session.execute(
        update(JobLock)
        .where(JobLock.name == name, JobLock.holder == holder)
        .values(expires_at=now + timedelta(seconds=ttl_seconds))
        .execution_options(synchronize_session=False)
    )
    db.session.commit()
    return result.rowcount == 1


def release_lock(name: str, holder: str) -> None:
    """Release the lock if ``holder`` still owns it."""
    db.session.execute(delete(JobLock).where(JobLock.name == name, JobLock.holder == holder))
    db.session.commit()
