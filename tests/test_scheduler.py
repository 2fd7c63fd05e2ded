"""
Tests: scheduler service, advisory locks and the optimization report.

Covers:
    1. Job registry sync and manual execution (success / failed / skipped)
    2. Due-job detection and the scheduler tick
    3. Enable / disable toggling
    4. Named locks: exclusive holder, expiry takeover, holder-only release
    5. Optimization report content and persistence
"""

from datetime import timedelta
from unittest.mock import patch

from assignment_engine.models import db
from assignment_engine.models.optimization import OptimizationReport
from assignment_engine.models.scheduling import JobLock, ScheduledJob
from assignment_engine.services import scheduler_service
from assignment_engine.services.assignment_optimizer import optimize_scheduling
from assignment_engine.services.optimization_report import (
    generate_optimization_report,
    latest_report,
    performer_score,
)
from assignment_engine.services.scheduler_service import (
    JobDefinition,
    SchedulerService,
    acquire_lock,
    get_registered_jobs,
    is_job_due,
    release_lock,
    renew_lock,
    run_due_jobs,
)

JOB_NAMES = {"assignment_optimizer", "sla_recompute", "engine_rebuild", "optimization_report"}


def _job(name):
    return ScheduledJob.query.filter_by(job_name=name).first()


# ═══════════════════════════════════════════════════════════════════════════
#  Registry and execution
# ═══════════════════════════════════════════════════════════════════════════


class TestJobRegistry:

    def test_all_jobs_registered(self):
        assert JOB_NAMES <= set(get_registered_jobs())

    def test_ensure_creates_records_once(self):
        created = SchedulerService.ensure_jobs_registered()
        assert {j.job_name for j in created} == JOB_NAMES
        assert SchedulerService.ensure_jobs_registered() == []
        job = _job("sla_recompute")
        assert job.interval_minutes == 5
        assert job.description == "Recompute status and compliance of every open SLA record."

    def test_list_jobs(self):
        SchedulerService.ensure_jobs_registered()
        jobs = {j["job_name"]: j for j in SchedulerService.list_jobs()}
        assert JOB_NAMES <= set(jobs)
        assert jobs["engine_rebuild"]["db_record"]["is_enabled"] is True


class TestRunJob:

    def test_unknown_job(self):
        result = SchedulerService.run_job("no_such_job")
        assert result["status"] == "error"

    def test_success_recorded(self, now):
        SchedulerService.ensure_jobs_registered()
        result = SchedulerService.run_job("sla_recompute", now=now)

        assert result["status"] == "success"
        assert result["result"]["processed"] == 0
        job = _job("sla_recompute")
        assert job.run_count == 1
        assert job.last_run_status == "success"

    def test_failure_recorded(self, now):
        SchedulerService.ensure_jobs_registered()

        def boom(app):
            raise RuntimeError("exploded")

        with patch.dict(scheduler_service._job_registry,
                        {"sla_recompute": JobDefinition("sla_recompute", boom, 5, "boom")}):
            result = SchedulerService.run_job("sla_recompute", now=now)

        assert result["status"] == "failed"
        assert result["error"] == "exploded"
        job = _job("sla_recompute")
        assert job.error_count == 1
        assert job.last_error == "exploded"

    def test_skipped_result(self, now):
        SchedulerService.ensure_jobs_registered()
        skipped = JobDefinition("assignment_optimizer", lambda app: {"status": "skipped"}, 5, "")
        with patch.dict(scheduler_service._job_registry, {"assignment_optimizer": skipped}):
            result = SchedulerService.run_job("assignment_optimizer", now=now)
        assert result["status"] == "skipped"
        assert _job("assignment_optimizer").last_run_status == "skipped"

    def test_optimizer_job_summary(self, now, make_org, make_user, make_item):
        org = make_org()
        make_user("analyst", org)
        make_item(org=org)
        SchedulerService.ensure_jobs_registered()

        result = SchedulerService.run_job("assignment_optimizer", now=now)
        assert result["result"]["status"] == "completed"
        assert result["result"]["assigned"] == 1


class TestDueJobs:

    def test_never_run_is_due(self, now):
        SchedulerService.ensure_jobs_registered()
        assert is_job_due(_job("engine_rebuild"), now)

    def test_interval_respected(self, now):
        SchedulerService.ensure_jobs_registered()
        job = _job("sla_recompute")
        job.last_run_at = now - timedelta(minutes=3)
        assert not is_job_due(job, now)
        assert is_job_due(job, now + timedelta(minutes=2))

    def test_disabled_never_due(self, now):
        SchedulerService.ensure_jobs_registered()
        SchedulerService.toggle_job("sla_recompute", False)
        assert not is_job_due(_job("sla_recompute"), now)

    def test_tick_runs_due_jobs_only(self, now):
        first = run_due_jobs(now)
        assert {r["job_name"] for r in first} == JOB_NAMES

        assert run_due_jobs(now + timedelta(minutes=1)) == []

        later = run_due_jobs(now + timedelta(minutes=6))
        assert {r["job_name"] for r in later} == {"assignment_optimizer", "sla_recompute"}


class TestToggle:

    def test_disable_and_enable(self):
        SchedulerService.ensure_jobs_registered()
        paused = SchedulerService.toggle_job("engine_rebuild", False)
        assert paused["is_enabled"] is False
        assert paused["status"] == "paused"
        assert SchedulerService.toggle_job("engine_rebuild", True)["status"] == "active"

    def test_unknown_job(self):
        assert SchedulerService.toggle_job("missing", True) is None
        assert SchedulerService.get_job_status("missing") is None


# ═══════════════════════════════════════════════════════════════════════════
#  Advisory locks
# ═══════════════════════════════════════════════════════════════════════════


class TestLocks:

    def test_exclusive(self, now):
        assert acquire_lock("batch", "a", 60, now=now)
        assert not acquire_lock("batch", "b", 60, now=now)

    def test_expired_lock_taken_over(self, now):
        acquire_lock("batch", "a", 60, now=now)
        assert acquire_lock("batch", "b", 60, now=now + timedelta(minutes=2))

    def test_only_holder_releases(self, now):
        acquire_lock("batch", "a", 60, now=now)
        release_lock("batch", "b")
        assert not acquire_lock("batch", "b", 60, now=now)
        release_lock("batch", "a")
        assert acquire_lock("batch", "b", 60, now=now)

    def test_renewed_lock_outlives_its_ttl(self, now):
        assert acquire_lock("assignment-batch", "A", 600, now=now)
        assert renew_lock("assignment-batch", "A", 600, now=now + timedelta(minutes=9))
        assert not acquire_lock("assignment-batch", "B", 600, now=now + timedelta(minutes=11))

    def test_only_holder_renews(self, now):
        acquire_lock("batch", "a", 60, now=now)
        assert not renew_lock("batch", "b", 600, now=now)
        assert acquire_lock("batch", "b", 60, now=now + timedelta(minutes=2))

    def test_takeover_requires_expiry_at_write_time(self, now):
        acquire_lock("batch", "a", 60, now=now)
        # A holder that read the row as expired loses once "a" has renewed it
        renew_lock("batch", "a", 600, now=now + timedelta(minutes=2))
        assert not scheduler_service._take_over_expired(
            "batch", "b", now + timedelta(minutes=2), now + timedelta(minutes=3),
        )
        lock = db.session.execute(db.select(JobLock).filter_by(name="batch")).scalar_one()
        assert lock.holder == "a"


# ═══════════════════════════════════════════════════════════════════════════
#  Optimization report
# ═══════════════════════════════════════════════════════════════════════════


class TestOptimizationReport:

    def test_performer_score(self):
        assert performer_score(1.0, 0.0) == 1.0
        assert performer_score(0.5, 9.0) == 0.38
        assert performer_score(0.0, None) == 0.3

    def test_empty_database(self, now):
        report = generate_optimization_report(now=now)
        assert report["top_performers"] == []
        assert report["overloaded_users"] == []
        assert report["unassigned_bottlenecks"] == []
        assert report["decisions"] == 0
        assert report["average_confidence"] is None
        assert report["predictor"]["strategy"] == "heuristic"

    def test_top_performers_from_history(self, now, make_org, make_user, make_item,
                                         make_assignment):
        org = make_org()
        fast = make_user("analyst", org)
        slow = make_user("analyst", org)
        for user, hours in ((fast, 1), (slow, 20)):
            make_assignment(make_item(org=org, status="completed"), user, status="Completed",
                            assigned_at=now - timedelta(days=2), hours=hours)

        performers = generate_optimization_report(now=now)["top_performers"]
        assert [p["user_id"] for p in performers] == [fast.id, slow.id]

    def test_overloaded_users(self, app, now, make_org, make_user, make_item, make_assignment):
        org = make_org()
        busy = make_user("analyst", org)
        for _ in range(3):
            make_assignment(make_item(org=org, status="in_progress"), busy, status="In Progress")

        with patch.dict(app.config, {"OVERLOAD_THRESHOLD": 2}):
            report = generate_optimization_report(now=now)

        assert report["overloaded_users"][0]["user_id"] == busy.id
        assert report["overloaded_users"][0]["active_items"] == 3
        assert any("rebalance" in r for r in report["recommendations"])

    def test_bottlenecks_and_confidence(self, now, make_org, make_user, make_item):
        org = make_org()
        make_user("analyst", org)
        make_item(org=org)
        stuck = make_item(org=org, required_roles=["auditor"], title="Needs an auditor")
        optimize_scheduling(now=now)

        report = generate_optimization_report(now=now + timedelta(minutes=1))
        assert [b["work_item_id"] for b in report["unassigned_bottlenecks"]] == [stuck.id]
        assert report["decisions"] == 1
        assert 0.1 <= report["average_confidence"] <= 1.0

    def test_persisted(self, now):
        assert latest_report() is None
        generate_optimization_report(now=now, persist=True)

        assert OptimizationReport.query.count() == 1
        stored = latest_report()
        assert stored["report_date"] == now.date().isoformat()
        assert "top_performers" in stored
