"""
Tests: HTTP API (work items, assignments, rule engine, SLA, scheduler,
notifications, health).

Covers request validation (400), missing resources (404), business rule
violations (422) and the optimizer lock conflict (409) on top of the happy
paths.
"""

from datetime import timedelta

from assignment_engine.models import db
from assignment_engine.services.assignment_optimizer import BATCH_LOCK_NAME
from assignment_engine.services.notification import NotificationService
from assignment_engine.services.role_action_service import seed_default_role_actions
from assignment_engine.services.scheduler_service import SchedulerService, acquire_lock


def _create_item(client, **kw):
    payload = {"item_type": "task", "title": "Review access logs", "category": "evidence_review"}
    payload.update(kw)
    res = client.post("/api/v1/work-items", json=payload)
    assert res.status_code == 201, res.get_json()
    return res.get_json()


def _assigned_task(client, make_org, make_user):
    org = make_org()
    auditor = make_user("auditor", org)
    body = _create_item(client, organization_id=org.id, required_roles=["auditor"], auto_assign=True)
    return body, auditor


# ═══════════════════════════════════════════════════════════════════════════
#  Health
# ═══════════════════════════════════════════════════════════════════════════


class TestHealth:

    def test_basic(self, client):
        assert client.get("/api/v1/health").get_json()["status"] == "ok"

    def test_ready(self, client):
        res = client.get("/api/v1/health/ready")
        assert res.status_code == 200

    def test_live(self, client):
        res = client.get("/api/v1/health/live")
        assert res.status_code == 200
        checks = res.get_json()["checks"]
        assert checks["database"]["status"] == "ok"
        assert checks["engine"]["status"] == "not_built"
        assert checks["scheduler"] == {"status": "ok", "failed_jobs": 0, "paused_jobs": 0}

    def test_live_reports_paused_jobs(self, client):
        SchedulerService.ensure_jobs_registered()
        SchedulerService.toggle_job("engine_rebuild", False)
        checks = client.get("/api/v1/health/live").get_json()["checks"]
        assert checks["scheduler"]["paused_jobs"] == 1

    def test_request_id_echoed(self, client):
        res = client.get("/api/v1/scheduler/jobs", headers={"X-Request-ID": "trace-42"})
        assert res.headers["X-Request-ID"] == "trace-42"
        assert float(res.headers["X-Response-Time-Ms"]) >= 0

    def test_unknown_route(self, client):
        res = client.get("/api/v1/nope")
        assert res.status_code == 404
        assert res.get_json()["path"] == "/api/v1/nope"


# ═══════════════════════════════════════════════════════════════════════════
#  Work items
# ═══════════════════════════════════════════════════════════════════════════


class TestWorkItemApi:

    def test_create(self, client):
        body = _create_item(client, priority="high", sla_target_hours=4)
        item = body["work_item"]
        assert item["status"] == "pending"
        assert item["priority"] == "high"
        assert item["sla_target_hours"] == 4
        assert "auto_assignment" not in body

    def test_create_validation(self, client):
        res = client.post("/api/v1/work-items", json={
            "item_type": "epic",
            "priority": "urgent",
            "required_roles": "auditor",
            "due_at": "tomorrow",
            "sla_target_hours": "8",
        })
        assert res.status_code == 400
        details = res.get_json()["details"]
        assert set(details) == {"item_type", "title", "priority", "required_roles", "due_at",
                                "sla_target_hours"}

    def test_title_too_long(self, client):
        res = client.post("/api/v1/work-items", json={"item_type": "task", "title": "x" * 301})
        assert res.status_code == 400

    def test_parent_must_be_plan(self, client):
        task = _create_item(client)["work_item"]
        res = client.post("/api/v1/work-items", json={
            "item_type": "task", "title": "Child", "parent_plan_id": task["id"],
        })
        assert res.status_code == 422

    def test_create_with_auto_assign(self, client, make_org, make_user):
        body, auditor = _assigned_task(client, make_org, make_user)
        assert body["auto_assignment"]["assignees"][0]["user_id"] == auditor.id
        assert body["work_item"]["status"] == "assigned"

    def test_get_and_404(self, client):
        item = _create_item(client)["work_item"]
        assert client.get(f"/api/v1/work-items/{item['id']}").get_json()["title"] == item["title"]
        assert client.get("/api/v1/work-items/999").status_code == 404

    def test_list_assignments(self, client, make_org, make_user):
        body, auditor = _assigned_task(client, make_org, make_user)
        res = client.get(f"/api/v1/work-items/{body['work_item']['id']}/assignments")
        data = res.get_json()
        assert data["total"] == 1
        assert data["assignments"][0]["user_id"] == auditor.id

    def test_complete_then_complete_again(self, client, make_org, make_user):
        body, _ = _assigned_task(client, make_org, make_user)
        item_id = body["work_item"]["id"]

        res = client.post(f"/api/v1/work-items/{item_id}/complete")
        assert res.status_code == 200
        data = res.get_json()
        assert data["work_item"]["status"] == "completed"
        assert data["sla"][0]["status"] == "Completed"

        assert client.post(f"/api/v1/work-items/{item_id}/complete").status_code == 422

    def test_cancel(self, client):
        item = _create_item(client)["work_item"]
        res = client.post(f"/api/v1/work-items/{item['id']}/cancel")
        assert res.get_json()["work_item"]["status"] == "cancelled"

    def test_complete_missing(self, client):
        assert client.post("/api/v1/work-items/999/complete").status_code == 404


# ═══════════════════════════════════════════════════════════════════════════
#  Assignment transitions
# ═══════════════════════════════════════════════════════════════════════════


class TestAssignmentApi:

    def _primary_id(self, body):
        return body["auto_assignment"]["assignments"][0]["id"]

    def test_accept_start_complete(self, client, make_org, make_user):
        body, _ = _assigned_task(client, make_org, make_user)
        aid = self._primary_id(body)

        assert client.post(f"/api/v1/assignments/{aid}/accept").get_json()["status"] == "Accepted"
        assert client.post(f"/api/v1/assignments/{aid}/start").get_json()["status"] == "In Progress"
        assert client.post(f"/api/v1/assignments/{aid}/complete").get_json()["status"] == "Completed"

        item = client.get(f"/api/v1/work-items/{body['work_item']['id']}").get_json()
        assert item["status"] == "completed"

    def test_invalid_transition(self, client, make_org, make_user):
        body, _ = _assigned_task(client, make_org, make_user)
        aid = self._primary_id(body)
        client.post(f"/api/v1/assignments/{aid}/accept")

        res = client.post(f"/api/v1/assignments/{aid}/accept")
        assert res.status_code == 422
        assert res.get_json()["code"] == "ERR_BUSINESS_RULE"

    def test_unknown_action(self, client, make_org, make_user):
        body, _ = _assigned_task(client, make_org, make_user)
        res = client.post(f"/api/v1/assignments/{self._primary_id(body)}/escalate")
        assert res.status_code == 400
        assert "reject" in res.get_json()["details"]["allowed"]

    def test_missing_assignment(self, client):
        assert client.post("/api/v1/assignments/999/accept").status_code == 404

    def test_reject_returns_item_to_queue(self, client, make_org, make_user):
        body, _ = _assigned_task(client, make_org, make_user)
        res = client.post(f"/api/v1/assignments/{self._primary_id(body)}/reject",
                          json={"reason": "On leave"})
        assert res.get_json()["status"] == "Rejected"
        item = client.get(f"/api/v1/work-items/{body['work_item']['id']}").get_json()
        assert item["status"] == "pending"

    def test_transfer(self, client, make_org, make_user):
        body, _ = _assigned_task(client, make_org, make_user)
        other = make_user("auditor")
        res = client.post(f"/api/v1/assignments/{self._primary_id(body)}/transfer",
                          json={"to_user_id": other.id})
        assert res.status_code == 200
        data = res.get_json()
        assert data["from"]["status"] == "Transferred"
        assert data["to"]["user_id"] == other.id
        assert data["to"]["assignment_type"] == "Primary"

    def test_transfer_requires_user(self, client, make_org, make_user):
        body, _ = _assigned_task(client, make_org, make_user)
        res = client.post(f"/api/v1/assignments/{self._primary_id(body)}/transfer",
                          json={"to_user_id": "7"})
        assert res.status_code == 400

    def test_transfer_to_unknown_user(self, client, make_org, make_user):
        body, _ = _assigned_task(client, make_org, make_user)
        res = client.post(f"/api/v1/assignments/{self._primary_id(body)}/transfer",
                          json={"to_user_id": 999})
        assert res.status_code == 404


# ═══════════════════════════════════════════════════════════════════════════
#  Rule engine & role actions
# ═══════════════════════════════════════════════════════════════════════════


class TestRuleEngineApi:

    def test_plan_auto_assign(self, client, make_org, make_user):
        org = make_org()
        director = make_user("program_director", org)
        plan = _create_item(client, item_type="plan", organization_id=org.id)["work_item"]

        res = client.post(f"/api/v1/plans/{plan['id']}/auto-assign", json={"sla_target_days": 14})
        data = res.get_json()
        assert res.status_code == 200
        assert data["responsible_persons"][0]["user_id"] == director.id
        assert data["sla_window"]["value"] == 14

    def test_plan_override_validation(self, client):
        plan = _create_item(client, item_type="plan")["work_item"]
        res = client.post(f"/api/v1/plans/{plan['id']}/auto-assign", json={"sla_target_days": 0})
        assert res.status_code == 400

    def test_unknown_plan(self, client):
        assert client.post("/api/v1/plans/999/auto-assign").status_code == 404

    def test_task_endpoint_rejects_plan_id(self, client):
        plan = _create_item(client, item_type="plan")["work_item"]
        assert client.post(f"/api/v1/tasks/{plan['id']}/auto-assign").status_code == 404

    def test_task_auto_assign_without_candidates(self, client, make_org):
        org = make_org()
        task = _create_item(client, organization_id=org.id, required_roles=["auditor"])["work_item"]
        data = client.post(f"/api/v1/tasks/{task['id']}/auto-assign",
                           json={"sla_target_hours": 6}).get_json()
        assert data["assignees"] == []
        assert data["sla_window"]["value"] == 6
        assert data["sla_record"] is None

    def test_role_actions(self, client):
        seed_default_role_actions()
        db.session.commit()
        res = client.get("/api/v1/role-actions?role=program_director&sector=Health")
        data = res.get_json()
        assert data["role"] == "program_director"
        assert data["total"] == 3

    def test_role_actions_requires_role(self, client):
        assert client.get("/api/v1/role-actions").status_code == 400


# ═══════════════════════════════════════════════════════════════════════════
#  SLA
# ═══════════════════════════════════════════════════════════════════════════


class TestSlaApi:

    def test_list_and_filters(self, client, make_org, make_user):
        _assigned_task(client, make_org, make_user)
        res = client.get("/api/v1/sla", query_string={"status": "On Track", "item_type": "task"})
        data = res.get_json()
        assert data["total"] == 1
        assert client.get("/api/v1/sla?status=Late").status_code == 400
        assert client.get("/api/v1/sla?item_type=epic").status_code == 400

    def test_item_records(self, client, make_org, make_user):
        body, auditor = _assigned_task(client, make_org, make_user)
        item_id = body["work_item"]["id"]
        data = client.get(f"/api/v1/sla/task/{item_id}").get_json()
        assert data["records"][0]["assigned_to_id"] == auditor.id
        assert client.get(f"/api/v1/sla/plan/{item_id}").status_code == 404
        assert client.get(f"/api/v1/sla/epic/{item_id}").status_code == 400

    def test_recompute_item_with_clock(self, client, make_org, make_user, now):
        body, _ = _assigned_task(client, make_org, make_user)
        item_id = body["work_item"]["id"]
        res = client.post(f"/api/v1/sla/task/{item_id}/recompute",
                          json={"now": (now + timedelta(days=1)).isoformat()})
        record = res.get_json()["records"][0]
        assert record["status"] == "Breached"
        assert record["compliance_percentage"] == 0.0

    def test_recompute_all(self, client, make_org, make_user):
        _assigned_task(client, make_org, make_user)
        data = client.post("/api/v1/sla/recompute").get_json()
        assert data["processed"] == 1
        assert data["failed"] == 0

    def test_recompute_bad_clock(self, client):
        res = client.post("/api/v1/sla/recompute", json={"now": "yesterday-ish"})
        assert res.status_code == 400


# ═══════════════════════════════════════════════════════════════════════════
#  Scheduler & engine
# ═══════════════════════════════════════════════════════════════════════════


class TestSchedulerApi:

    def test_list_jobs(self, client):
        data = client.get("/api/v1/scheduler/jobs").get_json()
        assert data["total"] >= 4

    def test_get_job(self, client):
        assert client.get("/api/v1/scheduler/jobs/sla_recompute").status_code == 404
        SchedulerService.ensure_jobs_registered()
        assert client.get("/api/v1/scheduler/jobs/sla_recompute").get_json()["is_enabled"] is True

    def test_trigger(self, client):
        SchedulerService.ensure_jobs_registered()
        res = client.post("/api/v1/scheduler/jobs/sla_recompute/trigger")
        assert res.status_code == 200
        assert res.get_json()["status"] == "success"
        assert client.post("/api/v1/scheduler/jobs/nope/trigger").status_code == 404

    def test_toggle(self, client):
        SchedulerService.ensure_jobs_registered()
        url = "/api/v1/scheduler/jobs/engine_rebuild/toggle"
        assert client.patch(url, json={}).status_code == 400
        assert client.patch(url, json={"enabled": False}).get_json()["status"] == "paused"
        assert client.patch("/api/v1/scheduler/jobs/nope/toggle",
                            json={"enabled": True}).status_code == 404

    def test_optimize(self, client, make_org, make_user):
        org = make_org()
        make_user("analyst", org)
        _create_item(client, organization_id=org.id)
        data = client.post("/api/v1/scheduler/optimize").get_json()
        assert data["status"] == "completed"
        assert len(data["assigned"]) == 1

    def test_optimize_conflict(self, client, now):
        acquire_lock(BATCH_LOCK_NAME, "other-batch", 600, now=now)
        res = client.post("/api/v1/scheduler/optimize")
        assert res.status_code == 409
        body = res.get_json()
        assert body["code"] == "ERR_CONFLICT"
        assert body["error"] == "Another assignment batch is running"
        assert body["details"] == {"lock": BATCH_LOCK_NAME}

    def test_engine_snapshot_and_rebuild(self, client):
        snapshot = client.get("/api/v1/scheduler/engine").get_json()
        assert snapshot["built_at"] is not None
        assert snapshot["predictor"]["strategy"] == "heuristic"
        rebuilt = client.post("/api/v1/scheduler/engine/rebuild").get_json()
        assert rebuilt["history_size"] == 0

    def test_profile(self, client, make_org, make_user, make_item, make_assignment, now):
        org = make_org()
        user = make_user("analyst", org)
        make_assignment(make_item(org=org, status="completed"), user, status="Completed",
                        assigned_at=now - timedelta(days=1), hours=4)

        data = client.get(f"/api/v1/scheduler/engine/profiles/{user.id}").get_json()
        assert data["user_id"] == user.id
        assert data["avg_completion_hours"] == 4.0
        assert client.get("/api/v1/scheduler/engine/profiles/999").status_code == 404

    def test_report(self, client):
        fresh = client.get("/api/v1/scheduler/report").get_json()
        assert "top_performers" in fresh
        client.post("/api/v1/scheduler/jobs/optimization_report/trigger")
        assert client.get("/api/v1/scheduler/report?fresh=1").status_code == 200


# ═══════════════════════════════════════════════════════════════════════════
#  Notifications
# ═══════════════════════════════════════════════════════════════════════════


class TestNotificationApi:

    def test_list_and_mark_read(self, client, make_user):
        user = make_user()
        mine = NotificationService.create(title="SLA at risk", recipient_id=user.id, category="sla")
        NotificationService.create(title="Bottleneck", category="bottleneck")

        data = client.get(f"/api/v1/notifications?recipient_id={user.id}").get_json()
        assert data["total"] == 2

        res = client.patch(f"/api/v1/notifications/{mine.id}/read")
        assert res.get_json()["is_read"] is True
        unread = client.get(f"/api/v1/notifications?recipient_id={user.id}&unread_only=true").get_json()
        assert [n["title"] for n in unread["items"]] == ["Bottleneck"]

    def test_mark_read_missing(self, client):
        assert client.patch("/api/v1/notifications/999/read").status_code == 404
