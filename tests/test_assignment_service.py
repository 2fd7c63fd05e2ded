"""
Tests: assignment records and lifecycle.

Covers:
    1. Work item creation and lookup
    2. record_assignment and the single-Primary invariant
    3. Assignment transitions (accept / start / complete / reject / transfer)
    4. Work item completion and cancellation side effects
"""

from datetime import datetime, timedelta, timezone

import pytest

from assignment_engine.core.exceptions import NotFoundError, ValidationError
from assignment_engine.models import db
from assignment_engine.models.assignment import Assignment
from assignment_engine.services import assignment_service as svc
from assignment_engine.services.sla_tracker import get_item_sla, get_open_record, open_sla_record

NOW = datetime(2026, 5, 4, 9, 0, tzinfo=timezone.utc)


def _assign(item, user, assignment_type="Primary"):
    row = svc.record_assignment(item, user, assignment_type, now=NOW)
    item.status = "assigned"
    item.assigned_at = NOW
    db.session.commit()
    return row


def _with_sla(item, user):
    open_sla_record(item, start_time=NOW, target_time=NOW + timedelta(hours=8),
                    target_unit="hours", target_value=8, assigned_to_id=user.id, now=NOW)
    db.session.commit()


# ═══════════════════════════════════════════════════════════════════════════
#  Work items
# ═══════════════════════════════════════════════════════════════════════════

class TestWorkItems:

    def test_create_task(self, make_org):
        org = make_org()
        item = svc.create_work_item({
            "item_type": "task", "title": "Collect evidence", "organization_id": org.id,
            "required_roles": ["auditor"], "priority": "high",
        })
        assert item.id is not None
        assert item.status == "pending"
        assert item.required_roles == ["auditor"]

    def test_create_rejects_unknown_priority(self):
        with pytest.raises(ValidationError):
            svc.create_work_item({"item_type": "task", "title": "x", "priority": "urgent"})

    def test_parent_must_be_plan(self, make_item):
        task = make_item()
        with pytest.raises(ValidationError):
            svc.create_work_item({"item_type": "task", "title": "x", "parent_plan_id": task.id})

    def test_get_work_item_type_mismatch(self, make_item):
        task = make_item()
        assert svc.get_work_item(task.id).id == task.id
        with pytest.raises(NotFoundError):
            svc.get_work_item(task.id, "plan")


# ═══════════════════════════════════════════════════════════════════════════
#  Primary invariant
# ═══════════════════════════════════════════════════════════════════════════

class TestRecordAssignment:

    def test_second_primary_rejected(self, make_item, make_user):
        item = make_item()
        first, second = make_user(), make_user()
        _assign(item, first)
        with pytest.raises(ValidationError):
            svc.record_assignment(item, second, "Primary", now=NOW)

    def test_secondary_alongside_primary(self, make_item, make_user):
        item = make_item()
        _assign(item, make_user())
        _assign(item, make_user(), "Secondary")
        assert [a["assignment_type"] for a in svc.list_assignments(item.id)] == ["Primary", "Secondary"]

    def test_same_user_reuses_row(self, make_item, make_user):
        item = make_item()
        user = make_user()
        first = _assign(item, user, "Secondary")
        second = _assign(item, user, "Primary")
        assert first.id == second.id
        assert Assignment.query.filter_by(work_item_id=item.id).count() == 1
        assert second.assignment_type == "Primary"

    def test_released_primary_frees_slot(self, make_item, make_user):
        item = make_item()
        first, second = make_user(), make_user()
        row = _assign(item, first)
        svc.reject_assignment(row.id, reason="on leave")
        _assign(item, second)
        assert svc.get_primary_holder(item.id).user_id == second.id

    def test_invalid_type(self, make_item, make_user):
        with pytest.raises(ValidationError):
            svc.record_assignment(make_item(), make_user(), "Owner")


# ═══════════════════════════════════════════════════════════════════════════
#  Transitions
# ═══════════════════════════════════════════════════════════════════════════

class TestTransitions:

    def test_accept_start_complete_primary(self, make_item, make_user):
        item = make_item()
        user = make_user()
        row = _assign(item, user)
        _with_sla(item, user)

        assert svc.accept_assignment(row.id, now=NOW)["status"] == "Accepted"
        assert item.accepted_at is not None
        assert svc.start_assignment(row.id, now=NOW)["status"] == "In Progress"
        assert item.status == "in_progress"

        done = svc.complete_assignment(row.id, now=NOW + timedelta(hours=2))
        assert done["status"] == "Completed"
        assert item.status == "completed"
        assert get_item_sla("task", item.id)[0]["status"] == "Completed"

    def test_invalid_transition(self, make_item, make_user):
        row = _assign(make_item(), make_user())
        with pytest.raises(ValidationError):
            svc.complete_assignment(row.id)

    def test_unknown_assignment(self):
        with pytest.raises(NotFoundError):
            svc.accept_assignment(999)

    def test_completing_secondary_leaves_item_open(self, make_item, make_user):
        item = make_item()
        _assign(item, make_user())
        helper = _assign(item, make_user(), "Secondary")
        svc.accept_assignment(helper.id)
        svc.start_assignment(helper.id)
        svc.complete_assignment(helper.id)
        assert item.status == "assigned"

    def test_reject_primary_returns_item_to_queue(self, make_item, make_user):
        item = make_item()
        row = _assign(item, make_user())
        result = svc.reject_assignment(row.id, reason="conflict of interest")
        assert result["status"] == "Rejected"
        assert result["assignment_reason"]["rejection"] == "conflict of interest"
        assert item.status == "pending"
        assert item.assigned_at is None

    def test_transfer_primary_moves_sla_owner(self, make_item, make_user):
        item = make_item()
        old, new = make_user(), make_user()
        row = _assign(item, old)
        _with_sla(item, old)

        result = svc.transfer_assignment(row.id, new.id, now=NOW)
        assert result["from"]["status"] == "Transferred"
        assert result["to"]["user_id"] == new.id
        assert result["to"]["assignment_type"] == "Primary"
        assert svc.get_primary_holder(item.id).user_id == new.id
        assert get_open_record("task", item.id).assigned_to_id == new.id

    def test_transfer_to_self_rejected(self, make_item, make_user):
        user = make_user()
        row = _assign(make_item(), user)
        with pytest.raises(ValidationError):
            svc.transfer_assignment(row.id, user.id)

    def test_transfer_to_unknown_user(self, make_item, make_user):
        row = _assign(make_item(), make_user())
        with pytest.raises(NotFoundError):
            svc.transfer_assignment(row.id, 999)


class TestItemTerminalTransitions:

    def test_complete_work_item_closes_everything(self, make_item, make_user):
        item = make_item()
        user = make_user()
        row = _assign(item, user)
        _with_sla(item, user)

        result = svc.complete_work_item(item.id, now=NOW + timedelta(hours=1))
        assert result["work_item"]["status"] == "completed"
        assert result["sla"][0]["compliance_percentage"] == 100.0
        assert db.session.get(Assignment, row.id).status == "Completed"

    def test_cancel_keeps_assignments(self, make_item, make_user):
        item = make_item()
        user = make_user()
        row = _assign(item, user)
        _with_sla(item, user)

        result = svc.cancel_work_item(item.id, now=NOW)
        assert result["sla"][0]["status"] == "Cancelled"
        assert db.session.get(Assignment, row.id).status == "Assigned"

    def test_terminal_item_cannot_be_completed_again(self, make_item):
        item = make_item(status="completed")
        with pytest.raises(ValidationError):
            svc.complete_work_item(item.id)

    def test_transitions_blocked_on_cancelled_item(self, make_item, make_user):
        item = make_item()
        row = _assign(item, make_user())
        svc.cancel_work_item(item.id)
        with pytest.raises(ValidationError):
            svc.accept_assignment(row.id)
