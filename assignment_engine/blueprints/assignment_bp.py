"""
Assignment Blueprint.

Endpoints:
    POST /api/v1/work-items                        create plan/task (optional inline auto-assign)
    GET  /api/v1/work-items/<id>                   work item detail
    GET  /api/v1/work-items/<id>/assignments       assignment rows of an item
    POST /api/v1/work-items/<id>/complete          complete item, close SLA
    POST /api/v1/work-items/<id>/cancel            cancel item, close SLA
    POST /api/v1/plans/<id>/auto-assign            rule engine for a plan
    POST /api/v1/tasks/<id>/auto-assign            rule engine for a task
    POST /api/v1/assignments/<id>/accept|start|complete|reject
    POST /api/v1/assignments/<id>/transfer         hand over to another user
    GET  /api/v1/role-actions?role=&sector=&region=

Layer contract:
    - Input shape validation happens here (400).
    - Business rules and all commits live in the services; their exceptions
      are mapped by register_service_error_handlers.
"""

import logging

from flask import Blueprint, jsonify, request

from assignment_engine.blueprints import positive_int, register_service_error_handlers
from assignment_engine.models.assignment import Assignment
from assignment_engine.models.work_item import ITEM_TYPES, PRIORITIES, WorkItem
from assignment_engine.services import assignment_service, auto_assignment
from assignment_engine.services.role_action_service import get_role_actions
from assignment_engine.utils.errors import E, api_error
from assignment_engine.utils.helpers import get_or_404, parse_datetime

logger = logging.getLogger(__name__)

assignment_bp = Blueprint("assignment_bp", __name__, url_prefix="/api/v1")
register_service_error_handlers(assignment_bp)


# ═══════════════════════════════════════════════════════════════════════════
#  Work items
# ═══════════════════════════════════════════════════════════════════════════


@assignment_bp.route("/work-items", methods=["POST"])
def create_work_item():
    """Create a plan or task.

    Body (JSON):
        item_type (str, required): plan | task
        title (str, required)
        category, priority, organization_id, parent_plan_id, framework_ref,
        required_roles (list[str]), due_at (ISO-8601), sla_target_days,
        sla_target_hours, description (all optional)
        auto_assign (bool, optional): run the rule engine immediately
    """
    data = request.get_json(silent=True) or {}
    errors = {}

    item_type = data.get("item_type")
    if item_type not in ITEM_TYPES:
        errors["item_type"] = f"must be one of {sorted(ITEM_TYPES)}"
    title = (data.get("title") or "").strip()
    if not title:
        errors["title"] = "is required"
    elif len(title) > 300:
        errors["title"] = "must be ≤ 300 characters"
    priority = data.get("priority") or "medium"
    if priority not in PRIORITIES:
        errors["priority"] = f"must be one of {list(PRIORITIES)}"
    required_roles = data.get("required_roles") or []
    if not isinstance(required_roles, list) or not all(isinstance(r, str) for r in required_roles):
        errors["required_roles"] = "must be a list of role names"
    due_at = None
    if data.get("due_at"):
        due_at = parse_datetime(data["due_at"])
        if due_at is None:
            errors["due_at"] = "must be an ISO-8601 datetime"
    sla_days = positive_int(data.get("sla_target_days"), "sla_target_days", errors)
    sla_hours = positive_int(data.get("sla_target_hours"), "sla_target_hours", errors)

    if errors:
        return api_error(E.VALIDATION_INVALID, "Invalid work item", details=errors)

    item = assignment_service.create_work_item({
        "item_type": item_type,
        "title": title,
        "description": data.get("description"),
        "category": data.get("category"),
        "priority": priority,
        "organization_id": data.get("organization_id"),
        "parent_plan_id": data.get("parent_plan_id"),
        "framework_ref": data.get("framework_ref"),
        "required_roles": required_roles,
        "due_at": due_at,
        "sla_target_days": sla_days,
        "sla_target_hours": sla_hours,
    })

    body = {"work_item": item.to_dict()}
    if data.get("auto_assign"):
        if item.item_type == "plan":
            body["auto_assignment"] = auto_assignment.auto_assign_plan(item.id)
        else:
            body["auto_assignment"] = auto_assignment.auto_assign_task(item.id)
        body["work_item"] = item.to_dict()
    return jsonify(body), 201


@assignment_bp.route("/work-items/<int:item_id>", methods=["GET"])
def get_work_item(item_id):
    item, err = get_or_404(WorkItem, item_id, "Work item")
    if err:
        return err
    return jsonify(item.to_dict())


@assignment_bp.route("/work-items/<int:item_id>/assignments", methods=["GET"])
def list_work_item_assignments(item_id):
    _item, err = get_or_404(WorkItem, item_id, "Work item")
    if err:
        return err
    rows = assignment_service.list_assignments(item_id)
    return jsonify({"assignments": rows, "total": len(rows)})


@assignment_bp.route("/work-items/<int:item_id>/complete", methods=["POST"])
def complete_work_item(item_id):
    return jsonify(assignment_service.complete_work_item(item_id))


@assignment_bp.route("/work-items/<int:item_id>/cancel", methods=["POST"])
def cancel_work_item(item_id):
    return jsonify(assignment_service.cancel_work_item(item_id))


# ═══════════════════════════════════════════════════════════════════════════
#  Rule engine
# ═══════════════════════════════════════════════════════════════════════════


@assignment_bp.route("/plans/<int:plan_id>/auto-assign", methods=["POST"])
def auto_assign_plan(plan_id):
    """Run the plan rules. Body (optional): {"sla_target_days": int}."""
    data = request.get_json(silent=True) or {}
    errors = {}
    days = positive_int(data.get("sla_target_days"), "sla_target_days", errors)
    if errors:
        return api_error(E.VALIDATION_INVALID, "Invalid SLA override", details=errors)
    return jsonify(auto_assignment.auto_assign_plan(plan_id, sla_target_days=days))


@assignment_bp.route("/tasks/<int:task_id>/auto-assign", methods=["POST"])
def auto_assign_task(task_id):
    """Run the task rules. Body (optional): {"sla_target_hours": int}."""
    data = request.get_json(silent=True) or {}
    errors = {}
    hours = positive_int(data.get("sla_target_hours"), "sla_target_hours", errors)
    if errors:
        return api_error(E.VALIDATION_INVALID, "Invalid SLA override", details=errors)
    return jsonify(auto_assignment.auto_assign_task(task_id, sla_target_hours=hours))


# ═══════════════════════════════════════════════════════════════════════════
#  Assignment transitions
# ═══════════════════════════════════════════════════════════════════════════

_TRANSITIONS = {
    "accept": assignment_service.accept_assignment,
    "start": assignment_service.start_assignment,
    "complete": assignment_service.complete_assignment,
}


@assignment_bp.route("/assignments/<int:assignment_id>/<action>", methods=["POST"])
def transition_assignment(assignment_id, action):
    """Apply accept / start / complete / reject to an assignment."""
    _row, err = get_or_404(Assignment, assignment_id)
    if err:
        return err
    if action == "reject":
        data = request.get_json(silent=True) or {}
        return jsonify(assignment_service.reject_assignment(assignment_id, reason=data.get("reason")))
    handler = _TRANSITIONS.get(action)
    if handler is None:
        return api_error(E.VALIDATION_INVALID, f"Unknown action '{action}'",
                         details={"allowed": sorted([*_TRANSITIONS, "reject"])})
    return jsonify(handler(assignment_id))


@assignment_bp.route("/assignments/<int:assignment_id>/transfer", methods=["POST"])
def transfer_assignment(assignment_id):
    """Body: {"to_user_id": int}."""
    data = request.get_json(silent=True) or {}
    to_user_id = data.get("to_user_id")
    if not isinstance(to_user_id, int) or isinstance(to_user_id, bool):
        return api_error(E.VALIDATION_REQUIRED, "to_user_id is required")
    return jsonify(assignment_service.transfer_assignment(assignment_id, to_user_id))


# ═══════════════════════════════════════════════════════════════════════════
#  Role actions
# ═══════════════════════════════════════════════════════════════════════════


@assignment_bp.route("/role-actions", methods=["GET"])
def list_role_actions():
    """Query params: role (required), sector, region."""
    role = request.args.get("role", "").strip()
    if not role:
        return api_error(E.VALIDATION_REQUIRED, "role is required")
    actions = get_role_actions(role, request.args.get("sector"), request.args.get("region"))
    return jsonify({"role": role, "actions": actions, "total": len(actions)})
