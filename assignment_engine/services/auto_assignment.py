"""
Auto-Assignment Rule Engine.

Synchronous, rule-based assignment at creation time.

Plans (``auto_assign_plan``):
    - Sector Manager:     one program_director of the owning organization
    - Compliance Auditor: one compliance_auditor of the organization, else of
                          its region (only when the plan has a framework)
    - Regional Manager:   one regional_manager of the organization's region
    Duplicates are dropped; the first person selected is Primary, the others
    Secondary.

Tasks (``auto_assign_task``):
    - The parent plan's Primary is inherited as Primary.
    - Each required role gets the least-loaded of its top three candidates
      (same organization first, then same region). Load = active assignments
      plus two per breached SLA. The first required role's pick becomes
      Primary and an inherited plan Primary is demoted to Secondary.
    - Nobody found at all → the organization's program_director.
    - A role with no candidate is reported as a bottleneck.

Both open the SLA window (plan 30 days / task 8 hours unless overridden),
write the responsible list and rule trace onto the item and commit once.
When nobody can be selected the item stays pending and no Assignment row is
written; the optimizer picks it up on its next batch.
"""

from __future__ import annotations

import logging
from datetime import datetime

from flask import current_app
from sqlalchemy import select

from assignment_engine.models import db
from assignment_engine.models.directory import (
    ROLE_COMPLIANCE_AUDITOR,
    ROLE_PROGRAM_DIRECTOR,
    ROLE_REGIONAL_MANAGER,
    Organization,
    User,
)
from assignment_engine.models.work_item import WorkItem
from assignment_engine.services import sla_tracker
from assignment_engine.services.assignment_service import (
    get_primary_holder,
    get_work_item,
    record_assignment,
)
from assignment_engine.services.scheduling_engine import get_engine
from assignment_engine.services.workload import Candidate, candidates_for_users
from assignment_engine.utils.helpers import utcnow

logger = logging.getLogger(__name__)

TOP_CANDIDATES_PER_ROLE = 3


# ── Candidate lookup ─────────────────────────────────────────────────────────


def _users_with_role(role: str) -> list[User]:
    stmt = (
        select(User)
        .where(User.role == role, User.is_active.is_(True))
        .order_by(User.id)
    )
    return list(db.session.execute(stmt).scalars())


def _same_org(candidate: Candidate, org: Organization | None) -> bool:
    return org is not None and candidate.organization_id == org.id


def _same_region(candidate: Candidate, org: Organization | None) -> bool:
    return org is not None and bool(org.region) and candidate.region == org.region


def _least_loaded(candidates: list[Candidate]) -> Candidate | None:
    if not candidates:
        return None
    return min(candidates, key=lambda c: (c.workload_score, c.user_id))


def ranked_role_candidates(role: str, org: Organization | None,
                           exclude: set[int] | frozenset = frozenset()) -> list[Candidate]:
    """Top candidates for ``role``: same organization first, then region, by load.

    Without an organization every active user with the role qualifies.
    """
    candidates = candidates_for_users(_users_with_role(role), with_breaches=True)
    candidates = [c for c in candidates if c.user_id not in exclude]
    if org is not None:
        candidates = [c for c in candidates if _same_org(c, org) or _same_region(c, org)]

    candidates.sort(key=lambda c: (0 if _same_org(c, org) else 1, c.workload_score, c.user_id))
    return candidates[:TOP_CANDIDATES_PER_ROLE]


# ── Persistence shared by plans and tasks ────────────────────────────────────


def _person(user: User, assignment_type: str, responsibility: str) -> dict:
    return {
        "user_id": user.id,
        "name": user.display_name,
        "role": user.role,
        "assignment_type": assignment_type,
        "responsibility": responsibility,
    }


def _apply(item: WorkItem, chosen: list[tuple[User, str, str]], trace: list[dict],
           bottlenecks: list[dict], override: int | None, now: datetime) -> dict:
    """Write assignments, SLA record and item metadata for ``chosen``; commit once.

    ``chosen`` is a list of (user, assignment_type, responsibility). If the
    item already has a Primary holder outside ``chosen`` (a re-run after a
    manual assignment), everybody chosen is added as Secondary.
    """
    config = current_app.config
    window = sla_tracker.sla_window_for(
        item, now,
        plan_days=config["PLAN_SLA_DAYS"], task_hours=config["TASK_SLA_HOURS"],
        override=override,
    )
    item.auto_assignment_rules = {"rules": trace, "bottlenecks": bottlenecks}
    item.last_auto_assignment_at = now

    if not chosen:
        db.session.commit()
        logger.warning("Rule engine found no assignee",
                       extra={"item_type": item.item_type, "work_item_id": item.id})
        return {"persons": [], "assignments": [], "sla_window": window.to_dict(), "sla_record": None}

    holder = get_primary_holder(item.id)
    chosen_ids = {u.id for u, _, _ in chosen}
    if holder is not None and holder.user_id not in chosen_ids:
        chosen = [(u, "Secondary", resp) for u, _, resp in chosen]
        trace.append({"rule": "existing_primary", "user_id": holder.user_id,
                      "note": "Item already has a Primary; rule picks added as Secondary"})

    engine = get_engine()
    persons = [_person(user, assignment_type, resp) for user, assignment_type, resp in chosen]
    rows = []
    primary_user, primary_estimate = None, None
    # Secondary rows first so a demoted holder releases Primary before the new one is written
    for user, assignment_type, responsibility in sorted(chosen, key=lambda row: row[1] == "Primary"):
        estimate = None
        if assignment_type == "Primary":
            primary_user = user
            estimate = primary_estimate = engine.predictor.predict(
                item, candidates_for_users([user])[0], at=now,
            )
        rows.append(record_assignment(
            item, user, assignment_type,
            is_auto_assigned=True,
            reason={"rule": responsibility},
            estimated_hours=estimate,
            now=now,
        ))

    primary_id = primary_user.id if primary_user else (holder.user_id if holder else None)
    record = sla_tracker.open_sla_record(
        item,
        start_time=window.start_time, target_time=window.target_time,
        target_unit=window.unit, target_value=window.value,
        assigned_to_id=primary_id, responsible_persons=persons, now=now,
        at_risk_threshold=config["AT_RISK_THRESHOLD"],
    )

    item.responsible_persons = persons
    item.sla_start_time = record.start_time
    item.sla_target_time = record.target_time
    if primary_estimate is not None:
        item.estimated_hours = primary_estimate
    if item.status == "pending":
        item.status = "assigned"
        item.assigned_at = now
        item.accepted_at = None
    db.session.commit()

    logger.info("Rule engine assigned %d person(s)", len(persons),
                extra={"item_type": item.item_type, "work_item_id": item.id, "user_id": primary_id})
    return {
        "persons": persons,
        "assignments": [r.to_dict() for r in rows],
        "sla_window": sla_tracker.SLAWindow(
            record.start_time, record.target_time,
            record.sla_target_unit, record.sla_target_value,
        ).to_dict(),
        "sla_record": record.to_dict(),
    }


# ═══════════════════════════════════════════════════════════════════════════
#  Plans
# ═══════════════════════════════════════════════════════════════════════════


def auto_assign_plan(plan_id: int, sla_target_days: int | None = None,
                     now: datetime | None = None) -> dict:
    """Select responsible persons for a plan and open its SLA window.

    Args:
        plan_id: WorkItem id of a plan.
        sla_target_days: Optional window override in days.
        now: Clock override (window start).

    Returns:
        Dict with plan_id, responsible_persons, sla_window, rule_trace,
        bottlenecks, assignments and sla_record (None when nobody was found).

    Raises:
        NotFoundError: the plan does not exist.
    """
    now = now or utcnow()
    plan = get_work_item(plan_id, "plan")
    org = plan.organization
    trace: list[dict] = []
    bottlenecks: list[dict] = []
    chosen: list[tuple[User, str]] = []

    def take(responsibility: str, role: str, candidates: list[Candidate], scope: str):
        pick = _least_loaded([c for c in candidates if c.user_id not in {u.id for u, _ in chosen}])
        trace.append({"rule": responsibility, "role": role, "scope": scope,
                      "candidates": [c.user_id for c in candidates],
                      "selected": pick.user_id if pick else None})
        if pick is None:
            if not candidates:
                bottlenecks.append({"role": role, "reason": f"No {role} found ({scope})"})
            return
        chosen.append((db.session.get(User, pick.user_id), responsibility))

    if org is None:
        trace.append({"rule": "organization", "result": "missing",
                      "note": "Plan has no organization; no rule-based assignees"})
    else:
        users = candidates_for_users(_users_with_role(ROLE_PROGRAM_DIRECTOR))
        take("sector_manager", ROLE_PROGRAM_DIRECTOR,
             [c for c in users if _same_org(c, org)], "organization")

        if plan.framework_ref:
            auditors = candidates_for_users(_users_with_role(ROLE_COMPLIANCE_AUDITOR))
            in_org = [c for c in auditors if _same_org(c, org)]
            if in_org:
                take("compliance_auditor", ROLE_COMPLIANCE_AUDITOR, in_org, "organization")
            else:
                take("compliance_auditor", ROLE_COMPLIANCE_AUDITOR,
                     [c for c in auditors if _same_region(c, org)], "region")
        else:
            trace.append({"rule": "compliance_auditor", "result": "skipped",
                          "note": "Plan has no framework reference"})

        managers = candidates_for_users(_users_with_role(ROLE_REGIONAL_MANAGER))
        take("regional_manager", ROLE_REGIONAL_MANAGER,
             [c for c in managers if _same_region(c, org)], "region")

    typed = [(u, "Primary" if i == 0 else "Secondary", resp) for i, (u, resp) in enumerate(chosen)]
    result = _apply(plan, typed, trace, bottlenecks, sla_target_days, now)
    return {
        "plan_id": plan.id,
        "responsible_persons": result["persons"],
        "sla_window": result["sla_window"],
        "rule_trace": trace,
        "bottlenecks": bottlenecks,
        "assignments": result["assignments"],
        "sla_record": result["sla_record"],
    }


# ═══════════════════════════════════════════════════════════════════════════
#  Tasks
# ═══════════════════════════════════════════════════════════════════════════


def auto_assign_task(task_id: int, sla_target_hours: int | None = None,
                     now: datetime | None = None) -> dict:
    """Select assignees for a task and open its SLA window.

    Args:
        task_id: WorkItem id of a task.
        sla_target_hours: Optional window override in hours.
        now: Clock override (window start).

    Returns:
        Dict with task_id, assignees, sla_window, rule_trace, bottlenecks,
        assignments and sla_record (None when nobody was found).

    Raises:
        NotFoundError: the task does not exist.
    """
    now = now or utcnow()
    task = get_work_item(task_id, "task")
    parent = task.parent_plan
    org = task.organization or (parent.organization if parent else None)
    trace: list[dict] = []
    bottlenecks: list[dict] = []
    chosen: list[list] = []  # [user, assignment_type, responsibility]

    inherited = get_primary_holder(parent.id) if parent is not None else None
    if inherited is not None and inherited.user.is_active:
        chosen.append([inherited.user, "Primary", "plan_primary"])
        trace.append({"rule": "inherit_plan_primary", "plan_id": parent.id,
                      "user_id": inherited.user_id})
    elif parent is not None:
        trace.append({"rule": "inherit_plan_primary", "plan_id": parent.id, "user_id": None,
                      "note": "Parent plan has no active Primary"})

    first_role_done = False
    for role in task.required_roles or []:
        taken = {row[0].id for row in chosen}
        candidates = ranked_role_candidates(role, org, exclude=taken)
        pick = candidates[0] if candidates else None
        trace.append({
            "rule": "required_role",
            "role": role,
            "candidates": [{"user_id": c.user_id, "workload_score": c.workload_score,
                            "same_organization": _same_org(c, org)} for c in candidates],
            "selected": pick.user_id if pick else None,
        })
        if pick is None:
            bottlenecks.append({"role": role, "reason": f"No qualified {role} available"})
            continue

        user = db.session.get(User, pick.user_id)
        if not first_role_done:
            first_role_done = True
            for row in chosen:
                if row[1] == "Primary":
                    row[1] = "Secondary"
            chosen.append([user, "Primary", f"required_role:{role}"])
        else:
            chosen.append([user, "Secondary", f"required_role:{role}"])

    if not chosen and org is not None:
        directors = [c for c in candidates_for_users(_users_with_role(ROLE_PROGRAM_DIRECTOR))
                     if _same_org(c, org)]
        pick = _least_loaded(directors)
        trace.append({"rule": "fallback_program_director", "organization_id": org.id,
                      "selected": pick.user_id if pick else None})
        if pick is not None:
            chosen.append([db.session.get(User, pick.user_id), "Primary", "fallback_program_director"])
    elif not chosen:
        trace.append({"rule": "fallback_program_director", "selected": None,
                      "note": "Task has no organization"})

    result = _apply(task, [tuple(row) for row in chosen], trace, bottlenecks, sla_target_hours, now)
    return {
        "task_id": task.id,
        "assignees": result["persons"],
        "sla_window": result["sla_window"],
        "rule_trace": trace,
        "bottlenecks": bottlenecks,
        "assignments": result["assignments"],
        "sla_record": result["sla_record"],
    }
