"""
Role-action policy lookup.

``get_role_actions`` answers "which actions does this role own for an
entity in this sector/region?". A policy row applies when its sector and
region are either NULL (any) or equal to the requested value. Results are
ordered by priority (Critical first) and then id.

Lookup failures degrade to an empty list; callers treat that as "no policy".
"""

from __future__ import annotations

import logging

from sqlalchemy import case, or_, select

from assignment_engine.models import db
from assignment_engine.models.role_action import ROLE_ACTION_PRIORITY_RANK, RoleAction

logger = logging.getLogger(__name__)

_PRIORITY_ORDER = case(
    ROLE_ACTION_PRIORITY_RANK, value=RoleAction.priority, else_=len(ROLE_ACTION_PRIORITY_RANK) + 1,
)

DEFAULT_ROLE_ACTIONS: list[dict] = [
    {"action_type": "plan_approval", "action_name": "Approve remediation plans",
     "action_description": "Final approval of remediation plans across all entities",
     "user_role": "dga_admin", "priority": "High", "is_mandatory": True,
     "requires_approval": False, "assignment_rules": {"scope": "global"}},
    {"action_type": "task_assignment", "action_name": "Assign critical tasks",
     "action_description": "Assign and reassign critical compliance tasks",
     "user_role": "dga_admin", "priority": "Critical", "is_mandatory": True,
     "requires_approval": False, "assignment_rules": {"scope": "global", "priority": ["critical"]}},
    {"action_type": "plan_approval", "action_name": "Approve regional plans",
     "action_description": "Approve remediation plans for entities in the region",
     "user_role": "regional_manager", "entity_region": "Central", "priority": "High",
     "is_mandatory": True, "requires_approval": False, "assignment_rules": {"scope": "region"}},
    {"action_type": "task_assignment", "action_name": "Assign regional tasks",
     "action_description": "Distribute tasks among the region's compliance staff",
     "user_role": "regional_manager", "priority": "Medium", "is_mandatory": False,
     "requires_approval": False, "auto_assign_threshold": 8,
     "assignment_rules": {"scope": "region"}},
    {"action_type": "plan_ownership", "action_name": "Own entity remediation plans",
     "action_description": "Accountable owner of the organization's remediation plans",
     "user_role": "program_director", "priority": "High", "is_mandatory": True,
     "requires_approval": False, "assignment_rules": {"scope": "organization"}},
    {"action_type": "task_assignment", "action_name": "Assign program tasks",
     "action_description": "Assign tasks within the organization's program",
     "user_role": "program_director", "priority": "Medium", "is_mandatory": False,
     "requires_approval": False, "auto_assign_threshold": 10,
     "assignment_rules": {"scope": "organization"}},
    {"action_type": "evidence_review", "action_name": "Review compliance evidence",
     "action_description": "Review and validate uploaded compliance evidence",
     "user_role": "compliance_auditor", "priority": "High", "is_mandatory": True,
     "requires_approval": False, "assignment_rules": {"requires_framework": True}},
    {"action_type": "assessment_review", "action_name": "Review assessments",
     "action_description": "Review maturity assessments before approval",
     "user_role": "compliance_auditor", "priority": "High", "is_mandatory": True,
     "requires_approval": False, "assignment_rules": {"requires_framework": True}},
    {"action_type": "budget_approval", "action_name": "Approve remediation budgets",
     "action_description": "Approve budgets attached to remediation plans",
     "user_role": "financial_controller", "priority": "High", "is_mandatory": True,
     "requires_approval": True, "assignment_rules": {"scope": "organization"}},
    {"action_type": "task_assignment", "action_name": "Assign health-sector tasks",
     "action_description": "Sector-specific task assignment for health entities",
     "user_role": "program_director", "entity_sector": "Health", "priority": "High",
     "is_mandatory": False, "requires_approval": False,
     "assignment_rules": {"scope": "sector", "sector": "Health"}},
    {"action_type": "task_assignment", "action_name": "Assign technology-sector tasks",
     "action_description": "Sector-specific task assignment for technology entities",
     "user_role": "program_director", "entity_sector": "Technology", "priority": "High",
     "is_mandatory": False, "requires_approval": False,
     "assignment_rules": {"scope": "sector", "sector": "Technology"}},
]


def get_role_actions(role: str, sector: str | None = None, region: str | None = None) -> list[dict]:
    """Return the active policy rows that apply to ``role`` in this sector/region.

    Args:
        role: User role, e.g. "program_director".
        sector: Entity sector; rows pinned to another sector are excluded.
            When omitted only sector-agnostic rows match.
        region: Entity region; same rule as ``sector``.

    Returns:
        List of role-action dicts ordered Critical → Low, then by id.
        Empty list when nothing applies or the lookup fails.
    """
    try:
        sector_match = RoleAction.entity_sector.is_(None)
        if sector:
            sector_match = or_(sector_match, RoleAction.entity_sector == sector)
        region_match = RoleAction.entity_region.is_(None)
        if region:
            region_match = or_(region_match, RoleAction.entity_region == region)

        stmt = (
            select(RoleAction)
            .where(
                RoleAction.user_role == role,
                RoleAction.is_active.is_(True),
                sector_match,
                region_match,
            )
            .order_by(_PRIORITY_ORDER, RoleAction.id)
        )
        return [r.to_dict() for r in db.session.execute(stmt).scalars()]
    except Exception:
        db.session.rollback()
        logger.warning("Role action lookup failed for role=%s", role, exc_info=True)
        return []


def seed_default_role_actions() -> int:
    """Insert the default policies that are not present yet.

    Identity is (user_role, action_type, entity_sector, entity_region). Does
    not commit.

    Returns:
        Number of rows created.
    """
    created = 0
    for spec in DEFAULT_ROLE_ACTIONS:
        exists = db.session.execute(
            select(RoleAction.id).where(
                RoleAction.user_role == spec["user_role"],
                RoleAction.action_type == spec["action_type"],
                RoleAction.entity_sector.is_(None) if spec.get("entity_sector") is None
                else RoleAction.entity_sector == spec["entity_sector"],
                RoleAction.entity_region.is_(None) if spec.get("entity_region") is None
                else RoleAction.entity_region == spec["entity_region"],
            )
        ).first()
        if exists:
            continue
        db.session.add(RoleAction(is_active=True, **spec))
        created += 1
    return created
