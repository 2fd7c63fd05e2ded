"""
Public Python API of the assignment engine.

    from assignment_engine.services import auto_assign_plan, update_sla_tracking
"""

from assignment_engine.services.assignment_optimizer import optimize_scheduling
from assignment_engine.services.auto_assignment import auto_assign_plan, auto_assign_task
from assignment_engine.services.role_action_service import get_role_actions
from assignment_engine.services.sla_tracker import (
    cancel_item,
    mark_item_completed,
    recompute_all_sla,
    update_sla_tracking,
)

__all__ = [
    "auto_assign_plan",
    "auto_assign_task",
    "cancel_item",
    "get_role_actions",
    "mark_item_completed",
    "optimize_scheduling",
    "recompute_all_sla",
    "update_sla_tracking",
]
