"""
Compliance Assignment Engine
Role action policy model.

Models:
    - RoleAction: which actions a role is expected to perform, optionally
      narrowed to one sector and/or region
"""

from datetime import datetime, timezone

from assignment_engine.models import db


# ── Constants ────────────────────────────────────────────────────────────────

# Lower rank sorts first
ROLE_ACTION_PRIORITY_RANK = {"Critical": 1, "High": 2, "Medium": 3, "Low": 4}


class RoleAction(db.Model):
    """
    Policy row describing an action a role owns.

    ``entity_sector`` / ``entity_region`` of NULL mean "applies to every
    sector / region".
    """

    __tablename__ = "role_actions"

    id = db.Column(db.Integer, primary_key=True)
    action_type = db.Column(db.String(50), nullable=False,
                            comment="plan_approval, task_assignment, evidence_review, ...")
    action_name = db.Column(db.String(200), nullable=False)
    action_description = db.Column(db.Text, default="")
    user_role = db.Column(db.String(50), nullable=False, index=True)
    entity_sector = db.Column(db.String(100), nullable=True)
    entity_region = db.Column(db.String(100), nullable=True)
    priority = db.Column(db.String(20), default="Medium", comment="Critical, High, Medium, Low")
    is_mandatory = db.Column(db.Boolean, default=False)
    requires_approval = db.Column(db.Boolean, default=False)
    auto_assign_threshold = db.Column(db.Integer, nullable=True,
                                      comment="Workload above which auto-assignment skips this role")
    assignment_rules = db.Column(db.JSON, default=dict)
    is_active = db.Column(db.Boolean, default=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "action_type": self.action_type,
            "action_name": self.action_name,
            "action_description": self.action_description,
            "user_role": self.user_role,
            "entity_sector": self.entity_sector,
            "entity_region": self.entity_region,
            "priority": self.priority,
            "is_mandatory": self.is_mandatory,
            "requires_approval": self.requires_approval,
            "auto_assign_threshold": self.auto_assign_threshold,
            "assignment_rules": self.assignment_rules or {},
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<RoleAction {self.user_role}:{self.action_type} [{self.priority}]>"
