"""
Compliance Assignment Engine
Work item model.

Models:
    - WorkItem: a compliance Plan or Task that needs responsible persons

A WorkItem is created by an external collaborator, picked up once by the
optimizer or the rule engine for its initial assignment, then mutated by
status updates until it reaches a terminal status.
"""

from datetime import datetime, timezone

from assignment_engine.models import db


# ── Constants ────────────────────────────────────────────────────────────────

ITEM_TYPES = {"plan", "task"}
TERMINAL_ITEM_STATUSES = {"completed", "cancelled"}
PRIORITIES = ("critical", "high", "medium", "low")

# Lower rank is more urgent
PRIORITY_RANK = {"critical": 1, "high": 2, "medium": 3, "low": 4}


class WorkItem(db.Model):
    """
    Plan or Task awaiting (or holding) an assignment.

    Plans carry ``sla_target_days`` and an optional framework reference;
    tasks carry ``sla_target_hours``, a parent plan and required roles.
    """

    __tablename__ = "work_items"

    id = db.Column(db.Integer, primary_key=True)
    item_type = db.Column(db.String(10), nullable=False, index=True, comment="plan or task")
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, default="")
    category = db.Column(db.String(50), default="", index=True,
                         comment="Workflow type: evidence_review, compliance_review, ...")
    priority = db.Column(db.String(20), default="medium", comment="critical, high, medium, low")
    status = db.Column(db.String(20), default="pending", index=True,
                       comment="pending, assigned, in_progress, completed, cancelled")

    organization_id = db.Column(
        db.Integer, db.ForeignKey("organizations.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    parent_plan_id = db.Column(
        db.Integer, db.ForeignKey("work_items.id", ondelete="SET NULL"), nullable=True, index=True,
        comment="Owning plan (tasks only)",
    )
    framework_ref = db.Column(db.String(100), nullable=True,
                              comment="Regulatory framework reference (plans only)")
    required_roles = db.Column(db.JSON, default=list,
                               comment="Roles that must be represented among the assignees")

    due_at = db.Column(db.DateTime(timezone=True), nullable=True)
    sla_target_days = db.Column(db.Integer, nullable=True, comment="Plan SLA override")
    sla_target_hours = db.Column(db.Integer, nullable=True, comment="Task SLA override")

    # Lifecycle timestamps
    assigned_at = db.Column(db.DateTime(timezone=True), nullable=True)
    accepted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Written by the engine
    estimated_hours = db.Column(db.Float, nullable=True)
    assignment_confidence = db.Column(db.Float, nullable=True)
    assignment_reasoning = db.Column(db.Text, nullable=True)
    responsible_persons = db.Column(db.JSON, default=list,
                                    comment="Snapshot of selected responsible persons")
    auto_assignment_rules = db.Column(db.JSON, nullable=True,
                                      comment="Rule trace of the last auto-assignment")
    last_auto_assignment_at = db.Column(db.DateTime(timezone=True), nullable=True)
    sla_start_time = db.Column(db.DateTime(timezone=True), nullable=True)
    sla_target_time = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    organization = db.relationship("Organization")
    parent_plan = db.relationship("WorkItem", remote_side=[id])
    assignments = db.relationship("Assignment", back_populates="work_item", lazy="dynamic")

    @property
    def is_terminal(self):
        return self.status in TERMINAL_ITEM_STATUSES

    def to_dict(self):
        return {
            "id": self.id,
            "item_type": self.item_type,
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "priority": self.priority,
            "status": self.status,
            "organization_id": self.organization_id,
            "parent_plan_id": self.parent_plan_id,
            "framework_ref": self.framework_ref,
            "required_roles": self.required_roles or [],
            "due_at": self.due_at.isoformat() if self.due_at else None,
            "sla_target_days": self.sla_target_days,
            "sla_target_hours": self.sla_target_hours,
            "assigned_at": self.assigned_at.isoformat() if self.assigned_at else None,
            "accepted_at": self.accepted_at.isoformat() if self.accepted_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "estimated_hours": self.estimated_hours,
            "assignment_confidence": self.assignment_confidence,
            "assignment_reasoning": self.assignment_reasoning,
            "responsible_persons": self.responsible_persons or [],
            "auto_assignment_rules": self.auto_assignment_rules,
            "last_auto_assignment_at": (
                self.last_auto_assignment_at.isoformat() if self.last_auto_assignment_at else None
            ),
            "sla_start_time": self.sla_start_time.isoformat() if self.sla_start_time else None,
            "sla_target_time": self.sla_target_time.isoformat() if self.sla_target_time else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<WorkItem {self.item_type}:{self.id} [{self.status}]>"
