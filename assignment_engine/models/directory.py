"""
Compliance Assignment Engine
Organization directory models.

Models:
    - Organization: entity that owns plans and tasks (sector + region)
    - User: person that can hold assignments

The directory is owned by an external collaborator; the engine only reads it.
The tables live here so the engine can run standalone and in tests.
"""

from datetime import datetime, timezone

from assignment_engine.models import db


# ── Constants ────────────────────────────────────────────────────────────────

# Roles the rule engine looks up by name
ROLE_PROGRAM_DIRECTOR = "program_director"
ROLE_REGIONAL_MANAGER = "regional_manager"
ROLE_COMPLIANCE_AUDITOR = "compliance_auditor"


class Organization(db.Model):
    """Regulated entity. Plans and tasks belong to one organization."""

    __tablename__ = "organizations"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    sector = db.Column(db.String(100), nullable=True, comment="Health, Technology, Finance, ...")
    region = db.Column(db.String(100), nullable=True, index=True)
    is_active = db.Column(db.Boolean, default=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    users = db.relationship("User", back_populates="organization", lazy="dynamic")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "sector": self.sector,
            "region": self.region,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<Organization {self.id}: {self.name}>"


class User(db.Model):
    """
    Directory user.

    ``role`` is a free-form string; the rule engine and optimizer match on
    well-known values (program_director, regional_manager, compliance_auditor,
    manager, analyst, auditor, compliance_officer).
    """

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(150), unique=True, nullable=False)
    full_name = db.Column(db.String(200), default="")
    email = db.Column(db.String(255), nullable=True)
    role = db.Column(db.String(50), nullable=False, index=True)
    organization_id = db.Column(
        db.Integer, db.ForeignKey("organizations.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    region = db.Column(db.String(100), nullable=True, comment="Defaults to the organization's region")
    experience_level = db.Column(db.String(20), default="mid",
                                 comment="junior, mid, senior, expert")
    is_active = db.Column(db.Boolean, default=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    organization = db.relationship("Organization", back_populates="users")

    @property
    def display_name(self):
        return self.full_name or self.username

    def to_dict(self):
        return {
            "id": self.id,
            "username": self.username,
            "full_name": self.full_name,
            "email": self.email,
            "role": self.role,
            "organization_id": self.organization_id,
            "region": self.region,
            "experience_level": self.experience_level,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<User {self.id}: {self.username} ({self.role})>"
