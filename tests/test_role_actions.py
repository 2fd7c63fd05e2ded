"""
Tests: role-action policy seeding and lookup.
"""

from unittest.mock import patch

from assignment_engine.models import db
from assignment_engine.models.role_action import RoleAction
from assignment_engine.services.role_action_service import (
    DEFAULT_ROLE_ACTIONS,
    get_role_actions,
    seed_default_role_actions,
)


def _seed():
    created = seed_default_role_actions()
    db.session.commit()
    return created


class TestSeed:

    def test_seeds_defaults(self):
        assert _seed() == len(DEFAULT_ROLE_ACTIONS) == 11
        assert RoleAction.query.count() == 11

    def test_idempotent(self):
        _seed()
        assert _seed() == 0
        assert RoleAction.query.count() == 11


class TestGetRoleActions:

    def test_unknown_role(self):
        _seed()
        assert get_role_actions("janitor") == []

    def test_critical_first(self):
        _seed()
        actions = get_role_actions("dga_admin")
        assert [a["priority"] for a in actions] == ["Critical", "High"]
        assert actions[0]["action_type"] == "task_assignment"

    def test_sector_agnostic_without_sector(self):
        _seed()
        names = [a["action_name"] for a in get_role_actions("program_director")]
        assert names == ["Own entity remediation plans", "Assign program tasks"]

    def test_sector_rows_included_for_matching_sector(self):
        _seed()
        names = [a["action_name"] for a in get_role_actions("program_director", sector="Health")]
        assert names == [
            "Own entity remediation plans",
            "Assign health-sector tasks",
            "Assign program tasks",
        ]
        assert "Assign technology-sector tasks" not in names

    def test_region_filter(self):
        _seed()
        assert len(get_role_actions("regional_manager")) == 1
        central = get_role_actions("regional_manager", region="Central")
        assert [a["priority"] for a in central] == ["High", "Medium"]
        assert len(get_role_actions("regional_manager", region="Eastern")) == 1

    def test_inactive_rows_hidden(self):
        _seed()
        for row in RoleAction.query.filter_by(user_role="financial_controller"):
            row.is_active = False
        db.session.commit()
        assert get_role_actions("financial_controller") == []

    def test_lookup_failure_returns_empty(self):
        with patch.object(db.session, "execute", side_effect=RuntimeError("db down")):
            assert get_role_actions("dga_admin") == []
