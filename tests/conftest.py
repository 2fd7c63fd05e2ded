"""
Shared pytest fixtures for the Compliance Assignment Engine test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate, fresh engine (autouse)
    - client: Flask test client (function-scoped)
    - now: fixed UTC clock for the test
    - make_org / make_user / make_item / make_assignment: row factories
"""

from datetime import timedelta

import pytest

from assignment_engine import create_app
from assignment_engine.models import db as _db
from assignment_engine.services.scheduling_engine import EXTENSION_KEY
from assignment_engine.utils.helpers import utcnow


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables.

    The scheduling engine caches profiles built from the database, so every
    test starts with an unbuilt engine.
    """
    with app.app_context():
        app.extensions.pop(EXTENSION_KEY, None)
        yield
        app.extensions.pop(EXTENSION_KEY, None)
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture()
def now():
    """Wall-clock anchored instant, so history windows still include test rows."""
    return utcnow().replace(microsecond=0)


# ── Row factories ────────────────────────────────────────────────────────


@pytest.fixture()
def make_org():
    from assignment_engine.models.directory import Organization

    def _make(name="Ministry of Health", sector="Health", region="Central"):
        org = Organization(name=name, sector=sector, region=region)
        _db.session.add(org)
        _db.session.commit()
        return org

    return _make


@pytest.fixture()
def make_user():
    from assignment_engine.models.directory import User
    counter = {"n": 0}

    def _make(role="analyst", org=None, experience_level="mid", region=None, **kwargs):
        counter["n"] += 1
        user = User(
            username=kwargs.pop("username", f"{role}_{counter['n']}"),
            full_name=kwargs.pop("full_name", f"{role.title()} {counter['n']}"),
            role=role,
            organization_id=org.id if org else None,
            region=region or (org.region if org else None),
            experience_level=experience_level,
            **kwargs,
        )
        _db.session.add(user)
        _db.session.commit()
        return user

    return _make


@pytest.fixture()
def make_item():
    from assignment_engine.models.work_item import WorkItem

    def _make(item_type="task", title=None, category="evidence_review", priority="medium",
              org=None, status="pending", **kwargs):
        item = WorkItem(
            item_type=item_type,
            title=title or f"{item_type.title()} item",
            category=category,
            priority=priority,
            organization_id=org.id if org else None,
            status=status,
            **kwargs,
        )
        _db.session.add(item)
        _db.session.commit()
        return item

    return _make


@pytest.fixture()
def make_assignment():
    """Insert an Assignment row directly (history and workload setup)."""
    from assignment_engine.models.assignment import Assignment

    def _make(item, user, *, status="Assigned", assignment_type="Primary",
              assigned_at=None, hours=None):
        assigned_at = assigned_at or utcnow() - timedelta(days=1)
        row = Assignment(
            work_item_id=item.id,
            user_id=user.id,
            user_role=user.role,
            assignment_type=assignment_type,
            status=status,
            assigned_at=assigned_at,
            completed_at=assigned_at + timedelta(hours=hours) if hours is not None else None,
        )
        _db.session.add(row)
        _db.session.commit()
        return row

    return _make
