"""
Shared pytest fixtures for the stage progression test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - engine: the app's StageProgressionEngine
    - nds_routing: NDS site users + stage 1–3 routing entries
    - file_backed_app: second app on a SQLite file, for multi-threaded tests
"""

import pytest

from opexhub import create_app
from opexhub.config import TestingConfig
from opexhub.models import db as _db
from opexhub.models.auth import User
from opexhub.models.workflow import RoutingEntry


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


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
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture()
def engine(app):
    return app.extensions["stage_engine"]


# ── Factories ────────────────────────────────────────────────────────────


def _make_user(full_name, email, role, site="NDS", user_id=None, routing_priority=None, is_active=True):
    u = User(
        id=user_id,
        full_name=full_name,
        email=email,
        site=site,
        role=role,
        routing_priority=routing_priority,
        is_active=is_active,
    )
    _db.session.add(u)
    _db.session.commit()
    return u


def _make_routing(site, stage_number, stage_name, role, email, is_active=True):
    entry = RoutingEntry(
        site=site,
        stage_number=stage_number,
        stage_name=stage_name,
        required_role=role,
        default_user_email=email,
        is_active=is_active,
    )
    _db.session.add(entry)
    _db.session.commit()
    return entry


def _seed_nds_routing():
    """NDS: stage 1 STLD, stage 2 CTSD, stage 3 SH; lead id 42; role pools for 7–11."""
    users = {
        "stld": _make_user("Manoj Tiwari", "manoj.tiwari@godeepak.com", "STLD"),
        "ctsd": _make_user("Ravi Kumar", "ravi.kumar@godeepak.com", "CTSD"),
        "sh": _make_user("Ananya Verma", "ananya.verma@godeepak.com", "SH"),
        "lead": _make_user("Kiran Sharma", "kiran.sharma@godeepak.com", "IL", user_id=42),
    }
    _make_routing("NDS", 1, "Register Initiative", "STLD", "manoj.tiwari@godeepak.com")
    _make_routing("NDS", 2, "Evaluation and Approval", "CTSD", "ravi.kumar@godeepak.com")
    _make_routing("NDS", 3, "Initiative assessment and approval", "SH", "ananya.verma@godeepak.com")
    return users


@pytest.fixture()
def nds_routing():
    return _seed_nds_routing()


@pytest.fixture()
def file_backed_app(tmp_path, monkeypatch):
    """A second app on a file-backed SQLite database, seeded like ``nds_routing``.

    In-memory SQLite cannot be shared between threads, so tests that act from
    several threads at once run against this app.
    """
    monkeypatch.setattr(TestingConfig, "SQLALCHEMY_DATABASE_URI", f"sqlite:///{tmp_path / 'ledger.db'}")
    threaded_app = create_app("testing")
    with threaded_app.app_context():
        _seed_nds_routing()
    yield threaded_app
    with threaded_app.app_context():
        _db.drop_all()
        _db.engine.dispose()
