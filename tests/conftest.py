# =======================================================================================
# tests/conftest.py - Shared Fixtures
# =======================================================================================
import os
from datetime import datetime, timedelta

# Settings are read at import time; point them at throwaway values first.
os.environ["DB_URL"] = "sqlite://"
os.environ["QR_SECRET"] = "test-secret"
os.environ["EXPIRY_SWEEP_ENABLED"] = "false"
os.environ["EMAIL_HOST"] = ""

import pytest
from sqlalchemy import insert, update

from gatepass.database import DatabaseManager
from gatepass.main import Services
from gatepass.models.schemas import Actor, CreatePassRequest
from gatepass.models.tables import gates, tenants, users
from gatepass.services.notification_service import NotificationService

SECRET = "test-secret"
NOW = datetime(2026, 1, 1, 8, 0, 0)

ADMIN_ID = 1
APPROVER_ID = 2
SECOND_APPROVER_ID = 3
REQUESTER_ID = 4
SECURITY_ID = 5
HOST_ID = 6
OTHER_REQUESTER_ID = 7

GATE_ID = "GATE-MAIN"
SIDE_GATE_ID = "GATE-SIDE"
CLOSED_GATE_ID = "GATE-CLOSED"


class FixedClock:
    """Injectable clock that only moves when a test moves it."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class RecordingNotifier(NotificationService):
    """Keeps every notification instead of emailing it."""

    def __init__(self):
        self.sent = []

    def notify_approval_requested(self, approver, pass_, requester):
        self.sent.append(("approval_requested", approver.id, pass_.pass_id, None))

    def notify_status_changed(self, requester, pass_, status, remarks=""):
        self.sent.append(("status_changed", requester.id, pass_.pass_id, status))

    def notify_arrival(self, host, pass_, visitor):
        self.sent.append(("arrival", host.id, pass_.pass_id, visitor.name))

    def of_kind(self, kind):
        return [s for s in self.sent if s[0] == kind]


def seed(db: DatabaseManager) -> None:
    with db.get_connection() as conn:
        conn.execute(
            insert(tenants).values(
                id=1, name="Acme Plant", approval_levels=1, auto_approve_employee=False,
                default_pass_expiry=None, is_active=True, created_at=NOW,
            )
        )
        conn.execute(
            insert(users),
            [
                dict(id=ADMIN_ID, tenant_id=1, name="Ada Admin", email="admin@acme.test", role="Admin", is_active=True),
                dict(id=APPROVER_ID, tenant_id=1, name="Alan Approver", email="alan@acme.test", role="Approver", is_active=True),
                dict(id=SECOND_APPROVER_ID, tenant_id=1, name="Bea Approver", email="bea@acme.test", role="Approver", is_active=True),
                dict(id=REQUESTER_ID, tenant_id=1, name="Rita Requestor", email="rita@acme.test", role="Requestor", is_active=True),
                dict(id=SECURITY_ID, tenant_id=1, name="Sam Security", email="sam@acme.test", role="Security", is_active=True),
                dict(id=HOST_ID, tenant_id=1, name="Hugo Host", email="hugo@acme.test", role="Requestor", is_active=True),
                dict(id=OTHER_REQUESTER_ID, tenant_id=1, name="Otto Other", email="otto@acme.test", role="Requestor", is_active=True),
            ],
        )
        conn.execute(
            insert(gates),
            [
                dict(gate_id=GATE_ID, tenant_id=1, site_id="SITE-1", gate_name="Main Gate", is_active=True),
                dict(gate_id=SIDE_GATE_ID, tenant_id=1, site_id="SITE-1", gate_name="Side Gate", is_active=True),
                dict(gate_id=CLOSED_GATE_ID, tenant_id=1, site_id="SITE-1", gate_name="Old Gate", is_active=False),
            ],
        )


@pytest.fixture
def db(tmp_path):
    manager = DatabaseManager(f"sqlite:///{tmp_path / 'gatepass.db'}")
    manager.create_schema()
    seed(manager)
    yield manager
    manager.dispose()


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def services(db, clock, notifier):
    return Services(db, SECRET, clock, notifier)


@pytest.fixture
def set_policy(db):
    def _set(**values):
        with db.get_connection() as conn:
            conn.execute(update(tenants).where(tenants.c.id == 1).values(**values))
    return _set


def visitor_details(**overrides):
    details = {
        "type": "Visitor",
        "persons": [{"name": "Vera Visitor", "phone": "555-0101", "company": "Globex"}],
    }
    details.update(overrides)
    return details


@pytest.fixture
def make_pass(services):
    """Create (and by default submit) a pass; returns the stored record."""
    def _make(details=None, requester_id=REQUESTER_ID, submit=True, **fields):
        body = dict(
            site_id="SITE-1",
            purpose="Vendor meeting",
            remarks="Bring laptop",
            valid_from=NOW,
            details=details or visitor_details(),
        )
        body.update(fields)
        record = services.registry.create_pass(CreatePassRequest(**body), _actor(requester_id))
        if submit:
            record = services.approvals.submit(record.pass_id)
        return record
    return _make


@pytest.fixture
def approved_pass(make_pass, services):
    record = make_pass(host_id=HOST_ID)
    return services.approvals.decide(record.pass_id, APPROVER_ID, "Approved", "ok")


def _actor(user_id):
    role = "Admin" if user_id == ADMIN_ID else "Requestor"
    return Actor(id=user_id, role=role)
