"""Tests for OutboundDispatcher and the best-effort notification/audit side effects."""

import logging
import threading

from gatepass.database import DatabaseManager
from gatepass.models.schemas import UserInfo
from gatepass.services.audit_service import AuditService
from gatepass.services.notification_service import NotificationService
from gatepass.workers.outbound_worker import OutboundDispatcher

from conftest import NOW


class TestOutboundDispatcher:
    def test_runs_inline_until_started(self):
        dispatcher = OutboundDispatcher(maxsize=10)
        seen = []
        dispatcher.submit(seen.append, threading.current_thread().name)
        assert seen == [threading.current_thread().name]

    def test_started_dispatcher_runs_jobs_on_worker_thread(self):
        dispatcher = OutboundDispatcher(maxsize=10)
        seen = []
        dispatcher.start()
        try:
            dispatcher.submit(lambda: seen.append(threading.current_thread().name))
            dispatcher.join()
        finally:
            dispatcher.stop()
        assert seen == ["outbound-dispatcher"]

    def test_failing_job_is_logged_and_dropped(self, caplog):
        dispatcher = OutboundDispatcher(maxsize=10)
        seen = []

        def broken():
            raise RuntimeError("mail relay refused")

        dispatcher.start()
        try:
            with caplog.at_level(logging.ERROR):
                dispatcher.submit(broken)
                dispatcher.submit(seen.append, "after")
                dispatcher.join()
        finally:
            dispatcher.stop()

        assert seen == ["after"]
        assert "mail relay refused" in caplog.text

    def test_stop_drains_queue(self):
        dispatcher = OutboundDispatcher(maxsize=10)
        seen = []
        dispatcher.start()
        for i in range(5):
            dispatcher.submit(seen.append, i)
        dispatcher.stop()
        assert seen == [0, 1, 2, 3, 4]
        assert dispatcher.running is False


class TestSideEffects:
    def test_audit_failure_is_swallowed(self, tmp_path, caplog):
        # schema never created: every insert fails
        audit = AuditService(DatabaseManager(f"sqlite:///{tmp_path / 'empty.db'}"), clock=lambda: NOW)

        with caplog.at_level(logging.ERROR):
            audit.log_action(1, "Created", "Pass", "GP-VIS-20260101-0001")
        assert "Audit logging error" in caplog.text

    def test_unconfigured_email_is_logged_not_sent(self, approved_pass, caplog):
        host = UserInfo(id=6, tenant_id=1, name="Hugo Host", email="hugo@acme.test", role="Requestor")
        with caplog.at_level(logging.INFO):
            NotificationService().notify_arrival(host, approved_pass, approved_pass.details.persons[0])
        assert "SMTP not configured" in caplog.text
