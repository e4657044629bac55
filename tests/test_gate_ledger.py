"""Tests for GateLedger: scan, check-in/check-out, deny and occupancy queries."""

import json
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest
from sqlalchemy import update

from gatepass.models.tables import passes
from gatepass.utils.exceptions import (
    AlreadyCheckedInError, ExpiredTokenError, InvalidGateError, InvalidStateError,
    NoActiveCheckInError, NotFoundError, OutsideWindowError, TamperedTokenError, ValidationError,
)

from conftest import APPROVER_ID, CLOSED_GATE_ID, GATE_ID, HOST_ID, NOW, SECURITY_ID, SIDE_GATE_ID


class TestScan:
    def test_fresh_pass_offers_check_in(self, approved_pass, services):
        result = services.ledger.scan(approved_pass.credential_token, GATE_ID, SECURITY_ID)

        assert result.pass_.pass_id == approved_pass.pass_id
        assert result.payload.status == "Approved"
        assert result.can_check_in is True
        assert result.can_check_out is False

    def test_inside_pass_offers_check_out(self, approved_pass, services):
        services.ledger.check_in(approved_pass.pass_id, GATE_ID, SECURITY_ID)
        result = services.ledger.scan(approved_pass.credential_token, GATE_ID, SECURITY_ID)

        assert result.pass_.status == "Active"
        assert result.can_check_in is False
        assert result.can_check_out is True

    def test_after_check_out_offers_check_in_again(self, approved_pass, services):
        services.ledger.check_in(approved_pass.pass_id, GATE_ID, SECURITY_ID)
        services.ledger.check_out(approved_pass.pass_id, GATE_ID, SECURITY_ID)
        result = services.ledger.scan(approved_pass.credential_token, GATE_ID, SECURITY_ID)
        assert (result.can_check_in, result.can_check_out) == (True, False)

    def test_one_second_after_valid_to_is_expired_token(self, approved_pass, services):
        now = approved_pass.valid_to + timedelta(seconds=1)
        with pytest.raises(ExpiredTokenError) as exc:
            services.ledger.scan(approved_pass.credential_token, GATE_ID, SECURITY_ID, now=now)
        assert exc.value.valid_to == approved_pass.valid_to

    def test_before_valid_from_is_outside_window(self, approved_pass, services):
        now = approved_pass.valid_from - timedelta(minutes=5)
        with pytest.raises(OutsideWindowError):
            services.ledger.scan(approved_pass.credential_token, GATE_ID, SECURITY_ID, now=now)

    def test_tampered_token(self, approved_pass, services):
        data = json.loads(approved_pass.credential_token)
        data["passId"] = "GP-VIS-20260101-0042"
        with pytest.raises(TamperedTokenError):
            services.ledger.scan(json.dumps(data), GATE_ID, SECURITY_ID)

    def test_garbage_is_validation_error(self, services):
        with pytest.raises(ValidationError):
            services.ledger.scan("hello", GATE_ID, SECURITY_ID)

    def test_stale_token_is_rechecked_against_live_pass(self, make_pass, services):
        record = make_pass()
        # signed while the pass looked approved, then the pass was rejected
        token = services.codec.issue(record, status="Approved").token
        services.approvals.decide(record.pass_id, APPROVER_ID, "Rejected", "withdrawn")

        with pytest.raises(InvalidStateError) as exc:
            services.ledger.scan(token, GATE_ID, SECURITY_ID)
        assert exc.value.status == "Rejected"

    def test_token_for_unknown_pass(self, approved_pass, services):
        forged = approved_pass.model_copy(update={"pass_id": "GP-VIS-20260101-0999"})
        token = services.codec.issue(forged).token
        with pytest.raises(NotFoundError):
            services.ledger.scan(token, GATE_ID, SECURITY_ID)

    def test_unknown_and_inactive_gates(self, approved_pass, services):
        with pytest.raises(InvalidGateError):
            services.ledger.scan(approved_pass.credential_token, "GATE-NOPE", SECURITY_ID)
        with pytest.raises(InvalidGateError):
            services.ledger.scan(approved_pass.credential_token, CLOSED_GATE_ID, SECURITY_ID)


class TestCheckIn:
    def test_check_in_activates_pass(self, approved_pass, services):
        result = services.ledger.check_in(approved_pass.pass_id, GATE_ID, SECURITY_ID)

        assert result.pass_.status == "Active"
        assert result.event.event_type == "CheckIn"
        assert result.event.check_in_at == NOW
        assert result.event.check_out_at is None
        assert result.event.gate_name == "Main Gate"
        assert result.event.operator_id == SECURITY_ID

    def test_second_check_in_is_rejected(self, approved_pass, services):
        services.ledger.check_in(approved_pass.pass_id, GATE_ID, SECURITY_ID)
        with pytest.raises(AlreadyCheckedInError):
            services.ledger.check_in(approved_pass.pass_id, SIDE_GATE_ID, SECURITY_ID)

    def test_visitor_arrival_notifies_host(self, approved_pass, services, notifier):
        services.ledger.check_in(approved_pass.pass_id, GATE_ID, SECURITY_ID)
        assert notifier.of_kind("arrival") == [("arrival", HOST_ID, approved_pass.pass_id, "Vera Visitor")]

    def test_pending_pass_cannot_enter(self, make_pass, services):
        record = make_pass()
        with pytest.raises(InvalidStateError):
            services.ledger.check_in(record.pass_id, GATE_ID, SECURITY_ID)

    def test_before_window(self, approved_pass, services, clock):
        clock.now = approved_pass.valid_from - timedelta(seconds=1)
        with pytest.raises(OutsideWindowError) as exc:
            services.ledger.check_in(approved_pass.pass_id, GATE_ID, SECURITY_ID)
        assert exc.value.valid_from == approved_pass.valid_from
        assert exc.value.valid_to == approved_pass.valid_to

    def test_after_window(self, approved_pass, services, clock):
        clock.now = approved_pass.valid_to + timedelta(seconds=1)
        with pytest.raises(OutsideWindowError):
            services.ledger.check_in(approved_pass.pass_id, GATE_ID, SECURITY_ID)

    def test_expired_pass_cannot_enter(self, approved_pass, services, clock):
        clock.now = approved_pass.valid_to + timedelta(minutes=1)
        services.sweeper.sweep()
        with pytest.raises(InvalidStateError):
            services.ledger.check_in(approved_pass.pass_id, GATE_ID, SECURITY_ID)

    def test_check_in_losing_to_a_concurrent_sweep(self, approved_pass, services, monkeypatch):
        with services.db.get_connection() as conn:
            stale = services.registry.get_pass(conn, approved_pass.pass_id)
            # the sweeper commits Expired after check_in has read the pass
            conn.execute(
                update(passes).where(passes.c.id == stale.key).values(status="Expired")
            )

        monkeypatch.setattr(services.registry, "get_pass", lambda conn, pass_id: stale)
        with pytest.raises(InvalidStateError):
            services.ledger.check_in(approved_pass.pass_id, GATE_ID, SECURITY_ID)
        monkeypatch.undo()

        with services.db.get_connection() as conn:
            assert services.registry.get_pass(conn, approved_pass.pass_id).status == "Expired"
            assert services.ledger.events_for_pass(conn, approved_pass.pass_id) == []
            assert services.ledger.active_sessions(conn) == []

    def test_concurrent_check_ins_have_one_winner(self, approved_pass, services):
        attempts = 8

        def check_in(_):
            try:
                services.ledger.check_in(approved_pass.pass_id, GATE_ID, SECURITY_ID)
                return "ok"
            except AlreadyCheckedInError:
                return "already"

        with ThreadPoolExecutor(max_workers=attempts) as pool:
            outcomes = list(pool.map(check_in, range(attempts)))

        assert outcomes.count("ok") == 1
        assert outcomes.count("already") == attempts - 1
        with services.db.get_connection() as conn:
            assert len(services.ledger.active_sessions(conn)) == 1


class TestCheckOut:
    def test_check_out_closes_session(self, approved_pass, services, clock):
        services.ledger.check_in(approved_pass.pass_id, GATE_ID, SECURITY_ID)
        later = clock.advance(hours=2)

        result = services.ledger.check_out(approved_pass.pass_id, SIDE_GATE_ID, SECURITY_ID)

        assert result.pass_.status == "CheckedOut"
        assert result.check_in_event.check_out_at == later
        assert result.check_out_event.event_type == "CheckOut"
        assert result.check_out_event.gate_id == SIDE_GATE_ID
        assert result.check_out_event.id != result.check_in_event.id

    def test_check_out_without_check_in(self, approved_pass, services):
        with pytest.raises(NoActiveCheckInError):
            services.ledger.check_out(approved_pass.pass_id, GATE_ID, SECURITY_ID)

    def test_double_check_out(self, approved_pass, services):
        services.ledger.check_in(approved_pass.pass_id, GATE_ID, SECURITY_ID)
        services.ledger.check_out(approved_pass.pass_id, GATE_ID, SECURITY_ID)
        with pytest.raises(NoActiveCheckInError):
            services.ledger.check_out(approved_pass.pass_id, GATE_ID, SECURITY_ID)

    def test_re_entry_after_check_out(self, approved_pass, services, clock):
        services.ledger.check_in(approved_pass.pass_id, GATE_ID, SECURITY_ID)
        clock.advance(hours=1)
        services.ledger.check_out(approved_pass.pass_id, GATE_ID, SECURITY_ID)
        clock.advance(hours=1)

        result = services.ledger.check_in(approved_pass.pass_id, GATE_ID, SECURITY_ID)
        assert result.pass_.status == "Active"

        with services.db.get_connection() as conn:
            events = services.ledger.events_for_pass(conn, approved_pass.pass_id)
        assert [e.event_type for e in events] == ["CheckIn", "CheckOut", "CheckIn"]

    def test_exit_is_recorded_after_expiry_sweep(self, approved_pass, services, clock):
        services.ledger.check_in(approved_pass.pass_id, GATE_ID, SECURITY_ID)
        clock.now = approved_pass.valid_to + timedelta(minutes=30)
        services.sweeper.sweep()

        result = services.ledger.check_out(approved_pass.pass_id, GATE_ID, SECURITY_ID)

        assert result.pass_.status == "Expired"
        assert result.check_in_event.check_out_at == clock.now
        with services.db.get_connection() as conn:
            assert services.ledger.active_sessions(conn) == []


class TestDeny:
    def test_deny_any_status_leaves_pass_alone(self, make_pass, services):
        record = make_pass()
        event = services.ledger.deny(record.pass_id, GATE_ID, SECURITY_ID, "  no ID shown ")

        assert event.event_type == "Denied"
        assert event.deny_reason == "no ID shown"
        with services.db.get_connection() as conn:
            assert services.registry.get_pass(conn, record.pass_id).status == "Pending"

    def test_deny_does_not_close_open_session(self, approved_pass, services):
        services.ledger.check_in(approved_pass.pass_id, GATE_ID, SECURITY_ID)
        services.ledger.deny(approved_pass.pass_id, GATE_ID, SECURITY_ID, "carrying tools")

        result = services.ledger.scan(approved_pass.credential_token, GATE_ID, SECURITY_ID)
        assert (result.can_check_in, result.can_check_out) == (False, True)
        with pytest.raises(AlreadyCheckedInError):
            services.ledger.check_in(approved_pass.pass_id, GATE_ID, SECURITY_ID)

    def test_reason_is_required(self, approved_pass, services):
        with pytest.raises(ValidationError):
            services.ledger.deny(approved_pass.pass_id, GATE_ID, SECURITY_ID, "   ")


class TestOccupancy:
    def test_active_sessions_by_gate(self, make_pass, services):
        first = services.approvals.decide(make_pass().pass_id, APPROVER_ID, "Approved")
        second = services.approvals.decide(make_pass().pass_id, APPROVER_ID, "Approved")
        services.ledger.check_in(first.pass_id, GATE_ID, SECURITY_ID)
        services.ledger.check_in(second.pass_id, SIDE_GATE_ID, SECURITY_ID)

        with services.db.get_connection() as conn:
            everywhere = services.ledger.active_sessions(conn)
            main_only = services.ledger.active_sessions(conn, GATE_ID)

        assert {e.pass_id for e in everywhere} == {first.pass_id, second.pass_id}
        assert [e.pass_id for e in main_only] == [first.pass_id]

    def test_gate_actions_are_audited(self, approved_pass, services):
        services.ledger.scan(approved_pass.credential_token, GATE_ID, SECURITY_ID)
        services.ledger.check_in(approved_pass.pass_id, GATE_ID, SECURITY_ID)
        services.ledger.check_out(approved_pass.pass_id, GATE_ID, SECURITY_ID)

        with services.db.get_connection() as conn:
            actions = [r["action"] for r in services.audit.list_for(conn, "Pass", approved_pass.pass_id)]
        assert actions[-3:] == ["Scanned", "CheckedIn", "CheckedOut"]
