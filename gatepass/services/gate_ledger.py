# =======================================================================================
# gatepass/services/gate_ledger.py - Gate Check-in / Check-out Ledger
# =======================================================================================
import logging
from datetime import datetime
from typing import List, Optional, Sequence
from sqlalchemy import insert, select, update
from sqlalchemy.engine import Connection
from sqlalchemy.exc import IntegrityError
from ..database import DatabaseManager, db_manager
from ..models.enums import ENTRY_STATUSES, PASSAGE_EVENTS, TokenFailure, sources_for
from ..models.schemas import (
    CheckInResult, CheckOutResult, GateEventRecord, GateInfo, PassRecord, ScanResult,
    TokenVerification, VisitorDetails,
)
from ..models.tables import gate_events, passes
from ..utils.clock import Clock, utcnow
from ..utils.exceptions import (
    AlreadyCheckedInError, ExpiredTokenError, InvalidStateError, NoActiveCheckInError,
    OutsideWindowError, TamperedTokenError, ValidationError,
)
from ..utils.validators import TopologyValidator
from ..workers.outbound_worker import OutboundDispatcher
from .audit_service import AuditService
from .credential_codec import CredentialCodec
from .directory_service import DirectoryService
from .notification_service import NotificationService
from .pass_registry import PassRegistry

logger = logging.getLogger(__name__)


class GateLedger:
    """Authorizes passage at gates and keeps the occupancy ledger."""

    def __init__(
        self,
        codec: CredentialCodec,
        db: DatabaseManager = None,
        registry: PassRegistry = None,
        directory: DirectoryService = None,
        notifier: NotificationService = None,
        audit: AuditService = None,
        dispatcher: OutboundDispatcher = None,
        clock: Clock = utcnow,
    ):
        self.codec = codec
        self.db = db or db_manager
        self.directory = directory or DirectoryService()
        self.registry = registry or PassRegistry(self.db, self.directory, clock=clock)
        self.notifier = notifier or NotificationService()
        self.audit = audit or AuditService(self.db, clock)
        self.dispatcher = dispatcher or OutboundDispatcher()
        self.topology = TopologyValidator()
        self.clock = clock

    # ----------------------------------------------------------------------
    # Event helpers
    # ----------------------------------------------------------------------
    @staticmethod
    def _event_query():
        return select(gate_events, passes.c.pass_id.label("pass_code")).select_from(
            gate_events.join(passes, gate_events.c.pass_ref == passes.c.id)
        )

    @staticmethod
    def _to_event(row) -> GateEventRecord:
        return GateEventRecord(
            id=row["id"],
            pass_id=row["pass_code"],
            gate_id=row["gate_id"],
            gate_name=row["gate_name"],
            operator_id=row["operator_id"],
            event_type=row["event_type"],
            check_in_at=row["check_in_at"],
            check_out_at=row["check_out_at"],
            deny_reason=row["deny_reason"],
            created_at=row["created_at"],
        )

    def _get_event(self, conn: Connection, event_id: int) -> GateEventRecord:
        row = conn.execute(self._event_query().where(gate_events.c.id == event_id)).mappings().first()
        return self._to_event(row)

    def _append_event(
        self,
        conn: Connection,
        pass_: PassRecord,
        gate: GateInfo,
        operator_id: int,
        event_type: str,
        now: datetime,
        **fields,
    ) -> GateEventRecord:
        result = conn.execute(
            insert(gate_events).values(
                pass_ref=pass_.key,
                gate_id=gate.gate_id,
                gate_name=gate.gate_name,
                operator_id=operator_id,
                event_type=event_type,
                created_at=now,
                **fields,
            )
        )
        return self._get_event(conn, result.inserted_primary_key[0])

    def latest_event(
        self, conn: Connection, pass_key: int, event_types: Optional[Sequence[str]] = None
    ) -> Optional[GateEventRecord]:
        """Most recent event for a pass, optionally restricted to some event types."""
        query = self._event_query().where(gate_events.c.pass_ref == pass_key)
        if event_types:
            query = query.where(gate_events.c.event_type.in_(event_types))
        row = conn.execute(query.order_by(gate_events.c.id.desc()).limit(1)).mappings().first()
        return self._to_event(row) if row else None

    def events_for_pass(self, conn: Connection, pass_id: str) -> List[GateEventRecord]:
        rows = conn.execute(
            self._event_query().where(passes.c.pass_id == pass_id).order_by(gate_events.c.id)
        ).mappings().all()
        return [self._to_event(r) for r in rows]

    def active_sessions(self, conn: Connection, gate_id: Optional[str] = None) -> List[GateEventRecord]:
        """Open check-ins (people/vehicles currently inside), newest first."""
        query = self._event_query().where(gate_events.c.open_slot.is_not(None))
        if gate_id:
            query = query.where(gate_events.c.gate_id == gate_id)
        rows = conn.execute(query.order_by(gate_events.c.check_in_at.desc())).mappings().all()
        return [self._to_event(r) for r in rows]

    # ----------------------------------------------------------------------
    # Scan
    # ----------------------------------------------------------------------
    @staticmethod
    def raise_for(verification: TokenVerification) -> None:
        """Translate a failed verification into the matching error."""
        reason, message, payload = verification.reason, verification.message, verification.payload
        if reason == TokenFailure.TAMPERED:
            raise TamperedTokenError(message)
        if reason == TokenFailure.EXPIRED:
            raise ExpiredTokenError(message, valid_to=payload.valid_to)
        if reason == TokenFailure.NOT_YET_VALID:
            raise OutsideWindowError(message, valid_from=payload.valid_from, valid_to=payload.valid_to)
        if reason == TokenFailure.WRONG_STATE:
            raise InvalidStateError(message, status=payload.status)
        raise ValidationError(message or "Invalid QR code format")

    def scan(self, token: str, gate_id: str, operator_id: int, now: Optional[datetime] = None) -> ScanResult:
        """Verify a presented credential, then re-confirm against the live pass.

        The check-in/check-out offer follows the latest CheckIn or CheckOut
        event; Denied events are ignored, so a denial recorded while the
        holder is inside still offers check-out.
        """
        now = now or self.clock()

        verification = self.codec.verify(token, now)
        if not verification.valid:
            self.raise_for(verification)
        payload = verification.payload

        with self.db.get_connection() as conn:
            gate = self.topology.resolve_gate(conn, gate_id)
            # a validly signed token may be stale: the live record decides
            pass_ = self.registry.get_pass(conn, payload.pass_id)
            if pass_.status not in ENTRY_STATUSES:
                raise InvalidStateError(
                    f"Pass is not in a valid state for entry (Status: {pass_.status})",
                    status=pass_.status,
                )

            # denials do not open or close a session
            last = self.latest_event(conn, pass_.key, PASSAGE_EVENTS)

        inside = last is not None and last.event_type == "CheckIn" and last.check_out_at is None

        self.dispatcher.submit(
            self.audit.log_action, operator_id, "Scanned", "Pass", pass_.pass_id,
            {"gateId": gate.gate_id, "gateName": gate.gate_name},
        )
        return ScanResult(pass_=pass_, payload=payload, can_check_in=not inside, can_check_out=inside)

    # ----------------------------------------------------------------------
    # Check-in
    # ----------------------------------------------------------------------
    def check_in(
        self, pass_id: str, gate_id: str, operator_id: int, now: Optional[datetime] = None
    ) -> CheckInResult:
        now = now or self.clock()
        host = None

        with self.db.get_connection() as conn:
            gate = self.topology.resolve_gate(conn, gate_id)
            pass_ = self.registry.get_pass(conn, pass_id)

            if pass_.status not in ENTRY_STATUSES:
                raise InvalidStateError(
                    f"Pass is not in a valid state for entry (Status: {pass_.status})",
                    status=pass_.status,
                )

            if now < pass_.valid_from:
                raise OutsideWindowError(
                    f"Pass is not valid yet (Starts at: {pass_.valid_from.isoformat()})",
                    valid_from=pass_.valid_from, valid_to=pass_.valid_to,
                )
            if now > pass_.valid_to:
                raise OutsideWindowError(
                    f"Pass has expired (Expired at: {pass_.valid_to.isoformat()})",
                    valid_from=pass_.valid_from, valid_to=pass_.valid_to,
                )

            # open_slot is UNIQUE: a second open check-in for this pass cannot be inserted
            try:
                event = self._append_event(
                    conn, pass_, gate, operator_id, "CheckIn", now,
                    check_in_at=now, open_slot=pass_.key,
                )
            except IntegrityError:
                raise AlreadyCheckedInError(
                    "Already checked in. Please check out first.", pass_id=pass_id
                ) from None

            result = conn.execute(
                update(passes)
                .where(passes.c.id == pass_.key, passes.c.status.in_(sources_for("Active")))
                .values(status="Active", updated_at=now)
            )
            if result.rowcount == 0:
                raise InvalidStateError("Pass is no longer valid for entry", status=pass_.status)

            record = self.registry.get_pass_by_key(conn, pass_.key)
            if record.type == "Visitor" and record.host_id:
                host = self.directory.get_user(conn, record.host_id)

        logger.info("Pass %s checked in at %s", record.pass_id, gate.gate_id)
        self.dispatcher.submit(
            self.audit.log_action, operator_id, "CheckedIn", "Pass", record.pass_id,
            {"gateId": gate.gate_id, "gateName": gate.gate_name},
        )
        if host and isinstance(record.details, VisitorDetails) and record.details.persons:
            self.dispatcher.submit(self.notifier.notify_arrival, host, record, record.details.persons[0])

        return CheckInResult(event=event, pass_=record)

    # ----------------------------------------------------------------------
    # Check-out
    # ----------------------------------------------------------------------
    def check_out(
        self, pass_id: str, gate_id: str, operator_id: int, now: Optional[datetime] = None
    ) -> CheckOutResult:
        now = now or self.clock()

        with self.db.get_connection() as conn:
            gate = self.topology.resolve_gate(conn, gate_id)
            pass_ = self.registry.get_pass(conn, pass_id)

            open_row = conn.execute(
                select(gate_events.c.id).where(
                    gate_events.c.pass_ref == pass_.key,
                    gate_events.c.event_type == "CheckIn",
                    gate_events.c.open_slot.is_not(None),
                )
            ).first()
            if open_row is None:
                raise NoActiveCheckInError("No active check-in found", pass_id=pass_id)

            closed = conn.execute(
                update(gate_events)
                .where(gate_events.c.id == open_row.id, gate_events.c.open_slot.is_not(None))
                .values(check_out_at=now, open_slot=None)
            )
            if closed.rowcount == 0:
                raise NoActiveCheckInError("No active check-in found", pass_id=pass_id)

            check_in_event = self._get_event(conn, open_row.id)
            check_out_event = self._append_event(
                conn, pass_, gate, operator_id, "CheckOut", now, check_out_at=now
            )

            flipped = conn.execute(
                update(passes)
                .where(passes.c.id == pass_.key, passes.c.status.in_(sources_for("CheckedOut")))
                .values(status="CheckedOut", updated_at=now)
            )
            if flipped.rowcount == 0:
                # e.g. swept to Expired while inside: the exit is still recorded
                logger.info("Pass %s checked out with status %s left unchanged",
                            pass_.pass_id, pass_.status)

            record = self.registry.get_pass_by_key(conn, pass_.key)

        logger.info("Pass %s checked out at %s", record.pass_id, gate.gate_id)
        self.dispatcher.submit(
            self.audit.log_action, operator_id, "CheckedOut", "Pass", record.pass_id,
            {"gateId": gate.gate_id, "gateName": gate.gate_name},
        )
        return CheckOutResult(check_in_event=check_in_event, check_out_event=check_out_event, pass_=record)

    # ----------------------------------------------------------------------
    # Deny
    # ----------------------------------------------------------------------
    def deny(
        self, pass_id: str, gate_id: str, operator_id: int, reason: str, now: Optional[datetime] = None
    ) -> GateEventRecord:
        """Record a refused entry. Allowed in any status; the pass itself is untouched."""
        if not reason or not reason.strip():
            raise ValidationError("A deny reason is required")
        now = now or self.clock()

        with self.db.get_connection() as conn:
            gate = self.topology.resolve_gate(conn, gate_id)
            pass_ = self.registry.get_pass(conn, pass_id)
            event = self._append_event(
                conn, pass_, gate, operator_id, "Denied", now, deny_reason=reason.strip()
            )

        logger.info("Pass %s denied at %s: %s", pass_.pass_id, gate.gate_id, reason)
        self.dispatcher.submit(
            self.audit.log_action, operator_id, "Denied", "Pass", pass_.pass_id,
            {"gateId": gate.gate_id, "gateName": gate.gate_name, "denyReason": reason.strip()},
        )
        return event
