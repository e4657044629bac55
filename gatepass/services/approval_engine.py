# =======================================================================================
# gatepass/services/approval_engine.py - Approval State Machine
# =======================================================================================
"""
Moves a pass from Pending to Approved, Rejected or Cancelled.

Every status write is a conditional UPDATE on the expected prior state
(status, and approval level for approvals) checked by rowcount, so two
racing decisions cannot both land: the loser sees InvalidStateError, the
same error a caller gets for a pass that was decided long ago.

Audit records and notifications are handed to the outbound dispatcher
only after the transaction commits.
"""
import logging
from datetime import datetime
from typing import List, Optional
from sqlalchemy import insert, update
from sqlalchemy.engine import Connection
from ..database import DatabaseManager, db_manager
from ..models.enums import Decision
from ..models.schemas import Actor, PassRecord, UserInfo
from ..models.tables import pass_approvals, passes
from ..utils.clock import Clock, utcnow
from ..utils.exceptions import AccessDeniedError, InvalidStateError, NotFoundError, ValidationError
from ..workers.outbound_worker import OutboundDispatcher
from .audit_service import AuditService
from .credential_codec import CredentialCodec
from .directory_service import DirectoryService
from .notification_service import NotificationService
from .pass_registry import PassRegistry

logger = logging.getLogger(__name__)

SYSTEM_APPROVER = "System"
AUTO_APPROVAL_REMARKS = "Auto-approved by system"


class ApprovalEngine:
    """Submits passes for approval and applies approver decisions."""

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
        self.clock = clock

    # ----------------------------------------------------------------------
    # submit
    # ----------------------------------------------------------------------
    def submit(self, pass_id: str, now: Optional[datetime] = None) -> PassRecord:
        """Snapshot tenant policy onto the pass; auto-approve or ask the approvers."""
        now = now or self.clock()
        approvers: List[UserInfo] = []

        with self.db.get_connection() as conn:
            pass_ = self.registry.get_pass(conn, pass_id)
            if pass_.status != "Pending" or pass_.submitted_at is not None:
                raise InvalidStateError(
                    f"Cannot submit pass with status: {pass_.status}", status=pass_.status
                )

            policy = self.directory.get_policy(conn, pass_.tenant_id)
            required = policy.approval_levels
            auto_approve = pass_.type == "Employee" and policy.auto_approve_employee

            values = dict(required_approval_levels=required, submitted_at=now, updated_at=now)
            if auto_approve:
                credential = self.codec.issue(pass_, status="Approved", now=now)
                values.update(
                    status="Approved",
                    approval_level=required,
                    credential_token=credential.token,
                    credential_image=credential.image,
                )

            result = conn.execute(
                update(passes)
                .where(
                    passes.c.id == pass_.key,
                    passes.c.status == "Pending",
                    passes.c.submitted_at.is_(None),
                )
                .values(**values)
            )
            if result.rowcount == 0:
                raise InvalidStateError("Pass has already been submitted", status=pass_.status)

            if auto_approve:
                self._record_approval(conn, pass_.key, None, SYSTEM_APPROVER, required,
                                      AUTO_APPROVAL_REMARKS, now)
            else:
                approvers = self.directory.list_approvers(conn, pass_.tenant_id)

            requester = self.directory.get_user(conn, pass_.requester_id)
            record = self.registry.get_pass_by_key(conn, pass_.key)

        if auto_approve:
            logger.info("Pass %s auto-approved", record.pass_id)
            self.dispatcher.submit(
                self.audit.log_action, record.requester_id, "Approved", "Pass", record.pass_id,
                {"status": "Approved", "autoApproved": True},
            )
            if requester:
                self.dispatcher.submit(
                    self.notifier.notify_status_changed, requester, record, "Approved",
                    AUTO_APPROVAL_REMARKS,
                )
            return record

        self.dispatcher.submit(
            self.audit.log_action, record.requester_id, "Updated", "Pass", record.pass_id,
            {"submitted": True, "requiredApprovalLevels": required},
        )
        self._request_approval(record, approvers, requester)
        return record

    # ----------------------------------------------------------------------
    # decide
    # ----------------------------------------------------------------------
    def decide(
        self,
        pass_id: str,
        approver_id: int,
        decision: Decision,
        remarks: str = "",
        now: Optional[datetime] = None,
    ) -> PassRecord:
        """Apply one approver's decision to a Pending pass."""
        if decision not in ("Approved", "Rejected"):
            raise ValidationError(f"Unknown decision: {decision}", decision=decision)

        now = now or self.clock()
        remarks = remarks or ""
        approvers: List[UserInfo] = []

        with self.db.get_connection() as conn:
            pass_ = self.registry.get_pass(conn, pass_id)
            if pass_.status != "Pending":
                raise InvalidStateError(
                    f"Cannot {decision.lower()} pass with status: {pass_.status}",
                    status=pass_.status,
                )
            if pass_.submitted_at is None:
                raise InvalidStateError("Pass has not been submitted for approval", status=pass_.status)

            approver = self.directory.get_user(conn, approver_id)
            if approver is None:
                raise NotFoundError("Approver not found", approver_id=approver_id)

            if decision == "Approved":
                final = self._apply_approval(conn, pass_, approver, remarks, now)
                if not final:
                    approvers = self.directory.list_approvers(conn, pass_.tenant_id)
            else:
                final = True
                self._apply_rejection(conn, pass_, approver, remarks, now)

            requester = self.directory.get_user(conn, pass_.requester_id)
            record = self.registry.get_pass_by_key(conn, pass_.key)

        if decision == "Rejected":
            logger.info("Pass %s rejected by %s", record.pass_id, approver_id)
            self.dispatcher.submit(
                self.audit.log_action, approver_id, "Rejected", "Pass", record.pass_id,
                {"status": "Rejected", "remarks": remarks},
            )
            if requester:
                self.dispatcher.submit(
                    self.notifier.notify_status_changed, requester, record, "Rejected", remarks
                )
        elif final:
            logger.info("Pass %s approved at level %d", record.pass_id, record.approval_level)
            self.dispatcher.submit(
                self.audit.log_action, approver_id, "Approved", "Pass", record.pass_id,
                {"status": "Approved", "level": record.approval_level},
            )
            if requester:
                self.dispatcher.submit(
                    self.notifier.notify_status_changed, requester, record, "Approved", remarks
                )
        else:
            self.dispatcher.submit(
                self.audit.log_action, approver_id, "Approved", "Pass", record.pass_id,
                {"level": record.approval_level, "pendingLevel": record.approval_level + 1},
            )
            # no level-specific pools: every tenant approver is asked again
            self._request_approval(record, approvers, requester)

        return record

    def _apply_approval(
        self, conn: Connection, pass_: PassRecord, approver: UserInfo, remarks: str, now: datetime
    ) -> bool:
        """Append the next approval level; returns True when it completes the chain."""
        level = pass_.approval_level
        new_level = level + 1
        final = new_level >= pass_.required_approval_levels

        values = dict(approval_level=new_level, updated_at=now)
        if final:
            credential = self.codec.issue(pass_, status="Approved", now=now)
            values.update(
                status="Approved",
                credential_token=credential.token,
                credential_image=credential.image,
            )

        result = conn.execute(
            update(passes)
            .where(
                passes.c.id == pass_.key,
                passes.c.status == "Pending",
                passes.c.approval_level == level,
            )
            .values(**values)
        )
        if result.rowcount == 0:
            raise InvalidStateError("Pass is no longer pending", status=pass_.status)

        self._record_approval(conn, pass_.key, approver.id, approver.name, new_level, remarks, now)
        return final

    @staticmethod
    def _apply_rejection(
        conn: Connection, pass_: PassRecord, approver: UserInfo, remarks: str, now: datetime
    ) -> None:
        result = conn.execute(
            update(passes)
            .where(passes.c.id == pass_.key, passes.c.status == "Pending")
            .values(
                status="Rejected",
                rejected_by=approver.id,
                rejected_by_name=approver.name,
                rejection_remarks=remarks,
                rejected_at=now,
                updated_at=now,
            )
        )
        if result.rowcount == 0:
            raise InvalidStateError("Pass is no longer pending", status=pass_.status)

    @staticmethod
    def _record_approval(
        conn: Connection,
        pass_key: int,
        approver_id: Optional[int],
        approver_name: str,
        level: int,
        remarks: str,
        now: datetime,
    ) -> None:
        conn.execute(
            insert(pass_approvals).values(
                pass_ref=pass_key,
                approver_id=approver_id,
                approver_name=approver_name,
                level=level,
                remarks=remarks,
                approved_at=now,
            )
        )

    def _request_approval(
        self, record: PassRecord, approvers: List[UserInfo], requester: Optional[UserInfo]
    ) -> None:
        if not approvers:
            logger.warning("No approvers found for tenant %s (pass %s)", record.tenant_id, record.pass_id)
            return
        for approver in approvers:
            self.dispatcher.submit(self.notifier.notify_approval_requested, approver, record, requester)

    # ----------------------------------------------------------------------
    # cancel
    # ----------------------------------------------------------------------
    def cancel(self, pass_id: str, actor: Actor, now: Optional[datetime] = None) -> PassRecord:
        """Withdraw a Pending pass. Requester (own pass) or admin only."""
        now = now or self.clock()

        with self.db.get_connection() as conn:
            pass_ = self.registry.get_pass(conn, pass_id)
            if not actor.is_admin and actor.id != pass_.requester_id:
                raise AccessDeniedError("Not authorized to cancel this pass", pass_id=pass_id)
            if pass_.status != "Pending":
                raise InvalidStateError(
                    f"Cannot cancel pass with status: {pass_.status}", status=pass_.status
                )

            result = conn.execute(
                update(passes)
                .where(passes.c.id == pass_.key, passes.c.status == "Pending")
                .values(status="Cancelled", updated_at=now)
            )
            if result.rowcount == 0:
                raise InvalidStateError("Pass is no longer pending", status=pass_.status)

            record = self.registry.get_pass_by_key(conn, pass_.key)
            requester = self.directory.get_user(conn, pass_.requester_id)

        logger.info("Pass %s cancelled by %s", record.pass_id, actor.id)
        self.dispatcher.submit(self.audit.log_action, actor.id, "Cancelled", "Pass", record.pass_id, {})
        if requester and requester.id != actor.id:
            self.dispatcher.submit(self.notifier.notify_status_changed, requester, record, "Cancelled", "")
        return record
