# =======================================================================================
# gatepass/services/pass_registry.py - Pass Storage
# =======================================================================================
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple
from sqlalchemy import func, insert, select, update
from sqlalchemy.engine import Connection
from sqlalchemy.exc import IntegrityError
from ..config import config
from ..database import DatabaseManager, db_manager
from ..models.enums import PASS_ID_PREFIX
from ..models.schemas import (
    Actor, ApprovalRecord, CreatePassRequest, PassRecord, RejectionRecord,
)
from ..models.tables import pass_approvals, pass_sequences, passes
from ..utils.clock import Clock, utcnow
from ..utils.exceptions import NotFoundError, ValidationError
from ..utils.validators import validate_window
from ..workers.outbound_worker import OutboundDispatcher
from .audit_service import AuditService
from .directory_service import DirectoryService

logger = logging.getLogger(__name__)


def format_pass_id(pass_type: str, day: datetime, sequence: int) -> str:
    """GP-VIS-20260101-0042"""
    prefix = PASS_ID_PREFIX.get(pass_type, "GP")
    return f"GP-{prefix}-{day.strftime('%Y%m%d')}-{sequence:04d}"


class PassRegistry:
    """Creates pass records and reads them back as PassRecord snapshots."""

    def __init__(
        self,
        db: DatabaseManager = None,
        directory: DirectoryService = None,
        audit: AuditService = None,
        dispatcher: OutboundDispatcher = None,
        clock: Clock = utcnow,
    ):
        self.db = db or db_manager
        self.directory = directory or DirectoryService()
        self.audit = audit or AuditService(self.db, clock)
        self.dispatcher = dispatcher or OutboundDispatcher()
        self.clock = clock

    # ----------------------------------------------------------------------
    # Reads
    # ----------------------------------------------------------------------
    def get_pass(self, conn: Connection, pass_id: str) -> PassRecord:
        row = conn.execute(select(passes).where(passes.c.pass_id == pass_id)).mappings().first()
        if not row:
            raise NotFoundError("Pass not found", pass_id=pass_id)
        return self._to_record(conn, row)

    def get_pass_by_key(self, conn: Connection, key: int) -> PassRecord:
        row = conn.execute(select(passes).where(passes.c.id == key)).mappings().first()
        if not row:
            raise NotFoundError("Pass not found", key=key)
        return self._to_record(conn, row)

    def list_passes(
        self,
        conn: Connection,
        tenant_id: Optional[int] = None,
        requester_id: Optional[int] = None,
        status: Optional[str] = None,
        pass_type: Optional[str] = None,
        limit: int = 10,
        offset: int = 0,
    ) -> Tuple[List[PassRecord], int]:
        """Filtered, newest-first page of passes plus the unpaged total."""
        filters = []
        if tenant_id is not None:
            filters.append(passes.c.tenant_id == tenant_id)
        if requester_id is not None:
            filters.append(passes.c.requester_id == requester_id)
        if status:
            filters.append(passes.c.status == status)
        if pass_type:
            filters.append(passes.c.pass_type == pass_type)

        total = conn.execute(select(func.count()).select_from(passes).where(*filters)).scalar_one()
        rows = conn.execute(
            select(passes).where(*filters).order_by(passes.c.id.desc()).limit(limit).offset(offset)
        ).mappings().all()
        return [self._to_record(conn, r) for r in rows], total

    def _to_record(self, conn: Connection, row) -> PassRecord:
        approvals = conn.execute(
            select(pass_approvals)
            .where(pass_approvals.c.pass_ref == row["id"])
            .order_by(pass_approvals.c.level)
        ).mappings().all()

        rejection = None
        if row["rejected_at"] is not None:
            rejection = RejectionRecord(
                rejected_by=row["rejected_by"],
                rejected_by_name=row["rejected_by_name"],
                remarks=row["rejection_remarks"] or "",
                rejected_at=row["rejected_at"],
            )

        return PassRecord(
            key=row["id"],
            pass_id=row["pass_id"],
            type=row["pass_type"],
            tenant_id=row["tenant_id"],
            site_id=row["site_id"],
            gate_id=row["gate_id"],
            requester_id=row["requester_id"],
            host_id=row["host_id"],
            purpose=row["purpose"],
            remarks=row["remarks"],
            dispatch_email=row["dispatch_email"],
            valid_from=row["valid_from"],
            valid_to=row["valid_to"],
            details=row["details"],
            status=row["status"],
            approval_level=row["approval_level"],
            required_approval_levels=row["required_approval_levels"],
            submitted_at=row["submitted_at"],
            approvals=[
                ApprovalRecord(
                    approver_id=a["approver_id"],
                    approver_name=a["approver_name"],
                    level=a["level"],
                    remarks=a["remarks"] or "",
                    approved_at=a["approved_at"],
                )
                for a in approvals
            ],
            rejection=rejection,
            credential_token=row["credential_token"],
            credential_image=row["credential_image"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    # ----------------------------------------------------------------------
    # Creation
    # ----------------------------------------------------------------------
    def next_sequence(self, conn: Connection, pass_type: str, day: str) -> int:
        """Bump the per-type-per-day counter. The row update serializes concurrent creators."""
        result = conn.execute(
            update(pass_sequences)
            .where(pass_sequences.c.pass_type == pass_type, pass_sequences.c.day == day)
            .values(last_seq=pass_sequences.c.last_seq + 1)
        )
        if result.rowcount == 0:
            # first pass of the day; a concurrent creator may win this insert (IntegrityError)
            conn.execute(insert(pass_sequences).values(pass_type=pass_type, day=day, last_seq=1))
            return 1

        return conn.execute(
            select(pass_sequences.c.last_seq).where(
                pass_sequences.c.pass_type == pass_type, pass_sequences.c.day == day
            )
        ).scalar_one()

    def create_pass(self, request: CreatePassRequest, requester: Actor) -> PassRecord:
        """Insert a Pending pass; approval starts with ApprovalEngine.submit."""
        attempts = max(1, config.PASS_ID_RETRY_ATTEMPTS)
        for attempt in range(1, attempts + 1):
            try:
                with self.db.get_connection() as conn:
                    record = self._insert_pass(conn, request, requester)
                break
            except IntegrityError:
                if attempt == attempts:
                    raise
                logger.warning("Pass id sequence race for %s; retrying (%d/%d)",
                               request.details.type, attempt, attempts)

        self.dispatcher.submit(
            self.audit.log_action, requester.id, "Created", "Pass", record.pass_id,
            {"status": "Pending", "type": record.type},
        )
        return record

    def _insert_pass(self, conn: Connection, request: CreatePassRequest, requester: Actor) -> PassRecord:
        user = self.directory.get_user(conn, requester.id)
        if user is None or user.tenant_id is None:
            raise NotFoundError("Requester not found", user_id=requester.id)

        policy = self.directory.get_policy(conn, user.tenant_id)
        pass_type = request.details.type

        valid_to = request.valid_to or request.valid_from + timedelta(
            hours=policy.default_expiry_hours(pass_type)
        )
        validate_window(request.valid_from, valid_to)

        if request.host_id is not None and self.directory.get_user(conn, request.host_id) is None:
            raise ValidationError("Host not found", host_id=request.host_id)

        now = self.clock()
        sequence = self.next_sequence(conn, pass_type, now.strftime("%Y%m%d"))
        pass_id = format_pass_id(pass_type, now, sequence)

        values: Dict[str, Any] = dict(
            pass_id=pass_id,
            pass_type=pass_type,
            tenant_id=user.tenant_id,
            site_id=request.site_id,
            gate_id=request.gate_id,
            requester_id=requester.id,
            host_id=request.host_id,
            purpose=request.purpose,
            remarks=request.remarks,
            dispatch_email=request.dispatch_email,
            valid_from=request.valid_from,
            valid_to=valid_to,
            details=request.details.model_dump(mode="json"),
            status="Pending",
            approval_level=0,
            required_approval_levels=policy.approval_levels,
            created_at=now,
            updated_at=now,
        )
        key = conn.execute(insert(passes).values(**values)).inserted_primary_key[0]
        logger.info("Pass %s created by user %s", pass_id, requester.id)
        return self.get_pass_by_key(conn, key)
