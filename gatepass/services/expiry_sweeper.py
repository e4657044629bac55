# =======================================================================================
# gatepass/services/expiry_sweeper.py - Expire Lapsed Passes
# =======================================================================================
import logging
import threading
from datetime import datetime
from typing import List, Optional
from sqlalchemy import select, update
from ..database import DatabaseManager, db_manager
from ..models.enums import SWEEPABLE_STATUSES
from ..models.schemas import SweepReport
from ..models.tables import passes
from ..utils.clock import Clock, utcnow
from ..workers.outbound_worker import OutboundDispatcher
from .audit_service import AuditService

logger = logging.getLogger(__name__)


class ExpirySweeper:
    """Moves Approved/Active passes whose validTo has passed to Expired."""

    def __init__(
        self,
        db: DatabaseManager = None,
        audit: AuditService = None,
        dispatcher: OutboundDispatcher = None,
        clock: Clock = utcnow,
    ):
        self.db = db or db_manager
        self.audit = audit or AuditService(self.db, clock)
        self.dispatcher = dispatcher or OutboundDispatcher()
        self.clock = clock
        self._lock = threading.Lock()

    def sweep(self, now: Optional[datetime] = None) -> SweepReport:
        """One sweep. A tick that overlaps a running sweep is skipped, not queued."""
        now = now or self.clock()
        if not self._lock.acquire(blocking=False):
            logger.info("Expiry sweep already running; skipping tick")
            return SweepReport(ran_at=now, skipped=True)

        try:
            expired = self._sweep(now)
        finally:
            self._lock.release()

        logger.info("Expiry check completed. %d passes expired.", len(expired))
        return SweepReport(ran_at=now, expired=expired)

    def _sweep(self, now: datetime) -> List[str]:
        candidates = self.db.fetch_all(
            select(passes.c.id, passes.c.pass_id)
            .where(passes.c.status.in_(SWEEPABLE_STATUSES), passes.c.valid_to < now)
            .order_by(passes.c.id)
        )

        expired: List[str] = []
        for row in candidates:
            # re-checked per row: a concurrent check-out or earlier sweep may have moved it
            with self.db.get_connection() as conn:
                result = conn.execute(
                    update(passes)
                    .where(
                        passes.c.id == row["id"],
                        passes.c.status.in_(SWEEPABLE_STATUSES),
                        passes.c.valid_to < now,
                    )
                    .values(status="Expired", updated_at=now)
                )
            if result.rowcount == 0:
                continue

            expired.append(row["pass_id"])
            logger.info("Pass %s marked as expired", row["pass_id"])
            self.dispatcher.submit(
                self.audit.log_action, None, "Updated", "Pass", row["pass_id"],
                {"status": "Expired", "autoExpired": True},
            )
        return expired
