# =======================================================================================
# gatepass/services/audit_service.py - Append-only Audit Trail
# =======================================================================================
import logging
from typing import Any, Dict, List, Optional
from sqlalchemy import insert, select
from sqlalchemy.engine import Connection
from ..database import DatabaseManager, db_manager
from ..models.enums import AuditAction, AuditEntity
from ..models.tables import audit_logs
from ..utils.clock import Clock, utcnow

logger = logging.getLogger(__name__)


class AuditService:
    """Writes immutable audit records in their own transaction."""

    def __init__(self, db: DatabaseManager = None, clock: Clock = utcnow):
        self.db = db or db_manager
        self.clock = clock

    def log_action(
        self,
        actor_id: Optional[int],
        action: AuditAction,
        entity_type: AuditEntity,
        entity_id: str,
        changes: Optional[Dict[str, Any]] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> None:
        """Append an audit record. Failures are logged, never raised."""
        try:
            with self.db.get_connection() as conn:
                conn.execute(
                    insert(audit_logs).values(
                        actor_id=actor_id,
                        action=action,
                        entity_type=entity_type,
                        entity_id=str(entity_id),
                        changes=changes or {},
                        ip_address=ip_address,
                        user_agent=user_agent[:255] if user_agent else None,
                        created_at=self.clock(),
                    )
                )
            logger.debug("Audit log created: %s on %s %s by %s", action, entity_type, entity_id, actor_id)
        except Exception:
            logger.exception("Audit logging error: %s on %s %s", action, entity_type, entity_id)

    def list_for(self, conn: Connection, entity_type: AuditEntity, entity_id: str) -> List[Dict[str, Any]]:
        rows = conn.execute(
            select(audit_logs)
            .where(audit_logs.c.entity_type == entity_type, audit_logs.c.entity_id == str(entity_id))
            .order_by(audit_logs.c.id)
        ).mappings().all()
        return [dict(r) for r in rows]
