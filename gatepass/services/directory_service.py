# =======================================================================================
# gatepass/services/directory_service.py - Users and Tenant Policy Lookups
# =======================================================================================
from typing import List, Optional
from sqlalchemy import select
from sqlalchemy.engine import Connection
from ..models.schemas import TenantPolicy, UserInfo
from ..models.tables import tenants, users
from ..utils.exceptions import NotFoundError


class DirectoryService:
    """Read-only view over the users and tenants the admin screens maintain."""

    @staticmethod
    def _to_user(row) -> UserInfo:
        return UserInfo(
            id=row["id"],
            tenant_id=row["tenant_id"],
            name=row["name"],
            email=row["email"],
            phone=row["phone"],
            role=row["role"],
            is_active=bool(row["is_active"]),
        )

    def get_user(self, conn: Connection, user_id: Optional[int]) -> Optional[UserInfo]:
        """Get user by ID."""
        if user_id is None:
            return None
        row = conn.execute(select(users).where(users.c.id == user_id)).mappings().first()
        return self._to_user(row) if row else None

    def list_approvers(self, conn: Connection, tenant_id: int) -> List[UserInfo]:
        """Every active user holding the approver role for the tenant."""
        rows = conn.execute(
            select(users)
            .where(
                users.c.tenant_id == tenant_id,
                users.c.role == "Approver",
                users.c.is_active.is_(True),
            )
            .order_by(users.c.id)
        ).mappings().all()
        return [self._to_user(r) for r in rows]

    def get_policy(self, conn: Connection, tenant_id: int) -> TenantPolicy:
        row = conn.execute(select(tenants).where(tenants.c.id == tenant_id)).mappings().first()
        if not row or not row["is_active"]:
            raise NotFoundError("Tenant not found", tenant_id=tenant_id)

        policy = TenantPolicy(
            tenant_id=row["id"],
            approval_levels=row["approval_levels"],
            auto_approve_employee=bool(row["auto_approve_employee"]),
        )
        if row["default_pass_expiry"]:
            policy.default_pass_expiry.update(row["default_pass_expiry"])
        return policy
