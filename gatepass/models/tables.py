# =======================================================================================
# gatepass/models/tables.py - Table Definitions (SQLAlchemy Core)
# =======================================================================================
from sqlalchemy import (
    JSON, Boolean, Column, DateTime, ForeignKey, Integer, MetaData, String, Table,
    Text, UniqueConstraint, Index,
)

metadata = MetaData()

tenants = Table(
    "tenants", metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(200), nullable=False),
    Column("approval_levels", Integer, nullable=False, default=1),
    Column("auto_approve_employee", Boolean, nullable=False, default=False),
    # hours per pass type: {"employee": 24, "visitor": 12, ...}
    Column("default_pass_expiry", JSON, nullable=True),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("created_at", DateTime, nullable=True),
)

users = Table(
    "users", metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("tenant_id", Integer, ForeignKey("tenants.id"), nullable=True),
    Column("name", String(200), nullable=False),
    Column("email", String(255), nullable=False),
    Column("phone", String(40), nullable=True),
    Column("role", String(20), nullable=False),
    Column("is_active", Boolean, nullable=False, default=True),
    Index("ix_users_tenant_role", "tenant_id", "role"),
)

gates = Table(
    "gates", metadata,
    Column("gate_id", String(64), primary_key=True),
    Column("tenant_id", Integer, ForeignKey("tenants.id"), nullable=False),
    Column("site_id", String(64), nullable=False),
    Column("gate_name", String(200), nullable=False),
    Column("location", String(255), nullable=True),
    Column("is_active", Boolean, nullable=False, default=True),
)

passes = Table(
    "passes", metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("pass_id", String(32), nullable=False, unique=True),
    Column("pass_type", String(20), nullable=False),
    Column("tenant_id", Integer, ForeignKey("tenants.id"), nullable=False),
    Column("site_id", String(64), nullable=False),
    Column("gate_id", String(64), nullable=True),
    Column("requester_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("host_id", Integer, ForeignKey("users.id"), nullable=True),
    Column("purpose", Text, nullable=False),
    Column("remarks", Text, nullable=False),
    Column("dispatch_email", String(255), nullable=True),
    Column("valid_from", DateTime, nullable=False),
    Column("valid_to", DateTime, nullable=False),
    Column("details", JSON, nullable=False),
    Column("status", String(20), nullable=False, default="Pending"),
    Column("approval_level", Integer, nullable=False, default=0),
    Column("required_approval_levels", Integer, nullable=False, default=1),
    Column("submitted_at", DateTime, nullable=True),
    Column("rejected_by", Integer, nullable=True),
    Column("rejected_by_name", String(200), nullable=True),
    Column("rejection_remarks", Text, nullable=True),
    Column("rejected_at", DateTime, nullable=True),
    Column("credential_token", Text, nullable=True),
    Column("credential_image", Text, nullable=True),
    Column("created_at", DateTime, nullable=False),
    Column("updated_at", DateTime, nullable=False),
    Index("ix_passes_status_valid_to", "status", "valid_to"),
    Index("ix_passes_tenant_site", "tenant_id", "site_id"),
    Index("ix_passes_requester", "requester_id"),
)

pass_approvals = Table(
    "pass_approvals", metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("pass_ref", Integer, ForeignKey("passes.id"), nullable=False),
    # NULL approver = implicit system approval
    Column("approver_id", Integer, nullable=True),
    Column("approver_name", String(200), nullable=False),
    Column("level", Integer, nullable=False),
    Column("remarks", Text, nullable=False, default=""),
    Column("approved_at", DateTime, nullable=False),
    UniqueConstraint("pass_ref", "level", name="uq_pass_approvals_level"),
)

pass_sequences = Table(
    "pass_sequences", metadata,
    Column("pass_type", String(20), primary_key=True),
    Column("day", String(8), primary_key=True),
    Column("last_seq", Integer, nullable=False),
)

gate_events = Table(
    "gate_events", metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("pass_ref", Integer, ForeignKey("passes.id"), nullable=False),
    Column("gate_id", String(64), nullable=False),
    Column("gate_name", String(200), nullable=False),
    Column("operator_id", Integer, nullable=False),
    Column("event_type", String(10), nullable=False),
    Column("check_in_at", DateTime, nullable=True),
    Column("check_out_at", DateTime, nullable=True),
    Column("deny_reason", Text, nullable=True),
    # Holds pass_ref while a CheckIn is open, NULL otherwise: one open session per pass
    Column("open_slot", Integer, nullable=True, unique=True),
    Column("created_at", DateTime, nullable=False),
    Index("ix_gate_events_pass", "pass_ref", "id"),
    Index("ix_gate_events_gate", "gate_id"),
)

audit_logs = Table(
    "audit_logs", metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("actor_id", Integer, nullable=True),
    Column("action", String(20), nullable=False),
    Column("entity_type", String(20), nullable=False),
    Column("entity_id", String(64), nullable=False),
    Column("changes", JSON, nullable=True),
    Column("ip_address", String(64), nullable=True),
    Column("user_agent", String(255), nullable=True),
    Column("created_at", DateTime, nullable=False),
    Index("ix_audit_entity", "entity_type", "entity_id"),
    Index("ix_audit_created", "created_at"),
)
