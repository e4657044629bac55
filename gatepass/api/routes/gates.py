# =======================================================================================
# gatepass/api/routes/gates.py - Gate Endpoints
# =======================================================================================
from typing import List, Optional
from fastapi import APIRouter, Depends
from sqlalchemy.engine import Connection
from ...models.schemas import (
    Actor, CheckInResult, CheckOutResult, DenyRequest, GateActionRequest, GateEventRecord,
    ScanRequest, ScanResult,
)
from ..dependencies import get_db_connection, get_services, require_roles

router = APIRouter()
security_only = require_roles("Security", "Admin")


@router.post("/gates/scan", response_model=ScanResult)
def scan(request: ScanRequest, actor: Actor = Depends(security_only), services=Depends(get_services)):
    """Verify a QR token and report which gate action is available."""
    return services.ledger.scan(request.token, request.gate_id, actor.id)


@router.post("/gates/checkin", response_model=CheckInResult)
def check_in(request: GateActionRequest, actor: Actor = Depends(security_only), services=Depends(get_services)):
    return services.ledger.check_in(request.pass_id, request.gate_id, actor.id)


@router.post("/gates/checkout", response_model=CheckOutResult)
def check_out(request: GateActionRequest, actor: Actor = Depends(security_only), services=Depends(get_services)):
    return services.ledger.check_out(request.pass_id, request.gate_id, actor.id)


@router.post("/gates/deny", response_model=GateEventRecord)
def deny(request: DenyRequest, actor: Actor = Depends(security_only), services=Depends(get_services)):
    return services.ledger.deny(request.pass_id, request.gate_id, actor.id, request.reason)


@router.get("/gates/active", response_model=List[GateEventRecord])
def active_sessions(
    gate_id: Optional[str] = None,
    actor: Actor = Depends(security_only),
    conn: Connection = Depends(get_db_connection),
    services=Depends(get_services),
):
    """Open check-ins, optionally for one gate."""
    return services.ledger.active_sessions(conn, gate_id)
