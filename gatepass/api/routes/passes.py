# =======================================================================================
# gatepass/api/routes/passes.py - Pass Endpoints
# =======================================================================================
from typing import Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.engine import Connection
from ...models.enums import PassStatus, PassType
from ...models.schemas import Actor, CreatePassRequest, DecisionRequest, PassListResponse, PassRecord
from ...utils.exceptions import AccessDeniedError
from ..dependencies import get_actor, get_db_connection, get_services, require_roles

router = APIRouter()


@router.post("/passes", response_model=PassRecord, status_code=status.HTTP_201_CREATED)
def create_pass(
    request: CreatePassRequest,
    actor: Actor = Depends(require_roles("Requestor", "Admin")),
    services=Depends(get_services),
):
    """Create a pass and submit it for approval."""
    record = services.registry.create_pass(request, actor)
    return services.approvals.submit(record.pass_id)


@router.get("/passes", response_model=PassListResponse)
def list_passes(
    status: Optional[PassStatus] = None,
    type: Optional[PassType] = None,
    tenant_id: Optional[int] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    actor: Actor = Depends(get_actor),
    conn: Connection = Depends(get_db_connection),
    services=Depends(get_services),
):
    """List passes visible to the caller: own passes for requestors, own tenant for staff."""
    requester_id = None
    if actor.role == "Requestor":
        requester_id = actor.id
        tenant_id = None
    elif not actor.is_admin:
        user = services.directory.get_user(conn, actor.id)
        if user is None:
            raise AccessDeniedError("Unknown actor", actor_id=actor.id)
        tenant_id = user.tenant_id

    records, total = services.registry.list_passes(
        conn,
        tenant_id=tenant_id,
        requester_id=requester_id,
        status=status,
        pass_type=type,
        limit=limit,
        offset=(page - 1) * limit,
    )
    return PassListResponse(passes=records, total=total)


@router.get("/passes/{pass_id}", response_model=PassRecord)
def get_pass(
    pass_id: str,
    actor: Actor = Depends(get_actor),
    conn: Connection = Depends(get_db_connection),
    services=Depends(get_services),
):
    record = services.registry.get_pass(conn, pass_id)
    if actor.role == "Requestor" and record.requester_id != actor.id:
        raise AccessDeniedError("Not authorized to view this pass", pass_id=pass_id)
    return record


@router.post("/passes/{pass_id}/approve", response_model=PassRecord)
def approve_pass(
    pass_id: str,
    request: DecisionRequest,
    actor: Actor = Depends(require_roles("Approver", "Admin")),
    services=Depends(get_services),
):
    return services.approvals.decide(pass_id, actor.id, "Approved", request.remarks)


@router.post("/passes/{pass_id}/reject", response_model=PassRecord)
def reject_pass(
    pass_id: str,
    request: DecisionRequest,
    actor: Actor = Depends(require_roles("Approver", "Admin")),
    services=Depends(get_services),
):
    return services.approvals.decide(pass_id, actor.id, "Rejected", request.remarks)


@router.delete("/passes/{pass_id}", response_model=PassRecord)
def cancel_pass(
    pass_id: str,
    actor: Actor = Depends(require_roles("Requestor", "Admin")),
    services=Depends(get_services),
):
    """Cancel a pending pass."""
    return services.approvals.cancel(pass_id, actor)
