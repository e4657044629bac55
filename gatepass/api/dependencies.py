# =======================================================================================
# gatepass/api/dependencies.py - FastAPI Dependencies
# =======================================================================================
from typing import Callable, Optional
from fastapi import Depends, Header, HTTPException, Request, status
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.engine import Connection
from ..models.schemas import Actor
from ..utils.exceptions import GatePassError

def get_services(request: Request):
    """Service container built by create_app."""
    return request.app.state.services

def get_db_connection(request: Request) -> Connection:
    """Dependency to get database connection."""
    try:
        with request.app.state.services.db.get_connection() as conn:
            yield conn
    except (HTTPException, GatePassError):
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Database connection error: {str(e)}")

def get_actor(
    x_actor_id: Optional[str] = Header(None),
    x_actor_role: Optional[str] = Header(None),
) -> Actor:
    """Caller identity, asserted by the upstream gateway and trusted as-is."""
    if not x_actor_id or not x_actor_role:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing actor identity")
    try:
        return Actor(id=int(x_actor_id), role=x_actor_role)
    except (ValueError, PydanticValidationError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid actor identity")

def require_roles(*roles: str) -> Callable[..., Actor]:
    def _guard(actor: Actor = Depends(get_actor)) -> Actor:
        if actor.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Role {actor.role} is not allowed to perform this action",
            )
        return actor
    return _guard
