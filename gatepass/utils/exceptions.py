# =======================================================================================
# gatepass/utils/exceptions.py - Custom Exceptions
# =======================================================================================
from datetime import datetime
from typing import Any, Dict, Optional

class GatePassError(Exception):
    """Base exception for the gate pass engine."""
    code = "gatepass_error"
    status_code = 400

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = context

class ValidationError(GatePassError):
    """Raised when input is malformed; never reaches the state machine."""
    code = "validation_error"
    status_code = 422

class InvalidGateError(ValidationError):
    """Raised when gate information is invalid."""
    code = "invalid_gate"

class NotFoundError(GatePassError):
    code = "not_found"
    status_code = 404

class AccessDeniedError(GatePassError):
    """Raised when the actor may not perform the operation."""
    code = "access_denied"
    status_code = 403

class InvalidStateError(GatePassError):
    """Raised when an operation is illegal for the pass's current status."""
    code = "invalid_state"
    status_code = 409

    def __init__(self, message: str, status: Optional[str] = None, **context: Any):
        super().__init__(message, status=status, **context)
        self.status = status

class OutsideWindowError(GatePassError):
    code = "outside_window"

    def __init__(self, message: str, valid_from: datetime, valid_to: datetime, **context: Any):
        super().__init__(
            message, valid_from=valid_from.isoformat(), valid_to=valid_to.isoformat(), **context
        )
        self.valid_from = valid_from
        self.valid_to = valid_to

class AlreadyCheckedInError(GatePassError):
    code = "already_checked_in"
    status_code = 409

class NoActiveCheckInError(GatePassError):
    code = "no_active_check_in"
    status_code = 409

class TamperedTokenError(GatePassError):
    code = "tampered_token"
    status_code = 401

class ExpiredTokenError(GatePassError):
    code = "expired_token"

    def __init__(self, message: str, valid_to: datetime, **context: Any):
        super().__init__(message, valid_to=valid_to.isoformat(), **context)
        self.valid_to = valid_to
