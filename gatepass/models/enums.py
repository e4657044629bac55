# =======================================================================================
# gatepass/models/enums.py - Enums and Constants
# =======================================================================================
from enum import Enum
from typing import Dict, FrozenSet, Literal, Tuple

# Type aliases for better type hints
PassType = Literal["Employee", "Visitor", "Vehicle", "Material"]
PassStatus = Literal[
    "Pending", "Approved", "Rejected", "Active", "CheckedOut", "Expired", "Cancelled"
]
GateEventType = Literal["CheckIn", "CheckOut", "Denied"]
Decision = Literal["Approved", "Rejected"]
Role = Literal["Admin", "Approver", "Requestor", "Security"]
AuditAction = Literal[
    "Created", "Updated", "Approved", "Rejected", "Cancelled",
    "Scanned", "CheckedIn", "CheckedOut", "Denied",
]
AuditEntity = Literal["Pass", "User", "Tenant", "Gate"]

PASS_ID_PREFIX: Dict[str, str] = {
    "Employee": "EMP",
    "Visitor": "VIS",
    "Vehicle": "VEH",
    "Material": "MAT",
}

# Statuses a credential (and a live pass) must hold to pass through a gate
ENTRY_STATUSES: Tuple[str, ...] = ("Approved", "Active", "CheckedOut")

# Statuses the expiry sweeper retires once validTo has passed
SWEEPABLE_STATUSES: Tuple[str, ...] = ("Approved", "Active")

PASSAGE_EVENTS: Tuple[str, ...] = ("CheckIn", "CheckOut")

# status -> statuses it may move to
TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "Pending": frozenset({"Approved", "Rejected", "Cancelled", "Expired"}),
    "Approved": frozenset({"Active", "Expired"}),
    "Active": frozenset({"Active", "CheckedOut", "Expired"}),
    "CheckedOut": frozenset({"Active", "Expired"}),
    "Rejected": frozenset(),
    "Cancelled": frozenset(),
    "Expired": frozenset(),
}


def sources_for(target: str) -> Tuple[str, ...]:
    """Statuses from which `target` is reachable in one transition."""
    return tuple(sorted(s for s, targets in TRANSITIONS.items() if target in targets))


class TokenFailure(str, Enum):
    """Classification of a rejected credential."""
    INVALID_FORMAT = "invalid_format"
    TAMPERED = "tampered"
    EXPIRED = "expired"
    NOT_YET_VALID = "not_yet_valid"
    WRONG_STATE = "wrong_state"
