# =======================================================================================
# gatepass/models/__init__.py - Models Package
# =======================================================================================
from .schemas import *
from .enums import *

__all__ = [
    "PassRecord", "CreatePassRequest", "DecisionRequest", "PassDetails",
    "EmployeeDetails", "VisitorDetails", "VehicleDetails", "MaterialDetails",
    "Actor", "UserInfo", "TenantPolicy", "GateInfo", "CredentialPayload",
    "IssuedCredential", "TokenVerification", "GateEventRecord", "ScanResult",
    "CheckInResult", "CheckOutResult", "SweepReport",
    "PassType", "PassStatus", "GateEventType", "Decision", "Role", "TokenFailure",
    "ENTRY_STATUSES", "SWEEPABLE_STATUSES", "TRANSITIONS", "sources_for",
]
