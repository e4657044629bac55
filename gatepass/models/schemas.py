
# =======================================================================================
# gatepass/models/schemas.py - Pydantic Models
# =======================================================================================
from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from .enums import Decision, GateEventType, PassStatus, PassType, Role, TokenFailure
from ..utils.clock import to_naive_utc

# ========== Pass details (tagged union on `type`) ==========

class EmployeeDetails(BaseModel):
    type: Literal["Employee"] = "Employee"
    employee_id: str = Field(..., min_length=1)
    pass_kind: Literal["OnDuty", "ShortExit", "LateEntry"]


class VisitorPerson(BaseModel):
    name: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    company: Optional[str] = None
    photo: Optional[str] = None
    id_type: Optional[
        Literal["Aadhar", "PAN", "DrivingLicense", "Passport", "VoterID", "Other"]
    ] = None
    id_number: Optional[str] = None


class VisitorDetails(BaseModel):
    type: Literal["Visitor"] = "Visitor"
    persons: List[VisitorPerson] = Field(..., min_length=1)
    num_people: Optional[int] = Field(None, ge=1)

    @model_validator(mode="after")
    def _default_headcount(self):
        if self.num_people is None:
            self.num_people = len(self.persons)
        return self


class VehicleDetails(BaseModel):
    type: Literal["Vehicle"] = "Vehicle"
    vehicle_number: str = Field(..., min_length=1)
    vehicle_type: Literal["Car", "Bike", "Truck", "Van", "Other"]
    driver_name: str = Field(..., min_length=1)
    driver_phone: str = Field(..., min_length=1)
    driver_license: Optional[str] = None
    linked_pass_id: Optional[str] = None

    @field_validator("vehicle_number")
    @classmethod
    def _upper(cls, value: str) -> str:
        return value.strip().upper()


class MaterialItem(BaseModel):
    item_name: str = Field(..., min_length=1)
    quantity: int = Field(..., ge=1)
    serial_tag: Optional[str] = None
    returnable: bool = False
    expected_return_date: Optional[datetime] = None
    receiver: Optional[str] = None
    department: Optional[str] = None


class MaterialDetails(BaseModel):
    type: Literal["Material"] = "Material"
    materials: List[MaterialItem] = Field(..., min_length=1)


PassDetails = Annotated[
    Union[EmployeeDetails, VisitorDetails, VehicleDetails, MaterialDetails],
    Field(discriminator="type"),
]

# ========== Identity / policy collaborators ==========

class Actor(BaseModel):
    """Authenticated caller, as supplied by the identity layer."""
    id: int
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role == "Admin"


class UserInfo(BaseModel):
    id: int
    tenant_id: Optional[int] = None
    name: str
    email: str
    phone: Optional[str] = None
    role: Role
    is_active: bool = True


class TenantPolicy(BaseModel):
    tenant_id: int
    approval_levels: int = Field(1, ge=1, le=3)
    auto_approve_employee: bool = False
    # hours, keyed by lower-cased pass type
    default_pass_expiry: Dict[str, int] = Field(
        default_factory=lambda: {"employee": 24, "visitor": 12, "vehicle": 12, "material": 48}
    )

    def default_expiry_hours(self, pass_type: PassType) -> int:
        return self.default_pass_expiry.get(pass_type.lower(), 12)


class GateInfo(BaseModel):
    gate_id: str
    tenant_id: int
    site_id: str
    gate_name: str

# ========== Pass records ==========

class ApprovalRecord(BaseModel):
    approver_id: Optional[int] = None
    approver_name: str
    level: int
    remarks: str = ""
    approved_at: datetime


class RejectionRecord(BaseModel):
    rejected_by: int
    rejected_by_name: str
    remarks: str = ""
    rejected_at: datetime


class PassRecord(BaseModel):
    """Snapshot of a pass as stored in the registry."""

    key: int
    pass_id: str
    type: PassType
    tenant_id: int
    site_id: str
    gate_id: Optional[str] = None
    requester_id: int
    host_id: Optional[int] = None
    purpose: str
    remarks: str
    dispatch_email: Optional[str] = None
    valid_from: datetime
    valid_to: datetime
    details: PassDetails
    status: PassStatus
    approval_level: int
    required_approval_levels: int
    submitted_at: Optional[datetime] = None
    approvals: List[ApprovalRecord] = Field(default_factory=list)
    rejection: Optional[RejectionRecord] = None
    credential_token: Optional[str] = None
    credential_image: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class CreatePassRequest(BaseModel):
    """Create pass request model."""
    site_id: str = Field(..., min_length=1)
    gate_id: Optional[str] = None
    host_id: Optional[int] = None
    purpose: str = Field(..., min_length=1)
    remarks: str = Field(..., min_length=1, description="Mandatory remarks")
    dispatch_email: Optional[str] = None
    valid_from: datetime
    valid_to: Optional[datetime] = Field(
        None, description="Defaults to the tenant's expiry window for the pass type"
    )
    details: PassDetails

    @field_validator("valid_from", "valid_to")
    @classmethod
    def _naive_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(value) if value is not None else None

    @field_validator("purpose", "remarks")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be empty")
        return value.strip()

    @field_validator("dispatch_email")
    @classmethod
    def _lower(cls, value: Optional[str]) -> Optional[str]:
        return value.strip().lower() if value else None


class DecisionRequest(BaseModel):
    remarks: str = Field("", max_length=1000)


class PassListResponse(BaseModel):
    passes: List[PassRecord]
    total: int

# ========== Credentials ==========

class CredentialPayload(BaseModel):
    pass_id: str
    type: PassType
    valid_from: datetime
    valid_to: datetime
    status: PassStatus
    issued_at_ms: int


class IssuedCredential(BaseModel):
    token: str
    image: str
    payload: CredentialPayload


class TokenVerification(BaseModel):
    valid: bool
    payload: Optional[CredentialPayload] = None
    reason: Optional[TokenFailure] = None
    message: Optional[str] = None

# ========== Gate ledger ==========

class GateEventRecord(BaseModel):
    id: int
    pass_id: str
    gate_id: str
    gate_name: str
    operator_id: int
    event_type: GateEventType
    check_in_at: Optional[datetime] = None
    check_out_at: Optional[datetime] = None
    deny_reason: Optional[str] = None
    created_at: datetime


class ScanRequest(BaseModel):
    """QR scan request model."""
    token: str = Field(..., min_length=1, description="Raw QR payload")
    gate_id: str = Field(..., min_length=1)


class GateActionRequest(BaseModel):
    pass_id: str = Field(..., min_length=1)
    gate_id: str = Field(..., min_length=1)


class DenyRequest(GateActionRequest):
    reason: str = Field(..., min_length=1)


class ScanResult(BaseModel):
    # the key is named pass_ in Python, `pass` on the wire
    model_config = ConfigDict(populate_by_name=True)

    pass_: PassRecord = Field(..., alias="pass")
    payload: CredentialPayload
    can_check_in: bool
    can_check_out: bool


class CheckInResult(BaseModel):
    event: GateEventRecord
    pass_: PassRecord = Field(..., alias="pass")
    model_config = ConfigDict(populate_by_name=True)


class CheckOutResult(BaseModel):
    check_in_event: GateEventRecord
    check_out_event: GateEventRecord
    pass_: PassRecord = Field(..., alias="pass")
    model_config = ConfigDict(populate_by_name=True)


class SweepReport(BaseModel):
    ran_at: datetime
    skipped: bool = False
    expired: List[str] = Field(default_factory=list)

# ========== Misc ==========

class HealthResponse(BaseModel):
    status: str                 # "ok" | "error"
    dataAvailable: bool
    message: Optional[str] = None


class ErrorResponse(BaseModel):
    error: str
    message: str
    context: Dict[str, Any] = Field(default_factory=dict)
