# =======================================================================================
# gatepass/services/__init__.py - Services Package
# =======================================================================================
from .credential_codec import CredentialCodec
from .approval_engine import ApprovalEngine
from .gate_ledger import GateLedger
from .expiry_sweeper import ExpirySweeper
from .pass_registry import PassRegistry
from .audit_service import AuditService
from .notification_service import NotificationService
from .directory_service import DirectoryService

__all__ = [
    "CredentialCodec", "ApprovalEngine", "GateLedger", "ExpirySweeper",
    "PassRegistry", "AuditService", "NotificationService", "DirectoryService",
]
