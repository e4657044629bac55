# =======================================================================================
# gatepass/utils/__init__.py - Utils Package
# =======================================================================================
# validators is imported by path: it depends on models, which depend on utils.clock
from .exceptions import *

__all__ = [
    "GatePassError", "ValidationError", "InvalidGateError", "NotFoundError",
    "AccessDeniedError", "InvalidStateError", "OutsideWindowError",
    "AlreadyCheckedInError", "NoActiveCheckInError", "TamperedTokenError",
    "ExpiredTokenError",
]
