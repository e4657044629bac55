# =======================================================================================
# gatepass/workers/__init__.py - Workers Package
# =======================================================================================
from .outbound_worker import OutboundDispatcher
from .expiry_worker import ExpiryWorker

__all__ = ["OutboundDispatcher", "ExpiryWorker"]
