# =======================================================================================
# gatepass/__init__.py - Package Initialization
# =======================================================================================
"""
Gate Pass Lifecycle Engine

Issues, approves and redeems time-boxed physical-access passes at guarded
entry points: multi-level approval, signed QR credentials and a gate
check-in/check-out ledger.
"""

__version__ = "1.0.0"
__author__ = "Gate Pass Team"
