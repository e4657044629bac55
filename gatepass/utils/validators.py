# =======================================================================================
# gatepass/utils/validators.py - Validation Helpers
# =======================================================================================

from datetime import datetime
from sqlalchemy import select
from sqlalchemy.engine import Connection
from .exceptions import InvalidGateError, ValidationError
from ..models.schemas import GateInfo
from ..models.tables import gates


class TopologyValidator:
    """Validates gates against the site topology."""

    @staticmethod
    def resolve_gate(conn: Connection, gate_id: str) -> GateInfo:
        """Look up an active gate."""
        gate = conn.execute(
            select(gates).where(gates.c.gate_id == gate_id)
        ).mappings().first()

        if not gate:
            raise InvalidGateError(f"Gate {gate_id} not found", gate_id=gate_id)

        if not gate["is_active"]:
            raise InvalidGateError(f"Gate {gate_id} is inactive", gate_id=gate_id)

        return GateInfo(
            gate_id=gate["gate_id"],
            tenant_id=gate["tenant_id"],
            site_id=gate["site_id"],
            gate_name=gate["gate_name"],
        )


def validate_window(valid_from: datetime, valid_to: datetime) -> None:
    """validTo must be strictly after validFrom."""
    if valid_to <= valid_from:
        raise ValidationError(
            "validTo must be after validFrom",
            valid_from=valid_from.isoformat(),
            valid_to=valid_to.isoformat(),
        )
