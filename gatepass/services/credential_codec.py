# =======================================================================================
# gatepass/services/credential_codec.py - Signed QR Credentials
# =======================================================================================
"""
Issues and verifies the signed credential printed on a pass's QR code.

Wire format: compact JSON with the keys passId, type, validFrom, validTo,
status and timestamp (in that order) followed by a `signature` key holding
the lowercase hex HMAC-SHA256 of the exact serialization of the preceding
object. Verification rebuilds that serialization from the extracted fields.
"""
import hashlib
import hmac
import json
import logging
import re
from collections import OrderedDict
from datetime import datetime
from typing import Any, Dict, Optional

import segno

from ..models.enums import ENTRY_STATUSES, PASS_ID_PREFIX, TRANSITIONS, TokenFailure
from ..models.schemas import CredentialPayload, IssuedCredential, PassRecord, TokenVerification
from ..utils.clock import Clock, from_wire, to_epoch_millis, to_wire, utcnow

logger = logging.getLogger(__name__)

PAYLOAD_KEYS = ("passId", "type", "validFrom", "validTo", "status", "timestamp")
SIGNATURE_RE = re.compile(r"[0-9a-f]{64}")


def canonical_json(payload: Dict[str, Any]) -> str:
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


class CredentialCodec:
    """Signs pass authorization facts and verifies presented tokens."""

    def __init__(self, secret: str, clock: Clock = utcnow):
        if not secret:
            raise ValueError("QR_SECRET must be configured to issue credentials")
        self._key = secret.encode("utf-8")
        self.clock = clock

    # ----------------------------------------------------------------------
    # Signing
    # ----------------------------------------------------------------------
    def sign(self, serialized: str) -> str:
        return hmac.new(self._key, serialized.encode("utf-8"), hashlib.sha256).hexdigest()

    def build_payload(self, pass_: PassRecord, status: str, issued_at: datetime) -> "OrderedDict[str, Any]":
        return OrderedDict(
            [
                ("passId", pass_.pass_id),
                ("type", pass_.type),
                ("validFrom", to_wire(pass_.valid_from)),
                ("validTo", to_wire(pass_.valid_to)),
                ("status", status),
                ("timestamp", to_epoch_millis(issued_at)),
            ]
        )

    def issue(
        self, pass_: PassRecord, status: Optional[str] = None, now: Optional[datetime] = None
    ) -> IssuedCredential:
        """Sign the pass as authorized for its window; `status` defaults to the pass's own."""
        issued_at = now or self.clock()
        payload = self.build_payload(pass_, status or pass_.status, issued_at)
        serialized = canonical_json(payload)
        token = canonical_json(OrderedDict([*payload.items(), ("signature", self.sign(serialized))]))

        return IssuedCredential(
            token=token,
            image=self.render(token),
            payload=self._to_model(payload),
        )

    @staticmethod
    def render(token: str) -> str:
        """PNG data URI of the token as a QR code."""
        return segno.make_qr(token, error="h").png_data_uri(scale=6, border=1)

    # ----------------------------------------------------------------------
    # Verification
    # ----------------------------------------------------------------------
    def verify(self, token: str, now: Optional[datetime] = None) -> TokenVerification:
        """Classify a presented token. Never raises."""
        now = now or self.clock()

        payload = self._parse(token)
        if payload is None:
            return self._reject(TokenFailure.INVALID_FORMAT, "Invalid QR code format")

        signature = payload.pop("signature")
        expected = self.sign(canonical_json(payload))
        if not hmac.compare_digest(signature.encode("utf-8"), expected.encode("utf-8")):
            return self._reject(
                TokenFailure.TAMPERED, "Invalid QR signature - QR code has been tampered with"
            )

        data = self._to_model(payload)

        if now > data.valid_to:
            return self._reject(
                TokenFailure.EXPIRED, f"Pass has expired (Expired at: {data.valid_to.isoformat()})", data
            )

        if now < data.valid_from:
            return self._reject(
                TokenFailure.NOT_YET_VALID,
                f"Pass is not valid yet (Starts at: {data.valid_from.isoformat()})",
                data,
            )

        if data.status not in ENTRY_STATUSES:
            return self._reject(
                TokenFailure.WRONG_STATE,
                f"Pass is not in a valid state for entry (Status: {data.status})",
                data,
            )

        return TokenVerification(valid=True, payload=data)

    @staticmethod
    def _parse(token: str) -> Optional["OrderedDict[str, Any]"]:
        """Rebuild the signed payload in canonical key order, or None if malformed."""
        try:
            raw = json.loads(token)
        except (TypeError, ValueError, RecursionError):
            return None

        if not isinstance(raw, dict) or set(raw) != {*PAYLOAD_KEYS, "signature"}:
            return None

        if not all(isinstance(raw[k], str) for k in ("passId", "type", "validFrom", "validTo", "status", "signature")):
            return None
        # bool is an int subclass
        if not isinstance(raw["timestamp"], int) or isinstance(raw["timestamp"], bool):
            return None
        if raw["type"] not in PASS_ID_PREFIX or raw["status"] not in TRANSITIONS:
            return None

        try:
            from_wire(raw["validFrom"])
            from_wire(raw["validTo"])
        except ValueError:
            return None

        if not SIGNATURE_RE.fullmatch(raw["signature"]):
            return None

        payload = OrderedDict((k, raw[k]) for k in PAYLOAD_KEYS)
        # lone surrogates are legal JSON escapes but cannot be signed
        try:
            canonical_json(payload).encode("utf-8")
        except UnicodeEncodeError:
            return None

        payload["signature"] = raw["signature"]
        return payload

    @staticmethod
    def _to_model(payload: Dict[str, Any]) -> CredentialPayload:
        return CredentialPayload(
            pass_id=payload["passId"],
            type=payload["type"],
            valid_from=from_wire(payload["validFrom"]),
            valid_to=from_wire(payload["validTo"]),
            status=payload["status"],
            issued_at_ms=payload["timestamp"],
        )

    @staticmethod
    def _reject(
        reason: TokenFailure, message: str, payload: Optional[CredentialPayload] = None
    ) -> TokenVerification:
        logger.debug("credential rejected: %s", reason.value)
        return TokenVerification(valid=False, reason=reason, message=message, payload=payload)
