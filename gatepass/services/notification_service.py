# =======================================================================================
# gatepass/services/notification_service.py - Email Notifications (best-effort)
# =======================================================================================
import base64
import logging
import smtplib
from email.message import EmailMessage
from typing import Optional
from ..config import config
from ..models.schemas import PassRecord, UserInfo, VisitorPerson

logger = logging.getLogger(__name__)


class NotificationService:
    """Sends approval, status and arrival emails over SMTP.

    When EMAIL_HOST is not configured the message is logged instead of sent.
    Delivery errors are logged; callers never see them.
    """

    def is_configured(self) -> bool:
        return bool(config.EMAIL_HOST)

    # ---------- public contract ----------

    def notify_approval_requested(self, approver: UserInfo, pass_: PassRecord, requester: Optional[UserInfo]):
        body = (
            f"Dear {approver.name},\n\n"
            "A new gate pass requires your approval:\n\n"
            f"{self._summary(pass_)}"
            f"Requested by: {requester.name if requester else 'N/A'}\n\n"
            f"Review & approve: {config.FRONTEND_URL}/approvals\n"
        )
        self._send(approver.email, f"New Pass Approval Request - {pass_.pass_id}", body)

    def notify_status_changed(self, requester: UserInfo, pass_: PassRecord, status: str, remarks: str = ""):
        body = (
            f"Dear {requester.name},\n\n"
            f"Your gate pass has been {status.lower()}:\n\n"
            f"{self._summary(pass_)}"
            + (f"Remarks: {remarks}\n" if remarks else "")
            + f"\nView full pass details: {config.FRONTEND_URL}/my-requests\n"
        )
        # a dispatch address on the pass overrides the requester's own
        to = pass_.dispatch_email or requester.email
        self._send(to, f"Pass {status} - {pass_.pass_id}", body, qr_data_uri=pass_.credential_image if status == "Approved" else None)

    def notify_arrival(self, host: UserInfo, pass_: PassRecord, visitor: VisitorPerson):
        body = (
            f"Dear {host.name},\n\n"
            "Your visitor has checked in at the gate:\n\n"
            f"Pass ID: {pass_.pass_id}\n"
            f"Visitor Name: {visitor.name}\n"
            f"Company: {visitor.company or 'N/A'}\n"
            f"Phone: {visitor.phone}\n"
        )
        self._send(host.email, f"Visitor Arrived - {pass_.pass_id}", body)

    # ---------- helpers ----------

    @staticmethod
    def _summary(pass_: PassRecord) -> str:
        return (
            f"Pass ID: {pass_.pass_id}\n"
            f"Type: {pass_.type}\n"
            f"Purpose: {pass_.purpose}\n"
            f"Valid From: {pass_.valid_from.isoformat()} UTC\n"
            f"Valid To: {pass_.valid_to.isoformat()} UTC\n"
        )

    def _send(self, to: str, subject: str, body: str, qr_data_uri: Optional[str] = None) -> bool:
        if not self.is_configured():
            logger.info("[email not sent - SMTP not configured] to=%s subject=%s", to, subject)
            return False

        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = config.EMAIL_FROM
        msg["To"] = to
        msg.set_content(body)

        if qr_data_uri and "base64," in qr_data_uri:
            msg.add_attachment(
                base64.b64decode(qr_data_uri.split("base64,", 1)[1]),
                maintype="image", subtype="png", filename="qrcode.png",
            )

        try:
            smtp_cls = smtplib.SMTP_SSL if config.EMAIL_SECURE else smtplib.SMTP
            with smtp_cls(config.EMAIL_HOST, config.EMAIL_PORT, timeout=10) as server:
                if not config.EMAIL_SECURE:
                    server.starttls()
                if config.EMAIL_USER and config.EMAIL_PASSWORD:
                    server.login(config.EMAIL_USER, config.EMAIL_PASSWORD)
                server.send_message(msg)
            logger.info("Email sent to %s: %s", to, subject)
            return True
        except (smtplib.SMTPException, OSError):
            logger.exception("Email sending error to %s", to)
            return False
