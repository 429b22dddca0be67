"""Email notification service: console mock while MAIL_ENABLED is False.

When MAIL_ENABLED is False, email content is written to logs instead of
being sent. Delivery providers are out of scope; with MAIL_ENABLED=True
the message is still only logged, with a warning.
"""
import logging

from app.core.config import settings

logger = logging.getLogger(__name__)


def _emit(recipients: list[str], subject: str, body: str) -> int:
    if not recipients:
        logger.info("Email '%s' has no recipients; skipped", subject)
        return 0

    if settings.MAIL_ENABLED:
        logger.warning("MAIL_ENABLED=True but no transport is configured; logging '%s' instead", subject)

    logger.info(
        "\n"
        "=== EMAIL ===\n"
        "From: %s <%s>\n"
        "To: %s\n"
        "Subject: %s\n"
        "%s\n"
        "=============",
        settings.MAIL_FROM_NAME,
        settings.MAIL_FROM,
        ", ".join(recipients),
        subject,
        body,
    )
    return len(recipients)


# ─── Escalation ───

def send_escalation_notification(recipients: list[str], ticket, rule_name: str, reason: str) -> int:
    """Send (or mock-log) an escalation email. Returns the number of recipients."""
    subject = f"[Escalation] {ticket.ticket_number} ({ticket.priority}): {ticket.subject}"
    body = (
        f"Escalation rule \"{rule_name}\" fired for ticket {ticket.ticket_number}.\n"
        f"Reason: {reason}\n"
        f"Status: {ticket.status}  Priority: {ticket.priority}\n"
        f"View: {settings.FRONTEND_URL}/tickets/{ticket.id}"
    )
    return _emit(recipients, subject, body)
