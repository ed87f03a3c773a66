from datetime import datetime, timezone
import logging
import smtplib
from email.message import EmailMessage
from sqlalchemy.orm import Session
import uuid
import requests

from turnstile.core.config import settings
from turnstile.models.notification_log import NotificationLog

logger = logging.getLogger(__name__)


def queue_email(db: Session, to_email: str, subject: str, body: str, related_order_number: str = "") -> tuple[str, bool]:
    """Log and attempt immediate send. Body is stored so the worker can retry on failure.

    Returns (log id, sent).
    """
    eid = str(uuid.uuid4())
    db.add(
        NotificationLog(
            id=eid,
            channel="email",
            recipient=to_email,
            subject=subject,
            body=body,
            status="queued",
            related_order_number=related_order_number,
        )
    )
    db.commit()

    sent, error = False, ""
    try:
        send_email(to_email, subject, body)
        sent = True
    except Exception as e:
        # Worker will retry via process_notification_queue
        logger.error(f"Email to {to_email} for order {related_order_number} failed: {e}")
        error = str(e)[:500]
    log = db.get(NotificationLog, eid)
    if log:
        log.status = "sent" if sent else "failed"
        if sent:
            log.sent_at = datetime.now(timezone.utc)
        else:
            log.error = error
        db.commit()
    return eid, sent


def send_email(to_email: str, subject: str, body: str):
    """Send email via SendGrid if configured, otherwise SMTP (MailHog recommended for local)."""

    if settings.SENDGRID_API_KEY:
        _send_via_sendgrid(to_email, subject, body)
        return

    msg = EmailMessage()
    msg["From"] = settings.SMTP_FROM
    msg["To"] = to_email
    msg["Subject"] = subject
    msg.set_content(body)

    with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=10) as smtp:
        if settings.SMTP_USERNAME:
            smtp.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
        smtp.send_message(msg)


def _send_via_sendgrid(to_email: str, subject: str, body: str):
    from_email = settings.SENDGRID_FROM_EMAIL or settings.SMTP_FROM
    payload = {
        "personalizations": [{"to": [{"email": to_email}]}],
        "from": {"email": from_email},
        "subject": subject,
        "content": [{"type": "text/plain", "value": body}],
    }
    r = requests.post(
        "https://api.sendgrid.com/v3/mail/send",
        json=payload,
        headers={"Authorization": f"Bearer {settings.SENDGRID_API_KEY}"},
        timeout=20,
    )
    if r.status_code >= 400:
        raise RuntimeError(f"SendGrid error {r.status_code}: {r.text}")


def process_pending_emails(db: Session, limit: int = 50) -> dict:
    """Process up to `limit` queued or failed emails; retry send and update status. Returns counts."""
    pending = (
        db.query(NotificationLog)
        .filter(
            NotificationLog.channel == "email",
            NotificationLog.status.in_(["queued", "failed"]),
            NotificationLog.body.isnot(None),
            NotificationLog.body != "",
        )
        .order_by(NotificationLog.created_at.asc())
        .limit(limit)
        .all()
    )
    sent, failed = 0, 0
    for log in pending:
        try:
            send_email(log.recipient, log.subject, log.body)
            log.status = "sent"
            log.sent_at = datetime.now(timezone.utc)
            sent += 1
        except Exception as e:
            logger.warning(f"Retry of email {log.id} to {log.recipient} failed: {e}")
            log.status = "failed"
            log.error = str(e)[:500]
            failed += 1
    if pending:
        db.commit()
    return {"processed": len(pending), "sent": sent, "failed": failed}
