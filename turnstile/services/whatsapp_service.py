import json
import logging
import re
import uuid
from datetime import datetime, timezone

import requests
from sqlalchemy.orm import Session

from turnstile.core.config import settings
from turnstile.models.notification_log import NotificationLog

logger = logging.getLogger(__name__)

TWILIO_API = "https://api.twilio.com/2010-04-01"


def is_configured() -> bool:
    return bool(settings.TWILIO_ACCOUNT_SID and settings.TWILIO_AUTH_TOKEN and settings.TWILIO_WHATSAPP_FROM and settings.TWILIO_CONTENT_SID)


def normalize_phone(phone: str, default_prefix: str = "+54") -> str:
    digits = re.sub(r"[^0-9+]", "", phone or "")
    if not digits:
        return ""
    if not digits.startswith("+"):
        digits = default_prefix + digits
    return digits


def send_whatsapp(to_phone: str, variables: dict[str, str]) -> str:
    """Send the approved content template; returns the Twilio message SID."""
    sid = settings.TWILIO_ACCOUNT_SID
    from_number = settings.TWILIO_WHATSAPP_FROM
    if not from_number.startswith("whatsapp:"):
        from_number = f"whatsapp:{from_number}"
    r = requests.post(
        f"{TWILIO_API}/Accounts/{sid}/Messages.json",
        data={
            "From": from_number,
            "To": f"whatsapp:{to_phone}",
            "ContentSid": settings.TWILIO_CONTENT_SID,
            "ContentVariables": json.dumps(variables),
        },
        auth=(sid, settings.TWILIO_AUTH_TOKEN),
        timeout=20,
    )
    if r.status_code >= 400:
        raise RuntimeError(f"Twilio error {r.status_code}: {r.text}")
    return str(r.json().get("sid") or "")


def queue_whatsapp(db: Session, to_phone: str, variables: dict[str, str], related_order_number: str = "") -> bool:
    """Log, then send once. Template messages are not retried by the worker."""
    nid = str(uuid.uuid4())
    db.add(NotificationLog(
        id=nid,
        channel="whatsapp",
        recipient=to_phone,
        subject="ticket template",
        body=json.dumps(variables),
        status="queued",
        related_order_number=related_order_number,
    ))
    db.commit()
    try:
        message_sid = send_whatsapp(to_phone, variables)
    except Exception as e:
        logger.warning(f"WhatsApp to {to_phone} for order {related_order_number} failed: {e}")
        log = db.get(NotificationLog, nid)
        if log:
            log.status = "failed"
            log.error = str(e)[:500]
            db.commit()
        return False
    logger.info(f"WhatsApp sent to {to_phone} for order {related_order_number} ({message_sid})")
    log = db.get(NotificationLog, nid)
    if log:
        log.status = "sent"
        log.sent_at = datetime.now(timezone.utc)
        db.commit()
    return True
