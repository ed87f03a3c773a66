"""Best-effort delivery of ticket links after an order is paid.

Nothing here can affect the ledger: the order is already committed when the
dispatcher runs, and every failure is logged together with the retrieval URL
so it can be replayed.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy.orm import Session

from turnstile.core.config import settings
from turnstile.models.order import Order
from turnstile.services import email_service, whatsapp_service
from turnstile.services.settings_service import get_event_info

logger = logging.getLogger(__name__)

SENT = "sent"
FAILED = "failed"
SKIPPED = "skipped"


@dataclass
class Recipient:
    name: str
    email: str
    phone: str = ""


@dataclass
class OrderSummary:
    order_number: str
    ticket_count: int
    event_name: str
    event_date: str
    event_location: str
    ticket_codes: list[str] = field(default_factory=list)


def retrieval_url(token: str) -> str:
    base = (settings.PUBLIC_BASE_URL or "").rstrip("/")
    return f"{base}/api/v1/public/tickets/download/{token}"


def summarize(db: Session, order: Order) -> tuple[Recipient, OrderSummary]:
    event = get_event_info(db)
    tickets = list(order.tickets)
    return (
        Recipient(name=order.buyer_name, email=order.buyer_email, phone=order.buyer_phone or ""),
        OrderSummary(
            order_number=order.order_number,
            ticket_count=len(tickets),
            event_name=event["name"],
            event_date=event["date"],
            event_location=event["location"],
            ticket_codes=[t.code for t in tickets],
        ),
    )


def render_email(recipient: Recipient, summary: OrderSummary, url: str) -> tuple[str, str]:
    subject = f"{summary.event_name}: your tickets for order {summary.order_number}"
    lines = [
        f"Hi {recipient.name},",
        "",
        f"Your payment for order {summary.order_number} is confirmed.",
        f"Tickets: {summary.ticket_count}",
        f"Event: {summary.event_name}",
        f"Date: {summary.event_date}",
    ]
    if summary.event_location:
        lines.append(f"Location: {summary.event_location}")
    lines += ["", "Download your tickets (PDF with one QR code per ticket):", url, ""]
    if summary.ticket_codes:
        lines.append("Manual entry codes: " + ", ".join(summary.ticket_codes))
    lines += ["", "Keep this link private: anyone holding it can open your tickets."]
    return subject, "\n".join(lines)


class NotificationDispatcher:
    def send(self, db: Session, recipient: Recipient, summary: OrderSummary, url: str) -> dict[str, str]:
        results = {"email": SKIPPED, "whatsapp": SKIPPED}

        if recipient.email:
            subject, body = render_email(recipient, summary, url)
            try:
                _, ok = email_service.queue_email(db, recipient.email, subject, body, related_order_number=summary.order_number)
                results["email"] = SENT if ok else FAILED
            except Exception:
                logger.exception(f"Email dispatch for order {summary.order_number} failed; replay with {url}")
                results["email"] = FAILED

        phone = whatsapp_service.normalize_phone(recipient.phone, settings.DEFAULT_PHONE_PREFIX)
        if phone and whatsapp_service.is_configured():
            variables = {
                "1": recipient.name,
                "2": str(summary.ticket_count),
                "3": summary.event_name,
                "4": summary.event_date,
                "5": summary.event_location,
                "6": summary.order_number,
                "7": url,
            }
            try:
                ok = whatsapp_service.queue_whatsapp(db, phone, variables, related_order_number=summary.order_number)
                results["whatsapp"] = SENT if ok else FAILED
            except Exception:
                logger.exception(f"WhatsApp dispatch for order {summary.order_number} failed")
                results["whatsapp"] = FAILED

        if results["email"] != SENT:
            logger.error(f"Order {summary.order_number}: email not delivered; buyer must use {url}")
        logger.info(f"Order {summary.order_number} notifications: email={results['email']} whatsapp={results['whatsapp']}")
        return results


def notify_order(db: Session, dispatcher: NotificationDispatcher, order: Order) -> dict[str, str]:
    """Send the ticket link for a paid order using its persisted token."""
    if not order.access_token:
        raise ValueError(f"order {order.order_number} has no access token")
    recipient, summary = summarize(db, order)
    return dispatcher.send(db, recipient, summary, retrieval_url(order.access_token))
