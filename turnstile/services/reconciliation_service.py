"""Reconciliation engine: the single entry point every confirmation source calls.

Webhook, buyer poll and sweep all end up in ``ReconciliationEngine.confirm``.
The decision is taken against the persisted order state and re-checked by the
ledger's compare-and-swap commit, so any number of engines may run at once.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from turnstile.core.errors import InvalidError
from turnstile.models.order import Order, PaymentStatus
from turnstile.models.ticket import Ticket
from turnstile.services import ledger_service
from turnstile.services.dedup_cache import DedupCache, build_dedup_cache, dedup_key
from turnstile.services.notification_service import NotificationDispatcher, notify_order, retrieval_url
from turnstile.services.provider_adapter import CanonicalStatus

logger = logging.getLogger(__name__)

SOURCES = ("webhook", "poll", "sweep", "manual")

_FAILURE_TARGET = {
    CanonicalStatus.REJECTED: PaymentStatus.FAILED,
    CanonicalStatus.REFUNDED: PaymentStatus.REFUNDED,
}


@dataclass
class ConfirmResult:
    accepted: bool
    already_processed: bool
    payment_status: str
    order_number: str = ""
    access_token: str | None = None
    notifications: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "accepted": self.accepted,
            "alreadyProcessed": self.already_processed,
            "paymentStatus": self.payment_status,
            "orderNumber": self.order_number,
        }


class ReconciliationEngine:
    def __init__(self, dedup: DedupCache, dispatcher: NotificationDispatcher | None = None):
        self.dedup = dedup
        self.dispatcher = dispatcher

    def confirm(
        self,
        db: Session,
        order_id: str,
        provider_payment_id: str | None,
        status: CanonicalStatus,
        source: str,
        raw_status: str | None = None,
    ) -> ConfirmResult:
        status = CanonicalStatus(status)
        key = dedup_key(provider_payment_id, order_id) if provider_payment_id else None

        if key and self.dedup.seen(key):
            order = ledger_service.get_order(db, order_id)
            logger.info(f"[{source}] Duplicate confirmation for order {order.order_number} absorbed by cache")
            return ConfirmResult(
                accepted=False,
                already_processed=True,
                payment_status=order.payment_status,
                order_number=order.order_number,
                access_token=order.access_token,
            )

        order = ledger_service.get_order(db, order_id)
        ticket_count = db.execute(select(func.count(Ticket.id)).where(Ticket.order_id == order_id)).scalar_one()
        if ticket_count == 0:
            raise InvalidError("Order has no tickets", {"orderId": order_id})

        if order.payment_status == PaymentStatus.COMPLETED:
            # COMPLETED absorbs everything, including later rejections and refunds
            if status != CanonicalStatus.APPROVED:
                logger.warning(f"[{source}] Ignoring {status.value} for completed order {order.order_number}")
            if key:
                self.dedup.mark(key)
            return ConfirmResult(
                accepted=False,
                already_processed=True,
                payment_status=PaymentStatus.COMPLETED,
                order_number=order.order_number,
                access_token=order.access_token,
            )

        if status == CanonicalStatus.PENDING:
            logger.info(f"[{source}] Order {order.order_number} still pending at provider")
            return ConfirmResult(accepted=True, already_processed=False, payment_status=order.payment_status, order_number=order.order_number)

        if status in _FAILURE_TARGET:
            outcome = ledger_service.commit_failure(db, order_id, _FAILURE_TARGET[status], provider_payment_id, raw_status, source=source)
            if outcome.committed:
                logger.info(f"[{source}] Order {order.order_number} -> {outcome.payment_status}, tickets cancelled")
            return ConfirmResult(
                accepted=outcome.committed,
                already_processed=not outcome.committed,
                payment_status=outcome.payment_status,
                order_number=order.order_number,
            )

        outcome = ledger_service.commit_approval(db, order_id, provider_payment_id, raw_status, source=source)
        if key:
            self.dedup.mark(key)
        result = ConfirmResult(
            accepted=outcome.committed,
            already_processed=not outcome.committed,
            payment_status=outcome.payment_status,
            order_number=order.order_number,
            access_token=outcome.access_token,
        )
        if not outcome.committed:
            logger.info(f"[{source}] Order {order.order_number} was completed by a concurrent writer")
            return result

        logger.info(f"[{source}] Order {order.order_number} completed")
        result.notifications = self._notify(db, order_id, outcome.access_token, source)
        return result

    def _notify(self, db: Session, order_id: str, token: str | None, source: str) -> dict[str, str]:
        if self.dispatcher is None:
            return {}
        try:
            order = ledger_service.get_order(db, order_id)
            return notify_order(db, self.dispatcher, order)
        except Exception:
            # the order stays COMPLETED; ops can resend with the stored token
            db.rollback()
            url = retrieval_url(token) if token else "(no token)"
            logger.exception(f"[{source}] Notification for order {order_id} failed; manual replay with {url}")
            return {}


_engine: ReconciliationEngine | None = None


def get_default_engine() -> ReconciliationEngine:
    global _engine
    if _engine is None:
        _engine = ReconciliationEngine(build_dedup_cache(), NotificationDispatcher())
    return _engine
