"""Confirmation sources: provider push, buyer poll and the periodic sweep.

Each source turns its trigger into a ``ConfirmationRequest`` and hands it to the
same ``ReconciliationEngine.confirm``. Provider queries always finish before
the engine opens a write transaction.
"""
from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from turnstile.core.config import settings
from turnstile.core.errors import (
    FatalError,
    InvalidError,
    NotFoundError,
    RateLimitedError,
    TransientError,
    TurnstileError,
    UnauthorizedError,
)
from turnstile.core.security import verify_webhook_signature
from turnstile.models.order import Order, PaymentStatus
from turnstile.services import ledger_service
from turnstile.services.audit_service import log_audit
from turnstile.services.provider_adapter import CanonicalStatus
from turnstile.services.providers import PaymentProvider, ProviderError, ProviderNotFound, ProviderPayment, get_provider
from turnstile.services.reconciliation_service import ConfirmResult, ReconciliationEngine

logger = logging.getLogger(__name__)


@dataclass
class ConfirmationRequest:
    order_id: str
    provider_payment_id: str | None
    status: CanonicalStatus
    source: str
    raw_status: str | None = None

    @classmethod
    def from_payment(cls, payment: ProviderPayment, source: str, order_id: str | None = None) -> "ConfirmationRequest":
        target = order_id or payment.order_id
        if not target:
            raise InvalidError("payment carries no order reference", {"paymentId": payment.payment_id})
        if payment.order_id and payment.order_id != target:
            raise InvalidError("payment belongs to another order", {"paymentId": payment.payment_id, "orderId": target})
        return cls(order_id=target, provider_payment_id=payment.payment_id, status=payment.status,
                   source=source, raw_status=payment.raw_status)


def submit(db: Session, engine: ReconciliationEngine, req: ConfirmationRequest) -> ConfirmResult:
    return engine.confirm(db, req.order_id, req.provider_payment_id, req.status, req.source, raw_status=req.raw_status)


# ---------------------------------------------------------------- push


def parse_webhook_payload(body: Any) -> str:
    """Return the provider payment id announced by a push notification."""
    if not isinstance(body, dict):
        raise InvalidError("webhook body must be a JSON object")
    payment_id = None
    data = body.get("data")
    if body.get("type") == "payment" and isinstance(data, dict):
        payment_id = data.get("id")
    if payment_id in (None, "") and body.get("id") not in (None, ""):
        payment_id = body.get("id")
    if payment_id in (None, "") or isinstance(payment_id, (dict, list, bool)):
        raise InvalidError("webhook without payment id")
    return str(payment_id).strip()


def _drop(db: Session, provider_name: str, reason: str, payment_id: str | None = None, details: dict | None = None) -> dict:
    logger.warning(f"[webhook:{provider_name}] dropped event ({reason}) payment={payment_id}")
    try:
        log_audit(db, actor="webhook", action="webhook.dropped", entity_type="payment",
                  entity_id=payment_id or "-", details={"provider": provider_name, "reason": reason, **(details or {})})
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception(f"[webhook:{provider_name}] could not audit dropped event")
    return {"received": True, "processed": False, "reason": reason}


def ingest_webhook(
    db: Session,
    engine: ReconciliationEngine,
    provider: PaymentProvider,
    payload: Any,
    raw_body: bytes = b"",
    signature: str | None = None,
) -> dict:
    """Handle one push delivery. Everything except a bad signature is acknowledged."""
    if settings.WEBHOOK_VERIFY and not verify_webhook_signature(raw_body, signature, settings.WEBHOOK_SECRET):
        logger.warning(f"[webhook:{provider.name}] invalid signature")
        raise UnauthorizedError("Invalid signature")

    try:
        payment_id = parse_webhook_payload(payload)
    except InvalidError as e:
        return _drop(db, provider.name, e.message)

    try:
        payment = provider.get_payment(payment_id)
    except ProviderNotFound:
        return _drop(db, provider.name, "payment not found at provider", payment_id)
    except ProviderError as e:
        return _drop(db, provider.name, "provider unavailable", payment_id, {"error": str(e)[:300]})

    try:
        req = ConfirmationRequest.from_payment(payment, source="webhook")
        result = submit(db, engine, req)
    except (InvalidError, NotFoundError) as e:
        return _drop(db, provider.name, e.message, payment_id, {"orderId": payment.order_id})
    except FatalError:
        # the sweep will pick the order up again
        logger.exception(f"[webhook:{provider.name}] ledger failure for payment {payment_id}")
        return {"received": True, "processed": False, "reason": "ledger failure"}
    except Exception:
        # acknowledged anyway; the order keeps its stored state for the sweep
        db.rollback()
        logger.exception(f"[webhook:{provider.name}] unexpected error for payment {payment_id}")
        return {"received": True, "processed": False, "reason": "internal error"}

    logger.info(f"[webhook:{provider.name}] payment {payment_id} -> {payment.status.value} order={result.order_number} accepted={result.accepted}")
    return {"received": True, "processed": True, **result.to_dict()}


# ---------------------------------------------------------------- poll


class SlidingWindowRateLimiter:
    def __init__(self, limit: int, window_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: dict[str, deque] = {}
        self._lock = threading.Lock()

    def allow(self, key: str) -> bool:
        now = self._clock()
        with self._lock:
            hits = self._hits.setdefault(key, deque())
            while hits and now - hits[0] >= self.window_seconds:
                hits.popleft()
            if len(hits) >= self.limit:
                return False
            hits.append(now)
            if len(self._hits) > 1000:
                self._prune(now)
            return True

    def _prune(self, now: float) -> None:
        for k in [k for k, v in self._hits.items() if not v or now - v[-1] >= self.window_seconds]:
            del self._hits[k]


poll_limiter = SlidingWindowRateLimiter(settings.POLL_RATE_LIMIT, settings.POLL_RATE_WINDOW_SECONDS)


@dataclass
class PollStatus:
    order_id: str
    order_number: str
    payment_status: str
    access_token: str | None = None
    transient: bool = False

    @property
    def settled(self) -> bool:
        return self.payment_status != PaymentStatus.PENDING

    def to_dict(self) -> dict:
        out = {
            "ok": True,
            "orderId": self.order_id,
            "orderNumber": self.order_number,
            "paymentStatus": self.payment_status,
            "settled": self.settled,
        }
        if self.payment_status == PaymentStatus.COMPLETED and self.access_token:
            out["downloadUrl"] = f"/api/v1/public/tickets/download/{self.access_token}"
        return out


def poll_order(
    db: Session,
    engine: ReconciliationEngine,
    provider: PaymentProvider,
    order_id: str,
    transaction_id: str | None = None,
    limiter: SlidingWindowRateLimiter | None = None,
) -> PollStatus:
    """One buyer-triggered attempt."""
    if limiter is not None and not limiter.allow(order_id):
        raise RateLimitedError("Too many verification attempts", {"orderId": order_id})

    order = ledger_service.get_order(db, order_id)
    if order.payment_status == PaymentStatus.COMPLETED:
        return PollStatus(order.id, order.order_number, order.payment_status, order.access_token)

    transaction_id = (transaction_id or "").strip() or None
    payment_id = transaction_id or order.provider_payment_id
    if not payment_id:
        return PollStatus(order.id, order.order_number, order.payment_status, transient=True)

    try:
        payment = provider.get_payment(payment_id)
    except ProviderNotFound:
        logger.info(f"[poll] payment {payment_id} for order {order.order_number} not known to provider yet")
        return PollStatus(order.id, order.order_number, order.payment_status, transient=True)
    except ProviderError as e:
        raise TransientError("Payment provider unavailable", {"orderId": order.id}) from e

    # buyer-supplied ids are only trusted once the provider ties them to this order
    if payment.order_id != order.id:
        logger.warning(f"[poll] payment {payment_id} belongs to order {payment.order_id}, not {order.id}")
        raise InvalidError("Payment does not belong to this order", {"orderId": order.id})
    if transaction_id and transaction_id != order.provider_payment_id and order.payment_status == PaymentStatus.PENDING:
        ledger_service.record_provider_reference(db, order.id, transaction_id)

    result = submit(db, engine, ConfirmationRequest.from_payment(payment, source="poll", order_id=order.id))
    return PollStatus(order.id, order.order_number, result.payment_status, result.access_token)


@dataclass
class PollOutcome:
    state: str  # COMPLETED | FAILED | STILL_PENDING | ERROR
    attempts: int
    last: PollStatus | None = None


class BuyerPoller:
    """Repeat poll attempts until the order settles or the budget runs out.

    Giving up never writes anything: the order simply stays PENDING for the
    webhook or the sweep to settle later.
    """

    def __init__(
        self,
        attempt: Callable[[], PollStatus],
        max_attempts: int | None = None,
        budget_seconds: float | None = None,
        interval_seconds: float | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.attempt = attempt
        self.max_attempts = max_attempts if max_attempts is not None else settings.POLL_MAX_ATTEMPTS
        self.budget_seconds = budget_seconds if budget_seconds is not None else settings.POLL_BUDGET_SECONDS
        self.interval_seconds = interval_seconds if interval_seconds is not None else settings.POLL_INTERVAL_SECONDS
        self._sleep = sleep
        self._clock = clock

    def run(self) -> PollOutcome:
        started = self._clock()
        last: PollStatus | None = None
        attempts = 0
        while attempts < self.max_attempts:
            attempts += 1
            try:
                last = self.attempt()
            except (TransientError, RateLimitedError) as e:
                logger.info(f"[poll] attempt {attempts} transient: {e.message}")
            except TurnstileError as e:
                logger.error(f"[poll] attempt {attempts} cannot succeed: {e.code} {e.message}")
                return PollOutcome("ERROR", attempts, last)
            else:
                if last.payment_status == PaymentStatus.COMPLETED:
                    return PollOutcome("COMPLETED", attempts, last)
                if last.settled:
                    return PollOutcome("FAILED", attempts, last)
            if attempts >= self.max_attempts:
                break
            if self._clock() - started + self.interval_seconds > self.budget_seconds:
                break
            self._sleep(self.interval_seconds)
        logger.info(f"[poll] giving up after {attempts} attempts; order still pending")
        return PollOutcome("STILL_PENDING", attempts, last)


# ---------------------------------------------------------------- sweep


def _sweep_candidates(db: Session, now: datetime, grace_seconds: int, max_age_hours: int, batch_size: int) -> list[Order]:
    newest = now - timedelta(seconds=grace_seconds)
    oldest = now - timedelta(hours=max_age_hours)
    return list(db.execute(
        select(Order)
        .where(
            Order.payment_status == PaymentStatus.PENDING,
            Order.provider_payment_id.isnot(None),
            Order.provider_payment_id != "",
            Order.created_at <= newest,
            Order.created_at >= oldest,
        )
        .order_by(Order.created_at.asc())
        .limit(batch_size)
    ).scalars())


def sweep_pending(
    db: Session,
    engine: ReconciliationEngine,
    provider_factory: Callable[[str], PaymentProvider] = get_provider,
    now: datetime | None = None,
    sleep: Callable[[float], None] = time.sleep,
    grace_seconds: int | None = None,
    max_age_hours: int | None = None,
    batch_size: int | None = None,
    pause_seconds: float | None = None,
) -> dict:
    now = now or datetime.now(timezone.utc)
    grace_seconds = settings.SWEEP_GRACE_SECONDS if grace_seconds is None else grace_seconds
    max_age_hours = settings.SWEEP_MAX_AGE_HOURS if max_age_hours is None else max_age_hours
    batch_size = settings.SWEEP_BATCH_SIZE if batch_size is None else batch_size
    pause_seconds = settings.SWEEP_PAUSE_SECONDS if pause_seconds is None else pause_seconds

    orders = _sweep_candidates(db, now, grace_seconds, max_age_hours, batch_size)
    # detach from the read so every confirm() starts from a fresh transaction
    targets = [(o.id, o.order_number, o.provider, o.provider_payment_id) for o in orders]
    db.rollback()

    counts = {"checked": 0, "confirmed": 0, "failed": 0, "refunded": 0, "still_pending": 0, "errors": 0}
    results = []
    for i, (order_id, order_number, provider_name, payment_id) in enumerate(targets):
        if i and pause_seconds:
            sleep(pause_seconds)
        counts["checked"] += 1
        entry = {"orderId": order_id, "orderNumber": order_number, "paymentId": payment_id}
        try:
            payment = provider_factory(provider_name).get_payment(payment_id)
            result = submit(db, engine, ConfirmationRequest.from_payment(payment, source="sweep", order_id=order_id))
        except ProviderNotFound:
            counts["still_pending"] += 1
            entry["status"] = "not_found"
        except (ProviderError, ValueError) as e:
            counts["errors"] += 1
            entry["status"] = "error"
            entry["error"] = str(e)[:300]
            logger.warning(f"[sweep] provider query failed for order {order_number}: {e}")
        except (NotFoundError, InvalidError, FatalError) as e:
            counts["errors"] += 1
            entry["status"] = "error"
            entry["error"] = e.message
            logger.error(f"[sweep] order {order_number} not reconciled: {e.message}")
        else:
            entry["status"] = result.payment_status
            if result.payment_status == PaymentStatus.PENDING:
                counts["still_pending"] += 1
            elif not result.accepted:
                entry["status"] = "already_processed"
            elif result.payment_status == PaymentStatus.COMPLETED:
                counts["confirmed"] += 1
            elif result.payment_status == PaymentStatus.FAILED:
                counts["failed"] += 1
            elif result.payment_status == PaymentStatus.REFUNDED:
                counts["refunded"] += 1
        results.append(entry)

    logger.info(f"[sweep] {counts}")
    return {**counts, "results": results}
