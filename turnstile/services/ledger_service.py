"""Order/Ticket ledger: every payment-state write goes through here.

Each transition is a compare-and-swap: the expected prior state is re-checked
by the UPDATE itself, inside the same transaction that cascades to the tickets.
Concurrent writers (webhook, buyer poll, sweep, possibly on several hosts) may
all reach this point; exactly one of them commits.
"""
from __future__ import annotations

import logging
import random
import string
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from turnstile.core.errors import FatalError, InvalidError, NotFoundError, TurnstileError
from turnstile.models.order import Order, PaymentStatus
from turnstile.models.ticket import Ticket, TicketStatus
from turnstile.services.audit_service import log_audit
from turnstile.services.credential_service import assign_token, generate_credential_hash, generate_readable_code

logger = logging.getLogger(__name__)

MAX_TICKETS_PER_ORDER = 20


@dataclass
class CommitOutcome:
    committed: bool  # False: another writer got there first, nothing changed
    payment_status: str
    access_token: str | None = None


def make_order_number() -> str:
    return "ORD-" + "".join(random.choices(string.ascii_uppercase + string.digits, k=8))


def create_order(
    db: Session,
    buyer_name: str,
    buyer_email: str,
    quantity: int,
    unit_price: Decimal | int | str,
    buyer_phone: str = "",
    buyer_dni: str = "",
    provider: str = "unicobros",
) -> Order:
    """Create a PENDING order and its PENDING_PAYMENT tickets (checkout entry point)."""
    if quantity < 1 or quantity > MAX_TICKETS_PER_ORDER:
        raise InvalidError(f"quantity must be between 1 and {MAX_TICKETS_PER_ORDER}")
    if not buyer_name.strip() or "@" not in buyer_email:
        raise InvalidError("buyer name and a valid email are required")

    # order_number must be unique
    for _ in range(10):
        number = make_order_number()
        exists = db.query(Order).filter(Order.order_number == number).first()
        if not exists:
            break
    else:
        raise FatalError("could not allocate order number")

    price = Decimal(str(unit_price))
    order = Order(
        id=str(uuid.uuid4()),
        order_number=number,
        buyer_name=buyer_name.strip(),
        buyer_email=buyer_email.strip().lower(),
        buyer_phone=(buyer_phone or "").strip(),
        buyer_dni=(buyer_dni or "").strip(),
        quantity=quantity,
        unit_price=price,
        total_amount=price * quantity,
        payment_status=PaymentStatus.PENDING,
        provider=provider,
    )
    db.add(order)
    for i in range(quantity):
        db.add(Ticket(
            id=str(uuid.uuid4()),
            order_id=order.id,
            code=generate_readable_code(number, i),
            credential_hash=generate_credential_hash(),
            status=TicketStatus.PENDING_PAYMENT,
        ))
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise FatalError(f"could not create order: {e.__class__.__name__}") from e
    db.refresh(order)
    return order


def get_order(db: Session, order_id: str) -> Order:
    order = db.execute(
        select(Order).where(Order.id == order_id).execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if not order:
        raise NotFoundError("Order not found", {"orderId": order_id})
    return order


def get_order_by_token(db: Session, token: str) -> Order | None:
    """Only paid orders are reachable through their capability token."""
    return db.execute(
        select(Order).where(Order.access_token == token, Order.payment_status == PaymentStatus.COMPLETED)
    ).scalar_one_or_none()


def _load_for_update(db: Session, order_id: str) -> Order:
    order = db.execute(
        select(Order).where(Order.id == order_id).with_for_update().execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if not order:
        raise NotFoundError("Order not found", {"orderId": order_id})
    return order


def commit_approval(db: Session, order_id: str, provider_payment_id: str | None, raw_status: str | None, source: str = "manual") -> CommitOutcome:
    """PENDING/FAILED/REFUNDED -> COMPLETED, token, tickets PAID. One transaction."""
    now = datetime.now(timezone.utc)
    try:
        order = _load_for_update(db, order_id)
        if order.payment_status == PaymentStatus.COMPLETED:
            token = order.access_token
            db.rollback()
            return CommitOutcome(committed=False, payment_status=PaymentStatus.COMPLETED, access_token=token)
        prior_status = order.payment_status

        values = {"payment_status": PaymentStatus.COMPLETED, "updated_at": now}
        if provider_payment_id:
            values["provider_payment_id"] = provider_payment_id
        if raw_status is not None:
            values["provider_status"] = raw_status
        swapped = db.execute(
            update(Order)
            .where(Order.id == order_id, Order.payment_status != PaymentStatus.COMPLETED)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if swapped.rowcount != 1:
            db.rollback()
            token = db.execute(select(Order.access_token).where(Order.id == order_id)).scalar_one_or_none()
            db.rollback()
            return CommitOutcome(committed=False, payment_status=PaymentStatus.COMPLETED, access_token=token)

        token = assign_token(db, order_id)
        paid = db.execute(
            update(Ticket)
            .where(Ticket.order_id == order_id, Ticket.status == TicketStatus.PENDING_PAYMENT)
            .values(status=TicketStatus.PAID, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if prior_status != PaymentStatus.PENDING:
            logger.error(f"[{source}] Order {order.order_number} approved after {prior_status}; cancelled tickets stay cancelled and need manual reissue")
        log_audit(db, actor=source, action="order.completed", entity_type="order", entity_id=order.order_number,
                  details={"providerPaymentId": provider_payment_id, "providerStatus": raw_status, "ticketsPaid": paid.rowcount, "prior": prior_status})
        db.commit()
    except TurnstileError:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception(f"[{source}] Ledger write failed for order {order_id}")
        raise FatalError("ledger write failed", {"orderId": order_id}) from e
    db.expire_all()
    return CommitOutcome(committed=True, payment_status=PaymentStatus.COMPLETED, access_token=token)


def commit_failure(db: Session, order_id: str, target: str, provider_payment_id: str | None, raw_status: str | None, source: str = "manual") -> CommitOutcome:
    """PENDING/FAILED -> FAILED|REFUNDED with the CANCELLED cascade. Never touches a COMPLETED order."""
    if target not in (PaymentStatus.FAILED, PaymentStatus.REFUNDED):
        raise ValueError(f"not a failure status: {target}")
    now = datetime.now(timezone.utc)
    try:
        order = _load_for_update(db, order_id)
        current = order.payment_status
        if current in (PaymentStatus.COMPLETED, target, PaymentStatus.REFUNDED):
            db.rollback()
            return CommitOutcome(committed=False, payment_status=current)

        values = {"payment_status": target, "updated_at": now}
        if provider_payment_id:
            values["provider_payment_id"] = provider_payment_id
        if raw_status is not None:
            values["provider_status"] = raw_status
        swapped = db.execute(
            update(Order)
            .where(Order.id == order_id, Order.payment_status == current)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if swapped.rowcount != 1:
            db.rollback()
            latest = db.execute(select(Order.payment_status).where(Order.id == order_id)).scalar_one()
            db.rollback()
            return CommitOutcome(committed=False, payment_status=latest)

        cancelled = db.execute(
            update(Ticket)
            .where(Ticket.order_id == order_id, Ticket.status.notin_(TicketStatus.TERMINAL))
            .values(status=TicketStatus.CANCELLED, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        log_audit(db, actor=source, action=f"order.{target.lower()}", entity_type="order", entity_id=order.order_number,
                  details={"providerPaymentId": provider_payment_id, "providerStatus": raw_status, "ticketsCancelled": cancelled.rowcount})
        db.commit()
    except TurnstileError:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception(f"[{source}] Ledger write failed for order {order_id}")
        raise FatalError("ledger write failed", {"orderId": order_id}) from e
    db.expire_all()
    return CommitOutcome(committed=True, payment_status=target)


def record_provider_reference(db: Session, order_id: str, provider_payment_id: str) -> bool:
    """Remember a payment id learned from the buyer's return, only while the order is PENDING."""
    try:
        res = db.execute(
            update(Order)
            .where(Order.id == order_id, Order.payment_status == PaymentStatus.PENDING)
            .values(provider_payment_id=provider_payment_id, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise FatalError("ledger write failed", {"orderId": order_id}) from e
    return res.rowcount == 1
