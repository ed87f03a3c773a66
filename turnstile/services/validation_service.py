"""Scan-time admission: a ticket is admitted at most once, across every gate device.

The only thing standing between two simultaneous scans is the conditional
UPDATE (``status = 'PAID'`` in the WHERE clause) committed together with the
validation record. The unique constraint on ``validation_records.ticket_id`` is
a second line at the schema level. No in-process lock is involved.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import NoReturn

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from turnstile.core.errors import (
    ALREADY_USED,
    CANCELLED,
    PAYMENT_PENDING,
    ConflictError,
    FatalError,
    InvalidError,
    NotFoundError,
)
from turnstile.models.order import Order, PaymentStatus
from turnstile.models.ticket import Ticket, TicketStatus
from turnstile.models.user import User
from turnstile.models.validation_record import ValidationRecord

logger = logging.getLogger(__name__)


@dataclass
class ValidationResult:
    ticket_id: str
    code: str
    order_number: str
    buyer_name: str
    buyer_email: str
    buyer_dni: str
    quantity: int
    validated_at: datetime
    validated_by: dict

    def to_dict(self) -> dict:
        return {
            "ok": True,
            "message": "Ticket admitted",
            "ticket": {
                "id": self.ticket_id,
                "code": self.code,
                "orderNumber": self.order_number,
                "buyerName": self.buyer_name,
                "buyerEmail": self.buyer_email,
                "buyerDni": self.buyer_dni,
                "quantity": self.quantity,
                "validated": True,
                "validatedAt": self.validated_at.isoformat(),
                "validatedBy": self.validated_by,
            },
        }


def normalize_code(code: str | None) -> str:
    return (code or "").strip().upper()


def _find_ticket(db: Session, code: str) -> tuple[Ticket, Order] | None:
    row = db.execute(
        select(Ticket, Order)
        .join(Order, Order.id == Ticket.order_id)
        .where(or_(Ticket.credential_hash == code, Ticket.code == code))
        .execution_options(populate_existing=True)
    ).first()
    return (row[0], row[1]) if row else None


def _last_validation(db: Session, ticket_id: str) -> tuple[ValidationRecord | None, User | None]:
    row = db.execute(
        select(ValidationRecord, User)
        .outerjoin(User, User.id == ValidationRecord.operator_id)
        .where(ValidationRecord.ticket_id == ticket_id)
        .order_by(ValidationRecord.created_at.desc())
    ).first()
    if not row:
        return None, None
    return row[0], row[1]


def _validator_info(record: ValidationRecord | None, user: User | None) -> dict | None:
    if record is None:
        return None
    if user is None:
        return {"id": record.operator_id, "name": "", "email": ""}
    return {"id": user.id, "name": user.full_name, "email": user.email}


def _already_used(db: Session, ticket: Ticket) -> ConflictError:
    record, user = _last_validation(db, ticket.id)
    validated_at = ticket.validated_at or (record.created_at if record else None)
    return ConflictError(
        ALREADY_USED,
        "This ticket has already been used",
        {
            "ticketId": ticket.id,
            "code": ticket.code,
            "validatedAt": validated_at.isoformat() if validated_at else None,
            "validatedBy": _validator_info(record, user),
        },
    )


def validate(
    db: Session,
    code: str | None,
    operator: User,
    ip: str = "unknown",
    user_agent: str = "unknown",
    now: datetime | None = None,
) -> ValidationResult:
    code = normalize_code(code)
    if not code:
        raise InvalidError("A ticket code is required")

    found = _find_ticket(db, code)
    if not found:
        raise NotFoundError("Ticket not found", {"code": code})
    ticket, order = found

    if ticket.status == TicketStatus.VALIDATED:
        err = _already_used(db, ticket)
        db.rollback()
        raise err
    if ticket.status == TicketStatus.CANCELLED:
        db.rollback()
        raise ConflictError(CANCELLED, "This ticket was cancelled", {"ticketId": ticket.id, "code": ticket.code})
    if order.payment_status != PaymentStatus.COMPLETED:
        db.rollback()
        raise ConflictError(PAYMENT_PENDING, "Payment for this ticket is not confirmed", {
            "ticketId": ticket.id, "orderNumber": order.order_number, "paymentStatus": order.payment_status,
        })

    now = now or datetime.now(timezone.utc)
    try:
        swapped = db.execute(
            update(Ticket)
            .where(Ticket.id == ticket.id, Ticket.status == TicketStatus.PAID)
            .values(status=TicketStatus.VALIDATED, validated_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if swapped.rowcount != 1:
            db.rollback()
            _lost_race(db, code)
        db.add(ValidationRecord(
            id=str(uuid.uuid4()),
            ticket_id=ticket.id,
            operator_id=operator.id,
            ip_address=(ip or "unknown")[:64],
            user_agent=(user_agent or "unknown")[:300],
            created_at=now,
        ))
        db.commit()
    except IntegrityError:
        db.rollback()
        _lost_race(db, code)
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception(f"Validation write failed for ticket {ticket.code}")
        raise FatalError("validation write failed", {"ticketId": ticket.id}) from e

    logger.info(f"Ticket {ticket.code} of order {order.order_number} admitted by {operator.email} from {ip}")
    return ValidationResult(
        ticket_id=ticket.id,
        code=ticket.code,
        order_number=order.order_number,
        buyer_name=order.buyer_name,
        buyer_email=order.buyer_email,
        buyer_dni=order.buyer_dni,
        quantity=order.quantity,
        validated_at=now,
        validated_by={"id": operator.id, "name": operator.full_name, "email": operator.email},
    )


def _lost_race(db: Session, code: str) -> NoReturn:
    """A concurrent scan committed first: report what it wrote."""
    found = _find_ticket(db, code)
    if not found:
        raise NotFoundError("Ticket not found", {"code": code})
    ticket, _ = found
    if ticket.status == TicketStatus.CANCELLED:
        db.rollback()
        raise ConflictError(CANCELLED, "This ticket was cancelled", {"ticketId": ticket.id, "code": ticket.code})
    err = _already_used(db, ticket)
    db.rollback()
    logger.info(f"Concurrent scan of ticket {ticket.code} rejected as already used")
    raise err
