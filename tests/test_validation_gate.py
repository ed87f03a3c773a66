from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from turnstile.core.errors import (
    ALREADY_USED,
    CANCELLED,
    PAYMENT_PENDING,
    ConflictError,
    InvalidError,
    NotFoundError,
)
from turnstile.models.ticket import TicketStatus
from turnstile.models.validation_record import ValidationRecord
from turnstile.services.ledger_service import get_order
from turnstile.services.provider_adapter import CanonicalStatus
from turnstile.services.validation_service import validate


@pytest.fixture()
def paid_order(db, recon, make_order):
    order = make_order(2)
    recon.confirm(db, order.id, "pay-1", CanonicalStatus.APPROVED, "webhook")
    db.expire_all()
    return get_order(db, order.id)


def test_admits_paid_ticket_and_records_it(db, paid_order, operator):
    ticket = paid_order.tickets[0]
    result = validate(db, ticket.credential_hash, operator, ip="10.1.1.1", user_agent="scanner/1.0")

    assert result.code == ticket.code
    assert result.order_number == paid_order.order_number
    assert result.validated_by["email"] == operator.email
    body = result.to_dict()
    assert body["ok"] is True and body["ticket"]["validated"] is True

    record = db.execute(select(ValidationRecord)).scalar_one()
    assert record.ticket_id == ticket.id
    assert record.operator_id == operator.id
    assert record.ip_address == "10.1.1.1"
    assert record.user_agent == "scanner/1.0"
    db.expire_all()
    assert get_order(db, paid_order.id).tickets[0].status == TicketStatus.VALIDATED


def test_readable_code_is_accepted_case_insensitively(db, paid_order, operator):
    code = paid_order.tickets[1].code
    result = validate(db, f"  {code.lower()} ", operator)
    assert result.code == code


def test_scenario_b_second_operator_sees_first_admission(db, paid_order, operator, other_operator):
    t0 = datetime(2026, 2, 14, 21, 0, 0, tzinfo=timezone.utc)
    code = paid_order.tickets[0].code
    validate(db, code, operator, now=t0)

    with pytest.raises(ConflictError) as exc:
        validate(db, code, other_operator, now=t0 + timedelta(seconds=1))

    err = exc.value
    assert err.code == ALREADY_USED
    assert err.status_code == 409
    assert err.details["validatedAt"].startswith("2026-02-14T21:00:00")
    assert err.details["validatedBy"]["id"] == operator.id
    assert err.details["validatedBy"]["name"] == "Gate One"
    assert len(db.execute(select(ValidationRecord)).scalars().all()) == 1


def test_unknown_code(db, operator):
    with pytest.raises(NotFoundError):
        validate(db, "NOPE-0000-01", operator)


@pytest.mark.parametrize("code", ["", "   ", None])
def test_blank_code_is_invalid(db, operator, code):
    with pytest.raises(InvalidError):
        validate(db, code, operator)


def test_unpaid_order_is_payment_pending(db, make_order, operator):
    order = make_order(1)
    code = get_order(db, order.id).tickets[0].code
    with pytest.raises(ConflictError) as exc:
        validate(db, code, operator)
    assert exc.value.code == PAYMENT_PENDING
    db.expire_all()
    assert get_order(db, order.id).tickets[0].status == TicketStatus.PENDING_PAYMENT
    assert db.execute(select(ValidationRecord)).first() is None


def test_cancelled_ticket_is_refused(db, recon, make_order, operator):
    order = make_order(1)
    recon.confirm(db, order.id, "pay-1", CanonicalStatus.REJECTED, "sweep")
    db.expire_all()
    code = get_order(db, order.id).tickets[0].credential_hash
    with pytest.raises(ConflictError) as exc:
        validate(db, code, operator)
    assert exc.value.code == CANCELLED


def test_validated_ticket_stays_validated_after_late_refund(db, recon, paid_order, operator):
    validate(db, paid_order.tickets[0].code, operator)
    recon.confirm(db, paid_order.id, "pay-1", CanonicalStatus.REFUNDED, "webhook")
    db.expire_all()
    assert get_order(db, paid_order.id).tickets[0].status == TicketStatus.VALIDATED
