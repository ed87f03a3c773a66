import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from turnstile.api.deps import get_engine, get_provider_factory
from turnstile.core.config import settings
from turnstile.core.errors import InvalidError, RateLimitedError
from turnstile.db.session import get_db
from turnstile.models.order import PaymentStatus
from turnstile.schemas.orders import OrderStatusOut, TicketOut
from turnstile.services import ledger_service
from turnstile.services.ingest_service import poll_limiter, poll_order
from turnstile.services.reconciliation_service import ReconciliationEngine

logger = logging.getLogger(__name__)

router = APIRouter(tags=["public"])


@router.get("/public/orders/{order_id}", response_model=OrderStatusOut)
def order_status(order_id: str, db: Session = Depends(get_db)):
    o = ledger_service.get_order(db, order_id)
    paid = o.payment_status == PaymentStatus.COMPLETED and o.access_token
    return OrderStatusOut(
        orderId=o.id,
        orderNumber=o.order_number,
        buyerName=o.buyer_name,
        quantity=o.quantity,
        totalAmount=str(o.total_amount),
        paymentStatus=o.payment_status,
        tickets=[
            TicketOut(code=t.code, status=t.status, validatedAt=t.validated_at.isoformat() if t.validated_at else None)
            for t in o.tickets
        ],
        downloadUrl=f"/api/v1/public/tickets/download/{o.access_token}" if paid else None,
    )


@router.get("/public/orders/{order_id}/confirm")
def confirm_order(
    order_id: str,
    transactionId: str | None = None,
    db: Session = Depends(get_db),
    engine: ReconciliationEngine = Depends(get_engine),
    provider_factory=Depends(get_provider_factory),
):
    """Buyer's return from the payment page: one verification attempt against the provider."""
    if not poll_limiter.allow(order_id):
        raise RateLimitedError("Too many verification attempts", {"orderId": order_id})
    order = ledger_service.get_order(db, order_id)
    try:
        provider = provider_factory(order.provider)
    except ValueError as e:
        raise InvalidError("Order uses an unsupported payment provider", {"orderId": order_id, "provider": order.provider}) from e
    status = poll_order(db, engine, provider, order_id, transactionId)
    if not status.settled and settings.POLL_IN_BACKGROUND:
        from turnstile.tasks.jobs import poll_order_until_settled
        try:
            poll_order_until_settled.delay(order_id, transactionId)
        except Exception:
            # the sweep still covers this order
            logger.exception(f"Could not schedule background poll for order {status.order_number}")
    return status.to_dict()
