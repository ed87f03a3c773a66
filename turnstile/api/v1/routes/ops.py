from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from turnstile.api.deps import get_dispatcher, require_roles
from turnstile.core.errors import PAYMENT_PENDING, ConflictError
from turnstile.db.session import get_db
from turnstile.models.order import PaymentStatus
from turnstile.models.user import User
from turnstile.schemas.orders import ResendOut
from turnstile.services.audit_service import log_audit
from turnstile.services.ledger_service import get_order
from turnstile.services.notification_service import NotificationDispatcher, notify_order

router = APIRouter(tags=["ops"])


@router.post("/ops/orders/{order_id}/resend", response_model=ResendOut)
def resend_tickets(
    order_id: str,
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    user: User = Depends(require_roles("admin")),
):
    """Replay the ticket notification with the token already stored on the order."""
    o = get_order(db, order_id)
    if o.payment_status != PaymentStatus.COMPLETED or not o.access_token:
        raise ConflictError(PAYMENT_PENDING, "Order is not paid", {"orderNumber": o.order_number})
    results = notify_order(db, dispatcher, o)
    log_audit(db, user.id, "order.resend", "order", o.order_number, results)
    db.commit()
    return ResendOut(orderNumber=o.order_number, email=results["email"], whatsapp=results["whatsapp"])
