from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.orm import Session

from turnstile.api.deps import client_ip, require_roles
from turnstile.core.errors import InvalidError, NotFoundError
from turnstile.db.session import get_db
from turnstile.models.user import User
from turnstile.schemas.tickets import ValidateRequest
from turnstile.services.credential_service import is_access_token
from turnstile.services.ledger_service import get_order_by_token
from turnstile.services.settings_service import get_event_info
from turnstile.services.ticket_service import TicketArtifact, render_tickets_pdf_bytes
from turnstile.services.validation_service import validate

router = APIRouter(tags=["tickets"])


@router.post("/tickets/validate")
def validate_ticket(
    body: ValidateRequest,
    req: Request,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("operator", "admin")),
):
    result = validate(
        db,
        body.value(),
        user,
        ip=client_ip(req),
        user_agent=req.headers.get("user-agent") or "unknown",
    )
    return result.to_dict()


@router.api_route("/public/tickets/download/{token}", methods=["GET", "HEAD"])
def download_tickets(token: str, db: Session = Depends(get_db)):
    """Capability retrieval: whoever holds the token gets the PDF, once the order is paid."""
    token = token.strip().lower()
    if not is_access_token(token):
        raise InvalidError("Malformed download token")
    order = get_order_by_token(db, token)
    if not order:
        raise NotFoundError("Tickets not found or order not paid")
    event = get_event_info(db)
    pdf = render_tickets_pdf_bytes(
        order_number=order.order_number,
        buyer_name=order.buyer_name,
        event_name=event["name"],
        event_date=event["date"],
        event_location=event["location"],
        tickets=[TicketArtifact(code=t.code, credential_hash=t.credential_hash, status=t.status) for t in order.tickets],
    )
    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={
            "Content-Disposition": f'attachment; filename="tickets-{order.order_number}.pdf"',
            "Cache-Control": "no-store",
        },
    )
