import hmac

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from turnstile.api.deps import get_engine, get_provider_factory
from turnstile.core.config import settings
from turnstile.db.session import get_db
from turnstile.services.ingest_service import sweep_pending
from turnstile.services.reconciliation_service import ReconciliationEngine

router = APIRouter(tags=["cron"])


def _cron_authorized(req: Request) -> bool:
    if not settings.CRON_SECRET:
        return False
    auth = req.headers.get("authorization") or ""
    supplied = auth[7:] if auth.lower().startswith("bearer ") else req.query_params.get("secret", "")
    return hmac.compare_digest(supplied.encode("utf-8"), settings.CRON_SECRET.encode("utf-8"))


@router.api_route("/cron/verify-pending", methods=["GET", "POST"])
def verify_pending(
    req: Request,
    db: Session = Depends(get_db),
    engine: ReconciliationEngine = Depends(get_engine),
    provider_factory=Depends(get_provider_factory),
):
    if not _cron_authorized(req):
        raise HTTPException(status_code=401, detail="Unauthorized")
    return {"ok": True, **sweep_pending(db, engine, provider_factory=provider_factory)}
