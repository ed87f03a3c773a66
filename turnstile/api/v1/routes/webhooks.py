import json
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from turnstile.api.deps import get_engine, provider_for
from turnstile.core.errors import UnauthorizedError
from turnstile.db.session import get_db
from turnstile.services.ingest_service import ingest_webhook
from turnstile.services.providers import PaymentProvider
from turnstile.services.reconciliation_service import ReconciliationEngine

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks"])

SIGNATURE_HEADERS = ("x-signature", "x-unicobros-signature", "x-hub-signature-256")


@router.post("/webhooks/{provider_name}")
async def receive_webhook(
    provider_name: str,
    req: Request,
    db: Session = Depends(get_db),
    engine: ReconciliationEngine = Depends(get_engine),
    provider: PaymentProvider = Depends(provider_for),
):
    """Provider push. Always acknowledged so the provider stops retrying, except on a bad signature."""
    body = await req.body()
    try:
        payload = json.loads(body or b"null")
    except ValueError:
        payload = None
    signature = next((req.headers.get(h) for h in SIGNATURE_HEADERS if req.headers.get(h)), None)
    try:
        # provider query and ledger writes block; keep them off the event loop
        return await run_in_threadpool(ingest_webhook, db, engine, provider, payload, raw_body=body, signature=signature)
    except UnauthorizedError:
        return JSONResponse(status_code=401, content={"received": True, "error": "Invalid signature"})


@router.get("/webhooks/{provider_name}")
def webhook_alive(provider_name: str, provider: PaymentProvider = Depends(provider_for)):
    return {"ok": True, "provider": provider.name}
