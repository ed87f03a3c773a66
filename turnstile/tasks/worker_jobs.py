"""Task bodies. Each opens its own session and tolerates a database that is not migrated yet."""
import logging

from sqlalchemy.orm import Session
from sqlalchemy.exc import OperationalError, ProgrammingError

from turnstile.db import base  # noqa: F401
from turnstile.db.session import SessionLocal
from turnstile.core.errors import NotFoundError
from turnstile.services import ledger_service
from turnstile.services.email_service import process_pending_emails
from turnstile.services.ingest_service import BuyerPoller, poll_order, sweep_pending
from turnstile.services.providers import get_provider
from turnstile.services.reconciliation_service import get_default_engine

logger = logging.getLogger(__name__)


def sweep_pending_orders() -> dict:
    db: Session = SessionLocal()
    try:
        try:
            return sweep_pending(db, get_default_engine())
        except (ProgrammingError, OperationalError):
            # DB not migrated yet; don't crash the worker.
            db.rollback()
            return {"skipped": True, "reason": "missing_tables"}
    finally:
        db.close()


def process_notification_queue(limit: int = 50) -> dict:
    """Retry queued/failed emails. Run periodically via Celery beat."""
    db: Session = SessionLocal()
    try:
        try:
            return process_pending_emails(db, limit=limit)
        except (ProgrammingError, OperationalError):
            db.rollback()
            return {"skipped": True, "reason": "missing_tables"}
    finally:
        db.close()


def poll_order_until_settled(order_id: str, transaction_id: str | None = None) -> dict:
    """Follow-up for a buyer return that was still pending on the first attempt."""
    db: Session = SessionLocal()
    try:
        try:
            order = ledger_service.get_order(db, order_id)
        except NotFoundError:
            return {"skipped": True, "reason": "order_not_found"}
        provider = get_provider(order.provider)
        engine = get_default_engine()
        outcome = BuyerPoller(lambda: poll_order(db, engine, provider, order_id, transaction_id)).run()
        logger.info(f"Background poll for order {order.order_number}: {outcome.state} after {outcome.attempts} attempts")
        return {"orderId": order_id, "state": outcome.state, "attempts": outcome.attempts}
    finally:
        db.close()
