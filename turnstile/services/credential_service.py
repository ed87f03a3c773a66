"""Capability tokens for artifact retrieval and scannable ticket credentials."""
import re
import secrets
import string

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from turnstile.core.errors import NotFoundError
from turnstile.models.order import Order

ACCESS_TOKEN_BYTES = 32
CREDENTIAL_HASH_BYTES = 16

_ACCESS_TOKEN_RE = re.compile(r"^[0-9a-f]{64}$")
_CREDENTIAL_HASH_RE = re.compile(r"^[0-9A-F]{32}$")


def generate_access_token() -> str:
    return secrets.token_hex(ACCESS_TOKEN_BYTES)


def generate_credential_hash() -> str:
    return secrets.token_hex(CREDENTIAL_HASH_BYTES).upper()


def generate_readable_code(order_number: str, index: int) -> str:
    """Short code printed under the QR for manual entry, e.g. ``K7Q2XM-A9F3-01``."""
    parts = order_number.split("-")
    stem = parts[1][:6] if len(parts) > 1 and parts[1] else "".join(secrets.choice(string.ascii_uppercase + string.digits) for _ in range(6))
    salt = "".join(secrets.choice(string.ascii_uppercase + string.digits) for _ in range(4))
    return f"{stem}-{salt}-{index + 1:02d}".upper()


def is_access_token(value: str | None) -> bool:
    return bool(value) and bool(_ACCESS_TOKEN_RE.match(value))


def is_credential_hash(value: str | None) -> bool:
    return bool(value) and bool(_CREDENTIAL_HASH_RE.match(value))


def assign_token(db: Session, order_id: str) -> str:
    """Read-or-create inside the caller's transaction.

    The write only lands when no token exists yet, so concurrent callers all end
    up reading the same stored value.
    """
    db.execute(
        update(Order)
        .where(Order.id == order_id, Order.access_token.is_(None))
        .values(access_token=generate_access_token())
        .execution_options(synchronize_session=False)
    )
    token = db.execute(select(Order.access_token).where(Order.id == order_id)).scalar_one_or_none()
    if token is None:
        raise NotFoundError("Order not found", {"orderId": order_id})
    return token


def issue(db: Session, order_id: str) -> str:
    """Return the order's capability token, creating it on first call."""
    existing = db.execute(select(Order.access_token).where(Order.id == order_id)).one_or_none()
    if existing is None:
        raise NotFoundError("Order not found", {"orderId": order_id})
    if existing[0]:
        return existing[0]
    try:
        token = assign_token(db, order_id)
        db.commit()
    except Exception:
        db.rollback()
        raise
    return token
