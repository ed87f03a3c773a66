from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from turnstile.core.security import decode_token
from turnstile.db.session import get_db
from turnstile.models.user import User
from turnstile.services.notification_service import NotificationDispatcher
from turnstile.services.providers import PaymentProvider, get_provider
from turnstile.services.reconciliation_service import ReconciliationEngine, get_default_engine

bearer = HTTPBearer(auto_error=False)


def get_current_user(
    creds: HTTPAuthorizationCredentials | None = Depends(bearer),
    db: Session = Depends(get_db),
) -> User:
    if not creds:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        payload = decode_token(creds.credentials)
    except Exception:
        raise HTTPException(status_code=401, detail="Invalid token")
    if payload.get("type") != "access":
        raise HTTPException(status_code=401, detail="Invalid token")
    user_id = payload.get("sub")
    user = db.get(User, user_id)
    if not user or not user.is_active:
        raise HTTPException(status_code=401, detail="User not found or inactive")
    return user


def require_roles(*roles: str):
    def _guard(user: User = Depends(get_current_user)) -> User:
        if user.role not in roles:
            raise HTTPException(status_code=403, detail="Forbidden")
        return user
    return _guard


def get_engine() -> ReconciliationEngine:
    return get_default_engine()


def get_provider_factory():
    """Overridden in tests with a fake provider lookup."""
    return get_provider


def provider_for(provider_name: str, factory=Depends(get_provider_factory)) -> PaymentProvider:
    try:
        return factory(provider_name)
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Unknown payment provider: {provider_name}")


def get_dispatcher() -> NotificationDispatcher:
    return get_engine().dispatcher or NotificationDispatcher()


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for") or request.headers.get("x-real-ip")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"
