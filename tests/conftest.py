import os
import tempfile
import threading
import uuid

_DB_DIR = tempfile.mkdtemp(prefix="turnstile-tests-")
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["DATABASE_URL"] = f"sqlite:///{_DB_DIR}/turnstile.db"
os.environ["ENV"] = "test"
os.environ["POLL_IN_BACKGROUND"] = "false"
os.environ["CRON_SECRET"] = "cron-secret"
os.environ["SWEEP_PAUSE_SECONDS"] = "0"
os.environ["DEDUP_BACKEND"] = "memory"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from turnstile.core.security import create_access_token, hash_password  # noqa: E402
from turnstile.db import base  # noqa: E402,F401
from turnstile.db.session import Base, SessionLocal, engine  # noqa: E402
from turnstile.models.user import User  # noqa: E402
from turnstile.services.dedup_cache import MemoryDedupCache  # noqa: E402
from turnstile.services.ingest_service import poll_limiter  # noqa: E402
from turnstile.services.ledger_service import create_order  # noqa: E402
from turnstile.services.notification_service import NotificationDispatcher  # noqa: E402
from turnstile.services.provider_adapter import CanonicalStatus  # noqa: E402
from turnstile.services.providers import ProviderError, ProviderNotFound, ProviderPayment  # noqa: E402
from turnstile.services.reconciliation_service import ReconciliationEngine  # noqa: E402


class FakeProvider:
    """In-memory provider: payments are registered by the test, unknown ids are 404."""

    name = "unicobros"

    def __init__(self):
        self.payments: dict[str, ProviderPayment] = {}
        self.calls: list[str] = []
        self.down = False
        self._lock = threading.Lock()

    def set(self, payment_id: str, order_id: str | None, status: CanonicalStatus, raw: str = ""):
        self.payments[payment_id] = ProviderPayment(
            payment_id=payment_id, order_id=order_id, raw_status=raw or status.value, status=status,
        )

    def get_payment(self, payment_id: str) -> ProviderPayment:
        with self._lock:
            self.calls.append(payment_id)
        if self.down:
            raise ProviderError("provider unreachable")
        if payment_id not in self.payments:
            raise ProviderNotFound(payment_id)
        return self.payments[payment_id]


class FakeDispatcher(NotificationDispatcher):
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: list[tuple[str, str]] = []
        self._lock = threading.Lock()

    def send(self, db, recipient, summary, url):
        if self.fail:
            raise RuntimeError("smtp down")
        with self._lock:
            self.sent.append((summary.order_number, url))
        return {"email": "sent", "whatsapp": "skipped"}


@pytest.fixture(autouse=True)
def _schema():
    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)
    with poll_limiter._lock:
        poll_limiter._hits.clear()
    yield


@pytest.fixture()
def db():
    s = SessionLocal()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture()
def provider():
    return FakeProvider()


@pytest.fixture()
def dispatcher():
    return FakeDispatcher()


@pytest.fixture()
def recon(dispatcher):
    return ReconciliationEngine(MemoryDedupCache(), dispatcher)


@pytest.fixture()
def make_order(db):
    def _make(quantity: int = 3, **kw):
        return create_order(
            db,
            buyer_name=kw.pop("buyer_name", "Ana Perez"),
            buyer_email=kw.pop("buyer_email", "ana@example.com"),
            quantity=quantity,
            unit_price=kw.pop("unit_price", 15000),
            **kw,
        )
    return _make


def _user(db, role: str, email: str, name: str) -> User:
    u = User(id=str(uuid.uuid4()), email=email, full_name=name, role=role,
             password_hash=hash_password("secret123"), is_active=True)
    db.add(u)
    db.commit()
    return u


@pytest.fixture()
def operator(db):
    return _user(db, "operator", "gate1@example.com", "Gate One")


@pytest.fixture()
def other_operator(db):
    return _user(db, "operator", "gate2@example.com", "Gate Two")


@pytest.fixture()
def admin(db):
    return _user(db, "admin", "admin@example.com", "Admin")


@pytest.fixture()
def viewer(db):
    return _user(db, "viewer", "viewer@example.com", "Viewer")


def auth_header(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


@pytest.fixture()
def client(recon, provider, dispatcher):
    from turnstile.api import deps
    from turnstile.main import app

    app.dependency_overrides[deps.get_engine] = lambda: recon
    app.dependency_overrides[deps.get_provider_factory] = lambda: (lambda name: provider)
    app.dependency_overrides[deps.get_dispatcher] = lambda: dispatcher
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture()
def auth():
    return auth_header
