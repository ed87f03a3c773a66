import logging
import uuid

from sqlalchemy.orm import Session
from sqlalchemy import text
from sqlalchemy.exc import OperationalError, ProgrammingError

from turnstile.db.session import SessionLocal
from turnstile.core.config import settings
from turnstile.core.security import hash_password
from turnstile.models.user import User
from turnstile.models.setting import Setting
from turnstile.services.settings_service import EVENT_KEYS

logger = logging.getLogger(__name__)


def ensure_user(db: Session, email: str, password: str, role: str, name: str):
    u = db.query(User).filter(User.email == email).first()
    if u:
        return
    db.add(
        User(
            id=str(uuid.uuid4()),
            email=email,
            full_name=name,
            role=role,
            password_hash=hash_password(password),
            is_active=True,
        )
    )
    db.commit()


def run(db=None):
    if db is None:
        db = SessionLocal()
    try:
        # If migrations haven't been applied yet, seeding must not crash the API.
        try:
            db.execute(text("SELECT 1 FROM users LIMIT 1"))
        except (ProgrammingError, OperationalError):
            db.rollback()
            logger.warning("users table not found yet. Skipping seeding (run alembic upgrade head).")
            return

        if settings.ENV == "local":
            ensure_user(db, "admin@turnstile.local", "admin12345", "admin", "Admin")
            ensure_user(db, "gate@turnstile.local", "gate12345", "operator", "Gate operator")

        # event info defaults, editable later through the settings table
        for key in EVENT_KEYS.values():
            if not db.get(Setting, key):
                db.add(Setting(key=key, int_value=None, str_value=getattr(settings, key)))
        db.commit()
        logger.info("seed complete")
    finally:
        db.close()


if __name__ == "__main__":
    run()
