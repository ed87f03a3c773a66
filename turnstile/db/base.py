# Import all models so metadata and relationships are complete (Alembic, create_all, workers).
from turnstile.db.session import Base  # noqa: F401
from turnstile.models.user import User  # noqa: F401
from turnstile.models.order import Order  # noqa: F401
from turnstile.models.ticket import Ticket  # noqa: F401
from turnstile.models.validation_record import ValidationRecord  # noqa: F401
from turnstile.models.audit_log import AuditLog  # noqa: F401
from turnstile.models.notification_log import NotificationLog  # noqa: F401
from turnstile.models.setting import Setting  # noqa: F401
