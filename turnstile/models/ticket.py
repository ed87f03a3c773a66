from sqlalchemy import String, DateTime, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship
from datetime import datetime, timezone

from turnstile.db.session import Base


class TicketStatus:
    PENDING_PAYMENT = "PENDING_PAYMENT"
    PAID = "PAID"
    VALIDATED = "VALIDATED"  # terminal
    CANCELLED = "CANCELLED"  # terminal

    TERMINAL = (VALIDATED, CANCELLED)


class Ticket(Base):
    __tablename__ = "tickets"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    order_id: Mapped[str] = mapped_column(String(36), ForeignKey("orders.id", ondelete="CASCADE"), index=True)

    code: Mapped[str] = mapped_column(String(40), unique=True, index=True)  # manual-entry fallback
    credential_hash: Mapped[str] = mapped_column(String(64), unique=True, index=True)  # scanned from the QR
    status: Mapped[str] = mapped_column(String(20), default=TicketStatus.PENDING_PAYMENT, index=True)
    validated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))

    order = relationship("Order", back_populates="tickets")
