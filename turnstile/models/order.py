from decimal import Decimal

from sqlalchemy import String, Integer, DateTime, Numeric
from sqlalchemy.orm import Mapped, mapped_column, relationship
from datetime import datetime, timezone
from turnstile.db.session import Base


class PaymentStatus:
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    order_number: Mapped[str] = mapped_column(String(32), unique=True, index=True)

    buyer_name: Mapped[str] = mapped_column(String(200))
    buyer_email: Mapped[str] = mapped_column(String(320), index=True)
    buyer_phone: Mapped[str] = mapped_column(String(40), default="")
    buyer_dni: Mapped[str] = mapped_column(String(40), default="")

    quantity: Mapped[int] = mapped_column(Integer, default=1)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)

    # PENDING -> COMPLETED | FAILED | REFUNDED; COMPLETED never changes again
    payment_status: Mapped[str] = mapped_column(String(20), default=PaymentStatus.PENDING, index=True)
    provider: Mapped[str] = mapped_column(String(40), default="unicobros")
    provider_payment_id: Mapped[str | None] = mapped_column(String(120), nullable=True, index=True)
    provider_status: Mapped[str | None] = mapped_column(String(60), nullable=True)

    # capability token for artifact retrieval; set once, never overwritten
    access_token: Mapped[str | None] = mapped_column(String(64), unique=True, nullable=True, index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))

    tickets = relationship("Ticket", back_populates="order", order_by="Ticket.code")
