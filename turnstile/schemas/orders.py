from typing import Optional

from pydantic import BaseModel


class TicketOut(BaseModel):
    code: str
    status: str
    validatedAt: Optional[str] = None


class OrderStatusOut(BaseModel):
    orderId: str
    orderNumber: str
    buyerName: str
    quantity: int
    totalAmount: str
    paymentStatus: str
    tickets: list[TicketOut]
    downloadUrl: Optional[str] = None


class ResendOut(BaseModel):
    ok: bool = True
    orderNumber: str
    email: str
    whatsapp: str
