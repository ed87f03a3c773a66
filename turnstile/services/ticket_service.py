from __future__ import annotations

import io
from dataclasses import dataclass
from datetime import datetime, timezone

from reportlab.graphics import renderPDF
from reportlab.graphics.barcode.qr import QrCodeWidget
from reportlab.graphics.shapes import Drawing
from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas

QR_SIZE = 220


@dataclass
class TicketArtifact:
    code: str
    credential_hash: str
    status: str


def _qr_drawing(value: str, size: int = QR_SIZE) -> Drawing:
    widget = QrCodeWidget(value)
    x1, y1, x2, y2 = widget.getBounds()
    w, h = x2 - x1, y2 - y1
    d = Drawing(size, size, transform=[size / w, 0, 0, size / h, 0, 0])
    d.add(widget)
    return d


def render_tickets_pdf_bytes(*, order_number: str, buyer_name: str, event_name: str, event_date: str,
                             event_location: str, tickets: list[TicketArtifact]) -> bytes:
    """Return A4 PDF bytes, one page per ticket. Pure function; nothing is stored."""
    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=A4)
    w, h = A4

    for i, t in enumerate(tickets, start=1):
        # Header
        c.setFont("Helvetica-Bold", 18)
        c.drawString(40, h - 60, event_name or "Ticket")
        c.setFont("Helvetica", 11)
        c.drawString(40, h - 80, f"Date: {event_date}")
        if event_location:
            c.drawString(40, h - 96, f"Location: {event_location}")

        # Holder block
        c.setFont("Helvetica-Bold", 12)
        c.drawString(40, h - 130, "Holder")
        c.setFont("Helvetica", 11)
        c.drawString(40, h - 148, buyer_name or "(Not provided)")
        c.drawString(40, h - 164, f"Order: {order_number}")
        c.drawString(40, h - 180, f"Ticket {i} of {len(tickets)}")

        # Credential
        renderPDF.draw(_qr_drawing(t.credential_hash), c, (w - QR_SIZE) / 2, h - 460)
        c.setFont("Helvetica-Bold", 16)
        c.drawCentredString(w / 2, h - 490, t.code)
        c.setFont("Helvetica", 9)
        c.drawCentredString(w / 2, h - 506, "Show this code at the entrance. It is valid for one admission only.")

        # Footer
        c.setFont("Helvetica", 9)
        c.drawString(40, 40, "Do not share this ticket. The first scan admits; any later scan is rejected.")
        c.drawString(40, 26, f"Generated: {datetime.now(timezone.utc).isoformat()}")
        c.showPage()

    c.save()
    return buf.getvalue()
