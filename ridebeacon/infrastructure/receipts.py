"""
PDF receipt rendering (fpdf2).

``render_receipt`` is a pure function of ``ReceiptData``: no store or
network access, so the same bytes come out of the on-demand download
endpoint and the post-payment email job.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from fpdf import FPDF
from fpdf.enums import XPos, YPos

BRAND_YELLOW = (254, 214, 0)
INK = (24, 24, 24)
MUTED = (85, 85, 85)


@dataclass(frozen=True)
class Party:
    full_name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None


@dataclass(frozen=True)
class PaymentLine:
    amount: Optional[float] = None
    payment_method: Optional[str] = None
    status: Optional[str] = None
    paid_on: Optional[datetime] = None


@dataclass(frozen=True)
class ReceiptData:
    ride_id: int
    pickup: Optional[str]
    dropoff: Optional[str]
    fare: float
    status: str
    payment_status: str
    ride_type: str
    created_at: Optional[datetime] = None
    rider: Party = field(default_factory=Party)
    driver: Party = field(default_factory=Party)
    payment: Optional[PaymentLine] = None

    @property
    def filename(self) -> str:
        return f"RideReceipt_{self.ride_id}.pdf"


def _text(value) -> str:
    # core PDF fonts are latin-1 only
    if value is None or value == "":
        return "N/A"
    return str(value).encode("latin-1", "replace").decode("latin-1")


def _money(amount: Optional[float]) -> str:
    return "-" if amount is None else f"INR {amount:,.2f}"


def _when(moment: Optional[datetime]) -> str:
    return moment.strftime("%d %b %Y, %H:%M") if moment else "-"


def _party_card(pdf: FPDF, title: str, party: Party, x: float, y: float) -> None:
    width, height = 85.0, 26.0
    pdf.set_draw_color(*BRAND_YELLOW)
    pdf.rect(x, y, width, height, round_corners=True)
    pdf.set_xy(x + 4, y + 2)
    pdf.set_font("Helvetica", style="B", size=12)
    pdf.cell(width - 8, 6, title, new_x=XPos.LEFT, new_y=YPos.NEXT)
    pdf.set_font("Helvetica", size=10)
    for label, value in (
        ("Name", party.full_name),
        ("Phone", party.phone),
        ("Email", party.email),
    ):
        pdf.cell(width - 8, 5, f"{label}: {_text(value)}", new_x=XPos.LEFT, new_y=YPos.NEXT)


def render_receipt(data: ReceiptData) -> bytes:
    pdf = FPDF(format="A4")
    pdf.set_margins(15, 15, 15)
    pdf.set_auto_page_break(auto=True, margin=15)
    pdf.add_page()

    # header bar
    pdf.set_fill_color(*BRAND_YELLOW)
    pdf.rect(0, 0, pdf.w, 20, style="F")
    pdf.set_text_color(*INK)
    pdf.set_font("Helvetica", style="B", size=17)
    pdf.set_xy(15, 6)
    pdf.cell(0, 8, "Ride Receipt", align="R", new_x=XPos.LMARGIN, new_y=YPos.NEXT)

    # trip and fare
    pdf.set_y(28)
    pdf.set_font("Helvetica", style="B", size=16)
    pdf.multi_cell(0, 8, f"{_text(data.pickup)} to {_text(data.dropoff)}",
                   new_x=XPos.LMARGIN, new_y=YPos.NEXT)
    pdf.set_font("Helvetica", size=10)
    pdf.set_text_color(*MUTED)
    pdf.cell(90, 6, f"Trip ID: {data.ride_id}")
    pdf.cell(0, 6, f"Date: {_when(data.created_at)}", align="R",
             new_x=XPos.LMARGIN, new_y=YPos.NEXT)
    pdf.ln(4)

    pdf.set_font("Helvetica", style="B", size=15)
    pdf.set_text_color(*INK)
    pdf.cell(0, 8, f"Total Fare: {_money(data.fare)}", new_x=XPos.LMARGIN, new_y=YPos.NEXT)
    pdf.set_font("Helvetica", size=10)
    pdf.cell(0, 5, f"Status: {data.status.capitalize()}", new_x=XPos.LMARGIN, new_y=YPos.NEXT)
    pdf.cell(0, 5, f"Payment Status: {data.payment_status.capitalize()}",
             new_x=XPos.LMARGIN, new_y=YPos.NEXT)
    pdf.ln(5)

    cards_y = pdf.get_y()
    _party_card(pdf, "Rider", data.rider, 15, cards_y)
    _party_card(pdf, "Driver", data.driver, 110, cards_y)
    pdf.set_xy(15, cards_y + 32)

    pdf.set_font("Helvetica", style="B", size=12)
    pdf.cell(0, 7, "Ride Details", new_x=XPos.LMARGIN, new_y=YPos.NEXT)
    pdf.set_font("Helvetica", size=11)
    pdf.cell(0, 6, f"Vehicle Type: {_text(data.ride_type)}", new_x=XPos.LMARGIN, new_y=YPos.NEXT)
    pdf.ln(3)

    if data.payment is not None:
        pdf.set_font("Helvetica", style="B", size=12)
        pdf.cell(0, 7, "Payment Details", new_x=XPos.LMARGIN, new_y=YPos.NEXT)
        pdf.set_font("Helvetica", size=11)
        for line in (
            f"Amount: {_money(data.payment.amount)}",
            f"Method: {data.payment.payment_method or '-'}",
            f"Status: {data.payment.status or '-'}",
            f"Paid On: {_when(data.payment.paid_on)}",
        ):
            pdf.cell(0, 6, _text(line), new_x=XPos.LMARGIN, new_y=YPos.NEXT)

    pdf.ln(10)
    pdf.set_font("Helvetica", style="B", size=11)
    pdf.cell(0, 6, "Thank you for riding with RideBeacon!", align="C",
             new_x=XPos.LMARGIN, new_y=YPos.NEXT)

    return bytes(pdf.output())
