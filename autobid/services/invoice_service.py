from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from html import escape
from typing import Protocol
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from autobid.config import Settings, settings as default_settings
from autobid.db.enums import AuctionStatus
from autobid.db.models import Auction, User

INVOICE_CONTENT_TYPE_HTML = "text/html; charset=utf-8"


@dataclass(slots=True)
class InvoiceContext:
    invoice_number: str
    auction_id: int
    auction_title: str
    auction_description: str
    location: str
    condition: str
    production_year: int | None
    plate_number: str | None
    chassis_number: str | None
    engine_number: str | None
    winner_user_id: int
    winner_name: str
    winner_email: str
    winner_phone: str | None
    amount: int
    issued_at: datetime
    due_at: datetime


@dataclass(slots=True)
class RenderedDocument:
    content: str
    content_type: str


class DocumentRenderer(Protocol):
    async def render_invoice(self, context: InvoiceContext) -> RenderedDocument: ...


def build_invoice_number(auction_id: int, winner_user_id: int, issued_at: datetime) -> str:
    millis = int(issued_at.timestamp() * 1000)
    return f"INV-{auction_id:04d}-{winner_user_id:04d}-{millis}"


def format_rupiah(amount: int) -> str:
    return f"Rp {amount:,}".replace(",", ".")


def payment_instructions(invoice_number: str) -> list[str]:
    return [
        "Transfer exactly the amount stated on this invoice, no more and no less",
        f"Use the transfer reference: {invoice_number}",
        "Keep a clear and complete copy of the transfer receipt",
        "Upload the transfer receipt through the payment form",
        "Payments are verified within 1x24 hours on business days",
        "The vehicle power of attorney is issued after the payment is verified",
        "Contact customer service if you run into any payment issue",
    ]


TERMS_AND_CONDITIONS = [
    "Payment is due within 7 business days after the invoice is issued",
    "Late payment is charged a 2% penalty per day",
    "The winner bears the administrative cost of the ownership transfer",
    "Auctioned goods are sold as is",
    "The winner must collect the goods within 14 days after full payment",
]


def build_invoice_context(
    auction: Auction,
    winner: User,
    *,
    amount: int,
    issued_at: datetime,
    due_days: int,
) -> InvoiceContext:
    full_name = " ".join(part for part in (winner.first_name, winner.last_name) if part).strip()
    return InvoiceContext(
        invoice_number=build_invoice_number(auction.id, winner.id, issued_at),
        auction_id=auction.id,
        auction_title=auction.title,
        auction_description=auction.description,
        location=auction.location,
        condition=str(auction.condition),
        production_year=auction.production_year,
        plate_number=auction.plate_number,
        chassis_number=auction.chassis_number,
        engine_number=auction.engine_number,
        winner_user_id=winner.id,
        winner_name=full_name or winner.username,
        winner_email=winner.email,
        winner_phone=winner.phone,
        amount=amount,
        issued_at=issued_at,
        due_at=issued_at + timedelta(days=max(due_days, 1)),
    )


class HtmlInvoiceRenderer:
    def __init__(self, config: Settings | None = None) -> None:
        self._settings = config or default_settings

    def _timezone(self) -> ZoneInfo:
        try:
            return ZoneInfo(self._settings.tz)
        except ZoneInfoNotFoundError:
            return ZoneInfo("UTC")

    def _fmt_date(self, value: datetime) -> str:
        return value.astimezone(self._timezone()).strftime("%d.%m.%Y")

    async def render_invoice(self, context: InvoiceContext) -> RenderedDocument:
        return RenderedDocument(content=self.render_html(context), content_type=INVOICE_CONTENT_TYPE_HTML)

    def render_html(self, context: InvoiceContext) -> str:
        cfg = self._settings
        vehicle_rows = [
            ("Vehicle", context.auction_title),
            ("Condition", context.condition),
            ("Location", context.location),
            ("Production year", str(context.production_year) if context.production_year else "-"),
            ("Plate number", context.plate_number or "-"),
            ("Chassis number", context.chassis_number or "-"),
            ("Engine number", context.engine_number or "-"),
        ]
        vehicle_html = "".join(
            f"<tr><th>{escape(label)}</th><td>{escape(value)}</td></tr>" for label, value in vehicle_rows
        )
        instructions_html = "".join(
            f"<li>{escape(item)}</li>" for item in payment_instructions(context.invoice_number)
        )
        terms_html = "".join(f"<li>{escape(item)}</li>" for item in TERMS_AND_CONDITIONS)
        number = escape(context.invoice_number)
        amount = escape(format_rupiah(context.amount))

        return (
            "<!DOCTYPE html>"
            "<html lang='en'><head><meta charset='utf-8'>"
            f"<title>Invoice {number} - {escape(cfg.company_name)}</title>"
            "<style>"
            "body{font-family:Segoe UI,Tahoma,sans-serif;color:#333;font-size:12px;line-height:1.5}"
            ".header{text-align:center;border-bottom:3px solid #1e40af;padding-bottom:16px;margin-bottom:20px}"
            ".company{font-size:26px;font-weight:bold;color:#1e40af}"
            "table{width:100%;border-collapse:collapse;margin:12px 0}"
            "th,td{border:1px solid #e5e7eb;padding:6px 10px;text-align:left}"
            ".total{font-size:18px;font-weight:bold;color:#1e40af}"
            "</style></head><body>"
            "<div class='header'>"
            f"<div class='company'>{escape(cfg.company_name)}</div>"
            f"<div>{escape(cfg.company_legal_name)} &middot; {escape(cfg.company_address)}</div>"
            f"<h1>INVOICE {number}</h1>"
            f"<div>Issued: {self._fmt_date(context.issued_at)} &middot; Due: {self._fmt_date(context.due_at)}</div>"
            "</div>"
            "<h2>Billed to</h2>"
            "<table>"
            f"<tr><th>Name</th><td>{escape(context.winner_name)}</td></tr>"
            f"<tr><th>Email</th><td>{escape(context.winner_email)}</td></tr>"
            f"<tr><th>Phone</th><td>{escape(context.winner_phone or '-')}</td></tr>"
            "</table>"
            f"<h2>Auction #{context.auction_id}</h2>"
            f"<table>{vehicle_html}</table>"
            f"<p class='total'>Winning bid: {amount}</p>"
            "<h2>Payment details</h2>"
            "<table>"
            f"<tr><th>Bank</th><td>{escape(cfg.company_bank_name)}</td></tr>"
            f"<tr><th>Account number</th><td>{escape(cfg.company_account_number)}</td></tr>"
            f"<tr><th>Account name</th><td>{escape(cfg.company_account_name)}</td></tr>"
            f"<tr><th>Amount due</th><td>{amount}</td></tr>"
            "</table>"
            f"<h2>Payment instructions</h2><ol>{instructions_html}</ol>"
            f"<h2>Terms and conditions</h2><ol>{terms_html}</ol>"
            f"<p>Questions: {escape(cfg.company_support_email)} &middot; {escape(cfg.company_phone)}</p>"
            "</body></html>"
        )


async def store_invoice(
    session: AsyncSession,
    *,
    auction_id: int,
    invoice_number: str,
    document: RenderedDocument,
    issued_at: datetime,
) -> bool:
    """Persist the invoice unless one is already attached to the auction."""
    result = await session.execute(
        update(Auction)
        .where(
            Auction.id == auction_id,
            Auction.status == AuctionStatus.ENDED,
            Auction.winner_user_id.is_not(None),
            Auction.invoice_number.is_(None),
        )
        .values(
            invoice_number=invoice_number,
            invoice_document=document.content,
            invoice_content_type=document.content_type,
            invoice_issued_at=issued_at,
            updated_at=issued_at,
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1
