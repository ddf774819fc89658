from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from autobid.db.enums import PaymentMethod, PaymentStatus
from autobid.db.models import Auction, Payment, User
from autobid.services.errors import ValidationFailed

SUPPLEMENTAL_DOCUMENT_FIELDS = ("release_letter_document", "handover_document")


@dataclass(slots=True)
class PaymentSubmission:
    amount: int
    payment_method: PaymentMethod
    payment_proof: str | None = None
    bank_name: str | None = None
    account_number: str | None = None
    account_name: str | None = None


@dataclass(slots=True)
class PendingPaymentView:
    payment: Payment
    auction: Auction | None
    winner: User | None


def _clean(value: str | None) -> str | None:
    text = (value or "").strip()
    return text or None


def parse_payment_method(raw: str | PaymentMethod) -> PaymentMethod:
    try:
        return PaymentMethod(str(raw).strip().lower())
    except ValueError:
        allowed = ", ".join(item.value for item in PaymentMethod)
        raise ValidationFailed(f"Unknown payment method {raw!r}; expected one of: {allowed}") from None


def build_submission(
    *,
    amount: int,
    payment_method: str | PaymentMethod,
    payment_proof: str | None = None,
    bank_name: str | None = None,
    account_number: str | None = None,
    account_name: str | None = None,
) -> PaymentSubmission:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount < 1:
        raise ValidationFailed("Payment amount must be a positive integer")

    return PaymentSubmission(
        amount=amount,
        payment_method=parse_payment_method(payment_method),
        payment_proof=_clean(payment_proof),
        bank_name=_clean(bank_name),
        account_number=_clean(account_number),
        account_name=_clean(account_name),
    )


def normalize_documents(documents: dict | None) -> dict[str, str]:
    if not documents:
        return {}
    unknown = sorted(set(documents) - set(SUPPLEMENTAL_DOCUMENT_FIELDS))
    if unknown:
        raise ValidationFailed(f"Unsupported document field(s): {', '.join(unknown)}")
    normalized: dict[str, str] = {}
    for key in SUPPLEMENTAL_DOCUMENT_FIELDS:
        value = _clean(documents.get(key))
        if value is not None:
            normalized[key] = value
    return normalized


async def get_payment_by_id(session: AsyncSession, payment_id: int) -> Payment | None:
    return await session.scalar(select(Payment).where(Payment.id == payment_id))


async def get_payment_by_auction_id(session: AsyncSession, auction_id: int) -> Payment | None:
    return await session.scalar(select(Payment).where(Payment.auction_id == auction_id))


async def resolve_payment_status(session: AsyncSession, auction_id: int) -> PaymentStatus:
    status = await session.scalar(select(Payment.status).where(Payment.auction_id == auction_id))
    if status is None:
        return PaymentStatus.UNPAID
    return PaymentStatus(status)


async def insert_payment(
    session: AsyncSession,
    *,
    auction_id: int,
    winner_user_id: int,
    submission: PaymentSubmission,
    now: datetime,
) -> Payment:
    payment = Payment(
        auction_id=auction_id,
        winner_user_id=winner_user_id,
        amount=submission.amount,
        payment_method=submission.payment_method,
        payment_proof=submission.payment_proof,
        bank_name=submission.bank_name,
        account_number=submission.account_number,
        account_name=submission.account_name,
        status=PaymentStatus.PENDING,
        created_at=now,
    )
    session.add(payment)
    await session.flush()
    return payment


async def resubmit_rejected_payment(
    session: AsyncSession,
    *,
    payment_id: int,
    submission: PaymentSubmission,
    now: datetime,
) -> bool:
    result = await session.execute(
        update(Payment)
        .where(Payment.id == payment_id, Payment.status == PaymentStatus.REJECTED)
        .values(
            amount=submission.amount,
            payment_method=submission.payment_method,
            payment_proof=submission.payment_proof,
            bank_name=submission.bank_name,
            account_number=submission.account_number,
            account_name=submission.account_name,
            status=PaymentStatus.PENDING,
            notes=None,
            release_letter_document=None,
            handover_document=None,
            created_at=now,
            verified_at=None,
            verified_by_user_id=None,
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def decide_pending_payment(
    session: AsyncSession,
    *,
    payment_id: int,
    admin_user_id: int,
    status: PaymentStatus,
    notes: str | None,
    documents: dict[str, str],
    now: datetime,
) -> bool:
    values: dict = {
        "status": status,
        "verified_at": now,
        "verified_by_user_id": admin_user_id,
        "notes": notes,
    }
    if status == PaymentStatus.VERIFIED:
        values.update(documents)
    result = await session.execute(
        update(Payment)
        .where(Payment.id == payment_id, Payment.status == PaymentStatus.PENDING)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def list_pending_payments(session: AsyncSession) -> list[PendingPaymentView]:
    rows = await session.execute(
        select(Payment, Auction, User)
        .outerjoin(Auction, Auction.id == Payment.auction_id)
        .outerjoin(User, User.id == Payment.winner_user_id)
        .where(Payment.status == PaymentStatus.PENDING)
        .order_by(Payment.created_at.asc(), Payment.id.asc())
    )
    return [PendingPaymentView(payment=payment, auction=auction, winner=winner) for payment, auction, winner in rows.all()]
