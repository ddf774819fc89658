from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from autobid.config import settings
from autobid.db.models import Auction, Bid, Notification, Payment
from autobid.db.session import SessionFactory, dispose_database
from autobid.services.auction_service import ensure_utc, minimum_next_bid, promote_users_to_admin
from autobid.services.auction_watcher import cancel_watcher, run_auction_watcher
from autobid.services.errors import (
    AuctionServiceError,
    DependencyFailure,
    Forbidden,
    InvalidState,
    NotFound,
    ValidationFailed,
)
from autobid.services.lifecycle import AuctionLifecycle
from autobid.services.payment_service import PendingPaymentView
from autobid.web.auth import current_user_id

logger = logging.getLogger(__name__)

_STATUS_BY_CODE = {
    NotFound.code: 404,
    InvalidState.code: 409,
    ValidationFailed.code: 422,
    Forbidden.code: 403,
    DependencyFailure.code: 502,
}


async def bootstrap_admins() -> int:
    user_ids = settings.parsed_admin_bootstrap_user_ids()
    if not user_ids:
        return 0
    async with SessionFactory() as session:
        async with session.begin():
            promoted = await promote_users_to_admin(session, user_ids)
    if promoted:
        logger.info("Promoted %s bootstrap user(s) to admin", promoted)
    return promoted


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    if getattr(app.state, "lifecycle", None) is None:
        app.state.lifecycle = AuctionLifecycle(SessionFactory, config=settings)
    await bootstrap_admins()
    watcher_task: asyncio.Task[None] | None = asyncio.create_task(
        run_auction_watcher(
            app.state.lifecycle,
            interval_seconds=settings.auction_watcher_interval_seconds,
        )
    )
    try:
        yield
    finally:
        await cancel_watcher(watcher_task)
        await dispose_database()


app = FastAPI(title="autobid", version="0.3.0", lifespan=lifespan)


def get_lifecycle(request: Request) -> AuctionLifecycle:
    return request.app.state.lifecycle


@app.exception_handler(AuctionServiceError)
async def service_error_handler(request: Request, exc: AuctionServiceError) -> JSONResponse:
    status_code = _STATUS_BY_CODE.get(exc.code, 400)
    if status_code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=status_code,
        content={"error": exc.code, "detail": exc.message, **exc.details},
    )


class CreateAuctionRequest(BaseModel):
    title: str
    description: str
    starting_price: int
    condition: str
    location: str
    end_time: datetime
    minimum_increment: int | None = None
    production_year: int | None = None
    plate_number: str | None = None
    chassis_number: str | None = None
    engine_number: str | None = None
    document_info: str | None = None


class BidRequest(BaseModel):
    amount: int


class PaymentRequest(BaseModel):
    auction_id: int
    amount: int
    payment_method: str
    payment_proof: str | None = None
    bank_name: str | None = None
    account_number: str | None = None
    account_name: str | None = None


class VerifyPaymentRequest(BaseModel):
    status: str
    notes: str | None = None
    release_letter_document: str | None = None
    handover_document: str | None = None


def _iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return ensure_utc(value).isoformat()


def _auction_payload(auction: Auction) -> dict:
    return {
        "id": auction.id,
        "title": auction.title,
        "description": auction.description,
        "starting_price": auction.starting_price,
        "current_price": auction.current_price,
        "minimum_increment": auction.minimum_increment,
        "minimum_next_bid": minimum_next_bid(auction),
        "condition": str(auction.condition),
        "location": auction.location,
        "status": str(auction.status),
        "start_time": _iso(auction.start_time),
        "end_time": _iso(auction.end_time),
        "seller_user_id": auction.seller_user_id,
        "winner_user_id": auction.winner_user_id,
        "archived": auction.archived,
        "invoice_number": auction.invoice_number,
        "invoice_issued_at": _iso(auction.invoice_issued_at),
        "production_year": auction.production_year,
        "plate_number": auction.plate_number,
        "chassis_number": auction.chassis_number,
        "engine_number": auction.engine_number,
        "document_info": auction.document_info,
    }


def _bid_payload(bid: Bid) -> dict:
    return {
        "id": bid.id,
        "auction_id": bid.auction_id,
        "bidder_user_id": bid.bidder_user_id,
        "amount": bid.amount,
        "created_at": _iso(bid.created_at),
    }


def _payment_payload(payment: Payment) -> dict:
    return {
        "id": payment.id,
        "auction_id": payment.auction_id,
        "winner_user_id": payment.winner_user_id,
        "amount": payment.amount,
        "payment_method": str(payment.payment_method),
        "payment_proof": payment.payment_proof,
        "bank_name": payment.bank_name,
        "account_number": payment.account_number,
        "account_name": payment.account_name,
        "status": str(payment.status),
        "notes": payment.notes,
        "release_letter_document": payment.release_letter_document,
        "handover_document": payment.handover_document,
        "created_at": _iso(payment.created_at),
        "verified_at": _iso(payment.verified_at),
        "verified_by_user_id": payment.verified_by_user_id,
    }


def _pending_payload(view: PendingPaymentView) -> dict:
    payload = _payment_payload(view.payment)
    payload["auction_title"] = view.auction.title if view.auction is not None else None
    payload["winner_username"] = view.winner.username if view.winner is not None else None
    return payload


def _notification_payload(notification: Notification) -> dict:
    return {
        "id": notification.id,
        "type": str(notification.type),
        "title": notification.title,
        "message": notification.message,
        "data": notification.data,
        "is_read": notification.is_read,
        "created_at": _iso(notification.created_at),
    }


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/api/auctions", status_code=201)
async def create_auction(
    body: CreateAuctionRequest,
    user_id: int = Depends(current_user_id),
    lifecycle: AuctionLifecycle = Depends(get_lifecycle),
) -> dict:
    auction = await lifecycle.create_auction(user_id, **body.model_dump())
    return _auction_payload(auction)


@app.get("/api/auctions/{auction_id}")
async def get_auction(auction_id: int, lifecycle: AuctionLifecycle = Depends(get_lifecycle)) -> dict:
    auction = await lifecycle.get_auction(auction_id)
    payload = _auction_payload(auction)
    payload["payment_status"] = str(await lifecycle.payment_status(auction_id))
    return payload


@app.get("/api/auctions/{auction_id}/bids")
async def get_bids(auction_id: int, lifecycle: AuctionLifecycle = Depends(get_lifecycle)) -> list[dict]:
    bids = await lifecycle.list_bids(auction_id)
    return [_bid_payload(bid) for bid in bids]


@app.post("/api/auctions/{auction_id}/bids", status_code=201)
async def place_bid(
    auction_id: int,
    body: BidRequest,
    user_id: int = Depends(current_user_id),
    lifecycle: AuctionLifecycle = Depends(get_lifecycle),
) -> dict:
    bid = await lifecycle.place_bid(auction_id, user_id, body.amount)
    return _bid_payload(bid)


@app.post("/api/auctions/{auction_id}/end")
async def end_auction(
    auction_id: int,
    user_id: int = Depends(current_user_id),
    lifecycle: AuctionLifecycle = Depends(get_lifecycle),
) -> dict:
    await lifecycle.require_admin(user_id)
    auction = await lifecycle.close_auction(auction_id)
    logger.info("[web] auction %s ended by admin %s", auction_id, user_id)
    return _auction_payload(auction)


@app.post("/api/auctions/{auction_id}/archive")
async def archive_auction(
    auction_id: int,
    user_id: int = Depends(current_user_id),
    lifecycle: AuctionLifecycle = Depends(get_lifecycle),
) -> dict:
    await lifecycle.require_admin(user_id)
    return _auction_payload(await lifecycle.archive_auction(auction_id))


@app.post("/api/auctions/{auction_id}/unarchive")
async def unarchive_auction(
    auction_id: int,
    user_id: int = Depends(current_user_id),
    lifecycle: AuctionLifecycle = Depends(get_lifecycle),
) -> dict:
    await lifecycle.require_admin(user_id)
    return _auction_payload(await lifecycle.unarchive_auction(auction_id))


@app.post("/api/admin/auctions/{auction_id}/generate-invoice")
async def generate_invoice(
    auction_id: int,
    user_id: int = Depends(current_user_id),
    lifecycle: AuctionLifecycle = Depends(get_lifecycle),
) -> dict:
    await lifecycle.require_admin(user_id)
    auction = await lifecycle.regenerate_invoice(auction_id)
    return {"invoice_number": auction.invoice_number, "auction": _auction_payload(auction)}


@app.get("/api/auctions/{auction_id}/invoice")
async def get_invoice(
    auction_id: int,
    user_id: int = Depends(current_user_id),
    lifecycle: AuctionLifecycle = Depends(get_lifecycle),
) -> Response:
    auction = await lifecycle.get_invoice(auction_id, user_id)
    return Response(
        content=auction.invoice_document,
        media_type=auction.invoice_content_type or "text/html; charset=utf-8",
        headers={"x-invoice-number": auction.invoice_number or ""},
    )


@app.get("/api/auctions/{auction_id}/payment")
async def get_payment(
    auction_id: int,
    user_id: int = Depends(current_user_id),
    lifecycle: AuctionLifecycle = Depends(get_lifecycle),
) -> dict:
    payment = await lifecycle.get_payment_for_auction(auction_id, user_id)
    return _payment_payload(payment)


@app.post("/api/payments", status_code=201)
async def submit_payment(
    body: PaymentRequest,
    user_id: int = Depends(current_user_id),
    lifecycle: AuctionLifecycle = Depends(get_lifecycle),
) -> dict:
    payment = await lifecycle.submit_payment(
        body.auction_id,
        user_id,
        amount=body.amount,
        payment_method=body.payment_method,
        payment_proof=body.payment_proof,
        bank_name=body.bank_name,
        account_number=body.account_number,
        account_name=body.account_name,
    )
    return _payment_payload(payment)


@app.get("/api/admin/payments/pending")
async def pending_payments(
    user_id: int = Depends(current_user_id),
    lifecycle: AuctionLifecycle = Depends(get_lifecycle),
) -> list[dict]:
    views = await lifecycle.list_pending_payments(user_id)
    return [_pending_payload(view) for view in views]


@app.post("/api/admin/payments/{payment_id}/verify")
async def verify_payment(
    payment_id: int,
    body: VerifyPaymentRequest,
    user_id: int = Depends(current_user_id),
    lifecycle: AuctionLifecycle = Depends(get_lifecycle),
) -> dict:
    documents = {
        key: value
        for key, value in (
            ("release_letter_document", body.release_letter_document),
            ("handover_document", body.handover_document),
        )
        if value is not None
    }
    payment = await lifecycle.verify_payment(
        payment_id,
        user_id,
        body.status,
        notes=body.notes,
        documents=documents,
    )
    return _payment_payload(payment)


@app.get("/api/notifications")
async def notifications(
    limit: int = 50,
    user_id: int = Depends(current_user_id),
    lifecycle: AuctionLifecycle = Depends(get_lifecycle),
) -> list[dict]:
    rows = await lifecycle.list_notifications(user_id, limit=min(max(limit, 1), 200))
    return [_notification_payload(row) for row in rows]


@app.post("/api/notifications/{notification_id}/read")
async def read_notification(
    notification_id: int,
    user_id: int = Depends(current_user_id),
    lifecycle: AuctionLifecycle = Depends(get_lifecycle),
) -> dict:
    await lifecycle.mark_notification_read(notification_id, user_id)
    return {"ok": True}


@app.post("/api/notifications/mark-all-read")
async def read_all_notifications(
    user_id: int = Depends(current_user_id),
    lifecycle: AuctionLifecycle = Depends(get_lifecycle),
) -> dict:
    updated = await lifecycle.mark_all_notifications_read(user_id)
    return {"ok": True, "updated": updated}
