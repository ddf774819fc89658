from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from autobid.config import Settings, settings as default_settings
from autobid.db.enums import AuctionStatus, NotificationType, PaymentStatus
from autobid.db.models import Auction, Bid, Notification, Payment, User
from autobid.services.auction_service import (
    assign_winner,
    build_auction_draft,
    create_auction_record,
    ensure_utc,
    get_auction_by_id,
    get_user_by_id,
    list_bids,
    list_distinct_bidder_ids,
    list_expired_auction_ids,
    load_top_bid,
    load_users,
    mark_auction_ended,
    minimum_next_bid,
    raise_current_price,
    set_auction_archived,
)
from autobid.services.errors import (
    AuctionServiceError,
    DependencyFailure,
    Forbidden,
    InvalidState,
    NotFound,
    ValidationFailed,
)
from autobid.services.invoice_service import (
    DocumentRenderer,
    HtmlInvoiceRenderer,
    build_invoice_context,
    format_rupiah,
    store_invoice,
)
from autobid.services.notification_service import (
    DatabaseNotificationSink,
    NotificationSink,
    list_user_notifications,
    mark_all_notifications_read,
    mark_notification_read,
)
from autobid.services.payment_service import (
    PendingPaymentView,
    build_submission,
    decide_pending_payment,
    get_payment_by_auction_id,
    get_payment_by_id,
    insert_payment,
    list_pending_payments,
    normalize_documents,
    resolve_payment_status,
    resubmit_rejected_payment,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(slots=True)
class ClosureResult:
    auction: Auction
    closed: bool
    winner: User | None = None
    loser_user_ids: list[int] = field(default_factory=list)
    invoice_number: str | None = None


class AuctionLifecycle:
    """Bidding, closure, invoicing and payment review on top of one session factory.

    Every state transition is a conditional write inside a single transaction;
    notifications and invoice rendering run after the commit and only for the
    caller whose write actually changed the row.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        notifier: NotificationSink | None = None,
        renderer: DocumentRenderer | None = None,
        config: Settings | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._settings = config or default_settings
        self._notifier = notifier or DatabaseNotificationSink(session_factory)
        self._renderer = renderer or HtmlInvoiceRenderer(self._settings)
        self._clock = clock

    async def _notify_user(
        self,
        user_id: int,
        *,
        notification_type: NotificationType,
        title: str,
        message: str,
        data: dict | None = None,
    ) -> None:
        try:
            await self._notifier.notify_user(
                user_id,
                notification_type=notification_type,
                title=title,
                message=message,
                data=data,
            )
        except Exception as exc:
            logger.exception("Failed to notify user %s (%s): %s", user_id, title, exc)

    async def _notify_admins(
        self,
        *,
        notification_type: NotificationType,
        title: str,
        message: str,
        data: dict | None = None,
    ) -> None:
        try:
            await self._notifier.notify_admins(
                notification_type=notification_type,
                title=title,
                message=message,
                data=data,
            )
        except Exception as exc:
            logger.exception("Failed to notify admins (%s): %s", title, exc)

    async def require_admin(self, user_id: int) -> User:
        async with self._session_factory() as session:
            user = await get_user_by_id(session, user_id)
        if user is None or not user.is_active or not user.is_admin:
            raise Forbidden("Admin access required")
        return user

    async def create_auction(
        self,
        actor_user_id: int,
        *,
        title: str,
        description: str,
        starting_price: int,
        condition: str,
        location: str,
        end_time: datetime,
        minimum_increment: int | None = None,
        production_year: int | None = None,
        plate_number: str | None = None,
        chassis_number: str | None = None,
        engine_number: str | None = None,
        document_info: str | None = None,
    ) -> Auction:
        now = self._clock()
        draft = build_auction_draft(
            title=title,
            description=description,
            starting_price=starting_price,
            minimum_increment=(
                self._settings.default_minimum_increment if minimum_increment is None else minimum_increment
            ),
            condition=condition,
            location=location,
            end_time=end_time,
            now=now,
            production_year=production_year,
            plate_number=plate_number,
            chassis_number=chassis_number,
            engine_number=engine_number,
            document_info=document_info,
        )
        async with self._session_factory() as session:
            async with session.begin():
                actor = await get_user_by_id(session, actor_user_id)
                if actor is None:
                    raise NotFound(f"User {actor_user_id} not found")
                if not actor.is_active:
                    raise Forbidden("Inactive accounts cannot list auctions")
                auction = await create_auction_record(session, seller_user_id=actor.id, draft=draft, now=now)

        logger.info(
            "Auction %s created by user %s (start %s, ends %s)",
            auction.id,
            actor_user_id,
            auction.starting_price,
            draft.end_time.isoformat(),
        )
        return auction

    async def get_auction(self, auction_id: int) -> Auction:
        async with self._session_factory() as session:
            auction = await get_auction_by_id(session, auction_id)
        if auction is None:
            raise NotFound(f"Auction {auction_id} not found")
        return auction

    async def list_bids(self, auction_id: int) -> list[Bid]:
        async with self._session_factory() as session:
            auction = await get_auction_by_id(session, auction_id)
            if auction is None:
                raise NotFound(f"Auction {auction_id} not found")
            return await list_bids(session, auction_id)

    async def archive_auction(self, auction_id: int) -> Auction:
        return await self._set_archived(auction_id, archived=True)

    async def unarchive_auction(self, auction_id: int) -> Auction:
        return await self._set_archived(auction_id, archived=False)

    async def _set_archived(self, auction_id: int, *, archived: bool) -> Auction:
        async with self._session_factory() as session:
            async with session.begin():
                changed = await set_auction_archived(
                    session,
                    auction_id=auction_id,
                    archived=archived,
                    now=self._clock(),
                )
        if not changed:
            raise NotFound(f"Auction {auction_id} not found")
        return await self.get_auction(auction_id)

    async def place_bid(self, auction_id: int, user_id: int, amount: int) -> Bid:
        if isinstance(amount, bool) or not isinstance(amount, int) or amount < 1:
            raise ValidationFailed("Bid amount must be a positive integer")

        now = self._clock()
        outbid_user_id: int | None = None
        async with self._session_factory() as session:
            async with session.begin():
                auction = await get_auction_by_id(session, auction_id)
                if auction is None:
                    raise NotFound(f"Auction {auction_id} not found")
                bidder = await get_user_by_id(session, user_id)
                if bidder is None:
                    raise NotFound(f"User {user_id} not found")
                if not bidder.is_active:
                    raise Forbidden("Inactive accounts cannot bid")
                if auction.seller_user_id == user_id:
                    raise Forbidden("Sellers cannot bid on their own auction")

                accepted = await raise_current_price(session, auction_id=auction_id, amount=amount, now=now)
                if not accepted:
                    await session.refresh(auction)
                    raise _bid_rejection(auction, amount=amount, now=now)

                previous = await load_top_bid(session, auction_id)
                if previous is not None and previous.bidder_user_id != user_id:
                    previous_bidder = await get_user_by_id(session, previous.bidder_user_id)
                    if previous_bidder is not None and not previous_bidder.is_admin:
                        outbid_user_id = previous_bidder.id

                bid = Bid(auction_id=auction_id, bidder_user_id=user_id, amount=amount, created_at=now)
                session.add(bid)
                await session.flush()

        logger.info("Bid %s accepted: auction=%s user=%s amount=%s", bid.id, auction_id, user_id, amount)

        if outbid_user_id is not None:
            await self._notify_user(
                outbid_user_id,
                notification_type=NotificationType.BID,
                title="You have been outbid",
                message=f'A higher bid of {format_rupiah(amount)} was placed on "{auction.title}".',
                data={"auction_id": auction_id, "auction_title": auction.title, "new_bid_amount": amount},
            )
        return bid

    async def close_auction(self, auction_id: int) -> Auction:
        result = await self._close(auction_id)
        return result.auction

    async def sweep_expired_auctions(self) -> int:
        now = self._clock()
        async with self._session_factory() as session:
            auction_ids = await list_expired_auction_ids(session, now=now)

        closed = 0
        for auction_id in auction_ids:
            try:
                result = await self._close(auction_id, expired_before=now)
            except (AuctionServiceError, SQLAlchemyError) as exc:
                logger.exception("Failed to close expired auction %s: %s", auction_id, exc)
                continue
            if result.closed:
                closed += 1

        if closed:
            logger.info("Closed %s expired auction(s)", closed)
        return closed

    async def _close(self, auction_id: int, *, expired_before: datetime | None = None) -> ClosureResult:
        now = self._clock()
        winner: User | None = None
        loser_user_ids: list[int] = []
        async with self._session_factory() as session:
            async with session.begin():
                transitioned = await mark_auction_ended(
                    session,
                    auction_id=auction_id,
                    now=now,
                    expired_before=expired_before,
                )
                if transitioned:
                    top_bid = await load_top_bid(session, auction_id)
                    winner_user_id = top_bid.bidder_user_id if top_bid is not None else None
                    await assign_winner(session, auction_id=auction_id, winner_user_id=winner_user_id, now=now)
                    if winner_user_id is not None:
                        bidder_ids = await list_distinct_bidder_ids(session, auction_id)
                        bidders = await load_users(session, bidder_ids)
                        winner = bidders.get(winner_user_id)
                        loser_user_ids = [
                            bidder.id
                            for bidder in bidders.values()
                            if bidder.id != winner_user_id and not bidder.is_admin
                        ]

                auction = await get_auction_by_id(session, auction_id)
                if auction is None:
                    raise NotFound(f"Auction {auction_id} not found")
                if not transitioned and auction.status == AuctionStatus.CANCELLED:
                    raise InvalidState("Cancelled auctions cannot be closed")

        if not transitioned:
            return ClosureResult(auction=auction, closed=False)

        logger.info(
            "Auction %s ended: winner=%s price=%s",
            auction_id,
            auction.winner_user_id,
            auction.current_price,
        )
        result = ClosureResult(auction=auction, closed=True, winner=winner, loser_user_ids=sorted(loser_user_ids))
        if winner is None:
            return result

        if not winner.is_admin:
            try:
                result.invoice_number = await self.generate_invoice(auction_id)
            except AuctionServiceError as exc:
                logger.exception("Invoice generation failed for auction %s: %s", auction_id, exc)

            await self._notify_user(
                winner.id,
                notification_type=NotificationType.AUCTION,
                title="You won the auction",
                message=(
                    f'Congratulations, you won "{auction.title}" with a bid of '
                    f"{format_rupiah(auction.current_price)}."
                ),
                data={
                    "auction_id": auction_id,
                    "auction_title": auction.title,
                    "winning_bid": auction.current_price,
                    "invoice_number": result.invoice_number,
                },
            )

        for loser_id in result.loser_user_ids:
            await self._notify_user(
                loser_id,
                notification_type=NotificationType.AUCTION,
                title="Auction ended",
                message=f'The auction "{auction.title}" has ended. Unfortunately your bid did not win.',
                data={"auction_id": auction_id, "auction_title": auction.title},
            )

        if result.invoice_number is not None:
            result.auction = await self.get_auction(auction_id)
        return result

    async def regenerate_invoice(self, auction_id: int) -> Auction:
        auction = await self.get_auction(auction_id)
        if auction.status != AuctionStatus.ENDED or auction.winner_user_id is None:
            raise InvalidState("Only ended auctions with a winner can be invoiced")
        if auction.invoice_number is not None:
            raise InvalidState(f"Invoice {auction.invoice_number} has already been issued")

        invoice_number = await self.generate_invoice(auction_id)
        if invoice_number is None:
            raise InvalidState("Invoice has already been issued")
        return await self.get_auction(auction_id)

    async def get_invoice(self, auction_id: int, user_id: int) -> Auction:
        async with self._session_factory() as session:
            user = await get_user_by_id(session, user_id)
            auction = await get_auction_by_id(session, auction_id)
        if user is None:
            raise NotFound(f"User {user_id} not found")
        if auction is None:
            raise NotFound(f"Auction {auction_id} not found")
        if auction.winner_user_id != user_id and not user.is_admin:
            raise Forbidden("Only the winner or an admin can view this invoice")
        if auction.invoice_number is None or auction.invoice_document is None:
            raise NotFound(f"No invoice has been issued for auction {auction_id}")
        return auction

    async def generate_invoice(self, auction_id: int) -> str | None:
        """Render and attach the invoice; None when another caller attached one first."""
        issued_at = self._clock()
        try:
            async with self._session_factory() as session:
                auction = await get_auction_by_id(session, auction_id)
                if auction is None:
                    raise NotFound(f"Auction {auction_id} not found")
                if auction.status != AuctionStatus.ENDED or auction.winner_user_id is None:
                    raise InvalidState("Only ended auctions with a winner can be invoiced")
                if auction.invoice_number is not None:
                    return None
                winner = await get_user_by_id(session, auction.winner_user_id)
                if winner is None:
                    raise NotFound(f"User {auction.winner_user_id} not found")
                top_bid = await load_top_bid(session, auction_id)
        except SQLAlchemyError as exc:
            raise DependencyFailure(f"Failed to load invoice data for auction {auction_id}") from exc

        amount = top_bid.amount if top_bid is not None else auction.current_price
        context = build_invoice_context(
            auction,
            winner,
            amount=amount,
            issued_at=issued_at,
            due_days=self._settings.invoice_due_days,
        )
        try:
            document = await self._renderer.render_invoice(context)
        except Exception as exc:
            raise DependencyFailure(f"Invoice rendering failed for auction {auction_id}") from exc

        try:
            async with self._session_factory() as session:
                async with session.begin():
                    stored = await store_invoice(
                        session,
                        auction_id=auction_id,
                        invoice_number=context.invoice_number,
                        document=document,
                        issued_at=issued_at,
                    )
        except SQLAlchemyError as exc:
            raise DependencyFailure(f"Failed to store invoice for auction {auction_id}") from exc
        if not stored:
            logger.info("Invoice for auction %s was issued concurrently, skipping", auction_id)
            return None

        logger.info("Issued invoice %s for auction %s", context.invoice_number, auction_id)
        await self._notify_user(
            winner.id,
            notification_type=NotificationType.PAYMENT,
            title="Invoice issued",
            message=(
                f'Invoice {context.invoice_number} for "{auction.title}" is ready. '
                f"Amount due: {format_rupiah(amount)}."
            ),
            data={
                "auction_id": auction_id,
                "auction_title": auction.title,
                "invoice_number": context.invoice_number,
                "amount": amount,
                "due_at": context.due_at.isoformat(),
            },
        )
        return context.invoice_number

    async def submit_payment(
        self,
        auction_id: int,
        user_id: int,
        *,
        amount: int,
        payment_method: str,
        payment_proof: str | None = None,
        bank_name: str | None = None,
        account_number: str | None = None,
        account_name: str | None = None,
    ) -> Payment:
        submission = build_submission(
            amount=amount,
            payment_method=payment_method,
            payment_proof=payment_proof,
            bank_name=bank_name,
            account_number=account_number,
            account_name=account_name,
        )
        now = self._clock()
        resubmitted = False
        async with self._session_factory() as session:
            async with session.begin():
                auction = await get_auction_by_id(session, auction_id)
                if auction is None:
                    raise NotFound(f"Auction {auction_id} not found")
                if auction.status != AuctionStatus.ENDED:
                    raise InvalidState("Payments can only be submitted for ended auctions")
                if auction.winner_user_id != user_id:
                    raise Forbidden("Only the auction winner can submit a payment")
                if submission.amount < auction.current_price:
                    raise ValidationFailed(
                        f"Payment must cover the winning bid of {format_rupiah(auction.current_price)}",
                        details={"winning_bid": auction.current_price},
                    )

                existing = await get_payment_by_auction_id(session, auction_id)
                if existing is not None:
                    if existing.status != PaymentStatus.REJECTED:
                        raise InvalidState(f"A {existing.status} payment already exists for this auction")
                    updated = await resubmit_rejected_payment(
                        session,
                        payment_id=existing.id,
                        submission=submission,
                        now=now,
                    )
                    if not updated:
                        raise InvalidState("Payment was changed by another request, retry")
                    await session.refresh(existing)
                    payment = existing
                    resubmitted = True
                else:
                    try:
                        payment = await insert_payment(
                            session,
                            auction_id=auction_id,
                            winner_user_id=user_id,
                            submission=submission,
                            now=now,
                        )
                    except IntegrityError:
                        raise InvalidState("A payment already exists for this auction") from None

                submitter = await get_user_by_id(session, user_id)

        logger.info(
            "Payment %s %s for auction %s by user %s (%s)",
            payment.id,
            "resubmitted" if resubmitted else "submitted",
            auction_id,
            user_id,
            submission.amount,
        )

        await self._notify_admins(
            notification_type=NotificationType.PAYMENT,
            title="Payment resubmitted" if resubmitted else "New payment awaiting verification",
            message=(
                f'Payment of {format_rupiah(submission.amount)} for "{auction.title}" '
                f"is waiting for verification."
            ),
            data={
                "payment_id": payment.id,
                "auction_id": auction_id,
                "auction_title": auction.title,
                "amount": submission.amount,
                "payment_method": str(submission.payment_method),
            },
        )
        if submitter is not None and not submitter.is_admin:
            await self._notify_user(
                submitter.id,
                notification_type=NotificationType.PAYMENT,
                title="Payment submitted",
                message=f'Your payment for "{auction.title}" was received and is awaiting verification.',
                data={"payment_id": payment.id, "auction_id": auction_id, "auction_title": auction.title},
            )
        return payment

    async def verify_payment(
        self,
        payment_id: int,
        admin_user_id: int,
        status: str | PaymentStatus,
        notes: str | None = None,
        documents: dict | None = None,
    ) -> Payment:
        await self.require_admin(admin_user_id)
        try:
            decision = PaymentStatus(str(status).strip().lower())
        except ValueError:
            raise ValidationFailed(f"Unknown payment decision {status!r}") from None
        if decision not in (PaymentStatus.VERIFIED, PaymentStatus.REJECTED):
            raise ValidationFailed("Payment decision must be 'verified' or 'rejected'")
        cleaned_notes = (notes or "").strip() or None
        if decision == PaymentStatus.REJECTED and cleaned_notes is None:
            raise ValidationFailed("A reason is required when rejecting a payment")
        cleaned_documents = normalize_documents(documents)

        now = self._clock()
        async with self._session_factory() as session:
            async with session.begin():
                payment = await get_payment_by_id(session, payment_id)
                if payment is None:
                    raise NotFound(f"Payment {payment_id} not found")
                if payment.status != PaymentStatus.PENDING:
                    raise InvalidState(f"Payment is already {payment.status}")

                decided = await decide_pending_payment(
                    session,
                    payment_id=payment_id,
                    admin_user_id=admin_user_id,
                    status=decision,
                    notes=cleaned_notes,
                    documents=cleaned_documents,
                    now=now,
                )
                if not decided:
                    raise InvalidState("Payment was decided by another request")
                await session.refresh(payment)
                auction = await get_auction_by_id(session, payment.auction_id)
                winner = await get_user_by_id(session, payment.winner_user_id)

        logger.info("Payment %s %s by admin %s", payment_id, decision, admin_user_id)

        if winner is not None and not winner.is_admin:
            title = auction.title if auction is not None else f"auction #{payment.auction_id}"
            if decision == PaymentStatus.VERIFIED:
                message = f'Your payment for "{title}" has been approved.'
                if payment.release_letter_document:
                    message += " The vehicle release letter is now available."
            else:
                message = f'Your payment for "{title}" was rejected. Reason: {cleaned_notes}'
            await self._notify_user(
                winner.id,
                notification_type=NotificationType.PAYMENT,
                title="Payment approved" if decision == PaymentStatus.VERIFIED else "Payment rejected",
                message=message,
                data={
                    "payment_id": payment.id,
                    "auction_id": payment.auction_id,
                    "auction_title": title,
                    "status": str(decision),
                    "notes": cleaned_notes,
                    "has_release_letter": bool(payment.release_letter_document),
                    "has_handover_document": bool(payment.handover_document),
                },
            )
        return payment

    async def get_payment_for_auction(self, auction_id: int, user_id: int) -> Payment:
        async with self._session_factory() as session:
            user = await get_user_by_id(session, user_id)
            payment = await get_payment_by_auction_id(session, auction_id)
        if user is None:
            raise NotFound(f"User {user_id} not found")
        if payment is None:
            raise NotFound(f"No payment submitted for auction {auction_id}")
        if payment.winner_user_id != user_id and not user.is_admin:
            raise Forbidden("Only the winner or an admin can view this payment")
        return payment

    async def payment_status(self, auction_id: int) -> PaymentStatus:
        async with self._session_factory() as session:
            auction = await get_auction_by_id(session, auction_id)
            if auction is None:
                raise NotFound(f"Auction {auction_id} not found")
            return await resolve_payment_status(session, auction_id)

    async def list_pending_payments(self, admin_user_id: int) -> list[PendingPaymentView]:
        await self.require_admin(admin_user_id)
        async with self._session_factory() as session:
            return await list_pending_payments(session)

    async def list_notifications(self, user_id: int, *, limit: int = 50) -> list[Notification]:
        async with self._session_factory() as session:
            return await list_user_notifications(session, user_id=user_id, limit=limit)

    async def mark_notification_read(self, notification_id: int, user_id: int) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                changed = await mark_notification_read(session, notification_id=notification_id, user_id=user_id)
        if not changed:
            raise NotFound(f"Notification {notification_id} not found")

    async def mark_all_notifications_read(self, user_id: int) -> int:
        async with self._session_factory() as session:
            async with session.begin():
                return await mark_all_notifications_read(session, user_id=user_id)


def _bid_rejection(auction: Auction, *, amount: int, now: datetime) -> AuctionServiceError:
    if auction.status != AuctionStatus.ACTIVE:
        return InvalidState(f"Auction is {auction.status}, bidding is closed")
    if ensure_utc(auction.end_time) <= now:
        return InvalidState("Auction has ended")
    minimum = minimum_next_bid(auction)
    if amount < minimum:
        return ValidationFailed(
            f"Bid must be at least {format_rupiah(minimum)}",
            details={"minimum_bid": minimum, "current_price": auction.current_price},
        )
    return InvalidState("Auction changed while the bid was placed, retry")
