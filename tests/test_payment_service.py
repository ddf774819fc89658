from __future__ import annotations

import pytest

from autobid.db.enums import NotificationType, PaymentMethod, PaymentStatus
from autobid.services.errors import Forbidden, InvalidState, NotFound, ValidationFailed
from autobid.services.payment_service import build_submission, normalize_documents


def test_build_submission_normalizes_fields() -> None:
    submission = build_submission(
        amount=150000,
        payment_method=" Bank_Transfer ",
        payment_proof="  receipt.jpg ",
        bank_name="",
    )

    assert submission.payment_method == PaymentMethod.BANK_TRANSFER
    assert submission.payment_proof == "receipt.jpg"
    assert submission.bank_name is None


@pytest.mark.parametrize(
    "kwargs",
    [
        {"amount": 0, "payment_method": "cash"},
        {"amount": True, "payment_method": "cash"},
        {"amount": 150000, "payment_method": "crypto"},
    ],
)
def test_build_submission_rejects_malformed_input(kwargs) -> None:
    with pytest.raises(ValidationFailed):
        build_submission(**kwargs)


def test_normalize_documents_rejects_unknown_keys() -> None:
    assert normalize_documents({"release_letter_document": " letter.pdf ", "handover_document": ""}) == {
        "release_letter_document": "letter.pdf"
    }
    with pytest.raises(ValidationFailed):
        normalize_documents({"bpkb_scan": "x.pdf"})


@pytest.mark.asyncio
async def test_winner_submits_and_admins_are_notified(lifecycle, notifier, admin, alice, ended_auction) -> None:
    auction = await ended_auction(admin, alice)
    assert await lifecycle.payment_status(auction.id) == PaymentStatus.UNPAID

    payment = await lifecycle.submit_payment(
        auction.id,
        alice.id,
        amount=150000,
        payment_method="bank_transfer",
        payment_proof="receipt-001.jpg",
        bank_name="BCA",
        account_number="0987654321",
        account_name="Alice Tester",
    )

    assert payment.status == PaymentStatus.PENDING
    assert payment.winner_user_id == alice.id
    assert await lifecycle.payment_status(auction.id) == PaymentStatus.PENDING
    assert notifier.admin_messages[-1].title == "New payment awaiting verification"
    assert notifier.admin_messages[-1].data["payment_id"] == payment.id
    assert notifier.titles_for(alice.id)[-1] == "Payment submitted"


@pytest.mark.asyncio
async def test_submission_guards(lifecycle, admin, alice, bob, make_auction, ended_auction) -> None:
    open_auction = await make_auction(admin)
    with pytest.raises(InvalidState):
        await lifecycle.submit_payment(open_auction.id, alice.id, amount=150000, payment_method="cash")

    auction = await ended_auction(admin, alice)
    with pytest.raises(NotFound):
        await lifecycle.submit_payment(9999, alice.id, amount=150000, payment_method="cash")
    with pytest.raises(Forbidden):
        await lifecycle.submit_payment(auction.id, bob.id, amount=150000, payment_method="cash")
    with pytest.raises(ValidationFailed):
        await lifecycle.submit_payment(auction.id, alice.id, amount=100000, payment_method="cash")

    await lifecycle.submit_payment(auction.id, alice.id, amount=150000, payment_method="cash")
    with pytest.raises(InvalidState):
        await lifecycle.submit_payment(auction.id, alice.id, amount=150000, payment_method="cash")


@pytest.mark.asyncio
async def test_verify_with_documents(lifecycle, notifier, admin, alice, ended_auction) -> None:
    auction = await ended_auction(admin, alice)
    payment = await lifecycle.submit_payment(auction.id, alice.id, amount=150000, payment_method="ewallet")

    verified = await lifecycle.verify_payment(
        payment.id,
        admin.id,
        "verified",
        notes="Funds received",
        documents={"release_letter_document": "release-007.pdf", "handover_document": "handover-007.pdf"},
    )

    assert verified.status == PaymentStatus.VERIFIED
    assert verified.verified_by_user_id == admin.id
    assert verified.release_letter_document == "release-007.pdf"
    assert verified.handover_document == "handover-007.pdf"
    outcome = notifier.for_user(alice.id)[-1]
    assert outcome.type == NotificationType.PAYMENT
    assert outcome.title == "Payment approved"
    assert "release letter" in outcome.message
    assert outcome.data["has_handover_document"] is True

    with pytest.raises(InvalidState):
        await lifecycle.verify_payment(payment.id, admin.id, "rejected", notes="too late")
    with pytest.raises(InvalidState):
        await lifecycle.submit_payment(auction.id, alice.id, amount=150000, payment_method="cash")


@pytest.mark.asyncio
async def test_reject_requires_reason_and_allows_resubmission(lifecycle, notifier, admin, alice, ended_auction) -> None:
    auction = await ended_auction(admin, alice)
    payment = await lifecycle.submit_payment(auction.id, alice.id, amount=150000, payment_method="bank_transfer")

    with pytest.raises(ValidationFailed):
        await lifecycle.verify_payment(payment.id, admin.id, "rejected", notes="   ")

    rejected = await lifecycle.verify_payment(payment.id, admin.id, "rejected", notes="Blurry receipt")
    assert rejected.status == PaymentStatus.REJECTED
    assert rejected.notes == "Blurry receipt"
    assert "Reason: Blurry receipt" in notifier.for_user(alice.id)[-1].message

    resubmitted = await lifecycle.submit_payment(
        auction.id,
        alice.id,
        amount=150000,
        payment_method="bank_transfer",
        payment_proof="receipt-clear.jpg",
    )

    assert resubmitted.id == payment.id
    assert resubmitted.status == PaymentStatus.PENDING
    assert resubmitted.notes is None
    assert resubmitted.verified_at is None
    assert resubmitted.verified_by_user_id is None
    assert resubmitted.payment_proof == "receipt-clear.jpg"
    assert notifier.admin_messages[-1].title == "Payment resubmitted"


@pytest.mark.asyncio
async def test_verify_guards(lifecycle, admin, alice, bob, ended_auction) -> None:
    auction = await ended_auction(admin, alice)
    payment = await lifecycle.submit_payment(auction.id, alice.id, amount=150000, payment_method="cash")

    with pytest.raises(Forbidden):
        await lifecycle.verify_payment(payment.id, bob.id, "verified")
    with pytest.raises(Forbidden):
        await lifecycle.verify_payment(payment.id, bob.id, "approved")
    with pytest.raises(Forbidden):
        await lifecycle.verify_payment(payment.id, bob.id, "rejected", notes="   ")
    with pytest.raises(NotFound):
        await lifecycle.verify_payment(9999, admin.id, "verified")
    with pytest.raises(ValidationFailed):
        await lifecycle.verify_payment(payment.id, admin.id, "pending")
    with pytest.raises(ValidationFailed):
        await lifecycle.verify_payment(payment.id, admin.id, "approved")


@pytest.mark.asyncio
async def test_rejection_drops_documents(lifecycle, admin, alice, ended_auction) -> None:
    auction = await ended_auction(admin, alice)
    payment = await lifecycle.submit_payment(auction.id, alice.id, amount=150000, payment_method="cash")

    rejected = await lifecycle.verify_payment(
        payment.id,
        admin.id,
        "rejected",
        notes="Amount mismatch",
        documents={"release_letter_document": "release.pdf"},
    )

    assert rejected.release_letter_document is None


@pytest.mark.asyncio
async def test_pending_queue_and_payment_visibility(lifecycle, admin, alice, bob, ended_auction) -> None:
    auction = await ended_auction(admin, alice)
    payment = await lifecycle.submit_payment(auction.id, alice.id, amount=150000, payment_method="cash")

    views = await lifecycle.list_pending_payments(admin.id)
    assert [view.payment.id for view in views] == [payment.id]
    assert views[0].auction.title == auction.title
    assert views[0].winner.username == "alice"

    with pytest.raises(Forbidden):
        await lifecycle.list_pending_payments(alice.id)

    assert (await lifecycle.get_payment_for_auction(auction.id, alice.id)).id == payment.id
    assert (await lifecycle.get_payment_for_auction(auction.id, admin.id)).id == payment.id
    with pytest.raises(Forbidden):
        await lifecycle.get_payment_for_auction(auction.id, bob.id)


@pytest.mark.asyncio
async def test_notification_outage_does_not_fail_submission(lifecycle, notifier, admin, alice, ended_auction) -> None:
    auction = await ended_auction(admin, alice)
    notifier.fail = True

    payment = await lifecycle.submit_payment(auction.id, alice.id, amount=150000, payment_method="cash")

    assert payment.status == PaymentStatus.PENDING
