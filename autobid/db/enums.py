from __future__ import annotations

from enum import StrEnum


class UserRole(StrEnum):
    USER = "user"
    ADMIN = "admin"


class AuctionStatus(StrEnum):
    ACTIVE = "active"
    ENDED = "ended"
    CANCELLED = "cancelled"


class VehicleCondition(StrEnum):
    NEW = "new"
    LIKE_NEW = "like_new"
    GOOD = "good"
    FAIR = "fair"


class PaymentStatus(StrEnum):
    UNPAID = "unpaid"
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


class PaymentMethod(StrEnum):
    BANK_TRANSFER = "bank_transfer"
    EWALLET = "ewallet"
    CASH = "cash"


class NotificationType(StrEnum):
    BID = "bid"
    AUCTION = "auction"
    PAYMENT = "payment"
    SYSTEM = "system"
