from __future__ import annotations


class AuctionServiceError(Exception):
    code = "error"

    def __init__(self, message: str, *, details: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class NotFound(AuctionServiceError):
    code = "not_found"


class InvalidState(AuctionServiceError):
    code = "invalid_state"


class ValidationFailed(AuctionServiceError):
    code = "validation_failed"


class Forbidden(AuctionServiceError):
    code = "forbidden"


class DependencyFailure(AuctionServiceError):
    """A collaborator (notification sink, document renderer) failed."""

    code = "dependency_failure"
