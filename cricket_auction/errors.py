"""
cricket_auction/errors.py
Centralized error handling for the auction core and its HTTP surface

ERROR RESPONSE STRUCTURE:
{
    "success": false,
    "error": "ErrorType",
    "message": "Human-readable description",
    "code": "UNIQUE_ERROR_CODE",
    "details": {} (optional)
}

CATEGORIES:
- InvalidTransition: state machine misuse, not retryable as-is
- NotOpenForBidding / BidTooLow / InsufficientBudget / SquadFull:
  business-rule rejections, surfaced verbatim to the bidder
- ConflictError: concurrent modification, safe to retry after re-read
- NoBidsPresent / NotEligible: precondition failures, surfaced to admin

Only ConflictError is retried automatically, and only by the orchestrator.
"""
import logging
from typing import Optional, Dict, Any

from fastapi import status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ErrorCode:
    """Unique error codes for machine-readable error handling"""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_INPUT = "INVALID_INPUT"
    NOT_FOUND = "NOT_FOUND"

    INVALID_TRANSITION = "INVALID_TRANSITION"
    NOT_OPEN_FOR_BIDDING = "NOT_OPEN_FOR_BIDDING"
    BID_TOO_LOW = "BID_TOO_LOW"
    INSUFFICIENT_BUDGET = "INSUFFICIENT_BUDGET"
    SQUAD_FULL = "SQUAD_FULL"
    CONFLICT = "CONFLICT"
    NO_BIDS_PRESENT = "NO_BIDS_PRESENT"
    NOT_ELIGIBLE = "NOT_ELIGIBLE"
    IDEMPOTENCY_KEY_REUSED = "IDEMPOTENCY_KEY_REUSED"
    REGISTRATION_REJECTED = "REGISTRATION_REJECTED"

    RATE_LIMITED = "RATE_LIMITED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class AuctionError(Exception):
    """Base auction exception with consistent structure"""

    status_code = status.HTTP_400_BAD_REQUEST
    error = "Auction Error"
    code = ErrorCode.INVALID_INPUT
    retryable = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None, code: Optional[str] = None):
        self.message = message
        self.details = details
        if code is not None:
            self.code = code
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        result = {
            "success": False,
            "error": self.error,
            "message": self.message,
            "code": self.code
        }
        if self.details:
            result["details"] = self.details
        return result

    def to_response(self) -> JSONResponse:
        """Convert to FastAPI JSONResponse"""
        return JSONResponse(status_code=self.status_code, content=self.to_dict())


class InvalidTransition(AuctionError):
    """409 - State machine misuse"""
    status_code = status.HTTP_409_CONFLICT
    error = "Invalid Transition"
    code = ErrorCode.INVALID_TRANSITION


class NotOpenForBidding(AuctionError):
    """409 - Player is not the one currently under bid"""
    status_code = status.HTTP_409_CONFLICT
    error = "Not Open For Bidding"
    code = ErrorCode.NOT_OPEN_FOR_BIDDING


class BidTooLow(AuctionError):
    """400 - Bid does not beat the base price, floor or current high bid"""
    status_code = status.HTTP_400_BAD_REQUEST
    error = "Bid Too Low"
    code = ErrorCode.BID_TOO_LOW


class InsufficientBudget(AuctionError):
    """400 - Team cannot afford the bid"""
    status_code = status.HTTP_400_BAD_REQUEST
    error = "Insufficient Budget"
    code = ErrorCode.INSUFFICIENT_BUDGET


class SquadFull(InsufficientBudget):
    """400 - Team already holds the maximum number of players"""
    error = "Squad Full"
    code = ErrorCode.SQUAD_FULL


class ConflictError(AuctionError):
    """409 - Concurrent modification, safe to retry after re-read"""
    status_code = status.HTTP_409_CONFLICT
    error = "Conflict"
    code = ErrorCode.CONFLICT
    retryable = True


class NoBidsPresent(AuctionError):
    """409 - Sale requested for a player without an ACTIVE bid"""
    status_code = status.HTTP_409_CONFLICT
    error = "No Bids Present"
    code = ErrorCode.NO_BIDS_PRESENT


class NotEligible(AuctionError):
    """409 - Player not in a state that allows the requested action"""
    status_code = status.HTTP_409_CONFLICT
    error = "Not Eligible"
    code = ErrorCode.NOT_ELIGIBLE


class NotFoundError(AuctionError):
    """404 Not Found - Resource does not exist"""
    status_code = status.HTTP_404_NOT_FOUND
    error = "Not Found"
    code = ErrorCode.NOT_FOUND

    def __init__(self, resource: str, identifier: Any = None):
        message = f"{resource} not found"
        if identifier is not None:
            message = f"{resource} with id '{identifier}' not found"
        super().__init__(message, details={"resource": resource, "id": identifier})


class IdempotencyKeyReused(AuctionError):
    """422 - Same idempotency key presented with a different request"""
    status_code = 422
    error = "Idempotency Key Reused"
    code = ErrorCode.IDEMPOTENCY_KEY_REUSED


class RegistrationError(AuctionError):
    """400 - Registration input rejected"""
    status_code = status.HTTP_400_BAD_REQUEST
    error = "Registration Rejected"
    code = ErrorCode.REGISTRATION_REJECTED


def internal_error_response(error: Exception, context: str = "") -> JSONResponse:
    """Log an internal error and build a safe 500 response"""
    import uuid
    log_id = str(uuid.uuid4())[:8]
    logger.error(f"[{log_id}] Internal error in {context}: {type(error).__name__}: {str(error)}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "success": False,
            "error": "Internal Error",
            "message": "An internal error occurred. Please try again later.",
            "code": ErrorCode.INTERNAL_ERROR,
            "details": {"log_id": log_id}
        }
    )
