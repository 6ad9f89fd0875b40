"""
Errors and their HTTP rendering.

Every failure leaves the API in one envelope:

    {"error": {"code": "BID_ALREADY_DECIDED", "message": "...", "details": {},
               "request_id": "...", "timestamp": "...", "path": "...", "method": "..."}}

Lifecycle errors are 409s a client is expected to handle (lost accept race,
bid already withdrawn, escrow not yet funded). InternalInconsistency is the
only 5xx a lifecycle operation raises on purpose.
"""
import uuid
from datetime import datetime, timezone
from typing import Any

import sentry_sdk
from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse

from src.core.logging import get_logger

logger = get_logger(__name__)


class SparkbidException(Exception):
    """Base for every error rendered through the envelope.

    Subclasses pin ``code`` and ``status_code``; instances carry the message
    and whatever ``details`` help a client react.
    """

    code = "INTERNAL_ERROR"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "An error occurred"

    def __init__(self, message: str | None = None, *, code: str | None = None, **details: Any):
        self.message = message or self.default_message
        if code is not None:
            self.code = code
        self.details = {key: str(value) if isinstance(value, uuid.UUID) else value for key, value in details.items()}
        super().__init__(self.message)


class NotFoundError(SparkbidException):
    code = "NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, resource: str, identifier: Any):
        super().__init__(f"{resource} '{identifier}' not found", resource=resource, identifier=str(identifier))


class UnauthorizedError(SparkbidException):
    code = "UNAUTHORIZED"
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Authentication required"


class ForbiddenError(SparkbidException):
    code = "FORBIDDEN"
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Permission denied"


class ConflictError(SparkbidException):
    code = "CONFLICT"
    status_code = status.HTTP_409_CONFLICT
    default_message = "Conflict"


class ValidationError(SparkbidException):
    code = "VALIDATION_ERROR"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class ServiceUnavailableError(SparkbidException):
    code = "SERVICE_UNAVAILABLE"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, service: str, message: str = "Service temporarily unavailable"):
        super().__init__(f"{service}: {message}", service=service)


# === Lifecycle errors ===

class InvalidTransition(ConflictError):
    """A job/escrow state change that the transition table does not allow."""

    code = "INVALID_TRANSITION"

    def __init__(self, entity: str, current: str, target: str):
        super().__init__(
            f"{entity} cannot move from '{current}' to '{target}'",
            entity=entity,
            current=current,
            target=target,
        )


class BidAlreadyDecided(ConflictError):
    """Another bid was accepted first, or the target bid is no longer pending."""

    code = "BID_ALREADY_DECIDED"

    def __init__(self, bid_id: Any, status_: str | None = None):
        extra = {"status": status_} if status_ else {}
        super().__init__("This job already has a decided bid", bid_id=bid_id, **extra)


class JobNotOpenForBids(ConflictError):
    code = "JOB_NOT_OPEN_FOR_BIDS"

    def __init__(self, job_id: Any, status_: str):
        super().__init__("Job is not accepting bids", job_id=job_id, status=status_)


class DuplicateActiveBid(ConflictError):
    code = "DUPLICATE_ACTIVE_BID"

    def __init__(self, job_id: Any):
        super().__init__("You already have an active bid on this job", job_id=job_id)


class BidNotWithdrawable(ConflictError):
    code = "BID_NOT_WITHDRAWABLE"

    def __init__(self, bid_id: Any, status_: str):
        super().__init__(f"Bid in status '{status_}' cannot be withdrawn", bid_id=bid_id, status=status_)


class EscrowNotFunded(ConflictError):
    code = "ESCROW_NOT_FUNDED"

    def __init__(self, job_id: Any, status_: str):
        super().__init__(
            "Escrow must be funded before the job can be completed",
            job_id=job_id,
            escrow_status=status_,
        )


class ConversationArchived(ConflictError):
    code = "CONVERSATION_ARCHIVED"

    def __init__(self, conversation_id: Any):
        super().__init__("Conversation is archived and read-only", conversation_id=conversation_id)


class ConversationNotFound(SparkbidException):
    code = "CONVERSATION_NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, conversation_id: Any):
        super().__init__("Conversation not found", conversation_id=conversation_id)


class InternalInconsistency(SparkbidException):
    """
    A persisted invariant does not hold.

    The transaction that detected it is rolled back. Clients only ever see a
    generic message; the specifics stay in the logs.
    """

    code = "INTERNAL_INCONSISTENCY"
    default_message = "An internal consistency check failed. Please try again later."

    def __init__(self, reason: str, **context: Any):
        self.reason = reason
        self.context = context
        super().__init__()


def request_id_of(request: Request) -> str:
    """Client-supplied X-Request-ID, or one generated once per request."""
    request_id = getattr(request.state, "request_id", None)
    if request_id is None:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
    return request_id


def error_response(
    request: Request,
    code: str,
    message: str,
    status_code: int,
    details: dict | None = None,
) -> ORJSONResponse:
    request_id = request_id_of(request)
    return ORJSONResponse(
        status_code=status_code,
        content={
            "error": {
                "code": code,
                "message": message,
                "details": details or {},
                "request_id": request_id,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "path": request.url.path,
                "method": request.method,
            }
        },
        headers={"X-Request-ID": request_id},
    )


async def sparkbid_exception_handler(request: Request, exc: SparkbidException) -> ORJSONResponse:
    fields = {
        "error_code": exc.code,
        "status_code": exc.status_code,
        "request_id": request_id_of(request),
        "path": request.url.path,
    }
    if exc.status_code >= 500:
        logger.error("Request failed", message=exc.message, **fields)
        sentry_sdk.capture_exception(exc)
    elif exc.status_code == status.HTTP_409_CONFLICT:
        # Lost races and repeated decisions are routine
        logger.info("Request conflicted", **fields)
    else:
        logger.warning("Request rejected", message=exc.message, **fields)

    return error_response(request, exc.code, exc.message, exc.status_code, exc.details)


HTTP_ERROR_CODES = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    422: "VALIDATION_ERROR",
    429: "RATE_LIMIT_EXCEEDED",
}


async def http_exception_handler(request: Request, exc: HTTPException) -> ORJSONResponse:
    code = HTTP_ERROR_CODES.get(exc.status_code, "HTTP_ERROR")
    logger.warning("HTTP error", error_code=code, status_code=exc.status_code, path=request.url.path)
    return error_response(request, code, str(exc.detail), exc.status_code)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> ORJSONResponse:
    errors = [
        {
            "field": ".".join(str(part) for part in err.get("loc", ())),
            "message": err.get("msg", "Invalid value"),
            "type": err.get("type", "value_error"),
        }
        for err in exc.errors()
    ]
    logger.info("Request validation failed", path=request.url.path, fields=[e["field"] for e in errors])
    return error_response(
        request,
        "VALIDATION_ERROR",
        f"Validation failed: {len(errors)} error(s)",
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        {"validation_errors": errors},
    )


async def generic_exception_handler(request: Request, exc: Exception) -> ORJSONResponse:
    request_id = request_id_of(request)
    logger.exception(
        "Unhandled exception",
        request_id=request_id,
        path=request.url.path,
        method=request.method,
        error_type=type(exc).__name__,
    )
    sentry_sdk.capture_exception(exc)
    return error_response(
        request,
        "INTERNAL_ERROR",
        "An unexpected error occurred. Please try again later.",
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        {"error_id": request_id},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(SparkbidException, sparkbid_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
