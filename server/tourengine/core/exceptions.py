"""Problem Details (RFC 9457) errors raised by the engine and their FastAPI handlers."""

import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .database import utcnow

PROBLEM_TYPE_BASE = "https://tourengine.dev/problems/"


def problem_type(slug: str) -> str:
    """Type URI of a problem kind."""
    return PROBLEM_TYPE_BASE + slug


class ProblemDetailsException(HTTPException):
    """
    An error rendered as an ``application/problem+json`` body.

    Members beyond the RFC (``code``, ``retryable`` and anything specific to
    the failure) travel as extensions at the top level of the document.

    https://www.rfc-editor.org/rfc/rfc9457
    """

    def __init__(
        self,
        status_code: int,
        title: str,
        detail: Optional[str] = None,
        type_uri: Optional[str] = None,
        instance: Optional[str] = None,
        extensions: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.status_code = status_code
        self.title = title
        self.type_uri = type_uri or f"about:blank#{status_code}"
        self.instance = instance
        self.extensions = dict(extensions or {})

        document: Dict[str, Any] = {"type": self.type_uri, "title": title, "status": status_code}
        if detail:
            document["detail"] = detail
        if instance:
            document["instance"] = instance
        document.update(self.extensions)
        self.problem_details = document

        super().__init__(status_code=status_code, detail=document, headers=headers)

    @property
    def code(self) -> Optional[str]:
        """Machine-readable error code, when one was attached."""
        return self.problem_details.get("code")

    @property
    def retryable(self) -> bool:
        return bool(self.problem_details.get("retryable", False))


class ValidationError(ProblemDetailsException):
    """Input the engine refuses before touching any state (400)."""

    def __init__(
        self,
        detail: str = "The request data failed validation",
        errors: Optional[Dict[str, Any]] = None,
        instance: Optional[str] = None,
    ):
        extensions: Dict[str, Any] = {"code": "VALIDATION_ERROR", "retryable": False}
        if errors:
            extensions["errors"] = errors
        super().__init__(400, "Invalid Request", detail, problem_type("invalid-request"), instance, extensions)


class AuthenticationError(ProblemDetailsException):
    """Missing or unusable guide bearer token (401)."""

    def __init__(self, detail: str = "Authentication credentials are required", instance: Optional[str] = None):
        super().__init__(
            401,
            "Authentication Required",
            detail,
            problem_type("authentication-required"),
            instance,
            headers={"WWW-Authenticate": "Bearer"},
        )


class AuthorizationError(ProblemDetailsException):
    """The caller is not the guide owning the resource (403)."""

    def __init__(self, detail: str = "The resource belongs to another guide", instance: Optional[str] = None):
        super().__init__(403, "Access Forbidden", detail, problem_type("not-owner"), instance)


class NotFoundError(ProblemDetailsException):
    """Unknown token, reference or identifier (404)."""

    def __init__(
        self,
        resource_type: str = "resource",
        resource_id: Optional[str] = None,
        detail: Optional[str] = None,
        instance: Optional[str] = None,
    ):
        if not detail:
            detail = (
                f"No {resource_type} with ID '{resource_id}'" if resource_id else f"No such {resource_type}"
            )
        extensions: Dict[str, Any] = {"code": "NOT_FOUND", "resource_type": resource_type}
        if resource_id:
            extensions["resource_id"] = resource_id
        super().__init__(404, "Not Found", detail, problem_type("not-found"), instance, extensions)


class StateConflictError(ProblemDetailsException):
    """The resource is terminal or otherwise not in a state allowing the operation (409)."""

    def __init__(
        self,
        detail: str = "The resource is not in a state that allows this operation",
        conflicting_resource: Optional[Dict[str, Any]] = None,
        code: str = "STATE_CONFLICT",
        instance: Optional[str] = None,
    ):
        extensions: Dict[str, Any] = {"code": code, "retryable": False}
        if conflicting_resource:
            extensions["conflicting_resource"] = conflicting_resource
        super().__init__(409, "State Conflict", detail, problem_type("state-conflict"), instance, extensions)


class CapacityExceededError(ProblemDetailsException):
    """A reservation would take a slot past its capacity (409)."""

    def __init__(
        self,
        slot_id: str,
        requested_spots: int,
        spots_remaining: int,
        detail: Optional[str] = None,
        instance: Optional[str] = None,
    ):
        super().__init__(
            409,
            "Capacity Exceeded",
            detail or f"Slot {slot_id} has {spots_remaining} spots left, {requested_spots} requested",
            problem_type("capacity-exceeded"),
            instance,
            {
                "code": "CAPACITY_EXCEEDED",
                "retryable": False,
                "slot_id": slot_id,
                "requested_spots": requested_spots,
                "spots_remaining": spots_remaining,
            },
        )


class OfferExpiredError(StateConflictError):
    """The offer's expiry instant has passed."""

    def __init__(self, offer_id: str, expires_at: datetime):
        expired_at = expires_at.isoformat() + "Z"
        super().__init__(detail=f"Offer {offer_id} expired at {expired_at}", code="OFFER_EXPIRED")
        self.problem_details.update({"offer_id": offer_id, "expired_at": expired_at})


class ExternalServiceError(ProblemDetailsException):
    """The payment processor or the email provider failed (502, retryable)."""

    def __init__(self, service: str, detail: Optional[str] = None, instance: Optional[str] = None):
        super().__init__(
            502,
            "Upstream Service Failure",
            detail or f"The {service} provider could not process the request",
            problem_type("upstream-failure"),
            instance,
            {"code": "EXTERNAL_SERVICE_ERROR", "retryable": True, "service": service},
        )


async def problem_details_handler(request: Request, exc: ProblemDetailsException) -> JSONResponse:
    """Render a raised problem as its document."""
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.problem_details,
        headers=exc.headers,
        media_type="application/problem+json",
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render request model validation failures as Problem Details with violations."""
    violations = [
        {
            "path": ".".join(str(part) for part in error.get("loc", ())),
            "message": error.get("msg", "Invalid value"),
        }
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=422,
        content={
            "type": problem_type("request-validation"),
            "title": "Request Validation Failed",
            "status": 422,
            "detail": f"{len(violations)} field(s) failed validation",
            "instance": str(request.url),
            "violations": violations,
        },
        media_type="application/problem+json",
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Anything unhandled becomes an opaque 500 with an id to correlate with the logs."""
    return JSONResponse(
        status_code=500,
        content={
            "type": problem_type("internal-error"),
            "title": "Internal Server Error",
            "status": 500,
            "detail": "An unexpected error occurred while processing the request",
            "instance": str(request.url),
            "error_id": str(uuid.uuid4()),
            "timestamp": utcnow().isoformat() + "Z",
        },
        media_type="application/problem+json",
    )
