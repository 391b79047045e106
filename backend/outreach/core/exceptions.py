"""
Business exceptions and their HTTP mapping.

Every error response carries the same body:
``{"success": false, "error_code": ..., "error": ..., "message": ..., "details": {...}}``
"""
import logging
from typing import Optional, Any, Dict
from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette import status

logger = logging.getLogger(__name__)


class OutreachException(Exception):
    """Base class for every error the API reports on purpose."""

    error_code: str = "OUTREACH_ERROR"
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "Request failed"

    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.message = message or self.default_message
        self.details = dict(details) if details else {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return _error_body(self.error_code, self.message, self.details)


def _error_body(error_code: str, message: str, details: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    # "error" mirrors "message" for clients that only read one of them
    return {
        "success": False,
        "error_code": error_code,
        "error": message,
        "message": message,
        "details": details or {},
    }


# ==================== Not found ====================

class NotFoundException(OutreachException):
    error_code = "NOT_FOUND"
    default_message = "Not found"
    status_code = status.HTTP_404_NOT_FOUND


class CampaignNotFoundException(NotFoundException):
    error_code = "CAMPAIGN_NOT_FOUND"

    def __init__(self, campaign_id: Optional[int] = None):
        super().__init__(message="Campaign not found", details={"campaign_id": campaign_id})


class RecipientNotFoundException(NotFoundException):
    error_code = "RECIPIENT_NOT_FOUND"

    def __init__(self, recipient_id: Optional[int] = None):
        super().__init__(message="Recipient not found", details={"recipient_id": recipient_id})


# ==================== State machine ====================

class StateConflictException(OutreachException):
    """The requested change is not allowed from the current status."""
    default_message = "Conflicts with the current state"
    error_code = "STATE_CONFLICT"
    status_code = status.HTTP_409_CONFLICT


class InvalidTransitionException(StateConflictException):
    error_code = "INVALID_TRANSITION"

    def __init__(self, entity: str, current: str, target: str, reason: Optional[str] = None):
        message = reason or f"Cannot move {entity} from '{current}' to '{target}'"
        super().__init__(
            message=message,
            details={"entity": entity, "current": current, "target": target}
        )


class CampaignLockedException(StateConflictException):
    error_code = "CAMPAIGN_LOCKED"

    def __init__(self, status: str, fields: Optional[list] = None):
        if fields:
            message = f"Only pacing fields can be edited while the campaign is '{status}'"
        else:
            message = f"Campaign cannot be edited while '{status}'"
        super().__init__(message=message, details={"status": status, "fields": fields or []})


class DeleteNotAllowedException(StateConflictException):
    error_code = "DELETE_NOT_ALLOWED"

    def __init__(self, recipient_id: int, status: str):
        super().__init__(
            message=f"Recipient with status '{status}' cannot be deleted",
            details={"recipient_id": recipient_id, "status": status}
        )


class SendInProgressException(StateConflictException):
    error_code = "SEND_IN_PROGRESS"
    default_message = "Another sender is already working on this campaign"

    def __init__(self, campaign_id: int):
        super().__init__(details={"campaign_id": campaign_id})


# ==================== Validation ====================

class ValidationException(OutreachException):
    error_code = "VALIDATION_ERROR"
    default_message = "Invalid request"
    status_code = status.HTTP_400_BAD_REQUEST


class MissingSenderProfileException(ValidationException):
    error_code = "MISSING_SENDER_PROFILE"
    default_message = "Campaign has no sender profile configured"

    def __init__(self, campaign_id: Optional[int] = None):
        super().__init__(details={"campaign_id": campaign_id})


# ==================== Auth ====================

class AuthException(OutreachException):
    error_code = "AUTH_ERROR"
    default_message = "Not authenticated"
    status_code = status.HTTP_401_UNAUTHORIZED


class InvalidWebhookSignatureException(AuthException):
    error_code = "INVALID_WEBHOOK_SIGNATURE"
    default_message = "Missing webhook signature"


# ==================== External services ====================

class ExternalServiceException(OutreachException):
    error_code = "EXTERNAL_SERVICE_ERROR"
    status_code = status.HTTP_502_BAD_GATEWAY


class EmailProviderException(ExternalServiceException):
    error_code = "EMAIL_PROVIDER_ERROR"


class LLMServiceException(ExternalServiceException):
    error_code = "LLM_SERVICE_ERROR"


class ServiceNotConfiguredException(ExternalServiceException):
    error_code = "SERVICE_NOT_CONFIGURED"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


# ==================== Handlers ====================

def register_exception_handlers(app):
    """Attach the JSON error handlers to a FastAPI app."""

    @app.exception_handler(OutreachException)
    async def handle_outreach_error(request: Request, exc: OutreachException):
        logger.warning(f"{request.method} {request.url.path} rejected with {exc.error_code}: {exc.message} {exc.details}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(HTTPException)
    async def handle_http_error(request: Request, exc: HTTPException):
        body = _error_body(f"HTTP_{exc.status_code}", exc.detail)
        return JSONResponse(status_code=exc.status_code, content=body, headers=getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        logger.info(f"Invalid payload for {request.url.path}: {errors}")
        body = _error_body("REQUEST_VALIDATION_ERROR", "Validation Error", {"errors": str(errors)})
        return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content=body)

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception):
        logger.exception(f"Unhandled {type(exc).__name__} on {request.method} {request.url.path}: {exc}")
        body = _error_body("INTERNAL_ERROR", "Internal server error", {"type": type(exc).__name__})
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=body)
