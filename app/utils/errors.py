from typing import Any, Dict, Optional
from fastapi import FastAPI, Request, status
from starlette.exceptions import HTTPException as StarletteHTTPException
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import SQLAlchemyError
import traceback
from .logging import get_logger
from .responses import ResponseBuilder

logger = get_logger()


class AppError(Exception):
    """
    Base class for errors the API turns into an error envelope.

    Subclasses pick the HTTP status, the default error code and the
    ``error_type`` reported in the response meta.
    """

    status_code: int = status.HTTP_400_BAD_REQUEST
    default_message: str = "An error occurred"
    default_error_code: str = "APP_ERROR"
    error_type: str = "APP_ERROR"

    def __init__(self, message: Optional[str] = None, error_code: Optional[str] = None):
        self.message = message or self.default_message
        self.error_code = error_code or self.default_error_code
        super().__init__(self.message)

    def meta(self) -> Dict[str, Any]:
        return {"error_type": self.error_type}


class BusinessLogicError(AppError):
    """A request that is well-formed but breaks a domain rule."""

    default_error_code = "BLOC_ERROR"
    error_type = "BUSINESS_ERROR"


class NotificationValidationError(BusinessLogicError):
    """Raised before persistence when notification fields are invalid."""

    default_error_code = "NOTIFICATION_VALIDATION_ERROR"


class AuthenticationError(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Authentication failed"
    default_error_code = "AUTH_ERROR"
    error_type = "AUTHENTICATION_ERROR"


class AuthorizationError(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Access denied"
    default_error_code = "AUTHZ_ERROR"
    error_type = "AUTHORIZATION_ERROR"


class NotFoundError(AppError):
    """Missing resource, or one owned by another user."""

    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Resource not found"
    default_error_code = "NOT_FOUND"
    error_type = "NOT_FOUND_ERROR"


class BrokerPublishError(AppError):
    """
    Raised when a notification could not be handed to the message broker.

    The notification row has already been marked FAILED when this reaches
    the HTTP layer.
    """

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "Failed to send notification to queue"
    default_error_code = "PUBLISH_ERROR"
    error_type = "BROKER_PUBLISH_ERROR"

    def __init__(
        self,
        message: Optional[str] = None,
        error_code: Optional[str] = None,
        notification_id: Optional[str] = None,
    ):
        super().__init__(message, error_code)
        self.notification_id = notification_id

    def meta(self) -> Dict[str, Any]:
        return {**super().meta(), "notification_id": self.notification_id}


def _format_validation_errors(exc: RequestValidationError) -> list:
    return [
        {
            "field": " -> ".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]


def setup_error_handlers(app: FastAPI):
    """Map framework and domain errors onto the ResponseBuilder envelope."""

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        logger.error(f"{type(exc).__name__} on {request.url.path}: {exc.message}")

        return ResponseBuilder.error(
            request=request,
            message=exc.message,
            error_code=exc.error_code,
            status_code=exc.status_code,
            meta=exc.meta(),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        logger.error(f"HTTP Exception: {exc.status_code} - {exc.detail}")
        return ResponseBuilder.error(
            request=request,
            message=str(exc.detail),
            error_code="HTTP_ERROR",
            status_code=exc.status_code,
            meta={"http_status": exc.status_code},
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_exception_handler(
        request: Request, exc: RequestValidationError
    ):
        logger.warning(f"Request Validation Error: {exc.errors()}")

        return ResponseBuilder.error(
            request=request,
            message="Request validation failed",
            errors=_format_validation_errors(exc),
            error_code="VALIDATION_ERROR",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        )

    @app.exception_handler(SQLAlchemyError)
    async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError):
        logger.error(f"SQLAlchemy Error: {str(exc)}")

        # Internal database errors are not exposed
        return ResponseBuilder.error(
            request=request,
            message="A database error occurred",
            error_code="DATABASE_ERROR",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            meta={"error_type": "SQLALCHEMY_ERROR"},
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        logger.error(f"Value Error: {str(exc)}")

        return ResponseBuilder.error(
            request=request,
            message=str(exc),
            error_code="VALUE_ERROR",
            status_code=status.HTTP_400_BAD_REQUEST,
            meta={"error_type": "VALUE_ERROR"},
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle all other unhandled exceptions"""
        logger.error(f"Unhandled Exception: {str(exc)}")
        logger.error(f"Traceback: {traceback.format_exc()}")

        return ResponseBuilder.error(
            request=request,
            message="An internal server error occurred",
            error_code="INTERNAL_ERROR",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            meta={"error_type": "INTERNAL_ERROR"},
        )
