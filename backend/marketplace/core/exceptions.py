"""
Marketplace error types and their HTTP mapping.

Services raise the domain errors below. Their messages are meant for the
client and are returned verbatim. Anything else is logged with a traceback
and answered with a generic 500.
"""
import logging

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class MarketplaceError(Exception):
    """Base class for errors whose message is safe to show the caller."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = "BAD_REQUEST"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AuthenticationError(MarketplaceError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "UNAUTHENTICATED"


class ForbiddenError(MarketplaceError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "FORBIDDEN"


class UserInputError(MarketplaceError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "BAD_USER_INPUT"


class NotFoundError(UserInputError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"


class InsufficientStockError(UserInputError):
    code = "INSUFFICIENT_STOCK"

    def __init__(self, requested: int, available: int, message: str | None = None):
        super().__init__(
            message
            or f"Not enough quantity available. Requested: {requested}, Available: {available}"
        )
        self.requested = requested
        self.available = available


class InvalidStatusTransitionError(UserInputError):
    status_code = status.HTTP_409_CONFLICT
    code = "INVALID_STATUS_TRANSITION"

    def __init__(self, current: str, new: str):
        super().__init__(f"Invalid status transition from {current} to {new}")
        self.current = current
        self.new = new


class PaymentGatewayError(MarketplaceError):
    status_code = status.HTTP_502_BAD_GATEWAY
    code = "PAYMENT_GATEWAY_ERROR"


class BusinessError:
    """Response for unexpected failures; the cause is logged, never returned."""

    @staticmethod
    def server_error(original_error: Exception = None) -> HTTPException:
        """
        Generic 500 - logs actual error internally, hides from user.

        Never expose stack traces, SQL errors, or internal paths to users.
        """
        if original_error:
            logger.error(
                f"Internal server error: {type(original_error).__name__}: {str(original_error)}",
                exc_info=original_error,
            )
        else:
            logger.error("Internal server error occurred", exc_info=True)

        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An internal error occurred. Please try again later.",
        )


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(MarketplaceError)
    async def marketplace_error_handler(request: Request, exc: MarketplaceError):
        if exc.status_code >= 500:
            logger.error(f"{exc.code} on {request.url.path}: {exc.message}")
        else:
            logger.info(f"{exc.code} on {request.url.path}: {exc.message}")
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.message, "code": exc.code},
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        http_exc = BusinessError.server_error(exc)
        return JSONResponse(status_code=http_exc.status_code, content={"detail": http_exc.detail})
