"""Error taxonomy and FastAPI exception handlers"""
import logging
from typing import Optional

from fastapi import Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class InvoicingError(Exception):
    """Base class for errors that map onto a structured error response"""
    status_code = 500

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause

    def to_dict(self) -> dict:
        body = {"error": self.message}
        if self.cause is not None:
            body["detail"] = str(self.cause)
        return body


class AuthenticationError(InvoicingError):
    """Bad or missing webhook signature, or failed credential check"""
    status_code = 400


class NotFoundError(InvoicingError):
    """A referenced local entity does not exist"""
    status_code = 404


class ConflictError(InvoicingError):
    """The requested change collides with existing state"""
    status_code = 409


class UpstreamError(InvoicingError):
    """A call to the payment processor failed.

    ``step`` names the remote operation that failed so multi-step pipelines
    (e.g. invoice creation) report where they stopped.
    """
    status_code = 502

    def __init__(self, message: str, step: Optional[str] = None, cause: Optional[BaseException] = None):
        super().__init__(message, cause)
        self.step = step

    def to_dict(self) -> dict:
        body = super().to_dict()
        if self.step:
            body["step"] = self.step
        return body


class PreconditionError(InvoicingError):
    """The entity is not in a state that allows the action (e.g. no connected account)"""
    status_code = 400


class PersistenceError(InvoicingError):
    """A local store write failed"""
    status_code = 500


async def invoicing_error_handler(request: Request, exc: InvoicingError):
    """Render taxonomy errors raised by forward actions"""
    if exc.status_code >= 500:
        logger.error(f"{type(exc).__name__} on {request.url.path}: {exc.message} ({exc.cause})")
    else:
        logger.info(f"{type(exc).__name__} on {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler"""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error"}
    )
