"""Error taxonomy and HTTP error mapping."""
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class CallAgentError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 500
    error = "Internal Server Error"

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.error


class InvalidSpec(CallAgentError):
    """Malformed session or document input."""

    status_code = 400
    error = "Validation Error"


class SessionNotFound(CallAgentError):
    """No session exists for the requested id."""

    status_code = 404
    error = "Session Not Found"


class CorrelationConflict(CallAgentError):
    """Attempt to bind a second provider id to an already correlated call."""

    status_code = 409
    error = "Correlation Conflict"


class UpstreamUnavailable(CallAgentError):
    """A speech, model or telephony backend could not be reached."""

    status_code = 503
    error = "Service Unavailable"


class InternalError(CallAgentError):
    """Unexpected fault. The message shown to callers is always generic."""

    status_code = 500
    error = "Internal Server Error"


async def call_agent_error_handler(request: Request, exc: CallAgentError) -> JSONResponse:
    """Render a CallAgentError as a structured JSON error."""
    if isinstance(exc, InternalError):
        logger.error(
            f"[ERROR] Internal error - Path: {request.url.path}, Detail: {exc.message}"
        )
        message = "Something went wrong"
    else:
        logger.warning(
            f"[ERROR] {type(exc).__name__} - Path: {request.url.path}, Detail: {exc.message}"
        )
        message = exc.message
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.error, "message": message},
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log unexpected exceptions in full and return a generic 500."""
    logger.error(
        f"[ERROR] Unhandled error - Path: {request.url.path}, Method: {request.method}, "
        f"Error: {type(exc).__name__}: {str(exc)}",
        exc_info=exc,
    )
    return JSONResponse(
        status_code=500,
        content={"error": "Internal Server Error", "message": "Something went wrong"},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Install the error handlers on an application."""
    app.add_exception_handler(CallAgentError, call_agent_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
