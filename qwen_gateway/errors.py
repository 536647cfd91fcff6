"""Error taxonomy and the JSON error contract."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .schemas import ErrorResponse
from .utils import describe_error, utc_timestamp

UNHANDLED_ERROR = "Something went wrong!"


class GatewayError(Exception):
    """Base gateway exception, rendered as ``{error, details, timestamp}``."""

    status_code: int = 500

    def __init__(self, error: str, details: str | None = None, status_code: int | None = None):
        self.error = error
        self.details = details
        if status_code is not None:
            self.status_code = status_code
        super().__init__(details or error)


class ValidationError(GatewayError):
    """Client input failed a precondition. Raised before any upstream call."""

    status_code = 400


class UpstreamError(GatewayError):
    """The inference call failed or returned an unusable result."""

    def __init__(
        self,
        details: str,
        status_code: int | None = None,
        error: str = "Error processing request",
    ):
        # Only propagate real HTTP error codes from upstream
        if not isinstance(status_code, int) or not 400 <= status_code <= 599:
            status_code = 500
        super().__init__(error=error, details=details, status_code=status_code)


def error_response(exc: GatewayError) -> JSONResponse:
    body = ErrorResponse(error=exc.error, details=exc.details, timestamp=utc_timestamp())
    return JSONResponse(status_code=exc.status_code, content=body.model_dump(exclude_none=True))


def unhandled_error_response(exc: BaseException) -> JSONResponse:
    body = ErrorResponse(error=UNHANDLED_ERROR, details=describe_error(exc))
    return JSONResponse(status_code=500, content=body.model_dump(exclude_none=True))


def register_exception_handlers(app: FastAPI) -> None:
    """Register the gateway exception handler on the FastAPI app."""

    @app.exception_handler(GatewayError)
    async def handle_gateway_error(_request: Request, exc: GatewayError) -> JSONResponse:
        return error_response(exc)
