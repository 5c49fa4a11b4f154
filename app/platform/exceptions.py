import logging

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.platform.response import api_response


class AssuranceError(Exception):
    """Base class for every error raised by the crawl/scan/alert pipeline."""

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class TransientScanError(AssuranceError):
    """Navigation timeout, browser crash or temporary DNS failure. Retryable."""


class PageScanError(AssuranceError):
    """Rule-engine exception or unparseable DOM. Fatal for one page only."""


class BatchFatalError(AssuranceError):
    """No browser session could be acquired, or the seed never resolved."""


class NotFoundError(AssuranceError):
    pass


class InvalidStateError(AssuranceError):
    pass


def add_exception_handlers(app):
    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return api_response(message=str(exc.detail) or "Error", status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return api_response(
            message="Validation failed",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            data={"errors": exc.errors()},
        )

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return api_response(message=exc.message or "Not found", status_code=status.HTTP_404_NOT_FOUND)

    @app.exception_handler(InvalidStateError)
    async def invalid_state_handler(request: Request, exc: InvalidStateError):
        return api_response(message=exc.message or "Conflict", status_code=status.HTTP_409_CONFLICT)

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logging.exception(f"Unhandled exception: {exc}")
        return api_response(
            message="Internal server error",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
