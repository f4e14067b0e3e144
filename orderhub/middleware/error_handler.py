"""Structured error responses.

Every error body carries a stable ``error`` kind. Internals (exception
text, stack traces) never reach the client.
"""
from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
import structlog
from ..errors import OrderHubError

log = structlog.get_logger()


def _error_body(request: Request, error: OrderHubError) -> dict:
    return {
        **error.to_dict(),
        "correlation_id": getattr(request.state, "correlation_id", None),
        "path": str(request.url.path),
    }


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Maps domain errors to their HTTP status and anything else to a 500."""

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except OrderHubError as exc:
            log_method = log.warning if exc.status_code < 500 else log.error
            log_method(
                "request.failed",
                kind=exc.kind,
                status_code=exc.status_code,
                detail=exc.message,
                path=request.url.path,
            )
            return JSONResponse(
                status_code=exc.status_code,
                content=_error_body(request, exc),
            )
        except Exception as exc:
            log.error(
                "unhandled.exception",
                error=str(exc),
                error_type=exc.__class__.__name__,
                path=request.url.path,
                exc_info=True
            )
            return JSONResponse(
                status_code=500,
                content=_error_body(request, OrderHubError("An unexpected error occurred")),
            )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Query/path parameter validation failures."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p not in ("query", "path", "body"))
    log.warning("request.invalid_parameters", path=request.url.path, field=field)
    return JSONResponse(
        status_code=422,
        content=_error_body(
            request, OrderHubError(f"{field}: {first.get('msg', 'invalid')}", kind="validation_error")
        ),
    )
