"""Request payload size limit."""
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse
import structlog
from ..errors import PayloadTooLargeError

log = structlog.get_logger()


class PayloadLimitMiddleware(BaseHTTPMiddleware):
    """Rejects write requests whose declared body exceeds ``max_size`` bytes.

    Bodies sent without Content-Length are checked again when the endpoint
    reads them (see ``api.deps.read_json_body``).
    """

    def __init__(self, app, max_size: int):
        super().__init__(app)
        self.max_size = max_size

    async def dispatch(self, request: Request, call_next):
        if request.method in ("POST", "PUT", "PATCH"):
            content_length = request.headers.get("content-length")
            if content_length and content_length.isdigit() and int(content_length) > self.max_size:
                log.warning(
                    "payload.too_large",
                    size=int(content_length),
                    max_size=self.max_size,
                    path=request.url.path
                )
                error = PayloadTooLargeError(
                    f"Request payload exceeds maximum size of {self.max_size} bytes"
                )
                return JSONResponse(
                    status_code=error.status_code,
                    content={
                        **error.to_dict(),
                        "max_size": self.max_size,
                        "received_size": int(content_length),
                    }
                )
        return await call_next(request)
