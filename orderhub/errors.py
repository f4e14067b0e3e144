"""Domain error taxonomy.

Every error carries a stable machine-readable ``kind`` and the HTTP status
the API layer answers with. Messages are safe to show to clients.
"""


class OrderHubError(Exception):
    """Base class for errors surfaced to API clients."""

    status_code = 500
    default_kind = "internal_error"

    def __init__(self, message: str, kind: str | None = None):
        super().__init__(message)
        self.message = message
        self.kind = kind or self.default_kind

    def to_dict(self) -> dict:
        return {"error": self.kind, "message": self.message}


class ValidationError(OrderHubError):
    """Malformed or missing fields; the request is rejected and nothing is written."""

    status_code = 400
    default_kind = "invalid_event"


class PayloadTooLargeError(OrderHubError):
    status_code = 413
    default_kind = "payload_too_large"


class NotFoundError(OrderHubError):
    status_code = 404
    default_kind = "not_found"


class StorageError(OrderHubError):
    """The event store failed to record or read events."""

    status_code = 500
    default_kind = "storage_error"


class BroadcastError(OrderHubError):
    """Delivery to one subscriber failed. Logged, never returned to callers."""

    default_kind = "broadcast_failed"
