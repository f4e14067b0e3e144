"""Event records and the typed request variants that produce them.

Raw request bodies are parsed into one request model per event ``type``
(``order``, ``order_status`` or free-form telemetry) before anything reaches
the store. Field names on the wire are camelCase, matching the POS clients.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal
import math
import time
import uuid

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError


class OrderStatus(str, Enum):
    """Order lifecycle values. The sequence is a UI convention, not enforced."""
    ORDERED = "ordered"
    CONFIRMED = "confirmed"
    COOKING = "cooking"
    DELIVERING = "delivering"
    DELIVERED = "delivered"


ORDER_STATUSES = tuple(s.value for s in OrderStatus)

# Largest value an INTEGER column holds
MAX_INT64 = 2**63 - 1

ORDER = "order"
ORDER_STATUS = "order_status"
TAP = "tap"


def now_ms() -> int:
    return int(time.time() * 1000)


def _utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class StoredEvent(BaseModel):
    """One immutable record of the append-only log."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    # Log position, assigned by the store on append
    seq: int = 0
    ts: int = Field(default_factory=now_ms)
    created_at: str = Field(default_factory=_utc_iso, alias="createdAt")
    type: str = TAP
    message: str = "button pressed"
    device_id: str = Field("ios", alias="deviceId")
    order_id: str | None = Field(None, alias="orderId")
    table: str | None = None
    items: list[str] | None = None
    note: str | None = None
    company_name: str | None = Field(None, alias="companyName")
    customer_name: str | None = Field(None, alias="customerName")
    status: str | None = None
    total_cents: int = 0

    @property
    def sort_key(self) -> tuple[int, int]:
        return (self.ts, self.seq)

    def to_payload(self) -> dict[str, Any]:
        """Wire representation (camelCase keys)."""
        return self.model_dump(by_alias=True)


def _coerce_text(value: Any) -> Any:
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, (int, float)):
        return str(value)
    return value


class EventRequest(BaseModel):
    """Fields shared by every inbound event variant."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    type: str = TAP
    message: str = "button pressed"
    device_id: str = Field("ios", alias="deviceId")
    order_id: str | None = Field(None, alias="orderId")
    table: str | None = None
    items: list[str] | None = None
    note: str | None = None
    company_name: str | None = Field(None, alias="companyName")
    customer_name: str | None = Field(None, alias="customerName")
    status: OrderStatus | None = None
    total_cents: int | None = None
    ts: int | None = None

    @field_validator("message", "device_id", mode="before")
    @classmethod
    def _required_text(cls, value: Any, info) -> Any:
        if value is None:
            return cls.model_fields[info.field_name].default
        return _coerce_text(value)

    @field_validator(
        "order_id", "table", "note", "company_name", "customer_name", mode="before"
    )
    @classmethod
    def _optional_text(cls, value: Any) -> Any:
        if value is None or value == "":
            return None
        return _coerce_text(value)

    @field_validator("ts", mode="before")
    @classmethod
    def _client_ts(cls, value: Any) -> int | None:
        # Non-numeric or zero timestamps fall back to server time
        if isinstance(value, bool) or value is None:
            return None
        try:
            ts = int(float(value))
        except (TypeError, ValueError, OverflowError):
            return None
        if abs(ts) > MAX_INT64:
            raise ValueError("ts is out of range")
        return ts or None

    @field_validator("total_cents", mode="before")
    @classmethod
    def _total(cls, value: Any) -> Any:
        if value is None or value == "":
            return None
        if isinstance(value, bool):
            raise ValueError("total_cents must be a number")
        if isinstance(value, str):
            try:
                value = float(value)
            except ValueError:
                raise ValueError("total_cents must be a number")
        if isinstance(value, float):
            if not math.isfinite(value):
                raise ValueError("total_cents must be finite")
            value = int(round(value))
        if isinstance(value, int) and value < 0:
            raise ValueError("total_cents must not be negative")
        if isinstance(value, int) and value > MAX_INT64:
            raise ValueError("total_cents is out of range")
        return value

    def to_stored(self, total_cents: int, received_ms: int | None = None) -> StoredEvent:
        """Build the fully populated record written to the store."""
        return StoredEvent(
            ts=self.ts or received_ms or now_ms(),
            type=self.type,
            message=self.message,
            device_id=self.device_id,
            order_id=self.order_id,
            table=self.table,
            items=self.items,
            note=self.note,
            company_name=self.company_name,
            customer_name=self.customer_name,
            status=self.status.value if self.status else None,
            total_cents=total_cents,
        )


class OrderRequest(EventRequest):
    type: Literal["order"] = ORDER
    items: list[str] = Field(default_factory=list)
    status: OrderStatus = OrderStatus.ORDERED

    @field_validator("items", mode="before")
    @classmethod
    def _items(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("status", mode="before")
    @classmethod
    def _initial_status(cls, value: Any) -> Any:
        return OrderStatus.ORDERED if value in (None, "") else value


class StatusChangeRequest(EventRequest):
    type: Literal["order_status"] = ORDER_STATUS
    order_id: str = Field(..., alias="orderId", min_length=1)
    status: OrderStatus


class TelemetryRequest(EventRequest):
    """Any other event type, e.g. button taps."""


REQUEST_VARIANTS: dict[str, type[EventRequest]] = {
    ORDER: OrderRequest,
    ORDER_STATUS: StatusChangeRequest,
}

# First failing field decides the error kind
_KIND_BY_FIELD = {
    "status": "invalid_status",
    "orderId": "order_id_required",
    "order_id": "order_id_required",
    "items": "invalid_items",
    "total_cents": "invalid_total",
    "ts": "invalid_ts",
}


def parse_event_request(body: Any) -> EventRequest:
    """
    Validate a raw request body into its typed request variant.

    Raises:
        ValidationError: if the body is not an object or a field is malformed
    """
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object", kind="invalid_body")

    event_type = body.get("type", TAP)
    if event_type is None:
        event_type = TAP
    if not isinstance(event_type, str) or not event_type.strip():
        raise ValidationError("Event type must be a non-empty string", kind="invalid_event")

    model = REQUEST_VARIANTS.get(event_type, TelemetryRequest)
    try:
        return model.model_validate({**body, "type": event_type})
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        field = str(first["loc"][0]) if first["loc"] else ""
        kind = _KIND_BY_FIELD.get(field, "invalid_event")
        raise ValidationError(f"{field or 'body'}: {first['msg']}", kind=kind) from exc
