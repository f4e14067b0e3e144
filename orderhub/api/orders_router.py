"""Order projection, status change and sales statistics routes."""
from fastapi import APIRouter, Depends, Query, Request, Response
from .deps import NO_STORE, Services, get_services, read_json_body
from ..errors import ValidationError
from ..event_models import now_ms
from ..services.sales import DAY_MS

router = APIRouter(prefix="/api/orders", tags=["orders"])

DEFAULT_SALES_WINDOW_DAYS = 7


@router.get("")
async def list_orders(
    response: Response,
    active: bool = False,
    services: Services = Depends(get_services),
):
    """Projected orders, newest first; ``active=true`` hides delivered ones."""
    orders = services.projection.list_orders(active_only=active)
    response.headers["Cache-Control"] = NO_STORE
    return [o.to_payload() for o in orders]


@router.patch("/{order_id}/status")
async def change_order_status(
    order_id: str,
    request: Request,
    services: Services = Depends(get_services),
):
    """Record a status change for an order."""
    body = await read_json_body(request, services.settings.MAX_EVENT_SIZE)
    status = body.get("status") if isinstance(body, dict) else None
    stored = await services.ingestion.change_status(order_id, status)
    return {"ok": True, "event": stored.to_payload()}


@router.get("/sales")
async def sales_in_range(
    from_ms: int | None = Query(None, alias="from"),
    to_ms: int | None = Query(None, alias="to"),
    services: Services = Depends(get_services),
):
    """Sales and bestsellers for ``from <= ts < to`` (default: last 7 days)."""
    now = now_ms()
    if not from_ms:
        from_ms = now - DEFAULT_SALES_WINDOW_DAYS * DAY_MS
    if not to_ms:
        to_ms = now
    if from_ms > to_ms:
        raise ValidationError("from must not be after to", kind="invalid_range")
    return await services.sales.sales_in_range(from_ms, to_ms)


@router.get("/sales/summary")
async def sales_summary(services: Services = Depends(get_services)):
    """Sales for today and the 7/30/90/180/365-day lookbacks."""
    return await services.sales.sales_summary()


@router.get("/stats")
async def order_stats(services: Services = Depends(get_services)):
    """Order counts by status, day and company over the last 7 days."""
    return await services.sales.order_stats()
