"""Order shipping API: rates, booking, tracking, pickup and cancellation."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from shipdesk.config import get_settings
from shipdesk.database import get_db
from shipdesk.schemas import BookShipmentBody, RateRequestBody
from shipdesk.services.auth import get_current_user
from shipdesk.services.booking import BookingOrchestrator
from shipdesk.services.errors import ShippingError
from shipdesk.services.freightcom import FreightcomClient, get_freightcom_client
from shipdesk.services.order_store import OrderStore
from shipdesk.services.rates import (
    DEFAULT_PAGE_SIZE,
    QuoteRegistry,
    RateRequestOrchestrator,
    get_quote_registry,
)
from shipdesk.services.shipments import ShipmentStateManager

router = APIRouter(
    prefix="/orders/{order_id}/shipping",
    tags=["shipping"],
    dependencies=[Depends(get_current_user)],
)


def get_order_store(db: AsyncSession = Depends(get_db)) -> OrderStore:
    return OrderStore(db)


def get_rate_orchestrator(
    client: FreightcomClient = Depends(get_freightcom_client),
    registry: QuoteRegistry = Depends(get_quote_registry),
) -> RateRequestOrchestrator:
    return RateRequestOrchestrator(client, registry)


def get_booking_orchestrator(
    client: FreightcomClient = Depends(get_freightcom_client),
    store: OrderStore = Depends(get_order_store),
) -> BookingOrchestrator:
    return BookingOrchestrator(client, store)


def get_shipment_manager(
    client: FreightcomClient = Depends(get_freightcom_client),
    store: OrderStore = Depends(get_order_store),
) -> ShipmentStateManager:
    return ShipmentStateManager(client, store)


def _http_error(e: ShippingError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=e.to_dict())


# --- Rates ---

@router.post("/rates")
async def request_rates(
    order_id: UUID,
    response: Response,
    body: Optional[RateRequestBody] = None,
    store: OrderStore = Depends(get_order_store),
    rates: RateRequestOrchestrator = Depends(get_rate_orchestrator),
):
    """Start (or resume) a quote. 200 with a sorted page, 202 while processing."""
    body = body or RateRequestBody()
    try:
        order = await store.get_order(order_id)
        overrides = body.package_overrides.model_dump(exclude_none=True) if body.package_overrides else None
        result = await rates.request_rates(
            store.snapshot(order),
            offset=body.offset,
            limit=body.limit,
            ship_date=body.expected_ship_date_override,
            package_overrides=overrides,
            request_id=body.request_id,
            sort=body.sort,
        )
    except ShippingError as e:
        raise _http_error(e)
    if not result.is_ready:
        response.status_code = 202
    return result.to_dict()


@router.get("/rates/{request_id}")
async def get_rates(
    order_id: UUID,
    request_id: str,
    page: int = Query(1),
    page_size: int = Query(DEFAULT_PAGE_SIZE),
    sort: str = Query("best"),
    store: OrderStore = Depends(get_order_store),
    rates: RateRequestOrchestrator = Depends(get_rate_orchestrator),
):
    """Server-side sort and pagination over a quote's full result."""
    try:
        await store.get_order(order_id)
        return await rates.get_rates_page(request_id, page=page, page_size=page_size, sort=sort)
    except ShippingError as e:
        raise _http_error(e)


@router.get("/payment-methods")
async def list_payment_methods(
    order_id: UUID,
    store: OrderStore = Depends(get_order_store),
    manager: ShipmentStateManager = Depends(get_shipment_manager),
):
    try:
        await store.get_order(order_id)
        return await manager.payment_methods()
    except ShippingError as e:
        raise _http_error(e)


# --- Booking ---

@router.post("/shipments")
async def book_shipment(
    order_id: UUID,
    body: BookShipmentBody,
    store: OrderStore = Depends(get_order_store),
    booking: BookingOrchestrator = Depends(get_booking_orchestrator),
):
    try:
        order = await store.get_order(order_id)
        result = await booking.book_shipment(
            order,
            service_id=body.service_id,
            payment_method_id=body.payment_method_id,
            expected_ship_date=body.expected_ship_date,
            package_overrides=body.package_overrides.model_dump(exclude_none=True) if body.package_overrides else None,
            unique_id=body.unique_id,
            customs_and_duties_payment_method_id=body.customs_and_duties_payment_method_id,
            carrier_name=body.carrier_name,
            service_name=body.service_name,
        )
    except ShippingError as e:
        raise _http_error(e)
    return result.to_dict(include_raw=get_settings().return_carrier_raw)


@router.get("/state")
async def shipping_state(
    order_id: UUID,
    store: OrderStore = Depends(get_order_store),
    manager: ShipmentStateManager = Depends(get_shipment_manager),
):
    try:
        order = await store.get_order(order_id)
    except ShippingError as e:
        raise _http_error(e)
    return manager.shipment_state(order)


# --- Shipment ---

@router.get("/shipments/{shipment_id}")
async def get_shipment(
    order_id: UUID,
    shipment_id: str,
    store: OrderStore = Depends(get_order_store),
    manager: ShipmentStateManager = Depends(get_shipment_manager),
):
    try:
        await store.get_order(order_id)
        return await manager.get_details(shipment_id)
    except ShippingError as e:
        raise _http_error(e)


@router.get("/shipments/{shipment_id}/tracking-events")
async def get_tracking_events(
    order_id: UUID,
    shipment_id: str,
    store: OrderStore = Depends(get_order_store),
    manager: ShipmentStateManager = Depends(get_shipment_manager),
):
    try:
        await store.get_order(order_id)
        return await manager.tracking_events(shipment_id)
    except ShippingError as e:
        raise _http_error(e)


@router.post("/shipments/{shipment_id}/cancel")
async def cancel_shipment(
    order_id: UUID,
    shipment_id: str,
    store: OrderStore = Depends(get_order_store),
    manager: ShipmentStateManager = Depends(get_shipment_manager),
):
    """Cancel at the carrier; local shipment state is cleared regardless."""
    try:
        order = await store.get_order(order_id)
        return await manager.cancel_shipment(order, shipment_id)
    except ShippingError as e:
        raise _http_error(e)


# --- Pickup ---

@router.get("/shipments/{shipment_id}/schedule")
async def get_pickup(
    order_id: UUID,
    shipment_id: str,
    store: OrderStore = Depends(get_order_store),
    manager: ShipmentStateManager = Depends(get_shipment_manager),
):
    try:
        order = await store.get_order(order_id)
        return await manager.get_pickup(order, shipment_id)
    except ShippingError as e:
        raise _http_error(e)


@router.post("/shipments/{shipment_id}/schedule")
async def schedule_pickup(
    order_id: UUID,
    shipment_id: str,
    payload: Optional[dict] = Body(None),
    store: OrderStore = Depends(get_order_store),
    manager: ShipmentStateManager = Depends(get_shipment_manager),
):
    try:
        order = await store.get_order(order_id)
        return await manager.schedule_pickup(order, shipment_id, payload)
    except ShippingError as e:
        raise _http_error(e)


@router.delete("/shipments/{shipment_id}/schedule")
async def cancel_pickup(
    order_id: UUID,
    shipment_id: str,
    store: OrderStore = Depends(get_order_store),
    manager: ShipmentStateManager = Depends(get_shipment_manager),
):
    try:
        order = await store.get_order(order_id)
        return await manager.cancel_pickup(order, shipment_id)
    except ShippingError as e:
        raise _http_error(e)
