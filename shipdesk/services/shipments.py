"""Shipment state manager.

Reads shipment details and tracking from the carrier and drives the pickup
sub-lifecycle of the order's current shipment:

    none -> booked -> (pickup_scheduled <-> pickup_cancelled) -> cancelled

Pickup calls must name the shipment the order currently owns. Cancelling a
pickup or a shipment always clears local state, whatever the carrier says.
"""

import logging
from typing import Any, Optional

from shipdesk.config import get_settings
from shipdesk.services.errors import CarrierAPIError, ShipmentConflictError, ShippingError
from shipdesk.services.freightcom import FreightcomClient
from shipdesk.services.order_store import OrderStore

logger = logging.getLogger(__name__)


class ShipmentStateManager:
    def __init__(self, client: FreightcomClient, store: OrderStore):
        self.client = client
        self.store = store

    def assert_current(self, order, shipment_id: str):
        """Raise unless ``shipment_id`` is the order's current shipment."""
        current = self.store.current_shipment_id(order)
        if not current:
            raise ShipmentConflictError(
                f"Order {order.id} has no recorded shipment",
                code="NO_SHIPMENT_ON_ORDER",
                details={"shipment_id": shipment_id},
            )
        if current != shipment_id:
            raise ShipmentConflictError(
                "Shipment id does not match the order's recorded shipment",
                code="SHIPMENT_ID_MISMATCH",
                details={"shipment_id": shipment_id, "recorded_shipment_id": current},
            )

    # ── Read-through ───────────────────────────────────

    async def get_details(self, shipment_id: str) -> dict:
        detail = await self.client.get_shipment(shipment_id)
        return detail.summary()

    async def tracking_events(self, shipment_id: str) -> dict:
        events = await self.client.get_tracking_events(shipment_id)
        return {"events": [e.model_dump(exclude_none=True) for e in events]}

    def shipment_state(self, order) -> dict:
        return self.store.shipment_state(order)

    async def payment_methods(self) -> dict:
        methods, raw = await self.client.list_payment_methods()
        body: dict[str, Any] = {"methods": [{"id": m.id, "label": m.label} for m in methods]}
        if get_settings().return_carrier_raw:
            body["raw"] = raw
        return body

    # ── Pickup ─────────────────────────────────────────

    @staticmethod
    def _pickup_body(record, exists: bool = True) -> dict:
        return {
            "exists": exists,
            "status": record.pickup_status,
            "error": record.pickup_error,
            "pickup_confirmation_number": record.pickup_confirmation_number,
            "pickup_last_sync_at": record.pickup_last_sync_at.isoformat() if record.pickup_last_sync_at else None,
            "state": record.state,
        }

    async def schedule_pickup(self, order, shipment_id: str, request: Optional[dict] = None) -> dict:
        self.assert_current(order, shipment_id)
        request = request or {}
        pickup = await self.client.schedule_pickup(shipment_id, request)

        self.store.ensure_record(order)
        record = await self.store.save_pickup(
            order,
            status=pickup.status or "pending",
            error=pickup.error,
            confirmation_number=pickup.pickup_confirmation_number,
            request=request,
            state="pickup_scheduled",
        )
        logger.info(f"Shipment {shipment_id}: pickup scheduled ({record.pickup_status})")
        return self._pickup_body(record)

    async def get_pickup(self, order, shipment_id: str) -> dict:
        self.assert_current(order, shipment_id)
        try:
            pickup = await self.client.get_pickup(shipment_id)
        except CarrierAPIError as e:
            if not e.is_not_found:
                raise
            self.store.ensure_record(order)
            await self.store.clear_pickup(order)
            logger.info(f"Shipment {shipment_id}: no pickup scheduled at carrier")
            return {"exists": False}

        self.store.ensure_record(order)
        record = await self.store.save_pickup(
            order,
            status=pickup.status,
            error=pickup.error,
            confirmation_number=pickup.pickup_confirmation_number,
        )
        return self._pickup_body(record)

    async def cancel_pickup(self, order, shipment_id: str) -> dict:
        """Best-effort: local pickup state is cleared whatever the carrier answers."""
        self.assert_current(order, shipment_id)
        provider_error = None
        try:
            await self.client.cancel_pickup(shipment_id)
        except ShippingError as e:
            logger.warning(f"Shipment {shipment_id}: carrier pickup cancel failed, clearing locally: {e.message}")
            provider_error = e.to_dict()

        self.store.ensure_record(order)
        record = await self.store.clear_pickup(order, state="pickup_cancelled")
        body = {"cancelled": True, **self._pickup_body(record, exists=False)}
        if provider_error:
            body["provider_error"] = provider_error
        return body

    # ── Shipment ───────────────────────────────────────

    async def cancel_shipment(self, order, shipment_id: str) -> dict:
        """Cancel at the carrier, then always drop the order's shipment state."""
        current = self.store.current_shipment_id(order)
        if current and current != shipment_id:
            logger.warning(f"Order {order.id}: cancelling shipment {shipment_id} but {current} is on record; clearing it anyway")
        provider_error = None
        reply = None
        try:
            reply = await self.client.cancel_shipment(shipment_id)
        except ShippingError as e:
            logger.warning(f"Shipment {shipment_id}: carrier cancel failed, clearing locally: {e.message}")
            provider_error = e.to_dict()

        await self.store.delete_shipment(order)
        body: dict[str, Any] = {"cancelled": True, "metadata_reset": True, "shipment_id": shipment_id}
        if provider_error:
            body["provider_error"] = provider_error
        elif reply:
            body["provider_response"] = reply
        return body
