"""Order store adapter for the shipping desk.

Loads orders with everything the shipping flows need and persists the
order's ``ShipmentRecord``. Every write to the record is mirrored into the
order's metadata bag under the legacy ``<prefix>_*`` keys and a nested
``<prefix>`` object, which older tooling still reads.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from shipdesk.config import get_settings
from shipdesk.models import Order, OrderItem
from shipdesk.models.shipment import ShipmentRecord
from shipdesk.services.carrier_types import ShipmentDetail
from shipdesk.services.errors import OrderNotFoundError
from shipdesk.services.packages import LineItem

logger = logging.getLogger(__name__)

PICKUP_FIELDS = ("status", "error", "confirmation_number", "last_sync_at", "request")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class OrderSnapshot:
    """Read-only view of an order as the shipping flows use it."""
    id: str
    order_number: str = ""
    email: str = ""
    customer_phone: str = ""
    shipping_address: dict = field(default_factory=dict)
    items: list[LineItem] = field(default_factory=list)
    metadata: dict = field(default_factory=dict)


class OrderStore:
    def __init__(self, db: AsyncSession, prefix: Optional[str] = None):
        self.db = db
        self.prefix = prefix or get_settings().metadata_prefix

    # ── Reads ──────────────────────────────────────────

    async def get_order(self, order_id: Any) -> Order:
        try:
            key = order_id if isinstance(order_id, UUID) else UUID(str(order_id))
        except ValueError:
            raise OrderNotFoundError(f"Order {order_id} not found")
        result = await self.db.execute(
            select(Order)
            .where(Order.id == key)
            .options(
                selectinload(Order.items).selectinload(OrderItem.product),
                selectinload(Order.shipment),
            )
        )
        order = result.scalar_one_or_none()
        if not order:
            raise OrderNotFoundError(f"Order {order_id} not found")
        return order

    @staticmethod
    def line_items(order: Order) -> list[LineItem]:
        items = []
        for item in order.items:
            dims = item.product.shipping_dimensions if item.product else {}
            items.append(LineItem(
                title=item.title or (item.product.title if item.product else ""),
                quantity=item.quantity,
                weight_g=dims.get("weight"),
                length_cm=dims.get("length"),
                width_cm=dims.get("width"),
                height_cm=dims.get("height"),
            ))
        return items

    def snapshot(self, order: Order) -> OrderSnapshot:
        return OrderSnapshot(
            id=str(order.id),
            order_number=order.order_number,
            email=order.customer_email or "",
            customer_phone=order.customer_phone or "",
            shipping_address=dict(order.shipping_address or {}),
            items=self.line_items(order),
            metadata=dict(order.meta or {}),
        )

    def current_shipment_id(self, order: Order) -> Optional[str]:
        """The record's shipment id, else the legacy metadata key."""
        if order.shipment is not None:
            return order.shipment.shipment_id
        legacy = (order.meta or {}).get(f"{self.prefix}_shipment_id")
        return str(legacy) if legacy else None

    def shipment_state(self, order: Order) -> dict:
        record = order.shipment
        return {
            "order_id": str(order.id),
            "shipment": self._record_dict(record) if record else None,
            self.prefix: (order.meta or {}).get(self.prefix),
        }

    # ── Writes ─────────────────────────────────────────

    def ensure_record(self, order: Order) -> Optional[ShipmentRecord]:
        """The order's record, adopting a metadata-only shipment if needed."""
        if order.shipment is not None:
            return order.shipment
        meta = order.meta or {}
        legacy_id = meta.get(f"{self.prefix}_shipment_id")
        if not legacy_id:
            return None
        nested = meta.get(self.prefix) if isinstance(meta.get(self.prefix), dict) else {}
        record = ShipmentRecord(
            order_id=order.id,
            shipment_id=str(legacy_id),
            state=nested.get("state") or "booked",
            unique_id=nested.get("unique_id") or "",
            service_id=nested.get("service_id") or "",
            payment_method_id=nested.get("payment_method_id") or "",
            pickup_status=meta.get(f"{self.prefix}_pickup_status"),
            pickup_error=meta.get(f"{self.prefix}_pickup_error"),
            pickup_confirmation_number=meta.get(f"{self.prefix}_pickup_confirmation_number"),
            pickup_request=meta.get(f"{self.prefix}_pickup_request"),
        )
        order.shipment = record
        logger.info(f"Order {order.id}: adopted shipment {legacy_id} from metadata")
        return record

    async def save_booking(
        self,
        order: Order,
        shipment_id: str,
        *,
        unique_id: str,
        service_id: str,
        payment_method_id: str,
        carrier_name: str = "",
        service_name: str = "",
    ) -> ShipmentRecord:
        """Record a new booking, overwriting whatever the order had."""
        record = order.shipment
        if record is None:
            record = ShipmentRecord(order_id=order.id)
            order.shipment = record
        record.shipment_id = shipment_id
        record.state = "booked"
        record.unique_id = unique_id
        record.service_id = service_id
        record.payment_method_id = payment_method_id
        record.carrier_name = carrier_name
        record.service_name = service_name
        record.tracking_number = None
        record.tracking_url = None
        record.label_url = None
        self._reset_pickup(record)
        record.pickup_last_sync_at = None
        record.booked_at = utcnow()

        # A rebooking starts from a clean slate of legacy keys.
        meta = self._strip(order.meta or {})
        order.meta = self._mirror(meta, record)
        await self.db.commit()
        logger.info(f"Order {order.id}: recorded shipment {shipment_id}")
        return record

    async def save_detail(self, order: Order, detail: ShipmentDetail) -> Optional[ShipmentRecord]:
        record = order.shipment
        if record is None:
            return None
        record.tracking_number = detail.tracking_number
        record.tracking_url = detail.tracking_url
        record.label_url = detail.label
        order.meta = self._mirror(dict(order.meta or {}), record)
        await self.db.commit()
        return record

    async def save_pickup(
        self,
        order: Order,
        *,
        status: Optional[str],
        error: Optional[str],
        confirmation_number: Optional[str],
        request: Optional[dict] = None,
        state: Optional[str] = None,
    ) -> ShipmentRecord:
        record = order.shipment
        record.pickup_status = status
        record.pickup_error = error
        record.pickup_confirmation_number = confirmation_number
        record.pickup_last_sync_at = utcnow()
        if request is not None:
            record.pickup_request = request
        if state:
            record.state = state
        order.meta = self._mirror(dict(order.meta or {}), record)
        await self.db.commit()
        return record

    async def clear_pickup(self, order: Order, state: Optional[str] = None) -> ShipmentRecord:
        """Drop pickup fields; the sync timestamp is refreshed, not cleared."""
        record = order.shipment
        self._reset_pickup(record)
        record.pickup_last_sync_at = utcnow()
        if state:
            record.state = state
        order.meta = self._mirror(dict(order.meta or {}), record)
        await self.db.commit()
        return record

    async def delete_shipment(self, order: Order):
        """Remove the record and every shipping key from the metadata."""
        if order.shipment is not None:
            order.shipment = None
        order.meta = self._strip(order.meta or {})
        await self.db.commit()
        logger.info(f"Order {order.id}: shipment record cleared")

    # ── Metadata mirror ────────────────────────────────

    @staticmethod
    def _reset_pickup(record: ShipmentRecord):
        record.pickup_status = None
        record.pickup_error = None
        record.pickup_confirmation_number = None
        record.pickup_request = None

    @staticmethod
    def _iso(value: Optional[datetime]) -> Optional[str]:
        return value.isoformat() if value else None

    def _record_dict(self, record: ShipmentRecord) -> dict:
        return {
            "shipment_id": record.shipment_id,
            "state": record.state,
            "unique_id": record.unique_id,
            "service_id": record.service_id,
            "payment_method_id": record.payment_method_id,
            "carrier_name": record.carrier_name,
            "service_name": record.service_name,
            "tracking_number": record.tracking_number,
            "tracking_url": record.tracking_url,
            "label_url": record.label_url,
            "pickup_status": record.pickup_status,
            "pickup_error": record.pickup_error,
            "pickup_confirmation_number": record.pickup_confirmation_number,
            "pickup_last_sync_at": self._iso(record.pickup_last_sync_at),
            "pickup_request": record.pickup_request,
            "booked_at": self._iso(record.booked_at),
        }

    def _mirror(self, meta: dict, record: ShipmentRecord) -> dict:
        """Return a new metadata dict carrying the record's legacy keys."""
        p = self.prefix
        meta = dict(meta)
        meta[f"{p}_shipment_id"] = record.shipment_id
        pickup_values = {
            "status": record.pickup_status,
            "error": record.pickup_error,
            "confirmation_number": record.pickup_confirmation_number,
            "last_sync_at": self._iso(record.pickup_last_sync_at),
            "request": record.pickup_request,
        }
        for name in PICKUP_FIELDS:
            key = f"{p}_pickup_{name}"
            if pickup_values[name] is None:
                meta.pop(key, None)
            else:
                meta[key] = pickup_values[name]
        meta[p] = self._record_dict(record)
        return meta

    def _strip(self, meta: dict) -> dict:
        p = self.prefix
        return {k: v for k, v in meta.items() if k != p and not k.startswith(f"{p}_")}
