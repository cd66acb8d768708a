"""Shipment booking.

Validates an order for booking, builds the carrier body (fixed warehouse
origin, destination from the order, one package per unit) and books it with
an idempotency key. The shipment id is recorded on the order before details
are fetched, so a failing detail call never loses a booking.
"""

import asyncio
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Optional

from shipdesk.services.carrier_types import CalendarDate, ShipmentDetail
from shipdesk.services.errors import (
    ShipmentConflictError,
    ShippingError,
    ShippingValidationError,
)
from shipdesk.services.freightcom import FreightcomClient
from shipdesk.services.order_store import OrderStore
from shipdesk.services.packages import build_packages
from shipdesk.services.rates import build_destination, build_details, build_origin, require_address

logger = logging.getLogger(__name__)

MIN_PHONE_DIGITS = 10
MAX_PHONE_DIGITS = 15


def normalize_phone(raw: Any) -> Optional[str]:
    """Digits only; at least 10 of them, keeping the last 15."""
    if raw is None:
        return None
    digits = re.sub(r"\D", "", str(raw))
    if len(digits) < MIN_PHONE_DIGITS:
        return None
    return digits[-MAX_PHONE_DIGITS:]


def resolve_destination_phone(order) -> Optional[str]:
    """Shipping-address phone first, then the customer's."""
    address = order.shipping_address or {}
    return normalize_phone(address.get("phone")) or normalize_phone(order.customer_phone)


def make_unique_id(order_id: Any) -> str:
    return f"order_{order_id}_{int(time.time() * 1000)}"


@dataclass
class BookingResult:
    shipment_id: str
    unique_id: str
    shipment: Optional[dict] = None
    tracking_url: Optional[str] = None
    tracking_number: Optional[str] = None
    label_url: Optional[str] = None
    previously_created: bool = False
    detail_error: Optional[dict] = None
    booked: Any = None

    def to_dict(self, include_raw: bool = False) -> dict:
        body = {
            "shipment_id": self.shipment_id,
            "unique_id": self.unique_id,
            "tracking_url": self.tracking_url,
            "tracking_number": self.tracking_number,
            "label_url": self.label_url,
            "shipment": self.shipment,
            "previously_created": self.previously_created,
        }
        if self.detail_error:
            body["detail_error"] = self.detail_error
        if include_raw and self.booked is not None:
            body["booked"] = self.booked
        return body


class BookingOrchestrator:
    """Books carrier shipments for orders, one at a time per order."""

    _locks: dict[str, asyncio.Lock] = {}

    def __init__(self, client: FreightcomClient, store: OrderStore):
        self.client = client
        self.store = store

    @classmethod
    def _lock_for(cls, order_id: str) -> asyncio.Lock:
        lock = cls._locks.get(order_id)
        if lock is None:
            lock = cls._locks[order_id] = asyncio.Lock()
        return lock

    @staticmethod
    def validate(
        order,
        *,
        service_id: Optional[str],
        payment_method_id: Optional[str],
        expected_ship_date: Optional[CalendarDate],
    ) -> tuple[str, dict]:
        """Check preconditions in order; returns ``(phone, address)``."""
        if not service_id:
            raise ShippingValidationError("Missing service_id", code="MISSING_SERVICE_ID")
        if not payment_method_id:
            raise ShippingValidationError("Missing payment_method_id", code="MISSING_PAYMENT_METHOD_ID")
        if expected_ship_date is None or not expected_ship_date.is_set:
            raise ShippingValidationError("Missing expected_ship_date", code="MISSING_EXPECTED_SHIP_DATE")

        phone = resolve_destination_phone(order)
        if not phone:
            raise ShippingValidationError(
                "Customer phone number is required to book shipment. "
                "Please add a phone number to the customer or shipping address.",
                code="DESTINATION_PHONE_REQUIRED",
            )
        address = require_address(order.shipping_address)
        return phone, address

    async def book_shipment(
        self,
        order,
        *,
        service_id: Optional[str],
        payment_method_id: Optional[str],
        expected_ship_date: Optional[CalendarDate],
        package_overrides: Optional[dict] = None,
        unique_id: Optional[str] = None,
        customs_and_duties_payment_method_id: Optional[str] = None,
        carrier_name: str = "",
        service_name: str = "",
    ) -> BookingResult:
        """Book ``order`` (an ORM ``Order``) with the chosen service."""
        snapshot = self.store.snapshot(order)
        phone, address = self.validate(
            snapshot,
            service_id=service_id,
            payment_method_id=payment_method_id,
            expected_ship_date=expected_ship_date,
        )

        lock = self._lock_for(snapshot.id)
        if lock.locked():
            raise ShipmentConflictError(
                f"A booking for order {snapshot.id} is already in progress",
                code="BOOKING_IN_PROGRESS",
            )

        try:
            async with lock:
                return await self._book(
                    order,
                    snapshot,
                    phone=phone,
                    address=address,
                    service_id=service_id,
                    payment_method_id=payment_method_id,
                    expected_ship_date=expected_ship_date,
                    package_overrides=package_overrides,
                    unique_id=unique_id,
                    customs_and_duties_payment_method_id=customs_and_duties_payment_method_id,
                    carrier_name=carrier_name,
                    service_name=service_name,
                )
        finally:
            if not lock.locked():
                self._locks.pop(snapshot.id, None)

    async def _book(
        self,
        order,
        snapshot,
        *,
        phone: str,
        address: dict,
        service_id: str,
        payment_method_id: str,
        expected_ship_date: CalendarDate,
        package_overrides: Optional[dict],
        unique_id: Optional[str],
        customs_and_duties_payment_method_id: Optional[str],
        carrier_name: str,
        service_name: str,
    ) -> BookingResult:
        record = order.shipment
        if unique_id and record is not None and record.unique_id == unique_id:
            logger.info(f"Order {snapshot.id}: booking {unique_id} already created as {record.shipment_id}")
            return BookingResult(
                shipment_id=record.shipment_id,
                unique_id=unique_id,
                tracking_url=record.tracking_url,
                tracking_number=record.tracking_number,
                label_url=record.label_url,
                previously_created=True,
            )

        unique_id = unique_id or make_unique_id(snapshot.id)
        packages = build_packages(snapshot.items, package_overrides)
        body = {
            "unique_id": unique_id,
            "payment_method_id": payment_method_id,
            "customs_and_duties_payment_method_id": customs_and_duties_payment_method_id,
            "service_id": service_id,
            "details": build_details(
                build_origin(),
                build_destination(address, email=snapshot.email, phone=phone),
                expected_ship_date,
                packages,
            ),
        }

        shipment_id, booked = await self.client.book_shipment(body)
        logger.info(f"Order {snapshot.id}: booked shipment {shipment_id} ({service_id})")

        await self.store.save_booking(
            order,
            shipment_id,
            unique_id=unique_id,
            service_id=service_id,
            payment_method_id=payment_method_id,
            carrier_name=carrier_name,
            service_name=service_name,
        )

        result = BookingResult(shipment_id=shipment_id, unique_id=unique_id, booked=booked)
        try:
            detail: ShipmentDetail = await self.client.get_shipment(shipment_id)
        except ShippingError as e:
            logger.warning(f"Shipment {shipment_id} booked but details unavailable: {e.message}")
            result.detail_error = e.to_dict()
            return result

        await self.store.save_detail(order, detail)
        summary = detail.summary()
        result.shipment = summary["shipment"]
        result.tracking_url = summary["tracking_url"]
        result.tracking_number = summary["tracking_number"]
        result.label_url = summary["label_url"]
        return result
