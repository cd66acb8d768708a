"""Freightcom API client.

Thin authenticated wrapper over the carrier's REST endpoints:
- Rate requests (submit + poll)
- Shipment booking, details, tracking events and cancellation
- Pickup scheduling
- Carrier-side payment methods

Every call is bounded by ``freightcom_timeout_seconds``. A timeout raises
``CarrierTimeoutError``; any non-2xx answer raises ``CarrierAPIError`` with the
provider status and the parsed (or raw) body.
"""

import json
import logging
from typing import Any, Optional
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from shipdesk.config import get_settings
from shipdesk.services.carrier_types import (
    PaymentMethod,
    PickupStatus,
    RateQuote,
    ShipmentDetail,
    TrackingEvent,
    extract_shipment_id,
    parse_payment_methods,
    parse_pickup,
    parse_rate_quote,
    parse_shipment,
    parse_tracking_events,
)
from shipdesk.services.errors import (
    CarrierAPIError,
    CarrierConfigurationError,
    CarrierTimeoutError,
)

logger = logging.getLogger(__name__)

RATE_PATH = "/rate"
SHIPMENT_PATH = "/shipment"
PAYMENT_METHODS_PATH = "/finance/payment-methods"


def _segment(value: str) -> str:
    return quote(str(value), safe="")


class FreightcomClient:
    """Freightcom REST client sharing one ``httpx.AsyncClient``."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        booking_path: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.base_url = (base_url if base_url is not None else settings.freightcom_api_base_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.freightcom_api_key
        self.timeout = timeout if timeout is not None else settings.freightcom_timeout_seconds
        self.booking_path = booking_path or settings.freightcom_booking_path
        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None

    async def _get_http_client(self) -> httpx.AsyncClient:
        if not self.base_url or not self.api_key:
            raise CarrierConfigurationError(
                "Freightcom API base URL / key are not configured",
                details={"missing": [
                    name for name, val in (
                        ("FREIGHTCOM_API_BASE_URL", self.base_url),
                        ("FREIGHTCOM_API_KEY", self.api_key),
                    ) if not val
                ]},
            )
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers={"Content-Type": "application/json", "Authorization": self.api_key},
                transport=self._transport,
            )
        return self._http_client

    async def close(self):
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    @staticmethod
    def _parse_body(response: httpx.Response) -> Any:
        text = response.text
        if not text:
            return {}
        try:
            return response.json()
        except ValueError:
            return {"raw": text}

    async def request(
        self,
        method: str,
        path: str,
        payload: Optional[Any] = None,
        params: Optional[dict] = None,
    ) -> Any:
        """Make an authenticated call and return the decoded body."""
        client = await self._get_http_client()
        logger.debug(f"Freightcom {method} {path} (Authorization: [REDACTED])")

        try:
            response = await client.request(method, path, json=payload, params=params)
        except httpx.TimeoutException as e:
            logger.error(f"Freightcom {method} {path} timed out after {self.timeout}s")
            raise CarrierTimeoutError(
                f"Freightcom did not answer within {self.timeout}s",
                details={"method": method, "path": path},
            ) from e
        except httpx.RequestError as e:
            logger.error(f"Freightcom {method} {path} request failed: {e}")
            raise CarrierAPIError(f"Network error: {e}", code="NETWORK_ERROR") from e

        data = self._parse_body(response)
        logger.debug(f"Freightcom {method} {path} -> {response.status_code}")

        if response.status_code >= 400:
            body = json.dumps(data, default=str)
            logger.error(f"Freightcom {method} {path} -> {response.status_code}: {body[:500]}")
            raise CarrierAPIError(
                f"Freightcom {response.status_code}: {body}",
                code="CARRIER_HTTP_ERROR",
                details={"status": response.status_code, "body": data},
                provider_status=response.status_code,
            )
        return data

    @staticmethod
    def _malformed(what: str, e: ValidationError, data: Any) -> CarrierAPIError:
        logger.error(f"Malformed Freightcom {what}: {e}")
        return CarrierAPIError(
            f"Freightcom returned a malformed {what}",
            code="MALFORMED_RESPONSE",
            details={"raw": data},
        )

    # ==================== Rates ====================

    async def create_rate_request(self, payload: dict) -> str:
        """Submit a quote; returns the carrier's request id."""
        data = await self.request("POST", RATE_PATH, payload)
        request_id = data.get("request_id") or data.get("rate_id") if isinstance(data, dict) else None
        if not request_id:
            raise CarrierAPIError(
                "Freightcom did not return a request_id",
                code="NO_REQUEST_ID",
                details={"raw": data},
            )
        logger.info(f"Freightcom quote submitted: {request_id}")
        return str(request_id)

    async def get_rate_quote(self, request_id: str) -> RateQuote:
        data = await self.request("GET", f"{RATE_PATH}/{_segment(request_id)}")
        if not isinstance(data, dict):
            data = {}
        try:
            return parse_rate_quote(request_id, data)
        except ValidationError as e:
            raise self._malformed("rate quote", e, data)

    # ==================== Shipments ====================

    async def book_shipment(self, body: dict) -> tuple[str, Any]:
        """Book a shipment; returns ``(shipment_id, raw reply)``."""
        data = await self.request("POST", self.booking_path, body)
        shipment_id = extract_shipment_id(data)
        if not shipment_id:
            raise CarrierAPIError(
                "Freightcom did not return a shipment id",
                code="NO_SHIPMENT_ID",
                details={"raw": data},
            )
        return shipment_id, data

    async def get_shipment(self, shipment_id: str) -> ShipmentDetail:
        data = await self.request("GET", f"{SHIPMENT_PATH}/{_segment(shipment_id)}")
        try:
            return parse_shipment(data)
        except ValidationError as e:
            raise self._malformed("shipment", e, data)

    async def get_tracking_events(self, shipment_id: str) -> list[TrackingEvent]:
        data = await self.request("GET", f"{SHIPMENT_PATH}/{_segment(shipment_id)}/tracking-events")
        try:
            return parse_tracking_events(data)
        except ValidationError as e:
            raise self._malformed("tracking event list", e, data)

    async def cancel_shipment(self, shipment_id: str) -> Any:
        return await self.request("DELETE", f"{SHIPMENT_PATH}/{_segment(shipment_id)}")

    # ==================== Pickup ====================

    def _schedule_path(self, shipment_id: str) -> str:
        return f"{SHIPMENT_PATH}/{_segment(shipment_id)}/schedule"

    async def get_pickup(self, shipment_id: str) -> PickupStatus:
        data = await self.request("GET", self._schedule_path(shipment_id))
        try:
            return parse_pickup(data)
        except ValidationError as e:
            raise self._malformed("pickup", e, data)

    async def schedule_pickup(self, shipment_id: str, body: dict) -> PickupStatus:
        data = await self.request("POST", self._schedule_path(shipment_id), body)
        try:
            return parse_pickup(data)
        except ValidationError as e:
            raise self._malformed("pickup", e, data)

    async def cancel_pickup(self, shipment_id: str) -> Any:
        return await self.request("DELETE", self._schedule_path(shipment_id))

    # ==================== Billing ====================

    async def list_payment_methods(self) -> tuple[list[PaymentMethod], Any]:
        raw = await self.request("GET", PAYMENT_METHODS_PATH)
        return parse_payment_methods(raw), raw


_client: Optional[FreightcomClient] = None


def get_freightcom_client() -> FreightcomClient:
    global _client
    if _client is None:
        _client = FreightcomClient()
    return _client


async def close_freightcom_client():
    global _client
    if _client is not None:
        await _client.close()
        _client = None
