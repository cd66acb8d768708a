"""Typed views of Freightcom payloads.

The carrier's schema is loosely specified, so replies are parsed once at the
client boundary into these models. Unknown fields are kept (``extra="allow"``)
and handed back to callers untouched.
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

logger = logging.getLogger(__name__)

INFINITY = Decimal("Infinity")


def _to_str(v: Any) -> Any:
    if isinstance(v, (int, float, Decimal)) and not isinstance(v, bool):
        return str(v)
    return v


class Money(BaseModel):
    """Amount in minor units, e.g. ``{"value": "1250", "currency": "CAD"}``."""
    model_config = ConfigDict(extra="allow")

    value: Optional[str] = None
    currency: str = ""

    @field_validator("value", mode="before")
    @classmethod
    def coerce_value(cls, v):
        return _to_str(v)

    @property
    def amount(self) -> Decimal:
        """Numeric value; anything unparseable counts as the worst price."""
        if self.value is None:
            return INFINITY
        try:
            amount = Decimal(self.value.strip())
        except (InvalidOperation, AttributeError):
            return INFINITY
        return amount if amount.is_finite() else INFINITY

    def label(self) -> str:
        amount = self.amount
        if amount == INFINITY:
            return f"{self.value or '-'} {self.currency}".strip()
        return f"{amount / 100:.2f} {self.currency}".strip()


class CalendarDate(BaseModel):
    """Carrier date: plain year/month/day, no timezone."""
    year: int = 0
    month: int = 0
    day: int = 0

    @property
    def is_set(self) -> bool:
        return bool(self.year)

    @classmethod
    def from_date(cls, d: date) -> "CalendarDate":
        return cls(year=d.year, month=d.month, day=d.day)

    def to_date(self) -> date:
        return date(self.year, self.month, self.day)

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}-{self.day:02d}"


class Rate(BaseModel):
    """A priced offer for one carrier/service."""
    model_config = ConfigDict(extra="allow")

    service_id: str
    carrier_name: str = ""
    service_name: str = ""
    total: Optional[Money] = None
    base: Optional[Money] = None
    transit_time_days: Optional[int] = None
    transit_time_not_available: bool = False
    valid_until: Optional[CalendarDate] = None
    paperless: bool = False

    @field_validator("service_id", mode="before")
    @classmethod
    def coerce_service_id(cls, v):
        return _to_str(v)

    @field_validator("transit_time_days", mode="before")
    @classmethod
    def lenient_days(cls, v):
        if v is None or v == "":
            return None
        try:
            return int(float(v))
        except (TypeError, ValueError, OverflowError):
            return None

    @property
    def price(self) -> Decimal:
        return self.total.amount if self.total else INFINITY

    @property
    def transit_days(self) -> Decimal:
        if self.transit_time_not_available or self.transit_time_days is None:
            return INFINITY
        return Decimal(self.transit_time_days)

    def to_payload(self) -> dict:
        return self.model_dump(mode="json", exclude_none=True)


class RateStatus(BaseModel):
    """Quote progress: ``complete`` of ``total`` carriers have answered."""
    model_config = ConfigDict(extra="allow")

    done: bool = False
    complete: int = 0
    total: int = 0

    @field_validator("complete", "total", mode="before")
    @classmethod
    def none_is_zero(cls, v):
        return 0 if v is None else v

    def meta(self) -> dict:
        return {"complete": self.complete, "total": self.total}


class RateQuote(BaseModel):
    """One poll of a quote. ``rates`` is None when the carrier sent no array."""
    request_id: str
    status: RateStatus = RateStatus()
    rates: Optional[list[Rate]] = None
    raw: dict = {}

    @property
    def has_rates(self) -> bool:
        return bool(self.rates)


class ShipmentDetail(BaseModel):
    """Booked shipment as reported by the carrier."""
    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    state: Optional[str] = None
    tracking_url: Optional[str] = None
    primary_tracking_number: Optional[str] = None
    tracking_numbers: Optional[list[Any]] = None
    labels: Optional[list[Any]] = None
    label_url: Optional[str] = None

    @field_validator("id", "primary_tracking_number", mode="before")
    @classmethod
    def coerce_id(cls, v):
        return _to_str(v)

    @property
    def tracking_number(self) -> Optional[str]:
        if self.primary_tracking_number:
            return self.primary_tracking_number
        if self.tracking_numbers:
            return str(self.tracking_numbers[0])
        return None

    @property
    def label(self) -> Optional[str]:
        if self.labels and isinstance(self.labels[0], dict):
            return self.labels[0].get("url") or None
        return self.label_url

    def summary(self) -> dict:
        return {
            "shipment": self.model_dump(mode="json", exclude_none=True),
            "tracking_url": self.tracking_url,
            "tracking_number": self.tracking_number,
            "label_url": self.label,
            "state": self.state,
        }


class TrackingEvent(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: Optional[str] = None
    when: Optional[str] = None
    where: Optional[dict] = None
    message: Optional[str] = None


class PickupStatus(BaseModel):
    model_config = ConfigDict(extra="allow")

    status: Optional[str] = None
    error: Optional[str] = None
    pickup_confirmation_number: Optional[str] = None

    @field_validator("pickup_confirmation_number", mode="before")
    @classmethod
    def coerce_confirmation(cls, v):
        return _to_str(v)


class PaymentMethod(BaseModel):
    id: str
    label: str
    raw: Any = None


# ── Parsers ─────────────────────────────────────────────

def parse_rate_status(status: Any) -> RateStatus:
    if isinstance(status, dict):
        return RateStatus.model_validate(status)
    if isinstance(status, str):
        return RateStatus(done=status.lower() in ("done", "ready", "complete", "completed"))
    return RateStatus()


def parse_rates(items: Any) -> Optional[list[Rate]]:
    if not isinstance(items, list):
        return None
    rates: list[Rate] = []
    for item in items:
        try:
            rates.append(Rate.model_validate(item))
        except ValidationError as e:
            logger.warning(f"Dropping malformed rate from carrier: {e.errors()[0].get('msg')}")
    return rates


def parse_rate_quote(request_id: str, data: dict) -> RateQuote:
    return RateQuote(
        request_id=request_id,
        status=parse_rate_status(data.get("status")),
        rates=parse_rates(data.get("rates")),
        raw=data,
    )


def parse_shipment(data: Any) -> ShipmentDetail:
    """Accepts either ``{"shipment": {...}}`` or the bare shipment object."""
    if isinstance(data, dict) and isinstance(data.get("shipment"), dict):
        data = data["shipment"]
    if not isinstance(data, dict):
        data = {}
    return ShipmentDetail.model_validate(data)


def extract_shipment_id(data: Any) -> Optional[str]:
    if not isinstance(data, dict):
        return None
    candidate = data.get("id") or data.get("shipment_id")
    if not candidate and isinstance(data.get("shipment"), dict):
        candidate = data["shipment"].get("id")
    return str(candidate) if candidate else None


def parse_tracking_events(data: Any) -> list[TrackingEvent]:
    items = data.get("events") if isinstance(data, dict) else data
    if not isinstance(items, list):
        return []
    return [TrackingEvent.model_validate(e) for e in items if isinstance(e, dict)]


def parse_pickup(data: Any) -> PickupStatus:
    return PickupStatus.model_validate(data if isinstance(data, dict) else {})


def parse_payment_methods(raw: Any) -> list[PaymentMethod]:
    items = raw
    if isinstance(raw, dict):
        items = raw.get("payment_methods") or raw.get("methods") or raw.get("data") or []
    if not isinstance(items, list):
        return []

    methods = []
    for m in items:
        if isinstance(m, dict):
            mid = m.get("id") or m.get("payment_method_id") or m.get("uuid") or m.get("code")
            label = (
                m.get("name") or m.get("label") or m.get("display_name")
                or m.get("type") or m.get("method_name")
            )
        else:
            mid, label = m, None
        if mid is None or mid == "":
            continue
        mid = str(mid)
        methods.append(PaymentMethod(id=mid, label=str(label or mid), raw=m))
    return methods
