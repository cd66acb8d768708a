"""Pydantic schemas for the ShipDesk API."""

from datetime import datetime
from decimal import Decimal
from typing import Any, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from shipdesk.services.carrier_types import CalendarDate


# ── Product ──────────────────────────────────────────────
class ProductCreate(BaseModel):
    sku: str
    title: str
    weight_g: Optional[Decimal] = None
    length_cm: Optional[Decimal] = None
    width_cm: Optional[Decimal] = None
    height_cm: Optional[Decimal] = None


class ProductUpdate(BaseModel):
    title: Optional[str] = None
    weight_g: Optional[Decimal] = None
    length_cm: Optional[Decimal] = None
    width_cm: Optional[Decimal] = None
    height_cm: Optional[Decimal] = None
    active: Optional[bool] = None


class ProductOut(BaseModel):
    id: UUID
    sku: str
    title: str
    weight_g: Optional[Decimal]
    length_cm: Optional[Decimal]
    width_cm: Optional[Decimal]
    height_cm: Optional[Decimal]
    active: bool
    created_at: datetime

    model_config = {"from_attributes": True}


# ── Order ────────────────────────────────────────────────
class ShippingAddress(BaseModel):
    first_name: str = ""
    last_name: str = ""
    company: str = ""
    address_1: str = ""
    address_2: str = ""
    city: str = ""
    province: str = ""
    postal_code: str = ""
    country_code: str = ""
    phone: str = ""

    model_config = {"extra": "allow"}


class OrderItemCreate(BaseModel):
    sku: str
    title: str = ""
    quantity: int = Field(1, ge=1)
    unit_price: Decimal = Decimal("0")


class OrderCreate(BaseModel):
    order_number: Optional[str] = None
    customer_name: str = ""
    customer_email: str = ""
    customer_phone: str = ""
    shipping_address: ShippingAddress = Field(default_factory=ShippingAddress)
    items: list[OrderItemCreate] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    notes: str = ""


class OrderItemOut(BaseModel):
    id: UUID
    product_id: Optional[UUID]
    sku: str
    title: str
    quantity: int
    unit_price: Decimal

    model_config = {"from_attributes": True}


class OrderOut(BaseModel):
    id: UUID
    order_number: str
    status: str
    customer_name: str
    customer_email: str
    customer_phone: str
    shipping_address: dict
    metadata: dict = Field(default_factory=dict, validation_alias="meta")
    items: list[OrderItemOut] = Field(default_factory=list)
    created_at: datetime

    model_config = {"from_attributes": True}


# ── Shipping ─────────────────────────────────────────────
class PackageOverrides(BaseModel):
    unit_system: Optional[Literal["metric", "imperial"]] = None
    default_weight_g: Optional[float] = Field(None, gt=0)
    default_l_cm: Optional[float] = Field(None, gt=0)
    default_w_cm: Optional[float] = Field(None, gt=0)
    default_h_cm: Optional[float] = Field(None, gt=0)


class RateRequestBody(BaseModel):
    offset: int = Field(0, ge=0)
    limit: Optional[int] = Field(None, ge=1)
    expected_ship_date_override: Optional[CalendarDate] = None
    package_overrides: Optional[PackageOverrides] = None
    request_id: Optional[str] = None
    sort: str = "best"


class BookShipmentBody(BaseModel):
    # Required fields are checked by the booking orchestrator so each gets its own error code.
    service_id: Optional[str] = None
    payment_method_id: Optional[str] = None
    customs_and_duties_payment_method_id: Optional[str] = None
    expected_ship_date: Optional[CalendarDate] = None
    package_overrides: Optional[PackageOverrides] = None
    unique_id: Optional[str] = None
    carrier_name: str = ""
    service_name: str = ""
