"""Order store models."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean, Column, DateTime, Enum, ForeignKey, Integer, Numeric, String, Text, JSON, Uuid,
)
from sqlalchemy.orm import relationship

from shipdesk.database import Base


def utcnow():
    return datetime.now(timezone.utc)


class Product(Base):
    """Sellable variant with the shipping measurements used for packages."""
    __tablename__ = "products"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    sku = Column(String(100), unique=True, nullable=False, index=True)
    title = Column(String(500), nullable=False)
    weight_g = Column(Numeric(10, 2), nullable=True)
    length_cm = Column(Numeric(10, 2), nullable=True)
    width_cm = Column(Numeric(10, 2), nullable=True)
    height_cm = Column(Numeric(10, 2), nullable=True)
    active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    @property
    def shipping_dimensions(self) -> dict:
        return {
            "weight": self.weight_g,
            "length": self.length_cm,
            "width": self.width_cm,
            "height": self.height_cm,
        }


class Order(Base):
    """Order as seen by the shipping desk."""
    __tablename__ = "orders"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    order_number = Column(String(100), unique=True, nullable=False, index=True)
    status = Column(
        Enum("pending", "processing", "shipped", "delivered", "cancelled", name="order_status"),
        default="pending",
    )
    customer_name = Column(String(300), default="")
    customer_email = Column(String(320), default="")
    customer_phone = Column(String(50), default="")
    # {first_name, last_name, company, address_1, address_2, city, province,
    #  postal_code, country_code, phone}
    shipping_address = Column(JSON, default=dict)
    # Free-form key/value bag; the shipping desk mirrors shipment state here.
    meta = Column("metadata", JSON, default=dict)
    notes = Column(Text, default="")
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    items = relationship("OrderItem", back_populates="order")
    shipment = relationship(
        "ShipmentRecord", back_populates="order", uselist=False, cascade="all, delete-orphan",
    )


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id = Column(Uuid, ForeignKey("orders.id"), nullable=False)
    product_id = Column(Uuid, ForeignKey("products.id"), nullable=True)
    sku = Column(String(100), default="")
    title = Column(String(500), default="")
    quantity = Column(Integer, default=1)
    unit_price = Column(Numeric(10, 2), default=0)

    order = relationship("Order", back_populates="items")
    product = relationship("Product")


from shipdesk.models.shipment import ShipmentRecord  # noqa: E402,F401
