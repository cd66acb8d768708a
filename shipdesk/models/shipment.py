"""Shipment record owned by an order."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Enum, ForeignKey, String, Text, JSON, Uuid
from sqlalchemy.orm import relationship

from shipdesk.database import Base


def utcnow():
    return datetime.now(timezone.utc)


SHIPMENT_STATES = ("booked", "pickup_scheduled", "pickup_cancelled")


class ShipmentRecord(Base):
    """The order's current carrier shipment.

    One row per order: a new booking overwrites it, cancelling the shipment
    deletes it.
    """
    __tablename__ = "shipment_records"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id = Column(Uuid, ForeignKey("orders.id"), nullable=False, unique=True, index=True)
    shipment_id = Column(String(200), nullable=False, index=True)
    state = Column(Enum(*SHIPMENT_STATES, name="shipment_state"), default="booked", nullable=False)
    unique_id = Column(String(200), default="")
    service_id = Column(String(200), default="")
    payment_method_id = Column(String(200), default="")
    carrier_name = Column(String(200), default="")
    service_name = Column(String(200), default="")
    tracking_number = Column(String(200), nullable=True)
    tracking_url = Column(Text, nullable=True)
    label_url = Column(Text, nullable=True)

    pickup_status = Column(String(100), nullable=True)
    pickup_error = Column(Text, nullable=True)
    pickup_confirmation_number = Column(String(200), nullable=True)
    pickup_last_sync_at = Column(DateTime(timezone=True), nullable=True)
    pickup_request = Column(JSON, nullable=True)

    booked_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    order = relationship("Order", back_populates="shipment")
