"""Shipping error taxonomy.

Every failure the shipping desk reports carries a machine-readable ``code``
and the HTTP status the API should answer with, so callers can tell a bad
request from a conflict, a carrier failure or a carrier timeout.
"""

from typing import Any, Optional


class ShippingError(Exception):
    """Base class for shipping failures."""

    status_code = 500
    default_code = "SHIPPING_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        status_code: Optional[int] = None,
    ):
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def to_dict(self) -> dict:
        body = {"message": self.message, "code": self.code}
        if self.details:
            body["details"] = self.details
        return body


class ShippingValidationError(ShippingError):
    """Missing or invalid input. Never retried automatically."""
    status_code = 400
    default_code = "VALIDATION_ERROR"


class OrderNotFoundError(ShippingError):
    status_code = 404
    default_code = "ORDER_NOT_FOUND"


class ShipmentConflictError(ShippingError):
    """The request names a shipment the order does not currently own."""
    status_code = 409
    default_code = "SHIPMENT_ID_MISMATCH"


class CarrierAPIError(ShippingError):
    """The carrier answered with a non-2xx status or an unusable body."""
    status_code = 502
    default_code = "CARRIER_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        provider_status: Optional[int] = None,
    ):
        super().__init__(message, code=code, details=details)
        self.provider_status = provider_status

    @property
    def is_not_found(self) -> bool:
        return self.provider_status == 404


class CarrierTimeoutError(ShippingError):
    """The carrier did not answer within the configured timeout."""
    status_code = 504
    default_code = "CARRIER_TIMEOUT"


class CarrierConfigurationError(ShippingError):
    status_code = 503
    default_code = "CARRIER_NOT_CONFIGURED"
