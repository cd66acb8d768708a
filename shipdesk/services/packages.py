"""Package builder.

Turns order line items into carrier package descriptors. One package is
emitted per unit of quantity; nothing is consolidated.
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Iterable, Optional

from shipdesk.config import get_settings

GRAMS_PER_LB = Decimal("453.59237")
CM_PER_IN = Decimal("2.54")
MIN_WEIGHT = Decimal("0.01")
MIN_DIMENSION = Decimal("0.1")

UNIT_SYSTEMS = {
    "metric": ("kg", "cm"),
    "imperial": ("lb", "in"),
}


def _positive(value: Any) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    if not number.is_finite() or number <= 0:
        return None
    return number


def _round(value: Decimal, places: str, floor: Decimal) -> Decimal:
    return max(floor, value.quantize(Decimal(places), rounding=ROUND_HALF_UP))


@dataclass
class LineItem:
    """What the builder needs from an order line."""
    title: str = ""
    quantity: int = 1
    weight_g: Any = None
    length_cm: Any = None
    width_cm: Any = None
    height_cm: Any = None

    @classmethod
    def from_dict(cls, data: dict) -> "LineItem":
        return cls(
            title=data.get("title") or "",
            quantity=data.get("quantity") or 1,
            weight_g=data.get("weight_g", data.get("weight")),
            length_cm=data.get("length_cm", data.get("length")),
            width_cm=data.get("width_cm", data.get("width")),
            height_cm=data.get("height_cm", data.get("height")),
        )

    def measurements(self) -> Optional[tuple[Decimal, Decimal, Decimal, Decimal]]:
        """Own (g, cm, cm, cm) when all four are positive numbers, else None."""
        values = [_positive(v) for v in (self.weight_g, self.length_cm, self.width_cm, self.height_cm)]
        if any(v is None for v in values):
            return None
        return tuple(values)


@dataclass
class PackageDefaults:
    unit_system: str
    weight_g: Decimal
    length_cm: Decimal
    width_cm: Decimal
    height_cm: Decimal

    @classmethod
    def resolve(cls, overrides: Optional[dict] = None) -> "PackageDefaults":
        """Settings defaults with per-request overrides applied on top."""
        settings = get_settings()
        overrides = overrides or {}

        unit_system = overrides.get("unit_system") or settings.default_unit_system
        if unit_system not in UNIT_SYSTEMS:
            unit_system = "imperial"

        def pick(key: str, fallback: float) -> Decimal:
            return _positive(overrides.get(key)) or Decimal(str(fallback))

        return cls(
            unit_system=unit_system,
            weight_g=pick("default_weight_g", settings.default_item_weight_g),
            length_cm=pick("default_l_cm", settings.default_item_length_cm),
            width_cm=pick("default_w_cm", settings.default_item_width_cm),
            height_cm=pick("default_h_cm", settings.default_item_height_cm),
        )

    def to_dict(self) -> dict:
        return {
            "unit_system": self.unit_system,
            "default_weight_g": float(self.weight_g),
            "default_l_cm": float(self.length_cm),
            "default_w_cm": float(self.width_cm),
            "default_h_cm": float(self.height_cm),
        }


@dataclass
class Package:
    """A single parcel in one unit system."""
    description: str
    weight_unit: str
    weight: Decimal
    dimension_unit: str
    length: Decimal
    width: Decimal
    height: Decimal

    @classmethod
    def from_metric(
        cls,
        description: str,
        weight_g: Decimal,
        length_cm: Decimal,
        width_cm: Decimal,
        height_cm: Decimal,
        unit_system: str,
    ) -> "Package":
        weight_unit, dimension_unit = UNIT_SYSTEMS[unit_system]
        if unit_system == "metric":
            weight = weight_g / 1000
            dims = (length_cm, width_cm, height_cm)
        else:
            weight = weight_g / GRAMS_PER_LB
            dims = tuple(d / CM_PER_IN for d in (length_cm, width_cm, height_cm))
        length, width, height = (_round(d, "0.1", MIN_DIMENSION) for d in dims)
        return cls(
            description=description,
            weight_unit=weight_unit,
            weight=_round(weight, "0.01", MIN_WEIGHT),
            dimension_unit=dimension_unit,
            length=length,
            width=width,
            height=height,
        )

    def to_payload(self) -> dict:
        return {
            "description": self.description,
            "measurements": {
                "weight": {"unit": self.weight_unit, "value": float(self.weight)},
                "cuboid": {
                    "unit": self.dimension_unit,
                    "l": float(self.length),
                    "w": float(self.width),
                    "h": float(self.height),
                },
            },
        }


def build_packages(
    items: Iterable[Any],
    overrides: Optional[dict] = None,
) -> list[Package]:
    """Build one package per unit of every line item.

    Items may be ``LineItem`` instances or plain dicts. A line whose variant
    lacks any of weight/length/width/height uses the defaults for all four.
    No items at all yields a single "Default package".
    """
    defaults = PackageDefaults.resolve(overrides)
    packages: list[Package] = []

    for item in items:
        if isinstance(item, dict):
            item = LineItem.from_dict(item)
        try:
            quantity = max(1, int(item.quantity or 1))
        except (TypeError, ValueError):
            quantity = 1

        own = item.measurements()
        weight_g, length_cm, width_cm, height_cm = own or (
            defaults.weight_g, defaults.length_cm, defaults.width_cm, defaults.height_cm,
        )
        package = Package.from_metric(
            item.title or "Package", weight_g, length_cm, width_cm, height_cm,
            defaults.unit_system,
        )
        packages.extend([package] * quantity)

    if not packages:
        packages.append(Package.from_metric(
            "Default package",
            defaults.weight_g, defaults.length_cm, defaults.width_cm, defaults.height_cm,
            defaults.unit_system,
        ))
    return packages


def describe_defaults(overrides: Optional[dict] = None) -> dict:
    """Effective defaults for a request, as echoed in rate previews."""
    return PackageDefaults.resolve(overrides).to_dict()
