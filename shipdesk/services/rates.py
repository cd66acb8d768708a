"""Rate request orchestration.

Builds the quote payload for an order, submits it once per distinct quote,
then polls the carrier for a bounded time. Results that are not ready inside
that bound are handed back as ``processing`` with the request id, and the
quote registry keeps refreshing them in the background so the caller's next
poll can be answered from memory.
"""

import asyncio
import hashlib
import json
import logging
import math
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from shipdesk.config import get_settings
from shipdesk.services.carrier_types import CalendarDate, Rate, RateQuote, RateStatus
from shipdesk.services.errors import ShippingError, ShippingValidationError
from shipdesk.services.freightcom import FreightcomClient
from shipdesk.services.packages import build_packages, describe_defaults

logger = logging.getLogger(__name__)

UNRANKED = 99
DEFAULT_PAGE_SIZE = 20
PROCESSING_MESSAGE = "Rates are still being generated. Poll again with the same request_id."


# ── Sorting ─────────────────────────────────────────────

class RateSort(str, Enum):
    BEST = "best"
    PRICE = "price"
    DAYS = "days"

    @classmethod
    def parse(cls, value: Any) -> "RateSort":
        """Unknown or empty names fall back to ``best``."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value or "").strip().lower())
        except ValueError:
            return cls.BEST


def carrier_rank(carrier_name: Optional[str], priority: Optional[list[str]] = None) -> int:
    """Position of the first priority entry contained in the carrier name."""
    if not carrier_name:
        return UNRANKED
    if priority is None:
        priority = get_settings().carrier_priority
    name = carrier_name.lower()
    for idx, preferred in enumerate(priority):
        if preferred.lower() in name:
            return idx
    return UNRANKED


def sort_rates(
    rates: list[Rate],
    sort: Any = RateSort.BEST,
    priority: Optional[list[str]] = None,
) -> list[Rate]:
    """Stable sort of the full result set; never mutates the input list."""
    sort = RateSort.parse(sort)
    if priority is None:
        priority = get_settings().carrier_priority

    def rank(r: Rate) -> int:
        return carrier_rank(r.carrier_name, priority)

    if sort == RateSort.PRICE:
        key = lambda r: (r.price, rank(r), r.transit_days)  # noqa: E731
    elif sort == RateSort.DAYS:
        key = lambda r: (r.transit_days, rank(r), r.price)  # noqa: E731
    else:
        key = lambda r: (rank(r), r.price, r.transit_days)  # noqa: E731
    return sorted(rates, key=key)


def paginate(rates: list, offset: int, limit: int) -> tuple[list, Optional[int]]:
    """Slice ``rates`` and return the page plus the next offset (None at the end)."""
    offset = max(0, offset)
    page = rates[offset:offset + limit]
    next_offset = offset + limit
    return page, (next_offset if next_offset < len(rates) else None)


# ── Payload pieces ──────────────────────────────────────

def default_ship_date(now: Optional[datetime] = None, cutoff_hour: Optional[int] = None) -> CalendarDate:
    """Today, or tomorrow past the cutoff hour; weekends roll to Monday."""
    now = now or datetime.now()
    if cutoff_hour is None:
        cutoff_hour = get_settings().ship_date_cutoff_hour
    day = now.date()
    if now.hour >= cutoff_hour:
        day += timedelta(days=1)
    while day.weekday() >= 5:
        day += timedelta(days=1)
    return CalendarDate.from_date(day)


def require_address(address: Optional[dict]) -> dict:
    address = address or {}
    if not address.get("postal_code") or not address.get("country_code"):
        raise ShippingValidationError(
            "Order shipping address missing postal code / country.",
            code="ADDRESS_INCOMPLETE",
        )
    return address


def build_origin(include_contact: bool = True) -> dict:
    """The warehouse every shipment leaves from."""
    settings = get_settings()
    origin = {
        "name": settings.warehouse_name,
        "address": {
            "address_line_1": settings.warehouse_address_line_1,
            "address_line_2": settings.warehouse_address_line_2,
            "unit_number": settings.warehouse_unit_number,
            "city": settings.warehouse_city,
            "region": settings.warehouse_region,
            "country": settings.warehouse_country.upper(),
            "postal_code": settings.warehouse_postal_code,
        },
        "residential": settings.warehouse_residential,
        "email_addresses": [settings.warehouse_email] if settings.warehouse_email else [],
        "receives_email_updates": include_contact,
    }
    if include_contact:
        if settings.warehouse_phone:
            origin["phone_number"] = {"number": settings.warehouse_phone}
        origin["contact_name"] = settings.warehouse_contact_name
    return origin


def build_destination(address: dict, email: Optional[str] = None, phone: Optional[str] = None) -> dict:
    name = f"{address.get('first_name') or ''} {address.get('last_name') or ''}".strip() or "Customer"
    destination = {
        "name": name,
        "address": {
            "address_line_1": address.get("address_1") or "",
            "address_line_2": address.get("address_2") or "",
            "unit_number": address.get("company") or "",
            "city": address.get("city") or "",
            "region": address.get("province") or "",
            "country": (address.get("country_code") or "").upper(),
            "postal_code": address.get("postal_code") or "",
        },
        "residential": True,
        "email_addresses": [email] if email else [],
        "receives_email_updates": True,
    }
    if phone:
        destination["phone_number"] = {"number": phone}
        destination["contact_name"] = name
    return destination


def build_details(origin: dict, destination: dict, ship_date: CalendarDate, packages: list) -> dict:
    return {
        "origin": origin,
        "destination": destination,
        "expected_ship_date": ship_date.model_dump(),
        "packaging_type": "package",
        "packaging_properties": {"packages": [p.to_payload() for p in packages]},
    }


# ── Quote registry ──────────────────────────────────────

@dataclass
class QuoteEntry:
    request_id: str
    fingerprint: Optional[str] = None
    created_at: float = 0.0
    quote: Optional[RateQuote] = None
    task: Optional[asyncio.Task] = None


class QuoteRegistry:
    """Process-local memory of submitted quotes.

    Maps a payload fingerprint to its live request id so an identical quote is
    never submitted twice, keeps the latest poll of every request, and owns the
    background refresh tasks.
    """

    def __init__(self, ttl_seconds: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else get_settings().rate_quote_ttl_seconds
        self._clock = clock
        self._entries: dict[str, QuoteEntry] = {}
        self._fingerprints: dict[str, str] = {}

    @staticmethod
    def fingerprint(order_id: Any, payload: dict) -> str:
        raw = json.dumps({"order_id": str(order_id), "payload": payload}, sort_keys=True, default=str)
        return hashlib.sha256(raw.encode()).hexdigest()

    def _expire(self):
        now = self._clock()
        stale = [rid for rid, e in self._entries.items() if now - e.created_at > self.ttl_seconds]
        for rid in stale:
            entry = self._entries.pop(rid)
            if entry.fingerprint:
                self._fingerprints.pop(entry.fingerprint, None)
            if entry.task and not entry.task.done():
                entry.task.cancel()

    def forget(self, request_id: str):
        """Drop a quote so an identical request is submitted afresh."""
        entry = self._entries.pop(request_id, None)
        if entry is None:
            return
        if entry.fingerprint and self._fingerprints.get(entry.fingerprint) == request_id:
            del self._fingerprints[entry.fingerprint]
        if entry.task and not entry.task.done() and entry.task is not asyncio.current_task():
            entry.task.cancel()

    def lookup(self, fingerprint: str) -> Optional[str]:
        self._expire()
        return self._fingerprints.get(fingerprint)

    def register(self, request_id: str, fingerprint: Optional[str] = None) -> QuoteEntry:
        entry = self._entries.get(request_id)
        if entry is None:
            entry = QuoteEntry(request_id=request_id, created_at=self._clock())
            self._entries[request_id] = entry
        if fingerprint:
            entry.fingerprint = fingerprint
            self._fingerprints[fingerprint] = request_id
        return entry

    def store(self, quote: RateQuote):
        self.register(quote.request_id).quote = quote

    def get(self, request_id: str) -> Optional[RateQuote]:
        self._expire()
        entry = self._entries.get(request_id)
        return entry.quote if entry else None

    def is_watching(self, request_id: str) -> bool:
        entry = self._entries.get(request_id)
        return bool(entry and entry.task and not entry.task.done())

    def watch(
        self,
        request_id: str,
        client: FreightcomClient,
        interval_s: float,
        max_attempts: int,
    ) -> bool:
        """Start a background refresh unless one is already running."""
        entry = self.register(request_id)
        if self.is_watching(request_id):
            return False
        if entry.quote is not None and entry.quote.status.done:
            return False
        entry.task = asyncio.create_task(self._refresh(request_id, client, interval_s, max_attempts))
        return True

    async def _refresh(self, request_id: str, client: FreightcomClient, interval_s: float, max_attempts: int):
        try:
            for _ in range(max_attempts):
                await asyncio.sleep(interval_s)
                quote = await client.get_rate_quote(request_id)
                self.store(quote)
                if quote.status.done:
                    logger.info(f"Quote {request_id} completed in background ({len(quote.rates or [])} rates)")
                    return
            logger.warning(f"Quote {request_id} still processing after {max_attempts} background polls")
        except ShippingError as e:
            logger.warning(f"Background refresh of quote {request_id} stopped: {e.message}")
            self.forget(request_id)

    async def shutdown(self):
        tasks = [e.task for e in self._entries.values() if e.task and not e.task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(f"Cancelled {len(tasks)} background quote refreshes")

    def clear(self):
        self._entries.clear()
        self._fingerprints.clear()


quote_registry = QuoteRegistry()


def get_quote_registry() -> QuoteRegistry:
    return quote_registry


# ── Orchestrator ────────────────────────────────────────

@dataclass
class RateResult:
    """Outcome of one rate request call. ``processing`` is served as HTTP 202."""
    request_id: str
    status: str
    status_meta: dict = field(default_factory=dict)
    rates: list[Rate] = field(default_factory=list)
    rates_total: int = 0
    offset: int = 0
    limit: int = DEFAULT_PAGE_SIZE
    next_offset: Optional[int] = None
    sort: str = RateSort.BEST.value
    preview: Optional[dict] = None
    message: Optional[str] = None

    @property
    def is_ready(self) -> bool:
        return self.status == "ready"

    def to_dict(self) -> dict:
        body = {
            "request_id": self.request_id,
            "status": self.status,
            "status_meta": self.status_meta,
        }
        if self.is_ready:
            body.update({
                "rates": [r.to_payload() for r in self.rates],
                "rates_total": self.rates_total,
                "offset": self.offset,
                "limit": self.limit,
                "next_offset": self.next_offset,
                "sort": self.sort,
            })
        else:
            body["message"] = self.message or PROCESSING_MESSAGE
        if self.preview is not None:
            body["preview"] = self.preview
        return body


def _poll_ready(quote: RateQuote) -> bool:
    return quote.has_rates or quote.status.done


class RateRequestOrchestrator:
    """Submits quotes for orders and drives their completion polling."""

    def __init__(
        self,
        client: FreightcomClient,
        registry: Optional[QuoteRegistry] = None,
        poll_interval_ms: Optional[int] = None,
        poll_max_attempts: Optional[int] = None,
        background_poll: Optional[bool] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        settings = get_settings()
        self.client = client
        self.registry = registry if registry is not None else quote_registry
        self.poll_interval_ms = settings.rate_poll_interval_ms if poll_interval_ms is None else poll_interval_ms
        self.poll_max_attempts = settings.rate_poll_max_attempts if poll_max_attempts is None else poll_max_attempts
        self.background_poll = settings.rate_background_poll if background_poll is None else background_poll
        self.background_max_attempts = settings.rate_background_max_attempts
        self.page_size_max = settings.rate_page_size_max
        self._sleep = sleep

    def _clamp_limit(self, limit: Optional[int]) -> int:
        if not limit:
            return min(DEFAULT_PAGE_SIZE, self.page_size_max)
        return min(self.page_size_max, max(1, int(limit)))

    async def poll(self, request_id: str) -> Optional[RateQuote]:
        """Poll until rates show up or the provider reports done.

        Returns the ready quote, or None once ``poll_max_attempts`` is used up.
        """
        last: Optional[RateQuote] = None
        for attempt in range(1, self.poll_max_attempts + 1):
            await self._sleep(self.poll_interval_ms / 1000)
            last = await self.client.get_rate_quote(request_id)
            self.registry.store(last)
            if _poll_ready(last):
                logger.debug(f"Quote {request_id} ready after {attempt} poll(s)")
                return last
        logger.info(f"Quote {request_id} still processing after {self.poll_max_attempts} polls")
        return None

    def _start_background(self, request_id: str):
        if self.background_poll:
            self.registry.watch(
                request_id,
                self.client,
                self.poll_interval_ms / 1000,
                self.background_max_attempts,
            )

    async def request_rates(
        self,
        order,
        *,
        offset: int = 0,
        limit: Optional[int] = None,
        ship_date: Optional[CalendarDate] = None,
        package_overrides: Optional[dict] = None,
        request_id: Optional[str] = None,
        sort: Any = RateSort.BEST,
    ) -> RateResult:
        """Submit (or resume) a quote for ``order`` and return a sorted page."""
        address = require_address(order.shipping_address)
        sort = RateSort.parse(sort)
        limit = self._clamp_limit(limit)
        offset = max(0, int(offset or 0))

        if ship_date is None or not ship_date.is_set:
            ship_date = default_ship_date()
        packages = build_packages(order.items, package_overrides)
        origin = build_origin(include_contact=False)
        destination = build_destination(address, email=order.email)
        details = build_details(origin, destination, ship_date, packages)
        preview = {
            "origin": origin,
            "destination": destination,
            "expected_ship_date": details["expected_ship_date"],
            "package_defaults_used": describe_defaults(package_overrides),
            "packages_preview": details["packaging_properties"]["packages"],
        }

        if not request_id:
            payload = {"details": details}
            fingerprint = self.registry.fingerprint(order.id, payload)
            request_id = self.registry.lookup(fingerprint)
            if request_id:
                logger.info(f"Re-using live quote {request_id} for order {order.id}")
            else:
                request_id = await self.client.create_rate_request(payload)
                self.registry.register(request_id, fingerprint)

        cached = self.registry.get(request_id)
        if cached is not None and _poll_ready(cached):
            quote = cached
        else:
            try:
                quote = await self.poll(request_id)
            except ShippingError:
                self.registry.forget(request_id)
                raise

        if quote is None:
            self._start_background(request_id)
            latest = self.registry.get(request_id)
            status = latest.status if latest else RateStatus()
            return RateResult(
                request_id=request_id,
                status="processing",
                status_meta=status.meta(),
                offset=offset,
                limit=limit,
                sort=sort.value,
                preview=preview,
                message=PROCESSING_MESSAGE,
            )

        if not quote.status.done:
            # Partial result: keep collecting the slower carriers.
            self._start_background(request_id)

        ranked = sort_rates(quote.rates or [], sort)
        page, next_offset = paginate(ranked, offset, limit)
        return RateResult(
            request_id=request_id,
            status="ready",
            status_meta=quote.status.meta(),
            rates=page,
            rates_total=len(ranked),
            offset=offset,
            limit=limit,
            next_offset=next_offset,
            sort=sort.value,
            preview=preview,
        )

    async def get_rates_page(
        self,
        request_id: str,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
        sort: Any = RateSort.BEST,
    ) -> dict:
        """Page/sort over the whole result of a quote.

        Ready here means the provider reported done; rates already received
        are still returned while it is processing.
        """
        sort = RateSort.parse(sort)
        page = max(1, int(page or 1))
        page_size = min(self.page_size_max, max(1, int(page_size or DEFAULT_PAGE_SIZE)))

        quote = self.registry.get(request_id)
        if quote is None or not quote.status.done:
            quote = await self.client.get_rate_quote(request_id)
            self.registry.store(quote)
        if not quote.status.done:
            self._start_background(request_id)

        ranked = sort_rates(quote.rates or [], sort)
        total = len(ranked)
        total_pages = max(1, math.ceil(total / page_size))
        start = (page - 1) * page_size

        return {
            "request_id": request_id,
            "status": "ready" if quote.status.done else "processing",
            "status_meta": quote.status.meta(),
            "sort": sort.value,
            "pagination": {
                "page": page,
                "page_size": page_size,
                "total_rates": total,
                "total_pages": total_pages,
                "has_next": page < total_pages,
                "has_prev": page > 1,
            },
            "rates": [r.to_payload() for r in ranked[start:start + page_size]],
        }
