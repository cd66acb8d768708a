"""Client-side rate pager.

Keeps every fetched page of a quote keyed by ``(sort, offset)`` so moving
back and forth never refetches. Moving past the last cached page fetches once
at the offset the server handed out; moving back never fetches.
"""

import bisect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from shipdesk.services.carrier_types import Rate
from shipdesk.services.rates import DEFAULT_PAGE_SIZE, RateRequestOrchestrator, RateResult, RateSort

logger = logging.getLogger(__name__)

# fetch(offset, sort, request_id) -> RateResult
PageFetcher = Callable[[int, RateSort, Optional[str]], Awaitable[RateResult]]


@dataclass
class CachedPage:
    rates: list[Rate]
    next_offset: Optional[int]
    rates_total: int


@dataclass
class RateRequestState:
    request_id: Optional[str] = None
    status: str = "processing"
    status_meta: dict = field(default_factory=dict)
    rates_total: int = 0
    pages: dict[tuple[str, int], CachedPage] = field(default_factory=dict)

    def reset(self, request_id: Optional[str] = None):
        self.request_id = request_id
        self.status = "processing"
        self.status_meta = {}
        self.rates_total = 0
        self.pages.clear()


class RatePager:
    def __init__(self, fetch: PageFetcher, sort: Any = RateSort.BEST):
        self._fetch = fetch
        self.sort = RateSort.parse(sort)
        self.state = RateRequestState()
        self.selected_service_id: Optional[str] = None
        self.fetch_count = 0
        # Offsets visited per sort, kept ascending; position indexes the current sort's list.
        self._cursor: dict[str, list[int]] = {}
        self._position = -1

    @classmethod
    def for_order(
        cls,
        orchestrator: RateRequestOrchestrator,
        order,
        limit: int = DEFAULT_PAGE_SIZE,
        sort: Any = RateSort.BEST,
        **request_kwargs,
    ) -> "RatePager":
        async def fetch(offset: int, sort: RateSort, request_id: Optional[str]) -> RateResult:
            return await orchestrator.request_rates(
                order, offset=offset, limit=limit, sort=sort, request_id=request_id, **request_kwargs,
            )
        return cls(fetch, sort=sort)

    @property
    def offsets(self) -> list[int]:
        return self._cursor.setdefault(self.sort.value, [])

    @property
    def current_page(self) -> Optional[CachedPage]:
        if self._position < 0 or self._position >= len(self.offsets):
            return None
        return self.state.pages.get((self.sort.value, self.offsets[self._position]))

    @property
    def page_number(self) -> int:
        return self._position + 1

    async def get_page(self, offset: int) -> Optional[list[Rate]]:
        """Rates at ``offset`` for the current sort; None while still processing."""
        key = (self.sort.value, offset)
        cached = self.state.pages.get(key)
        if cached is None:
            cached = await self._load(offset)
            if cached is None:
                return None
        if offset not in self.offsets:
            bisect.insort(self.offsets, offset)
        self._position = self.offsets.index(offset)
        return cached.rates

    async def _load(self, offset: int) -> Optional[CachedPage]:
        self.fetch_count += 1
        result = await self._fetch(offset, self.sort, self.state.request_id)

        if self.state.request_id and result.request_id != self.state.request_id:
            logger.info(f"Quote restarted as {result.request_id}; dropping cached pages")
            self.state.reset(result.request_id)
            self._cursor.clear()
            self._position = -1
        self.state.request_id = result.request_id
        self.state.status = result.status
        self.state.status_meta = result.status_meta

        if not result.is_ready:
            return None

        page = CachedPage(rates=list(result.rates), next_offset=result.next_offset, rates_total=result.rates_total)
        self.state.pages[(self.sort.value, offset)] = page
        self.state.rates_total = result.rates_total
        if self.selected_service_id is None and page.rates:
            self.selected_service_id = page.rates[0].service_id
        return page

    async def next_page(self) -> Optional[list[Rate]]:
        current = self.current_page
        if current is None:
            return await self.get_page(0)
        if current.next_offset is None:
            return current.rates
        return await self.get_page(current.next_offset)

    async def prev_page(self) -> Optional[list[Rate]]:
        if self._position > 0:
            self._position -= 1
        current = self.current_page
        return current.rates if current else None

    async def set_sort(self, sort: Any) -> Optional[list[Rate]]:
        """Switch order and show its first page; selection is kept."""
        sort = RateSort.parse(sort)
        if sort != self.sort:
            self.sort = sort
            self._position = -1
        return await self.get_page(0)

    def select(self, service_id: str) -> Rate:
        rate = self._find(service_id)
        if rate is None:
            raise KeyError(f"No cached rate with service_id {service_id}")
        self.selected_service_id = rate.service_id
        return rate

    def _find(self, service_id: Optional[str]) -> Optional[Rate]:
        if not service_id:
            return None
        for page in self.state.pages.values():
            for rate in page.rates:
                if rate.service_id == service_id:
                    return rate
        return None

    @property
    def selected_rate(self) -> Optional[Rate]:
        return self._find(self.selected_service_id)
