"""Rate pager cache tests."""

from typing import Optional

import pytest

from shipdesk.services.carrier_types import Rate
from shipdesk.services.rate_pager import RatePager
from shipdesk.services.rates import RateResult, RateSort, paginate, sort_rates

PRIORITY = ["fedex", "ups", "purolator"]

ALL_RATES = [
    Rate.model_validate({
        "service_id": f"svc{i}",
        "carrier_name": carrier,
        "total": {"value": str(price), "currency": "CAD"},
        "transit_time_days": days,
    })
    for i, (carrier, price, days) in enumerate([
        ("Canpar", 900, 3), ("UPS", 1500, 2), ("FedEx", 2000, 4),
        ("Purolator", 1200, 1), ("UPS", 1400, 1), ("Loomis", 700, 5), ("FedEx", 1800, 2),
    ])
]


class FakeQuote:
    """Serves pages of a fixed quote the way the rate orchestrator does."""

    def __init__(self, limit: int = 3, request_id: str = "q1", processing_calls: int = 0):
        self.limit = limit
        self.request_id = request_id
        self.processing_calls = processing_calls
        self.calls: list[tuple[int, str, Optional[str]]] = []

    async def __call__(self, offset: int, sort: RateSort, request_id: Optional[str]) -> RateResult:
        self.calls.append((offset, sort.value, request_id))
        if self.processing_calls:
            self.processing_calls -= 1
            return RateResult(request_id=self.request_id, status="processing", status_meta={"complete": 1, "total": 3})
        ranked = sort_rates(ALL_RATES, sort, PRIORITY)
        page, next_offset = paginate(ranked, offset, self.limit)
        return RateResult(
            request_id=self.request_id,
            status="ready",
            status_meta={"complete": 3, "total": 3},
            rates=page,
            rates_total=len(ranked),
            offset=offset,
            limit=self.limit,
            next_offset=next_offset,
            sort=sort.value,
        )


def ids(rates) -> list[str]:
    return [r.service_id for r in rates]


class TestRatePager:
    @pytest.mark.asyncio
    async def test_first_page_and_auto_selection(self):
        fetch = FakeQuote()
        pager = RatePager(fetch)
        rates = await pager.get_page(0)
        assert len(rates) == 3
        assert pager.state.request_id == "q1"
        assert pager.state.rates_total == 7
        assert pager.selected_service_id == rates[0].service_id

    @pytest.mark.asyncio
    async def test_forward_then_back_hits_cache(self):
        fetch = FakeQuote()
        pager = RatePager(fetch)
        first = ids(await pager.get_page(0))
        second = ids(await pager.next_page())
        assert second != first
        assert len(fetch.calls) == 2

        back = ids(await pager.prev_page())
        assert back == first
        again = ids(await pager.next_page())
        assert again == second
        assert len(fetch.calls) == 2

    @pytest.mark.asyncio
    async def test_advancing_uses_provider_next_offset(self):
        fetch = FakeQuote(limit=3)
        pager = RatePager(fetch)
        await pager.get_page(0)
        await pager.next_page()
        await pager.next_page()
        assert [c[0] for c in fetch.calls] == [0, 3, 6]
        assert pager.page_number == 3

    @pytest.mark.asyncio
    async def test_next_at_end_does_not_fetch(self):
        fetch = FakeQuote(limit=4)
        pager = RatePager(fetch)
        await pager.get_page(0)
        last = ids(await pager.next_page())
        assert ids(await pager.next_page()) == last
        assert len(fetch.calls) == 2

    @pytest.mark.asyncio
    async def test_prev_never_fetches(self):
        fetch = FakeQuote()
        pager = RatePager(fetch)
        assert await pager.prev_page() is None
        await pager.get_page(0)
        await pager.prev_page()
        assert len(fetch.calls) == 1
        assert pager.page_number == 1

    @pytest.mark.asyncio
    async def test_jumped_pages_keep_offset_order(self):
        fetch = FakeQuote(limit=3)
        pager = RatePager(fetch)
        first = ids(await pager.get_page(0))
        last = ids(await pager.get_page(6))
        middle = ids(await pager.get_page(3))
        assert pager.offsets == [0, 3, 6]
        assert pager.page_number == 2

        assert ids(await pager.prev_page()) == first
        assert ids(await pager.next_page()) == middle
        assert ids(await pager.next_page()) == last
        assert len(fetch.calls) == 3

    @pytest.mark.asyncio
    async def test_select_survives_paging_and_resort(self):
        fetch = FakeQuote()
        pager = RatePager(fetch)
        await pager.get_page(0)
        await pager.next_page()
        picked = pager.current_page.rates[1]
        pager.select(picked.service_id)

        await pager.prev_page()
        assert pager.selected_rate.service_id == picked.service_id

        await pager.set_sort("price")
        assert pager.selected_rate.service_id == picked.service_id

    @pytest.mark.asyncio
    async def test_select_unknown_raises(self):
        pager = RatePager(FakeQuote())
        await pager.get_page(0)
        with pytest.raises(KeyError):
            pager.select("nope")

    @pytest.mark.asyncio
    async def test_sort_has_its_own_cache(self):
        fetch = FakeQuote()
        pager = RatePager(fetch)
        best = ids(await pager.get_page(0))
        price = ids(await pager.set_sort("price"))
        assert price == ["svc5", "svc0", "svc3"]
        assert price != best

        assert ids(await pager.set_sort("best")) == best
        assert ids(await pager.set_sort("price")) == price
        assert [c[1] for c in fetch.calls] == ["best", "price"]

    @pytest.mark.asyncio
    async def test_request_id_is_reused(self):
        fetch = FakeQuote()
        pager = RatePager(fetch)
        await pager.get_page(0)
        await pager.next_page()
        assert fetch.calls[0][2] is None
        assert fetch.calls[1][2] == "q1"

    @pytest.mark.asyncio
    async def test_processing_is_not_cached(self):
        fetch = FakeQuote(processing_calls=1)
        pager = RatePager(fetch)
        assert await pager.get_page(0) is None
        assert pager.state.status == "processing"
        assert pager.state.status_meta == {"complete": 1, "total": 3}

        rates = await pager.get_page(0)
        assert len(rates) == 3
        assert pager.state.status == "ready"
        assert len(fetch.calls) == 2

    @pytest.mark.asyncio
    async def test_restarted_quote_drops_cache(self):
        fetch = FakeQuote()
        pager = RatePager(fetch)
        await pager.get_page(0)
        await pager.next_page()

        fetch.request_id = "q2"
        await pager.set_sort("days")
        assert pager.state.request_id == "q2"
        assert set(k[0] for k in pager.state.pages) == {"days"}
        assert pager.offsets == [0]
