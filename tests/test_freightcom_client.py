"""Freightcom client tests (httpx.MockTransport)."""

from decimal import Decimal

import httpx
import pytest

from shipdesk.services.carrier_types import parse_payment_methods
from shipdesk.services.errors import (
    CarrierAPIError,
    CarrierConfigurationError,
    CarrierTimeoutError,
)
from shipdesk.services.freightcom import FreightcomClient


class TestRequest:
    @pytest.mark.asyncio
    async def test_sends_raw_api_key(self, carrier, carrier_client):
        carrier.on("GET", "/finance/payment-methods", (200, []))
        await carrier_client.request("GET", "/finance/payment-methods")
        request = carrier.calls[0][3]
        assert request.headers["Authorization"] == "test-api-key"
        assert request.headers["Content-Type"] == "application/json"

    @pytest.mark.asyncio
    async def test_error_status_carries_body(self, carrier, carrier_client):
        carrier.on("POST", "/rate", (422, {"message": "bad postal code"}))
        with pytest.raises(CarrierAPIError) as exc:
            await carrier_client.request("POST", "/rate", {"details": {}})
        err = exc.value
        assert err.provider_status == 422
        assert err.status_code == 502
        assert err.details["body"] == {"message": "bad postal code"}
        assert err.message.startswith("Freightcom 422:")
        assert "bad postal code" in err.message

    @pytest.mark.asyncio
    async def test_non_json_body_kept_raw(self, carrier, carrier_client):
        carrier.on("GET", "/shipment/s1", (200, "<html>ok</html>"))
        assert await carrier_client.request("GET", "/shipment/s1") == {"raw": "<html>ok</html>"}

    @pytest.mark.asyncio
    async def test_empty_body_is_empty_dict(self, carrier, carrier_client):
        carrier.on("DELETE", "/shipment/s1", lambda request: httpx.Response(204))
        assert await carrier_client.cancel_shipment("s1") == {}

    @pytest.mark.asyncio
    async def test_timeout_is_distinct(self, carrier, carrier_client):
        carrier.on("GET", "/shipment/s1", httpx.ReadTimeout)
        with pytest.raises(CarrierTimeoutError) as exc:
            await carrier_client.get_shipment("s1")
        assert exc.value.status_code == 504

    @pytest.mark.asyncio
    async def test_network_error(self, carrier, carrier_client):
        carrier.on("GET", "/shipment/s1", httpx.ConnectError)
        with pytest.raises(CarrierAPIError) as exc:
            await carrier_client.get_shipment("s1")
        assert exc.value.code == "NETWORK_ERROR"

    @pytest.mark.asyncio
    async def test_not_configured(self):
        fc = FreightcomClient(base_url="", api_key="")
        with pytest.raises(CarrierConfigurationError) as exc:
            await fc.request("GET", "/rate/x")
        assert exc.value.status_code == 503
        assert exc.value.details["missing"] == ["FREIGHTCOM_API_BASE_URL", "FREIGHTCOM_API_KEY"]

    @pytest.mark.asyncio
    async def test_path_segments_are_escaped(self, carrier, carrier_client):
        carrier.on("GET", "/shipment/a/b", (200, {"id": "a/b"}))
        detail = await carrier_client.get_shipment("a/b")
        assert detail.id == "a/b"
        assert carrier.calls[0][3].url.raw_path == b"/shipment/a%2Fb"


class TestTypedCalls:
    @pytest.mark.asyncio
    async def test_book_shipment_id_variants(self, carrier, carrier_client):
        carrier.on("POST", "/shipment", (200, {"shipment": {"id": 123}}))
        shipment_id, raw = await carrier_client.book_shipment({"unique_id": "u"})
        assert shipment_id == "123"
        assert raw == {"shipment": {"id": 123}}

    @pytest.mark.asyncio
    async def test_book_shipment_without_id(self, carrier, carrier_client):
        carrier.on("POST", "/shipment", (200, {"message": "queued"}))
        with pytest.raises(CarrierAPIError) as exc:
            await carrier_client.book_shipment({})
        assert exc.value.code == "NO_SHIPMENT_ID"

    @pytest.mark.asyncio
    async def test_custom_booking_path(self, carrier):
        carrier.on("POST", "/v2/shipments", (200, {"shipment_id": "s9"}))
        fc = carrier.client(booking_path="/v2/shipments")
        shipment_id, _ = await fc.book_shipment({})
        await fc.close()
        assert shipment_id == "s9"

    @pytest.mark.asyncio
    async def test_shipment_nested_and_bare(self, carrier, carrier_client):
        nested = {"shipment": {
            "id": "s1", "state": "booked", "tracking_url": "https://t/1",
            "primary_tracking_number": "1Z", "labels": [{"url": "https://l/1", "size": "4x6"}],
        }}
        carrier.on("GET", "/shipment/s1", (200, nested))
        carrier.on("GET", "/shipment/s2", (200, {"id": "s2", "tracking_numbers": ["TN2"]}))

        s1 = (await carrier_client.get_shipment("s1")).summary()
        assert s1["tracking_number"] == "1Z"
        assert s1["label_url"] == "https://l/1"
        assert s1["state"] == "booked"
        assert s1["shipment"]["id"] == "s1"

        s2 = (await carrier_client.get_shipment("s2")).summary()
        assert s2["tracking_number"] == "TN2"
        assert s2["label_url"] is None

    @pytest.mark.asyncio
    async def test_rate_quote_drops_malformed_rates(self, carrier, carrier_client):
        carrier.on("GET", "/rate/q1", (200, {
            "status": {"done": True, "complete": 2, "total": 2},
            "rates": [{"service_id": "ok", "total": {"value": 100, "currency": "CAD"}}, {"carrier_name": "no id"}],
        }))
        quote = await carrier_client.get_rate_quote("q1")
        assert [r.service_id for r in quote.rates] == ["ok"]
        assert quote.rates[0].total.value == "100"

    @pytest.mark.asyncio
    async def test_rate_quote_non_finite_transit_days(self, carrier, carrier_client):
        carrier.on("GET", "/rate/q1", (200, (
            '{"status": {"done": true, "complete": 2, "total": 2}, "rates": ['
            '{"service_id": "a", "total": {"value": 100, "currency": "CAD"}, "transit_time_days": "Infinity"},'
            '{"service_id": "b", "total": {"value": 200, "currency": "CAD"}, "transit_time_days": 1e400}]}'
        )))
        quote = await carrier_client.get_rate_quote("q1")
        assert [r.service_id for r in quote.rates] == ["a", "b"]
        assert all(r.transit_time_days is None for r in quote.rates)
        assert quote.rates[0].transit_days == Decimal("Infinity")

    @pytest.mark.asyncio
    async def test_rate_quote_without_rates_array(self, carrier, carrier_client):
        carrier.on("GET", "/rate/q1", (200, {"status": {"done": False, "complete": None, "total": 3}}))
        quote = await carrier_client.get_rate_quote("q1")
        assert quote.rates is None
        assert quote.status.meta() == {"complete": 0, "total": 3}

    @pytest.mark.asyncio
    async def test_tracking_events(self, carrier, carrier_client):
        carrier.on("GET", "/shipment/s1/tracking-events", (200, {"events": [
            {"type": "picked-up", "when": "2026-03-04T10:00:00Z", "where": {"city": "Halifax"}},
            "garbage",
        ]}))
        events = await carrier_client.get_tracking_events("s1")
        assert len(events) == 1
        assert events[0].type == "picked-up"

    @pytest.mark.asyncio
    async def test_pickup_calls(self, carrier, carrier_client):
        carrier.on("POST", "/shipment/s1/schedule", (200, {"status": "scheduled", "pickup_confirmation_number": 77}))
        pickup = await carrier_client.schedule_pickup("s1", {"date": "2026-03-05"})
        assert pickup.status == "scheduled"
        assert pickup.pickup_confirmation_number == "77"
        assert carrier.bodies("POST", "/shipment/s1/schedule") == [{"date": "2026-03-05"}]


class TestPaymentMethods:
    def test_wrapped_list(self):
        methods = parse_payment_methods({"payment_methods": [{"id": "pm1", "name": "Net 30"}]})
        assert [(m.id, m.label) for m in methods] == [("pm1", "Net 30")]

    def test_alternative_keys(self):
        assert parse_payment_methods({"methods": [{"uuid": "u1", "type": "card"}]})[0].label == "card"
        assert parse_payment_methods({"data": [{"code": "c1"}]})[0].label == "c1"

    def test_bare_list_of_ids(self):
        methods = parse_payment_methods(["pm1", "pm2"])
        assert [(m.id, m.label) for m in methods] == [("pm1", "pm1"), ("pm2", "pm2")]

    def test_entries_without_id_skipped(self):
        methods = parse_payment_methods([{"name": "orphan"}, {"id": "pm3"}])
        assert [(m.id, m.label) for m in methods] == [("pm3", "pm3")]

    def test_unusable_shape(self):
        assert parse_payment_methods({"unexpected": True}) == []
        assert parse_payment_methods("nope") == []
