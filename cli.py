"""ShipDesk-Lite CLI tool.

Usage:
    python -m cli packages build items.json --unit-system metric
    python -m cli rates sort rates.json --sort price --page 2 --page-size 10
    python -m cli rates quote ORDER_ID --sort days --limit 5 --pages 2
    python -m cli shipments show SHIPMENT_ID
    python -m cli shipments events SHIPMENT_ID
    python -m cli payment-methods list
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

from shipdesk.services.carrier_types import parse_rates
from shipdesk.services.errors import ShippingError
from shipdesk.services.freightcom import FreightcomClient
from shipdesk.services.packages import build_packages, describe_defaults
from shipdesk.services.rates import RateSort, paginate, sort_rates


def main():
    parser = argparse.ArgumentParser(
        prog="shipdesk",
        description="ShipDesk-Lite CLI",
    )
    sub = parser.add_subparsers(dest="command", help="Top-level command")

    # ── Packages ─────────────────────────────────────────
    pkg_parser = sub.add_parser("packages", help="Package builder")
    pkg_sub = pkg_parser.add_subparsers(dest="action")

    build = pkg_sub.add_parser("build", help="Build carrier packages from line items")
    build.add_argument("file", help="JSON list of {title, quantity, weight_g, length_cm, width_cm, height_cm}")
    build.add_argument("--unit-system", choices=["metric", "imperial"], help="Override the unit system")

    # ── Rates ────────────────────────────────────────────
    rates_parser = sub.add_parser("rates", help="Carrier rates")
    rates_sub = rates_parser.add_subparsers(dest="action")

    sort_cmd = rates_sub.add_parser("sort", help="Sort and page a saved rate list")
    sort_cmd.add_argument("file", help="JSON list of rates, or a quote with a 'rates' array")
    sort_cmd.add_argument("--sort", choices=[s.value for s in RateSort], default="best")
    sort_cmd.add_argument("--page", type=int, default=1)
    sort_cmd.add_argument("--page-size", type=int, default=20)

    quote = rates_sub.add_parser("quote", help="Request live rates for an order")
    quote.add_argument("order_id", help="Order UUID")
    quote.add_argument("--sort", choices=[s.value for s in RateSort], default="best")
    quote.add_argument("--limit", type=int, default=10, help="Rates per page")
    quote.add_argument("--pages", type=int, default=1, help="How many pages to walk")

    # ── Shipments ────────────────────────────────────────
    ship_parser = sub.add_parser("shipments", help="Booked shipments")
    ship_sub = ship_parser.add_subparsers(dest="action")

    show = ship_sub.add_parser("show", help="Shipment details")
    show.add_argument("shipment_id")

    events = ship_sub.add_parser("events", help="Tracking events")
    events.add_argument("shipment_id")

    # ── Payment methods ──────────────────────────────────
    pm_parser = sub.add_parser("payment-methods", help="Carrier billing accounts")
    pm_sub = pm_parser.add_subparsers(dest="action")
    pm_sub.add_parser("list", help="List payment methods")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return

    handlers = {
        "packages": handle_packages,
        "rates": handle_rates,
        "shipments": handle_shipments,
        "payment-methods": handle_payment_methods,
    }
    handler = handlers.get(args.command)
    if not handler:
        parser.print_help()
        return
    try:
        handler(args)
    except ShippingError as e:
        print(f"❌ {e.code}: {e.message}")
        sys.exit(1)


def _read_json(file: str):
    path = Path(file)
    if not path.exists():
        print(f"File not found: {file}")
        sys.exit(1)
    return json.loads(path.read_text(encoding="utf-8"))


# ── Command Handlers ────────────────────────────────────

def handle_packages(args):
    if args.action == "build":
        items = _read_json(args.file)
        overrides = {"unit_system": args.unit_system} if args.unit_system else None
        packages = build_packages(items, overrides)
        print(json.dumps({
            "package_defaults_used": describe_defaults(overrides),
            "packages": [p.to_payload() for p in packages],
        }, indent=2))
    else:
        print("Usage: shipdesk packages build items.json")


def _print_rates(rates, offset: int = 0):
    print(f"{'#':<4} {'Carrier':<20} {'Service':<28} {'Total':<14} {'Days':<5} {'service_id'}")
    print("-" * 90)
    for i, r in enumerate(rates, start=offset + 1):
        days = "N/A" if r.transit_time_not_available or r.transit_time_days is None else str(r.transit_time_days)
        total = r.total.label() if r.total else "-"
        print(f"{i:<4} {r.carrier_name[:19]:<20} {r.service_name[:27]:<28} {total:<14} {days:<5} {r.service_id}")


def handle_rates(args):
    if args.action == "sort":
        data = _read_json(args.file)
        rates = parse_rates(data.get("rates") if isinstance(data, dict) else data) or []
        ranked = sort_rates(rates, args.sort)
        page_size = max(1, args.page_size)
        offset = (max(1, args.page) - 1) * page_size
        page, next_offset = paginate(ranked, offset, page_size)
        _print_rates(page, offset)
        print(f"\n{len(page)} of {len(ranked)} rates (sort={args.sort}, next_offset={next_offset})")

    elif args.action == "quote":
        asyncio.run(_quote(args))

    else:
        print("Usage: shipdesk rates {sort|quote}")


async def _quote(args):
    from shipdesk.database import async_session
    from shipdesk.services.order_store import OrderStore
    from shipdesk.services.rate_pager import RatePager
    from shipdesk.services.rates import QuoteRegistry, RateRequestOrchestrator

    client = FreightcomClient()
    registry = QuoteRegistry()
    try:
        async with async_session() as db:
            store = OrderStore(db)
            order = store.snapshot(await store.get_order(args.order_id))

        orchestrator = RateRequestOrchestrator(client, registry, background_poll=False)
        pager = RatePager.for_order(orchestrator, order, limit=args.limit, sort=args.sort)

        rates = await pager.get_page(0)
        if rates is None:
            print(f"⏳ Quote {pager.state.request_id} still processing {pager.state.status_meta}; try again shortly.")
            return
        for n in range(args.pages):
            if n:
                before = pager.current_page
                rates = await pager.next_page()
                if pager.current_page is before:
                    break
            print(f"\nPage {pager.page_number} (request {pager.state.request_id})")
            _print_rates(rates, pager.offsets[pager.page_number - 1])
        selected = pager.selected_rate
        if selected:
            print(f"\nTop pick ({args.sort}): {selected.carrier_name} {selected.service_name} ({selected.service_id})")
    finally:
        await registry.shutdown()
        await client.close()


def handle_shipments(args):
    if args.action in ("show", "events"):
        asyncio.run(_shipment(args))
    else:
        print("Usage: shipdesk shipments {show|events} SHIPMENT_ID")


async def _shipment(args):
    client = FreightcomClient()
    try:
        if args.action == "show":
            detail = await client.get_shipment(args.shipment_id)
            print(json.dumps(detail.summary(), indent=2, default=str))
        else:
            events = await client.get_tracking_events(args.shipment_id)
            if not events:
                print("No tracking events yet.")
            for e in events:
                print(f"{e.when or '-':<28} {e.type or '-':<20} {e.message or ''}")
    finally:
        await client.close()


def handle_payment_methods(args):
    if args.action == "list":
        asyncio.run(_payment_methods())
    else:
        print("Usage: shipdesk payment-methods list")


async def _payment_methods():
    client = FreightcomClient()
    try:
        methods, _ = await client.list_payment_methods()
        for m in methods:
            print(f"{m.id:<40} {m.label}")
        if not methods:
            print("No payment methods on the carrier account.")
    finally:
        await client.close()


if __name__ == "__main__":
    main()
