from __future__ import annotations

import asyncio
from datetime import timedelta
from decimal import Decimal

import httpx
import pytest

from order_tracker.domain.models import MetalType, OrderSource
from order_tracker.errors import HttpStatusError, SourceNotConfiguredError, TransportError
from order_tracker.sources.shopify import ShopifyClient

BASE = "https://shop.example.test/admin/api/2024-01"


def _order(**overrides):
    data = {
        "id": 555,
        "order_number": 1042,
        "created_at": "2026-10-10T08:30:00-04:00",
        "customer": {"first_name": "Grace", "last_name": "Hopper"},
        "line_items": [
            {"name": "14k Gold Ring Size 7", "quantity": 1, "price": "120.00", "variant_title": None},
            {
                "name": "Moon Band",
                "quantity": 2,
                "price": "35.50",
                "variant_title": "Sterling Silver",
                "properties": [{"name": "Ring Size", "value": "6.5"}],
            },
        ],
        "total_price": "191.00",
        "currency": "USD",
        "fulfillment_status": None,
        "shipping_address": {
            "address1": "1 Loop Rd",
            "city": "Arlington",
            "province": "VA",
            "zip": "22201",
            "country": "US",
        },
    }
    data.update(overrides)
    return data


def _fetch(handler, clock):
    seen = []

    def _record(request):
        seen.append(request)
        return handler(request)

    async def _go():
        async with httpx.AsyncClient(transport=httpx.MockTransport(_record)) as client:
            return await ShopifyClient(BASE, "shpat_x", client=client, clock=clock).fetch_orders()

    return asyncio.run(_go()), seen


def test_request_shape(now, clock):
    orders, seen = _fetch(lambda r: httpx.Response(200, json={"orders": []}), clock)
    assert orders == []
    request = seen[0]
    assert request.url.path == "/admin/api/2024-01/orders.json"
    assert request.url.params["status"] == "any"
    assert request.url.params["limit"] == "250"
    assert request.url.params["created_at_min"] == (now - timedelta(days=60)).isoformat(timespec="seconds")
    assert request.headers["x-shopify-access-token"] == "shpat_x"


def test_order_mapping(clock):
    orders, _ = _fetch(lambda r: httpx.Response(200, json={"orders": [_order()]}), clock)
    order = orders[0]
    assert order.source is OrderSource.SHOPIFY
    assert order.id == "555"
    assert order.order_number == "#1042"
    assert order.customer_name == "Grace Hopper"
    assert order.order_date.isoformat() == "2026-10-10T12:30:00+00:00"
    assert order.due_date == order.order_date + timedelta(days=14)
    assert order.total_price == Decimal("191.00")
    assert order.status == "unfulfilled"
    assert order.shipping_address == "1 Loop Rd, Arlington, VA 22201 US"

    gold, silver = order.items
    assert gold.metal_type is MetalType.GOLD
    assert gold.ring_size == "7"
    assert gold.variant_info is None
    assert silver.metal_type is MetalType.SILVER
    assert silver.ring_size == "6.5"
    assert silver.quantity == 2
    assert silver.price == Decimal("35.50")
    assert silver.variant_info == "Sterling Silver"


def test_bad_date_and_missing_customer_fail_soft(now, clock):
    raw = _order(created_at="not a date", customer=None, shipping_address=None, total_price="0.00")
    orders, _ = _fetch(lambda r: httpx.Response(200, json={"orders": [raw]}), clock)
    order = orders[0]
    assert order.order_date == now
    assert order.customer_name == "Unknown Customer"
    assert order.shipping_address is None
    assert order.total_price == Decimal("191.00")


def test_http_error_status(clock):
    with pytest.raises(HttpStatusError) as exc:
        _fetch(lambda r: httpx.Response(500, text="oops"), clock)
    assert exc.value.status == 500


def test_transport_error(clock):
    def handler(request):
        raise httpx.ConnectError("dns failure", request=request)

    with pytest.raises(TransportError):
        _fetch(handler, clock)


def test_missing_configuration(clock):
    with pytest.raises(SourceNotConfiguredError) as exc:
        asyncio.run(ShopifyClient(None, None, clock=clock).fetch_orders())
    assert exc.value.missing == ["SHOPIFY_URL", "SHOPIFY_ACCESS_TOKEN"]
