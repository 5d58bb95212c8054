from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional

import httpx

from ..domain.models import Order, OrderItem, OrderSource
from ..domain.normalize import (
    default_due_date,
    extract_ring_size,
    format_shopify_address,
    infer_metal_type,
    lookback_start,
    parse_decimal,
    parse_rfc3339_utc,
    positive_int,
    total_or_items_sum,
    utcnow,
)
from ..errors import HttpStatusError, ResponseParseError, SourceNotConfiguredError, TransportError
from ..logging import get_logger

LOG = get_logger("shopify")

PAGE_LIMIT = 250


class ShopifyClient:
    """Storefront orders via the admin REST API and a static access token.

    One bounded request per fetch: up to PAGE_LIMIT orders of any status
    created inside the lookback window.
    """

    name = "Shopify"

    def __init__(
        self,
        base_url: Optional[str],
        token: Optional[str],
        *,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.base = (base_url or "").rstrip("/")
        self.token = token or ""
        self.client = client
        self.timeout = timeout
        self.clock = clock

    def _missing(self) -> List[str]:
        missing = []
        if not self.base:
            missing.append("SHOPIFY_URL")
        if not self.token:
            missing.append("SHOPIFY_ACCESS_TOKEN")
        return missing

    async def fetch_orders(self) -> List[Order]:
        missing = self._missing()
        if missing:
            raise SourceNotConfiguredError(missing)

        now = self.clock()
        created_at_min = lookback_start(now).isoformat(timespec="seconds")
        url = f"{self.base}/orders.json"
        params = {"status": "any", "limit": str(PAGE_LIMIT), "created_at_min": created_at_min}
        headers = {
            "X-Shopify-Access-Token": self.token,
            "Content-Type": "application/json",
        }
        LOG.info(f"Shopify: requesting orders created since {created_at_min}...")
        try:
            if self.client is not None:
                r = await self.client.get(url, params=params, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    r = await client.get(url, params=params, headers=headers)
        except httpx.HTTPError as e:
            raise TransportError(str(e) or e.__class__.__name__) from e

        if not r.is_success:
            raise HttpStatusError(r.status_code)

        try:
            data = r.json()
        except ValueError as e:
            raise ResponseParseError(str(e), r.text[:1500]) from e
        raw_orders = data.get("orders") if isinstance(data, dict) else None
        if not isinstance(raw_orders, list):
            raise ResponseParseError("missing 'orders' list", r.text[:1500])

        LOG.info(f"Shopify: got {len(raw_orders)} orders, mapping...")
        orders = []
        for raw in raw_orders:
            if not isinstance(raw, dict):
                LOG.warning(f"Shopify: skipping non-object order entry: {raw!r}")
                continue
            orders.append(self._to_order(raw, now))
        return orders

    def _to_order(self, so: Mapping[str, Any], now: datetime) -> Order:
        order_date = parse_rfc3339_utc(so.get("created_at"), fallback=now)
        items = [self._to_item(li) for li in so.get("line_items") or [] if isinstance(li, dict)]
        return Order(
            id=str(so.get("id")),
            source=OrderSource.SHOPIFY,
            order_number=f"#{so.get('order_number')}",
            customer_name=_customer_name(so.get("customer")),
            items=items,
            order_date=order_date,
            due_date=default_due_date(order_date),
            total_price=total_or_items_sum(parse_decimal(so.get("total_price")), (i.subtotal for i in items)),
            currency=str(so.get("currency") or "USD"),
            status=so.get("fulfillment_status") or "unfulfilled",
            shipping_address=format_shopify_address(so.get("shipping_address")),
        )

    @staticmethod
    def _to_item(li: Dict[str, Any]) -> OrderItem:
        name = str(li.get("name") or "")
        variant_title = li.get("variant_title") or None
        full_name = f"{name} {variant_title or ''}"
        return OrderItem(
            name=name,
            quantity=positive_int(li.get("quantity")),
            price=parse_decimal(li.get("price")),
            metal_type=infer_metal_type(name, variant_title),
            ring_size=extract_ring_size(full_name, li.get("properties")),
            variant_info=variant_title,
            image_url=None,
        )


def _customer_name(customer: Any) -> str:
    if not isinstance(customer, Mapping):
        return "Unknown Customer"
    first = customer.get("first_name") or ""
    last = customer.get("last_name") or ""
    return f"{first} {last}".strip() or "Unknown Customer"
