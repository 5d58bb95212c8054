"""Etsy API v3 client: paid-but-unshipped shop receipts as canonical orders."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

import httpx

from ..domain.models import Order, OrderItem, OrderSource
from ..domain.normalize import (
    default_due_date,
    epoch_to_utc,
    infer_metal_type,
    join_variations,
    latest_epoch,
    lookback_start,
    money_from_minor,
    positive_int,
    total_or_items_sum,
    utcnow,
)
from ..errors import (
    AuthError,
    HttpStatusError,
    ResponseParseError,
    SourceAuthError,
    SourceNotConfiguredError,
    TransportError,
)
from ..logging import get_logger
from .credentials import CredentialStore

LOG = get_logger("etsy")

PAGE_LIMIT = 100
PREVIEW_CHARS = 1500
MISSING_BODY_HINT = "Check x-api-key and OAuth token (transactions_r scope)"

ImageKey = Tuple[int, int]


def body_preview(raw: str, limit: int = PREVIEW_CHARS) -> str:
    if len(raw) > limit:
        return f"{raw[:limit]}... (truncated)"
    return raw


class EtsyClient:
    name = "Etsy"

    def __init__(
        self,
        credentials: CredentialStore,
        *,
        keystring: Optional[str],
        secret: Optional[str],
        shop_id: Optional[str],
        api_base: str = "https://api.etsy.com/v3",
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.credentials = credentials
        self.keystring = keystring or ""
        self.secret = secret or ""
        self.shop_id = shop_id or ""
        self.api = api_base.rstrip("/")
        self.client = client
        self.timeout = timeout
        self.clock = clock

    # ---------- helpers ----------
    @property
    def x_api_key(self) -> str:
        return f"{self.keystring}:{self.secret}"

    def _headers(self, access_token: str) -> Dict[str, str]:
        return {
            "x-api-key": self.x_api_key,
            "Authorization": f"Bearer {access_token}",
        }

    def _missing(self) -> List[str]:
        missing = []
        if not self.keystring:
            missing.append("ETSY_KEYSTRING")
        if not self.shop_id:
            missing.append("ETSY_SHOP_ID")
        return missing

    # ---------- public ----------
    async def fetch_orders(self) -> List[Order]:
        missing = self._missing()
        if missing:
            raise SourceNotConfiguredError(missing)

        LOG.info("Etsy: getting access token...")
        try:
            access_token = await self.credentials.get_valid_token()
        except AuthError as e:
            raise SourceAuthError(e) from e
        LOG.info("Etsy: token OK, requesting receipts...")

        if self.client is not None:
            return await self._fetch_with(self.client, access_token)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await self._fetch_with(client, access_token)

    async def _fetch_with(self, client: httpx.AsyncClient, access_token: str) -> List[Order]:
        headers = self._headers(access_token)
        receipts = await self._fetch_receipts(client, headers)

        LOG.info(f"Etsy: {len(receipts)} receipts total, fetching listing images...")
        image_urls = await self._fetch_listing_images(client, headers, image_keys(receipts))
        LOG.info(f"Etsy: got {len(image_urls)} image URLs, mapping to orders...")

        now = self.clock()
        cutoff = lookback_start(now)
        orders = []
        for r in receipts:
            order = self._to_order(r, image_urls, now)
            if order.order_date < cutoff:
                continue
            orders.append(order)
        LOG.info(f"Etsy: built {len(orders)} orders")
        return orders

    async def _fetch_receipts(self, client: httpx.AsyncClient, headers: Dict[str, str]) -> List[Dict[str, Any]]:
        """Page through receipts until a short page; the API `count` is not trusted."""
        url = f"{self.api}/application/shops/{self.shop_id}/receipts"
        all_receipts: List[Dict[str, Any]] = []
        offset = 0
        LOG.info("Etsy: fetching receipts (was_paid=true, was_shipped=false)")
        while True:
            params = {
                "limit": str(PAGE_LIMIT),
                "offset": str(offset),
                "was_paid": "true",
                "was_shipped": "false",
            }
            LOG.info(f"Etsy: GET receipts offset={offset}")
            try:
                r = await client.get(url, params=params, headers=headers)
                raw_body = r.text
            except httpx.HTTPError as e:
                raise TransportError(str(e) or e.__class__.__name__, offset=offset) from e

            if not r.is_success:
                raise HttpStatusError(
                    r.status_code, offset=offset, body=body_preview(raw_body), hint=MISSING_BODY_HINT
                )

            results = _parse_receipts_page(raw_body, offset)
            all_receipts.extend(results)
            LOG.info(f"Etsy: page offset={offset} got {len(results)} receipts (total so far: {len(all_receipts)})")
            if len(results) < PAGE_LIMIT:
                break
            offset += PAGE_LIMIT
        return all_receipts

    async def _fetch_listing_images(
        self, client: httpx.AsyncClient, headers: Dict[str, str], keys: Iterable[ImageKey]
    ) -> Dict[ImageKey, str]:
        """Best effort: any failed lookup is skipped."""
        out: Dict[ImageKey, str] = {}
        for listing_id, image_id in keys:
            url = f"{self.api}/application/listings/{listing_id}/images/{image_id}"
            try:
                r = await client.get(url, headers=headers)
            except httpx.HTTPError as e:
                LOG.debug(f"Etsy: image lookup {listing_id}/{image_id} failed: {e}")
                continue
            if not r.is_success:
                LOG.debug(f"Etsy: image lookup {listing_id}/{image_id} returned HTTP {r.status_code}")
                continue
            try:
                img = r.json()
            except ValueError:
                continue
            if not isinstance(img, dict):
                continue
            chosen = img.get("url_170x135") or img.get("url_75x75")
            if chosen:
                out[(listing_id, image_id)] = str(chosen)
        return out

    # ---------- mapping ----------
    def _to_order(self, r: Mapping[str, Any], image_urls: Mapping[ImageKey, str], now: datetime) -> Order:
        order_date = epoch_to_utc(r.get("created_timestamp", r.get("create_timestamp"))) or now
        transactions = [t for t in r.get("transactions") or [] if isinstance(t, dict)]

        due_date = latest_epoch([t.get("expected_ship_date") for t in transactions]) or default_due_date(order_date)

        total_money = r.get("grandtotal")
        if total_money is None:
            total_money = r.get("total")
        total, currency = money_from_minor(total_money)

        items = [_to_item(t, image_urls) for t in transactions]
        receipt_id = r.get("receipt_id")
        customer = str(r.get("name") or "").strip()

        return Order(
            id=str(receipt_id),
            source=OrderSource.ETSY,
            order_number=f"#{r.get('order_id') or receipt_id}",
            customer_name=customer or "Unknown",
            items=items,
            order_date=order_date,
            due_date=due_date,
            total_price=total_or_items_sum(total, (i.subtotal for i in items)),
            currency=currency,
            status=r.get("status") or "open",
            shipping_address=r.get("first_line") or r.get("formatted_address") or None,
        )


def _parse_receipts_page(raw_body: str, offset: int) -> List[Dict[str, Any]]:
    try:
        page = json.loads(raw_body)
        results = page["results"]
        if not isinstance(results, list):
            raise TypeError(f"'results' is {type(results).__name__}, expected list")
    except (ValueError, KeyError, TypeError) as e:
        preview = body_preview(raw_body)
        LOG.error(f"Etsy parse (offset={offset}): {preview}")
        raise ResponseParseError(f"{e.__class__.__name__}: {e}", preview) from e
    return [x for x in results if isinstance(x, dict)]


def image_keys(receipts: Iterable[Mapping[str, Any]]) -> List[ImageKey]:
    """Distinct (listing_id, listing_image_id) pairs across all transactions."""
    keys = set()
    for r in receipts:
        for t in r.get("transactions") or []:
            if not isinstance(t, dict):
                continue
            lid, iid = t.get("listing_id"), t.get("listing_image_id")
            if isinstance(lid, int) and isinstance(iid, int):
                keys.add((lid, iid))
    return sorted(keys)


def _to_item(t: Mapping[str, Any], image_urls: Mapping[ImageKey, str]) -> OrderItem:
    title = t.get("title") or "Item"
    price, _ = money_from_minor(t.get("price"))
    variant_parts = join_variations(t.get("variations"))
    variant_info = ", ".join(variant_parts) if variant_parts else None
    ring_size = next(
        (s for s in variant_parts if "ring" in s.lower() or "size" in s.lower()),
        None,
    )
    key = (t.get("listing_id"), t.get("listing_image_id"))
    return OrderItem(
        name=str(title),
        quantity=positive_int(t.get("quantity")),
        price=price,
        metal_type=infer_metal_type(str(title), variant_info),
        ring_size=ring_size,
        variant_info=variant_info,
        image_url=image_urls.get(key),
    )
