"""Fetch every order source concurrently and merge the results."""

from __future__ import annotations

import asyncio
from typing import List, Optional, Protocol, Sequence

from .config import Settings
from .domain.models import FetchOrdersResult, Order
from .logging import get_logger
from .sources.credentials import CredentialStore
from .sources.etsy import EtsyClient
from .sources.shopify import ShopifyClient

LOG = get_logger("aggregator")


class OrderSourceClient(Protocol):
    name: str

    async def fetch_orders(self) -> List[Order]:
        ...


class OrderAggregator:
    """Run all sources side by side; one failing source never hides another.

    Every source is started before any is awaited. Failures become
    "<source>: <message>" strings next to whatever orders the other sources
    returned. The merged list is stably sorted by due date, so ties keep
    source order and then the source's own order.
    """

    def __init__(self, sources: Sequence[OrderSourceClient]) -> None:
        self.sources = list(sources)

    async def fetch_all(self) -> FetchOrdersResult:
        tasks = [asyncio.ensure_future(s.fetch_orders()) for s in self.sources]
        result = FetchOrdersResult()
        for source, task in zip(self.sources, tasks):
            try:
                orders = await task
            except Exception as e:  # reported per source, never raised
                msg = str(e) or e.__class__.__name__
                LOG.error(f"{source.name} fetch failed: {msg}")
                result.errors.append(f"{source.name}: {msg}")
                continue
            LOG.info(f"{source.name}: {len(orders)} orders")
            result.orders.extend(orders)
        result.orders.sort(key=lambda o: o.due_date)
        return result

    def fetch_all_sync(self) -> FetchOrdersResult:
        return asyncio.run(self.fetch_all())


def build_credential_store(settings: Settings) -> CredentialStore:
    return CredentialStore(
        settings.credential_path,
        keystring=settings.etsy_keystring,
        token_url=settings.etsy_token_url,
        legacy_secret=settings.etsy_secret,
        timeout=settings.http_timeout,
    )


def build_default_aggregator(
    settings: Settings, credentials: Optional[CredentialStore] = None
) -> OrderAggregator:
    shopify = ShopifyClient(
        settings.shopify_url,
        settings.shopify_token,
        timeout=settings.http_timeout,
    )
    etsy = EtsyClient(
        credentials or build_credential_store(settings),
        keystring=settings.etsy_keystring,
        secret=settings.etsy_secret,
        shop_id=settings.etsy_shop_id,
        api_base=settings.etsy_api_base,
        timeout=settings.http_timeout,
    )
    return OrderAggregator([shopify, etsy])
