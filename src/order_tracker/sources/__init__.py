"""Upstream order sources and the marketplace credential store."""

from .credentials import CredentialConfig, CredentialStore
from .etsy import EtsyClient
from .shopify import ShopifyClient

__all__ = [
    "CredentialConfig",
    "CredentialStore",
    "EtsyClient",
    "ShopifyClient",
]
