"""
Order Tracker – fulfillment queue for a jewelry shop.

Collects open orders from Shopify and Etsy into one canonical model and
prices each line against the manufacturing cost catalog.
"""

__all__ = [
    "config",
    "logging",
    "paths",
]
