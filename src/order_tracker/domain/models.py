from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple


# Checked in this order; the first category with a hit wins.
METAL_KEYWORDS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("Gold", ("gold", "14k", "18k", "10k")),
    ("Silver", ("silver", "sterling", "925")),
    ("Bronze", ("bronze", "brass")),
)


class MetalType(str, Enum):
    GOLD = "Gold"
    SILVER = "Silver"
    BRONZE = "Bronze"
    UNKNOWN = "Unknown"

    @classmethod
    def from_text(cls, text: str) -> "MetalType":
        lower = (text or "").lower()
        for value, keywords in METAL_KEYWORDS:
            if any(k in lower for k in keywords):
                return cls(value)
        return cls.UNKNOWN

    @property
    def display_name(self) -> str:
        if self is MetalType.GOLD:
            return "Gold Plated"
        return self.value


class OrderSource(str, Enum):
    SHOPIFY = "Shopify"
    ETSY = "Etsy"


def _iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class OrderItem:
    name: str
    quantity: int
    price: Decimal  # per unit
    metal_type: MetalType = MetalType.UNKNOWN
    ring_size: Optional[str] = None
    variant_info: Optional[str] = None
    image_url: Optional[str] = None

    @property
    def subtotal(self) -> Decimal:
        return self.price * self.quantity

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "quantity": self.quantity,
            "price": str(self.price),
            "metal_type": self.metal_type.value,
            "ring_size": self.ring_size,
            "variant_info": self.variant_info,
            "image_url": self.image_url,
        }


@dataclass(frozen=True)
class Order:
    id: str
    source: OrderSource
    order_number: str
    customer_name: str
    items: List[OrderItem]
    order_date: datetime
    due_date: datetime
    total_price: Decimal
    currency: str
    status: str
    shipping_address: Optional[str] = None

    def days_until_due(self, now: Optional[datetime] = None) -> int:
        """Whole days left until due (negative when overdue)."""
        now = now or datetime.now(timezone.utc)
        seconds = (self.due_date - now).total_seconds()
        return int(seconds / 86400)

    def urgency(self, now: Optional[datetime] = None) -> str:
        days = self.days_until_due(now)
        if days < 0:
            return "overdue"
        if days <= 3:
            return "critical"
        if days <= 7:
            return "warning"
        return "ok"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "source": self.source.value,
            "order_number": self.order_number,
            "customer_name": self.customer_name,
            "items": [i.to_dict() for i in self.items],
            "order_date": _iso(self.order_date),
            "due_date": _iso(self.due_date),
            "total_price": str(self.total_price),
            "currency": self.currency,
            "status": self.status,
            "shipping_address": self.shipping_address,
        }


@dataclass(frozen=True)
class CatalogRow:
    design_key: str
    ring_size: Optional[str] = None
    volume_cm3: Optional[float] = None
    silver_g: Optional[float] = None
    silver_usd: Optional[float] = None
    gold_g: Optional[float] = None
    gold_usd: Optional[float] = None
    bronze_g: Optional[float] = None
    bronze_usd: Optional[float] = None
    wax_usd: Optional[float] = None
    product_keys: Optional[Tuple[str, ...]] = None

    @classmethod
    def from_mapping(cls, row: Mapping[str, Any]) -> "CatalogRow":
        keys = _decode_product_keys(row.get("product_keys"))
        return cls(
            design_key=str(row.get("design_key") or ""),
            ring_size=None if row.get("ring_size") is None else str(row.get("ring_size")),
            volume_cm3=_opt_float(row.get("volume_cm3")),
            silver_g=_opt_float(row.get("silver_g")),
            silver_usd=_opt_float(row.get("silver_usd")),
            gold_g=_opt_float(row.get("gold_g")),
            gold_usd=_opt_float(row.get("gold_usd")),
            bronze_g=_opt_float(row.get("bronze_g")),
            bronze_usd=_opt_float(row.get("bronze_usd")),
            wax_usd=_opt_float(row.get("wax_usd")),
            product_keys=keys,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "design_key": self.design_key,
            "ring_size": self.ring_size,
            "volume_cm3": self.volume_cm3,
            "silver_g": self.silver_g,
            "silver_usd": self.silver_usd,
            "gold_g": self.gold_g,
            "gold_usd": self.gold_usd,
            "bronze_g": self.bronze_g,
            "bronze_usd": self.bronze_usd,
            "wax_usd": self.wax_usd,
            "product_keys": list(self.product_keys) if self.product_keys is not None else None,
        }


def _decode_product_keys(value: Any) -> Optional[Tuple[str, ...]]:
    """Alias list from a JSON array, a JSON-encoded array or a lone JSON string."""
    if isinstance(value, str):
        if not value.strip():
            return None
        value = json.loads(value)
    if value is None:
        return None
    if isinstance(value, str):
        return (value,)
    if isinstance(value, (list, tuple)):
        return tuple(str(k) for k in value)
    raise ValueError(f"product_keys must be a list of strings, got {type(value).__name__}")


def _opt_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    return float(value)


@dataclass(frozen=True)
class ItemCostWeight:
    cost_usd: float
    weight_g: float

    def to_dict(self) -> Dict[str, float]:
        return {"cost_usd": self.cost_usd, "weight_g": self.weight_g}


@dataclass
class FetchOrdersResult:
    orders: List[Order] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "orders": [o.to_dict() for o in self.orders],
            "errors": list(self.errors),
        }
