"""Resolve order items to catalog cost/weight records.

Rules run in the order of MATCH_RULES; within a rule, catalog rows are tried
in load order and the first row that passes the rule and the ring-size check
decides the result. There is no scoring. Downstream catalogs were curated
against this exact precedence, including its loose substring matches.
"""

from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from ..logging import get_logger
from .models import CatalogRow, ItemCostWeight, MetalType, Order, OrderItem

LOG = get_logger("matching")

RING_SIZE_WILDCARDS = ("", "N/A")


def _normalize_name(name: str) -> str:
    return (name or "").lower().strip()


def _product_keys_match(item: OrderItem, row: CatalogRow) -> bool:
    """Alias exactly equals the item name, or the item name contains it."""
    if not row.product_keys:
        return False
    name_norm = _normalize_name(item.name)
    name_lower = (item.name or "").lower()
    for key in row.product_keys:
        k = key.strip().lower()
        if k == name_norm or k in name_lower:
            return True
    return False


def _design_key_match(item: OrderItem, row: CatalogRow) -> bool:
    """Equality or substring containment in either direction."""
    name_norm = _normalize_name(item.name)
    design = (row.design_key or "").lower()
    return design == name_norm or design in name_norm or name_norm in design


MatchRule = Callable[[OrderItem, CatalogRow], bool]

MATCH_RULES: Tuple[Tuple[str, MatchRule], ...] = (
    ("product_keys", _product_keys_match),
    ("design_key", _design_key_match),
)


def ring_size_matches(row_ring: Optional[str], item_ring: Optional[str]) -> bool:
    if row_ring is None or row_ring in RING_SIZE_WILDCARDS:
        return True
    if item_ring is None:
        return False
    return row_ring.strip() == item_ring.strip()


def find_catalog_row(item: OrderItem, catalog: Sequence[CatalogRow]) -> Optional[Tuple[str, CatalogRow]]:
    """Return (rule name, row) for the first qualifying catalog row."""
    for rule_name, rule in MATCH_RULES:
        for row in catalog:
            if rule(item, row) and ring_size_matches(row.ring_size, item.ring_size):
                return rule_name, row
    return None


def resolve_cost_weight(row: CatalogRow, metal: MetalType) -> Optional[ItemCostWeight]:
    """Cost/weight for one metal; Unknown sums all three metals.

    A row without data for the metal yields None rather than a zero match.
    """
    if metal is MetalType.SILVER:
        cost, weight = row.silver_usd or 0.0, row.silver_g or 0.0
    elif metal is MetalType.GOLD:
        cost, weight = row.gold_usd or 0.0, row.gold_g or 0.0
    elif metal is MetalType.BRONZE:
        cost, weight = row.bronze_usd or 0.0, row.bronze_g or 0.0
    else:
        cost = (row.silver_usd or 0.0) + (row.gold_usd or 0.0) + (row.bronze_usd or 0.0)
        weight = (row.silver_g or 0.0) + (row.gold_g or 0.0) + (row.bronze_g or 0.0)
    if cost > 0 or weight > 0:
        return ItemCostWeight(cost_usd=cost, weight_g=weight)
    return None


def match_item(item: OrderItem, catalog: Sequence[CatalogRow]) -> Optional[ItemCostWeight]:
    found = find_catalog_row(item, catalog)
    if found is None:
        LOG.debug(f"No catalog row for item {item.name!r} (ring={item.ring_size!r})")
        return None
    rule_name, row = found
    result = resolve_cost_weight(row, item.metal_type)
    LOG.debug(
        f"item={item.name!r} rule={rule_name} design_key={row.design_key!r} "
        f"metal={item.metal_type.value} -> {result}"
    )
    return result


def attach_costs(
    orders: Iterable[Order], catalog: Sequence[CatalogRow]
) -> List[Tuple[Order, List[Optional[ItemCostWeight]]]]:
    """Pair each order with the per-item match results, in item order."""
    return [(o, [match_item(i, catalog) for i in o.items]) for o in orders]
