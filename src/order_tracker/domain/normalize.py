from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple

from ..logging import get_logger
from .models import MetalType

_LOG = get_logger("normalize")

LOOKBACK_DAYS = 60
FULFILLMENT_SLA_DAYS = 14
# Marketplace timestamps above this are milliseconds, below it seconds.
EPOCH_MILLIS_THRESHOLD = 10**12
DEFAULT_MONEY_DIVISOR = 100
DEFAULT_CURRENCY = "USD"

RING_SIZE_PATTERNS: Tuple[str, ...] = ("size ", "ring size ", "sz ", "us ", "uk ")
_RING_SIZE_CHARS = set("0123456789./ ")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def lookback_start(now: datetime) -> datetime:
    return now - timedelta(days=LOOKBACK_DAYS)


def default_due_date(order_date: datetime) -> datetime:
    return order_date + timedelta(days=FULFILLMENT_SLA_DAYS)


def infer_metal_type(*texts: Optional[str]) -> MetalType:
    """Classify metal from item name and variant text joined by a space."""
    return MetalType.from_text(" ".join(t or "" for t in texts))


def extract_ring_size(text: str, properties: Optional[Iterable[Mapping[str, Any]]] = None) -> Optional[str]:
    """Find a ring size for a storefront line item.

    Custom properties whose name mentions "size" or "ring" win outright.
    Otherwise the first textual pattern found in `text` ("size 7",
    "US 6 1/2", ...) yields the run of digits, dots, slashes and spaces
    after it.
    """
    for prop in properties or ():
        if not isinstance(prop, Mapping):
            continue
        prop_name = str(prop.get("name") or "").lower()
        if "size" in prop_name or "ring" in prop_name:
            value = prop.get("value")
            return None if value is None else str(value)

    lower = (text or "").lower()
    for pattern in RING_SIZE_PATTERNS:
        idx = lower.find(pattern)
        if idx < 0:
            continue
        remaining = lower[idx + len(pattern):]
        run: List[str] = []
        for ch in remaining:
            if ch not in _RING_SIZE_CHARS:
                break
            run.append(ch)
        size = "".join(run).strip()
        if size:
            return size
    return None


def parse_rfc3339_utc(value: Any, *, fallback: datetime) -> datetime:
    """Parse an RFC 3339 timestamp to UTC; `fallback` on anything unparsable."""
    if not isinstance(value, str) or not value.strip():
        _LOG.warning(f"Missing timestamp {value!r}; using fallback")
        return fallback
    s = value.strip()
    if s.endswith("Z") or s.endswith("z"):
        s = s[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        _LOG.warning(f"Unparsable timestamp {value!r}; using fallback")
        return fallback
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def epoch_to_utc(value: Any) -> Optional[datetime]:
    """Epoch seconds or milliseconds (disambiguated by magnitude) to UTC."""
    if value is None or isinstance(value, bool):
        return None
    try:
        ts = int(value)
    except (TypeError, ValueError):
        return None
    try:
        if ts > EPOCH_MILLIS_THRESHOLD:
            return datetime.fromtimestamp(ts / 1000, tz=timezone.utc)
        return datetime.fromtimestamp(ts, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def latest_epoch(values: Sequence[Any]) -> Optional[datetime]:
    """Latest instant among raw epoch values, ignoring unusable entries."""
    raw = [v for v in values if isinstance(v, int) and not isinstance(v, bool)]
    if not raw:
        return None
    return epoch_to_utc(max(raw))


def parse_decimal(value: Any) -> Decimal:
    if value is None:
        return Decimal("0")
    try:
        return Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        _LOG.debug(f"Unparsable amount {value!r}; treating as 0")
        return Decimal("0")


def money_from_minor(money: Optional[Mapping[str, Any]]) -> Tuple[Decimal, str]:
    """Convert an {amount, divisor, currency_code} object to (Decimal, currency)."""
    if not isinstance(money, Mapping):
        return Decimal("0"), DEFAULT_CURRENCY
    amount = money.get("amount")
    divisor = money.get("divisor")
    try:
        amount_dec = Decimal(int(amount)) if amount is not None else Decimal("0")
    except (TypeError, ValueError):
        amount_dec = Decimal("0")
    try:
        divisor_int = int(divisor) if divisor is not None else DEFAULT_MONEY_DIVISOR
    except (TypeError, ValueError):
        divisor_int = DEFAULT_MONEY_DIVISOR
    currency = money.get("currency_code") or DEFAULT_CURRENCY
    return amount_dec / max(divisor_int, 1), str(currency)


def positive_int(value: Any, default: int = 1) -> int:
    try:
        n = int(value)
    except (TypeError, ValueError):
        return default
    return n if n > 0 else default


def join_variations(variations: Optional[Iterable[Mapping[str, Any]]]) -> List[str]:
    """Flatten marketplace variations into "name: value" strings."""
    parts: List[str] = []
    for v in variations or ():
        if not isinstance(v, Mapping):
            continue
        n = v.get("formatted_name") or ""
        val = v.get("formatted_value") or ""
        if not n and not val:
            continue
        parts.append(f"{n}: {val}")
    return parts


def format_shopify_address(addr: Optional[Mapping[str, Any]]) -> Optional[str]:
    if not isinstance(addr, Mapping):
        return None

    def _f(key: str) -> str:
        return str(addr.get(key) or "")

    return f"{_f('address1')}, {_f('city')}, {_f('province')} {_f('zip')} {_f('country')}"


def total_or_items_sum(total: Decimal, subtotals: Iterable[Decimal]) -> Decimal:
    """Source total when positive, else the sum of item subtotals."""
    if total > 0:
        return total
    return sum(subtotals, Decimal("0"))
