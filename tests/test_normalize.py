from datetime import datetime, timedelta, timezone
from decimal import Decimal

from order_tracker.domain.models import MetalType
from order_tracker.domain.normalize import (
    default_due_date,
    epoch_to_utc,
    extract_ring_size,
    infer_metal_type,
    join_variations,
    latest_epoch,
    money_from_minor,
    parse_decimal,
    parse_rfc3339_utc,
    positive_int,
    total_or_items_sum,
)


def test_gold_wins_over_silver_when_both_present():
    assert infer_metal_type("Sterling Silver band", "Plating: 14k Gold") is MetalType.GOLD
    assert MetalType.from_text("gold and silver ring") is MetalType.GOLD


def test_metal_keywords_by_category():
    assert infer_metal_type("925 signet") is MetalType.SILVER
    assert infer_metal_type("Brass cuff") is MetalType.BRONZE
    assert infer_metal_type("Bronze + silver") is MetalType.SILVER
    assert infer_metal_type("Wooden ring", None) is MetalType.UNKNOWN
    assert MetalType.GOLD.display_name == "Gold Plated"


def test_ring_size_from_item_title():
    assert extract_ring_size("14k Gold Ring Size 7 ") == "7"
    assert extract_ring_size("Signet sz 7.5") == "7.5"
    assert extract_ring_size("Band US 6 1/2") == "6 1/2"
    assert extract_ring_size("Pendant necklace") is None


def test_ring_size_property_beats_title():
    props = [{"name": "Engraving", "value": "AB"}, {"name": "Ring Size", "value": "9"}]
    assert extract_ring_size("Ring Size 7", props) == "9"


def test_ring_size_pattern_without_number_is_skipped():
    # "size " is followed by text, so the next pattern gets its turn
    assert extract_ring_size("one size fits all uk 5") == "5"


def test_epoch_seconds_and_millis_are_the_same_instant():
    secs = 1_760_000_000
    assert epoch_to_utc(secs) == epoch_to_utc(secs * 1000)
    assert epoch_to_utc(secs) == datetime.fromtimestamp(secs, tz=timezone.utc)
    assert epoch_to_utc(None) is None
    assert epoch_to_utc("nope") is None


def test_latest_epoch_ignores_missing_values():
    assert latest_epoch([None, 1_760_000_000, 1_760_100_000]) == epoch_to_utc(1_760_100_000)
    assert latest_epoch([None, None]) is None


def test_money_from_minor_units():
    assert money_from_minor({"amount": 2599, "divisor": 100, "currency_code": "EUR"}) == (Decimal("25.99"), "EUR")
    assert money_from_minor({"amount": 500}) == (Decimal("5"), "USD")
    assert money_from_minor({"amount": 7, "divisor": 0}) == (Decimal("7"), "USD")
    assert money_from_minor(None) == (Decimal("0"), "USD")


def test_parse_rfc3339_converts_to_utc_and_fails_soft(now):
    parsed = parse_rfc3339_utc("2026-10-01T10:00:00-04:00", fallback=now)
    assert parsed == datetime(2026, 10, 1, 14, 0, tzinfo=timezone.utc)
    assert parse_rfc3339_utc("2026-10-01T10:00:00Z", fallback=now).hour == 10
    assert parse_rfc3339_utc("yesterday", fallback=now) == now
    assert parse_rfc3339_utc(None, fallback=now) == now


def test_small_helpers(now):
    assert default_due_date(now) == now + timedelta(days=14)
    assert parse_decimal("12.50") == Decimal("12.50")
    assert parse_decimal("n/a") == Decimal("0")
    assert positive_int("3") == 3
    assert positive_int(0) == 1
    assert positive_int(None) == 1
    assert total_or_items_sum(Decimal("0"), [Decimal("2"), Decimal("3")]) == Decimal("5")
    assert total_or_items_sum(Decimal("9"), [Decimal("2")]) == Decimal("9")


def test_join_variations_skips_empty_pairs():
    variations = [
        {"formatted_name": "Ring size", "formatted_value": "7"},
        {"formatted_name": "", "formatted_value": ""},
        {"formatted_name": "Finish", "formatted_value": None},
    ]
    assert join_variations(variations) == ["Ring size: 7", "Finish: "]
