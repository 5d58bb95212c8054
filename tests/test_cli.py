from __future__ import annotations

import json
from datetime import timedelta
from decimal import Decimal

import pytest

from order_tracker.aggregator import OrderAggregator
from order_tracker.cli import main as cli_main
from order_tracker.domain.models import MetalType, Order, OrderItem, OrderSource
from order_tracker.errors import HttpStatusError, TransportError


class FakeSource:
    def __init__(self, name, orders=None, error=None):
        self.name = name
        self.orders = orders or []
        self.error = error

    async def fetch_orders(self):
        if self.error:
            raise self.error
        return self.orders


@pytest.fixture
def env(tmp_path, monkeypatch):
    for key in ("SHOPIFY_URL", "SHOPIFY_ACCESS_TOKEN", "ETSY_KEYSTRING", "ETSY_SECRET", "ETSY_SHOP_ID"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("ORDER_TRACKER_CONFIG_DIR", str(tmp_path / "cfg"))
    monkeypatch.setenv("CATALOG_DB", str(tmp_path / "catalog.sqlite3"))
    return tmp_path


def _run(env, *args):
    return cli_main.main(["--env-dir", str(env), *args])


def test_connect_etsy_writes_credential_file(env, capsys):
    assert _run(env, "connect-etsy", "--token", "r-123") == 0
    path = env / "cfg" / "etsy_oauth.json"
    assert capsys.readouterr().out.strip() == str(path)
    assert json.loads(path.read_text(encoding="utf-8"))["refresh_token"] == "r-123"


def test_catalog_import_then_list(env, capsys):
    rows = [{"design_key": "Wave", "ring_size": "N/A", "silver_usd": 9.5}]
    src = env / "rows.json"
    src.write_text(json.dumps(rows), encoding="utf-8")
    assert _run(env, "catalog", "import", "--file", str(src)) == 0
    capsys.readouterr()
    assert _run(env, "catalog", "list") == 0
    listed = json.loads(capsys.readouterr().out)
    assert listed[0]["design_key"] == "Wave"
    assert listed[0]["silver_usd"] == 9.5


def test_catalog_list_without_file_fails(env):
    assert _run(env, "catalog", "list") == 1


def test_orders_json_with_costs(env, now, monkeypatch, capsys):
    order = Order(
        id="1",
        source=OrderSource.SHOPIFY,
        order_number="#1001",
        customer_name="Grace",
        items=[OrderItem(name="Wave ring", quantity=1, price=Decimal("30"), metal_type=MetalType.SILVER)],
        order_date=now,
        due_date=now + timedelta(days=14),
        total_price=Decimal("30"),
        currency="USD",
        status="unfulfilled",
    )
    monkeypatch.setattr(
        cli_main,
        "build_default_aggregator",
        lambda settings: OrderAggregator([FakeSource("Shopify", [order]), FakeSource("Etsy", error=HttpStatusError(401))]),
    )
    src = env / "rows.json"
    src.write_text(json.dumps([{"design_key": "wave", "silver_usd": 9.5, "silver_g": 2.0}]), encoding="utf-8")
    assert _run(env, "catalog", "import", "--file", str(src)) == 0
    capsys.readouterr()

    assert _run(env, "orders", "--json", "--costs") == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["errors"] == ["Etsy: API error: HTTP 401"]
    assert payload["orders"][0]["items"][0]["cost"] == {"cost_usd": 9.5, "weight_g": 2.0}


def test_orders_text_report_and_total_failure(env, monkeypatch, capsys):
    monkeypatch.setattr(
        cli_main,
        "build_default_aggregator",
        lambda settings: OrderAggregator(
            [FakeSource("Shopify", error=TransportError("dns")), FakeSource("Etsy", error=HttpStatusError(500))]
        ),
    )
    assert _run(env, "orders") == 1
    assert capsys.readouterr().out == ""


def test_catalog_import_rejects_bad_alias_field(env, capsys):
    src = env / "rows.json"
    src.write_text(
        json.dumps([{"design_key": "ok", "silver_usd": 1}, {"design_key": "moon", "product_keys": "Moon Ring"}]),
        encoding="utf-8",
    )
    assert _run(env, "catalog", "import", "--file", str(src)) == 2
    capsys.readouterr()
    assert _run(env, "catalog", "list") == 0
    assert json.loads(capsys.readouterr().out) == []
