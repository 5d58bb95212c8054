from __future__ import annotations

import argparse
import json
import os
import sys
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from ..aggregator import build_credential_store, build_default_aggregator
from ..catalog import CatalogDatabase, CatalogHandle
from ..config import Settings, load_settings
from ..domain.matching import attach_costs
from ..domain.models import FetchOrdersResult, ItemCostWeight, Order
from ..errors import CatalogUnavailableError, CredentialPersistError
from ..logging import get_logger
from ..paths import expand_abs

LOG = get_logger("cli-main")


def _format_cost(cost: Optional[ItemCostWeight]) -> str:
    if cost is None:
        return "cost n/a"
    return f"${cost.cost_usd:.2f} / {cost.weight_g:.2f} g"


def _format_order(order: Order, now: datetime, costs: Optional[List[Optional[ItemCostWeight]]] = None) -> List[str]:
    days = order.days_until_due(now)
    head = (
        f"{order.due_date:%Y-%m-%d} ({days:+d}d, {order.urgency(now)}) "
        f"{order.source.value:<7} {order.order_number:<12} {order.customer_name} "
        f"{order.total_price} {order.currency}"
    )
    lines = [head]
    for idx, item in enumerate(order.items):
        parts = [f"    {item.quantity} x {item.name}", f"[{item.metal_type.display_name}]"]
        if item.ring_size:
            parts.append(f"size {item.ring_size}")
        if costs is not None:
            parts.append(_format_cost(costs[idx]))
        lines.append(" ".join(parts))
    return lines


def _load_catalog_rows(settings: Settings):
    try:
        return CatalogHandle(settings.catalog_path).load_catalog()
    except CatalogUnavailableError as e:
        LOG.warning(f"Cost lookup skipped: {e}")
        return None


def _handle_orders(ns: argparse.Namespace, settings: Settings) -> int:
    aggregator = build_default_aggregator(settings)
    result: FetchOrdersResult = aggregator.fetch_all_sync()
    for err in result.errors:
        LOG.error(err)

    rows = _load_catalog_rows(settings) if ns.costs else None
    if ns.json:
        payload = result.to_dict()
        if rows is not None:
            for order_dict, (_, costs) in zip(payload["orders"], attach_costs(result.orders, rows)):
                for item_dict, cost in zip(order_dict["items"], costs):
                    item_dict["cost"] = cost.to_dict() if cost else None
        print(json.dumps(payload, ensure_ascii=False, indent=2))
    else:
        now = datetime.now(timezone.utc)
        if rows is not None:
            pairs = attach_costs(result.orders, rows)
        else:
            pairs = [(o, None) for o in result.orders]
        for order, costs in pairs:
            for line in _format_order(order, now, costs):
                print(line)
        LOG.info(f"{len(result.orders)} orders, {len(result.errors)} source error(s)")

    if result.errors and len(result.errors) >= len(aggregator.sources):
        return 1
    return 0


def _handle_connect_etsy(ns: argparse.Namespace, settings: Settings) -> int:
    store = build_credential_store(settings)
    try:
        store.persist_refresh_token(ns.token)
    except ValueError as e:
        LOG.error(str(e))
        return 2
    except CredentialPersistError as e:
        LOG.error(str(e))
        return 1
    print(store.path)
    return 0


def _handle_catalog_list(_: argparse.Namespace, settings: Settings) -> int:
    try:
        rows = CatalogHandle(settings.catalog_path).load_catalog()
    except CatalogUnavailableError as e:
        LOG.error(str(e))
        return 1
    print(json.dumps([r.to_dict() for r in rows], ensure_ascii=False, indent=2))
    return 0


def _handle_catalog_import(ns: argparse.Namespace, settings: Settings) -> int:
    path = expand_abs(ns.file)
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        LOG.error(f"Cannot read {path}: {e}")
        return 1
    if not isinstance(data, list):
        LOG.error("Catalog import file must contain a JSON array of rows")
        return 2
    try:
        count = CatalogDatabase(settings.catalog_path).import_rows(data)
    except (ValueError, TypeError, AttributeError) as e:
        LOG.error(f"Invalid catalog row in {path}: {e}")
        return 2
    print(count)
    return 0


def _handle_serve(ns: argparse.Namespace, settings: Settings) -> int:
    from ..api.app import create_app
    import uvicorn

    allow_origins = ns.allow_origins
    if allow_origins and "*" in allow_origins:
        allow_origins = ["*"]

    app = create_app(settings, allow_origins=allow_origins)
    uvicorn.run(app, host=ns.host, port=ns.port, log_level=ns.log_level)
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    provided = list(argv) if argv is not None else sys.argv[1:]
    LOG.debug(f"CLI invoked with arguments: {provided}")

    parser = argparse.ArgumentParser(
        prog="order-tracker",
        description="Collect Shopify and Etsy orders due for fulfillment and price them against the cost catalog.",
    )
    parser.add_argument("--env-dir", default=None, help="Directory to start the .env search from (default: cwd)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    orders = subparsers.add_parser("orders", help="Fetch orders from all sources, sorted by due date.")
    orders.add_argument("--json", action="store_true", help="Print JSON instead of text lines")
    orders.add_argument("--costs", action="store_true", help="Attach catalog cost/weight per item")
    orders.set_defaults(handler=_handle_orders)

    connect = subparsers.add_parser("connect-etsy", help="Save an Etsy OAuth refresh token.")
    connect.add_argument("--token", required=True)
    connect.set_defaults(handler=_handle_connect_etsy)

    catalog = subparsers.add_parser("catalog", help="Inspect or seed the cost catalog.")
    catalog_sub = catalog.add_subparsers(dest="catalog_cmd", required=True)
    catalog_list = catalog_sub.add_parser("list", help="Print all catalog rows as JSON")
    catalog_list.set_defaults(handler=_handle_catalog_list)
    catalog_import = catalog_sub.add_parser("import", help="Append rows from a JSON array file")
    catalog_import.add_argument("--file", required=True)
    catalog_import.set_defaults(handler=_handle_catalog_import)

    serve = subparsers.add_parser("serve", help="Run the JSON API server.")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8099)
    serve.add_argument("--log-level", default="info")
    serve.add_argument(
        "--allow-origin",
        action="append",
        dest="allow_origins",
        help="Allowed CORS origin (can be provided multiple times, use '*' for any).",
    )
    serve.set_defaults(handler=_handle_serve)

    args = parser.parse_args(provided)
    settings = load_settings(args.env_dir or os.getcwd())
    code = args.handler(args, settings)
    LOG.debug(f"Subcommand '{args.command}' finished with exit code {code}.")
    return code


if __name__ == "__main__":
    sys.exit(main())
