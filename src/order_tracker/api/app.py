from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

from starlette.applications import Starlette
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from ..aggregator import OrderAggregator, build_credential_store, build_default_aggregator
from ..catalog import CatalogHandle
from ..config import Settings, load_settings
from ..domain.matching import match_item
from ..errors import CatalogUnavailableError, CredentialPersistError
from ..logging import get_logger, log_snapshot
from ..sources.credentials import CredentialStore


LOG = get_logger("api")

_TRUTHY = {"1", "true", "yes", "on"}


def create_app(
    settings: Optional[Settings] = None,
    *,
    aggregator: Optional[OrderAggregator] = None,
    catalog: Optional[CatalogHandle] = None,
    credentials: Optional[CredentialStore] = None,
    allow_origins: Optional[List[str]] = None,
) -> Starlette:
    """Create a Starlette app exposing orders, catalog, token save and logs."""

    if settings is None and None in (aggregator, catalog, credentials):
        settings = load_settings()
    credentials = credentials or build_credential_store(settings)
    aggregator = aggregator or build_default_aggregator(settings, credentials)
    catalog = catalog or CatalogHandle(settings.catalog_path)

    async def health(_: Request) -> JSONResponse:
        return JSONResponse({"status": "ok"})

    async def orders(request: Request) -> JSONResponse:
        with_costs = (request.query_params.get("costs") or "").lower() in _TRUTHY
        result = await aggregator.fetch_all()
        payload: Dict[str, Any] = result.to_dict()
        if not with_costs:
            return JSONResponse(payload)

        try:
            rows = await run_in_threadpool(catalog.load_catalog)
        except CatalogUnavailableError as exc:
            LOG.warning(f"Catalog unavailable for cost lookup: {exc}")
            payload["errors"].append(f"Catalog: {exc}")
            rows = None
        for order, order_dict in zip(result.orders, payload["orders"]):
            for item, item_dict in zip(order.items, order_dict["items"]):
                match = match_item(item, rows) if rows is not None else None
                item_dict["cost"] = match.to_dict() if match else None
        return JSONResponse(payload)

    async def catalog_rows(_: Request) -> JSONResponse:
        try:
            rows = await run_in_threadpool(catalog.load_catalog)
        except CatalogUnavailableError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        return JSONResponse({"items": [r.to_dict() for r in rows]})

    async def save_etsy_token(request: Request) -> JSONResponse:
        try:
            body = await request.json()
        except json.JSONDecodeError as exc:
            raise HTTPException(status_code=400, detail="Body must be JSON") from exc
        token = body.get("refresh_token") if isinstance(body, dict) else None
        if not isinstance(token, str) or not token.strip():
            raise HTTPException(status_code=400, detail="refresh_token is required")
        try:
            credentials.persist_refresh_token(token)
        except CredentialPersistError as exc:
            LOG.error(f"Saving Etsy token failed: {exc}")
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        return JSONResponse({"status": "saved"})

    async def logs(_: Request) -> JSONResponse:
        return JSONResponse({"items": log_snapshot()})

    routes = [
        Route("/api/health", health, methods=["GET"]),
        Route("/api/orders", orders, methods=["GET"]),
        Route("/api/catalog", catalog_rows, methods=["GET"]),
        Route("/api/etsy/token", save_etsy_token, methods=["POST"]),
        Route("/api/logs", logs, methods=["GET"]),
    ]

    app = Starlette(debug=False, routes=routes)

    origins = allow_origins or ["http://localhost:5173", "http://127.0.0.1:5173"]
    if "*" in origins:
        cors_allow_origins = ["*"]
    else:
        cors_allow_origins = origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    return app


__all__ = ["create_app"]
