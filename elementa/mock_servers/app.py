"""FastAPI mock WooCommerce storefront for tests and local runs."""

import asyncio
import os
import random
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request
from pydantic import BaseModel, Field

API_PREFIX = "/wp-json/wc/v3"


class BatchRequest(BaseModel):
    """Body of POST products/batch."""
    create: List[Dict[str, Any]] = Field(default_factory=list)
    update: List[Dict[str, Any]] = Field(default_factory=list)
    delete: List[int] = Field(default_factory=list)


def _error_item(item_id: int, code: str, message: str) -> Dict[str, Any]:
    return {"id": item_id, "error": {"code": code, "message": message, "data": {"status": 400}}}


def create_mock_app(
    name: str = "mock-storefront",
    random_seed: Optional[int] = None,
    error_rate: float = 0.0,
    fail_first: int = 0,
    failure_status: int = 503,
    extra_latency_ms: int = 0,
    products: Optional[List[Dict[str, Any]]] = None,
) -> FastAPI:
    """
    Create a mock storefront with configurable failure behavior.

    State lives on app.state so tests can seed products and inject
    failures between requests:
    - products: {id: product}
    - failures_remaining / failure_status: next N API calls fail
    - requests: (method, path) log of API calls

    Args:
        name: Server name reported by /health
        random_seed: Seed for deterministic random failures
        error_rate: Probability of a random 5xx (0.0-1.0)
        fail_first: Number of initial API calls answered with failure_status
        failure_status: Status used for fail_first failures
        extra_latency_ms: Additional latency per API call
        products: Products to seed the store with

    Returns:
        FastAPI application
    """
    app = FastAPI(title=f"Mock Storefront - {name}")
    rng = random.Random(random_seed)

    app.state.products = {}
    app.state.next_id = 1
    app.state.failures_remaining = fail_first
    app.state.failure_status = failure_status
    app.state.requests = []

    def _store(product: Dict[str, Any]) -> Dict[str, Any]:
        product = dict(product)
        if not product.get("id"):
            product["id"] = app.state.next_id
        app.state.next_id = max(app.state.next_id, int(product["id"])) + 1
        app.state.products[int(product["id"])] = product
        return product

    for seeded in products or []:
        _store(seeded)

    async def _simulate(request: Request) -> None:
        app.state.requests.append((request.method, request.url.path))

        if extra_latency_ms > 0:
            await asyncio.sleep(extra_latency_ms / 1000.0)

        if app.state.failures_remaining > 0:
            app.state.failures_remaining -= 1
            raise HTTPException(status_code=app.state.failure_status, detail="Simulated failure")

        if rng.random() < error_rate:
            raise HTTPException(status_code=rng.choice([500, 502, 503]), detail="Simulated error")

    @app.get(f"{API_PREFIX}/products")
    async def list_products(
        request: Request,
        sku: Optional[str] = None,
        page: int = 1,
        per_page: int = 10,
        status: str = "any",
    ):
        """List products, optionally filtered by comma separated SKUs."""
        await _simulate(request)
        if page < 1 or per_page < 1 or per_page > 100:
            raise HTTPException(status_code=400, detail="Invalid pagination")

        items = sorted(app.state.products.values(), key=lambda p: p["id"])
        if sku:
            wanted = {s.strip() for s in sku.split(",") if s.strip()}
            items = [p for p in items if p.get("sku") in wanted]
        if status != "any":
            items = [p for p in items if p.get("status") == status]

        start = (page - 1) * per_page
        return items[start:start + per_page]

    @app.post(f"{API_PREFIX}/products/batch")
    async def batch_products(request: Request, body: BatchRequest):
        """Batch create/update/delete like WooCommerce."""
        await _simulate(request)
        if len(body.create) + len(body.update) + len(body.delete) > 100:
            raise HTTPException(status_code=413, detail="Batch limit exceeded")

        response: Dict[str, List[Dict[str, Any]]] = {}

        if body.create:
            created = []
            existing_skus = {p.get("sku") for p in app.state.products.values() if p.get("sku")}
            for product in body.create:
                if product.get("sku") and product["sku"] in existing_skus:
                    created.append(_error_item(0, "product_invalid_sku", "Duplicate SKU"))
                    continue
                stored = _store({k: v for k, v in product.items() if k != "id"})
                existing_skus.add(stored.get("sku"))
                created.append(stored)
            response["create"] = created

        if body.update:
            updated = []
            for product in body.update:
                product_id = int(product.get("id") or 0)
                if product_id not in app.state.products:
                    updated.append(_error_item(product_id, "woocommerce_rest_product_invalid_id", "Invalid ID"))
                    continue
                app.state.products[product_id].update(product)
                updated.append(app.state.products[product_id])
            response["update"] = updated

        if body.delete:
            deleted = []
            for product_id in body.delete:
                product = app.state.products.pop(int(product_id), None)
                if product is None:
                    deleted.append(_error_item(product_id, "woocommerce_rest_product_invalid_id", "Invalid ID"))
                else:
                    deleted.append(product)
            response["delete"] = deleted

        return response

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {"status": "healthy", "server": name, "products": len(app.state.products)}

    return app


def create_app() -> FastAPI:
    """
    Factory function for uvicorn --factory.

    Reads failure behavior from environment variables.
    """
    return create_mock_app(
        name=os.getenv("SERVER_NAME", "mock-storefront"),
        random_seed=int(os.getenv("RANDOM_SEED", 42)),
        error_rate=float(os.getenv("ERROR_RATE", 0.0)),
        fail_first=int(os.getenv("FAIL_FIRST", 0)),
        extra_latency_ms=int(os.getenv("EXTRA_LATENCY_MS", 0)),
    )
