"""Destination API contract and the WooCommerce REST implementation."""

from typing import Any, Dict, List, Optional, Protocol, Sequence

import httpx

from elementa.destination.http_client import AsyncHTTPClient
from elementa.destination.throttle import AdaptiveThrottle, destination_key
from elementa.models.config import DestinationConfig
from elementa.models.data_models import BatchDeleteResult, UpsertResult
from elementa.models.exceptions import ApiClientError, DestinationServerError
from elementa.monitoring.logger import StructuredLogger

API_PREFIX = "/wp-json/wc/v3/"
PAGE_SIZE = 100

META_LAST_SEEN = "elementa_last_seen_timestamp"
META_CONNECTION_ID = "elementa_feed_connection_id"
META_SOURCE_IDENTIFIER = "elementa_source_identifier"


class ApiClient(Protocol):
    """Collaborator contract consumed by syndication and cleanup."""

    async def upsert_products(self, products: Sequence[Dict[str, Any]]) -> UpsertResult:
        ...

    async def find_products_by_connection(self, connection_id: int) -> List[int]:
        ...

    async def find_stale_products(self, connection_id: int, cutoff_timestamp: int) -> List[int]:
        ...

    async def delete_products(self, ids: Sequence[int]) -> BatchDeleteResult:
        ...


def _meta_value(product: Dict[str, Any], key: str) -> Any:
    for entry in product.get("meta_data") or []:
        if entry.get("key") == key:
            return entry.get("value")
    return None


def _to_api_fields(product: Dict[str, Any]) -> Dict[str, Any]:
    """Rename internal product_url to the API's external_url."""
    payload = dict(product)
    if "product_url" in payload:
        url = payload.pop("product_url")
        payload.setdefault("external_url", url)
    return payload


class WooCommerceApiClient:
    """
    Thin WooCommerce REST client.

    Every call is admitted by the AdaptiveThrottle and its response (or
    timeout) is reported back to it. Responses with status >= 500 raise
    DestinationServerError, other HTTP errors raise ApiClientError. No
    retries are attempted here.
    """

    def __init__(
        self,
        destination: DestinationConfig,
        throttle: AdaptiveThrottle,
        connect_timeout: float = 30.0,
        read_timeout: float = 180.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        logger: Optional[StructuredLogger] = None,
    ):
        self.destination = destination
        self.throttle = throttle
        self.destination_id = destination_key(destination.url)
        self.logger = logger or StructuredLogger()
        auth = None
        if destination.consumer_key:
            auth = (destination.consumer_key, destination.consumer_secret)
        self.http = AsyncHTTPClient(
            base_url=destination.url + API_PREFIX,
            connect_timeout=connect_timeout,
            read_timeout=read_timeout,
            auth=auth,
            transport=transport,
        )

    async def __aenter__(self):
        await self.http.__aenter__()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.http.__aexit__(exc_type, exc_val, exc_tb)

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Any] = None,
    ) -> Any:
        context = {"endpoint": endpoint, "method": method, "destination": self.destination.url}
        request_id = await self.throttle.admit(self.destination_id)
        try:
            response = await self.http.request(method, endpoint, params=params, json=json)
        except httpx.TimeoutException as exc:
            await self.throttle.observe(self.destination_id, request_id, timed_out=True)
            raise ApiClientError(f"Request timed out: {exc}", context={**context, "timed_out": True}) from exc
        except httpx.HTTPError as exc:
            await self.throttle.observe(self.destination_id, request_id)
            raise ApiClientError(f"Request failed: {exc}", context=context) from exc
        else:
            await self.throttle.observe(self.destination_id, request_id, status_code=response.status_code)
        finally:
            self.throttle.release(request_id)

        if response.status_code >= 500:
            raise DestinationServerError(
                f"Destination server error {response.status_code}",
                context=context,
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            try:
                message = response.json().get("message", response.text)
            except ValueError:
                message = response.text
            raise ApiClientError(
                f"WooCommerce API error: {message}",
                context=context,
                status_code=response.status_code,
            )

        if not response.content:
            return {}
        return response.json()

    async def _existing_ids_by_sku(self, skus: List[str]) -> Dict[str, int]:
        if not skus:
            return {}
        found = await self._request(
            "GET", "products", params={"sku": ",".join(skus), "per_page": PAGE_SIZE, "status": "any"}
        )
        return {str(p["sku"]): int(p["id"]) for p in found or [] if p.get("sku")}

    async def batch_products(self, batch: Dict[str, Any]) -> Dict[str, Any]:
        """POST products/batch with create/update/delete sections."""
        return await self._request("POST", "products/batch", json=batch)

    async def upsert_products(self, products: Sequence[Dict[str, Any]]) -> UpsertResult:
        """
        Create or update products, deciding by destination-side SKU lookup.
        """
        payloads = [_to_api_fields(p) for p in products]
        existing = await self._existing_ids_by_sku([str(p["sku"]) for p in payloads if p.get("sku")])

        create: List[Dict[str, Any]] = []
        update: List[Dict[str, Any]] = []
        for payload in payloads:
            product_id = existing.get(str(payload.get("sku")))
            if product_id is None:
                create.append(payload)
            else:
                update.append({**payload, "id": product_id})

        batch: Dict[str, Any] = {}
        if create:
            batch["create"] = create
        if update:
            batch["update"] = update
        if not batch:
            return UpsertResult(success=True)

        response = await self.batch_products(batch)

        result = UpsertResult(success=True)
        for section, sent in (("create", create), ("update", update)):
            for payload, item in zip(sent, response.get(section) or []):
                if item.get("error"):
                    result.failed.append({"payload": payload, "error": item["error"]})
                    continue
                if section == "create":
                    result.total_created += 1
                else:
                    result.total_updated += 1
                if payload.get("sku") and item.get("id"):
                    result.ids[str(payload["sku"])] = int(item["id"])
        result.success = not result.failed
        return result

    async def _list_products(self) -> List[Dict[str, Any]]:
        products: List[Dict[str, Any]] = []
        page = 1
        while True:
            batch = await self._request(
                "GET", "products", params={"status": "any", "per_page": PAGE_SIZE, "page": page}
            )
            batch = batch or []
            products.extend(batch)
            if len(batch) < PAGE_SIZE:
                return products
            page += 1

    async def find_products_by_connection(self, connection_id: int) -> List[int]:
        """Ids of products tagged with the connection's reconciliation metadata."""
        return [
            int(p["id"]) for p in await self._list_products()
            if str(_meta_value(p, META_CONNECTION_ID)) == str(connection_id)
        ]

    async def find_stale_products(self, connection_id: int, cutoff_timestamp: int) -> List[int]:
        """Tagged products whose last-seen timestamp is older than the cutoff."""
        stale = []
        for product in await self._list_products():
            if str(_meta_value(product, META_CONNECTION_ID)) != str(connection_id):
                continue
            last_seen = _meta_value(product, META_LAST_SEEN)
            try:
                last_seen = int(last_seen)
            except (TypeError, ValueError):
                last_seen = 0
            if last_seen < cutoff_timestamp:
                stale.append(int(product["id"]))
        return stale

    async def delete_products(self, ids: Sequence[int]) -> BatchDeleteResult:
        if not ids:
            return BatchDeleteResult(processed=0, errors=0)
        response = await self.batch_products({"delete": list(ids)})
        items = response.get("delete") or []
        errors = sum(1 for item in items if item.get("error"))
        return BatchDeleteResult(processed=len(items) - errors, errors=errors)
