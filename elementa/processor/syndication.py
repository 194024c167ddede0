"""Stateless upsert of transformed products into a destination."""

import hashlib
import json
import time
from typing import Any, Callable, Dict, Optional

from elementa.destination.api_client import (
    META_CONNECTION_ID,
    META_LAST_SEEN,
    META_SOURCE_IDENTIFIER,
    ApiClient,
)
from elementa.models.config import ConnectionConfig
from elementa.models.data_models import SyndicationRecord
from elementa.models.exceptions import ElementaError
from elementa.monitoring.logger import StructuredLogger
from elementa.processor.transformer import split_images

RECONCILIATION_KEYS = (META_LAST_SEEN, META_CONNECTION_ID, META_SOURCE_IDENTIFIER)


def content_hash(payload: Dict[str, Any]) -> str:
    """md5 of the canonical JSON form of a payload."""
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.md5(canonical.encode("utf-8")).hexdigest()


def reconciliation_metadata(connection_id: int, source_identifier: str, seen_at: int):
    return [
        {"key": META_LAST_SEEN, "value": seen_at},
        {"key": META_CONNECTION_ID, "value": connection_id},
        {"key": META_SOURCE_IDENTIFIER, "value": source_identifier},
    ]


class SyndicationService:
    """
    Sends one payload to the destination via the injected API client.

    The destination's metadata is the only record of what was syndicated;
    the service keeps no local state between calls. Client failures are
    logged and swallowed so a single record never aborts a chunk.
    """

    def __init__(
        self,
        logger: Optional[StructuredLogger] = None,
        now: Callable[[], float] = time.time,
    ):
        self.logger = logger or StructuredLogger()
        self._now = now

    async def syndicate(
        self,
        payload: Dict[str, Any],
        connection: ConnectionConfig,
        api_client: ApiClient,
    ) -> Optional[SyndicationRecord]:
        """
        Upsert one product.

        Returns:
            SyndicationRecord on success, None when skipped or failed
        """
        product = dict(payload)

        if product.get("product_url"):
            product["type"] = "external"
        if isinstance(product.get("images"), str):
            product["images"] = split_images(product["images"])

        sku = product.get("sku")
        if not sku:
            self.logger.record_skipped("missing_sku", connection_id=connection.id)
            return None
        sku = str(sku)
        product["sku"] = sku

        digest = content_hash(product)
        existing_meta = [
            m for m in product.get("meta_data") or []
            if m.get("key") not in RECONCILIATION_KEYS
        ]
        product["meta_data"] = existing_meta + reconciliation_metadata(
            connection.id, sku, int(self._now())
        )

        try:
            result = await api_client.upsert_products([product])
        except ElementaError as exc:
            self.logger.syndication_failed(connection.id, sku, exc.to_dict())
            return None
        except Exception as exc:
            self.logger.syndication_failed(
                connection.id, sku, {"error_type": exc.__class__.__name__, "message": str(exc)}
            )
            return None

        if not result.success or result.failed:
            self.logger.syndication_failed(
                connection.id, sku, {"message": "destination rejected product", "failed": result.failed}
            )
            return None

        created = result.total_created > 0
        self.logger.syndication_success(connection.id, sku, created)
        return SyndicationRecord(
            connection_id=connection.id,
            source_identifier=sku,
            destination_product_id=result.ids.get(sku),
            content_hash=digest,
            created=created,
        )
