"""Transforms raw feed records into destination product payloads.

The transformer is defensive about its input: feed columns may be missing,
prices carry currency symbols and thousand separators, and images arrive as
comma separated strings. Anything that cannot become a valid external
listing is rejected with an empty payload and a logged reason.
"""

import re
from typing import Any, Dict, List, Mapping, Optional

from elementa.monitoring.logger import StructuredLogger

REQUIRED_FIELDS = ("external_url", "regular_price", "name")
URL_FIELDS = ("external_url", "product_url", "url", "link")
PRICE_FIELDS = ("regular_price", "sale_price")
DEFAULT_BUTTON_TEXT = "View Product"

_NON_PRICE_CHARS = re.compile(r"[^0-9.]")


def sanitize_price(value: Any) -> str:
    """Strip every character except digits and dots."""
    return _NON_PRICE_CHARS.sub("", str(value))


def split_images(images: Any) -> Any:
    """Convert a comma separated URL string into [{"src": url}] objects."""
    if not isinstance(images, str) or not images:
        return images
    urls = [url.strip() for url in images.split(",")]
    return [{"src": url} for url in urls if url]


def match_category_token(token: Optional[str], category_mappings: Mapping[str, Any]) -> Optional[int]:
    """
    Legacy token matching against source -> destination mappings.

    Exact key match first, then the first mapping whose source appears in
    the token (case-insensitive).
    """
    if not token:
        return None
    token = str(token)
    if token in category_mappings and category_mappings[token] not in (None, ""):
        return int(category_mappings[token])

    lowered = token.lower()
    for source, dest in category_mappings.items():
        if not source or dest in (None, ""):
            continue
        if str(source).lower() in lowered:
            return int(dest)
    return None


class TransformationService:
    """Builds destination payloads from raw records and mapping config."""

    def __init__(self, logger: Optional[StructuredLogger] = None):
        self.logger = logger

    def _skip(self, reason: str, payload: Dict[str, Any], **kwargs) -> Dict[str, Any]:
        if self.logger:
            self.logger.record_skipped(reason, source_identifier=payload.get("sku"), **kwargs)
        return {}

    def _map_fields(self, raw_record: Mapping[str, Any], field_mappings: Mapping[str, str]) -> Dict[str, Any]:
        payload: Dict[str, Any] = {}
        for destination_field, source_field in field_mappings.items():
            if not source_field:
                continue
            value = raw_record.get(source_field)
            if value is not None:
                payload[destination_field] = value
        return payload

    def transform(
        self,
        raw_record: Mapping[str, Any],
        field_mappings: Optional[Mapping[str, str]],
        category_mappings: Optional[Mapping[str, Any]],
        category_id: Optional[int] = None,
        category_token: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Transform one raw record.

        Args:
            raw_record: Feed row keyed by column name
            field_mappings: destination field -> source field
            category_mappings: source category token -> destination category id
            category_id: Category already resolved upstream, if any
            category_token: Raw category token for legacy matching

        Returns:
            Complete payload, or {} when the record must be skipped
        """
        payload = self._map_fields(raw_record, field_mappings or {})
        source_category = payload.pop("source_category", None)

        if not payload.get("external_url"):
            for url_field in URL_FIELDS:
                if payload.get(url_field):
                    payload["external_url"] = payload[url_field]
                    break

        for price_field in PRICE_FIELDS:
            if price_field in payload:
                payload[price_field] = sanitize_price(payload[price_field])

        if "images" in payload:
            payload["images"] = split_images(payload["images"])

        payload["type"] = "external"
        payload["status"] = "draft"

        missing: List[str] = [f for f in REQUIRED_FIELDS if not payload.get(f)]
        if missing:
            return self._skip("missing_required_fields", payload, missing=missing)

        if category_id is None:
            token = category_token if category_token is not None else source_category
            category_id = match_category_token(token, category_mappings or {})
        if category_id is None:
            return self._skip("no_category_match", payload, category=category_token or source_category)
        payload["categories"] = [{"id": category_id}]

        if not payload.get("button_text"):
            payload["button_text"] = DEFAULT_BUTTON_TEXT

        return payload
