"""Unit tests for the stateless syndication service."""

import pytest

from elementa.destination.api_client import META_CONNECTION_ID, META_LAST_SEEN, META_SOURCE_IDENTIFIER
from elementa.models.data_models import UpsertResult
from elementa.models.exceptions import DestinationServerError
from elementa.processor.syndication import SyndicationService, content_hash


class RecordingClient:
    """API client double recording upserted products."""

    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.calls = []

    async def upsert_products(self, products):
        self.calls.append([dict(p) for p in products])
        if self.error is not None:
            raise self.error
        return self.result


PAYLOAD = {
    "name": "Shoe",
    "sku": "S1",
    "regular_price": "19.99",
    "external_url": "https://brand.example/shoe",
    "type": "external",
    "status": "draft",
    "categories": [{"id": 42}],
}


@pytest.fixture
def service(logger):
    return SyndicationService(logger, now=lambda: 1700000000.5)


class TestSkipping:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("sku", [None, ""])
    async def test_missing_sku_skips_without_api_call(self, service, connection, sku):
        client = RecordingClient(UpsertResult(success=True, total_created=1))
        payload = dict(PAYLOAD, sku=sku)

        assert await service.syndicate(payload, connection, client) is None
        assert client.calls == []


class TestUpsert:

    @pytest.mark.asyncio
    async def test_created_record(self, service, connection):
        client = RecordingClient(UpsertResult(success=True, total_created=1, ids={"S1": 10}))

        record = await service.syndicate(PAYLOAD, connection, client)

        assert record.created is True
        assert record.connection_id == connection.id
        assert record.source_identifier == "S1"
        assert record.destination_product_id == 10
        assert record.content_hash == content_hash(PAYLOAD)

    @pytest.mark.asyncio
    async def test_updated_record(self, service, connection):
        client = RecordingClient(UpsertResult(success=True, total_updated=1, ids={"S1": 10}))
        record = await service.syndicate(PAYLOAD, connection, client)
        assert record.created is False

    @pytest.mark.asyncio
    async def test_reconciliation_metadata_attached(self, service, connection):
        client = RecordingClient(UpsertResult(success=True, total_created=1))

        await service.syndicate(PAYLOAD, connection, client)

        meta = {m["key"]: m["value"] for m in client.calls[0][0]["meta_data"]}
        assert meta[META_LAST_SEEN] == 1700000000
        assert meta[META_CONNECTION_ID] == connection.id
        assert meta[META_SOURCE_IDENTIFIER] == "S1"

    @pytest.mark.asyncio
    async def test_existing_reconciliation_keys_replaced(self, service, connection):
        client = RecordingClient(UpsertResult(success=True, total_created=1))
        payload = dict(PAYLOAD, meta_data=[
            {"key": META_LAST_SEEN, "value": 1},
            {"key": "colour", "value": "red"},
        ])

        await service.syndicate(payload, connection, client)

        meta = client.calls[0][0]["meta_data"]
        assert [m["key"] for m in meta].count(META_LAST_SEEN) == 1
        assert {"key": "colour", "value": "red"} in meta

    @pytest.mark.asyncio
    async def test_payload_is_not_mutated(self, service, connection):
        client = RecordingClient(UpsertResult(success=True, total_created=1))
        payload = dict(PAYLOAD)
        await service.syndicate(payload, connection, client)
        assert "meta_data" not in payload

    @pytest.mark.asyncio
    async def test_product_url_forces_external_and_images_split(self, service, connection):
        client = RecordingClient(UpsertResult(success=True, total_created=1))
        payload = dict(PAYLOAD, type="simple", product_url="https://x", images="https://a.jpg,https://b.jpg")

        await service.syndicate(payload, connection, client)

        sent = client.calls[0][0]
        assert sent["type"] == "external"
        assert sent["images"] == [{"src": "https://a.jpg"}, {"src": "https://b.jpg"}]

    @pytest.mark.asyncio
    async def test_numeric_sku_sent_as_string(self, service, connection):
        client = RecordingClient(UpsertResult(success=True, total_created=1))
        record = await service.syndicate(dict(PAYLOAD, sku=123), connection, client)
        assert client.calls[0][0]["sku"] == "123"
        assert record.source_identifier == "123"


class TestFailures:

    @pytest.mark.asyncio
    async def test_client_error_is_swallowed(self, service, connection):
        client = RecordingClient(error=DestinationServerError("boom", status_code=503))
        assert await service.syndicate(PAYLOAD, connection, client) is None

    @pytest.mark.asyncio
    async def test_unexpected_error_is_swallowed(self, service, connection):
        client = RecordingClient(error=RuntimeError("socket closed"))
        assert await service.syndicate(PAYLOAD, connection, client) is None

    @pytest.mark.asyncio
    async def test_rejected_product_returns_none(self, service, connection):
        client = RecordingClient(UpsertResult(success=True, failed=[{"sku": "S1", "error": {}}]))
        assert await service.syndicate(PAYLOAD, connection, client) is None

    @pytest.mark.asyncio
    async def test_unsuccessful_result_returns_none(self, service, connection):
        client = RecordingClient(UpsertResult(success=False))
        assert await service.syndicate(PAYLOAD, connection, client) is None


class TestContentHash:

    def test_key_order_does_not_matter(self):
        assert content_hash({"a": 1, "b": 2}) == content_hash({"b": 2, "a": 1})

    def test_value_change_changes_hash(self):
        assert content_hash({"a": 1}) != content_hash({"a": 2})
