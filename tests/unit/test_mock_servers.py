"""Unit tests for the mock storefront."""

import pytest
from fastapi.testclient import TestClient

from elementa.mock_servers import create_app, create_mock_app

PRODUCTS = "/wp-json/wc/v3/products"
BATCH = "/wp-json/wc/v3/products/batch"


class TestMockStorefront:

    @pytest.fixture
    def app(self):
        return create_mock_app(
            name="test-shop",
            random_seed=42,
            products=[{"id": i, "sku": f"S{i}", "status": "draft"} for i in range(1, 26)],
        )

    @pytest.fixture
    def client(self, app):
        return TestClient(app)

    def test_health_endpoint(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "server": "test-shop", "products": 25}

    def test_default_page_size(self, client):
        assert len(client.get(PRODUCTS).json()) == 10

    def test_pagination(self, client):
        response = client.get(PRODUCTS, params={"page": 3, "per_page": 10})
        assert [p["id"] for p in response.json()] == [21, 22, 23, 24, 25]
        assert client.get(PRODUCTS, params={"page": 4, "per_page": 10}).json() == []

    @pytest.mark.parametrize("params", [{"page": 0}, {"per_page": 101}])
    def test_invalid_pagination(self, client, params):
        assert client.get(PRODUCTS, params=params).status_code == 400

    def test_sku_filter(self, client):
        response = client.get(PRODUCTS, params={"sku": "S2,S5,S99"})
        assert sorted(p["sku"] for p in response.json()) == ["S2", "S5"]

    def test_status_filter(self, client):
        assert client.get(PRODUCTS, params={"status": "publish"}).json() == []

    def test_batch_create_update_delete(self, client, app):
        response = client.post(BATCH, json={
            "create": [{"sku": "NEW", "name": "New"}],
            "update": [{"id": 1, "name": "Renamed"}],
            "delete": [2],
        })

        data = response.json()
        assert data["create"][0]["id"] == 26
        assert data["update"][0]["name"] == "Renamed"
        assert data["delete"][0]["id"] == 2
        assert 2 not in app.state.products
        assert app.state.products[26]["sku"] == "NEW"

    def test_duplicate_sku_create_is_item_error(self, client):
        data = client.post(BATCH, json={"create": [{"sku": "S1"}]}).json()
        assert data["create"][0]["error"]["code"] == "product_invalid_sku"

    def test_unknown_ids_are_item_errors(self, client):
        data = client.post(BATCH, json={"update": [{"id": 999}], "delete": [998]}).json()
        assert data["update"][0]["error"]["code"] == "woocommerce_rest_product_invalid_id"
        assert data["delete"][0]["error"]["code"] == "woocommerce_rest_product_invalid_id"

    def test_batch_limit(self, client):
        response = client.post(BATCH, json={"delete": list(range(1, 102))})
        assert response.status_code == 413

    def test_requests_are_logged(self, client, app):
        client.get(PRODUCTS)
        client.post(BATCH, json={"delete": [1]})
        assert app.state.requests == [("GET", PRODUCTS), ("POST", BATCH)]


class TestFailureInjection:

    def test_fail_first(self):
        client = TestClient(create_mock_app(fail_first=2, failure_status=503))

        assert client.get(PRODUCTS).status_code == 503
        assert client.get(PRODUCTS).status_code == 503
        assert client.get(PRODUCTS).status_code == 200

    def test_failures_can_be_injected_later(self):
        app = create_mock_app()
        client = TestClient(app)
        assert client.get(PRODUCTS).status_code == 200

        app.state.failures_remaining = 1
        app.state.failure_status = 500

        assert client.get(PRODUCTS).status_code == 500
        assert client.get(PRODUCTS).status_code == 200

    def test_health_is_never_failed(self):
        client = TestClient(create_mock_app(fail_first=5))
        assert client.get("/health").status_code == 200

    def test_random_errors_are_deterministic(self):
        def statuses():
            client = TestClient(create_mock_app(random_seed=7, error_rate=0.5))
            return [client.get(PRODUCTS).status_code for _ in range(20)]

        first = statuses()
        assert first == statuses()
        assert any(code >= 500 for code in first)


def test_create_app_reads_environment(monkeypatch):
    monkeypatch.setenv("SERVER_NAME", "env-shop")
    monkeypatch.setenv("FAIL_FIRST", "1")

    client = TestClient(create_app())

    assert client.get("/health").json()["server"] == "env-shop"
    assert client.get(PRODUCTS).status_code == 503
