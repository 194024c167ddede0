"""True end-to-end test with a real uvicorn storefront over TCP."""

import asyncio
from multiprocessing import Process

import httpx
import pytest
import uvicorn

from elementa.mock_servers import create_mock_app
from elementa.models.config import ConnectionConfig, SyndicationConfig
from elementa.models.data_models import CleanupStatus, CleanupWorkUnit, ImportStatus
from elementa.pipeline.orchestrator import SyndicationOrchestrator


def run_server(port: int):
    """Run the mock storefront in a separate process."""
    uvicorn.run(create_mock_app(name="real-shop"), host="127.0.0.1", port=port, log_level="error")


async def wait_until_healthy(url: str, attempts: int = 50) -> None:
    async with httpx.AsyncClient() as client:
        for _ in range(attempts):
            try:
                if (await client.get(f"{url}/health")).status_code == 200:
                    return
            except httpx.TransportError:
                pass
            await asyncio.sleep(0.1)
    raise RuntimeError(f"Mock storefront at {url} did not start")


@pytest.fixture
def storefront_url():
    port = 8011
    server_process = Process(target=run_server, args=(port,))
    server_process.start()
    try:
        yield f"http://127.0.0.1:{port}"
    finally:
        server_process.terminate()
        server_process.join(timeout=2)
        if server_process.is_alive():
            server_process.kill()


@pytest.mark.integration
@pytest.mark.asyncio
async def test_import_and_cleanup_over_http(storefront_url, connection):
    await wait_until_healthy(storefront_url)
    live = ConnectionConfig(**{
        **connection.model_dump(),
        "destination": {"url": storefront_url, "consumer_key": "ck", "consumer_secret": "cs"},
    })
    orchestrator = SyndicationOrchestrator(SyndicationConfig(connections=[live]))
    records = [
        {"Title": f"Shoe {i}", "Price": "$10.00", "SKU": f"R{i}", "Cat": "Shoes > Running",
         "Link": f"https://merchant.test/p/{i}", "Images": ""}
        for i in range(1, 6)
    ]

    run = await orchestrator.run_import(live.id, records=records)
    assert run.status == ImportStatus.COMPLETED
    assert run.created_records == 5

    cleanup = await orchestrator.run_cleanup(CleanupWorkUnit(live.id))
    assert cleanup.status == CleanupStatus.COMPLETED
    assert cleanup.products_processed == 5

    async with httpx.AsyncClient() as client:
        health = (await client.get(f"{storefront_url}/health")).json()
    assert health["products"] == 0
