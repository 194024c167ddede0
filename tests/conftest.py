"""Pytest configuration and shared fixtures."""

import pytest

from elementa.destination.rate_limiter import RateLimiter
from elementa.destination.state_store import MemoryStateStore
from elementa.destination.throttle import AdaptiveThrottle
from elementa.models.config import ConnectionConfig, SyndicationConfig
from elementa.monitoring.logger import StructuredLogger


class FakeClock:
    """Fake clock for deterministic time testing."""

    def __init__(self, initial_time: float = 0.0):
        self.t = initial_time
        self.sleeps = []

    def now(self) -> float:
        return self.t

    async def sleep(self, dt: float) -> None:
        """Advance fake time by dt seconds."""
        self.sleeps.append(dt)
        self.t += dt


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def logger():
    return StructuredLogger(name="elementa.tests", level="DEBUG")


@pytest.fixture
def store(clock):
    return MemoryStateStore(now=clock.now)


@pytest.fixture
def throttle(store, clock, logger):
    """Throttle whose waits advance the fake clock instead of sleeping."""
    limiter = RateLimiter(now=clock.now, sleeper=clock.sleep)
    return AdaptiveThrottle(store, limiter=limiter, logger=logger, clock=clock, sleeper=clock.sleep)


@pytest.fixture
def sample_config():
    """Provide a sample configuration for testing."""
    return SyndicationConfig(
        chunk_size=100,
        max_concurrent_imports_per_destination=3,
        default_batch_size=25,
        cleanup_max_batch_size=100,
        cleanup_max_batch_failures=3,
        log_level="DEBUG",
    )


@pytest.fixture
def connection():
    """Connection mapping the sample feed columns onto WooCommerce fields."""
    return ConnectionConfig(
        id=7,
        feed_id=3,
        name="shoes -> demo shop",
        destination={"url": "http://shop.test", "consumer_key": "ck", "consumer_secret": "cs"},
        field_mappings={
            "name": "Title",
            "regular_price": "Price",
            "sku": "SKU",
            "external_url": "Link",
            "images": "Images",
        },
        category_source_field="Cat",
        category_delimiter=" > ",
        category_mappings=[{"source": "Running", "dest": "42"}, {"source": "Trail", "dest": 43}],
    )
