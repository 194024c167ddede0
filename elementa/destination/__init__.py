"""Destination access: shared throttle state, admission control and the REST client."""

from .api_client import ApiClient, WooCommerceApiClient
from .rate_limiter import RateLimiter
from .state_store import MemoryStateStore, RedisStateStore, create_state_store
from .throttle import AdaptiveThrottle, destination_key

__all__ = [
    "AdaptiveThrottle",
    "ApiClient",
    "MemoryStateStore",
    "RateLimiter",
    "RedisStateStore",
    "WooCommerceApiClient",
    "create_state_store",
    "destination_key",
]
