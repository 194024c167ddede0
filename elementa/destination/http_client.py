"""Async HTTP client wrapper with timeout configuration."""

from typing import Any, Dict, Optional, Tuple

import httpx


class AsyncHTTPClient:
    """
    Async HTTP client wrapper around httpx.AsyncClient.

    Provides:
    - Configurable connect and read timeouts
    - Optional basic auth and base URL
    - Injectable transport (mock storefront, httpx.MockTransport)
    - Context manager for proper lifecycle management
    """

    def __init__(
        self,
        base_url: str = "",
        connect_timeout: float = 30.0,
        read_timeout: float = 180.0,
        write_timeout: float = 30.0,
        pool_timeout: float = 30.0,
        auth: Optional[Tuple[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize HTTP client.

        Args:
            base_url: Prefix for relative request URLs
            connect_timeout: Connection timeout in seconds
            read_timeout: Read timeout in seconds
            write_timeout: Write timeout in seconds
            pool_timeout: Pool timeout in seconds
            auth: (username, password) for basic auth
            transport: Custom httpx transport
        """
        self.base_url = base_url
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout
        self.write_timeout = write_timeout
        self.pool_timeout = pool_timeout
        self.auth = auth
        self.transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        """Enter async context manager."""
        timeout = httpx.Timeout(
            connect=self.connect_timeout,
            read=self.read_timeout,
            write=self.write_timeout,
            pool=self.pool_timeout
        )
        kwargs: Dict[str, Any] = {"timeout": timeout, "base_url": self.base_url}
        if self.auth:
            kwargs["auth"] = self.auth
        if self.transport is not None:
            kwargs["transport"] = self.transport
        self._client = httpx.AsyncClient(**kwargs)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Exit async context manager."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def request(
        self,
        method: str,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Any] = None,
        **kwargs
    ) -> httpx.Response:
        """
        Perform an HTTP request.

        Raises:
            RuntimeError: If used outside the context manager
            httpx.TimeoutException: On connect/read timeout
        """
        if not self._client:
            raise RuntimeError("Client not initialized. Use 'async with' context manager.")

        return await self._client.request(method, url, params=params, json=json, **kwargs)

    async def get(self, url: str, params: Optional[Dict[str, Any]] = None, **kwargs) -> httpx.Response:
        return await self.request("GET", url, params=params, **kwargs)

    async def post(self, url: str, json: Optional[Any] = None, **kwargs) -> httpx.Response:
        return await self.request("POST", url, json=json, **kwargs)

    async def put(self, url: str, json: Optional[Any] = None, **kwargs) -> httpx.Response:
        return await self.request("PUT", url, json=json, **kwargs)

    async def delete(self, url: str, params: Optional[Dict[str, Any]] = None, **kwargs) -> httpx.Response:
        return await self.request("DELETE", url, params=params, **kwargs)
