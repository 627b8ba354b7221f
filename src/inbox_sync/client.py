"""Async HTTP client for the dashboard backend.

All provider traffic goes through the dashboard's JSON API; this module is
the single place where transport failures become ProviderUnavailable.
"""

from typing import Any, Self

import httpx

from inbox_sync.config import ApiConfig
from inbox_sync.errors import ProviderUnavailable
from inbox_sync.logging import get_logger
from inbox_sync.models import Channel

logger = get_logger("client")


class DashboardClient:
    """Thin wrapper over httpx.AsyncClient with dashboard conventions.

    Applies the base URL, bearer token and request timeout from ApiConfig,
    decodes JSON bodies and maps every failure (connection error, timeout,
    non-2xx status, undecodable body) to ProviderUnavailable scoped to the
    channel the call was made for.
    """

    def __init__(
        self,
        config: ApiConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {"Accept": "application/json"}
        if config.token:
            headers["Authorization"] = f"Bearer {config.token}"
        self._client = httpx.AsyncClient(
            base_url=config.base_url,
            headers=headers,
            timeout=config.request_timeout_seconds,
            transport=transport,
        )

    async def get_json(
        self,
        path: str,
        *,
        channel_id: int | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """GET a JSON document."""
        return await self._request("GET", path, channel_id, params=params)

    async def post_json(
        self,
        path: str,
        body: dict[str, Any] | None = None,
        *,
        channel_id: int | None = None,
    ) -> Any:
        """POST a JSON body and return the decoded response (None when empty)."""
        return await self._request("POST", path, channel_id, json=body or {})

    async def list_channels(self) -> list[Channel]:
        """Read the channel registry."""
        data = await self.get_json("/api/channels")
        if not isinstance(data, list):
            raise ProviderUnavailable(None, "channel registry returned a non-list payload")
        return [Channel.from_registry(entry) for entry in data]

    async def _request(self, method: str, path: str, channel_id: int | None, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise ProviderUnavailable(channel_id, f"timeout on {method} {path}") from e
        except httpx.HTTPError as e:
            raise ProviderUnavailable(channel_id, f"{type(e).__name__} on {method} {path}: {e}") from e

        if not response.is_success:
            raise ProviderUnavailable(channel_id, f"HTTP {response.status_code} on {method} {path}")

        if not response.content:
            return None

        try:
            return response.json()
        except ValueError as e:
            raise ProviderUnavailable(channel_id, f"invalid JSON from {method} {path}") from e

    async def aclose(self) -> None:
        """Close the underlying connection pool."""
        await self._client.aclose()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        await self.aclose()
