"""Shared fixtures: a dashboard client backed by httpx.MockTransport."""

import json
from collections.abc import Callable
from datetime import datetime, timezone

import httpx
import pytest

from inbox_sync.client import DashboardClient
from inbox_sync.config import ApiConfig

NOW = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)

Route = Callable[[httpx.Request], httpx.Response]


class FakeDashboard:
    """Routes requests by (method, path) and records every request seen."""

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], Route | object] = {}
        self.requests: list[httpx.Request] = []

    def add(self, method: str, path: str, response: Route | object) -> None:
        """Register a JSON body or a handler function for a route."""
        self.routes[(method, path)] = response

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"error": "not found"})
        if callable(route):
            return route(request)
        return httpx.Response(200, json=route)

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    @staticmethod
    def body(request: httpx.Request) -> dict:
        return json.loads(request.content)


@pytest.fixture
def dashboard() -> FakeDashboard:
    """Provide an empty fake dashboard."""
    return FakeDashboard()


@pytest.fixture
async def client(dashboard: FakeDashboard):
    """Provide a DashboardClient wired to the fake dashboard."""
    api = ApiConfig(base_url="http://dashboard.test", token="secret", request_timeout_seconds=1.0)
    async with DashboardClient(api, transport=httpx.MockTransport(dashboard.handle)) as c:
        yield c


def fixed_clock() -> datetime:
    return NOW
