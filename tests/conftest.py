"""Shared fixtures: scripted upstream clients, a controllable clock and the service."""

from typing import Any, Dict
from unittest.mock import AsyncMock, MagicMock

import pytest

from gfw_gateway.forest.cache import ExpiringMemoryBackend, ResponseCache
from gfw_gateway.forest.client import GFWClient, UpstreamClients
from gfw_gateway.forest.errors import ErrorCode, UpstreamError
from gfw_gateway.forest.retry import RetryPolicy
from gfw_gateway.forest.service import ForestAnalysisService

GEOSTORE_ID = "test-geostore-id"

GEOSTORE_BODY = {
    "data": {
        "id": GEOSTORE_ID,
        "attributes": {"areaHa": 100, "bbox": [-1, -1, 1, 1]},
    }
}

FOREST = {"treeCover": 80.5, "extent": 1200}
ALERTS = {"count": 12, "confidence": "high"}
BIODIVERSITY = {"species": 341, "intactness": 0.72}
CLIMATE = {"emissions": 1500.0, "removals": -320.0}
GLAD = {"alerts": 10, "confidence": "high", "area": 500}
FIRE = {"alerts": 5, "intensity": "medium", "area": 200}
FOREST_LOSS = {"loss": 100, "gain": 20, "total": 1000}


def server_error(path: str = "") -> UpstreamError:
    return UpstreamError(f"{path} returned HTTP 500", code=ErrorCode.UPSTREAM_ERROR, http_status=500, retriable=True)


def auth_error() -> UpstreamError:
    return UpstreamError("Authentication failed", code=ErrorCode.AUTH_ERROR, http_status=401)


def rate_limited() -> UpstreamError:
    return UpstreamError("Rate limit exceeded", code=ErrorCode.RATE_LIMIT, http_status=429, retriable=True)


class FakeClock:
    """Monotonic clock the tests move by hand."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def scripted_client(name: str, routes: Dict[str, Any]) -> MagicMock:
    """GFWClient stand-in answering from ``routes``.

    A route value is returned as the JSON body, or raised when it is an
    exception. Routes can be changed between calls.
    """

    async def respond(method, path, body=None, query=None):
        if path not in routes:
            raise UpstreamError(f"{path} returned HTTP 404", code=ErrorCode.UPSTREAM_ERROR, http_status=404)
        result = routes[path]
        if isinstance(result, Exception):
            raise result
        return result

    client = MagicMock(spec=GFWClient)
    client.name = name
    client.base_url = f"https://{name}.test"
    client.routes = routes
    client.call = AsyncMock(side_effect=respond)
    client.aclose = AsyncMock()
    return client


def called_paths(client: MagicMock):
    return [call.args[1] for call in client.call.await_args_list]


@pytest.fixture
def analytics_routes():
    """Geostore chain succeeding only on the generic variant, plus the four analyses."""
    return {
        "/v2/geostore/area": server_error("/v2/geostore/area"),
        "/v2/geostore/polygon": server_error("/v2/geostore/polygon"),
        "/v2/geostore": GEOSTORE_BODY,
        f"/v2/forest/{GEOSTORE_ID}": {"data": {"attributes": FOREST}},
        f"/v2/alerts/{GEOSTORE_ID}": {"data": {"attributes": ALERTS}},
        f"/v2/biodiversity/{GEOSTORE_ID}": {"data": {"attributes": BIODIVERSITY}},
        f"/v2/climate/{GEOSTORE_ID}": {"data": {"attributes": CLIMATE}},
    }


@pytest.fixture
def dataset_routes():
    return {
        "/dataset/glad-alerts/area": {"data": GLAD},
        "/dataset/fire-alerts/area": {"data": FIRE},
        "/dataset/umd_tree_cover_loss/area": {"data": FOREST_LOSS},
        f"/analysis/{GEOSTORE_ID}": {"data": {"type": "analysis", "attributes": {"loss": 42}}},
    }


@pytest.fixture
def analytics_client(analytics_routes):
    return scripted_client("gfw-api", analytics_routes)


@pytest.fixture
def datasets_client(dataset_routes):
    return scripted_client("gfw-data-api", dataset_routes)


@pytest.fixture
def clients(analytics_client, datasets_client):
    return UpstreamClients(analytics=analytics_client, datasets=datasets_client)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return ResponseCache(ExpiringMemoryBackend(clock=clock), prefix="test")


@pytest.fixture
def retry_sleep():
    return AsyncMock()


@pytest.fixture
def service(clients, cache, retry_sleep):
    return ForestAnalysisService(
        clients,
        cache,
        retry_policy=RetryPolicy(max_attempts=3, base_delay=0.01, jitter=False, sleep=retry_sleep),
    )
