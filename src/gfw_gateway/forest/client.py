"""HTTP clients for the Global Forest Watch API families."""

import logging
import ssl
from enum import Enum
from typing import Any, Dict, Generator, Optional

import httpx

from gfw_gateway.config import (
    GFW_API_BASE_URL,
    GFW_API_KEY,
    GFW_DATA_API_BASE_URL,
    REQUEST_TIMEOUT_SECONDS,
    TLS_CIPHERS,
)
from gfw_gateway.forest.errors import ErrorCode, UpstreamError

logger = logging.getLogger(__name__)


class ApiFamily(str, Enum):
    """Upstream API a dataset is served from."""
    ANALYTICS = "analytics"
    DATASETS = "datasets"


def create_tls_context(ciphers: str = TLS_CIPHERS) -> ssl.SSLContext:
    """TLS 1.2 to 1.3 with certificate verification and a cipher allow-list."""
    context = ssl.create_default_context()
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    context.maximum_version = ssl.TLSVersion.TLSv1_3
    context.set_ciphers(ciphers)
    return context


class BearerAuth(httpx.Auth):
    """Attach the process-wide API key to every outbound request."""

    def __init__(self, token: str):
        self.token = token

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        request.headers["Authorization"] = f"Bearer {self.token}"
        yield request


class GFWClient:
    """Async client for one upstream base address.

    Every failure is raised as ``UpstreamError``; callers never see httpx
    exception types.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = GFW_API_KEY,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        name: str = "gfw",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the client.

        Args:
            base_url: Base URL of the upstream API family
            api_key: Bearer credential injected into every request
            timeout: Per-request timeout in seconds
            name: Label used in logs and error messages
            transport: Optional httpx transport (tests use a mock transport)
        """
        self.base_url = base_url
        self.name = name
        self.client = httpx.AsyncClient(
            base_url=base_url,
            headers={"Content-Type": "application/json", "Accept": "application/json"},
            timeout=timeout,
            verify=create_tls_context(),
            auth=BearerAuth(api_key),
            transport=transport,
        )

    async def call(
        self,
        method: str,
        path: str,
        body: Optional[Dict[str, Any]] = None,
        query: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Perform one request and return the decoded JSON body.

        Args:
            method: HTTP method
            path: Path relative to the base URL
            body: Optional JSON body
            query: Optional query parameters; ``None`` values are dropped

        Returns:
            Decoded JSON response body

        Raises:
            UpstreamError: On timeout, transport failure, non-2xx status or
                a body that is not JSON
        """
        params = {k: v for k, v in (query or {}).items() if v is not None}
        logger.debug(f"{self.name}: {method.upper()} {path} params={params}")

        try:
            response = await self.client.request(method.upper(), path, json=body, params=params or None)
            response.raise_for_status()
        except httpx.TimeoutException as e:
            logger.warning(f"{self.name}: {method.upper()} {path} timed out")
            raise UpstreamError(
                f"{self.name} request timed out",
                code=ErrorCode.TIMEOUT,
                retriable=True,
                context=str(e),
            ) from e
        except httpx.HTTPStatusError as e:
            logger.warning(f"{self.name}: {method.upper()} {path} returned HTTP {e.response.status_code}")
            raise self._status_error(e.response) from e
        except httpx.RequestError as e:
            logger.warning(f"{self.name}: {method.upper()} {path} failed: {e}")
            raise UpstreamError(
                f"{self.name} is unreachable",
                code=ErrorCode.UPSTREAM_ERROR,
                http_status=502,
                retriable=True,
                context=str(e),
            ) from e

        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError(
                f"{self.name} returned a non-JSON body",
                code=ErrorCode.UPSTREAM_ERROR,
                http_status=502,
                context=response.text[:500],
            ) from e

    def _status_error(self, response: httpx.Response) -> UpstreamError:
        status = response.status_code
        context = response.text[:500]
        if status == 401:
            return UpstreamError("Authentication failed", code=ErrorCode.AUTH_ERROR, http_status=401, context=context)
        if status == 429:
            return UpstreamError(
                "Rate limit exceeded", code=ErrorCode.RATE_LIMIT, http_status=429, retriable=True, context=context
            )
        return UpstreamError(
            f"{self.name} returned HTTP {status}",
            code=ErrorCode.UPSTREAM_ERROR,
            http_status=status,
            retriable=status >= 500,
            context=context,
        )

    async def aclose(self):
        """Close the async HTTP client."""
        await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()


class UpstreamClients:
    """The two upstream clients, each with its own connection pool."""

    def __init__(self, analytics: GFWClient, datasets: GFWClient):
        self.analytics = analytics
        self.datasets = datasets

    @classmethod
    def from_config(cls) -> "UpstreamClients":
        return cls(
            analytics=GFWClient(GFW_API_BASE_URL, name="gfw-api"),
            datasets=GFWClient(GFW_DATA_API_BASE_URL, name="gfw-data-api"),
        )

    def for_family(self, family: ApiFamily) -> GFWClient:
        if family == ApiFamily.ANALYTICS:
            return self.analytics
        return self.datasets

    async def aclose(self):
        for client in (self.analytics, self.datasets):
            try:
                await client.aclose()
            except Exception as e:
                logger.error(f"Error closing {client.name} client: {e}")
