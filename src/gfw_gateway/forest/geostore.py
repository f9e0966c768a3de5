"""Geostore resolution for region queries."""

import logging
from typing import Any, Optional, Sequence

from gfw_gateway.forest.client import GFWClient
from gfw_gateway.forest.errors import ErrorCode, UpstreamError
from gfw_gateway.forest.models import Geostore, RegionQuery

logger = logging.getLogger(__name__)

# Creation endpoints, tried in this order. The upstream surface is not
# stable, so any of them may be missing at a given time.
GEOSTORE_VARIANTS: Sequence[str] = (
    "/v2/geostore/area",
    "/v2/geostore/polygon",
    "/v2/geostore",
)


def _parse_geostore(body: Any) -> Optional[Geostore]:
    """Build a Geostore from a creation response, ``None`` if it has no id.

    Raises:
        ValueError: The response has an id but malformed attributes
    """
    data = body.get("data") if isinstance(body, dict) else None
    if not isinstance(data, dict) or not data.get("id"):
        return None
    attributes = data.get("attributes") or {}
    if not isinstance(attributes, dict):
        raise ValueError(f"attributes must be an object, got {type(attributes).__name__}")
    return Geostore(
        id=str(data["id"]),
        area_hectares=attributes.get("areaHa"),
        bounding_box=attributes.get("bbox"),
    )


class GeostoreResolver:
    """Turn a region query into an upstream geostore via a fallback chain.

    Variants are tried one at a time; the first one returning an id wins
    and the rest are never called. An authentication failure aborts the
    chain because every variant shares the same credential.
    """

    def __init__(self, client: GFWClient, variants: Sequence[str] = GEOSTORE_VARIANTS):
        """Initialize the resolver.

        Args:
            client: Client for the analytics API family
            variants: Ordered geostore creation paths
        """
        self.client = client
        self.variants = tuple(variants)

    async def resolve(self, query: RegionQuery) -> Geostore:
        """Resolve a region query to a geostore.

        Args:
            query: Validated region query

        Returns:
            Geostore issued by the first variant that succeeds

        Raises:
            UpstreamError: AUTH_ERROR on a 401 from any variant, RATE_LIMIT
                when the last variant tried was rate limited, GEOSTORE_ERROR
                when every variant failed otherwise
        """
        body = {
            "lat": query.coordinate.lat,
            "lng": query.coordinate.lng,
            "radius": query.radius,
        }
        last_error: Optional[UpstreamError] = None

        for path in self.variants:
            logger.info(f"Trying {path} endpoint...")
            try:
                response = await self.client.call("post", path, body=body)
            except UpstreamError as e:
                if e.code == ErrorCode.AUTH_ERROR:
                    logger.error(f"{path} rejected the API credential, aborting geostore resolution")
                    raise UpstreamError(
                        "Authentication failed", code=ErrorCode.AUTH_ERROR, http_status=401, context=e.context
                    ) from e
                last_error = e
                logger.warning(f"{path} endpoint failed: {e.message}")
                continue

            try:
                geostore = _parse_geostore(response)
            except ValueError as e:
                last_error = UpstreamError(f"{path} returned a malformed geostore: {e}", code=ErrorCode.UPSTREAM_ERROR)
                logger.warning(last_error.message)
                continue

            if geostore is not None:
                logger.info(f"Successfully got geostore ID {geostore.id} from {path}")
                return geostore

            last_error = UpstreamError(f"{path} returned no geostore id", code=ErrorCode.UPSTREAM_ERROR)
            logger.warning(last_error.message)

        if last_error is not None and last_error.code == ErrorCode.RATE_LIMIT:
            raise UpstreamError(
                "Rate limit exceeded", code=ErrorCode.RATE_LIMIT, http_status=429, retriable=True,
                context=last_error.context,
            ) from last_error

        cause = last_error.message if last_error is not None else "no geostore endpoints configured"
        raise UpstreamError(
            "All geostore creation methods failed",
            code=ErrorCode.GEOSTORE_ERROR,
            http_status=500,
            context=cause,
        ) from last_error
