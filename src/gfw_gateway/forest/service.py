"""Forest analysis service: validate, cache, resolve, aggregate, store."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Sequence

from gfw_gateway.config import API_VERSION, DEFAULT_FOREST_LOSS_PERIOD, TREE_COVER_THRESHOLD
from gfw_gateway.forest.cache import CacheTier, ResponseCache, build_cache_key
from gfw_gateway.forest.client import ApiFamily, UpstreamClients
from gfw_gateway.forest.errors import ErrorCode, UpstreamError, utc_timestamp
from gfw_gateway.forest.geostore import GeostoreResolver
from gfw_gateway.forest.models import (
    AnalysisEnvelope, DatasetResult, DateRange, EnvelopeMetadata, Geostore, RegionQuery
)
from gfw_gateway.forest.retry import RetryPolicy
from gfw_gateway.forest.validation import validate

logger = logging.getLogger(__name__)


def _data(body: Any) -> Any:
    return body.get("data") if isinstance(body, dict) else None


def _attributes(body: Any) -> Any:
    data = _data(body)
    return data.get("attributes") if isinstance(data, dict) else None


def _date_params(_geostore: Geostore, date_range: DateRange) -> Dict[str, Any]:
    return {
        "start-date": date_range.start_date.isoformat() if date_range.start_date else None,
        "end-date": date_range.end_date.isoformat() if date_range.end_date else None,
    }


def _alert_params(geostore: Geostore, date_range: DateRange) -> Dict[str, Any]:
    return {"geostore": geostore.id, "period": date_range.period()}


def _forest_loss_params(geostore: Geostore, date_range: DateRange) -> Dict[str, Any]:
    return {
        "geostore": geostore.id,
        "period": date_range.period() or DEFAULT_FOREST_LOSS_PERIOD,
        "threshold": TREE_COVER_THRESHOLD,
    }


@dataclass(frozen=True)
class DatasetSpec:
    """One upstream dataset queried for a resolved geostore."""
    name: str
    family: ApiFamily
    path: str
    params: Callable[[Geostore, DateRange], Dict[str, Any]]
    extract: Callable[[Any], Any]

    def url(self, geostore: Geostore) -> str:
        return self.path.format(geostore_id=geostore.id)


@dataclass(frozen=True)
class AnalysisProfile:
    """How one region endpoint is cached, fetched and rendered."""
    name: str
    tier: CacheTier
    section: str
    datasets: Sequence[DatasetSpec]
    include_bbox: bool = False
    flatten: bool = False


ANALYZE = AnalysisProfile(
    name="analyze",
    tier=CacheTier.MEDIUM,
    section="analysis",
    include_bbox=True,
    datasets=tuple(
        DatasetSpec(name, ApiFamily.ANALYTICS, f"/v2/{name}/{{geostore_id}}", _date_params, _attributes)
        for name in ("forest", "alerts", "biodiversity", "climate")
    ),
)

FOREST_LOSS = AnalysisProfile(
    name="forest-loss",
    tier=CacheTier.LONG,
    section="forestLoss",
    flatten=True,
    datasets=(
        DatasetSpec(
            "forestLoss", ApiFamily.DATASETS, "/dataset/umd_tree_cover_loss/area", _forest_loss_params, _data
        ),
    ),
)

ALERTS = AnalysisProfile(
    name="alerts",
    tier=CacheTier.SHORT,
    section="alerts",
    datasets=(
        DatasetSpec("deforestation", ApiFamily.DATASETS, "/dataset/glad-alerts/area", _alert_params, _data),
        DatasetSpec("fire", ApiFamily.DATASETS, "/dataset/fire-alerts/area", _alert_params, _data),
    ),
)


class DatasetAggregator:
    """Query several datasets for one geostore concurrently.

    A failing dataset is recorded as an empty, absent result; it never
    fails the aggregation.
    """

    def __init__(self, clients: UpstreamClients, api_version: str = API_VERSION):
        self.clients = clients
        self.api_version = api_version

    async def _fetch(self, spec: DatasetSpec, geostore: Geostore, date_range: DateRange) -> DatasetResult:
        client = self.clients.for_family(spec.family)
        try:
            body = await client.call("get", spec.url(geostore), query=spec.params(geostore, date_range))
            payload = spec.extract(body)
        except Exception as e:
            logger.warning(f"Dataset {spec.name} failed for geostore {geostore.id}: {e}")
            return DatasetResult(dataset_name=spec.name, payload={}, present=False, error=str(e))

        if not payload:
            logger.info(f"Dataset {spec.name} returned no data for geostore {geostore.id}")
            return DatasetResult(dataset_name=spec.name, payload={}, present=False)
        return DatasetResult(dataset_name=spec.name, payload=payload, present=True)

    async def aggregate(
        self,
        query: RegionQuery,
        geostore: Geostore,
        datasets: Sequence[DatasetSpec],
    ) -> AnalysisEnvelope:
        """Fetch every dataset and merge the results into one envelope.

        Args:
            query: Validated region query (supplies the date range)
            geostore: Resolved geostore
            datasets: Datasets to fetch; their order is the output order

        Returns:
            AnalysisEnvelope with one DatasetResult per requested dataset
        """
        results = await asyncio.gather(
            *(self._fetch(spec, geostore, query.date_range) for spec in datasets)
        )
        return AnalysisEnvelope(
            coordinate=query.coordinate,
            radius=query.radius,
            geostore=geostore,
            datasets={result.dataset_name: result for result in results},
            metadata=EnvelopeMetadata(
                timestamp=utc_timestamp(),
                api_version=self.api_version,
                date_range=query.date_range,
            ),
        )


class ForestAnalysisService:
    """Request pipeline shared by the region endpoints."""

    def __init__(
        self,
        clients: UpstreamClients,
        cache: ResponseCache,
        resolver: Optional[GeostoreResolver] = None,
        aggregator: Optional[DatasetAggregator] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        """Initialize the service.

        Args:
            clients: Upstream clients (analytics and bulk-dataset APIs)
            cache: Process-wide response cache
            resolver: Geostore resolver (creates default if None)
            aggregator: Dataset aggregator (creates default if None)
            retry_policy: Policy for the analysis pass-through (creates default if None)
        """
        self.clients = clients
        self.cache = cache
        self.resolver = resolver or GeostoreResolver(clients.analytics)
        self.aggregator = aggregator or DatasetAggregator(clients)
        self.retry_policy = retry_policy or RetryPolicy()

    async def run(self, profile: AnalysisProfile, raw_params: Mapping[str, Any]) -> Dict[str, Any]:
        """Serve one region request.

        Raises:
            RequestValidationFailed: If the parameters are invalid
            UpstreamError: If the geostore cannot be resolved
        """
        query = validate(raw_params).unwrap()

        key = build_cache_key(profile.name, query)
        cached = await self.cache.get(key)
        if cached is not None:
            logger.info(f"Serving {profile.name} from cache")
            return cached

        geostore = await self.resolver.resolve(query)
        envelope = await self.aggregator.aggregate(query, geostore, profile.datasets)
        response = envelope.to_response(
            profile.section, include_bbox=profile.include_bbox, flatten=profile.flatten
        )

        failed = envelope.failed_datasets
        if failed:
            # A transient dataset failure should not be pinned for a whole TTL
            logger.warning(f"{profile.name}: datasets {failed} failed, response not cached")
        else:
            await self.cache.put(key, response, profile.tier)
        return response

    async def analyze(self, raw_params: Mapping[str, Any]) -> Dict[str, Any]:
        return await self.run(ANALYZE, raw_params)

    async def forest_loss(self, raw_params: Mapping[str, Any]) -> Dict[str, Any]:
        return await self.run(FOREST_LOSS, raw_params)

    async def alerts(self, raw_params: Mapping[str, Any]) -> Dict[str, Any]:
        return await self.run(ALERTS, raw_params)

    async def analysis_by_id(
        self,
        geostore_id: str,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> Any:
        """Pass the upstream analysis for an existing geostore through.

        Raises:
            UpstreamError: ANALYSIS_ERROR if the upstream call fails
        """
        key = f"analysis-by-id:{geostore_id}:start={start_date or ''}:end={end_date or ''}"
        cached = await self.cache.get(key)
        if cached is not None:
            return cached

        async def fetch_analysis():
            return await self.clients.datasets.call(
                "get",
                f"/analysis/{geostore_id}",
                query={"start_date": start_date, "end_date": end_date},
            )

        try:
            body = await self.retry_policy.run(fetch_analysis, name=f"analysis {geostore_id}")
        except UpstreamError as e:
            logger.error(f"Analysis fetch for geostore {geostore_id} failed: {e.message}")
            raise UpstreamError(
                "Failed to fetch analysis data",
                code=ErrorCode.ANALYSIS_ERROR,
                http_status=500,
                context=e.message,
            ) from e

        await self.cache.put(key, body, CacheTier.MEDIUM)
        return body

    async def aclose(self):
        """Close upstream clients and the cache backend."""
        await self.clients.aclose()
        try:
            await self.cache.close()
        except Exception as e:
            logger.error(f"Error closing response cache: {e}")

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()
