"""Tests for the analysis request pipeline."""

import json

import pytest

from gfw_gateway.forest.errors import ErrorCode, RequestValidationFailed, UpstreamError

from conftest import (
    ALERTS, BIODIVERSITY, CLIMATE, FOREST, FOREST_LOSS, GEOSTORE_ID, GLAD,
    auth_error, called_paths, server_error,
)

VALID = {"lat": "0", "lng": "0", "radius": "10000"}


def geostore_calls(client):
    return [path for path in called_paths(client) if path.startswith("/v2/geostore")]


class TestAnalyze:

    @pytest.mark.asyncio
    async def test_end_to_end_analysis(self, service, analytics_client):
        response = await service.analyze(VALID)

        data = response["data"]
        assert data["coordinates"] == {"lat": 0, "lng": 0}
        assert data["radius"] == 10000
        assert data["geostore"] == {"id": GEOSTORE_ID, "areaHa": 100, "bbox": [-1, -1, 1, 1]}
        assert data["analysis"] == {
            "forest": FOREST,
            "alerts": ALERTS,
            "biodiversity": BIODIVERSITY,
            "climate": CLIMATE,
        }
        assert data["metadata"]["version"] == "v3"
        assert "dateRange" not in data["metadata"]
        assert geostore_calls(analytics_client) == ["/v2/geostore/area", "/v2/geostore/polygon", "/v2/geostore"]

    @pytest.mark.asyncio
    async def test_identical_requests_within_ttl_hit_cache(self, service, analytics_client, clock):
        first = await service.analyze(VALID)
        clock.advance(3599)
        second = await service.analyze({"lng": "0.0", "lat": "-0", "radius": "10000.0"})

        assert json.dumps(second) == json.dumps(first)
        assert len(geostore_calls(analytics_client)) == 3
        assert analytics_client.call.await_count == 3 + 4

    @pytest.mark.asyncio
    async def test_cached_body_echoes_canonical_region(self, service, analytics_client):
        first = await service.analyze({"lat": "1.00000004", "lng": "2", "radius": "100.04"})
        second = await service.analyze({"lat": "1", "lng": "2.0", "radius": "100.0"})

        assert second == first
        assert first["data"]["coordinates"] == {"lat": 1.0, "lng": 2.0}
        assert first["data"]["radius"] == 100.0
        assert analytics_client.call.await_args_list[0].kwargs["body"] == {"lat": 1.0, "lng": 2.0, "radius": 100.0}
        assert analytics_client.call.await_count == 3 + 4

    @pytest.mark.asyncio
    async def test_expired_entry_triggers_fresh_round_trip(self, service, analytics_client, clock):
        await service.analyze(VALID)
        clock.advance(3601)
        await service.analyze(VALID)

        assert analytics_client.call.await_count == 2 * (3 + 4)

    @pytest.mark.asyncio
    async def test_invalid_request_makes_no_upstream_call(self, service, analytics_client, datasets_client):
        with pytest.raises(RequestValidationFailed) as exc_info:
            await service.analyze({"lat": "91", "lng": "0"})

        assert exc_info.value.status == 400
        analytics_client.call.assert_not_awaited()
        datasets_client.call.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_dataset_failure_is_tolerated_and_not_cached(self, service, analytics_client, analytics_routes):
        analytics_routes[f"/v2/climate/{GEOSTORE_ID}"] = server_error("climate")

        response = await service.analyze(VALID)
        assert response["data"]["analysis"]["climate"] == {}
        assert response["data"]["analysis"]["forest"] == FOREST

        await service.analyze(VALID)
        assert len(geostore_calls(analytics_client)) == 6

    @pytest.mark.asyncio
    async def test_geostore_failure_is_fatal(self, service, analytics_client, analytics_routes):
        analytics_routes["/v2/geostore"] = server_error("/v2/geostore")

        with pytest.raises(UpstreamError) as exc_info:
            await service.analyze(VALID)

        assert exc_info.value.code == ErrorCode.GEOSTORE_ERROR
        assert not [p for p in called_paths(analytics_client) if p.startswith("/v2/forest")]

    @pytest.mark.asyncio
    async def test_auth_failure_propagates(self, service, analytics_routes):
        analytics_routes["/v2/geostore/area"] = auth_error()

        with pytest.raises(UpstreamError) as exc_info:
            await service.analyze(VALID)

        assert exc_info.value.code == ErrorCode.AUTH_ERROR


class TestForestLossAndAlerts:

    @pytest.mark.asyncio
    async def test_forest_loss_shape(self, service, datasets_client):
        params = {**VALID, "start-date": "2023-01-01", "end-date": "2023-12-31"}

        data = (await service.forest_loss(params))["data"]

        assert data["geostore"] == {"id": GEOSTORE_ID, "areaHa": 100}
        assert data["forestLoss"] == FOREST_LOSS
        assert data["metadata"]["dateRange"] == {"startDate": "2023-01-01", "endDate": "2023-12-31"}
        assert datasets_client.call.await_args.kwargs["query"]["period"] == "2023-01-01,2023-12-31"

    @pytest.mark.asyncio
    async def test_alerts_partial_failure(self, service, dataset_routes):
        dataset_routes["/dataset/fire-alerts/area"] = server_error("fire")

        data = (await service.alerts(VALID))["data"]

        assert data["alerts"] == {"deforestation": GLAD, "fire": {}}

    @pytest.mark.asyncio
    async def test_endpoints_use_separate_cache_entries(self, service, analytics_client):
        await service.alerts(VALID)
        await service.forest_loss(VALID)

        assert len(geostore_calls(analytics_client)) == 6

    @pytest.mark.asyncio
    async def test_alerts_use_short_tier(self, service, datasets_client, clock):
        await service.alerts(VALID)
        clock.advance(301)
        await service.alerts(VALID)

        assert datasets_client.call.await_count == 4


class TestAnalysisById:

    @pytest.mark.asyncio
    async def test_passthrough_and_cache(self, service, datasets_client, dataset_routes):
        first = await service.analysis_by_id(GEOSTORE_ID, start_date="2023-01-01", end_date="2023-06-30")
        second = await service.analysis_by_id(GEOSTORE_ID, start_date="2023-01-01", end_date="2023-06-30")

        assert first == dataset_routes[f"/analysis/{GEOSTORE_ID}"]
        assert second == first
        datasets_client.call.assert_awaited_once_with(
            "get", f"/analysis/{GEOSTORE_ID}", query={"start_date": "2023-01-01", "end_date": "2023-06-30"}
        )

    @pytest.mark.asyncio
    async def test_failure_is_analysis_error(self, service, dataset_routes):
        dataset_routes[f"/analysis/{GEOSTORE_ID}"] = auth_error()

        with pytest.raises(UpstreamError) as exc_info:
            await service.analysis_by_id(GEOSTORE_ID)

        assert exc_info.value.code == ErrorCode.ANALYSIS_ERROR
        assert exc_info.value.http_status == 500
        assert exc_info.value.message == "Failed to fetch analysis data"

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(self, service, datasets_client, dataset_routes, retry_sleep):
        payload = dataset_routes[f"/analysis/{GEOSTORE_ID}"]
        outcomes = [server_error("analysis"), payload]

        async def respond(method, path, body=None, query=None):
            outcome = outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        datasets_client.call.side_effect = respond

        assert await service.analysis_by_id(GEOSTORE_ID) == payload
        assert datasets_client.call.await_count == 2
        retry_sleep.assert_awaited_once()


@pytest.mark.asyncio
async def test_aclose_closes_clients(service, analytics_client, datasets_client):
    await service.aclose()

    analytics_client.aclose.assert_awaited_once()
    datasets_client.aclose.assert_awaited_once()
