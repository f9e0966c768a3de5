"""API endpoints for the forest analytics gateway."""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Path, Query, Request

from gfw_gateway.config import API_VERSION, GFW_API_BASE_URL, GFW_DATA_API_BASE_URL
from gfw_gateway.forest.errors import utc_timestamp
from gfw_gateway.forest.service import ForestAnalysisService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/gfw", tags=["gfw"])


def get_analysis_service(request: Request) -> ForestAnalysisService:
    """Dependency returning the process-wide analysis service."""
    return request.app.state.analysis_service


class RegionParams:
    """Raw region query parameters, validated by the service pipeline."""

    def __init__(
        self,
        lat: Optional[str] = Query(None, description="Latitude in decimal degrees, -90 to 90"),
        lng: Optional[str] = Query(None, description="Longitude in decimal degrees, -180 to 180"),
        radius: Optional[str] = Query(None, description="Radius in meters, 100 to 100000 (default 10000)"),
        start_date: Optional[str] = Query(None, alias="start-date", description="ISO 8601 start date"),
        end_date: Optional[str] = Query(None, alias="end-date", description="ISO 8601 end date, after start-date"),
    ):
        self.raw: Dict[str, Optional[str]] = {
            "lat": lat,
            "lng": lng,
            "radius": radius,
            "start-date": start_date,
            "end-date": end_date,
        }


@router.get("/health")
async def health_check() -> dict:
    """Health check endpoint.

    Returns:
        Service status and the upstream base addresses
    """
    return {
        "status": "healthy",
        "version": API_VERSION,
        "timestamp": utc_timestamp(),
        "endpoints": {
            "base": GFW_API_BASE_URL,
            "data": GFW_DATA_API_BASE_URL,
        },
    }


@router.get("/analyze")
async def analyze(
    params: RegionParams = Depends(),
    service: ForestAnalysisService = Depends(get_analysis_service),
) -> Dict[str, Any]:
    """Forest, alerts, biodiversity and climate analysis around a point."""
    response = await service.analyze(params.raw)
    logger.info(f"Analysis ready for lat={params.raw['lat']}, lng={params.raw['lng']}")
    return response


@router.get("/forest-loss")
async def forest_loss(
    params: RegionParams = Depends(),
    service: ForestAnalysisService = Depends(get_analysis_service),
) -> Dict[str, Any]:
    """Tree cover loss statistics around a point."""
    return await service.forest_loss(params.raw)


@router.get("/alerts")
async def alerts(
    params: RegionParams = Depends(),
    service: ForestAnalysisService = Depends(get_analysis_service),
) -> Dict[str, Any]:
    """Deforestation and fire alerts around a point.

    A failing alert feed is returned as ``{}`` instead of failing the request.
    """
    return await service.alerts(params.raw)


@router.get("/analysis/{geostore_id}")
async def analysis_by_id(
    geostore_id: str = Path(..., description="Existing geostore identifier"),
    start_date: Optional[str] = Query(None, description="ISO 8601 start date"),
    end_date: Optional[str] = Query(None, description="ISO 8601 end date"),
    service: ForestAnalysisService = Depends(get_analysis_service),
) -> Any:
    """Upstream analysis for an already resolved geostore, passed through as-is."""
    return await service.analysis_by_id(geostore_id, start_date=start_date, end_date=end_date)
