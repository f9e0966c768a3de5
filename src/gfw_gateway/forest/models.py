"""Data models for the forest analytics gateway."""

import re
from datetime import date
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from gfw_gateway.config import (
    COORDINATE_PRECISION,
    DEFAULT_RADIUS_METERS,
    MAX_RADIUS_METERS,
    MIN_RADIUS_METERS,
    RADIUS_PRECISION,
)

_CALENDAR_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


class Coordinate(BaseModel):
    """Validated point in decimal degrees."""
    model_config = ConfigDict(frozen=True)

    lat: float = Field(..., ge=-90, le=90, allow_inf_nan=False, description="Latitude in decimal degrees")
    lng: float = Field(..., ge=-180, le=180, allow_inf_nan=False, description="Longitude in decimal degrees")

    @field_validator("lat", "lng")
    @classmethod
    def round_degrees(cls, value: float) -> float:
        # Adding 0.0 folds -0.0 into 0.0
        return round(value, COORDINATE_PRECISION) + 0.0


class DateRange(BaseModel):
    """Optional, possibly open, calendar date range."""
    model_config = ConfigDict(frozen=True)

    start_date: Optional[date] = Field(None, description="Inclusive start date")
    end_date: Optional[date] = Field(None, description="End date, after start_date")

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def calendar_date_only(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip()
            if not _CALENDAR_DATE.match(value):
                raise ValueError("expected a YYYY-MM-DD calendar date")
        return value

    @model_validator(mode="after")
    def check_order(self) -> "DateRange":
        if self.is_closed and self.end_date <= self.start_date:
            raise ValueError("End date must be after start date")
        return self

    @property
    def is_closed(self) -> bool:
        return self.start_date is not None and self.end_date is not None

    def period(self) -> Optional[str]:
        """Upstream ``period`` parameter, only defined for a closed range."""
        if not self.is_closed:
            return None
        return f"{self.start_date.isoformat()},{self.end_date.isoformat()}"

    def to_metadata(self) -> Optional[Dict[str, str]]:
        if not self.is_closed:
            return None
        return {"startDate": self.start_date.isoformat(), "endDate": self.end_date.isoformat()}


class RegionQuery(BaseModel):
    """A circular region around a coordinate, built only after validation."""
    model_config = ConfigDict(frozen=True)

    coordinate: Coordinate
    radius: float = Field(
        DEFAULT_RADIUS_METERS,
        ge=MIN_RADIUS_METERS,
        le=MAX_RADIUS_METERS,
        allow_inf_nan=False,
        description="Radius in meters"
    )
    date_range: DateRange = Field(default_factory=DateRange)

    @field_validator("radius")
    @classmethod
    def round_radius(cls, value: float) -> float:
        return round(value, RADIUS_PRECISION)


class FieldViolation(BaseModel):
    """A single rejected request parameter."""
    field: str
    message: str


class Geostore(BaseModel):
    """Upstream-issued handle for a resolved region."""
    id: str = Field(..., description="Opaque geostore identifier")
    area_hectares: Optional[float] = Field(None, description="Area in hectares")
    bounding_box: Optional[List[float]] = Field(None, description="[minx, miny, maxx, maxy]")

    def summary(self, include_bbox: bool = True) -> Dict[str, Any]:
        """Caller-facing representation; absent attributes are omitted."""
        body: Dict[str, Any] = {"id": self.id}
        if self.area_hectares is not None:
            body["areaHa"] = self.area_hectares
        if include_bbox and self.bounding_box is not None:
            body["bbox"] = self.bounding_box
        return body


class DatasetResult(BaseModel):
    """Outcome of one dataset call inside an aggregation."""
    dataset_name: str
    payload: Any = Field(default_factory=dict, description="Upstream attributes, {} when absent")
    present: bool = False
    error: Optional[str] = Field(None, description="Recovered failure, never rendered")


class EnvelopeMetadata(BaseModel):
    timestamp: str
    api_version: str
    date_range: Optional[DateRange] = None

    def to_response(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"timestamp": self.timestamp, "version": self.api_version}
        date_range = self.date_range.to_metadata() if self.date_range else None
        if date_range:
            body["dateRange"] = date_range
        return body


class AnalysisEnvelope(BaseModel):
    """Merged result of one region analysis."""
    coordinate: Coordinate
    radius: float
    geostore: Geostore
    datasets: Dict[str, DatasetResult]
    metadata: EnvelopeMetadata

    @property
    def failed_datasets(self) -> List[str]:
        return [name for name, result in self.datasets.items() if result.error is not None]

    def to_response(self, section: str, include_bbox: bool = False, flatten: bool = False) -> Dict[str, Any]:
        """Render the ``{"data": ...}`` success body.

        Args:
            section: Key the dataset payloads are placed under
            include_bbox: Echo the geostore bounding box
            flatten: Place the single dataset payload directly under ``section``

        Returns:
            JSON-serialisable success body
        """
        payloads = {name: result.payload for name, result in self.datasets.items()}
        if flatten:
            section_body: Any = next(iter(payloads.values()), {})
        else:
            section_body = payloads
        return {
            "data": {
                "coordinates": self.coordinate.model_dump(),
                "radius": self.radius,
                "geostore": self.geostore.summary(include_bbox=include_bbox),
                section: section_body,
                "metadata": self.metadata.to_response(),
            }
        }
