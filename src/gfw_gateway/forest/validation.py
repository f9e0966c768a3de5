"""Input validation for region queries.

Runs before any upstream call. Bounds live on the pydantic models; this
module feeds them the raw parameters and turns pydantic errors into
field violations, in parameter order, so callers see every problem with a
request at once.
"""

from typing import Any, Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel, Field, ValidationError

from gfw_gateway.config import MAX_RADIUS_METERS, MIN_RADIUS_METERS
from gfw_gateway.forest.errors import RequestValidationFailed
from gfw_gateway.forest.models import FieldViolation, RegionQuery

# pydantic error location -> (request parameter, message)
_VIOLATIONS: Dict[Tuple[str, ...], Tuple[str, str]] = {
    ("coordinate", "lat"): ("lat", "Latitude must be between -90 and 90"),
    ("coordinate", "lng"): ("lng", "Longitude must be between -180 and 180"),
    ("radius",): (
        "radius",
        f"Radius must be between {MIN_RADIUS_METERS:g} and {MAX_RADIUS_METERS:g} meters",
    ),
    ("date_range", "start_date"): ("start-date", "Start date must be in ISO 8601 format (YYYY-MM-DD)"),
    ("date_range", "end_date"): ("end-date", "End date must be in ISO 8601 format (YYYY-MM-DD)"),
    ("date_range",): ("end-date", "End date must be after start date"),
}


class ValidationResult(BaseModel):
    """Either a region query or a non-empty list of violations."""
    query: Optional[RegionQuery] = None
    violations: List[FieldViolation] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.violations

    def unwrap(self) -> RegionQuery:
        """Return the query or raise ``RequestValidationFailed``."""
        if not self.ok:
            raise RequestValidationFailed([v.model_dump() for v in self.violations])
        return self.query


def _present(value: Any) -> Any:
    """Treat blank query values as absent so model defaults apply."""
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _model_input(raw_params: Mapping[str, Any]) -> Dict[str, Any]:
    params = {name: _present(raw_params.get(name)) for name in ("lat", "lng", "radius", "start-date", "end-date")}
    body: Dict[str, Any] = {
        "coordinate": {name: params[name] for name in ("lat", "lng") if params[name] is not None},
        "date_range": {
            "start_date": params["start-date"],
            "end_date": params["end-date"],
        },
    }
    if params["radius"] is not None:
        body["radius"] = params["radius"]
    return body


def _violations(error: ValidationError) -> List[FieldViolation]:
    violations: List[FieldViolation] = []
    seen = set()
    for detail in error.errors():
        loc = tuple(str(part) for part in detail["loc"])
        field, message = _VIOLATIONS.get(loc[:2]) or _VIOLATIONS.get(loc[:1]) or (loc[-1], detail["msg"])
        if field not in seen:
            seen.add(field)
            violations.append(FieldViolation(field=field, message=message))
    return violations


def validate(raw_params: Mapping[str, Any]) -> ValidationResult:
    """Validate raw request parameters.

    Args:
        raw_params: Mapping with ``lat``, ``lng`` and optional ``radius``,
            ``start-date`` and ``end-date``

    Returns:
        ValidationResult holding the RegionQuery or the ordered violations
    """
    try:
        query = RegionQuery.model_validate(_model_input(raw_params))
    except ValidationError as e:
        return ValidationResult(violations=_violations(e))
    return ValidationResult(query=query)
