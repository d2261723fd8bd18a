"""Location proximity routes."""

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from ..config import get_settings
from ..db import get_db_session
from ..errors import ApiError
from ..proximity import find_nearby, parse_coordinate
from ..repositories import LocationRepository
from ..schemas import ErrorResponse, LocationItem, NearbyLocationsRequest, NearbyLocationsResponse

router = APIRouter(tags=["locations"])

_settings = get_settings()


def _parse_origin(raw: str, *, field: str, limit: float, request: Request) -> float:
    value = parse_coordinate(raw, limit=limit)
    if value is None:
        raise ApiError(
            status_code=status.HTTP_400_BAD_REQUEST,
            code="BAD_REQUEST",
            message=f"Invalid {field}",
            trace_id=request.headers.get("x-trace-id"),
        )
    return value


@router.post(
    "/locations/nearby",
    response_model=NearbyLocationsResponse,
    responses={400: {"model": ErrorResponse}},
)
def nearby_locations(
    payload: NearbyLocationsRequest,
    request: Request,
    session: Session = Depends(get_db_session),
) -> NearbyLocationsResponse:
    lat = _parse_origin(payload.latitude, field="latitude", limit=90.0, request=request)
    lng = _parse_origin(payload.longitude, field="longitude", limit=180.0, request=request)
    radius_km = payload.radius_km if payload.radius_km > 0 else _settings.default_nearby_radius_km

    nearby = find_nearby(
        lat,
        lng,
        radius_km,
        LocationRepository(session).list_all(),
        default_radius_km=_settings.default_nearby_radius_km,
    )
    return NearbyLocationsResponse(
        data=[
            LocationItem(
                id=item.location.id,
                name=item.location.name,
                latitude=item.location.latitude,
                longitude=item.location.longitude,
                description=item.location.description,
                is_medical_center=item.location.is_medical_center,
                phone_medical_center=item.location.phone_medical_center,
                distance_km=round(item.distance_km, 3),
            )
            for item in nearby
        ],
        radius_km=radius_km,
    )
