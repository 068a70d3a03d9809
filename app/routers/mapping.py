from fastapi import APIRouter, Depends

from app.core.api_docs import error_responses
from app.core.deps import get_mapping_service
from app.core.errors import NotFoundError
from app.core.permissions import authorize
from app.core.roles import Role
from app.core.security_current import CurrentUser, get_current_user
from app.core.throttle import MEMBER_LIMITS
from app.db.database import utcnow
from app.schemas.common import ok
from app.schemas.mapping import (
    AddressValidationIn,
    Coordinates,
    DeliveryEstimateIn,
    DeliveryZonesIn,
    DistanceMatrixIn,
    GeocodeIn,
    OptimizeRouteIn,
    RouteIn,
)
from app.services.mapping_service import (
    MappingService,
    calculate_estimated_delivery_time,
    format_address,
    validate_address,
)

router = APIRouter(prefix="/api/mapping", tags=["mapping"], dependencies=MEMBER_LIMITS)

logistics_roles = authorize(Role.ADMIN, Role.MANAGER, Role.LOGISTICS_COORDINATOR)


def _points(items) -> list[dict[str, float]]:
    return [item.model_dump() for item in items]


@router.get("/status", summary="Mapping provider status", responses=error_responses(401))
def mapping_status(
    current: CurrentUser = Depends(get_current_user),
    mapping: MappingService = Depends(get_mapping_service),
):
    return ok(mapping.status())


@router.post("/geocode", summary="Address to coordinates", responses=error_responses(400, 401, 404))
def geocode(
    payload: GeocodeIn,
    current: CurrentUser = Depends(get_current_user),
    mapping: MappingService = Depends(get_mapping_service),
):
    result = mapping.geocode_address(payload.address.strip())
    if result is None:
        raise NotFoundError("Address not found")
    return ok({"geocoding": result})


@router.post("/reverse-geocode", summary="Coordinates to address", responses=error_responses(400, 401, 404))
def reverse_geocode(
    payload: Coordinates,
    current: CurrentUser = Depends(get_current_user),
    mapping: MappingService = Depends(get_mapping_service),
):
    result = mapping.reverse_geocode(payload.longitude, payload.latitude)
    if result is None:
        raise NotFoundError("Location not found")
    return ok({"location": result})


@router.post("/route", summary="Route between two or more points", responses=error_responses(400, 401, 404))
def route(
    payload: RouteIn,
    current: CurrentUser = Depends(get_current_user),
    mapping: MappingService = Depends(get_mapping_service),
):
    result = mapping.calculate_route(_points(payload.coordinates), payload.profile)
    if result is None:
        raise NotFoundError("Route could not be calculated")
    return ok({"route": result})


@router.post(
    "/optimize-delivery-route",
    summary="Order delivery stops into the shortest round trip",
    responses=error_responses(400, 401, 403, 404),
)
def optimize_delivery_route(
    payload: OptimizeRouteIn,
    current: CurrentUser = Depends(logistics_roles),
    mapping: MappingService = Depends(get_mapping_service),
):
    result = mapping.optimize_delivery_route(
        payload.depot.model_dump(), _points(payload.destinations), payload.profile
    )
    if result is None:
        raise NotFoundError("Delivery route could not be optimized")
    return ok({"optimizedRoute": result})


@router.post(
    "/delivery-zones",
    summary="Drive-time zones around a depot",
    responses=error_responses(400, 401, 403, 404),
)
def delivery_zones(
    payload: DeliveryZonesIn,
    current: CurrentUser = Depends(logistics_roles),
    mapping: MappingService = Depends(get_mapping_service),
):
    zones = mapping.get_delivery_zones(payload.center_point.model_dump())
    if zones is None:
        raise NotFoundError("Could not calculate delivery zones")
    return ok({"deliveryZones": zones})


@router.post(
    "/distance-matrix",
    summary="Travel times between origins and destinations",
    responses=error_responses(400, 401, 404),
)
def distance_matrix(
    payload: DistanceMatrixIn,
    current: CurrentUser = Depends(get_current_user),
    mapping: MappingService = Depends(get_mapping_service),
):
    matrix = mapping.calculate_distance_matrix(
        _points(payload.origins), _points(payload.destinations), payload.profile
    )
    if matrix is None:
        raise NotFoundError("Could not calculate distance matrix")
    return ok({"distanceMatrix": matrix})


@router.post(
    "/estimate-delivery-time",
    summary="Delivery time estimate with rush-hour adjustment",
    description="Uses the current UTC hour when currentHour is omitted.",
    responses=error_responses(400, 401),
)
def estimate_delivery_time(
    payload: DeliveryEstimateIn,
    current: CurrentUser = Depends(get_current_user),
):
    hour = payload.current_hour if payload.current_hour is not None else utcnow().hour
    return ok({"deliveryTimeEstimate": calculate_estimated_delivery_time(payload.distance_meters, hour)})


@router.post(
    "/validate-address",
    summary="Check an address has the required parts",
    responses=error_responses(400, 401),
)
def validate_delivery_address(
    payload: AddressValidationIn,
    current: CurrentUser = Depends(get_current_user),
):
    return ok(
        {
            "isValid": validate_address(payload.address),
            "formattedAddress": format_address(payload.address),
            "address": payload.address,
        }
    )
