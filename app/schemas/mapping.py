from typing import Any, Literal, Optional

from pydantic import Field

from app.schemas.auth import CamelModel

RouteProfile = Literal["driving", "walking", "cycling"]


class Coordinates(CamelModel):
    longitude: float = Field(ge=-180, le=180)
    latitude: float = Field(ge=-90, le=90)


class GeocodeIn(CamelModel):
    address: str = Field(min_length=1, max_length=500)


class RouteIn(CamelModel):
    coordinates: list[Coordinates] = Field(min_length=2, max_length=25)
    profile: RouteProfile = "driving"


class OptimizeRouteIn(CamelModel):
    depot: Coordinates
    destinations: list[Coordinates] = Field(min_length=1, max_length=24)
    profile: RouteProfile = "driving"


class DeliveryZonesIn(CamelModel):
    center_point: Coordinates


class DistanceMatrixIn(CamelModel):
    origins: list[Coordinates] = Field(min_length=1, max_length=12)
    destinations: list[Coordinates] = Field(min_length=1, max_length=12)
    profile: RouteProfile = "driving"


class DeliveryEstimateIn(CamelModel):
    distance_meters: float = Field(ge=0)
    current_hour: Optional[int] = Field(default=None, ge=0, le=23)


class AddressValidationIn(CamelModel):
    address: dict[str, Any]
