"""Geocoding, routing and service-area lookups against the Mapbox HTTP APIs."""

import logging
import math
from collections.abc import Mapping, Sequence
from typing import Any
from urllib.parse import quote

import httpx

from app.core.config import Settings
from app.core.observability import log_event

logger = logging.getLogger("productivity.mapping")

PROFILES = ("driving", "walking", "cycling")
ZONE_MINUTES = (15, 30, 45, 60)
BASE_SPEED_KMH = 40
LOADING_BUFFER_MINUTES = 15
REQUIRED_ADDRESS_FIELDS = ("street", "city", "country")


def _coordinate_path(points: Sequence[Mapping[str, float]]) -> str:
    return ";".join(f"{point['longitude']},{point['latitude']}" for point in points)


def _context_text(feature: Mapping[str, Any], kind: str) -> str:
    for entry in feature.get("context") or []:
        if kind in str(entry.get("id", "")):
            return entry.get("text") or ""
    return ""


def _lon_lat(value: Any) -> dict[str, float] | None:
    if not isinstance(value, (list, tuple)) or len(value) < 2:
        return None
    longitude, latitude = value[0], value[1]
    if not all(isinstance(part, (int, float)) and not isinstance(part, bool) for part in (longitude, latitude)):
        return None
    return {"longitude": longitude, "latitude": latitude}


def _items(data: Mapping[str, Any] | None, key: str) -> list[Any]:
    value = (data or {}).get(key)
    return value if isinstance(value, list) else []


def _feature_to_place(feature: Any, *, with_confidence: bool) -> dict[str, Any] | None:
    coordinates = _lon_lat(feature.get("center")) if isinstance(feature, Mapping) else None
    if coordinates is None:
        return None
    place: dict[str, Any] = {
        "address": feature.get("place_name"),
        "coordinates": coordinates,
        "components": {
            "street": feature.get("address") or "",
            "city": _context_text(feature, "place"),
            "region": _context_text(feature, "region"),
            "country": _context_text(feature, "country"),
            "postcode": _context_text(feature, "postcode"),
        },
    }
    if with_confidence:
        place["confidence"] = feature.get("relevance")
    return place


def validate_address(address: Any) -> bool:
    if not isinstance(address, Mapping):
        return False
    return all(isinstance(address.get(name), str) and address[name].strip() for name in REQUIRED_ADDRESS_FIELDS)


def format_address(address: Any) -> str:
    if not validate_address(address):
        return "Invalid Address"
    parts = [address.get(name) for name in ("street", "city", "region", "postcode", "country")]
    return ", ".join(part.strip() for part in parts if isinstance(part, str) and part.strip())


def calculate_estimated_delivery_time(distance_meters: float, hour: int) -> dict[str, Any]:
    speed = float(BASE_SPEED_KMH)
    if 7 <= hour <= 9:
        speed *= 0.6
    elif 17 <= hour <= 19:
        speed *= 0.7
    elif 12 <= hour <= 14:
        speed *= 0.8

    travel_minutes = math.ceil((distance_meters / 1000) / speed * 60)
    total_minutes = travel_minutes + LOADING_BUFFER_MINUTES
    return {
        "estimatedMinutes": total_minutes,
        "estimatedHours": math.ceil(total_minutes / 60),
        "baseSpeed": round(speed, 2),
        "trafficFactor": round(speed / BASE_SPEED_KMH, 2),
    }


class MappingService:
    def __init__(self, settings: Settings, *, transport: httpx.BaseTransport | None = None):
        self.settings = settings
        self.access_token = settings.mapbox_access_token
        self._transport = transport
        self._client: httpx.Client | None = None
        self.enabled = False

    def initialize(self) -> bool:
        if not self.access_token:
            log_event(logger, logging.INFO, "mapping_disabled", reason="missing_access_token")
            return False
        self._client = httpx.Client(
            base_url=self.settings.mapbox_base_url,
            timeout=self.settings.external_timeout_seconds,
            transport=self._transport,
        )
        self.enabled = True
        if self._get("/geocoding/v5/mapbox.places/test.json", {"limit": 1}, operation="initialize") is None:
            self.close()
            log_event(logger, logging.WARNING, "mapping_disabled", reason="provider_unreachable")
            return False
        log_event(logger, logging.INFO, "mapping_ready")
        return True

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
        self.enabled = False

    def status(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "provider": "mapbox",
            "profiles": list(PROFILES),
        }

    def _get(self, path: str, params: dict[str, Any], *, operation: str) -> dict[str, Any] | None:
        if not self.enabled or self._client is None:
            return None
        try:
            response = self._client.get(path, params={**params, "access_token": self.access_token})
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            log_event(logger, logging.WARNING, "mapping_request_failed", operation=operation, error=str(exc))
            return None
        if not isinstance(data, dict):
            return self._malformed(operation)
        return data

    def _malformed(self, operation: str) -> None:
        log_event(logger, logging.WARNING, "mapping_malformed_reply", operation=operation)
        return None

    def geocode_address(self, address: str) -> dict[str, Any] | None:
        data = self._get(
            f"/geocoding/v5/mapbox.places/{quote(address, safe='')}.json",
            {"limit": 1, "types": "address,poi"},
            operation="geocode",
        )
        features = _items(data, "features")
        if not features:
            return None
        return _feature_to_place(features[0], with_confidence=True) or self._malformed("geocode")

    def reverse_geocode(self, longitude: float, latitude: float) -> dict[str, Any] | None:
        data = self._get(
            f"/geocoding/v5/mapbox.places/{longitude},{latitude}.json",
            {"limit": 1},
            operation="reverse_geocode",
        )
        features = _items(data, "features")
        if not features:
            return None
        return _feature_to_place(features[0], with_confidence=False) or self._malformed("reverse_geocode")

    def calculate_route(
        self,
        coordinates: Sequence[Mapping[str, float]],
        profile: str = "driving",
    ) -> dict[str, Any] | None:
        if len(coordinates) < 2 or profile not in PROFILES:
            return None
        data = self._get(
            f"/directions/v5/mapbox/{profile}/{_coordinate_path(coordinates)}",
            {
                "geometries": "geojson",
                "overview": "full",
                "steps": "true",
                "annotations": "duration,distance",
            },
            operation="route",
        )
        routes = _items(data, "routes")
        if not routes:
            return None
        route = routes[0]
        if not isinstance(route, Mapping):
            return self._malformed("route")
        legs = route.get("legs") or []
        return {
            "distance": route.get("distance"),
            "duration": route.get("duration"),
            "geometry": route.get("geometry"),
            "steps": legs[0].get("steps", []) if legs else [],
            "waypoints": data.get("waypoints"),
        }

    def optimize_delivery_route(
        self,
        depot: Mapping[str, float],
        destinations: Sequence[Mapping[str, float]],
        profile: str = "driving",
    ) -> dict[str, Any] | None:
        if not destinations or profile not in PROFILES:
            return None
        data = self._get(
            f"/optimized-trips/v1/mapbox/{profile}/{_coordinate_path([depot, *destinations])}",
            {
                "source": "first",
                "destination": "first",
                "roundtrip": "true",
                "geometries": "geojson",
                "overview": "full",
            },
            operation="optimize_route",
        )
        trips = _items(data, "trips")
        if not trips:
            return None
        trip = trips[0]
        if not isinstance(trip, Mapping):
            return self._malformed("optimize_route")
        waypoints = data.get("waypoints") or []
        stops = []
        for index, waypoint in enumerate(waypoints):
            coordinates = _lon_lat(waypoint.get("location")) if isinstance(waypoint, Mapping) else None
            if coordinates is None:
                return self._malformed("optimize_route")
            stops.append(
                {
                    "originalIndex": waypoint.get("waypoint_index"),
                    "optimizedIndex": index,
                    "coordinates": coordinates,
                }
            )
        return {
            "distance": trip.get("distance"),
            "duration": trip.get("duration"),
            "geometry": trip.get("geometry"),
            "waypoints": waypoints,
            "optimizedOrder": stops,
        }

    def get_delivery_zones(self, center: Mapping[str, float]) -> list[dict[str, Any]] | None:
        data = self._get(
            f"/isochrone/v1/mapbox/driving/{center['longitude']},{center['latitude']}",
            {
                "contours_minutes": ",".join(str(minutes) for minutes in ZONE_MINUTES),
                "polygons": "true",
                "denoise": 1,
            },
            operation="delivery_zones",
        )
        features = _items(data, "features")
        if not features:
            return None
        if not all(isinstance(feature, Mapping) for feature in features):
            return self._malformed("delivery_zones")
        return [
            {
                "driveTimeMinutes": minutes,
                "geometry": feature.get("geometry"),
                "properties": feature.get("properties"),
            }
            for minutes, feature in zip(ZONE_MINUTES, features)
        ]

    def calculate_distance_matrix(
        self,
        origins: Sequence[Mapping[str, float]],
        destinations: Sequence[Mapping[str, float]],
        profile: str = "driving",
    ) -> dict[str, Any] | None:
        if not origins or not destinations or profile not in PROFILES:
            return None
        data = self._get(
            f"/directions-matrix/v1/mapbox/{profile}/{_coordinate_path([*origins, *destinations])}",
            {
                "sources": ";".join(str(index) for index in range(len(origins))),
                "destinations": ";".join(
                    str(len(origins) + index) for index in range(len(destinations))
                ),
                "annotations": "duration,distance",
            },
            operation="distance_matrix",
        )
        if not data or "durations" not in data:
            return None
        return {
            "durations": data.get("durations"),
            "distances": data.get("distances"),
            "sources": data.get("sources"),
            "destinations": data.get("destinations"),
        }
