"""
Google Places (New) and Routes REST client.

Only the handful of calls the route aggregator needs: text search for
geocoding, nearby search for stations, and computeRoutes for walk/transit
durations.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from flyerdeck.agents.config import (
    GOOGLE_PLACES_BASE_URL,
    GOOGLE_ROUTES_BASE_URL,
    MAPS_LANGUAGE_CODE,
    MAPS_REGION_CODE,
    PROVIDER_HTTP_TIMEOUT,
)
from flyerdeck.agents.generation.exceptions import RoutingError
from flyerdeck.models.routes import Coordinates

logger = logging.getLogger(__name__)


@dataclass
class Place:
    name: str
    address: str = ""
    location: Optional[Coordinates] = None


@dataclass
class ComputedRoute:
    duration_seconds: int
    distance_meters: int = 0
    transit_lines: List[str] = field(default_factory=list)

    @property
    def duration_minutes(self) -> int:
        return math.ceil(self.duration_seconds / 60)

    @property
    def transfers(self) -> Optional[int]:
        if not self.transit_lines:
            return None
        return len(self.transit_lines) - 1


def parse_duration(value: Any) -> int:
    """Routes API durations look like ``"1234s"``."""
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str) and value.endswith("s"):
        try:
            return int(float(value[:-1]))
        except ValueError:
            return 0
    if isinstance(value, dict):
        return int(value.get("seconds", 0) or 0)
    return 0


class GoogleMapsService:
    def __init__(self, api_key: Optional[str], http_client: Optional[httpx.AsyncClient] = None):
        self.api_key = api_key
        self._http = http_client or httpx.AsyncClient(timeout=PROVIDER_HTTP_TIMEOUT)
        self.is_available = bool(api_key)

        if not self.is_available:
            logger.warning("GOOGLE_MAPS_API_KEY not set. Access information disabled.")

    async def _post(self, url: str, body: Dict[str, Any], field_mask: str) -> Dict[str, Any]:
        if not self.is_available:
            raise RoutingError("Google Maps API not configured")
        response = await self._http.post(
            url,
            json=body,
            headers={
                "X-Goog-Api-Key": self.api_key,
                "X-Goog-FieldMask": field_mask,
            },
        )
        response.raise_for_status()
        return response.json()

    @staticmethod
    def _to_place(raw: Dict[str, Any]) -> Place:
        location = raw.get("location") or {}
        coords = None
        if location.get("latitude") is not None and location.get("longitude") is not None:
            coords = Coordinates(latitude=location["latitude"], longitude=location["longitude"])
        return Place(
            name=(raw.get("displayName") or {}).get("text", ""),
            address=raw.get("formattedAddress", ""),
            location=coords,
        )

    async def search_text(self, query: str) -> List[Place]:
        data = await self._post(
            f"{GOOGLE_PLACES_BASE_URL}/places:searchText",
            {
                "textQuery": query,
                "languageCode": MAPS_LANGUAGE_CODE,
                "regionCode": MAPS_REGION_CODE,
            },
            "places.location,places.formattedAddress,places.displayName",
        )
        return [self._to_place(p) for p in data.get("places", [])]

    async def search_nearby(
        self,
        center: Coordinates,
        radius_meters: float,
        included_types: List[str],
        max_results: int,
    ) -> List[Place]:
        """Nearby places ranked by distance from ``center``."""
        data = await self._post(
            f"{GOOGLE_PLACES_BASE_URL}/places:searchNearby",
            {
                "includedTypes": included_types,
                "maxResultCount": max_results,
                "rankPreference": "DISTANCE",
                "locationRestriction": {
                    "circle": {
                        "center": {"latitude": center.latitude, "longitude": center.longitude},
                        "radius": radius_meters,
                    }
                },
                "languageCode": MAPS_LANGUAGE_CODE,
                "regionCode": MAPS_REGION_CODE,
            },
            "places.id,places.displayName,places.location,places.formattedAddress",
        )
        return [self._to_place(p) for p in data.get("places", [])]

    async def compute_route(
        self,
        origin: Coordinates,
        destination: Coordinates,
        travel_mode: str = "TRANSIT",
    ) -> Optional[ComputedRoute]:
        """First route between two points, or None when the service finds none."""
        field_mask = "routes.duration,routes.distanceMeters"
        if travel_mode == "TRANSIT":
            field_mask += ",routes.legs.steps.travelMode,routes.legs.steps.transitDetails.transitLine.name"

        data = await self._post(
            f"{GOOGLE_ROUTES_BASE_URL}:computeRoutes",
            {
                "origin": {"location": {"latLng": {"latitude": origin.latitude, "longitude": origin.longitude}}},
                "destination": {"location": {"latLng": {"latitude": destination.latitude, "longitude": destination.longitude}}},
                "travelMode": travel_mode,
                "computeAlternativeRoutes": False,
                "languageCode": MAPS_LANGUAGE_CODE,
            },
            field_mask,
        )

        routes = data.get("routes") or []
        if not routes:
            return None
        route = routes[0]

        lines: List[str] = []
        for leg in route.get("legs", []):
            for step in leg.get("steps", []):
                if step.get("travelMode") != "TRANSIT":
                    continue
                name = (((step.get("transitDetails") or {}).get("transitLine") or {}).get("name"))
                if name:
                    lines.append(name)

        return ComputedRoute(
            duration_seconds=parse_duration(route.get("duration")),
            distance_meters=int(route.get("distanceMeters") or 0),
            transit_lines=lines,
        )

    async def aclose(self) -> None:
        await self._http.aclose()
