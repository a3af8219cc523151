"""
Route aggregation for the access slide.

Resolves a property address to its nearest station, then computes transit
times from that station to a set of major hubs concurrently. A hub whose
query fails is dropped from the result; the batch itself never fails.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from flyerdeck.agents.config import (
    DEFAULT_MAJOR_STATIONS,
    STATION_PLACE_TYPES,
    STATION_SEARCH_MAX_RESULTS,
    STATION_SEARCH_RADIUS_METERS,
)
from flyerdeck.agents.generation.exceptions import (
    GeocodingError,
    HubRouteError,
    RouteNodeAbsentError,
)
from flyerdeck.models.routes import (
    Coordinates,
    MajorStation,
    NearestStationInfo,
    RouteAggregation,
    RouteResult,
)
from flyerdeck.services.google_maps_service import GoogleMapsService

logger = logging.getLogger(__name__)

NEAREST_STATION_NOT_FOUND_MESSAGE = "最寄り駅が見つかりませんでした。"
GENERIC_LINE_NAME = "鉄道"

# Substring -> operator label, checked in order
LINE_NAME_HINTS = [
    (("メトロ", "地下鉄"), "東京メトロ"),
    (("JR", "山手", "中央"), "JR"),
    (("東急", "田園都市", "東横"), "東急"),
    (("小田急",), "小田急"),
    (("京王",), "京王"),
    (("西武",), "西武"),
    (("東武",), "東武"),
]


def default_hubs() -> List[MajorStation]:
    return [MajorStation(**station) for station in DEFAULT_MAJOR_STATIONS]


def guess_line_names(station_name: str) -> List[str]:
    """Best-effort operator names from a station's display name; never empty."""
    lines = [label for needles, label in LINE_NAME_HINTS if any(n in station_name for n in needles)]
    return lines or [GENERIC_LINE_NAME]


@dataclass(frozen=True)
class HubOutcome:
    """Result of one hub query: a route, or the reason there is none."""
    hub: MajorStation
    route: Optional[RouteResult] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.route is not None


class RouteAggregator:
    def __init__(self, maps: GoogleMapsService, hubs: Optional[Sequence[MajorStation]] = None):
        self.maps = maps
        self.hubs = list(hubs) if hubs is not None else default_hubs()

    async def _resolve_nearest_node(self, address: str) -> NearestStationInfo:
        places = await self.maps.search_text(address)
        origin = places[0].location if places else None
        if origin is None:
            raise GeocodingError(f"Address not found: {address}")

        stations = await self.maps.search_nearby(
            origin,
            radius_meters=STATION_SEARCH_RADIUS_METERS,
            included_types=STATION_PLACE_TYPES,
            max_results=STATION_SEARCH_MAX_RESULTS,
        )
        if not stations:
            raise RouteNodeAbsentError(f"No station found near: {address}")

        # Results are ranked by distance
        nearest = stations[0]
        if nearest.location is None:
            raise RouteNodeAbsentError(f"Station location not found: {nearest.name}")

        walk = await self.maps.compute_route(origin, nearest.location, travel_mode="WALK")

        return NearestStationInfo(
            name=nearest.name.removesuffix("駅"),
            lines=guess_line_names(nearest.name),
            latitude=nearest.location.latitude,
            longitude=nearest.location.longitude,
            distance_meters=walk.distance_meters if walk else 0,
            walk_minutes=walk.duration_minutes if walk else 0,
        )

    async def find_nearest_node(self, address: str) -> Optional[NearestStationInfo]:
        """Nearest station for ``address``, or None when it cannot be resolved."""
        if not self.maps.is_available:
            logger.error("[ROUTES] Google Maps API client not configured")
            return None
        try:
            station = await self._resolve_nearest_node(address)
        except Exception as e:
            logger.warning(f"[ROUTES] Failed to find nearest station: {e}")
            return None
        logger.info(f"[ROUTES] Nearest station for {address!r}: {station.name} ({station.walk_minutes} min walk)")
        return station

    async def _route_to_hub(self, origin: Coordinates, hub: MajorStation) -> HubOutcome:
        try:
            computed = await self.maps.compute_route(origin, hub.coordinates, travel_mode="TRANSIT")
            if computed is None:
                raise HubRouteError(hub.name, "no route returned")
        except Exception as e:
            logger.warning(f"[ROUTES] Failed to get route to {hub.name}: {e}")
            return HubOutcome(hub=hub, error=str(e))

        return HubOutcome(
            hub=hub,
            route=RouteResult(
                destination=hub.name,
                duration_minutes=computed.duration_minutes,
                transfers=computed.transfers,
                via_lines=computed.transit_lines or None,
            ),
        )

    async def aggregate_routes(
        self,
        origin: Coordinates,
        hubs: Optional[Sequence[MajorStation]] = None,
    ) -> List[RouteResult]:
        """Transit routes from ``origin`` to every hub, fastest first.

        Hubs whose query fails are left out, so the result may be shorter
        than ``hubs`` or empty.
        """
        targets = list(hubs) if hubs is not None else self.hubs
        outcomes = await asyncio.gather(*(self._route_to_hub(origin, hub) for hub in targets))

        routes = [outcome.route for outcome in outcomes if outcome.ok]
        routes.sort(key=lambda r: r.duration_minutes)

        dropped = len(outcomes) - len(routes)
        if dropped:
            logger.info(f"[ROUTES] {len(routes)}/{len(outcomes)} hub routes resolved ({dropped} dropped)")
        return routes

    async def aggregate_from_address(
        self,
        address: str,
        hubs: Optional[Sequence[MajorStation]] = None,
    ) -> RouteAggregation:
        station = await self.find_nearest_node(address)
        if station is None:
            return RouteAggregation(station=None, routes=[], error=NEAREST_STATION_NOT_FOUND_MESSAGE)

        routes = await self.aggregate_routes(station.coordinates, hubs)
        return RouteAggregation(station=station, routes=routes, error=None)


def generate_route_map_prompt(
    station: NearestStationInfo,
    routes: Sequence[RouteResult],
    property_location: Optional[str] = None,
) -> str:
    """Route summary text for the access slide and route-map image prompt."""
    details = []
    for route in routes:
        detail = f"・{route.destination}駅: {route.duration_minutes}分"
        if route.transfers is not None:
            detail += f"（乗換{route.transfers}回）"
        if route.via_lines:
            detail += f"【{'→'.join(route.via_lines)}】"
        details.append(detail)

    location_line = f"所在地: {property_location}\n" if property_location else ""
    return (
        "【物件情報】\n"
        f"最寄り駅: {station.name}駅（徒歩{station.walk_minutes}分）\n"
        f"路線: {'・'.join(station.lines)}\n"
        f"{location_line}"
        "\n【主要駅への所要時間】\n"
        + ("\n".join(details) if details else "・情報なし")
    )
