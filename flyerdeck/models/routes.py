from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Coordinates(_CamelModel):
    latitude: float
    longitude: float


class MajorStation(_CamelModel):
    """A hub that travel times are computed to."""
    name: str
    latitude: float
    longitude: float

    @property
    def coordinates(self) -> Coordinates:
        return Coordinates(latitude=self.latitude, longitude=self.longitude)


class RouteResult(_CamelModel):
    destination: str
    duration_minutes: int
    transfers: Optional[int] = None
    via_lines: Optional[List[str]] = None


class NearestStationInfo(_CamelModel):
    """Nearest transit node for an address; read-only once resolved."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    name: str
    lines: List[str] = Field(min_length=1)
    latitude: float
    longitude: float
    distance_meters: int = 0
    walk_minutes: int = 0

    @property
    def coordinates(self) -> Coordinates:
        return Coordinates(latitude=self.latitude, longitude=self.longitude)


class RouteAggregation(_CamelModel):
    station: Optional[NearestStationInfo] = None
    routes: List[RouteResult] = Field(default_factory=list)
    error: Optional[str] = None
