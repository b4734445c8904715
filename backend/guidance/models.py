from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field

# (leg_index, step_index)
StepId = Tuple[int, int]


class Coordinate(BaseModel):
    model_config = ConfigDict(frozen=True)

    lng: float
    lat: float

    @classmethod
    def from_pair(cls, pair: Sequence[float]) -> "Coordinate":
        """Build from a GeoJSON style [lng, lat] pair."""
        return cls(lng=float(pair[0]), lat=float(pair[1]))

    def as_pair(self) -> Tuple[float, float]:
        return (self.lng, self.lat)


class ManeuverStep(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: StepId
    maneuver_type: str
    modifier: str = ""
    instruction: str
    icon: str = ""
    street_name: str = ""
    distance_m: float = Field(..., description="Length of this step (meters)")
    duration_s: float = 0.0
    location: Coordinate
    cumulative_distance_m: float = Field(..., description="Distance from route start to this step (meters)")


class Route(BaseModel):
    model_config = ConfigDict(frozen=True)

    geometry: Tuple[Coordinate, ...] = ()
    steps: Tuple[ManeuverStep, ...] = ()
    total_distance_m: float = 0.0
    total_duration_s: float = 0.0

    @property
    def has_guidance(self) -> bool:
        return len(self.steps) > 0

    @property
    def duration_minutes(self) -> int:
        return int(round(self.total_duration_s / 60.0))

    @property
    def distance_km(self) -> float:
        return round(self.total_distance_m / 1000.0, 1)


class PositionFix(BaseModel):
    model_config = ConfigDict(frozen=True)

    coordinate: Coordinate
    timestamp: float = Field(..., description="Monotonic clock seconds")
    heading: Optional[float] = None
    speed_mps: Optional[float] = None


class RouteCacheEntry(BaseModel):
    geometry: List[Coordinate]
    duration_minutes: int
    distance_km: float
    steps: List[ManeuverStep] = []
    cached_at: Optional[datetime] = None

    @classmethod
    def from_route(cls, route: Route) -> "RouteCacheEntry":
        return cls(
            geometry=list(route.geometry),
            duration_minutes=route.duration_minutes,
            distance_km=route.distance_km,
            steps=list(route.steps),
            cached_at=datetime.now(timezone.utc),
        )

    def to_route(self) -> Route:
        return Route(
            geometry=tuple(self.geometry),
            steps=tuple(self.steps),
            total_distance_m=self.distance_km * 1000.0,
            total_duration_s=self.duration_minutes * 60.0,
        )


class Instruction(BaseModel):
    model_config = ConfigDict(frozen=True)

    step: ManeuverStep
    distance_to_step_m: float
    is_imminent: bool
    should_announce: bool


class NavigationTarget(BaseModel):
    model_config = ConfigDict(frozen=True)

    location: Coordinate
    label: str = ""


class GuidanceState(str, Enum):
    IDLE = "idle"
    NAVIGATING = "navigating"
    ARRIVED = "arrived"
    CANCELLED = "cancelled"


class CameraCommand(BaseModel):
    model_config = ConfigDict(frozen=True)

    center: Coordinate
    bearing: float
    zoom: float
    pitch: float


class RouteStats(BaseModel):
    total_steps: int
    current_step_index: int = Field(..., description="1-based, for display")
    remaining_distance_m: float
    remaining_duration_s: float
    progress_percent: float
