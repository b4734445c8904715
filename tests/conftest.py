import asyncio
import math
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pytest

from guidance.cache import MemoryStore, RouteCache
from guidance.config import Settings
from guidance.models import Coordinate, PositionFix

EARTH_RADIUS_M = 6371000.0

# Abidjan (Plateau -> Treichville)
ORIGIN = Coordinate(lng=-4.0083, lat=5.3600)
TARGET = Coordinate(lng=-3.9962, lat=5.3484)


def south_of(c: Coordinate, meters: float) -> Coordinate:
    """Point `meters` due south of c (same meridian)."""
    return Coordinate(lng=c.lng, lat=c.lat - math.degrees(meters / EARTH_RADIUS_M))


def east_of(c: Coordinate, meters: float) -> Coordinate:
    return Coordinate(
        lng=c.lng + math.degrees(meters / (EARTH_RADIUS_M * math.cos(math.radians(c.lat)))),
        lat=c.lat,
    )


def meridian_line(start: Coordinate, length_m: float, spacing_m: float = 50.0) -> List[Coordinate]:
    count = int(round(length_m / spacing_m))
    return [south_of(start, i * spacing_m) for i in range(count + 1)]


def fix(c: Coordinate, t: float = 0.0, **kwargs) -> PositionFix:
    return PositionFix(coordinate=c, timestamp=t, **kwargs)


def mapbox_route(
    geometry: Sequence[Coordinate],
    steps: Sequence[Tuple[str, str, Coordinate, float]],
    distance: Optional[float] = None,
    duration: Optional[float] = None,
    names: Optional[Sequence[str]] = None,
) -> Dict[str, Any]:
    """Raw Mapbox-style route: one leg, steps as (type, modifier, location, distance)."""
    raw_steps = []
    for i, (maneuver_type, modifier, location, step_distance) in enumerate(steps):
        maneuver: Dict[str, Any] = {"type": maneuver_type, "location": [location.lng, location.lat]}
        if modifier:
            maneuver["modifier"] = modifier
        raw_steps.append({
            "maneuver": maneuver,
            "name": names[i] if names else "",
            "distance": step_distance,
            "duration": step_distance / 10.0,
        })
    raw: Dict[str, Any] = {
        "geometry": {"type": "LineString", "coordinates": [[c.lng, c.lat] for c in geometry]},
        "legs": [{"steps": raw_steps}],
    }
    if distance is not None:
        raw["distance"] = distance
    if duration is not None:
        raw["duration"] = duration
    return raw


def straight_route(start: Coordinate = ORIGIN, length_m: float = 1200.0) -> Dict[str, Any]:
    """Two-step route heading due south from start."""
    line = meridian_line(start, length_m)
    middle = line[len(line) // 2]
    half = length_m / 2
    return mapbox_route(
        line,
        [("depart", "", line[0], half), ("turn", "left", middle, half)],
        distance=length_m,
        duration=length_m / 10.0,
        names=["Boulevard de la Republique", "Avenue Chardy"],
    )


class FakeProvider:
    """Returns scripted responses in order; the last one repeats. Exceptions are raised."""

    def __init__(self, *responses: Any) -> None:
        self.responses = list(responses)
        self.calls: List[Tuple[Coordinate, Coordinate]] = []

    async def route(self, origin: Coordinate, destination: Coordinate) -> Dict[str, Any]:
        self.calls.append((origin, destination))
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response


class GatedProvider:
    """Each call blocks until the test resolves or fails its future."""

    def __init__(self) -> None:
        self.pending: List[asyncio.Future] = []

    async def route(self, origin: Coordinate, destination: Coordinate) -> Dict[str, Any]:
        future = asyncio.get_running_loop().create_future()
        self.pending.append(future)
        return await future


class ManualTimer:
    """Interval timer the test fires by hand; doubles as its own handle."""

    def __init__(self) -> None:
        self.callback = None
        self.interval_s: Optional[float] = None
        self.cancelled = 0

    def start(self, interval_s, callback):
        self.interval_s = interval_s
        self.callback = callback
        return self

    def cancel(self) -> None:
        self.cancelled += 1
        self.callback = None

    @property
    def running(self) -> bool:
        return self.callback is not None

    def fire(self):
        assert self.callback is not None, "timer is not running"
        return self.callback()


class _Handle:
    def __init__(self) -> None:
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeLoop:
    """call_later replacement with a manual clock."""

    def __init__(self) -> None:
        self.now = 0.0
        self.scheduled: List[Tuple[float, Any, _Handle]] = []

    def call_later(self, delay, callback):
        handle = _Handle()
        self.scheduled.append((self.now + delay, callback, handle))
        return handle

    def advance(self, seconds: float) -> None:
        self.now += seconds
        due = [s for s in self.scheduled if s[0] <= self.now + 1e-12]
        self.scheduled = [s for s in self.scheduled if s[0] > self.now + 1e-12]
        for _, callback, handle in due:
            if not handle.cancelled:
                callback()


async def drain(rounds: int = 10) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def config():
    return Settings(route_cache_path="unused.json")


@pytest.fixture
def cache():
    return RouteCache(MemoryStore())


@pytest.fixture
def timer():
    return ManualTimer()
