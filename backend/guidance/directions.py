import asyncio
import logging
from typing import Any, Dict, List, Optional, Protocol, Tuple

import polyline
import requests

from .config import Settings, settings as default_settings
from .geo import build_cumdist_m, is_valid
from .models import Coordinate, ManeuverStep, Route

logger = logging.getLogger(__name__)


class DirectionsError(Exception):
    """Provider answered, but without a usable route."""
    pass


class DirectionsProvider(Protocol):
    async def route(self, origin: Coordinate, destination: Coordinate) -> Dict[str, Any]:
        """Return one raw provider route object (legs/steps/geometry)."""
        ...


def request_route(
    base_url: str,
    profile: str,
    token: str,
    origin: Coordinate,
    destination: Coordinate,
    timeout: float = 10.0,
) -> Dict[str, Any]:
    """
    Calls Mapbox Directions v5 for a single origin -> destination route.
    Returns routes[0] of the response.
    """
    coords = f"{origin.lng},{origin.lat};{destination.lng},{destination.lat}"
    url = f"{base_url.rstrip('/')}/directions/v5/{profile}/{coords}"
    params = {
        "geometries": "geojson",
        "overview": "full",
        "steps": "true",
        "access_token": token,
    }
    r = requests.get(url, params=params, timeout=timeout)
    r.raise_for_status()
    data = r.json()

    if data.get("code") != "Ok":
        raise DirectionsError(f"Directions error: {data.get('code')} {data.get('message', '')}".strip())
    routes = data.get("routes") or []
    if not routes:
        raise DirectionsError("No route found")
    return routes[0]


class MapboxDirections:
    """
    Directions provider backed by the Mapbox HTTP API.

    requests is blocking, so each call runs in a worker thread and the guidance
    loop keeps processing fixes while the fetch is in flight.
    """

    def __init__(self, config: Optional[Settings] = None) -> None:
        self.config = config or default_settings

    async def route(self, origin: Coordinate, destination: Coordinate) -> Dict[str, Any]:
        return await asyncio.to_thread(
            request_route,
            self.config.directions_url,
            self.config.directions_profile,
            self.config.mapbox_token,
            origin,
            destination,
            self.config.directions_timeout_s,
        )


# (icon, text) keyed by "type-modifier" or bare "type"
MANEUVER_INSTRUCTIONS: Dict[str, Tuple[str, str]] = {
    "turn-left": ("↰", "Turn left"),
    "turn-right": ("↱", "Turn right"),
    "turn-slight-left": ("↖", "Turn slightly left"),
    "turn-slight-right": ("↗", "Turn slightly right"),
    "turn-sharp-left": ("⬅", "Turn sharp left"),
    "turn-sharp-right": ("➡", "Turn sharp right"),
    "uturn-left": ("↶", "Make a U-turn to the left"),
    "uturn-right": ("↷", "Make a U-turn to the right"),
    "continue": ("↑", "Continue straight"),
    "merge": ("⤴", "Merge"),
    "fork-left": ("⤴", "Keep left at the fork"),
    "fork-right": ("⤵", "Keep right at the fork"),
    "off-ramp-left": ("↖", "Take the exit on the left"),
    "off-ramp-right": ("↗", "Take the exit on the right"),
    "roundabout": ("⭯", "Enter the roundabout"),
    "rotary": ("⭯", "Enter the roundabout"),
    "arrive": ("📍", "You have arrived"),
    "depart": ("🚀", "Depart"),
}

DEFAULT_MANEUVER = "continue"


def _maneuver_key(maneuver_type: str, modifier: str) -> str:
    # Mapbox uses spaces in some types ("off ramp", "end of road")
    base = maneuver_type.strip().lower().replace(" ", "-")
    mod = modifier.strip().lower().replace(" ", "-")
    return f"{base}-{mod}" if mod else base


def lookup_maneuver(maneuver_type: str, modifier: str = "") -> Tuple[str, str]:
    """
    Resolve (icon, text) for a maneuver. Falls back to the bare type, then to
    "continue straight".
    """
    key = _maneuver_key(maneuver_type, modifier)
    if key in MANEUVER_INSTRUCTIONS:
        return MANEUVER_INSTRUCTIONS[key]
    base = _maneuver_key(maneuver_type, "")
    return MANEUVER_INSTRUCTIONS.get(base, MANEUVER_INSTRUCTIONS[DEFAULT_MANEUVER])


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else []


def _as_str(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _as_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _as_coordinate(pair: Any) -> Optional[Coordinate]:
    try:
        c = Coordinate.from_pair(pair)
    except (TypeError, ValueError, IndexError, KeyError):
        return None
    return c if is_valid(c) else None


def decode_geometry(geometry: Any, precision: int = 6) -> List[Coordinate]:
    """
    Accepts a GeoJSON LineString ({"coordinates": [[lng, lat], ...]}) or an
    encoded polyline string. Undecodable input yields an empty list.
    """
    if not geometry:
        return []
    if isinstance(geometry, str):
        try:
            # polyline yields (lat, lon)
            return [Coordinate(lng=lon, lat=lat) for lat, lon in polyline.decode(geometry, precision)]
        except (ValueError, IndexError, TypeError) as e:
            logger.warning(f"Could not decode route polyline: {e}")
            return []
    if isinstance(geometry, dict):
        points = []
        for pair in _as_list(geometry.get("coordinates")):
            c = _as_coordinate(pair)
            if c is not None:
                points.append(c)
        return points
    return []


def parse_route(raw: Any, precision: int = 6) -> Route:
    """
    Flatten a raw provider route into a Route.

    Steps of all legs are kept in traversal order with id (leg, step).
    cumulative_distance_m is the distance covered *before* the step.
    Malformed or empty responses give a Route without steps; this never raises.
    """
    if not isinstance(raw, dict):
        logger.warning("Route response is not an object, no guidance available")
        return Route()

    geometry = decode_geometry(raw.get("geometry"), precision)
    legs = _as_list(raw.get("legs"))

    steps: List[ManeuverStep] = []
    cumulative = 0.0
    for leg_index, leg in enumerate(legs):
        for step_index, item in enumerate(_as_list(_as_dict(leg).get("steps"))):
            step = _as_dict(item)
            maneuver = _as_dict(step.get("maneuver"))
            maneuver_type = _as_str(maneuver.get("type")) or DEFAULT_MANEUVER
            modifier = _as_str(maneuver.get("modifier"))
            icon, text = lookup_maneuver(maneuver_type, modifier)

            location = _as_coordinate(maneuver.get("location"))
            if location is None:
                step_points = decode_geometry(step.get("geometry"), precision)
                location = step_points[0] if step_points else Coordinate(lng=0.0, lat=0.0)

            step_distance = _as_float(step.get("distance"))
            steps.append(ManeuverStep(
                id=(leg_index, step_index),
                maneuver_type=maneuver_type,
                modifier=modifier,
                instruction=_as_str(maneuver.get("instruction")) or text,
                icon=icon,
                street_name=_as_str(step.get("name")),
                distance_m=step_distance,
                duration_s=_as_float(step.get("duration")),
                location=location,
                cumulative_distance_m=cumulative,
            ))
            cumulative += step_distance

    if not steps:
        logger.info("Route response has no steps, geometry-only guidance")

    total_distance = raw.get("distance")
    if total_distance is None:
        total_distance = cumulative if steps else (build_cumdist_m(geometry) or [0.0])[-1]
    total_duration = raw.get("duration")
    if total_duration is None:
        total_duration = sum(s.duration_s for s in steps)

    return Route(
        geometry=tuple(geometry),
        steps=tuple(steps),
        total_distance_m=_as_float(total_distance),
        total_duration_s=_as_float(total_duration),
    )


def route_feature(route: Route) -> Dict[str, Any]:
    """GeoJSON Feature for map display."""
    return {
        "type": "Feature",
        "geometry": {
            "type": "LineString",
            "coordinates": [list(c.as_pair()) for c in route.geometry],
        },
        "properties": {
            "duration": route.total_duration_s,
            "distance": route.total_distance_m,
        },
    }
