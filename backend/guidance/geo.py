import math
from typing import List, NamedTuple, Sequence, Tuple

from .models import Coordinate

EARTH_RADIUS_M = 6371000.0


def distance(a: Coordinate, b: Coordinate) -> float:
    """
    Haversine great-circle distance in meters. Symmetric, distance(a, a) == 0.
    """
    lat1, lon1 = math.radians(a.lat), math.radians(a.lng)
    lat2, lon2 = math.radians(b.lat), math.radians(b.lng)
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    h = (math.sin(dlat / 2) ** 2 +
         math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2)
    return 2 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(h)))


def bearing(origin: Coordinate, to: Coordinate) -> float:
    """
    Initial bearing from origin to `to`, degrees in [0, 360).
    Coincident points have a defined bearing of 0.
    """
    if origin == to:
        return 0.0
    lat1, lat2 = math.radians(origin.lat), math.radians(to.lat)
    dlon = math.radians(to.lng - origin.lng)
    y = math.sin(dlon) * math.cos(lat2)
    x = math.cos(lat1) * math.sin(lat2) - math.sin(lat1) * math.cos(lat2) * math.cos(dlon)
    return (math.degrees(math.atan2(y, x)) + 360.0) % 360.0


def is_valid(c: Coordinate) -> bool:
    return (
        math.isfinite(c.lat) and math.isfinite(c.lng)
        and -90.0 <= c.lat <= 90.0
        and -180.0 <= c.lng <= 180.0
    )


def nearest(point: Coordinate, polyline: Sequence[Coordinate]) -> Tuple[int, float]:
    """
    Closest polyline vertex to point: (index, distance_m).

    Plain linear scan over the vertices.
    """
    if not polyline:
        raise ValueError("Polyline needs at least 1 point")
    best_index = 0
    best_distance = float("inf")
    for i, vertex in enumerate(polyline):
        d = distance(point, vertex)
        if d < best_distance:
            best_index = i
            best_distance = d
    return best_index, best_distance


def _local_xy(center: Coordinate, c: Coordinate) -> Tuple[float, float]:
    """Meters east/north of center, equirectangular. Fine at street scale."""
    east = math.radians(c.lng - center.lng) * EARTH_RADIUS_M * math.cos(math.radians(center.lat))
    north = math.radians(c.lat - center.lat) * EARTH_RADIUS_M
    return east, north


def _from_local_xy(center: Coordinate, east: float, north: float) -> Coordinate:
    lat = center.lat + math.degrees(north / EARTH_RADIUS_M)
    lng = center.lng + math.degrees(east / (EARTH_RADIUS_M * math.cos(math.radians(center.lat))))
    return Coordinate(lng=lng, lat=lat)


def build_cumdist_m(points: Sequence[Coordinate]) -> List[float]:
    """Meters from the first vertex to each vertex."""
    cumulative: List[float] = []
    for i, point in enumerate(points):
        cumulative.append(0.0 if i == 0 else cumulative[-1] + distance(points[i - 1], point))
    return cumulative


class RouteProjection(NamedTuple):
    point: Coordinate
    segment_index: int
    fraction: float
    along_route_m: float
    cross_track_m: float


def project_onto_route(
    points: Sequence[Coordinate],
    cumdist_m: Sequence[float],
    position: Coordinate,
    *,
    from_m: float = 0.0,
    to_m: float = math.inf,
) -> RouteProjection:
    """
    Closest point to position on the polyline, with the meters covered along
    the route up to it and the perpendicular offset from it.

    Only segments overlapping [from_m, to_m] along the route are searched.
    """
    if len(points) < 2:
        raise ValueError("Route needs at least 2 points")
    if len(cumdist_m) != len(points):
        raise ValueError("cumdist_m does not match points")

    # position sits at (0, 0) in the local frame
    best = RouteProjection(points[0], 0, 0.0, 0.0, distance(position, points[0]))
    best_offset = math.inf
    for i, (start, end) in enumerate(zip(points, points[1:])):
        if cumdist_m[i + 1] < from_m or cumdist_m[i] > to_m:
            continue
        sx, sy = _local_xy(position, start)
        ex, ey = _local_xy(position, end)
        dx, dy = ex - sx, ey - sy
        length2 = dx * dx + dy * dy
        if length2 <= 1e-9:
            continue

        fraction = min(1.0, max(0.0, -(sx * dx + sy * dy) / length2))
        fx, fy = sx + fraction * dx, sy + fraction * dy
        offset = math.hypot(fx, fy)
        if offset < best_offset:
            best_offset = offset
            best = RouteProjection(
                point=_from_local_xy(position, fx, fy),
                segment_index=i,
                fraction=fraction,
                along_route_m=cumdist_m[i] + fraction * distance(start, end),
                cross_track_m=offset,
            )
    return best
