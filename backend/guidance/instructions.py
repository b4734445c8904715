from typing import Optional, Sequence

from .geo import build_cumdist_m, distance, nearest, project_onto_route
from .models import Coordinate, Instruction, ManeuverStep, Route, RouteStats, StepId

INSTRUCTION_SEARCH_RADIUS_M = 500.0
INSTRUCTION_TRIGGER_DISTANCE_M = 200.0
INSTRUCTION_IMMINENT_DISTANCE_M = 50.0
OFF_ROUTE_THRESHOLD_M = 50.0
PROGRESS_LOOKAHEAD_M = 300.0


def select_next(
    position: Coordinate,
    steps: Sequence[ManeuverStep],
    last_announced_id: Optional[StepId] = None,
    *,
    search_radius_m: float = INSTRUCTION_SEARCH_RADIUS_M,
    trigger_m: float = INSTRUCTION_TRIGGER_DISTANCE_M,
    imminent_m: float = INSTRUCTION_IMMINENT_DISTANCE_M,
) -> Optional[Instruction]:
    """
    Pick the instruction to display for the current position.

    The closest step location within search_radius_m wins. The step is flagged
    for announcement when it is within trigger_m and is not the step announced
    last; the caller records last_announced_id once it actually speaks.
    """
    closest: Optional[ManeuverStep] = None
    min_distance = float("inf")
    for step in steps:
        d = distance(position, step.location)
        if d < search_radius_m and d < min_distance:
            closest = step
            min_distance = d

    if closest is None:
        return None

    return Instruction(
        step=closest,
        distance_to_step_m=min_distance,
        is_imminent=min_distance <= imminent_m,
        should_announce=closest.id != last_announced_id and min_distance <= trigger_m,
    )


def is_off_route(
    position: Coordinate,
    geometry: Sequence[Coordinate],
    threshold_m: float = OFF_ROUTE_THRESHOLD_M,
) -> bool:
    """True when the closest route vertex is farther than threshold_m."""
    if not geometry:
        return False
    _, d = nearest(position, geometry)
    return d > threshold_m


def along_route_m(
    position: Coordinate,
    route: Route,
    progress_m: Optional[float] = None,
    *,
    lookahead_m: float = PROGRESS_LOOKAHEAD_M,
    max_offset_m: float = OFF_ROUTE_THRESHOLD_M,
) -> Optional[float]:
    """
    Meters of route geometry covered up to the position's projection.

    With progress_m known, the projection is searched from just behind it to
    lookahead_m ahead, so a later stretch of the route that passes close by
    (a U-turn, a loop back to the start) cannot capture the fix. The whole
    route is searched when nothing in that window lies within max_offset_m.
    """
    points = route.geometry
    if len(points) < 2:
        return None
    cum = build_cumdist_m(points)
    if progress_m is not None:
        ahead = project_onto_route(
            points, cum, position,
            from_m=progress_m - max_offset_m,
            to_m=progress_m + lookahead_m,
        )
        if ahead.cross_track_m <= max_offset_m:
            return ahead.along_route_m
    return project_onto_route(points, cum, position).along_route_m


def remaining_after(route: Route, along_m: float) -> float:
    """Route distance left past along_m, scaled to the provider's total."""
    cum = build_cumdist_m(route.geometry)
    length = cum[-1] if cum else 0.0
    if length <= 0:
        return route.total_distance_m
    return route.total_distance_m * max(0.0, (length - along_m) / length)


def remaining_distance_m(
    position: Coordinate,
    route: Route,
    progress_m: Optional[float] = None,
) -> Optional[float]:
    """Distance left along the route from the position's projection on it."""
    along = along_route_m(position, route, progress_m)
    if along is None:
        return None
    return remaining_after(route, along)


def format_distance(meters: float) -> str:
    if meters < 1000:
        return f"{round(meters)} m"
    return f"{meters / 1000:.1f} km"


def format_duration(seconds: float) -> str:
    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    if hours > 0:
        return f"{hours}h {minutes}min"
    return f"{minutes} min"


def announcement_text(instruction: Instruction, imminent_m: float = INSTRUCTION_IMMINENT_DISTANCE_M) -> str:
    """Phrase handed to the speech sink, e.g. "In 150 m, turn left onto Main Street"."""
    step = instruction.step
    if instruction.distance_to_step_m > imminent_m:
        text = f"In {round(instruction.distance_to_step_m)} m, {step.instruction[:1].lower()}{step.instruction[1:]}"
    else:
        text = step.instruction
    if step.street_name and step.street_name != "unknown":
        text += f" onto {step.street_name}"
    return text


def route_stats(steps: Sequence[ManeuverStep], current_step_id: Optional[StepId] = None) -> RouteStats:
    """Banner statistics from the current step onwards."""
    if not steps:
        return RouteStats(
            total_steps=0,
            current_step_index=0,
            remaining_distance_m=0.0,
            remaining_duration_s=0.0,
            progress_percent=0.0,
        )

    current_index = 0
    if current_step_id is not None:
        current_index = next((i for i, s in enumerate(steps) if s.id == current_step_id), 0)

    remaining = steps[current_index:]
    remaining_distance = sum(s.distance_m for s in remaining)
    remaining_duration = sum(s.duration_s for s in remaining)
    total_distance = sum(s.distance_m for s in steps)
    progress = (total_distance - remaining_distance) / total_distance * 100 if total_distance > 0 else 0.0

    return RouteStats(
        total_steps=len(steps),
        current_step_index=current_index + 1,
        remaining_distance_m=remaining_distance,
        remaining_duration_s=remaining_duration,
        progress_percent=progress,
    )
