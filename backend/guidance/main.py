import logging
import time
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Query
from pydantic import BaseModel

from .cache import JsonFileStore, RouteCache
from .camera import CameraFollowController
from .config import settings
from .directions import MapboxDirections, route_feature
from .instructions import announcement_text, format_distance, format_duration
from .models import CameraCommand, Coordinate, Instruction, NavigationTarget, PositionFix
from .scheduler import GuidanceScheduler, GuidanceUnavailable

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Delivery Guidance API", version="0.3.0")

# Latest outputs for polling clients (single session per process)
LATEST: Dict[str, Any] = {"camera": None, "announcement": None}


def _render(command: CameraCommand) -> None:
    LATEST["camera"] = command


def _speak(instruction: Instruction) -> bool:
    text = announcement_text(instruction, settings.instruction_imminent_m)
    LATEST["announcement"] = text
    logger.info(f"Announce: {text}")
    return True


def build_scheduler() -> GuidanceScheduler:
    return GuidanceScheduler(
        MapboxDirections(settings),
        RouteCache(JsonFileStore(settings.route_cache_path), precision=settings.cache_precision),
        config=settings,
        camera=CameraFollowController(_render, settings),
        speech=_speak,
    )


scheduler = build_scheduler()


class StartRequest(BaseModel):
    lng: float
    lat: float
    label: str = ""
    origin_lng: Optional[float] = None
    origin_lat: Optional[float] = None


class PositionRequest(BaseModel):
    lng: float
    lat: float
    heading: Optional[float] = None
    speed_mps: Optional[float] = None


def _instruction_payload(instruction: Optional[Instruction]) -> Optional[dict]:
    if instruction is None:
        return None
    step = instruction.step
    return {
        "step_id": list(step.id),
        "type": step.maneuver_type,
        "modifier": step.modifier,
        "icon": step.icon,
        "instruction": step.instruction,
        "street_name": step.street_name,
        "distance_to_step_m": instruction.distance_to_step_m,
        "distance_text": format_distance(instruction.distance_to_step_m),
        "is_imminent": instruction.is_imminent,
        "should_announce": instruction.should_announce,
    }


def _session_payload() -> dict:
    session = scheduler.session
    route = session.active_route
    stats = scheduler.stats()
    return {
        "state": session.state.value,
        "label": scheduler.display_label,
        "offline": session.offline,
        "reroute_pending": session.reroute_pending,
        "route": {
            "distance_km": route.distance_km,
            "duration_min": route.duration_minutes,
            "steps_count": len(route.steps),
        } if route else None,
        "stats": {
            **stats.model_dump(),
            "remaining_text": format_distance(stats.remaining_distance_m),
            "duration_text": format_duration(stats.remaining_duration_s),
        },
        "instruction": _instruction_payload(scheduler.current_instruction),
    }


@app.get("/health")
def health():
    return {"ok": True}


@app.get("/api/directions")
async def directions(
    origin_lng: float = Query(..., ge=-180, le=180),
    origin_lat: float = Query(..., ge=-90, le=90),
    dest_lng: float = Query(..., ge=-180, le=180),
    dest_lat: float = Query(..., ge=-90, le=90),
):
    """
    One-shot route preview: geometry + duration (min) + distance (km).
    Does not start guidance.
    """
    origin = Coordinate(lng=origin_lng, lat=origin_lat)
    destination = Coordinate(lng=dest_lng, lat=dest_lat)
    try:
        route = await scheduler.preview(origin, destination)
    except Exception as e:
        raise HTTPException(status_code=502, detail=f"Directions error: {e}")

    return {
        "route": route_feature(route),
        "duration": route.duration_minutes,
        "distance": route.distance_km,
    }


@app.post("/api/guidance/start")
async def start_guidance(body: StartRequest):
    target = NavigationTarget(location=Coordinate(lng=body.lng, lat=body.lat), label=body.label)
    origin = None
    if body.origin_lng is not None and body.origin_lat is not None:
        origin = Coordinate(lng=body.origin_lng, lat=body.origin_lat)

    LATEST["announcement"] = None
    try:
        await scheduler.start_guidance(target, origin)
    except GuidanceUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))
    return _session_payload()


@app.post("/api/guidance/position")
async def update_position(body: PositionRequest):
    fix = PositionFix(
        coordinate=Coordinate(lng=body.lng, lat=body.lat),
        timestamp=time.monotonic(),
        heading=body.heading,
        speed_mps=body.speed_mps,
    )
    LATEST["announcement"] = None
    instruction = scheduler.on_position(fix)
    return {
        "state": scheduler.state.value,
        "off_route": scheduler.session.reroute_pending,
        "instruction": _instruction_payload(instruction),
        "announcement": LATEST["announcement"],
    }


@app.post("/api/guidance/cancel")
async def cancel_guidance():
    scheduler.cancel()
    return _session_payload()


@app.get("/api/guidance")
async def guidance_status():
    payload = _session_payload()
    camera = LATEST["camera"]
    payload["camera"] = camera.model_dump() if camera is not None else None
    return payload


@app.get("/api/guidance/route_geometry")
async def route_geometry():
    route = scheduler.session.active_route
    if route is None:
        raise HTTPException(status_code=400, detail="No active route. Call /api/guidance/start first.")
    geometry: List[dict] = [{"lng": c.lng, "lat": c.lat} for c in route.geometry]
    return {
        "label": scheduler.display_label,
        "route_geometry": geometry,
        "total_distance_m": route.total_distance_m,
    }
