from pydantic import BaseModel
from typing import Optional
import os


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


class Settings(BaseModel):
    # Directions provider (Mapbox Directions v5 compatible)
    directions_url: str = os.getenv("DIRECTIONS_URL", "https://api.mapbox.com")
    directions_profile: str = os.getenv("DIRECTIONS_PROFILE", "mapbox/driving")
    mapbox_token: str = os.getenv("MAPBOX_TOKEN", "")
    directions_timeout_s: float = _env_float("DIRECTIONS_TIMEOUT_S", 10.0)
    geometry_precision: int = int(os.getenv("GEOMETRY_PRECISION", "6"))

    # Route cache
    route_cache_path: str = os.getenv("ROUTE_CACHE_PATH", "route_cache.json")
    cache_precision: int = 4

    # Scheduling
    refresh_interval_s: float = _env_float("REFRESH_INTERVAL_S", 8.0)
    min_refresh_displacement_m: float = _env_float("MIN_REFRESH_DISPLACEMENT_M", 0.0)
    immediate_reroute_beyond_m: Optional[float] = None

    # Guidance thresholds (meters)
    arrival_threshold_m: float = 50.0
    off_route_threshold_m: float = 50.0
    progress_lookahead_m: float = 300.0
    instruction_search_radius_m: float = 500.0
    instruction_trigger_m: float = 200.0
    instruction_imminent_m: float = 50.0

    # Camera follow
    camera_debounce_s: float = 0.1
    camera_min_bearing_displacement_m: float = 5.0
    camera_bearing_smoothing: float = 0.30
    camera_min_rotation_speed_mps: float = 1.4
    navigation_zoom: float = 18.0
    navigation_pitch: float = 60.0
    overview_zoom: float = 15.0

    offline_label_suffix: str = " (offline)"

settings = Settings()
