import asyncio
import logging
from typing import Any, Callable, Optional

from .config import Settings, settings as default_settings
from .geo import bearing as initial_bearing, distance
from .models import CameraCommand, Coordinate, PositionFix

logger = logging.getLogger(__name__)

Renderer = Callable[[CameraCommand], None]
# call_later(delay_s, callback) -> handle with .cancel()
CallLater = Callable[[float, Callable[[], None]], Any]


def _asyncio_call_later(delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
    return asyncio.get_running_loop().call_later(delay, callback)


class CameraFollowController:
    """
    Throttles camera moves sent to the map renderer during navigation.

    Fixes can arrive faster than 1 Hz. The first update of a window schedules a
    flush `camera_debounce_s` later; updates inside the window only replace the
    pending sample, and the flush sends the latest one (trailing edge).

    Bearing only changes once the device has moved more than
    `camera_min_bearing_displacement_m` from the last bearing anchor, so a
    stationary phone does not spin on GPS jitter.
    """

    def __init__(
        self,
        renderer: Renderer,
        config: Optional[Settings] = None,
        call_later: Optional[CallLater] = None,
    ) -> None:
        self.config = config or default_settings
        self._renderer = renderer
        self._call_later = call_later or _asyncio_call_later

        self._anchor: Optional[Coordinate] = None
        self._raw_bearing: float = 0.0
        self._bearing: float = 0.0
        self._pending: Optional[CameraCommand] = None
        self._flush_handle: Any = None

    @property
    def bearing(self) -> float:
        return self._bearing

    @property
    def has_pending(self) -> bool:
        return self._pending is not None

    def orient(self, bearing: float, anchor: Optional[Coordinate] = None) -> None:
        """Reset the heading, e.g. towards the destination at guidance start."""
        self._raw_bearing = bearing % 360.0
        self._bearing = self._raw_bearing
        if anchor is not None:
            self._anchor = anchor

    def _is_moving(self, fix: PositionFix) -> bool:
        if fix.speed_mps is None:
            return True
        return fix.speed_mps > self.config.camera_min_rotation_speed_mps

    def _update_bearing(self, fix: PositionFix) -> None:
        position = fix.coordinate
        if fix.heading is not None and fix.heading >= 0:
            self._raw_bearing = fix.heading % 360.0
            self._anchor = position
        elif self._anchor is None:
            self._anchor = position
            return
        elif distance(self._anchor, position) > self.config.camera_min_bearing_displacement_m:
            self._raw_bearing = initial_bearing(self._anchor, position)
            self._anchor = position
        else:
            return

        # Exponential smoothing across the 0/360 wrap
        diff = self._raw_bearing - self._bearing
        if diff > 180:
            diff -= 360
        elif diff < -180:
            diff += 360
        self._bearing = (self._bearing + diff * (1 - self.config.camera_bearing_smoothing)) % 360.0

    def update(self, fix: PositionFix) -> None:
        if self._is_moving(fix):
            self._update_bearing(fix)

        self._pending = CameraCommand(
            center=fix.coordinate,
            bearing=self._bearing,
            zoom=self.config.navigation_zoom,
            pitch=self.config.navigation_pitch,
        )
        if self._flush_handle is None:
            self._flush_handle = self._call_later(self.config.camera_debounce_s, self._flush)

    def _flush(self) -> None:
        self._flush_handle = None
        command, self._pending = self._pending, None
        if command is not None:
            self._renderer(command)

    def cancel_pending(self) -> None:
        if self._flush_handle is not None:
            self._flush_handle.cancel()
            self._flush_handle = None
        self._pending = None

    def recenter(self, center: Optional[Coordinate]) -> None:
        """Drop pending moves and go back to the neutral top-down view."""
        self.cancel_pending()
        self._raw_bearing = 0.0
        self._bearing = 0.0
        self._anchor = None
        if center is None:
            return
        self._renderer(CameraCommand(
            center=center,
            bearing=0.0,
            zoom=self.config.overview_zoom,
            pitch=0.0,
        ))
