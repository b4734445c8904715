import asyncio
import logging
from typing import Any, Awaitable, Callable, Coroutine, Optional, Protocol

from . import session as transitions
from .cache import RouteCache
from .camera import CameraFollowController
from .config import Settings, settings as default_settings
from .directions import DirectionsError, DirectionsProvider, parse_route
from .geo import bearing, distance, nearest
from .instructions import along_route_m, is_off_route, remaining_after, route_stats, select_next
from .models import (
    Coordinate,
    GuidanceState,
    Instruction,
    NavigationTarget,
    PositionFix,
    Route,
    RouteCacheEntry,
    RouteStats,
)
from .session import NavigationSession

logger = logging.getLogger(__name__)

SpeechSink = Callable[[Instruction], bool]
Spawn = Callable[[Coroutine[Any, Any, None]], Awaitable[None]]


class GuidanceUnavailable(Exception):
    """Guidance could not start: no route from the provider nor from the cache."""
    pass


class TimerHandle(Protocol):
    def cancel(self) -> Any:
        ...


class IntervalTimer(Protocol):
    def start(self, interval_s: float, callback: Callable[[], Any]) -> TimerHandle:
        ...


class AsyncioIntervalTimer:
    """Calls `callback` every `interval_s` on the running event loop until cancelled."""

    def start(self, interval_s: float, callback: Callable[[], Any]) -> TimerHandle:
        return asyncio.ensure_future(self._run(interval_s, callback))

    async def _run(self, interval_s: float, callback: Callable[[], Any]) -> None:
        while True:
            await asyncio.sleep(interval_s)
            callback()


class GuidanceScheduler:
    """
    Owns the single navigation session and drives it from three sources:
    position fixes (`on_position`), the refresh timer (`tick`) and user
    actions (`start_guidance`, `cancel`).

    All state changes go through the pure transitions in `guidance.session`
    and happen between awaits on one event loop, so they never interleave.
    Route fetches run concurrently with fix processing; a response only lands
    if it answers the most recently issued request.

    Typical lifecycle:
        scheduler = GuidanceScheduler(MapboxDirections(), RouteCache(JsonFileStore(path)))
        await scheduler.start_guidance(NavigationTarget(location=dest, label="Client"), origin)

        # Position loop:
        instruction = scheduler.on_position(fix)
    """

    def __init__(
        self,
        provider: DirectionsProvider,
        cache: RouteCache,
        *,
        config: Optional[Settings] = None,
        timer: Optional[IntervalTimer] = None,
        camera: Optional[CameraFollowController] = None,
        speech: Optional[SpeechSink] = None,
        on_instruction: Optional[Callable[[Instruction], None]] = None,
        on_route: Optional[Callable[[Route, bool], None]] = None,
        on_arrival: Optional[Callable[[NavigationSession], None]] = None,
        spawn: Optional[Spawn] = None,
    ) -> None:
        self.config = config or default_settings
        self._provider = provider
        self._cache = cache
        self._timer = timer or AsyncioIntervalTimer()
        self._camera = camera
        self._speech = speech
        self._on_instruction = on_instruction
        self._on_route = on_route
        self._on_arrival = on_arrival
        self._spawn = spawn or asyncio.ensure_future

        self._session = NavigationSession()
        self._timer_handle: Optional[TimerHandle] = None
        self._last_fix: Optional[PositionFix] = None
        self._current_instruction: Optional[Instruction] = None

    # ------------------------------------------------------------------
    # Read-only properties
    # ------------------------------------------------------------------

    @property
    def session(self) -> NavigationSession:
        return self._session

    @property
    def state(self) -> GuidanceState:
        return self._session.state

    @property
    def last_fix(self) -> Optional[PositionFix]:
        return self._last_fix

    @property
    def current_instruction(self) -> Optional[Instruction]:
        return self._current_instruction

    @property
    def display_label(self) -> str:
        label = self._session.label
        if self._session.offline:
            label += self.config.offline_label_suffix
        return label

    def stats(self) -> RouteStats:
        route = self._session.active_route
        steps = route.steps if route is not None else ()
        current = self._current_instruction
        step_id = current.step.id if current is not None else self._session.last_announced_step_id
        return route_stats(steps, step_id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _within_arrival(self, meters: float) -> bool:
        # Decimetre resolution keeps float noise from deciding arrival
        return round(meters, 1) <= self.config.arrival_threshold_m

    async def _fetch(self, origin: Coordinate, destination: Coordinate) -> Route:
        raw = await self._provider.route(origin, destination)
        route = parse_route(raw, self.config.geometry_precision)
        if len(route.geometry) >= 2:
            return route
        # Providers may answer a zero-length trip with a single point
        gap = distance(origin, destination)
        if self._within_arrival(gap):
            return Route(
                geometry=(origin, destination),
                steps=route.steps,
                total_distance_m=gap,
                total_duration_s=route.total_duration_s,
            )
        raise DirectionsError("Provider returned no usable route geometry")

    async def _store(self, origin: Coordinate, destination: Coordinate, route: Route) -> None:
        entry = RouteCacheEntry.from_route(route)
        await asyncio.to_thread(self._cache.put, origin, destination, entry)

    def _stop_timer(self) -> None:
        if self._timer_handle is not None:
            self._timer_handle.cancel()
            self._timer_handle = None

    def _arrive(self, position: Optional[Coordinate]) -> None:
        if not self._session.is_navigating:
            return
        label = self._session.label
        self._stop_timer()
        self._session = transitions.arrive(self._session)
        self._current_instruction = None
        logger.info(f"Arrived at {label or 'destination'}")
        if self._camera is not None:
            self._camera.recenter(position)
        if self._on_arrival is not None:
            self._on_arrival(self._session)

    def _reroute_now_if_far(self, position: Coordinate, route: Route) -> None:
        limit = self.config.immediate_reroute_beyond_m
        if limit is None:
            return
        _, deviation = nearest(position, route.geometry)
        if deviation > limit:
            logger.info(f"Deviation {deviation:.0f} m exceeds {limit:.0f} m, rerouting now")
            self.tick()

    # ------------------------------------------------------------------
    # User actions
    # ------------------------------------------------------------------

    async def preview(self, origin: Coordinate, destination: Coordinate) -> Route:
        """One-shot route for display only; the session is left alone."""
        return await self._fetch(origin, destination)

    async def start_guidance(
        self,
        target: NavigationTarget,
        origin: Optional[Coordinate] = None,
    ) -> NavigationSession:
        """
        Fetch a route to target and start navigating.

        Falls back to the cached route for the same fingerprint when the fetch
        fails; the session is then flagged offline. Raises GuidanceUnavailable
        when neither source has a route. A start superseded by cancel() while
        the fetch is in flight returns the current (idle) session.
        """
        if origin is None:
            if self._last_fix is None:
                raise GuidanceUnavailable("Current position is unknown")
            origin = self._last_fix.coordinate

        if self._session.is_navigating:
            self.cancel()

        self._session = transitions.issue_request(transitions.reset(self._session))
        seq = self._session.request_seq
        destination = target.location
        logger.info(f"Requesting route: {origin.as_pair()} -> {destination.as_pair()}")

        offline = False
        try:
            route = await self._fetch(origin, destination)
        except Exception as e:
            if not transitions.is_current(self._session, seq):
                logger.info("Guidance start superseded, ignoring failed fetch")
                return self._session
            logger.warning(f"Route fetch failed, trying cache: {e}")
            entry = self._cache.get(origin, destination)
            if entry is None:
                raise GuidanceUnavailable(
                    "Unable to compute a route and no cached route is available"
                ) from e
            route = entry.to_route()
            offline = True
        else:
            await self._store(origin, destination, route)
            if not transitions.is_current(self._session, seq):
                logger.info("Guidance start superseded, discarding route")
                return self._session

        self._session = transitions.begin(self._session, target, route, origin, offline=offline)
        self._current_instruction = None
        logger.info(
            f"Navigating to {self.display_label or 'target'}: "
            f"{len(route.steps)} steps, {route.distance_km} km, {route.duration_minutes} min"
        )

        if self._camera is not None:
            self._camera.orient(bearing(origin, destination), anchor=origin)
        if self._on_route is not None:
            self._on_route(route, offline)

        if self._within_arrival(route.total_distance_m):
            self._arrive(origin)
            return self._session

        self._timer_handle = self._timer.start(self.config.refresh_interval_s, self.tick)
        return self._session

    def cancel(self) -> NavigationSession:
        """Stop guidance (clear route, re-center, new target). Idempotent."""
        was_navigating = self._session.is_navigating
        self._stop_timer()
        self._session = transitions.cancel(self._session)
        self._current_instruction = None
        if was_navigating:
            logger.info("Navigation cancelled")
            if self._camera is not None:
                center = self._last_fix.coordinate if self._last_fix is not None else None
                self._camera.recenter(center)
        return self._session

    # ------------------------------------------------------------------
    # Position updates, called on every fix
    # ------------------------------------------------------------------

    def on_position(self, fix: PositionFix) -> Optional[Instruction]:
        """
        Process a fix against the current route. Never waits on the network.

        Returns the instruction to display, or None.
        """
        self._last_fix = fix
        session = self._session
        if not session.is_navigating:
            return None

        route = session.active_route
        position = fix.coordinate
        if self._camera is not None:
            self._camera.update(fix)

        if is_off_route(position, route.geometry, self.config.off_route_threshold_m):
            if not session.reroute_pending:
                logger.warning("Off route, correcting at the next route refresh")
                self._session = transitions.mark_off_route(session)
                self._reroute_now_if_far(position, route)
        else:
            along = along_route_m(
                position,
                route,
                session.progress_m,
                lookahead_m=self.config.progress_lookahead_m,
                max_offset_m=self.config.off_route_threshold_m,
            )
            if along is not None:
                self._session = transitions.advance(session, along)
                if self._within_arrival(remaining_after(route, along)):
                    self._arrive(position)
                    return None

        if not self._session.is_navigating:
            return None
        route = self._session.active_route

        instruction = select_next(
            position,
            route.steps,
            self._session.last_announced_step_id,
            search_radius_m=self.config.instruction_search_radius_m,
            trigger_m=self.config.instruction_trigger_m,
            imminent_m=self.config.instruction_imminent_m,
        )
        self._current_instruction = instruction
        if instruction is None:
            return None

        if self._on_instruction is not None:
            self._on_instruction(instruction)
        if instruction.should_announce and self._speech is not None and self._speech(instruction):
            self._session = transitions.mark_announced(self._session, instruction.step.id)
        return instruction

    # ------------------------------------------------------------------
    # Periodic refresh
    # ------------------------------------------------------------------

    def tick(self) -> Optional[Awaitable[None]]:
        """
        Issue a route refresh from the latest position. Returns the spawned
        fetch, or None when nothing was requested.
        """
        session = self._session
        if not session.is_navigating:
            return None

        if self._last_fix is not None:
            origin = self._last_fix.coordinate
        else:
            origin = session.last_fetch_origin
        if origin is None:
            return None

        gate = self.config.min_refresh_displacement_m
        if (gate > 0 and not session.reroute_pending and session.last_fetch_origin is not None
                and distance(origin, session.last_fetch_origin) < gate):
            logger.debug(f"Moved less than {gate:.0f} m since last refresh, skipping")
            return None

        self._session = transitions.issue_request(session, origin)
        return self._spawn(self._refresh(self._session.request_seq, origin, session.target))

    async def _refresh(self, seq: int, origin: Coordinate, target: NavigationTarget) -> None:
        try:
            route = await self._fetch(origin, target.location)
        except Exception as e:
            logger.warning(f"Route refresh #{seq} failed, keeping current route: {e}")
            return

        if not self._session.is_navigating or not transitions.is_current(self._session, seq):
            logger.debug(f"Discarding stale route response #{seq}")
            return

        self._session = transitions.settle(transitions.apply_route(self._session, seq, route))
        logger.info(f"Route refreshed: {len(route.steps)} steps, {route.total_distance_m:.0f} m left")
        if self._on_route is not None:
            self._on_route(route, False)

        if self._within_arrival(route.total_distance_m):
            self._arrive(origin)

        await self._store(origin, target.location, route)
