"""
Navigation session state and its transitions.

Every transition is a pure function taking the current NavigationSession and
returning the next one; sessions are frozen and never mutated in place. The
scheduler owns the single live session and swaps it on each transition.

`request_seq` survives every transition. Issuing a route request bumps it, and
so do cancel and arrival, which makes any response still in flight stale.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict

from .models import Coordinate, GuidanceState, NavigationTarget, Route, StepId


class NavigationSession(BaseModel):
    model_config = ConfigDict(frozen=True)

    state: GuidanceState = GuidanceState.IDLE
    target: Optional[NavigationTarget] = None
    active_route: Optional[Route] = None
    offline: bool = False
    last_announced_step_id: Optional[StepId] = None
    request_seq: int = 0
    reroute_pending: bool = False
    last_fetch_origin: Optional[Coordinate] = None
    # meters of active_route geometry covered so far
    progress_m: float = 0.0

    @property
    def is_navigating(self) -> bool:
        return self.state == GuidanceState.NAVIGATING

    @property
    def label(self) -> str:
        if self.target is None:
            return ""
        return self.target.label


def _cleared(session: NavigationSession, state: GuidanceState) -> NavigationSession:
    return NavigationSession(state=state, request_seq=session.request_seq + 1)


def issue_request(session: NavigationSession, origin: Optional[Coordinate] = None) -> NavigationSession:
    """Reserve a new request number; older responses become stale."""
    update = {"request_seq": session.request_seq + 1}
    if origin is not None and session.is_navigating:
        update["last_fetch_origin"] = origin
    return session.model_copy(update=update)


def is_current(session: NavigationSession, seq: int) -> bool:
    return seq == session.request_seq


def begin(
    session: NavigationSession,
    target: NavigationTarget,
    route: Optional[Route],
    origin: Coordinate,
    offline: bool = False,
) -> NavigationSession:
    """Enter NAVIGATING. Without a route the session stays idle."""
    if route is None:
        return _cleared(session, GuidanceState.IDLE)
    return NavigationSession(
        state=GuidanceState.NAVIGATING,
        target=target,
        active_route=route,
        offline=offline,
        request_seq=session.request_seq,
        last_fetch_origin=origin,
    )


def apply_route(session: NavigationSession, seq: int, route: Optional[Route]) -> NavigationSession:
    """
    Swap in a refreshed route. Responses to anything but the latest request,
    or arriving outside NAVIGATING, leave the session untouched.
    """
    if not session.is_navigating or not is_current(session, seq) or route is None:
        return session
    return session.model_copy(update={
        "active_route": route,
        "offline": False,
        "reroute_pending": False,
        "progress_m": 0.0,
    })


def mark_off_route(session: NavigationSession) -> NavigationSession:
    if not session.is_navigating or session.reroute_pending:
        return session
    return session.model_copy(update={"reroute_pending": True})


def advance(session: NavigationSession, along_m: float) -> NavigationSession:
    """Record progress along the active route. Progress never moves backwards."""
    if not session.is_navigating or along_m <= session.progress_m:
        return session
    return session.model_copy(update={"progress_m": along_m})


def mark_announced(session: NavigationSession, step_id: StepId) -> NavigationSession:
    if not session.is_navigating:
        return session
    return session.model_copy(update={"last_announced_step_id": step_id})


def cancel(session: NavigationSession) -> NavigationSession:
    """
    NAVIGATING -> CANCELLED. Outside NAVIGATING only in-flight requests are
    invalidated, so repeated cancels change nothing visible.
    """
    if not session.is_navigating:
        return session.model_copy(update={"request_seq": session.request_seq + 1})
    return _cleared(session, GuidanceState.CANCELLED)


def arrive(session: NavigationSession) -> NavigationSession:
    if not session.is_navigating:
        return session
    return _cleared(session, GuidanceState.ARRIVED)


def reset(session: NavigationSession) -> NavigationSession:
    """Back to IDLE from a terminal state."""
    if session.is_navigating:
        return session
    return NavigationSession(request_seq=session.request_seq)


def settle(session: NavigationSession) -> NavigationSession:
    """Repair a session that claims to navigate without a route."""
    if session.is_navigating and session.active_route is None:
        return _cleared(session, GuidanceState.CANCELLED)
    return session
