import pytest
from fastapi.testclient import TestClient

from guidance import main
from guidance.camera import CameraFollowController
from guidance.scheduler import GuidanceScheduler

from conftest import ORIGIN, TARGET, FakeLoop, FakeProvider, south_of, straight_route

START = {
    "lng": TARGET.lng,
    "lat": TARGET.lat,
    "label": "Maquis Chez Tante",
    "origin_lng": ORIGIN.lng,
    "origin_lat": ORIGIN.lat,
}


@pytest.fixture
def loop():
    return FakeLoop()


@pytest.fixture
def install(monkeypatch, config, cache, timer, loop):
    """Swap the app's scheduler for one backed by scripted responses."""

    def _install(*responses):
        scheduler = GuidanceScheduler(
            FakeProvider(*responses),
            cache,
            config=config,
            timer=timer,
            camera=CameraFollowController(main._render, config, call_later=loop.call_later),
            speech=main._speak,
        )
        monkeypatch.setattr(main, "scheduler", scheduler)
        monkeypatch.setitem(main.LATEST, "camera", None)
        monkeypatch.setitem(main.LATEST, "announcement", None)
        return scheduler

    return _install


@pytest.fixture
def client():
    with TestClient(main.app) as c:
        yield c


def _position(c, meters, **extra):
    point = south_of(ORIGIN, meters)
    return c.post("/api/guidance/position", json={"lng": point.lng, "lat": point.lat, **extra})


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"ok": True}


def test_directions_preview(client, install):
    scheduler = install(straight_route())

    r = client.get("/api/directions", params={
        "origin_lng": ORIGIN.lng, "origin_lat": ORIGIN.lat,
        "dest_lng": TARGET.lng, "dest_lat": TARGET.lat,
    })

    assert r.status_code == 200
    body = r.json()
    assert body["duration"] == 2
    assert body["distance"] == 1.2
    assert body["route"]["type"] == "Feature"
    assert len(body["route"]["geometry"]["coordinates"]) == 25
    assert scheduler.state.value == "idle"


def test_directions_provider_failure(client, install):
    install(ConnectionError("no network"))

    r = client.get("/api/directions", params={
        "origin_lng": ORIGIN.lng, "origin_lat": ORIGIN.lat,
        "dest_lng": TARGET.lng, "dest_lat": TARGET.lat,
    })

    assert r.status_code == 502


def test_directions_rejects_bad_coordinates(client, install):
    install(straight_route())

    r = client.get("/api/directions", params={
        "origin_lng": 500, "origin_lat": ORIGIN.lat,
        "dest_lng": TARGET.lng, "dest_lat": TARGET.lat,
    })

    assert r.status_code == 422


def test_start_guidance(client, install, timer):
    install(straight_route())

    r = client.post("/api/guidance/start", json=START)

    assert r.status_code == 200
    body = r.json()
    assert body["state"] == "navigating"
    assert body["label"] == "Maquis Chez Tante"
    assert body["offline"] is False
    assert body["route"] == {"distance_km": 1.2, "duration_min": 2, "steps_count": 2}
    assert timer.running


def test_start_without_route_is_503(client, install):
    install(ConnectionError("no network"))

    r = client.post("/api/guidance/start", json=START)

    assert r.status_code == 503
    assert client.get("/api/guidance").json()["state"] == "idle"


def test_start_without_position_is_503(client, install):
    install(straight_route())

    r = client.post("/api/guidance/start", json={"lng": TARGET.lng, "lat": TARGET.lat})

    assert r.status_code == 503


def test_position_announces_and_arrives(client, install):
    install(straight_route())
    client.post("/api/guidance/start", json=START)

    r = _position(client, 450)
    body = r.json()
    assert body["state"] == "navigating"
    assert body["off_route"] is False
    assert body["instruction"]["step_id"] == [0, 1]
    assert body["instruction"]["distance_text"] == "150 m"
    assert body["announcement"] == "In 150 m, turn left onto Avenue Chardy"

    again = _position(client, 460).json()
    assert again["announcement"] is None

    done = _position(client, 1150).json()
    assert done["state"] == "arrived"
    assert done["instruction"] is None


def test_position_reports_off_route(client, install):
    install(straight_route())
    client.post("/api/guidance/start", json=START)

    r = client.post("/api/guidance/position", json={"lng": ORIGIN.lng + 0.01, "lat": ORIGIN.lat})

    assert r.json()["off_route"] is True


def test_cancel_is_idempotent(client, install, timer):
    install(straight_route())
    client.post("/api/guidance/start", json=START)

    first = client.post("/api/guidance/cancel").json()
    second = client.post("/api/guidance/cancel").json()

    assert first["state"] == "cancelled"
    assert second["state"] == "cancelled"
    assert second["route"] is None
    assert not timer.running


def test_status_includes_camera(client, install, loop):
    install(straight_route())
    client.post("/api/guidance/start", json=START)
    _position(client, 100)
    loop.advance(0.1)

    body = client.get("/api/guidance").json()

    assert body["camera"]["zoom"] == 18
    assert body["camera"]["pitch"] == 60
    assert body["stats"]["total_steps"] == 2


def test_route_geometry(client, install):
    install(straight_route())

    assert client.get("/api/guidance/route_geometry").status_code == 400

    client.post("/api/guidance/start", json=START)
    body = client.get("/api/guidance/route_geometry").json()

    assert body["label"] == "Maquis Chez Tante"
    assert len(body["route_geometry"]) == 25
    assert body["total_distance_m"] == 1200
