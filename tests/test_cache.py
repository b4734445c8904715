import json

import pytest

from guidance.cache import JsonFileStore, MemoryStore, RouteCache, fingerprint
from guidance.directions import parse_route
from guidance.models import Coordinate, RouteCacheEntry

from conftest import ORIGIN, TARGET, straight_route


def _entry():
    return RouteCacheEntry.from_route(parse_route(straight_route()))


def test_fingerprint_rounds_to_four_decimals():
    assert fingerprint(ORIGIN, TARGET) == "-4.0083,5.3600_-3.9962,5.3484"


def test_round_trip():
    cache = RouteCache(MemoryStore())
    entry = _entry()

    cache.put(ORIGIN, TARGET, entry)

    assert cache.get(ORIGIN, TARGET) == entry


def test_jittered_coordinates_hit_same_entry():
    cache = RouteCache(MemoryStore())
    entry = _entry()
    cache.put(ORIGIN, TARGET, entry)

    jittered_origin = Coordinate(lng=-4.00832, lat=5.36004)
    jittered_target = Coordinate(lng=-3.99617, lat=5.34838)

    assert cache.get(jittered_origin, jittered_target) == entry


def test_different_fingerprint_misses():
    cache = RouteCache(MemoryStore())
    cache.put(ORIGIN, TARGET, _entry())

    assert cache.get(Coordinate(lng=-4.0090, lat=5.3600), TARGET) is None
    assert cache.get(TARGET, ORIGIN) is None


def test_last_write_wins():
    cache = RouteCache(MemoryStore())
    first = _entry()
    second = first.model_copy(update={"duration_minutes": 42})

    cache.put(ORIGIN, TARGET, first)
    cache.put(ORIGIN, TARGET, second)

    assert cache.get(ORIGIN, TARGET).duration_minutes == 42


def test_entry_summarises_route():
    entry = _entry()

    assert entry.distance_km == 1.2
    assert entry.duration_minutes == 2
    assert len(entry.steps) == 2

    route = entry.to_route()
    assert route.total_distance_m == pytest.approx(1200)
    assert route.steps[1].id == (0, 1)


def test_file_store_survives_restart(tmp_path):
    path = str(tmp_path / "cache" / "routes.json")
    entry = _entry()
    RouteCache(JsonFileStore(path)).put(ORIGIN, TARGET, entry)

    reopened = RouteCache(JsonFileStore(path))

    assert reopened.get(ORIGIN, TARGET) == entry


def test_corrupt_entry_reads_as_miss(tmp_path):
    store = MemoryStore()
    cache = RouteCache(store)
    store.set(cache.key(ORIGIN, TARGET), "{not json")

    assert cache.get(ORIGIN, TARGET) is None


def test_unreadable_file_starts_empty(tmp_path):
    path = tmp_path / "routes.json"
    path.write_text("[[[", encoding="utf-8")

    store = JsonFileStore(str(path))
    assert store.get("anything") is None

    store.set("k", "v")
    assert json.loads(path.read_text(encoding="utf-8")) == {"k": "v"}


def test_write_failure_is_reported_not_raised():
    class BrokenStore(MemoryStore):
        def set(self, key, value):
            raise OSError("disk full")

    cache = RouteCache(BrokenStore())

    assert cache.put(ORIGIN, TARGET, _entry()) is False
