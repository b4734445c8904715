import json
import logging
import os
import threading
from typing import Dict, Optional, Protocol

from pydantic import ValidationError

from .models import Coordinate, RouteCacheEntry

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...


class MemoryStore:
    """Process-local store, for tests and previews."""

    def __init__(self) -> None:
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value


class JsonFileStore:
    """
    Durable string store kept in a single JSON object on disk.

    The file is rewritten through a temporary file and os.replace, so a crash
    mid-write leaves the previous content intact.
    """

    def __init__(self, path: str) -> None:
        self.path = path
        self._lock = threading.Lock()
        self._data: Optional[Dict[str, str]] = None

    def _load(self) -> Dict[str, str]:
        if self._data is None:
            try:
                with open(self.path, "r", encoding="utf-8") as f:
                    loaded = json.load(f)
                self._data = loaded if isinstance(loaded, dict) else {}
            except FileNotFoundError:
                self._data = {}
            except (OSError, ValueError) as e:
                logger.error(f"Unreadable store {self.path}, starting empty: {e}")
                self._data = {}
        return self._data

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            data = self._load()
            data[key] = value
            directory = os.path.dirname(os.path.abspath(self.path))
            os.makedirs(directory, exist_ok=True)
            tmp_path = self.path + ".tmp"
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False)
            os.replace(tmp_path, self.path)


def fingerprint(origin: Coordinate, destination: Coordinate, precision: int = 4) -> str:
    """
    Lossy cache key: each component rounded to `precision` decimals (~11 m at 4),
    so GPS jitter around the same start/end pair hits the same entry.
    """
    p = precision
    return (
        f"{origin.lng:.{p}f},{origin.lat:.{p}f}"
        f"_{destination.lng:.{p}f},{destination.lat:.{p}f}"
    )


class RouteCache:
    """
    Last successfully fetched route per (origin, destination) fingerprint.
    Last write wins, no expiry.
    """

    def __init__(self, store: KeyValueStore, precision: int = 4, namespace: str = "route_cache") -> None:
        self.store = store
        self.precision = precision
        self.namespace = namespace

    def key(self, origin: Coordinate, destination: Coordinate) -> str:
        return f"{self.namespace}:{fingerprint(origin, destination, self.precision)}"

    def get(self, origin: Coordinate, destination: Coordinate) -> Optional[RouteCacheEntry]:
        key = self.key(origin, destination)
        try:
            raw = self.store.get(key)
        except OSError as e:
            logger.error(f"Route cache read failed for {key}: {e}")
            return None
        if raw is None:
            return None
        try:
            return RouteCacheEntry.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(f"Discarding corrupt route cache entry {key}: {e}")
            return None

    def put(self, origin: Coordinate, destination: Coordinate, entry: RouteCacheEntry) -> bool:
        key = self.key(origin, destination)
        try:
            self.store.set(key, entry.model_dump_json())
        except OSError as e:
            logger.error(f"Route cache write failed for {key}: {e}")
            return False
        logger.debug(f"Route cached under {key}")
        return True
