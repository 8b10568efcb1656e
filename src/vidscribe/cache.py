import copy
import json
import logging
import os
import tempfile
import time
from pathlib import Path
from typing import Callable, Iterator, Protocol

from vidscribe import types as t
from vidscribe.errors import CacheIOError

log = logging.getLogger(__name__)

TTL_SECONDS = 24 * 60 * 60


class DurableStore(Protocol):
    def load(self, key: str) -> t.CacheEntry | None: ...
    def save(self, entry: t.CacheEntry) -> None: ...
    def delete(self, key: str) -> None: ...
    def scan(self) -> Iterator[t.CacheEntry]: ...


def _entry_to_record(entry: t.CacheEntry) -> dict:
    return {"timestamp": entry.timestamp, **entry.payload.to_dict()}


def _record_to_entry(key: str, record: dict) -> t.CacheEntry:
    return t.CacheEntry(
        key=key,
        timestamp=int(record["timestamp"]),
        payload=t.TranscriptionResult.from_dict(record),
    )


class FileStore:
    """One JSON file per video, named by video ID."""

    def __init__(self, directory: Path):
        self.directory = directory

    def _path(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def load(self, key: str) -> t.CacheEntry | None:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            return _record_to_entry(key, json.loads(path.read_text()))
        except (OSError, ValueError, KeyError, TypeError) as exc:
            raise CacheIOError(f"unreadable cache file {path}: {exc}") from exc

    def save(self, entry: t.CacheEntry) -> None:
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self.directory, prefix=f".{entry.key}.", suffix=".tmp")
            with os.fdopen(fd, "w") as f:
                json.dump(_entry_to_record(entry), f, indent=2)
            os.replace(tmp, self._path(entry.key))
        except OSError as exc:
            raise CacheIOError(f"could not write cache entry {entry.key}: {exc}") from exc

    def delete(self, key: str) -> None:
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as exc:
            raise CacheIOError(f"could not delete cache entry {key}: {exc}") from exc

    def scan(self) -> Iterator[t.CacheEntry]:
        if not self.directory.exists():
            return
        for path in sorted(self.directory.glob("*.json")):
            try:
                yield self.load(path.stem)
            except CacheIOError as exc:
                log.warning("Dropping corrupt cache file: %s", exc)
                path.unlink(missing_ok=True)


class MemoryStore:
    def __init__(self):
        self._records: dict[str, dict] = {}

    def load(self, key: str) -> t.CacheEntry | None:
        record = self._records.get(key)
        return _record_to_entry(key, record) if record else None

    def save(self, entry: t.CacheEntry) -> None:
        self._records[entry.key] = _entry_to_record(entry)

    def delete(self, key: str) -> None:
        self._records.pop(key, None)

    def scan(self) -> Iterator[t.CacheEntry]:
        for key in list(self._records):
            yield self.load(key)


class TranscriptionCache:
    """Memory-first cache of transcription results with a durable second tier.

    Entries expire ``ttl`` seconds after they were written. Durable-store
    failures are logged and never raised; the cache then behaves as
    memory-only for that call.
    """

    def __init__(self, store: DurableStore | None = None, ttl: float = TTL_SECONDS,
                 clock: Callable[[], float] = time.time):
        self._memory: dict[str, t.CacheEntry] = {}
        self._store = store
        self.ttl = ttl
        self._clock = clock

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _expired(self, entry: t.CacheEntry) -> bool:
        return self._now_ms() - entry.timestamp > self.ttl * 1000

    def _durable(self, action: str, fn: Callable):
        if self._store is None:
            return None
        try:
            return fn()
        except CacheIOError as exc:
            log.warning("Durable cache %s failed, using memory only: %s", action, exc)
            return None

    def get(self, video_id: str) -> t.TranscriptionResult | None:
        if not video_id:
            return None
        entry = self._memory.get(video_id)
        if entry is None:
            entry = self._durable("read", lambda: self._store.load(video_id))
            if entry is not None and not self._expired(entry):
                self._memory[video_id] = entry
        if entry is None:
            return None
        age_min = (self._now_ms() - entry.timestamp) / 60000
        if self._expired(entry):
            log.info("Cache expired for %s (%.0f minutes old)", video_id, age_min)
            self.invalidate(video_id)
            return None
        log.info("Cache hit for %s (%.0f minutes old)", video_id, age_min)
        return copy.deepcopy(entry.payload)

    def put(self, video_id: str, result: t.TranscriptionResult) -> None:
        if not video_id:
            return
        entry = t.CacheEntry(key=video_id, timestamp=self._now_ms(), payload=copy.deepcopy(result))
        self._memory[video_id] = entry
        self._durable("write", lambda: self._store.save(entry))
        log.info("Cached transcription for %s", video_id)

    def invalidate(self, video_id: str) -> None:
        self._memory.pop(video_id, None)
        self._durable("delete", lambda: self._store.delete(video_id))

    def clear(self) -> None:
        keys = set(self._memory)
        keys |= {e.key for e in self._durable("scan", lambda: list(self._store.scan())) or []}
        for key in keys:
            self.invalidate(key)
        log.info("Transcription cache cleared")

    def rehydrate(self) -> tuple[int, int]:
        """Loads unexpired durable entries into memory and purges expired ones."""
        loaded = purged = 0
        entries = self._durable("scan", lambda: list(self._store.scan())) or []
        for entry in entries:
            if self._expired(entry):
                self.invalidate(entry.key)
                purged += 1
            else:
                self._memory[entry.key] = entry
                loaded += 1
        log.info("Cache rehydrated: %d loaded, %d expired entries purged", loaded, purged)
        return loaded, purged

    def __contains__(self, video_id: str) -> bool:
        return self.get(video_id) is not None

    def __len__(self) -> int:
        return len(self._memory)
