"""
Local Store: the client's offline cache.

Each collection lives as one JSON document under a distinct key (one file per key),
mirroring how the browser build kept whole arrays in localStorage. There is no
partial-key update: writers replace the full collection, so writers to the same
key are serialized through a per-key lock.
"""

import contextlib
import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import ValidationError as ModelValidationError

from .config import LOCAL_STORE_CAPACITY, LOCAL_STORE_DIR
from .errors import StorageFullError
from .models import Notice, VoiceFeedback

logger = logging.getLogger(__name__)

NOTICES_KEY = "panchayat_notices"
FEEDBACK_KEY = "panchayat_feedback"
AUDIO_KEY = "panchayat_audio"
ALL_KEYS = (NOTICES_KEY, FEEDBACK_KEY, AUDIO_KEY)


def _encode(value: Any) -> bytes:
    return json.dumps(value, ensure_ascii=False, separators=(",", ":")).encode("utf-8")


class LocalStore:
    def __init__(self, directory: Optional[Path] = None, capacity: int = LOCAL_STORE_CAPACITY):
        self.directory = Path(directory or LOCAL_STORE_DIR)
        self.directory.mkdir(parents=True, exist_ok=True)
        self.capacity = capacity
        self._locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()
        # Innermost lock: key locks (sorted) are always taken before it
        self._write_lock = threading.RLock()

    # -- raw key/value -----------------------------------------------------
    def _path(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def lock(self, key: str) -> threading.RLock:
        with self._locks_guard:
            if key not in self._locks:
                self._locks[key] = threading.RLock()
            return self._locks[key]

    def raw(self, key: str) -> Optional[bytes]:
        path = self._path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None

    def load(self, key: str, default: Any = None) -> Any:
        data = self.raw(key)
        if data is None:
            return default
        try:
            return json.loads(data.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.error("Failed to load %s from offline storage: %s", key, e)
            return default

    def _size_of(self, key: str) -> int:
        try:
            return self._path(key).stat().st_size
        except FileNotFoundError:
            return 0

    def usage(self) -> Tuple[int, int]:
        used = sum(self._size_of(p.stem) for p in self.directory.glob("*.json"))
        return used, self.capacity

    def _write(self, key: str, payload: bytes) -> None:
        fd, tmp = tempfile.mkstemp(dir=self.directory, prefix=f".{key}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(payload)
            os.replace(tmp, self._path(key))
        except BaseException:
            try:
                os.unlink(tmp)
            except FileNotFoundError:
                pass
            raise

    def save_many(self, values: Dict[str, Any]) -> None:
        """Replace several collections at once; either all are written or none."""
        keys = sorted(values)
        payloads = {k: _encode(values[k]) for k in keys}
        with _holding([self.lock(k) for k in keys]), self._write_lock:
            used, capacity = self.usage()
            projected = used - sum(self._size_of(k) for k in keys) + sum(len(p) for p in payloads.values())
            if projected > capacity:
                raise StorageFullError(
                    f"Offline storage is full ({projected} of {capacity} bytes)")
            for k in keys:
                self._write(k, payloads[k])

    def save(self, key: str, value: Any) -> None:
        self.save_many({key: value})

    def update(self, key: str, fn: Callable[[Any], Any], default: Any = None) -> Any:
        """Read-modify-write one collection under its lock. Returns the new value."""
        with self.lock(key):
            new_value = fn(self.load(key, default))
            self.save(key, new_value)
            return new_value

    def clear(self) -> None:
        with _holding([self.lock(k) for k in sorted(ALL_KEYS)]), self._write_lock:
            for key in ALL_KEYS:
                try:
                    self._path(key).unlink()
                except FileNotFoundError:
                    pass

    # -- typed collections -------------------------------------------------
    def notices(self) -> List[Notice]:
        return _parse_items(Notice, self.load(NOTICES_KEY, []), NOTICES_KEY)

    def save_notices(self, notices: List[Notice]) -> None:
        self.save(NOTICES_KEY, [n.model_dump(mode="json") for n in notices])

    def feedback(self) -> List[VoiceFeedback]:
        return _parse_items(VoiceFeedback, self.load(FEEDBACK_KEY, []), FEEDBACK_KEY)

    def save_feedback(self, feedback: List[VoiceFeedback]) -> None:
        self.save(FEEDBACK_KEY, [f.model_dump(mode="json") for f in feedback])

    def save_audio(self, notice_id: str, data_uri: str) -> None:
        def put(existing):
            existing = dict(existing or {})
            existing[notice_id] = data_uri
            return existing
        self.update(AUDIO_KEY, put, {})

    def remove_audio(self, notice_id: str) -> None:
        def drop(existing):
            existing = dict(existing or {})
            existing.pop(notice_id, None)
            return existing
        self.update(AUDIO_KEY, drop, {})

    def audio(self, notice_id: str) -> Optional[str]:
        data = self.load(AUDIO_KEY, {})
        if not isinstance(data, dict):
            return None
        return data.get(notice_id)


@contextlib.contextmanager
def _holding(locks):
    with contextlib.ExitStack() as stack:
        for lk in locks:
            stack.enter_context(lk)
        yield


def _parse_items(model, raw: Any, key: str) -> list:
    if not isinstance(raw, list):
        logger.error("Offline collection %s is not a list; ignoring", key)
        return []
    items = []
    for entry in raw:
        try:
            items.append(model.model_validate(entry))
        except ModelValidationError as e:
            logger.warning("Skipping malformed entry in %s: %s", key, e)
    return items
