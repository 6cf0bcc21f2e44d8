from __future__ import annotations

import json
import logging
import os
import threading
import weakref
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Protocol, Tuple

from core.models import RuleKind, StrikeRecord


class StrikeStoreError(Exception):
    """Raised when the strike store cannot be read or written."""


def load_strikes(path: str, debug_logging: bool = False) -> Dict[str, Any]:
    try:
        with open(path, 'r') as file:
            data = json.load(file)
            return data if isinstance(data, dict) else {}
    except (FileNotFoundError, json.JSONDecodeError):
        if debug_logging:
            logging.warning("Strike file not found or is invalid. Starting with an empty strike list.")
        return {}


def save_strikes(data: Dict[str, Any], path: str) -> None:
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    tmp_path = path + '.tmp'
    with open(tmp_path, 'w') as file:
        json.dump(data, file, indent=4)
    os.replace(tmp_path, path)


def make_strike_key(torrent_hash: str, kind: RuleKind) -> str:
    return f"{RuleKind(kind).value}:{str(torrent_hash).lower()}"


def split_strike_key(key: str) -> Tuple[Optional[RuleKind], str]:
    kind, sep, torrent_hash = str(key).partition(':')
    if not sep:
        return None, str(key)
    try:
        return RuleKind(kind), torrent_hash
    except ValueError:
        return None, torrent_hash


def normalize_strike_entry(entry: Any) -> Dict[str, Any]:
    base = {"count": 0, "last_progress_percentage": 0.0}
    if isinstance(entry, bool):
        return base
    if isinstance(entry, int):
        base["count"] = max(0, entry)
        return base
    if isinstance(entry, dict):
        try:
            base["count"] = max(0, int(entry.get("count", 0) or 0))
        except (TypeError, ValueError):
            base["count"] = 0
        try:
            base["last_progress_percentage"] = float(entry.get("last_progress_percentage", 0.0) or 0.0)
        except (TypeError, ValueError):
            base["last_progress_percentage"] = 0.0
    return base


class StrikeStore(Protocol):
    def get(self, key: str) -> Optional[StrikeRecord]: ...

    def set(self, key: str, record: StrikeRecord) -> None: ...

    def remove(self, key: str) -> None: ...

    def keys(self) -> List[str]: ...

    def lock(self, key: str): ...


class _KeyedLocks:
    def __init__(self) -> None:
        self._guard = threading.Lock()
        # entries vanish once no holder or waiter references the lock
        self._locks: 'weakref.WeakValueDictionary[str, Any]' = weakref.WeakValueDictionary()

    @contextmanager
    def lock(self, key: str) -> Iterator[None]:
        with self._guard:
            lk = self._locks.get(key)
            if lk is None:
                lk = threading.Lock()
                self._locks[key] = lk
        with lk:
            yield


class InMemoryStrikeStore(_KeyedLocks):
    def __init__(self, initial: Optional[Dict[str, Any]] = None) -> None:
        super().__init__()
        self.data: Dict[str, Dict[str, Any]] = {
            k: normalize_strike_entry(v) for k, v in (initial or {}).items()
        }

    def get(self, key: str) -> Optional[StrikeRecord]:
        entry = self.data.get(key)
        if entry is None:
            return None
        return StrikeRecord.from_dict(entry)

    def set(self, key: str, record: StrikeRecord) -> None:
        self.data[key] = record.to_dict()

    def remove(self, key: str) -> None:
        self.data.pop(key, None)

    def keys(self) -> List[str]:
        return list(self.data.keys())


class JsonStrikeStore(InMemoryStrikeStore):
    """Strike store persisted to a JSON file.

    Every ``set``/``remove`` rewrites the file unless ``autosave`` is off, in
    which case :meth:`flush` writes pending changes.
    """

    def __init__(self, path: str, autosave: bool = True, debug_logging: bool = False) -> None:
        self.path = path
        self.autosave = autosave
        try:
            initial = load_strikes(path, debug_logging)
        except OSError as e:
            raise StrikeStoreError(f'Cannot read strike file {path}: {e}') from e
        super().__init__(initial)

    def set(self, key: str, record: StrikeRecord) -> None:
        super().set(key, record)
        if self.autosave:
            self.flush()

    def remove(self, key: str) -> None:
        existed = key in self.data
        super().remove(key)
        if existed and self.autosave:
            self.flush()

    def clear(self) -> None:
        self.data.clear()
        self.flush()

    def flush(self) -> None:
        try:
            save_strikes(self.data, self.path)
        except OSError as e:
            raise StrikeStoreError(f'Cannot write strike file {self.path}: {e}') from e
