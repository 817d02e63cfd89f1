"""Local Snapshot Store.

A namespaced key-value record of the last known anonymous cart. Records
older than the staleness horizon (7 days by default) are ignored when
loaded. Saving is best-effort: failures are logged, never raised.
"""

from __future__ import annotations

import json
import os
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Optional, Protocol

import structlog

from .models import CartItem, CartSnapshot, CartState

logger = structlog.get_logger(__name__)

ANONYMOUS_SCOPE = "anonymous"
DEFAULT_TTL = timedelta(days=7)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class KeyValueStore(Protocol):
    """Minimal persistent string store."""

    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def delete(self, key: str) -> None:
        ...


class MemoryKeyValueStore:
    """Process-local store. Data does not survive a restart."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)


class JsonFileKeyValueStore:
    """All keys in one JSON document on disk.

    Writes go to a temporary file in the same directory and are moved into
    place with os.replace, so a crash never leaves a half-written document.
    """

    def __init__(self, path: str | os.PathLike) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def _read_all(self) -> dict[str, str]:
        if not self._path.exists():
            return {}
        with self._path.open("r", encoding="utf-8") as fh:
            data = json.load(fh)
        if not isinstance(data, dict):
            raise ValueError(f"{self._path} does not hold a JSON object")
        return data

    def _write_all(self, data: dict[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self._path.parent, prefix=".snapshot-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh)
            os.replace(tmp, self._path)
        except BaseException:
            if os.path.exists(tmp):
                os.remove(tmp)
            raise

    def get(self, key: str) -> Optional[str]:
        return self._read_all().get(key)

    def set(self, key: str, value: str) -> None:
        data = self._read_all()
        data[key] = value
        self._write_all(data)

    def delete(self, key: str) -> None:
        data = self._read_all()
        if key in data:
            del data[key]
            self._write_all(data)


def encode_snapshot(snapshot: CartSnapshot) -> str:
    return json.dumps(
        {
            "items": [item.to_dict() for item in snapshot.items],
            "itemCount": snapshot.item_count,
            "total": str(snapshot.total),
            "savedAt": snapshot.saved_at.isoformat(),
        }
    )


def decode_snapshot(raw: str) -> CartSnapshot:
    """Decode a stored record; derived figures are recomputed from items."""
    data = json.loads(raw)
    saved_at = datetime.fromisoformat(data["savedAt"])
    if saved_at.tzinfo is None:
        saved_at = saved_at.replace(tzinfo=timezone.utc)
    items = tuple(CartItem.from_dict(entry) for entry in data["items"])
    return CartSnapshot(items=items, saved_at=saved_at)


class LocalSnapshotStore:
    """Scoped, namespaced snapshot record with a staleness horizon."""

    def __init__(
        self,
        kv: KeyValueStore,
        *,
        namespace: str = "cart",
        scope: str = ANONYMOUS_SCOPE,
        ttl: timedelta = DEFAULT_TTL,
        clock: Clock = utc_now,
    ) -> None:
        self._kv = kv
        self._namespace = namespace
        self._scope = scope
        self._ttl = ttl
        self._clock = clock

    @property
    def key(self) -> str:
        return f"{self._namespace}:{self._scope}"

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    def for_scope(self, scope: str) -> LocalSnapshotStore:
        """Same backing store, different slot (e.g. a user identity)."""
        return LocalSnapshotStore(
            self._kv,
            namespace=self._namespace,
            scope=scope,
            ttl=self._ttl,
            clock=self._clock,
        )

    def save(self, snapshot: CartSnapshot) -> None:
        try:
            self._kv.set(self.key, encode_snapshot(snapshot))
        except (OSError, TypeError, ValueError) as e:
            logger.warning("snapshot_save_failed", key=self.key, error=str(e))

    def save_state(self, state: CartState) -> None:
        self.save(CartSnapshot.of(state, self._clock()))

    def load(self) -> Optional[CartSnapshot]:
        """Return the snapshot, or None if absent, unreadable or stale."""
        try:
            raw = self._kv.get(self.key)
        except (OSError, ValueError) as e:
            logger.warning("snapshot_load_failed", key=self.key, error=str(e))
            return None
        if raw is None:
            return None

        try:
            snapshot = decode_snapshot(raw)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("snapshot_corrupt", key=self.key, error=str(e))
            return None

        age = self._clock() - snapshot.saved_at
        if age > self._ttl:
            logger.info("snapshot_expired", key=self.key, age_seconds=int(age.total_seconds()))
            return None
        return snapshot

    def clear(self) -> None:
        try:
            self._kv.delete(self.key)
        except (OSError, ValueError) as e:
            logger.warning("snapshot_clear_failed", key=self.key, error=str(e))
