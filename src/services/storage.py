"""Local key-value persistence for the user profile and the offline queue.

Two interchangeable backends implement :class:`StorageBackend`:

* :class:`InMemoryStorageBackend` -- process-local dict, used by default and
  in tests.
* :class:`JsonFileStorageBackend` -- a single JSON document on disk,
  serialised with *orjson* and replaced atomically on every write.

On top of them, :class:`ProfileRepository` stores the registered name and
phone, and :class:`QueueStore` stores the records of undelivered drafts.
"""

from __future__ import annotations

import asyncio
import os
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import orjson
import structlog

from src.models.alert import AlertDraft, UserProfile

logger = structlog.get_logger(__name__)

_USER_NAME_KEY = "userName"
_USER_PHONE_KEY = "userPhone"
_PENDING_ALERTS_KEY = "pendingAlerts"


# ---------------------------------------------------------------------------
# Storage backend protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class StorageBackend(Protocol):
    """Async key-value storage interface."""

    async def get(self, key: str) -> Any | None: ...

    async def set(self, key: str, value: Any) -> None: ...

    async def delete(self, key: str) -> None: ...


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------


class InMemoryStorageBackend:
    """Dict-backed storage; values are copied through JSON on write."""

    __slots__ = ("_data",)

    def __init__(self) -> None:
        self._data: dict[str, bytes] = {}

    async def get(self, key: str) -> Any | None:
        raw = self._data.get(key)
        return orjson.loads(raw) if raw is not None else None

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = orjson.dumps(value)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)


# ---------------------------------------------------------------------------
# JSON file backend
# ---------------------------------------------------------------------------


class JsonFileStorageBackend:
    """All keys kept in one JSON object on disk.

    Writes are serialised with an :class:`asyncio.Lock` and performed off the
    event loop.  A corrupt or missing file reads as empty.
    """

    __slots__ = ("_cache", "_lock", "_path")

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._lock = asyncio.Lock()
        self._cache: dict[str, Any] | None = None

    async def _load(self) -> dict[str, Any]:
        if self._cache is None:
            self._cache = await asyncio.to_thread(self._read_file)
        return self._cache

    def _read_file(self) -> dict[str, Any]:
        try:
            data = orjson.loads(self._path.read_bytes())
        except FileNotFoundError:
            return {}
        except (OSError, orjson.JSONDecodeError):
            logger.warning("storage.file_unreadable", path=str(self._path), exc_info=True)
            return {}
        return data if isinstance(data, dict) else {}

    def _write_file(self, data: dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_bytes(orjson.dumps(data, option=orjson.OPT_INDENT_2))
        os.replace(tmp, self._path)

    async def get(self, key: str) -> Any | None:
        async with self._lock:
            return (await self._load()).get(key)

    async def set(self, key: str, value: Any) -> None:
        async with self._lock:
            data = await self._load()
            data[key] = value
            await asyncio.to_thread(self._write_file, dict(data))

    async def delete(self, key: str) -> None:
        async with self._lock:
            data = await self._load()
            if data.pop(key, None) is not None:
                await asyncio.to_thread(self._write_file, dict(data))


def create_backend(path: str | None) -> StorageBackend:
    """File-backed storage when *path* is set, in-memory otherwise."""
    if path:
        return JsonFileStorageBackend(path)
    return InMemoryStorageBackend()


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------


class ProfileRepository:
    """Loads and saves the registered user name and phone."""

    __slots__ = ("_backend",)

    def __init__(self, backend: StorageBackend) -> None:
        self._backend = backend

    async def load(self) -> UserProfile:
        try:
            name = await self._backend.get(_USER_NAME_KEY)
            phone = await self._backend.get(_USER_PHONE_KEY)
        except Exception:
            logger.warning("storage.profile_load_failed", exc_info=True)
            return UserProfile()
        return UserProfile(user_name=name or "", user_phone=phone or "")

    async def save(self, profile: UserProfile) -> None:
        await self._backend.set(_USER_NAME_KEY, profile.user_name)
        await self._backend.set(_USER_PHONE_KEY, profile.user_phone)
        logger.debug("storage.profile_saved")


class QueueStore:
    """Persists the ordered list of undelivered drafts."""

    __slots__ = ("_backend",)

    def __init__(self, backend: StorageBackend) -> None:
        self._backend = backend

    async def load(self) -> list[AlertDraft]:
        records = await self._backend.get(_PENDING_ALERTS_KEY) or []
        drafts: list[AlertDraft] = []
        for record in records:
            try:
                drafts.append(AlertDraft.from_record(record))
            except ValueError:
                logger.warning("storage.queue_record_invalid", record_id=record.get("id"))
        return drafts

    async def save(self, drafts: list[AlertDraft]) -> None:
        await self._backend.set(_PENDING_ALERTS_KEY, [d.to_record() for d in drafts])
