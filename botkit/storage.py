"""Document persistence for giveaways, trivia attempts and user action history."""

from __future__ import annotations

import asyncio
import copy
import json
import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from .models import Giveaway
from .timeutils import Clock, utcnow

LOGGER = logging.getLogger(__name__)

GIVEAWAYS_DOCUMENT = "giveaways"
TRIVIA_ATTEMPTS_DOCUMENT = "trivia_attempts"
USER_ACTIONS_DOCUMENT = "user_actions"


class StorageError(RuntimeError):
    """Raised when a persisted document cannot be read or written."""


class DuplicateGiveawayError(StorageError):
    """Raised when a giveaway id is already present in the collection."""


class DocumentStore:
    """Named JSON documents. Implementations must serialise writes."""

    async def get(self, name: str, default: Any) -> Any:
        raise NotImplementedError

    async def put(self, name: str, value: Any) -> None:
        raise NotImplementedError


class JsonDocumentStore(DocumentStore):
    """Stores each document as ``<base_dir>/<name>.json``."""

    def __init__(self, base_dir: Path) -> None:
        self.base_dir = base_dir
        self._lock = asyncio.Lock()

    def _path(self, name: str) -> Path:
        return self.base_dir / f"{name}.json"

    async def get(self, name: str, default: Any) -> Any:
        async with self._lock:
            return await asyncio.to_thread(self._read, self._path(name), default)

    async def put(self, name: str, value: Any) -> None:
        # serialise on the loop; callers keep mutating their caches while the write runs
        serialized = json.dumps(value, indent=2)
        async with self._lock:
            self.base_dir.mkdir(parents=True, exist_ok=True)
            await asyncio.to_thread(self._write, self._path(name), serialized)

    @staticmethod
    def _read(path: Path, default: Any) -> Any:
        if not path.exists():
            return default
        try:
            raw = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise StorageError(f"Unable to read {path}: {exc}") from exc
        if not raw.strip():
            return default
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise StorageError(f"{path} does not contain valid JSON: {exc}") from exc

    @staticmethod
    def _write(path: Path, serialized: str) -> None:
        tmp_path = path.with_suffix(".json.tmp")
        tmp_path.write_text(serialized, encoding="utf-8")
        tmp_path.replace(path)


class MemoryDocumentStore(DocumentStore):
    """Process-local store, used by tests and dry runs."""

    def __init__(self, documents: Optional[Dict[str, Any]] = None) -> None:
        self.documents: Dict[str, Any] = copy.deepcopy(documents or {})
        self.writes = 0

    async def get(self, name: str, default: Any) -> Any:
        return copy.deepcopy(self.documents.get(name, default))

    async def put(self, name: str, value: Any) -> None:
        self.writes += 1
        self.documents[name] = copy.deepcopy(value)


class GiveawayRepository:
    """Giveaway collection with a write-through cache.

    Every mutation is a read-modify-write of the whole collection, serialised by
    a lock so two giveaways updated in the same tick cannot clobber each other.
    """

    def __init__(self, store: DocumentStore) -> None:
        self.store = store
        self._cache: Optional[Dict[str, Giveaway]] = None
        self._lock = asyncio.Lock()

    async def load(self, *, force: bool = False) -> List[Giveaway]:
        async with self._lock:
            if force:
                self._cache = None
            return list((await self._ensure_loaded()).values())

    async def get(self, giveaway_id: str) -> Optional[Giveaway]:
        async with self._lock:
            cache = await self._ensure_loaded()
            giveaway = cache.get(giveaway_id)
            return copy.deepcopy(giveaway) if giveaway else None

    async def add(self, giveaway: Giveaway) -> None:
        async with self._lock:
            cache = await self._ensure_loaded()
            if giveaway.id in cache:
                raise DuplicateGiveawayError(
                    f"Giveaway id {giveaway.id} is already stored."
                )
            cache[giveaway.id] = copy.deepcopy(giveaway)
            await self._flush(cache)
        LOGGER.info("Stored giveaway %s (%s).", giveaway.id, giveaway.title)

    async def update(self, giveaway_id: str, mutate) -> Optional[Giveaway]:
        """Apply ``mutate(giveaway)`` and persist when it returns a truthy value.

        Returns a copy of the giveaway as stored after the call, or ``None``
        when the id is unknown.
        """
        async with self._lock:
            cache = await self._ensure_loaded()
            current = cache.get(giveaway_id)
            if current is None:
                return None
            working = copy.deepcopy(current)
            if mutate(working):
                cache[giveaway_id] = working
                await self._flush(cache)
                current = working
            return copy.deepcopy(current)

    async def list(
        self,
        guild_id: Optional[int] = None,
        *,
        active_only: bool = False,
        now: Optional[datetime] = None,
    ) -> List[Giveaway]:
        async with self._lock:
            cache = await self._ensure_loaded()
            giveaways = list(cache.values())
        moment = now or utcnow()
        if guild_id is not None:
            giveaways = [g for g in giveaways if g.guild_id == guild_id]
        if active_only:
            giveaways = [
                g for g in giveaways if g.is_active and g.end_time > moment
            ]
        giveaways.sort(key=lambda g: (g.start_time, g.id), reverse=True)
        return [copy.deepcopy(g) for g in giveaways]

    async def _ensure_loaded(self) -> Dict[str, Giveaway]:
        if self._cache is not None:
            return self._cache
        raw = await self.store.get(GIVEAWAYS_DOCUMENT, [])
        if not isinstance(raw, list):
            raise StorageError("Giveaway document must contain a list.")
        cache: Dict[str, Giveaway] = {}
        for payload in raw:
            try:
                giveaway = Giveaway.from_payload(payload)
            except (KeyError, TypeError, ValueError) as exc:
                LOGGER.warning("Skipping malformed giveaway entry %r: %s", payload, exc)
                continue
            if giveaway.id in cache:
                LOGGER.warning("Duplicate giveaway id %s in storage; keeping the first.", giveaway.id)
                continue
            cache[giveaway.id] = giveaway
        self._cache = cache
        return cache

    async def _flush(self, cache: Dict[str, Giveaway]) -> None:
        await self.store.put(
            GIVEAWAYS_DOCUMENT, [giveaway.to_payload() for giveaway in cache.values()]
        )


class TriviaAttemptLedger:
    """Failed trivia attempts per giveaway and user."""

    def __init__(self, store: DocumentStore) -> None:
        self.store = store
        self._counts: Optional[Dict[str, Dict[str, int]]] = None
        self._lock = asyncio.Lock()

    async def get(self, giveaway_id: str, user_id: int) -> int:
        async with self._lock:
            counts = await self._ensure_loaded()
            return int(counts.get(giveaway_id, {}).get(str(user_id), 0))

    async def increment(self, giveaway_id: str, user_id: int) -> int:
        async with self._lock:
            counts = await self._ensure_loaded()
            per_user = counts.setdefault(giveaway_id, {})
            value = int(per_user.get(str(user_id), 0)) + 1
            per_user[str(user_id)] = value
            await self.store.put(TRIVIA_ATTEMPTS_DOCUMENT, counts)
            return value

    async def clear(self, giveaway_ids: Iterable[str]) -> None:
        async with self._lock:
            counts = await self._ensure_loaded()
            removed = False
            for giveaway_id in giveaway_ids:
                removed = counts.pop(giveaway_id, None) is not None or removed
            if removed:
                await self.store.put(TRIVIA_ATTEMPTS_DOCUMENT, counts)

    async def _ensure_loaded(self) -> Dict[str, Dict[str, int]]:
        if self._counts is None:
            raw = await self.store.get(TRIVIA_ATTEMPTS_DOCUMENT, {})
            self._counts = raw if isinstance(raw, dict) else {}
        return self._counts


class UserActionLedger:
    """Durable last-action timestamps per action type, scope and user."""

    def __init__(self, store: DocumentStore, clock: Clock = utcnow) -> None:
        self.store = store
        self._clock = clock
        self._history: Optional[Dict[str, Dict[str, Dict[str, str]]]] = None
        self._lock = asyncio.Lock()

    async def try_record(
        self,
        action_type: str,
        user_id: int,
        max_per_user: int,
        scope_id: str,
        reset_interval: Optional[timedelta] = None,
    ) -> bool:
        if max_per_user <= 0:
            return True

        async with self._lock:
            history = await self._ensure_loaded()
            now = self._clock()
            scoped = history.setdefault(action_type, {}).setdefault(str(scope_id), {})
            last_raw = scoped.get(str(user_id))
            if last_raw is not None:
                if reset_interval is None:
                    return False
                last = datetime.fromisoformat(last_raw)
                if now < last + reset_interval:
                    return False

            scoped[str(user_id)] = now.isoformat()
            await self.store.put(USER_ACTIONS_DOCUMENT, history)
            return True

    async def last_action(
        self, action_type: str, user_id: int, scope_id: str
    ) -> Optional[datetime]:
        async with self._lock:
            history = await self._ensure_loaded()
            raw = history.get(action_type, {}).get(str(scope_id), {}).get(str(user_id))
        return datetime.fromisoformat(raw) if raw else None

    async def _ensure_loaded(self) -> Dict[str, Dict[str, Dict[str, str]]]:
        if self._history is None:
            raw = await self.store.get(USER_ACTIONS_DOCUMENT, {})
            self._history = raw if isinstance(raw, dict) else {}
        return self._history
