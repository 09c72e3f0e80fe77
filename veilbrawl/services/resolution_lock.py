"""Resolution lock: exactly one resolver plays out a given (match, round).

acquire() inserts a lock row if absent. On a unique collision it either
reports the recorded resolution, steals a stale lock with a guarded update,
or reports that another resolver is in progress. When the lock table is
missing, a per-instance in-memory table is used instead; that fallback only
protects resolvers inside this process.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional, Tuple

from veilbrawl.errors import TableMissing, UniqueViolation
from veilbrawl.services.record_store import Lt, RecordStore

logger = logging.getLogger(__name__)

TABLE = "round_resolution_locks"


class LockStatus(str, Enum):
    ACQUIRED = "acquired"
    IN_PROGRESS = "in_progress"
    ALREADY_RESOLVED = "already_resolved"


@dataclass(frozen=True)
class LockResult:
    status: LockStatus
    resolved_round_id: Optional[str] = None
    took_over: bool = False
    degraded: bool = False  # in-process fallback was used

    @property
    def acquired(self) -> bool:
        return self.status is LockStatus.ACQUIRED


class ResolutionLock:
    """Durable per-round lock with stale takeover and an in-process fallback."""

    def __init__(self, store: RecordStore, stale_seconds: float = 45.0,
                 clock: Callable[[], float] = time.time):
        self.store = store
        self.stale_seconds = stale_seconds
        self.clock = clock
        self._local: Dict[Tuple[str, int], dict] = {}
        self._local_guard = asyncio.Lock()

    async def acquire(self, match_id: str, round_number: int, owner: str) -> LockResult:
        """
        Try to become the resolver for a round.

        Returns:
            LockResult with ACQUIRED, IN_PROGRESS or ALREADY_RESOLVED
        """
        now = self.clock()
        try:
            await self.store.insert(TABLE, {
                "match_id": match_id,
                "round_number": round_number,
                "lock_owner": owner,
                "lock_acquired_at": now,
                "resolved_round_id": None,
            })
            return LockResult(LockStatus.ACQUIRED)
        except TableMissing:
            logger.warning("Resolution lock table unavailable; using in-process lock for %s/%s",
                           match_id, round_number)
            return await self._acquire_local(match_id, round_number, owner, now)
        except UniqueViolation:
            pass

        key = {"match_id": match_id, "round_number": round_number}
        existing = await self.store.get(TABLE, key)
        if existing and existing.get("resolved_round_id"):
            return LockResult(LockStatus.ALREADY_RESOLVED, existing["resolved_round_id"])

        stolen = await self.store.update(
            TABLE,
            {**key, "resolved_round_id": None, "lock_acquired_at": Lt(now - self.stale_seconds)},
            {"lock_owner": owner, "lock_acquired_at": now},
        )
        if stolen:
            logger.warning("Took over stale resolution lock for %s/%s (previous owner %s)",
                           match_id, round_number, existing.get("lock_owner") if existing else None)
            return LockResult(LockStatus.ACQUIRED, took_over=True)

        # The lock may have been resolved between the read and the takeover attempt
        latest = await self.store.get(TABLE, key)
        if latest and latest.get("resolved_round_id"):
            return LockResult(LockStatus.ALREADY_RESOLVED, latest["resolved_round_id"])
        return LockResult(LockStatus.IN_PROGRESS)

    async def renew(self, match_id: str, round_number: int, owner: str) -> bool:
        """
        Refresh the acquisition time if owner still holds the unresolved lock.

        Returns:
            False once another resolver has taken the lock over
        """
        now = self.clock()
        try:
            rows = await self.store.update(
                TABLE,
                {"match_id": match_id, "round_number": round_number,
                 "resolved_round_id": None, "lock_owner": owner},
                {"lock_acquired_at": now},
            )
            return bool(rows)
        except TableMissing:
            async with self._local_guard:
                entry = self._local.get((match_id, round_number))
                if entry is None or entry["owner"] != owner or entry["resolved_round_id"]:
                    return False
                entry["acquired_at"] = now
                return True

    async def mark_resolved(self, match_id: str, round_number: int, resolved_round_id: str) -> bool:
        """Record the round's resolution once. Returns False if already recorded."""
        try:
            rows = await self.store.update(
                TABLE,
                {"match_id": match_id, "round_number": round_number, "resolved_round_id": None},
                {"resolved_round_id": resolved_round_id, "resolved_at": self.clock()},
            )
            return bool(rows)
        except TableMissing:
            async with self._local_guard:
                entry = self._local.get((match_id, round_number))
                if entry is None or entry["resolved_round_id"]:
                    return False
                entry["resolved_round_id"] = resolved_round_id
                return True

    async def release(self, match_id: str, round_number: int, owner: str) -> None:
        """Give up an unresolved lock so the next resolver can take over at once."""
        try:
            await self.store.update(
                TABLE,
                {"match_id": match_id, "round_number": round_number,
                 "resolved_round_id": None, "lock_owner": owner},
                {"lock_acquired_at": 0.0},
            )
        except TableMissing:
            async with self._local_guard:
                entry = self._local.get((match_id, round_number))
                if entry and entry["owner"] == owner and not entry["resolved_round_id"]:
                    del self._local[(match_id, round_number)]

    async def peek(self, match_id: str, round_number: int) -> Optional[dict]:
        """Current unresolved lock for a round, if any (read-only)."""
        try:
            return await self.store.get(TABLE, {
                "match_id": match_id, "round_number": round_number, "resolved_round_id": None,
            })
        except TableMissing:
            entry = self._local.get((match_id, round_number))
            if entry and not entry["resolved_round_id"]:
                return dict(entry)
            return None

    async def _acquire_local(self, match_id: str, round_number: int, owner: str, now: float) -> LockResult:
        async with self._local_guard:
            key = (match_id, round_number)
            entry = self._local.get(key)
            if entry is None:
                self._local[key] = {"owner": owner, "acquired_at": now, "resolved_round_id": None}
                return LockResult(LockStatus.ACQUIRED, degraded=True)
            if entry["resolved_round_id"]:
                return LockResult(LockStatus.ALREADY_RESOLVED, entry["resolved_round_id"], degraded=True)
            if entry["acquired_at"] < now - self.stale_seconds:
                entry.update(owner=owner, acquired_at=now)
                return LockResult(LockStatus.ACQUIRED, took_over=True, degraded=True)
            return LockResult(LockStatus.IN_PROGRESS, degraded=True)
