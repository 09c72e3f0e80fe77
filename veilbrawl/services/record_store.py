"""Keyed record store used by the round protocol.

This module defines:
- The abstract RecordStore interface (get/select/insert/update/upsert with
  equality, IS NULL and less-than filters)
- An in-memory implementation guarded by an asyncio lock, with unique keys
  per table and TableMissing for undeclared tables
"""

import asyncio
import copy
import time
import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from veilbrawl.errors import TableMissing, UniqueViolation

Row = Dict[str, Any]
Filters = Mapping[str, Any]


class Lt:
    """Filter value matching rows whose column is strictly less than `value`."""

    __slots__ = ("value",)

    def __init__(self, value: Any):
        self.value = value

    def __repr__(self) -> str:
        return f"Lt({self.value!r})"


# Table name -> unique key column tuples
DEFAULT_SCHEMA: Dict[str, List[Tuple[str, ...]]] = {
    "matches": [("id",)],
    "round_private_commits": [("id",), ("match_id", "round_number", "player_address")],
    "round_resolution_locks": [("id",), ("match_id", "round_number")],
    "rounds": [("id",), ("match_id", "round_number")],
    "turns": [("id",), ("round_id", "turn_number")],
}


def _matches(row: Row, filters: Filters) -> bool:
    for column, expected in filters.items():
        actual = row.get(column)
        if isinstance(expected, Lt):
            if actual is None or not actual < expected.value:
                return False
        elif expected is None:
            if actual is not None:
                return False
        elif actual != expected:
            return False
    return True


class RecordStore(ABC):
    """Abstract keyed table store."""

    @abstractmethod
    async def select(self, table: str, filters: Optional[Filters] = None) -> List[Row]:
        ...

    @abstractmethod
    async def insert(self, table: str, row: Row) -> Row:
        """Insert a row; raises UniqueViolation on a key collision."""

    @abstractmethod
    async def update(self, table: str, filters: Filters, changes: Row) -> List[Row]:
        """Update every row matching filters; returns the updated rows."""

    @abstractmethod
    async def upsert(self, table: str, row: Row, conflict_keys: Sequence[str]) -> Row:
        """Insert, or merge into the row sharing conflict_keys."""

    async def get(self, table: str, filters: Filters) -> Optional[Row]:
        rows = await self.select(table, filters)
        return rows[0] if rows else None


class InMemoryRecordStore(RecordStore):
    """Process-local record store with per-table unique keys."""

    def __init__(self, schema: Optional[Mapping[str, Iterable[Tuple[str, ...]]]] = None):
        schema = DEFAULT_SCHEMA if schema is None else schema
        self._unique: Dict[str, List[Tuple[str, ...]]] = {
            name: [tuple(key) for key in keys] for name, keys in schema.items()
        }
        self._tables: Dict[str, List[Row]] = {name: [] for name in self._unique}
        self._lock = asyncio.Lock()

    def _table(self, table: str) -> List[Row]:
        rows = self._tables.get(table)
        if rows is None:
            raise TableMissing(f"relation \"{table}\" does not exist")
        return rows

    def drop_table(self, table: str) -> None:
        """Remove a table entirely (used to exercise degraded paths)."""
        self._tables.pop(table, None)
        self._unique.pop(table, None)

    def _conflicts(self, table: str, candidate: Row, ignore: Optional[Row] = None) -> Optional[Tuple[str, ...]]:
        for key in self._unique.get(table, []):
            if any(candidate.get(col) is None for col in key):
                continue
            for row in self._tables[table]:
                if row is ignore:
                    continue
                if all(row.get(col) == candidate.get(col) for col in key):
                    return key
        return None

    async def select(self, table: str, filters: Optional[Filters] = None) -> List[Row]:
        async with self._lock:
            rows = self._table(table)
            return [copy.deepcopy(r) for r in rows if _matches(r, filters or {})]

    async def insert(self, table: str, row: Row) -> Row:
        async with self._lock:
            rows = self._table(table)
            now = time.time()
            new_row = {"id": str(uuid.uuid4()), "created_at": now, "updated_at": now}
            new_row.update(copy.deepcopy(row))
            key = self._conflicts(table, new_row)
            if key is not None:
                raise UniqueViolation(f"duplicate key on {table} {key}")
            rows.append(new_row)
            return copy.deepcopy(new_row)

    async def update(self, table: str, filters: Filters, changes: Row) -> List[Row]:
        async with self._lock:
            rows = self._table(table)
            updated = []
            for row in rows:
                if not _matches(row, filters):
                    continue
                candidate = {**row, **copy.deepcopy(changes)}
                key = self._conflicts(table, candidate, ignore=row)
                if key is not None:
                    raise UniqueViolation(f"duplicate key on {table} {key}")
                row.update(copy.deepcopy(changes))
                row["updated_at"] = time.time()
                updated.append(copy.deepcopy(row))
            return updated

    async def upsert(self, table: str, row: Row, conflict_keys: Sequence[str]) -> Row:
        async with self._lock:
            rows = self._table(table)
            key_filter = {col: row.get(col) for col in conflict_keys}
            for existing in rows:
                if _matches(existing, key_filter):
                    existing.update(copy.deepcopy(row))
                    existing["updated_at"] = time.time()
                    return copy.deepcopy(existing)
            now = time.time()
            new_row = {"id": str(uuid.uuid4()), "created_at": now, "updated_at": now}
            new_row.update(copy.deepcopy(row))
            if self._conflicts(table, new_row) is not None:
                raise UniqueViolation(f"duplicate key on {table}")
            rows.append(new_row)
            return copy.deepcopy(new_row)
