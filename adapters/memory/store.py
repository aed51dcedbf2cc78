"""
In-memory storage and identity collaborators.

InMemoryStorage implements the StorageGateway protocol over plain dict
rows. It mirrors what the remote relational store guarantees to the core:
row-level tenancy on ``owner_id`` (rows without an owner are shared
reference data), generated ids, a ``created_at`` stamp, and an
all-or-nothing bulk insert. Failures are reported as Result values, and can
be injected per operation and entity kind for tests.
"""

import asyncio
import copy
import uuid
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

import structlog

from herdcare.services.gateways import EntityKind, Result, Row

logger = structlog.get_logger(__name__)

OWNER_KEY = "owner_id"


class InMemoryStorage:
    """Dict-backed row store keyed by entity kind."""

    def __init__(self, latency_seconds: float = 0.0) -> None:
        self.latency_seconds = latency_seconds
        self.tables: dict[EntityKind, dict[str, Row]] = {kind: {} for kind in EntityKind}
        self.fail_on: set[tuple[str, EntityKind]] = set()
        self.calls: list[tuple[str, EntityKind]] = []
        self.logger = logger.bind(component="memory_storage")

    # Test helpers

    def seed(self, kind: EntityKind, rows: Iterable[Row]) -> list[Row]:
        """Insert rows directly, bypassing failure injection and call tracking."""
        return [self._store(kind, row) for row in rows]

    def rows(self, kind: EntityKind) -> list[Row]:
        return [copy.deepcopy(row) for row in self.tables[kind].values()]

    def fail(self, operation: str, kind: EntityKind) -> None:
        """Make every subsequent ``operation`` on ``kind`` return an error."""
        self.fail_on.add((operation, kind))

    def recover(self) -> None:
        self.fail_on.clear()

    def writes(self) -> list[tuple[str, EntityKind]]:
        return [call for call in self.calls if call[0] != "select"]

    # Gateway protocol

    async def select(self, kind: EntityKind, filters: Row) -> Result[list[Row], Exception]:
        failure = await self._begin("select", kind)
        if failure:
            return Result.err(failure)
        return Result.ok([copy.deepcopy(row) for row in self._matching(kind, filters)])

    async def insert(self, kind: EntityKind, row: Row) -> Result[Row, Exception]:
        failure = await self._begin("insert", kind)
        if failure:
            return Result.err(failure)
        return Result.ok(copy.deepcopy(self._store(kind, row)))

    async def bulk_insert(self, kind: EntityKind, rows: list[Row]) -> Result[list[Row], Exception]:
        failure = await self._begin("bulk_insert", kind)
        if failure:
            return Result.err(failure)
        if not rows:
            return Result.ok([])

        staged = dict(self.tables[kind])
        stored = []
        for row in rows:
            if OWNER_KEY not in row:
                return Result.err(ValueError(f"Row for {kind.value} is missing {OWNER_KEY}"))
            prepared = self._prepare(row)
            staged[prepared["id"]] = prepared
            stored.append(prepared)

        self.tables[kind] = staged
        self.logger.debug("rows_inserted", kind=kind.value, count=len(stored))
        return Result.ok([copy.deepcopy(row) for row in stored])

    async def update(
        self, kind: EntityKind, row_id: str, patch: Row, filters: Row
    ) -> Result[Row, Exception]:
        failure = await self._begin("update", kind)
        if failure:
            return Result.err(failure)

        current = self._owned(kind, row_id, filters)
        if current is None:
            return Result.err(LookupError(f"No {kind.value} row {row_id} for this owner"))

        updated = {**current, **copy.deepcopy(patch), "id": row_id}
        self.tables[kind][row_id] = updated
        return Result.ok(copy.deepcopy(updated))

    async def delete(self, kind: EntityKind, row_id: str, filters: Row) -> Result[bool, Exception]:
        failure = await self._begin("delete", kind)
        if failure:
            return Result.err(failure)

        if self._owned(kind, row_id, filters) is None:
            return Result.err(LookupError(f"No {kind.value} row {row_id} for this owner"))
        del self.tables[kind][row_id]
        return Result.ok(True)

    # Internals

    async def _begin(self, operation: str, kind: EntityKind) -> Exception | None:
        self.calls.append((operation, kind))
        await asyncio.sleep(self.latency_seconds)
        if (operation, kind) in self.fail_on:
            self.logger.warning("injected_failure", operation=operation, kind=kind.value)
            return ConnectionError(f"Injected {operation} failure on {kind.value}")
        return None

    def _prepare(self, row: Row) -> Row:
        prepared = copy.deepcopy(row)
        prepared.setdefault("id", str(uuid.uuid4()))
        prepared.setdefault("created_at", datetime.now(UTC).isoformat())
        return prepared

    def _store(self, kind: EntityKind, row: Row) -> Row:
        prepared = self._prepare(row)
        self.tables[kind][prepared["id"]] = prepared
        return prepared

    def _matching(self, kind: EntityKind, filters: Row) -> list[Row]:
        return [row for row in self.tables[kind].values() if _matches(row, filters)]

    def _owned(self, kind: EntityKind, row_id: str, filters: Row) -> Row | None:
        row = self.tables[kind].get(row_id)
        if row is None or not _matches(row, filters):
            return None
        # shared reference rows are readable by everybody but writable by nobody
        if row.get(OWNER_KEY) is None:
            return None
        return row


def _matches(row: Row, filters: Row) -> bool:
    for key, expected in filters.items():
        actual: Any = row.get(key)
        if key == OWNER_KEY and actual is None:
            continue
        if actual != expected:
            return False
    return True


class StaticIdentity:
    """Identity provider with a fixed, switchable owner."""

    def __init__(self, owner_id: str | None = None) -> None:
        self.owner_id = owner_id

    def current_owner_id(self) -> str | None:
        return self.owner_id

    def sign_out(self) -> None:
        self.owner_id = None
