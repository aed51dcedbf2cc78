"""Tests for the in-memory storage collaborator and the storage call wrapper."""

import asyncio

import pytest
from conftest import OTHER_OWNER, OWNER

from adapters.memory import InMemoryStorage, StaticIdentity
from herdcare.exceptions import StorageError
from herdcare.services.gateways import EntityKind, Result, StorageCaller


class TestResult:
    def test_ok_and_err(self) -> None:
        ok: Result[int, Exception] = Result.ok(3)
        err: Result[int, Exception] = Result.err(ValueError("boom"))

        assert ok.is_ok() and ok.unwrap() == 3
        assert err.is_err() and err.unwrap_or(0) == 0
        with pytest.raises(ValueError, match="boom"):
            err.unwrap()

    def test_result_needs_exactly_one_side(self) -> None:
        with pytest.raises(ValueError):
            Result()
        with pytest.raises(ValueError):
            Result(value=1, error=ValueError())


class TestInMemoryStorage:
    @pytest.mark.asyncio
    async def test_select_filters_by_owner(self, storage: InMemoryStorage) -> None:
        result = await storage.select(EntityKind.ANIMALS, {"owner_id": OTHER_OWNER})

        assert [row["id"] for row in result.unwrap()] == ["x1"]

    @pytest.mark.asyncio
    async def test_shared_reference_rows_are_visible_to_every_owner(
        self, storage: InMemoryStorage
    ) -> None:
        mine = (await storage.select(EntityKind.TREATMENT_TYPES, {"owner_id": OWNER})).unwrap()
        theirs = (
            await storage.select(EntityKind.TREATMENT_TYPES, {"owner_id": OTHER_OWNER})
        ).unwrap()

        assert {row["id"] for row in mine} == {"tt-brucelose", "tt-raiva", "tt-vermifugo"}
        assert {row["id"] for row in theirs} == {"tt-brucelose", "tt-vermifugo", "tt-private"}

    @pytest.mark.asyncio
    async def test_insert_generates_id_and_created_at(self, storage: InMemoryStorage) -> None:
        row = (
            await storage.insert(EntityKind.NOTIFICATIONS, {"owner_id": OWNER, "title": "t"})
        ).unwrap()

        assert row["id"]
        assert row["created_at"]

    @pytest.mark.asyncio
    async def test_bulk_insert_is_all_or_nothing(self, storage: InMemoryStorage) -> None:
        rows = [{"owner_id": OWNER, "title": "ok"}, {"title": "no owner"}]

        result = await storage.bulk_insert(EntityKind.CALENDAR_OBLIGATIONS, rows)

        assert result.is_err()
        assert storage.rows(EntityKind.CALENDAR_OBLIGATIONS) == []

    @pytest.mark.asyncio
    async def test_injected_failure_is_reported_as_value(self, storage: InMemoryStorage) -> None:
        storage.fail("bulk_insert", EntityKind.TREATMENT_RECORDS)

        result = await storage.bulk_insert(EntityKind.TREATMENT_RECORDS, [{"owner_id": OWNER}])

        assert result.is_err()
        assert isinstance(result.unwrap_err(), ConnectionError)
        assert storage.rows(EntityKind.TREATMENT_RECORDS) == []

    @pytest.mark.asyncio
    async def test_update_and_delete_respect_owner(self, storage: InMemoryStorage) -> None:
        patch = {"name": "Estrela"}

        denied = await storage.update(EntityKind.ANIMALS, "x1", patch, {"owner_id": OWNER})
        allowed = await storage.update(EntityKind.ANIMALS, "a1", patch, {"owner_id": OWNER})

        assert denied.is_err()
        assert allowed.unwrap()["name"] == "Estrela"
        assert (await storage.delete(EntityKind.ANIMALS, "x1", {"owner_id": OWNER})).is_err()
        assert (await storage.delete(EntityKind.ANIMALS, "a1", {"owner_id": OWNER})).unwrap()

    @pytest.mark.asyncio
    async def test_shared_rows_cannot_be_modified(self, storage: InMemoryStorage) -> None:
        result = await storage.delete(
            EntityKind.TREATMENT_TYPES, "tt-brucelose", {"owner_id": OWNER}
        )

        assert result.is_err()

    @pytest.mark.asyncio
    async def test_returned_rows_are_copies(self, storage: InMemoryStorage) -> None:
        [row] = (await storage.select(EntityKind.ANIMALS, {"id": "a1"})).unwrap()
        row["tag"] = "changed"

        [again] = (await storage.select(EntityKind.ANIMALS, {"id": "a1"})).unwrap()
        assert again["tag"] == "A1"


class TestStorageCaller:
    @pytest.mark.asyncio
    async def test_error_result_becomes_storage_error(
        self, storage: InMemoryStorage, caller: StorageCaller
    ) -> None:
        storage.fail("select", EntityKind.ANIMALS)

        with pytest.raises(StorageError) as exc_info:
            await caller.select(EntityKind.ANIMALS, {"owner_id": OWNER})

        assert exc_info.value.operation == "select"
        assert exc_info.value.kind == "animals"
        assert isinstance(exc_info.value.__cause__, ConnectionError)

    @pytest.mark.asyncio
    async def test_timeout_becomes_storage_error(self) -> None:
        slow = InMemoryStorage(latency_seconds=0.2)
        caller = StorageCaller(slow, timeout_seconds=0.01)

        with pytest.raises(StorageError) as exc_info:
            await caller.select(EntityKind.ANIMALS, {"owner_id": OWNER})

        assert isinstance(exc_info.value.cause, asyncio.TimeoutError)


class TestStaticIdentity:
    def test_sign_out_clears_owner(self) -> None:
        identity = StaticIdentity(OWNER)
        assert identity.current_owner_id() == OWNER

        identity.sign_out()
        assert identity.current_owner_id() is None
