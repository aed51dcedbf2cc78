"""
Tests for the notification store, notification center and overdue engine.

Testing philosophy:
- Real in-memory storage, fixed clock
- The Brucelose scenario end to end through the engine
"""

from collections.abc import Callable
from datetime import date, datetime, timedelta

import pytest
import pytest_asyncio
from conftest import FIXED_NOW, OWNER

from adapters.memory import InMemoryStorage
from herdcare.domain.models import Notification, NotificationType, SourceKind
from herdcare.services.catalog import TreatmentCatalog
from herdcare.services.gateways import EntityKind, StorageCaller
from herdcare.services.notifications import (
    NotificationCenter,
    NotificationStore,
    OverdueNotificationEngine,
    days_overdue,
    get_notification_store,
    overdue_alerts,
    overdue_fingerprint,
)
from herdcare.services.obligations import ObligationAggregator

TODAY = FIXED_NOW.date()


def _notification(notification_id: str, read: bool = False, created: datetime = FIXED_NOW):
    return Notification(
        id=notification_id,
        owner_id=OWNER,
        title="Tratamento em Atraso",
        message=f"mensagem {notification_id}",
        read=read,
        created_at=created,
    )


@pytest.fixture
def center(
    caller: StorageCaller,
    notification_store: NotificationStore,
    clock: Callable[[], datetime],
) -> NotificationCenter:
    return NotificationCenter(caller, notification_store, clock)


@pytest.fixture
def engine(caller: StorageCaller, center: NotificationCenter) -> OverdueNotificationEngine:
    return OverdueNotificationEngine(ObligationAggregator(caller), center)


@pytest_asyncio.fixture
async def treatment_types(caller: StorageCaller):
    catalog = TreatmentCatalog(caller)
    await catalog.refresh(OWNER)
    return catalog.as_mapping()


async def _apply_brucelose(caller: StorageCaller, animal_id: str = "a1") -> None:
    await caller.insert(
        EntityKind.TREATMENT_RECORDS,
        {
            "owner_id": OWNER,
            "animal_id": animal_id,
            "treatment_type_id": "tt-brucelose",
            "application_date": "2024-01-15",
            "next_due_date": "2024-07-15",
        },
    )


class TestNotificationStore:
    def test_publish_notifies_every_subscriber(self, notification_store: NotificationStore) -> None:
        badge: list[int] = []
        listing: list[tuple[Notification, ...]] = []
        notification_store.subscribe(lambda owner, items: badge.append(len(items)))
        notification_store.subscribe(lambda owner, items: listing.append(items))

        notification_store.publish(OWNER, [_notification("n1"), _notification("n2", read=True)])

        assert badge == [2]
        assert len(listing[0]) == 2
        assert notification_store.unread_count(OWNER) == 1

    def test_unsubscribe_stops_delivery(self, notification_store: NotificationStore) -> None:
        seen: list[str] = []
        unsubscribe = notification_store.subscribe(lambda owner, items: seen.append(owner))

        unsubscribe()
        unsubscribe()
        notification_store.publish(OWNER, [])

        assert seen == []

    def test_failing_subscriber_does_not_block_others(
        self, notification_store: NotificationStore
    ) -> None:
        seen: list[str] = []

        def broken(owner: str, items: tuple[Notification, ...]) -> None:
            raise RuntimeError("render failed")

        notification_store.subscribe(broken)
        notification_store.subscribe(lambda owner, items: seen.append(owner))

        notification_store.publish(OWNER, [_notification("n1")])

        assert seen == [OWNER]

    def test_duplicate_lookup_ignores_read_and_other_days(
        self, notification_store: NotificationStore
    ) -> None:
        notification_store.publish(
            OWNER,
            [
                _notification("n1", read=True),
                _notification("n2", created=FIXED_NOW - timedelta(days=1)),
            ],
        )

        assert notification_store.find_duplicate(
            OWNER, "Tratamento em Atraso", "mensagem n1", TODAY
        ) is None
        assert notification_store.find_duplicate(
            OWNER, "Tratamento em Atraso", "mensagem n2", TODAY
        ) is None

    def test_reserve_blocks_concurrent_twin(self, notification_store: NotificationStore) -> None:
        assert notification_store.reserve(OWNER, "t", "m", TODAY)
        assert not notification_store.reserve(OWNER, "t", "m", TODAY)

        notification_store.release(OWNER, "t", "m", TODAY)
        assert notification_store.reserve(OWNER, "t", "m", TODAY)

    def test_process_wide_store_is_a_singleton(self) -> None:
        assert get_notification_store() is get_notification_store()


class TestNotificationCenter:
    @pytest.mark.asyncio
    async def test_same_day_duplicate_is_stored_once(
        self, center: NotificationCenter, storage: InMemoryStorage
    ) -> None:
        first = await center.create_once(OWNER, "Aviso", "Cerca quebrada")
        second = await center.create_once(OWNER, "Aviso", "Cerca quebrada")

        assert first is not None
        assert second is None
        assert len(storage.rows(EntityKind.NOTIFICATIONS)) == 1

    @pytest.mark.asyncio
    async def test_read_notification_does_not_block_a_new_one(
        self, center: NotificationCenter
    ) -> None:
        first = await center.create_once(OWNER, "Aviso", "Cerca quebrada")
        assert first is not None
        await center.mark_as_read(OWNER, first.id)

        again = await center.create_once(OWNER, "Aviso", "Cerca quebrada")

        assert again is not None
        assert center.store.unread_count(OWNER) == 1

    @pytest.mark.asyncio
    async def test_mark_all_and_filter(self, center: NotificationCenter) -> None:
        await center.create_once(OWNER, "A", "1", NotificationType.WARNING)
        await center.create_once(OWNER, "B", "2", NotificationType.INFO)

        assert len(center.filter(OWNER, type=NotificationType.WARNING)) == 1
        assert await center.mark_all_as_read(OWNER) == 2
        assert center.filter(OWNER, read=False) == []

    @pytest.mark.asyncio
    async def test_dismiss_all_clears_storage_and_store(
        self, center: NotificationCenter, storage: InMemoryStorage
    ) -> None:
        await center.create_once(OWNER, "A", "1")
        await center.create_once(OWNER, "B", "2")

        assert await center.dismiss_all(OWNER) == 2
        assert storage.rows(EntityKind.NOTIFICATIONS) == []
        assert center.store.snapshot(OWNER) == ()

    @pytest.mark.asyncio
    async def test_refresh_orders_newest_first(
        self, center: NotificationCenter, caller: StorageCaller
    ) -> None:
        for day, title in [(1, "old"), (3, "new"), (2, "mid")]:
            await caller.insert(
                EntityKind.NOTIFICATIONS,
                {
                    "owner_id": OWNER,
                    "title": title,
                    "message": "m",
                    "created_at": datetime(2024, 7, day, 9).isoformat(),
                },
            )

        notifications = await center.refresh(OWNER)

        assert [n.title for n in notifications] == ["new", "mid", "old"]


class TestOverdueAlerts:
    def test_days_overdue(self) -> None:
        assert days_overdue(date(2024, 7, 15), date(2024, 7, 20)) == 5
        assert days_overdue(date(2024, 7, 20), date(2024, 7, 20)) == 0

    @pytest.mark.asyncio
    async def test_brucelose_alert_message(self, caller: StorageCaller, treatment_types) -> None:
        await _apply_brucelose(caller)
        snapshot = await ObligationAggregator(caller).load_snapshot(OWNER, treatment_types)

        [alert] = overdue_alerts(snapshot, TODAY)

        assert alert.source_kind is SourceKind.TREATMENT_RECORD
        assert alert.days_overdue == 5
        assert alert.title == "Tratamento em Atraso"
        assert "Brucelose" in alert.message
        assert "Brinco A1" in alert.message
        assert "5 dia(s)" in alert.message

    @pytest.mark.asyncio
    async def test_scheduled_treatment_alert_uses_brazilian_date(
        self, caller: StorageCaller
    ) -> None:
        await caller.insert(
            EntityKind.CALENDAR_OBLIGATIONS,
            {
                "owner_id": OWNER,
                "title": "Aplicar: Raiva",
                "date": "2024-07-18",
                "category": "treatment",
                "completed": False,
            },
        )
        snapshot = await ObligationAggregator(caller).load_snapshot(OWNER)

        [alert] = overdue_alerts(snapshot, TODAY)

        assert alert.title == "Tratamento Agendado em Atraso"
        assert "18/07/2024" in alert.message
        assert "2 dia(s)" in alert.message

    @pytest.mark.asyncio
    async def test_fingerprint_tracks_overdue_set(self, caller: StorageCaller) -> None:
        aggregator = ObligationAggregator(caller)
        empty = overdue_fingerprint(await aggregator.load_snapshot(OWNER), TODAY)

        await _apply_brucelose(caller)
        changed = overdue_fingerprint(await aggregator.load_snapshot(OWNER), TODAY)

        assert empty == "2024-07-20--"
        assert changed != empty
        assert changed.startswith("2024-07-20-")

    @pytest.mark.asyncio
    async def test_reapplied_treatment_keeps_earlier_record_in_fingerprint(
        self, caller: StorageCaller, treatment_types
    ) -> None:
        await _apply_brucelose(caller)
        await caller.insert(
            EntityKind.TREATMENT_RECORDS,
            {
                "owner_id": OWNER,
                "animal_id": "a1",
                "treatment_type_id": "tt-brucelose",
                "application_date": "2024-07-18",
                "next_due_date": "2025-01-18",
            },
        )
        snapshot = await ObligationAggregator(caller).load_snapshot(OWNER, treatment_types)
        [earlier] = [r for r in snapshot.records if r.next_due_date == date(2024, 7, 15)]

        [alert] = overdue_alerts(snapshot, TODAY)

        assert alert.source_id == earlier.id
        assert earlier.id in overdue_fingerprint(snapshot, TODAY)


class TestOverdueNotificationEngine:
    @pytest.mark.asyncio
    async def test_brucelose_emits_exactly_one_notification(
        self,
        engine: OverdueNotificationEngine,
        caller: StorageCaller,
        storage: InMemoryStorage,
        treatment_types,
    ) -> None:
        await _apply_brucelose(caller)

        emitted = await engine.evaluate(OWNER, TODAY, treatment_types)

        [row] = storage.rows(EntityKind.NOTIFICATIONS)
        assert emitted == 1
        assert "5 dia(s)" in row["message"]
        assert row["type"] == "warning"

    @pytest.mark.asyncio
    async def test_second_evaluation_with_unchanged_data_is_a_no_op(
        self,
        engine: OverdueNotificationEngine,
        caller: StorageCaller,
        storage: InMemoryStorage,
        treatment_types,
    ) -> None:
        await _apply_brucelose(caller)

        assert await engine.evaluate(OWNER, TODAY, treatment_types) == 1
        assert await engine.evaluate(OWNER, TODAY, treatment_types) == 0
        assert len(storage.rows(EntityKind.NOTIFICATIONS)) == 1

    @pytest.mark.asyncio
    async def test_changed_set_does_not_realert_existing_items(
        self,
        engine: OverdueNotificationEngine,
        caller: StorageCaller,
        storage: InMemoryStorage,
        treatment_types,
    ) -> None:
        await _apply_brucelose(caller, "a1")
        await engine.evaluate(OWNER, TODAY, treatment_types)

        await _apply_brucelose(caller, "a2")
        emitted = await engine.evaluate(OWNER, TODAY, treatment_types)

        assert emitted == 1
        assert len(storage.rows(EntityKind.NOTIFICATIONS)) == 2

    @pytest.mark.asyncio
    async def test_no_overdue_items_emit_nothing(
        self, engine: OverdueNotificationEngine, storage: InMemoryStorage
    ) -> None:
        assert await engine.evaluate(OWNER, TODAY) == 0
        assert storage.rows(EntityKind.NOTIFICATIONS) == []

    @pytest.mark.asyncio
    async def test_storage_failure_is_logged_and_retried(
        self,
        engine: OverdueNotificationEngine,
        caller: StorageCaller,
        storage: InMemoryStorage,
        treatment_types,
    ) -> None:
        await _apply_brucelose(caller)
        storage.fail("insert", EntityKind.NOTIFICATIONS)

        assert await engine.evaluate(OWNER, TODAY, treatment_types) == 0

        storage.recover()
        assert await engine.evaluate(OWNER, TODAY, treatment_types) == 1

    @pytest.mark.asyncio
    async def test_unreadable_sources_do_not_raise(
        self, engine: OverdueNotificationEngine, storage: InMemoryStorage
    ) -> None:
        storage.fail("select", EntityKind.TREATMENT_RECORDS)

        assert await engine.evaluate(OWNER, TODAY) == 0
