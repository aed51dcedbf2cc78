"""Shared fixtures: a seeded in-memory store, a fixed clock and a fresh notification store."""

from collections.abc import Callable
from datetime import UTC, datetime

import pytest

from adapters.memory import InMemoryStorage, StaticIdentity
from herdcare.config import AppConfig
from herdcare.services.gateways import EntityKind, StorageCaller
from herdcare.services.herd_health import HerdHealthService
from herdcare.services.notifications import NotificationStore

OWNER = "owner-1"
OTHER_OWNER = "owner-2"

FIXED_NOW = datetime(2024, 7, 20, 12, 0, tzinfo=UTC)


def seed_herd(storage: InMemoryStorage) -> None:
    storage.seed(
        EntityKind.TREATMENT_TYPES,
        [
            {"id": "tt-brucelose", "name": "Brucelose", "interval_months": 6},
            {"id": "tt-raiva", "name": "Raiva", "interval_months": 12, "owner_id": OWNER},
            {"id": "tt-vermifugo", "name": "Vermífugo", "interval_months": None},
            {"id": "tt-private", "name": "Privada", "interval_months": 3, "owner_id": OTHER_OWNER},
        ],
    )
    storage.seed(
        EntityKind.ANIMALS,
        [
            {"id": "a1", "owner_id": OWNER, "tag": "A1", "batch": "Lote B"},
            {"id": "a2", "owner_id": OWNER, "tag": "A2", "name": "Mimosa", "batch": "Lote B"},
            {"id": "a3", "owner_id": OWNER, "tag": "A3", "batch": "lote b"},
            {"id": "x1", "owner_id": OTHER_OWNER, "tag": "X1", "batch": "Lote B"},
        ],
    )


@pytest.fixture
def storage() -> InMemoryStorage:
    storage = InMemoryStorage()
    seed_herd(storage)
    return storage


@pytest.fixture
def caller(storage: InMemoryStorage) -> StorageCaller:
    return StorageCaller(storage, timeout_seconds=1.0)


@pytest.fixture
def clock() -> Callable[[], datetime]:
    return lambda: FIXED_NOW


@pytest.fixture
def notification_store() -> NotificationStore:
    return NotificationStore()


@pytest.fixture
def identity() -> StaticIdentity:
    return StaticIdentity(OWNER)


@pytest.fixture
def service(
    storage: InMemoryStorage,
    identity: StaticIdentity,
    clock: Callable[[], datetime],
    notification_store: NotificationStore,
) -> HerdHealthService:
    return HerdHealthService(
        storage, identity, config=AppConfig(), clock=clock, store=notification_store
    )
