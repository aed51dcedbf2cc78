"""
Overdue detection and notification emission.

Three pieces:
- NotificationStore: process-wide cache of notifications per owner. It is
  mutated only through publish(), which replaces the owner's snapshot and
  synchronously notifies every subscriber, so several observers (a badge
  counter, a notification list) stay consistent without re-reading storage.
- NotificationCenter: persistence-backed commands (create once, read,
  dismiss) that publish their outcome to the store.
- OverdueNotificationEngine: re-evaluates an owner's obligations after each
  data change and emits one alert per overdue item, guarded by a fingerprint
  of the overdue set and by the same-day dedup predicate.
"""

import math
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from datetime import date, datetime
from functools import lru_cache

from herdcare.domain.models import (
    Notification,
    NotificationChannel,
    NotificationType,
    SourceKind,
    TreatmentType,
    to_calendar_date,
)
from herdcare.services.gateways import EntityKind, StorageCaller, logger
from herdcare.services.obligations import (
    ObligationAggregator,
    ObligationSnapshot,
    overdue_records,
    overdue_scheduled_treatments,
)

Subscriber = Callable[[str, tuple[Notification, ...]], None]
DedupKey = tuple[str, str, str, date]

OVERDUE_RECORD_TITLE = "Tratamento em Atraso"
OVERDUE_SCHEDULED_TITLE = "Tratamento Agendado em Atraso"


class NotificationStore:
    """Shared notification cache with publish/subscribe fan-out."""

    def __init__(self) -> None:
        self._by_owner: dict[str, tuple[Notification, ...]] = {}
        self._subscribers: list[Subscriber] = []
        self._in_flight: set[DedupKey] = set()
        self.logger = logger.bind(component="notification_store")

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a change listener. Returns a callable that unsubscribes it."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, owner_id: str, notifications: Iterable[Notification]) -> None:
        snapshot = tuple(notifications)
        self._by_owner[owner_id] = snapshot

        for callback in list(self._subscribers):
            try:
                callback(owner_id, snapshot)
            except Exception as e:
                self.logger.error("subscriber_failed", owner_id=owner_id, error=str(e))

    def snapshot(self, owner_id: str) -> tuple[Notification, ...]:
        return self._by_owner.get(owner_id, ())

    def unread_count(self, owner_id: str) -> int:
        return sum(1 for n in self.snapshot(owner_id) if not n.read)

    def find_duplicate(
        self, owner_id: str, title: str, message: str, day: date
    ) -> Notification | None:
        """Unread notification with the same title and message created on ``day``."""
        for notification in self.snapshot(owner_id):
            if notification.read:
                continue
            if notification.dedup_key == (title, message, day):
                return notification
        return None

    def reserve(self, owner_id: str, title: str, message: str, day: date) -> bool:
        """Claim a dedup key for an emission in progress; False if it is taken."""
        key = (owner_id, title, message, day)
        if key in self._in_flight or self.find_duplicate(owner_id, title, message, day):
            return False
        self._in_flight.add(key)
        return True

    def release(self, owner_id: str, title: str, message: str, day: date) -> None:
        self._in_flight.discard((owner_id, title, message, day))

    def clear(self, owner_id: str | None = None) -> None:
        owners = [owner_id] if owner_id is not None else list(self._by_owner)
        for owner in owners:
            self.publish(owner, ())


@lru_cache
def get_notification_store() -> NotificationStore:
    """The process-wide notification store."""
    return NotificationStore()


class NotificationCenter:
    """Notification commands for one service, persisted then published."""

    def __init__(
        self,
        storage: StorageCaller,
        store: NotificationStore,
        clock: Callable[[], datetime],
        channel: NotificationChannel = NotificationChannel.APP,
    ) -> None:
        self.storage = storage
        self.store = store
        self.clock = clock
        self.channel = channel
        self.logger = logger.bind(component="notification_center")

    async def refresh(self, owner_id: str) -> tuple[Notification, ...]:
        rows = await self.storage.select(EntityKind.NOTIFICATIONS, {"owner_id": owner_id})
        notifications = sorted(
            (Notification.model_validate(row) for row in rows),
            key=lambda n: n.created_at,
            reverse=True,
        )
        self.store.publish(owner_id, notifications)
        return self.store.snapshot(owner_id)

    async def create_once(
        self,
        owner_id: str,
        title: str,
        message: str,
        type: NotificationType = NotificationType.INFO,
        channel: NotificationChannel | None = None,
    ) -> Notification | None:
        """Create a notification unless an unread twin was created today."""
        now = self.clock()
        day = to_calendar_date(now)

        if not self.store.reserve(owner_id, title, message, day):
            self.logger.debug("duplicate_notification_skipped", owner_id=owner_id, title=title)
            return None

        try:
            row = await self.storage.insert(
                EntityKind.NOTIFICATIONS,
                {
                    "owner_id": owner_id,
                    "title": title,
                    "message": message,
                    "type": type.value,
                    "channel": (channel or self.channel).value,
                    "read": False,
                    "created_at": now.isoformat(),
                },
            )
            notification = Notification.model_validate(row)
            self.store.publish(owner_id, (notification, *self.store.snapshot(owner_id)))
        finally:
            self.store.release(owner_id, title, message, day)

        self.logger.info(
            "notification_created", owner_id=owner_id, title=title, type=notification.type.value
        )
        return notification

    async def mark_as_read(self, owner_id: str, notification_id: str) -> None:
        await self.storage.update(
            EntityKind.NOTIFICATIONS, notification_id, {"read": True}, {"owner_id": owner_id}
        )
        self.store.publish(
            owner_id,
            (
                n.model_copy(update={"read": True}) if n.id == notification_id else n
                for n in self.store.snapshot(owner_id)
            ),
        )

    async def mark_all_as_read(self, owner_id: str) -> int:
        marked = 0
        for notification in self.store.snapshot(owner_id):
            if notification.read:
                continue
            await self.mark_as_read(owner_id, notification.id)
            marked += 1
        return marked

    async def dismiss(self, owner_id: str, notification_id: str) -> None:
        await self.storage.delete(EntityKind.NOTIFICATIONS, notification_id, {"owner_id": owner_id})
        self.store.publish(
            owner_id, (n for n in self.store.snapshot(owner_id) if n.id != notification_id)
        )
        self.logger.info("notification_dismissed", owner_id=owner_id, id=notification_id)

    async def dismiss_all(self, owner_id: str) -> int:
        remaining = list(self.store.snapshot(owner_id))
        dismissed = 0
        try:
            for notification in list(remaining):
                await self.storage.delete(
                    EntityKind.NOTIFICATIONS, notification.id, {"owner_id": owner_id}
                )
                remaining.remove(notification)
                dismissed += 1
        finally:
            self.store.publish(owner_id, remaining)
        self.logger.info("notifications_cleared", owner_id=owner_id, count=dismissed)
        return dismissed

    def filter(
        self,
        owner_id: str,
        read: bool | None = None,
        type: NotificationType | None = None,
    ) -> list[Notification]:
        return [
            n
            for n in self.store.snapshot(owner_id)
            if (read is None or n.read == read) and (type is None or n.type == type)
        ]


@dataclass(frozen=True)
class OverdueAlert:
    """An overdue obligation rendered as a notification title and message."""

    source_kind: SourceKind
    source_id: str
    due_date: date
    days_overdue: int
    title: str
    message: str


def days_overdue(due_date: date, today: date) -> int:
    elapsed = to_calendar_date(today) - to_calendar_date(due_date)
    return math.ceil(elapsed.total_seconds() / 86400)


def overdue_fingerprint(snapshot: ObligationSnapshot, today: date) -> str:
    """Today's date plus the sorted ids of everything currently overdue."""
    record_ids = sorted(r.id for r in overdue_records(snapshot.records, today))
    calendar_ids = sorted(o.id for o in overdue_scheduled_treatments(snapshot.calendar, today))
    return f"{to_calendar_date(today).isoformat()}-{','.join(record_ids)}-{','.join(calendar_ids)}"


def overdue_alerts(snapshot: ObligationSnapshot, today: date) -> list[OverdueAlert]:
    """Alerts for pending next doses and unapplied scheduled treatments past their date.

    Records whose animal or treatment type is unknown are skipped: there is
    nothing meaningful to tell the owner about them.
    """
    treatment_types = snapshot.treatment_types or {}
    animals = snapshot.animals or {}
    alerts = []

    for record in overdue_records(snapshot.records, today):
        animal = animals.get(record.animal_id)
        treatment_type = treatment_types.get(record.treatment_type_id)
        if record.next_due_date is None or animal is None or treatment_type is None:
            continue
        days = days_overdue(record.next_due_date, today)
        alerts.append(
            OverdueAlert(
                source_kind=SourceKind.TREATMENT_RECORD,
                source_id=record.id,
                due_date=record.next_due_date,
                days_overdue=days,
                title=OVERDUE_RECORD_TITLE,
                message=(
                    f"Próxima dose de {treatment_type.name} para {animal.display_label} "
                    f"está atrasada há {days} dia(s)"
                ),
            )
        )

    for obligation in overdue_scheduled_treatments(snapshot.calendar, today):
        days = days_overdue(obligation.date, today)
        alerts.append(
            OverdueAlert(
                source_kind=SourceKind.CALENDAR,
                source_id=obligation.id,
                due_date=obligation.date,
                days_overdue=days,
                title=OVERDUE_SCHEDULED_TITLE,
                message=(
                    f"{obligation.title} estava agendado para "
                    f"{obligation.date.strftime('%d/%m/%Y')} ({days} dia(s) de atraso)"
                ),
            )
        )

    return alerts


class OverdueNotificationEngine:
    """
    Idle -> Evaluating -> Idle, once per data change and per owner.

    An unchanged fingerprint makes evaluation a no-op, so re-renders and
    polls never re-alert. Failures are logged and never escape: one owner's
    broken evaluation does not stop the cycle for anybody else.
    """

    def __init__(
        self,
        aggregator: ObligationAggregator,
        center: NotificationCenter,
    ) -> None:
        self.aggregator = aggregator
        self.center = center
        self.logger = logger.bind(component="overdue_engine")
        self._fingerprints: dict[str, str] = {}

    async def evaluate(
        self,
        owner_id: str,
        today: date,
        treatment_types: Mapping[str, TreatmentType] | None = None,
    ) -> int:
        """Load the owner's obligations and emit alerts for new overdue items."""
        try:
            snapshot = await self.aggregator.load_snapshot(owner_id, treatment_types)
        except Exception as e:
            self.logger.error("overdue_evaluation_failed", owner_id=owner_id, error=str(e))
            return 0
        return await self.evaluate_snapshot(owner_id, snapshot, today)

    async def evaluate_snapshot(
        self, owner_id: str, snapshot: ObligationSnapshot, today: date
    ) -> int:
        fingerprint = overdue_fingerprint(snapshot, today)
        if self._fingerprints.get(owner_id) == fingerprint:
            self.logger.debug("overdue_evaluation_skipped", owner_id=owner_id)
            return 0
        self._fingerprints[owner_id] = fingerprint

        alerts = overdue_alerts(snapshot, today)
        emitted = 0
        try:
            for alert in alerts:
                notification = await self.center.create_once(
                    owner_id, alert.title, alert.message, NotificationType.WARNING
                )
                if notification is not None:
                    emitted += 1
        except Exception as e:
            # retry on the next evaluation instead of trusting a half-done pass
            self._fingerprints.pop(owner_id, None)
            self.logger.error(
                "overdue_evaluation_failed", owner_id=owner_id, emitted=emitted, error=str(e)
            )
            return emitted

        self.logger.info(
            "overdue_evaluation_completed",
            owner_id=owner_id,
            overdue_count=len(alerts),
            notifications_emitted=emitted,
        )
        return emitted

    def reset(self, owner_id: str | None = None) -> None:
        """Forget fingerprints so the next evaluation runs in full."""
        if owner_id is None:
            self._fingerprints.clear()
        else:
            self._fingerprints.pop(owner_id, None)
