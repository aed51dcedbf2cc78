"""
Herd health service: the presentation-facing facade.

Wires the compliance pipeline for one signed-in owner:
1. Treatment catalog and scope resolution validate a request
2. Registrations and schedules are written through the storage gateway
3. The obligation timeline is recomputed from storage on every read
4. The overdue engine re-evaluates after every mutation

Every command and accessor is a guarded no-op returning None while no
identity is present.
"""

import functools
from collections.abc import Awaitable, Callable
from datetime import UTC, date, datetime
from typing import Any, Concatenate, ParamSpec, TypeVar

from herdcare.config import AppConfig, get_config
from herdcare.domain.models import (
    ApplicationMetadata,
    BatchScope,
    CalendarObligation,
    ComplianceSummary,
    IndividualScope,
    Notification,
    NotificationChannel,
    NotificationType,
    ObligationCategory,
    ObligationRef,
    ObligationTimeline,
    TreatmentRecord,
    TreatmentType,
    to_calendar_date,
)
from herdcare.exceptions import HerdCareError, MissingReferenceError, ValidationError
from herdcare.services.catalog import TreatmentCatalog
from herdcare.services.completion import ApplicationOutcome, CompletionStateMachine
from herdcare.services.dose_scheduler import compute_next_due, preview_next_due
from herdcare.services.gateways import (
    EntityKind,
    IdentityProvider,
    StorageCaller,
    StorageGateway,
    logger,
)
from herdcare.services.notifications import (
    NotificationCenter,
    NotificationStore,
    OverdueNotificationEngine,
    get_notification_store,
)
from herdcare.services.obligations import ObligationAggregator, summarize_compliance
from herdcare.services.registration import TreatmentRegistrar
from herdcare.services.scope_resolver import ScopeResolver, validate_scope

P = ParamSpec("P")
R = TypeVar("R")
T = TypeVar("T")

EDITABLE_RECORD_FIELDS = frozenset(
    {
        "application_date",
        "treatment_type_id",
        "batch_number",
        "manufacturer",
        "responsible",
        "notes",
    }
)


def requires_owner(
    method: Callable[Concatenate["HerdHealthService", str, P], Awaitable[R]],
) -> Callable[Concatenate["HerdHealthService", P], Awaitable[R | None]]:
    """Resolve the current owner and pass it in, or return None without any I/O."""

    @functools.wraps(method)
    async def wrapper(self: "HerdHealthService", *args: P.args, **kwargs: P.kwargs) -> R | None:
        owner_id = self.identity.current_owner_id()
        if not owner_id:
            self.logger.debug("no_identity", operation=method.__name__)
            return None
        return await method(self, owner_id, *args, **kwargs)

    return wrapper


def _require(value: T | None, message: str) -> T:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(message)
    return value


class HerdHealthService:
    """
    Orchestrates treatment compliance for the signed-in owner.

    Storage and identity are injected collaborators; the clock is injectable
    so "today" is deterministic under test.
    """

    def __init__(
        self,
        storage: StorageGateway,
        identity: IdentityProvider,
        config: AppConfig | None = None,
        clock: Callable[[], datetime] | None = None,
        store: NotificationStore | None = None,
    ) -> None:
        self.config = config or get_config()
        self.logger = logger.bind(component="herd_health")

        self.identity = identity
        self.clock = clock or (lambda: datetime.now(UTC))
        self.storage = StorageCaller(storage, timeout_seconds=self.config.storage.timeout_seconds)

        compliance = self.config.compliance
        self.catalog = TreatmentCatalog(self.storage)
        self.resolver = ScopeResolver(self.storage)
        self.registrar = TreatmentRegistrar(self.storage, follow_up_icon=compliance.follow_up_icon)
        self.aggregator = ObligationAggregator(
            self.storage,
            upcoming_days=compliance.upcoming_window_days,
            past_days=compliance.history_window_days,
        )
        self.notification_center = NotificationCenter(
            self.storage,
            store or get_notification_store(),
            self.clock,
            channel=NotificationChannel(compliance.notification_channel),
        )
        self.overdue_engine = OverdueNotificationEngine(self.aggregator, self.notification_center)
        self.completion = CompletionStateMachine(self.storage, self.catalog, self.registrar)

        self._catalog_owner: str | None = None
        self._notifications_owner: str | None = None
        self.logger.info(
            "herd_health_service_initialized",
            environment=self.config.environment,
            storage_url=self.config.storage.url,
        )

    def today(self) -> date:
        return to_calendar_date(self.clock())

    async def _ensure_catalog(self, owner_id: str) -> bool:
        """Load the catalog for owner_id; True when this call read it."""
        if self._catalog_owner == owner_id:
            return False
        await self.catalog.refresh(owner_id)
        self._catalog_owner = owner_id
        return True

    async def _ensure_loaded(self, owner_id: str) -> None:
        await self._ensure_catalog(owner_id)
        if self._notifications_owner != owner_id:
            await self.notification_center.refresh(owner_id)
            self._notifications_owner = owner_id

    async def _treatment_type(self, owner_id: str, type_id: str) -> TreatmentType:
        if await self._ensure_catalog(owner_id):
            return self.catalog.get(type_id)
        try:
            return self.catalog.get(type_id)
        except MissingReferenceError:
            # types may have been added since the last load
            await self.catalog.refresh(owner_id)
            return self.catalog.get(type_id)

    async def _reevaluate(self, owner_id: str) -> int:
        try:
            await self._ensure_loaded(owner_id)
        except HerdCareError as e:
            self.logger.error("overdue_evaluation_failed", owner_id=owner_id, error=str(e))
            return 0
        return await self.overdue_engine.evaluate(
            owner_id, self.today(), self.catalog.as_mapping()
        )

    # Loading

    @requires_owner
    async def load(self, owner_id: str) -> ObligationTimeline:
        """Refresh reference data and notifications, evaluate, return the timeline."""
        self._catalog_owner = self._notifications_owner = None
        await self._ensure_loaded(owner_id)
        await self._reevaluate(owner_id)
        return await self.aggregator.load(owner_id, self.today(), self.catalog.as_mapping())

    # Treatment registration

    @requires_owner
    async def register_treatment(
        self,
        owner_id: str,
        scope: IndividualScope | BatchScope | None,
        treatment_type_id: str | None,
        application_date: date | None,
        metadata: ApplicationMetadata | None = None,
    ) -> list[TreatmentRecord]:
        """Record an application for one animal or a whole batch."""
        treatment_type_id = _require(treatment_type_id, "A treatment type must be selected")
        application_date = _require(application_date, "Application date is required")
        scope = validate_scope(scope)

        treatment_type = await self._treatment_type(owner_id, treatment_type_id)
        animals = await self.resolver.resolve(owner_id, scope)
        records = await self.registrar.register(
            owner_id,
            animals,
            treatment_type,
            to_calendar_date(application_date),
            metadata or ApplicationMetadata(),
        )
        await self._reevaluate(owner_id)
        return records

    @requires_owner
    async def schedule_future_treatment(
        self,
        owner_id: str,
        scope: IndividualScope | BatchScope | None,
        treatment_type_id: str | None,
        scheduled_date: date | None,
        metadata: ApplicationMetadata | None = None,
    ) -> list[CalendarObligation]:
        """Create one linked treatment calendar entry per target animal."""
        treatment_type_id = _require(treatment_type_id, "A treatment type must be selected")
        scheduled_date = _require(scheduled_date, "Scheduled date is required")
        scope = validate_scope(scope)

        treatment_type = await self._treatment_type(owner_id, treatment_type_id)
        animals = await self.resolver.resolve(owner_id, scope)
        obligations = await self.registrar.schedule(
            owner_id,
            animals,
            treatment_type,
            to_calendar_date(scheduled_date),
            metadata or ApplicationMetadata(),
        )
        await self._reevaluate(owner_id)
        return obligations

    @requires_owner
    async def update_treatment(
        self, owner_id: str, record_id: str, patch: dict[str, Any]
    ) -> TreatmentRecord:
        """Edit a record; next-due is recomputed when its date or type changes."""
        _require(record_id, "A treatment record must be selected")
        unknown = set(patch) - EDITABLE_RECORD_FIELDS
        if unknown:
            raise ValidationError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")
        if "application_date" in patch:
            _require(patch["application_date"], "Application date is required")
        if "treatment_type_id" in patch:
            _require(patch["treatment_type_id"], "A treatment type must be selected")

        rows = await self.storage.select(
            EntityKind.TREATMENT_RECORDS, {"owner_id": owner_id, "id": record_id}
        )
        if not rows:
            raise MissingReferenceError(f"Unknown treatment record: {record_id}")
        current = TreatmentRecord.model_validate(rows[0])

        changes = dict(patch)
        if "application_date" in changes or "treatment_type_id" in changes:
            application_date = to_calendar_date(
                changes.get("application_date", current.application_date)
            )
            treatment_type = await self._treatment_type(
                owner_id, changes.get("treatment_type_id", current.treatment_type_id)
            )
            next_due = compute_next_due(application_date, treatment_type.interval_months)
            changes["application_date"] = application_date.isoformat()
            changes["next_due_date"] = next_due.isoformat() if next_due else None

        row = await self.storage.update(
            EntityKind.TREATMENT_RECORDS, record_id, changes, {"owner_id": owner_id}
        )
        self.logger.info("treatment_updated", owner_id=owner_id, id=record_id, fields=sorted(patch))
        await self._reevaluate(owner_id)
        return TreatmentRecord.model_validate(row)

    @requires_owner
    async def delete_treatment(self, owner_id: str, record_id: str) -> bool:
        _require(record_id, "A treatment record must be selected")
        deleted = await self.storage.delete(
            EntityKind.TREATMENT_RECORDS, record_id, {"owner_id": owner_id}
        )
        self.logger.info("treatment_deleted", owner_id=owner_id, id=record_id)
        await self._reevaluate(owner_id)
        return deleted

    @requires_owner
    async def preview_follow_up(
        self,
        owner_id: str,
        treatment_type_id: str,
        application_date: date,
        override: date | None = None,
    ) -> date | None:
        """Date a follow-up dose would be scheduled for, without writing anything."""
        _require(treatment_type_id, "A treatment type must be selected")
        _require(application_date, "Application date is required")
        treatment_type = await self._treatment_type(owner_id, treatment_type_id)
        return preview_next_due(to_calendar_date(application_date), treatment_type, override)

    @requires_owner
    async def treatment_types(self, owner_id: str) -> list[TreatmentType]:
        await self._ensure_loaded(owner_id)
        return self.catalog.all()

    # Calendar obligations

    @requires_owner
    async def create_obligation(
        self,
        owner_id: str,
        title: str,
        obligation_date: date | None,
        category: ObligationCategory | str | None = None,
        description: str | None = None,
        icon: str | None = None,
    ) -> CalendarObligation:
        """Create an ad hoc calendar entry (task, appointment, handling, ...)."""
        _require(title, "A title is required")
        obligation_date = _require(obligation_date, "A date is required")
        resolved = ObligationCategory.parse(category)

        row = await self.storage.insert(
            EntityKind.CALENDAR_OBLIGATIONS,
            {
                "owner_id": owner_id,
                "title": title.strip(),
                "description": description,
                "date": to_calendar_date(obligation_date).isoformat(),
                "category": resolved.value,
                "icon": icon or resolved.default_icon,
                "completed": False,
            },
        )
        obligation = CalendarObligation.model_validate(row)
        self.logger.info(
            "obligation_created", owner_id=owner_id, id=obligation.id, category=resolved.value
        )
        await self._reevaluate(owner_id)
        return obligation

    @requires_owner
    async def delete_obligation(self, owner_id: str, obligation_id: str) -> bool:
        _require(obligation_id, "An obligation must be selected")
        deleted = await self.storage.delete(
            EntityKind.CALENDAR_OBLIGATIONS, obligation_id, {"owner_id": owner_id}
        )
        self.logger.info("obligation_deleted", owner_id=owner_id, id=obligation_id)
        await self._reevaluate(owner_id)
        return deleted

    # Completion

    @requires_owner
    async def mark_applied(
        self,
        owner_id: str,
        ref: ObligationRef,
        application_date: date | None,
        metadata: ApplicationMetadata | None = None,
        schedule_follow_up: bool = False,
        follow_up_date: date | None = None,
    ) -> ApplicationOutcome:
        _require(ref, "An obligation must be selected")
        application_date = _require(application_date, "Application date is required")
        await self._ensure_loaded(owner_id)
        outcome = await self.completion.mark_applied(
            owner_id,
            ref,
            to_calendar_date(application_date),
            metadata,
            schedule_follow_up=schedule_follow_up,
            follow_up_date=follow_up_date,
        )
        await self._reevaluate(owner_id)
        return outcome

    @requires_owner
    async def reopen(self, owner_id: str, ref: ObligationRef) -> CalendarObligation:
        _require(ref, "An obligation must be selected")
        obligation = await self.completion.reopen(owner_id, ref)
        await self._reevaluate(owner_id)
        return obligation

    # Notifications

    @requires_owner
    async def dismiss_notification(self, owner_id: str, notification_id: str) -> None:
        await self._ensure_loaded(owner_id)
        await self.notification_center.dismiss(owner_id, notification_id)

    @requires_owner
    async def dismiss_all_notifications(self, owner_id: str) -> int:
        await self._ensure_loaded(owner_id)
        return await self.notification_center.dismiss_all(owner_id)

    @requires_owner
    async def mark_notification_read(self, owner_id: str, notification_id: str) -> None:
        await self._ensure_loaded(owner_id)
        await self.notification_center.mark_as_read(owner_id, notification_id)

    @requires_owner
    async def mark_all_notifications_read(self, owner_id: str) -> int:
        await self._ensure_loaded(owner_id)
        return await self.notification_center.mark_all_as_read(owner_id)

    # Read accessors

    @requires_owner
    async def timeline(self, owner_id: str) -> ObligationTimeline:
        await self._ensure_loaded(owner_id)
        return await self.aggregator.load(owner_id, self.today(), self.catalog.as_mapping())

    @requires_owner
    async def notifications(
        self,
        owner_id: str,
        read: bool | None = None,
        type: NotificationType | None = None,
    ) -> list[Notification]:
        """Newest first, optionally filtered by read state and type."""
        await self._ensure_loaded(owner_id)
        return self.notification_center.filter(owner_id, read=read, type=type)

    @requires_owner
    async def unread_count(self, owner_id: str) -> int:
        await self._ensure_loaded(owner_id)
        return self.notification_center.store.unread_count(owner_id)

    @requires_owner
    async def compliance_summary(self, owner_id: str) -> ComplianceSummary:
        rows = await self.storage.select(EntityKind.TREATMENT_RECORDS, {"owner_id": owner_id})
        records = [TreatmentRecord.model_validate(row) for row in rows]
        return summarize_compliance(
            records, self.today(), self.config.compliance.summary_window_days
        )

    @requires_owner
    async def evaluate_overdue(self, owner_id: str) -> int:
        """Run the overdue engine now; returns the number of notifications emitted."""
        await self._ensure_loaded(owner_id)
        return await self._reevaluate(owner_id)
