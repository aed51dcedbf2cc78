"""
Completion and reopening of obligations.

    Pending --mark_applied--> Applied      (terminal for that instance)
    Applied --reopen-------> Pending       (calendar obligations only)

Applying a treatment never mutates the historical record: it writes a new
TreatmentRecord whose own next-due date starts the next Pending instance.
Treatment records cannot be reopened; an administration that happened
cannot be undone, only corrected by a new record.
"""

from dataclasses import dataclass
from datetime import date
from typing import assert_never

from herdcare.domain.models import (
    Animal,
    ApplicationMetadata,
    CalendarObligation,
    ObligationRef,
    SourceKind,
    TreatmentRecord,
    TreatmentType,
)
from herdcare.exceptions import MissingReferenceError, UnsupportedTransitionError, ValidationError
from herdcare.services.catalog import TreatmentCatalog
from herdcare.services.gateways import EntityKind, StorageCaller, logger
from herdcare.services.registration import TreatmentRegistrar


@dataclass(frozen=True)
class ApplicationOutcome:
    """Everything written by one mark_applied call."""

    completed_obligation: CalendarObligation | None = None
    record: TreatmentRecord | None = None
    follow_up: CalendarObligation | None = None


class CompletionStateMachine:
    """Moves obligations between Pending and Applied."""

    def __init__(
        self,
        storage: StorageCaller,
        catalog: TreatmentCatalog,
        registrar: TreatmentRegistrar,
    ) -> None:
        self.storage = storage
        self.catalog = catalog
        self.registrar = registrar
        self.logger = logger.bind(component="completion")

    async def mark_applied(
        self,
        owner_id: str,
        ref: ObligationRef,
        application_date: date | None,
        metadata: ApplicationMetadata | None = None,
        schedule_follow_up: bool = False,
        follow_up_date: date | None = None,
    ) -> ApplicationOutcome:
        """Record an application. Follow-up calendar entries are opt-in only."""
        if application_date is None:
            raise ValidationError("Application date is required")
        metadata = metadata or ApplicationMetadata()

        match ref.source_kind:
            case SourceKind.CALENDAR:
                outcome = await self._apply_calendar(owner_id, ref.id, application_date, metadata)
            case SourceKind.TREATMENT_RECORD:
                outcome = await self._apply_record(owner_id, ref.id, application_date, metadata)
            case _:
                assert_never(ref.source_kind)

        if schedule_follow_up:
            follow_up = await self._schedule_follow_up(
                owner_id, outcome, application_date, follow_up_date
            )
            outcome = ApplicationOutcome(
                completed_obligation=outcome.completed_obligation,
                record=outcome.record,
                follow_up=follow_up,
            )

        self.logger.info(
            "obligation_applied",
            owner_id=owner_id,
            source_kind=ref.source_kind.value,
            id=ref.id,
            record_created=outcome.record is not None,
            follow_up_scheduled=outcome.follow_up is not None,
        )
        return outcome

    async def reopen(self, owner_id: str, ref: ObligationRef) -> CalendarObligation:
        match ref.source_kind:
            case SourceKind.CALENDAR:
                await self._load_calendar(owner_id, ref.id)
                row = await self.storage.update(
                    EntityKind.CALENDAR_OBLIGATIONS,
                    ref.id,
                    {"completed": False},
                    {"owner_id": owner_id},
                )
                self.logger.info("obligation_reopened", owner_id=owner_id, id=ref.id)
                return CalendarObligation.model_validate(row)
            case SourceKind.TREATMENT_RECORD:
                raise UnsupportedTransitionError(
                    "Applied treatment records cannot be reopened; register a correction instead"
                )
            case _:
                assert_never(ref.source_kind)

    async def _apply_calendar(
        self,
        owner_id: str,
        obligation_id: str,
        application_date: date,
        metadata: ApplicationMetadata,
    ) -> ApplicationOutcome:
        obligation = await self._load_calendar(owner_id, obligation_id)
        if obligation.completed:
            raise UnsupportedTransitionError(f"Obligation {obligation_id} is already applied")

        treatment_type: TreatmentType | None = None
        animal: Animal | None = None
        if obligation.treatment_type_id is not None and obligation.animal_id is not None:
            treatment_type = self.catalog.get(obligation.treatment_type_id)
            animal = await self._load_animal(owner_id, obligation.animal_id)

        row = await self.storage.update(
            EntityKind.CALENDAR_OBLIGATIONS,
            obligation_id,
            {"completed": True},
            {"owner_id": owner_id},
        )
        completed = CalendarObligation.model_validate(row)

        record = None
        if treatment_type is not None and animal is not None:
            [record] = await self.registrar.register(
                owner_id, [animal], treatment_type, application_date, metadata
            )
        return ApplicationOutcome(completed_obligation=completed, record=record)

    async def _apply_record(
        self,
        owner_id: str,
        record_id: str,
        application_date: date,
        metadata: ApplicationMetadata,
    ) -> ApplicationOutcome:
        rows = await self.storage.select(
            EntityKind.TREATMENT_RECORDS, {"owner_id": owner_id, "id": record_id}
        )
        if not rows:
            raise MissingReferenceError(f"Unknown treatment record: {record_id}")
        record = TreatmentRecord.model_validate(rows[0])
        treatment_type = self.catalog.get(record.treatment_type_id)

        animal = await self._load_animal(owner_id, record.animal_id)
        [new_record] = await self.registrar.register(
            owner_id, [animal], treatment_type, application_date, metadata
        )
        return ApplicationOutcome(record=new_record)

    async def _schedule_follow_up(
        self,
        owner_id: str,
        outcome: ApplicationOutcome,
        application_date: date,
        follow_up_date: date | None,
    ) -> CalendarObligation | None:
        if outcome.record is None:
            self.logger.debug("follow_up_skipped_unlinked", owner_id=owner_id)
            return None
        treatment_type = self.catalog.get(outcome.record.treatment_type_id)
        animal = await self._load_animal(owner_id, outcome.record.animal_id)
        return await self.registrar.schedule_follow_up(
            owner_id, animal, treatment_type, application_date, follow_up_date
        )

    async def _load_calendar(self, owner_id: str, obligation_id: str) -> CalendarObligation:
        rows = await self.storage.select(
            EntityKind.CALENDAR_OBLIGATIONS, {"owner_id": owner_id, "id": obligation_id}
        )
        if not rows:
            raise MissingReferenceError(f"Unknown calendar obligation: {obligation_id}")
        return CalendarObligation.model_validate(rows[0])

    async def _load_animal(self, owner_id: str, animal_id: str) -> Animal:
        rows = await self.storage.select(EntityKind.ANIMALS, {"owner_id": owner_id, "id": animal_id})
        if not rows:
            raise MissingReferenceError(f"Unknown animal: {animal_id}")
        return Animal.model_validate(rows[0])
