"""
Treatment registration and scheduling writes.

Every write carries the owner key and ISO calendar dates. Fan-out over
several animals is issued as one bulk insert; its all-or-nothing outcome is
whatever the storage collaborator reports.
"""

from datetime import date

from herdcare.domain.models import (
    Animal,
    ApplicationMetadata,
    CalendarObligation,
    ObligationCategory,
    TreatmentRecord,
    TreatmentType,
)
from herdcare.services.dose_scheduler import compute_next_due, preview_next_due
from herdcare.services.gateways import EntityKind, Row, StorageCaller, logger


def treatment_record_row(
    owner_id: str,
    animal_id: str,
    treatment_type: TreatmentType,
    application_date: date,
    metadata: ApplicationMetadata,
) -> Row:
    next_due = compute_next_due(application_date, treatment_type.interval_months)
    return {
        "owner_id": owner_id,
        "animal_id": animal_id,
        "treatment_type_id": treatment_type.id,
        "application_date": application_date.isoformat(),
        "next_due_date": next_due.isoformat() if next_due else None,
        **metadata.model_dump(),
    }


def _scheduled_description(
    treatment_type: TreatmentType, animal: Animal, metadata: ApplicationMetadata
) -> str:
    lines = [f"Aplicar {treatment_type.name} no animal {animal.display_label}"]
    if metadata.notes:
        lines.append(f"\nObservações: {metadata.notes}")
    if metadata.batch_number:
        lines.append(f"Lote: {metadata.batch_number}")
    if metadata.manufacturer:
        lines.append(f"Fabricante: {metadata.manufacturer}")
    if metadata.responsible:
        lines.append(f"Responsável: {metadata.responsible}")
    return "\n".join(lines)


class TreatmentRegistrar:
    """Writes treatment records and treatment calendar entries."""

    def __init__(self, storage: StorageCaller, follow_up_icon: str = "💉") -> None:
        self.storage = storage
        self.follow_up_icon = follow_up_icon
        self.logger = logger.bind(component="treatment_registrar")

    async def register(
        self,
        owner_id: str,
        animals: list[Animal],
        treatment_type: TreatmentType,
        application_date: date,
        metadata: ApplicationMetadata,
    ) -> list[TreatmentRecord]:
        """One record per animal, each with its own derived next-due date."""
        rows = [
            treatment_record_row(owner_id, a.id, treatment_type, application_date, metadata)
            for a in animals
        ]
        inserted = await self.storage.bulk_insert(EntityKind.TREATMENT_RECORDS, rows)

        records = [TreatmentRecord.model_validate(row) for row in inserted]
        self.logger.info(
            "treatments_registered",
            owner_id=owner_id,
            treatment_type=treatment_type.name,
            count=len(records),
            next_due_date=str(records[0].next_due_date) if records else None,
        )
        return records

    async def schedule(
        self,
        owner_id: str,
        animals: list[Animal],
        treatment_type: TreatmentType,
        scheduled_date: date,
        metadata: ApplicationMetadata,
    ) -> list[CalendarObligation]:
        """One linked treatment calendar entry per animal."""
        rows = [
            {
                "owner_id": owner_id,
                "title": f"Aplicar: {treatment_type.name}",
                "description": _scheduled_description(treatment_type, animal, metadata),
                "date": scheduled_date.isoformat(),
                "category": ObligationCategory.TREATMENT.value,
                "icon": self.follow_up_icon,
                "completed": False,
                "animal_id": animal.id,
                "treatment_type_id": treatment_type.id,
            }
            for animal in animals
        ]
        inserted = await self.storage.bulk_insert(EntityKind.CALENDAR_OBLIGATIONS, rows)

        obligations = [CalendarObligation.model_validate(row) for row in inserted]
        self.logger.info(
            "treatments_scheduled",
            owner_id=owner_id,
            treatment_type=treatment_type.name,
            scheduled_date=scheduled_date.isoformat(),
            count=len(obligations),
        )
        return obligations

    async def schedule_follow_up(
        self,
        owner_id: str,
        animal: Animal,
        treatment_type: TreatmentType,
        application_date: date,
        override: date | None = None,
    ) -> CalendarObligation | None:
        """Calendar entry for the next dose; None when the type has no interval."""
        due = preview_next_due(application_date, treatment_type, override)
        if due is None:
            return None

        row = await self.storage.insert(
            EntityKind.CALENDAR_OBLIGATIONS,
            {
                "owner_id": owner_id,
                "title": f"Tratamento: {treatment_type.name}",
                "description": f"Segunda dose de {treatment_type.name} para {animal.display_label}",
                "date": due.isoformat(),
                "category": ObligationCategory.TREATMENT.value,
                "icon": self.follow_up_icon,
                "completed": False,
                "animal_id": animal.id,
                "treatment_type_id": treatment_type.id,
            },
        )
        obligation = CalendarObligation.model_validate(row)
        self.logger.info(
            "follow_up_scheduled",
            owner_id=owner_id,
            animal_id=animal.id,
            due_date=due.isoformat(),
            manual_override=override is not None,
        )
        return obligation
