"""
Unified obligation timeline.

Merges the obligation sources of an owner into one classified view:

1. calendar obligations, taken verbatim (ad hoc tasks and scheduled treatments)
2. every treatment record with a next-due date, projected as a synthetic
   treatment obligation dated at that next-due date

All comparisons are on calendar dates only; time-of-day and timezone are
stripped first. The projection is a pure function of an immutable snapshot
and is recomputed on every read.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import date, timedelta

from herdcare.domain.models import (
    Animal,
    CalendarObligation,
    ComplianceSummary,
    ObligationCategory,
    ObligationStatus,
    ObligationTimeline,
    SourceKind,
    TreatmentRecord,
    TreatmentType,
    UnifiedObligation,
    to_calendar_date,
)
from herdcare.services.gateways import EntityKind, StorageCaller, logger


@dataclass(frozen=True)
class ObligationSnapshot:
    """Immutable copy of everything the timeline is computed from."""

    calendar: tuple[CalendarObligation, ...] = ()
    records: tuple[TreatmentRecord, ...] = ()
    treatment_types: Mapping[str, TreatmentType] | None = None
    animals: Mapping[str, Animal] | None = None


def project_calendar(obligations: Iterable[CalendarObligation]) -> list[UnifiedObligation]:
    return [
        UnifiedObligation(
            id=obligation.id,
            title=obligation.title,
            description=obligation.description,
            date=obligation.date,
            category=obligation.category,
            icon=obligation.icon or obligation.category.default_icon,
            completed=obligation.completed,
            source_kind=SourceKind.CALENDAR,
            animal_id=obligation.animal_id,
            treatment_type_id=obligation.treatment_type_id,
        )
        for obligation in obligations
    ]


def project_treatment_records(
    records: Iterable[TreatmentRecord],
    treatment_types: Mapping[str, TreatmentType] | None = None,
    animals: Mapping[str, Animal] | None = None,
) -> list[UnifiedObligation]:
    """Project every next-due date into a synthetic, never-completed obligation."""
    treatment_types = treatment_types or {}
    animals = animals or {}
    projected = []

    for record in records:
        if record.next_due_date is None:
            continue
        treatment_type = treatment_types.get(record.treatment_type_id)
        animal = animals.get(record.animal_id)

        title = (
            f"Próxima dose: {treatment_type.name}"
            if treatment_type
            else "Próxima dose de tratamento"
        )
        description = animal.display_label if animal else None

        projected.append(
            UnifiedObligation(
                id=record.id,
                title=title,
                description=description,
                date=record.next_due_date,
                category=ObligationCategory.TREATMENT,
                icon=ObligationCategory.TREATMENT.default_icon,
                completed=False,
                source_kind=SourceKind.TREATMENT_RECORD,
                animal_id=record.animal_id,
                treatment_type_id=record.treatment_type_id,
            )
        )

    return projected


def unify(snapshot: ObligationSnapshot) -> list[UnifiedObligation]:
    """Calendar rows first, then projected next doses."""
    return project_calendar(snapshot.calendar) + project_treatment_records(
        snapshot.records, snapshot.treatment_types, snapshot.animals
    )


def classify(
    item: UnifiedObligation,
    today: date,
    upcoming_days: int = 7,
    past_days: int = 30,
) -> frozenset[ObligationStatus]:
    """Statuses of one obligation. An item may be both overdue and past."""
    today = to_calendar_date(today)
    due = to_calendar_date(item.date)
    statuses = set()

    if not item.completed and today <= due <= today + timedelta(days=upcoming_days):
        statuses.add(ObligationStatus.UPCOMING)
    if not item.completed and due < today:
        statuses.add(ObligationStatus.OVERDUE)
    if item.completed or today - timedelta(days=past_days) <= due < today:
        statuses.add(ObligationStatus.PAST)

    return frozenset(statuses)


def build_timeline(
    items: Iterable[UnifiedObligation],
    today: date,
    upcoming_days: int = 7,
    past_days: int = 30,
) -> ObligationTimeline:
    """Classify and sort. Equal dates keep their input order."""
    today = to_calendar_date(today)
    items = tuple(items)
    upcoming, overdue, past = [], [], []

    for item in items:
        statuses = classify(item, today, upcoming_days, past_days)
        if ObligationStatus.UPCOMING in statuses:
            upcoming.append(item)
        if ObligationStatus.OVERDUE in statuses:
            overdue.append(item)
        if ObligationStatus.PAST in statuses:
            past.append(item)

    # sorted() is stable, including with reverse=True
    return ObligationTimeline(
        today=today,
        items=items,
        upcoming=tuple(sorted(upcoming, key=lambda i: i.date)),
        overdue=tuple(sorted(overdue, key=lambda i: i.date)),
        past=tuple(sorted(past, key=lambda i: i.date, reverse=True)),
    )


def overdue_records(records: Iterable[TreatmentRecord], today: date) -> list[TreatmentRecord]:
    today = to_calendar_date(today)
    return [r for r in records if r.next_due_date is not None and r.next_due_date < today]


def overdue_scheduled_treatments(
    calendar: Iterable[CalendarObligation], today: date
) -> list[CalendarObligation]:
    """Unapplied treatment-category calendar entries dated before today."""
    today = to_calendar_date(today)
    return [
        obligation
        for obligation in calendar
        if obligation.category is ObligationCategory.TREATMENT
        and not obligation.completed
        and obligation.date < today
    ]


def summarize_compliance(
    records: Iterable[TreatmentRecord], today: date, window_days: int = 30
) -> ComplianceSummary:
    """Per-record status counts: overdue, due within the window, or completed."""
    records = list(records)
    today = to_calendar_date(today)
    overdue = upcoming = completed = 0

    for record in records:
        if record.next_due_date is None:
            completed += 1
            continue
        days_until = (record.next_due_date - today).days
        if days_until < 0:
            overdue += 1
        elif days_until <= window_days:
            upcoming += 1
        else:
            completed += 1

    return ComplianceSummary(
        total=len(records), overdue=overdue, upcoming=upcoming, completed=completed
    )


class ObligationAggregator:
    """Reads an owner's obligation sources and builds the timeline on demand."""

    def __init__(self, storage: StorageCaller, upcoming_days: int = 7, past_days: int = 30) -> None:
        self.storage = storage
        self.upcoming_days = upcoming_days
        self.past_days = past_days
        self.logger = logger.bind(component="obligation_aggregator")

    async def load_snapshot(
        self, owner_id: str, treatment_types: Mapping[str, TreatmentType] | None = None
    ) -> ObligationSnapshot:
        owner = {"owner_id": owner_id}
        calendar_rows = await self.storage.select(EntityKind.CALENDAR_OBLIGATIONS, owner)
        record_rows = await self.storage.select(EntityKind.TREATMENT_RECORDS, owner)
        animal_rows = await self.storage.select(EntityKind.ANIMALS, owner)

        calendar = sorted(
            (CalendarObligation.model_validate(row) for row in calendar_rows),
            key=lambda o: o.date,
        )
        records = sorted(
            (TreatmentRecord.model_validate(row) for row in record_rows),
            key=lambda r: r.application_date,
            reverse=True,
        )
        animals = {a.id: a for a in (Animal.model_validate(row) for row in animal_rows)}

        self.logger.debug(
            "obligation_snapshot_loaded",
            owner_id=owner_id,
            calendar_count=len(calendar),
            record_count=len(records),
        )
        return ObligationSnapshot(
            calendar=tuple(calendar),
            records=tuple(records),
            treatment_types=dict(treatment_types or {}),
            animals=animals,
        )

    def timeline(self, snapshot: ObligationSnapshot, today: date) -> ObligationTimeline:
        return build_timeline(unify(snapshot), today, self.upcoming_days, self.past_days)

    async def load(
        self,
        owner_id: str,
        today: date,
        treatment_types: Mapping[str, TreatmentType] | None = None,
    ) -> ObligationTimeline:
        """Read every source and classify; nothing is cached between calls."""
        snapshot = await self.load_snapshot(owner_id, treatment_types)
        return self.timeline(snapshot, today)
