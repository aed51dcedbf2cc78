"""
Domain models for herd treatment compliance.

These models represent the core business concepts and are framework-agnostic.
Entities are frozen pydantic models: every read yields an immutable snapshot,
and changes go back through the storage gateway.
"""

from datetime import UTC, date, datetime
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


def to_calendar_date(value: Any) -> date:
    """Strip time-of-day and timezone, keeping the wall-clock calendar date.

    Accepts ``date``, ``datetime`` and ISO-8601 strings (``2024-07-15`` or
    ``2024-07-15T23:30:00-03:00``). No timezone conversion is applied, so a
    local midnight never shifts to the previous or next day.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        if len(text) >= 10:
            return date.fromisoformat(text[:10])
    raise ValueError(f"Cannot interpret {value!r} as a calendar date")


def _optional_calendar_date(value: Any) -> date | None:
    if value is None or value == "":
        return None
    return to_calendar_date(value)


class AnimalPhase(str, Enum):
    """Lifecycle phase of an animal."""

    CALF = "calf"
    HEIFER = "heifer"
    LACTATING = "lactating"
    DRY = "dry"
    PRE_CALVING = "pre_calving"

    @classmethod
    def parse(cls, value: "str | AnimalPhase") -> "AnimalPhase":
        if isinstance(value, AnimalPhase):
            return value
        key = value.strip().lower().replace(" ", "_").replace("-", "_")
        try:
            return _PHASE_ALIASES[key]
        except KeyError:
            raise ValueError(f"Unknown animal phase: {value!r}") from None


_PHASE_ALIASES: dict[str, AnimalPhase] = {
    **{phase.value: phase for phase in AnimalPhase},
    "bezerra": AnimalPhase.CALF,
    "novilha": AnimalPhase.HEIFER,
    "lactacao": AnimalPhase.LACTATING,
    "vaca_lactante": AnimalPhase.LACTATING,
    "vaca_seca": AnimalPhase.DRY,
    "pre_parto": AnimalPhase.PRE_CALVING,
}


class ObligationCategory(str, Enum):
    """Closed set of calendar obligation categories."""

    TASK = "task"
    APPOINTMENT = "appointment"
    MAINTENANCE = "maintenance"
    HANDLING = "handling"
    HEALTH = "health"
    FEEDING = "feeding"
    TREATMENT = "treatment"
    OTHER = "other"

    @classmethod
    def parse(cls, value: "str | ObligationCategory | None") -> "ObligationCategory":
        """Map a stored category string onto the closed set; unknown values become OTHER."""
        if isinstance(value, ObligationCategory):
            return value
        if not value:
            return cls.TASK
        return _CATEGORY_ALIASES.get(value.strip().lower(), cls.OTHER)

    @property
    def default_icon(self) -> str:
        return _CATEGORY_ICONS[self]


_CATEGORY_ALIASES: dict[str, ObligationCategory] = {
    **{category.value: category for category in ObligationCategory},
    "tarefa": ObligationCategory.TASK,
    "reuniao": ObligationCategory.APPOINTMENT,
    "manutencao": ObligationCategory.MAINTENANCE,
    "manejo": ObligationCategory.HANDLING,
    "saude": ObligationCategory.HEALTH,
    "alimentacao": ObligationCategory.FEEDING,
    "vacina": ObligationCategory.TREATMENT,
    "vaccination": ObligationCategory.TREATMENT,
}

_CATEGORY_ICONS: dict[ObligationCategory, str] = {
    ObligationCategory.TASK: "📋",
    ObligationCategory.APPOINTMENT: "👥",
    ObligationCategory.MAINTENANCE: "🔧",
    ObligationCategory.HANDLING: "🐄",
    ObligationCategory.HEALTH: "🩺",
    ObligationCategory.FEEDING: "🌾",
    ObligationCategory.TREATMENT: "💉",
    ObligationCategory.OTHER: "📅",
}


class SourceKind(str, Enum):
    """Where a unified obligation was projected from."""

    CALENDAR = "calendar"
    TREATMENT_RECORD = "treatment_record"


class ObligationStatus(str, Enum):
    UPCOMING = "upcoming"
    OVERDUE = "overdue"
    PAST = "past"


class NotificationType(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    SUCCESS = "success"


class NotificationChannel(str, Enum):
    APP = "app"
    EMAIL = "email"
    WHATSAPP = "whatsapp"


class Animal(BaseModel):
    """A tracked animal. Tags are not unique; duplicates are valid targets."""

    model_config = ConfigDict(frozen=True)

    id: str
    owner_id: str
    tag: str = Field(min_length=1)
    name: str | None = None
    birth_date: date | None = None
    phase: AnimalPhase | None = None
    batch: str | None = Field(default=None, description="Free-text group label")

    @field_validator("birth_date", mode="before")
    @classmethod
    def _strip_birth_time(cls, v: Any) -> date | None:
        return _optional_calendar_date(v)

    @field_validator("phase", mode="before")
    @classmethod
    def _parse_phase(cls, v: Any) -> AnimalPhase | None:
        if v is None or v == "":
            return None
        return AnimalPhase.parse(v)

    @property
    def display_label(self) -> str:
        return self.name or f"Brinco {self.tag}"

    def age_in_months(self, on_date: date) -> int | None:
        if self.birth_date is None:
            return None
        months = (on_date.year - self.birth_date.year) * 12 + on_date.month - self.birth_date.month
        if on_date.day < self.birth_date.day:
            months -= 1
        return months


class TreatmentType(BaseModel):
    """Reference definition of a treatment (vaccine, deworming, ...)."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str | None = None
    interval_months: int | None = Field(default=None, ge=0)
    min_age_months: int | None = Field(default=None, ge=0)
    max_age_months: int | None = Field(default=None, ge=0)
    phases: tuple[AnimalPhase, ...] = ()
    owner_id: str | None = Field(default=None, description="None for shared reference rows")

    @field_validator("phases", mode="before")
    @classmethod
    def _parse_phases(cls, v: Any) -> tuple[AnimalPhase, ...]:
        if not v:
            return ()
        return tuple(AnimalPhase.parse(p) for p in v)

    @property
    def has_follow_up(self) -> bool:
        return bool(self.interval_months)

    def is_applicable_to(self, animal: Animal, on_date: date) -> bool:
        """Check the age window and phase list against an animal."""
        if self.phases and animal.phase not in self.phases:
            return False
        age = animal.age_in_months(on_date)
        if age is None:
            return self.min_age_months is None and self.max_age_months is None
        if self.min_age_months is not None and age < self.min_age_months:
            return False
        if self.max_age_months is not None and age > self.max_age_months:
            return False
        return True


class ApplicationMetadata(BaseModel):
    """Free-text details recorded with an application, shared across fan-out writes."""

    model_config = ConfigDict(frozen=True)

    batch_number: str | None = None
    manufacturer: str | None = None
    responsible: str | None = None
    notes: str | None = None


class TreatmentRecord(BaseModel):
    """An applied treatment. next_due_date is set only when the type has an interval."""

    model_config = ConfigDict(frozen=True)

    id: str
    owner_id: str
    animal_id: str
    treatment_type_id: str
    application_date: date
    next_due_date: date | None = None
    batch_number: str | None = None
    manufacturer: str | None = None
    responsible: str | None = None
    notes: str | None = None

    @field_validator("application_date", mode="before")
    @classmethod
    def _strip_application_time(cls, v: Any) -> date:
        return to_calendar_date(v)

    @field_validator("next_due_date", mode="before")
    @classmethod
    def _strip_due_time(cls, v: Any) -> date | None:
        return _optional_calendar_date(v)


class CalendarObligation(BaseModel):
    """An ad hoc or scheduled calendar entry."""

    model_config = ConfigDict(frozen=True)

    id: str
    owner_id: str
    title: str
    description: str | None = None
    date: date
    category: ObligationCategory = ObligationCategory.TASK
    icon: str | None = None
    completed: bool = False
    animal_id: str | None = None
    treatment_type_id: str | None = None

    @field_validator("date", mode="before")
    @classmethod
    def _strip_time(cls, v: Any) -> date:
        return to_calendar_date(v)

    @field_validator("category", mode="before")
    @classmethod
    def _parse_category(cls, v: Any) -> ObligationCategory:
        return ObligationCategory.parse(v)

    @field_validator("completed", mode="before")
    @classmethod
    def _null_is_pending(cls, v: Any) -> bool:
        return bool(v)

    @property
    def is_linked_treatment(self) -> bool:
        return self.animal_id is not None and self.treatment_type_id is not None


class Notification(BaseModel):
    """An alert record. Delivery is somebody else's job."""

    model_config = ConfigDict(frozen=True)

    id: str
    owner_id: str
    title: str
    message: str
    type: NotificationType = NotificationType.INFO
    channel: NotificationChannel = NotificationChannel.APP
    read: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @field_validator("read", mode="before")
    @classmethod
    def _null_is_unread(cls, v: Any) -> bool:
        return bool(v)

    @property
    def dedup_key(self) -> tuple[str, str, date]:
        return (self.title, self.message, to_calendar_date(self.created_at))


class IndividualScope(BaseModel):
    """Targets exactly one animal."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["animal"] = "animal"
    animal_id: str


class BatchScope(BaseModel):
    """Targets every animal carrying a batch label (exact, case-sensitive match)."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["batch"] = "batch"
    batch: str


TreatmentScope = Annotated[IndividualScope | BatchScope, Field(discriminator="kind")]


class ObligationRef(BaseModel):
    """Identifies an obligation for completion commands."""

    model_config = ConfigDict(frozen=True)

    source_kind: SourceKind
    id: str


class UnifiedObligation(BaseModel):
    """Ephemeral projection of a calendar entry or a pending next dose."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    description: str | None = None
    date: date
    category: ObligationCategory
    icon: str
    completed: bool
    source_kind: SourceKind
    animal_id: str | None = None
    treatment_type_id: str | None = None

    @property
    def ref(self) -> ObligationRef:
        return ObligationRef(source_kind=self.source_kind, id=self.id)


class ObligationTimeline(BaseModel):
    """Classified view over every obligation of one owner."""

    model_config = ConfigDict(frozen=True)

    today: date
    items: tuple[UnifiedObligation, ...] = ()
    upcoming: tuple[UnifiedObligation, ...] = ()
    overdue: tuple[UnifiedObligation, ...] = ()
    past: tuple[UnifiedObligation, ...] = ()


class ComplianceSummary(BaseModel):
    """Counts over treatment records, as shown on the vaccination agenda."""

    model_config = ConfigDict(frozen=True)

    total: int = 0
    overdue: int = 0
    upcoming: int = 0
    completed: int = 0
