"""Treatment type reference data."""

from datetime import date

from herdcare.domain.models import Animal, TreatmentType
from herdcare.exceptions import MissingReferenceError
from herdcare.services.gateways import EntityKind, StorageCaller, logger


class TreatmentCatalog:
    """Read-only lookup of treatment types visible to an owner."""

    def __init__(self, storage: StorageCaller) -> None:
        self.storage = storage
        self.logger = logger.bind(component="treatment_catalog")
        self._types: dict[str, TreatmentType] = {}

    async def refresh(self, owner_id: str) -> list[TreatmentType]:
        rows = await self.storage.select(EntityKind.TREATMENT_TYPES, {"owner_id": owner_id})
        types = [TreatmentType.model_validate(row) for row in rows]
        self._types = {t.id: t for t in types}
        self.logger.info("treatment_types_loaded", owner_id=owner_id, count=len(types))
        return self.all()

    def get(self, type_id: str) -> TreatmentType:
        try:
            return self._types[type_id]
        except KeyError:
            raise MissingReferenceError(f"Unknown treatment type: {type_id}") from None

    def all(self) -> list[TreatmentType]:
        return sorted(self._types.values(), key=lambda t: t.name)

    def as_mapping(self) -> dict[str, TreatmentType]:
        return dict(self._types)

    def eligible_for(self, animal: Animal, on_date: date) -> list[TreatmentType]:
        """Treatment types whose age window and phases admit the animal."""
        return [t for t in self.all() if t.is_applicable_to(animal, on_date)]
