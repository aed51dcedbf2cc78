"""
Resolution of a registration scope into concrete target animals.

A scope is a closed variant: one animal (IndividualScope) or every animal
of a batch (BatchScope). Resolution always completes, and is validated,
before the caller writes anything.
"""

from typing import assert_never

from herdcare.domain.models import Animal, BatchScope, IndividualScope
from herdcare.exceptions import EmptyBatchError, MissingReferenceError, ValidationError
from herdcare.services.gateways import EntityKind, StorageCaller, logger


def validate_scope(scope: IndividualScope | BatchScope | None) -> IndividualScope | BatchScope:
    """Reject an incomplete scope before any I/O; return it narrowed."""
    match scope:
        case None:
            raise ValidationError("A target scope is required")
        case IndividualScope(animal_id=animal_id):
            if not animal_id or not animal_id.strip():
                raise ValidationError("An animal must be selected")
        case BatchScope(batch=batch):
            if not batch or not batch.strip():
                raise ValidationError("A batch label must be provided")
        case _:
            assert_never(scope)
    return scope


class ScopeResolver:
    """Expands a scope into the animals it targets for one owner."""

    def __init__(self, storage: StorageCaller) -> None:
        self.storage = storage
        self.logger = logger.bind(component="scope_resolver")

    async def resolve(self, owner_id: str, scope: IndividualScope | BatchScope) -> list[Animal]:
        validate_scope(scope)

        match scope:
            case IndividualScope(animal_id=animal_id):
                rows = await self.storage.select(
                    EntityKind.ANIMALS, {"owner_id": owner_id, "id": animal_id}
                )
                if not rows:
                    raise MissingReferenceError(f"Unknown animal: {animal_id}")
            case BatchScope(batch=batch):
                rows = await self.storage.select(
                    EntityKind.ANIMALS, {"owner_id": owner_id, "batch": batch}
                )
                if not rows:
                    self.logger.warning("batch_empty", owner_id=owner_id, batch=batch)
                    raise EmptyBatchError(batch)
            case _:
                assert_never(scope)

        animals = [Animal.model_validate(row) for row in rows]
        self.logger.info(
            "scope_resolved", owner_id=owner_id, scope=scope.kind, target_count=len(animals)
        )
        return animals
