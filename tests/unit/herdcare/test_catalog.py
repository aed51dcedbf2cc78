"""Tests for the treatment catalog and the domain models it serves."""

from datetime import date

import pytest
import pytest_asyncio
from conftest import OTHER_OWNER, OWNER

from herdcare.domain.models import Animal, AnimalPhase, ObligationCategory, TreatmentType
from herdcare.exceptions import MissingReferenceError
from herdcare.services.catalog import TreatmentCatalog
from herdcare.services.gateways import StorageCaller


class TestTreatmentCatalog:
    @pytest_asyncio.fixture
    async def catalog(self, caller: StorageCaller) -> TreatmentCatalog:
        catalog = TreatmentCatalog(caller)
        await catalog.refresh(OWNER)
        return catalog

    @pytest.mark.asyncio
    async def test_lists_shared_and_own_types_by_name(self, catalog: TreatmentCatalog) -> None:
        assert [t.name for t in catalog.all()] == ["Brucelose", "Raiva", "Vermífugo"]

    @pytest.mark.asyncio
    async def test_unknown_type_raises(self, catalog: TreatmentCatalog) -> None:
        with pytest.raises(MissingReferenceError, match="tt-private"):
            catalog.get("tt-private")

    @pytest.mark.asyncio
    async def test_refresh_replaces_previous_owner(
        self, catalog: TreatmentCatalog
    ) -> None:
        await catalog.refresh(OTHER_OWNER)

        assert catalog.get("tt-private").interval_months == 3
        with pytest.raises(MissingReferenceError):
            catalog.get("tt-raiva")

    @pytest.mark.asyncio
    async def test_eligibility_by_age_and_phase(self, caller: StorageCaller) -> None:
        catalog = TreatmentCatalog(caller)
        catalog._types = {
            "calf-only": TreatmentType(
                id="calf-only", name="Brucelose B19", min_age_months=3, max_age_months=8,
                phases=["bezerra"],
            ),
            "any": TreatmentType(id="any", name="Raiva"),
        }
        calf = Animal(
            id="a", owner_id=OWNER, tag="1", birth_date=date(2024, 1, 10), phase="bezerra"
        )
        cow = Animal(id="b", owner_id=OWNER, tag="2", phase="vaca_seca")

        assert [t.id for t in catalog.eligible_for(calf, date(2024, 6, 10))] == ["calf-only", "any"]
        assert [t.id for t in catalog.eligible_for(cow, date(2024, 6, 10))] == ["any"]


class TestDomainModels:
    def test_animal_phase_aliases(self) -> None:
        assert AnimalPhase.parse("Pre parto") is AnimalPhase.PRE_CALVING
        assert AnimalPhase.parse("LACTACAO") is AnimalPhase.LACTATING
        with pytest.raises(ValueError):
            AnimalPhase.parse("touro")

    @pytest.mark.parametrize(
        "raw,expected",
        [
            (None, ObligationCategory.TASK),
            ("tarefa", ObligationCategory.TASK),
            ("vacina", ObligationCategory.TREATMENT),
            ("Manejo", ObligationCategory.HANDLING),
            ("festa", ObligationCategory.OTHER),
        ],
    )
    def test_category_parsing(self, raw: str | None, expected: ObligationCategory) -> None:
        assert ObligationCategory.parse(raw) is expected

    def test_animal_requires_tag_and_is_frozen(self) -> None:
        with pytest.raises(ValueError):
            Animal(id="a", owner_id=OWNER, tag="")

        animal = Animal(id="a", owner_id=OWNER, tag="7")
        with pytest.raises(ValueError, match="frozen"):
            animal.tag = "8"  # type: ignore

    def test_age_in_months(self) -> None:
        animal = Animal(id="a", owner_id=OWNER, tag="1", birth_date="2024-01-31")
        assert animal.age_in_months(date(2024, 2, 29)) == 0
        assert animal.age_in_months(date(2024, 3, 31)) == 2
