"""
Complete system check demonstrating the compliance pipeline.

This script checks:
1. Configuration loading and validation
2. Individual and batch treatment registration
3. Overdue detection and deduplicated alerts
4. Completion with an opt-in follow-up dose
5. Error handling for empty batches and storage failures

Run with: uv run python system_check.py
"""

import asyncio
from datetime import UTC, date, datetime

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from adapters.memory import InMemoryStorage, StaticIdentity
from herdcare.config import get_config, print_config_summary, validate_config
from herdcare.domain.models import (
    ApplicationMetadata,
    BatchScope,
    IndividualScope,
    ObligationRef,
    SourceKind,
)
from herdcare.exceptions import EmptyBatchError, StorageError
from herdcare.services.gateways import EntityKind, configure_logging
from herdcare.services.herd_health import HerdHealthService
from herdcare.services.notifications import NotificationStore

console = Console()

OWNER = "fazenda-boa-vista"
CHECK_DAY = datetime(2024, 7, 20, 9, 0, tzinfo=UTC)


def build_farm() -> InMemoryStorage:
    """A small herd with shared vaccine definitions."""
    storage = InMemoryStorage(latency_seconds=0.01)
    storage.seed(
        EntityKind.TREATMENT_TYPES,
        [
            {"id": "brucelose", "name": "Brucelose", "interval_months": 6},
            {"id": "aftosa", "name": "Febre Aftosa", "interval_months": 6},
            {"id": "raiva", "name": "Raiva", "interval_months": 12},
            {"id": "vermifugo", "name": "Vermífugo", "interval_months": None},
        ],
    )
    storage.seed(
        EntityKind.ANIMALS,
        [
            {"id": "a1", "owner_id": OWNER, "tag": "A1", "phase": "novilha", "batch": "Lote B"},
            {"id": "a2", "owner_id": OWNER, "tag": "A2", "name": "Mimosa", "batch": "Lote B"},
            {"id": "a3", "owner_id": OWNER, "tag": "A3", "name": "Estrela", "batch": "Lote C"},
        ],
    )
    return storage


def build_service(storage: InMemoryStorage) -> HerdHealthService:
    return HerdHealthService(
        storage,
        StaticIdentity(OWNER),
        clock=lambda: CHECK_DAY,
        store=NotificationStore(),
    )


async def check_configuration() -> bool:
    """Check configuration loading and validation."""

    console.print(Panel("🔧 Checking Configuration", style="blue"))

    try:
        validate_config()
        config = get_config()
        console.print(
            f"✅ Configuration loaded ({config.compliance.upcoming_window_days}d upcoming window)",
            style="green",
        )
        print_config_summary()
        return True

    except Exception as e:
        console.print(f"❌ Configuration check failed: {e}", style="red")
        return False


async def check_registration() -> bool:
    """Check the Brucelose scenario and batch fan-out."""

    console.print(Panel("💉 Checking Treatment Registration", style="blue"))

    try:
        storage = build_farm()
        service = build_service(storage)

        [record] = await service.register_treatment(
            IndividualScope(animal_id="a1"), "brucelose", date(2024, 1, 15)
        )
        batch = await service.register_treatment(
            BatchScope(batch="Lote B"),
            "raiva",
            date(2024, 7, 1),
            ApplicationMetadata(batch_number="L-2024-07", responsible="Dra. Ana"),
        )

        table = Table(title="Treatment Records")
        table.add_column("Animal", style="cyan")
        table.add_column("Applied", style="magenta")
        table.add_column("Next Due", style="green")
        for r in [record, *batch]:
            table.add_row(r.animal_id, r.application_date.isoformat(), str(r.next_due_date))
        console.print(table)

        if record.next_due_date != date(2024, 7, 15):
            raise AssertionError(f"unexpected next due date {record.next_due_date}")

        notifications = await service.notifications()
        for notification in notifications:
            console.print(f"🔔 {notification.title}: {notification.message}", style="yellow")

        second_pass = await service.evaluate_overdue()
        console.print(
            f"✅ {len(notifications)} alert(s), {second_pass} on re-evaluation", style="green"
        )
        return len(notifications) == 1 and second_pass == 0

    except Exception as e:
        console.print(f"❌ Registration check failed: {e}", style="red")
        return False


async def check_completion() -> bool:
    """Check marking a scheduled treatment applied with a follow-up."""

    console.print(Panel("✔️ Checking Completion", style="blue"))

    try:
        service = build_service(build_farm())

        [scheduled] = await service.schedule_future_treatment(
            IndividualScope(animal_id="a3"), "aftosa", date(2024, 7, 18)
        )
        outcome = await service.mark_applied(
            ObligationRef(source_kind=SourceKind.CALENDAR, id=scheduled.id),
            date(2024, 7, 20),
            schedule_follow_up=True,
        )
        timeline = await service.timeline()

        summary_table = Table(title="Timeline")
        summary_table.add_column("View", style="cyan")
        summary_table.add_column("Items", style="white")
        summary_table.add_row("Upcoming", str(len(timeline.upcoming)))
        summary_table.add_row("Overdue", str(len(timeline.overdue)))
        summary_table.add_row("Past", str(len(timeline.past)))
        console.print(summary_table)

        follow_up = outcome.follow_up
        console.print(
            f"✅ Follow-up scheduled for {follow_up.date if follow_up else 'nothing'}",
            style="green",
        )
        return follow_up is not None and not timeline.overdue

    except Exception as e:
        console.print(f"❌ Completion check failed: {e}", style="red")
        return False


async def check_error_handling() -> bool:
    """Check that failures surface as typed errors and leave nothing behind."""

    console.print(Panel("🛡️ Checking Error Handling", style="blue"))

    storage = build_farm()
    service = build_service(storage)

    try:
        await service.register_treatment(BatchScope(batch="Lote A"), "brucelose", date(2024, 7, 1))
        console.print("❌ Empty batch was accepted", style="red")
        return False
    except EmptyBatchError as e:
        console.print(f"✅ Empty batch rejected: {e}", style="green")

    storage.fail("bulk_insert", EntityKind.TREATMENT_RECORDS)
    try:
        await service.register_treatment(BatchScope(batch="Lote B"), "brucelose", date(2024, 7, 1))
        console.print("❌ Storage failure was swallowed", style="red")
        return False
    except StorageError as e:
        console.print(f"✅ Storage failure surfaced: {e}", style="green")

    return storage.rows(EntityKind.TREATMENT_RECORDS) == []


async def run_all_checks() -> None:
    """Run all system checks."""

    console.print(Panel("🐄 Herd Treatment Compliance - System Check", style="bold blue"))

    checks = [
        ("Configuration", check_configuration),
        ("Registration", check_registration),
        ("Completion", check_completion),
        ("Error Handling", check_error_handling),
    ]

    results = []

    for check_name, check_func in checks:
        console.print(f"\n{'=' * 60}")
        try:
            result = await check_func()
            results.append((check_name, result))
        except KeyboardInterrupt:
            console.print("\n⏹️  Checks interrupted by user", style="yellow")
            break
        except Exception as e:
            console.print(f"❌ {check_name} failed with exception: {e}", style="red")
            results.append((check_name, False))

    console.print(f"\n{'=' * 60}")
    console.print(Panel("📋 Check Results Summary", style="bold"))

    summary_table = Table()
    summary_table.add_column("Check", style="cyan")
    summary_table.add_column("Result", style="white")

    passed = 0
    for check_name, result in results:
        if result:
            summary_table.add_row(check_name, "✅ PASSED")
            passed += 1
        else:
            summary_table.add_row(check_name, "❌ FAILED")

    console.print(summary_table)

    console.print(f"\n🎯 Results: {passed}/{len(results)} checks passed")

    if passed == len(results):
        console.print("🎉 All checks passed! The compliance pipeline is ready.", style="green")
    else:
        console.print("⚠️  Some checks failed. Check the logs above for details.", style="yellow")


if __name__ == "__main__":
    configure_logging(get_config().logging)
    try:
        asyncio.run(run_all_checks())
    except KeyboardInterrupt:
        console.print("\n👋 Checks stopped by user", style="yellow")
    except Exception as e:
        console.print(f"\n💥 System check failed: {e}", style="red")
