"""
Follow-up dose scheduling.

Pure date arithmetic: adding N calendar months keeps the day-of-month and
clamps it to the last day of the target month when it overflows
(2024-01-31 + 1 month -> 2024-02-29).
"""

from calendar import monthrange
from datetime import date

from herdcare.domain.models import TreatmentType


def add_months(start: date, months: int) -> date:
    """Advance a date by whole calendar months."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    last_day = monthrange(year, month)[1]
    return date(year, month, min(start.day, last_day))


def compute_next_due(application_date: date, interval_months: int | None) -> date | None:
    """Next dose date, or None for single-dose treatments (no or zero interval)."""
    if not interval_months:
        return None
    return add_months(application_date, interval_months)


def preview_next_due(
    application_date: date,
    treatment_type: TreatmentType,
    override: date | None = None,
) -> date | None:
    """Date a follow-up would be scheduled on.

    A manual override replaces the computed date verbatim; it is only
    meaningful for treatment types that carry an interval.
    """
    if not treatment_type.has_follow_up:
        return None
    if override is not None:
        return override
    return compute_next_due(application_date, treatment_type.interval_months)
