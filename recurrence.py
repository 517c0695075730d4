from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Iterable, Optional
from zoneinfo import ZoneInfo

from config import get_settings
from models import (
    EntrySeries,
    EntryType,
    Frequency,
    OccurrenceOverride,
    OverrideKind,
    cents_to_amount,
)


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def _add_months(base: date, months: int, *, desired_day: int) -> date:
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    # Days past the end of a short month snap to its last day.
    day = min(desired_day, days_in_month(year, month))
    return date(year, month, day)


def add_years(base: date, years: int) -> date:
    return _add_months(base, 12 * years, desired_day=base.day)


def _anchor_day(series: EntrySeries) -> int:
    return series.anchor_day or series.start_date.day


def nth_occurrence(series: EntrySeries, n: int) -> date:
    """Date of the n-th (zero-based) occurrence, ignoring the series' end date.

    Every occurrence is derived from ``start_date`` and the anchor day rather
    than from the previous occurrence, so a clamped month does not shift
    later ones, even when the series itself starts on a clamped date.
    """
    start = series.start_date
    interval = series.interval_count or 1
    if series.frequency is None or n == 0:
        return start
    if series.frequency == Frequency.daily:
        return start + timedelta(days=n * interval)
    if series.frequency == Frequency.weekly:
        return start + timedelta(weeks=n * interval)
    step = interval if series.frequency == Frequency.monthly else 12 * interval
    return _add_months(start, n * step, desired_day=_anchor_day(series))


def _first_index(series: EntrySeries, lower: date) -> int:
    start = series.start_date
    interval = series.interval_count or 1
    if lower <= start:
        return 0
    if series.frequency == Frequency.daily:
        return (lower - start).days // interval
    if series.frequency == Frequency.weekly:
        return (lower - start).days // (7 * interval)
    step = interval if series.frequency == Frequency.monthly else 12 * interval
    months_between = (lower.year - start.year) * 12 + (lower.month - start.month)
    return max(0, months_between // step)


def expand_dates(
    series: EntrySeries, window_start: date, window_end: date
) -> list[date]:
    lower = max(series.start_date, window_start)
    upper = window_end
    if series.frequency is None:
        if lower <= series.start_date <= upper:
            return [series.start_date]
        return []
    if series.end_date is not None:
        upper = min(series.end_date, upper)
    if lower > upper:
        return []

    dates: list[date] = []
    n = _first_index(series, lower)
    while True:
        current = nth_occurrence(series, n)
        if current > upper:
            break
        if current >= lower:
            dates.append(current)
        n += 1
    return dates


def is_occurrence(series: EntrySeries, day: date) -> bool:
    return expand_dates(series, day, day) == [day]


@dataclass(frozen=True)
class Occurrence:
    series_id: int
    occurrence_date: date
    entry_type: EntryType
    title: str
    description: Optional[str]
    amount_cents: int
    override_kind: Optional[OverrideKind] = None

    @property
    def amount(self) -> Decimal:
        return cents_to_amount(self.amount_cents)

    @property
    def is_deleted(self) -> bool:
        return self.override_kind == OverrideKind.deleted

    @property
    def signed_amount_cents(self) -> int:
        if self.entry_type == EntryType.expense:
            return -self.amount_cents
        return self.amount_cents


def materialize(
    series: EntrySeries,
    overrides: Iterable[OccurrenceOverride],
    window_start: date,
    window_end: date,
    *,
    include_deleted: bool = False,
) -> list[Occurrence]:
    by_date = {ov.occurrence_date: ov for ov in overrides}
    occurrences: list[Occurrence] = []
    for day in expand_dates(series, window_start, window_end):
        override = by_date.get(day)
        if override is None:
            occurrences.append(
                Occurrence(
                    series_id=series.id,
                    occurrence_date=day,
                    entry_type=series.entry_type,
                    title=series.title,
                    description=series.description,
                    amount_cents=series.amount_cents,
                )
            )
            continue
        if override.kind == OverrideKind.deleted and not include_deleted:
            continue
        modified = override.kind == OverrideKind.modified
        occurrences.append(
            Occurrence(
                series_id=series.id,
                occurrence_date=day,
                entry_type=series.entry_type,
                title=override.title if modified else series.title,
                description=override.description if modified else series.description,
                amount_cents=(
                    override.amount_cents
                    if modified and override.amount_cents is not None
                    else series.amount_cents
                ),
                override_kind=override.kind,
            )
        )
    return occurrences
