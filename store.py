from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date
from typing import Iterable, Iterator, Optional

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.orm import Session
from sqlalchemy.orm.util import identity_key

from database import atomic
from errors import NotFound
from models import (
    EntrySeries,
    EntryType,
    OccurrenceOverride,
    OverrideKind,
    StartingBalance,
)

SORTABLE_COLUMNS = {
    "start_date": EntrySeries.start_date,
    "created_at": EntrySeries.created_at,
    "amount": EntrySeries.amount_cents,
}


@dataclass
class SeriesFilters:
    entry_type: Optional[EntryType] = None
    recurring: Optional[bool] = None
    start_date_from: Optional[date] = None
    start_date_to: Optional[date] = None
    sort_by: str = "start_date"
    sort_order: str = "asc"
    limit: int = 50
    offset: int = 0


class SeriesStore:
    """Persistence primitives for series, overrides and starting balances.

    Nothing here commits on its own: callers group writes inside
    :meth:`atomic` so a multi-step mutation lands as one transaction.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    @contextmanager
    def atomic(self, operation: str) -> Iterator[Session]:
        with atomic(self.session, operation) as session:
            yield session

    def get(self, series_id: int, owner_id: int, *, for_update: bool = False) -> EntrySeries:
        stmt = select(EntrySeries).where(
            EntrySeries.id == series_id, EntrySeries.owner_id == owner_id
        )
        if for_update:
            stmt = stmt.with_for_update()
        series = self.session.scalar(stmt)
        if series is None:
            raise NotFound("Entry series", series_id)
        return series

    def list_series(
        self, owner_id: int, filters: SeriesFilters
    ) -> tuple[list[EntrySeries], int]:
        conditions = [EntrySeries.owner_id == owner_id]
        if filters.entry_type is not None:
            conditions.append(EntrySeries.entry_type == filters.entry_type)
        if filters.recurring is True:
            conditions.append(EntrySeries.frequency.is_not(None))
        elif filters.recurring is False:
            conditions.append(EntrySeries.frequency.is_(None))
        if filters.start_date_from is not None:
            conditions.append(EntrySeries.start_date >= filters.start_date_from)
        if filters.start_date_to is not None:
            conditions.append(EntrySeries.start_date <= filters.start_date_to)

        total = int(
            self.session.execute(
                select(func.count()).select_from(EntrySeries).where(*conditions)
            ).scalar_one()
        )
        column = SORTABLE_COLUMNS[filters.sort_by]
        ordering = column.desc() if filters.sort_order == "desc" else column.asc()
        stmt = (
            select(EntrySeries)
            .where(*conditions)
            .order_by(ordering, EntrySeries.id)
            .limit(filters.limit)
            .offset(filters.offset)
        )
        return list(self.session.scalars(stmt).all()), total

    def series_in_window(
        self, owner_id: int, window_start: date, window_end: date
    ) -> list[EntrySeries]:
        stmt = (
            select(EntrySeries)
            .where(
                EntrySeries.owner_id == owner_id,
                EntrySeries.start_date <= window_end,
                or_(
                    EntrySeries.end_date.is_(None),
                    EntrySeries.end_date >= window_start,
                ),
            )
            .order_by(EntrySeries.start_date, EntrySeries.id)
        )
        return list(self.session.scalars(stmt).all())

    def insert_series(self, series: EntrySeries) -> EntrySeries:
        self.session.add(series)
        self.session.flush()
        return series

    def update_series(self, series: EntrySeries, **fields) -> EntrySeries:
        for name, value in fields.items():
            setattr(series, name, value)
        self.session.flush()
        return series

    def delete_series(self, series: EntrySeries) -> None:
        self.session.delete(series)
        self.session.flush()

    def list_overrides(self, series_id: int) -> list[OccurrenceOverride]:
        stmt = (
            select(OccurrenceOverride)
            .where(OccurrenceOverride.series_id == series_id)
            .order_by(OccurrenceOverride.occurrence_date)
        )
        return list(self.session.scalars(stmt).all())

    def overrides_for(
        self, series_ids: Iterable[int]
    ) -> dict[int, list[OccurrenceOverride]]:
        ids = list(series_ids)
        grouped: dict[int, list[OccurrenceOverride]] = {sid: [] for sid in ids}
        if not ids:
            return grouped
        stmt = select(OccurrenceOverride).where(OccurrenceOverride.series_id.in_(ids))
        for override in self.session.scalars(stmt):
            grouped[override.series_id].append(override)
        return grouped

    def get_override(
        self, series_id: int, occurrence_date: date
    ) -> Optional[OccurrenceOverride]:
        return self.session.scalar(
            select(OccurrenceOverride).where(
                OccurrenceOverride.series_id == series_id,
                OccurrenceOverride.occurrence_date == occurrence_date,
            )
        )

    def upsert_override(
        self,
        series_id: int,
        occurrence_date: date,
        kind: OverrideKind,
        *,
        title: Optional[str] = None,
        description: Optional[str] = None,
        amount_cents: Optional[int] = None,
    ) -> OccurrenceOverride:
        override = self.get_override(series_id, occurrence_date)
        if override is None:
            override = OccurrenceOverride(
                series_id=series_id, occurrence_date=occurrence_date
            )
            self.session.add(override)
        override.kind = kind
        override.title = title
        override.description = description
        override.amount_cents = amount_cents
        self.session.flush()
        self._expire_overrides(series_id)
        return override

    def delete_override(self, series_id: int, occurrence_date: date) -> bool:
        result = self.session.execute(
            delete(OccurrenceOverride).where(
                OccurrenceOverride.series_id == series_id,
                OccurrenceOverride.occurrence_date == occurrence_date,
            )
        )
        self._expire_overrides(series_id)
        return result.rowcount > 0

    def move_overrides(self, from_series_id: int, to_series_id: int, on_or_after: date) -> int:
        result = self.session.execute(
            update(OccurrenceOverride)
            .where(
                OccurrenceOverride.series_id == from_series_id,
                OccurrenceOverride.occurrence_date >= on_or_after,
            )
            .values(series_id=to_series_id)
        )
        self._expire_overrides(from_series_id, to_series_id)
        return result.rowcount

    def delete_overrides_from(self, series_id: int, on_or_after: date) -> int:
        result = self.session.execute(
            delete(OccurrenceOverride).where(
                OccurrenceOverride.series_id == series_id,
                OccurrenceOverride.occurrence_date >= on_or_after,
            )
        )
        self._expire_overrides(series_id)
        return result.rowcount

    def _expire_overrides(self, *series_ids: int) -> None:
        # Bulk statements bypass the relationship collections.
        for series_id in series_ids:
            series = self.session.identity_map.get(identity_key(EntrySeries, series_id))
            if series is not None:
                self.session.expire(series, ["overrides"])

    def get_starting_balance(self, owner_id: int) -> Optional[StartingBalance]:
        return self.session.scalar(
            select(StartingBalance).where(StartingBalance.owner_id == owner_id)
        )

    def upsert_starting_balance(
        self, owner_id: int, effective_date: date, amount_cents: int
    ) -> tuple[StartingBalance, bool]:
        balance = self.get_starting_balance(owner_id)
        created = balance is None
        if balance is None:
            balance = StartingBalance(owner_id=owner_id)
            self.session.add(balance)
        balance.effective_date = effective_date
        balance.amount_cents = amount_cents
        self.session.flush()
        return balance, created

    def delete_starting_balance(self, owner_id: int) -> bool:
        balance = self.get_starting_balance(owner_id)
        if balance is None:
            return False
        self.session.delete(balance)
        self.session.flush()
        return True
