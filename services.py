from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Optional, Union

from sqlalchemy.orm import Session

from config import get_settings
from database import read_with_retry
from errors import InvalidScope, NotFound, PreconditionFailed, ValidationError
from models import (
    EntrySeries,
    EntryType,
    OccurrenceOverride,
    OverrideKind,
    StartingBalance,
    amount_to_cents,
    cents_to_amount,
)
from recurrence import Occurrence, add_years, is_occurrence, local_today, materialize
from schemas import EditScope, EntryIn, EntryUpdateIn, StartingBalanceIn
from store import SORTABLE_COLUMNS, SeriesFilters, SeriesStore

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 1000


def parse_scope(scope: Union[EditScope, str]) -> EditScope:
    if isinstance(scope, EditScope):
        return scope
    try:
        return EditScope(scope)
    except ValueError:
        raise InvalidScope(
            f"Unsupported scope '{scope}'; expected occurrence, future or entire",
            field="scope",
        ) from None


@dataclass
class OccurrenceEdit:
    series: EntrySeries
    occurrence: Occurrence
    override: Optional[OccurrenceOverride] = None
    scope: EditScope = EditScope.occurrence


@dataclass
class FutureEdit:
    original: EntrySeries
    new_series: EntrySeries
    moved_overrides: int = 0
    scope: EditScope = EditScope.future


@dataclass
class EntireEdit:
    series: EntrySeries
    scope: EditScope = EditScope.entire


@dataclass
class DeleteResult:
    scope: EditScope
    series_deleted: bool = False
    override_created: bool = False
    affected_series_ids: list[int] = field(default_factory=list)
    truncated_end_date: Optional[date] = None


@dataclass
class Projection:
    as_of_date: date
    projected_balance: Decimal
    starting_balance: StartingBalance
    total_income: Decimal
    total_expense: Decimal
    net_change: Decimal
    occurrence_count: int
    min_date: date
    max_date: date


class EntryService:
    """Creates series and applies scoped edits and deletes to them.

    Every mutation validates its input first, then runs inside a single
    store transaction, so a failure part-way through a split leaves the
    series exactly as it was.
    """

    def __init__(self, session: Session, owner_id: int) -> None:
        self.session = session
        self.owner_id = owner_id
        self.store = SeriesStore(session)

    def create(self, data: EntryIn) -> EntrySeries:
        series = EntrySeries(
            owner_id=self.owner_id,
            entry_type=data.entry_type,
            title=data.title,
            description=data.description,
            amount_cents=amount_to_cents(data.amount),
            frequency=data.recurrence.frequency if data.recurrence else None,
            interval_count=data.recurrence.interval if data.recurrence else 1,
            start_date=data.start_date,
            anchor_day=data.start_date.day,
            end_date=data.end_date,
        )
        with self.store.atomic("create_entry"):
            self.store.insert_series(series)
        logger.info(
            f"entry_created: series_id={series.id} entry_type={series.entry_type.value} "
            f"recurring={series.is_recurring}"
        )
        return series

    def get(self, series_id: int) -> EntrySeries:
        return read_with_retry(
            self.session,
            "get_entry",
            lambda: self.store.get(series_id, self.owner_id),
        )

    def detail(self, series_id: int) -> tuple[EntrySeries, list[OccurrenceOverride]]:
        def load() -> tuple[EntrySeries, list[OccurrenceOverride]]:
            series = self.store.get(series_id, self.owner_id)
            return series, self.store.list_overrides(series.id)

        return read_with_retry(self.session, "entry_detail", load)

    def list(self, filters: Optional[SeriesFilters] = None) -> tuple[list[EntrySeries], int]:
        filters = filters or SeriesFilters()
        errors: dict[str, str] = {}
        if filters.sort_by not in SORTABLE_COLUMNS:
            errors["sort_by"] = f"must be one of {', '.join(sorted(SORTABLE_COLUMNS))}"
        if filters.sort_order not in ("asc", "desc"):
            errors["sort_order"] = "must be asc or desc"
        if not 1 <= filters.limit <= 100:
            errors["limit"] = "must be between 1 and 100"
        if filters.offset < 0:
            errors["offset"] = "must be at least 0"
        if errors:
            raise ValidationError(errors)
        return read_with_retry(
            self.session,
            "list_entries",
            lambda: self.store.list_series(self.owner_id, filters),
        )

    def update(
        self,
        series_id: int,
        data: EntryUpdateIn,
        scope: Union[EditScope, str],
        on_date: Optional[date] = None,
    ) -> Union[OccurrenceEdit, FutureEdit, EntireEdit]:
        scope = parse_scope(scope)
        self._require_date(scope, on_date)

        with self.store.atomic(f"update_entry:{scope.value}"):
            series = self.store.get(
                series_id, self.owner_id, for_update=scope == EditScope.future
            )
            if on_date is not None:
                self._check_occurrence(series, on_date)
            if (
                scope != EditScope.entire
                and data.entry_type is not None
                and data.entry_type != series.entry_type
            ):
                raise ValidationError(
                    {"entry_type": "can only be changed for the entire series"}
                )

            if scope == EditScope.occurrence:
                result = self._edit_occurrence(series, on_date, data)
            elif scope == EditScope.future:
                result = self._edit_future(series, on_date, data)
            else:
                result = self._edit_entire(series, data)

        if isinstance(result, FutureEdit):
            logger.info(
                f"entry_updated: scope=future series_id={result.original.id} "
                f"new_series_id={result.new_series.id} split_date={on_date} "
                f"moved_overrides={result.moved_overrides}"
            )
        else:
            logger.info(
                f"entry_updated: scope={result.scope.value} requested_scope={scope.value} "
                f"series_id={series_id} date={on_date}"
            )
        return result

    def delete(
        self,
        series_id: int,
        scope: Union[EditScope, str],
        on_date: Optional[date] = None,
    ) -> DeleteResult:
        scope = parse_scope(scope)
        self._require_date(scope, on_date)

        with self.store.atomic(f"delete_entry:{scope.value}"):
            series = self.store.get(
                series_id, self.owner_id, for_update=scope == EditScope.future
            )
            if on_date is not None:
                self._check_occurrence(series, on_date)
            result = DeleteResult(scope=scope, affected_series_ids=[series.id])

            if scope == EditScope.occurrence and series.is_recurring:
                self.store.upsert_override(series.id, on_date, OverrideKind.deleted)
                result.override_created = True
            elif scope == EditScope.future and on_date != series.start_date:
                cut = on_date - timedelta(days=1)
                self.store.update_series(series, end_date=cut)
                self.store.delete_overrides_from(series.id, on_date)
                result.truncated_end_date = cut
            else:
                self.store.delete_series(series)
                result.series_deleted = True

        logger.info(
            f"entry_deleted: scope={scope.value} series_id={series_id} date={on_date} "
            f"series_deleted={result.series_deleted} override_created={result.override_created}"
        )
        return result

    def _require_date(self, scope: EditScope, on_date: Optional[date]) -> None:
        if scope in (EditScope.occurrence, EditScope.future) and on_date is None:
            raise ValidationError({"date": f"required for scope={scope.value}"})

    def _check_occurrence(self, series: EntrySeries, on_date: date) -> None:
        if not is_occurrence(series, on_date):
            raise InvalidScope(
                f"{on_date.isoformat()} is not an occurrence of series {series.id}",
                requested_date=on_date,
                schedule_start=series.start_date,
                schedule_end=series.end_date,
            )

    def _edit_occurrence(
        self, series: EntrySeries, on_date: date, data: EntryUpdateIn
    ) -> OccurrenceEdit:
        amount_cents = amount_to_cents(data.amount)
        if not series.is_recurring:
            self.store.update_series(
                series,
                title=data.title,
                description=data.description,
                amount_cents=amount_cents,
            )
            occurrence = materialize(series, [], on_date, on_date)[0]
            return OccurrenceEdit(series=series, occurrence=occurrence)

        existing = self.store.get_override(series.id, on_date)
        if existing is not None and existing.kind == OverrideKind.deleted:
            raise InvalidScope(
                f"{on_date.isoformat()} was deleted from series {series.id}",
                requested_date=on_date,
                schedule_start=series.start_date,
                schedule_end=series.end_date,
            )

        override: Optional[OccurrenceOverride] = None
        if (data.title, data.description, amount_cents) == (
            series.title,
            series.description,
            series.amount_cents,
        ):
            # Matching the series again restores the plain occurrence.
            self.store.delete_override(series.id, on_date)
        else:
            override = self.store.upsert_override(
                series.id,
                on_date,
                OverrideKind.modified,
                title=data.title,
                description=data.description,
                amount_cents=amount_cents,
            )
        overrides = [override] if override is not None else []
        occurrence = materialize(series, overrides, on_date, on_date)[0]
        return OccurrenceEdit(series=series, occurrence=occurrence, override=override)

    def _edit_future(
        self, series: EntrySeries, on_date: date, data: EntryUpdateIn
    ) -> Union[FutureEdit, EntireEdit]:
        if on_date == series.start_date:
            return self._edit_entire(series, data)

        prior_end = series.end_date
        self.store.update_series(series, end_date=on_date - timedelta(days=1))
        new_series = self.store.insert_series(
            EntrySeries(
                owner_id=series.owner_id,
                entry_type=series.entry_type,
                title=data.title,
                description=data.description,
                amount_cents=amount_to_cents(data.amount),
                frequency=series.frequency,
                interval_count=series.interval_count,
                start_date=on_date,
                anchor_day=series.anchor_day,
                end_date=prior_end,
            )
        )
        moved = self.store.move_overrides(series.id, new_series.id, on_date)
        return FutureEdit(original=series, new_series=new_series, moved_overrides=moved)

    def _edit_entire(self, series: EntrySeries, data: EntryUpdateIn) -> EntireEdit:
        fields = {
            "title": data.title,
            "description": data.description,
            "amount_cents": amount_to_cents(data.amount),
        }
        if data.entry_type is not None:
            fields["entry_type"] = data.entry_type
        self.store.update_series(series, **fields)
        return EntireEdit(series=series)


class OccurrenceService:
    def __init__(self, session: Session, owner_id: int) -> None:
        self.session = session
        self.owner_id = owner_id
        self.store = SeriesStore(session)

    def _check_window(self, from_date: date, to_date: date) -> None:
        if to_date < from_date:
            raise ValidationError(
                {"to_date": "must be greater than or equal to from_date"}
            )
        max_days = get_settings().max_window_days
        if (to_date - from_date).days > max_days:
            raise ValidationError(
                {"date_range": f"cannot exceed {max_days} days"}
            )

    def list(
        self,
        from_date: date,
        to_date: date,
        *,
        entry_type: Optional[EntryType] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[list[Occurrence], int]:
        self._check_window(from_date, to_date)
        errors: dict[str, str] = {}
        if not 1 <= limit <= MAX_PAGE_SIZE:
            errors["limit"] = f"must be between 1 and {MAX_PAGE_SIZE}"
        if offset < 0:
            errors["offset"] = "must be at least 0"
        if errors:
            raise ValidationError(errors)

        def load() -> list[Occurrence]:
            series_list = self.store.series_in_window(self.owner_id, from_date, to_date)
            if entry_type is not None:
                series_list = [s for s in series_list if s.entry_type == entry_type]
            overrides = self.store.overrides_for(s.id for s in series_list)
            found: list[Occurrence] = []
            for series in series_list:
                found.extend(
                    materialize(series, overrides[series.id], from_date, to_date)
                )
            return found

        occurrences = read_with_retry(self.session, "list_occurrences", load)
        occurrences.sort(key=lambda occ: (occ.occurrence_date, occ.series_id))
        return occurrences[offset : offset + limit], len(occurrences)

    def for_series(
        self, series_id: int, from_date: date, to_date: date
    ) -> list[Occurrence]:
        """Occurrences of one series, including dates removed by a delete override."""
        self._check_window(from_date, to_date)

        def load() -> list[Occurrence]:
            series = self.store.get(series_id, self.owner_id)
            return materialize(
                series,
                self.store.list_overrides(series.id),
                from_date,
                to_date,
                include_deleted=True,
            )

        return read_with_retry(self.session, "series_occurrences", load)


class StartingBalanceService:
    def __init__(self, session: Session, owner_id: int) -> None:
        self.session = session
        self.owner_id = owner_id
        self.store = SeriesStore(session)

    def get(self) -> StartingBalance:
        balance = read_with_retry(
            self.session,
            "get_starting_balance",
            lambda: self.store.get_starting_balance(self.owner_id),
        )
        if balance is None:
            raise NotFound("Starting balance")
        return balance

    def upsert(self, data: StartingBalanceIn) -> tuple[StartingBalance, bool]:
        with self.store.atomic("upsert_starting_balance"):
            balance, created = self.store.upsert_starting_balance(
                self.owner_id, data.effective_date, amount_to_cents(data.amount)
            )
        logger.info(
            f"starting_balance_saved: owner_id={self.owner_id} created={created} "
            f"effective_date={data.effective_date}"
        )
        return balance, created

    def delete(self) -> None:
        with self.store.atomic("delete_starting_balance"):
            deleted = self.store.delete_starting_balance(self.owner_id)
        if not deleted:
            raise NotFound("Starting balance")
        logger.info(f"starting_balance_deleted: owner_id={self.owner_id}")


class ProjectionService:
    def __init__(self, session: Session, owner_id: int) -> None:
        self.session = session
        self.owner_id = owner_id
        self.store = SeriesStore(session)

    def project(self, target_date: date, *, today: Optional[date] = None) -> Projection:
        settings = get_settings()
        today = today or local_today()
        max_date = add_years(today, settings.projection_horizon_years)

        balance = read_with_retry(
            self.session,
            "projection_starting_balance",
            lambda: self.store.get_starting_balance(self.owner_id),
        )
        if balance is None:
            raise PreconditionFailed(
                "No starting balance configured; set a starting balance first",
                max_date=max_date,
            )
        if target_date < balance.effective_date:
            raise PreconditionFailed(
                f"Date must be on or after the starting balance effective date "
                f"({balance.effective_date.isoformat()})",
                min_date=balance.effective_date,
                max_date=max_date,
            )
        if target_date > max_date:
            raise ValidationError(
                {
                    "date": f"cannot be more than {settings.projection_horizon_years} "
                    f"years in the future (max: {max_date.isoformat()})"
                }
            )

        window_start = balance.effective_date

        def load() -> list[Occurrence]:
            series_list = self.store.series_in_window(
                self.owner_id, window_start, target_date
            )
            overrides = self.store.overrides_for(s.id for s in series_list)
            found: list[Occurrence] = []
            for series in series_list:
                found.extend(
                    materialize(series, overrides[series.id], window_start, target_date)
                )
            return found

        occurrences = read_with_retry(self.session, "projection_occurrences", load)
        income_cents = sum(
            occ.amount_cents for occ in occurrences if occ.entry_type == EntryType.income
        )
        expense_cents = sum(
            occ.amount_cents for occ in occurrences if occ.entry_type == EntryType.expense
        )
        net_cents = sum(occ.signed_amount_cents for occ in occurrences)

        projection = Projection(
            as_of_date=target_date,
            projected_balance=cents_to_amount(balance.amount_cents + net_cents),
            starting_balance=balance,
            total_income=cents_to_amount(income_cents),
            total_expense=cents_to_amount(expense_cents),
            net_change=cents_to_amount(net_cents),
            occurrence_count=len(occurrences),
            min_date=balance.effective_date,
            max_date=max_date,
        )
        logger.debug(
            f"projection_computed: owner_id={self.owner_id} target_date={target_date} "
            f"occurrences={projection.occurrence_count}"
        )
        return projection
