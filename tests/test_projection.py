from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from database import Base
from errors import PreconditionFailed, ValidationError
from models import EntryType, Frequency
from schemas import EntryIn, RecurrenceIn, StartingBalanceIn
from services import EntryService, ProjectionService, StartingBalanceService

TODAY = date(2024, 1, 1)


def make_session() -> Session:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def _set_balance(session: Session, amount: str, effective: date = TODAY, owner_id: int = 1):
    StartingBalanceService(session, owner_id).upsert(
        StartingBalanceIn(effective_date=effective, amount=Decimal(amount))
    )


def _monthly(session: Session, entry_type: EntryType, amount: str, start: date, owner_id: int = 1):
    return EntryService(session, owner_id).create(
        EntryIn(
            entry_type=entry_type,
            title=f"{entry_type.value} stream",
            amount=Decimal(amount),
            start_date=start,
            recurrence=RecurrenceIn(frequency=Frequency.monthly),
        )
    )


def test_projection_adds_income_occurrences_on_or_before_target():
    session = make_session()
    _set_balance(session, "1000.00")
    _monthly(session, EntryType.income, "500.00", date(2024, 1, 1))

    result = ProjectionService(session, 1).project(date(2024, 3, 1), today=TODAY)

    assert result.projected_balance == Decimal("2500.00")
    assert str(result.projected_balance) == "2500.00"
    assert result.occurrence_count == 3
    assert result.total_income == Decimal("1500.00")
    assert result.total_expense == Decimal("0.00")
    assert result.min_date == TODAY
    assert result.max_date == date(2034, 1, 1)


def test_deleted_occurrence_is_left_out_of_projection():
    session = make_session()
    _set_balance(session, "1000.00")
    series = _monthly(session, EntryType.income, "500.00", date(2024, 1, 1))
    EntryService(session, 1).delete(series.id, "occurrence", date(2024, 2, 1))

    result = ProjectionService(session, 1).project(date(2024, 3, 1), today=TODAY)

    assert result.projected_balance == Decimal("2000.00")
    assert result.occurrence_count == 2


def test_mixed_entries_break_down_into_income_and_expense():
    session = make_session()
    _set_balance(session, "250.50")
    _monthly(session, EntryType.income, "3000.00", date(2024, 1, 10))
    _monthly(session, EntryType.expense, "1234.56", date(2024, 1, 15))
    EntryService(session, 1).create(
        EntryIn(
            entry_type=EntryType.expense,
            title="Bike repair",
            amount=Decimal("89.99"),
            start_date=date(2024, 2, 3),
        )
    )
    # Before the starting balance takes effect, so never counted.
    EntryService(session, 1).create(
        EntryIn(
            entry_type=EntryType.income,
            title="Old bonus",
            amount=Decimal("999.00"),
            start_date=date(2023, 12, 24),
        )
    )

    result = ProjectionService(session, 1).project(date(2024, 2, 29), today=TODAY)

    assert result.total_income == Decimal("6000.00")
    assert result.total_expense == Decimal("2559.11")
    assert result.net_change == Decimal("3440.89")
    assert result.projected_balance == Decimal("3691.39")
    assert result.occurrence_count == 5


def test_projection_is_idempotent_and_scoped_to_owner():
    session = make_session()
    _set_balance(session, "100.00")
    _set_balance(session, "0.00", owner_id=2)
    _monthly(session, EntryType.expense, "10.00", date(2024, 1, 5))
    _monthly(session, EntryType.income, "777.00", date(2024, 1, 5), owner_id=2)

    service = ProjectionService(session, 1)
    first = service.project(date(2024, 6, 30), today=TODAY)
    second = service.project(date(2024, 6, 30), today=TODAY)

    assert first.projected_balance == second.projected_balance == Decimal("40.00")
    other = ProjectionService(session, 2).project(date(2024, 6, 30), today=TODAY)
    assert other.projected_balance == Decimal("4662.00")


def test_projection_requires_starting_balance():
    session = make_session()
    _monthly(session, EntryType.income, "500.00", date(2024, 1, 1))

    with pytest.raises(PreconditionFailed) as exc_info:
        ProjectionService(session, 1).project(date(2024, 3, 1), today=TODAY)

    assert exc_info.value.context["max_date"] == date(2034, 1, 1)


def test_projection_before_effective_date_is_rejected():
    session = make_session()
    _set_balance(session, "1000.00", effective=date(2024, 2, 1))

    with pytest.raises(PreconditionFailed) as exc_info:
        ProjectionService(session, 1).project(date(2024, 1, 31), today=TODAY)

    assert exc_info.value.context["min_date"] == date(2024, 2, 1)


def test_projection_horizon_is_ten_years_from_today():
    session = make_session()
    _set_balance(session, "1000.00")
    _monthly(session, EntryType.income, "1.00", date(2024, 1, 1))
    service = ProjectionService(session, 1)

    at_limit = service.project(date(2034, 1, 1), today=TODAY)
    assert at_limit.occurrence_count == 121
    assert at_limit.projected_balance == Decimal("1121.00")

    with pytest.raises(ValidationError) as exc_info:
        service.project(date(2034, 1, 2), today=TODAY)
    assert "date" in exc_info.value.fields
