from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_EVEN
from enum import Enum
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base

CENT = Decimal("0.01")


def cents_to_amount(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(CENT, rounding=ROUND_HALF_EVEN)


def amount_to_cents(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_EVEN))


class EntryType(str, Enum):
    income = "income"
    expense = "expense"


class Frequency(str, Enum):
    daily = "daily"
    weekly = "weekly"
    monthly = "monthly"
    yearly = "yearly"


class OverrideKind(str, Enum):
    modified = "modified"
    deleted = "deleted"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class EntrySeries(Base, TimestampMixin):
    __tablename__ = "entry_series"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    owner_id: Mapped[int] = mapped_column(Integer, nullable=False)
    entry_type: Mapped[EntryType] = mapped_column(SAEnum(EntryType), nullable=False)
    title: Mapped[str] = mapped_column(String(120), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    frequency: Mapped[Optional[Frequency]] = mapped_column(SAEnum(Frequency))
    interval_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    # Day of month the schedule aims for; survives a split at a clamped date.
    anchor_day: Mapped[int] = mapped_column(Integer, nullable=False)
    end_date: Mapped[Optional[date]] = mapped_column(Date)

    overrides: Mapped[list["OccurrenceOverride"]] = relationship(
        "OccurrenceOverride",
        back_populates="series",
        cascade="all, delete-orphan",
        order_by="OccurrenceOverride.occurrence_date",
    )

    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="ck_series_amount_positive"),
        CheckConstraint("interval_count > 0", name="ck_series_interval_positive"),
        CheckConstraint(
            "anchor_day BETWEEN 1 AND 31", name="ck_series_anchor_day_range"
        ),
        CheckConstraint(
            "end_date IS NULL OR end_date >= start_date",
            name="ck_series_end_after_start",
        ),
        Index("ix_entry_series_owner_start", "owner_id", "start_date"),
    )

    @property
    def is_recurring(self) -> bool:
        return self.frequency is not None

    @property
    def amount(self) -> Decimal:
        return cents_to_amount(self.amount_cents)


class OccurrenceOverride(Base, TimestampMixin):
    __tablename__ = "occurrence_overrides"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    series_id: Mapped[int] = mapped_column(
        ForeignKey("entry_series.id", ondelete="CASCADE"), nullable=False
    )
    occurrence_date: Mapped[date] = mapped_column(Date, nullable=False)
    kind: Mapped[OverrideKind] = mapped_column(SAEnum(OverrideKind), nullable=False)
    title: Mapped[Optional[str]] = mapped_column(String(120))
    description: Mapped[Optional[str]] = mapped_column(Text)
    amount_cents: Mapped[Optional[int]] = mapped_column(Integer)

    series: Mapped["EntrySeries"] = relationship(
        "EntrySeries", back_populates="overrides"
    )

    __table_args__ = (
        UniqueConstraint(
            "series_id", "occurrence_date", name="uq_override_series_date"
        ),
        CheckConstraint(
            "amount_cents IS NULL OR amount_cents > 0",
            name="ck_override_amount_positive",
        ),
    )

    @property
    def amount(self) -> Optional[Decimal]:
        if self.amount_cents is None:
            return None
        return cents_to_amount(self.amount_cents)


class StartingBalance(Base, TimestampMixin):
    __tablename__ = "starting_balances"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    owner_id: Mapped[int] = mapped_column(Integer, nullable=False, unique=True)
    effective_date: Mapped[date] = mapped_column(Date, nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        CheckConstraint("amount_cents >= 0", name="ck_starting_balance_non_negative"),
    )

    @property
    def amount(self) -> Decimal:
        return cents_to_amount(self.amount_cents)
