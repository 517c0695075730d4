from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from models import EntryType, Frequency, OverrideKind


class EditScope(str, Enum):
    occurrence = "occurrence"
    future = "future"
    entire = "entire"


class RecurrenceIn(BaseModel):
    frequency: Frequency
    interval: int = Field(default=1, ge=1, le=366)


class EntryIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    entry_type: EntryType
    title: str = Field(..., min_length=1, max_length=120)
    description: Optional[str] = Field(default=None, max_length=500)
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    start_date: date
    recurrence: Optional[RecurrenceIn] = None
    end_date: Optional[date] = None

    @model_validator(mode="after")
    def _check_schedule(self) -> "EntryIn":
        if self.end_date is not None:
            if self.recurrence is None:
                raise ValueError("end_date requires a recurrence")
            if self.end_date < self.start_date:
                raise ValueError("end_date must be on or after start_date")
        return self


class EntryUpdateIn(BaseModel):
    """New field values for a scoped edit. Timing fields are never edited."""

    model_config = ConfigDict(extra="forbid")

    title: str = Field(..., min_length=1, max_length=120)
    description: Optional[str] = Field(default=None, max_length=500)
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    entry_type: Optional[EntryType] = None


class StartingBalanceIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    effective_date: date
    amount: Decimal = Field(..., ge=0, max_digits=14, decimal_places=2)


class OverrideOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    occurrence_date: date
    kind: OverrideKind
    title: Optional[str]
    description: Optional[str]
    amount: Optional[Decimal]


class SeriesOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    entry_type: EntryType
    title: str
    description: Optional[str]
    amount: Decimal
    frequency: Optional[Frequency]
    interval_count: int
    start_date: date
    anchor_day: int
    end_date: Optional[date]
    created_at: datetime
    updated_at: datetime


class SeriesDetailOut(SeriesOut):
    overrides: list[OverrideOut]


class OccurrenceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    series_id: int
    occurrence_date: date
    entry_type: EntryType
    title: str
    description: Optional[str]
    amount: Decimal
    override_kind: Optional[OverrideKind] = None


class Pagination(BaseModel):
    total: int
    limit: int
    offset: int


class SeriesListOut(BaseModel):
    data: list[SeriesOut]
    pagination: Pagination


class OccurrenceListOut(BaseModel):
    data: list[OccurrenceOut]
    pagination: Pagination


class SeriesOccurrencesOut(BaseModel):
    series_id: int
    data: list[OccurrenceOut]


class OccurrenceEditOut(BaseModel):
    scope: Literal["occurrence"] = "occurrence"
    series_id: int
    occurrence: OccurrenceOut
    override: Optional[OverrideOut] = None


class FutureEditOut(BaseModel):
    scope: Literal["future"] = "future"
    original: SeriesOut
    new_series: SeriesOut


class EntireEditOut(BaseModel):
    scope: Literal["entire"] = "entire"
    series: SeriesOut


EditOut = Annotated[
    Union[OccurrenceEditOut, FutureEditOut, EntireEditOut],
    Field(discriminator="scope"),
]


class DeleteOut(BaseModel):
    scope: EditScope
    series_deleted: bool
    override_created: bool
    affected_series_ids: list[int]
    truncated_end_date: Optional[date] = None


class StartingBalanceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    effective_date: date
    amount: Decimal
    created_at: datetime
    updated_at: datetime


class ProjectionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    as_of_date: date
    projected_balance: Decimal
    starting_balance: StartingBalanceOut
    total_income: Decimal
    total_expense: Decimal
    net_change: Decimal
    occurrence_count: int
    min_date: date
    max_date: date
