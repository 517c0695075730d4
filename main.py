import logging
from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from config import get_settings
from database import SessionLocal
from errors import (
    InvalidScope,
    NotFound,
    PreconditionFailed,
    ServiceError,
    StoreFailure,
    ValidationError,
)
from models import EntryType
from owner_tokens import resolve_owner_id
from schemas import (
    DeleteOut,
    EditOut,
    EntireEditOut,
    EntryIn,
    EntryUpdateIn,
    FutureEditOut,
    OccurrenceEditOut,
    OccurrenceListOut,
    OccurrenceOut,
    OverrideOut,
    Pagination,
    ProjectionOut,
    SeriesDetailOut,
    SeriesListOut,
    SeriesOccurrencesOut,
    SeriesOut,
    StartingBalanceIn,
    StartingBalanceOut,
)
from services import (
    EntireEdit,
    EntryService,
    FutureEdit,
    OccurrenceService,
    ProjectionService,
    StartingBalanceService,
)
from store import SeriesFilters

logging.basicConfig(level=get_settings().log_level)
logger = logging.getLogger(__name__)


def _load_app_version() -> str:
    try:
        import tomllib
    except Exception:
        return "unknown"
    try:
        with open("pyproject.toml", "rb") as f:
            data = tomllib.load(f)
        return str(data.get("project", {}).get("version", "unknown"))
    except Exception:
        return "unknown"


APP_VERSION = _load_app_version()

app = FastAPI(title="Expense Plotter", version=APP_VERSION)

# Most specific class wins; Starlette walks the exception's MRO.
ERROR_STATUS = {
    ValidationError: 400,
    InvalidScope: 409,
    NotFound: 404,
    PreconditionFailed: 412,
    StoreFailure: 503,
}


@app.exception_handler(ServiceError)
async def service_error_handler(_request, exc: ServiceError) -> JSONResponse:
    status_code = 400
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS:
            status_code = ERROR_STATUS[cls]
            break
    if status_code >= 500:
        logger.error(f"request_failed: error={type(exc).__name__} detail={exc.message}")
    return JSONResponse(status_code=status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(
    _request, exc: RequestValidationError
) -> JSONResponse:
    fields: dict[str, str] = {}
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query")]
        fields[".".join(loc) or "request"] = err.get("msg", "invalid")
    return JSONResponse(
        status_code=422,
        content={"error": "ValidationError", "message": "Invalid request", "fields": fields},
    )


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def current_owner_id(authorization: Optional[str] = Header(default=None)) -> int:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing owner token")
    owner_id = resolve_owner_id(authorization[len("Bearer ") :].strip())
    if owner_id is None:
        raise HTTPException(status_code=401, detail="Invalid owner token")
    return owner_id


@app.post("/api/entries", status_code=201, response_model=SeriesOut)
def create_entry(
    data: EntryIn,
    db: Session = Depends(get_db),
    owner_id: int = Depends(current_owner_id),
):
    series = EntryService(db, owner_id).create(data)
    return SeriesOut.model_validate(series)


@app.get("/api/entries", response_model=SeriesListOut)
def list_entries(
    entry_type: Optional[EntryType] = None,
    recurring: Optional[bool] = None,
    start_date_from: Optional[date] = None,
    start_date_to: Optional[date] = None,
    sort_by: str = "start_date",
    sort_order: str = "asc",
    limit: int = 50,
    offset: int = 0,
    db: Session = Depends(get_db),
    owner_id: int = Depends(current_owner_id),
):
    filters = SeriesFilters(
        entry_type=entry_type,
        recurring=recurring,
        start_date_from=start_date_from,
        start_date_to=start_date_to,
        sort_by=sort_by,
        sort_order=sort_order,
        limit=limit,
        offset=offset,
    )
    items, total = EntryService(db, owner_id).list(filters)
    return SeriesListOut(
        data=[SeriesOut.model_validate(s) for s in items],
        pagination=Pagination(total=total, limit=limit, offset=offset),
    )


@app.get("/api/entries/{series_id}", response_model=SeriesDetailOut)
def entry_detail(
    series_id: int,
    db: Session = Depends(get_db),
    owner_id: int = Depends(current_owner_id),
):
    series, overrides = EntryService(db, owner_id).detail(series_id)
    base = SeriesOut.model_validate(series).model_dump()
    return SeriesDetailOut(
        **base, overrides=[OverrideOut.model_validate(ov) for ov in overrides]
    )


@app.patch("/api/entries/{series_id}", response_model=EditOut)
def update_entry(
    series_id: int,
    data: EntryUpdateIn,
    scope: str = Query(...),
    on_date: Optional[date] = Query(default=None, alias="date"),
    db: Session = Depends(get_db),
    owner_id: int = Depends(current_owner_id),
):
    result = EntryService(db, owner_id).update(series_id, data, scope, on_date)
    if isinstance(result, FutureEdit):
        return FutureEditOut(
            original=SeriesOut.model_validate(result.original),
            new_series=SeriesOut.model_validate(result.new_series),
        )
    if isinstance(result, EntireEdit):
        return EntireEditOut(series=SeriesOut.model_validate(result.series))
    return OccurrenceEditOut(
        series_id=result.series.id,
        occurrence=OccurrenceOut.model_validate(result.occurrence),
        override=(
            OverrideOut.model_validate(result.override) if result.override else None
        ),
    )


@app.delete("/api/entries/{series_id}", response_model=DeleteOut)
def delete_entry(
    series_id: int,
    scope: str = Query(...),
    on_date: Optional[date] = Query(default=None, alias="date"),
    db: Session = Depends(get_db),
    owner_id: int = Depends(current_owner_id),
):
    result = EntryService(db, owner_id).delete(series_id, scope, on_date)
    return DeleteOut(
        scope=result.scope,
        series_deleted=result.series_deleted,
        override_created=result.override_created,
        affected_series_ids=result.affected_series_ids,
        truncated_end_date=result.truncated_end_date,
    )


@app.get("/api/entries/{series_id}/occurrences", response_model=SeriesOccurrencesOut)
def series_occurrences(
    series_id: int,
    from_date: date,
    to_date: date,
    db: Session = Depends(get_db),
    owner_id: int = Depends(current_owner_id),
):
    occurrences = OccurrenceService(db, owner_id).for_series(
        series_id, from_date, to_date
    )
    return SeriesOccurrencesOut(
        series_id=series_id,
        data=[OccurrenceOut.model_validate(occ) for occ in occurrences],
    )


@app.get("/api/occurrences", response_model=OccurrenceListOut)
def list_occurrences(
    from_date: date,
    to_date: date,
    entry_type: Optional[EntryType] = None,
    limit: int = 100,
    offset: int = 0,
    db: Session = Depends(get_db),
    owner_id: int = Depends(current_owner_id),
):
    occurrences, total = OccurrenceService(db, owner_id).list(
        from_date, to_date, entry_type=entry_type, limit=limit, offset=offset
    )
    return OccurrenceListOut(
        data=[OccurrenceOut.model_validate(occ) for occ in occurrences],
        pagination=Pagination(total=total, limit=limit, offset=offset),
    )


@app.get("/api/projection", response_model=ProjectionOut)
def projection(
    target_date: date = Query(..., alias="date"),
    db: Session = Depends(get_db),
    owner_id: int = Depends(current_owner_id),
):
    result = ProjectionService(db, owner_id).project(target_date)
    return ProjectionOut.model_validate(result)


@app.get("/api/starting-balance", response_model=StartingBalanceOut)
def get_starting_balance(
    db: Session = Depends(get_db),
    owner_id: int = Depends(current_owner_id),
):
    return StartingBalanceOut.model_validate(StartingBalanceService(db, owner_id).get())


@app.put("/api/starting-balance", response_model=StartingBalanceOut)
def upsert_starting_balance(
    data: StartingBalanceIn,
    response: Response,
    db: Session = Depends(get_db),
    owner_id: int = Depends(current_owner_id),
):
    balance, created = StartingBalanceService(db, owner_id).upsert(data)
    response.status_code = 201 if created else 200
    return StartingBalanceOut.model_validate(balance)


@app.delete("/api/starting-balance", status_code=204)
def delete_starting_balance(
    db: Session = Depends(get_db),
    owner_id: int = Depends(current_owner_id),
):
    StartingBalanceService(db, owner_id).delete()
    return Response(status_code=204)
