import logging
from typing import Optional, Type

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from config import get_settings
from database import SessionLocal
from invalidation import InvalidationBus, get_invalidation_bus
from periods import Period, generate_month_buckets, local_today, resolve_period
from reports import SummaryQuery
from scheduler import SchedulerManager
from schemas import LookupIn, TransactionIn
from serializers import (
    bucket_to_dict,
    lookup_to_dict,
    state_to_dict,
    transaction_to_dict,
)
from services import (
    CategoryService,
    EstablishmentService,
    PaymentMethodService,
    LookupService,
    RecordNotFound,
    TransactionService,
    get_current_user_id,
)
from store import SqlTransactionStore
from viewmodels import SummaryRegistry, ViewStatus

logger = logging.getLogger(__name__)

settings = get_settings()

app = FastAPI(title="LedgerLens")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_bus() -> InvalidationBus:
    return get_invalidation_bus()


summaries = SummaryRegistry(
    get_invalidation_bus(),
    SqlTransactionStore(SessionLocal),
    max_views=settings.max_mounted_views,
    tz=settings.timezone,
    category_limit=settings.top_n,
    establishment_limit=settings.top_establishments,
)


def get_summaries() -> SummaryRegistry:
    return summaries


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()
    summaries.close()


def period_from_request(request: Request) -> Period:
    period_slug = request.query_params.get("period")
    start = request.query_params.get("start")
    end = request.query_params.get("end")
    try:
        return resolve_period(
            period_slug, start, end, window_days=settings.daily_window_days
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def _write_error(exc: ValueError) -> HTTPException:
    status = 404 if isinstance(exc, RecordNotFound) else 400
    return HTTPException(status_code=status, detail=str(exc))


@app.get("/api/transactions")
def api_transactions(
    request: Request, db: Session = Depends(get_db), bus=Depends(get_bus)
):
    period = period_from_request(request)
    page = int(request.query_params.get("page", "1"))
    page = max(page, 1)
    limit = int(request.query_params.get("limit", "50"))
    limit = min(max(limit, 1), 100)
    offset = (page - 1) * limit
    items = TransactionService(db, bus).list(period, limit=limit + 1, offset=offset)
    has_more = len(items) > limit
    items = items[:limit]

    return {
        "items": [transaction_to_dict(txn) for txn in items],
        "page": page,
        "limit": limit,
        "has_more": has_more,
    }


@app.post("/api/transactions", status_code=201)
def create_transaction(
    data: TransactionIn, db: Session = Depends(get_db), bus=Depends(get_bus)
):
    service = TransactionService(db, bus)
    try:
        txn = service.create(data)
    except ValueError as exc:
        raise _write_error(exc) from exc
    return transaction_to_dict(service.get(txn.id))


@app.get("/api/transactions/{transaction_id}")
def get_transaction(
    transaction_id: int, db: Session = Depends(get_db), bus=Depends(get_bus)
):
    try:
        txn = TransactionService(db, bus).get(transaction_id)
    except ValueError as exc:
        raise _write_error(exc) from exc
    return transaction_to_dict(txn)


@app.put("/api/transactions/{transaction_id}")
def update_transaction(
    transaction_id: int,
    data: TransactionIn,
    db: Session = Depends(get_db),
    bus=Depends(get_bus),
):
    service = TransactionService(db, bus)
    try:
        txn = service.update(transaction_id, data)
    except ValueError as exc:
        raise _write_error(exc) from exc
    return transaction_to_dict(service.get(txn.id))


@app.delete("/api/transactions/{transaction_id}", status_code=204)
def delete_transaction(
    transaction_id: int, db: Session = Depends(get_db), bus=Depends(get_bus)
):
    try:
        TransactionService(db, bus).delete(transaction_id)
    except ValueError as exc:
        raise _write_error(exc) from exc
    return Response(status_code=204)


def _register_lookup_routes(path: str, service_cls: Type[LookupService]) -> None:
    def list_items(db: Session = Depends(get_db), bus=Depends(get_bus)):
        return [lookup_to_dict(item) for item in service_cls(db, bus).list_all()]

    def create_item(
        data: LookupIn, db: Session = Depends(get_db), bus=Depends(get_bus)
    ):
        try:
            item = service_cls(db, bus).create(data)
        except ValueError as exc:
            raise _write_error(exc) from exc
        return lookup_to_dict(item)

    def update_item(
        item_id: int,
        data: LookupIn,
        db: Session = Depends(get_db),
        bus=Depends(get_bus),
    ):
        try:
            item = service_cls(db, bus).update(item_id, data)
        except ValueError as exc:
            raise _write_error(exc) from exc
        return lookup_to_dict(item)

    def delete_item(item_id: int, db: Session = Depends(get_db), bus=Depends(get_bus)):
        try:
            service_cls(db, bus).delete(item_id)
        except ValueError as exc:
            raise _write_error(exc) from exc
        return Response(status_code=204)

    name = path.replace("-", "_")
    app.get(f"/api/{path}", name=f"list_{name}")(list_items)
    app.post(f"/api/{path}", status_code=201, name=f"create_{name}")(create_item)
    app.put(f"/api/{path}/{{item_id}}", name=f"update_{name}")(update_item)
    app.delete(f"/api/{path}/{{item_id}}", status_code=204, name=f"delete_{name}")(
        delete_item
    )


_register_lookup_routes("categories", CategoryService)
_register_lookup_routes("payment-methods", PaymentMethodService)
_register_lookup_routes("establishments", EstablishmentService)


async def _summary_response(
    registry: SummaryRegistry, query: SummaryQuery, refresh: bool
) -> JSONResponse:
    owner_id = get_current_user_id()
    state = await registry.snapshot(owner_id, query, refresh=refresh)
    status_code = 200
    if state.status == ViewStatus.error:
        logger.warning(f"summary_unavailable: query={query} error={state.error}")
        status_code = 503
    return JSONResponse(state_to_dict(state), status_code=status_code)


def _summary_query(factory, *args) -> SummaryQuery:
    try:
        return factory(*args)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/api/summaries/daily")
async def daily_summary(
    days: Optional[int] = Query(default=None, ge=1, le=366),
    refresh: bool = False,
    registry: SummaryRegistry = Depends(get_summaries),
):
    query = _summary_query(SummaryQuery.daily, days or settings.daily_window_days)
    return await _summary_response(registry, query, refresh)


@app.get("/api/summaries/monthly/{year}/{month}")
async def monthly_summary(
    year: int,
    month: int,
    refresh: bool = False,
    registry: SummaryRegistry = Depends(get_summaries),
):
    query = _summary_query(SummaryQuery.monthly, year, month)
    return await _summary_response(registry, query, refresh)


@app.get("/api/summaries/annual/{year}")
async def annual_summary(
    year: int,
    refresh: bool = False,
    registry: SummaryRegistry = Depends(get_summaries),
):
    query = _summary_query(SummaryQuery.annual, year)
    return await _summary_response(registry, query, refresh)


@app.get("/api/calendar/{year}")
def api_calendar(year: int):
    if not 1 <= year <= 9999:
        raise HTTPException(status_code=400, detail="Year out of range")
    today = local_today(settings.timezone)
    return {
        "year": year,
        "months": [bucket_to_dict(bucket) for bucket in generate_month_buckets(year, today)],
    }
