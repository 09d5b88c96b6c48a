import logging
from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from config import get_settings
from database import SessionLocal, StoreUnavailableError, init_db
from ledger_client import (
    LedgerApiError,
    LedgerClient,
    LedgerRateLimitError,
    LedgerUnauthorizedError,
)
from models import Category, Saver, ScheduledCharge, Tracker, Transaction
from periods import week_range
from recurrence import local_today
from scheduler import SchedulerManager
from schemas import (
    PaydaySettingsIn,
    SaverGoalsIn,
    ScheduledChargeIn,
    SyncRequest,
    TokenIn,
    TrackerIn,
)
from services import (
    BalanceService,
    CategoryService,
    InsightsService,
    SaverService,
    ScheduledChargeService,
    SettingsService,
    TrackerProgress,
    TrackerService,
    TransactionFilters,
    TransactionService,
)
from sync import LedgerSynchronizer

logger = logging.getLogger(__name__)

app = FastAPI(title="Ledger")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    init_db()
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


@app.exception_handler(LedgerApiError)
def ledger_error_handler(request: Request, exc: LedgerApiError) -> JSONResponse:
    if isinstance(exc, LedgerUnauthorizedError):
        status = 401
    elif isinstance(exc, LedgerRateLimitError):
        status = 429
    else:
        status = 502
    logger.warning(f"ledger_error: path={request.url.path} status={status} error={exc}")
    return JSONResponse(status_code=status, content={"detail": str(exc)})


@app.exception_handler(StoreUnavailableError)
def store_error_handler(request: Request, exc: StoreUnavailableError) -> JSONResponse:
    return JSONResponse(status_code=503, content={"detail": str(exc)})


def _bad_request(exc: ValueError) -> HTTPException:
    message = str(exc)
    status = 404 if "not found" in message.lower() else 400
    return HTTPException(status_code=status, detail=message)


def _transaction_out(txn: Transaction) -> dict[str, object]:
    return {
        "id": txn.id,
        "account_id": txn.account_id,
        "status": txn.status.value,
        "description": txn.description,
        "message": txn.message,
        "amount_cents": txn.amount_cents,
        "currency_code": txn.currency_code,
        "category_id": txn.category_id,
        "parent_category_id": txn.parent_category_id,
        "display_date": txn.display_date.isoformat(),
        "is_round_up": txn.is_round_up,
        "transfer_account_id": txn.transfer_account_id,
    }


def _tracker_out(tracker: Tracker) -> dict[str, object]:
    return {
        "id": tracker.id,
        "name": tracker.name,
        "budget_cents": tracker.budget_cents,
        "reset_frequency": tracker.reset_frequency.value,
        "reset_day": tracker.reset_day,
        "last_reset_date": tracker.last_reset_date.isoformat(),
        "next_reset_date": tracker.next_reset_date.isoformat(),
        "category_ids": tracker.category_ids,
    }


def _progress_out(progress: TrackerProgress) -> dict[str, object]:
    return {
        "tracker_id": progress.tracker_id,
        "name": progress.name,
        "budget_cents": progress.budget_cents,
        "period_start": progress.period.start.isoformat(),
        "period_end": progress.period.end.isoformat(),
        "spent_cents": progress.spent_cents,
        "remaining_cents": progress.remaining_cents,
        "days_left": progress.days_left,
        "progress_percent": round(progress.progress_percent, 2),
        "display_percent": round(progress.display_percent, 2),
        "over_budget": progress.over_budget,
    }


def _charge_out(charge: ScheduledCharge) -> dict[str, object]:
    return {
        "id": charge.id,
        "name": charge.name,
        "amount_cents": charge.amount_cents,
        "frequency": charge.frequency.value,
        "next_charge_date": charge.next_charge_date.isoformat(),
        "category_id": charge.category_id,
        "is_reserved": charge.is_reserved,
    }


def _saver_out(saver: Saver) -> dict[str, object]:
    return {
        "id": saver.id,
        "name": saver.name,
        "icon": saver.icon,
        "current_balance_cents": saver.current_balance_cents,
        "goal_amount_cents": saver.goal_amount_cents,
        "target_date": saver.target_date.isoformat() if saver.target_date else None,
        "monthly_transfer_cents": saver.monthly_transfer_cents,
        "is_goal_based": saver.is_goal_based,
    }


def _category_out(category: Category) -> dict[str, object]:
    return {"id": category.id, "name": category.name, "parent_id": category.parent_id}


# Sync


@app.post("/api/sync")
def sync_now(payload: SyncRequest, db: Session = Depends(get_db)):
    token = payload.token or get_settings().api_token
    if not token:
        raise LedgerUnauthorizedError("No API token configured; add one in Settings.")
    synchronizer = LedgerSynchronizer(db, LedgerClient(token))
    settings = SettingsService(db)
    initial = payload.full or settings.last_sync() is None
    if initial:
        synchronizer.perform_initial_sync()
    else:
        synchronizer.perform_sync()
    last_sync = settings.last_sync()
    return {
        "kind": "initial" if initial else "incremental",
        "last_sync": last_sync.isoformat() if last_sync else None,
    }


@app.post("/api/token/validate")
def validate_token(payload: TokenIn):
    return {"valid": LedgerClient(payload.token).validate_token()}


# Balance and settings


@app.get("/api/balance")
def balance(db: Session = Depends(get_db)):
    return BalanceService(db).summary()


@app.get("/api/settings/payday")
def get_payday(db: Session = Depends(get_db)):
    payday = SettingsService(db).payday()
    return {
        "next_payday": payday.next_payday.isoformat() if payday.next_payday else None,
        "frequency": payday.frequency.value if payday.frequency else None,
        "day": payday.day,
    }


@app.put("/api/settings/payday")
def put_payday(payload: PaydaySettingsIn, db: Session = Depends(get_db)):
    try:
        SettingsService(db).set_payday(payload)
    except ValueError as exc:
        raise _bad_request(exc) from exc
    return get_payday(db)


# Trackers


@app.get("/api/trackers")
def list_trackers(offset: int = 0, db: Session = Depends(get_db)):
    if offset > 0:
        raise HTTPException(status_code=400, detail="Future periods are not available")
    return [_progress_out(p) for p in TrackerService(db).progress_for_all(offset)]


@app.post("/api/trackers", status_code=201)
def create_tracker(payload: TrackerIn, db: Session = Depends(get_db)):
    try:
        tracker = TrackerService(db).create(payload)
    except ValueError as exc:
        raise _bad_request(exc) from exc
    return _tracker_out(tracker)


@app.get("/api/trackers/{tracker_id}")
def get_tracker(tracker_id: int, db: Session = Depends(get_db)):
    try:
        tracker = TrackerService(db).get(tracker_id)
    except ValueError as exc:
        raise _bad_request(exc) from exc
    return _tracker_out(tracker)


@app.put("/api/trackers/{tracker_id}")
def update_tracker(tracker_id: int, payload: TrackerIn, db: Session = Depends(get_db)):
    try:
        tracker = TrackerService(db).update(tracker_id, payload)
    except ValueError as exc:
        raise _bad_request(exc) from exc
    return _tracker_out(tracker)


@app.delete("/api/trackers/{tracker_id}", status_code=204)
def delete_tracker(tracker_id: int, db: Session = Depends(get_db)):
    try:
        TrackerService(db).deactivate(tracker_id)
    except ValueError as exc:
        raise _bad_request(exc) from exc


@app.get("/api/trackers/{tracker_id}/transactions")
def tracker_transactions(
    tracker_id: int, offset: int = 0, limit: int = 20, db: Session = Depends(get_db)
):
    if offset > 0:
        raise HTTPException(status_code=400, detail="Future periods are not available")
    try:
        items = TrackerService(db).transactions_in_period(
            tracker_id, offset, limit=min(max(limit, 1), 100)
        )
    except ValueError as exc:
        raise _bad_request(exc) from exc
    return [_transaction_out(txn) for txn in items]


@app.get("/api/trackers/{tracker_id}/history")
def tracker_history(tracker_id: int, periods: int = 6, db: Session = Depends(get_db)):
    try:
        rows = TrackerService(db).history(tracker_id, min(max(periods, 1), 24))
    except ValueError as exc:
        raise _bad_request(exc) from exc
    return [_progress_out(p) for p in rows]


# Scheduled charges


@app.get("/api/charges")
def list_charges(db: Session = Depends(get_db)):
    grouped = ScheduledChargeService(db).grouped()
    next_payday = grouped["next_payday"]
    return {
        "next_payday": next_payday.isoformat() if next_payday else None,
        "next_pay": [_charge_out(c) for c in grouped["next_pay"]],
        "later": [_charge_out(c) for c in grouped["later"]],
    }


@app.post("/api/charges", status_code=201)
def create_charge(payload: ScheduledChargeIn, db: Session = Depends(get_db)):
    return _charge_out(ScheduledChargeService(db).create(payload))


@app.put("/api/charges/{charge_id}")
def update_charge(charge_id: int, payload: ScheduledChargeIn, db: Session = Depends(get_db)):
    try:
        charge = ScheduledChargeService(db).update(charge_id, payload)
    except ValueError as exc:
        raise _bad_request(exc) from exc
    return _charge_out(charge)


@app.delete("/api/charges/{charge_id}", status_code=204)
def delete_charge(charge_id: int, db: Session = Depends(get_db)):
    try:
        ScheduledChargeService(db).delete(charge_id)
    except ValueError as exc:
        raise _bad_request(exc) from exc


# Savers


@app.get("/api/savers")
def list_savers(db: Session = Depends(get_db)):
    return [
        {
            **_saver_out(row["saver"]),
            "progress_percent": round(row["progress_percent"], 2),
            "remaining_cents": row["remaining_cents"],
            "months_remaining": row["months_remaining"],
            "recommended_monthly_cents": round(row["recommended_monthly_cents"]),
            "on_track": row["on_track"],
        }
        for row in SaverService(db).list_with_progress()
    ]


@app.put("/api/savers/{saver_id}/goals")
def update_saver_goals(saver_id: str, payload: SaverGoalsIn, db: Session = Depends(get_db)):
    try:
        saver = SaverService(db).update_goals(saver_id, payload)
    except ValueError as exc:
        raise _bad_request(exc) from exc
    return _saver_out(saver)


@app.get("/api/savers/{saver_id}/history")
def saver_history(
    saver_id: str,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    db: Session = Depends(get_db),
):
    rows = SaverService(db).balance_history(saver_id, date_from=date_from, date_to=date_to)
    return [{**row, "date": row["date"].isoformat()} for row in rows]


# Transactions, categories and insights


@app.get("/api/transactions")
def list_transactions(
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    category: Optional[str] = None,
    amount_min: Optional[int] = None,
    amount_max: Optional[int] = None,
    q: Optional[str] = None,
    sort: str = "date",
    page: int = 1,
    limit: int = 50,
    db: Session = Depends(get_db),
):
    page = max(page, 1)
    limit = min(max(limit, 1), 100)
    filters = TransactionFilters(
        date_from=date_from,
        date_to=date_to,
        category_id=category,
        amount_min=amount_min,
        amount_max=amount_max,
        search=q,
    )
    service = TransactionService(db)
    items = service.list(filters, sort=sort, limit=limit + 1, offset=(page - 1) * limit)
    has_more = len(items) > limit
    items = items[:limit]
    round_ups = service.round_ups_by_parent([txn.id for txn in items])
    return {
        "items": [
            {
                **_transaction_out(txn),
                "round_ups": [_transaction_out(r) for r in round_ups.get(txn.id, [])],
            }
            for txn in items
        ],
        "page": page,
        "limit": limit,
        "has_more": has_more,
    }


@app.get("/api/categories")
def list_categories(db: Session = Depends(get_db)):
    return [_category_out(c) for c in CategoryService(db).list_all()]


@app.get("/api/insights/weekly")
def weekly_insights(offset: int = 0, db: Session = Depends(get_db)):
    period = week_range(min(offset, 0), today=local_today())
    service = InsightsService(db)
    return {
        "week_start": period.start.isoformat(),
        "week_end": period.end.isoformat(),
        **service.weekly(period),
        "categories": service.category_breakdown(period),
    }


@app.get("/api/insights/history")
def weekly_insights_history(weeks: int = 8, db: Session = Depends(get_db)):
    rows = InsightsService(db).history(min(max(weeks, 1), 52))
    return [
        {
            "week_offset": row["week_offset"],
            "week_start": row["period"].start.isoformat(),
            "week_end": row["period"].end.isoformat(),
            "money_in_cents": row["money_in_cents"],
            "money_out_cents": row["money_out_cents"],
        }
        for row in rows
    ]
