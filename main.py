import logging
from datetime import date
from typing import Optional

from fastapi import Body, Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import Response
from pydantic import ValidationError
from sqlalchemy.orm import Session

from balances import DayBalance
from budgets import BudgetProgress
from config import get_settings
from database import SessionLocal, init_db
from goals import GoalProjection, Projection
from models import CollectionKind
from periods import parse_month_key, resolve_period
from schemas import (
    BudgetIn,
    CategoryIn,
    GoalIn,
    ProfileIn,
    RecurringTransactionIn,
    TransactionIn,
)
from services import (
    COLLECTION_ADAPTERS,
    CalendarService,
    CollectionStore,
    GoalStore,
    InvalidSnapshot,
    LedgerService,
    ProfileNotFound,
    ProfileService,
    RecordNotFound,
    SnapshotService,
    local_today,
)

logger = logging.getLogger(__name__)

app = FastAPI(title="Budget Calendar")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_today() -> Optional[date]:
    """Overridable clock; None lets the services use the configured timezone."""
    return None


@app.on_event("startup")
def startup_event():
    init_db()


def _doc(record) -> Optional[dict]:
    return record.to_document() if record is not None else None


def _day_out(row: DayBalance) -> dict:
    return {
        "date": row.day.isoformat(),
        "begin": row.begin,
        "end": row.end,
        "net": row.net,
        "transactions": [tx.to_document() for tx in row.transactions],
    }


def _progress_out(row: BudgetProgress) -> dict:
    return {
        "budget": row.budget.to_document(),
        "category": row.category_name,
        "spent": row.spent,
        "remaining": row.remaining,
        "over": row.over,
        "percentUsed": row.percent_used,
    }


def _projection_out(projection: Projection) -> dict:
    return {
        "status": projection.status.value,
        "date": projection.date.isoformat() if projection.date else None,
        "monthsNeeded": projection.months_needed,
    }


def _goal_projection_out(row: GoalProjection) -> dict:
    return {
        "goal": row.goal.to_document(),
        "optimistic": _projection_out(row.optimistic),
        "conservative": _projection_out(row.conservative),
    }


# Profiles


@app.get("/api/profiles")
def list_profiles(db: Session = Depends(get_db)):
    service = ProfileService(db)
    return {
        "profiles": [p.to_document() for p in service.list()],
        "current": service.current_id(),
    }


@app.post("/api/profiles", status_code=201)
def create_profile(payload: ProfileIn, db: Session = Depends(get_db)):
    return ProfileService(db).create(payload.name).to_document()


@app.post("/api/profiles/{profile_id}/switch")
def switch_profile(profile_id: str, db: Session = Depends(get_db)):
    try:
        return ProfileService(db).switch(profile_id).to_document()
    except ProfileNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.delete("/api/profiles/{profile_id}")
def delete_profile(profile_id: str, db: Session = Depends(get_db)):
    service = ProfileService(db)
    try:
        service.delete(profile_id)
    except ProfileNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"current": service.current_id()}


@app.post("/api/reset")
def reset_all(db: Session = Depends(get_db)):
    ProfileService(db).reset_all()
    return {"status": "ok"}


# Raw collections


@app.get("/api/collections/{kind}")
def get_collection(kind: CollectionKind, db: Session = Depends(get_db)):
    return [r.to_document() for r in CollectionStore(db).load(kind)]


@app.put("/api/collections/{kind}")
def put_collection(
    kind: CollectionKind,
    payload: list[dict] = Body(...),
    db: Session = Depends(get_db),
):
    store = CollectionStore(db)
    if store.profile_id is None:
        raise HTTPException(status_code=400, detail="No active profile")
    try:
        records = COLLECTION_ADAPTERS[kind].validate_python(payload)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    store.save(kind, records)
    return [r.to_document() for r in store.load(kind)]


# Ledger edits


@app.get("/api/transactions")
def list_transactions(
    start: Optional[date] = None,
    end: Optional[date] = None,
    db: Session = Depends(get_db),
    today: Optional[date] = Depends(get_today),
):
    if start and end and start > end:
        raise HTTPException(
            status_code=400, detail="Start date must be before end date"
        )
    rows = CalendarService(db, today=today).transactions(start, end)
    return [tx.to_document() for tx in rows]


@app.post("/api/transactions")
def create_transaction(
    payload: TransactionIn,
    db: Session = Depends(get_db),
    today: Optional[date] = Depends(get_today),
):
    tx = LedgerService(db, today=today).add_transaction(payload)
    return {"transaction": _doc(tx)}


@app.put("/api/transactions/{transaction_id}")
def update_transaction(
    transaction_id: str,
    payload: TransactionIn,
    db: Session = Depends(get_db),
    today: Optional[date] = Depends(get_today),
):
    try:
        tx = LedgerService(db, today=today).update_transaction(transaction_id, payload)
    except RecordNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"transaction": _doc(tx)}


@app.delete("/api/transactions/{transaction_id}")
def delete_transaction(
    transaction_id: str,
    db: Session = Depends(get_db),
    today: Optional[date] = Depends(get_today),
):
    try:
        LedgerService(db, today=today).delete_transaction(transaction_id)
    except RecordNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"status": "deleted"}


@app.post("/api/recurrings")
def create_recurring(
    payload: RecurringTransactionIn,
    db: Session = Depends(get_db),
    today: Optional[date] = Depends(get_today),
):
    rule = LedgerService(db, today=today).add_recurring(payload)
    return {"recurring": _doc(rule)}


@app.put("/api/recurrings/{rule_id}")
def update_recurring(
    rule_id: str,
    payload: RecurringTransactionIn,
    db: Session = Depends(get_db),
    today: Optional[date] = Depends(get_today),
):
    try:
        rule = LedgerService(db, today=today).update_recurring(rule_id, payload)
    except RecordNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"recurring": _doc(rule)}


@app.delete("/api/recurrings/{rule_id}")
def delete_recurring(
    rule_id: str,
    db: Session = Depends(get_db),
    today: Optional[date] = Depends(get_today),
):
    try:
        LedgerService(db, today=today).delete_recurring(rule_id)
    except RecordNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"status": "deleted"}


@app.get("/api/recurrings/upcoming")
def upcoming_recurrings(
    days: int = Query(30, ge=0, le=366),
    db: Session = Depends(get_db),
    today: Optional[date] = Depends(get_today),
):
    rows = CalendarService(db, today=today).upcoming(days)
    return [
        {"recurring": rule.to_document(), "date": day.isoformat()} for rule, day in rows
    ]


@app.get("/api/recurrings/summary")
def recurring_summary(
    db: Session = Depends(get_db), today: Optional[date] = Depends(get_today)
):
    return CalendarService(db, today=today).recurring_summary()


@app.post("/api/categories")
def create_category(
    payload: CategoryIn,
    db: Session = Depends(get_db),
    today: Optional[date] = Depends(get_today),
):
    category = LedgerService(db, today=today).add_category(payload)
    return {"category": _doc(category)}


@app.patch("/api/categories/{category_id}")
def rename_category(
    category_id: str,
    name: str = Body(..., embed=True, min_length=1, max_length=100),
    db: Session = Depends(get_db),
    today: Optional[date] = Depends(get_today),
):
    try:
        category = LedgerService(db, today=today).rename_category(category_id, name)
    except RecordNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return category.to_document()


@app.delete("/api/categories/{category_id}")
def delete_category(
    category_id: str,
    db: Session = Depends(get_db),
    today: Optional[date] = Depends(get_today),
):
    try:
        LedgerService(db, today=today).delete_category(category_id)
    except RecordNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"status": "deleted"}


@app.post("/api/budgets")
def set_budget(
    payload: BudgetIn,
    db: Session = Depends(get_db),
    today: Optional[date] = Depends(get_today),
):
    budget = LedgerService(db, today=today).set_budget(payload)
    return {"budget": _doc(budget)}


@app.delete("/api/budgets/{budget_id}")
def delete_budget(
    budget_id: str,
    db: Session = Depends(get_db),
    today: Optional[date] = Depends(get_today),
):
    try:
        LedgerService(db, today=today).delete_budget(budget_id)
    except RecordNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"status": "deleted"}


@app.get("/api/budgets/{month}")
def budgets_for_month(
    month: str,
    db: Session = Depends(get_db),
    today: Optional[date] = Depends(get_today),
):
    try:
        parse_month_key(month)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    service = CalendarService(db, today=today)
    summary = service.month_summary(month)
    return {
        "month": month,
        "budgets": [_progress_out(row) for row in service.budget_progress(month)],
        **service.budget_totals(month),
        "income": summary.income,
        "expense": summary.expense,
        "balanceBeforeBudget": summary.balance_before_budget,
        "balanceAfterBudget": summary.balance_after_budget,
    }


@app.get("/api/goals")
def list_goals(db: Session = Depends(get_db)):
    return [g.to_document() for g in GoalStore(db).load()]


@app.post("/api/goals")
def create_goal(
    payload: GoalIn,
    db: Session = Depends(get_db),
    today: Optional[date] = Depends(get_today),
):
    goal = LedgerService(db, today=today).add_goal(payload)
    return {"goal": _doc(goal)}


@app.get("/api/goals/projections")
def goal_projections(
    db: Session = Depends(get_db), today: Optional[date] = Depends(get_today)
):
    rows = CalendarService(db, today=today).goal_projections()
    return [_goal_projection_out(row) for row in rows]


@app.put("/api/goals/{goal_id}")
def update_goal(
    goal_id: str,
    payload: GoalIn,
    db: Session = Depends(get_db),
    today: Optional[date] = Depends(get_today),
):
    try:
        goal = LedgerService(db, today=today).update_goal(goal_id, payload)
    except RecordNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"goal": _doc(goal)}


@app.delete("/api/goals/{goal_id}")
def delete_goal(
    goal_id: str,
    db: Session = Depends(get_db),
    today: Optional[date] = Depends(get_today),
):
    try:
        LedgerService(db, today=today).delete_goal(goal_id)
    except RecordNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"status": "deleted"}


# Derived views


@app.get("/api/balances")
def balances(db: Session = Depends(get_db), today: Optional[date] = Depends(get_today)):
    service = CalendarService(db, today=today)
    result = service.balances()
    return {
        "asOf": service.today.isoformat(),
        "today": result.today,
        "week": result.week,
        "month": result.month,
        "year": result.year,
        "projectedEndOfMonth": service.projected_end_of_month(),
    }


@app.get("/api/days/{day}")
def day_transactions(
    day: date,
    db: Session = Depends(get_db),
    today: Optional[date] = Depends(get_today),
):
    rows = CalendarService(db, today=today).day(day)
    return [tx.to_document() for tx in rows]


@app.get("/api/calendar/{year}")
def calendar_year(
    year: int,
    db: Session = Depends(get_db),
    today: Optional[date] = Depends(get_today),
):
    if not 1 <= year <= 9999:
        raise HTTPException(status_code=400, detail="Invalid year")
    cells = CalendarService(db, today=today).year_cells(year)
    return {
        "year": year,
        "days": {day.isoformat(): total for day, total in sorted(cells.items())},
    }


@app.get("/api/calendar/{year}/{month}")
def calendar_month(
    year: int,
    month: int,
    db: Session = Depends(get_db),
    today: Optional[date] = Depends(get_today),
):
    if not 1 <= month <= 12 or not 1 <= year <= 9999:
        raise HTTPException(status_code=400, detail="Invalid month")
    rows = CalendarService(db, today=today).month_days(year, month)
    return {"year": year, "month": month, "days": [_day_out(row) for row in rows]}


@app.get("/api/spending")
def spending(
    request: Request,
    db: Session = Depends(get_db),
    today: Optional[date] = Depends(get_today),
):
    service = CalendarService(db, today=today)
    slug = request.query_params.get("period")
    try:
        period = resolve_period(
            slug,
            request.query_params.get("start"),
            request.query_params.get("end"),
            today=service.today,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"period": period.slug, "categories": service.spending(period)}


# Export / import


@app.get("/api/export")
def export_snapshot(
    db: Session = Depends(get_db), today: Optional[date] = Depends(get_today)
):
    stamp = (today or local_today()).isoformat()
    filename = f"budget-calendar-backup-{stamp}.json"
    return Response(
        content=SnapshotService(db).export_json(),
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.post("/api/import")
async def import_snapshot(request: Request, db: Session = Depends(get_db)):
    raw = await request.body()
    try:
        replaced = SnapshotService(db).import_bundle(raw)
    except InvalidSnapshot as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"replaced": replaced}


def main() -> None:
    import uvicorn

    logging.basicConfig(level=logging.INFO)
    settings = get_settings()
    logger.info(f"server_starting: host={settings.api_host} port={settings.api_port}")
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)


if __name__ == "__main__":
    main()
