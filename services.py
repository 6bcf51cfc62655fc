from __future__ import annotations

import json
import logging
import math
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Optional, Sequence, Union
from zoneinfo import ZoneInfo

from pydantic import TypeAdapter, ValidationError
from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from balances import (
    Balances,
    DayBalance,
    compute_balances,
    daily_net_totals,
    month_day_balances,
    projected_end_of_month_balance,
    spending_by_category,
)
from budgets import (
    BudgetProgress,
    MonthSummary,
    budget_progress,
    month_summary,
    total_budgeted,
    total_remaining,
)
from config import get_settings
from goals import GoalProjection, average_monthly_net, project_goals
from models import (
    ACTIVE_PROFILE_KEY,
    GOALS_KEY,
    AppDocument,
    CollectionKind,
    Profile,
    ProfileCollection,
)
from periods import Period, month_key
from recurrence import next_occurrence, recurring_summary
from schemas import (
    Budget,
    BudgetIn,
    Category,
    CategoryIn,
    Goal,
    GoalIn,
    RecurringTransaction,
    RecurringTransactionIn,
    SingleMonth,
    SnapshotBundle,
    Transaction,
    TransactionIn,
    UserProfile,
)
from timeline import (
    cached_timeline,
    sort_timeline,
    transactions_between,
    transactions_on,
)

logger = logging.getLogger(__name__)

COLLECTION_ADAPTERS: dict[CollectionKind, TypeAdapter] = {
    CollectionKind.transactions: TypeAdapter(list[Transaction]),
    CollectionKind.recurrings: TypeAdapter(list[RecurringTransaction]),
    CollectionKind.categories: TypeAdapter(list[Category]),
    CollectionKind.budgets: TypeAdapter(list[Budget]),
}
GOALS_ADAPTER = TypeAdapter(list[Goal])


class ProfileNotFound(ValueError):
    pass


class RecordNotFound(ValueError):
    pass


class InvalidSnapshot(ValueError):
    pass


def parse_amount(value: Union[float, int, str, None]) -> Optional[float]:
    """Parse a user-entered amount, returning None for anything non-numeric."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        amount = float(value)
    else:
        clean = str(value).strip().replace("€", "").replace("$", "").replace(" ", "")
        clean = clean.replace(",", ".")
        if clean.count(".") > 1:
            parts = clean.split(".")
            clean = "".join(parts[:-1]) + "." + parts[-1]
        try:
            amount = float(Decimal(clean))
        except InvalidOperation:
            return None
    if not math.isfinite(amount):
        return None
    return amount


def local_today() -> date:
    tz = ZoneInfo(get_settings().timezone)
    return datetime.now(tz).date()


def new_id() -> str:
    return str(uuid.uuid4())


def _dump(records: Sequence) -> str:
    return json.dumps([record.to_document() for record in records])


@dataclass(frozen=True)
class UserCollections:
    transactions: tuple[Transaction, ...]
    recurrings: tuple[RecurringTransaction, ...]
    categories: tuple[Category, ...]
    budgets: tuple[Budget, ...]


class ProfileService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list(self) -> list[UserProfile]:
        stmt = select(Profile).order_by(Profile.created_at, Profile.id)
        return [
            UserProfile(id=p.id, name=p.name) for p in self.session.scalars(stmt).all()
        ]

    def get(self, profile_id: str) -> Profile:
        profile = self.session.get(Profile, profile_id)
        if not profile:
            raise ProfileNotFound("Profile not found")
        return profile

    def current_id(self) -> Optional[str]:
        pointer = self.session.get(AppDocument, ACTIVE_PROFILE_KEY)
        if not pointer or not self.session.get(Profile, pointer.payload):
            return None
        return pointer.payload

    def current(self) -> Optional[UserProfile]:
        profile_id = self.current_id()
        if profile_id is None:
            return None
        profile = self.get(profile_id)
        return UserProfile(id=profile.id, name=profile.name)

    def _set_active(self, profile_id: Optional[str]) -> None:
        pointer = self.session.get(AppDocument, ACTIVE_PROFILE_KEY)
        if profile_id is None:
            if pointer:
                self.session.delete(pointer)
            return
        if pointer:
            pointer.payload = profile_id
        else:
            self.session.add(AppDocument(key=ACTIVE_PROFILE_KEY, payload=profile_id))

    def create(self, name: str) -> UserProfile:
        profile = Profile(id=new_id(), name=name.strip())
        profile.collections = [
            ProfileCollection(kind=kind, payload="[]") for kind in CollectionKind
        ]
        self.session.add(profile)
        self._set_active(profile.id)
        self.session.commit()
        logger.info(f"profile_created: id={profile.id}")
        return UserProfile(id=profile.id, name=profile.name)

    def switch(self, profile_id: str) -> UserProfile:
        profile = self.get(profile_id)
        self._set_active(profile.id)
        self.session.commit()
        logger.info(f"profile_switched: id={profile.id}")
        return UserProfile(id=profile.id, name=profile.name)

    def delete(self, profile_id: str) -> None:
        profile = self.get(profile_id)
        was_active = self.current_id() == profile_id
        self.session.delete(profile)
        self.session.flush()
        if was_active:
            remaining = self.list()
            self._set_active(remaining[0].id if remaining else None)
        self.session.commit()
        logger.info(f"profile_deleted: id={profile_id} was_active={was_active}")

    def reset_all(self) -> None:
        self.session.execute(delete(ProfileCollection))
        self.session.execute(delete(Profile))
        self.session.execute(delete(AppDocument))
        self.session.commit()
        self.session.expunge_all()
        logger.info("store_reset: all profiles, goals and pointers erased")


class CollectionStore:
    """Per-profile collections, each persisted as one JSON document.

    Without an active profile every load is empty and every save is skipped.
    Documents that fail to parse are treated as empty.
    """

    def __init__(self, session: Session, profile_id: Optional[str] = None) -> None:
        self.session = session
        self.profile_id = (
            profile_id if profile_id is not None else ProfileService(session).current_id()
        )

    def _row(self, kind: CollectionKind) -> Optional[ProfileCollection]:
        stmt = select(ProfileCollection).where(
            ProfileCollection.profile_id == self.profile_id,
            ProfileCollection.kind == kind,
        )
        return self.session.scalar(stmt)

    def _load(self, kind: CollectionKind) -> list:
        if self.profile_id is None:
            return []
        row = self._row(kind)
        if row is None:
            return []
        try:
            return COLLECTION_ADAPTERS[kind].validate_json(row.payload)
        except ValidationError as exc:
            logger.warning(
                f"collection_discarded: profile={self.profile_id} kind={kind.value} "
                f"errors={exc.error_count()}"
            )
            return []

    def write(self, kind: CollectionKind, records: Sequence) -> bool:
        """Stage a full overwrite of one collection without committing."""
        if self.profile_id is None:
            logger.info(f"collection_save_skipped: kind={kind.value} no active profile")
            return False
        row = self._row(kind)
        if row is None:
            row = ProfileCollection(profile_id=self.profile_id, kind=kind)
            self.session.add(row)
        row.payload = _dump(records)
        return True

    def _save(self, kind: CollectionKind, records: Sequence) -> None:
        if self.write(kind, records):
            self.session.commit()

    def load(self, kind: CollectionKind) -> list:
        return self._load(kind)

    def save(self, kind: CollectionKind, records: Sequence) -> None:
        if kind == CollectionKind.transactions:
            self.save_transactions(records)
        else:
            self._save(kind, records)

    def load_transactions(self) -> list[Transaction]:
        return self._load(CollectionKind.transactions)

    def save_transactions(self, transactions: Sequence[Transaction]) -> None:
        # materialized recurring instances are derived, never stored
        stored = [tx for tx in transactions if not tx.recurring]
        self._save(CollectionKind.transactions, stored)

    def load_recurrings(self) -> list[RecurringTransaction]:
        return self._load(CollectionKind.recurrings)

    def save_recurrings(self, recurrings: Sequence[RecurringTransaction]) -> None:
        self._save(CollectionKind.recurrings, recurrings)

    def load_categories(self) -> list[Category]:
        return self._load(CollectionKind.categories)

    def save_categories(self, categories: Sequence[Category]) -> None:
        self._save(CollectionKind.categories, categories)

    def load_budgets(self) -> list[Budget]:
        return self._load(CollectionKind.budgets)

    def save_budgets(self, budgets: Sequence[Budget]) -> None:
        self._save(CollectionKind.budgets, budgets)

    def load_all(self) -> UserCollections:
        return UserCollections(
            transactions=tuple(self.load_transactions()),
            recurrings=tuple(self.load_recurrings()),
            categories=tuple(self.load_categories()),
            budgets=tuple(self.load_budgets()),
        )


class GoalStore:
    """Goals live outside the profiles and are shared by all of them."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def load(self) -> list[Goal]:
        doc = self.session.get(AppDocument, GOALS_KEY)
        if doc is None:
            return []
        try:
            return GOALS_ADAPTER.validate_json(doc.payload)
        except ValidationError as exc:
            logger.warning(f"goals_discarded: errors={exc.error_count()}")
            return []

    def save(self, goals: Sequence[Goal]) -> None:
        doc = self.session.get(AppDocument, GOALS_KEY)
        if doc is None:
            doc = AppDocument(key=GOALS_KEY, payload="[]")
            self.session.add(doc)
        doc.payload = _dump(goals)
        self.session.commit()


class SnapshotService:
    def __init__(self, session: Session, profile_id: Optional[str] = None) -> None:
        self.session = session
        self.store = CollectionStore(session, profile_id)

    def export_bundle(self) -> dict[str, list[dict]]:
        data = self.store.load_all()
        return {
            "transactions": [r.to_document() for r in data.transactions],
            "recurrings": [r.to_document() for r in data.recurrings],
            "categories": [r.to_document() for r in data.categories],
            "budgets": [r.to_document() for r in data.budgets],
        }

    def export_json(self) -> str:
        return json.dumps(self.export_bundle(), indent=2)

    def import_bundle(self, raw: Union[str, bytes, dict]) -> list[str]:
        """Replace the collections present in ``raw``; returns their names.

        The bundle is validated in full before anything is written.
        """
        if self.store.profile_id is None:
            raise InvalidSnapshot("No active profile to import into")
        try:
            if isinstance(raw, dict):
                bundle = SnapshotBundle.model_validate(raw)
            else:
                bundle = SnapshotBundle.model_validate_json(raw)
        except ValidationError as exc:
            logger.warning(f"snapshot_rejected: errors={exc.error_count()}")
            raise InvalidSnapshot("Invalid file.") from exc

        replaced: list[str] = []
        if bundle.transactions is not None:
            stored = [tx for tx in bundle.transactions if not tx.recurring]
            self.store.write(CollectionKind.transactions, stored)
            replaced.append(CollectionKind.transactions.value)
        if bundle.recurrings is not None:
            self.store.write(CollectionKind.recurrings, bundle.recurrings)
            replaced.append(CollectionKind.recurrings.value)
        if bundle.categories is not None:
            self.store.write(CollectionKind.categories, bundle.categories)
            replaced.append(CollectionKind.categories.value)
        if bundle.budgets is not None:
            self.store.write(CollectionKind.budgets, bundle.budgets)
            replaced.append(CollectionKind.budgets.value)
        self.session.commit()
        logger.info(
            f"snapshot_imported: profile={self.store.profile_id} replaced={replaced}"
        )
        return replaced


def _find(records: Sequence, record_id: str, label: str):
    for record in records:
        if record.id == record_id:
            return record
    raise RecordNotFound(f"{label} not found")


def _replace(records: Sequence, updated) -> list:
    return [updated if r.id == updated.id else r for r in records]


def _without(records: Sequence, record_id: str) -> list:
    return [r for r in records if r.id != record_id]


class LedgerService:
    """User edits against the active profile's collections and the goals.

    Amounts arrive unparsed; an operation whose amount is not a number, or
    that needs a profile while none is active, is skipped and returns None.
    """

    def __init__(
        self,
        session: Session,
        profile_id: Optional[str] = None,
        *,
        today: Optional[date] = None,
    ) -> None:
        self.session = session
        self.store = CollectionStore(session, profile_id)
        self.goals = GoalStore(session)
        self.today = today or local_today()

    def _has_profile(self) -> bool:
        if self.store.profile_id is None:
            logger.info("ledger_edit_skipped: no active profile")
            return False
        return True

    def add_transaction(self, data: TransactionIn) -> Optional[Transaction]:
        if not self._has_profile():
            return None
        amount = parse_amount(data.amount)
        if amount is None:
            logger.debug("transaction_skipped: amount is not numeric")
            return None
        tx = Transaction(
            id=new_id(),
            date=data.date,
            description=data.description,
            amount=amount,
            category=data.category,
            budget_id=data.budget_id,
        )
        self.store.save_transactions([*self.store.load_transactions(), tx])
        return tx

    def update_transaction(
        self, transaction_id: str, data: TransactionIn
    ) -> Optional[Transaction]:
        transactions = self.store.load_transactions()
        _find(transactions, transaction_id, "Transaction")
        amount = parse_amount(data.amount)
        if amount is None:
            return None
        tx = Transaction(
            id=transaction_id,
            date=data.date,
            description=data.description,
            amount=amount,
            category=data.category,
            budget_id=data.budget_id,
        )
        self.store.save_transactions(_replace(transactions, tx))
        return tx

    def delete_transaction(self, transaction_id: str) -> None:
        transactions = self.store.load_transactions()
        _find(transactions, transaction_id, "Transaction")
        self.store.save_transactions(_without(transactions, transaction_id))

    def _recurring_from(
        self, rule_id: str, data: RecurringTransactionIn
    ) -> Optional[RecurringTransaction]:
        amount = parse_amount(data.amount)
        if amount is None:
            return None
        return RecurringTransaction(
            id=rule_id,
            description=data.description,
            amount=amount,
            kind=data.kind,
            day_of_month=data.day_of_month,
            day_of_week=data.day_of_week,
            start_date=data.start_date,
            end_date=data.end_date,
            category=data.category,
            budget_id=data.budget_id,
            month_day_policy=data.month_day_policy,
        )

    def add_recurring(
        self, data: RecurringTransactionIn
    ) -> Optional[RecurringTransaction]:
        if not self._has_profile():
            return None
        rule = self._recurring_from(new_id(), data)
        if rule is None:
            return None
        self.store.save_recurrings([*self.store.load_recurrings(), rule])
        return rule

    def update_recurring(
        self, rule_id: str, data: RecurringTransactionIn
    ) -> Optional[RecurringTransaction]:
        rules = self.store.load_recurrings()
        _find(rules, rule_id, "Recurring transaction")
        rule = self._recurring_from(rule_id, data)
        if rule is None:
            return None
        self.store.save_recurrings(_replace(rules, rule))
        return rule

    def delete_recurring(self, rule_id: str) -> None:
        rules = self.store.load_recurrings()
        _find(rules, rule_id, "Recurring transaction")
        self.store.save_recurrings(_without(rules, rule_id))

    def add_category(self, data: CategoryIn) -> Optional[Category]:
        if not self._has_profile():
            return None
        category = Category(id=new_id(), name=data.name.strip())
        self.store.save_categories([*self.store.load_categories(), category])
        if data.budget_amount is not None:
            amount = parse_amount(data.budget_amount)
            if amount is not None:
                schedule = data.budget_schedule or SingleMonth(month=month_key(self.today))
                budget = Budget(
                    id=new_id(), category_id=category.id, amount=amount, schedule=schedule
                )
                self.store.save_budgets([*self.store.load_budgets(), budget])
        return category

    def rename_category(self, category_id: str, name: str) -> Category:
        categories = self.store.load_categories()
        _find(categories, category_id, "Category")
        category = Category(id=category_id, name=name.strip())
        self.store.save_categories(_replace(categories, category))
        return category

    def delete_category(self, category_id: str) -> None:
        categories = self.store.load_categories()
        _find(categories, category_id, "Category")
        self.store.save_categories(_without(categories, category_id))
        budgets = self.store.load_budgets()
        self.store.save_budgets([b for b in budgets if b.category_id != category_id])

    def set_budget(self, data: BudgetIn) -> Optional[Budget]:
        """Create a budget, or update the amount of one with the same scope."""
        if not self._has_profile():
            return None
        amount = parse_amount(data.amount)
        if amount is None:
            return None
        budgets = self.store.load_budgets()
        for existing in budgets:
            if (
                existing.category_id == data.category_id
                and existing.schedule == data.schedule
            ):
                updated = existing.model_copy(update={"amount": amount})
                self.store.save_budgets(_replace(budgets, updated))
                return updated
        budget = Budget(
            id=new_id(),
            category_id=data.category_id,
            amount=amount,
            schedule=data.schedule,
        )
        self.store.save_budgets([*budgets, budget])
        return budget

    def delete_budget(self, budget_id: str) -> None:
        budgets = self.store.load_budgets()
        _find(budgets, budget_id, "Budget")
        self.store.save_budgets(_without(budgets, budget_id))

    def add_goal(self, data: GoalIn) -> Optional[Goal]:
        target = parse_amount(data.target)
        if target is None or target <= 0:
            return None
        goal = Goal(id=new_id(), name=data.name, target=target, notes=data.notes)
        self.goals.save([*self.goals.load(), goal])
        return goal

    def update_goal(self, goal_id: str, data: GoalIn) -> Optional[Goal]:
        goals = self.goals.load()
        _find(goals, goal_id, "Goal")
        target = parse_amount(data.target)
        if target is None or target <= 0:
            return None
        goal = Goal(id=goal_id, name=data.name, target=target, notes=data.notes)
        self.goals.save(_replace(goals, goal))
        return goal

    def delete_goal(self, goal_id: str) -> None:
        goals = self.goals.load()
        _find(goals, goal_id, "Goal")
        self.goals.save(_without(goals, goal_id))


class CalendarService:
    """Derived read-only views over the active profile.

    Everything is recomputed on request; the merged timeline is memoized on
    its inputs.
    """

    def __init__(
        self,
        session: Session,
        profile_id: Optional[str] = None,
        *,
        today: Optional[date] = None,
    ) -> None:
        self.store = CollectionStore(session, profile_id)
        self.goals = GoalStore(session)
        self.today = today or local_today()

    def timeline(self) -> tuple[Transaction, ...]:
        return cached_timeline(
            self.store.load_transactions(),
            self.store.load_recurrings(),
            today=self.today,
        )

    def balances(self) -> Balances:
        return compute_balances(self.timeline(), today=self.today)

    def projected_end_of_month(self) -> float:
        return projected_end_of_month_balance(self.timeline(), today=self.today)

    def day(self, day: date) -> list[Transaction]:
        return transactions_on(self.timeline(), day)

    def month_days(self, year: int, month: int) -> list[DayBalance]:
        return month_day_balances(self.timeline(), year, month)

    def budget_progress(self, month: Optional[str] = None) -> list[BudgetProgress]:
        month = month or month_key(self.today)
        return budget_progress(
            self.store.load_budgets(),
            self.store.load_categories(),
            self.timeline(),
            month,
        )

    def budget_totals(self, month: Optional[str] = None) -> dict[str, float]:
        month = month or month_key(self.today)
        budgets = self.store.load_budgets()
        return {
            "total_budgeted": total_budgeted(budgets, month),
            "total_remaining": total_remaining(
                budgets, self.store.load_categories(), self.timeline(), month
            ),
        }

    def month_summary(self, month: Optional[str] = None) -> MonthSummary:
        month = month or month_key(self.today)
        return month_summary(self.store.load_budgets(), self.timeline(), month)

    def goal_projections(self) -> list[GoalProjection]:
        timeline = self.timeline()
        remaining = total_remaining(
            self.store.load_budgets(),
            self.store.load_categories(),
            timeline,
            month_key(self.today),
        )
        return project_goals(
            self.goals.load(),
            balance=compute_balances(timeline, today=self.today).today,
            average_net=average_monthly_net(timeline),
            remaining_budget=remaining,
            today=self.today,
        )

    def spending(self, period: Period) -> dict[str, float]:
        return spending_by_category(self.timeline(), period.start, period.end)

    def recurring_summary(self) -> dict[str, object]:
        return recurring_summary(self.store.load_recurrings())

    def transactions(
        self, start: Optional[date] = None, end: Optional[date] = None
    ) -> list[Transaction]:
        """The merged timeline in date order, optionally limited to a range."""
        timeline = self.timeline()
        if start is not None or end is not None:
            timeline = transactions_between(timeline, start or date.min, end or date.max)
        return sort_timeline(timeline)

    def upcoming(self, days: int = 30) -> list[tuple[RecurringTransaction, date]]:
        """Next firing of each rule within ``days`` of today, soonest first."""
        window = timedelta(days=days)
        horizon = date.max if date.max - self.today < window else self.today + window
        rows: list[tuple[RecurringTransaction, date]] = []
        for rule in self.store.load_recurrings():
            day = next_occurrence(rule, self.today, today=self.today)
            if day is not None and day <= horizon:
                rows.append((rule, day))
        return sorted(rows, key=lambda row: row[1])

    def year_cells(self, year: int) -> dict[date, float]:
        return daily_net_totals(self.timeline(), year)
