from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

from periods import month_key
from schemas import (
    Budget,
    Category,
    MonthRange,
    RecurringSchedule,
    SingleMonth,
    Transaction,
)


@dataclass(frozen=True)
class BudgetProgress:
    budget: Budget
    category_name: Optional[str]
    spent: float
    remaining: float

    @property
    def over(self) -> bool:
        return self.remaining < 0

    @property
    def percent_used(self) -> Optional[float]:
        if not self.budget.amount:
            return None
        return self.spent / self.budget.amount * 100


@dataclass(frozen=True)
class MonthSummary:
    month: str
    income: float
    expense: float
    total_budgeted: float

    @property
    def balance_before_budget(self) -> float:
        return self.income + self.expense

    @property
    def balance_after_budget(self) -> float:
        return self.balance_before_budget - self.total_budgeted


def is_active_for_month(budget: Budget, month: str) -> bool:
    schedule = budget.schedule
    if isinstance(schedule, SingleMonth):
        return schedule.month == month
    if isinstance(schedule, RecurringSchedule):
        return schedule.from_month is None or schedule.from_month <= month
    if isinstance(schedule, MonthRange):
        return schedule.start <= month <= schedule.end
    return False


def active_budgets(budgets: Iterable[Budget], month: str) -> list[Budget]:
    return [b for b in budgets if is_active_for_month(b, month)]


def _category_names(categories: Iterable[Category]) -> dict[str, str]:
    return {c.id: c.name for c in categories}


def spent_for_budget(
    budget: Budget,
    category_name: Optional[str],
    timeline: Iterable[Transaction],
    month: str,
) -> float:
    spent = 0.0
    for tx in timeline:
        if tx.amount >= 0 or month_key(tx.date) != month:
            continue
        if tx.budget_id == budget.id or (
            category_name is not None and tx.category == category_name
        ):
            spent += abs(tx.amount)
    return spent


def budget_progress(
    budgets: Iterable[Budget],
    categories: Iterable[Category],
    timeline: Sequence[Transaction],
    month: str,
) -> list[BudgetProgress]:
    names = _category_names(categories)
    progress: list[BudgetProgress] = []
    for budget in active_budgets(budgets, month):
        category_name = names.get(budget.category_id)
        spent = spent_for_budget(budget, category_name, timeline, month)
        progress.append(
            BudgetProgress(
                budget=budget,
                category_name=category_name,
                spent=spent,
                remaining=budget.amount - spent,
            )
        )
    return progress


def total_remaining(
    budgets: Iterable[Budget],
    categories: Iterable[Category],
    timeline: Sequence[Transaction],
    month: str,
) -> float:
    """Sum of ``amount - spent`` over the month's active budgets."""
    return sum(
        (row.remaining for row in budget_progress(budgets, categories, timeline, month)),
        0.0,
    )


def total_budgeted(budgets: Iterable[Budget], month: str) -> float:
    """Sum of ``amount`` over the month's active budgets, ignoring spending."""
    return sum((b.amount for b in active_budgets(budgets, month)), 0.0)


def month_summary(
    budgets: Iterable[Budget], timeline: Iterable[Transaction], month: str
) -> MonthSummary:
    income = 0.0
    expense = 0.0
    for tx in timeline:
        if month_key(tx.date) != month:
            continue
        if tx.amount > 0:
            income += tx.amount
        elif tx.amount < 0:
            expense += tx.amount
    return MonthSummary(
        month=month,
        income=income,
        expense=expense,
        total_budgeted=total_budgeted(budgets, month),
    )
