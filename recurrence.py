from datetime import date, timedelta
from typing import Iterable, Iterator, Optional

from models import MonthDayPolicy, RecurrenceKind
from periods import days_in_month, year_end
from schemas import RecurringTransaction, Transaction

BIWEEKLY_STEP = timedelta(days=14)
BIWEEKLY_PER_MONTH = 26 / 12


def upper_bound(rule: RecurringTransaction, today: date) -> date:
    """Last day a rule may fire: its end date, else the end of today's year."""
    return rule.end_date or year_end(today)


def instance_id(rule_id: str, day: date) -> str:
    return f"recurring-{rule_id}-{day.isoformat()}"


def _monthly_date(
    year: int, month: int, desired_day: int, policy: MonthDayPolicy
) -> Optional[date]:
    dim = days_in_month(year, month)
    if desired_day > dim:
        if policy == MonthDayPolicy.skip:
            return None
        return date(year, month, dim)
    return date(year, month, desired_day)


def _monthly_dates(rule: RecurringTransaction, end: date) -> Iterator[date]:
    year, month = rule.start_date.year, rule.start_date.month
    while date(year, month, 1) <= end:
        candidate = _monthly_date(year, month, rule.day_of_month, rule.month_day_policy)
        if candidate is not None and rule.start_date <= candidate <= end:
            yield candidate
        if month < 12:
            month += 1
        elif year < date.max.year:
            year, month = year + 1, 1
        else:
            break


def _python_weekday(day_of_week: int) -> int:
    # stored weekdays count from Sunday, date.weekday() from Monday
    return (day_of_week - 1) % 7


def _biweekly_dates(rule: RecurringTransaction, end: date) -> Iterator[date]:
    offset = timedelta(
        days=(_python_weekday(rule.day_of_week) - rule.start_date.weekday()) % 7
    )
    if date.max - rule.start_date < offset:
        return
    current = rule.start_date + offset
    while current <= end:
        yield current
        if end - current < BIWEEKLY_STEP:
            break
        current += BIWEEKLY_STEP


def occurrence_dates(rule: RecurringTransaction, *, today: date) -> list[date]:
    end = upper_bound(rule, today)
    if end < rule.start_date:
        return []
    if rule.kind == RecurrenceKind.monthly:
        if rule.day_of_month is None:
            return []
        return list(_monthly_dates(rule, end))
    if rule.day_of_week is None:
        return []
    return list(_biweekly_dates(rule, end))


def expand_rule(rule: RecurringTransaction, *, today: date) -> list[Transaction]:
    return [
        Transaction(
            id=instance_id(rule.id, day),
            date=day,
            description=rule.description,
            amount=rule.amount,
            category=rule.category,
            budget_id=rule.budget_id,
            recurring=True,
        )
        for day in occurrence_dates(rule, today=today)
    ]


def expand_rules(
    rules: Iterable[RecurringTransaction], *, today: date
) -> list[Transaction]:
    instances: list[Transaction] = []
    for rule in rules:
        instances.extend(expand_rule(rule, today=today))
    return instances


def next_occurrence(
    rule: RecurringTransaction, on_or_after: date, *, today: date
) -> Optional[date]:
    for day in occurrence_dates(rule, today=today):
        if day >= on_or_after:
            return day
    return None


def monthly_equivalent(rule: RecurringTransaction) -> float:
    if rule.kind == RecurrenceKind.biweekly:
        return rule.amount * BIWEEKLY_PER_MONTH
    return rule.amount


def recurring_summary(rules: Iterable[RecurringTransaction]) -> dict[str, object]:
    total_income = 0.0
    total_expenses = 0.0
    expense_by_category: dict[str, float] = {}
    income_count = 0
    expense_count = 0

    for rule in rules:
        monthly = monthly_equivalent(rule)
        if monthly >= 0:
            total_income += monthly
            income_count += 1
        else:
            total_expenses += -monthly
            expense_count += 1
            name = rule.category or "Uncategorized"
            expense_by_category[name] = expense_by_category.get(name, 0.0) - monthly

    coverage_ratio = (
        (total_income / total_expenses * 100) if total_expenses > 0 else 100.0
    )
    breakdown = [
        {
            "name": name,
            "amount": amount,
            "percent": amount / total_expenses * 100,
        }
        for name, amount in sorted(
            expense_by_category.items(), key=lambda x: x[1], reverse=True
        )
    ]
    return {
        "total_monthly_income": total_income,
        "total_monthly_expenses": total_expenses,
        "net_monthly": total_income - total_expenses,
        "coverage_ratio": coverage_ratio,
        "expense_breakdown": breakdown,
        "rule_counts": {
            "income": income_count,
            "expense": expense_count,
            "total": income_count + expense_count,
        },
    }
