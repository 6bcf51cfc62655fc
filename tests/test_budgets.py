from datetime import date

import pytest
from pydantic import ValidationError

from budgets import (
    active_budgets,
    budget_progress,
    is_active_for_month,
    month_summary,
    total_budgeted,
    total_remaining,
)
from schemas import (
    Budget,
    Category,
    MonthRange,
    RecurringSchedule,
    SingleMonth,
    Transaction,
)

FOOD = Category(id="cat-food", name="Food")
RENT = Category(id="cat-rent", name="Rent")


def _budget(budget_id: str, schedule, amount: float = 200, category=FOOD) -> Budget:
    return Budget(id=budget_id, category_id=category.id, amount=amount, schedule=schedule)


def _tx(day: date, amount: float, category=None, budget_id=None) -> Transaction:
    return Transaction(
        id=f"{day}-{amount}",
        date=day,
        description="tx",
        amount=amount,
        category=category,
        budget_id=budget_id,
    )


def test_single_month_budget_only_active_in_its_month():
    budget = _budget("b", SingleMonth(month="2024-03"))
    assert is_active_for_month(budget, "2024-03")
    assert not is_active_for_month(budget, "2024-04")


def test_recurring_budget_without_start_is_always_active():
    budget = _budget("b", RecurringSchedule())
    assert is_active_for_month(budget, "1999-01")
    assert is_active_for_month(budget, "2030-12")


def test_recurring_budget_from_month():
    budget = _budget("b", RecurringSchedule(from_month="2024-03"))
    assert not is_active_for_month(budget, "2024-02")
    assert is_active_for_month(budget, "2024-03")
    assert is_active_for_month(budget, "2025-01")


def test_range_budget_is_inclusive():
    budget = _budget("b", MonthRange(start="2024-03", end="2024-05"))
    active = [m for m in ("2024-02", "2024-03", "2024-04", "2024-05", "2024-06")
              if is_active_for_month(budget, m)]
    assert active == ["2024-03", "2024-04", "2024-05"]


def test_range_must_not_be_inverted():
    with pytest.raises(ValidationError):
        MonthRange(start="2024-05", end="2024-03")


def test_flat_documents_are_normalized():
    ranged = Budget.model_validate(
        {"id": "r", "categoryId": "c", "amount": 50, "month": "2024-03", "endMonth": "2024-05"}
    )
    assert ranged.schedule == MonthRange(start="2024-03", end="2024-05")

    recurring = Budget.model_validate(
        {"id": "q", "categoryId": "c", "amount": 50, "month": "2024-03", "recurring": True}
    )
    assert recurring.schedule == RecurringSchedule(from_month="2024-03")

    single = Budget.model_validate(
        {"id": "s", "categoryId": "c", "amount": 50, "month": "2024-03"}
    )
    assert single.schedule == SingleMonth(month="2024-03")
    assert single.to_document()["schedule"] == {"mode": "single", "month": "2024-03"}


def test_over_budget_by_category_name():
    budget = _budget("food", SingleMonth(month="2024-03"))
    timeline = [
        _tx(date(2024, 3, 2), -80, category="Food"),
        _tx(date(2024, 3, 20), -150, category="Food"),
        _tx(date(2024, 4, 1), -999, category="Food"),
        _tx(date(2024, 3, 3), 40, category="Food"),
    ]
    [row] = budget_progress([budget], [FOOD], timeline, "2024-03")
    assert row.spent == 230
    assert row.remaining == -30
    assert row.over
    assert row.category_name == "Food"
    assert row.percent_used == pytest.approx(115.0)


def test_spending_counts_once_when_linked_by_id_and_category():
    budget = _budget("food", RecurringSchedule())
    timeline = [
        _tx(date(2024, 3, 2), -20, category="Food", budget_id="food"),
        _tx(date(2024, 3, 3), -5, budget_id="food"),
        _tx(date(2024, 3, 4), -7, category="Rent"),
    ]
    [row] = budget_progress([budget], [FOOD, RENT], timeline, "2024-03")
    assert row.spent == 25


def test_totals_cover_only_active_budgets():
    budgets = [
        _budget("food", RecurringSchedule(), amount=200),
        _budget("rent", SingleMonth(month="2024-03"), amount=800, category=RENT),
        _budget("old", SingleMonth(month="2023-03"), amount=999),
    ]
    timeline = [_tx(date(2024, 3, 2), -50, category="Food")]
    assert [b.id for b in active_budgets(budgets, "2024-03")] == ["food", "rent"]
    assert total_budgeted(budgets, "2024-03") == 1000
    assert total_remaining(budgets, [FOOD, RENT], timeline, "2024-03") == 950


def test_month_summary():
    budgets = [_budget("food", RecurringSchedule(), amount=200)]
    timeline = [
        _tx(date(2024, 3, 1), 1000),
        _tx(date(2024, 3, 2), -300),
        _tx(date(2024, 2, 2), -5),
    ]
    summary = month_summary(budgets, timeline, "2024-03")
    assert summary.income == 1000
    assert summary.expense == -300
    assert summary.balance_before_budget == 700
    assert summary.balance_after_budget == 500


def test_flat_recurring_flag_must_be_a_real_boolean():
    budget = Budget.model_validate(
        {
            "id": "s",
            "categoryId": "c",
            "amount": 50,
            "month": "2024-03",
            "recurring": "false",
        }
    )
    assert budget.schedule == SingleMonth(month="2024-03")
