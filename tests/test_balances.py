from datetime import date

import pytest

from balances import (
    balance_as_of,
    compute_balances,
    daily_balances,
    daily_net_totals,
    month_day_balances,
    projected_end_of_month_balance,
    spending_by_category,
)
from models import RecurrenceKind
from schemas import RecurringTransaction, Transaction
from timeline import merge_timeline

# Wednesday; its ISO week ends on Sunday 2024-03-17
TODAY = date(2024, 3, 13)


def _tx(day: date, amount: float, category=None) -> Transaction:
    return Transaction(
        id=f"{day.isoformat()}-{amount}",
        date=day,
        description="tx",
        amount=amount,
        category=category,
    )


def test_horizons_are_cumulative():
    timeline = [
        _tx(date(2023, 12, 31), 100),
        _tx(date(2024, 3, 13), -10),
        _tx(date(2024, 3, 17), -20),
        _tx(date(2024, 3, 18), -30),
        _tx(date(2024, 11, 30), -40),
        _tx(date(2025, 1, 1), -1000),
    ]
    balances = compute_balances(timeline, today=TODAY)
    assert balances.today == 90
    assert balances.week == 70
    assert balances.month == 40
    assert balances.year == 0


def test_horizons_each_equal_balance_as_of_cutoff():
    timeline = [_tx(date(2024, m, 3), 10.5 * m) for m in range(1, 13)]
    balances = compute_balances(timeline, today=TODAY)
    assert balances.today == balance_as_of(timeline, TODAY)
    assert balances.year == pytest.approx(sum(tx.amount for tx in timeline))


def test_empty_timeline_is_all_zero():
    balances = compute_balances([], today=TODAY)
    assert (balances.today, balances.week, balances.month, balances.year) == (0, 0, 0, 0)


def test_end_to_end_one_off_and_recurring_salary():
    salary = RecurringTransaction(
        id="salary",
        description="Salary",
        amount=1000,
        kind=RecurrenceKind.monthly,
        day_of_month=1,
        start_date=date(2024, 3, 1),
    )
    timeline = merge_timeline([_tx(date(2024, 3, 5), -50)], [salary], today=TODAY)
    balances = compute_balances(timeline, today=TODAY)
    assert balances.month == 950
    assert balances.today == 950
    # April through December salaries are still ahead
    assert balances.year == 950 + 9 * 1000
    assert projected_end_of_month_balance(timeline, today=TODAY) == 950


def test_daily_balances_carry_opening_balance():
    timeline = [
        _tx(date(2024, 2, 28), 100),
        _tx(date(2024, 3, 2), -30),
        _tx(date(2024, 3, 2), -20),
    ]
    rows = daily_balances(timeline, start=date(2024, 3, 1), end=date(2024, 3, 3))
    assert [(r.begin, r.end) for r in rows] == [(100, 100), (100, 50), (50, 50)]
    assert rows[1].net == -50
    assert len(rows[1].transactions) == 2


def test_month_day_balances_include_earlier_history():
    timeline = [_tx(date(2024, 1, 15), 200), _tx(date(2024, 4, 1), -25)]
    rows = month_day_balances(timeline, 2024, 4)
    assert len(rows) == 30
    assert rows[0].day == date(2024, 4, 1)
    assert rows[0].begin == 200
    assert rows[-1].end == 175


def test_daily_net_totals_groups_by_date():
    timeline = [
        _tx(date(2024, 5, 1), 10),
        _tx(date(2024, 5, 1), -4),
        _tx(date(2023, 5, 1), 99),
    ]
    assert daily_net_totals(timeline, 2024) == {date(2024, 5, 1): 6}


def test_spending_by_category_orders_largest_first():
    timeline = [
        _tx(date(2024, 3, 1), -10, "Food"),
        _tx(date(2024, 3, 2), -40, "Rent"),
        _tx(date(2024, 3, 3), -15, "Food"),
        _tx(date(2024, 3, 4), -5),
        _tx(date(2024, 3, 5), 500, "Salary"),
        _tx(date(2024, 4, 1), -99, "Food"),
    ]
    result = spending_by_category(timeline, date(2024, 3, 1), date(2024, 3, 31))
    assert list(result.items()) == [("Rent", 40), ("Food", 25), ("Uncategorized", 5)]


def test_walk_reaches_last_representable_day():
    rows = month_day_balances([_tx(date(9999, 12, 31), 5)], 9999, 12)
    assert len(rows) == 31
    assert rows[-1].day == date.max
    assert rows[-1].end == 5

    balances = compute_balances([_tx(date.max, 5)], today=date.max)
    assert balances.week == balances.year == 5
