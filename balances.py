from collections import defaultdict
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterable, Optional

from periods import Horizon, horizon_end, month_end, month_start
from schemas import Transaction


@dataclass(frozen=True)
class Balances:
    """Cumulative balances at each horizon (not isolated period totals)."""

    today: float
    week: float
    month: float
    year: float


@dataclass(frozen=True)
class DayBalance:
    day: date
    begin: float
    end: float
    transactions: tuple[Transaction, ...]

    @property
    def net(self) -> float:
        return self.end - self.begin


def balance_as_of(timeline: Iterable[Transaction], day: date) -> float:
    return sum((tx.amount for tx in timeline if tx.date <= day), 0.0)


def compute_balances(timeline: Iterable[Transaction], *, today: date) -> Balances:
    cutoffs = {horizon: horizon_end(horizon, today) for horizon in Horizon}
    totals = {horizon: 0.0 for horizon in Horizon}
    for tx in timeline:
        for horizon, cutoff in cutoffs.items():
            if tx.date <= cutoff:
                totals[horizon] += tx.amount
    return Balances(
        today=totals[Horizon.today],
        week=totals[Horizon.week],
        month=totals[Horizon.month],
        year=totals[Horizon.year],
    )


def projected_end_of_month_balance(
    timeline: Iterable[Transaction], *, today: date
) -> float:
    return balance_as_of(timeline, month_end(today.year, today.month))


def daily_balances(
    timeline: Iterable[Transaction], *, start: date, end: date
) -> list[DayBalance]:
    """Running balance for every day in ``[start, end]``.

    The walk opens with the total of everything dated before ``start`` so a
    day's ``end`` always equals the cumulative balance on that date.
    Transactions sharing a day are applied together in their stored order.
    """
    opening = 0.0
    by_day: dict[date, list[Transaction]] = defaultdict(list)
    for tx in timeline:
        if tx.date < start:
            opening += tx.amount
        elif tx.date <= end:
            by_day[tx.date].append(tx)

    rows: list[DayBalance] = []
    running = opening
    day = start
    while day <= end:
        day_txs = tuple(by_day.get(day, ()))
        begin = running
        running = begin + sum((tx.amount for tx in day_txs), 0.0)
        rows.append(DayBalance(day=day, begin=begin, end=running, transactions=day_txs))
        if day == end:
            break
        day += timedelta(days=1)
    return rows


def month_day_balances(
    timeline: Iterable[Transaction], year: int, month: int
) -> list[DayBalance]:
    return daily_balances(
        timeline, start=month_start(year, month), end=month_end(year, month)
    )


def daily_net_totals(timeline: Iterable[Transaction], year: int) -> dict[date, float]:
    totals: dict[date, float] = defaultdict(float)
    for tx in timeline:
        if tx.date.year == year:
            totals[tx.date] += tx.amount
    return dict(totals)


def spending_by_category(
    timeline: Iterable[Transaction],
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> dict[str, float]:
    """Absolute expense totals per category, largest first."""
    totals: dict[str, float] = defaultdict(float)
    for tx in timeline:
        if tx.amount >= 0:
            continue
        if start and tx.date < start:
            continue
        if end and tx.date > end:
            continue
        totals[tx.category or "Uncategorized"] += abs(tx.amount)
    return dict(sorted(totals.items(), key=lambda item: item[1], reverse=True))
