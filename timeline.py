"""Merging stored one-off transactions with materialized recurring instances."""

from datetime import date
from functools import lru_cache
from typing import Iterable, Sequence

from recurrence import expand_rules
from schemas import RecurringTransaction, Transaction


def merge_timeline(
    transactions: Iterable[Transaction],
    recurrings: Iterable[RecurringTransaction],
    *,
    today: date,
) -> list[Transaction]:
    """Stored transactions followed by every rule's instances, in that order.

    No deduplication and no sorting happens here; callers that need dates in
    order use ``sort_timeline``.
    """
    timeline = list(transactions)
    timeline.extend(expand_rules(recurrings, today=today))
    return timeline


def sort_timeline(timeline: Iterable[Transaction]) -> list[Transaction]:
    return sorted(timeline, key=lambda tx: tx.date)


def transactions_on(timeline: Iterable[Transaction], day: date) -> list[Transaction]:
    return [tx for tx in timeline if tx.date == day]


def transactions_between(
    timeline: Iterable[Transaction], start: date, end: date
) -> list[Transaction]:
    return [tx for tx in timeline if start <= tx.date <= end]


@lru_cache(maxsize=32)
def _cached_merge(
    transactions: tuple[Transaction, ...],
    recurrings: tuple[RecurringTransaction, ...],
    today: date,
) -> tuple[Transaction, ...]:
    return tuple(merge_timeline(transactions, recurrings, today=today))


def cached_timeline(
    transactions: Sequence[Transaction],
    recurrings: Sequence[RecurringTransaction],
    *,
    today: date,
) -> tuple[Transaction, ...]:
    return _cached_merge(tuple(transactions), tuple(recurrings), today)


def clear_timeline_cache() -> None:
    _cached_merge.cache_clear()
