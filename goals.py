import math
from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Iterable, Optional

from periods import add_months, month_key
from schemas import Goal, Transaction


class ProjectionStatus(str, Enum):
    reached = "reached"
    projected = "projected"
    insufficient_data = "insufficient_data"


@dataclass(frozen=True)
class Projection:
    status: ProjectionStatus
    date: Optional[date] = None
    months_needed: Optional[int] = None


@dataclass(frozen=True)
class GoalProjection:
    goal: Goal
    optimistic: Projection
    conservative: Projection


def average_monthly_net(timeline: Iterable[Transaction]) -> float:
    """Mean monthly net over the months that hold at least one transaction."""
    by_month: dict[str, float] = defaultdict(float)
    for tx in timeline:
        by_month[month_key(tx.date)] += tx.amount
    if not by_month:
        return 0.0
    return sum(by_month.values()) / len(by_month)


def months_left_in_year(today: date) -> int:
    # the current month counts as one of the months left
    return max(1, 13 - today.month)


def _months_until_max(today: date) -> int:
    return (date.max.year - today.year) * 12 + (12 - today.month)


def project_goal(
    goal: Goal, *, balance: float, monthly_net: float, today: date
) -> Projection:
    if goal.target <= balance:
        return Projection(ProjectionStatus.reached)
    if monthly_net <= 0:
        return Projection(ProjectionStatus.insufficient_data)
    months = (goal.target - balance) / monthly_net
    # a target date past the last representable month cannot be projected
    if not math.isfinite(months) or months > _months_until_max(today):
        return Projection(ProjectionStatus.insufficient_data)
    months_needed = math.ceil(months)
    return Projection(
        ProjectionStatus.projected,
        date=add_months(today, months_needed),
        months_needed=months_needed,
    )


def project_goals(
    goals: Iterable[Goal],
    *,
    balance: float,
    average_net: float,
    remaining_budget: float,
    today: date,
) -> list[GoalProjection]:
    """Optimistic and conservative completion dates for each goal.

    The conservative case sets aside this month's remaining budget from the
    balance and spreads it over the months left in the year.
    """
    conservative_balance = balance - remaining_budget
    conservative_net = average_net - remaining_budget / months_left_in_year(today)
    return [
        GoalProjection(
            goal=goal,
            optimistic=project_goal(
                goal, balance=balance, monthly_net=average_net, today=today
            ),
            conservative=project_goal(
                goal,
                balance=conservative_balance,
                monthly_net=conservative_net,
                today=today,
            ),
        )
        for goal in goals
    ]
