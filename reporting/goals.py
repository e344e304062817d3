"""
Goal join: stored quarterly targets next to aggregated actuals.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Iterable, Optional

from models.report_models import (
    QUARTER_GOAL_FIELDS,
    QUARTER_VALUE_GOAL_FIELDS,
    Goal,
    GoalUpsert,
)
from reporting.quarters import QUARTERS, QuarterlyBucket
from scripts.lib.utils import coerce_non_negative_decimal, coerce_non_negative_int

ON_TARGET = "on_target"
BEHIND = "behind"


def classify(actual, goal) -> Optional[str]:
    """on_target when actual >= goal; None when there is no positive goal."""
    if not goal:
        return None
    return ON_TARGET if actual >= goal else BEHIND


@dataclass
class KPIRow:
    metric: str
    label: str
    actual: QuarterlyBucket
    goals: Dict[str, Optional[int]] = field(default_factory=dict)
    year_goal: Optional[Any] = None
    year_goal_source: Optional[str] = None  # "quarterly_goals" | "projection"
    value_actual: Optional[QuarterlyBucket] = None
    value_goals: Dict[str, Optional[Decimal]] = field(default_factory=dict)

    def status(self, quarter: str) -> Optional[str]:
        return classify(self.actual.get(quarter), self.goals.get(quarter))

    @property
    def year_status(self) -> Optional[str]:
        return classify(self.actual.total, self.year_goal)

    def to_dict(self) -> Dict[str, Any]:
        row: Dict[str, Any] = {
            "metric": self.metric,
            "label": self.label,
            "actual": self.actual.to_dict(),
            "goals": dict(self.goals),
            "status": {q: self.status(q) for q in QUARTERS},
            "yearGoal": self.year_goal,
            "yearGoalSource": self.year_goal_source,
            "yearStatus": self.year_status,
        }
        if self.value_actual is not None:
            row["valueActual"] = self.value_actual.to_dict()
            row["valueGoals"] = {
                q: (float(v) if v is not None else None) for q, v in self.value_goals.items()
            }
            row["valueStatus"] = {
                q: classify(self.value_actual.get(q), self.value_goals.get(q)) for q in QUARTERS
            }
        return row


def join_goal(
    metric: str,
    label: str,
    actual: QuarterlyBucket,
    goal: Optional[Goal] = None,
    projection: Any = None,
    value_actual: Optional[QuarterlyBucket] = None,
) -> KPIRow:
    """
    Put a stored goal beside its actual.

    With a goal row the year goal is the sum of its quarterly goals (missing
    quarters count as 0). Without one it is the legacy annual ``projection``,
    or None when that is empty too.
    """
    row = KPIRow(metric=metric, label=label, actual=actual, value_actual=value_actual)

    if goal is not None:
        row.goals = {q: goal.quarter_goal(q) for q in QUARTERS}
        row.year_goal = sum(coerce_non_negative_int(v) for v in row.goals.values())
        row.year_goal_source = "quarterly_goals"
        if value_actual is not None:
            row.value_goals = {q: goal.quarter_value_goal(q) for q in QUARTERS}
    else:
        row.goals = {q: None for q in QUARTERS}
        projected = coerce_non_negative_int(projection)
        if projected:
            row.year_goal = projected
            row.year_goal_source = "projection"
        if value_actual is not None:
            row.value_goals = {q: None for q in QUARTERS}

    return row


def index_goals(goals: Iterable[Goal], year: int) -> Dict[tuple, Goal]:
    """(goal_type, target_id) -> goal for one year."""
    return {(g.goal_type, g.target_id): g for g in goals if g.year == year}


def merge_goal_update(existing: Optional[Goal], update: GoalUpsert, account_id: str) -> Goal:
    """
    Apply an upsert to the stored row for the same key.

    Only quarterly fields present in the request overwrite stored values;
    they are coerced to non-negative numbers first.
    """
    if existing is not None:
        data = existing.model_dump()
    else:
        data = {
            "hubspot_account_id": account_id,
            "goal_type": update.goal_type,
            "target_id": update.target_id,
            "year": update.year,
        }

    supplied = update.model_fields_set
    for name in QUARTER_GOAL_FIELDS:
        value = getattr(update, name)
        if name in supplied and value is not None:
            data[name] = coerce_non_negative_int(value)
    for name in QUARTER_VALUE_GOAL_FIELDS:
        value = getattr(update, name)
        if name in supplied and value is not None:
            data[name] = coerce_non_negative_decimal(value)

    return Goal(**data)
