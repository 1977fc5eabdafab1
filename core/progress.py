"""
Progress calculator.

Pure functions that derive a goal's current points from the four
contribution sources:
- completed tasks attached to the goal (1 point each)
- completed steps with no linked task (1 point each)
- completed milestones (bonus_points each)
- habits completed today and attached to the goal (point_value each)

The raw sum is computed exactly, rounded half-up once, then clamped to
[0, total_points]. Each source is never rounded on its own.
"""
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, Optional, Sequence

from core.links import is_step_linked
from core.models import Goal, Habit, Task


@dataclass
class PointsBreakdown:
    goal_id: str
    task_points: int
    step_points: int
    milestone_bonus: int
    habit_points: Decimal

    @property
    def raw(self) -> Decimal:
        return (
            Decimal(self.task_points)
            + Decimal(self.step_points)
            + Decimal(self.milestone_bonus)
            + self.habit_points
        )


def _resolve_today(today: Optional[date]) -> date:
    # evaluated per call so a long-lived process picks up day rollover
    return today if today is not None else date.today()


def round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def clamp_points(value: int, total_points: int) -> int:
    return max(0, min(value, max(total_points, 0)))


def points_breakdown(
    goal: Goal,
    tasks: Sequence[Task],
    habits: Iterable[Habit],
    today: Optional[date] = None,
) -> PointsBreakdown:
    day = _resolve_today(today)

    task_points = sum(1 for t in tasks if t.goal_id == goal.id and t.completed)

    step_points = 0
    for milestone in goal.milestones:
        for step in milestone.steps:
            if step.completed and not is_step_linked(step, milestone, tasks, goal_id=goal.id):
                step_points += 1

    milestone_bonus = sum(m.bonus_points for m in goal.milestones if m.completed)

    habit_points = Decimal("0")
    for habit in habits:
        if goal.id in habit.goal_ids and habit.completed_on(day):
            # str() keeps 0.25 exact instead of its binary float expansion
            habit_points += Decimal(str(habit.point_value))

    return PointsBreakdown(
        goal_id=goal.id,
        task_points=task_points,
        step_points=step_points,
        milestone_bonus=milestone_bonus,
        habit_points=habit_points,
    )


def compute_points(
    goal: Goal,
    tasks: Sequence[Task],
    habits: Iterable[Habit],
    today: Optional[date] = None,
) -> int:
    """Current points for goal on the given day. No side effects."""
    breakdown = points_breakdown(goal, tasks, habits, today)
    return clamp_points(round_half_up(breakdown.raw), goal.total_points)


def recompute_all_goal_points(
    goals: Iterable[Goal],
    tasks: Sequence[Task],
    habits: Sequence[Habit],
    today: Optional[date] = None,
) -> Dict[str, int]:
    """Write current_points on every goal. Returns goal id -> points."""
    day = _resolve_today(today)
    result: Dict[str, int] = {}
    for goal in goals:
        goal.current_points = compute_points(goal, tasks, habits, day)
        result[goal.id] = goal.current_points
    return result


def progress_percentage(goal: Goal) -> float:
    if goal.total_points <= 0:
        return 0.0
    return round(goal.current_points / goal.total_points * 100, 1)
