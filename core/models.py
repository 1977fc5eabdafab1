"""
Core Data Models for Tiny Giant.
Defines goals, milestones, steps, tasks and habits. No reconciliation logic lives here.
"""
import time
import uuid
from dataclasses import dataclass, field
from datetime import date, timedelta
from enum import Enum
from typing import List, Optional

# Task.goal_id value for tasks not attached to any goal
NO_GOAL = "adhoc"

DEFAULT_TOTAL_POINTS = 50
DEFAULT_MILESTONE_BONUS = 50
DEFAULT_HABIT_POINT_VALUE = 0.25
DEFAULT_TIME_ESTIMATE = 30

# streaks look back at most one year
MAX_STREAK_DAYS = 365


def now_ms() -> int:
    """Epoch milliseconds, the timestamp unit used for completed_at / created_at."""
    return int(time.time() * 1000)


def new_id() -> str:
    return uuid.uuid4().hex


class TaskPriority(str, Enum):
    """Urgency/importance matrix quadrant. Declaration order is the priority order."""
    URGENT_IMPORTANT = "urgent-important"
    URGENT_NOT_IMPORTANT = "urgent-not-important"
    IMPORTANT_NOT_URGENT = "important-not-urgent"
    NEITHER = "neither"

    @property
    def rank(self) -> int:
        return list(TaskPriority).index(self)

    def moved(self, direction: str) -> "TaskPriority":
        """Shift one position up (toward urgent-important) or down, clamped at the ends."""
        order = list(TaskPriority)
        index = order.index(self)
        normalized = (direction or "").strip().lower()
        if normalized == "up":
            index = max(0, index - 1)
        elif normalized == "down":
            index = min(len(order) - 1, index + 1)
        else:
            raise ValueError(f"Unknown direction: {direction}")
        return order[index]


@dataclass
class Step:
    """Smallest actionable unit, owned by exactly one milestone."""
    id: str
    text: str
    completed: bool = False
    completed_at: Optional[int] = None
    time_estimate: int = DEFAULT_TIME_ESTIMATE  # minutes
    notes: str = ""
    created_at: int = field(default_factory=now_ms)


@dataclass
class Milestone:
    id: str
    title: str
    completed: bool = False
    completed_at: Optional[int] = None
    steps: List[Step] = field(default_factory=list)
    bonus_points: int = DEFAULT_MILESTONE_BONUS
    created_at: int = field(default_factory=now_ms)

    def get_step(self, step_id: str) -> Optional[Step]:
        return next((s for s in self.steps if s.id == step_id), None)


@dataclass
class Goal:
    """
    Top-level objective.
    current_points is derived; only the progress calculator writes it.
    """
    id: str
    title: str
    purpose: str = ""
    due_date: Optional[date] = None
    milestones: List[Milestone] = field(default_factory=list)
    total_points: int = DEFAULT_TOTAL_POINTS
    current_points: int = 0
    created_at: int = field(default_factory=now_ms)

    def get_milestone(self, milestone_id: str) -> Optional[Milestone]:
        return next((m for m in self.milestones if m.id == milestone_id), None)


@dataclass
class Task:
    """
    Standalone action item. source_step_id / source_milestone_id are set
    iff the task was materialized from a step.
    """
    id: str
    title: str
    time_estimate: int = DEFAULT_TIME_ESTIMATE
    priority: TaskPriority = TaskPriority.IMPORTANT_NOT_URGENT
    completed: bool = False
    completed_at: Optional[int] = None
    tags: List[str] = field(default_factory=list)
    goal_id: str = NO_GOAL
    source_step_id: Optional[str] = None
    source_milestone_id: Optional[str] = None
    created_at: int = field(default_factory=now_ms)

    @property
    def has_source_step(self) -> bool:
        return bool(self.source_step_id and self.source_milestone_id)


@dataclass
class HabitCompletion:
    date: date
    timestamp: int


@dataclass
class Habit:
    id: str
    title: str
    description: str = ""
    goal_ids: List[str] = field(default_factory=list)
    completions: List[HabitCompletion] = field(default_factory=list)
    created_at: int = field(default_factory=now_ms)
    point_value: float = DEFAULT_HABIT_POINT_VALUE

    def completed_on(self, day: date) -> bool:
        return any(c.date == day for c in self.completions)

    def streak(self, today: date) -> int:
        """Consecutive completed days ending today; 0 when today is not done."""
        done = {c.date for c in self.completions}
        streak = 0
        day = today
        while day in done and streak < MAX_STREAK_DAYS:
            streak += 1
            day -= timedelta(days=1)
        return streak
