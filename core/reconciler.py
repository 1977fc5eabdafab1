"""
Reconciliation controller.

Applies user commands to an explicit PlannerState, keeps each step and the
task materialized from it in agreement, and recomputes goal points.

Every command runs inside a transaction. While a transaction is open the
reconciler is "synchronizing": recompute requests are only recorded, and
listeners are not called. On commit (outermost exit) the affected goals are
recomputed once, then recompute listeners and notification listeners fire.
Recomputation therefore never observes a half-applied propagation.
"""
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Dict, Iterable, List, Optional, Set, Union

from core.config_manager import SystemConfig, config as default_config
from core.exceptions import DuplicateConversionError, NotFoundError, ValidationError
from core.links import find_linked_task, find_source_step, linked_tasks
from core.logger import get_logger
from core.models import (
    NO_GOAL,
    Goal,
    Habit,
    HabitCompletion,
    Milestone,
    Step,
    Task,
    TaskPriority,
    new_id,
    now_ms,
)
from core.notifications import Notification, NotificationKind
from core.progress import compute_points

logger = get_logger("reconciler")

Completable = Union[Step, Task, Milestone]
NotificationListener = Callable[[Notification], None]
RecomputeListener = Callable[[Dict[str, int]], None]


@dataclass
class PlannerState:
    """The three independently mutable collections, owned by one controller."""
    goals: List[Goal] = field(default_factory=list)
    tasks: List[Task] = field(default_factory=list)
    habits: List[Habit] = field(default_factory=list)

    def get_goal(self, goal_id: str) -> Optional[Goal]:
        return next((g for g in self.goals if g.id == goal_id), None)

    def get_task(self, task_id: str) -> Optional[Task]:
        return next((t for t in self.tasks if t.id == task_id), None)

    def get_habit(self, habit_id: str) -> Optional[Habit]:
        return next((h for h in self.habits if h.id == habit_id), None)


def _set_completion(entity: Completable, completed: bool) -> None:
    if completed:
        if not entity.completed or entity.completed_at is None:
            entity.completed_at = now_ms()
    else:
        entity.completed_at = None
    entity.completed = completed


def _require_title(value: Optional[str], field_name: str = "title") -> str:
    cleaned = (value or "").strip()
    if not cleaned:
        raise ValidationError(f"{field_name} is required", field=field_name)
    return cleaned


def _require_positive(value: Optional[int], field_name: str) -> int:
    if value is None or isinstance(value, bool) or int(value) != value or value <= 0:
        raise ValidationError(f"{field_name} must be a positive integer", field=field_name)
    return int(value)


class ProgressReconciler:
    """Command handler over a PlannerState."""

    def __init__(
        self,
        state: Optional[PlannerState] = None,
        today_provider: Optional[Callable[[], date]] = None,
        settings: Optional[SystemConfig] = None,
    ):
        self.state = state or PlannerState()
        self._today_provider = today_provider or date.today
        self.settings = settings or default_config
        self._depth = 0
        self._pending_goal_ids: Set[str] = set()
        self._pending_all = False
        self._pending_notifications: List[Notification] = []
        self._listeners: List[NotificationListener] = []
        self._recompute_listeners: List[RecomputeListener] = []

    # ------------------------------------------------------------------
    # Transaction boundary
    # ------------------------------------------------------------------
    @property
    def synchronizing(self) -> bool:
        return self._depth > 0

    def today(self) -> date:
        return self._today_provider()

    def subscribe(self, listener: NotificationListener) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def subscribe_recompute(self, listener: RecomputeListener) -> Callable[[], None]:
        self._recompute_listeners.append(listener)
        return lambda: self._recompute_listeners.remove(listener)

    @contextmanager
    def transaction(self):
        self._depth += 1
        try:
            yield self
        except Exception:
            self._depth -= 1
            if self._depth == 0:
                self._discard_pending()
            raise
        else:
            self._depth -= 1
            if self._depth == 0:
                self._commit()

    def request_recompute(self, goal_ids: Optional[Iterable[str]] = None) -> None:
        """Schedule recomputation. None means every goal."""
        if goal_ids is None:
            self._pending_all = True
        else:
            self._pending_goal_ids.update(g for g in goal_ids if g and g != NO_GOAL)
        if not self.synchronizing:
            self._commit()

    def _notify(self, notification: Notification) -> None:
        self._pending_notifications.append(notification)

    def _discard_pending(self) -> None:
        self._pending_goal_ids = set()
        self._pending_all = False
        self._pending_notifications = []

    def _commit(self) -> None:
        pending_all, pending_ids = self._pending_all, self._pending_goal_ids
        notifications = self._pending_notifications
        self._discard_pending()

        if pending_all or pending_ids:
            day = self.today()
            points: Dict[str, int] = {}
            for goal in self.state.goals:
                if pending_all or goal.id in pending_ids:
                    goal.current_points = compute_points(
                        goal, self.state.tasks, self.state.habits, day
                    )
                    points[goal.id] = goal.current_points
            logger.debug("Recomputed points: %s", points)
            for listener in list(self._recompute_listeners):
                listener(points)

        for notification in notifications:
            for listener in list(self._listeners):
                listener(notification)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------
    def require_goal(self, goal_id: str) -> Goal:
        goal = self.state.get_goal(goal_id)
        if goal is None:
            raise NotFoundError("Goal", goal_id)
        return goal

    def require_milestone(self, goal_id: str, milestone_id: str) -> Milestone:
        milestone = self.require_goal(goal_id).get_milestone(milestone_id)
        if milestone is None:
            raise NotFoundError("Milestone", milestone_id)
        return milestone

    def require_step(self, goal_id: str, milestone_id: str, step_id: str) -> Step:
        step = self.require_milestone(goal_id, milestone_id).get_step(step_id)
        if step is None:
            raise NotFoundError("Step", step_id)
        return step

    def require_task(self, task_id: str) -> Task:
        task = self.state.get_task(task_id)
        if task is None:
            raise NotFoundError("Task", task_id)
        return task

    def require_habit(self, habit_id: str) -> Habit:
        habit = self.state.get_habit(habit_id)
        if habit is None:
            raise NotFoundError("Habit", habit_id)
        return habit

    # ------------------------------------------------------------------
    # Completion toggles
    # ------------------------------------------------------------------
    def _apply_task_completion(self, task: Task, completed: bool) -> Optional[Step]:
        """The single update path for a linked pair: task first, then its step."""
        _set_completion(task, completed)
        source = find_source_step(task, self.state.goals)
        if source is None:
            return None
        _, _, step = source
        _set_completion(step, completed)
        return step

    def toggle_step_completion(
        self, goal_id: str, milestone_id: str, step_id: str, completed: bool
    ) -> Step:
        with self.transaction():
            milestone = self.require_milestone(goal_id, milestone_id)
            step = self.require_step(goal_id, milestone_id, step_id)
            linked = find_linked_task(step, milestone, self.state.tasks, goal_id=goal_id)

            if linked is not None:
                # task drives; the step is brought along by the task path
                self._apply_task_completion(linked, completed)
                self._notify(
                    Notification(
                        title="Task updated",
                        message=(
                            "The linked task has also been marked as complete."
                            if completed
                            else "The linked task has also been marked as incomplete."
                        ),
                        kind=NotificationKind.LINKED_TASK_UPDATED,
                        data={"task_id": linked.id, "step_id": step.id, "completed": completed},
                    )
                )
                logger.info("Step %s toggled via linked task %s -> %s", step.id, linked.id, completed)
            else:
                _set_completion(step, completed)
                logger.info("Step %s toggled -> %s", step.id, completed)

            self.request_recompute([goal_id])
        return step

    def toggle_task_completion(self, task_id: str, completed: Optional[bool] = None) -> Task:
        """Set (or flip, when completed is None) a task and sync its source step."""
        with self.transaction():
            task = self.require_task(task_id)
            target = (not task.completed) if completed is None else completed
            step = self._apply_task_completion(task, target)

            if step is not None:
                self._notify(
                    Notification(
                        title="Step updated",
                        message=(
                            "The linked step has also been marked as complete."
                            if target
                            else "The linked step has also been marked as incomplete."
                        ),
                        kind=NotificationKind.STEP_UPDATED,
                        data={"task_id": task.id, "step_id": step.id, "completed": target},
                    )
                )
            logger.info("Task %s toggled -> %s (step synced: %s)", task.id, target, step is not None)

            if task.goal_id != NO_GOAL:
                self.request_recompute([task.goal_id])
        return task

    def toggle_milestone_completion(
        self, goal_id: str, milestone_id: str, completed: bool
    ) -> Milestone:
        # steps and milestone completion are independent; no cascade
        with self.transaction():
            milestone = self.require_milestone(goal_id, milestone_id)
            _set_completion(milestone, completed)
            self.request_recompute([goal_id])
        return milestone

    def toggle_habit_completion(self, habit_id: str) -> bool:
        """Complete the habit for today, or unmark it if already done. Returns the new state."""
        with self.transaction():
            habit = self.require_habit(habit_id)
            day = self.today()
            if habit.completed_on(day):
                habit.completions = [c for c in habit.completions if c.date != day]
                completed = False
                self._notify(
                    Notification(
                        title="Habit unmarked",
                        message=f'You\'ve unmarked "{habit.title}" for today.',
                        kind=NotificationKind.HABIT_UNMARKED,
                        data={"habit_id": habit.id},
                    )
                )
            else:
                habit.completions.append(HabitCompletion(date=day, timestamp=now_ms()))
                completed = True
                self._notify(
                    Notification(
                        title="Habit completed",
                        message=f'You\'ve completed "{habit.title}" for today!',
                        kind=NotificationKind.HABIT_COMPLETED,
                        data={"habit_id": habit.id},
                    )
                )
            # one habit can feed several goals
            self.request_recompute()
        return completed

    def recompute_all_goal_points(self) -> Dict[str, int]:
        with self.transaction():
            self.request_recompute()
        return {g.id: g.current_points for g in self.state.goals}

    # ------------------------------------------------------------------
    # Step -> task conversion
    # ------------------------------------------------------------------
    def convert_step_to_task(self, goal_id: str, milestone_id: str, step: Step) -> Task:
        """Build the task for a step. Does not touch state; see add_task_from_step."""
        return Task(
            id=new_id(),
            title=step.text,
            time_estimate=step.time_estimate,
            priority=TaskPriority(self.settings.DEFAULT_TASK_PRIORITY),
            completed=step.completed,
            completed_at=step.completed_at if step.completed else None,
            tags=[],
            goal_id=goal_id,
            source_step_id=step.id,
            source_milestone_id=milestone_id,
        )

    def add_task_from_step(self, goal_id: str, milestone_id: str, step_id: str) -> Task:
        """Convert and add, allowing at most one live linked task per step."""
        with self.transaction():
            milestone = self.require_milestone(goal_id, milestone_id)
            step = self.require_step(goal_id, milestone_id, step_id)
            existing = find_linked_task(step, milestone, self.state.tasks, goal_id=goal_id)
            if existing is not None:
                raise DuplicateConversionError(step.id, existing.id)
            task = self.convert_step_to_task(goal_id, milestone_id, step)
            self.state.tasks.append(task)
            logger.info("Step %s converted to task %s", step.id, task.id)
            self.request_recompute([goal_id])
        return task

    # ------------------------------------------------------------------
    # Goals
    # ------------------------------------------------------------------
    def add_goal(
        self,
        title: str,
        purpose: str = "",
        due_date: Optional[date] = None,
        total_points: Optional[int] = None,
        milestone_titles: Iterable[str] = (),
    ) -> Goal:
        clean_title = _require_title(title)
        points = _require_positive(
            total_points if total_points is not None else self.settings.DEFAULT_TOTAL_POINTS,
            "total_points",
        )
        with self.transaction():
            goal = Goal(
                id=new_id(),
                title=clean_title,
                purpose=(purpose or "").strip(),
                due_date=due_date,
                total_points=points,
            )
            self.state.goals.append(goal)
            for milestone_title in milestone_titles:
                if (milestone_title or "").strip():
                    goal.milestones.append(self._new_milestone(milestone_title))
            self.request_recompute([goal.id])
        return goal

    def update_total_points(self, goal_id: str, total_points: int) -> Goal:
        points = _require_positive(total_points, "total_points")
        with self.transaction():
            goal = self.require_goal(goal_id)
            goal.total_points = points
            self.request_recompute([goal_id])
        return goal

    def delete_goal(self, goal_id: str) -> Goal:
        """Remove a goal. Its tasks become ad-hoc and habits stop referencing it."""
        with self.transaction():
            goal = self.require_goal(goal_id)
            self.state.goals = [g for g in self.state.goals if g.id != goal_id]
            for task in self.state.tasks:
                if task.goal_id == goal_id:
                    task.goal_id = NO_GOAL
                    task.source_step_id = None
                    task.source_milestone_id = None
            for habit in self.state.habits:
                if goal_id in habit.goal_ids:
                    habit.goal_ids = [g for g in habit.goal_ids if g != goal_id]
        return goal

    # ------------------------------------------------------------------
    # Milestones
    # ------------------------------------------------------------------
    def _new_milestone(self, title: str, bonus_points: Optional[int] = None) -> Milestone:
        return Milestone(
            id=new_id(),
            title=_require_title(title),
            bonus_points=(
                bonus_points if bonus_points is not None else self.settings.DEFAULT_MILESTONE_BONUS
            ),
        )

    def add_milestone(
        self, goal_id: str, title: str, bonus_points: Optional[int] = None
    ) -> Milestone:
        milestone = self._new_milestone(title, bonus_points)
        with self.transaction():
            self.require_goal(goal_id).milestones.append(milestone)
        return milestone

    def add_milestones(self, goal_id: str, titles: Iterable[str]) -> List[Milestone]:
        milestones = [self._new_milestone(t) for t in titles if (t or "").strip()]
        with self.transaction():
            self.require_goal(goal_id).milestones.extend(milestones)
        return milestones

    def rename_milestone(self, goal_id: str, milestone_id: str, title: str) -> Milestone:
        clean_title = _require_title(title)
        with self.transaction():
            milestone = self.require_milestone(goal_id, milestone_id)
            milestone.title = clean_title
        return milestone

    def _detach_tasks(self, goal_id: str, milestone_id: str, step_ids: Iterable[str]) -> None:
        for step_id in step_ids:
            for task in linked_tasks(step_id, milestone_id, self.state.tasks, goal_id=goal_id):
                task.source_step_id = None
                task.source_milestone_id = None

    def delete_milestone(self, goal_id: str, milestone_id: str) -> Milestone:
        """
        Remove a milestone and recompute over the survivors.

        The bonus is never subtracted by hand: the full recompute after removal
        is the only adjustment.
        """
        with self.transaction():
            goal = self.require_goal(goal_id)
            milestone = self.require_milestone(goal_id, milestone_id)
            goal.milestones = [m for m in goal.milestones if m.id != milestone_id]
            self._detach_tasks(goal_id, milestone_id, [s.id for s in milestone.steps])
            self.request_recompute([goal_id])
        return milestone

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------
    def _new_step(self, text: str, time_estimate: Optional[int], notes: str = "") -> Step:
        minutes = time_estimate if time_estimate is not None else self.settings.DEFAULT_STEP_MINUTES
        return Step(
            id=new_id(),
            text=_require_title(text, "text"),
            time_estimate=_require_positive(minutes, "time_estimate"),
            notes=notes or "",
        )

    def add_step(
        self,
        goal_id: str,
        milestone_id: str,
        text: str = "New step",
        time_estimate: Optional[int] = None,
        notes: str = "",
    ) -> Step:
        step = self._new_step(text, time_estimate, notes)
        with self.transaction():
            self.require_milestone(goal_id, milestone_id).steps.append(step)
        return step

    def add_steps(self, goal_id: str, milestone_id: str, items: Iterable) -> List[Step]:
        """Append generated steps. items carry .text and .time_estimate."""
        steps = [self._new_step(item.text, item.time_estimate) for item in items]
        with self.transaction():
            self.require_milestone(goal_id, milestone_id).steps.extend(steps)
        return steps

    def update_step(
        self,
        goal_id: str,
        milestone_id: str,
        step_id: str,
        text: Optional[str] = None,
        time_estimate: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> Step:
        clean_text = _require_title(text, "text") if text is not None else None
        minutes = _require_positive(time_estimate, "time_estimate") if time_estimate is not None else None
        with self.transaction():
            step = self.require_step(goal_id, milestone_id, step_id)
            if clean_text is not None:
                step.text = clean_text
            if minutes is not None:
                step.time_estimate = minutes
            if notes is not None:
                step.notes = notes
        return step

    def delete_step(self, goal_id: str, milestone_id: str, step_id: str) -> Step:
        with self.transaction():
            milestone = self.require_milestone(goal_id, milestone_id)
            step = self.require_step(goal_id, milestone_id, step_id)
            milestone.steps = [s for s in milestone.steps if s.id != step_id]
            self._detach_tasks(goal_id, milestone_id, [step_id])
            self.request_recompute([goal_id])
        return step

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------
    def add_task(
        self,
        title: str,
        time_estimate: Optional[int] = None,
        priority: TaskPriority = TaskPriority.IMPORTANT_NOT_URGENT,
        tags: Iterable[str] = (),
        goal_id: str = NO_GOAL,
    ) -> Task:
        clean_title = _require_title(title)
        minutes = _require_positive(
            time_estimate if time_estimate is not None else self.settings.DEFAULT_STEP_MINUTES,
            "time_estimate",
        )
        with self.transaction():
            if goal_id != NO_GOAL:
                self.require_goal(goal_id)
            task = Task(
                id=new_id(),
                title=clean_title,
                time_estimate=minutes,
                priority=TaskPriority(priority),
                tags=sorted({t.strip() for t in tags if t and t.strip()}),
                goal_id=goal_id,
            )
            self.state.tasks.append(task)
        return task

    def delete_task(self, task_id: str) -> Task:
        with self.transaction():
            task = self.require_task(task_id)
            self.state.tasks = [t for t in self.state.tasks if t.id != task_id]
            # a completed step left without its task starts counting on its own again
            if task.goal_id != NO_GOAL:
                self.request_recompute([task.goal_id])
        return task

    def move_task(self, task_id: str, direction: str) -> Task:
        """Shift the task one priority quadrant up or down; no-op at the ends."""
        with self.transaction():
            task = self.require_task(task_id)
            try:
                task.priority = task.priority.moved(direction)
            except ValueError as e:
                raise ValidationError(str(e), field="direction") from e
        return task

    # ------------------------------------------------------------------
    # Habits
    # ------------------------------------------------------------------
    def add_habit(
        self,
        title: str,
        description: str = "",
        goal_ids: Iterable[str] = (),
        point_value: Optional[float] = None,
    ) -> Habit:
        clean_title = _require_title(title)
        value = point_value if point_value is not None else self.settings.DEFAULT_HABIT_POINT_VALUE
        if value < 0:
            raise ValidationError("point_value must not be negative", field="point_value")
        with self.transaction():
            ids = list(dict.fromkeys(goal_ids))
            for goal_id in ids:
                self.require_goal(goal_id)
            habit = Habit(
                id=new_id(),
                title=clean_title,
                description=(description or "").strip(),
                goal_ids=ids,
                point_value=value,
            )
            self.state.habits.append(habit)
        return habit

    def delete_habit(self, habit_id: str) -> Habit:
        with self.transaction():
            habit = self.require_habit(habit_id)
            self.state.habits = [h for h in self.state.habits if h.id != habit_id]
            self.request_recompute(habit.goal_ids)
        return habit
