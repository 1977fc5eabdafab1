"""
Goal application service.

Owns the in-memory PlannerState and is the only writer of it. Every command
runs against a deep copy through a ProgressReconciler; the copy is persisted
and only swapped in once the store has confirmed the write. A failed write
therefore leaves the in-memory state exactly as it was. Commands and reloads
are serialized by one re-entrant lock, so overlapping requests never start
from the same snapshot.

Change notifications from other writers reload the state from the store and
recompute every goal (replace, never merge).
"""
import copy
import threading
from contextlib import contextmanager
from datetime import date
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, TypeVar

from core.config_manager import SystemConfig, config as default_config
from core.logger import get_logger
from core.models import NO_GOAL, Goal, Habit, Milestone, Step, Task, TaskPriority
from core.notifications import BaseNotifier, LogNotifier, MemoryNotifier, Notification
from core.progress import PointsBreakdown, points_breakdown, progress_percentage
from core.reconciler import PlannerState, ProgressReconciler
from core.store import COLLECTIONS, LocalStore
from core.suggestions import StepSuggestion, SuggestionGateway

logger = get_logger("goal_service")

T = TypeVar("T")


class GoalService:
    """Application service for goal, task and habit operations."""

    def __init__(
        self,
        store: Optional[LocalStore] = None,
        gateway: Optional[SuggestionGateway] = None,
        today_provider: Optional[Callable[[], date]] = None,
        settings: Optional[SystemConfig] = None,
        notifiers: Optional[Iterable[BaseNotifier]] = None,
    ):
        self.settings = settings or default_config
        self.store = store or LocalStore(settings=self.settings)
        self.gateway = gateway or SuggestionGateway(settings=self.settings)
        self._today_provider = today_provider or date.today
        self.notifiers: List[BaseNotifier] = list(notifiers) if notifiers is not None else [LogNotifier()]
        self._lock = threading.RLock()
        # per thread: saving flag and notification collectors of the running request
        self._local = threading.local()

        self.reconciler = self._make_reconciler(PlannerState())
        self.reload()
        self._unsubscribe = self.store.subscribe(self._on_store_change)

    # ---------------------------------------------------------------------
    # State plumbing
    # ---------------------------------------------------------------------
    @property
    def state(self) -> PlannerState:
        return self.reconciler.state

    def today(self) -> date:
        return self._today_provider()

    def _make_reconciler(self, state: PlannerState) -> ProgressReconciler:
        return ProgressReconciler(state, today_provider=self._today_provider, settings=self.settings)

    def reload(self) -> PlannerState:
        """Replace the in-memory state with the store's copy and recompute every goal."""
        with self._lock:
            state = self.store.load()
            self._make_reconciler(state).recompute_all_goal_points()
            self.reconciler.state = state
        logger.info(
            "Loaded %d goals, %d tasks, %d habits",
            len(state.goals),
            len(state.tasks),
            len(state.habits),
        )
        return state

    def _on_store_change(self, collection: str) -> None:
        if getattr(self._local, "saving", False):
            return
        logger.info("Collection %s changed externally, reloading", collection)
        self.reload()

    def close(self) -> None:
        self._unsubscribe()

    def _run(self, command: Callable[[ProgressReconciler], T]) -> T:
        with self._lock:
            working = self._make_reconciler(copy.deepcopy(self.state))
            emitted: List[Notification] = []
            working.subscribe(emitted.append)

            result = command(working)

            self._local.saving = True
            try:
                self.store.save(working.state, COLLECTIONS)
            finally:
                self._local.saving = False

            self.reconciler.state = working.state
            for notification in emitted:
                self._dispatch(notification)
            return result

    def _collectors(self) -> List[MemoryNotifier]:
        if not hasattr(self._local, "collectors"):
            self._local.collectors = []
        return self._local.collectors

    @contextmanager
    def collect_notifications(self) -> Iterator[MemoryNotifier]:
        """
        Capture the notifications of commands run by the current thread.

        Each API request runs in its own worker thread, so a response only
        ever sees what its own commands emitted.
        """
        collector = MemoryNotifier()
        collectors = self._collectors()
        collectors.append(collector)
        try:
            yield collector
        finally:
            collectors.remove(collector)

    def _dispatch(self, notification: Notification) -> None:
        for notifier in self.notifiers + self._collectors():
            notifier(notification)

    # ---------------------------------------------------------------------
    # Queries
    # ---------------------------------------------------------------------
    def list_goals(self) -> List[Goal]:
        return list(self.state.goals)

    def get_goal(self, goal_id: str) -> Goal:
        return self.reconciler.require_goal(goal_id)

    def list_tasks(self, goal_id: Optional[str] = None) -> List[Task]:
        if goal_id is None:
            return list(self.state.tasks)
        return [t for t in self.state.tasks if t.goal_id == goal_id]

    def list_habits(self) -> List[Habit]:
        return list(self.state.habits)

    def goal_status(self, goal_id: str) -> Dict[str, Any]:
        goal = self.get_goal(goal_id)
        breakdown: PointsBreakdown = points_breakdown(
            goal, self.state.tasks, self.state.habits, self.today()
        )
        return {
            "goal_id": goal.id,
            "title": goal.title,
            "current_points": goal.current_points,
            "total_points": goal.total_points,
            "percentage": progress_percentage(goal),
            "task_points": breakdown.task_points,
            "step_points": breakdown.step_points,
            "milestone_bonus": breakdown.milestone_bonus,
            "habit_points": float(breakdown.habit_points),
        }

    # ---------------------------------------------------------------------
    # Goals
    # ---------------------------------------------------------------------
    def add_goal(
        self,
        title: str,
        purpose: str = "",
        due_date: Optional[date] = None,
        total_points: Optional[int] = None,
        milestone_titles: Iterable[str] = (),
    ) -> Goal:
        titles = list(milestone_titles)
        goal = self._run(lambda r: r.add_goal(title, purpose, due_date, total_points, titles))
        logger.info("Goal created: %s (%s)", goal.title, goal.id)
        return goal

    def update_total_points(self, goal_id: str, total_points: int) -> Goal:
        return self._run(lambda r: r.update_total_points(goal_id, total_points))

    def delete_goal(self, goal_id: str) -> Goal:
        goal = self._run(lambda r: r.delete_goal(goal_id))
        logger.info("Goal deleted: %s", goal_id)
        return goal

    # ---------------------------------------------------------------------
    # Milestones
    # ---------------------------------------------------------------------
    def add_milestone(self, goal_id: str, title: str, bonus_points: Optional[int] = None) -> Milestone:
        return self._run(lambda r: r.add_milestone(goal_id, title, bonus_points))

    def rename_milestone(self, goal_id: str, milestone_id: str, title: str) -> Milestone:
        return self._run(lambda r: r.rename_milestone(goal_id, milestone_id, title))

    def delete_milestone(self, goal_id: str, milestone_id: str) -> Milestone:
        return self._run(lambda r: r.delete_milestone(goal_id, milestone_id))

    def toggle_milestone(self, goal_id: str, milestone_id: str, completed: bool) -> Milestone:
        return self._run(lambda r: r.toggle_milestone_completion(goal_id, milestone_id, completed))

    # ---------------------------------------------------------------------
    # Steps
    # ---------------------------------------------------------------------
    def add_step(
        self,
        goal_id: str,
        milestone_id: str,
        text: str = "New step",
        time_estimate: Optional[int] = None,
        notes: str = "",
    ) -> Step:
        return self._run(lambda r: r.add_step(goal_id, milestone_id, text, time_estimate, notes))

    def update_step(
        self,
        goal_id: str,
        milestone_id: str,
        step_id: str,
        text: Optional[str] = None,
        time_estimate: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> Step:
        return self._run(
            lambda r: r.update_step(goal_id, milestone_id, step_id, text, time_estimate, notes)
        )

    def delete_step(self, goal_id: str, milestone_id: str, step_id: str) -> Step:
        return self._run(lambda r: r.delete_step(goal_id, milestone_id, step_id))

    def toggle_step(self, goal_id: str, milestone_id: str, step_id: str, completed: bool) -> Step:
        return self._run(
            lambda r: r.toggle_step_completion(goal_id, milestone_id, step_id, completed)
        )

    def convert_step_to_task(self, goal_id: str, milestone_id: str, step_id: str) -> Task:
        return self._run(lambda r: r.add_task_from_step(goal_id, milestone_id, step_id))

    # ---------------------------------------------------------------------
    # Tasks
    # ---------------------------------------------------------------------
    def add_task(
        self,
        title: str,
        time_estimate: Optional[int] = None,
        priority: TaskPriority = TaskPriority.IMPORTANT_NOT_URGENT,
        tags: Iterable[str] = (),
        goal_id: str = NO_GOAL,
    ) -> Task:
        tag_list = list(tags)
        return self._run(lambda r: r.add_task(title, time_estimate, priority, tag_list, goal_id))

    def delete_task(self, task_id: str) -> Task:
        return self._run(lambda r: r.delete_task(task_id))

    def toggle_task(self, task_id: str, completed: Optional[bool] = None) -> Task:
        return self._run(lambda r: r.toggle_task_completion(task_id, completed))

    def move_task(self, task_id: str, direction: str) -> Task:
        return self._run(lambda r: r.move_task(task_id, direction))

    # ---------------------------------------------------------------------
    # Habits
    # ---------------------------------------------------------------------
    def add_habit(
        self,
        title: str,
        description: str = "",
        goal_ids: Iterable[str] = (),
        point_value: Optional[float] = None,
    ) -> Habit:
        ids = list(goal_ids)
        return self._run(lambda r: r.add_habit(title, description, ids, point_value))

    def delete_habit(self, habit_id: str) -> Habit:
        return self._run(lambda r: r.delete_habit(habit_id))

    def toggle_habit(self, habit_id: str) -> bool:
        return self._run(lambda r: r.toggle_habit_completion(habit_id))

    def recompute_all(self) -> Dict[str, int]:
        return self._run(lambda r: r.recompute_all_goal_points())

    # ---------------------------------------------------------------------
    # Suggestion flows
    # ---------------------------------------------------------------------
    def clarify_goal(self, goal: str, purpose: Optional[str] = None) -> str:
        return self.gateway.clarify_goal(goal, purpose)

    def suggest_milestones(self, goal: str, purpose: Optional[str] = None) -> List[str]:
        return self.gateway.generate_milestones(goal, purpose)

    def generate_milestones_for_goal(self, goal_id: str) -> List[Milestone]:
        goal = self.get_goal(goal_id)
        titles = self.gateway.generate_milestones(goal.title, goal.purpose or None)
        return self._run(lambda r: r.add_milestones(goal_id, titles))

    def generate_steps_for_milestone(self, goal_id: str, milestone_id: str) -> List[Step]:
        goal = self.get_goal(goal_id)
        milestone = self.reconciler.require_milestone(goal_id, milestone_id)
        suggestions = self.gateway.generate_milestone_steps(
            goal.title, milestone.title, goal.purpose or None, goal.due_date
        )
        return self._run(lambda r: r.add_steps(goal_id, milestone_id, suggestions))

    def suggest_next_step(self, goal_id: str, milestone_id: str) -> Step:
        goal = self.get_goal(goal_id)
        milestone = self.reconciler.require_milestone(goal_id, milestone_id)
        suggestion: StepSuggestion = self.gateway.generate_next_step(
            goal.title,
            milestone.title,
            goal.purpose or None,
            milestone.steps,
            goal.due_date,
        )
        return self._run(
            lambda r: r.add_step(goal_id, milestone_id, suggestion.text, suggestion.time_estimate)
        )
