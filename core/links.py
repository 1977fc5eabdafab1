"""
Link resolution between steps and the tasks materialized from them.

A step is linked when some task carries its back-reference
(source_step_id + source_milestone_id). The relation is a back-reference,
never ownership: deleting either side must not delete the other.
"""
from typing import Iterable, List, Optional, Sequence, Tuple

from core.models import NO_GOAL, Goal, Milestone, Step, Task


def linked_tasks(
    step_id: str,
    milestone_id: str,
    tasks: Iterable[Task],
    goal_id: Optional[str] = None,
) -> List[Task]:
    """All tasks referencing the step, optionally restricted to one goal."""
    matches = []
    for task in tasks:
        if task.source_step_id != step_id or task.source_milestone_id != milestone_id:
            continue
        if goal_id is not None and task.goal_id != goal_id:
            continue
        matches.append(task)
    return matches


def is_step_linked(
    step: Step,
    milestone: Milestone,
    tasks: Iterable[Task],
    goal_id: Optional[str] = None,
) -> bool:
    # existence only; duplicates do not matter here
    return any(
        task.source_step_id == step.id
        and task.source_milestone_id == milestone.id
        and (goal_id is None or task.goal_id == goal_id)
        for task in tasks
    )


def find_linked_task(
    step: Step,
    milestone: Milestone,
    tasks: Iterable[Task],
    goal_id: Optional[str] = None,
) -> Optional[Task]:
    """
    Canonical linked task for synchronization.

    When several tasks reference the same step the one with the lowest id wins,
    so repeated calls always pick the same task.
    """
    matches = linked_tasks(step.id, milestone.id, tasks, goal_id=goal_id)
    if not matches:
        return None
    return min(matches, key=lambda t: t.id)


def find_source_step(
    task: Task,
    goals: Sequence[Goal],
) -> Optional[Tuple[Goal, Milestone, Step]]:
    """Reverse lookup of a linked task's step. None for ad-hoc or dangling references."""
    if not task.has_source_step or task.goal_id == NO_GOAL:
        return None
    goal = next((g for g in goals if g.id == task.goal_id), None)
    if goal is None:
        return None
    milestone = goal.get_milestone(task.source_milestone_id)
    if milestone is None:
        return None
    step = milestone.get_step(task.source_step_id)
    if step is None:
        return None
    return goal, milestone, step
