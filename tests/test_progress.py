from datetime import date, timedelta
from decimal import Decimal

from core.models import Goal, Habit, HabitCompletion, Milestone, Step, Task
from core.progress import (
    clamp_points,
    compute_points,
    points_breakdown,
    progress_percentage,
    recompute_all_goal_points,
    round_half_up,
)

TODAY = date(2024, 3, 15)


def _goal(total_points: int = 50, milestones=None) -> Goal:
    return Goal(id="g1", title="Run a marathon", milestones=milestones or [], total_points=total_points)


def _habit(habit_id: str, goal_ids, day: date = TODAY, point_value: float = 0.25) -> Habit:
    return Habit(
        id=habit_id,
        title=f"habit-{habit_id}",
        goal_ids=list(goal_ids),
        completions=[HabitCompletion(date=day, timestamp=1)],
        point_value=point_value,
    )


def test_round_half_up_rounds_ties_away_from_zero():
    assert round_half_up(Decimal("0.5")) == 1
    assert round_half_up(Decimal("1.5")) == 2
    assert round_half_up(Decimal("2.5")) == 3
    assert round_half_up(Decimal("0.25")) == 0
    assert round_half_up(Decimal("0.75")) == 1


def test_clamp_points_bounds():
    assert clamp_points(-3, 50) == 0
    assert clamp_points(51, 50) == 50
    assert clamp_points(12, 50) == 12


def test_empty_goal_has_zero_points():
    assert compute_points(_goal(), [], [], TODAY) == 0


def test_each_source_contributes():
    step_done = Step(id="s1", text="a", completed=True, completed_at=1)
    step_linked = Step(id="s2", text="b", completed=True, completed_at=1)
    milestone = Milestone(id="m1", title="M", completed=True, completed_at=1, steps=[step_done, step_linked], bonus_points=5)
    goal = _goal(total_points=100, milestones=[milestone])
    tasks = [
        Task(id="t1", title="linked", completed=True, completed_at=1, goal_id="g1",
             source_step_id="s2", source_milestone_id="m1"),
        Task(id="t2", title="plain", completed=True, completed_at=1, goal_id="g1"),
        Task(id="t3", title="open", goal_id="g1"),
        Task(id="t4", title="other goal", completed=True, completed_at=1, goal_id="g2"),
    ]
    habits = [_habit("h1", ["g1"], point_value=2)]

    breakdown = points_breakdown(goal, tasks, habits, TODAY)

    assert breakdown.task_points == 2
    assert breakdown.step_points == 1
    assert breakdown.milestone_bonus == 5
    assert breakdown.habit_points == Decimal("2")
    assert compute_points(goal, tasks, habits, TODAY) == 10


def test_linked_step_is_not_counted_twice():
    step = Step(id="s1", text="a", completed=True, completed_at=1)
    goal = _goal(milestones=[Milestone(id="m1", title="M", steps=[step])])
    task = Task(id="t1", title="a", completed=True, completed_at=1, goal_id="g1",
                source_step_id="s1", source_milestone_id="m1")

    assert compute_points(goal, [task], [], TODAY) == 1


def test_link_from_another_goal_does_not_hide_step():
    step = Step(id="s1", text="a", completed=True, completed_at=1)
    goal = _goal(milestones=[Milestone(id="m1", title="M", steps=[step])])
    foreign = Task(id="t1", title="a", goal_id="g2", source_step_id="s1", source_milestone_id="m1")

    assert compute_points(goal, [foreign], [], TODAY) == 1


def test_points_are_clamped_to_total():
    milestone = Milestone(id="m1", title="M", completed=True, completed_at=1,
                          steps=[Step(id="s1", text="a", completed=True, completed_at=1)])
    goal = _goal(total_points=50, milestones=[milestone])

    assert compute_points(goal, [], [], TODAY) == 50


def test_habit_only_counts_on_completion_day():
    goal = _goal()
    habits = [_habit("h1", ["g1"], day=TODAY - timedelta(days=1), point_value=1)]

    assert compute_points(goal, [], habits, TODAY) == 0
    assert compute_points(goal, [], habits, TODAY - timedelta(days=1)) == 1


def test_fractional_habits_are_summed_before_rounding():
    goal = _goal()
    # 0.25 on its own rounds to 0; two of them reach the half-up threshold
    assert compute_points(goal, [], [_habit("h1", ["g1"])], TODAY) == 0
    habits = [_habit("h1", ["g1"]), _habit("h2", ["g1"])]
    assert compute_points(goal, [], habits, TODAY) == 1

    step = Step(id="s1", text="a", completed=True, completed_at=1)
    goal_with_step = _goal(milestones=[Milestone(id="m1", title="M", steps=[step])])
    assert compute_points(goal_with_step, [], [_habit("h1", ["g1"])], TODAY) == 1


def test_recompute_all_writes_current_points():
    g1 = Goal(id="g1", title="one")
    g2 = Goal(id="g2", title="two", current_points=7)
    tasks = [Task(id="t1", title="x", completed=True, completed_at=1, goal_id="g1")]

    result = recompute_all_goal_points([g1, g2], tasks, [], TODAY)

    assert result == {"g1": 1, "g2": 0}
    assert g1.current_points == 1
    assert g2.current_points == 0


def test_progress_percentage():
    goal = _goal(total_points=40)
    goal.current_points = 10
    assert progress_percentage(goal) == 25.0
