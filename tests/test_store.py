import json
from datetime import date

import pytest

from core.config_manager import SystemConfig
from core.exceptions import StoreError
from core.models import Goal, HabitCompletion, Milestone, Step, Task, TaskPriority
from core.reconciler import PlannerState
from core.store import GOALS, HABITS, TASKS, LocalStore, goal_from_dict, habit_from_dict, task_from_dict


def _write(store: LocalStore, collection: str, payload) -> None:
    path = store.path_for(collection)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload), encoding="utf-8")


def test_missing_files_load_empty(store):
    state = store.load()
    assert state.goals == [] and state.tasks == [] and state.habits == []


def test_save_and_load_preserve_state(store):
    step = Step(id="s1", text="Outline", completed=True, completed_at=1700000000000, time_estimate=45)
    milestone = Milestone(id="m1", title="Draft", steps=[step], bonus_points=20)
    goal = Goal(id="g1", title="Write", purpose="fun", due_date=date(2024, 6, 1),
                milestones=[milestone], total_points=80, current_points=3)
    task = Task(id="t1", title="Outline", priority=TaskPriority.NEITHER, tags=["writing"],
                goal_id="g1", source_step_id="s1", source_milestone_id="m1")
    store.save(PlannerState(goals=[goal], tasks=[task], habits=[]))

    loaded = store.load()

    assert loaded.goals == [goal]
    assert loaded.tasks == [task]


def test_records_use_browser_layout(store):
    store.save(PlannerState(tasks=[Task(id="t1", title="x", source_step_id="s", source_milestone_id="m", goal_id="g")]))
    raw = json.loads(store.path_for(TASKS).read_text(encoding="utf-8"))
    assert raw[0]["sourceStepId"] == "s"
    assert raw[0]["goalId"] == "g"
    assert raw[0]["timeEstimate"] == 30


def test_legacy_goal_is_backfilled():
    goal = goal_from_dict({
        "id": 1700000000000,
        "title": "Old goal",
        "milestones": [
            {"id": "m1", "title": "No bonus", "completed": True},
            {"id": "m2", "title": "Zero bonus", "bonusPoints": 0, "steps": [{"id": "s1", "text": "x"}]},
        ],
    })

    assert goal.id == "1700000000000"
    assert goal.total_points == 50
    assert goal.current_points == 0
    assert [m.bonus_points for m in goal.milestones] == [50, 50]
    assert goal.milestones[0].steps == []
    assert goal.milestones[1].steps[0].time_estimate == 30
    # ids are never parsed for time
    assert goal.created_at != 1700000000000


def test_incomplete_records_drop_stale_completed_at():
    task = task_from_dict({"id": "t1", "title": "x", "completed": False, "completedAt": 123, "priority": "bogus"})
    assert task.completed_at is None
    assert task.priority is TaskPriority.IMPORTANT_NOT_URGENT
    assert task.goal_id == "adhoc"


def test_habit_completions_deduplicated_per_day():
    habit = habit_from_dict({
        "id": "h1",
        "title": "Walk",
        "goalIds": ["g1"],
        "completions": [
            {"date": "2024-03-15", "timestamp": 1},
            {"date": "2024-03-15T20:00:00", "timestamp": 2},
            {"date": "not a date", "timestamp": 3},
        ],
    })
    assert habit.completions == [HabitCompletion(date=date(2024, 3, 15), timestamp=1)]
    assert habit.point_value == 0.25


def test_corrupt_collection_is_moved_aside(store, tmp_path, monkeypatch):
    monkeypatch.setenv("TINY_GIANT_LOG_DIR", str(tmp_path / "logs"))
    path = store.path_for(GOALS)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("{not json", encoding="utf-8")

    assert store.load().goals == []
    assert not path.exists()
    assert path.with_suffix(".corrupt.json").exists()
    assert "tiny-giant-goals" in (tmp_path / "logs" / "quarantine.log").read_text(encoding="utf-8")


def test_malformed_record_is_skipped(store):
    _write(store, HABITS, [{"id": "h1", "title": "ok"}, {"id": "h2", "completions": "nope"}, {"title": "no id"}])
    habits = store.load().habits
    assert [h.id for h in habits] == ["h1"]


def test_crud_helpers(store):
    store.upsert(TASKS, Task(id="t1", title="one"))
    store.upsert(TASKS, Task(id="t2", title="two"))
    store.upsert(TASKS, Task(id="t1", title="one again"))

    assert [t.title for t in store.list_items(TASKS)] == ["one again", "two"]
    assert store.get(TASKS, "t2").title == "two"
    assert store.delete(TASKS, "t2") is True
    assert store.delete(TASKS, "t2") is False
    assert store.get(TASKS, "t2") is None


def test_writes_notify_subscribers(store):
    seen = []
    unsubscribe = store.subscribe(seen.append)

    store.save(PlannerState())
    assert seen == [GOALS, TASKS, HABITS]

    unsubscribe()
    store.notify_external_change(GOALS)
    assert seen == [GOALS, TASKS, HABITS]


def test_write_failure_raises_store_error(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("file, not a directory", encoding="utf-8")
    store = LocalStore(blocker / "data")

    with pytest.raises(StoreError) as info:
        store.save(PlannerState())
    assert info.value.collection == GOALS


def test_unknown_collection(store):
    with pytest.raises(ValueError):
        store.path_for("tiny-giant-notes")


def test_non_numeric_legacy_bonus_is_backfilled(store):
    _write(store, GOALS, [{
        "id": "g1",
        "title": "Old goal",
        "milestones": [{"id": "m1", "title": "Broken", "bonusPoints": "lots", "steps": [{"id": "s1", "text": "x"}]}],
    }])

    goals = store.load().goals
    assert [g.id for g in goals] == ["g1"]
    assert goals[0].milestones[0].bonus_points == 50
    assert [s.id for s in goals[0].milestones[0].steps] == ["s1"]


def test_backfill_uses_configured_defaults(tmp_path):
    settings = SystemConfig(DEFAULT_TOTAL_POINTS=80, DEFAULT_MILESTONE_BONUS=20, DEFAULT_HABIT_POINT_VALUE=1.0)
    store = LocalStore(tmp_path / "data", settings=settings)
    _write(store, GOALS, [{"id": "g1", "title": "Old", "milestones": [{"id": "m1", "title": "M"}]}])
    _write(store, HABITS, [{"id": "h1", "title": "Walk", "pointValue": "n/a"}])

    state = store.load()
    assert state.goals[0].total_points == 80
    assert state.goals[0].milestones[0].bonus_points == 20
    assert state.habits[0].point_value == 1.0
