from core.links import find_linked_task, find_source_step, is_step_linked, linked_tasks
from core.models import NO_GOAL, Goal, Milestone, Step, Task


def _fixture():
    step = Step(id="s1", text="Write outline")
    milestone = Milestone(id="m1", title="Draft", steps=[step])
    goal = Goal(id="g1", title="Write a book", milestones=[milestone])
    return goal, milestone, step


def test_unlinked_step():
    _, milestone, step = _fixture()
    assert not is_step_linked(step, milestone, [])
    assert find_linked_task(step, milestone, []) is None


def test_find_linked_task_prefers_lowest_id():
    _, milestone, step = _fixture()
    tasks = [
        Task(id="t9", title="dup", goal_id="g1", source_step_id="s1", source_milestone_id="m1"),
        Task(id="t2", title="first", goal_id="g1", source_step_id="s1", source_milestone_id="m1"),
        Task(id="t5", title="other", goal_id="g1", source_step_id="s2", source_milestone_id="m1"),
    ]

    assert is_step_linked(step, milestone, tasks)
    assert find_linked_task(step, milestone, tasks).id == "t2"
    assert [t.id for t in linked_tasks("s1", "m1", tasks)] == ["t9", "t2"]


def test_milestone_id_must_match():
    _, milestone, step = _fixture()
    tasks = [Task(id="t1", title="x", goal_id="g1", source_step_id="s1", source_milestone_id="m2")]
    assert not is_step_linked(step, milestone, tasks)


def test_goal_filter():
    _, milestone, step = _fixture()
    tasks = [Task(id="t1", title="x", goal_id="g2", source_step_id="s1", source_milestone_id="m1")]
    assert is_step_linked(step, milestone, tasks)
    assert not is_step_linked(step, milestone, tasks, goal_id="g1")


def test_find_source_step_round_trip():
    goal, milestone, step = _fixture()
    task = Task(id="t1", title="x", goal_id="g1", source_step_id="s1", source_milestone_id="m1")

    assert find_source_step(task, [goal]) == (goal, milestone, step)


def test_find_source_step_ignores_adhoc_and_dangling():
    goal, _, _ = _fixture()
    adhoc = Task(id="t1", title="x", goal_id=NO_GOAL, source_step_id="s1", source_milestone_id="m1")
    dangling = Task(id="t2", title="x", goal_id="g1", source_step_id="gone", source_milestone_id="m1")
    no_goal = Task(id="t3", title="x", goal_id="g404", source_step_id="s1", source_milestone_id="m1")

    assert find_source_step(adhoc, [goal]) is None
    assert find_source_step(dangling, [goal]) is None
    assert find_source_step(no_goal, [goal]) is None
