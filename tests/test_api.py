import pytest
from fastapi.testclient import TestClient

from conftest import TODAY, FakeLLM
from core.goal_service import GoalService
from core.suggestions import SuggestionGateway
from web.backend import deps
from web.backend.app import create_app


@pytest.fixture
def api_llm():
    return FakeLLM()


@pytest.fixture
def client(store, api_llm):
    service = GoalService(
        store=store,
        gateway=SuggestionGateway(llm=api_llm),
        today_provider=lambda: TODAY,
        notifiers=[],
    )
    deps.set_goal_service(service)
    with TestClient(create_app()) as test_client:
        yield test_client
    deps.set_goal_service(None)


def _goal_with_step(client):
    goal = client.post("/api/v1/goals", json={"title": "Learn piano", "milestones": ["Scales"]}).json()["goal"]
    milestone_id = goal["milestones"][0]["id"]
    step = client.post(
        f"/api/v1/goals/{goal['id']}/milestones/{milestone_id}/steps",
        json={"text": "C major", "time_estimate": 20},
    ).json()["step"]
    return goal["id"], milestone_id, step["id"]


def test_health(client):
    assert client.get("/health").json()["status"] == "ok"


def test_create_and_list_goals(client):
    response = client.post("/api/v1/goals", json={"title": "Learn piano", "total_points": 20})
    assert response.status_code == 200
    goal = response.json()["goal"]
    assert goal["totalPoints"] == 20
    assert goal["percentage"] == 0.0

    listed = client.get("/api/v1/goals").json()["goals"]
    assert [g["id"] for g in listed] == [goal["id"]]


def test_validation_maps_to_400(client):
    assert client.post("/api/v1/goals", json={"title": "  "}).status_code == 400
    assert client.post("/api/v1/goals", json={"title": "x", "total_points": 0}).status_code == 400


def test_unknown_goal_maps_to_404(client):
    assert client.get("/api/v1/goals/missing").status_code == 404
    assert client.post("/api/v1/tasks/missing/toggle", json={}).status_code == 404


def test_linked_toggle_returns_notification(client):
    goal_id, milestone_id, step_id = _goal_with_step(client)
    base = f"/api/v1/goals/{goal_id}/milestones/{milestone_id}/steps/{step_id}"

    task = client.post(f"{base}/convert").json()["task"]
    assert task["sourceStepId"] == step_id
    assert client.post(f"{base}/convert").status_code == 400

    body = client.post(f"/api/v1/tasks/{task['id']}/toggle", json={"completed": True}).json()

    assert body["task"]["completed"] is True
    assert body["goal"]["currentPoints"] == 1
    assert [n["kind"] for n in body["notifications"]] == ["step_updated"]

    step_body = client.post(f"{base}/toggle", json={"completed": False}).json()
    assert step_body["goal"]["currentPoints"] == 0
    assert [n["kind"] for n in step_body["notifications"]] == ["linked_task_updated"]


def test_milestone_bonus_and_delete(client):
    goal_id, milestone_id, _ = _goal_with_step(client)

    body = client.post(f"/api/v1/goals/{goal_id}/milestones/{milestone_id}/toggle", json={"completed": True}).json()
    assert body["goal"]["currentPoints"] == 50

    body = client.delete(f"/api/v1/goals/{goal_id}/milestones/{milestone_id}").json()
    assert body["goal"]["currentPoints"] == 0


def test_habit_toggle(client):
    goal = client.post("/api/v1/goals", json={"title": "Fit"}).json()["goal"]
    habit = client.post("/api/v1/habits", json={"title": "Walk", "goal_ids": [goal["id"]], "point_value": 1}).json()["habit"]

    body = client.post(f"/api/v1/habits/{habit['id']}/toggle").json()

    assert body["completed"] is True
    assert body["streak"] == 1
    assert body["goals"][0]["currentPoints"] == 1
    listed = client.get("/api/v1/habits").json()["habits"][0]
    assert listed["completedToday"] is True
    assert listed["streak"] == 1


def test_response_only_carries_its_own_notifications(client):
    goal = client.post("/api/v1/goals", json={"title": "Fit"}).json()["goal"]
    walk = client.post("/api/v1/habits", json={"title": "Walk", "goal_ids": [goal["id"]]}).json()["habit"]
    read = client.post("/api/v1/habits", json={"title": "Read", "goal_ids": [goal["id"]]}).json()["habit"]

    # a command issued outside any request, e.g. by the CLI against the same service
    deps.get_goal_service().toggle_habit(walk["id"])

    body = client.post(f"/api/v1/habits/{read['id']}/toggle").json()
    assert [(n["kind"], n["data"].get("habit_id")) for n in body["notifications"]] == [
        ("habit_completed", read["id"])
    ]


def test_task_move(client):
    task = client.post("/api/v1/tasks", json={"title": "Plan", "priority": "urgent-important"}).json()["task"]
    assert client.post(f"/api/v1/tasks/{task['id']}/move", json={"direction": "up"}).json()["task"]["priority"] == "urgent-important"
    assert client.post(f"/api/v1/tasks/{task['id']}/move", json={"direction": "down"}).json()["task"]["priority"] == "urgent-not-important"
    assert client.post(f"/api/v1/tasks/{task['id']}/move", json={"direction": "left"}).status_code == 400


def test_clarify_llm_failure_maps_to_502(client, api_llm, llm_error):
    api_llm.replies = [llm_error]
    assert client.post("/api/v1/suggestions/clarify", json={"goal": "get fit"}).status_code == 502


def test_suggested_milestones_preview(client, api_llm):
    api_llm.replies = ['["Base", "Speed"]']
    assert client.post("/api/v1/suggestions/milestones", json={"goal": "Run"}).json() == {"milestones": ["Base", "Speed"]}
