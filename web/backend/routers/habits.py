from typing import List, Optional

from fastapi import APIRouter
from pydantic import BaseModel, Field

from core.exceptions import TinyGiantError
from core.store import habit_to_dict
from web.backend.deps import get_goal_service, goal_payload, notification_payload, to_http_error

router = APIRouter()


class HabitCreateRequest(BaseModel):
    title: str
    description: str = ""
    goal_ids: List[str] = Field(default_factory=list)
    point_value: Optional[float] = None


@router.get("")
def list_habits():
    service = get_goal_service()
    today = service.today()
    return {
        "habits": [
            dict(habit_to_dict(h), completedToday=h.completed_on(today), streak=h.streak(today))
            for h in service.list_habits()
        ]
    }


@router.post("")
def create_habit(req: HabitCreateRequest):
    service = get_goal_service()
    try:
        habit = service.add_habit(req.title, req.description, req.goal_ids, req.point_value)
    except TinyGiantError as exc:
        raise to_http_error(exc) from exc
    return {"status": "success", "habit": habit_to_dict(habit)}


@router.delete("/{habit_id}")
def delete_habit(habit_id: str):
    service = get_goal_service()
    try:
        service.delete_habit(habit_id)
    except TinyGiantError as exc:
        raise to_http_error(exc) from exc
    return {"status": "deleted", "habit_id": habit_id}


@router.post("/{habit_id}/toggle")
def toggle_habit(habit_id: str):
    """今日打卡 / 取消打卡，返回受影响目标的最新积分"""
    service = get_goal_service()
    try:
        with service.collect_notifications() as collected:
            completed = service.toggle_habit(habit_id)
        habit = next(h for h in service.list_habits() if h.id == habit_id)
        goals = [service.get_goal(g) for g in habit.goal_ids]
    except TinyGiantError as exc:
        raise to_http_error(exc) from exc
    return {
        "habit_id": habit_id,
        "completed": completed,
        "streak": habit.streak(service.today()),
        "goals": [goal_payload(g) for g in goals],
        "notifications": notification_payload(collected),
    }
