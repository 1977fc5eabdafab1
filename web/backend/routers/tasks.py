from typing import List, Optional

from fastapi import APIRouter
from pydantic import BaseModel, Field

from core.exceptions import TinyGiantError
from core.models import NO_GOAL, TaskPriority
from core.store import task_to_dict
from web.backend.deps import get_goal_service, goal_payload, notification_payload, to_http_error

router = APIRouter()


class TaskCreateRequest(BaseModel):
    title: str
    time_estimate: Optional[int] = None
    priority: TaskPriority = TaskPriority.IMPORTANT_NOT_URGENT
    tags: List[str] = Field(default_factory=list)
    goal_id: str = NO_GOAL


class TaskToggleRequest(BaseModel):
    # omitted -> flip
    completed: Optional[bool] = None


class MoveRequest(BaseModel):
    direction: str


@router.get("")
def list_tasks(goal_id: Optional[str] = None):
    service = get_goal_service()
    return {"tasks": [task_to_dict(t) for t in service.list_tasks(goal_id)]}


@router.post("")
def create_task(req: TaskCreateRequest):
    service = get_goal_service()
    try:
        task = service.add_task(
            req.title,
            time_estimate=req.time_estimate,
            priority=req.priority,
            tags=req.tags,
            goal_id=req.goal_id,
        )
    except TinyGiantError as exc:
        raise to_http_error(exc) from exc
    return {"status": "success", "task": task_to_dict(task)}


@router.delete("/{task_id}")
def delete_task(task_id: str):
    service = get_goal_service()
    try:
        service.delete_task(task_id)
    except TinyGiantError as exc:
        raise to_http_error(exc) from exc
    return {"status": "deleted", "task_id": task_id}


@router.post("/{task_id}/toggle")
def toggle_task(task_id: str, req: Optional[TaskToggleRequest] = None):
    service = get_goal_service()
    try:
        with service.collect_notifications() as collected:
            task = service.toggle_task(task_id, req.completed if req else None)
        goal = service.get_goal(task.goal_id) if task.goal_id != NO_GOAL else None
    except TinyGiantError as exc:
        raise to_http_error(exc) from exc
    return {
        "task": task_to_dict(task),
        "goal": goal_payload(goal) if goal else None,
        "notifications": notification_payload(collected),
    }


@router.post("/{task_id}/move")
def move_task(task_id: str, req: MoveRequest):
    service = get_goal_service()
    try:
        task = service.move_task(task_id, req.direction)
    except TinyGiantError as exc:
        raise to_http_error(exc) from exc
    return {"status": "success", "task": task_to_dict(task)}
