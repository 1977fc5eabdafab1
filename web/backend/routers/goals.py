from datetime import date
from typing import List, Optional

from fastapi import APIRouter
from pydantic import BaseModel, Field

from core.exceptions import TinyGiantError
from core.store import milestone_to_dict, step_to_dict, task_to_dict
from web.backend.deps import get_goal_service, goal_payload, notification_payload, to_http_error

router = APIRouter()


class GoalCreateRequest(BaseModel):
    title: str
    purpose: str = ""
    due_date: Optional[date] = None
    total_points: Optional[int] = None
    milestones: List[str] = Field(default_factory=list)


class TotalPointsRequest(BaseModel):
    total_points: int


class MilestoneRequest(BaseModel):
    title: str
    bonus_points: Optional[int] = None


class CompletionRequest(BaseModel):
    completed: bool


class StepCreateRequest(BaseModel):
    text: str = "New step"
    time_estimate: Optional[int] = None
    notes: str = ""


class StepUpdateRequest(BaseModel):
    text: Optional[str] = None
    time_estimate: Optional[int] = None
    notes: Optional[str] = None


@router.get("")
def list_goals():
    service = get_goal_service()
    return {"goals": [goal_payload(g) for g in service.list_goals()]}


@router.post("")
def create_goal(req: GoalCreateRequest):
    service = get_goal_service()
    try:
        goal = service.add_goal(
            req.title,
            purpose=req.purpose,
            due_date=req.due_date,
            total_points=req.total_points,
            milestone_titles=req.milestones,
        )
    except TinyGiantError as exc:
        raise to_http_error(exc) from exc
    return {"status": "success", "goal": goal_payload(goal)}


@router.post("/recompute")
def recompute_points():
    service = get_goal_service()
    try:
        points = service.recompute_all()
    except TinyGiantError as exc:
        raise to_http_error(exc) from exc
    return {"status": "success", "points": points}


@router.get("/{goal_id}")
def get_goal(goal_id: str):
    service = get_goal_service()
    try:
        goal = service.get_goal(goal_id)
    except TinyGiantError as exc:
        raise to_http_error(exc) from exc
    return {"goal": goal_payload(goal)}


@router.get("/{goal_id}/status")
def get_goal_status(goal_id: str):
    service = get_goal_service()
    try:
        return service.goal_status(goal_id)
    except TinyGiantError as exc:
        raise to_http_error(exc) from exc


@router.put("/{goal_id}/points")
def update_total_points(goal_id: str, req: TotalPointsRequest):
    service = get_goal_service()
    try:
        goal = service.update_total_points(goal_id, req.total_points)
    except TinyGiantError as exc:
        raise to_http_error(exc) from exc
    return {"status": "success", "goal": goal_payload(goal)}


@router.delete("/{goal_id}")
def delete_goal(goal_id: str):
    service = get_goal_service()
    try:
        service.delete_goal(goal_id)
    except TinyGiantError as exc:
        raise to_http_error(exc) from exc
    return {"status": "deleted", "goal_id": goal_id}


# ---------------------------------------------------------------------------
# Milestones
# ---------------------------------------------------------------------------
@router.post("/{goal_id}/milestones")
def add_milestone(goal_id: str, req: MilestoneRequest):
    service = get_goal_service()
    try:
        milestone = service.add_milestone(goal_id, req.title, req.bonus_points)
    except TinyGiantError as exc:
        raise to_http_error(exc) from exc
    return {"status": "success", "milestone": milestone_to_dict(milestone)}


@router.put("/{goal_id}/milestones/{milestone_id}")
def rename_milestone(goal_id: str, milestone_id: str, req: MilestoneRequest):
    service = get_goal_service()
    try:
        milestone = service.rename_milestone(goal_id, milestone_id, req.title)
    except TinyGiantError as exc:
        raise to_http_error(exc) from exc
    return {"status": "success", "milestone": milestone_to_dict(milestone)}


@router.delete("/{goal_id}/milestones/{milestone_id}")
def delete_milestone(goal_id: str, milestone_id: str):
    service = get_goal_service()
    try:
        service.delete_milestone(goal_id, milestone_id)
        goal = service.get_goal(goal_id)
    except TinyGiantError as exc:
        raise to_http_error(exc) from exc
    return {"status": "deleted", "goal": goal_payload(goal)}


@router.post("/{goal_id}/milestones/{milestone_id}/toggle")
def toggle_milestone(goal_id: str, milestone_id: str, req: CompletionRequest):
    service = get_goal_service()
    try:
        milestone = service.toggle_milestone(goal_id, milestone_id, req.completed)
        goal = service.get_goal(goal_id)
    except TinyGiantError as exc:
        raise to_http_error(exc) from exc
    return {"milestone": milestone_to_dict(milestone), "goal": goal_payload(goal)}


# ---------------------------------------------------------------------------
# Steps
# ---------------------------------------------------------------------------
@router.post("/{goal_id}/milestones/{milestone_id}/steps")
def add_step(goal_id: str, milestone_id: str, req: StepCreateRequest):
    service = get_goal_service()
    try:
        step = service.add_step(goal_id, milestone_id, req.text, req.time_estimate, req.notes)
    except TinyGiantError as exc:
        raise to_http_error(exc) from exc
    return {"status": "success", "step": step_to_dict(step)}


@router.put("/{goal_id}/milestones/{milestone_id}/steps/{step_id}")
def update_step(goal_id: str, milestone_id: str, step_id: str, req: StepUpdateRequest):
    service = get_goal_service()
    try:
        step = service.update_step(
            goal_id, milestone_id, step_id,
            text=req.text, time_estimate=req.time_estimate, notes=req.notes,
        )
    except TinyGiantError as exc:
        raise to_http_error(exc) from exc
    return {"status": "success", "step": step_to_dict(step)}


@router.delete("/{goal_id}/milestones/{milestone_id}/steps/{step_id}")
def delete_step(goal_id: str, milestone_id: str, step_id: str):
    service = get_goal_service()
    try:
        service.delete_step(goal_id, milestone_id, step_id)
        goal = service.get_goal(goal_id)
    except TinyGiantError as exc:
        raise to_http_error(exc) from exc
    return {"status": "deleted", "goal": goal_payload(goal)}


@router.post("/{goal_id}/milestones/{milestone_id}/steps/{step_id}/toggle")
def toggle_step(goal_id: str, milestone_id: str, step_id: str, req: CompletionRequest):
    service = get_goal_service()
    try:
        with service.collect_notifications() as collected:
            step = service.toggle_step(goal_id, milestone_id, step_id, req.completed)
        goal = service.get_goal(goal_id)
    except TinyGiantError as exc:
        raise to_http_error(exc) from exc
    return {
        "step": step_to_dict(step),
        "goal": goal_payload(goal),
        "notifications": notification_payload(collected),
    }


@router.post("/{goal_id}/milestones/{milestone_id}/steps/{step_id}/convert")
def convert_step(goal_id: str, milestone_id: str, step_id: str):
    """把步骤转换为任务（每个步骤最多一个关联任务）"""
    service = get_goal_service()
    try:
        task = service.convert_step_to_task(goal_id, milestone_id, step_id)
    except TinyGiantError as exc:
        raise to_http_error(exc) from exc
    return {"status": "success", "task": task_to_dict(task)}
