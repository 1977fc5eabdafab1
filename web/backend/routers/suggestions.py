from typing import Optional

from fastapi import APIRouter
from pydantic import BaseModel

from core.exceptions import TinyGiantError
from core.store import milestone_to_dict, step_to_dict
from web.backend.deps import get_goal_service, to_http_error

router = APIRouter()


class GoalTextRequest(BaseModel):
    goal: str
    purpose: Optional[str] = None


@router.post("/clarify")
def clarify_goal(req: GoalTextRequest):
    service = get_goal_service()
    try:
        clarified = service.clarify_goal(req.goal, req.purpose)
    except TinyGiantError as exc:
        raise to_http_error(exc) from exc
    return {"goal": clarified}


@router.post("/milestones")
def preview_milestones(req: GoalTextRequest):
    """生成里程碑候选，不写入状态"""
    service = get_goal_service()
    try:
        titles = service.suggest_milestones(req.goal, req.purpose)
    except TinyGiantError as exc:
        raise to_http_error(exc) from exc
    return {"milestones": titles}


@router.post("/goals/{goal_id}/milestones")
def generate_milestones(goal_id: str):
    service = get_goal_service()
    try:
        milestones = service.generate_milestones_for_goal(goal_id)
    except TinyGiantError as exc:
        raise to_http_error(exc) from exc
    return {"milestones": [milestone_to_dict(m) for m in milestones]}


@router.post("/goals/{goal_id}/milestones/{milestone_id}/steps")
def generate_steps(goal_id: str, milestone_id: str):
    service = get_goal_service()
    try:
        steps = service.generate_steps_for_milestone(goal_id, milestone_id)
    except TinyGiantError as exc:
        raise to_http_error(exc) from exc
    return {"steps": [step_to_dict(s) for s in steps]}


@router.post("/goals/{goal_id}/milestones/{milestone_id}/next-step")
def next_step(goal_id: str, milestone_id: str):
    service = get_goal_service()
    try:
        step = service.suggest_next_step(goal_id, milestone_id)
    except TinyGiantError as exc:
        raise to_http_error(exc) from exc
    return {"step": step_to_dict(step)}
