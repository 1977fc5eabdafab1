"""
Shared router plumbing: the process-wide GoalService, notification payloads
and error mapping.
"""
from dataclasses import asdict
from typing import Any, Dict, List, Optional

from fastapi import HTTPException

from core.exceptions import (
    DuplicateConversionError,
    LLMError,
    NotFoundError,
    StoreError,
    TinyGiantError,
    ValidationError,
)
from core.goal_service import GoalService
from core.logger import get_logger
from core.notifications import LogNotifier, MemoryNotifier
from core.progress import progress_percentage
from core.store import goal_to_dict

logger = get_logger("api")

_service: Optional[GoalService] = None


def get_goal_service() -> GoalService:
    global _service
    if _service is None:
        _service = GoalService(notifiers=[LogNotifier()])
    return _service


def set_goal_service(service: Optional[GoalService]) -> None:
    """Install a service (tests), closing the previous one."""
    global _service
    if _service is not None:
        _service.close()
    _service = service


def notification_payload(collector: MemoryNotifier) -> List[Dict[str, Any]]:
    """Serialize what one request's commands emitted."""
    items = []
    for notification in collector.drain():
        data = asdict(notification)
        data["kind"] = notification.kind.value
        items.append(data)
    return items


def goal_payload(goal) -> Dict[str, Any]:
    data = goal_to_dict(goal)
    data["percentage"] = progress_percentage(goal)
    return data


def to_http_error(exc: TinyGiantError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=exc.message)
    if isinstance(exc, (ValidationError, DuplicateConversionError)):
        return HTTPException(status_code=400, detail=exc.message)
    if isinstance(exc, StoreError):
        logger.error("Persistence failed: %s", exc)
        return HTTPException(status_code=503, detail=exc.get_user_message())
    if isinstance(exc, LLMError):
        logger.error("Suggestion service failed: %s", exc)
        return HTTPException(status_code=502, detail=exc.get_user_message())
    return HTTPException(status_code=500, detail=exc.get_user_message())
