"""
Notifications emitted by the reconciler.

A notification tells the user that a counterpart entity changed as a side
effect of their action (e.g. completing a task also completed its step).
Presentation is up to the notifier.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from core.logger import get_logger

logger = get_logger("notifications")


class NotificationKind(str, Enum):
    LINKED_TASK_UPDATED = "linked_task_updated"
    STEP_UPDATED = "step_updated"
    HABIT_COMPLETED = "habit_completed"
    HABIT_UNMARKED = "habit_unmarked"


@dataclass
class Notification:
    """A short, non-blocking message for the user."""
    title: str
    message: str
    kind: NotificationKind
    data: Dict[str, Any] = field(default_factory=dict)
    created_at: str = None

    def __post_init__(self):
        if self.created_at is None:
            self.created_at = datetime.now().isoformat()


class BaseNotifier(ABC):
    """Base class for all notifiers."""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config or {}
        self.enabled = self.config.get("enabled", True)

    @abstractmethod
    def send(self, notification: Notification) -> bool:
        """
        Deliver a notification.

        Returns:
            True if delivered, False otherwise.
        """
        pass

    @abstractmethod
    def get_name(self) -> str:
        pass

    def __call__(self, notification: Notification) -> None:
        if self.enabled:
            self.send(notification)


class LogNotifier(BaseNotifier):
    """Writes notifications to the application log."""

    def send(self, notification: Notification) -> bool:
        logger.info("%s: %s", notification.title, notification.message)
        return True

    def get_name(self) -> str:
        return "log"


class MemoryNotifier(BaseNotifier):
    """Keeps delivered notifications in memory; the API drains it per request."""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        super().__init__(config)
        self.sent: List[Notification] = []

    def send(self, notification: Notification) -> bool:
        self.sent.append(notification)
        return True

    def get_name(self) -> str:
        return "memory"

    def drain(self) -> List[Notification]:
        items, self.sent = self.sent, []
        return items
