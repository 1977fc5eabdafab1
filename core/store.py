"""
LocalStore: JSON persistence for goals, tasks and habits.

Three independent collections, one file each under the data directory:
    tiny-giant-goals.json   (goals with nested milestones and steps)
    tiny-giant-tasks.json
    tiny-giant-habits.json

Records are written in the camelCase layout of the browser app so exported
local-storage data can be dropped in unchanged. Loading tolerates legacy
shapes and backfills missing fields; it never fails on a missing key.
"""
import json
import os
from datetime import date
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

from core.exceptions import StoreError
from core.logger import get_logger, log_quarantine
from core.config_manager import SystemConfig, config as default_config
from core.models import (
    NO_GOAL,
    Goal,
    Habit,
    HabitCompletion,
    Milestone,
    Step,
    Task,
    TaskPriority,
    now_ms,
)
from core.paths import get_data_dir
from core.reconciler import PlannerState

logger = get_logger("store")

GOALS = "tiny-giant-goals"
TASKS = "tiny-giant-tasks"
HABITS = "tiny-giant-habits"
COLLECTIONS = (GOALS, TASKS, HABITS)

ChangeListener = Callable[[str], None]


def _pick(d: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in d and d[key] is not None:
            return d[key]
    return default


def _as_int(value: Any, default: int) -> int:
    try:
        result = int(value)
    except (TypeError, ValueError):
        return default
    return result if result > 0 else default


def _as_float(value: Any, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _as_date(value: Any) -> Optional[date]:
    if isinstance(value, date):
        return value
    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def _as_timestamp(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _as_ref(value: Any) -> Optional[str]:
    # ids may have been stored as numbers by older clients
    if value is None or value == "":
        return None
    return str(value)


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------
def step_to_dict(s: Step) -> dict:
    return {
        "id": s.id,
        "text": s.text,
        "completed": s.completed,
        "completedAt": s.completed_at,
        "timeEstimate": s.time_estimate,
        "notes": s.notes,
        "createdAt": s.created_at,
    }


def milestone_to_dict(m: Milestone) -> dict:
    return {
        "id": m.id,
        "title": m.title,
        "completed": m.completed,
        "completedAt": m.completed_at,
        "steps": [step_to_dict(s) for s in m.steps],
        "bonusPoints": m.bonus_points,
        "createdAt": m.created_at,
    }


def goal_to_dict(g: Goal) -> dict:
    return {
        "id": g.id,
        "title": g.title,
        "purpose": g.purpose,
        "dueDate": g.due_date.isoformat() if g.due_date else None,
        "milestones": [milestone_to_dict(m) for m in g.milestones],
        "totalPoints": g.total_points,
        "currentPoints": g.current_points,
        "createdAt": g.created_at,
    }


def task_to_dict(t: Task) -> dict:
    return {
        "id": t.id,
        "title": t.title,
        "timeEstimate": t.time_estimate,
        "priority": t.priority.value,
        "completed": t.completed,
        "completedAt": t.completed_at,
        "tags": list(t.tags),
        "goalId": t.goal_id,
        "sourceStepId": t.source_step_id,
        "sourceMilestoneId": t.source_milestone_id,
        "createdAt": t.created_at,
    }


def habit_to_dict(h: Habit) -> dict:
    return {
        "id": h.id,
        "title": h.title,
        "description": h.description,
        "goalIds": list(h.goal_ids),
        "completions": [
            {"date": c.date.isoformat(), "timestamp": c.timestamp} for c in h.completions
        ],
        "createdAt": h.created_at,
        "pointValue": h.point_value,
    }


def step_from_dict(d: dict, settings: Optional[SystemConfig] = None) -> Step:
    settings = settings or default_config
    completed = bool(d.get("completed", False))
    return Step(
        id=str(d["id"]),
        text=str(d.get("text") or "New step"),
        completed=completed,
        completed_at=_as_timestamp(_pick(d, "completedAt", "completed_at")) if completed else None,
        time_estimate=_as_int(_pick(d, "timeEstimate", "time_estimate"), settings.DEFAULT_STEP_MINUTES),
        notes=str(d.get("notes") or ""),
        created_at=_as_timestamp(_pick(d, "createdAt", "created_at")) or now_ms(),
    )


def milestone_from_dict(d: dict, settings: Optional[SystemConfig] = None) -> Milestone:
    settings = settings or default_config
    completed = bool(d.get("completed", False))
    return Milestone(
        id=str(d["id"]),
        title=str(d.get("title") or "Untitled milestone"),
        completed=completed,
        completed_at=_as_timestamp(_pick(d, "completedAt", "completed_at")) if completed else None,
        steps=[step_from_dict(s, settings) for s in (d.get("steps") or [])],
        # legacy records predate the bonus; 0 is treated as missing, like the browser loader
        bonus_points=_as_int(_pick(d, "bonusPoints", "bonus_points"), settings.DEFAULT_MILESTONE_BONUS),
        created_at=_as_timestamp(_pick(d, "createdAt", "created_at")) or now_ms(),
    )


def goal_from_dict(d: dict, settings: Optional[SystemConfig] = None) -> Goal:
    settings = settings or default_config
    total = _as_int(_pick(d, "totalPoints", "total_points"), settings.DEFAULT_TOTAL_POINTS)
    current = _as_int(_pick(d, "currentPoints", "current_points"), 0)
    return Goal(
        id=str(d["id"]),
        title=str(d.get("title") or "Untitled goal"),
        purpose=str(d.get("purpose") or ""),
        due_date=_as_date(_pick(d, "dueDate", "due_date")),
        milestones=[milestone_from_dict(m, settings) for m in (d.get("milestones") or [])],
        total_points=total,
        current_points=max(0, min(current, total)),
        created_at=_as_timestamp(_pick(d, "createdAt", "created_at")) or now_ms(),
    )


def task_from_dict(d: dict, settings: Optional[SystemConfig] = None) -> Task:
    settings = settings or default_config
    completed = bool(d.get("completed", False))
    try:
        priority = TaskPriority(d.get("priority"))
    except ValueError:
        priority = TaskPriority.IMPORTANT_NOT_URGENT
    return Task(
        id=str(d["id"]),
        title=str(d.get("title") or "Untitled task"),
        time_estimate=_as_int(_pick(d, "timeEstimate", "time_estimate"), settings.DEFAULT_STEP_MINUTES),
        priority=priority,
        completed=completed,
        completed_at=_as_timestamp(_pick(d, "completedAt", "completed_at")) if completed else None,
        tags=[str(t) for t in (d.get("tags") or [])],
        goal_id=str(_pick(d, "goalId", "goal_id", default=NO_GOAL)),
        source_step_id=_as_ref(_pick(d, "sourceStepId", "source_step_id")),
        source_milestone_id=_as_ref(_pick(d, "sourceMilestoneId", "source_milestone_id")),
        created_at=_as_timestamp(_pick(d, "createdAt", "created_at")) or now_ms(),
    )


def habit_from_dict(d: dict, settings: Optional[SystemConfig] = None) -> Habit:
    settings = settings or default_config
    completions: List[HabitCompletion] = []
    seen = set()
    for raw in d.get("completions") or []:
        day = _as_date(raw.get("date"))
        # one completion per calendar day
        if day is None or day in seen:
            continue
        seen.add(day)
        completions.append(HabitCompletion(date=day, timestamp=_as_timestamp(raw.get("timestamp")) or 0))
    return Habit(
        id=str(d["id"]),
        title=str(d.get("title") or "Untitled habit"),
        description=str(d.get("description") or ""),
        goal_ids=[str(g) for g in (_pick(d, "goalIds", "goal_ids", default=[]))],
        completions=completions,
        created_at=_as_timestamp(_pick(d, "createdAt", "created_at")) or now_ms(),
        point_value=_as_float(_pick(d, "pointValue", "point_value"), settings.DEFAULT_HABIT_POINT_VALUE),
    )


_ENCODERS = {GOALS: goal_to_dict, TASKS: task_to_dict, HABITS: habit_to_dict}
_DECODERS = {GOALS: goal_from_dict, TASKS: task_from_dict, HABITS: habit_from_dict}


class LocalStore:
    """File-backed record store with change notification."""

    def __init__(self, data_dir: Optional[Path] = None, settings: Optional[SystemConfig] = None):
        self._dir = Path(data_dir) if data_dir is not None else get_data_dir()
        # supplies the backfill values for fields legacy records lack
        self.settings = settings or default_config
        self._listeners: List[ChangeListener] = []

    @property
    def data_dir(self) -> Path:
        return self._dir

    def path_for(self, collection: str) -> Path:
        if collection not in COLLECTIONS:
            raise ValueError(f"Unknown collection: {collection}")
        return self._dir / f"{collection}.json"

    # ------------------------------------------------------------------
    # Change notification
    # ------------------------------------------------------------------
    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def _emit(self, collection: str) -> None:
        for listener in list(self._listeners):
            listener(collection)

    def notify_external_change(self, collection: str) -> None:
        """Called by a watcher when another writer changed a collection."""
        self._emit(collection)

    # ------------------------------------------------------------------
    # Raw collection I/O
    # ------------------------------------------------------------------
    def read_records(self, collection: str) -> List[dict]:
        path = self.path_for(collection)
        if not path.exists():
            return []
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.error("Error loading %s: %s", collection, e)
            self._quarantine(path, str(e))
            return []
        if not isinstance(data, list):
            logger.error("Error loading %s: expected a list, got %s", collection, type(data).__name__)
            self._quarantine(path, f"expected a list, got {type(data).__name__}")
            return []
        return [r for r in data if isinstance(r, dict) and r.get("id") is not None]

    def _quarantine(self, path: Path, reason: str) -> None:
        target = path.with_suffix(".corrupt.json")
        try:
            path.replace(target)
        except OSError as e:
            logger.warning("Could not move corrupt file %s aside: %s", path, e)
            target = None
        log_quarantine(path, target, reason)

    def write_records(self, collection: str, records: List[dict], notify: bool = True) -> None:
        path = self.path_for(collection)
        tmp_path = path.with_suffix(".json.tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(records, f, ensure_ascii=False, indent=2)
            os.replace(tmp_path, path)
        except (OSError, TypeError, ValueError) as e:
            logger.error("Error saving %s: %s", collection, e, exc_info=True)
            raise StoreError(f"Failed to save {collection}: {e}", collection=collection) from e
        if notify:
            self._emit(collection)

    # ------------------------------------------------------------------
    # State-level operations
    # ------------------------------------------------------------------
    def load(self) -> PlannerState:
        state = PlannerState()
        for collection, target in ((GOALS, state.goals), (TASKS, state.tasks), (HABITS, state.habits)):
            decode = _DECODERS[collection]
            for record in self.read_records(collection):
                try:
                    target.append(decode(record, self.settings))
                except (KeyError, TypeError, ValueError, AttributeError) as e:
                    logger.warning("Skipping malformed %s record %r: %s", collection, record.get("id"), e)
        return state

    def save(self, state: PlannerState, collections: Iterable[str] = COLLECTIONS) -> None:
        targets = list(collections)
        sources = {GOALS: state.goals, TASKS: state.tasks, HABITS: state.habits}
        for collection in targets:
            encode = _ENCODERS[collection]
            self.write_records(collection, [encode(item) for item in sources[collection]], notify=False)
        for collection in targets:
            self._emit(collection)

    # ------------------------------------------------------------------
    # Per-record CRUD
    # ------------------------------------------------------------------
    def get(self, collection: str, record_id: str) -> Optional[Any]:
        for record in self.read_records(collection):
            if str(record.get("id")) == str(record_id):
                return _DECODERS[collection](record, self.settings)
        return None

    def list_items(self, collection: str) -> List[Any]:
        decode = _DECODERS[collection]
        return [decode(r, self.settings) for r in self.read_records(collection)]

    def upsert(self, collection: str, item: Any) -> None:
        record = _ENCODERS[collection](item)
        records = self.read_records(collection)
        for i, existing in enumerate(records):
            if str(existing.get("id")) == record["id"]:
                records[i] = record
                break
        else:
            records.append(record)
        self.write_records(collection, records)

    def delete(self, collection: str, record_id: str) -> bool:
        records = self.read_records(collection)
        remaining = [r for r in records if str(r.get("id")) != str(record_id)]
        if len(remaining) == len(records):
            return False
        self.write_records(collection, remaining)
        return True
