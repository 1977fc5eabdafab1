"""
Centralized filesystem paths: config, runtime data and logs.
"""
import os
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent.parent
CONFIG_DIR = PROJECT_ROOT / "config"
PROMPTS_DIR = CONFIG_DIR / "prompts"


def _env_dir(var: str, default: Path) -> Path:
    raw = os.getenv(var, "").strip()
    if raw:
        return Path(raw).expanduser()
    return default


def get_data_dir() -> Path:
    """
    Return the directory holding the goal/task/habit collections.

    Priority:
    1. TINY_GIANT_DATA_DIR env var
    2. <project_root>/data

    Read on every call so tests and the CLI can redirect it at runtime.
    """
    return _env_dir("TINY_GIANT_DATA_DIR", PROJECT_ROOT / "data")


def get_logs_dir() -> Path:
    """TINY_GIANT_LOG_DIR, else <project_root>/logs."""
    return _env_dir("TINY_GIANT_LOG_DIR", PROJECT_ROOT / "logs")
