"""
Tiny Giant 日志配置模块。

日志分流：
- system.log: 积分重算、联动同步、存储读写 (INFO+)
- error.log: 存储写入失败、模型调用失败 (ERROR+)
- quarantine.log: 被隔离的损坏数据文件记录
- console: 只给用户看的提示 (WARNING+)

日志目录由 core.paths.get_logs_dir() 决定，可用 TINY_GIANT_LOG_DIR 覆盖。
"""
import logging
import os
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union

from core.paths import get_logs_dir

ROOT_LOGGER_NAME = "tiny_giant"

MAX_BYTES = 2 * 1024 * 1024  # 单个日志文件 2MB
BACKUP_COUNT = 5

FILE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
CONSOLE_FORMAT = "[%(levelname)s] %(name)s: %(message)s"


def _resolve_level(level: Union[int, str, None], default: int) -> int:
    if level is None:
        return default
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).upper())
    return resolved if isinstance(resolved, int) else default


def _rotating_handler(path: Path, level: int, formatter: logging.Formatter) -> RotatingFileHandler:
    handler = RotatingFileHandler(path, maxBytes=MAX_BYTES, backupCount=BACKUP_COUNT, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(
    log_level: Union[int, str, None] = None,
    console_level: Union[int, str, None] = None,
    logs_dir: Optional[Path] = None,
) -> logging.Logger:
    """
    初始化 tiny_giant 日志树，可重复调用（旧 handler 会被关闭替换）。

    Args:
        log_level: 文件日志级别，默认读取 TINY_GIANT_LOG_LEVEL，否则 INFO
        console_level: 控制台级别，默认 WARNING
        logs_dir: 日志目录，默认 get_logs_dir()

    Returns:
        tiny_giant 根 logger
    """
    target_dir = logs_dir or get_logs_dir()
    target_dir.mkdir(parents=True, exist_ok=True)

    file_level = _resolve_level(log_level or os.getenv("TINY_GIANT_LOG_LEVEL"), logging.INFO)
    stream_level = _resolve_level(console_level, logging.WARNING)

    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(logging.DEBUG)
    root.propagate = False
    for handler in list(root.handlers):
        handler.close()
        root.removeHandler(handler)

    file_format = logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    root.addHandler(_rotating_handler(target_dir / "system.log", file_level, file_format))
    root.addHandler(_rotating_handler(target_dir / "error.log", logging.ERROR, file_format))

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(stream_level)
    console.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    root.addHandler(console)

    root.debug("Logging initialized in %s", target_dir)
    return root


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """按模块取 logger，例如 get_logger("reconciler") -> tiny_giant.reconciler"""
    if name:
        return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")
    return logging.getLogger(ROOT_LOGGER_NAME)


def log_quarantine(original: Path, moved_to: Optional[Path], reason: str) -> None:
    """
    记录一次损坏数据文件的隔离。

    quarantine.log 只追加，方便用户事后找回被移走的集合文件。
    """
    logs_dir = get_logs_dir()
    try:
        logs_dir.mkdir(parents=True, exist_ok=True)
        with open(logs_dir / "quarantine.log", "a", encoding="utf-8") as f:
            f.write(f"[{datetime.now().isoformat()}] {original} -> {moved_to or 'not moved'}\n")
            f.write(f"  Reason: {reason}\n")
    except OSError as e:
        get_logger("store").warning("Could not write quarantine log: %s", e)

    get_logger("store").warning("Quarantined %s: %s", original.name, reason)
