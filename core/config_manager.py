"""
Configuration Manager for Tiny Giant.

集中管理积分模型与建议服务的常量和配置参数。
所有经验值必须显式声明并可配置。

使用方式:
    from core.config_manager import config
    bonus = config.DEFAULT_MILESTONE_BONUS
"""
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import yaml

from core.exceptions import ConfigError
import core.models as models
from core.paths import CONFIG_DIR


RUNTIME_CONFIG_PATH = CONFIG_DIR / "runtime.yaml"


@dataclass
class SystemConfig:
    """
    系统运行时常量配置。

    所有值均为经验值，可通过 config/runtime.yaml 覆盖。
    """

    # === 积分模型 ===

    # 目标默认总积分（进度百分比的分母）
    DEFAULT_TOTAL_POINTS: int = models.DEFAULT_TOTAL_POINTS

    # 里程碑完成奖励
    # 经验值依据：与默认总积分相同，完成一个里程碑即可“点亮”目标
    DEFAULT_MILESTONE_BONUS: int = models.DEFAULT_MILESTONE_BONUS

    # 习惯每日完成贡献（对每个关联目标）
    # 经验值依据：四天习惯约等于一个步骤
    DEFAULT_HABIT_POINT_VALUE: float = models.DEFAULT_HABIT_POINT_VALUE

    # === 步骤与任务 ===

    # 步骤默认时长 (分钟)
    DEFAULT_STEP_MINUTES: int = models.DEFAULT_TIME_ESTIMATE

    # 单个步骤时长上限 (分钟)
    # 经验值依据：超过 2 小时的步骤应继续拆分
    MAX_STEP_MINUTES: int = 120

    # 新建任务默认优先级（从步骤转换时使用）
    DEFAULT_TASK_PRIORITY: str = "important-not-urgent"

    # === 建议服务 ===

    # 里程碑生成上限
    MAX_MILESTONES: int = 5

    # 步骤生成上限
    MAX_GENERATED_STEPS: int = 5

    # 生成温度
    GENERATION_TEMPERATURE: float = 0.7

    # 目标澄清温度（高温更灵活的措辞）
    CLARIFY_TEMPERATURE: float = 1.0

    # 生成最大 token 数
    GENERATION_MAX_TOKENS: int = 2000

    # 建议服务使用的模型 profile（None 表示 active_profile）
    SUGGESTION_PROFILE: Optional[str] = None


def _load_runtime_config(path: Path = RUNTIME_CONFIG_PATH) -> dict:
    """加载运行时配置覆盖（如果存在）。"""
    if not path.exists():
        return {}

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (yaml.YAMLError, OSError):
        return {}

    if not isinstance(data, dict):
        raise ConfigError("runtime.yaml must contain a mapping", config_path=str(path))
    return data


def get_config(path: Path = RUNTIME_CONFIG_PATH) -> SystemConfig:
    """
    获取系统配置实例。

    优先级：runtime.yaml > 默认值
    """
    base = SystemConfig()
    overrides = _load_runtime_config(path)

    for key, value in overrides.items():
        if hasattr(base, key):
            setattr(base, key, value)

    return base


# 全局配置实例（单例模式）
config = get_config()
