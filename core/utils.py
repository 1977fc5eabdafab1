import json
import os
import re
from typing import Any, Dict, List, Optional

from core.logger import get_logger
from core.paths import PROMPTS_DIR

logger = get_logger("utils")


def load_prompt(name: str, variables: Optional[Dict[str, Any]] = None) -> str:
    """
    加载 Prompt 模板文件，支持子目录和变量注入。

    Args:
        name: Prompt 名称，支持子目录 (如 "suggestions/milestones")
        variables: 变量字典，用于替换 {var} 占位符

    Returns:
        渲染后的 Prompt 字符串，找不到模板时返回空字符串

    Example:
        load_prompt("generate_steps", {"max_minutes": 120})
    """
    prompt_path = PROMPTS_DIR / f"{name.replace('/', os.sep)}.md"

    if not prompt_path.exists():
        logger.warning("Prompt '%s' not found at %s", name, prompt_path)
        return ""

    template = prompt_path.read_text(encoding="utf-8")

    if variables:
        for key, value in variables.items():
            template = template.replace(f"{{{key}}}", str(value))

    return template


def parse_llm_json(content: str) -> Optional[Any]:
    """
    解析 LLM 返回的 JSON 内容。

    LLM 经常将 JSON 包裹在 Markdown 代码块中，此函数自动处理这些情况。

    Returns:
        解析后的对象，解析失败返回 None

    示例:
        >>> parse_llm_json('```json\\n{"key": "value"}\\n```')
        {'key': 'value'}
    """
    if not content:
        return None

    if "```json" in content:
        content = content.split("```json")[1].split("```")[0]
    elif "```" in content:
        content = content.split("```")[1].split("```")[0]

    try:
        return json.loads(content.strip())
    except json.JSONDecodeError:
        return None


_ARRAY_PATTERN = re.compile(r"\[[\s\S]*\]")


def extract_json_array(content: str) -> Optional[List[Any]]:
    """
    Pull the first [...] span out of free text and parse it.

    Models often wrap the array in a sentence; the greedy match spans from the
    first '[' to the last ']'.
    """
    if not content:
        return None
    parsed = parse_llm_json(content)
    if isinstance(parsed, list):
        return parsed
    match = _ARRAY_PATTERN.search(content)
    if not match:
        return None
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, list) else None
