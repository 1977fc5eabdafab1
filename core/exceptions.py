"""
Tiny Giant 异常定义模块。

定义系统中所有自定义异常的层次结构：
- TinyGiantError: 基类，所有已知错误
- ConfigError: 配置文件错误
- ValidationError: 输入校验失败（变更前拒绝，不修改状态）
- NotFoundError: 目标 / 里程碑 / 步骤 / 任务 / 习惯不存在
- DuplicateConversionError: 步骤已有关联任务
- StoreError: 持久化失败（内存状态保持不变）
- LLMError: 模型调用相关错误
"""
from typing import Optional


class TinyGiantError(Exception):
    """Tiny Giant 基础异常类。

    所有系统内已知错误都继承自此类。
    捕获此类可以处理所有预期的错误情况。
    """

    def __init__(self, message: str, hint: Optional[str] = None):
        """
        Args:
            message: 错误描述
            hint: 对用户的操作建议
        """
        super().__init__(message)
        self.message = message
        self.hint = hint

    def get_user_message(self) -> str:
        """返回用户友好的错误消息。"""
        if self.hint:
            return f"{self.message}\nHint: {self.hint}"
        return self.message


class ConfigError(TinyGiantError):
    """配置文件错误。

    当配置文件缺失、格式错误或内容非法时抛出。
    """

    def __init__(self, message: str, config_path: Optional[str] = None):
        hint = f"Check the config file: {config_path}" if config_path else "Check the config file format"
        super().__init__(message, hint)
        self.config_path = config_path


class ValidationError(TinyGiantError):
    """Rejected input. Raised before any mutation is applied."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message, hint=None)
        self.field = field


class NotFoundError(TinyGiantError):
    """Referenced entity does not exist in the current state."""

    def __init__(self, entity: str, entity_id: str):
        super().__init__(f"{entity} not found: {entity_id}")
        self.entity = entity
        self.entity_id = entity_id


class DuplicateConversionError(TinyGiantError):
    """A step already has a live linked task."""

    def __init__(self, step_id: str, task_id: str):
        super().__init__(
            f"Step {step_id} is already linked to task {task_id}",
            hint="Complete or delete the existing task instead of converting again",
        )
        self.step_id = step_id
        self.task_id = task_id


class StoreError(TinyGiantError):
    """持久化失败。

    写入失败时抛出；调用方负责提示用户并可重试。
    """

    def __init__(self, message: str, collection: Optional[str] = None):
        super().__init__(message, hint="Your change was not saved. Please retry.")
        self.collection = collection


class LLMError(TinyGiantError):
    """Suggestion model call failed.

    Carries provider/model/endpoint so the API and CLI can tell the user
    which profile broke. Subclasses set ``default_message`` and ``default_hint``.
    """

    default_message = "Model call failed"
    default_hint: Optional[str] = None

    def __init__(
        self,
        message: Optional[str] = None,
        provider: Optional[str] = None,
        model_name: Optional[str] = None,
        endpoint: Optional[str] = None,
    ):
        self.provider = provider or "unknown"
        self.model_name = model_name or "unknown"
        self.endpoint = endpoint
        super().__init__(f"[{self.provider}/{self.model_name}] {message or self.default_message}")
        self.hint = self._hint()

    def _hint(self) -> Optional[str]:
        return self.default_hint

    def get_user_message(self) -> str:
        base = f"Suggestion service failed: {self.message}"
        return f"{base}\nHint: {self.hint}" if self.hint else base


class LLMConnectionError(LLMError):
    """Model service unreachable."""

    default_message = "Unable to reach the model service"

    def __init__(self, provider=None, model_name=None, endpoint=None):
        super().__init__(None, provider, model_name, endpoint)

    def _hint(self) -> Optional[str]:
        if self.provider == "ollama":
            return "Make sure Ollama is running (ollama serve)"
        if self.provider in ("openai", "anthropic"):
            return "Check your network connection or the API endpoint"
        return "Check that the model service is running"


class LLMAuthError(LLMError):
    default_message = "Model authentication failed"
    default_hint = "Check that the API key for this profile is configured"

    def __init__(self, provider=None, model_name=None, endpoint=None):
        super().__init__(None, provider, model_name, endpoint)


class LLMTimeoutError(LLMError):
    default_hint = "The model may be slow; suggestions fall back to generic ones meanwhile"

    def __init__(self, provider=None, model_name=None, endpoint=None, timeout_seconds: Optional[float] = None):
        self.timeout_seconds = timeout_seconds
        message = f"Model call timed out after {timeout_seconds}s" if timeout_seconds else "Model call timed out"
        super().__init__(message, provider, model_name, endpoint)


class LLMRateLimitError(LLMError):
    default_message = "Rate limit exceeded"

    def __init__(self, provider=None, model_name=None, endpoint=None, retry_after: Optional[int] = None):
        self.retry_after = retry_after
        super().__init__(None, provider, model_name, endpoint)

    def _hint(self) -> Optional[str]:
        return f"Retry in {self.retry_after} seconds" if self.retry_after else "Please retry later"
