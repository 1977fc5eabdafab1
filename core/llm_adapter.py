"""
LLM Adapter for Tiny Giant.

Provides a unified interface for the text-generation providers behind the
suggestion service.
Supports: Anthropic Messages API, OpenAI-compatible APIs, Ollama (local),
and a rule-based fallback that always yields empty content.
"""
import os
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

import httpx
import yaml

from core.exceptions import (
    ConfigError,
    LLMAuthError,
    LLMConnectionError,
    LLMError,
    LLMRateLimitError,
    LLMTimeoutError,
)
from core.logger import get_logger
from core.paths import CONFIG_DIR

logger = get_logger("llm_adapter")

# 配置文件路径
MODEL_CONFIG_PATH = CONFIG_DIR / "model.yaml"
LOCAL_MODEL_CONFIG_PATH = CONFIG_DIR / "local_model.yaml"


@dataclass
class LLMResponse:
    """Structured response from LLM."""
    content: str
    model: str
    usage: Optional[Dict[str, int]] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None


class LLMProvider(Protocol):
    """Protocol defining the LLM provider interface."""

    def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 1000
    ) -> LLMResponse:
        """Generate text completion."""
        ...

    def get_model_name(self) -> str:
        """Return the model name."""
        ...


class BaseLLMAdapter(ABC):
    """Base class for LLM adapters."""

    provider = "unknown"

    def __init__(self, config: Dict[str, Any]):
        self.config = config
        self.model_name = config.get("model_name", "unknown")
        self.timeout = float(config.get("timeout", 60.0))

    @abstractmethod
    def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 1000
    ) -> LLMResponse:
        """Generate text completion."""
        pass

    def get_model_name(self) -> str:
        return self.model_name

    def _post(self, url: str, payload: Dict[str, Any], headers: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """POST JSON and translate transport failures into LLMError subclasses."""
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(url, headers=headers or {}, json=payload)
                response.raise_for_status()
                return response.json()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status == 401:
                raise LLMAuthError(self.provider, self.model_name, url) from e
            if status == 429:
                retry_after = e.response.headers.get("retry-after")
                raise LLMRateLimitError(
                    self.provider,
                    self.model_name,
                    url,
                    retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None,
                ) from e
            raise LLMError(
                message=f"HTTP error: {status} - {e.response.text}",
                provider=self.provider,
                model_name=self.model_name,
                endpoint=url,
            ) from e
        except httpx.ConnectError as e:
            raise LLMConnectionError(self.provider, self.model_name, url) from e
        except httpx.TimeoutException as e:
            raise LLMTimeoutError(self.provider, self.model_name, url, timeout_seconds=self.timeout) from e
        except (httpx.HTTPError, ValueError) as e:
            raise LLMError(
                message=f"Request failed: {e}",
                provider=self.provider,
                model_name=self.model_name,
                endpoint=url,
            ) from e


class AnthropicAdapter(BaseLLMAdapter):
    """Adapter for the Anthropic Messages API."""

    provider = "anthropic"
    API_VERSION = "2023-06-01"

    def __init__(self, config: Dict[str, Any]):
        super().__init__(config)
        self.api_key = config.get("api_key") or os.environ.get("ANTHROPIC_API_KEY")
        self.base_url = config.get("base_url", "https://api.anthropic.com/v1")
        self.model_name = config.get("model_name", "claude-3-7-sonnet-20250219")

        if not self.api_key:
            raise ConfigError(
                "Anthropic API key not found. Set ANTHROPIC_API_KEY or add 'api_key' to config/model.yaml",
                config_path=str(MODEL_CONFIG_PATH),
            )

    def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 1000
    ) -> LLMResponse:
        payload: Dict[str, Any] = {
            "model": self.model_name,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system_prompt:
            payload["system"] = system_prompt

        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": self.API_VERSION,
            "content-type": "application/json",
        }
        data = self._post(f"{self.base_url}/messages", payload, headers)
        text = "".join(
            block.get("text", "") for block in data.get("content", []) if block.get("type") == "text"
        )
        return LLMResponse(content=text, model=data.get("model", self.model_name), usage=data.get("usage"))


class OpenAIAdapter(BaseLLMAdapter):
    """Adapter for OpenAI API (also compatible with other OpenAI-compatible APIs)."""

    provider = "openai"

    def __init__(self, config: Dict[str, Any]):
        super().__init__(config)
        self.api_key = config.get("api_key") or os.environ.get("OPENAI_API_KEY")
        self.base_url = config.get("base_url", "https://api.openai.com/v1")
        self.model_name = config.get("model_name", "gpt-4o-mini")

        if not self.api_key:
            raise ConfigError(
                "OpenAI API key not found. Set OPENAI_API_KEY or add 'api_key' to config/model.yaml",
                config_path=str(MODEL_CONFIG_PATH),
            )

    def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 1000
    ) -> LLMResponse:
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json"
        }
        payload = {
            "model": self.model_name,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens
        }
        data = self._post(f"{self.base_url}/chat/completions", payload, headers)
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise LLMError("Malformed completion payload", self.provider, self.model_name, self.base_url) from e
        return LLMResponse(content=content, model=data.get("model", self.model_name), usage=data.get("usage"))


class OllamaAdapter(BaseLLMAdapter):
    """Adapter for local Ollama models."""

    provider = "ollama"

    def __init__(self, config: Dict[str, Any]):
        super().__init__(config)
        self.base_url = config.get("base_url", "http://localhost:11434")
        self.model_name = config.get("model_name", "qwen2.5:7b")
        self.timeout = float(config.get("timeout", 120.0))

    def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 1000
    ) -> LLMResponse:
        full_prompt = prompt
        if system_prompt:
            full_prompt = f"{system_prompt}\n\n{prompt}"

        payload = {
            "model": self.model_name,
            "prompt": full_prompt,
            "stream": False,
            "options": {
                "temperature": temperature,
                "num_predict": max_tokens
            }
        }
        data = self._post(f"{self.base_url}/api/generate", payload)
        return LLMResponse(
            content=data.get("response", ""),
            model=data.get("model", self.model_name),
            usage={
                "prompt_tokens": data.get("prompt_eval_count", 0),
                "completion_tokens": data.get("eval_count", 0)
            }
        )


class RuleBasedAdapter(BaseLLMAdapter):
    """
    Degraded mode used when no model is configured.
    Returns empty content so every suggestion flow falls back to its defaults.
    """

    provider = "rule_based"

    def __init__(self, config: Dict[str, Any]):
        super().__init__(config)
        self.model_name = "rule_based"

    def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 1000
    ) -> LLMResponse:
        return LLMResponse(
            content="",
            model=self.model_name,
            usage={"prompt_tokens": 0, "completion_tokens": 0}
        )


def load_model_config(profile_name: Optional[str] = None) -> Dict[str, Any]:
    """
    Load model configuration from YAML file.
    Priority: local_model.yaml > model.yaml

    Args:
        profile_name: Optional profile name. If None, uses active_profile from config.

    Returns:
        Configuration dict for the specified or active profile.

    Note:
        Supports ${ENV_VAR} syntax for environment variable expansion.
    """
    raw_config: Dict[str, Any] = {}

    for path in (LOCAL_MODEL_CONFIG_PATH, MODEL_CONFIG_PATH):
        if path.exists():
            try:
                with open(path, "r", encoding="utf-8") as f:
                    raw_config = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"Invalid YAML: {e}", config_path=str(path)) from e
            break

    if "profiles" in raw_config:
        profiles = raw_config["profiles"] or {}
        active_profile = profile_name or raw_config.get("active_profile", "rule_based")

        if active_profile not in profiles:
            logger.warning("Profile '%s' not found, using rule-based mode", active_profile)
            return {"provider": "rule_based"}

        return _expand_env_vars(profiles[active_profile])

    # 兼容旧的扁平结构
    if raw_config:
        return _expand_env_vars(raw_config)

    return {"provider": "rule_based"}


def _expand_env_vars(config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Expand ${VAR} placeholders in config values with environment variables.
    A placeholder whose variable is unset is dropped so adapters can fall
    back to their own environment lookup.
    """
    result = {}
    pattern = re.compile(r'\$\{([^}]+)\}')

    for key, value in config.items():
        if isinstance(value, str):
            match = pattern.match(value)
            if match:
                env_value = os.environ.get(match.group(1))
                if env_value:
                    result[key] = env_value
            else:
                result[key] = value
        elif isinstance(value, dict):
            result[key] = _expand_env_vars(value)
        else:
            result[key] = value

    return result


def create_llm_adapter(
    config: Optional[Dict[str, Any]] = None,
    profile_name: Optional[str] = None,
) -> BaseLLMAdapter:
    """
    Factory function to create the appropriate LLM adapter.

    Args:
        config: Optional config dict. If None, loads from model.yaml.
        profile_name: Optional profile name. Only used when config is None.
    """
    if config is None:
        config = load_model_config(profile_name)

    provider = str(config.get("provider", "rule_based")).lower()

    if provider == "anthropic":
        return AnthropicAdapter(config)
    elif provider == "openai":
        return OpenAIAdapter(config)
    elif provider == "ollama":
        return OllamaAdapter(config)
    elif provider == "rule_based":
        return RuleBasedAdapter(config)
    else:
        raise ConfigError(
            f"Unknown LLM provider '{provider}' (profile: {profile_name})",
            config_path=str(MODEL_CONFIG_PATH),
        )


# 单例模式：全局 LLM 实例注册表 (Profile Name -> Instance)
_llm_registry: Dict[str, BaseLLMAdapter] = {}


def get_llm(profile_name: Optional[str] = None) -> BaseLLMAdapter:
    """
    Get or create an LLM adapter instance for the specified profile.
    Instances are cached in _llm_registry; None maps to the active profile.
    """
    key = profile_name or "__active__"
    if key not in _llm_registry:
        logger.info("Initializing LLM profile: %s", profile_name or "active")
        _llm_registry[key] = create_llm_adapter(load_model_config(profile_name), profile_name)
    return _llm_registry[key]


def reset_llm() -> None:
    """Reset the global LLM registry (useful for testing or config changes)."""
    _llm_registry.clear()
