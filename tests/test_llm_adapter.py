import httpx
import pytest

import core.llm_adapter as llm_adapter
from core.config_manager import get_config
from core.exceptions import ConfigError, LLMAuthError, LLMConnectionError, LLMRateLimitError
from core.llm_adapter import (
    AnthropicAdapter,
    OpenAIAdapter,
    RuleBasedAdapter,
    _expand_env_vars,
    create_llm_adapter,
)


def test_rule_based_adapter_returns_empty_content():
    adapter = create_llm_adapter({"provider": "rule_based"})
    assert isinstance(adapter, RuleBasedAdapter)
    response = adapter.generate("anything")
    assert response.success and response.content == ""


def test_unknown_provider_is_a_config_error():
    with pytest.raises(ConfigError):
        create_llm_adapter({"provider": "carrier-pigeon"})


def test_anthropic_requires_api_key(monkeypatch):
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    with pytest.raises(ConfigError):
        AnthropicAdapter({"provider": "anthropic"})


def test_env_placeholders_are_expanded_or_dropped(monkeypatch):
    monkeypatch.setenv("TG_TEST_KEY", "secret")
    monkeypatch.delenv("TG_MISSING_KEY", raising=False)
    expanded = _expand_env_vars({
        "api_key": "${TG_TEST_KEY}",
        "other": "${TG_MISSING_KEY}",
        "nested": {"model_name": "m"},
        "timeout": 5,
    })
    assert expanded == {"api_key": "secret", "nested": {"model_name": "m"}, "timeout": 5}


def test_missing_profile_falls_back_to_rule_based(tmp_path, monkeypatch):
    config_file = tmp_path / "model.yaml"
    config_file.write_text("active_profile: ghost\nprofiles:\n  local:\n    provider: ollama\n", encoding="utf-8")
    monkeypatch.setattr(llm_adapter, "LOCAL_MODEL_CONFIG_PATH", tmp_path / "absent.yaml")
    monkeypatch.setattr(llm_adapter, "MODEL_CONFIG_PATH", config_file)

    assert llm_adapter.load_model_config() == {"provider": "rule_based"}
    assert llm_adapter.load_model_config("local") == {"provider": "ollama"}


def _patch_transport(monkeypatch, handler):
    real_client = httpx.Client

    def client_factory(*args, **kwargs):
        kwargs["transport"] = httpx.MockTransport(handler)
        return real_client(*args, **kwargs)

    monkeypatch.setattr(llm_adapter.httpx, "Client", client_factory)


def test_openai_parses_completion(monkeypatch):
    def handler(request):
        assert request.headers["Authorization"] == "Bearer k"
        return httpx.Response(200, json={"model": "gpt", "choices": [{"message": {"content": "hi"}}]})

    _patch_transport(monkeypatch, handler)
    response = OpenAIAdapter({"api_key": "k"}).generate("hello", system_prompt="sys")
    assert response.content == "hi"
    assert response.model == "gpt"


@pytest.mark.parametrize(
    "status,headers,expected",
    [(401, {}, LLMAuthError), (429, {"retry-after": "7"}, LLMRateLimitError)],
)
def test_http_errors_are_translated(monkeypatch, status, headers, expected):
    _patch_transport(monkeypatch, lambda request: httpx.Response(status, headers=headers, json={}))
    with pytest.raises(expected) as info:
        AnthropicAdapter({"api_key": "k"}).generate("hello")
    if status == 429:
        assert info.value.retry_after == 7


def test_connection_failure_is_translated(monkeypatch):
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    _patch_transport(monkeypatch, handler)
    with pytest.raises(LLMConnectionError):
        OpenAIAdapter({"api_key": "k"}).generate("hello")


def test_runtime_yaml_overrides_defaults(tmp_path):
    path = tmp_path / "runtime.yaml"
    path.write_text("DEFAULT_MILESTONE_BONUS: 20\nUNKNOWN_KEY: 1\n", encoding="utf-8")
    settings = get_config(path)
    assert settings.DEFAULT_MILESTONE_BONUS == 20
    assert not hasattr(settings, "UNKNOWN_KEY")


def test_runtime_yaml_must_be_mapping(tmp_path):
    path = tmp_path / "runtime.yaml"
    path.write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        get_config(path)


def test_get_llm_caches_per_profile(monkeypatch):
    monkeypatch.setattr(llm_adapter, "load_model_config", lambda profile_name=None: {"provider": "rule_based"})
    llm_adapter.reset_llm()
    try:
        first = llm_adapter.get_llm()
        assert llm_adapter.get_llm() is first
        assert llm_adapter.get_llm("other") is not first
    finally:
        llm_adapter.reset_llm()
