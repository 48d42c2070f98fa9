"""
Unit tests for the LLM client (no network).
"""
import pytest

from querygate.ai import llm_client
from querygate.ai.llm_client import MOCK_RESPONSE, call_llm
from querygate.core.config import Settings


def test_mock_provider():
    assert call_llm("How many orders?", provider="mock") == MOCK_RESPONSE


def test_unknown_provider():
    with pytest.raises(NotImplementedError):
        call_llm("hi", provider="gemini")


def test_openai_without_key(monkeypatch):
    monkeypatch.setattr(llm_client, "get_settings", lambda: Settings(openai_api_key=""))
    with pytest.raises(RuntimeError, match="openai_api_key"):
        call_llm("hi", provider="openai")


def test_anthropic_without_key(monkeypatch):
    monkeypatch.setattr(llm_client, "get_settings", lambda: Settings(anthropic_api_key=""))
    with pytest.raises(RuntimeError, match="anthropic_api_key"):
        call_llm("hi", provider="anthropic")


def test_configured_provider_is_default(monkeypatch):
    monkeypatch.setattr(llm_client, "get_settings", lambda: Settings(llm_provider="MOCK"))
    assert call_llm("hi") == MOCK_RESPONSE


class _FakeOpenAI:
    calls = []

    class OpenAI:
        def __init__(self, api_key):
            self.chat = self
            self.completions = self

        def create(self, **kwargs):
            _FakeOpenAI.calls.append(kwargs)
            message = type("Message", (), {"content": "SELECT 2"})
            choice = type("Choice", (), {"message": message})
            return type("Response", (), {"choices": [choice]})


def test_openai_receives_caller_instructions(monkeypatch):
    _FakeOpenAI.calls.clear()
    monkeypatch.setattr(llm_client, "get_settings", lambda: Settings(openai_api_key="sk-test", llm_max_tokens=256))
    monkeypatch.setattr(llm_client, "_sdk", lambda provider, api_key: _FakeOpenAI)
    assert call_llm("q", provider="openai", system="Only SELECT.") == "SELECT 2"
    call = _FakeOpenAI.calls[0]
    assert call["model"] == llm_client.DEFAULT_MODELS["openai"]
    assert call["max_tokens"] == 256
    assert call["messages"][0] == {"role": "system", "content": "Only SELECT."}


def test_model_override_order(monkeypatch):
    _FakeOpenAI.calls.clear()
    monkeypatch.setattr(llm_client, "get_settings", lambda: Settings(openai_api_key="sk-test", llm_model="gpt-4o"))
    monkeypatch.setattr(llm_client, "_sdk", lambda provider, api_key: _FakeOpenAI)
    call_llm("q", provider="openai")
    call_llm("q", provider="openai", model="o3-mini")
    assert [c["model"] for c in _FakeOpenAI.calls] == ["gpt-4o", "o3-mini"]
    assert _FakeOpenAI.calls[0]["messages"] == [{"role": "user", "content": "q"}]
