"""
LLM client -- provider-agnostic completion for the AI query path.

Supported providers:
  mock      -- canned fenced query (tests / offline dev)
  openai    -- OpenAI Chat Completions
  anthropic -- Anthropic Messages

The caller owns the instructions: it passes the system prompt and, when it
needs one, a specific model.  Provider SDKs are optional extras imported on
first use.  Whatever comes back is untrusted text; callers must run it
through the safety validator.
"""
from __future__ import annotations

import importlib
from dataclasses import dataclass
from types import ModuleType
from typing import Callable

from querygate.core.config import Settings, get_settings
from querygate.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_MODELS = {
    "openai": "gpt-4o-mini",
    "anthropic": "claude-3-haiku-20240307",
}

MOCK_RESPONSE = "```sql\nSELECT 1 AS result\n```"


@dataclass(frozen=True)
class Completion:
    """One completion request as the providers see it."""

    prompt: str
    system: str
    model: str
    max_tokens: int


def _sdk(provider: str, api_key: str) -> ModuleType:
    """Import the provider SDK, failing with setup instructions."""
    if not api_key:
        raise RuntimeError(
            f"{provider}_api_key is not set.  "
            f"Set QUERYGATE_{provider.upper()}_API_KEY in your .env file or environment."
        )
    try:
        return importlib.import_module(provider)
    except ImportError as exc:
        raise RuntimeError(
            f"The '{provider}' package is not installed.  Run: pip install 'querygate[llm]'"
        ) from exc


def _call_mock(req: Completion, settings: Settings) -> str:
    logger.info("LLM mock mode -- returning canned query")
    return MOCK_RESPONSE


def _call_openai(req: Completion, settings: Settings) -> str:
    openai = _sdk("openai", settings.openai_api_key)
    messages = [{"role": "user", "content": req.prompt}]
    if req.system:
        messages.insert(0, {"role": "system", "content": req.system})
    response = openai.OpenAI(api_key=settings.openai_api_key).chat.completions.create(
        model=req.model,
        messages=messages,
        temperature=0.0,
        max_tokens=req.max_tokens,
    )
    return response.choices[0].message.content or ""


def _call_anthropic(req: Completion, settings: Settings) -> str:
    anthropic = _sdk("anthropic", settings.anthropic_api_key)
    kwargs = {"system": req.system} if req.system else {}
    response = anthropic.Anthropic(api_key=settings.anthropic_api_key).messages.create(
        model=req.model,
        max_tokens=req.max_tokens,
        messages=[{"role": "user", "content": req.prompt}],
        **kwargs,
    )
    # Messages may interleave non-text blocks
    return "".join(getattr(block, "text", "") for block in response.content or [])


_PROVIDERS: dict[str, Callable[[Completion, Settings], str]] = {
    "mock": _call_mock,
    "openai": _call_openai,
    "anthropic": _call_anthropic,
}


def call_llm(
    prompt: str,
    provider: str | None = None,
    system: str = "",
    model: str | None = None,
) -> str:
    """Send *prompt* to the configured (or overridden) provider.

    ``model`` falls back to ``settings.llm_model`` and then to the
    provider's default.

    Raises
    ------
    NotImplementedError
        Unknown provider name.
    RuntimeError
        Missing API key or SDK.
    """
    settings = get_settings()
    provider = (provider or settings.llm_provider).lower()

    fn = _PROVIDERS.get(provider)
    if fn is None:
        raise NotImplementedError(
            f"LLM provider '{provider}' is not supported.  "
            f"Choose from: {', '.join(_PROVIDERS)}"
        )

    req = Completion(
        prompt=prompt,
        system=system,
        model=model or settings.llm_model or DEFAULT_MODELS.get(provider, ""),
        max_tokens=settings.llm_max_tokens,
    )
    logger.info("Calling LLM provider=%s  model=%s  prompt_len=%d", provider, req.model or "-", len(prompt))
    text = fn(req, settings)
    logger.info("LLM response (%d chars)", len(text))
    return text
