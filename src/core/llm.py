"""
SmartCal Assistant — Generation Backend Abstraction.

Two public functions route to the configured provider:
`health_check()` reports reachability, `complete()` generates text.
Provider is selected at startup via the LLM_PROVIDER env var.
Supports: ollama (default, local), openai, anthropic.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, NamedTuple

import httpx

logger = logging.getLogger(__name__)

# Type aliases for provider implementations
_GenerateFn = Callable[[str, str, str, str, int], Awaitable[str]]
_HealthFn = Callable[[str], Awaitable[bool]]

# ---------------------------------------------------------------------------
# Provider implementations
# ---------------------------------------------------------------------------


def _ollama_url(path: str) -> str:
    from src.config import settings

    return settings.OLLAMA_BASE_URL.rstrip("/") + path


def _timeout() -> float:
    from src.config import settings

    return settings.LLM_TIMEOUT_SECONDS


async def _generate_ollama(api_key: str, model: str, system: str, user_message: str, max_tokens: int) -> str:
    async with httpx.AsyncClient(timeout=_timeout()) as client:
        resp = await client.post(
            _ollama_url("/api/generate"),
            json={
                "model": model,
                "prompt": f"{system}\n\n{user_message}",
                "stream": False,
                "options": {"num_predict": max_tokens},
            },
        )
        resp.raise_for_status()
        data = resp.json()
    return data.get("response", "")


async def _health_ollama(api_key: str) -> bool:
    try:
        async with httpx.AsyncClient(timeout=5) as client:
            resp = await client.get(_ollama_url("/api/tags"))
        return resp.status_code == 200
    except httpx.HTTPError as exc:
        logger.warning("Ollama health check failed: %s", exc)
        return False


async def _generate_openai(api_key: str, model: str, system: str, user_message: str, max_tokens: int) -> str:
    from openai import AsyncOpenAI

    client = AsyncOpenAI(api_key=api_key)
    response = await client.chat.completions.create(
        model=model,
        max_tokens=max_tokens,
        messages=[
            {"role": "system", "content": system},
            {"role": "user", "content": user_message},
        ],
    )
    return response.choices[0].message.content or ""


async def _health_openai(api_key: str) -> bool:
    from openai import AsyncOpenAI, OpenAIError

    try:
        await AsyncOpenAI(api_key=api_key).models.list()
        return True
    except OpenAIError as exc:
        logger.warning("OpenAI health check failed: %s", exc)
        return False


async def _generate_anthropic(api_key: str, model: str, system: str, user_message: str, max_tokens: int) -> str:
    import anthropic

    client = anthropic.AsyncAnthropic(api_key=api_key)
    response = await client.messages.create(
        model=model,
        max_tokens=max_tokens,
        system=system,
        messages=[{"role": "user", "content": user_message}],
    )
    return response.content[0].text


async def _health_anthropic(api_key: str) -> bool:
    import anthropic

    try:
        await anthropic.AsyncAnthropic(api_key=api_key).models.list(limit=1)
        return True
    except anthropic.AnthropicError as exc:
        logger.warning("Anthropic health check failed: %s", exc)
        return False


# ---------------------------------------------------------------------------
# Provider selection (runs once at first call)
# ---------------------------------------------------------------------------


class _Provider(NamedTuple):
    generate: _GenerateFn
    health: _HealthFn
    default_model: str


_PROVIDERS: dict[str, _Provider] = {
    "ollama":    _Provider(_generate_ollama,    _health_ollama,    "llama3"),
    "openai":    _Provider(_generate_openai,    _health_openai,    "gpt-4o-mini"),
    "anthropic": _Provider(_generate_anthropic, _health_anthropic, "claude-haiku-4-5-20251001"),
}


def _select_provider() -> tuple[_Provider, str, str]:
    """Read env vars and return (provider, model, api_key)."""
    from src.config import settings

    provider_name = settings.LLM_PROVIDER.lower()
    if provider_name not in _PROVIDERS:
        raise ValueError(
            f"Unknown LLM_PROVIDER={provider_name!r}. "
            f"Supported: {', '.join(_PROVIDERS)}"
        )

    provider = _PROVIDERS[provider_name]
    model = settings.LLM_MODEL or provider.default_model
    api_key = settings.LLM_API_KEY

    logger.info("LLM provider: %s, model: %s", provider_name, model)
    return provider, model, api_key


# Lazy singleton — populated on first call
_provider: _Provider | None = None
_model: str = ""
_api_key: str = ""


def _ensure_provider() -> _Provider:
    global _provider, _model, _api_key

    if _provider is None:
        _provider, _model, _api_key = _select_provider()
    return _provider


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def health_check() -> bool:
    """Return True when the configured backend is reachable."""
    provider = _ensure_provider()
    return await provider.health(_api_key)


async def complete(system: str, user_message: str, max_tokens: int = 512) -> str:
    """Send a prompt to the configured provider and return the generated text.

    The request is non-streaming. Raises on API errors — callers should
    handle exceptions.
    """
    provider = _ensure_provider()
    return await provider.generate(_api_key, _model, system, user_message, max_tokens)
