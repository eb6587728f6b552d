"""Tests for src.core.llm — provider routing and the Ollama backend."""

import httpx
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

import src.core.llm as llm


def _mock_client(**methods):
    client = AsyncMock()
    client.__aenter__ = AsyncMock(return_value=client)
    client.__aexit__ = AsyncMock(return_value=False)
    for name, value in methods.items():
        setattr(client, name, value)
    return client


@pytest.fixture(autouse=True)
def reset_provider():
    """Force provider re-selection for every test."""
    llm._provider = None
    yield
    llm._provider = None


class TestOllamaGenerate:
    @pytest.mark.asyncio
    async def test_posts_non_streaming_prompt(self):
        mock_resp = MagicMock()
        mock_resp.json.return_value = {"response": '{"title": "A"}'}
        mock_resp.raise_for_status = MagicMock()
        client = _mock_client(post=AsyncMock(return_value=mock_resp))

        with patch("src.core.llm.httpx.AsyncClient", return_value=client):
            text = await llm.complete("SYSTEM", "Input: \"x\"", max_tokens=256)

        assert text == '{"title": "A"}'
        url = client.post.call_args.args[0]
        payload = client.post.call_args.kwargs["json"]
        assert url == "http://localhost:11434/api/generate"
        assert payload["model"] == "llama3"
        assert payload["stream"] is False
        assert payload["prompt"] == 'SYSTEM\n\nInput: "x"'
        assert payload["options"] == {"num_predict": 256}

    @pytest.mark.asyncio
    async def test_http_error_propagates(self):
        mock_resp = MagicMock()
        mock_resp.raise_for_status = MagicMock(
            side_effect=httpx.HTTPStatusError("500", request=MagicMock(), response=MagicMock()),
        )
        client = _mock_client(post=AsyncMock(return_value=mock_resp))

        with patch("src.core.llm.httpx.AsyncClient", return_value=client):
            with pytest.raises(httpx.HTTPStatusError):
                await llm.complete("S", "U")

    @pytest.mark.asyncio
    async def test_missing_response_field_is_empty(self):
        mock_resp = MagicMock()
        mock_resp.json.return_value = {}
        mock_resp.raise_for_status = MagicMock()
        client = _mock_client(post=AsyncMock(return_value=mock_resp))

        with patch("src.core.llm.httpx.AsyncClient", return_value=client):
            assert await llm.complete("S", "U") == ""


class TestOllamaHealth:
    @pytest.mark.asyncio
    async def test_healthy(self):
        client = _mock_client(get=AsyncMock(return_value=MagicMock(status_code=200)))
        with patch("src.core.llm.httpx.AsyncClient", return_value=client):
            assert await llm.health_check() is True
        assert client.get.call_args.args[0] == "http://localhost:11434/api/tags"

    @pytest.mark.asyncio
    async def test_non_200_is_unhealthy(self):
        client = _mock_client(get=AsyncMock(return_value=MagicMock(status_code=503)))
        with patch("src.core.llm.httpx.AsyncClient", return_value=client):
            assert await llm.health_check() is False

    @pytest.mark.asyncio
    async def test_connection_error_is_unhealthy(self):
        client = _mock_client(get=AsyncMock(side_effect=httpx.ConnectError("refused")))
        with patch("src.core.llm.httpx.AsyncClient", return_value=client):
            assert await llm.health_check() is False


class TestProviderSelection:
    def test_unknown_provider_raises(self):
        with patch("src.config.settings.LLM_PROVIDER", "bard"):
            with pytest.raises(ValueError, match="Unknown LLM_PROVIDER"):
                llm._select_provider()

    def test_explicit_model_overrides_default(self):
        with patch("src.config.settings.LLM_PROVIDER", "openai"), \
             patch("src.config.settings.LLM_MODEL", "gpt-4o"):
            provider, model, _ = llm._select_provider()
        assert provider is llm._PROVIDERS["openai"]
        assert model == "gpt-4o"

    def test_provider_is_selected_once(self):
        with patch("src.core.llm._select_provider", return_value=(llm._PROVIDERS["ollama"], "m", "")) as select:
            llm._ensure_provider()
            llm._ensure_provider()
        select.assert_called_once()


class TestAnthropicHealth:
    @pytest.mark.asyncio
    async def test_lists_one_model(self):
        client = MagicMock()
        client.models.list = AsyncMock(return_value=MagicMock())
        with patch("anthropic.AsyncAnthropic", return_value=client) as ctor:
            assert await llm._health_anthropic("sk-test") is True
        ctor.assert_called_once_with(api_key="sk-test")
        client.models.list.assert_awaited_once_with(limit=1)

    @pytest.mark.asyncio
    async def test_sdk_error_is_unhealthy(self):
        import anthropic

        client = MagicMock()
        client.models.list = AsyncMock(side_effect=anthropic.AnthropicError("invalid x-api-key"))
        with patch("anthropic.AsyncAnthropic", return_value=client):
            assert await llm._health_anthropic("sk-bad") is False
