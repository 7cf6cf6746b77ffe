# test_anthropic_adapter.py
# =============================================================================
# AnthropicAdapter 单元测试 / AnthropicAdapter unit tests
# - URL 默认值与补全 / URL defaults & completion
# - 请求格式（system / messages / headers） / Request format
# - 响应解析 / Response parsing
# - from_endpoint_config 工厂方法 / Factory method
# =============================================================================

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from recoup.llm.anthropic_adapter import AnthropicAdapter
from recoup.llm.config import ModelEndpointConfig
from recoup.llm.router import GenerationError

_URL = "https://api.anthropic.com/v1/messages"


class TestResolveEndpoint:
    """URL 解析测试。 / URL resolution tests."""

    @pytest.mark.parametrize("url", [None, ""])
    def test_uses_default_url(self, url):
        assert AnthropicAdapter._resolve_endpoint(url) == _URL

    def test_appends_messages_to_base_url(self):
        assert AnthropicAdapter._resolve_endpoint("https://api.anthropic.com/v1") == _URL

    def test_preserves_existing_messages_path(self):
        assert AnthropicAdapter._resolve_endpoint(_URL) == _URL

    def test_custom_proxy_url(self):
        result = AnthropicAdapter._resolve_endpoint("https://my-proxy.example.com/anthropic/v1")
        assert result == "https://my-proxy.example.com/anthropic/v1/messages"


class TestBuildRequest:
    def test_includes_system_and_user(self):
        adapter = AnthropicAdapter(api_key="test-key", model="claude-sonnet-4-20250514")
        body = adapter._build_request("You are a debtor.", "Hello")
        assert body["model"] == "claude-sonnet-4-20250514"
        assert body["system"] == "You are a debtor."
        assert body["messages"] == [{"role": "user", "content": "Hello"}]
        assert body["max_tokens"] == 4096

    def test_omits_system_when_empty(self):
        adapter = AnthropicAdapter(api_key="test-key", model="claude-sonnet-4-20250514")
        assert "system" not in adapter._build_request("", "Hello")


class TestExtractText:
    def test_first_text_block_wins(self):
        data = {"content": [
            {"type": "thinking", "thinking": "..."},
            {"type": "text", "text": "Hello there!"},
            {"type": "text", "text": "ignored"},
        ]}
        assert AnthropicAdapter._extract_text(data) == "Hello there!"

    @pytest.mark.parametrize("data", [{}, {"content": []}, {"content": [{"type": "tool_use"}]}])
    def test_missing_text_raises(self, data):
        with pytest.raises(ValueError):
            AnthropicAdapter._extract_text(data)


class TestCall:
    @pytest.mark.asyncio
    async def test_sends_version_and_key_headers(self):
        mock_post = AsyncMock(return_value=httpx.Response(
            200,
            json={"content": [{"type": "text", "text": "Hi"}]},
            request=httpx.Request("POST", _URL),
        ))
        adapter = AnthropicAdapter(api_key="test-key", model="claude-sonnet-4-20250514")
        with patch("httpx.AsyncClient.post", new=mock_post):
            assert await adapter.call("sys", "user") == "Hi"

        headers = mock_post.call_args.kwargs["headers"]
        assert headers["x-api-key"] == "test-key"
        assert headers["anthropic-version"] == "2023-06-01"

    @pytest.mark.asyncio
    async def test_http_errors_raise_after_retries(self):
        mock_post = AsyncMock(return_value=httpx.Response(
            529, json={"error": "overloaded"}, request=httpx.Request("POST", _URL),
        ))
        adapter = AnthropicAdapter(
            api_key="test-key", model="claude-sonnet-4-20250514", max_retries=2,
        )
        with patch("httpx.AsyncClient.post", new=mock_post):
            with pytest.raises(GenerationError):
                await adapter.call("sys", "user")
        assert mock_post.call_count == 3


class TestFromEndpointConfig:
    def test_raises_without_api_key(self, monkeypatch):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        config = ModelEndpointConfig(
            model_platform="anthropic", model_name="claude-sonnet-4-20250514",
            api_mode="anthropic",
        )
        with pytest.raises(ValueError, match="api_key"):
            AnthropicAdapter.from_endpoint_config(config)

    def test_creates_adapter_with_env_key(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-env")
        config = ModelEndpointConfig(
            model_platform="anthropic", model_name="claude-sonnet-4-20250514",
            api_mode="anthropic", max_tokens=None,
        )
        adapter = AnthropicAdapter.from_endpoint_config(config)
        assert adapter._api_key == "sk-ant-env"
        assert adapter._max_tokens == 4096
        assert adapter._endpoint == _URL
