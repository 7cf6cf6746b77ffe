# anthropic_adapter.py
# =============================================================================
# Anthropic Messages API 适配器 / Anthropic Messages API adapter
#
#   {"model": "...", "max_tokens": 4096, "system": "...",
#    "messages": [{"role": "user", "content": "..."}]}
#   -> 第一个 type=text 的内容块 / the first text content block
#
# 认证 / Auth: x-api-key + anthropic-version
# =============================================================================

from __future__ import annotations

from typing import Any, Dict, Optional
from urllib.parse import urlparse, urlunparse

from recoup.llm.http_adapter import HTTPAdapter

_DEFAULT_ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"
_ANTHROPIC_VERSION = "2023-06-01"


class AnthropicAdapter(HTTPAdapter):
    """Anthropic Messages 协议适配器。"""

    PROVIDER = "Anthropic Messages"
    API_KEY_ENV = "ANTHROPIC_API_KEY"

    def __init__(
        self,
        api_key: str,
        model: str,
        url: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: Optional[int] = 4096,
        timeout: float = 120.0,
        max_retries: int = 3,
    ):
        # Messages API 必须给出 max_tokens / max_tokens is mandatory here
        super().__init__(
            self._resolve_endpoint(url),
            api_key,
            model,
            temperature=temperature,
            max_tokens=max_tokens or 4096,
            timeout=timeout,
            max_retries=max_retries,
        )

    @staticmethod
    def _resolve_endpoint(url: Optional[str]) -> str:
        if not url:
            return _DEFAULT_ANTHROPIC_URL
        parsed = urlparse(url)
        if "/messages" in parsed.path:
            return url
        return urlunparse(parsed._replace(path=parsed.path.rstrip("/") + "/messages"))

    def _auth_headers(self) -> Dict[str, str]:
        return {"x-api-key": self._api_key, "anthropic-version": _ANTHROPIC_VERSION}

    def _build_request(
        self, system_prompt: str, user_message: str
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "model": self._model,
            "max_tokens": self._max_tokens,
            "temperature": self._temperature,
            "messages": [{"role": "user", "content": user_message}],
        }
        if system_prompt:
            body["system"] = system_prompt
        return body

    @staticmethod
    def _extract_text(response_data: Dict[str, Any]) -> str:
        blocks = response_data.get("content")
        if isinstance(blocks, list):
            texts = [
                b.get("text", "") for b in blocks
                if isinstance(b, dict) and b.get("type") == "text"
            ]
            if texts:
                return texts[0]
        raise HTTPAdapter._no_text(response_data)
