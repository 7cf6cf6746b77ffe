# chat_completions_adapter.py
# =============================================================================
# OpenAI Chat Completions 适配器 / OpenAI Chat Completions adapter
#
# 适用于 OpenAI、各类 OpenAI 兼容端点（DeepSeek、Qwen、本地网关）与 Azure OpenAI。
# / Serves OpenAI, OpenAI-compatible endpoints and Azure OpenAI.
#
#   {"model": "...", "messages": [{"role": "system", ...}, {"role": "user", ...}]}
#   -> response["choices"][0]["message"]["content"]
#
# URL：基础地址自动补 /chat/completions，完整路径原样保留（含 query）。
# 认证：标准端点 Authorization: Bearer；Azure 端点 api-key（按域名识别）。
# =============================================================================

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

from recoup.llm.http_adapter import HTTPAdapter

logger = logging.getLogger(__name__)

_DEFAULT_OPENAI_URL = "https://api.openai.com/v1"

_AZURE_HOST_SUFFIXES = (
    "cognitiveservices.azure.com",
    "openai.azure.com",
    "services.ai.azure.com",
)


class ChatCompletionsAdapter(HTTPAdapter):
    """Chat Completions 协议适配器。 / Chat Completions protocol adapter."""

    PROVIDER = "Chat Completions"
    API_KEY_ENV = "OPENAI_API_KEY"

    def __init__(
        self,
        url: str,
        api_key: str,
        model: str,
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
        timeout: float = 120.0,
        max_retries: int = 3,
        api_version: Optional[str] = None,
    ):
        super().__init__(
            self._resolve_endpoint(url, api_version),
            api_key,
            model,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout=timeout,
            max_retries=max_retries,
        )
        self._is_azure = self._detect_azure(url)
        if self._is_azure:
            logger.info("Azure 端点，使用 api-key 认证头: %s", self._endpoint)

    @staticmethod
    def _resolve_endpoint(url: str, api_version: Optional[str] = None) -> str:
        """补全 /chat/completions；Azure 端点缺 api-version 时追加。"""
        parsed = urlparse(url)
        path = parsed.path
        if "/chat/completions" not in path:
            path = path.rstrip("/") + "/chat/completions"

        query = parse_qs(parsed.query, keep_blank_values=True)
        if (
            api_version
            and "api-version" not in query
            and ChatCompletionsAdapter._detect_azure(url)
        ):
            query["api-version"] = [api_version]

        return urlunparse(
            parsed._replace(path=path, query=urlencode(query, doseq=True))
        )

    @staticmethod
    def _detect_azure(url: str) -> bool:
        host = urlparse(url).hostname or ""
        return host.endswith(_AZURE_HOST_SUFFIXES)

    def _auth_headers(self) -> Dict[str, str]:
        if self._is_azure:
            return {"api-key": self._api_key}
        return {"Authorization": f"Bearer {self._api_key}"}

    def _build_request(
        self, system_prompt: str, user_message: str
    ) -> Dict[str, Any]:
        messages: List[Dict[str, str]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": user_message})

        body: Dict[str, Any] = {
            "model": self._model,
            "messages": messages,
            "temperature": self._temperature,
        }
        if self._max_tokens is not None:
            body["max_tokens"] = self._max_tokens
        return body

    @staticmethod
    def _extract_text(response_data: Dict[str, Any]) -> str:
        for choice in (response_data.get("choices") or [])[:1]:
            content = (choice.get("message") or {}).get("content")
            if content is not None:
                return content
        raise HTTPAdapter._no_text(response_data)

    @classmethod
    def _config_kwargs(cls, config, api_key: str) -> Dict[str, Any]:
        # 未配置 url 时使用 OpenAI 官方端点 / Default to the OpenAI endpoint
        kwargs = super()._config_kwargs(config, api_key)
        kwargs["url"] = config.url or _DEFAULT_OPENAI_URL
        kwargs["api_version"] = config.api_version
        return kwargs
