# gemini_adapter.py
# =============================================================================
# Google Gemini（Generative Language API）适配器 / Gemini adapter
#
#   POST {base}/models/{model}:generateContent
#   {"systemInstruction": {"parts": [{"text": "..."}]},
#    "contents": [{"role": "user", "parts": [{"text": "..."}]}],
#    "generationConfig": {"temperature": 0.7, "maxOutputTokens": 4096}}
#   -> response["candidates"][0]["content"]["parts"][*]["text"]
#
# 认证 / Auth: x-goog-api-key
# =============================================================================

from __future__ import annotations

from typing import Any, Dict, Optional

from recoup.llm.http_adapter import HTTPAdapter

_DEFAULT_GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"


class GeminiAdapter(HTTPAdapter):
    """Gemini generateContent 协议适配器。"""

    PROVIDER = "Gemini"
    API_KEY_ENV = "GEMINI_API_KEY"

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
        super().__init__(
            self._resolve_endpoint(url, model),
            api_key,
            model,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout=timeout,
            max_retries=max_retries,
        )

    @staticmethod
    def _resolve_endpoint(url: Optional[str], model: str) -> str:
        """完整的 :generateContent 地址原样使用，否则按 {base}/models/{model} 拼接。"""
        if url and ":generateContent" in url:
            return url
        base = (url or _DEFAULT_GEMINI_BASE_URL).rstrip("/")
        if base.endswith("/models"):
            base = base[: -len("/models")]
        return f"{base}/models/{model}:generateContent"

    def _auth_headers(self) -> Dict[str, str]:
        return {"x-goog-api-key": self._api_key}

    def _build_request(
        self, system_prompt: str, user_message: str
    ) -> Dict[str, Any]:
        generation_config: Dict[str, Any] = {"temperature": self._temperature}
        if self._max_tokens is not None:
            generation_config["maxOutputTokens"] = self._max_tokens

        body: Dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": user_message}]}],
            "generationConfig": generation_config,
        }
        if system_prompt:
            body["systemInstruction"] = {"parts": [{"text": system_prompt}]}
        return body

    @staticmethod
    def _extract_text(response_data: Dict[str, Any]) -> str:
        """拼接第一个候选的全部文本块；被安全策略拦截时没有候选。"""
        for candidate in (response_data.get("candidates") or [])[:1]:
            parts = (candidate.get("content") or {}).get("parts") or []
            texts = [
                p["text"] for p in parts
                if isinstance(p, dict) and isinstance(p.get("text"), str)
            ]
            if texts:
                return "".join(texts)
        raise HTTPAdapter._no_text(response_data)
