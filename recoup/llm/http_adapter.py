# http_adapter.py
# =============================================================================
# HTTP 适配器基类 / Base class for the HTTP LLM adapters
#
# 三个适配器共用同一套流程：构建请求体 → POST → 抽取文本，失败时重试，
# 全部尝试失败后抛出 GenerationError。子类只描述各自的协议差异：
# / Every adapter shares one flow: build body → POST → extract text, retrying on
# failure and raising GenerationError once every attempt failed. Subclasses only
# describe their protocol:
#   - _auth_headers()      认证头 / auth headers
#   - _build_request()     请求体 / request body
#   - _extract_text()      响应文本（缺失时抛出 ValueError） / response text
#   - _config_kwargs()     从 ModelEndpointConfig 取构造参数 / constructor kwargs
# =============================================================================

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

import httpx

from recoup.llm.config import resolve_api_key
from recoup.llm.router import GenerationError

logger = logging.getLogger(__name__)


class HTTPAdapter:
    """httpx 异步直连的 LLM 适配器基类。 / Async httpx LLM adapter base."""

    # 日志与错误信息中的服务名 / Provider name used in logs and errors
    PROVIDER = "LLM"
    # api_key 未配置时读取的环境变量 / Env var read when no api_key is configured
    API_KEY_ENV = ""

    def __init__(
        self,
        endpoint: str,
        api_key: str,
        model: str,
        temperature: float = 0.7,
        max_tokens: Optional[int] = 4096,
        timeout: float = 120.0,
        max_retries: int = 3,
    ):
        self._endpoint = endpoint
        self._api_key = api_key
        self._model = model
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._timeout = timeout
        self._max_retries = max_retries

    @property
    def endpoint(self) -> str:
        return self._endpoint

    async def call(self, system_prompt: str, user_message: str) -> str:
        """发送一次生成请求并返回文本。 / Send one generation request and return the text.

        Raises:
            GenerationError: 全部尝试均失败（HTTP 错误、网络异常或响应无文本）。
        """
        body = self._build_request(system_prompt, user_message)
        headers = {"Content-Type": "application/json", **self._auth_headers()}
        attempts = self._max_retries + 1

        last_error: Optional[Exception] = None
        for attempt in range(1, attempts + 1):
            try:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(
                        self._endpoint, headers=headers, json=body,
                    )
                response.raise_for_status()
                return self._extract_text(response.json())
            except httpx.HTTPStatusError as e:
                last_error = e
                logger.warning(
                    "%s 返回 HTTP %d (%d/%d): %s",
                    self.PROVIDER,
                    e.response.status_code,
                    attempt,
                    attempts,
                    e.response.text[:200],
                )
            except (httpx.RequestError, ValueError) as e:
                last_error = e
                logger.warning(
                    "%s 请求失败 (%d/%d): %s",
                    self.PROVIDER, attempt, attempts, e,
                )

        raise GenerationError(
            f"{self.PROVIDER} 调用 {attempts} 次均失败: {last_error}"
        )

    # =========================================================================
    # 协议差异（子类实现） / Protocol specifics (subclass hooks)
    # =========================================================================

    def _auth_headers(self) -> Dict[str, str]:
        raise NotImplementedError

    def _build_request(
        self, system_prompt: str, user_message: str
    ) -> Dict[str, Any]:
        raise NotImplementedError

    @staticmethod
    def _extract_text(response_data: Dict[str, Any]) -> str:
        raise NotImplementedError

    @staticmethod
    def _no_text(response_data: Dict[str, Any]) -> ValueError:
        return ValueError(
            "响应中没有可用文本: "
            + json.dumps(response_data, ensure_ascii=False)[:300]
        )

    # =========================================================================
    # 工厂 / Factory
    # =========================================================================

    @classmethod
    def _config_kwargs(cls, config, api_key: str) -> Dict[str, Any]:
        return {
            "api_key": api_key,
            "model": config.model_name,
            "url": config.url,
            "temperature": config.temperature,
            "max_tokens": config.max_tokens,
            "timeout": config.timeout or 120.0,
            "max_retries": config.max_retries,
        }

    @classmethod
    def from_endpoint_config(cls, config):
        """从 ModelEndpointConfig 创建适配器；api_key 缺失时读取 API_KEY_ENV。

        Raises:
            ValueError: 配置与环境变量中都没有 api_key。
        """
        api_key = resolve_api_key(config.api_key, cls.API_KEY_ENV)
        if not api_key:
            raise ValueError(
                f"{cls.PROVIDER} 需要 api_key：请在 llm_config 中设置，"
                f"或通过环境变量 {cls.API_KEY_ENV} 提供。"
            )
        return cls(**cls._config_kwargs(config, api_key))
