# router.py
# =============================================================================
# LLM 模型路由与调用次数统计模块 / LLM model routing & call accounting
#
# 职责 / Responsibilities:
#   - 根据角色（persona / bot / customer / judge / editor）选择 LLM 适配器
#     / Select an LLM adapter per role
#   - 统计每次测试会话的 LLM 调用次数，可选设置上限
#     / Count LLM calls per testing session, with an optional cap
#   - 会话启动前校验所有角色配置，缺失即抛出 ConfigurationError
#     / Validate every role before a session starts; raise ConfigurationError
#
# 配置优先级（高→低） / Config priority (high→low):
#   1. 代码传入 llm_config 字典 / code-level llm_config dict
#   2. 配置文件 llm_config.yaml / config file
#   3. 环境变量（通过 ${VAR} 在 YAML 中引用） / env vars via ${VAR}
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

# 测试循环使用的全部角色 / Every role the testing loop calls
ROLES = ("persona", "bot", "customer", "judge", "editor")


# =============================================================================
# 异常 / Exceptions
# =============================================================================


class ConfigurationError(Exception):
    """LLM 配置或测试配置缺失、不完整时抛出。 / Raised on missing or invalid configuration."""
    pass


class GenerationError(RuntimeError):
    """文本生成调用失败（网络、服务端或调用次数上限）。 / Text generation failed (network, provider or call cap)."""
    pass


# =============================================================================
# 调用次数统计 / Call accounting
# =============================================================================


@dataclass
class BudgetState:
    """LLM 调用次数状态。 / LLM call budget state.

    一次测试会话共享同一个 BudgetState。max_calls <= 0 表示不限制。
    / One BudgetState per testing session. max_calls <= 0 means unlimited.
    """

    total_calls: int = 0
    max_calls: int = 0
    calls_by_role: Dict[str, int] = field(default_factory=dict)
    # 含失败请求，用于成本审计 / Includes failed requests, for cost auditing
    total_attempts: int = 0
    attempts_by_role: Dict[str, int] = field(default_factory=dict)

    @property
    def is_unlimited(self) -> bool:
        return self.max_calls <= 0

    @property
    def is_exceeded(self) -> bool:
        """调用次数是否已超限。不限制模式下永远返回 False。"""
        if self.is_unlimited:
            return False
        return self.total_attempts >= self.max_calls

    @property
    def remaining(self) -> int:
        """剩余可用调用次数。不限制模式下返回 -1。"""
        if self.is_unlimited:
            return -1
        return max(0, self.max_calls - self.total_attempts)

    def record_attempt(self, role: str) -> None:
        """记录一次调用尝试（无论成功或失败）。 / Record one attempt, successful or not."""
        self.total_attempts += 1
        self.attempts_by_role[role] = self.attempts_by_role.get(role, 0) + 1

    def record_call(self, role: str) -> None:
        """记录一次成功调用。 / Record one successful call."""
        self.total_calls += 1
        self.calls_by_role[role] = self.calls_by_role.get(role, 0) + 1

    def to_dict(self) -> dict:
        return {
            "total_calls": self.total_calls,
            "total_attempts": self.total_attempts,
            "max_calls": self.max_calls,
            "unlimited": self.is_unlimited,
            "remaining": self.remaining,
            "calls_by_role": dict(self.calls_by_role),
            "attempts_by_role": dict(self.attempts_by_role),
        }


# =============================================================================
# 模型路由器 / Model router
# =============================================================================


class ModelRouter:
    """模型路由器 — 按角色选择适配器，统计调用次数。
    / Model router — picks an adapter per role and counts calls.

    所有适配器暴露统一接口 / Every adapter exposes:
        async call(system_prompt, user_message) -> str
    """

    def __init__(
        self,
        llm_config: Optional[Dict[str, Any]] = None,
        max_llm_calls: int = 0,
        config_file: Optional[str] = None,
    ) -> None:
        """初始化路由器。 / Initialize the router.

        Args:
            llm_config: 代码传入的模型配置（最高优先级），格式见 LLMConfigLoader。
                / Code-level model config (highest priority); see LLMConfigLoader.
            max_llm_calls: 单次会话 LLM 调用上限，<= 0 表示不限制。
                / Per-session call cap; <= 0 means unlimited.
            config_file: 配置文件路径（不传则自动搜索）。
                / Config file path (auto-discovered when omitted).
        """
        from recoup.llm.config import LLMConfigLoader

        self._config_loader = LLMConfigLoader(
            llm_config=llm_config, config_file=config_file
        )
        self._budget = BudgetState(max_calls=max_llm_calls)
        self._model_cache: Dict[str, Any] = {}

        for role, info in self._config_loader.summary().items():
            logger.info(
                "模型路由: %s → %s/%s (api_mode=%s, key=%s)",
                role,
                info["platform"],
                info["model"],
                info["api_mode"],
                info["api_key"],
            )
        if self._budget.is_unlimited:
            logger.info("LLM 调用次数: 不限制")
        else:
            logger.info("LLM 调用次数上限: %d", max_llm_calls)

    @property
    def budget(self) -> BudgetState:
        return self._budget

    @property
    def config_loader(self) -> Any:
        return self._config_loader

    # =========================================================================
    # 校验 / Validation
    # =========================================================================

    def validate(self, roles: Optional[List[str]] = None) -> None:
        """为每个角色解析配置并创建适配器；任一失败即抛出 ConfigurationError。
        / Resolve config and build an adapter for every role; any failure raises ConfigurationError.
        """
        for role in roles or ROLES:
            try:
                self.get_model_backend(role)
            except ConfigurationError:
                raise
            except ValueError as e:
                raise ConfigurationError(
                    f"角色 '{role}' 的 LLM 配置不可用: {e}"
                ) from e

    # =========================================================================
    # 适配器管理 / Adapter management
    # =========================================================================

    def get_model_backend(self, role: str) -> Any:
        """获取角色对应的 LLM 适配器实例（带缓存）。 / Get the cached adapter for a role.

        Raises:
            ConfigurationError: 角色配置缺失或 api_mode 不受支持。
            ValueError: 适配器缺少必要参数（url / api_key）。
        """
        if role in self._model_cache:
            return self._model_cache[role]

        config = self._config_loader.resolve(role)
        adapter = self._create_adapter(config)

        self._model_cache[role] = adapter
        logger.info(
            "LLM 适配器已创建: role=%s, api_mode=%s, model=%s, url=%s",
            role,
            config.api_mode,
            config.model_name,
            config.url or "(default)",
        )
        return adapter

    @staticmethod
    def _create_adapter(config) -> Any:
        """根据 api_mode 创建对应的 LLM 适配器。"""
        if config.api_mode == "chat_completions":
            from recoup.llm.chat_completions_adapter import (
                ChatCompletionsAdapter,
            )
            return ChatCompletionsAdapter.from_endpoint_config(config)

        if config.api_mode == "anthropic":
            from recoup.llm.anthropic_adapter import AnthropicAdapter
            return AnthropicAdapter.from_endpoint_config(config)

        if config.api_mode == "gemini":
            from recoup.llm.gemini_adapter import GeminiAdapter
            return GeminiAdapter.from_endpoint_config(config)

        raise ConfigurationError(
            f"不支持的 api_mode: '{config.api_mode}'。"
            f"仅支持: chat_completions, anthropic, gemini。"
        )

    # =========================================================================
    # 调用次数控制 / Call accounting
    # =========================================================================

    def check_budget(self, role: str) -> bool:
        """检查调用次数是否允许此角色继续调用。"""
        if self._budget.is_exceeded:
            logger.warning(
                "LLM 调用次数已达上限 (%d/%d)，角色 '%s' 的调用被拒绝",
                self._budget.total_attempts,
                self._budget.max_calls,
                role,
            )
            return False
        return True

    def record_attempt(self, role: str) -> None:
        self._budget.record_attempt(role)

    def record_call(self, role: str) -> None:
        self._budget.record_call(role)
