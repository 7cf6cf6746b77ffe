# llm/__init__.py
# 模型路由、调用次数统计、LLM 配置管理与适配器 / Model routing, call accounting, LLM config & adapters

from recoup.llm.anthropic_adapter import AnthropicAdapter
from recoup.llm.chat_completions_adapter import ChatCompletionsAdapter
from recoup.llm.config import (
    LLMConfigLoader,
    ModelEndpointConfig,
)
from recoup.llm.gemini_adapter import GeminiAdapter
from recoup.llm.router import (
    ROLES,
    BudgetState,
    ConfigurationError,
    GenerationError,
    ModelRouter,
)

__all__ = [
    "AnthropicAdapter",
    "BudgetState",
    "ChatCompletionsAdapter",
    "ConfigurationError",
    "GeminiAdapter",
    "GenerationError",
    "LLMConfigLoader",
    "ModelEndpointConfig",
    "ModelRouter",
    "ROLES",
]
