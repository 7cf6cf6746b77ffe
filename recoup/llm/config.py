# config.py
# =============================================================================
# LLM 配置加载与合并模块 / LLM config loading & merging module
#
# 职责 / Responsibilities:
#   - 定义单个模型端点的配置结构（ModelEndpointConfig）
#     / Define the per-endpoint config structure (ModelEndpointConfig)
#   - 三层优先级配置加载：代码传入 > 配置文件 > 环境变量
#     / Three-tier priority loading: code > config file > env vars
#   - 读取配置文件中的 _testing 节，供 TestingConfig 合并
#     / Expose the file's _testing section for TestingConfig merging
#   - 配置缺失时抛出 ConfigurationError，不提供任何硬编码默认模型
#     / Raise ConfigurationError on missing config; no hardcoded default model
# =============================================================================

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)

_VALID_API_MODES = ("chat_completions", "anthropic", "gemini")


# =============================================================================
# 数据结构 / Data Structures
# =============================================================================


@dataclass
class ModelEndpointConfig:
    """单个模型端点的完整配置。 / Complete config for a single model endpoint.

    对应一个角色（persona / bot / customer / judge / editor）。
    各适配器通过 from_endpoint_config() 读取本配置创建实例。
    / Maps to one role; adapters instantiate via from_endpoint_config().
    """

    model_platform: str  # "openai" / "anthropic" / "google" / "deepseek" ...
    model_name: str  # "gpt-4o" / "claude-sonnet-4-20250514" / "gemini-2.0-flash" ...

    api_key: Optional[str] = None
    url: Optional[str] = None

    # "chat_completions" — OpenAI 兼容格式（默认） / OpenAI-compatible (default)
    # "anthropic"        — Anthropic Messages API
    # "gemini"           — Google Generative Language API
    api_mode: str = "chat_completions"

    temperature: float = 0.7
    max_tokens: Optional[int] = 4096
    timeout: Optional[float] = None
    max_retries: int = 3

    # Azure 专用 / Azure-specific
    api_version: Optional[str] = None

    # 透传给适配器的额外参数 / Extra params passed through to adapters
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> ModelEndpointConfig:
        """从字典或模型名字符串构建配置。 / Build config from a dict or a model-name string.

        简写格式时自动推断 model_platform。 / Platform is inferred for the shorthand.
        """
        if isinstance(data, str):
            platform = _infer_platform(data)
            return cls(
                model_platform=platform,
                model_name=data,
                api_mode=_infer_api_mode(platform),
            )

        model_name = data.get("model_name") or data.get("model", "")
        model_platform = data.get("model_platform") or _infer_platform(
            model_name
        )

        api_mode = data.get("api_mode") or _infer_api_mode(
            model_platform, data.get("url")
        )
        if api_mode not in _VALID_API_MODES:
            raise ValueError(
                f"不支持的 api_mode: '{api_mode}'。"
                f"仅支持: {', '.join(_VALID_API_MODES)}。"
            )

        _known_keys = {
            "model",
            "model_name",
            "model_platform",
            "api_key",
            "url",
            "api_mode",
            "temperature",
            "max_tokens",
            "timeout",
            "max_retries",
            "api_version",
        }

        return cls(
            model_platform=model_platform,
            model_name=model_name,
            api_key=data.get("api_key"),
            url=data.get("url"),
            api_mode=api_mode,
            temperature=float(data.get("temperature", 0.7)),
            max_tokens=(
                data["max_tokens"] if "max_tokens" in data else 4096
            ),
            timeout=data.get("timeout"),
            max_retries=int(data.get("max_retries", 3)),
            api_version=data.get("api_version"),
            extra={k: v for k, v in data.items() if k not in _known_keys},
        )


# =============================================================================
# 平台与 API 模式推断 / Platform & API mode inference
# =============================================================================

# 模型名称 → 平台（按关键词匹配） / Model name → platform (keyword match)
_PLATFORM_INFERENCE_RULES: List[tuple] = [
    (["claude"], "anthropic"),
    (["gpt-", "o1-", "o3-", "o4-", "chatgpt"], "openai"),
    (["gemini"], "google"),
    (["deepseek"], "deepseek"),
    (["qwen", "qwq"], "qwen"),
    (["llama", "meta-llama"], "ollama"),
]


def _infer_platform(model_name: str) -> str:
    """根据模型名称推断 model_platform，无法推断时返回 "openai"。"""
    name_lower = model_name.lower()
    for keywords, platform in _PLATFORM_INFERENCE_RULES:
        if any(kw in name_lower for kw in keywords):
            return platform
    logger.debug(
        "无法从模型名称 '%s' 推断平台，使用默认 'openai'", model_name
    )
    return "openai"


def _infer_api_mode(platform: str, url: Optional[str] = None) -> str:
    """根据 platform 和 url 推断 api_mode。 / Infer api_mode from platform & url.

    自定义 URL 一律按 OpenAI 兼容端点处理（代理、网关、国内兼容端点）。
    / Any custom URL is treated as an OpenAI-compatible endpoint.
    """
    platform_lower = platform.lower() if platform else ""
    if url:
        return "chat_completions"
    if platform_lower == "anthropic":
        return "anthropic"
    if platform_lower == "google":
        return "gemini"
    return "chat_completions"


# =============================================================================
# 配置加载器 / Config Loader
# =============================================================================


class LLMConfigLoader:
    """LLM 配置加载器 — 三层优先级配置合并。
    / LLM config loader — three-tier priority merging.

    llm_config 字典格式 / Dict format:
    {
        "_default": {
            "model_name": "gemini-2.0-flash",
            "api_key": "${GEMINI_API_KEY}",
        },
        "judge": {"model_name": "gpt-4o", "temperature": 0.2},
        "customer": "claude-sonnet-4-20250514",   # 简写 / shorthand
        "_testing": {"threshold_score": 90, "max_iterations": 3},
    }
    """

    _CONFIG_SEARCH_PATHS = [
        "llm_config.yaml",
        "llm_config.yml",
        "config/llm_config.yaml",
        "config/llm_config.yml",
    ]

    # 以下划线开头的键是元配置，不是角色名 / Underscore keys are meta-config, not roles
    _META_KEYS = {"_default", "_testing"}

    def __init__(
        self,
        llm_config: Optional[Dict[str, Any]] = None,
        config_file: Optional[str] = None,
    ):
        self._code_config = llm_config or {}
        self._file_config: Dict[str, Any] = {}
        self._load_config_file(config_file)

    def _load_config_file(self, config_file: Optional[str]) -> None:
        """加载配置文件（YAML）。 / Load config file (YAML)."""
        if config_file:
            path = Path(config_file)
            if path.exists():
                self._file_config = self._read_yaml(path)
                logger.info("LLM 配置文件已加载: %s", path)
            else:
                logger.warning("指定的 LLM 配置文件不存在: %s", path)
            return

        for search_path in self._CONFIG_SEARCH_PATHS:
            path = Path(search_path)
            if path.exists():
                self._file_config = self._read_yaml(path)
                logger.info("自动发现 LLM 配置文件: %s", path)
                return

        logger.debug("未发现 LLM 配置文件，将依赖代码配置")

    @staticmethod
    def _read_yaml(path: Path) -> Dict[str, Any]:
        """读取 YAML 文件并展开环境变量引用。 / Read YAML and expand env var refs."""
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
        if not isinstance(raw, dict):
            from recoup.llm.router import ConfigurationError

            raise ConfigurationError(
                f"LLM 配置文件顶层必须是映射: {path}"
            )
        return _expand_env_vars(raw)

    def resolve(self, role: str) -> ModelEndpointConfig:
        """解析指定角色的完整模型配置。 / Resolve the full model config for a role.

        合并顺序（后者覆盖前者） / Merge order (later overrides earlier):
        文件 _default → 文件角色 → 代码 _default → 代码角色
        / file _default → file role → code _default → code role

        Raises:
            ConfigurationError: 合并后 model_name 仍为空。
        """
        from recoup.llm.router import ConfigurationError, ROLES

        merged: Dict[str, Any] = {}
        for key in ("_default", role):
            for source in (self._file_config, self._code_config):
                section = source.get(key, {})
                if isinstance(section, str):
                    merged["model_name"] = section
                    merged["model_platform"] = _infer_platform(section)
                elif isinstance(section, dict):
                    merged.update(
                        {k: v for k, v in section.items() if v is not None}
                    )

        model_name = merged.get("model_name") or merged.get("model", "")
        if not model_name:
            hint = ""
            if role in ROLES:
                hint = (
                    f"\n提示：'{role}' 是测试循环使用的角色，"
                    f"请在 llm_config 参数、llm_config.yaml 或 _default 中为其指定模型。"
                )
            raise ConfigurationError(
                f"角色 '{role}' 的 LLM 模型配置缺失：未找到 model_name。{hint}"
            )
        merged["model_name"] = model_name

        try:
            return ModelEndpointConfig.from_dict(merged)
        except ValueError as e:
            raise ConfigurationError(str(e)) from e

    def testing_overrides(self) -> Dict[str, Any]:
        """_testing 节（TestingConfig 覆盖项），代码配置覆盖文件配置。
        / The _testing section; the code dict overrides the file.
        """
        merged: Dict[str, Any] = {}
        for source in (self._file_config, self._code_config):
            section = source.get("_testing", {})
            if isinstance(section, dict):
                merged.update(section)
        return merged

    def all_configured_roles(self) -> List[str]:
        """返回所有已配置的角色名（不含 _ 开头的元配置键）。"""
        roles = set()
        for cfg in (self._code_config, self._file_config):
            roles.update(k for k in cfg.keys() if not k.startswith("_"))
        return sorted(roles)

    def summary(self) -> Dict[str, Dict[str, str]]:
        """输出配置摘要（隐藏 API Key），用于日志。 / Config summary with masked keys, for logging."""
        from recoup.llm.router import ConfigurationError

        result = {}
        for role in self.all_configured_roles():
            try:
                cfg = self.resolve(role)
            except ConfigurationError:
                continue
            result[role] = {
                "platform": cfg.model_platform,
                "model": cfg.model_name,
                "api_mode": cfg.api_mode,
                "api_key": _mask_key(cfg.api_key),
            }
        return result


# =============================================================================
# 工具函数 / Utility Functions
# =============================================================================


def _expand_env_vars(obj: Any) -> Any:
    """递归展开字典/列表中的 ${ENV_VAR} 引用。 / Recursively expand ${ENV_VAR} refs.

    - ${VAR_NAME}          → os.environ["VAR_NAME"]（未设置时保留原文）
    - ${VAR_NAME:-default} → os.environ.get("VAR_NAME", "default")
    """
    if isinstance(obj, str):

        def _replace(match):
            var_expr = match.group(1)
            if ":-" in var_expr:
                var_name, default = var_expr.split(":-", 1)
                return os.environ.get(var_name.strip(), default.strip())
            return os.environ.get(var_expr.strip(), match.group(0))

        return re.sub(r"\$\{([^}]+)\}", _replace, obj)

    if isinstance(obj, dict):
        return {k: _expand_env_vars(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_expand_env_vars(item) for item in obj]
    return obj


def resolve_api_key(value: Optional[str], env_var: str) -> Optional[str]:
    """取配置中的 api_key；为空或是未展开的 ${VAR} 时回退到环境变量。
    / Use the configured key; fall back to env_var when empty or an unexpanded ${VAR}.
    """
    if value and not re.fullmatch(r"\$\{[^}]+\}", value.strip()):
        return value
    return os.environ.get(env_var) or None


def _mask_key(key: Optional[str]) -> str:
    """遮蔽 API Key，仅显示前 8 位和后 4 位。"""
    if not key:
        return "(env)"
    if len(key) <= 12:
        return key[:3] + "***"
    return key[:8] + "..." + key[-4:]
