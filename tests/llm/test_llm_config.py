# test_llm_config.py
# =============================================================================
# LLMConfigLoader / ModelEndpointConfig 单元测试
# - 平台与 api_mode 推断 / Platform & api_mode inference
# - 文件 < 代码 的合并顺序 / file < code merge order
# - ${ENV} 展开 / env var expansion
# - _testing 节 / the _testing section
# =============================================================================

import pytest
import yaml

from recoup.llm.config import LLMConfigLoader, ModelEndpointConfig, resolve_api_key
from recoup.llm.router import ConfigurationError


def _write_yaml(path, data):
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return str(path)


class TestModelEndpointConfig:
    @pytest.mark.parametrize("model, platform, api_mode", [
        ("claude-sonnet-4-20250514", "anthropic", "anthropic"),
        ("gemini-2.0-flash", "google", "gemini"),
        ("gpt-4o", "openai", "chat_completions"),
        ("deepseek-chat", "deepseek", "chat_completions"),
        ("my-local-model", "openai", "chat_completions"),
    ])
    def test_shorthand_infers_platform(self, model, platform, api_mode):
        config = ModelEndpointConfig.from_dict(model)
        assert config.model_platform == platform
        assert config.api_mode == api_mode

    def test_custom_url_means_chat_completions(self):
        config = ModelEndpointConfig.from_dict({
            "model_name": "claude-sonnet-4-20250514",
            "url": "https://gateway.example.com/v1",
        })
        assert config.api_mode == "chat_completions"

    def test_unknown_api_mode_rejected(self):
        with pytest.raises(ValueError):
            ModelEndpointConfig.from_dict({"model_name": "gpt-4o", "api_mode": "responses"})

    def test_extra_keys_kept(self):
        config = ModelEndpointConfig.from_dict({"model_name": "gpt-4o", "seed": 7})
        assert config.extra == {"seed": 7}


class TestLLMConfigLoader:
    def test_code_overrides_file(self, tmp_path):
        config_file = _write_yaml(tmp_path / "llm.yaml", {
            "_default": {"model_name": "gemini-2.0-flash", "api_key": "file-key"},
            "judge": {"model_name": "gpt-4o", "temperature": 0.2},
        })
        loader = LLMConfigLoader(
            llm_config={"judge": {"temperature": 0.0}},
            config_file=config_file,
        )

        judge = loader.resolve("judge")
        assert judge.model_name == "gpt-4o"
        assert judge.temperature == 0.0
        assert judge.api_key == "file-key"

        bot = loader.resolve("bot")
        assert bot.model_name == "gemini-2.0-flash"

    def test_role_shorthand_string(self):
        loader = LLMConfigLoader(
            llm_config={"_default": "gpt-4o", "customer": "claude-sonnet-4-20250514"},
            config_file="/nonexistent/llm.yaml",
        )
        customer = loader.resolve("customer")
        assert customer.model_platform == "anthropic"
        assert customer.api_mode == "anthropic"

    def test_missing_model_raises(self):
        loader = LLMConfigLoader(llm_config={}, config_file="/nonexistent/llm.yaml")
        with pytest.raises(ConfigurationError, match="editor"):
            loader.resolve("editor")

    def test_env_vars_expanded(self, tmp_path, monkeypatch):
        monkeypatch.setenv("RECOUP_TEST_KEY", "expanded-key")
        config_file = _write_yaml(tmp_path / "llm.yaml", {
            "_default": {
                "model_name": "gpt-4o",
                "api_key": "${RECOUP_TEST_KEY}",
                "url": "${RECOUP_TEST_URL:-https://api.openai.com/v1}",
            },
        })
        config = LLMConfigLoader(config_file=config_file).resolve("bot")
        assert config.api_key == "expanded-key"
        assert config.url == "https://api.openai.com/v1"

    def test_testing_overrides_section(self, tmp_path):
        config_file = _write_yaml(tmp_path / "llm.yaml", {
            "_default": {"model_name": "gpt-4o"},
            "_testing": {"threshold_score": 90, "max_iterations": 3},
        })
        loader = LLMConfigLoader(config_file=config_file)
        assert loader.testing_overrides() == {"threshold_score": 90, "max_iterations": 3}
        assert "_testing" not in loader.all_configured_roles()

    def test_code_testing_section_overrides_file(self, tmp_path):
        config_file = _write_yaml(tmp_path / "llm.yaml", {
            "_default": {"model_name": "gpt-4o"},
            "_testing": {"threshold_score": 90, "max_iterations": 3},
        })
        loader = LLMConfigLoader(
            llm_config={"_testing": {"max_iterations": 1, "num_personas": 1}},
            config_file=config_file,
        )
        assert loader.testing_overrides() == {
            "threshold_score": 90, "max_iterations": 1, "num_personas": 1,
        }

    def test_non_mapping_file_rejected(self, tmp_path):
        path = tmp_path / "llm.yaml"
        path.write_text("- just\n- a list\n", encoding="utf-8")
        with pytest.raises(ConfigurationError):
            LLMConfigLoader(config_file=str(path))

    def test_summary_masks_keys(self):
        loader = LLMConfigLoader(
            llm_config={"judge": {"model_name": "gpt-4o", "api_key": "sk-1234567890abcdef"}},
            config_file="/nonexistent/llm.yaml",
        )
        summary = loader.summary()
        assert summary["judge"]["api_key"] == "sk-12345...cdef"


class TestResolveApiKey:
    def test_literal_key_wins(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "env")
        assert resolve_api_key("literal", "OPENAI_API_KEY") == "literal"

    def test_unexpanded_reference_falls_back(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "env")
        assert resolve_api_key("${MISSING_VAR}", "OPENAI_API_KEY") == "env"

    def test_nothing_configured(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        assert resolve_api_key(None, "OPENAI_API_KEY") is None
