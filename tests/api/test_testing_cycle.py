# tests/api/test_testing_cycle.py
"""run_testing_cycle() 公共入口测试（适配器层打桩）。 / Public entry point, adapter layer stubbed."""

import json
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
import yaml

from recoup import run_testing_cycle
from recoup.api.testing import DEFAULT_VOICE_PERSONA
from recoup.engine.orchestrator import TestingRunError
from recoup.llm.router import ConfigurationError
from recoup.primitives.models import TestingConfig
from recoup.prompts import (
    CUSTOMER_SYSTEM_PROMPT,
    EDITOR_SYSTEM_PROMPT,
    JUDGE_SYSTEM_PROMPT,
)

_LLM_CONFIG = {"_default": {"model_name": "gpt-4o", "api_key": "sk-test"}}
_NO_FILE = "/nonexistent/llm_config.yaml"
_ADAPTER_CALL = "recoup.llm.chat_completions_adapter.ChatCompletionsAdapter.call"


def _scripted(scores):
    state = {"revision": 0}

    async def reply(system_prompt, user_message):
        if system_prompt == CUSTOMER_SYSTEM_PROMPT:
            return "Please stop calling, goodbye."
        if system_prompt == JUDGE_SYSTEM_PROMPT:
            if "improvement suggestions" in user_message:
                return json.dumps({"suggestions": ["Lead with a payment plan"]})
            score = scores[min(state["revision"], len(scores) - 1)]
            return json.dumps({"score": score})
        if system_prompt == EDITOR_SYSTEM_PROMPT:
            state["revision"] += 1
            return f"Script revision {state['revision']}"
        # 画像（不可解析 → 兜底画像）与机器人发言
        return "Hello, this is Recoup Finance."

    return AsyncMock(side_effect=reply)


class TestRunTestingCycle:
    @pytest.mark.asyncio
    async def test_text_session_converges_and_saves(self, tmp_path):
        out = tmp_path / "session.json"
        with patch(_ADAPTER_CALL, new=_scripted([60, 90])):
            report = await run_testing_cycle(
                initial_script="Original script",
                num_personas=2,
                llm_config=_LLM_CONFIG,
                config_file=_NO_FILE,
                output_path=str(out),
            )

        assert report.status == "converged"
        assert report.total_iterations == 2
        assert report.improvement == 30.0
        assert report.final_script == "Script revision 1"
        assert report.output_file == str(out.resolve())
        assert report.llm_usage["total_calls"] == report.llm_usage["total_attempts"]
        assert report.llm_usage["unlimited"] is True

        data = json.loads(out.read_text(encoding="utf-8"))
        assert data["meta"]["session_id"] == report.session_id
        assert data["meta"]["status"] == "completed"
        assert len(data["personas"]) == 2

    @pytest.mark.asyncio
    async def test_voice_session_uses_single_persona(self, tmp_path):
        events = []
        with patch(_ADAPTER_CALL, new=_scripted([90])):
            report = await run_testing_cycle(
                session_type="voice",
                llm_config=_LLM_CONFIG,
                config_file=_NO_FILE,
                output_path=str(tmp_path) + "/",
                on_progress=events.append,
            )

        assert report.session_type == "voice"
        assert report.iterations[0].num_tests == 1
        ready = [e for e in events if e.stage == "personas" and e.data][0]
        assert ready.data["personas"][0]["persona_type"] == DEFAULT_VOICE_PERSONA
        # 目录输出：自动命名 <时间戳>_<session_id>.json
        assert Path(report.output_file).name.endswith(f"_{report.session_id}.json")

    @pytest.mark.asyncio
    async def test_persona_type_repeats_for_text_session(self, tmp_path):
        events = []
        with patch(_ADAPTER_CALL, new=_scripted([90])):
            await run_testing_cycle(
                num_personas=3,
                persona_type="busy_professional",
                llm_config=_LLM_CONFIG,
                config_file=_NO_FILE,
                output_path=str(tmp_path / "s.json"),
                on_progress=events.append,
            )

        ready = [e for e in events if e.stage == "personas" and e.data][0]
        assert [p["persona_type"] for p in ready.data["personas"]] == ["busy_professional"] * 3

    @pytest.mark.asyncio
    async def test_call_cap_degrades_to_fallbacks(self, tmp_path):
        mock_call = _scripted([90])
        with patch(_ADAPTER_CALL, new=mock_call):
            report = await run_testing_cycle(
                num_personas=1,
                llm_config=_LLM_CONFIG,
                config_file=_NO_FILE,
                testing_config={"max_iterations": 2},
                max_llm_calls=1,
                output_path=str(tmp_path / "s.json"),
            )

        # 只有第一次画像生成调用放行，其余全部走兜底
        assert mock_call.call_count == 1
        assert report.llm_usage["total_attempts"] == 1
        assert report.status == "exhausted"
        assert [i.average_score for i in report.iterations] == [50.0, 50.0]

    @pytest.mark.asyncio
    async def test_yaml_testing_section_with_code_override(self, tmp_path):
        config_file = tmp_path / "llm.yaml"
        config_file.write_text(yaml.safe_dump({
            **_LLM_CONFIG,
            "_testing": {"threshold_score": 95, "max_iterations": 4},
        }), encoding="utf-8")

        with patch(_ADAPTER_CALL, new=_scripted([90])):
            report = await run_testing_cycle(
                num_personas=1,
                config_file=str(config_file),
                testing_config={"max_iterations": 2},
                output_path=str(tmp_path / "s.json"),
            )

        assert report.threshold_score == 95
        assert report.total_iterations == 2
        assert report.status == "exhausted"

    @pytest.mark.asyncio
    async def test_code_testing_section_applies(self, tmp_path):
        llm_config = {
            **_LLM_CONFIG,
            "_testing": {"max_iterations": 1, "num_personas": 1},
        }
        with patch(_ADAPTER_CALL, new=_scripted([40])):
            report = await run_testing_cycle(
                llm_config=llm_config,
                config_file=_NO_FILE,
                output_path=str(tmp_path / "s.json"),
            )

        assert report.total_iterations == 1
        assert report.status == "exhausted"
        assert report.iterations[0].num_tests == 1

    @pytest.mark.asyncio
    async def test_testing_sections_merge_file_then_code_then_argument(self, tmp_path):
        config_file = tmp_path / "llm.yaml"
        config_file.write_text(yaml.safe_dump({
            **_LLM_CONFIG,
            "_testing": {"threshold_score": 95, "max_iterations": 4, "num_personas": 3},
        }), encoding="utf-8")

        with patch(_ADAPTER_CALL, new=_scripted([90])):
            report = await run_testing_cycle(
                llm_config={"_testing": {"max_iterations": 3, "num_personas": 1}},
                config_file=str(config_file),
                testing_config={"max_iterations": 2},
                output_path=str(tmp_path / "s.json"),
            )

        assert report.threshold_score == 95
        assert report.total_iterations == 2
        assert report.iterations[0].num_tests == 1

    @pytest.mark.asyncio
    async def test_testing_config_instance_used_as_is(self, tmp_path):
        with patch(_ADAPTER_CALL, new=_scripted([70])):
            report = await run_testing_cycle(
                num_personas=1,
                llm_config=_LLM_CONFIG,
                config_file=_NO_FILE,
                testing_config=TestingConfig(threshold_score=60, max_iterations=1),
                output_path=str(tmp_path / "s.json"),
            )

        assert report.threshold_reached is True


class TestFailures:
    @pytest.mark.asyncio
    async def test_missing_model_config_creates_no_session(self, tmp_path):
        with pytest.raises(ConfigurationError):
            await run_testing_cycle(
                llm_config={"bot": {"model_name": "gpt-4o", "api_key": "sk-test"}},
                config_file=_NO_FILE,
                output_path=str(tmp_path / "s.json"),
            )
        assert list(tmp_path.iterdir()) == []

    @pytest.mark.asyncio
    async def test_invalid_testing_config_creates_no_session(self, tmp_path):
        with pytest.raises(ConfigurationError):
            await run_testing_cycle(
                llm_config=_LLM_CONFIG,
                config_file=_NO_FILE,
                testing_config={"threshold_score": 150},
                output_path=str(tmp_path / "s.json"),
            )
        assert list(tmp_path.iterdir()) == []

    @pytest.mark.asyncio
    async def test_unknown_session_type(self):
        with pytest.raises(ValueError):
            await run_testing_cycle(session_type="email", llm_config=_LLM_CONFIG)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("num_personas", [0, -2])
    async def test_non_positive_persona_count_creates_no_session(self, tmp_path, num_personas):
        with pytest.raises(ConfigurationError):
            await run_testing_cycle(
                num_personas=num_personas,
                llm_config=_LLM_CONFIG,
                config_file=_NO_FILE,
                output_path=str(tmp_path / "s.json"),
            )
        assert list(tmp_path.iterdir()) == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("session_type", ["text", "voice"])
    async def test_unknown_persona_type_creates_no_session(self, tmp_path, session_type):
        mock_call = _scripted([90])
        with patch(_ADAPTER_CALL, new=mock_call):
            with pytest.raises(ConfigurationError):
                await run_testing_cycle(
                    session_type=session_type,
                    persona_type="friendly_millionaire",
                    llm_config=_LLM_CONFIG,
                    config_file=_NO_FILE,
                    output_path=str(tmp_path / "s.json"),
                )
        assert mock_call.call_count == 0
        assert list(tmp_path.iterdir()) == []

    @pytest.mark.asyncio
    async def test_run_failure_carries_output_file(self, tmp_path):
        out = tmp_path / "s.json"
        with patch(_ADAPTER_CALL, new=_scripted([40])), \
                patch(
                    "recoup.engine.recorder.SessionRecorder.record_iteration",
                    side_effect=OSError("disk full"),
                ):
            with pytest.raises(TestingRunError) as exc_info:
                await run_testing_cycle(
                    num_personas=1,
                    llm_config=_LLM_CONFIG,
                    config_file=_NO_FILE,
                    output_path=str(out),
                )

        report = exc_info.value.report
        assert report.status == "failed"
        assert report.total_iterations == 0
        assert report.output_file == str(out.resolve())
        assert report.llm_usage["total_calls"] > 0
        assert json.loads(out.read_text(encoding="utf-8"))["meta"]["status"] == "failed"
