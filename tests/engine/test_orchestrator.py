# tests/engine/test_orchestrator.py
"""端到端测试循环（无真实 LLM）。 / End-to-end testing loop with scripted LLM roles."""

import asyncio
import json
from unittest.mock import MagicMock

import pytest

from recoup.engine.orchestrator import (
    TestingOrchestrator,
    TestingRunError,
    resolve_persona_plan,
)
from recoup.engine.recorder import PersistenceError, SessionRecorder
from recoup.llm.router import ConfigurationError
from recoup.primitives.models import TestingConfig
from recoup.prompts import (
    BOT_SYSTEM_PROMPT,
    CUSTOMER_SYSTEM_PROMPT,
    EDITOR_SYSTEM_PROMPT,
    JUDGE_SYSTEM_PROMPT,
    PERSONA_SYSTEM_PROMPT,
)

INITIAL_SCRIPT = "INITIAL SCRIPT: collect the balance."

PERSONA_JSON = json.dumps({
    "name": "Sam Carter",
    "age": 44,
    "occupation": "Driver",
    "financial_situation": "Irregular income",
    "communication_style": "Direct",
    "attitude_towards_debt": "Willing but wary",
    "preferred_outcome": "Smaller payments",
})


class ScriptedLLM:
    """按 system_prompt 分派角色；每次改写脚本后进入下一档分数。
    / Dispatches on the system prompt; each rewrite moves to the next score.
    """

    def __init__(self, scores, persona_raw=PERSONA_JSON, customer_delay=0.0):
        self.scores = list(scores)
        self.persona_raw = persona_raw
        self.customer_delay = customer_delay
        self.revision = 0
        self.editor_prompts = []
        self.in_flight = 0
        self.max_in_flight = 0

    def _score(self):
        return self.scores[min(self.revision, len(self.scores) - 1)]

    async def __call__(self, *, system_prompt, user_prompt):
        if system_prompt == PERSONA_SYSTEM_PROMPT:
            return self.persona_raw
        if system_prompt == BOT_SYSTEM_PROMPT:
            return "Hello, I'm calling about your account."
        if system_prompt == CUSTOMER_SYSTEM_PROMPT:
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
            await asyncio.sleep(self.customer_delay)
            self.in_flight -= 1
            return "I have to go, goodbye."
        if system_prompt == JUDGE_SYSTEM_PROMPT:
            if "improvement suggestions" in user_prompt:
                return json.dumps({"suggestions": ["Offer a payment plan earlier"]})
            return json.dumps({"score": self._score()})
        if system_prompt == EDITOR_SYSTEM_PROMPT:
            self.editor_prompts.append(user_prompt)
            self.revision += 1
            return f"Revised script v{self.revision}"
        raise AssertionError(f"unexpected system prompt: {system_prompt[:40]}")


def _config(**overrides):
    values = {"threshold_score": 85.0, "max_iterations": 5, "num_personas": 3}
    values.update(overrides)
    return TestingConfig(**values)


class TestConvergence:
    @pytest.mark.asyncio
    async def test_converges_at_third_iteration(self):
        llm = ScriptedLLM([55, 70, 85])
        orchestrator = TestingOrchestrator(llm, config=_config())

        report = await orchestrator.run(INITIAL_SCRIPT)

        assert report.status == "converged"
        assert report.threshold_reached is True
        assert report.total_iterations == 3
        assert [i.average_score for i in report.iterations] == [55.0, 70.0, 85.0]
        assert report.initial_score == 55.0
        assert report.final_score == 85.0
        assert report.improvement == 30.0
        assert report.final_script == "Revised script v2"
        # 收敛后不再改写 / No rewrite after convergence
        assert llm.revision == 2
        assert report.output_file is None

    @pytest.mark.asyncio
    async def test_exhausts_iterations_below_threshold(self):
        llm = ScriptedLLM([40, 45, 50, 55, 60])
        orchestrator = TestingOrchestrator(llm, config=_config(num_personas=2))

        report = await orchestrator.run(INITIAL_SCRIPT)

        assert report.status == "exhausted"
        assert report.threshold_reached is False
        assert report.total_iterations == 5
        assert report.iterations[0].num_tests == 2
        assert report.improvement == 20.0
        # 最后一轮之后不改写 / No rewrite after the final iteration
        assert llm.revision == 4
        assert report.final_script == "Revised script v4"

    @pytest.mark.asyncio
    async def test_first_iteration_meets_threshold(self):
        llm = ScriptedLLM([90])
        orchestrator = TestingOrchestrator(llm, config=_config())

        report = await orchestrator.run(INITIAL_SCRIPT)

        assert report.total_iterations == 1
        assert report.improvement == 0.0
        assert report.final_script == INITIAL_SCRIPT
        assert llm.editor_prompts == []

    @pytest.mark.asyncio
    async def test_default_script_used_when_none_given(self):
        llm = ScriptedLLM([90])
        config = _config()
        orchestrator = TestingOrchestrator(llm, config=config)

        report = await orchestrator.run()

        assert report.final_script == config.base_bot_script

    @pytest.mark.asyncio
    async def test_persona_failure_falls_back_and_run_completes(self):
        llm = ScriptedLLM([90], persona_raw="I won't do that.")
        events = []
        orchestrator = TestingOrchestrator(
            llm, config=_config(num_personas=2), on_progress=events.append,
        )

        report = await orchestrator.run(INITIAL_SCRIPT)

        assert report.status == "converged"
        ready = [e for e in events if e.stage == "personas" and e.data]
        names = [p["name"] for p in ready[0].data["personas"]]
        assert names == ["John Doe", "John Doe"]

    @pytest.mark.asyncio
    async def test_explicit_persona_types(self):
        llm = ScriptedLLM([90])
        events = []
        orchestrator = TestingOrchestrator(llm, config=_config(), on_progress=events.append)

        await orchestrator.run(INITIAL_SCRIPT, persona_types=["confused_elderly"] * 2)

        ready = [e for e in events if e.stage == "personas" and e.data][0]
        assert [p["persona_type"] for p in ready.data["personas"]] == [
            "confused_elderly", "confused_elderly",
        ]


class TestRegressionGuard:
    @pytest.mark.asyncio
    async def test_default_always_adopts_latest_script(self):
        llm = ScriptedLLM([70, 50, 60])
        orchestrator = TestingOrchestrator(llm, config=_config(max_iterations=3))

        await orchestrator.run(INITIAL_SCRIPT)

        assert "Revised script v1" in llm.editor_prompts[1]

    @pytest.mark.asyncio
    async def test_keep_best_rewrites_best_script(self):
        llm = ScriptedLLM([70, 50, 60])
        config = _config(max_iterations=3, keep_best_script=True)
        orchestrator = TestingOrchestrator(llm, config=config)

        await orchestrator.run(INITIAL_SCRIPT)

        # 第二轮回退，改写基于第一轮（最佳）脚本 / Round 2 regressed; rewrite the round-1 script
        assert INITIAL_SCRIPT in llm.editor_prompts[1]
        assert "Revised script v1" not in llm.editor_prompts[1]


class TestProgressEvents:
    @pytest.mark.asyncio
    async def test_event_order_for_two_iterations(self):
        llm = ScriptedLLM([40, 50])
        events = []
        orchestrator = TestingOrchestrator(
            llm, config=_config(num_personas=1, max_iterations=2),
            on_progress=events.append,
        )

        report = await orchestrator.run(INITIAL_SCRIPT, session_id="sess0001")

        round_events = ["iteration", "test", "test_conversation", "test_analysis",
                        "iteration_complete"]
        assert [e.stage for e in events] == (
            ["init", "personas", "personas"]
            + round_events
            + ["self_correction", "self_correction_complete"]
            + round_events
            + ["max_iterations", "complete"]
        )
        assert all(e.session_id == "sess0001" for e in events)
        assert events[-1].data["report"]["session_id"] == report.session_id
        completes = [e for e in events if e.stage == "iteration_complete"]
        assert [e.iteration for e in completes] == [1, 2]

    @pytest.mark.asyncio
    async def test_success_event_on_convergence(self):
        llm = ScriptedLLM([90])
        events = []
        orchestrator = TestingOrchestrator(
            llm, config=_config(num_personas=1), on_progress=events.append,
        )

        await orchestrator.run(INITIAL_SCRIPT)

        assert [e.stage for e in events][-3:] == ["iteration_complete", "success", "complete"]
        assert events[-2].iteration == 1

    @pytest.mark.asyncio
    async def test_improved_script_carried_in_event(self):
        llm = ScriptedLLM([40, 90])
        events = []
        orchestrator = TestingOrchestrator(
            llm, config=_config(num_personas=1), on_progress=events.append,
        )

        await orchestrator.run(INITIAL_SCRIPT)

        done = [e for e in events if e.stage == "self_correction_complete"]
        assert done[0].data["improved_script"] == "Revised script v1"


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_personas_run_concurrently_and_keep_order(self):
        llm = ScriptedLLM([90], customer_delay=0.01)
        events = []
        orchestrator = TestingOrchestrator(
            llm,
            config=_config(num_personas=3, persona_concurrency=3),
            on_progress=events.append,
        )

        report = await orchestrator.run(INITIAL_SCRIPT)

        assert report.iterations[0].num_tests == 3
        assert llm.max_in_flight > 1
        analyses = [e for e in events if e.stage == "test_analysis"]
        assert sorted(e.test for e in analyses) == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_sequential_by_default(self):
        llm = ScriptedLLM([90], customer_delay=0.01)
        orchestrator = TestingOrchestrator(llm, config=_config(num_personas=3))

        await orchestrator.run(INITIAL_SCRIPT)

        assert llm.max_in_flight == 1


class TestPersistence:
    @pytest.mark.asyncio
    async def test_recorder_receives_every_checkpoint(self, tmp_path):
        path = tmp_path / "session.json"
        recorder = SessionRecorder(path, "sess0002")
        llm = ScriptedLLM([60, 90])
        orchestrator = TestingOrchestrator(
            llm, config=_config(num_personas=2), recorder=recorder,
        )

        report = await orchestrator.run(INITIAL_SCRIPT, session_id="sess0002")

        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["meta"]["status"] == "completed"
        assert data["initial_script"] == INITIAL_SCRIPT
        assert [p["id"] for p in data["personas"]] == ["p1", "p2"]
        assert len(data["iterations"]) == 2
        assert [c["persona_id"] for c in data["iterations"][0]["conversations"]] == ["p1", "p2"]
        assert data["result"]["threshold_reached"] is True
        assert report.output_file == str(path)

    @pytest.mark.asyncio
    async def test_persistence_failure_aborts_with_partial_report(self, tmp_path):
        recorder = MagicMock()
        recorder.path = tmp_path / "session.json"
        recorder.record_personas.side_effect = lambda ps: [f"p{i + 1}" for i in range(len(ps))]
        recorder.record_conversation.side_effect = [None, PersistenceError("disk full")]
        events = []
        llm = ScriptedLLM([40, 50, 60])
        orchestrator = TestingOrchestrator(
            llm,
            config=_config(num_personas=1, max_iterations=3),
            recorder=recorder,
            on_progress=events.append,
        )

        with pytest.raises(TestingRunError) as exc_info:
            await orchestrator.run(INITIAL_SCRIPT)

        report = exc_info.value.report
        assert isinstance(exc_info.value.__cause__, PersistenceError)
        assert report.status == "failed"
        assert report.total_iterations == 1
        assert report.initial_score == 40.0
        assert events[-1].stage == "error"
        assert "disk full" in events[-1].data["error"]
        recorder.mark_failed.assert_called_once()
        recorder.finalize.assert_not_called()

    @pytest.mark.asyncio
    async def test_mark_failed_error_does_not_mask_original(self, tmp_path):
        recorder = MagicMock()
        recorder.path = tmp_path / "session.json"
        recorder.record_session_start.side_effect = PersistenceError("read-only")
        recorder.mark_failed.side_effect = PersistenceError("still read-only")
        orchestrator = TestingOrchestrator(ScriptedLLM([90]), config=_config(), recorder=recorder)

        with pytest.raises(TestingRunError, match="read-only") as exc_info:
            await orchestrator.run(INITIAL_SCRIPT)

        assert exc_info.value.report.total_iterations == 0
        assert exc_info.value.report.initial_score is None


class TestConstruction:
    def test_missing_role_caller_rejected(self):
        async def caller(*, system_prompt, user_prompt):
            return ""

        with pytest.raises(TypeError):
            TestingOrchestrator(persona_caller=caller, bot_caller=caller)

    def test_per_role_callers_without_default(self):
        async def caller(*, system_prompt, user_prompt):
            return ""

        orchestrator = TestingOrchestrator(
            persona_caller=caller, bot_caller=caller, customer_caller=caller,
            judge_caller=caller, editor_caller=caller,
        )
        assert orchestrator.config == TestingConfig()

    def test_unknown_session_type_rejected(self):
        with pytest.raises(ValueError):
            TestingOrchestrator(ScriptedLLM([90]), session_type="email")


class TestPersonaPlan:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("kwargs", [
        {"num_personas": 0},
        {"num_personas": -1},
        {"persona_types": []},
        {"persona_types": ["friendly_millionaire"]},
    ])
    async def test_invalid_plan_rejected_before_any_work(self, tmp_path, kwargs):
        llm = ScriptedLLM([90])
        events = []
        recorder = SessionRecorder(tmp_path / "s.json", session_id="bad")
        recorder.record_session_start = MagicMock()
        orchestrator = TestingOrchestrator(
            llm, config=_config(), recorder=recorder, on_progress=events.append,
        )

        with pytest.raises(ConfigurationError):
            await orchestrator.run(INITIAL_SCRIPT, **kwargs)

        assert events == []
        recorder.record_session_start.assert_not_called()

    def test_resolve_persona_plan(self):
        config = _config(num_personas=2)
        assert resolve_persona_plan(config) == (2, None)
        assert resolve_persona_plan(config, num_personas=4) == (4, None)
        assert resolve_persona_plan(
            config, num_personas=4, persona_types=("busy_professional",),
        ) == (1, ["busy_professional"])
