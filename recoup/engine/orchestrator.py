"""Recoup 测试编排器。 / Recoup testing orchestrator.

职责 / Responsibilities:
1. 编排（Orchestration）—— 画像生成 → 对话模拟 → 评分 → 脚本改写 → 收敛判定
   / Persona generation → simulation → scoring → script revision → convergence check
2. 状态管理（State Management）—— 当前脚本、已完成轮次、画像记录 id
   / Current script, completed iterations, persona record ids
3. 进度通知（Progress）—— 按因果顺序发出 ProgressEvent
   / Emit ProgressEvents in causal order

不负责：提示词内容、评分细节、LLM 连接与重试。
/ Not responsible for: prompt content, scoring details, LLM transport and retries.
"""

import asyncio
import inspect
import logging
import random
import uuid
from typing import (
    TYPE_CHECKING, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple,
    Union,
)

from recoup.agents.analyzer import MetricsAnalyzer
from recoup.agents.persona_generator import PersonaGenerator
from recoup.agents.self_correction import SelfCorrectionEngine
from recoup.agents.simulator import ConversationSimulator
from recoup.llm.router import ConfigurationError
from recoup.primitives.events import ProgressEvent
from recoup.primitives.models import (
    SESSION_TYPES,
    IterationResult,
    IterationSummary,
    Persona,
    SessionReport,
    TestingConfig,
    TestResult,
)

if TYPE_CHECKING:
    from recoup.engine.recorder import SessionRecorder

logger = logging.getLogger(__name__)

# 类型别名：支持同步和异步回调 / Type alias: supports sync and async callbacks
ProgressCallback = Union[
    Callable[[ProgressEvent], Awaitable[None]],
    Callable[[ProgressEvent], None],
]

LLMCaller = Callable[..., Awaitable[str]]


class TestingRunError(RuntimeError):
    """测试循环中途失败。report 只包含已完成的轮次。
    / The testing loop failed midway; ``report`` lists completed iterations only.
    """

    __test__ = False

    def __init__(self, message: str, report: SessionReport):
        super().__init__(message)
        self.report = report


def resolve_persona_plan(
    config: TestingConfig,
    num_personas: Optional[int] = None,
    persona_types: Optional[Sequence[str]] = None,
) -> Tuple[int, Optional[List[str]]]:
    """确定本次会话的画像数量与指定原型。 / Resolve persona count and explicit archetypes.

    persona_types 优先于 num_personas；两者都缺省时使用 config.num_personas。

    Raises:
        ConfigurationError: 数量 < 1、原型列表为空或含未知原型。
    """
    if persona_types is not None:
        types = list(persona_types)
        if not types:
            raise ConfigurationError("persona_types 不能为空列表")
        unknown = sorted(set(types) - set(config.persona_types))
        if unknown:
            raise ConfigurationError(
                f"未知的画像原型 {unknown}，可选: {list(config.persona_types)}"
            )
        return len(types), types

    count = num_personas if num_personas is not None else config.num_personas
    if count < 1:
        raise ConfigurationError(f"num_personas 必须 >= 1，当前为 {count}")
    return count, None


class TestingOrchestrator:
    """测试循环编排器。实例之间不共享可变状态。
    / Testing-loop orchestrator. Instances share no mutable state.
    """

    __test__ = False

    def __init__(
        self,
        llm_caller: Optional[LLMCaller] = None,
        *,
        persona_caller: Optional[LLMCaller] = None,
        bot_caller: Optional[LLMCaller] = None,
        customer_caller: Optional[LLMCaller] = None,
        judge_caller: Optional[LLMCaller] = None,
        editor_caller: Optional[LLMCaller] = None,
        config: Optional[TestingConfig] = None,
        recorder: Optional["SessionRecorder"] = None,
        on_progress: Optional[ProgressCallback] = None,
        session_type: str = "text",
        rng: Optional[random.Random] = None,
    ):
        callers = {
            "persona": persona_caller or llm_caller,
            "bot": bot_caller or llm_caller,
            "customer": customer_caller or llm_caller,
            "judge": judge_caller or llm_caller,
            "editor": editor_caller or llm_caller,
        }
        missing = [role for role, caller in callers.items() if caller is None]
        if missing:
            raise TypeError(
                f"TestingOrchestrator 需要 llm_caller 或以下角色的 caller: {missing}"
            )
        if session_type not in SESSION_TYPES:
            raise ValueError(
                f"session_type 必须是 {SESSION_TYPES} 之一，当前为 '{session_type}'"
            )

        self._config = config or TestingConfig()
        self._callers = callers
        self._recorder = recorder
        self._on_progress = on_progress
        self._session_type = session_type

        self._generator = PersonaGenerator(
            callers["persona"], self._config, rng=rng,
        )
        self._analyzer = MetricsAnalyzer(callers["judge"], self._config)
        self._corrector = SelfCorrectionEngine(callers["editor"], self._config)

    @property
    def config(self) -> TestingConfig:
        return self._config

    async def _emit(self, event: ProgressEvent) -> None:
        """触发进度回调（支持同步和异步回调）；回调异常只记录日志。
        / Emit a progress event (sync or async); observer errors are only logged.
        """
        if self._on_progress is None:
            return
        try:
            result = self._on_progress(event)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.warning(f"进度回调异常（不影响测试流程）: stage={event.stage}, {e}")

    async def run(
        self,
        initial_script: Optional[str] = None,
        num_personas: Optional[int] = None,
        persona_types: Optional[Sequence[str]] = None,
        session_id: Optional[str] = None,
    ) -> SessionReport:
        """执行完整测试循环。 / Run the full testing loop.

        Args:
            initial_script: 第一轮使用的脚本，缺省为配置中的默认脚本。
            num_personas: 随机抽取的画像数，缺省为 config.num_personas。
            persona_types: 指定原型列表（逐个生成，优先于 num_personas）。
            session_id: 外部指定的会话 id，缺省自动生成。

        Raises:
            ConfigurationError: 画像数量或原型非法（未发出任何事件）。
            TestingRunError: 循环中任何未恢复的异常（含 PersistenceError）。
        """
        config = self._config
        persona_count, persona_types = resolve_persona_plan(
            config, num_personas, persona_types,
        )
        session_id = session_id or str(uuid.uuid4())[:8]
        script = initial_script or config.base_bot_script
        iterations: List[IterationResult] = []

        try:
            logger.info(f"[{session_id}] 开始测试会话 (type={self._session_type})")
            await self._emit(ProgressEvent(
                stage="init",
                message="Starting testing session",
                session_id=session_id,
                data={"session_id": session_id, "session_type": self._session_type},
            ))

            if self._recorder:
                self._recorder.record_session_start(config, script, persona_count)

            # GeneratingPersonas：每个会话只生成一次 / Generated exactly once per session
            await self._emit(ProgressEvent(
                stage="personas",
                message=f"Generating {persona_count} personas",
                session_id=session_id,
                total_tests=persona_count,
            ))
            if persona_types:
                personas = await self._generator.generate_for(persona_types)
            else:
                personas = await self._generator.generate_many(persona_count)
            if self._recorder:
                persona_ids = self._recorder.record_personas(personas)
            else:
                persona_ids = [f"p{i + 1}" for i in range(len(personas))]
            logger.info(f"[{session_id}] 画像就绪: {len(personas)} 个")
            await self._emit(ProgressEvent(
                stage="personas",
                message=f"Generated {len(personas)} personas",
                session_id=session_id,
                total_tests=len(personas),
                data={"personas": [p.to_dict() for p in personas]},
            ))

            best: Optional[IterationResult] = None
            for k in range(1, config.max_iterations + 1):
                logger.info(f"[{session_id}] ━━━ 第 {k}/{config.max_iterations} 轮 ━━━")
                await self._emit(ProgressEvent(
                    stage="iteration",
                    message=f"Starting iteration {k}",
                    session_id=session_id,
                    iteration=k,
                    total_tests=len(personas),
                ))

                tests = await self._run_round(session_id, k, script, personas)
                result = self._summarize(k, script, tests)
                self._persist_iteration(result, persona_ids)
                iterations.append(result)

                logger.info(
                    f"[{session_id}] 第 {k} 轮完成: 平均分 {result.average_score:.2f}"
                )
                await self._emit(ProgressEvent(
                    stage="iteration_complete",
                    message=(
                        f"Iteration {k} complete, average score "
                        f"{result.average_score:.2f}"
                    ),
                    session_id=session_id,
                    iteration=k,
                    data={"result": result.to_dict()},
                ))

                if result.average_score >= config.threshold_score:
                    logger.info(f"[{session_id}] 达到阈值 {config.threshold_score}，停止")
                    await self._emit(ProgressEvent(
                        stage="success",
                        message=(
                            f"Threshold {config.threshold_score} reached at "
                            f"iteration {k}"
                        ),
                        session_id=session_id,
                        iteration=k,
                        data={"average_score": result.average_score},
                    ))
                    break

                if k == config.max_iterations:
                    logger.info(f"[{session_id}] 轮次用尽，未达到阈值")
                    await self._emit(ProgressEvent(
                        stage="max_iterations",
                        message=(
                            f"Reached max iterations ({config.max_iterations}) "
                            f"without meeting threshold"
                        ),
                        session_id=session_id,
                        iteration=k,
                        data={"average_score": result.average_score},
                    ))
                    break

                if best is None or result.average_score > best.average_score:
                    best = result
                source = best if config.keep_best_script else result

                await self._emit(ProgressEvent(
                    stage="self_correction",
                    message=f"Improving script based on iteration {source.iteration}",
                    session_id=session_id,
                    iteration=k,
                ))
                script = await self._corrector.improve(
                    source.script, source.test_results, k,
                )
                await self._emit(ProgressEvent(
                    stage="self_correction_complete",
                    message="Script improved",
                    session_id=session_id,
                    iteration=k,
                    data={"improved_script": script},
                ))

            report = self._build_report(session_id, iterations, script, failed=False)
            if self._recorder:
                self._recorder.finalize(report)
            await self._emit(ProgressEvent(
                stage="complete",
                message=f"Testing complete: {report.status}",
                session_id=session_id,
                data={"report": report.to_dict()},
            ))
            return report

        except Exception as e:
            logger.error(f"[{session_id}] 测试会话失败: {e}", exc_info=True)
            await self._emit(ProgressEvent(
                stage="error",
                message=f"Testing failed: {e}",
                session_id=session_id,
                data={"error": str(e)},
            ))
            if self._recorder:
                from recoup.engine.recorder import PersistenceError
                try:
                    self._recorder.mark_failed(str(e))
                except PersistenceError as mark_error:
                    logger.warning(f"[{session_id}] 标记失败状态时写入失败: {mark_error}")
            report = self._build_report(session_id, iterations, script, failed=True)
            raise TestingRunError(str(e), report) from e

    # =========================================================================
    # 单轮测试 / One round
    # =========================================================================

    async def _run_round(
        self,
        session_id: str,
        iteration: int,
        script: str,
        personas: List[Persona],
    ) -> List[TestResult]:
        """对全部画像测试同一脚本；返回前所有画像均已完成（轮次屏障）。
        / Test every persona against one script; returns only after all complete.
        """
        simulator = ConversationSimulator(
            self._callers["bot"], self._callers["customer"], script, self._config,
        )
        total = len(personas)

        if self._config.persona_concurrency <= 1:
            tests = []
            for i, persona in enumerate(personas):
                tests.append(await self._test_persona(
                    session_id, iteration, simulator, i, persona, total,
                ))
            return tests

        semaphore = asyncio.Semaphore(self._config.persona_concurrency)

        async def _guarded(i: int, persona: Persona) -> TestResult:
            async with semaphore:
                return await self._test_persona(
                    session_id, iteration, simulator, i, persona, total,
                )

        return list(await asyncio.gather(
            *(_guarded(i, p) for i, p in enumerate(personas))
        ))

    async def _test_persona(
        self,
        session_id: str,
        iteration: int,
        simulator: ConversationSimulator,
        index: int,
        persona: Persona,
        total: int,
    ) -> TestResult:
        test_no = index + 1
        await self._emit(ProgressEvent(
            stage="test",
            message=f"Testing persona {test_no}/{total}: {persona.name}",
            session_id=session_id,
            iteration=iteration,
            test=test_no,
            total_tests=total,
            data={"persona": persona.to_dict()},
        ))

        conversation = await simulator.run(persona)
        await self._emit(ProgressEvent(
            stage="test_conversation",
            message=f"Conversation finished ({len(conversation)} turns)",
            session_id=session_id,
            iteration=iteration,
            test=test_no,
            total_tests=total,
            data={"conversation": [t.to_dict() for t in conversation]},
        ))

        analysis = await self._analyzer.analyze(conversation, persona)
        await self._emit(ProgressEvent(
            stage="test_analysis",
            message=f"Conversation scored {analysis.overall_score}",
            session_id=session_id,
            iteration=iteration,
            test=test_no,
            total_tests=total,
            data={"analysis": analysis.to_dict()},
        ))

        return TestResult(
            persona_index=index,
            persona=persona,
            conversation=conversation,
            analysis=analysis,
        )

    def _summarize(
        self, iteration: int, script: str, tests: List[TestResult],
    ) -> IterationResult:
        count = len(tests)
        average = sum(t.analysis.overall_score for t in tests) / count if count else 0.0
        metric_averages: Dict[str, float] = {}
        for name in self._config.metric_names:
            metric_averages[name] = (
                sum(t.analysis.score(name) for t in tests) / count if count else 0.0
            )
        return IterationResult(
            iteration=iteration,
            script=script,
            tests=tests,
            average_score=average,
            num_tests=count,
            metric_averages=metric_averages,
        )

    def _persist_iteration(
        self, result: IterationResult, persona_ids: List[str],
    ) -> None:
        if not self._recorder:
            return
        self._recorder.record_iteration(result)
        for test in result.tests:
            self._recorder.record_conversation(
                result.iteration, persona_ids[test.persona_index], test,
            )

    # =========================================================================
    # 报告 / Report
    # =========================================================================

    def _build_report(
        self,
        session_id: str,
        iterations: List[IterationResult],
        script: str,
        failed: bool,
    ) -> SessionReport:
        threshold = self._config.threshold_score
        threshold_reached = bool(iterations) and (
            iterations[-1].average_score >= threshold
        )
        if failed:
            status = "failed"
        elif threshold_reached:
            status = "converged"
        else:
            status = "exhausted"

        initial: Optional[float] = None
        final: Optional[float] = None
        improvement = 0.0
        if iterations:
            initial = iterations[0].average_score
            final = iterations[-1].average_score
            improvement = final - initial

        return SessionReport(
            session_id=session_id,
            session_type=self._session_type,
            status=status,
            threshold_score=threshold,
            total_iterations=len(iterations),
            iterations=[
                IterationSummary(
                    iteration=r.iteration,
                    average_score=r.average_score,
                    num_tests=r.num_tests,
                )
                for r in iterations
            ],
            initial_score=initial,
            final_score=final,
            improvement=improvement,
            threshold_reached=threshold_reached,
            final_script=iterations[-1].script if iterations else script,
            output_file=str(self._recorder.path) if self._recorder else None,
        )
