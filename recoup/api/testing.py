# testing.py
# =============================================================================
# 公共 API — Recoup 测试循环入口。
#
# 提供 run_testing_cycle() 一键测试函数，内部使用 TestingOrchestrator 编排。
# 测试过程增量保存为 JSON 文件。
# =============================================================================

"""公共 API — Recoup 测试循环入口。"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Union

from recoup.engine.orchestrator import (
    ProgressCallback,
    TestingOrchestrator,
    TestingRunError,
    resolve_persona_plan,
)
from recoup.engine.recorder import SessionRecorder
from recoup.llm.router import GenerationError, ModelRouter
from recoup.primitives.models import SESSION_TYPES, SessionReport, TestingConfig

logger = logging.getLogger(__name__)

_DEFAULT_OUTPUT_DIR = "recoup_outputs"
DEFAULT_VOICE_PERSONA = "aggressive_denier"


def _make_llm_caller(router, role: str):
    """创建指定角色的 LLM 调用函数。

    返回 async def(system_prompt, user_prompt) -> str 签名的协程函数，
    供 PersonaGenerator / ConversationSimulator / MetricsAnalyzer /
    SelfCorrectionEngine 使用。调用次数超限时抛出 GenerationError，
    由各调用点按兜底规则处理。
    """

    async def caller(*, system_prompt: str = "", user_prompt: str = "") -> str:
        if not router.check_budget(role):
            raise GenerationError(f"LLM 调用次数已达上限（角色: {role}）")
        router.record_attempt(role)
        budget = router.budget
        call_num = budget.total_attempts
        limit_str = str(budget.max_calls) if not budget.is_unlimited else "∞"
        logger.info(f"[{role}] LLM 调用 #{call_num}/{limit_str}")
        adapter = router.get_model_backend(role)
        content = await adapter.call(system_prompt, user_prompt)
        router.record_call(role)
        return content

    return caller


def _resolve_output_path(
    output_path: Optional[str], session_id: str,
) -> Path:
    """确定输出文件路径。

    如果调用者指定了 output_path，直接使用；
    指定目录（已存在或以 / 结尾）时在其中自动命名；
    否则在默认目录下生成带时间戳和 session_id 的文件名。
    """
    ts = datetime.now().strftime("%Y%m%d_%H%M%S")
    if output_path:
        p = Path(output_path)
        if p.is_dir() or str(output_path).endswith("/"):
            p.mkdir(parents=True, exist_ok=True)
            return p / f"{ts}_{session_id}.json"
        p.parent.mkdir(parents=True, exist_ok=True)
        return p

    out_dir = Path(_DEFAULT_OUTPUT_DIR)
    out_dir.mkdir(parents=True, exist_ok=True)
    return out_dir / f"{ts}_{session_id}.json"


def _merge_testing_config(
    router: ModelRouter,
    testing_config: Union[TestingConfig, Dict[str, Any], None],
) -> TestingConfig:
    """默认值 < YAML _testing < llm_config["_testing"] < testing_config。
    / Defaults < YAML _testing < code _testing < testing_config argument.
    """
    if isinstance(testing_config, TestingConfig):
        return testing_config
    merged: Dict[str, Any] = dict(router.config_loader.testing_overrides())
    if testing_config:
        merged.update(testing_config)
    return TestingConfig.from_dict(merged)


async def run_testing_cycle(
    initial_script: Optional[str] = None,
    num_personas: Optional[int] = None,
    session_type: str = "text",
    persona_type: Optional[str] = None,
    llm_config: Optional[Dict[str, Any]] = None,
    config_file: Optional[str] = None,
    testing_config: Union[TestingConfig, Dict[str, Any], None] = None,
    max_llm_calls: int = 0,
    output_path: Optional[str] = None,
    on_progress: Optional[ProgressCallback] = None,
) -> SessionReport:
    """一键运行测试与自我修正循环。

    参数：
        initial_script: 第一轮使用的机器人脚本（缺省为内置催收脚本）
        num_personas: text 会话的画像数（缺省为 TestingConfig.num_personas）
        session_type: "text"（批量画像）或 "voice"（单画像实时会话，不含音频）
        persona_type: voice 会话的画像原型（缺省 aggressive_denier）
        llm_config: LLM 模型配置（最高优先级）。支持两种格式：
            - 简写: {"judge": "gpt-4o", "bot": "gemini-2.0-flash"}
            - 完整: {"bot": {"model_platform": "google",
                              "model_name": "gemini-2.0-flash",
                              "api_key": "${GEMINI_API_KEY}"}}
        config_file: LLM 配置文件路径（可选，不传则自动搜索 llm_config.yaml）
        testing_config: TestingConfig 或其字典覆盖项（覆盖 YAML 的 _testing 节）
        max_llm_calls: 单次会话的 LLM 调用总次数上限，<= 0 表示不限制
        output_path: 会话记录 JSON 文件输出路径（可选）。
            - 指定文件路径：直接保存到该路径
            - 指定目录路径（以 / 结尾）：在该目录下自动命名
            - 不指定：在 ./recoup_outputs/ 下自动命名
        on_progress: 进度回调（同步或异步函数，或 ProgressChannel）

    返回：
        SessionReport，含 output_file 与 llm_usage。

    Raises:
        ConfigurationError: 任一角色的模型或凭据不可用、测试配置或画像参数非法（不创建任何会话）。
        PersistenceError: 会话记录文件无法创建。
        TestingRunError: 测试循环中途失败，携带只含已完成轮次的报告。
    """
    if session_type not in SESSION_TYPES:
        raise ValueError(
            f"session_type 必须是 {SESSION_TYPES} 之一，当前为 '{session_type}'"
        )
    logger.info(f"开始测试循环: session_type={session_type}")

    # 1. 创建 LLM 路由器并校验全部角色（失败时不创建会话）
    router = ModelRouter(
        llm_config=llm_config,
        max_llm_calls=max_llm_calls,
        config_file=config_file,
    )
    router.validate()

    # 2. 合并测试配置并确定画像计划（非法时同样不创建会话）
    config = _merge_testing_config(router, testing_config)
    persona_types = None
    if session_type == "voice":
        persona_types = [persona_type or DEFAULT_VOICE_PERSONA]
    elif persona_type:
        persona_types = [persona_type] * (
            num_personas if num_personas is not None else 1
        )
    resolve_persona_plan(config, num_personas, persona_types)

    # 3. 提前生成 session_id 和输出路径，创建增量记录器
    session_id = str(uuid.uuid4())[:8]
    file_path = _resolve_output_path(output_path, session_id)
    recorder = SessionRecorder(
        output_path=file_path, session_id=session_id, session_type=session_type,
    )

    # 4. 每个角色一个 caller，共享同一调用计数
    orchestrator = TestingOrchestrator(
        persona_caller=_make_llm_caller(router, "persona"),
        bot_caller=_make_llm_caller(router, "bot"),
        customer_caller=_make_llm_caller(router, "customer"),
        judge_caller=_make_llm_caller(router, "judge"),
        editor_caller=_make_llm_caller(router, "editor"),
        config=config,
        recorder=recorder,
        on_progress=on_progress,
        session_type=session_type,
    )

    try:
        report = await orchestrator.run(
            initial_script=initial_script,
            num_personas=num_personas,
            persona_types=persona_types,
            session_id=session_id,
        )
    except TestingRunError as exc:
        # 失败记录已写入文件，报告只含已完成的轮次
        exc.report.output_file = str(file_path.resolve())
        exc.report.llm_usage = router.budget.to_dict()
        logger.error(f"测试失败: session_id={session_id}, error={exc}")
        raise

    report.output_file = str(file_path.resolve())
    report.llm_usage = router.budget.to_dict()
    logger.info(
        f"测试完成: session_id={session_id}, status={report.status}, "
        f"结果已保存至 {report.output_file}"
    )
    return report
