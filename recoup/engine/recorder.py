# recorder.py
# =============================================================================
# 测试会话增量记录器 — 在测试循环每个关键节点写入 JSON 文件。
# / Incremental session recorder — writes JSON at each checkpoint of the testing loop.
#
# 设计目标 / Design goals:
# 1. 只追加：会话 → 画像 → 轮次 → 对话（含逐条消息） → 一次终态更新。
#    / Append-only: session → personas → iterations → conversations → one terminal update.
# 2. 动态写入：关键节点后立即刷盘，不等测试结束。
#    / Eager flush: write to disk at each checkpoint.
# 3. 崩溃安全：临时文件 + 原子重命名，任意时刻文件都是合法 JSON。
#    / Crash-safe: temp file + atomic rename; file is always valid JSON.
# 4. 写入失败抛出 PersistenceError，由编排器按致命错误处理。
#    / Write failures raise PersistenceError; the orchestrator treats them as fatal.
# =============================================================================

"""测试会话增量记录器。 / Incremental testing-session recorder."""

from __future__ import annotations

import json
import logging
import os
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from recoup.primitives.models import (
    NEGOTIATION_EFFECTIVENESS,
    RESPONSE_RELEVANCE,
    IterationResult,
    Persona,
    SessionReport,
    TestingConfig,
    TestResult,
)

logger = logging.getLogger(__name__)

ENGINE_VERSION = "0.1.0"


class PersistenceError(Exception):
    """会话记录写入失败。 / Writing the session record failed."""
    pass


class SessionRecorder:
    """测试会话增量记录器。 / Incremental testing-session recorder.

    输出 JSON 结构 / Output JSON structure:
        {
            "meta": { session_id, session_type, engine_version, start_time,
                      end_time, elapsed_seconds, status, error },
            "config": { ... TestingConfig ... },
            "initial_script": "...",
            "num_personas": N,
            "personas": [ { "id": "p1", ...persona }, ... ],
            "iterations": [
                {
                    "iteration": 1, "script": "...", "average_score": 72.5,
                    "avg_negotiation": 70.0, "avg_relevance": 75.0, "num_tests": N,
                    "conversations": [
                        { "persona_id": "p1", "turn_count": 8, ..., "messages": [...] },
                    ],
                },
            ],
            "result": { initial_score, final_score, improvement,
                        threshold_reached, total_iterations, final_script },
        }
    """

    def __init__(self, output_path: Path, session_id: str, session_type: str = "text"):
        """初始化记录器，立即创建输出文件。

        Raises:
            PersistenceError: 输出文件无法创建。
        """
        self._path = Path(output_path)
        self._session_id = session_id
        self._start_time = time.monotonic()

        self._data: Dict[str, Any] = {
            "meta": {
                "session_id": session_id,
                "session_type": session_type,
                "engine_version": ENGINE_VERSION,
                "start_time": datetime.now().isoformat(),
                "end_time": None,
                "elapsed_seconds": 0.0,
                "status": "running",
                "error": None,
            },
            "config": None,
            "initial_script": None,
            "num_personas": 0,
            "personas": [],
            "iterations": [],
            "result": None,
        }
        self._flush()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def session_id(self) -> str:
        return self._session_id

    # -----------------------------------------------------------------
    # 公共记录接口 / Public recording API
    # -----------------------------------------------------------------

    def record_session_start(
        self,
        config: TestingConfig,
        initial_script: str,
        num_personas: int,
    ) -> None:
        self._data["config"] = config.to_dict()
        self._data["initial_script"] = initial_script
        self._data["num_personas"] = num_personas
        self._flush()

    def record_personas(self, personas: List[Persona]) -> List[str]:
        """追加一批画像，返回各画像的记录 id（与输入顺序一致）。"""
        ids = []
        for persona in personas:
            persona_id = f"p{len(self._data['personas']) + 1}"
            self._data["personas"].append({"id": persona_id, **persona.to_dict()})
            ids.append(persona_id)
        self._flush()
        return ids

    def record_iteration(self, result: IterationResult) -> None:
        metric_averages = result.metric_averages
        self._data["iterations"].append({
            "iteration": result.iteration,
            "timestamp": datetime.now().isoformat(),
            "script": result.script,
            "average_score": result.average_score,
            "avg_negotiation": metric_averages.get(NEGOTIATION_EFFECTIVENESS),
            "avg_relevance": metric_averages.get(RESPONSE_RELEVANCE),
            "num_tests": result.num_tests,
            "conversations": [],
        })
        self._flush()

    def record_conversation(
        self, iteration: int, persona_id: str, test: TestResult,
    ) -> None:
        """把一条对话（含逐条消息）追加到对应轮次下。

        Raises:
            PersistenceError: 轮次尚未记录，或写入失败。
        """
        entry = self._find_iteration(iteration)
        if entry is None:
            raise PersistenceError(f"轮次 {iteration} 尚未记录，无法追加对话")

        analysis = test.analysis
        entry["conversations"].append({
            "persona_id": persona_id,
            "persona_index": test.persona_index,
            "turn_count": analysis.conversation_length,
            "bot_message_count": analysis.bot_message_count,
            "customer_message_count": analysis.customer_message_count,
            "overall_score": analysis.overall_score,
            "negotiation_score": _metric_score(analysis, NEGOTIATION_EFFECTIVENESS),
            "relevance_score": _metric_score(analysis, RESPONSE_RELEVANCE),
            "improvement_suggestions": list(analysis.improvement_suggestions),
            "messages": [
                {
                    "turn_number": turn.turn,
                    "speaker": turn.speaker,
                    "content": turn.message,
                    "created_at": turn.timestamp.isoformat(),
                }
                for turn in test.conversation
            ],
        })
        self._flush()

    def finalize(self, report: SessionReport) -> None:
        """写入终态结果并标记会话完成。 / Write the terminal result and mark the session completed."""
        elapsed = time.monotonic() - self._start_time
        self._data["result"] = {
            "status": report.status,
            "initial_score": report.initial_score,
            "final_score": report.final_score,
            "improvement": report.improvement,
            "threshold_reached": report.threshold_reached,
            "total_iterations": report.total_iterations,
            "final_script": report.final_script,
        }
        self._data["meta"]["end_time"] = datetime.now().isoformat()
        self._data["meta"]["elapsed_seconds"] = round(elapsed, 2)
        self._data["meta"]["status"] = "completed"
        self._flush()
        logger.info(
            f"会话记录已完成: {self._path} "
            f"({report.total_iterations} 轮, {elapsed:.1f}s)"
        )

    def mark_failed(self, error: str) -> None:
        """标记会话失败，记录错误信息。 / Mark the session failed and record the error."""
        elapsed = time.monotonic() - self._start_time
        self._data["meta"]["end_time"] = datetime.now().isoformat()
        self._data["meta"]["elapsed_seconds"] = round(elapsed, 2)
        self._data["meta"]["status"] = "failed"
        self._data["meta"]["error"] = error
        self._flush()

    # -----------------------------------------------------------------
    # 内部工具 / Internal helpers
    # -----------------------------------------------------------------

    def _find_iteration(self, iteration: int) -> Optional[Dict[str, Any]]:
        for entry in self._data["iterations"]:
            if entry["iteration"] == iteration:
                return entry
        return None

    def _flush(self) -> None:
        """将当前状态写入 JSON 文件。 / Flush current state to the JSON file.

        使用「先写临时文件 -> 原子重命名」模式确保文件完整性。

        Raises:
            PersistenceError: 序列化或写入失败。
        """
        if self._data["meta"]["status"] == "running":
            elapsed = time.monotonic() - self._start_time
            self._data["meta"]["elapsed_seconds"] = round(elapsed, 2)

        tmp_path = self._path.with_suffix(".json.tmp")
        try:
            content = json.dumps(
                self._data,
                ensure_ascii=False,
                indent=2,
                default=str,
            )
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(content, encoding="utf-8")
            # 仅所有者可读写 / Owner read/write only
            os.chmod(tmp_path, 0o600)
            tmp_path.replace(self._path)
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError(f"会话记录写入失败 ({self._path}): {e}") from e


def _metric_score(analysis, name: str) -> Optional[float]:
    metric = analysis.metrics.get(name)
    return metric.score if metric is not None else None
