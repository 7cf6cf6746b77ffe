# sessions.py
# =============================================================================
# 公共 API — 读取已保存的测试会话记录。
#
# 读取 SessionRecorder 写出的 JSON 文件：列出会话、加载单个会话、
# 查看某一轮中某个画像的完整对话。测试循环本身从不读回这些文件。
# =============================================================================

"""公共 API — 会话记录读取。"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

logger = logging.getLogger(__name__)

_DEFAULT_OUTPUT_DIR = "recoup_outputs"


def _read(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict) or "meta" not in data:
        raise ValueError(f"不是会话记录文件: {path}")
    return data


def list_sessions(output_dir: Union[str, Path] = _DEFAULT_OUTPUT_DIR) -> List[Dict[str, Any]]:
    """列出目录下的全部会话摘要，按开始时间倒序。无法读取的文件跳过并记录警告。"""
    directory = Path(output_dir)
    if not directory.is_dir():
        return []

    summaries = []
    for path in directory.glob("*.json"):
        try:
            data = _read(path)
        except (OSError, ValueError) as e:
            logger.warning(f"跳过无法读取的会话文件 {path}: {e}")
            continue

        meta = data.get("meta") or {}
        result = data.get("result") or {}
        summaries.append({
            "session_id": meta.get("session_id"),
            "session_type": meta.get("session_type"),
            "status": meta.get("status"),
            "start_time": meta.get("start_time"),
            "end_time": meta.get("end_time"),
            "persona_count": len(data.get("personas") or []),
            "iteration_count": len(data.get("iterations") or []),
            "initial_score": result.get("initial_score"),
            "final_score": result.get("final_score"),
            "improvement": result.get("improvement"),
            "threshold_reached": result.get("threshold_reached"),
            "path": str(path),
        })

    summaries.sort(key=lambda s: s.get("start_time") or "", reverse=True)
    return summaries


def load_session(
    path_or_id: Union[str, Path],
    output_dir: Union[str, Path] = _DEFAULT_OUTPUT_DIR,
) -> Dict[str, Any]:
    """加载一个完整会话记录（文件路径或 session_id）。

    Raises:
        FileNotFoundError: 找不到对应的会话文件。
    """
    path = Path(path_or_id)
    if path.suffix == ".json" and path.is_file():
        return _read(path)

    session_id = str(path_or_id)
    directory = Path(output_dir)
    if directory.is_dir():
        for candidate in sorted(directory.glob(f"*_{session_id}.json")):
            return _read(candidate)
    raise FileNotFoundError(f"未找到会话记录: {path_or_id}")


def _persona(session: Dict[str, Any], persona_id: str) -> Optional[Dict[str, Any]]:
    for persona in session.get("personas") or []:
        if persona.get("id") == persona_id:
            return persona
    return None


def get_conversation(
    session: Dict[str, Any], iteration: int, persona_id: str,
) -> Dict[str, Any]:
    """返回某一轮中某个画像的对话：画像摘要、评分、逐条消息、改进建议。

    Raises:
        KeyError: 轮次或画像对话不存在。
    """
    for entry in session.get("iterations") or []:
        if entry.get("iteration") != iteration:
            continue
        for conv in entry.get("conversations") or []:
            if conv.get("persona_id") != persona_id:
                continue
            persona = _persona(session, persona_id) or {}
            return {
                "iteration": iteration,
                "persona": {
                    "id": persona_id,
                    "name": persona.get("name"),
                    "persona_type": persona.get("persona_type"),
                },
                "overall_score": conv.get("overall_score"),
                "negotiation_score": conv.get("negotiation_score"),
                "relevance_score": conv.get("relevance_score"),
                "messages": sorted(
                    conv.get("messages") or [],
                    key=lambda m: m.get("turn_number", 0),
                ),
                "improvement_suggestions": conv.get("improvement_suggestions") or [],
            }
        raise KeyError(f"第 {iteration} 轮没有画像 {persona_id} 的对话")
    raise KeyError(f"会话中没有第 {iteration} 轮")
