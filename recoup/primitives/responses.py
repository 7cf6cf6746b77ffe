# responses.py
# =============================================================================
# LLM 响应形状适配器 / Adapters for structured LLM responses
#
# 每种响应形状一个数据类，from_llm(raw) 负责"文本 → 结构"的全部解析，
# 失败时抛出 ValueError；调用方捕获后使用各自的兜底值。
# / One dataclass per response shape. from_llm(raw) owns all text-to-structure
#   parsing and raises ValueError; callers catch it and apply their fallback.
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, Dict, Optional, Tuple

from recoup.primitives.models import Persona
from recoup.utils.json_parser import (
    extract_float,
    parse_json_from_llm,
    strip_code_fences,
)


def parse_persona(raw: str, persona_type: str) -> Persona:
    """解析画像生成结果，persona_type 强制设为请求的类型。

    Raises:
        ValueError: 非 JSON 或缺少必填字段。
    """
    data = parse_json_from_llm(raw)
    data["persona_type"] = persona_type
    return Persona.from_dict(data)


def _score(data: Dict[str, Any]) -> float:
    if "score" not in data:
        raise ValueError("Judgment has no 'score' field")
    return max(0.0, min(100.0, extract_float(data["score"])))


def _flag(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "yes"):
        return True
    if isinstance(value, str) and value.strip().lower() in ("false", "no"):
        return False
    return None


def _count(value: Any) -> int:
    try:
        return max(0, int(extract_float(value)))
    except (ValueError, OverflowError):
        return 0


@dataclass(frozen=True)
class NegotiationJudgment:
    """协商效果评判。score 被截断到 0~100。"""

    KIND: ClassVar[str] = "negotiation_judgment"

    score: float
    negotiation_quality: str = ""
    commitment_secured: Optional[bool] = None
    payment_plan_offered: Optional[bool] = None
    empathy_shown: Optional[bool] = None
    explanation: str = ""

    @classmethod
    def from_llm(cls, raw: str) -> NegotiationJudgment:
        data = parse_json_from_llm(raw)
        return cls(
            score=_score(data),
            negotiation_quality=str(data.get("negotiation_quality") or ""),
            commitment_secured=_flag(data.get("commitment_secured")),
            payment_plan_offered=_flag(data.get("payment_plan_offered")),
            empathy_shown=_flag(data.get("empathy_shown")),
            explanation=str(data.get("explanation") or ""),
        )


@dataclass(frozen=True)
class RelevanceJudgment:
    """回复相关性评判。"""

    KIND: ClassVar[str] = "relevance_judgment"

    score: float
    relevance_quality: str = ""
    off_topic_responses: int = 0
    unanswered_questions: int = 0
    explanation: str = ""

    @classmethod
    def from_llm(cls, raw: str) -> RelevanceJudgment:
        data = parse_json_from_llm(raw)
        return cls(
            score=_score(data),
            relevance_quality=str(data.get("relevance_quality") or ""),
            off_topic_responses=_count(data.get("off_topic_responses", 0)),
            unanswered_questions=_count(data.get("unanswered_questions", 0)),
            explanation=str(data.get("explanation") or ""),
        )


@dataclass(frozen=True)
class SuggestionList:
    KIND: ClassVar[str] = "suggestion_list"

    suggestions: Tuple[str, ...]

    @classmethod
    def from_llm(cls, raw: str) -> SuggestionList:
        """Raises ValueError when 'suggestions' is missing, not a list, or empty."""
        data = parse_json_from_llm(raw)
        items = data.get("suggestions")
        if not isinstance(items, list):
            raise ValueError("'suggestions' is not a list")
        suggestions = tuple(
            str(s).strip() for s in items if s is not None and str(s).strip()
        )
        if not suggestions:
            raise ValueError("'suggestions' is empty")
        return cls(suggestions=suggestions)


@dataclass(frozen=True)
class ScriptRewrite:
    KIND: ClassVar[str] = "script_rewrite"

    script: str

    @classmethod
    def from_llm(cls, raw: str) -> ScriptRewrite:
        """去除首尾代码围栏；结果为空时抛出 ValueError。"""
        script = strip_code_fences(raw or "")
        if not script:
            raise ValueError("Rewritten script is empty")
        return cls(script=script)
