"""评分器 —— 对一次完整对话做两个维度的评分并给出改进建议。
/ Metrics analyzer — scores a finished conversation on two metrics and asks for suggestions.

评分永不失败：解析失败、分数缺失或非数字时使用中性分（默认 50）。
/ Scoring never fails: a neutral score (50 by default) replaces any unusable judgment.
"""

import json
import logging
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from recoup.primitives.models import (
    NEGOTIATION_EFFECTIVENESS,
    RESPONSE_RELEVANCE,
    AnalysisResult,
    ConversationTurn,
    MetricScore,
    Persona,
    TestingConfig,
)
from recoup.primitives.responses import (
    NegotiationJudgment,
    RelevanceJudgment,
    SuggestionList,
)
from recoup.prompts import (
    FALLBACK_SUGGESTION,
    JUDGE_SYSTEM_PROMPT,
    NEGOTIATION_PROMPT,
    RELEVANCE_PROMPT,
    SUGGESTIONS_PROMPT,
)

logger = logging.getLogger(__name__)


def judge_transcript(conversation: List[ConversationTurn]) -> str:
    return "\n".join(f"{t.speaker.upper()}: {t.message}" for t in conversation)


class MetricsAnalyzer:
    """对话评分器。 / Conversation scorer."""

    def __init__(
        self,
        judge_caller: Callable[..., Awaitable[str]],
        config: Optional[TestingConfig] = None,
    ):
        self._judge_caller = judge_caller
        self._config = config or TestingConfig()

    async def analyze(
        self, conversation: List[ConversationTurn], persona: Persona,
    ) -> AnalysisResult:
        transcript = judge_transcript(conversation)

        raw_scores = {
            NEGOTIATION_EFFECTIVENESS: await self._score_negotiation(transcript, persona),
            RESPONSE_RELEVANCE: await self._score_relevance(transcript),
        }

        metrics: Dict[str, MetricScore] = {}
        weighted = 0.0
        for spec in self._config.metrics:
            score = raw_scores[spec.name]
            metrics[spec.name] = MetricScore(
                score=score, weight=spec.weight, description=spec.description,
            )
            weighted += score * spec.weight
        overall = round(weighted, 2)

        suggestions = await self._suggest(transcript, metrics, overall)

        result = AnalysisResult(
            metrics=metrics,
            overall_score=overall,
            conversation_length=len(conversation),
            bot_message_count=sum(1 for t in conversation if t.speaker == "bot"),
            customer_message_count=sum(
                1 for t in conversation if t.speaker == "customer"
            ),
            improvement_suggestions=suggestions,
        )
        logger.info(f"对话评分: {result.overall_score}/100 ({persona.name})")
        return result

    async def _score_negotiation(self, transcript: str, persona: Persona) -> float:
        prompt = NEGOTIATION_PROMPT.format(
            transcript=transcript,
            persona_type=persona.persona_type,
            financial_situation=persona.financial_situation,
            preferred_outcome=persona.preferred_outcome,
        )
        try:
            raw = await self._judge_caller(
                system_prompt=JUDGE_SYSTEM_PROMPT, user_prompt=prompt,
            )
            return NegotiationJudgment.from_llm(raw).score
        except Exception as e:
            logger.warning(
                f"协商效果评分失败，使用中性分 {self._config.neutral_score}: {e}"
            )
            return self._config.neutral_score

    async def _score_relevance(self, transcript: str) -> float:
        try:
            raw = await self._judge_caller(
                system_prompt=JUDGE_SYSTEM_PROMPT,
                user_prompt=RELEVANCE_PROMPT.format(transcript=transcript),
            )
            return RelevanceJudgment.from_llm(raw).score
        except Exception as e:
            logger.warning(
                f"回复相关性评分失败，使用中性分 {self._config.neutral_score}: {e}"
            )
            return self._config.neutral_score

    async def _suggest(
        self,
        transcript: str,
        metrics: Dict[str, MetricScore],
        overall: float,
    ) -> Tuple[str, ...]:
        metrics_json = json.dumps(
            {
                name: {"score": m.score, "weight": m.weight, "description": m.description}
                for name, m in metrics.items()
            },
            ensure_ascii=False,
            indent=2,
        )
        prompt = SUGGESTIONS_PROMPT.format(
            transcript=transcript,
            metrics_json=metrics_json,
            overall_score=overall,
        )
        try:
            raw = await self._judge_caller(
                system_prompt=JUDGE_SYSTEM_PROMPT, user_prompt=prompt,
            )
            return SuggestionList.from_llm(raw).suggestions
        except Exception as e:
            logger.warning(f"改进建议生成失败: {e}")
            return (FALLBACK_SUGGESTION,)
