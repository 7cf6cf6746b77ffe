"""自我修正引擎 —— 汇总一轮的评分反馈并改写机器人脚本。
/ Self-correction engine — aggregates one round's feedback and rewrites the bot script.

改写失败时原样返回当前脚本，永不抛出、永不返回 None。
/ On failure the current script is returned unchanged; never raises, never returns None.
"""

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

from recoup.primitives.models import AnalysisResult, TestingConfig
from recoup.primitives.responses import ScriptRewrite
from recoup.prompts import (
    EDITOR_METRIC_LINE,
    EDITOR_SYSTEM_PROMPT,
    EDITOR_USER_PROMPT,
)

logger = logging.getLogger(__name__)


@dataclass
class ScriptInsights:
    """一轮测试结果的汇总。 / Aggregate of one round's results."""

    average_score: float
    average_metrics: Dict[str, float]
    weakest_metric: str
    weakest_metric_score: float
    all_suggestions: List[str]
    test_count: int


def aggregate_insights(
    results: Sequence[AnalysisResult],
    metric_names: Sequence[str],
) -> ScriptInsights:
    """汇总评分：均分、各维度均分、最弱维度（并列取先出现者）、全部建议（保序保重）。

    Raises:
        ValueError: results 为空。
    """
    if not results:
        raise ValueError("Cannot aggregate an empty result set")

    count = len(results)
    average_metrics = {
        name: sum(r.score(name) for r in results) / count for name in metric_names
    }
    weakest = metric_names[0]
    for name in metric_names[1:]:
        if average_metrics[name] < average_metrics[weakest]:
            weakest = name

    suggestions: List[str] = []
    for r in results:
        suggestions.extend(r.improvement_suggestions)

    return ScriptInsights(
        average_score=sum(r.overall_score for r in results) / count,
        average_metrics=average_metrics,
        weakest_metric=weakest,
        weakest_metric_score=average_metrics[weakest],
        all_suggestions=suggestions,
        test_count=count,
    )


class SelfCorrectionEngine:
    """脚本改写引擎，不持有任何外部状态。 / Script rewriter; holds no external state."""

    def __init__(
        self,
        editor_caller: Callable[..., Awaitable[str]],
        config: Optional[TestingConfig] = None,
    ):
        self._editor_caller = editor_caller
        self._config = config or TestingConfig()

    def aggregate_insights(self, results: Sequence[AnalysisResult]) -> ScriptInsights:
        return aggregate_insights(results, self._config.metric_names)

    async def improve(
        self,
        current_script: str,
        results: Sequence[AnalysisResult],
        iteration: int,
    ) -> str:
        logger.info(f"自我修正: 第 {iteration} 轮，{len(results)} 个测试结果")
        try:
            insights = self.aggregate_insights(results)
            raw = await self._editor_caller(
                system_prompt=EDITOR_SYSTEM_PROMPT,
                user_prompt=self._build_prompt(current_script, insights, iteration),
            )
            improved = ScriptRewrite.from_llm(raw).script
        except Exception as e:
            logger.warning(f"脚本改写失败，沿用当前脚本: {e}")
            return current_script

        logger.info(
            f"脚本已改写 (第 {iteration} 轮，最弱维度={insights.weakest_metric})"
        )
        return improved

    @staticmethod
    def _build_prompt(
        script: str, insights: ScriptInsights, iteration: int,
    ) -> str:
        metric_lines = "".join(
            EDITOR_METRIC_LINE.format(
                label=name.replace("_", " ").title(), score=score,
            )
            for name, score in insights.average_metrics.items()
        )
        suggestions = "\n".join(f"- {s}" for s in insights.all_suggestions)
        return EDITOR_USER_PROMPT.format(
            iteration=iteration,
            script=script,
            average_score=insights.average_score,
            test_count=insights.test_count,
            weakest_metric=insights.weakest_metric,
            weakest_score=insights.weakest_metric_score,
            metric_lines=metric_lines,
            suggestions=suggestions or "- (none)",
        )
