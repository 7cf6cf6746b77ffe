# models.py
# =============================================================================
# 测试循环的核心数据模型 / Core data models of the testing loop
#
# 包含 / Contains: Persona、ConversationTurn、MetricScore、AnalysisResult、
#   TestResult、IterationResult、SessionReport，以及不可变的 TestingConfig。
# =============================================================================

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from recoup.prompts import DEFAULT_BOT_SCRIPT
from recoup.utils.json_parser import extract_float

NEGOTIATION_EFFECTIVENESS = "negotiation_effectiveness"
RESPONSE_RELEVANCE = "response_relevance"
KNOWN_METRICS = (NEGOTIATION_EFFECTIVENESS, RESPONSE_RELEVANCE)

DEFAULT_PERSONA_TYPES: Tuple[str, ...] = (
    "aggressive_denier",
    "cooperative_but_broke",
    "evasive_avoider",
    "emotional_pleader",
    "hostile_threatener",
    "confused_elderly",
    "busy_professional",
    "payment_plan_seeker",
)

DEFAULT_END_PHRASES: Tuple[str, ...] = (
    "goodbye",
    "have a good day",
    "thank you for your time",
    "i'll call back",
    "stop calling",
    "talk to my lawyer",
    "hanging up",
    "end of call",
)

SESSION_TYPES = ("text", "voice")


# =============================================================================
# 画像 / Persona
# =============================================================================


def _as_str_tuple(value: Any) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,) if value.strip() else ()
    if isinstance(value, (list, tuple)):
        return tuple(str(v) for v in value if v is not None)
    return (str(value),)


@dataclass(frozen=True)
class Persona:
    """合成的欠款客户画像，生成后不可变。 / Synthetic debtor profile; immutable once generated."""

    name: str
    age: int
    occupation: str
    financial_situation: str
    personality_traits: Tuple[str, ...]
    communication_style: str
    reason_for_default: str
    attitude_towards_debt: str
    likely_responses: Tuple[str, ...]
    negotiation_approach: str
    pain_points: Tuple[str, ...]
    triggers: Tuple[str, ...]
    preferred_outcome: str
    persona_type: str

    _REQUIRED = (
        "name",
        "age",
        "occupation",
        "financial_situation",
        "communication_style",
        "attitude_towards_debt",
    )
    _LIST_FIELDS = (
        "personality_traits",
        "likely_responses",
        "pain_points",
        "triggers",
    )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Persona:
        """从字典构建画像；必填字段缺失或 age 非数字时抛出 ValueError。
        / Build from a dict; raises ValueError on missing required fields or a non-numeric age.
        """
        missing = [
            k for k in cls._REQUIRED
            if data.get(k) is None or (isinstance(data.get(k), str) and not data[k].strip())
        ]
        if missing:
            raise ValueError(f"Persona is missing required fields: {missing}")
        if not data.get("persona_type"):
            raise ValueError("Persona is missing persona_type")

        kwargs: Dict[str, Any] = {}
        for f in fields(cls):
            value = data.get(f.name)
            if f.name == "age":
                kwargs["age"] = int(extract_float(value))
            elif f.name in cls._LIST_FIELDS:
                kwargs[f.name] = _as_str_tuple(value)
            else:
                kwargs[f.name] = "" if value is None else str(value)
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for key in self._LIST_FIELDS:
            data[key] = list(data[key])
        return data


# =============================================================================
# 对话 / Conversation
# =============================================================================


@dataclass(frozen=True)
class ConversationTurn:
    """一条发言；turn 从 1 开始按发言顺序编号。 / One utterance; turn is 1-based per utterance."""

    turn: int
    speaker: str  # "bot" | "customer"
    message: str
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "turn": self.turn,
            "speaker": self.speaker,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
        }


# =============================================================================
# 评分 / Scoring
# =============================================================================


@dataclass(frozen=True)
class MetricSpec:
    """评分维度配置。"""

    name: str
    weight: float
    description: str = ""


@dataclass(frozen=True)
class MetricScore:
    score: float
    weight: float
    description: str = ""


@dataclass(frozen=True)
class AnalysisResult:
    """单次对话的评分结果，计算后只读。 / Scores for one conversation; read-only once computed."""

    metrics: Dict[str, MetricScore]
    overall_score: float
    conversation_length: int
    bot_message_count: int
    customer_message_count: int
    improvement_suggestions: Tuple[str, ...]

    def score(self, metric: str) -> float:
        return self.metrics[metric].score

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metrics": {name: asdict(m) for name, m in self.metrics.items()},
            "overall_score": self.overall_score,
            "conversation_length": self.conversation_length,
            "bot_message_count": self.bot_message_count,
            "customer_message_count": self.customer_message_count,
            "improvement_suggestions": list(self.improvement_suggestions),
        }


@dataclass
class TestResult:
    """一个画像在一轮中的完整测试结果。"""

    __test__ = False  # 防止 pytest 收集 / keep pytest from collecting this class

    persona_index: int
    persona: Persona
    conversation: List[ConversationTurn]
    analysis: AnalysisResult


@dataclass
class IterationResult:
    """一轮测试：同一脚本版本对全部画像的结果。 / One round: every persona against one script version."""

    iteration: int
    script: str
    tests: List[TestResult]
    average_score: float
    num_tests: int
    metric_averages: Dict[str, float] = field(default_factory=dict)

    @property
    def test_results(self) -> List[AnalysisResult]:
        return [t.analysis for t in self.tests]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "iteration": self.iteration,
            "script": self.script,
            "average_score": self.average_score,
            "num_tests": self.num_tests,
            "metric_averages": dict(self.metric_averages),
            "test_results": [r.to_dict() for r in self.test_results],
        }


@dataclass
class IterationSummary:
    iteration: int
    average_score: float
    num_tests: int


@dataclass
class SessionReport:
    """测试会话的最终报告。 / Final report of a testing session.

    status: "converged" | "exhausted" | "failed"
    failed 报告只包含已完成的轮次，initial_score / final_score 在零轮完成时为 None。
    / A failed report lists completed iterations only; scores are None when none completed.
    """

    session_id: str
    session_type: str
    status: str
    threshold_score: float
    total_iterations: int
    iterations: List[IterationSummary]
    initial_score: Optional[float]
    final_score: Optional[float]
    improvement: float
    threshold_reached: bool
    final_script: str
    timestamp: str = field(
        default_factory=lambda: datetime.now().isoformat()
    )
    output_file: Optional[str] = None
    llm_usage: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# =============================================================================
# 测试配置 / Testing configuration
# =============================================================================


_DEFAULT_METRICS: Tuple[MetricSpec, ...] = (
    MetricSpec(
        name=NEGOTIATION_EFFECTIVENESS,
        weight=0.5,
        description=(
            "Measures how well the bot negotiates with the customer - "
            "shows empathy, offers solutions, handles objections"
        ),
    ),
    MetricSpec(
        name=RESPONSE_RELEVANCE,
        weight=0.5,
        description=(
            "Measures if bot responses are relevant to customer queries "
            "and stay on topic"
        ),
    ),
)


@dataclass(frozen=True)
class TestingConfig:
    """测试循环的不可变配置，构造编排器时传入并传递给各组件。
    / Immutable testing-loop configuration, handed to the orchestrator and threaded to every component.
    """

    __test__ = False

    max_conversation_turns: int = 6
    threshold_score: float = 85.0
    max_iterations: int = 5
    num_personas: int = 3
    metrics: Tuple[MetricSpec, ...] = _DEFAULT_METRICS
    persona_types: Tuple[str, ...] = DEFAULT_PERSONA_TYPES
    end_phrases: Tuple[str, ...] = DEFAULT_END_PHRASES
    base_bot_script: str = DEFAULT_BOT_SCRIPT
    neutral_score: float = 50.0
    persona_concurrency: int = 1
    keep_best_script: bool = False

    def __post_init__(self):
        from recoup.llm.router import ConfigurationError

        for name in ("max_conversation_turns", "max_iterations",
                     "num_personas", "persona_concurrency"):
            if getattr(self, name) < 1:
                raise ConfigurationError(f"{name} 必须 >= 1，当前为 {getattr(self, name)}")
        if not 0.0 <= self.threshold_score <= 100.0:
            raise ConfigurationError(
                f"threshold_score 必须在 0~100 之间，当前为 {self.threshold_score}"
            )
        if not 0.0 <= self.neutral_score <= 100.0:
            raise ConfigurationError(
                f"neutral_score 必须在 0~100 之间，当前为 {self.neutral_score}"
            )
        if not self.persona_types:
            raise ConfigurationError("persona_types 不能为空")
        names = [m.name for m in self.metrics]
        if sorted(names) != sorted(KNOWN_METRICS):
            raise ConfigurationError(
                f"metrics 必须恰好包含 {list(KNOWN_METRICS)}，当前为 {names}"
            )
        total = sum(m.weight for m in self.metrics)
        if not math.isclose(total, 1.0, abs_tol=1e-9):
            raise ConfigurationError(f"metrics 权重之和必须为 1.0，当前为 {total}")

    @property
    def metric_names(self) -> Tuple[str, ...]:
        return tuple(m.name for m in self.metrics)

    def metric(self, name: str) -> MetricSpec:
        for m in self.metrics:
            if m.name == name:
                return m
        raise KeyError(name)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> TestingConfig:
        """从字典构建配置（YAML _testing 节或代码覆盖项）。 / Build from a plain dict.

        metrics 支持 {name: weight} 或 {name: {weight, description}}；未列出的
        描述沿用默认值。未知键抛出 ConfigurationError。
        """
        from recoup.llm.router import ConfigurationError

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(f"未知的测试配置项: {unknown}")

        kwargs: Dict[str, Any] = {}
        for key, value in data.items():
            if key == "metrics":
                kwargs["metrics"] = _metrics_from_dict(value)
            elif key in ("persona_types", "end_phrases"):
                kwargs[key] = tuple(str(v) for v in value)
            else:
                kwargs[key] = value
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["metrics"] = {m.name: {"weight": m.weight, "description": m.description}
                           for m in self.metrics}
        data["persona_types"] = list(self.persona_types)
        data["end_phrases"] = list(self.end_phrases)
        return data


def _metrics_from_dict(value: Any) -> Tuple[MetricSpec, ...]:
    from recoup.llm.router import ConfigurationError

    if isinstance(value, (list, tuple)) and all(isinstance(v, MetricSpec) for v in value):
        return tuple(value)
    if not isinstance(value, dict):
        raise ConfigurationError("metrics 必须是 {name: weight} 形式的映射")

    defaults = {m.name: m for m in _DEFAULT_METRICS}
    specs = []
    for name, spec in value.items():
        if isinstance(spec, dict):
            weight = spec.get("weight")
            description = spec.get("description")
        else:
            weight, description = spec, None
        if description is None and name in defaults:
            description = defaults[name].description
        try:
            weight = float(weight)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"metric '{name}' 的权重无效: {weight!r}") from e
        specs.append(MetricSpec(name=name, weight=weight, description=description or ""))
    return tuple(specs)
