# agents/__init__.py
# =============================================================================
# Recoup 组件模块 — 画像生成、对话模拟、评分、自我修正。
# / Components — persona generation, simulation, scoring, self-correction.
# =============================================================================

from .analyzer import MetricsAnalyzer
from .persona_generator import PersonaGenerator
from .self_correction import ScriptInsights, SelfCorrectionEngine
from .simulator import ConversationSimulator

__all__ = [
    "ConversationSimulator",
    "MetricsAnalyzer",
    "PersonaGenerator",
    "ScriptInsights",
    "SelfCorrectionEngine",
]
