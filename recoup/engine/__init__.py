# engine/__init__.py
# =============================================================================
# Recoup 引擎模块 — 测试编排与会话记录。
# =============================================================================

from recoup.engine.orchestrator import (
    ProgressCallback,
    TestingOrchestrator,
    TestingRunError,
)
from recoup.engine.recorder import PersistenceError, SessionRecorder

__all__ = [
    "PersistenceError",
    "ProgressCallback",
    "SessionRecorder",
    "TestingOrchestrator",
    "TestingRunError",
]
