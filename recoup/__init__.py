# recoup/__init__.py
# =============================================================================
# Recoup — 催收对话机器人的自动测试与自我修正引擎。
# / Automated testing and self-correction engine for a debt-collection bot.
# =============================================================================

"""Recoup — 催收对话机器人的自动测试与自我修正引擎。 / Automated testing and self-correction for a debt-collection bot."""

from recoup.api.testing import run_testing_cycle

__version__ = "0.1.0"
__all__ = ["run_testing_cycle", "__version__"]
