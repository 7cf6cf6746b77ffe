#!/usr/bin/env python3
"""Recoup 端到端示例：运行一次测试与自我修正循环。

Prints progress events to the terminal and the final report as JSON.

    python examples/run_testing_cycle.py --personas 3
    python examples/run_testing_cycle.py --session-type voice --persona-type hostile_threatener
    python examples/run_testing_cycle.py --list
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional

# Project root (examples/ is one level below repo root)
REPO_ROOT = Path(__file__).resolve().parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from recoup.api.sessions import list_sessions  # noqa: E402
from recoup.api.testing import run_testing_cycle  # noqa: E402
from recoup.engine.orchestrator import TestingRunError  # noqa: E402
from recoup.llm.router import ConfigurationError  # noqa: E402
from recoup.primitives.events import ProgressEvent  # noqa: E402

logger = logging.getLogger(__name__)


def setup_logging(level: int = logging.INFO) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )


_STAGE_CN = {
    "init": "初始化",
    "personas": "画像",
    "iteration": "轮次",
    "test": "测试",
    "test_conversation": "对话",
    "test_analysis": "评分",
    "iteration_complete": "轮次完成",
    "self_correction": "自我修正",
    "self_correction_complete": "修正完成",
    "success": "达到阈值",
    "max_iterations": "轮次用尽",
    "complete": "完成",
    "error": "错误",
}


def print_progress(event: ProgressEvent) -> None:
    """Terminal progress callback (sync). Plug into ``run_testing_cycle(on_progress=...)``."""
    stage = _STAGE_CN.get(event.stage, event.stage)
    prefix = f"  [{event.iteration}]" if event.iteration else "  "
    if event.test:
        prefix += f" {event.test}/{event.total_tests}"

    if event.stage == "iteration":
        print(f"\n  ━━━ {stage} {event.iteration} ━━━")
    elif event.stage in ("success", "max_iterations", "error"):
        print(f"{prefix} ★ {stage}: {event.message}")
    else:
        print(f"{prefix} {stage}: {event.message}")


def _print_sessions(output_dir: str) -> None:
    sessions = list_sessions(output_dir)
    if not sessions:
        print(f"  {output_dir} 下没有会话记录")
        return
    for s in sessions:
        print(
            f"  {s['session_id']}  {s['status']:<9}  {s['session_type']:<5}  "
            f"{s['iteration_count']} 轮  "
            f"{s['initial_score']} → {s['final_score']}  {s['path']}"
        )


async def main() -> Optional[int]:
    parser = argparse.ArgumentParser(
        description="Recoup 端到端示例：对催收脚本运行测试与自我修正循环。",
    )
    parser.add_argument("--personas", type=int, default=None, help="text 会话的画像数")
    parser.add_argument(
        "--session-type", choices=["text", "voice"], default="text",
        help="text=批量画像; voice=单画像实时会话（不含音频）",
    )
    parser.add_argument("--persona-type", default=None, help="指定画像原型")
    parser.add_argument("--script", default=None, help="初始脚本文件路径")
    parser.add_argument("--config", default=None, help="llm_config.yaml 路径")
    parser.add_argument("--threshold", type=float, default=None, help="成功阈值")
    parser.add_argument("--max-iterations", type=int, default=None, help="最大轮次")
    parser.add_argument("--max-llm-calls", type=int, default=0, help="LLM 调用上限（0=不限）")
    parser.add_argument("--output", default=None, help="会话记录输出路径或目录")
    parser.add_argument("--list", action="store_true", help="列出已保存的会话")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args()

    setup_logging(logging.DEBUG if args.verbose else logging.WARNING)

    if args.list:
        _print_sessions(args.output or "recoup_outputs")
        return 0

    initial_script = None
    if args.script:
        initial_script = Path(args.script).read_text(encoding="utf-8")

    overrides = {}
    if args.threshold is not None:
        overrides["threshold_score"] = args.threshold
    if args.max_iterations is not None:
        overrides["max_iterations"] = args.max_iterations

    try:
        report = await run_testing_cycle(
            initial_script=initial_script,
            num_personas=args.personas,
            session_type=args.session_type,
            persona_type=args.persona_type,
            config_file=args.config,
            testing_config=overrides or None,
            max_llm_calls=args.max_llm_calls,
            output_path=args.output,
            on_progress=print_progress,
        )
    except ConfigurationError as e:
        print(f"\n  ⚠ 配置错误: {e}")
        return 2
    except TestingRunError as e:
        print(f"\n  ⚠ 测试失败: {e}")
        print(json.dumps(e.report.to_dict(), ensure_ascii=False, indent=2))
        return 1

    print()
    print(json.dumps(report.to_dict(), ensure_ascii=False, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
