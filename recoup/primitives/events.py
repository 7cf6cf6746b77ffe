# events.py
# =============================================================================
# 测试进度事件 — 供外部应用实时获取测试循环状态。
# =============================================================================

"""Testing-loop progress events for external integration."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, Optional

# 成功路径上的事件阶段，按因果顺序 / Stages in causal order on the success path
STAGES = (
    "init",
    "personas",
    "iteration",
    "test",
    "test_conversation",
    "test_analysis",
    "iteration_complete",
    "self_correction",
    "self_correction_complete",
    "success",
    "max_iterations",
    "complete",
    "error",
)

# 运行结束后不再有事件 / No event follows these
TERMINAL_STAGES = ("complete", "error")


@dataclass
class ProgressEvent:
    """测试循环中的结构化进度事件。

    外部应用通过注册 on_progress 回调（或 ProgressChannel）接收此类事件，
    实现终端输出、WebSocket 推送、SSE 流等集成场景。

    Attributes:
        stage: 事件阶段，取值见 STAGES。
        message: 人类可读的进度描述。
        session_id: 本次测试会话的唯一标识。
        timestamp: 事件产生时的单调时钟（秒），用于计算耗时。
        iteration: 当前轮次（从 1 开始），仅轮次内事件有效。
        test: 当前画像序号（从 1 开始），仅 test* 事件有效。
        total_tests: 本轮画像总数。
        data: 事件附加数据，结构因 stage 而异。
    """

    stage: str
    message: str
    session_id: str
    timestamp: float = field(default_factory=time.monotonic)
    iteration: Optional[int] = None
    test: Optional[int] = None
    total_tests: Optional[int] = None
    data: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "stage": self.stage,
            "message": self.message,
            "session_id": self.session_id,
        }
        for key in ("iteration", "test", "total_tests", "data"):
            value = getattr(self, key)
            if value is not None:
                out[key] = value
        return out


class ProgressChannel:
    """基于 asyncio.Queue 的事件通道。 / Progress observer backed by an asyncio queue.

    把实例作为 on_progress 传给编排器，调用方用 ``async for`` 消费事件；
    收到 complete 或 error 事件后迭代结束。

    >>> channel = ProgressChannel()
    >>> task = asyncio.create_task(run_testing_cycle(on_progress=channel))
    >>> async for event in channel:
    ...     print(event.stage, event.message)
    """

    def __init__(self) -> None:
        # 无界队列：put_nowait 永不阻塞测试循环 / Unbounded: put_nowait never blocks the loop
        self._queue: asyncio.Queue = asyncio.Queue()

    def __call__(self, event: ProgressEvent) -> None:
        self._queue.put_nowait(event)

    def close(self) -> None:
        """提前结束迭代（例如编排器在发出终止事件前被取消）。"""
        self._queue.put_nowait(None)

    async def __aiter__(self) -> AsyncIterator[ProgressEvent]:
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event
            if event.stage in TERMINAL_STAGES:
                return

    @property
    def pending(self) -> int:
        return self._queue.qsize()
