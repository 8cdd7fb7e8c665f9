"""
app.core.background
~~~~~~~~~~~~~~~~~~~

后台任务托管 —— 用于"发出去就不管"的副作用（日志落盘、开播通知）。

``asyncio.create_task`` 返回的任务必须被强引用，否则可能在完成前被回收；
这里统一持有引用，并在任务结束时记录未处理的异常。
"""
from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from typing import Any

from app.core.logging import get_logger

logger = get_logger(__name__)


class BackgroundTasks:
    """一组后台任务。

    Attributes:
        name: 任务组名称，出现在异常日志中。
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._tasks: set[asyncio.Task[Any]] = set()

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("后台任务异常 | group=%s | %s", self.name, exc, exc_info=exc)

    async def drain(self) -> None:
        """等待当前所有后台任务结束（关闭或测试时调用）。"""
        while self._tasks:
            pending = list(self._tasks)
            await asyncio.gather(*pending, return_exceptions=True)
            self._tasks.difference_update(pending)
