"""与单个编排器生命周期绑定的任务组。"""

from __future__ import annotations

import asyncio
from typing import Coroutine, Optional, Set

from relay_core.domain.exceptions import ValidationError
from relay_core.infrastructure.logging.logger import logger


class TaskScope:
    """启动相互独立的任务，并可一次性全部取消。

    - launch(coro): 在当前事件循环上启动任务，任务异常只记录日志。
    - cancel(): 取消所有未完成的任务，之后 scope 关闭，不再接受新任务。
    """

    def __init__(self, name: str = "relay"):
        self.name = name
        self._tasks: Set[asyncio.Task] = set()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def launch(self, coro: Coroutine, name: Optional[str] = None) -> asyncio.Task:
        if self._closed:
            coro.close()
            raise ValidationError(code="SCOPE_CLOSED", message=f"Task scope {self.name!r} is closed")
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                f"Task {task.get_name()} failed: {exc}",
                extra={"extra": {"scope": self.name, "error": repr(exc)}},
            )

    async def cancel(self) -> None:
        self._closed = True
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info(
            "Task scope cancelled",
            extra={"extra": {"scope": self.name, "cancelled_tasks": len(tasks)}},
        )
