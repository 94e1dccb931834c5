"""推送式的可观察值（cell）。

- ValueCell 始终持有一个值（真实值到来之前为默认值），新订阅者会立即收到当前值，
  只有值真正变化时才通知订阅者（distinct-until-changed）。
- map / combine 派生的 cell 在上游每次变化时立即重新计算。

cell 不是线程安全的，所有写入都发生在编排器所在的事件循环上。
"""

from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, Callable, Generic, List, Optional, Sequence, TypeVar

T = TypeVar("T")
R = TypeVar("R")

Unsubscribe = Callable[[], None]


class ReadOnlyCell(Generic[T]):
    """cell 的只读一侧，编排器对外暴露的就是它。"""

    def __init__(self, initial: T):
        self._value = initial
        self._subscribers: List[Callable[[T], None]] = []

    @property
    def value(self) -> T:
        return self._value

    def subscribe(self, callback: Callable[[T], None]) -> Unsubscribe:
        """注册回调，注册时立即用当前值调用一次，返回取消订阅的函数。"""

        self._subscribers.append(callback)
        callback(self._value)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def map(self, fn: Callable[[T], R]) -> "ReadOnlyCell[R]":
        derived: ValueCell[R] = ValueCell(fn(self._value))
        self.subscribe(lambda v: derived.set(fn(v)))
        return derived.read_only()

    async def stream(self) -> AsyncIterator[T]:
        """先产出当前值，之后每次变化产出最新值。

        合并语义（conflated）：消费慢时跳过中间值，只看到最新的一个。
        """

        changed = asyncio.Event()
        unsubscribe = self.subscribe(lambda _: changed.set())
        try:
            while True:
                await changed.wait()
                changed.clear()
                yield self._value
        finally:
            unsubscribe()

    def _emit(self, value: T) -> None:
        if value == self._value:
            return
        self._value = value
        for callback in list(self._subscribers):
            callback(value)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._value!r})"


class ValueCell(ReadOnlyCell[T]):
    """可写的 cell。"""

    def __init__(self, initial: T):
        super().__init__(initial)
        self._view: Optional[ReadOnlyCell[T]] = None

    def set(self, value: T) -> None:
        self._emit(value)

    def read_only(self) -> ReadOnlyCell[T]:
        # 只读视图只创建一次，重复调用不会累积订阅
        if self._view is None:
            self._view = ReadOnlyCell(self._value)
            self.subscribe(self._view._emit)
        return self._view


def combine(cells: Sequence[ReadOnlyCell[Any]], fn: Callable[..., R]) -> ReadOnlyCell[R]:
    """由多个上游 cell 派生出一个 cell。"""

    derived: ValueCell[R] = ValueCell(fn(*(c.value for c in cells)))

    def recompute(_: Any) -> None:
        derived.set(fn(*(c.value for c in cells)))

    for cell in cells:
        cell.subscribe(recompute)
    return derived.read_only()
