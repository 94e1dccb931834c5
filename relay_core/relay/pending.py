"""单个频道上进行中请求的 pending 标记。"""

from typing import FrozenSet

from relay_core.reactive import ReadOnlyCell, ValueCell


class PendingSet:
    """已派发但尚未结束的请求 key 集合。

    只有编排器会修改它，因此这里不加锁；每次修改都通过 cell 推送新的 frozenset。
    """

    def __init__(self) -> None:
        self._cell: ValueCell[FrozenSet[str]] = ValueCell(frozenset())

    @property
    def cell(self) -> ReadOnlyCell[FrozenSet[str]]:
        return self._cell

    def add(self, key: str) -> None:
        self._cell.set(self._cell.value | {key})

    def remove(self, key: str) -> None:
        self._cell.set(self._cell.value - {key})

    def clear_all(self) -> None:
        self._cell.set(frozenset())

    def is_empty(self) -> bool:
        return not self._cell.value

    def __contains__(self, key: object) -> bool:
        return key in self._cell.value

    def __len__(self) -> int:
        return len(self._cell.value)
