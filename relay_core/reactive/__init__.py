"""编排器对外输出所用的可观察值 cell。"""

from relay_core.reactive.cell import ReadOnlyCell, ValueCell, combine

__all__ = ["ReadOnlyCell", "ValueCell", "combine"]
