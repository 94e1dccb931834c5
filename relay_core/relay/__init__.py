"""中继编排：pending 标记、任务组与编排器。"""

from relay_core.relay.orchestrator import RelayOrchestrator
from relay_core.relay.pending import PendingSet
from relay_core.relay.scope import TaskScope

__all__ = ["PendingSet", "RelayOrchestrator", "TaskScope"]
