"""进程内聊天通道，用于测试与本地演示。"""

from typing import Dict, List, Optional

from relay_core.domain.exceptions import PublishError
from relay_core.domain.models import MessageAck, OutboundMessage
from relay_core.reactive import ReadOnlyCell, ValueCell


class InMemoryChatTransport:
    def __init__(self) -> None:
        self._messages: Dict[str, List[OutboundMessage]] = {}
        self._has_messages: Dict[str, ValueCell[bool]] = {}
        # 设置后下一次 send_message 抛出 PublishError
        self.fail_next: Optional[str] = None

    async def send_message(self, message: OutboundMessage) -> MessageAck:
        if self.fail_next is not None:
            reason, self.fail_next = self.fail_next, None
            raise PublishError(code="PUBLISH_ERROR", message=reason, cid=message.cid)
        self._messages.setdefault(message.cid, []).append(message)
        self._cell(message.cid).set(True)
        return MessageAck(message_id=message.id, cid=message.cid)

    def watch_has_messages(self, cid: str) -> ReadOnlyCell[bool]:
        return self._cell(cid).read_only()

    def messages(self, cid: str) -> List[OutboundMessage]:
        return list(self._messages.get(cid, []))

    def _cell(self, cid: str) -> ValueCell[bool]:
        cell = self._has_messages.get(cid)
        if cell is None:
            cell = ValueCell(bool(self._messages.get(cid)))
            self._has_messages[cid] = cell
        return cell
