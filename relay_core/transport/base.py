"""聊天通道协议。

编排器只通过此协议与聊天通道交互：

- send_message(message): 发送一条消息并等待确认，失败时抛出 PublishError。
- watch_has_messages(cid): 频道是否已有消息的实时信号。
"""

from typing import Protocol

from relay_core.domain.models import MessageAck, OutboundMessage
from relay_core.reactive import ReadOnlyCell


class ChatTransport(Protocol):
    async def send_message(self, message: OutboundMessage) -> MessageAck:
        ...

    def watch_has_messages(self, cid: str) -> ReadOnlyCell[bool]:
        ...
