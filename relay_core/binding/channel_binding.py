"""频道绑定：把会话标识解析为聊天通道句柄和模型配置。

- resolve(channel_key): 实时订阅频道的模型配置，先产出当前配置，
  之后每次上游变化再产出一次；尚未配置（None）时不产出，视为 ConfigUnavailable。
- channel_handle(channel_id): 纯同步查找，返回发送消息用的 ChannelHandle。
"""

import logging
from typing import Any, AsyncIterator, Dict, Optional

from relay_core.binding.config_source import ChannelConfigSource
from relay_core.config.settings import settings
from relay_core.domain.exceptions import BusinessError, ConfigUnavailable
from relay_core.domain.models import ModelConfig, OutboundMessage
from relay_core.domain.results import PUBLISH, Failure, Result, Success
from relay_core.infrastructure.logging.logger import logger
from relay_core.reactive import ReadOnlyCell
from relay_core.transport.base import ChatTransport


class ChannelHandle:
    """某个频道在聊天通道上的句柄。"""

    def __init__(self, cid: str, transport: ChatTransport, marker_flag_key: str):
        self.cid = cid
        self._transport = transport
        self._marker_flag_key = marker_flag_key

    @property
    def has_messages(self) -> ReadOnlyCell[bool]:
        return self._transport.watch_has_messages(self.cid)

    async def publish(self, text: str) -> Result:
        """发送一条模型回复，返回 Success(message_id) 或 Failure。"""

        return await self._send(text, "Published message")

    async def forward(self, text: str) -> Result:
        """把用户自己写的文本原样转发到频道，同样带模型标记。"""

        return await self._send(text, "Forwarded message")

    async def _send(self, text: str, action: str) -> Result:
        message = OutboundMessage.create(cid=self.cid, text=text, marker_flag_key=self._marker_flag_key)
        try:
            ack = await self._transport.send_message(message)
        except BusinessError as exc:
            _log(logging.WARNING, "Publish failed", cid=self.cid, message_id=message.id, error=exc.message)
            return Failure.from_exception(exc, PUBLISH)
        except Exception as exc:  # noqa: BLE001 - 通道异常统一转换为 publish 失败
            _log(logging.WARNING, "Publish failed", cid=self.cid, message_id=message.id, error=repr(exc))
            return Failure.from_exception(exc, PUBLISH)
        _log(logging.INFO, action, cid=self.cid, message_id=ack.message_id)
        return Success(ack.message_id)


class ChannelBinding:
    def __init__(
        self,
        config_source: ChannelConfigSource,
        transport: ChatTransport,
        marker_flag_key: Optional[str] = None,
    ):
        self._config_source = config_source
        self._transport = transport
        self._marker_flag_key = marker_flag_key or settings.marker_flag_key
        self._handles: Dict[str, ChannelHandle] = {}

    async def resolve(self, channel_key: str) -> AsyncIterator[ModelConfig]:
        async for config in self._config_source.watch(channel_key).stream():
            if config is None:
                _log(logging.INFO, "Model config unavailable", channel_key=channel_key)
                continue
            yield config

    def current_config(self, channel_key: str) -> ModelConfig:
        """一次性读取当前配置，未配置时抛出 ConfigUnavailable。"""

        config = self._config_source.watch(channel_key).value
        if config is None:
            raise ConfigUnavailable(
                code="CONFIG_UNAVAILABLE",
                message=f"No model config for channel key {channel_key!r}",
                channel_key=channel_key,
            )
        return config

    def channel_handle(self, channel_id: str) -> ChannelHandle:
        handle = self._handles.get(channel_id)
        if handle is None:
            handle = ChannelHandle(channel_id, self._transport, self._marker_flag_key)
            self._handles[channel_id] = handle
        return handle


def _log(level: int, msg: str, **fields: Any) -> None:
    logger.log(level, msg, extra={"extra": fields})
