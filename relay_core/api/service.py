"""对外 API 服务模块。

提供简化的函数接口供上层应用调用：按配置组装编排器，
或一次性中继一条消息并返回结果摘要。
"""

import asyncio
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from relay_core.binding.channel_binding import ChannelBinding
from relay_core.binding.config_source import ChannelConfigSource, YamlChannelConfigSource
from relay_core.config.settings import settings
from relay_core.domain.models import Attachment, Channel, InboundMessage
from relay_core.infrastructure.logging.logger import logger
from relay_core.relay.orchestrator import RelayOrchestrator
from relay_core.session.model_session import ModelSession, ProviderFactory
from relay_core.transport.base import ChatTransport
from relay_core.transport.json_store import JsonChannelTransport


_transport: Optional[ChatTransport] = None
_config_source: Optional[ChannelConfigSource] = None


def get_default_transport() -> ChatTransport:
    """获取默认的 JSONL 聊天通道（单例）。"""
    global _transport
    if _transport is None:
        _transport = JsonChannelTransport(root=settings.storage_root)
    return _transport


def get_default_config_source() -> ChannelConfigSource:
    """获取默认的 YAML 频道配置源（单例）。"""
    global _config_source
    if _config_source is None:
        _config_source = YamlChannelConfigSource(path=settings.channel_config_file)
    return _config_source


def build_orchestrator(
    channel_id: str,
    channel_key: str,
    *,
    transport: Optional[ChatTransport] = None,
    config_source: Optional[ChannelConfigSource] = None,
    provider_factory: Optional[ProviderFactory] = None,
) -> RelayOrchestrator:
    """按配置组装一个频道的编排器（尚未 start）。

    Args:
        channel_id: 聊天通道上的频道 cid
        channel_key: 查找模型配置用的键
        transport: 聊天通道（可选，默认 JSONL 存储）
        config_source: 频道配置源（可选，默认 YAML 文件）
        provider_factory: 模型客户端工厂（可选，默认按 provider 名称创建）
    """
    binding = ChannelBinding(
        config_source=config_source or get_default_config_source(),
        transport=transport or get_default_transport(),
        marker_flag_key=settings.marker_flag_key,
    )
    return RelayOrchestrator(
        channel=Channel(channel_id=channel_id, channel_key=channel_key),
        binding=binding,
        session=ModelSession(provider_factory=provider_factory, name=channel_key),
    )


async def relay_message(
    channel_id: str,
    channel_key: str,
    text: str,
    attachments: Optional[Iterable[str]] = None,
    **kwargs: Any,
) -> Dict[str, Any]:
    """中继一条消息：启动编排器、等待模型就绪、派发、等待完成后关闭。

    Args:
        channel_id: 频道 cid
        channel_key: 模型配置键
        text: 用户消息
        attachments: 图片文件路径（可选）
        **kwargs: 透传给 build_orchestrator

    Returns:
        包含回复文本、错误信息与频道状态的字典

    Raises:
        ConfigUnavailable: 频道没有可用的模型配置
    """
    orchestrator = build_orchestrator(channel_id, channel_key, **kwargs)
    # 没有配置时直接报错，而不是静默忽略
    orchestrator.binding.current_config(channel_key)
    message = InboundMessage(
        text=text,
        attachments=[Attachment(upload=Path(p), name=Path(p).name) for p in attachments or []],
    )
    try:
        async with orchestrator:
            await asyncio.wait_for(_wait_ready(orchestrator), timeout=settings.http_timeout)
            reply = await orchestrator.send_message(message)
            return {
                "channel_id": channel_id,
                "channel_key": channel_key,
                "reply": reply,
                "error": orchestrator.error_message.value,
                "is_loading": orchestrator.is_loading.value,
                "is_message_empty": orchestrator.is_message_empty.value,
            }
    except Exception as e:
        logger.error(f"Relay failed: {e}", extra={"extra": {
            "channel_id": channel_id,
            "channel_key": channel_key,
            "error": str(e),
        }})
        raise


async def _wait_ready(orchestrator: RelayOrchestrator) -> None:
    async for conversation in orchestrator.session.conversation.stream():
        if conversation is not None:
            return
