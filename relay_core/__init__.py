"""Relay Core 顶层包。

该包在聊天通道与生成模型之间做消息中继：
把用户消息转发给模型，再把模型回复以带标记的消息发回同一频道，
包括配置加载、频道绑定、模型会话、附件预处理、编排器与日志等能力。
"""

from relay_core.api.service import build_orchestrator, relay_message
from relay_core.relay.orchestrator import RelayOrchestrator

__all__ = ["RelayOrchestrator", "build_orchestrator", "relay_message"]
