"""中继编排器核心模块。

接收用户消息，按是否带附件选择纯文本或多模态路径调用模型，
再把模型回复发回同一频道，并维护 loading / error / 空频道三个可观察信号。

单条请求的状态：Idle -> Dispatched -> Succeeded | Failed。

- 派发时在任何 I/O 之前先把 key 加入 PendingSet。key 取消息 id，没有 id 时取原始文本，
  带附件时再拼上附件内容摘要；相同 key 的请求仍在进行中时直接复用已有任务（single-flight）。
- 成功：发送带模型标记的回复，移除 key，清空错误信息。
- 模型无内容 / 尚未配置模型：静默结束，只移除 key。
- 失败：默认清空整个 PendingSet（pending_clear_mode="all"），
  并把错误信息写入 error_message；"key" 模式下只移除失败的 key。
"""

import asyncio
import hashlib
import logging
from typing import Any, Dict, Optional, Set

from relay_core.attachments.preprocessor import AttachmentPreprocessor
from relay_core.binding.channel_binding import ChannelBinding
from relay_core.config.settings import settings
from relay_core.domain.exceptions import ConfigUnavailable, DecodeError
from relay_core.domain.models import Channel, InboundMessage, ModelConfig
from relay_core.domain.results import CONFIG_UNAVAILABLE, DECODE, Failure, Result
from relay_core.infrastructure.logging.logger import logger
from relay_core.reactive import ReadOnlyCell, ValueCell, combine
from relay_core.relay.pending import PendingSet
from relay_core.relay.scope import TaskScope
from relay_core.session.model_session import ModelSession


class RelayOrchestrator:
    def __init__(
        self,
        channel: Channel,
        binding: ChannelBinding,
        session: Optional[ModelSession] = None,
        preprocessor: Optional[AttachmentPreprocessor] = None,
        scope: Optional[TaskScope] = None,
        pending_clear_mode: Optional[str] = None,
        prompt_template: Optional[str] = None,
    ):
        self.channel = channel
        self._binding = binding
        self._session = session or ModelSession(name=channel.channel_key)
        self._preprocessor = preprocessor or AttachmentPreprocessor()
        self._scope = scope or TaskScope(name=f"relay:{channel.channel_id}")
        self._handle = binding.channel_handle(channel.channel_id)
        self._pending = PendingSet()
        self._error: ValueCell[str] = ValueCell("")
        self._inflight: Dict[str, asyncio.Task] = {}
        self._dispatches: Set[asyncio.Task] = set()
        self._watcher: Optional[asyncio.Task] = None
        self._clear_mode = pending_clear_mode or settings.pending_clear_mode
        self._prompt_template = prompt_template or settings.multimodal_prompt_template

        self.is_loading: ReadOnlyCell[bool] = combine(
            [self._pending.cell, self._session.conversation],
            lambda pending, conversation: bool(pending) or conversation is None,
        )
        self.error_message: ReadOnlyCell[str] = self._error.read_only()
        self.is_message_empty: ReadOnlyCell[bool] = self._handle.has_messages.map(lambda has: not has)

    @property
    def pending(self) -> PendingSet:
        return self._pending

    @property
    def session(self) -> ModelSession:
        return self._session

    @property
    def binding(self) -> ChannelBinding:
        return self._binding

    # ---- 生命周期 ----

    def start(self) -> None:
        """开始订阅频道的模型配置。需要在事件循环中调用。"""

        if self._watcher is None:
            self._watcher = self._scope.launch(
                self._watch_model_config(),
                name=f"config-watcher:{self.channel.channel_key}",
            )

    async def close(self) -> None:
        """取消所有未完成的任务，之后不再接受新消息。"""

        await self._scope.cancel()
        self._watcher = None

    async def wait_idle(self) -> None:
        """等待当前所有派发中的请求结束（不包括配置订阅）。"""

        while self._dispatches:
            await asyncio.gather(*list(self._dispatches), return_exceptions=True)

    async def __aenter__(self) -> "RelayOrchestrator":
        self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # ---- 对外操作 ----

    def send_message(self, message: InboundMessage) -> asyncio.Task:
        """派发一条用户消息，返回执行该请求的任务。"""

        key = self.request_key(message)
        existing = self._inflight.get(key)
        if existing is not None and not existing.done():
            self._log(logging.INFO, "Joined in-flight request", key=key)
            return existing

        task = self._scope.launch(self._relay(key, message), name=f"relay:{key[:32]}")
        self._pending.add(key)
        self._inflight[key] = task
        self._track(task)
        task.add_done_callback(lambda t, key=key: self._forget(key, t))
        self._log(
            logging.INFO,
            "Dispatched message",
            key=key,
            path="multimodal" if message.has_attachments else "text",
            attachments=len(message.attachments),
        )
        return task

    @staticmethod
    def request_key(message: InboundMessage) -> str:
        """派发用的 key：有消息 id 时用 id，否则用原始文本，带附件时再拼上附件摘要。"""

        if message.id:
            return message.id
        if not message.has_attachments:
            return message.text
        digest = hashlib.sha1()
        for attachment in message.attachments:
            if attachment.data is not None:
                digest.update(attachment.data)
            else:
                digest.update(str(attachment.upload).encode("utf-8"))
            digest.update(b"\0")
        return f"{message.text}#{digest.hexdigest()[:16]}"

    def send_text(self, text: str) -> asyncio.Task:
        """把一段文本以模型标记直接转发到频道，不经过模型。"""

        task = self._scope.launch(self._forward(text), name="forward")
        self._track(task)
        return task

    # ---- 内部实现 ----

    async def _watch_model_config(self) -> None:
        derivation: Optional[asyncio.Task] = None
        try:
            async for config in self._binding.resolve(self.channel.channel_key):
                # latest-wins：新配置到达时放弃尚未完成的旧构建
                if derivation is not None and not derivation.done():
                    derivation.cancel()
                derivation = self._scope.launch(self._derive_session(config), name=f"configure:{config.name}")
        finally:
            if derivation is not None and not derivation.done():
                derivation.cancel()

    async def _derive_session(self, config: ModelConfig) -> None:
        handle = await self._session.configure(config)
        if handle is not None:
            await self._session.start_conversation(handle)

    async def _relay(self, key: str, message: InboundMessage) -> Optional[str]:
        try:
            if message.has_attachments:
                result = await self._photo_reasoning(message)
            else:
                result = await self._converse(message.text)
            if isinstance(result, Failure):
                self._on_failure(key, result)
                return None

            response_text = result.value
            if not response_text:
                self._pending.remove(key)
                self._log(logging.INFO, "Model produced no content", key=key)
                return None

            published = await self._handle.publish(response_text)
            if isinstance(published, Failure):
                self._on_failure(key, published)
                return None

            self._pending.remove(key)
            self._error.set("")
            self._log(logging.INFO, f"model response success: {response_text}", key=key, message_id=published.value)
            return response_text
        except asyncio.CancelledError:
            self._log(logging.INFO, "Dispatch cancelled", key=key)
            raise
        except Exception as exc:  # noqa: BLE001 - 派发边界内的异常都转换为错误状态
            self._on_failure(key, Failure.from_exception(exc))
            return None

    async def _converse(self, text: str) -> Result:
        context = self._session.conversation.value
        if context is None:
            return self._config_unavailable()
        return await self._session.converse(context, text)

    async def _photo_reasoning(self, message: InboundMessage) -> Result:
        handle = self._session.model.value
        if handle is None:
            return self._config_unavailable()
        try:
            images = await asyncio.to_thread(self._preprocessor.process_all, message.attachments)
        except DecodeError as exc:
            return Failure.from_exception(exc, DECODE)
        prompt = self._prompt_template.replace("{text}", message.text)
        return await self._session.generate(handle, prompt, images)

    async def _forward(self, text: str) -> Optional[str]:
        published = await self._handle.forward(text)
        if isinstance(published, Failure):
            self._error.set(published.message)
            self._log(logging.WARNING, f"forward failed: {published.message}", kind=published.kind)
            return None
        return published.value

    def _config_unavailable(self) -> Failure:
        return Failure.from_exception(
            ConfigUnavailable(code="CONFIG_UNAVAILABLE", message="model session not ready"),
        )

    def _on_failure(self, key: str, failure: Failure) -> None:
        if failure.kind == CONFIG_UNAVAILABLE:
            self._pending.remove(key)
            self._log(logging.INFO, "Model session absent, message ignored", key=key)
            return
        if self._clear_mode == "key":
            self._pending.remove(key)
        else:
            # 一个请求失败会清掉其他仍在进行中的请求的 pending 标记
            self._pending.clear_all()
        self._error.set(failure.message)
        self._log(logging.WARNING, f"model response failed: {failure.message}", key=key, kind=failure.kind)

    def _track(self, task: asyncio.Task) -> None:
        self._dispatches.add(task)
        task.add_done_callback(self._dispatches.discard)

    def _forget(self, key: str, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if task.cancelled():
            self._pending.remove(key)

    def _log(self, level: int, msg: str, **fields: Any) -> None:
        payload: Dict[str, Any] = {"cid": self.channel.channel_id, "channel_key": self.channel.channel_key}
        payload.update(fields)
        logger.log(level, msg, extra={"extra": payload})
