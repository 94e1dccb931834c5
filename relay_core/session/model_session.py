"""模型会话：一个频道对应一个模型连接和一段多轮对话上下文。

- configure(config): 配置变化时重建模型连接；相同配置直接复用，不重复构建。
  多次快速重配置时只保留最新一次的结果（latest-wins，基于代际计数）。
- start_conversation(handle): 基于当前模型连接开启新的多轮上下文，
  模型切换会丢弃旧的上下文。
- converse(context, text): 多轮对话的一轮，成功后把用户轮和模型轮追加到上下文。
- generate(handle, prompt, images): 无状态的多模态调用，不读写上下文。

所有调用都返回 Success / Failure，不把后端异常抛给编排器；
asyncio.CancelledError 不做转换，照常向上传播。
"""

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Union

from relay_core.domain.exceptions import BusinessError
from relay_core.domain.models import Content, GenerateRequest, GenerateResponse, ImageInput, ModelConfig
from relay_core.domain.results import BACKEND, Failure, Result, Success
from relay_core.infrastructure.logging.logger import logger
from relay_core.providers import create_provider
from relay_core.providers.base import ProviderClient
from relay_core.reactive import ReadOnlyCell, ValueCell


ProviderFactory = Callable[[ModelConfig], Union[ProviderClient, Awaitable[ProviderClient]]]


def default_provider_factory(config: ModelConfig) -> ProviderClient:
    return create_provider(config.provider)


class ModelHandle:
    """一次构建出的模型连接：配置 + Provider 客户端。"""

    def __init__(self, config: ModelConfig, client: ProviderClient, generation: int):
        self.config = config
        self.client = client
        self.generation = generation

    def __repr__(self) -> str:
        return f"ModelHandle(model={self.config.name!r}, provider={self.client.name!r}, generation={self.generation})"


class ConversationContext:
    """多轮对话历史，只由所属的 ModelSession 修改。"""

    def __init__(self, handle: ModelHandle):
        self.handle = handle
        self.history: List[Content] = []
        # 同一上下文上的多轮请求串行执行，保证历史顺序
        self._lock = asyncio.Lock()


class ModelSession:
    def __init__(self, provider_factory: Optional[ProviderFactory] = None, name: str = ""):
        self._provider_factory = provider_factory or default_provider_factory
        self._generation = 0
        self._name = name
        self._model: ValueCell[Optional[ModelHandle]] = ValueCell(None)
        self._conversation: ValueCell[Optional[ConversationContext]] = ValueCell(None)

    @property
    def model(self) -> ReadOnlyCell[Optional[ModelHandle]]:
        return self._model

    @property
    def conversation(self) -> ReadOnlyCell[Optional[ConversationContext]]:
        return self._conversation

    async def configure(self, config: ModelConfig) -> Optional[ModelHandle]:
        """(重新)构建模型连接，被更新的配置取代时返回 None。"""

        # 先推进代际，让仍在进行中的旧构建失效
        self._generation += 1
        generation = self._generation
        current = self._model.value
        if current is not None and current.config == config:
            return current

        ctx = {"session": self._name, "model": config.name, "provider": config.provider, "generation": generation}
        self._log(logging.INFO, "Building model", ctx)
        try:
            built = self._provider_factory(config)
            client = await built if inspect.isawaitable(built) else built
        except BusinessError as exc:
            if generation == self._generation:
                self._model.set(None)
                self._conversation.set(None)
            self._log(logging.WARNING, "Model build failed, config unavailable", ctx, error=exc.message)
            return None

        if generation != self._generation:
            self._log(logging.INFO, "Discarded stale model build", ctx, latest_generation=self._generation)
            return None

        handle = ModelHandle(config=config, client=client, generation=generation)
        # 模型切换后旧历史失效
        self._conversation.set(None)
        self._model.set(handle)
        return handle

    async def start_conversation(self, handle: ModelHandle) -> Optional[ConversationContext]:
        if handle is not self._model.value:
            return None
        current = self._conversation.value
        if current is not None and current.handle is handle:
            return current
        context = ConversationContext(handle)
        self._conversation.set(context)
        self._log(
            logging.INFO,
            "Started conversation",
            {"session": self._name, "model": handle.config.name, "generation": handle.generation},
        )
        return context

    async def converse(self, context: ConversationContext, text: str) -> Result:
        async with context._lock:
            user_turn = Content.user(text)
            req = GenerateRequest(config=context.handle.config, contents=[*context.history, user_turn])
            result, response = await self._call(context.handle, req)
            if response is not None:
                context.history.append(user_turn)
                if response.content is not None:
                    context.history.append(response.content)
            return result

    async def generate(self, handle: ModelHandle, prompt: str, images: Sequence[ImageInput]) -> Result:
        req = GenerateRequest(config=handle.config, contents=[Content.user(prompt, list(images))])
        result, _ = await self._call(handle, req)
        return result

    async def _call(self, handle: ModelHandle, req: GenerateRequest):
        ctx = {"session": self._name, "model": handle.config.name, "provider": handle.client.name}
        self._log(logging.INFO, "Calling provider", ctx, turns=len(req.contents))
        try:
            response: GenerateResponse = await handle.client.generate(req)
        except BusinessError as exc:
            self._log(logging.WARNING, "Provider call failed", ctx, code=exc.code, error=exc.message)
            return Failure.from_exception(exc, BACKEND), None
        except Exception as exc:  # noqa: BLE001 - 需要把任意后端异常转换为 Failure
            self._log(logging.WARNING, "Provider call failed", ctx, error=repr(exc))
            return Failure.from_exception(exc, BACKEND), None
        if response.usage:
            self._log(logging.INFO, "Token usage", ctx, total_tokens=response.usage.total_tokens)
        return Success(response.text), response

    def _log(self, level: int, msg: str, ctx: Dict[str, Any], **fields: Any) -> None:
        payload = dict(ctx)
        payload.update(fields)
        logger.log(level, msg, extra={"extra": payload})
