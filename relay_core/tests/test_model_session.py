import asyncio

from relay_core.domain.exceptions import ApiError, ValidationError
from relay_core.domain.models import Content, GenerateResponse, ImageInput, ModelConfig, Part
from relay_core.domain.results import BACKEND, Failure, Success
from relay_core.session.model_session import ModelSession


class FakeProvider:
    name = "fake"

    def __init__(self, reply="ok"):
        self.reply = reply
        self.requests = []

    async def generate(self, req):
        self.requests.append(req)
        if isinstance(self.reply, Exception):
            raise self.reply
        content = Content(role="model", parts=[Part(text=self.reply)]) if self.reply else None
        return GenerateResponse(provider="fake", model=req.config.name, text=self.reply or None, content=content)


class CountingFactory:
    def __init__(self, reply="ok"):
        self.built = []
        self.reply = reply

    def __call__(self, config):
        self.built.append(config)
        return FakeProvider(self.reply)


def test_configure_same_config_is_idempotent():
    async def scenario():
        factory = CountingFactory()
        session = ModelSession(provider_factory=factory)
        first = await session.configure(ModelConfig(name="gemini-pro", temperature=0.4))
        second = await session.configure(ModelConfig(name="gemini-pro", temperature=0.4))
        assert first is second
        assert len(factory.built) == 1

        third = await session.configure(ModelConfig(name="gemini-pro", temperature=0.9))
        assert third is not first
        assert len(factory.built) == 2
        assert session.model.value is third

    asyncio.run(scenario())


def test_configure_latest_wins():
    async def scenario():
        gates = {"a": asyncio.Event(), "b": asyncio.Event()}

        async def factory(config):
            await gates[config.name].wait()
            return FakeProvider()

        session = ModelSession(provider_factory=factory)
        first = asyncio.create_task(session.configure(ModelConfig(name="a")))
        await asyncio.sleep(0)
        second = asyncio.create_task(session.configure(ModelConfig(name="b")))
        await asyncio.sleep(0)

        gates["b"].set()
        latest = await second
        gates["a"].set()
        stale = await first

        assert stale is None
        assert latest is not None
        assert session.model.value is latest
        assert session.model.value.config.name == "b"

    asyncio.run(scenario())


def test_returning_to_current_config_discards_pending_build():
    async def scenario():
        gate = asyncio.Event()

        async def factory(config):
            if config.name == "b":
                await gate.wait()
            return FakeProvider()

        session = ModelSession(provider_factory=factory)
        handle_a = await session.configure(ModelConfig(name="a"))
        pending_b = asyncio.create_task(session.configure(ModelConfig(name="b")))
        await asyncio.sleep(0)

        assert await session.configure(ModelConfig(name="a")) is handle_a
        gate.set()
        assert await pending_b is None
        assert session.model.value is handle_a

    asyncio.run(scenario())


def test_build_failure_makes_session_unavailable():
    async def scenario():
        def factory(config):
            if config.name == "broken":
                raise ValidationError(code="MISSING_API_KEY", message="GEMINI_API_KEY not set")
            return FakeProvider()

        session = ModelSession(provider_factory=factory)
        handle = await session.configure(ModelConfig(name="gemini-pro"))
        await session.start_conversation(handle)
        assert await session.configure(ModelConfig(name="broken")) is None
        assert session.model.value is None
        assert session.conversation.value is None

    asyncio.run(scenario())


def test_converse_appends_turns_and_model_swap_discards_history():
    async def scenario():
        session = ModelSession(provider_factory=CountingFactory("Hi there"))
        handle = await session.configure(ModelConfig(name="gemini-pro"))
        context = await session.start_conversation(handle)
        assert await session.start_conversation(handle) is context

        assert await session.converse(context, "Hello") == Success("Hi there")
        assert await session.converse(context, "Again") == Success("Hi there")
        assert [c.role for c in context.history] == ["user", "model", "user", "model"]
        # 第二轮请求带上了第一轮的历史
        assert len(handle.client.requests[1].contents) == 3

        new_handle = await session.configure(ModelConfig(name="gemini-flash"))
        assert session.conversation.value is None
        assert await session.start_conversation(handle) is None
        new_context = await session.start_conversation(new_handle)
        assert new_context.history == []

    asyncio.run(scenario())


def test_generate_is_stateless():
    async def scenario():
        session = ModelSession(provider_factory=CountingFactory("A cat."))
        handle = await session.configure(ModelConfig(name="gemini-pro-vision"))
        context = await session.start_conversation(handle)
        image = ImageInput(mime_type="image/jpeg", data=b"x", width=1, height=1)
        result = await session.generate(handle, "What is this?", [image])
        assert result == Success("A cat.")
        assert context.history == []
        req = handle.client.requests[0]
        assert len(req.contents) == 1
        assert req.contents[0].parts[0].image is image

    asyncio.run(scenario())


def test_backend_errors_become_failures():
    async def scenario():
        session = ModelSession(provider_factory=CountingFactory(Exception("timeout")))
        handle = await session.configure(ModelConfig(name="gemini-pro"))
        context = await session.start_conversation(handle)
        assert await session.converse(context, "Hello") == Failure(kind=BACKEND, message="timeout")
        assert context.history == []

        handle.client.reply = ApiError(code="API_ERROR", message="API key not valid", http_status=400)
        assert await session.generate(handle, "x", []) == Failure(kind=BACKEND, message="API key not valid")

    asyncio.run(scenario())


def test_empty_response_is_success_without_text():
    async def scenario():
        session = ModelSession(provider_factory=CountingFactory(None))
        handle = await session.configure(ModelConfig(name="gemini-pro"))
        context = await session.start_conversation(handle)
        assert await session.converse(context, "Hello") == Success(None)
        assert [c.role for c in context.history] == ["user"]

    asyncio.run(scenario())
