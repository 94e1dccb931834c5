import asyncio
import os
import tempfile
from pathlib import Path

import pytest

from relay_core.binding.channel_binding import ChannelBinding
from relay_core.binding.config_source import InMemoryChannelConfigSource, YamlChannelConfigSource
from relay_core.domain.exceptions import ConfigUnavailable, ValidationError
from relay_core.domain.models import ModelConfig
from relay_core.domain.results import PUBLISH, Failure, Success
from relay_core.transport.memory import InMemoryChatTransport


async def _until(predicate, timeout=5.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.001)


def test_resolve_yields_current_and_later_configs_skipping_absent():
    async def scenario():
        source = InMemoryChannelConfigSource()
        binding = ChannelBinding(source, InMemoryChatTransport(), marker_flag_key="gemini")
        seen = []

        async def consume():
            async for config in binding.resolve("c1"):
                seen.append(config)

        task = asyncio.create_task(consume())
        await asyncio.sleep(0)
        assert seen == []

        source.put("c1", ModelConfig(name="gemini-pro"))
        await _until(lambda: len(seen) == 1)
        source.remove("c1")
        await asyncio.sleep(0)
        source.put("c1", ModelConfig(name="gemini-flash"))
        await _until(lambda: len(seen) == 2)
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

        assert [c.name for c in seen] == ["gemini-pro", "gemini-flash"]

    asyncio.run(scenario())


def test_current_config_raises_when_absent():
    binding = ChannelBinding(InMemoryChannelConfigSource(), InMemoryChatTransport(), marker_flag_key="gemini")
    with pytest.raises(ConfigUnavailable):
        binding.current_config("missing")


def test_publish_sets_marker_flag_and_unique_ids():
    async def scenario():
        transport = InMemoryChatTransport()
        binding = ChannelBinding(InMemoryChannelConfigSource(), transport, marker_flag_key="gemini")
        handle = binding.channel_handle("messaging:abc")
        assert binding.channel_handle("messaging:abc") is handle
        assert handle.has_messages is handle.has_messages
        assert handle.has_messages.value is False

        first = await handle.publish("Hi there")
        second = await handle.publish("Hi there")

        assert isinstance(first, Success)
        assert first.value != second.value
        sent = transport.messages("messaging:abc")
        assert [m.text for m in sent] == ["Hi there", "Hi there"]
        assert sent[0].extra_data == {"gemini": True}
        assert handle.has_messages.value is True

    asyncio.run(scenario())


def test_publish_failure_is_reported():
    async def scenario():
        transport = InMemoryChatTransport()
        transport.fail_next = "channel closed"
        handle = ChannelBinding(InMemoryChannelConfigSource(), transport, marker_flag_key="gemini").channel_handle("c")
        assert await handle.publish("Hi") == Failure(kind=PUBLISH, message="channel closed")
        assert transport.messages("c") == []

    asyncio.run(scenario())


def test_yaml_source_reload_updates_and_removes():
    with tempfile.TemporaryDirectory() as d:
        path = Path(d) / "channels.yaml"
        path.write_text(
            "channels:\n"
            "  c1:\n"
            "    name: gemini-pro\n"
            "    temperature: 0.4\n"
            "  c2: gemini-pro-vision\n"
            "  broken:\n"
            "    temperature: 1.0\n",
            encoding="utf-8",
        )
        source = YamlChannelConfigSource(path=path, default_provider="gemini")
        assert source.watch("c1").value == ModelConfig(name="gemini-pro", provider="gemini", temperature=0.4)
        assert source.watch("c2").value == ModelConfig(name="gemini-pro-vision", provider="gemini")
        assert source.watch("broken").value is None

        seen = []
        source.watch("c2").subscribe(seen.append)
        path.write_text("channels:\n  c1:\n    model: gemini-flash\n    provider: echo\n", encoding="utf-8")
        source.reload()
        assert source.watch("c1").value == ModelConfig(name="gemini-flash", provider="echo")
        assert seen[-1] is None


def test_yaml_source_rejects_malformed_file():
    with tempfile.TemporaryDirectory() as d:
        path = Path(d) / "channels.yaml"
        path.write_text("channels: [c1, c2]\n", encoding="utf-8")
        with pytest.raises(ValidationError) as exc_info:
            YamlChannelConfigSource(path=path, default_provider="gemini")
        assert exc_info.value.code == "CHANNEL_CONFIG_INVALID"


def test_yaml_source_missing_file_is_empty():
    with tempfile.TemporaryDirectory() as d:
        source = YamlChannelConfigSource(path=Path(d) / "absent.yaml", default_provider="gemini")
        assert source.watch("c1").value is None


def test_yaml_source_poll_picks_up_changes():
    async def scenario(path):
        source = YamlChannelConfigSource(path=path, default_provider="gemini")
        poller = asyncio.create_task(source.poll(interval=0.01))
        path.write_text("channels:\n  c1: gemini-flash\n", encoding="utf-8")
        stat = path.stat()
        os.utime(path, (stat.st_atime, stat.st_mtime + 10))
        await _until(lambda: source.watch("c1").value == ModelConfig(name="gemini-flash", provider="gemini"))
        poller.cancel()
        await asyncio.gather(poller, return_exceptions=True)

    with tempfile.TemporaryDirectory() as d:
        path = Path(d) / "channels.yaml"
        path.write_text("channels:\n  c1: gemini-pro\n", encoding="utf-8")
        asyncio.run(scenario(path))
