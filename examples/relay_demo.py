"""Minimal demonstration of the relay orchestrator with the offline echo provider."""

import asyncio

from relay_core import relay_message
from relay_core.binding.config_source import InMemoryChannelConfigSource
from relay_core.domain.models import ModelConfig
from relay_core.transport.memory import InMemoryChatTransport


async def main() -> None:
    transport = InMemoryChatTransport()
    source = InMemoryChannelConfigSource({"demo": ModelConfig(name="echo", provider="echo")})
    question = "Hello"
    result = await relay_message("messaging:demo", "demo", question, transport=transport, config_source=source)
    print("User:", question)
    print("Model:", result["reply"])
    print("Channel:", [m.text for m in transport.messages("messaging:demo")])


if __name__ == "__main__":
    asyncio.run(main())
