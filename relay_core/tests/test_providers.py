import asyncio

import pytest

from relay_core.domain.exceptions import ValidationError
from relay_core.domain.models import Content, GenerateRequest, ImageInput, ModelConfig
from relay_core.providers import create_provider
from relay_core.providers.echo_client import EchoClient
from relay_core.providers.gemini_client import GeminiClient
from relay_core.providers.registry import GEMINI_CONFIG


def test_create_provider_default(monkeypatch):
    class DummySettings:
        default_provider = "gemini"
        gemini_api_key = "g"
        http_timeout = 1.0
        gemini_base_url = "https://generativelanguage.googleapis.com/v1beta"

    monkeypatch.setattr("relay_core.providers.settings", DummySettings())
    provider = create_provider()
    assert isinstance(provider, GeminiClient)


def test_create_provider_explicit(monkeypatch):
    class DummySettings:
        default_provider = "gemini"

    monkeypatch.setattr("relay_core.providers.settings", DummySettings())
    assert isinstance(create_provider("ECHO"), EchoClient)


def test_create_provider_unknown():
    with pytest.raises(ValidationError) as exc_info:
        create_provider("nope")
    assert exc_info.value.code == "UNKNOWN_PROVIDER"


def test_resolve_model_aliases():
    assert GEMINI_CONFIG.resolve_model("gemini-pro").provider_model == "gemini-1.0-pro"
    spec = GEMINI_CONFIG.resolve_model("gemini-1.5-pro-latest")
    assert spec.provider_model == "gemini-1.5-pro-latest"
    assert spec.max_output_tokens == 2048


def test_echo_client_reports_images():
    image = ImageInput(mime_type="image/jpeg", data=b"x", width=1, height=1)
    req = GenerateRequest(config=ModelConfig(name="echo", provider="echo"), contents=[Content.user("hi", [image])])
    res = asyncio.run(EchoClient().generate(req))
    assert res.text == "[ECHO RESPONSE]\nhi\n(1 image(s) attached)"
    assert res.content.text == res.text
