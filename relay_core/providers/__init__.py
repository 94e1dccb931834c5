"""生成模型 Provider 集成层。

该包下的模块负责：
- 定义 Provider 抽象接口 (base)。
- 维护 Provider 与模型配置 (registry)。
- 提供各厂商的具体实现 (gemini_client，以及离线开发用的 echo_client)。
"""

from typing import Optional

from relay_core.config.settings import settings
from relay_core.domain.exceptions import ValidationError
from relay_core.providers.base import ProviderClient
from relay_core.providers.echo_client import EchoClient
from relay_core.providers.gemini_client import GeminiClient
from relay_core.providers.registry import get_provider_config


def create_provider(name: Optional[str] = None) -> ProviderClient:
    """根据名称创建 Provider 实例，默认取配置中的 provider。"""

    provider_name = (name or getattr(settings, "default_provider", "gemini")).lower()
    try:
        get_provider_config(provider_name)
    except KeyError:
        raise ValidationError(code="UNKNOWN_PROVIDER", message=f"Unknown provider: {provider_name}")
    if provider_name == "echo":
        return EchoClient(settings)
    return GeminiClient(settings)

