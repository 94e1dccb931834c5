"""Provider 与模型配置。

本模块将“逻辑模型名”与“具体厂商模型名”解耦：

- 逻辑名（logical_name）：频道配置里使用的名称，例如 "gemini-pro"。
- provider_model：厂商实际提供的模型 ID，例如 "gemini-1.0-pro"。

频道配置只关心逻辑名，具体用哪个底层模型由这里集中配置；
未登记的名称按原样透传给厂商。"""

from dataclasses import dataclass
from typing import Dict, Mapping


@dataclass
class ModelSpec:
    """单个逻辑模型的默认参数。"""

    logical_name: str
    provider_model: str
    max_output_tokens: int
    default_temperature: float


@dataclass
class ProviderConfig:
    """某个 Provider 的整体配置。"""

    name: str
    base_url: str
    models: Dict[str, ModelSpec]

    def resolve_model(self, logical_name: str) -> ModelSpec:
        spec = self.models.get(logical_name)
        if spec is not None:
            return spec
        return ModelSpec(
            logical_name=logical_name,
            provider_model=logical_name,
            max_output_tokens=2048,
            default_temperature=0.7,
        )


GEMINI_CONFIG = ProviderConfig(
    name="gemini",
    base_url="https://generativelanguage.googleapis.com/v1beta",
    models={
        "gemini-pro": ModelSpec(
            logical_name="gemini-pro",
            provider_model="gemini-1.0-pro",
            max_output_tokens=2048,
            default_temperature=0.9,
        ),
        "gemini-pro-vision": ModelSpec(
            logical_name="gemini-pro-vision",
            provider_model="gemini-1.0-pro-vision-latest",
            max_output_tokens=4096,
            default_temperature=0.4,
        ),
        "gemini-flash": ModelSpec(
            logical_name="gemini-flash",
            provider_model="gemini-1.5-flash",
            max_output_tokens=8192,
            default_temperature=1.0,
        ),
    },
)

# 离线开发用，不发起网络请求
ECHO_CONFIG = ProviderConfig(name="echo", base_url="", models={})


PROVIDER_REGISTRY: Mapping[str, ProviderConfig] = {
    "gemini": GEMINI_CONFIG,
    "echo": ECHO_CONFIG,
}


def get_provider_config(name: str) -> ProviderConfig:
    """根据名称获取 ProviderConfig，名称不区分大小写。"""

    key = name.lower()
    for k, cfg in PROVIDER_REGISTRY.items():
        if k.lower() == key:
            return cfg
    raise KeyError(f"Unknown provider: {name!r}")

