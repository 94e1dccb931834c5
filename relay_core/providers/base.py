"""Provider 抽象接口。

ModelSession 不直接依赖具体厂商的 HTTP API，而是依赖此协议：

- 每个厂商实现一个 ProviderClient（如 GeminiClient）。
- 负责：将 GenerateRequest 转成具体 API 请求，并把响应 JSON 解析为 GenerateResponse。

这样可以在不改编排器代码的前提下接入更多厂商。
"""

from typing import Protocol

from relay_core.domain.models import GenerateRequest, GenerateResponse


class ProviderClient(Protocol):
    """生成模型客户端协议。

    实现者需要提供：
    - name: Provider 名称，用于日志/统计。
    - generate(req): 执行一次生成调用；模型未产出内容时 response.text 为 None。
    """

    name: str

    async def generate(self, req: GenerateRequest) -> GenerateResponse:
        ...
