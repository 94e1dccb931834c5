"""Gemini Provider 适配器。

本模块负责：

1. 接收统一的 GenerateRequest。
2. 将其转换为 Gemini REST API 的 generateContent 请求：
   - URL: {base_url}/models/{model}:generateContent
   - 认证: x-goog-api-key: <api_key>
   - 图片以 base64 inline_data 的形式内联在 parts 中。
3. 调用 HTTP 接口并处理网络/API 异常。
4. 将响应 JSON 解析为统一的 GenerateResponse。
"""

import base64
from typing import Any, Dict, List, Optional

import httpx

from relay_core.config.settings import settings
from relay_core.domain.exceptions import ApiError, BackendError, NetworkError, RateLimitError, ValidationError
from relay_core.domain.models import (
    Content,
    GenerateRequest,
    GenerateResponse,
    Part,
    UsageMetadata,
)
from relay_core.providers.registry import GEMINI_CONFIG, ModelSpec


class GeminiClient:
    """Gemini 提供方客户端实现。

    - name: Provider 名称（供日志/调试使用）。
    - generate: 对外统一调用入口，返回 GenerateResponse。
    """

    name = "gemini"

    def __init__(self, cfg=settings):
        # Settings 里包含 base_url、api_key、超时等配置
        self._settings = cfg

    async def generate(self, req: GenerateRequest) -> GenerateResponse:
        """执行一次非流式生成调用。

        步骤：
        1. 读取模型配置（logical model -> provider model）。
        2. 构造 HTTP 请求 payload。
        3. 发送请求并捕获网络错误/限流/服务端错误。
        4. 使用统一的解析函数构造 GenerateResponse。
        """

        if not getattr(self._settings, "gemini_api_key", None):
            # 配置缺失走 ValidationError，方便上层统一处理
            raise ValidationError(code="MISSING_API_KEY", message="GEMINI_API_KEY not set")
        spec = GEMINI_CONFIG.resolve_model(req.config.name)
        payload = self._build_payload(req, spec)
        base = getattr(self._settings, "gemini_base_url", None) or GEMINI_CONFIG.base_url
        try:
            async with httpx.AsyncClient(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = await client.post(
                    f"{base}/models/{spec.provider_model}:generateContent",
                    json=payload,
                    headers={
                        "x-goog-api-key": self._settings.gemini_api_key,
                        "Content-Type": "application/json",
                    },
                )
        except httpx.TimeoutException:
            raise NetworkError(code="TIMEOUT", message="timeout")
        except httpx.RequestError as e:
            # 网络错误：DNS 失败、连接中断等
            raise NetworkError(code="NETWORK_ERROR", message=str(e))
        if resp.status_code == 429:
            # 限流错误原样交给调用方，中继层不做重试
            raise RateLimitError(code="RATE_LIMIT", message="Gemini rate limit", http_status=429)
        if resp.status_code >= 400:
            raise ApiError(
                code="API_ERROR",
                message=self._error_message(resp),
                http_status=resp.status_code,
            )
        data = resp.json()
        return self._parse_response(data, req, spec)

    def _build_payload(self, req: GenerateRequest, spec: ModelSpec) -> dict:
        """将 GenerateRequest 转成 Gemini 所需的请求 JSON。"""

        config = req.config
        generation_config: Dict[str, Any] = {
            "temperature": config.temperature if config.temperature is not None else spec.default_temperature,
            "maxOutputTokens": config.max_output_tokens or spec.max_output_tokens,
        }
        if config.top_k is not None:
            generation_config["topK"] = config.top_k
        if config.top_p is not None:
            generation_config["topP"] = config.top_p
        payload: Dict[str, Any] = {
            "contents": [self._content_to_payload(c) for c in req.contents],
            "generationConfig": generation_config,
        }
        if config.system_instruction:
            payload["systemInstruction"] = {"parts": [{"text": config.system_instruction}]}
        return payload

    def _parse_response(self, data: dict, req: GenerateRequest, spec: ModelSpec) -> GenerateResponse:
        """将 Gemini 的原始响应 JSON 解析为统一的 GenerateResponse。"""

        candidates = data.get("candidates") or []
        if not candidates:
            block_reason = (data.get("promptFeedback") or {}).get("blockReason")
            if block_reason:
                raise BackendError(
                    code="PROMPT_BLOCKED",
                    message=f"Prompt was blocked: {block_reason}",
                    provider="gemini",
                )
        content: Optional[Content] = None
        finish_reason = None
        if candidates:
            first = candidates[0]
            finish_reason = first.get("finishReason")
            content = self._build_content(first.get("content") or {})
        usage_raw = data.get("usageMetadata") or {}
        usage = None
        if usage_raw:
            usage = UsageMetadata(
                prompt_tokens=usage_raw.get("promptTokenCount", 0),
                candidates_tokens=usage_raw.get("candidatesTokenCount", 0),
                total_tokens=usage_raw.get("totalTokenCount", 0),
            )
        return GenerateResponse(
            provider="gemini",
            model=spec.logical_name,
            text=content.text if content else None,
            content=content,
            finish_reason=finish_reason,
            usage=usage,
            raw=data,
        )

    @staticmethod
    def _build_content(payload: Dict[str, Any]) -> Content:
        # 模型回复目前只关心文本片段
        parts: List[Part] = []
        for raw_part in payload.get("parts") or []:
            if "text" in raw_part:
                parts.append(Part(text=raw_part.get("text") or ""))
        return Content(role="model", parts=parts)

    @staticmethod
    def _content_to_payload(content: Content) -> Dict[str, Any]:
        parts: List[Dict[str, Any]] = []
        for part in content.parts:
            if part.image is not None:
                parts.append(
                    {
                        "inline_data": {
                            "mime_type": part.image.mime_type,
                            "data": base64.b64encode(part.image.data).decode("ascii"),
                        }
                    }
                )
            elif part.text is not None:
                parts.append({"text": part.text})
        return {"role": content.role, "parts": parts}

    @staticmethod
    def _error_message(resp: httpx.Response) -> str:
        """优先取 error.message，取不到时退回原始响应文本。"""

        try:
            data = resp.json()
        except ValueError:
            return resp.text
        if isinstance(data, dict):
            error = data.get("error")
            if isinstance(error, dict) and error.get("message"):
                return str(error["message"])
        return resp.text
