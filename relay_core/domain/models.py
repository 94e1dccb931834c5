"""中继核心共享的数据模型。

本模块定义了编排器、模型会话、Provider 与聊天通道之间共享的标准结构：

- Channel / ModelConfig: 一个会话频道及其模型配置（均不可变）。
- Attachment / InboundMessage / ImageInput: 用户发来的消息与预处理后的图片。
- Part / Content: 发给生成模型的多轮内容（文本 + 内联图片）。
- GenerateRequest / GenerateResponse: Provider 调用的统一请求与响应。
- OutboundMessage / MessageAck: 发回聊天通道的消息及其回执。

所有 Provider 适配器（如 GeminiClient）都只依赖这些模型，
并负责在各自的 API JSON 和这些模型之间做转换。
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Literal, Mapping, Optional
from uuid import uuid4


# 生成模型的多轮内容角色
Role = Literal["user", "model"]


@dataclass(frozen=True)
class Channel:
    """一个会话频道。

    - channel_id: 通道侧的 cid（如 "messaging:abc"），发送消息时使用。
    - channel_key: 用于查找模型配置的键。
    """

    channel_id: str
    channel_key: str


@dataclass(frozen=True)
class ModelConfig:
    """频道使用的生成模型配置，加载后不可变。

    两个配置字段完全相同即视为同一配置，ModelSession 不会重复构建。
    """

    name: str
    provider: str = "gemini"
    temperature: Optional[float] = None
    top_k: Optional[int] = None
    top_p: Optional[float] = None
    max_output_tokens: Optional[int] = None
    system_instruction: Optional[str] = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], default_provider: str = "gemini") -> "ModelConfig":
        """从配置文件中的字典构造，兼容 model/name 两种写法。"""

        name = data.get("name") or data.get("model")
        if not name:
            raise ValueError("model config requires a 'name'")
        return cls(
            name=str(name),
            provider=str(data.get("provider") or default_provider),
            temperature=data.get("temperature"),
            top_k=data.get("top_k"),
            top_p=data.get("top_p"),
            max_output_tokens=data.get("max_output_tokens"),
            system_instruction=data.get("system_instruction"),
        )


@dataclass
class Attachment:
    """用户消息附带的二进制附件。

    upload 指向本地文件（上传后的临时文件），data 为内存中的原始字节，
    二者至少提供一个；同时提供时优先使用 data。
    """

    upload: Optional[Path] = None
    data: Optional[bytes] = None
    mime_type: Optional[str] = None
    name: Optional[str] = None

    def read_bytes(self) -> bytes:
        if self.data is not None:
            return self.data
        if self.upload is None:
            raise FileNotFoundError("attachment has neither data nor upload path")
        return Path(self.upload).read_bytes()


@dataclass
class InboundMessage:
    """一条用户发来的聊天消息。"""

    text: str
    attachments: List[Attachment] = field(default_factory=list)
    id: Optional[str] = None

    @property
    def has_attachments(self) -> bool:
        return bool(self.attachments)


@dataclass(frozen=True)
class ImageInput:
    """预处理后可直接交给模型的图片。"""

    mime_type: str
    data: bytes
    width: int
    height: int


@dataclass(frozen=True)
class Part:
    """内容片段：文本或内联图片，二选一。"""

    text: Optional[str] = None
    image: Optional[ImageInput] = None


@dataclass
class Content:
    """一轮对话内容。"""

    role: Role
    parts: List[Part]

    @classmethod
    def user(cls, text: str, images: Optional[List[ImageInput]] = None) -> "Content":
        # 图片在前、文本在后，与多模态提示词的写法一致
        parts = [Part(image=img) for img in images or []]
        parts.append(Part(text=text))
        return cls(role="user", parts=parts)

    @property
    def text(self) -> Optional[str]:
        texts = [p.text for p in self.parts if p.text]
        return "".join(texts) if texts else None


@dataclass
class GenerateRequest:
    """一次完整的生成请求。"""

    config: ModelConfig
    contents: List[Content]


@dataclass
class UsageMetadata:
    """Provider 返回的 token 统计信息（统一格式）。"""

    prompt_tokens: int
    candidates_tokens: int
    total_tokens: int


@dataclass
class GenerateResponse:
    """一次生成调用的结果。

    - text: 首个候选的文本，模型没有产出内容时为 None。
    - content: 首个候选的完整内容，用于追加到多轮上下文。
    - raw: 原始响应 JSON，用于调试或日志记录。
    """

    provider: str
    model: str
    text: Optional[str]
    content: Optional[Content] = None
    finish_reason: Optional[str] = None
    usage: Optional[UsageMetadata] = None
    raw: Optional[dict] = None


@dataclass
class OutboundMessage:
    """发往聊天通道的消息。extra_data 中带有模型生成标记。"""

    id: str
    cid: str
    text: str
    extra_data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(cls, cid: str, text: str, marker_flag_key: str) -> "OutboundMessage":
        """每次发送都生成新的唯一 id。"""

        return cls(id=str(uuid4()), cid=cid, text=text, extra_data={marker_flag_key: True})


@dataclass
class MessageAck:
    """通道对一次发送的确认。"""

    message_id: str
    cid: str
