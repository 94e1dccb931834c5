"""调用结果的显式变体。

ModelSession 与 ChannelHandle 不把异常抛给编排器，而是返回
Success / Failure，编排器据此分支处理。
"""

from dataclasses import dataclass
from typing import Literal, Optional, Union

from .exceptions import BusinessError, ConfigUnavailable, DecodeError, PublishError


FailureKind = Literal["config_unavailable", "decode", "backend", "publish"]

CONFIG_UNAVAILABLE: FailureKind = "config_unavailable"
DECODE: FailureKind = "decode"
BACKEND: FailureKind = "backend"
PUBLISH: FailureKind = "publish"


@dataclass(frozen=True)
class Success:
    """成功结果。value 为模型回复文本或已发送消息的 id，可能为 None。"""

    value: Optional[str] = None


@dataclass(frozen=True)
class Failure:
    kind: FailureKind
    message: str

    @classmethod
    def from_exception(cls, exc: Exception, kind: FailureKind = BACKEND) -> "Failure":
        """按异常类型推断失败种类，未知异常归入 kind。"""

        if isinstance(exc, ConfigUnavailable):
            kind = CONFIG_UNAVAILABLE
        elif isinstance(exc, DecodeError):
            kind = DECODE
        elif isinstance(exc, PublishError):
            kind = PUBLISH
        message = exc.message if isinstance(exc, BusinessError) else str(exc)
        return cls(kind=kind, message=message or type(exc).__name__)


Result = Union[Success, Failure]
