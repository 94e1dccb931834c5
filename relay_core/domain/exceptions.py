"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在中继编排层或 API 层做统一捕获，并转换为 Failure 结果或错误提示。
"""


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "DECODE_ERROR"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 cid、provider 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class NetworkError(BusinessError):
    """网络层错误，例如连接失败、超时等。"""


class ApiError(BusinessError):
    """第三方 API 返回非 2xx/429 错误时抛出。"""


class RateLimitError(BusinessError):
    """Provider 限流错误，中继层不重试，由调用方决定。"""


class ValidationError(BusinessError):
    """参数或配置校验失败。"""


class ConfigUnavailable(BusinessError):
    """频道尚未解析出模型配置，编排器静默忽略。"""


class DecodeError(BusinessError):
    """附件内容无法解码为图片。"""


class BackendError(BusinessError):
    """模型调用失败（异常、超时等）。"""


class PublishError(BusinessError):
    """向聊天通道发送消息失败。"""
