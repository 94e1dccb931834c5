"""领域层模型与协议。

包含：
- models: Channel / ModelConfig / Content / OutboundMessage 等共享数据结构。
- results: Success / Failure 结果变体。
- exceptions: 业务异常类型定义。
"""
