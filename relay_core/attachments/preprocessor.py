"""图片附件预处理。

每个附件先解码为位图，宽高按固定比例（默认 0.5）用 LANCZOS 缩放，
再重新编码为 JPEG，控制发给模型的请求体大小。
"""

from __future__ import annotations

import io
from typing import List, Sequence

from PIL import Image, UnidentifiedImageError

from relay_core.config.settings import settings
from relay_core.domain.exceptions import DecodeError
from relay_core.domain.models import Attachment, ImageInput

OUTPUT_MIME_TYPE = "image/jpeg"


class AttachmentPreprocessor:
    def __init__(self, scale: float | None = None, jpeg_quality: int | None = None):
        self.scale = scale if scale is not None else settings.attachment_scale
        self.jpeg_quality = jpeg_quality if jpeg_quality is not None else settings.attachment_jpeg_quality

    def process(self, attachment: Attachment) -> ImageInput:
        """解码并缩小一个附件，失败时抛出 DecodeError。"""

        label = attachment.name or (str(attachment.upload) if attachment.upload else "<bytes>")
        try:
            raw = attachment.read_bytes()
        except OSError as exc:
            raise DecodeError(code="ATTACHMENT_UNREADABLE", message=f"Cannot read attachment {label}: {exc}")

        try:
            with Image.open(io.BytesIO(raw)) as original:
                original.load()
                width, height = self.scaled_size(original.width, original.height)
                scaled = original.convert("RGB").resize((width, height), Image.Resampling.LANCZOS)
        except (UnidentifiedImageError, OSError, ValueError) as exc:
            raise DecodeError(code="DECODE_ERROR", message=f"Attachment {label} is not a valid image: {exc}")

        buf = io.BytesIO()
        scaled.save(buf, format="JPEG", quality=self.jpeg_quality)
        return ImageInput(mime_type=OUTPUT_MIME_TYPE, data=buf.getvalue(), width=width, height=height)

    def process_all(self, attachments: Sequence[Attachment]) -> List[ImageInput]:
        # 不做部分提交：任一附件失败则整条消息失败
        return [self.process(a) for a in attachments]

    def scaled_size(self, width: int, height: int) -> tuple[int, int]:
        return max(1, int(width * self.scale)), max(1, int(height * self.scale))
