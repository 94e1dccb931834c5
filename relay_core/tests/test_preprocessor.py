import io
import tempfile
from pathlib import Path

import pytest
from PIL import Image

from relay_core.attachments.preprocessor import AttachmentPreprocessor
from relay_core.domain.exceptions import DecodeError
from relay_core.domain.models import Attachment


def _png(width, height):
    buf = io.BytesIO()
    Image.new("RGBA", (width, height), (255, 0, 0, 128)).save(buf, format="PNG")
    return buf.getvalue()


def test_process_halves_dimensions_and_reencodes_jpeg():
    image = AttachmentPreprocessor(scale=0.5, jpeg_quality=80).process(Attachment(data=_png(40, 20), name="cat.png"))
    assert (image.width, image.height) == (20, 10)
    assert image.mime_type == "image/jpeg"
    with Image.open(io.BytesIO(image.data)) as decoded:
        assert decoded.format == "JPEG"
        assert decoded.size == (20, 10)


def test_process_reads_upload_path():
    with tempfile.TemporaryDirectory() as d:
        path = Path(d) / "photo.png"
        path.write_bytes(_png(9, 3))
        image = AttachmentPreprocessor(scale=0.5).process(Attachment(upload=path))
    assert (image.width, image.height) == (4, 1)


def test_scaled_size_never_below_one_pixel():
    assert AttachmentPreprocessor(scale=0.5).scaled_size(1, 1) == (1, 1)


def test_invalid_bytes_raise_decode_error():
    with pytest.raises(DecodeError) as exc_info:
        AttachmentPreprocessor().process(Attachment(data=b"not an image", name="bad.bin"))
    assert exc_info.value.code == "DECODE_ERROR"


def test_missing_upload_raises_decode_error():
    with tempfile.TemporaryDirectory() as d:
        with pytest.raises(DecodeError) as exc_info:
            AttachmentPreprocessor().process(Attachment(upload=Path(d) / "gone.png"))
    assert exc_info.value.code == "ATTACHMENT_UNREADABLE"


def test_process_all_aborts_on_first_failure():
    attachments = [Attachment(data=_png(4, 4)), Attachment(data=b"junk")]
    with pytest.raises(DecodeError):
        AttachmentPreprocessor().process_all(attachments)
