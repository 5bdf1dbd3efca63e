"""Page rendering for vision and QR decoding."""

import base64
import io
import logging

import pymupdf
from PIL import Image

logger = logging.getLogger(__name__)

DEFAULT_DPI = 150  # Balance quality vs. token usage


def render_pdf_pages(content: bytes, max_pages: int = 5, dpi: int = DEFAULT_DPI) -> list[bytes]:
    """Render the first pages of a PDF to PNG bytes."""
    images = []
    with pymupdf.open(stream=content, filetype="pdf") as doc:
        for page_num in range(min(len(doc), max_pages)):
            pix = doc[page_num].get_pixmap(dpi=dpi)
            images.append(pix.tobytes("png"))
    return images


def image_to_png(content: bytes) -> bytes:
    """Re-encode an image (any Pillow-readable format) as PNG."""
    with Image.open(io.BytesIO(content)) as image:
        buffer = io.BytesIO()
        image.convert("RGB").save(buffer, format="PNG")
        return buffer.getvalue()


def document_images(content: bytes, is_pdf: bool, max_pages: int = 5) -> list[bytes]:
    """PNG images for a PDF or image document."""
    if is_pdf:
        return render_pdf_pages(content, max_pages=max_pages)
    return [image_to_png(content)]


def to_base64(image: bytes) -> str:
    return base64.b64encode(image).decode("utf-8")
