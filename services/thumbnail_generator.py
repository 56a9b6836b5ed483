"""Preview generator for photographed menus.

Provides a small OOP wrapper around Pillow to create the preview shown in
the diner's own message bubble. The preview fits within 320x320 pixels and
is returned as a `data:image/jpeg;base64,...` URL, which is what the view
renders and what an exchange carries as its (non-persisted) image preview
reference.

Public class: `ThumbnailGenerator`

Example:
    tg = ThumbnailGenerator(max_size=(320, 320))
    preview_url = tg.create_preview_data_url(image_bytes)
"""
from __future__ import annotations

import base64
import io
from typing import Tuple

from PIL import Image, ImageOps


class ThumbnailGenerator:
    """Generate preview images from raw image bytes.

    Args:
        max_size: Maximum width and height for the preview. Defaults to (320, 320).
        background: Optional background color used when flattening images with alpha.
            If None, images with alpha are flattened against white.
        quality: JPEG quality of the encoded preview.
    """

    def __init__(
        self,
        max_size: Tuple[int, int] = (320, 320),
        background: Tuple[int, int, int] | None = None,
        quality: int = 80,
    ):
        self.max_size = max_size
        self.background = background or (255, 255, 255)
        self.quality = quality

    def open_image(self, data: bytes) -> Image.Image:
        """Open image bytes, honouring EXIF orientation (phone cameras).

        Raises:
            ValueError: If the bytes cannot be opened as an image.
        """
        try:
            src = Image.open(io.BytesIO(data))
            src.load()
        except Exception as exc:
            raise ValueError("Attachment is not a supported image format") from exc
        return ImageOps.exif_transpose(src)

    def create_preview(self, data: bytes) -> bytes:
        """Return JPEG bytes of the preview."""
        src = self.open_image(data).convert("RGBA")
        src.thumbnail(self.max_size, Image.LANCZOS)

        # Flatten alpha against the background color
        background = Image.new("RGB", src.size, self.background)
        background.paste(src, mask=src.split()[3])

        out_io = io.BytesIO()
        background.save(out_io, format="JPEG", quality=self.quality, optimize=True)
        return out_io.getvalue()

    def create_preview_data_url(self, data: bytes) -> str:
        """Return the preview as a base64 data URL."""
        encoded = base64.b64encode(self.create_preview(data)).decode("utf-8")
        return f"data:image/jpeg;base64,{encoded}"
