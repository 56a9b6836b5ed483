"""Local OCR of menu photos, used when the vision endpoint is unreachable."""

from __future__ import annotations

import asyncio
import logging

import pytesseract

from services.thumbnail_generator import ThumbnailGenerator

LOGGER = logging.getLogger(__name__)

TESSERACT_LANGUAGES = {
    "ja": "jpn",
    "ko": "kor",
    "zh": "chi_sim",
    "zh-CN": "chi_sim",
    "zh-TW": "chi_tra",
}
DEFAULT_TESSERACT_LANGUAGE = "eng"


def tesseract_language(language: str) -> str:
    """Map a UI locale tag to a Tesseract language pack."""
    if language in TESSERACT_LANGUAGES:
        return TESSERACT_LANGUAGES[language]
    return TESSERACT_LANGUAGES.get(language.split("-", 1)[0], DEFAULT_TESSERACT_LANGUAGE)


class MenuTextExtractor:
    """Extract printed text from a menu photo with Tesseract."""

    def __init__(self, images: ThumbnailGenerator | None = None) -> None:
        self.images = images or ThumbnailGenerator()

    def _extract(self, image_bytes: bytes, language: str) -> str:
        image = self.images.open_image(image_bytes)
        return pytesseract.image_to_string(image, lang=tesseract_language(language)) or ""

    async def extract(self, image_bytes: bytes, language: str) -> str:
        """Return whitespace-trimmed text, or "" when OCR is unavailable or fails."""
        try:
            # Tesseract is blocking -> run in thread
            text = await asyncio.to_thread(self._extract, image_bytes, language)
        except (pytesseract.TesseractError, pytesseract.TesseractNotFoundError, ValueError, OSError) as exc:
            LOGGER.warning("Menu OCR failed: %s", exc)
            return ""
        return text.strip()
