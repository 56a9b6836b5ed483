"""Environment-driven configuration for the chat engine service."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional


def _optional_float(raw: Optional[str]) -> Optional[float]:
    value = (raw or "").strip().lower()
    if value in ("", "none", "null"):
        return None
    return float(value)


@dataclass(frozen=True)
class Settings:
    """Runtime settings.

    Attributes:
        backend_base_url: Base URL of the restaurant backend API.
        connect_timeout_s: Connect timeout for backend calls.
        read_timeout_s: Read timeout for backend calls; None waits indefinitely.
        precomputed_answers_path: Optional JSON file with cached answers.
        typing_chunk_size: Characters revealed per typing step.
        typing_delay_ms: Delay between typing steps.
        scroll_bottom_threshold_px: Distance from bottom still treated as "at bottom".
        stream_max_line_bytes: Upper bound for a buffered, incomplete stream record.
        vision_display_mode: Default rendering of vision results ("cards" or "markdown").
        default_language: Locale used when a submit omits one.
    """

    backend_base_url: str = "http://127.0.0.1:8000/api"
    connect_timeout_s: float = 10.0
    read_timeout_s: Optional[float] = None
    precomputed_answers_path: Optional[str] = None
    typing_chunk_size: int = 2
    typing_delay_ms: int = 25
    scroll_bottom_threshold_px: int = 50
    stream_max_line_bytes: int = 64 * 1024
    vision_display_mode: str = "cards"
    default_language: str = "ja"

    @property
    def typing_delay_s(self) -> float:
        return self.typing_delay_ms / 1000.0


def load_settings() -> Settings:
    """Build settings from environment variables."""
    return Settings(
        backend_base_url=os.getenv("BACKEND_BASE_URL", "http://127.0.0.1:8000/api").rstrip("/"),
        connect_timeout_s=float(os.getenv("CHAT_CONNECT_TIMEOUT_S", "10")),
        read_timeout_s=_optional_float(os.getenv("CHAT_READ_TIMEOUT_S")),
        precomputed_answers_path=os.getenv("PRECOMPUTED_ANSWERS_PATH") or None,
        typing_chunk_size=max(1, int(os.getenv("TYPING_CHUNK_SIZE", "2"))),
        typing_delay_ms=max(0, int(os.getenv("TYPING_DELAY_MS", "25"))),
        scroll_bottom_threshold_px=max(0, int(os.getenv("SCROLL_BOTTOM_THRESHOLD_PX", "50"))),
        stream_max_line_bytes=max(1024, int(os.getenv("STREAM_MAX_LINE_BYTES", str(64 * 1024)))),
        vision_display_mode=(os.getenv("VISION_DISPLAY_MODE", "cards").strip().lower() or "cards"),
        default_language=(os.getenv("DEFAULT_LANGUAGE", "ja").strip() or "ja"),
    )
