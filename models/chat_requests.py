"""Inbound payloads sent by the view."""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, Field


class AttachmentPayload(BaseModel):
	"""A menu photo attached to a message.

	Exactly one of `data_b64` (uploaded bytes, optionally as a data URL) or
	`path` (a file already on the engine's disk) is expected.
	"""

	label: str = "photo"
	source: Literal["camera", "library"] = "library"
	filename: str = "menu.jpg"
	content_type: Optional[str] = None
	data_b64: Optional[str] = None
	path: Optional[str] = None


class SubmitRequest(BaseModel):
	text: str = ""
	language: Optional[str] = None
	attachment: Optional[AttachmentPayload] = None
	# Navigation context flag: how vision results are rendered.
	display_mode: Optional[Literal["cards", "markdown"]] = None


class SwitchThreadRequest(BaseModel):
	thread_uid: str = Field(min_length=1)


class FeedbackRequest(BaseModel):
	exchange_id: str
	rating: Literal["good", "bad"]


class ManualScrollRequest(BaseModel):
	scroll_top: float
	scroll_height: float
	client_height: float
