"""Conversation exchange models and their persisted form."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional

from models.vision_models import VisionItem

_last_exchange_id = 0


def new_exchange_id() -> str:
	"""Return a time-based id, strictly increasing within this process."""
	global _last_exchange_id
	candidate = int(time.time() * 1000)
	if candidate <= _last_exchange_id:
		candidate = _last_exchange_id + 1
	_last_exchange_id = candidate
	return str(candidate)


class Feedback(str, Enum):
	NONE = "none"
	POSITIVE = "positive"
	NEGATIVE = "negative"

	@property
	def rating(self) -> Optional[str]:
		"""Wire rating used by the feedback endpoint."""
		if self is Feedback.POSITIVE:
			return "good"
		if self is Feedback.NEGATIVE:
			return "bad"
		return None


@dataclass
class ExchangeInput:
	"""What the diner sent."""

	text: str
	attachment_label: Optional[str] = None
	image_preview_ref: Optional[str] = None

	def to_dict(self) -> Dict[str, Any]:
		# Image previews are transient and never persisted.
		return {"text": self.text, "attachment_label": self.attachment_label}

	@classmethod
	def from_dict(cls, data: Dict[str, Any]) -> "ExchangeInput":
		return cls(text=data.get("text") or "", attachment_label=data.get("attachment_label"))


@dataclass
class ExchangeOutput:
	"""Base of the answer variants. `kind` is the tag used in persisted form."""

	kind: ClassVar[str] = "text"

	title: str = ""
	intro: str = ""
	body_lines: List[str] = field(default_factory=list)

	def to_dict(self) -> Dict[str, Any]:
		return {
			"kind": self.kind,
			"title": self.title,
			"intro": self.intro,
			"body_lines": list(self.body_lines),
		}

	@staticmethod
	def from_dict(data: Dict[str, Any]) -> "ExchangeOutput":
		kind = data.get("kind") or "text"
		variant = _OUTPUT_KINDS.get(kind)
		if variant is None:
			raise ValueError(f"Unknown output kind: {kind!r}")
		return variant._from_dict(data)

	@classmethod
	def _from_dict(cls, data: Dict[str, Any]) -> "ExchangeOutput":
		return cls(
			title=data.get("title") or "",
			intro=data.get("intro") or "",
			body_lines=list(data.get("body_lines") or []),
		)


@dataclass
class TextAnswer(ExchangeOutput):
	"""Free-text answer from the streaming or fallback chat."""

	kind: ClassVar[str] = "text"


@dataclass
class CachedAnswer(ExchangeOutput):
	"""Precomputed answer served without touching the network."""

	kind: ClassVar[str] = "cached"


@dataclass
class VisionAnswer(ExchangeOutput):
	"""Structured menu items; rendered as cards, never as body lines."""

	kind: ClassVar[str] = "vision"

	items: List[VisionItem] = field(default_factory=list)

	def __post_init__(self) -> None:
		if self.body_lines:
			raise ValueError("Vision answers render items, not body lines.")

	def to_dict(self) -> Dict[str, Any]:
		data = super().to_dict()
		data["items"] = [item.model_dump() for item in self.items]
		return data

	@classmethod
	def _from_dict(cls, data: Dict[str, Any]) -> "VisionAnswer":
		return cls(
			title=data.get("title") or "",
			intro=data.get("intro") or "",
			items=[VisionItem.model_validate(item) for item in data.get("items") or []],
		)


_OUTPUT_KINDS = {variant.kind: variant for variant in (TextAnswer, CachedAnswer, VisionAnswer)}


@dataclass
class Exchange:
	"""One user turn and its answer."""

	id: str
	input: ExchangeInput
	language: str
	output: Optional[ExchangeOutput] = None
	feedback: Feedback = Feedback.NONE
	server_message_id: Optional[str] = None
	streaming: bool = False
	live_text: str = ""
	typing_complete: bool = False
	created_at: float = field(default_factory=lambda: time.time())

	@property
	def vision_items(self) -> Optional[List[VisionItem]]:
		if isinstance(self.output, VisionAnswer):
			return self.output.items
		return None

	@property
	def answered(self) -> bool:
		return self.output is not None

	def to_dict(self) -> Dict[str, Any]:
		return {
			"id": self.id,
			"input": self.input.to_dict(),
			"output": self.output.to_dict() if self.output is not None else None,
			"language": self.language,
			"feedback": self.feedback.value,
			"server_message_id": self.server_message_id,
			"streaming": self.streaming,
			"live_text": self.live_text,
			"typing_complete": self.typing_complete,
			"created_at": self.created_at,
		}

	@classmethod
	def from_dict(cls, data: Dict[str, Any]) -> "Exchange":
		output = data.get("output")
		return cls(
			id=str(data["id"]),
			input=ExchangeInput.from_dict(data.get("input") or {}),
			language=data.get("language") or "ja",
			output=ExchangeOutput.from_dict(output) if output else None,
			feedback=Feedback(data.get("feedback") or Feedback.NONE.value),
			server_message_id=data.get("server_message_id"),
			streaming=bool(data.get("streaming", False)),
			live_text=data.get("live_text") or "",
			typing_complete=bool(data.get("typing_complete", False)),
			created_at=float(data.get("created_at") or time.time()),
		)

	def view(self) -> Dict[str, Any]:
		"""Payload sent to the view; includes the transient image preview."""
		data = self.to_dict()
		data["input"]["image_preview_ref"] = self.input.image_preview_ref
		return data
