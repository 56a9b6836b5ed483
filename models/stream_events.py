"""Records carried by the chat stream (`data: <json>` lines)."""

from __future__ import annotations

from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter


class StartEvent(BaseModel):
	type: Literal["start"] = "start"
	thread_uid: str


class ContentEvent(BaseModel):
	type: Literal["content"] = "content"
	content: str = ""


class ErrorEvent(BaseModel):
	type: Literal["error"] = "error"
	message: str = ""


class DoneEvent(BaseModel):
	type: Literal["done"] = "done"
	message_uid: Optional[str] = None


StreamEvent = Annotated[
	Union[StartEvent, ContentEvent, ErrorEvent, DoneEvent],
	Field(discriminator="type"),
]

STREAM_EVENT_ADAPTER: TypeAdapter = TypeAdapter(StreamEvent)
