"""Decode the incremental `data: <json>` chat stream into typed events."""

from __future__ import annotations

import codecs
import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

from pydantic import ValidationError

from models.stream_events import STREAM_EVENT_ADAPTER, ErrorEvent, StreamEvent
from services.backend.api_client import BackendClient
from services.chat.errors import ChatStreamError

LOGGER = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DEFAULT_MAX_LINE_BYTES = 64 * 1024


def parse_record(line: str) -> Optional[StreamEvent]:
	"""Parse one complete line; returns None for anything that is not a usable record."""
	line = line.strip()
	if not line.startswith(DATA_PREFIX):
		return None
	raw = line[len(DATA_PREFIX):].strip()
	try:
		data = json.loads(raw)
	except ValueError:
		LOGGER.debug("Skipping malformed stream record: %r", raw[:200])
		return None
	if not isinstance(data, dict):
		LOGGER.debug("Skipping non-object stream record: %r", raw[:200])
		return None
	try:
		return STREAM_EVENT_ADAPTER.validate_python(data)
	except ValidationError:
		# An error record aborts the stream even when its fields are off.
		if data.get("type") == "error":
			return ErrorEvent(message=str(data.get("message") or ""))
		LOGGER.debug("Skipping invalid stream record of type %r", data.get("type"))
		return None


class StreamDecoder:
	"""Incremental line framer for the chat stream.

	Bytes may arrive split anywhere, including inside a multi-byte
	character or in the middle of a record. Only complete lines are
	parsed; the trailing partial line is kept for the next `feed` call and
	is bounded by `max_line_bytes`.
	"""

	def __init__(self, max_line_bytes: int = DEFAULT_MAX_LINE_BYTES) -> None:
		self.max_line_bytes = max_line_bytes
		self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
		self._pending = ""
		self._overflowed = False

	def feed(self, chunk: bytes) -> List[StreamEvent]:
		"""Consume a chunk of bytes and return the events it completed."""
		return self._consume(self._decoder.decode(chunk))

	def finish(self) -> List[StreamEvent]:
		"""Flush the decoder at end of stream, parsing a final unterminated line."""
		events = self._consume(self._decoder.decode(b"", final=True))
		tail, self._pending = self._pending, ""
		if tail and not self._overflowed:
			event = parse_record(tail)
			if event is not None:
				events.append(event)
		self._overflowed = False
		return events

	def _consume(self, text: str) -> List[StreamEvent]:
		if not text:
			return []
		lines = (self._pending + text).split("\n")
		self._pending = lines.pop()
		events: List[StreamEvent] = []
		for line in lines:
			if self._overflowed:
				# Remainder of a record that was discarded for being oversized.
				self._overflowed = False
				continue
			event = parse_record(line)
			if event is not None:
				events.append(event)
		if len(self._pending.encode("utf-8")) > self.max_line_bytes:
			LOGGER.warning("Discarding stream record larger than %d bytes", self.max_line_bytes)
			self._pending = ""
			self._overflowed = True
		return events


def _checked(event: StreamEvent) -> StreamEvent:
	if isinstance(event, ErrorEvent):
		raise ChatStreamError(event.message or "Chat stream reported an error.")
	return event


class StreamConsumer:
	"""Open the chat stream and yield its events in arrival order."""

	def __init__(self, backend: BackendClient, max_line_bytes: int = DEFAULT_MAX_LINE_BYTES) -> None:
		self.backend = backend
		self.max_line_bytes = max_line_bytes

	async def open(self, scope_key: str, payload: Dict[str, Any]) -> AsyncIterator[StreamEvent]:
		"""Yield start/content/done events.

		Raises:
			ChatStreamError: The backend sent an `error` record.
			httpx.HTTPError: Connection failure or non-2xx status.
		"""
		decoder = StreamDecoder(self.max_line_bytes)
		async with self.backend.open_chat_stream(scope_key, payload) as response:
			async for chunk in response.aiter_bytes():
				for event in decoder.feed(chunk):
					yield _checked(event)
			for event in decoder.finish():
				yield _checked(event)
