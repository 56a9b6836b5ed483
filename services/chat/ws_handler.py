"""Dispatch view websocket events to the chat engine."""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict

from fastapi import WebSocket
from starlette.websockets import WebSocketDisconnect

from controllers.chat_controller import ChatEngine
from models.chat_requests import FeedbackRequest, ManualScrollRequest, SubmitRequest, SwitchThreadRequest
from services.chat.view_events import ERROR, Emit

LOGGER = logging.getLogger(__name__)


class SocketEmitter:
	"""Serialize engine events onto one websocket.

	Sends are serialized with a lock because submissions and typing runs
	emit from their own tasks. Once the socket is gone events are dropped.
	"""

	def __init__(self, websocket: WebSocket) -> None:
		self.websocket = websocket
		self.closed = False
		self._lock = asyncio.Lock()

	async def __call__(self, event: str, payload: Dict[str, Any]) -> None:
		if self.closed:
			return
		message = json.dumps({"type": event, **payload}, ensure_ascii=False)
		async with self._lock:
			try:
				await self.websocket.send_text(message)
			except (WebSocketDisconnect, RuntimeError) as exc:
				LOGGER.debug("Dropping %s event for closed socket: %s", event, exc)
				self.closed = True


class ChatSocketHandler:
	"""Route websocket messages for one conversation view."""

	def __init__(self, engine: ChatEngine, emit: Emit) -> None:
		self.engine = engine
		self._emit = emit

	async def handle(self, payload: Dict[str, Any]) -> None:
		"""Process a single inbound websocket payload."""
		request_id = payload.get("request_id")
		message_type = payload.get("type")
		try:
			if message_type == "session.restore":
				await self.engine.restore(payload.get("store_name"))
			elif message_type == "chat.submit":
				self.engine.submit_in_background(SubmitRequest.model_validate(payload))
			elif message_type == "chat.reset":
				await self.engine.reset()
			elif message_type == "chat.switch_thread":
				await self.engine.switch_thread(SwitchThreadRequest.model_validate(payload))
			elif message_type == "chat.feedback":
				await self.engine.rate(FeedbackRequest.model_validate(payload))
			elif message_type == "scroll.manual":
				self.engine.manual_scroll(ManualScrollRequest.model_validate(payload))
			elif message_type == "scroll.return_to_bottom":
				await self.engine.return_to_bottom()
			else:
				raise ValueError("Unsupported message type.")
		except Exception as exc:
			await self._send_error(request_id, str(exc))

	async def _send_error(self, request_id: Any, detail: str) -> None:
		await self._emit(ERROR, {"request_id": request_id, "detail": detail})
