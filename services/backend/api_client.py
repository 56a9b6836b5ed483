"""HTTP client for the restaurant backend (chat, vision, feedback endpoints)."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from models.vision_models import VisionItem
from utils.settings import Settings

LOGGER = logging.getLogger(__name__)

CHAT_STREAM_PATH = "/public-chat/{scope}/stream"
CHAT_PATH = "/public-chat/{scope}"
VISION_PATH = "/menu-vision/analyze"
FEEDBACK_PATH = "/public-chat/messages/{message_uid}/feedback"

_REPLY_TEXT_KEYS = ("response", "answer", "content", "message")


@dataclass
class ChatReply:
	"""Non-streaming chat answer."""

	text: str
	message_uid: Optional[str] = None
	thread_uid: Optional[str] = None


def build_http_client(settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> httpx.AsyncClient:
	"""Create the shared async HTTP client for backend calls."""
	return httpx.AsyncClient(
		base_url=settings.backend_base_url,
		timeout=httpx.Timeout(settings.read_timeout_s, connect=settings.connect_timeout_s),
		headers={"Accept": "application/json"},
		transport=transport,
	)


def chat_payload(message: str, scope: Optional[str], thread_uid: Optional[str], language: str) -> Dict[str, Any]:
	"""Request body shared by the streaming and non-streaming chat endpoints."""
	return {
		"message": message,
		"in_store": scope is not None,
		"thread_uid": thread_uid,
		"language": language,
	}


def _unwrap(data: Any) -> Any:
	if isinstance(data, dict) and isinstance(data.get("result"), (dict, list)):
		return data["result"]
	return data


def parse_chat_reply(data: Any) -> ChatReply:
	"""Extract answer text and identifiers from a fallback chat response."""
	body = _unwrap(data)
	if not isinstance(body, dict):
		raise ValueError("Chat response must be a JSON object.")
	text = ""
	for key in _REPLY_TEXT_KEYS:
		value = body.get(key)
		if isinstance(value, str) and value.strip():
			text = value
			break
	if not text:
		raise ValueError("Chat response did not contain answer text.")
	return ChatReply(text=text, message_uid=body.get("message_uid"), thread_uid=body.get("thread_uid"))


def parse_vision_items(data: Any) -> List[VisionItem]:
	"""Validate the item records of a vision response."""
	body = _unwrap(data)
	if isinstance(body, dict):
		body = body.get("items")
	if not isinstance(body, list):
		raise ValueError("Vision response did not contain an item list.")
	return [VisionItem.model_validate(item) for item in body]


class BackendClient:
	"""Thin async wrapper over the backend endpoints.

	Transport failures surface as `httpx.HTTPError` (including non-2xx
	statuses via `raise_for_status`); malformed bodies as `ValueError`.
	"""

	def __init__(self, client: httpx.AsyncClient) -> None:
		if client is None:
			raise ValueError("httpx.AsyncClient is required.")
		self.client = client

	@asynccontextmanager
	async def open_chat_stream(self, scope_key: str, payload: Dict[str, Any]) -> AsyncIterator[httpx.Response]:
		"""Open the chunked chat stream; yields the response with the body unread."""
		async with self.client.stream("POST", CHAT_STREAM_PATH.format(scope=scope_key), json=payload) as response:
			response.raise_for_status()
			yield response

	async def chat(self, scope_key: str, payload: Dict[str, Any]) -> ChatReply:
		"""Call the non-streaming chat endpoint."""
		response = await self.client.post(CHAT_PATH.format(scope=scope_key), json=payload)
		response.raise_for_status()
		return parse_chat_reply(response.json())

	async def analyze_menu_image(
		self,
		image_bytes: bytes,
		*,
		filename: str = "menu.jpg",
		content_type: str = "image/jpeg",
		scope: Optional[str] = None,
		message: Optional[str] = None,
		language: Optional[str] = None,
	) -> List[VisionItem]:
		"""Send a menu photo to the vision endpoint and return the recognised items."""
		if not image_bytes:
			raise ValueError("Image content is required for analysis.")
		form: Dict[str, str] = {}
		if scope:
			form["restaurant_slug"] = scope
		if message:
			form["message"] = message
		if language:
			form["language"] = language
		response = await self.client.post(
			VISION_PATH,
			files={"file": (filename, image_bytes, content_type)},
			data=form,
		)
		response.raise_for_status()
		items = parse_vision_items(response.json())
		LOGGER.info("Vision analysis returned %d items", len(items))
		return items

	async def submit_feedback(self, message_uid: str, rating: str) -> None:
		"""Send a good/bad rating for a server message."""
		response = await self.client.post(FEEDBACK_PATH.format(message_uid=message_uid), json={"rating": rating})
		response.raise_for_status()
