"""Send answer ratings to the backend with a durable local fallback."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from models.exchange_models import Exchange, Feedback
from services.backend.api_client import BackendClient
from services.chat.session_store import KeyValueStorage, SessionStore
from services.chat.view_events import FEEDBACK_RECORDED, Emit

LOGGER = logging.getLogger(__name__)

FEEDBACK_QUEUE_KEY = "feedback_queue"


class FeedbackQueue:
	"""Ratings that could not be delivered, kept in local storage."""

	def __init__(self, local_storage: KeyValueStorage, backend: BackendClient) -> None:
		self.local_storage = local_storage
		self.backend = backend

	async def pending(self) -> List[Dict[str, Any]]:
		try:
			queue = await self.local_storage.get(FEEDBACK_QUEUE_KEY)
		except Exception as exc:
			LOGGER.warning("Unable to read queued feedback: %s", exc)
			return []
		return list(queue) if isinstance(queue, list) else []

	async def enqueue(self, entry: Dict[str, Any]) -> None:
		queue = await self.pending()
		queue.append(entry)
		await self._save(queue)

	async def replay(self) -> int:
		"""Retry queued ratings that carry a message id. Returns how many were delivered."""
		remaining: List[Dict[str, Any]] = []
		delivered = 0
		for entry in await self.pending():
			message_uid = entry.get("message_uid")
			if not message_uid:
				remaining.append(entry)
				continue
			try:
				await self.backend.submit_feedback(message_uid, entry.get("rating") or "good")
				delivered += 1
			except httpx.HTTPError as exc:
				LOGGER.warning("Feedback replay failed for message %s: %s", message_uid, exc)
				remaining.append(entry)
		await self._save(remaining)
		return delivered

	async def _save(self, queue: List[Dict[str, Any]]) -> None:
		try:
			await self.local_storage.put(FEEDBACK_QUEUE_KEY, queue)
		except Exception as exc:
			LOGGER.warning("Unable to store queued feedback: %s", exc)


class FeedbackReporter:
	"""Record a rating on the exchange first, then report it to the backend.

	Ratings that cannot be delivered (transport failure, or an exchange
	without a server message id) go to the `FeedbackQueue`.
	"""

	def __init__(self, store: SessionStore, backend: BackendClient, queue: FeedbackQueue, emit: Emit) -> None:
		self.store = store
		self.backend = backend
		self.queue = queue
		self._emit = emit

	async def report(self, exchange_id: str, positive: bool) -> Optional[Exchange]:
		"""Rate an answered exchange once its reveal has finished.

		Returns None if it is unknown, unanswered or still typing.
		"""
		exchange = self.store.get(exchange_id)
		if exchange is None or not exchange.answered or not exchange.typing_complete:
			return None
		feedback = Feedback.POSITIVE if positive else Feedback.NEGATIVE
		exchange = await self.store.patch(exchange_id, feedback=feedback)
		if exchange is None:
			return None
		await self._emit(FEEDBACK_RECORDED, {"exchange_id": exchange_id, "feedback": feedback.value})

		message_uid = exchange.server_message_id
		if message_uid:
			try:
				await self.backend.submit_feedback(message_uid, feedback.rating)
				return exchange
			except httpx.HTTPError as exc:
				LOGGER.error("Feedback submission failed for message %s: %s", message_uid, exc)
		else:
			LOGGER.info("Exchange %s has no server message id; keeping feedback locally", exchange_id)
		await self.queue.enqueue(self._entry(exchange, feedback))
		return exchange

	def _entry(self, exchange: Exchange, feedback: Feedback) -> Dict[str, Any]:
		return {
			"exchange_id": exchange.id,
			"message_uid": exchange.server_message_id,
			"input": exchange.input.to_dict(),
			"output": exchange.output.to_dict() if exchange.output is not None else None,
			"language": exchange.language,
			"rating": feedback.rating,
			"created_at": datetime.now(timezone.utc).isoformat(),
		}
