"""Thread history, visited stores and the conversation log (local storage)."""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from models.exchange_models import Exchange
from services.chat.session_store import KeyValueStorage

LOGGER = logging.getLogger(__name__)

THREADS_PREFIX = "threads:"
VISITED_STORES_KEY = "visited_stores"
CONVERSATION_LOG_KEY = "conversation_log"
MAX_CONVERSATION_LOG = 500
PREVIEW_CHARS = 80


def _now_iso() -> str:
	return datetime.now(timezone.utc).isoformat()


@dataclass
class ThreadEntry:
	thread_uid: str
	title: str
	preview: str
	updated_at: str

	@classmethod
	def from_dict(cls, data: Dict[str, Any]) -> "ThreadEntry":
		return cls(
			thread_uid=str(data["thread_uid"]),
			title=data.get("title") or "",
			preview=data.get("preview") or "",
			updated_at=data.get("updated_at") or "",
		)


@dataclass
class VisitedStore:
	slug: str
	name: str
	thread_count: int
	last_visited: str

	@classmethod
	def from_dict(cls, data: Dict[str, Any]) -> "VisitedStore":
		return cls(
			slug=str(data["slug"]),
			name=data.get("name") or "",
			thread_count=int(data.get("thread_count") or 0),
			last_visited=data.get("last_visited") or "",
		)


class ThreadHistory:
	"""Best-effort bookkeeping shared across tabs; failures never reach the chat."""

	def __init__(self, storage: KeyValueStorage) -> None:
		self.storage = storage

	async def _safe_get(self, key: str, fallback: Any) -> Any:
		try:
			value = await self.storage.get(key)
		except Exception as exc:
			LOGGER.warning("Local storage read failed for %s: %s", key, exc)
			return fallback
		return fallback if value is None else value

	async def _safe_set(self, key: str, value: Any) -> None:
		try:
			await self.storage.put(key, value)
		except Exception as exc:
			LOGGER.warning("Local storage write failed for %s: %s", key, exc)

	async def list_threads(self, scope_key: str) -> List[ThreadEntry]:
		raw = await self._safe_get(f"{THREADS_PREFIX}{scope_key}", [])
		return [ThreadEntry.from_dict(item) for item in raw if isinstance(item, dict) and item.get("thread_uid")]

	async def save_thread(self, scope_key: str, entry: ThreadEntry) -> None:
		"""Update an existing entry in place, or add a new one at the front."""
		threads = await self.list_threads(scope_key)
		for index, existing in enumerate(threads):
			if existing.thread_uid == entry.thread_uid:
				threads[index] = entry
				break
		else:
			threads.insert(0, entry)
		await self._safe_set(f"{THREADS_PREFIX}{scope_key}", [asdict(item) for item in threads])

	async def touch_thread(self, scope_key: str, thread_uid: str, exchange: Exchange) -> None:
		"""Upsert the history entry for a thread from its latest answered exchange."""
		threads = {entry.thread_uid: entry for entry in await self.list_threads(scope_key)}
		existing = threads.get(thread_uid)
		title = existing.title if existing and existing.title else (exchange.input.text or exchange.input.attachment_label or "")
		answer = exchange.output.intro if exchange.output is not None else ""
		await self.save_thread(
			scope_key,
			ThreadEntry(
				thread_uid=thread_uid,
				title=title[:PREVIEW_CHARS],
				preview=answer[:PREVIEW_CHARS],
				updated_at=_now_iso(),
			),
		)

	async def list_visited(self) -> List[VisitedStore]:
		raw = await self._safe_get(VISITED_STORES_KEY, [])
		return [VisitedStore.from_dict(item) for item in raw if isinstance(item, dict) and item.get("slug")]

	async def record_visit(self, slug: str, name: Optional[str] = None) -> None:
		"""Mark a store as visited now; the display name is kept unless a new one is given."""
		stores = await self.list_visited()
		for store in stores:
			if store.slug == slug:
				store.last_visited = _now_iso()
				if name:
					store.name = name
				break
		else:
			stores.append(VisitedStore(slug=slug, name=name or slug, thread_count=0, last_visited=_now_iso()))
		await self._safe_set(VISITED_STORES_KEY, [asdict(store) for store in stores])

	async def increment_thread_count(self, slug: str) -> None:
		stores = await self.list_visited()
		for store in stores:
			if store.slug == slug:
				store.thread_count += 1
				await self._safe_set(VISITED_STORES_KEY, [asdict(item) for item in stores])
				return

	async def log_conversation(self, exchange: Exchange) -> None:
		"""Append a completed exchange to the conversation log (bounded)."""
		if exchange.output is None:
			return
		log = await self._safe_get(CONVERSATION_LOG_KEY, [])
		if not isinstance(log, list):
			log = []
		log.append(
			{
				"input": {"text": exchange.input.text, "attachment": exchange.input.attachment_label},
				"output": exchange.output.to_dict(),
				"language": exchange.language,
				"created_at": time.time(),
			}
		)
		await self._safe_set(CONVERSATION_LOG_KEY, log[-MAX_CONVERSATION_LOG:])
