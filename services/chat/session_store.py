"""Per-tab persisted store for the active conversation."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, List, Optional, Protocol

from pydantic import ValidationError

from models.exchange_models import Exchange, ExchangeOutput
from models.session_models import SessionState
from services.chat.errors import ExchangeAlreadyAnswered

LOGGER = logging.getLogger(__name__)

SESSION_KEY_PREFIX = "chat_session:"
THREAD_KEY_PREFIX = "chat_thread:"


class KeyValueStorage(Protocol):
	async def get(self, key: str) -> Optional[Any]: ...

	async def put(self, key: str, value: Any) -> None: ...

	async def delete(self, key: str) -> None: ...


class SessionStore:
	"""Own the single active `SessionState` and mirror it to tab storage.

	Every mutation is written through to storage, one write at a time, and
	each write snapshots the state it commits once it holds the lock.
	Storage failures are logged and ignored so the conversation continues
	in memory.

	Callers that resume after an `await` must look exchanges up again with
	`get()` (and compare epochs with `is_current()`) rather than reuse an
	`Exchange` captured earlier: a reset or thread switch replaces the
	session object.
	"""

	def __init__(self, storage: KeyValueStorage, scope: Optional[str] = None) -> None:
		self.storage = storage
		self.state = SessionState(scope=scope)
		self._write_lock = asyncio.Lock()

	@property
	def session_key(self) -> str:
		return f"{SESSION_KEY_PREFIX}{self.state.scope_key}"

	@property
	def thread_key(self) -> str:
		return f"{THREAD_KEY_PREFIX}{self.state.scope_key}"

	@property
	def epoch(self) -> int:
		return self.state.epoch

	@property
	def thread_id(self) -> Optional[str]:
		return self.state.thread_id

	def is_current(self, epoch: int) -> bool:
		return self.state.epoch == epoch

	def get(self, exchange_id: str) -> Optional[Exchange]:
		"""Return the exchange from the current session, or None if it was abandoned."""
		return self.state.find(exchange_id)

	def exchanges(self) -> List[Exchange]:
		return list(self.state.exchanges)

	async def restore(self) -> List[Exchange]:
		"""Load the persisted conversation for this tab and scope.

		Answered exchanges come back with `typing_complete` set so they
		render immediately; nothing is handed to the typing scheduler.
		"""
		try:
			raw_exchanges = await self.storage.get(self.session_key)
			thread_id = await self.storage.get(self.thread_key)
		except Exception as exc:
			LOGGER.warning("Session restore failed for %s: %s", self.session_key, exc)
			return []

		restored: List[Exchange] = []
		for item in raw_exchanges or []:
			try:
				exchange = Exchange.from_dict(item)
			except (KeyError, TypeError, ValueError, ValidationError) as exc:
				LOGGER.warning("Dropping unreadable persisted exchange: %s", exc)
				continue
			# A reload ends any live stream.
			exchange.streaming = False
			if exchange.output is not None:
				exchange.typing_complete = True
			restored.append(exchange)

		self.state.exchanges = restored
		self.state.thread_id = thread_id if isinstance(thread_id, str) and thread_id else None
		LOGGER.info("Restored %d exchanges for %s", len(restored), self.session_key)
		return list(restored)

	async def append(self, exchange: Exchange) -> Exchange:
		self.state.exchanges.append(exchange)
		await self._persist()
		return exchange

	async def patch(self, exchange_id: str, **changes: Any) -> Optional[Exchange]:
		"""Update scalar fields of an exchange; returns None if it no longer exists."""
		if "output" in changes:
			raise ValueError("Use set_output() to answer an exchange.")
		exchange = self.get(exchange_id)
		if exchange is None:
			return None
		for name, value in changes.items():
			if not hasattr(exchange, name):
				raise AttributeError(f"Exchange has no field {name!r}")
			setattr(exchange, name, value)
		await self._persist()
		return exchange

	async def set_output(self, exchange_id: str, output: ExchangeOutput, **changes: Any) -> Optional[Exchange]:
		"""Answer an exchange exactly once; returns None if it no longer exists."""
		exchange = self.get(exchange_id)
		if exchange is None:
			return None
		if exchange.output is not None:
			raise ExchangeAlreadyAnswered(f"Exchange {exchange_id} already has an answer.")
		exchange.output = output
		for name, value in changes.items():
			setattr(exchange, name, value)
		await self._persist()
		return exchange

	def append_live_text(self, exchange_id: str, delta: str) -> Optional[str]:
		"""Append a stream delta in memory; returns the live text, or None if abandoned.

		Not written through: a reload ends the stream, and the final text
		is persisted with the answer.
		"""
		exchange = self.get(exchange_id)
		if exchange is None:
			return None
		exchange.live_text += delta
		return exchange.live_text

	async def adopt_thread_id(self, thread_id: str, epoch: int) -> bool:
		"""Record a server-issued thread id if the session has none yet.

		Returns True when the id was stored.
		"""
		if not thread_id or not self.is_current(epoch):
			return False
		if self.state.thread_id == thread_id:
			return False
		if self.state.thread_id is not None:
			LOGGER.warning(
				"Ignoring thread id %s; session already bound to %s", thread_id, self.state.thread_id
			)
			return False
		self.state.thread_id = thread_id
		await self._persist()
		return True

	async def reset(self) -> None:
		"""Start a new chat: forget exchanges, persisted entry and thread id."""
		self.state = SessionState(scope=self.state.scope, epoch=self.state.epoch + 1)
		await self._forget()

	async def switch_thread(self, thread_id: str) -> None:
		"""Replace the session with an empty one bound to an existing server thread."""
		self.state = SessionState(scope=self.state.scope, thread_id=thread_id, epoch=self.state.epoch + 1)
		await self._forget()
		await self._persist()

	async def _forget(self) -> None:
		async with self._write_lock:
			try:
				await self.storage.delete(self.session_key)
				await self.storage.delete(self.thread_key)
			except Exception as exc:
				LOGGER.warning("Failed to clear persisted session %s: %s", self.session_key, exc)

	async def _persist(self) -> None:
		epoch = self.state.epoch
		async with self._write_lock:
			# Writes queued behind a reset or thread switch belong to a dead session.
			if not self.is_current(epoch):
				return
			payload = [exchange.to_dict() for exchange in self.state.exchanges]
			thread_id = self.state.thread_id
			try:
				await self.storage.put(self.session_key, payload)
				if thread_id:
					await self.storage.put(self.thread_key, thread_id)
			except Exception as exc:
				LOGGER.warning("Session persistence failed for %s: %s", self.session_key, exc)
