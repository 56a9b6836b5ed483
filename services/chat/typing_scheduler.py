"""Timed, chunked reveal of answer text ("typing effect")."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from models.exchange_models import Exchange, ExchangeOutput
from models.session_models import TypingPhase, TypingTask
from services.chat.scroll_follow import ScrollFollowController
from services.chat.session_store import SessionStore
from services.chat.view_events import TYPING_COMPLETE, TYPING_REVEAL, Emit

LOGGER = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


def field_plan(output: ExchangeOutput) -> List[Tuple[str, str]]:
	"""Fields to reveal, in order: title, intro, then each body line. Empty fields are skipped."""
	fields = [("title", output.title), ("intro", output.intro)]
	fields.extend((f"body.{index}", line) for index, line in enumerate(output.body_lines))
	return [(path, text) for path, text in fields if text]


def reveal_steps(text: str, chunk_size: int, start_at: int = 0) -> List[int]:
	"""Prefix lengths shown at each step; the last one is always the full text."""
	if chunk_size < 1:
		raise ValueError("chunk_size must be positive")
	if start_at >= len(text):
		return []
	steps = list(range(start_at + chunk_size, len(text) + 1, chunk_size))
	if not steps or steps[-1] != len(text):
		steps.append(len(text))
	return steps


class TypingScheduler:
	"""Drive the reveal of answered exchanges, one field after another.

	Each `(exchange_id, field_path)` gets a single `TypingTask`; repeated
	start requests are no-ops. Reveal speed is constant (`chunk_size`
	characters every `delay_s` seconds) whatever the network speed was.
	"""

	def __init__(
		self,
		store: SessionStore,
		scroll: ScrollFollowController,
		emit: Emit,
		*,
		chunk_size: int = 2,
		delay_s: float = 0.025,
		sleep: Sleep = asyncio.sleep,
	) -> None:
		self.store = store
		self.scroll = scroll
		self._emit = emit
		self.chunk_size = chunk_size
		self.delay_s = delay_s
		self._sleep = sleep
		self._tasks: Dict[Tuple[str, str], TypingTask] = {}
		self._runs: Dict[str, asyncio.Task] = {}

	@property
	def active(self) -> bool:
		return any(not run.done() for run in self._runs.values())

	def start(self, exchange_id: str, revealed: Optional[Dict[str, int]] = None) -> Optional[asyncio.Task]:
		"""Begin revealing an answered exchange.

		Args:
			exchange_id: Exchange to reveal.
			revealed: Prefix lengths already visible per field (text shown live while streaming).

		Returns:
			The running task, or None when there is nothing to do (already
			started, already complete, unanswered or abandoned).
		"""
		if exchange_id in self._runs:
			return None
		exchange = self.store.get(exchange_id)
		if exchange is None or not exchange.answered or exchange.typing_complete:
			return None
		activity = f"typing:{exchange_id}"
		self.scroll.activity_started(activity)
		run = asyncio.create_task(self._run(exchange_id, self.store.epoch, dict(revealed or {}), activity))
		self._runs[exchange_id] = run
		return run

	async def animate(
		self,
		exchange_id: str,
		field_path: str,
		final_text: str,
		start_at: int = 0,
		epoch: Optional[int] = None,
	) -> bool:
		"""Reveal one field. Returns False if the exchange was abandoned midway."""
		key = (exchange_id, field_path)
		existing = self._tasks.get(key)
		if existing is not None:
			return existing.done
		task = TypingTask(exchange_id, field_path, final_text, revealed_length=min(start_at, len(final_text)))
		self._tasks[key] = task
		epoch = self.store.epoch if epoch is None else epoch

		task.phase = TypingPhase.REVEALING
		for length in reveal_steps(final_text, self.chunk_size, task.revealed_length):
			await self._sleep(self.delay_s)
			if self._current(exchange_id, epoch) is None:
				return False
			task.revealed_length = length
			await self._emit(
				TYPING_REVEAL,
				{"exchange_id": exchange_id, "field": field_path, "text": final_text[:length]},
			)
			await self.scroll.on_content_mutation()
		task.phase = TypingPhase.DONE
		return True

	def cancel_all(self) -> None:
		"""Cancel every pending reveal (session reset, thread switch, disconnect)."""
		for run in self._runs.values():
			if not run.done():
				run.cancel()
		if self._runs:
			LOGGER.debug("Cancelled %d typing runs", len(self._runs))
		self._runs.clear()
		self._tasks.clear()

	async def shutdown(self) -> None:
		"""Cancel every reveal and wait for the runs to unwind (view disconnected)."""
		runs = [run for run in self._runs.values() if not run.done()]
		self.cancel_all()
		if runs:
			await asyncio.gather(*runs, return_exceptions=True)

	def _current(self, exchange_id: str, epoch: int) -> Optional[Exchange]:
		if not self.store.is_current(epoch):
			return None
		return self.store.get(exchange_id)

	async def _run(self, exchange_id: str, epoch: int, revealed: Dict[str, int], activity: str) -> None:
		try:
			exchange = self._current(exchange_id, epoch)
			if exchange is None or not exchange.answered:
				return
			for field_path, text in field_plan(exchange.output):
				finished = await self.animate(
					exchange_id, field_path, text, start_at=revealed.get(field_path, 0), epoch=epoch
				)
				if not finished:
					return
			if self._current(exchange_id, epoch) is None:
				return
			await self.store.patch(exchange_id, typing_complete=True)
			await self._emit(TYPING_COMPLETE, {"exchange_id": exchange_id})
		finally:
			self.scroll.activity_finished(activity)
