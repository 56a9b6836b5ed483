"""Per-connection chat engine: wires the conversation components together."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Optional, Set

from models.chat_requests import FeedbackRequest, ManualScrollRequest, SubmitRequest, SwitchThreadRequest
from models.exchange_models import Exchange
from services.backend.api_client import BackendClient
from services.chat.answer_cache import AnswerCache
from services.chat.feedback_reporter import FeedbackQueue, FeedbackReporter
from services.chat.response_router import ResponseRouter
from services.chat.scroll_follow import ScrollFollowController
from services.chat.session_store import KeyValueStorage, SessionStore
from services.chat.stream_consumer import StreamConsumer
from services.chat.thread_history import ThreadHistory
from services.chat.typing_scheduler import TypingScheduler
from services.chat.view_events import SESSION_RESET, SESSION_RESTORED, THREAD_SWITCHED, Emit
from services.menu_ocr import MenuTextExtractor
from services.thumbnail_generator import ThumbnailGenerator
from utils.settings import Settings

LOGGER = logging.getLogger(__name__)


class ChatEngine:
	"""One conversation view (a browser tab) talking to one assistant scope."""

	def __init__(
		self,
		*,
		tab_storage: KeyValueStorage,
		local_storage: KeyValueStorage,
		backend: BackendClient,
		emit: Emit,
		scope: Optional[str] = None,
		settings: Optional[Settings] = None,
		answer_cache: Optional[AnswerCache] = None,
		ocr: Optional[MenuTextExtractor] = None,
		images: Optional[ThumbnailGenerator] = None,
		sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
	) -> None:
		settings = settings or Settings()
		self._emit = emit
		self.store = SessionStore(tab_storage, scope)
		self.scroll = ScrollFollowController(emit, settings.scroll_bottom_threshold_px)
		self.scheduler = TypingScheduler(
			self.store,
			self.scroll,
			emit,
			chunk_size=settings.typing_chunk_size,
			delay_s=settings.typing_delay_s,
			sleep=sleep or asyncio.sleep,
		)
		self.history = ThreadHistory(local_storage)
		self.feedback = FeedbackReporter(self.store, backend, FeedbackQueue(local_storage, backend), emit)
		images = images or ThumbnailGenerator()
		self.router = ResponseRouter(
			self.store,
			backend,
			StreamConsumer(backend, settings.stream_max_line_bytes),
			self.scheduler,
			self.scroll,
			self.history,
			emit,
			answer_cache=answer_cache,
			ocr=ocr or MenuTextExtractor(images),
			images=images,
			default_language=settings.default_language,
			vision_display_mode=settings.vision_display_mode,
		)
		self._submissions: Set[asyncio.Task] = set()

	async def restore(self, store_name: Optional[str] = None) -> List[Exchange]:
		"""Reload this tab's conversation and announce it to the view."""
		exchanges = await self.store.restore()
		scope = self.store.state.scope
		if scope:
			await self.history.record_visit(scope, store_name)
		await self._emit(
			SESSION_RESTORED,
			{
				"scope": self.store.state.scope_key,
				"thread_uid": self.store.thread_id,
				"exchanges": [exchange.view() for exchange in exchanges],
			},
		)
		return exchanges

	async def submit(self, request: SubmitRequest) -> Exchange:
		return await self.router.submit(request)

	def submit_in_background(self, request: SubmitRequest) -> asyncio.Task:
		"""Run a submission without blocking the caller (scroll and feedback keep flowing)."""
		if not request.text.strip() and request.attachment is None:
			raise ValueError("Message cannot be empty.")
		task = asyncio.create_task(self.submit(request))
		self._submissions.add(task)
		task.add_done_callback(self._submission_done)
		return task

	def _submission_done(self, task: asyncio.Task) -> None:
		self._submissions.discard(task)
		if task.cancelled():
			return
		exc = task.exception()
		if exc is not None:
			LOGGER.error("Submission failed: %s", exc)

	async def reset(self) -> None:
		"""New chat: cancel pending reveals and drop the conversation and its thread."""
		self._abandon()
		await self.store.reset()
		await self._emit(SESSION_RESET, {"scope": self.store.state.scope_key})

	async def switch_thread(self, request: SwitchThreadRequest) -> None:
		self._abandon()
		await self.store.switch_thread(request.thread_uid)
		await self._emit(THREAD_SWITCHED, {"thread_uid": request.thread_uid, "exchanges": []})

	async def rate(self, request: FeedbackRequest) -> Exchange:
		exchange = await self.feedback.report(request.exchange_id, request.rating == "good")
		if exchange is None:
			raise ValueError("Only fully revealed answers of this conversation can be rated.")
		return exchange

	def manual_scroll(self, request: ManualScrollRequest) -> bool:
		return self.scroll.on_manual_scroll(request.scroll_top, request.scroll_height, request.client_height)

	async def return_to_bottom(self) -> None:
		await self.scroll.return_to_bottom()

	async def close(self) -> None:
		"""Stop everything this view started (the view disconnected)."""
		await self.scheduler.shutdown()
		for task in list(self._submissions):
			task.cancel()
		if self._submissions:
			await asyncio.gather(*self._submissions, return_exceptions=True)
		self._submissions.clear()

	def _abandon(self) -> None:
		# In-flight submissions keep running; their late results are dropped by epoch.
		self.scheduler.cancel_all()
		self.router.abandon_all()
		self.scroll.reset()
