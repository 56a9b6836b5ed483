"""Route a submitted message to the vision, cached, streaming or fallback pipeline."""

from __future__ import annotations

import logging
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

import httpx

from models.chat_requests import AttachmentPayload, SubmitRequest
from models.exchange_models import (
	CachedAnswer,
	Exchange,
	ExchangeInput,
	ExchangeOutput,
	TextAnswer,
	VisionAnswer,
	new_exchange_id,
)
from models.stream_events import ContentEvent, DoneEvent, StartEvent
from models.vision_models import VisionItem
from services.backend.api_client import BackendClient, chat_payload
from services.chat.answer_cache import AnswerCache
from services.chat.errors import ChatEngineError, EmptyStreamError, ExchangeAlreadyAnswered
from services.chat.scroll_follow import ScrollFollowController
from services.chat.session_store import SessionStore
from services.chat.stream_consumer import StreamConsumer
from services.chat.thread_history import ThreadHistory
from services.chat.typing_scheduler import TypingScheduler
from services.chat.view_events import (
	ERROR,
	EXCHANGE_APPENDED,
	EXCHANGE_UPDATED,
	LOADING,
	STREAM_DELTA,
	THREAD_ADOPTED,
	TYPING_COMPLETE,
	Emit,
)
from services.menu_ocr import MenuTextExtractor
from services.thumbnail_generator import ThumbnailGenerator
from utils.media_validation import decode_base64_image, read_image_file, validate_image_type

LOGGER = logging.getLogger(__name__)

APOLOGIES = {
	"ja": "申し訳ありません。うまく回答できませんでした。もう一度お試しください。",
	"en": "Sorry, something went wrong. Please try again.",
	"ko": "죄송합니다. 문제가 발생했습니다. 다시 시도해 주세요.",
	"zh": "抱歉，出现了问题。请再试一次。",
}

VISION_COPY = {
	"ja": {
		"title": "📷 メニュー解析",
		"intro": "{count}品のメニューが見つかりました。",
		"ingredients": "主な材料",
		"allergens": "アレルゲン",
		"restrictions": "宗教上の制約",
		"flavor": "味の特徴",
		"calories": "推定カロリー",
	},
	"en": {
		"title": "📷 Menu analysis",
		"intro": "Found {count} dishes on this menu.",
		"ingredients": "Ingredients",
		"allergens": "Allergens",
		"restrictions": "Dietary restrictions",
		"flavor": "Flavor",
		"calories": "Estimated calories",
	},
}


def _localized(table: Dict[str, object], language: str):
	return table.get(language) or table.get(language.split("-", 1)[0]) or table["en"]


def apology_for(language: str) -> str:
	return _localized(APOLOGIES, language)


def format_vision_item(item: VisionItem, language: str) -> str:
	"""Markdown-style listing of one recognised dish."""
	copy = _localized(VISION_COPY, language)
	heading = f"**{item.display_name()}**"
	price = item.display_price()
	lines = [f"{heading} - {price}" if price else heading]
	if item.description:
		lines.append(item.description)
	if item.ingredients:
		lines.append(f"{copy['ingredients']}: {', '.join(item.ingredients)}")
	if item.allergens:
		lines.append(f"{copy['allergens']}: {', '.join(item.allergens)}")
	if item.restrictions:
		lines.append(f"{copy['restrictions']}: {', '.join(item.restrictions)}")
	if item.flavor_profile:
		lines.append(f"{copy['flavor']}: {item.flavor_profile}")
	if item.estimated_calories not in (None, ""):
		lines.append(f"{copy['calories']}: {item.estimated_calories}")
	if item.tax_note:
		lines.append(item.tax_note)
	return "\n".join(lines)


def vision_output(items: List[VisionItem], language: str, display_mode: str) -> ExchangeOutput:
	"""Cards (structured items) or a markdown listing, never both."""
	copy = _localized(VISION_COPY, language)
	title = copy["title"]
	intro = copy["intro"].format(count=len(items))
	if display_mode == "markdown":
		return TextAnswer(title=title, intro=intro, body_lines=[format_vision_item(item, language) for item in items])
	return VisionAnswer(title=title, intro=intro, items=list(items))


@dataclass
class _Outcome:
	output: Optional[ExchangeOutput]
	server_message_id: Optional[str] = None
	cached: bool = False
	# Prefix lengths already shown live, per field.
	revealed: Dict[str, int] = field(default_factory=dict)


class ResponseRouter:
	"""Turn one submitted message into exactly one answer.

	The exchange is appended before any I/O so the diner sees their message
	right away. Whatever pipeline runs, the answer is written once; network
	and parse failures end in the next fallback, and finally in an
	apologetic answer. Nothing is raised to the caller once the exchange
	exists.
	"""

	def __init__(
		self,
		store: SessionStore,
		backend: BackendClient,
		consumer: StreamConsumer,
		scheduler: TypingScheduler,
		scroll: ScrollFollowController,
		history: ThreadHistory,
		emit: Emit,
		*,
		answer_cache: Optional[AnswerCache] = None,
		ocr: Optional[MenuTextExtractor] = None,
		images: Optional[ThumbnailGenerator] = None,
		default_language: str = "ja",
		vision_display_mode: str = "cards",
	) -> None:
		self.store = store
		self.backend = backend
		self.consumer = consumer
		self.scheduler = scheduler
		self.scroll = scroll
		self.history = history
		self._emit = emit
		self.answer_cache = answer_cache or AnswerCache()
		self.ocr = ocr or MenuTextExtractor()
		self.images = images or ThumbnailGenerator()
		self.default_language = default_language
		self.vision_display_mode = vision_display_mode
		self._loading: Set[str] = set()

	def abandon_all(self) -> None:
		"""Forget pending loading indicators (session reset or thread switch)."""
		self._loading.clear()

	async def submit(self, request: SubmitRequest) -> Exchange:
		"""Append the exchange and resolve its answer.

		Raises:
			ValueError: The message has neither text nor an attachment.
		"""
		text = request.text.strip()
		attachment = request.attachment
		if not text and attachment is None:
			raise ValueError("Message cannot be empty.")
		language = request.language or self.default_language
		scope = self.store.state.scope
		epoch = self.store.epoch

		exchange = Exchange(
			id=new_exchange_id(),
			input=ExchangeInput(text=text, attachment_label=attachment.label if attachment else None),
			language=language,
		)
		exchange_id = exchange.id
		self._loading.add(exchange_id)
		self.scroll.follow_new_message()
		activity = f"fetch:{exchange_id}"
		self.scroll.activity_started(activity)
		# No suspension point before this append: order is submission order.
		await self.store.append(exchange)
		await self._emit(EXCHANGE_APPENDED, {"exchange": exchange.view()})
		await self._emit(LOADING, {"exchange_id": exchange_id, "active": True})
		await self.scroll.on_content_mutation()

		try:
			if attachment is not None:
				outcome = await self._run_vision(exchange_id, epoch, text, language, scope, attachment, request.display_mode)
			else:
				outcome = self._cached(text, scope)
				if outcome is None:
					outcome = await self._run_stream(exchange_id, epoch, text, language, scope)
		except Exception:
			LOGGER.exception("Unexpected failure answering exchange %s", exchange_id)
			outcome = _Outcome(TextAnswer(intro=apology_for(language)))

		try:
			await self._conclude(exchange_id, epoch, outcome)
		finally:
			# Typing (if any) has registered its own activity by now.
			self.scroll.activity_finished(activity)
		return self.store.get(exchange_id) or exchange

	def _cached(self, text: str, scope: Optional[str]) -> Optional[_Outcome]:
		reply = self.answer_cache.lookup(text, scope)
		if reply is None:
			return None
		LOGGER.info("Serving precomputed answer for %r", text[:40])
		return _Outcome(CachedAnswer(intro=reply.text), reply.message_uid, cached=True)

	async def _run_stream(
		self, exchange_id: str, epoch: int, text: str, language: str, scope: Optional[str]
	) -> _Outcome:
		payload = chat_payload(text, scope, self.store.thread_id, language)
		try:
			accumulated, message_uid, abandoned = await self._consume_stream(exchange_id, epoch, payload)
		except (httpx.HTTPError, ChatEngineError) as exc:
			LOGGER.warning("Chat stream failed for exchange %s (%s); using fallback chat", exchange_id, exc)
			if self._abandoned(exchange_id, epoch):
				return _Outcome(None)
			await self.store.patch(exchange_id, streaming=False, live_text="")
			return await self._run_fallback_chat(exchange_id, epoch, text, language, scope)
		if abandoned:
			return _Outcome(None)
		return _Outcome(TextAnswer(intro=accumulated), message_uid, revealed={"intro": len(accumulated)})

	async def _consume_stream(self, exchange_id: str, epoch: int, payload: Dict) -> Tuple[str, Optional[str], bool]:
		"""Apply stream events in arrival order.

		Returns the accumulated text, the server message id and whether the
		exchange was abandoned mid-stream.

		Raises:
			EmptyStreamError: The stream ended without any content.
		"""
		parts: List[str] = []
		message_uid: Optional[str] = None
		started = False
		async with aclosing(self.consumer.open(self.store.state.scope_key, payload)) as events:
			async for event in events:
				if self._abandoned(exchange_id, epoch):
					LOGGER.info("Exchange %s abandoned; closing its stream", exchange_id)
					return "".join(parts), None, True
				if isinstance(event, StartEvent):
					if await self.store.adopt_thread_id(event.thread_uid, epoch):
						await self._on_new_thread(event.thread_uid)
				elif isinstance(event, ContentEvent):
					if not event.content:
						continue
					parts.append(event.content)
					if not started:
						started = True
						await self.store.patch(exchange_id, streaming=True)
						await self._clear_loading(exchange_id)
					live = self.store.append_live_text(exchange_id, event.content)
					if live is not None:
						await self._emit(STREAM_DELTA, {"exchange_id": exchange_id, "text": live})
						await self.scroll.on_content_mutation()
				elif isinstance(event, DoneEvent):
					message_uid = event.message_uid
					break
		if self._abandoned(exchange_id, epoch):
			return "".join(parts), None, True
		if not parts:
			raise EmptyStreamError("Chat stream finished without content.")
		if message_uid is None:
			LOGGER.warning("Chat stream for exchange %s ended without a done record", exchange_id)
		return "".join(parts), message_uid, False

	async def _run_fallback_chat(
		self, exchange_id: str, epoch: int, text: str, language: str, scope: Optional[str]
	) -> _Outcome:
		if not text:
			LOGGER.warning("No text to send for exchange %s; answering with an apology", exchange_id)
			return _Outcome(TextAnswer(intro=apology_for(language)))
		payload = chat_payload(text, scope, self.store.thread_id, language)
		try:
			reply = await self.backend.chat(self.store.state.scope_key, payload)
		except (httpx.HTTPError, ValueError) as exc:
			LOGGER.error("Fallback chat failed for exchange %s: %s", exchange_id, exc)
			return _Outcome(TextAnswer(intro=apology_for(language)))
		if reply.thread_uid and await self.store.adopt_thread_id(reply.thread_uid, epoch):
			await self._on_new_thread(reply.thread_uid)
		return _Outcome(TextAnswer(intro=reply.text), reply.message_uid)

	async def _run_vision(
		self,
		exchange_id: str,
		epoch: int,
		text: str,
		language: str,
		scope: Optional[str],
		attachment: AttachmentPayload,
		display_mode: Optional[str],
	) -> _Outcome:
		try:
			content_type = validate_image_type(attachment.filename, attachment.content_type)
			image_bytes = await self._load_attachment(attachment)
		except (ValueError, OSError) as exc:
			LOGGER.warning("Unreadable attachment on exchange %s: %s", exchange_id, exc)
			await self._emit(ERROR, {"code": "attachment_unreadable", "exchange_id": exchange_id, "detail": str(exc)})
			return await self._run_fallback_chat(exchange_id, epoch, text, language, scope)

		await self._attach_preview(exchange_id, image_bytes)

		try:
			items = await self.backend.analyze_menu_image(
				image_bytes,
				filename=attachment.filename,
				content_type=content_type,
				scope=scope,
				message=text or None,
				language=language,
			)
		except (httpx.HTTPError, ValueError) as exc:
			LOGGER.warning("Vision analysis failed for exchange %s (%s); trying OCR and chat", exchange_id, exc)
			ocr_text = await self.ocr.extract(image_bytes, language)
			return await self._run_fallback_chat(exchange_id, epoch, text or ocr_text, language, scope)
		return _Outcome(vision_output(items, language, display_mode or self.vision_display_mode))

	async def _load_attachment(self, attachment: AttachmentPayload) -> bytes:
		if attachment.data_b64:
			return decode_base64_image(attachment.data_b64)
		if attachment.path:
			return await read_image_file(attachment.path)
		raise ValueError("Attachment carries no image data.")

	async def _attach_preview(self, exchange_id: str, image_bytes: bytes) -> None:
		try:
			preview = self.images.create_preview_data_url(image_bytes)
		except ValueError as exc:
			LOGGER.info("No preview for exchange %s: %s", exchange_id, exc)
			return
		exchange = self.store.get(exchange_id)
		if exchange is None:
			return
		# Previews are transient: set in memory only, never persisted.
		exchange.input.image_preview_ref = preview
		await self._emit(EXCHANGE_UPDATED, {"exchange": exchange.view()})

	async def _clear_loading(self, exchange_id: str) -> None:
		if exchange_id in self._loading:
			self._loading.discard(exchange_id)
			await self._emit(LOADING, {"exchange_id": exchange_id, "active": False})

	async def _on_new_thread(self, thread_uid: str) -> None:
		await self._emit(THREAD_ADOPTED, {"thread_uid": thread_uid})
		if self.store.state.scope:
			await self.history.increment_thread_count(self.store.state.scope)

	def _abandoned(self, exchange_id: str, epoch: int) -> bool:
		return not self.store.is_current(epoch) or self.store.get(exchange_id) is None

	async def _conclude(self, exchange_id: str, epoch: int, outcome: _Outcome) -> None:
		if outcome.output is None or self._abandoned(exchange_id, epoch):
			LOGGER.info("Dropping answer for abandoned exchange %s", exchange_id)
			self._loading.discard(exchange_id)
			return
		await self._clear_loading(exchange_id)
		try:
			exchange = await self.store.set_output(
				exchange_id,
				outcome.output,
				streaming=False,
				live_text="",
				server_message_id=outcome.server_message_id,
				typing_complete=outcome.cached,
			)
		except ExchangeAlreadyAnswered as exc:
			LOGGER.error("%s", exc)
			return
		if exchange is None:
			return
		await self._emit(EXCHANGE_UPDATED, {"exchange": exchange.view()})
		await self.scroll.on_content_mutation()
		await self.history.log_conversation(exchange)
		if self.store.thread_id:
			await self.history.touch_thread(self.store.state.scope_key, self.store.thread_id, exchange)

		if outcome.cached:
			await self._emit(TYPING_COMPLETE, {"exchange_id": exchange_id})
		else:
			self.scheduler.start(exchange_id, revealed=outcome.revealed)
