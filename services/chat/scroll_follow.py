"""Keep the conversation container pinned to the newest content."""

from __future__ import annotations

from typing import Set

from models.session_models import ScrollState
from services.chat.view_events import SCROLL_RETURN_AVAILABLE, SCROLL_TO_BOTTOM, Emit


class ScrollFollowController:
	"""Decide when the view should scroll to the bottom.

	While any fetch or typing activity is running the controller follows
	every content mutation regardless of where the viewer scrolled. Once
	all activity ends it only follows viewers who stayed within
	`threshold_px` of the bottom, and offers a return-to-bottom
	affordance to everyone else.
	"""

	def __init__(self, emit: Emit, threshold_px: int = 50) -> None:
		self._emit = emit
		self.threshold_px = threshold_px
		self.state = ScrollState()
		self._activities: Set[str] = set()

	@property
	def active(self) -> bool:
		return bool(self._activities)

	def activity_started(self, key: str) -> None:
		self._activities.add(key)
		self.state.is_auto_following = True

	def activity_finished(self, key: str) -> None:
		"""End an activity. No scroll is forced when the last one ends."""
		self._activities.discard(key)
		self.state.is_auto_following = bool(self._activities)

	def follow_new_message(self) -> None:
		"""A freshly sent message always brings the viewer back to the bottom."""
		self.state.user_has_scrolled_away = False
		self.state.show_return_to_bottom = False

	async def on_content_mutation(self) -> None:
		if self.state.is_auto_following or not self.state.user_has_scrolled_away:
			await self._emit(SCROLL_TO_BOTTOM, {"smooth": True})
			return
		if not self.state.show_return_to_bottom:
			self.state.show_return_to_bottom = True
			await self._emit(SCROLL_RETURN_AVAILABLE, {})

	def on_manual_scroll(self, scroll_top: float, scroll_height: float, client_height: float) -> bool:
		"""Record where the viewer scrolled. Returns False when ignored during activity."""
		if self.state.is_auto_following:
			return False
		near_bottom = scroll_top + client_height >= scroll_height - self.threshold_px
		self.state.user_has_scrolled_away = not near_bottom
		if near_bottom:
			self.state.show_return_to_bottom = False
		return True

	async def return_to_bottom(self) -> None:
		self.state.user_has_scrolled_away = False
		self.state.show_return_to_bottom = False
		await self._emit(SCROLL_TO_BOTTOM, {"smooth": True, "force": True})

	def reset(self) -> None:
		self._activities.clear()
		self.state = ScrollState()
