"""Session domain models for the chat engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from models.exchange_models import Exchange

DEFAULT_SCOPE_KEY = "default"


@dataclass
class SessionState:
	"""The active conversation for one (assistant scope, thread) pair."""

	scope: Optional[str]
	thread_id: Optional[str] = None
	exchanges: List[Exchange] = field(default_factory=list)
	# Bumped on every reset/switch; tasks started under an older epoch must not write.
	epoch: int = 0

	@property
	def scope_key(self) -> str:
		return self.scope or DEFAULT_SCOPE_KEY

	def find(self, exchange_id: str) -> Optional[Exchange]:
		for exchange in self.exchanges:
			if exchange.id == exchange_id:
				return exchange
		return None


class TypingPhase(str, Enum):
	PENDING = "pending"
	REVEALING = "revealing"
	DONE = "done"


@dataclass
class TypingTask:
	"""Reveal state of one field of one exchange."""

	exchange_id: str
	field_path: str
	source_text: str
	revealed_length: int = 0
	phase: TypingPhase = TypingPhase.PENDING

	@property
	def done(self) -> bool:
		return self.phase is TypingPhase.DONE


@dataclass
class ScrollState:
	"""Scroll-follow state of the single conversation container."""

	user_has_scrolled_away: bool = False
	is_auto_following: bool = False
	show_return_to_bottom: bool = False
