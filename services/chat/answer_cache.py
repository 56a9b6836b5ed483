"""Precomputed answers served without a network round trip."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import aiofiles

LOGGER = logging.getLogger(__name__)

ANY_SCOPE = "*"


@dataclass(frozen=True)
class CachedReply:
	text: str
	message_uid: Optional[str] = None


class AnswerCache:
	"""Exact-text lookup of precomputed answers.

	Entries are keyed by (scope, text); entries without a scope apply to
	every assistant and are consulted after scope-specific ones.
	"""

	def __init__(self, entries: Optional[Dict[Tuple[str, str], CachedReply]] = None) -> None:
		self._entries: Dict[Tuple[str, str], CachedReply] = dict(entries or {})

	def __len__(self) -> int:
		return len(self._entries)

	def add(self, text: str, reply: CachedReply, scope: Optional[str] = None) -> None:
		self._entries[(scope or ANY_SCOPE, text)] = reply

	def lookup(self, text: str, scope: Optional[str] = None) -> Optional[CachedReply]:
		if not text:
			return None
		if scope:
			reply = self._entries.get((scope, text))
			if reply is not None:
				return reply
		return self._entries.get((ANY_SCOPE, text))

	@classmethod
	async def load(cls, path: Optional[str]) -> "AnswerCache":
		"""Load answers from a JSON list of {text, answer, message_uid?, scope?} objects.

		A missing or unreadable file yields an empty cache.
		"""
		cache = cls()
		if not path:
			return cache
		try:
			async with aiofiles.open(path, "r", encoding="utf-8") as fh:
				data = json.loads(await fh.read())
		except (OSError, ValueError) as exc:
			LOGGER.warning("Precomputed answers unavailable at %s: %s", path, exc)
			return cache
		for item in data if isinstance(data, list) else []:
			if not isinstance(item, dict) or not item.get("text") or not item.get("answer"):
				continue
			cache.add(
				item["text"],
				CachedReply(text=item["answer"], message_uid=item.get("message_uid")),
				scope=item.get("scope"),
			)
		LOGGER.info("Loaded %d precomputed answers", len(cache))
		return cache
