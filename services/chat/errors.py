"""Exceptions raised inside the chat engine.

None of these reach the view: the response router converts them into a
fallback pipeline or an apologetic answer.
"""

from __future__ import annotations


class ChatEngineError(Exception):
	"""Base class for chat engine failures."""


class ChatStreamError(ChatEngineError):
	"""The backend aborted the stream with an `error` record."""


class EmptyStreamError(ChatEngineError):
	"""The stream terminated without delivering any content."""


class ExchangeAlreadyAnswered(ChatEngineError):
	"""An exchange's output may only go from empty to set once."""
