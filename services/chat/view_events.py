"""Event names pushed to the view, and the emitter signature."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict

Emit = Callable[[str, Dict[str, Any]], Awaitable[None]]

SESSION_RESTORED = "session.restored"
SESSION_RESET = "session.reset"
THREAD_SWITCHED = "thread.switched"
THREAD_ADOPTED = "thread.adopted"
EXCHANGE_APPENDED = "exchange.appended"
EXCHANGE_UPDATED = "exchange.updated"
LOADING = "loading"
STREAM_DELTA = "stream.delta"
TYPING_REVEAL = "typing.reveal"
TYPING_COMPLETE = "typing.complete"
SCROLL_TO_BOTTOM = "scroll.to_bottom"
SCROLL_RETURN_AVAILABLE = "scroll.return_available"
FEEDBACK_RECORDED = "feedback.recorded"
ERROR = "error"

