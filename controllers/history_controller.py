"""Thread history, visited stores and queued feedback for the REST routes."""

from __future__ import annotations

from dataclasses import asdict
from typing import Any, Dict

from fastapi import HTTPException, Request

from dal.kv_store_dal import KeyValueDAL, LocalStorage
from services.backend.api_client import BackendClient
from services.chat.feedback_reporter import FeedbackQueue
from services.chat.thread_history import ThreadHistory


def _local_storage(request: Request) -> LocalStorage:
	dal: KeyValueDAL = getattr(request.app.state, "kv_dal", None)
	if dal is None:
		raise HTTPException(status_code=500, detail="Storage unavailable")
	return LocalStorage(dal)


async def list_threads(request: Request, scope: str) -> Dict[str, Any]:
	"""Past conversations for an assistant scope, most recent first."""
	history = ThreadHistory(_local_storage(request))
	threads = await history.list_threads(scope)
	return {"scope": scope, "threads": [asdict(entry) for entry in threads]}


async def list_visited(request: Request) -> Dict[str, Any]:
	history = ThreadHistory(_local_storage(request))
	stores = await history.list_visited()
	return {"stores": [asdict(store) for store in stores]}


async def replay_feedback(request: Request) -> Dict[str, Any]:
	"""Retry delivery of ratings that failed earlier."""
	backend: BackendClient = getattr(request.app.state, "backend", None)
	if backend is None:
		raise HTTPException(status_code=500, detail="Backend client unavailable")
	queue = FeedbackQueue(_local_storage(request), backend)
	delivered = await queue.replay()
	remaining = await queue.pending()
	return {"delivered": delivered, "pending": len(remaining)}
