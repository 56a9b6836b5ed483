"""WebSocket endpoint for the streaming conversation view."""

from __future__ import annotations

import json

from fastapi import APIRouter, Depends, HTTPException, WebSocket
from starlette.websockets import WebSocketDisconnect, WebSocketState

from controllers.chat_controller import ChatEngine
from dal.kv_store_dal import KeyValueDAL, LocalStorage, TabStorage
from models.session_models import DEFAULT_SCOPE_KEY
from services.chat.ws_handler import ChatSocketHandler, SocketEmitter

router = APIRouter()


def _require_kv_dal(websocket: WebSocket) -> KeyValueDAL:
	dal = getattr(websocket.app.state, "kv_dal", None)
	if dal is None:
		raise HTTPException(status_code=500, detail="Storage unavailable")
	return dal


@router.websocket("/ws/chat/{scope}")
async def chat_socket(websocket: WebSocket, scope: str, dal: KeyValueDAL = Depends(_require_kv_dal)):
	"""Drive one conversation view over one websocket."""
	await websocket.accept()
	tab_id = (websocket.query_params.get("tab_id") or "").strip()
	if not tab_id:
		await websocket.send_text(json.dumps({"type": "error", "detail": "tab_id query parameter is required"}))
		await websocket.close()
		return

	state = websocket.app.state
	emit = SocketEmitter(websocket)
	engine = ChatEngine(
		tab_storage=TabStorage(dal, tab_id),
		local_storage=LocalStorage(dal),
		backend=state.backend,
		emit=emit,
		scope=None if scope == DEFAULT_SCOPE_KEY else scope,
		settings=state.settings,
		answer_cache=state.answer_cache,
	)
	handler = ChatSocketHandler(engine, emit)
	try:
		while True:
			try:
				raw = await websocket.receive_text()
			except WebSocketDisconnect:
				break
			try:
				payload = json.loads(raw)
			except ValueError:
				await emit("error", {"detail": "Payload must be JSON"})
				continue
			if not isinstance(payload, dict):
				await emit("error", {"detail": "Payload must be a JSON object"})
				continue
			await handler.handle(payload)
	finally:
		emit.closed = True
		await engine.close()
	if websocket.client_state == WebSocketState.CONNECTED:
		await websocket.close()
