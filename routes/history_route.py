"""FastAPI routes for chat history and feedback replay."""

from fastapi import APIRouter, HTTPException, Request

from controllers.history_controller import list_threads, list_visited, replay_feedback

router = APIRouter(prefix="/api/chat")


@router.get("/visited")
async def visited_route(request: Request):
	try:
		return await list_visited(request)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.post("/feedback/replay")
async def replay_feedback_route(request: Request):
	try:
		return await replay_feedback(request)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.get("/{scope}/threads")
async def threads_route(request: Request, scope: str):
	try:
		return await list_threads(request, scope)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))
