import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request

from dal.kv_store_dal import KeyValueDAL
from routes.chat_ws import router as chat_ws_router
from routes.history_route import router as history_router
from services.backend.api_client import BackendClient, build_http_client
from services.chat.answer_cache import AnswerCache
from utils.database_init import AsyncDatabaseInitializer
from utils.settings import load_settings

load_dotenv()  # Load environment variables from .env file if present

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())
LOGGER = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan manager to initialize:
      - the settings read from the environment
      - the SQLite key-value store (kept across restarts, at DATABASE_DIR/chat_state.db)
      - the shared backend HTTP client
      - the precomputed answer cache
    and attach them to `app.state`.
    """
    settings = load_settings()
    app.state.settings = settings

    db_initializer = AsyncDatabaseInitializer()
    await db_initializer.ensure_database()
    app.state.db_initializer = db_initializer
    app.state.kv_dal = KeyValueDAL(db_initializer)

    http_client = build_http_client(settings)
    app.state.backend = BackendClient(http_client)
    app.state.answer_cache = await AnswerCache.load(settings.precomputed_answers_path)
    LOGGER.info("Chat engine ready; backend at %s", settings.backend_base_url)

    try:
        yield
    finally:
        await http_client.aclose()


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application instance.
    """
    app = FastAPI(lifespan=lifespan)

    @app.get("/health")
    async def health(request: Request):
        """
        Simple health check that verifies the store and backend client are present.
        """
        has_db = hasattr(request.app.state, "db_initializer")
        has_backend = getattr(request.app.state, "backend", None) is not None
        return {"ok": True, "db_initialized": has_db, "backend_configured": has_backend}

    # Register application routers
    app.include_router(chat_ws_router)
    app.include_router(history_router)

    return app


app = create_app()
