import asyncio
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

import aiosqlite

DB_FILENAME = "chat_state.db"

KV_STORE_SCHEMA = """
CREATE TABLE IF NOT EXISTS KV_STORE (
    area TEXT NOT NULL,
    namespace TEXT NOT NULL,
    key TEXT NOT NULL,
    value TEXT NOT NULL,
    updated_at INTEGER NOT NULL,
    PRIMARY KEY (area, namespace, key)
)
"""


def _resolve_db_dir(db_dir: Optional[Path | str]) -> Path:
    raw = str(db_dir) if db_dir is not None else (os.getenv("DATABASE_DIR") or "")
    if not raw.strip():
        raise RuntimeError("DATABASE_DIR must name a writable directory for the chat state database.")
    path = Path(raw).expanduser()
    if path.exists() and not path.is_dir():
        raise RuntimeError(f"DATABASE_DIR={raw!r} is a file; expected a directory ({path}).")
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise RuntimeError(f"Cannot create database directory {path}") from exc
    return path


class AsyncDatabaseInitializer:
    """
    Own the SQLite file that backs per-tab and shared chat state.

    - Location: <DATABASE_DIR>/chat_state.db, or `db_dir` when given.
      RuntimeError if the directory is missing, is a file, or cannot be created.
    - `ensure_database()` creates the KV_STORE table on first use. Rows are
      never cleared on startup so conversations survive a reload.
    """

    def __init__(self, db_dir: Optional[Path | str] = None) -> None:
        self.db_dir = _resolve_db_dir(db_dir)
        self.db_path = self.db_dir / DB_FILENAME
        self._initialized = False

    async def ensure_database(self) -> None:
        """Create the KV_STORE table if needed; later calls are no-ops."""
        if self._initialized:
            return

        attempts = 3
        for attempt in range(1, attempts + 1):
            try:
                async with aiosqlite.connect(self.db_path) as db:
                    await db.execute(KV_STORE_SCHEMA)
                    await db.commit()
                break
            except FileNotFoundError:
                # Freshly created directories can briefly be invisible on some filesystems.
                if attempt == attempts:
                    raise
                await asyncio.sleep(0.1 * attempt)

        self._initialized = True

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[aiosqlite.Connection]:
        """Yield an `aiosqlite.Connection`, closing it afterwards."""
        await self.ensure_database()
        conn = await aiosqlite.connect(self.db_path)
        try:
            yield conn
        finally:
            await conn.close()
