"""Async Data Access Layer for the KV_STORE table.

Two storage areas are exposed on top of one table:

* ``session``: per-tab storage. Rows are namespaced by tab id and hold the
  active conversation so it survives a reload of that tab.
* ``local``: storage shared by every tab (thread history, visited stores,
  queued feedback, the conversation log).

Values are JSON documents.
"""

from __future__ import annotations

import json
import time
from typing import Any, Optional

from utils.database_init import AsyncDatabaseInitializer

SESSION_AREA = "session"
LOCAL_AREA = "local"
LOCAL_NAMESPACE = "*"


class KeyValueDAL:
    """Data access layer for JSON values keyed by (area, namespace, key).

    The constructor accepts an `AsyncDatabaseInitializer` (or any object
    exposing an async `connection()` context manager that yields an
    `aiosqlite.Connection`).
    """

    def __init__(self, db_initializer: AsyncDatabaseInitializer) -> None:
        self._db = db_initializer

    async def get(self, area: str, namespace: str, key: str) -> Optional[Any]:
        """Return the decoded value, or None if the key is missing."""
        async with self._db.connection() as conn:
            cur = await conn.execute(
                "SELECT value FROM KV_STORE WHERE area = ? AND namespace = ? AND key = ?",
                (area, namespace, key),
            )
            row = await cur.fetchone()
        if row is None:
            return None
        return json.loads(row[0])

    async def put(self, area: str, namespace: str, key: str, value: Any) -> None:
        """Insert or replace a JSON value."""
        encoded = json.dumps(value, ensure_ascii=False)
        async with self._db.connection() as conn:
            await conn.execute(
                "INSERT OR REPLACE INTO KV_STORE (area, namespace, key, value, updated_at) VALUES (?, ?, ?, ?, ?)",
                (area, namespace, key, encoded, int(time.time())),
            )
            await conn.commit()

    async def delete(self, area: str, namespace: str, key: str) -> bool:
        """Delete a key. Returns True if a row was removed."""
        async with self._db.connection() as conn:
            cur = await conn.execute(
                "DELETE FROM KV_STORE WHERE area = ? AND namespace = ? AND key = ?",
                (area, namespace, key),
            )
            await conn.commit()
            return cur.rowcount > 0


class TabStorage:
    """Per-tab view over `KeyValueDAL` (the session area of one tab)."""

    def __init__(self, dal: KeyValueDAL, tab_id: str) -> None:
        self._dal = dal
        self.tab_id = tab_id

    async def get(self, key: str) -> Optional[Any]:
        return await self._dal.get(SESSION_AREA, self.tab_id, key)

    async def put(self, key: str, value: Any) -> None:
        await self._dal.put(SESSION_AREA, self.tab_id, key, value)

    async def delete(self, key: str) -> None:
        await self._dal.delete(SESSION_AREA, self.tab_id, key)


class LocalStorage:
    """Storage shared by every tab (the local area)."""

    def __init__(self, dal: KeyValueDAL) -> None:
        self._dal = dal

    async def get(self, key: str) -> Optional[Any]:
        return await self._dal.get(LOCAL_AREA, LOCAL_NAMESPACE, key)

    async def put(self, key: str, value: Any) -> None:
        await self._dal.put(LOCAL_AREA, LOCAL_NAMESPACE, key, value)

    async def delete(self, key: str) -> None:
        await self._dal.delete(LOCAL_AREA, LOCAL_NAMESPACE, key)
