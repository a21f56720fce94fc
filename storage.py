import asyncio
import json
import logging
import aiosqlite
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class Storage:
    def __init__(self, db_path: str):
        self.db_path = db_path
        self._conn: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()

    async def _ensure_conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            self._conn = await aiosqlite.connect(self.db_path)
            # PRAGMA has to be set on every new connection
            cur = await self._conn.execute("PRAGMA journal_mode=WAL;")
            await cur.close()
            cur = await self._conn.execute("PRAGMA synchronous=NORMAL;")
            await cur.close()
        return self._conn

    @asynccontextmanager
    async def _db(self):
        # One SQLite connection, requests serialised
        async with self._lock:
            db = await self._ensure_conn()
            try:
                yield db
            except Exception:
                # roll back a write that failed before commit, otherwise the next
                # statement hits "cannot start a transaction within a transaction"
                try:
                    if getattr(db, "in_transaction", False):
                        await db.rollback()
                finally:
                    raise

    async def aclose(self) -> None:
        async with self._lock:
            if self._conn is not None:
                await self._conn.close()
                self._conn = None

    async def init(self) -> None:
        async with self._db() as db:
            await db.execute(
                """
                CREATE TABLE IF NOT EXISTS chat_settings (
                    scope      TEXT NOT NULL,
                    chat_id    INTEGER NOT NULL,
                    option     TEXT NOT NULL,
                    value_json TEXT NOT NULL,
                    PRIMARY KEY(scope, chat_id, option)
                )
                """
            )
            await db.execute(
                """
                CREATE TABLE IF NOT EXISTS kv (
                    name  TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
                """
            )
            await db.commit()

    # -----------------------------
    # Named values
    # -----------------------------
    async def get_value(self, name: str, default: Optional[str] = None) -> Optional[str]:
        async with self._db() as db:
            cur = await db.execute("SELECT value FROM kv WHERE name=?", (name,))
            row = await cur.fetchone()
            await cur.close()
            return row[0] if row else default

    async def set_value(self, name: str, value: str) -> None:
        async with self._db() as db:
            await db.execute(
                """
                INSERT INTO kv(name, value) VALUES (?, ?)
                ON CONFLICT(name) DO UPDATE SET value=excluded.value
                """,
                (name, str(value)),
            )
            await db.commit()

    # -----------------------------
    # Per-chat overrides
    # -----------------------------
    async def get_overrides(self, scope: str, chat_id: int) -> Dict[str, Any]:
        async with self._db() as db:
            cur = await db.execute(
                "SELECT option, value_json FROM chat_settings WHERE scope=? AND chat_id=? ORDER BY rowid",
                (scope, int(chat_id)),
            )
            rows = await cur.fetchall()
            await cur.close()

        out: Dict[str, Any] = {}
        for option, value_json in rows:
            try:
                out[option] = json.loads(value_json)
            except ValueError:
                logger.warning("Dropping unreadable setting %s for chat %s: %r", option, chat_id, value_json)
        return out

    async def set_override(self, scope: str, chat_id: int, option: str, value: Any) -> None:
        async with self._db() as db:
            await db.execute(
                """
                INSERT INTO chat_settings(scope, chat_id, option, value_json)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(scope, chat_id, option) DO UPDATE SET value_json=excluded.value_json
                """,
                (scope, int(chat_id), option, json.dumps(value)),
            )
            await db.commit()

    async def delete_override(self, scope: str, chat_id: int, option: str) -> None:
        async with self._db() as db:
            await db.execute(
                "DELETE FROM chat_settings WHERE scope=? AND chat_id=? AND option=?",
                (scope, int(chat_id), option),
            )
            await db.commit()

    async def clear_overrides(self, scope: str, chat_id: int) -> None:
        async with self._db() as db:
            await db.execute("DELETE FROM chat_settings WHERE scope=? AND chat_id=?", (scope, int(chat_id)))
            await db.commit()


class SettingsStore:
    """
    Per-chat print options for one printer.

    Reads merge the process-wide default record under the chat's stored
    overrides; writes store a single override. Reset drops every override so
    the chat sees the current defaults again.
    """

    def __init__(self, db: Storage, scope: str, defaults: Optional[Dict[str, Any]] = None) -> None:
        self._db = db
        self.scope = scope
        self._defaults: Dict[str, Any] = dict(defaults or {})

    @property
    def defaults(self) -> Dict[str, Any]:
        return dict(self._defaults)

    def set_defaults(self, record: Dict[str, Any]) -> None:
        self._defaults = dict(record)

    async def get(self, chat_id: int) -> Dict[str, Any]:
        record = dict(self._defaults)
        record.update(await self._db.get_overrides(self.scope, chat_id))
        return record

    async def get_property(self, chat_id: int, option: str) -> Optional[Any]:
        return (await self.get(chat_id)).get(option)

    async def get_stored(self, chat_id: int, option: str) -> Optional[Any]:
        """The chat's own override for option, ignoring defaults."""
        return (await self._db.get_overrides(self.scope, chat_id)).get(option)

    async def set_property(self, chat_id: int, option: str, value: Any) -> None:
        await self._db.set_override(self.scope, chat_id, option, value)

    async def unset_property(self, chat_id: int, option: str) -> None:
        await self._db.delete_override(self.scope, chat_id, option)

    async def reset(self, chat_id: int) -> None:
        await self._db.clear_overrides(self.scope, chat_id)
