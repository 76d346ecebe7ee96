"""Persistence for settings, threads and relayed messages."""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import closing
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

from .models import SavedMessage, SenderIdentity, Settings, Thread

_DB_PRAGMA = "PRAGMA journal_mode=WAL;" "PRAGMA synchronous=NORMAL;"

_SETTINGS_PREFIX = "settings."
_OFFSET_KEY = "state.telegram.offset"

logger = logging.getLogger(__name__)


class DataStore(Protocol):
    def get_settings(self) -> Settings | None: ...

    def save_settings(self, settings: Settings) -> Settings: ...

    def get_thread_by_user_id(self, user_id: str) -> Thread | None: ...

    def get_thread_by_id(self, thread_id: int | str) -> Thread | None: ...

    def save_thread(self, thread: Thread) -> Thread: ...

    def clear_threads(self) -> int: ...

    def save_message(self, message: SavedMessage) -> SavedMessage: ...

    def get_messages_by_user_id(self, user_id: str) -> list[SavedMessage]: ...


class SQLiteStore:
    """SQLite backed :class:`DataStore`."""

    def __init__(self, path: Path):
        self._path = path
        self._conn = sqlite3.connect(self._path)
        self._conn.row_factory = sqlite3.Row
        self._setup()

    # ------------------------------------------------------------------
    # Schema initialisation
    # ------------------------------------------------------------------
    def _setup(self) -> None:
        with closing(self._conn.cursor()) as cur:
            for statement in _DB_PRAGMA.split(";"):
                if statement.strip():
                    cur.execute(statement)
            cur.executescript(
                """
                CREATE TABLE IF NOT EXISTS settings (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS threads (
                    user_id TEXT PRIMARY KEY,
                    thread_id INTEGER NOT NULL UNIQUE,
                    chat_id TEXT NOT NULL,
                    name TEXT DEFAULT '',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    last_message_id TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS messages (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT NOT NULL,
                    chat_id TEXT NOT NULL,
                    sender_id TEXT NOT NULL,
                    sender TEXT NOT NULL,
                    kind TEXT NOT NULL,
                    text TEXT DEFAULT '',
                    media_id TEXT,
                    media_type TEXT,
                    caption TEXT,
                    quote TEXT,
                    reply_to_message_id TEXT,
                    forward_origin TEXT,
                    original_message_id TEXT,
                    timestamp TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS messages_by_sender ON messages(sender_id);
                CREATE INDEX IF NOT EXISTS messages_by_chat ON messages(chat_id);
                """
            )
            self._conn.commit()

    # ------------------------------------------------------------------
    # Key/value helpers
    # ------------------------------------------------------------------
    def _set_values(self, values: dict[str, str | None]) -> None:
        with closing(self._conn.cursor()) as cur:
            for key, value in values.items():
                if value is None:
                    cur.execute("DELETE FROM settings WHERE key=?", (key,))
                else:
                    cur.execute(
                        "INSERT INTO settings(key, value) VALUES(?, ?)"
                        " ON CONFLICT(key) DO UPDATE SET value=excluded.value",
                        (key, value),
                    )
            self._conn.commit()

    def _get_value(self, key: str) -> str | None:
        with closing(self._conn.cursor()) as cur:
            cur.execute("SELECT value FROM settings WHERE key=?", (key,))
            row = cur.fetchone()
        return str(row["value"]) if row else None

    def set_update_offset(self, offset: int) -> None:
        self._set_values({_OFFSET_KEY: str(max(0, int(offset)))})

    def get_update_offset(self) -> int | None:
        value = self._get_value(_OFFSET_KEY)
        if value is None:
            return None
        try:
            parsed = int(value)
        except (TypeError, ValueError):
            return None
        return max(0, parsed)

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------
    def get_settings(self) -> Settings | None:
        with closing(self._conn.cursor()) as cur:
            cur.execute(
                "SELECT key, value FROM settings WHERE key LIKE ?",
                (f"{_SETTINGS_PREFIX}%",),
            )
            rows = cur.fetchall()
        values = {str(row["key"])[len(_SETTINGS_PREFIX):]: str(row["value"]) for row in rows}
        admin_group_id = values.get("admin_group_id")
        if not admin_group_id:
            return None
        return Settings(
            admin_group_id=admin_group_id,
            setup_at=_parse_timestamp(values.get("setup_at")) or _utcnow(),
            setup_by=_identity_from_json(values.get("setup_by")),
            ack=values.get("ack"),
            greeting=values.get("greeting"),
            failure=values.get("failure"),
        )

    def save_settings(self, settings: Settings) -> Settings:
        self._set_values(
            {
                f"{_SETTINGS_PREFIX}admin_group_id": settings.admin_group_id,
                f"{_SETTINGS_PREFIX}setup_at": settings.setup_at.isoformat(),
                f"{_SETTINGS_PREFIX}setup_by": json.dumps(settings.setup_by.as_dict()),
                f"{_SETTINGS_PREFIX}ack": settings.ack,
                f"{_SETTINGS_PREFIX}greeting": settings.greeting,
                f"{_SETTINGS_PREFIX}failure": settings.failure,
            }
        )
        return settings

    # ------------------------------------------------------------------
    # Threads
    # ------------------------------------------------------------------
    def get_thread_by_user_id(self, user_id: str) -> Thread | None:
        with closing(self._conn.cursor()) as cur:
            cur.execute("SELECT * FROM threads WHERE user_id=?", (str(user_id),))
            row = cur.fetchone()
        return _thread_from_row(row) if row else None

    def get_thread_by_id(self, thread_id: int | str) -> Thread | None:
        try:
            key = int(thread_id)
        except (TypeError, ValueError):
            return None
        with closing(self._conn.cursor()) as cur:
            cur.execute("SELECT * FROM threads WHERE thread_id=?", (key,))
            row = cur.fetchone()
        return _thread_from_row(row) if row else None

    def save_thread(self, thread: Thread) -> Thread:
        with closing(self._conn.cursor()) as cur:
            # A recreated topic replaces the row of the same user; drop any
            # stale row still holding the new topic id.
            cur.execute(
                "DELETE FROM threads WHERE thread_id=? AND user_id<>?",
                (thread.thread_id, thread.user_id),
            )
            cur.execute(
                "INSERT INTO threads(user_id, thread_id, chat_id, name, created_at,"
                " updated_at, last_message_id) VALUES(?, ?, ?, ?, ?, ?, ?)"
                " ON CONFLICT(user_id) DO UPDATE SET thread_id=excluded.thread_id,"
                " chat_id=excluded.chat_id, name=excluded.name,"
                " updated_at=excluded.updated_at, last_message_id=excluded.last_message_id",
                (
                    thread.user_id,
                    int(thread.thread_id),
                    thread.chat_id,
                    thread.name,
                    thread.created_at.isoformat(),
                    thread.updated_at.isoformat(),
                    thread.last_message_id,
                ),
            )
            self._conn.commit()
        return thread

    def clear_threads(self) -> int:
        """Forget every user's topic. Returns the number of rows removed."""

        with closing(self._conn.cursor()) as cur:
            cur.execute("DELETE FROM threads")
            removed = cur.rowcount
            self._conn.commit()
        return removed

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------
    def save_message(self, message: SavedMessage) -> SavedMessage:
        with closing(self._conn.cursor()) as cur:
            cur.execute(
                "INSERT INTO messages(id, chat_id, sender_id, sender, kind, text, media_id,"
                " media_type, caption, quote, reply_to_message_id, forward_origin,"
                " original_message_id, timestamp)"
                " VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    message.id,
                    message.chat_id,
                    message.sender.user_id,
                    json.dumps(message.sender.as_dict()),
                    message.type,
                    message.text,
                    message.media_id,
                    message.media_type,
                    message.caption,
                    message.quote,
                    message.reply_to_message_id,
                    json.dumps(message.forward_origin) if message.forward_origin else None,
                    message.original_message_id,
                    message.timestamp.isoformat(),
                ),
            )
            self._conn.commit()
        return message

    def get_messages_by_user_id(self, user_id: str) -> list[SavedMessage]:
        """Return messages sent by ``user_id`` and replies delivered to them."""

        with closing(self._conn.cursor()) as cur:
            cur.execute(
                "SELECT * FROM messages WHERE sender_id=? OR (kind='admin' AND chat_id=?)"
                " ORDER BY seq DESC",
                (str(user_id), str(user_id)),
            )
            rows = cur.fetchall()
        return [_message_from_row(row) for row in rows]

    def close(self) -> None:
        self._conn.close()


class MemoryStore:
    """In-process :class:`DataStore` for tests and dry runs.

    Not safe for concurrent writers.
    """

    def __init__(self) -> None:
        logger.info("Using in-memory store")
        self._settings: Settings | None = None
        self._threads: dict[str, Thread] = {}
        self._messages: list[SavedMessage] = []
        self._offset: int | None = None

    def get_settings(self) -> Settings | None:
        return self._settings

    def save_settings(self, settings: Settings) -> Settings:
        self._settings = settings
        return settings

    def get_thread_by_user_id(self, user_id: str) -> Thread | None:
        return self._threads.get(str(user_id))

    def get_thread_by_id(self, thread_id: int | str) -> Thread | None:
        for thread in self._threads.values():
            if str(thread.thread_id) == str(thread_id):
                return thread
        return None

    def save_thread(self, thread: Thread) -> Thread:
        self._threads[thread.user_id] = thread
        return thread

    def clear_threads(self) -> int:
        removed = len(self._threads)
        self._threads.clear()
        return removed

    def save_message(self, message: SavedMessage) -> SavedMessage:
        self._messages.append(message)
        return message

    def get_messages_by_user_id(self, user_id: str) -> list[SavedMessage]:
        key = str(user_id)
        return [
            message
            for message in reversed(self._messages)
            if message.sender.user_id == key
            or (message.type == "admin" and message.chat_id == key)
        ]

    def set_update_offset(self, offset: int) -> None:
        self._offset = max(0, int(offset))

    def get_update_offset(self) -> int | None:
        return self._offset

    def close(self) -> None:
        return None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(value: object) -> datetime | None:
    if value is None:
        return None
    text = str(value)
    if not text:
        return None
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        try:
            return datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None


def _identity_from_json(payload: str | None) -> SenderIdentity:
    data: dict[str, Any] = {}
    if payload:
        try:
            loaded = json.loads(payload)
        except ValueError:
            loaded = None
        if isinstance(loaded, dict):
            data = loaded
    return SenderIdentity(
        user_id=str(data.get("user_id") or ""),
        first_name=data.get("first_name"),
        last_name=data.get("last_name"),
        username=data.get("username"),
    )


def _thread_from_row(row: sqlite3.Row) -> Thread:
    return Thread(
        user_id=str(row["user_id"]),
        thread_id=int(row["thread_id"]),
        chat_id=str(row["chat_id"]),
        name=str(row["name"] or ""),
        created_at=_parse_timestamp(row["created_at"]) or _utcnow(),
        updated_at=_parse_timestamp(row["updated_at"]) or _utcnow(),
        last_message_id=str(row["last_message_id"]),
    )


def _message_from_row(row: sqlite3.Row) -> SavedMessage:
    forward_origin = None
    if row["forward_origin"]:
        try:
            forward_origin = json.loads(row["forward_origin"])
        except ValueError:
            forward_origin = None
    return SavedMessage(
        id=str(row["id"]),
        chat_id=str(row["chat_id"]),
        sender=_identity_from_json(row["sender"]),
        type="admin" if row["kind"] == "admin" else "user",
        text=str(row["text"] or ""),
        timestamp=_parse_timestamp(row["timestamp"]) or _utcnow(),
        media_id=row["media_id"],
        media_type=row["media_type"],
        caption=row["caption"],
        quote=row["quote"],
        reply_to_message_id=row["reply_to_message_id"],
        forward_origin=forward_origin,
        original_message_id=row["original_message_id"],
    )
