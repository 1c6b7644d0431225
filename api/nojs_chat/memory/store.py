from __future__ import annotations

import sqlite3
from datetime import datetime, timedelta, timezone
from functools import wraps
from typing import Any, Callable, Dict, List, Optional, TypeVar

from nojs_chat.core.errors import PersistenceError
from nojs_chat.db.sqlite import fetch_all, fetch_one, tx

T = TypeVar("T")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(dt: datetime) -> str:
    # fixed width so that string comparison in SQL matches time order
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def utc_now_iso() -> str:
    return to_iso(utc_now())


def _store_op(fn: Callable[..., T]) -> Callable[..., T]:
    @wraps(fn)
    def wrapper(*args: Any, **kwargs: Any) -> T:
        try:
            return fn(*args, **kwargs)
        except sqlite3.Error as e:
            raise PersistenceError(f"Database operation failed: {e}") from e

    return wrapper


@_store_op
def insert_chat(conn, session_id: str, selected_model: Optional[str], system_prompt: str = "") -> None:
    now = utc_now_iso()
    with tx(conn):
        conn.execute(
            """
            INSERT INTO chats (session_id, system_prompt, selected_model, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(session_id) DO NOTHING
            """,
            (session_id, system_prompt, selected_model, now, now),
        )


def _messages_for(conn, session_id: str) -> List[Dict[str, Any]]:
    return fetch_all(
        conn,
        """
        SELECT role, content, timestamp
        FROM chat_messages
        WHERE session_id = ?
        ORDER BY id ASC
        """,
        (session_id,),
    )


@_store_op
def get_chat(conn, session_id: str) -> Optional[Dict[str, Any]]:
    row = fetch_one(conn, "SELECT * FROM chats WHERE session_id = ?", (session_id,))
    if not row:
        return None
    row["messages"] = _messages_for(conn, session_id)
    return row


@_store_op
def append_message(conn, session_id: str, role: str, content: str) -> Optional[str]:
    """
    Single-statement insert plus updated_at bump in one transaction.
    Concurrent appends to the same chat never overwrite each other.
    Returns None (and writes nothing) when the chat does not exist.
    """
    now = utc_now_iso()
    with tx(conn):
        cur = conn.execute(
            "UPDATE chats SET updated_at = ? WHERE session_id = ?",
            (now, session_id),
        )
        if cur.rowcount == 0:
            return None
        conn.execute(
            """
            INSERT INTO chat_messages (session_id, role, content, timestamp)
            VALUES (?, ?, ?, ?)
            """,
            (session_id, role, content, now),
        )
    return now


_UPDATABLE = ("system_prompt", "selected_model")


@_store_op
def update_chat_fields(conn, session_id: str, **fields: Any) -> bool:
    unknown = set(fields) - set(_UPDATABLE)
    if unknown:
        raise ValueError(f"unknown chat fields: {sorted(unknown)}")
    if not fields:
        return False

    cols = [f"{k} = ?" for k in fields]
    params = list(fields.values())
    cols.append("updated_at = ?")
    params.append(utc_now_iso())
    params.append(session_id)
    with tx(conn):
        cur = conn.execute(
            f"UPDATE chats SET {', '.join(cols)} WHERE session_id = ?",
            tuple(params),
        )
    return cur.rowcount > 0


@_store_op
def set_selected_model_if_missing(conn, session_id: str, model: str) -> bool:
    """Back-fill without touching updated_at; returns True if a row changed."""
    with tx(conn):
        cur = conn.execute(
            """
            UPDATE chats SET selected_model = ?
            WHERE session_id = ? AND (selected_model IS NULL OR selected_model = '')
            """,
            (model, session_id),
        )
    return cur.rowcount > 0


@_store_op
def clear_messages(conn, session_id: str) -> None:
    with tx(conn):
        conn.execute("DELETE FROM chat_messages WHERE session_id = ?", (session_id,))
        conn.execute(
            "UPDATE chats SET updated_at = ? WHERE session_id = ?",
            (utc_now_iso(), session_id),
        )


@_store_op
def list_chats(conn, limit: int = 100, skip: int = 0) -> List[Dict[str, Any]]:
    rows = fetch_all(
        conn,
        """
        SELECT * FROM chats
        ORDER BY updated_at DESC, created_at DESC, session_id ASC
        LIMIT ? OFFSET ?
        """,
        (limit, skip),
    )
    for row in rows:
        row["messages"] = _messages_for(conn, row["session_id"])
    return rows


@_store_op
def delete_chat(conn, session_id: str) -> bool:
    with tx(conn):
        conn.execute("DELETE FROM chat_messages WHERE session_id = ?", (session_id,))
        cur = conn.execute("DELETE FROM chats WHERE session_id = ?", (session_id,))
    return cur.rowcount > 0


@_store_op
def count_chats_older_than(conn, cutoff: datetime) -> int:
    row = fetch_one(
        conn,
        "SELECT COUNT(*) AS c FROM chats WHERE updated_at < ?",
        (to_iso(cutoff),),
    )
    return int(row["c"]) if row else 0


@_store_op
def delete_chats_older_than(conn, cutoff: datetime) -> int:
    cutoff_iso = to_iso(cutoff)
    with tx(conn):
        conn.execute(
            """
            DELETE FROM chat_messages WHERE session_id IN (
                SELECT session_id FROM chats WHERE updated_at < ?
            )
            """,
            (cutoff_iso,),
        )
        cur = conn.execute("DELETE FROM chats WHERE updated_at < ?", (cutoff_iso,))
    return cur.rowcount


def purge_expired(conn, retention_days: int) -> int:
    """Storage-level expiry window, independent of the service cleanup."""
    if retention_days <= 0:
        return 0
    return delete_chats_older_than(conn, utc_now() - timedelta(days=retention_days))


def ping(conn) -> bool:
    try:
        conn.execute("SELECT 1").fetchone()
        return True
    except sqlite3.Error:
        return False
