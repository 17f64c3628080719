# Version History
# v1.0 - SQLite helpers for web push subscriptions keyed by endpoint.

from __future__ import annotations

import os
import sqlite3
from datetime import datetime, timezone
from typing import Any

DB_PATH = os.getenv("GRIDLEAD_DB_PATH", os.path.join(os.path.dirname(__file__), "gridlead.db"))


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def _connect() -> sqlite3.Connection:
    conn = sqlite3.connect(DB_PATH)
    conn.row_factory = sqlite3.Row
    return conn


def init_db() -> None:
    with _connect() as conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS web_push_subscriptions (
                endpoint TEXT PRIMARY KEY,
                user_id TEXT,
                p256dh TEXT NOT NULL,
                auth TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )
        conn.commit()


def upsert_subscription(subscription: dict[str, Any], user_id: str | None = None) -> None:
    now_iso = _now_iso()
    endpoint = subscription["endpoint"]
    p256dh = subscription["keys"]["p256dh"]
    auth = subscription["keys"]["auth"]

    with _connect() as conn:
        conn.execute(
            """
            INSERT INTO web_push_subscriptions (endpoint, user_id, p256dh, auth, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(endpoint) DO UPDATE SET
                user_id=COALESCE(excluded.user_id, web_push_subscriptions.user_id),
                p256dh=excluded.p256dh,
                auth=excluded.auth,
                updated_at=excluded.updated_at
            """,
            (endpoint, user_id, p256dh, auth, now_iso, now_iso),
        )
        conn.commit()


def remove_subscription(endpoint: str) -> bool:
    with _connect() as conn:
        cur = conn.execute("DELETE FROM web_push_subscriptions WHERE endpoint = ?", (endpoint,))
        conn.commit()
        return cur.rowcount > 0
