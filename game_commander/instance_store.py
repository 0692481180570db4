"""
Game Commander — Instance Store (SQLite)
═══════════════════════════════════════════
One row per instance, keyed by id, holding the full Instance document as
JSON. This is the source of truth for inspection and container recreation;
container handles are only a cache on top of it.
"""

import os
import sqlite3
import logging
from datetime import datetime, timezone
from typing import Optional, List

from . import config
from .models import Instance

logger = logging.getLogger(__name__)


class InstanceStore:
    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path or config.DB_PATH
        self.init_db()

    def _get_conn(self) -> sqlite3.Connection:
        os.makedirs(os.path.dirname(self.db_path) or ".", exist_ok=True)
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def init_db(self):
        conn = self._get_conn()
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS instances (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    record_json TEXT NOT NULL,
                    created_at TEXT,
                    updated_at TEXT
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS instance_log (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    instance_id TEXT,
                    action TEXT,
                    details TEXT,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP
                )
            """)
            conn.commit()
        finally:
            conn.close()

    # ── CRUD ─────────────────────────────────────────────

    def save(self, instance: Instance) -> Instance:
        """Insert or replace the full record."""
        conn = self._get_conn()
        try:
            conn.execute("""
                INSERT INTO instances (id, name, record_json, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name=excluded.name, record_json=excluded.record_json,
                    updated_at=excluded.updated_at
            """, (
                instance.id, instance.name, instance.model_dump_json(),
                instance.created_at, datetime.now(timezone.utc).isoformat(),
            ))
            conn.commit()
            return instance
        finally:
            conn.close()

    def get(self, instance_id: str) -> Optional[Instance]:
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT record_json FROM instances WHERE id = ?", (instance_id,)
            ).fetchone()
            return Instance.model_validate_json(row["record_json"]) if row else None
        finally:
            conn.close()

    def list(self) -> List[Instance]:
        conn = self._get_conn()
        try:
            rows = conn.execute(
                "SELECT record_json FROM instances ORDER BY created_at"
            ).fetchall()
            return [Instance.model_validate_json(r["record_json"]) for r in rows]
        finally:
            conn.close()

    def delete(self, instance_id: str) -> bool:
        conn = self._get_conn()
        try:
            cursor = conn.execute("DELETE FROM instances WHERE id = ?", (instance_id,))
            conn.commit()
            return cursor.rowcount > 0
        finally:
            conn.close()

    # ── Audit Log ────────────────────────────────────────

    def log_action(self, instance_id: str, action: str, details: str = ""):
        conn = self._get_conn()
        try:
            conn.execute(
                "INSERT INTO instance_log (instance_id, action, details) VALUES (?, ?, ?)",
                (instance_id, action, details),
            )
            conn.commit()
        finally:
            conn.close()

    def get_audit_log(self, instance_id: Optional[str] = None, limit: int = 50) -> List[dict]:
        conn = self._get_conn()
        try:
            if instance_id:
                rows = conn.execute(
                    "SELECT * FROM instance_log WHERE instance_id = ? ORDER BY id DESC LIMIT ?",
                    (instance_id, limit),
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM instance_log ORDER BY id DESC LIMIT ?", (limit,)
                ).fetchall()
            return [dict(r) for r in rows]
        finally:
            conn.close()
