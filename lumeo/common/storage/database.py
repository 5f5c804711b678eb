import sqlite3
import json
import time
import logging
from contextlib import contextmanager
from typing import List, Optional

from lumeo.common import config
from lumeo.common.storage.client import PersistenceAdapter

class SQLitePersistence(PersistenceAdapter):
    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path or config.DB_PATH
        self.logger = logging.getLogger("lumeo.storage.sqlite")
        self._init_db()

    @contextmanager
    def _get_conn(self):
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def _init_db(self):
        with self._get_conn() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS snapshots (
                    snapshot_key TEXT PRIMARY KEY,
                    entries JSON NOT NULL,
                    updated_at REAL
                )
            """)
            conn.commit()
            self.logger.info(f"SQLitePersistence initialized at {self.db_path}")

    def save(self, key: str, values: List[str]) -> None:
        with self._get_conn() as conn:
            conn.execute("""
                INSERT INTO snapshots (snapshot_key, entries, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(snapshot_key) DO UPDATE SET
                    entries = excluded.entries,
                    updated_at = excluded.updated_at
            """, (key, json.dumps(list(values)), time.time()))
            conn.commit()

    def load(self, key: str) -> List[str]:
        with self._get_conn() as conn:
            row = conn.execute("SELECT entries FROM snapshots WHERE snapshot_key = ?", (key,)).fetchone()
            if row is None:
                return []
            return [str(v) for v in json.loads(row["entries"])]
