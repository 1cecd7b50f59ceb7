import json
import sqlite3
import threading
import time
from typing import Optional, Dict, List, Any

class StorageDB:
    def __init__(self, db_path: str):
        self.conn = sqlite3.connect(db_path, check_same_thread=False)
        self.cursor = self.conn.cursor()
        self._lock = threading.Lock()
        self._init_db()

    def _init_db(self):
        with self._lock:
            # State table: Key-Value store for provider/delegator/grant records
            self.cursor.execute('''
                CREATE TABLE IF NOT EXISTS state (
                    key TEXT PRIMARY KEY,
                    value TEXT
                )
            ''')
            # Operations journal: one row per committed operation
            self.cursor.execute('''
                CREATE TABLE IF NOT EXISTS operations (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    op TEXT,
                    caller TEXT,
                    epoch INTEGER,
                    data TEXT,
                    created_at INTEGER
                )
            ''')
            self.conn.commit()

    # --- State Methods ---
    def get_state(self, key: str) -> Optional[str]:
        with self._lock:
            self.cursor.execute('SELECT value FROM state WHERE key = ?', (key,))
            row = self.cursor.fetchone()
            return row[0] if row else None

    def write_batch(self, updates: Dict[str, str], deletes: List[str]):
        """Applies a set of writes and deletes in a single sqlite transaction."""
        with self._lock:
            try:
                for key in deletes:
                    self.cursor.execute('DELETE FROM state WHERE key = ?', (key,))
                for key, value in updates.items():
                    self.cursor.execute('INSERT OR REPLACE INTO state (key, value) VALUES (?, ?)', (key, value))
                self.conn.commit()
            except sqlite3.Error:
                self.conn.rollback()
                raise

    def has_state(self, prefix: str) -> bool:
        with self._lock:
            self.cursor.execute('SELECT 1 FROM state WHERE key LIKE ? LIMIT 1', (f"{prefix}%",))
            return self.cursor.fetchone() is not None

    # --- Journal Methods ---
    def append_operation(self, op: str, caller: str, epoch: int, data: Dict[str, Any]) -> int:
        with self._lock:
            self.cursor.execute(
                'INSERT INTO operations (op, caller, epoch, data, created_at) VALUES (?, ?, ?, ?, ?)',
                (op, caller, epoch, json.dumps(data), int(time.time()))
            )
            self.conn.commit()
            return self.cursor.lastrowid

    def get_operations(self, limit: int = 100, caller: Optional[str] = None) -> List[Dict[str, Any]]:
        with self._lock:
            if caller:
                self.cursor.execute(
                    'SELECT id, op, caller, epoch, data, created_at FROM operations WHERE caller = ? ORDER BY id DESC LIMIT ?',
                    (caller, limit)
                )
            else:
                self.cursor.execute(
                    'SELECT id, op, caller, epoch, data, created_at FROM operations ORDER BY id DESC LIMIT ?',
                    (limit,)
                )
            rows = self.cursor.fetchall()
        return [
            {
                "id": row[0],
                "op": row[1],
                "caller": row[2],
                "epoch": row[3],
                "data": json.loads(row[4]),
                "created_at": row[5],
            }
            for row in rows
        ]

    def close(self):
        with self._lock:
            self.conn.close()
