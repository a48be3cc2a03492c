from __future__ import annotations


from contextlib import contextmanager
import sqlite3
from pathlib import Path


DEFAULT_CONFIG: dict[str, str] = {
    "sessions_per_day": "8",
    "cooldown_sessions": "2",
    "deadline_buffer_days": "1",
    "max_days": "150",
}


class Db:
    def __init__(self, path: Path):
        self.path = path
        self.path.parent.mkdir(parents=True, exist_ok=True)

    @contextmanager
    def connect(self):
        con = sqlite3.connect(self.path, timeout=20.0)
        con.row_factory = sqlite3.Row
        # Per-connection pragma; needed for ON DELETE CASCADE
        con.execute("PRAGMA foreign_keys=ON;")
        try:
            yield con
            con.commit()
        except Exception:
            con.rollback()
            raise
        finally:
            con.close()

    def ensure_schema(self) -> None:
        con = sqlite3.connect(self.path, timeout=10.0)
        try:
            con.execute("PRAGMA journal_mode=WAL;")
            con.execute("PRAGMA foreign_keys=ON;")

            con.executescript(
                """
                CREATE TABLE IF NOT EXISTS audit_log (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp TEXT NOT NULL DEFAULT(datetime('now', 'localtime')),
                    category TEXT NOT NULL,
                    message TEXT NOT NULL,
                    details TEXT
                );

                CREATE TABLE IF NOT EXISTS app_config (
                    config_key TEXT PRIMARY KEY,
                    config_value TEXT NOT NULL,
                    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
                );

                CREATE TABLE IF NOT EXISTS orders (
                    order_id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    quantity INTEGER NOT NULL CHECK (quantity > 0),
                    deadline INTEGER NOT NULL,
                    color TEXT,
                    seq INTEGER NOT NULL,
                    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
                );

                CREATE TABLE IF NOT EXISTS order_steps (
                    order_id TEXT NOT NULL REFERENCES orders(order_id) ON DELETE CASCADE,
                    step TEXT NOT NULL,
                    duration INTEGER NOT NULL CHECK (duration > 0),
                    position INTEGER NOT NULL,
                    PRIMARY KEY (order_id, step)
                );

                CREATE TABLE IF NOT EXISTS progress (
                    order_id TEXT NOT NULL,
                    step TEXT NOT NULL,
                    remaining INTEGER NOT NULL CHECK (remaining >= 0),
                    ready_at INTEGER NOT NULL DEFAULT 0,
                    PRIMARY KEY (order_id, step),
                    FOREIGN KEY (order_id, step) REFERENCES order_steps(order_id, step) ON DELETE CASCADE
                );

                CREATE TABLE IF NOT EXISTS shift_state (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    current_day INTEGER NOT NULL DEFAULT 1,
                    start_date TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS blocked_session (
                    session INTEGER PRIMARY KEY
                );

                CREATE TABLE IF NOT EXISTS completed_unit (
                    unit_key TEXT PRIMARY KEY
                );

                CREATE TABLE IF NOT EXISTS last_schedule (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    generated_on TEXT NOT NULL,
                    start_day INTEGER NOT NULL,
                    entries_json TEXT NOT NULL,
                    error_json TEXT
                );
                """
            )

            con.executemany(
                "INSERT OR IGNORE INTO app_config(config_key, config_value) VALUES(?, ?)",
                list(DEFAULT_CONFIG.items()),
            )
            con.execute(
                "INSERT OR IGNORE INTO shift_state(id, current_day, start_date) VALUES(1, 1, date('now', 'localtime'))"
            )
            con.commit()
        finally:
            con.close()
