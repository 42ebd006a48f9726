import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from clickerbot.config.settings import DB_PATH


def get_connection() -> sqlite3.Connection:
    Path(DB_PATH).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(DB_PATH, timeout=10.0)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode = WAL;")
    conn.execute("PRAGMA busy_timeout = 10000;")
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


@contextmanager
def write_transaction() -> Iterator[sqlite3.Connection]:
    """Yield a connection holding the database write lock until commit."""
    conn = get_connection()
    try:
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")
    finally:
        conn.close()


def init_db() -> None:
    with get_connection() as conn:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS players (
                user_id INTEGER PRIMARY KEY,
                username TEXT NOT NULL DEFAULT '',
                first_name TEXT NOT NULL DEFAULT '',
                last_name TEXT NOT NULL DEFAULT '',
                language_code TEXT NOT NULL DEFAULT '',
                profile_photo_url TEXT NOT NULL DEFAULT '',
                score TEXT NOT NULL,
                click_value TEXT NOT NULL,
                auto_click_rate TEXT NOT NULL,
                offline_rate_per_hour TEXT NOT NULL,
                upgrade_levels TEXT NOT NULL DEFAULT '{}',
                is_banned INTEGER NOT NULL DEFAULT 0,
                is_admin INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                last_updated TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_players_username
                ON players (username COLLATE NOCASE);

            CREATE TABLE IF NOT EXISTS transactions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                sender_id INTEGER NOT NULL,
                receiver_id INTEGER NOT NULL,
                amount TEXT NOT NULL,
                receiver_username TEXT NOT NULL DEFAULT '',
                created_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_transactions_sender
                ON transactions (sender_id, id);
            CREATE INDEX IF NOT EXISTS idx_transactions_receiver
                ON transactions (receiver_id, id);

            CREATE TABLE IF NOT EXISTS action_logs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL,
                action_type TEXT NOT NULL,
                amount TEXT NOT NULL,
                details TEXT NOT NULL DEFAULT '',
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS admin_logs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                actor TEXT NOT NULL,
                action TEXT NOT NULL,
                target_user_id INTEGER,
                details TEXT NOT NULL DEFAULT '',
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS app_state (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            );
            """
        )
        _ensure_player_columns(conn)


def _ensure_player_columns(conn: sqlite3.Connection) -> None:
    columns = {
        row["name"]
        for row in conn.execute("PRAGMA table_info(players);").fetchall()
    }
    if not columns:
        return
    if "offline_rate_per_hour" not in columns:
        conn.execute(
            "ALTER TABLE players ADD COLUMN offline_rate_per_hour TEXT NOT NULL DEFAULT '0.000000000';"
        )
    if "upgrade_levels" not in columns:
        conn.execute(
            "ALTER TABLE players ADD COLUMN upgrade_levels TEXT NOT NULL DEFAULT '{}';"
        )
    if "is_admin" not in columns:
        conn.execute(
            "ALTER TABLE players ADD COLUMN is_admin INTEGER NOT NULL DEFAULT 0;"
        )
