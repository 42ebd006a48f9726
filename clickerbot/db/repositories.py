from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from decimal import Decimal
from typing import Iterator

from clickerbot.config.settings import (
    START_AUTO_CLICK_RATE,
    START_CLICK_VALUE,
    START_OFFLINE_RATE_PER_HOUR,
    START_SCORE,
)
from clickerbot.db.database import get_connection
from clickerbot.services.money import ZERO, money, money_str

PROFILE_FIELDS = (
    "username",
    "first_name",
    "last_name",
    "language_code",
    "profile_photo_url",
)
MONEY_FIELDS = (
    "score",
    "click_value",
    "auto_click_rate",
    "offline_rate_per_hour",
)
RANKABLE_COLUMNS = frozenset(MONEY_FIELDS)


@contextmanager
def _using(conn: sqlite3.Connection | None) -> Iterator[sqlite3.Connection]:
    if conn is not None:
        yield conn
        return
    with get_connection() as own:
        yield own


def _parse_levels(raw: object) -> dict[str, int]:
    try:
        data = json.loads(str(raw or "{}"))
    except json.JSONDecodeError:
        return {}
    if not isinstance(data, dict):
        return {}
    out: dict[str, int] = {}
    for key, value in data.items():
        try:
            level = int(value)
        except (TypeError, ValueError):
            continue
        if level > 0:
            out[str(key)] = level
    return out


def _player_from_row(row: sqlite3.Row) -> dict:
    player = dict(row)
    for field in MONEY_FIELDS:
        player[field] = money(player.get(field) or "0")
    player["upgrade_levels"] = _parse_levels(player.get("upgrade_levels"))
    player["is_banned"] = bool(player.get("is_banned", 0))
    player["is_admin"] = bool(player.get("is_admin", 0))
    return player


def get_player(user_id: int, conn: sqlite3.Connection | None = None) -> dict | None:
    with _using(conn) as c:
        row = c.execute(
            "SELECT * FROM players WHERE user_id = ?",
            (user_id,),
        ).fetchone()
    return None if row is None else _player_from_row(row)


def get_player_by_username(
    username: str,
    conn: sqlite3.Connection | None = None,
) -> dict | None:
    with _using(conn) as c:
        row = c.execute(
            """
            SELECT *
            FROM players
            WHERE username = ? COLLATE NOCASE
            ORDER BY user_id ASC
            LIMIT 1
            """,
            (username,),
        ).fetchone()
    return None if row is None else _player_from_row(row)


def insert_player(
    user_id: int,
    created_at: str,
    profile: dict | None = None,
    conn: sqlite3.Connection | None = None,
) -> bool:
    profile = profile or {}
    values = [str(profile.get(field) or "") for field in PROFILE_FIELDS]
    with _using(conn) as c:
        cur = c.execute(
            """
            INSERT OR IGNORE INTO players (
                user_id, username, first_name, last_name, language_code, profile_photo_url,
                score, click_value, auto_click_rate, offline_rate_per_hour,
                upgrade_levels, is_banned, is_admin, created_at, last_updated
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, '{}', 0, 0, ?, ?)
            """,
            (
                user_id,
                *values,
                money_str(START_SCORE),
                money_str(START_CLICK_VALUE),
                money_str(START_AUTO_CLICK_RATE),
                money_str(START_OFFLINE_RATE_PER_HOUR),
                created_at,
                created_at,
            ),
        )
        return cur.rowcount > 0


def update_player_profile(
    user_id: int,
    profile: dict,
    conn: sqlite3.Connection | None = None,
) -> bool:
    sets: list[str] = []
    values: list[object] = []
    for field in PROFILE_FIELDS:
        if field not in profile or profile[field] is None:
            continue
        sets.append(f"{field} = ?")
        values.append(str(profile[field]))
    if not sets:
        return False
    with _using(conn) as c:
        cur = c.execute(
            f"""
            UPDATE players
            SET {", ".join(sets)}
            WHERE user_id = ?
            """,
            (*values, user_id),
        )
        return cur.rowcount > 0


def compare_and_set_score(
    conn: sqlite3.Connection,
    user_id: int,
    expected: Decimal,
    new_score: Decimal,
    *,
    last_updated: str | None = None,
) -> bool:
    """Write `new_score` only if the stored score still equals `expected`."""
    if last_updated is None:
        cur = conn.execute(
            """
            UPDATE players
            SET score = ?
            WHERE user_id = ? AND score = ?
            """,
            (money_str(new_score), user_id, money_str(expected)),
        )
    else:
        cur = conn.execute(
            """
            UPDATE players
            SET score = ?, last_updated = ?
            WHERE user_id = ? AND score = ?
            """,
            (money_str(new_score), last_updated, user_id, money_str(expected)),
        )
    return cur.rowcount == 1


def update_player_economy(
    conn: sqlite3.Connection,
    user_id: int,
    expected_score: Decimal,
    *,
    score: Decimal,
    rates: dict[str, Decimal],
    upgrade_levels: dict[str, int],
) -> bool:
    sets = ["score = ?", "upgrade_levels = ?"]
    values: list[object] = [
        money_str(score),
        json.dumps(upgrade_levels, separators=(",", ":"), sort_keys=True),
    ]
    for field, value in rates.items():
        if field not in MONEY_FIELDS or field == "score":
            raise KeyError(f"Unknown rate field: {field}")
        sets.append(f"{field} = ?")
        values.append(money_str(value))
    cur = conn.execute(
        f"""
        UPDATE players
        SET {", ".join(sets)}
        WHERE user_id = ? AND score = ?
        """,
        (*values, user_id, money_str(expected_score)),
    )
    return cur.rowcount == 1


def set_player_score(
    user_id: int,
    score: Decimal,
    *,
    last_updated: str | None = None,
    conn: sqlite3.Connection | None = None,
) -> bool:
    with _using(conn) as c:
        if last_updated is None:
            cur = c.execute(
                "UPDATE players SET score = ? WHERE user_id = ?",
                (money_str(score), user_id),
            )
        else:
            cur = c.execute(
                "UPDATE players SET score = ?, last_updated = ? WHERE user_id = ?",
                (money_str(score), last_updated, user_id),
            )
        return cur.rowcount > 0


def apply_score_delta_with_floor(
    user_id: int,
    delta: Decimal,
    *,
    attempts: int = 5,
) -> dict:
    """
    Apply a balance delta with optimistic retries, never going below 0.
    Returns the before/after balances; `ok` is False when the player is gone
    or every attempt lost the race.
    """
    delta = money(delta)
    for _ in range(max(1, attempts)):
        with get_connection() as conn:
            row = conn.execute(
                "SELECT score FROM players WHERE user_id = ?",
                (user_id,),
            ).fetchone()
            if row is None:
                return {"ok": False, "before": ZERO, "after": ZERO, "delta": delta}
            before = money(row["score"])
            after = max(ZERO, before + delta)
            if compare_and_set_score(conn, user_id, before, after):
                return {"ok": True, "before": before, "after": after, "delta": delta}
    return {"ok": False, "before": ZERO, "after": ZERO, "delta": delta}


def set_player_banned(user_id: int, banned: bool) -> bool:
    with get_connection() as conn:
        cur = conn.execute(
            "UPDATE players SET is_banned = ? WHERE user_id = ?",
            (1 if banned else 0, user_id),
        )
        return cur.rowcount > 0


def delete_player(user_id: int) -> bool:
    with get_connection() as conn:
        cur = conn.execute("DELETE FROM players WHERE user_id = ?", (user_id,))
        return cur.rowcount > 0


def list_players(limit: int = 50, offset: int = 0) -> list[dict]:
    with get_connection() as conn:
        rows = conn.execute(
            """
            SELECT *
            FROM players
            ORDER BY CAST(score AS REAL) DESC, user_id ASC
            LIMIT ? OFFSET ?
            """,
            (max(1, int(limit)), max(0, int(offset))),
        ).fetchall()
    return [_player_from_row(row) for row in rows]


def count_players() -> int:
    with get_connection() as conn:
        row = conn.execute("SELECT COUNT(*) AS n FROM players").fetchone()
    return int(row["n"])


def get_top_players(column: str, limit: int = 10) -> list[dict]:
    if column not in RANKABLE_COLUMNS:
        raise KeyError(f"Unknown leaderboard column: {column}")
    with get_connection() as conn:
        rows = conn.execute(
            f"""
            SELECT *
            FROM players
            WHERE is_banned = 0
            ORDER BY CAST({column} AS REAL) DESC, user_id ASC
            LIMIT ?
            """,
            (max(1, int(limit)),),
        ).fetchall()
    players = [_player_from_row(row) for row in rows]
    # REAL ordering is only approximate past 15 digits; settle ties exactly.
    players.sort(key=lambda p: (-p[column], int(p["user_id"])))
    return players


def add_transaction(
    sender_id: int,
    receiver_id: int,
    amount: Decimal,
    receiver_username: str,
    created_at: str,
) -> int:
    with get_connection() as conn:
        cur = conn.execute(
            """
            INSERT INTO transactions (sender_id, receiver_id, amount, receiver_username, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (sender_id, receiver_id, money_str(amount), receiver_username, created_at),
        )
        return int(cur.lastrowid)


def get_transactions_for(user_id: int, limit: int = 50) -> list[dict]:
    with get_connection() as conn:
        rows = conn.execute(
            """
            SELECT id, sender_id, receiver_id, amount, receiver_username, created_at
            FROM transactions
            WHERE sender_id = ? OR receiver_id = ?
            ORDER BY id DESC
            LIMIT ?
            """,
            (user_id, user_id, max(1, int(limit))),
        ).fetchall()
    return [dict(row) for row in rows]


def add_action_log(
    user_id: int,
    action_type: str,
    amount: Decimal,
    details: str,
    created_at: str,
    conn: sqlite3.Connection | None = None,
) -> None:
    with _using(conn) as c:
        c.execute(
            """
            INSERT INTO action_logs (user_id, action_type, amount, details, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (user_id, action_type, money_str(amount), details, created_at),
        )


def get_action_logs(limit: int = 100, user_id: int | None = None) -> list[dict]:
    with get_connection() as conn:
        if user_id is None:
            rows = conn.execute(
                """
                SELECT id, user_id, action_type, amount, details, created_at
                FROM action_logs
                ORDER BY id DESC
                LIMIT ?
                """,
                (max(1, int(limit)),),
            ).fetchall()
        else:
            rows = conn.execute(
                """
                SELECT id, user_id, action_type, amount, details, created_at
                FROM action_logs
                WHERE user_id = ?
                ORDER BY id DESC
                LIMIT ?
                """,
                (user_id, max(1, int(limit))),
            ).fetchall()
    return [dict(row) for row in rows]


def add_admin_log(
    actor: str,
    action: str,
    target_user_id: int | None,
    details: str,
    created_at: str,
) -> None:
    with get_connection() as conn:
        conn.execute(
            """
            INSERT INTO admin_logs (actor, action, target_user_id, details, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (actor, action, target_user_id, details, created_at),
        )


def get_admin_logs(limit: int = 100) -> list[dict]:
    with get_connection() as conn:
        rows = conn.execute(
            """
            SELECT id, actor, action, target_user_id, details, created_at
            FROM admin_logs
            ORDER BY id DESC
            LIMIT ?
            """,
            (max(1, int(limit)),),
        ).fetchall()
    return [dict(row) for row in rows]


def get_state_value(key: str, conn: sqlite3.Connection | None = None) -> str | None:
    with _using(conn) as c:
        row = c.execute(
            "SELECT value FROM app_state WHERE key = ?",
            (key,),
        ).fetchone()
        return None if row is None else row["value"]


def set_state_value(key: str, value: str, conn: sqlite3.Connection | None = None) -> None:
    with _using(conn) as c:
        c.execute(
            """
            INSERT INTO app_state (key, value)
            VALUES (?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value
            """,
            (key, value),
        )
