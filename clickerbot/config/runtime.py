from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

from clickerbot.config.settings import (
    BETTING_CUTOFF_SECONDS,
    SOLO_ROUND_SECONDS,
    TEAM_ROUND_SECONDS,
)
from clickerbot.db.database import get_connection


def _flag(raw: str) -> bool:
    return str(raw).strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class AppConfigSpec:
    default: Any
    cast: Callable[[str], Any]
    description: str


APP_CONFIG_SPECS: dict[str, AppConfigSpec] = {
    "SOLO_ROUND_SECONDS": AppConfigSpec(
        default=int(SOLO_ROUND_SECONDS),
        cast=int,
        description="Seconds a solo round stays open once two players joined.",
    ),
    "TEAM_ROUND_SECONDS": AppConfigSpec(
        default=int(TEAM_ROUND_SECONDS),
        cast=int,
        description="Seconds a team round stays open once two teams joined.",
    ),
    "BETTING_CUTOFF_SECONDS": AppConfigSpec(
        default=int(BETTING_CUTOFF_SECONDS),
        cast=int,
        description="Joins are refused this many seconds before a round deadline.",
    ),
    "MAINTENANCE_MODE": AppConfigSpec(
        default=False,
        cast=_flag,
        description="When on, game endpoints answer 503.",
    ),
    "BROADCAST_MESSAGE": AppConfigSpec(
        default="",
        cast=str,
        description="Banner text shown to every client; empty hides it.",
    ),
}


def _state_key(name: str) -> str:
    return f"config:{name}"


def _normalize(name: str, value: Any) -> Any:
    if name in {"SOLO_ROUND_SECONDS", "TEAM_ROUND_SECONDS"}:
        return max(1, int(value))
    if name == "BETTING_CUTOFF_SECONDS":
        return max(0, int(value))
    if name == "MAINTENANCE_MODE":
        return value if isinstance(value, bool) else _flag(value)
    if name == "BROADCAST_MESSAGE":
        return str(value).strip()
    return value


def _to_string(value: Any) -> str:
    if isinstance(value, bool):
        return "1" if value else "0"
    return str(value)


def ensure_app_config_defaults() -> None:
    with get_connection() as conn:
        for name, spec in APP_CONFIG_SPECS.items():
            conn.execute(
                """
                INSERT OR IGNORE INTO app_state (key, value)
                VALUES (?, ?)
                """,
                (_state_key(name), _to_string(_normalize(name, spec.default))),
            )


def get_app_config(name: str) -> Any:
    spec = APP_CONFIG_SPECS.get(name)
    if spec is None:
        raise KeyError(f"Unknown app config: {name}")
    with get_connection() as conn:
        row = conn.execute(
            "SELECT value FROM app_state WHERE key = ?",
            (_state_key(name),),
        ).fetchone()
    if row is None:
        return _normalize(name, spec.default)
    raw = str(row["value"])
    try:
        parsed = spec.cast(raw)
    except (TypeError, ValueError):
        parsed = spec.default
    return _normalize(name, parsed)


def set_app_config(name: str, value: Any) -> Any:
    spec = APP_CONFIG_SPECS.get(name)
    if spec is None:
        raise KeyError(f"Unknown app config: {name}")
    normalized = _normalize(name, value)
    with get_connection() as conn:
        conn.execute(
            """
            INSERT INTO app_state (key, value)
            VALUES (?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value
            """,
            (_state_key(name), _to_string(normalized)),
        )
    return normalized


def get_all_app_configs() -> list[dict[str, Any]]:
    rows: list[dict[str, Any]] = []
    for name, spec in APP_CONFIG_SPECS.items():
        rows.append(
            {
                "name": name,
                "value": get_app_config(name),
                "default": _normalize(name, spec.default),
                "type": type(spec.default).__name__,
                "description": spec.description,
            }
        )
    return rows
