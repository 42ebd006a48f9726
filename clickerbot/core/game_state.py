from __future__ import annotations

import json
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Sequence

from clickerbot.services.money import ZERO, money, money_str

GAME_STATE_KEY = "game_state:global"


class RoundState(str, Enum):
    IDLE = "idle"
    COLLECTING = "collecting"
    ACTIVE = "active"
    DRAWABLE = "drawable"


def default_solo() -> dict:
    return {
        "pot": money_str(ZERO),
        "participants": [],
        "end_time": None,
        "is_active": False,
    }


def default_team() -> dict:
    return {
        "teams": [],
        "pot": money_str(ZERO),
        "end_time": None,
        "is_active": False,
    }


def default_game_state() -> dict:
    return {
        "solo": default_solo(),
        "team": default_team(),
        "recent_winners": [],
        "your_bets": {},
    }


def _parse_time(raw: object) -> datetime | None:
    text = str(raw or "").strip()
    if not text:
        return None
    try:
        dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def end_time_of(section: dict) -> datetime | None:
    return _parse_time(section.get("end_time"))


def _money_or_zero(raw: object) -> Decimal:
    try:
        value = money(str(raw if raw is not None else "0"))
    except ArithmeticError:
        return ZERO
    return value if value.is_finite() else ZERO


def _normalize_entry(raw: object) -> dict | None:
    if not isinstance(raw, dict):
        return None
    try:
        user_id = int(raw.get("user_id", 0))
    except (TypeError, ValueError):
        return None
    bet = _money_or_zero(raw.get("bet"))
    if user_id <= 0 or bet <= 0:
        return None
    return {
        "user_id": str(user_id),
        "bet": money_str(bet),
        "username": str(raw.get("username") or ""),
        "first_name": str(raw.get("first_name") or ""),
    }


def _normalize_entries(raw: object) -> list[dict]:
    if not isinstance(raw, list):
        return []
    out: list[dict] = []
    for item in raw:
        entry = _normalize_entry(item)
        if entry is not None:
            out.append(entry)
    return out


def _normalize_round(raw: object, base: dict) -> dict:
    section = dict(base)
    if not isinstance(raw, dict):
        return section
    section["pot"] = money_str(_money_or_zero(raw.get("pot")))
    end_time = _parse_time(raw.get("end_time"))
    section["end_time"] = end_time.isoformat() if end_time else None
    section["is_active"] = bool(raw.get("is_active", False)) and end_time is not None
    return section


def _normalize_team_entry(raw: object) -> dict | None:
    if not isinstance(raw, dict):
        return None
    team_id = str(raw.get("id") or "").strip()
    if not team_id:
        return None
    members = _normalize_entries(raw.get("members"))
    return {
        "id": team_id,
        "name": str(raw.get("name") or team_id),
        "creator_id": str(raw.get("creator_id") or ""),
        "members": members,
        "total_bet": money_str(_money_or_zero(raw.get("total_bet"))),
        "pot_contribution": money_str(_money_or_zero(raw.get("pot_contribution"))),
    }


def parse_game_state(raw: str | None) -> dict:
    """Load the shared game document, falling back to defaults for bad data."""
    doc = default_game_state()
    if not raw:
        return doc
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        return doc
    if not isinstance(data, dict):
        return doc

    solo_raw = data.get("solo")
    solo = _normalize_round(solo_raw, default_solo())
    if isinstance(solo_raw, dict):
        solo["participants"] = _normalize_entries(solo_raw.get("participants"))
    doc["solo"] = solo

    team_raw = data.get("team")
    team = _normalize_round(team_raw, default_team())
    if isinstance(team_raw, dict) and isinstance(team_raw.get("teams"), list):
        team["teams"] = [
            t for t in (_normalize_team_entry(item) for item in team_raw["teams"]) if t is not None
        ]
    doc["team"] = team

    winners = data.get("recent_winners")
    if isinstance(winners, list):
        doc["recent_winners"] = [w for w in winners if isinstance(w, dict)]

    bets = data.get("your_bets")
    if isinstance(bets, dict):
        doc["your_bets"] = {
            str(k): {
                "solo": money_str(_money_or_zero(v.get("solo"))),
                "team": money_str(_money_or_zero(v.get("team"))),
            }
            for k, v in bets.items()
            if isinstance(v, dict)
        }
    return doc


def dump_game_state(doc: dict) -> str:
    return json.dumps(doc, separators=(",", ":"), sort_keys=True)


def round_state(section: dict, entry_count: int, now: datetime) -> RoundState:
    if entry_count <= 0:
        return RoundState.IDLE
    end_time = end_time_of(section)
    if not section.get("is_active") or end_time is None:
        return RoundState.COLLECTING
    if now >= end_time:
        return RoundState.DRAWABLE
    return RoundState.ACTIVE


def pick_weighted(weights: Sequence[Decimal], point: Decimal) -> int:
    """Index of the first entry whose running total reaches `point`."""
    if not weights:
        raise ValueError("cannot pick from an empty round")
    running = Decimal(0)
    for idx, weight in enumerate(weights):
        running += Decimal(weight)
        if running >= point:
            return idx
    return len(weights) - 1


def entries_total(entries: Sequence[dict]) -> Decimal:
    return money(sum((money(e["bet"]) for e in entries), Decimal(0)))
