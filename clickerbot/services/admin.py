from __future__ import annotations

import hmac
import logging
from datetime import datetime
from typing import Any

from clickerbot.config import settings
from clickerbot.config.runtime import get_all_app_configs, set_app_config
from clickerbot.core.errors import NotFound, Unauthorized, ValidationError
from clickerbot.db import (
    add_admin_log,
    apply_score_delta_with_floor,
    count_players,
    delete_player,
    get_action_logs,
    get_admin_logs,
    get_player,
    list_players,
    set_player_banned,
    set_player_score,
)
from clickerbot.services.money import ZERO, money_str, to_money
from clickerbot.services.players import player_public_view, utcnow

logger = logging.getLogger("clickerbot.admin")


def check_secret(provided: str | None) -> None:
    expected = settings.ADMIN_SECRET
    if not expected:
        raise Unauthorized("Admin access is disabled.")
    if not provided or not hmac.compare_digest(str(provided), expected):
        raise Unauthorized("Invalid admin secret.")


def _require_player(player_id: int) -> dict:
    player = get_player(player_id)
    if player is None:
        raise NotFound("Player not found")
    return player


def record(
    actor: str,
    action: str,
    target: int | None,
    details: str,
    now: datetime | None = None,
) -> None:
    now = now or utcnow()
    add_admin_log(actor, action, target, details, now.isoformat())
    logger.info("admin %s: %s target=%s %s", actor, action, target, details)


def players_page(limit: int = 50, offset: int = 0) -> dict:
    limit = max(1, min(200, int(limit)))
    offset = max(0, int(offset))
    return {
        "total": count_players(),
        "limit": limit,
        "offset": offset,
        "players": [player_public_view(p) for p in list_players(limit=limit, offset=offset)],
    }


def ban(actor: str, player_id: int, now: datetime | None = None) -> dict:
    _require_player(player_id)
    set_player_banned(player_id, True)
    record(actor, "ban", player_id, "", now)
    return player_public_view(_require_player(player_id))


def unban(actor: str, player_id: int, now: datetime | None = None) -> dict:
    _require_player(player_id)
    set_player_banned(player_id, False)
    record(actor, "unban", player_id, "", now)
    return player_public_view(_require_player(player_id))


def adjust(
    actor: str,
    player_id: int,
    *,
    score: object = None,
    delta: object = None,
    reason: str = "",
    now: datetime | None = None,
) -> dict:
    """Set a player's balance outright or move it by a signed delta."""
    if (score is None) == (delta is None):
        raise ValidationError("Provide exactly one of score or delta.")
    before = _require_player(player_id)["score"]
    now = now or utcnow()
    if score is not None:
        value = to_money(score, "score")
        if value < 0:
            raise ValidationError("score cannot be negative")
        set_player_score(player_id, value)
        details = f"set score {money_str(before)} -> {money_str(value)}"
    else:
        result = apply_score_delta_with_floor(player_id, to_money(delta, "delta"))
        if not result["ok"]:
            raise NotFound("Player not found")
        details = f"delta {money_str(result['delta'])}: {money_str(result['before'])} -> {money_str(result['after'])}"
    if reason:
        details += f" reason={reason}"
    record(actor, "adjust", player_id, details, now)
    return player_public_view(_require_player(player_id))


def remove(actor: str, player_id: int, now: datetime | None = None) -> None:
    player = _require_player(player_id)
    delete_player(player_id)
    record(actor, "delete", player_id, f"score={money_str(player.get('score', ZERO))}", now)


def logs(limit: int = 100, user_id: int | None = None) -> dict:
    return {
        "admin": get_admin_logs(limit=limit),
        "actions": get_action_logs(limit=limit, user_id=user_id),
    }


def configs() -> list[dict[str, Any]]:
    return get_all_app_configs()


def update_config(actor: str, name: str, value: Any, now: datetime | None = None) -> Any:
    key = str(name or "").strip().upper()
    try:
        applied = set_app_config(key, value)
    except KeyError as exc:
        raise NotFound(f"Unknown config `{key}`.") from exc
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Invalid value for {key}.") from exc
    record(actor, "config", None, f"{key}={applied}", now)
    return applied
