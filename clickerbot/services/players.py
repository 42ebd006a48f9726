from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal

from clickerbot.config.settings import LEADERBOARD_LIMIT, OFFLINE_MIN_SECONDS
from clickerbot.core.errors import BalanceConflict, NotFound, PlayerBanned, ValidationError
from clickerbot.db import (
    add_action_log,
    apply_score_delta_with_floor,
    compare_and_set_score,
    get_connection,
    get_player,
    get_top_players,
    insert_player,
    update_player_profile,
)
from clickerbot.db.repositories import MONEY_FIELDS, PROFILE_FIELDS, RANKABLE_COLUMNS
from clickerbot.services.money import ZERO, money, money_str, parse_amount, to_money

logger = logging.getLogger("clickerbot.players")

_SETTLE_ATTEMPTS = 5


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(raw: object) -> datetime | None:
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


def parse_player_id(raw: object) -> int:
    text = str(raw if raw is not None else "").strip()
    if text.startswith("+"):
        text = text[1:]
    if not text.isdigit():
        raise ValidationError("user_id is required")
    user_id = int(text)
    if user_id <= 0:
        raise ValidationError("Invalid user_id")
    return user_id


def ensure_not_banned(player: dict) -> None:
    if player.get("is_banned"):
        raise PlayerBanned("This account is banned.")


def get_or_create(player_id: int, now: datetime | None = None) -> dict:
    player = get_player(player_id)
    if player is not None:
        return player
    created_at = (now or utcnow()).isoformat()
    if insert_player(player_id, created_at):
        logger.info("created player %s", player_id)
    player = get_player(player_id)
    if player is None:
        raise NotFound("Player not found")
    return player


def offline_earnings(
    auto_click_rate: Decimal,
    offline_rate_per_hour: Decimal,
    elapsed_seconds: Decimal | int,
) -> Decimal:
    elapsed = Decimal(str(elapsed_seconds))
    granted = Decimal(auto_click_rate) * elapsed
    granted += Decimal(offline_rate_per_hour) * elapsed / Decimal(3600)
    return money(granted)


def settle_offline(player: dict, now: datetime | None = None) -> tuple[dict, Decimal]:
    """
    Credit passive earnings accrued since `last_updated`.

    Gaps of OFFLINE_MIN_SECONDS or less are left alone so rapid polling does
    not rewrite the row. The write is conditional on the score read here;
    a concurrent balance change makes it re-read and try again.
    """
    now = now or utcnow()
    player_id = int(player["user_id"])
    current = player
    for _ in range(_SETTLE_ATTEMPTS):
        if current.get("is_banned"):
            return current, ZERO
        last_updated = parse_timestamp(current.get("last_updated")) or now
        elapsed = Decimal(str((now - last_updated).total_seconds()))
        if elapsed <= OFFLINE_MIN_SECONDS:
            return current, ZERO
        granted = offline_earnings(
            current["auto_click_rate"],
            current["offline_rate_per_hour"],
            elapsed,
        )
        before = current["score"]
        after = money(before + granted)
        now_iso = now.isoformat()
        with get_connection() as conn:
            if compare_and_set_score(conn, player_id, before, after, last_updated=now_iso):
                add_action_log(
                    player_id,
                    "offline_earnings",
                    granted,
                    f"seconds={elapsed.normalize():f};auto_rate={money_str(current['auto_click_rate'])};"
                    f"offline_rate={money_str(current['offline_rate_per_hour'])}",
                    now_iso,
                    conn=conn,
                )
                settled = dict(current)
                settled["score"] = after
                settled["last_updated"] = now_iso
                logger.debug("settled %s for player %s over %ss", money_str(granted), player_id, elapsed)
                return settled, granted
        refreshed = get_player(player_id)
        if refreshed is None:
            raise NotFound("Player not found")
        current = refreshed
    logger.warning("offline settlement for player %s kept losing races; skipped", player_id)
    return current, ZERO


def fetch_player(player_id: int, now: datetime | None = None) -> dict:
    now = now or utcnow()
    player = get_or_create(player_id, now)
    player, _granted = settle_offline(player, now)
    return player


def sync_balance(player_id: int, score: object, now: datetime | None = None) -> dict:
    """Store the balance reported by the game client after local clicking."""
    now = now or utcnow()
    reported = to_money(score, "score")
    if reported < 0:
        raise ValidationError("score cannot be negative")
    player = fetch_player(player_id, now)
    ensure_not_banned(player)
    now_iso = now.isoformat()
    with get_connection() as conn:
        if not compare_and_set_score(conn, player_id, player["score"], reported, last_updated=now_iso):
            logger.warning("sync for %s lost a race with another balance write", player_id)
            raise BalanceConflict("Balance changed while syncing. Reload the player and try again.")
        add_action_log(
            player_id,
            "sync",
            reported - player["score"],
            f"reported={money_str(reported)};previous={money_str(player['score'])}",
            now_iso,
            conn=conn,
        )
    player = dict(player)
    player["score"] = reported
    player["last_updated"] = now_iso
    return player


def sync_profile(profile: dict, now: datetime | None = None) -> dict:
    player_id = parse_player_id(profile.get("user_id"))
    fields = {
        field: str(profile.get(field) or "").strip()
        for field in PROFILE_FIELDS
        if field in profile
    }
    if "username" in fields:
        fields["username"] = fields["username"].lstrip("@") or f"user_{player_id}"
    created_at = (now or utcnow()).isoformat()
    if insert_player(player_id, created_at, profile=fields):
        logger.info("created player %s from profile sync", player_id)
    elif fields:
        update_player_profile(player_id, fields)
    player = get_player(player_id)
    if player is None:
        raise NotFound("Player not found")
    return player


def add_coins(player_id: int, amount: object, now: datetime | None = None) -> dict:
    value = parse_amount(amount)
    now = now or utcnow()
    fetch_player(player_id, now)
    result = apply_score_delta_with_floor(player_id, value)
    if not result["ok"]:
        raise NotFound("Player not found")
    add_action_log(player_id, "add_coins", value, "source=privileged", now.isoformat())
    logger.info("added %s coins to player %s", money_str(value), player_id)
    player = get_player(player_id)
    if player is None:
        raise NotFound("Player not found")
    return player


def leaderboard(column: str = "score", limit: int = LEADERBOARD_LIMIT) -> list[dict]:
    column = str(column or "score").strip().lower()
    if column not in RANKABLE_COLUMNS:
        raise ValidationError(
            f"column must be one of: {', '.join(sorted(RANKABLE_COLUMNS))}"
        )
    rows = get_top_players(column, limit=limit)
    return [
        {
            "rank": idx + 1,
            "user_id": str(row["user_id"]),
            "username": row["username"],
            "first_name": row["first_name"],
            "value": money_str(row[column]),
        }
        for idx, row in enumerate(rows)
    ]


def player_public_view(player: dict) -> dict:
    view = {
        "user_id": str(player["user_id"]),
        "upgrade_levels": dict(player.get("upgrade_levels", {})),
        "is_banned": bool(player.get("is_banned", False)),
        "is_admin": bool(player.get("is_admin", False)),
        "last_updated": str(player.get("last_updated", "")),
    }
    for field in PROFILE_FIELDS:
        view[field] = str(player.get(field) or "")
    for field in MONEY_FIELDS:
        view[field] = money_str(player.get(field, ZERO))
    return view
