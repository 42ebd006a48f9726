from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal

from clickerbot.config.settings import UPGRADE_COST_MULTIPLIER
from clickerbot.core.errors import InsufficientFunds, NotFound, UpstreamStoreError
from clickerbot.core.upgrades import UPGRADES, Upgrade, get_upgrade
from clickerbot.db import add_action_log, get_player, update_player_economy, write_transaction
from clickerbot.services.money import money, money_pow, money_str
from clickerbot.services.players import ensure_not_banned, fetch_player, utcnow

logger = logging.getLogger("clickerbot.upgrades")


def upgrade_cost(upgrade: Upgrade, level: int) -> Decimal:
    return money(upgrade.base_cost * money_pow(UPGRADE_COST_MULTIPLIER, max(0, int(level))))


def purchase(player_id: int, upgrade_id: str, now: datetime | None = None) -> dict:
    upgrade = get_upgrade(upgrade_id)
    if upgrade is None:
        raise NotFound(f"Upgrade `{upgrade_id}` not found.")
    now = now or utcnow()
    fetch_player(player_id, now)
    target = upgrade.kind.target_field

    with write_transaction() as conn:
        player = get_player(player_id, conn=conn)
        if player is None:
            raise NotFound("Player not found")
        ensure_not_banned(player)
        levels = dict(player["upgrade_levels"])
        level = int(levels.get(upgrade.id, 0))
        cost = upgrade_cost(upgrade, level)
        balance = player["score"]
        if cost > balance:
            raise InsufficientFunds(
                f"Not enough funds. Need {money_str(cost)}, you have {money_str(balance)}."
            )
        levels[upgrade.id] = level + 1
        new_rate = money(player[target] + upgrade.benefit)
        new_balance = money(balance - cost)
        if not update_player_economy(
            conn,
            player_id,
            balance,
            score=new_balance,
            rates={target: new_rate},
            upgrade_levels=levels,
        ):
            raise UpstreamStoreError("Balance changed during purchase.")
        add_action_log(
            player_id,
            "upgrade",
            cost,
            f"upgrade={upgrade.id};level={level + 1};{target}={money_str(new_rate)}",
            now.isoformat(),
            conn=conn,
        )

    logger.info("player %s bought %s level %s for %s", player_id, upgrade.id, level + 1, money_str(cost))
    updated = dict(player)
    updated["score"] = new_balance
    updated[target] = new_rate
    updated["upgrade_levels"] = levels
    return {
        "player": updated,
        "upgrade_id": upgrade.id,
        "level": level + 1,
        "cost": cost,
        "next_cost": upgrade_cost(upgrade, level + 1),
    }


def catalog_view(player: dict | None = None) -> list[dict]:
    levels = dict(player.get("upgrade_levels", {})) if player else {}
    rows: list[dict] = []
    for upgrade in UPGRADES.values():
        level = int(levels.get(upgrade.id, 0))
        rows.append(
            {
                "id": upgrade.id,
                "name": upgrade.name,
                "category": upgrade.kind.value,
                "target": upgrade.kind.target_field,
                "benefit": money_str(upgrade.benefit),
                "base_cost": money_str(upgrade.base_cost),
                "level": level,
                "cost": money_str(upgrade_cost(upgrade, level)),
            }
        )
    return rows
