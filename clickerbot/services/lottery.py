from __future__ import annotations

import logging
import random
import secrets
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterator

from clickerbot.config.runtime import get_app_config
from clickerbot.config.settings import (
    HOUSE_FEE_PERCENT,
    MIN_PARTICIPANTS,
    RECENT_WINNERS_LIMIT,
    TEAM_NAME_MAX_LENGTH,
)
from clickerbot.core.errors import (
    BettingClosed,
    InactiveRound,
    InsufficientFunds,
    NotFound,
    RoundNotReady,
    ValidationError,
)
from clickerbot.core.game_state import (
    GAME_STATE_KEY,
    RoundState,
    default_solo,
    default_team,
    dump_game_state,
    end_time_of,
    entries_total,
    parse_game_state,
    pick_weighted,
    round_state,
)
from clickerbot.db import (
    add_action_log,
    compare_and_set_score,
    get_player,
    get_state_value,
    set_state_value,
    write_transaction,
)
from clickerbot.services.money import ZERO, money, money_floor, money_str, parse_amount
from clickerbot.services.players import ensure_not_banned, fetch_player, utcnow

logger = logging.getLogger("clickerbot.lottery")

# One writer per process; BEGIN IMMEDIATE serializes across processes.
_DOCUMENT_LOCK = threading.Lock()
_system_random = random.SystemRandom()


@contextmanager
def _game_document() -> Iterator[tuple[sqlite3.Connection, dict]]:
    with _DOCUMENT_LOCK:
        with write_transaction() as conn:
            doc = parse_game_state(get_state_value(GAME_STATE_KEY, conn=conn))
            yield conn, doc
            set_state_value(GAME_STATE_KEY, dump_game_state(doc), conn=conn)


def load_game_state() -> dict:
    return parse_game_state(get_state_value(GAME_STATE_KEY))


def house_fee(pot: Decimal) -> Decimal:
    return money(pot * Decimal(HOUSE_FEE_PERCENT) / Decimal(100))


def draw_point(total: Decimal, rng: random.Random | None = None) -> Decimal:
    """Uniform point in [0, total)."""
    rng = rng or _system_random
    return Decimal(str(rng.random())) * total


def split_prize(prize: Decimal, members: list[dict]) -> list[Decimal]:
    """
    Pro-rata shares of `prize` by member bet, rounded down to the money
    precision. The rounding remainder goes to the largest staker so the
    shares always add up to the prize.
    """
    if not members:
        return []
    bets = [money(m["bet"]) for m in members]
    total = sum(bets, Decimal(0))
    if total <= 0:
        return [ZERO for _ in members]
    shares = [money_floor(prize * bet / total) for bet in bets]
    dust = money(prize - sum(shares, Decimal(0)))
    if dust:
        largest = max(range(len(bets)), key=lambda i: (bets[i], -i))
        shares[largest] = money(shares[largest] + dust)
    return shares


def _debit_stake(conn: sqlite3.Connection, player_id: int, amount: Decimal) -> Decimal:
    player = get_player(player_id, conn=conn)
    if player is None:
        raise NotFound("Player not found")
    ensure_not_banned(player)
    balance = player["score"]
    if amount > balance:
        raise InsufficientFunds(f"Not enough funds. You have {money_str(balance)}.")
    after = money(balance - amount)
    compare_and_set_score(conn, player_id, balance, after)
    return after


def _credit(conn: sqlite3.Connection, player_id: int, amount: Decimal) -> bool:
    player = get_player(player_id, conn=conn)
    if player is None:
        logger.error("cannot credit %s to missing player %s", money_str(amount), player_id)
        return False
    compare_and_set_score(conn, player_id, player["score"], money(player["score"] + amount))
    return True


def _set_your_bet(doc: dict, player_id: int, game: str, amount: Decimal) -> None:
    bets = doc["your_bets"]
    key = str(player_id)
    row = bets.get(key) or {"solo": money_str(ZERO), "team": money_str(ZERO)}
    row[game] = money_str(amount)
    if money(row["solo"]) <= 0 and money(row["team"]) <= 0:
        bets.pop(key, None)
    else:
        bets[key] = row


def _ensure_betting_open(section: dict, state: RoundState, now: datetime, cutoff_seconds: int) -> None:
    if state == RoundState.DRAWABLE:
        raise BettingClosed("Betting is closed; the round is waiting for its draw.")
    if state != RoundState.ACTIVE:
        return
    end_time = end_time_of(section)
    if end_time is not None and now >= end_time - timedelta(seconds=cutoff_seconds):
        raise BettingClosed("Betting is closed for this round.")


def _sync_activation(section: dict, entry_count: int, now: datetime, duration_seconds: int) -> None:
    if entry_count >= MIN_PARTICIPANTS:
        if not section.get("is_active") or end_time_of(section) is None:
            section["is_active"] = True
            section["end_time"] = (now + timedelta(seconds=duration_seconds)).isoformat()
        return
    section["is_active"] = False
    section["end_time"] = None


def _entry_for(player: dict, bet: Decimal) -> dict:
    return {
        "user_id": str(player["user_id"]),
        "bet": money_str(bet),
        "username": str(player.get("username") or ""),
        "first_name": str(player.get("first_name") or ""),
    }


def _find_entry(entries: list[dict], player_id: int) -> dict | None:
    key = str(player_id)
    for entry in entries:
        if entry["user_id"] == key:
            return entry
    return None


def _remember_winner(doc: dict, record: dict) -> None:
    doc["recent_winners"] = [record, *doc["recent_winners"]][:RECENT_WINNERS_LIMIT]


def _check_drawable(section: dict, now: datetime, label: str) -> None:
    end_time = end_time_of(section)
    if not section.get("is_active") or end_time is None:
        raise InactiveRound(f"No {label} round is waiting for a draw.")
    if now < end_time:
        raise RoundNotReady(f"The {label} round draws at {end_time.isoformat()}.")


def _seconds_left(section: dict, now: datetime) -> int | None:
    end_time = end_time_of(section)
    if end_time is None:
        return None
    return max(0, int((end_time - now).total_seconds()))


def _entries_view(entries: list[dict], pot: Decimal) -> list[dict]:
    out: list[dict] = []
    for entry in entries:
        bet = money(entry["bet"])
        out.append(
            {
                "user_id": entry["user_id"],
                "username": entry["username"],
                "first_name": entry["first_name"],
                "bet": money_str(bet),
                "chance": money_str(bet / pot) if pot > 0 else money_str(ZERO),
            }
        )
    return out


def game_view(doc: dict, player_id: int | None = None, now: datetime | None = None) -> dict:
    now = now or utcnow()
    solo = doc["solo"]
    team = doc["team"]
    solo_pot = money(solo["pot"])
    team_pot = money(team["pot"])
    teams_view = []
    for t in team["teams"]:
        teams_view.append(
            {
                "id": t["id"],
                "name": t["name"],
                "creator_id": t["creator_id"],
                "total_bet": t["total_bet"],
                "pot_contribution": t["pot_contribution"],
                "members": _entries_view(t["members"], money(t["total_bet"])),
            }
        )
    view = {
        "solo": {
            "pot": money_str(solo_pot),
            "participants": _entries_view(solo["participants"], solo_pot),
            "end_time": solo["end_time"],
            "is_active": bool(solo["is_active"]),
            "state": round_state(solo, len(solo["participants"]), now).value,
            "seconds_left": _seconds_left(solo, now),
        },
        "team": {
            "pot": money_str(team_pot),
            "teams": teams_view,
            "end_time": team["end_time"],
            "is_active": bool(team["is_active"]),
            "state": round_state(team, len(team["teams"]), now).value,
            "seconds_left": _seconds_left(team, now),
        },
        "recent_winners": list(doc["recent_winners"]),
    }
    if player_id is not None:
        view["your_bets"] = doc["your_bets"].get(
            str(player_id),
            {"solo": money_str(ZERO), "team": money_str(ZERO)},
        )
    return view


def get_game_state(player_id: int | None = None, now: datetime | None = None) -> dict:
    return game_view(load_game_state(), player_id, now)


# ---------------------------------------------------------------- solo


def solo_join(player_id: int, bet: object, now: datetime | None = None) -> dict:
    stake = parse_amount(bet, "bet")
    now = now or utcnow()
    player = fetch_player(player_id, now)
    ensure_not_banned(player)
    cutoff = int(get_app_config("BETTING_CUTOFF_SECONDS"))
    duration = int(get_app_config("SOLO_ROUND_SECONDS"))

    with _game_document() as (conn, doc):
        solo = doc["solo"]
        participants = solo["participants"]
        _ensure_betting_open(solo, round_state(solo, len(participants), now), now, cutoff)
        _debit_stake(conn, player_id, stake)

        entry = _find_entry(participants, player_id)
        if entry is None:
            entry = _entry_for(player, stake)
            participants.append(entry)
        else:
            entry["bet"] = money_str(money(entry["bet"]) + stake)
        solo["pot"] = money_str(money(solo["pot"]) + stake)
        _sync_activation(solo, len(participants), now, duration)
        _set_your_bet(doc, player_id, "solo", money(entry["bet"]))
        add_action_log(
            player_id,
            "solo_join",
            stake,
            f"total_bet={entry['bet']};pot={solo['pot']};participants={len(participants)}",
            now.isoformat(),
            conn=conn,
        )
        view = game_view(doc, player_id, now)

    logger.info("player %s staked %s in solo round", player_id, money_str(stake))
    return view


def solo_withdraw(player_id: int, now: datetime | None = None) -> dict:
    now = now or utcnow()
    with _game_document() as (conn, doc):
        solo = doc["solo"]
        participants = solo["participants"]
        state = round_state(solo, len(participants), now)
        if state == RoundState.IDLE:
            raise InactiveRound("No solo round in progress.")
        if state == RoundState.DRAWABLE:
            raise BettingClosed("The round is closed; wait for the draw.")
        entry = _find_entry(participants, player_id)
        if entry is None:
            raise NotFound("You have no bet in this round.")

        refund = money(entry["bet"])
        participants.remove(entry)
        _credit(conn, player_id, refund)
        solo["pot"] = money_str(money(solo["pot"]) - refund)
        if participants:
            _sync_activation(solo, len(participants), now, 0)
        else:
            doc["solo"] = default_solo()
        _set_your_bet(doc, player_id, "solo", ZERO)
        add_action_log(
            player_id,
            "solo_withdraw",
            refund,
            f"participants_left={len(participants)}",
            now.isoformat(),
            conn=conn,
        )
        view = game_view(doc, player_id, now)

    logger.info("player %s withdrew %s from solo round", player_id, money_str(refund))
    return {"refund": refund, "state": view}


def _refund(
    conn: sqlite3.Connection,
    result: dict,
    entry: dict,
    action: str,
    details: str,
    now_iso: str,
    **extra: str,
) -> None:
    """Return a stake; a stake whose owner row is gone is recorded as forfeited."""
    user_id = int(entry["user_id"])
    amount = money(entry["bet"])
    record = {"user_id": entry["user_id"], "amount": amount, **extra}
    if _credit(conn, user_id, amount):
        add_action_log(user_id, action, amount, details, now_iso, conn=conn)
        result["refunds"].append(record)
    else:
        add_action_log(user_id, "stake_forfeit", amount, details, now_iso, conn=conn)
        result["forfeited"].append(record)


def solo_draw(now: datetime | None = None, rng: random.Random | None = None) -> dict:
    now = now or utcnow()
    now_iso = now.isoformat()
    with _game_document() as (conn, doc):
        solo = doc["solo"]
        _check_drawable(solo, now, "solo")
        participants = list(solo["participants"])
        pot = money(solo["pot"])
        result: dict = {
            "game": "solo",
            "pot": pot,
            "fee": ZERO,
            "prize": ZERO,
            "winner": None,
            "refunds": [],
            "forfeited": [],
        }

        winner = None
        point = ZERO
        if len(participants) >= MIN_PARTICIPANTS:
            weights = [money(e["bet"]) for e in participants]
            point = draw_point(entries_total(participants), rng)
            winner = participants[pick_weighted(weights, point)]
            if get_player(int(winner["user_id"]), conn=conn) is None:
                logger.warning("solo winner %s no longer exists; voiding the round", winner["user_id"])
                winner = None

        if winner is None:
            for entry in participants:
                _refund(conn, result, entry, "solo_refund", "reason=void_round", now_iso)
            result["outcome"] = "void"
            logger.info("solo round void with %s participant(s); pot %s", len(participants), money_str(pot))
        else:
            fee = house_fee(pot)
            prize = money(pot - fee)
            winner_id = int(winner["user_id"])
            _credit(conn, winner_id, prize)
            add_action_log(
                winner_id,
                "solo_win",
                prize,
                f"pot={money_str(pot)};fee={money_str(fee)};point={point};participants={len(participants)}",
                now_iso,
                conn=conn,
            )
            _remember_winner(
                doc,
                {
                    "game": "solo",
                    "user_id": winner["user_id"],
                    "username": winner["username"],
                    "first_name": winner["first_name"],
                    "amount": money_str(prize),
                    "pot": money_str(pot),
                    "fee": money_str(fee),
                    "participants": len(participants),
                    "at": now_iso,
                },
            )
            result.update({"outcome": "won", "fee": fee, "prize": prize, "winner": dict(winner)})
            logger.info(
                "solo round won by %s: pot=%s prize=%s fee=%s",
                winner_id,
                money_str(pot),
                money_str(prize),
                money_str(fee),
            )

        for entry in participants:
            _set_your_bet(doc, int(entry["user_id"]), "solo", ZERO)
        doc["solo"] = default_solo()
        result["state"] = game_view(doc, None, now)
    return result


# ---------------------------------------------------------------- team


def _find_team(teams: list[dict], team_id: str) -> dict | None:
    key = str(team_id or "").strip()
    for team in teams:
        if team["id"] == key:
            return team
    return None


def _team_of(teams: list[dict], player_id: int) -> dict | None:
    for team in teams:
        if _find_entry(team["members"], player_id) is not None:
            return team
    return None


def _refresh_team_totals(section: dict) -> None:
    pot = ZERO
    for team in section["teams"]:
        total = entries_total(team["members"])
        team["total_bet"] = money_str(total)
        pot += total
    pot = money(pot)
    section["pot"] = money_str(pot)
    for team in section["teams"]:
        share = money(team["total_bet"]) / pot if pot > 0 else ZERO
        team["pot_contribution"] = money_str(share)


def _clean_team_name(raw: object) -> str:
    name = " ".join(str(raw or "").split())
    if not name:
        raise ValidationError("Team name is required.")
    if len(name) > TEAM_NAME_MAX_LENGTH:
        raise ValidationError(f"Team name must be at most {TEAM_NAME_MAX_LENGTH} characters.")
    return name


def _new_team_id(teams: list[dict]) -> str:
    taken = {t["id"] for t in teams}
    for _ in range(100):
        candidate = secrets.token_hex(4)
        if candidate not in taken:
            return candidate
    raise RuntimeError("Could not generate a unique team id.")


def team_create(player_id: int, name: object, bet: object, now: datetime | None = None) -> dict:
    team_name = _clean_team_name(name)
    stake = parse_amount(bet, "bet")
    now = now or utcnow()
    player = fetch_player(player_id, now)
    ensure_not_banned(player)
    cutoff = int(get_app_config("BETTING_CUTOFF_SECONDS"))
    duration = int(get_app_config("TEAM_ROUND_SECONDS"))

    with _game_document() as (conn, doc):
        section = doc["team"]
        teams = section["teams"]
        _ensure_betting_open(section, round_state(section, len(teams), now), now, cutoff)
        if _team_of(teams, player_id) is not None:
            raise ValidationError("You are already in a team this round.")
        if any(t["name"].casefold() == team_name.casefold() for t in teams):
            raise ValidationError(f"Team `{team_name}` already exists.")
        _debit_stake(conn, player_id, stake)

        team = {
            "id": _new_team_id(teams),
            "name": team_name,
            "creator_id": str(player_id),
            "members": [_entry_for(player, stake)],
            "total_bet": money_str(stake),
            "pot_contribution": money_str(ZERO),
        }
        teams.append(team)
        _refresh_team_totals(section)
        _sync_activation(section, len(teams), now, duration)
        _set_your_bet(doc, player_id, "team", stake)
        add_action_log(
            player_id,
            "team_create",
            stake,
            f"team={team['id']};name={team_name};pot={section['pot']}",
            now.isoformat(),
            conn=conn,
        )
        view = game_view(doc, player_id, now)

    logger.info("player %s created team %s with %s", player_id, team["id"], money_str(stake))
    return {"team_id": team["id"], "state": view}


def team_join(player_id: int, team_id: object, bet: object, now: datetime | None = None) -> dict:
    stake = parse_amount(bet, "bet")
    key = str(team_id or "").strip()
    if not key:
        raise ValidationError("team_id is required")
    now = now or utcnow()
    player = fetch_player(player_id, now)
    ensure_not_banned(player)
    cutoff = int(get_app_config("BETTING_CUTOFF_SECONDS"))
    duration = int(get_app_config("TEAM_ROUND_SECONDS"))

    with _game_document() as (conn, doc):
        section = doc["team"]
        teams = section["teams"]
        if not teams:
            raise InactiveRound("No team round in progress; create a team first.")
        _ensure_betting_open(section, round_state(section, len(teams), now), now, cutoff)
        team = _find_team(teams, key)
        if team is None:
            raise NotFound("Team not found.")
        current = _team_of(teams, player_id)
        if current is not None and current["id"] != team["id"]:
            raise ValidationError("You are already in another team this round.")
        _debit_stake(conn, player_id, stake)

        member = _find_entry(team["members"], player_id)
        if member is None:
            member = _entry_for(player, stake)
            team["members"].append(member)
        else:
            member["bet"] = money_str(money(member["bet"]) + stake)
        _refresh_team_totals(section)
        _sync_activation(section, len(teams), now, duration)
        _set_your_bet(doc, player_id, "team", money(member["bet"]))
        add_action_log(
            player_id,
            "team_join",
            stake,
            f"team={team['id']};total_bet={team['total_bet']};pot={section['pot']}",
            now.isoformat(),
            conn=conn,
        )
        view = game_view(doc, player_id, now)

    logger.info("player %s staked %s on team %s", player_id, money_str(stake), team["id"])
    return {"team_id": team["id"], "state": view}


def team_withdraw(player_id: int, now: datetime | None = None) -> dict:
    now = now or utcnow()
    with _game_document() as (conn, doc):
        section = doc["team"]
        teams = section["teams"]
        state = round_state(section, len(teams), now)
        if state == RoundState.IDLE:
            raise InactiveRound("No team round in progress.")
        if state == RoundState.DRAWABLE:
            raise BettingClosed("The round is closed; wait for the draw.")
        team = _team_of(teams, player_id)
        if team is None:
            raise NotFound("You have no bet in this round.")

        member = _find_entry(team["members"], player_id)
        refund = money(member["bet"])
        team["members"].remove(member)
        if not team["members"]:
            teams.remove(team)
        _credit(conn, player_id, refund)
        if teams:
            _refresh_team_totals(section)
            _sync_activation(section, len(teams), now, 0)
        else:
            doc["team"] = default_team()
        _set_your_bet(doc, player_id, "team", ZERO)
        add_action_log(
            player_id,
            "team_withdraw",
            refund,
            f"team={team['id']};teams_left={len(teams)}",
            now.isoformat(),
            conn=conn,
        )
        view = game_view(doc, player_id, now)

    logger.info("player %s withdrew %s from team %s", player_id, money_str(refund), team["id"])
    return {"refund": refund, "state": view}


def _refund_all_teams(conn: sqlite3.Connection, result: dict, teams: list[dict], now_iso: str) -> None:
    for team in teams:
        for member in team["members"]:
            _refund(
                conn,
                result,
                member,
                "team_refund",
                f"team={team['id']};reason=void_round",
                now_iso,
                team_id=team["id"],
            )


def team_draw(now: datetime | None = None, rng: random.Random | None = None) -> dict:
    now = now or utcnow()
    now_iso = now.isoformat()
    with _game_document() as (conn, doc):
        section = doc["team"]
        _check_drawable(section, now, "team")
        teams = list(section["teams"])
        pot = money(section["pot"])
        result: dict = {
            "game": "team",
            "pot": pot,
            "fee": ZERO,
            "prize": ZERO,
            "winner": None,
            "payouts": [],
            "refunds": [],
            "forfeited": [],
        }

        winner = None
        if len(teams) >= MIN_PARTICIPANTS:
            weights = [money(t["total_bet"]) for t in teams]
            point = draw_point(sum(weights, Decimal(0)), rng)
            winner = teams[pick_weighted(weights, point)]
            missing = [m["user_id"] for m in winner["members"] if get_player(int(m["user_id"]), conn=conn) is None]
            if missing:
                logger.warning("team %s has deleted members %s; voiding the round", winner["id"], missing)
                winner = None

        if winner is None or not winner["members"] or money(winner["total_bet"]) <= 0:
            _refund_all_teams(conn, result, teams, now_iso)
            result["outcome"] = "void"
            logger.info("team round void with %s team(s); pot %s", len(teams), money_str(pot))
        else:
            fee = house_fee(pot)
            prize = money(pot - fee)
            shares = split_prize(prize, winner["members"])
            members_record = []
            for member, share in zip(winner["members"], shares):
                member_id = int(member["user_id"])
                _credit(conn, member_id, share)
                add_action_log(
                    member_id,
                    "team_win",
                    share,
                    f"team={winner['id']};bet={member['bet']};team_bet={winner['total_bet']};pot={money_str(pot)}",
                    now_iso,
                    conn=conn,
                )
                result["payouts"].append({"user_id": member["user_id"], "amount": share})
                members_record.append(
                    {"user_id": member["user_id"], "username": member["username"], "amount": money_str(share)}
                )
            _remember_winner(
                doc,
                {
                    "game": "team",
                    "team_id": winner["id"],
                    "team_name": winner["name"],
                    "amount": money_str(prize),
                    "pot": money_str(pot),
                    "fee": money_str(fee),
                    "members": members_record,
                    "teams": len(teams),
                    "at": now_iso,
                },
            )
            result.update({"outcome": "won", "fee": fee, "prize": prize, "winner": {"id": winner["id"], "name": winner["name"]}})
            logger.info(
                "team round won by %s: pot=%s prize=%s fee=%s",
                winner["id"],
                money_str(pot),
                money_str(prize),
                money_str(fee),
            )

        for team in teams:
            for member in team["members"]:
                _set_your_bet(doc, int(member["user_id"]), "team", ZERO)
        doc["team"] = default_team()
        result["state"] = game_view(doc, None, now)
    return result
