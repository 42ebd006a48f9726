from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from decimal import Decimal

from clickerbot.config.settings import HISTORY_LIMIT
from clickerbot.core.errors import (
    InsufficientFunds,
    NotFound,
    SelfTransfer,
    TransferFailed,
    ValidationError,
)
from clickerbot.db import (
    add_transaction,
    compare_and_set_score,
    get_player,
    get_player_by_username,
    get_transactions_for,
    write_transaction,
)
from clickerbot.services.money import money, money_str, parse_amount
from clickerbot.services.players import ensure_not_banned, fetch_player, utcnow

logger = logging.getLogger("clickerbot.wallet")


def _normalize_handle(raw: object) -> str:
    handle = str(raw or "").strip().lstrip("@").strip()
    if not handle:
        raise ValidationError("receiver is required")
    return handle


def _debit(player_id: int, amount: Decimal) -> Decimal:
    with write_transaction() as conn:
        player = get_player(player_id, conn=conn)
        if player is None:
            raise NotFound("Player not found")
        ensure_not_banned(player)
        before = player["score"]
        if amount > before:
            raise InsufficientFunds(f"Not enough funds. You have {money_str(before)}.")
        compare_and_set_score(conn, player_id, before, money(before - amount))
        return before


def _credit(player_id: int, amount: Decimal) -> Decimal:
    with write_transaction() as conn:
        player = get_player(player_id, conn=conn)
        if player is None:
            raise NotFound("Receiver disappeared before credit")
        after = money(player["score"] + amount)
        compare_and_set_score(conn, player_id, player["score"], after)
        return after


def transfer(
    sender_id: int,
    receiver_handle: object,
    amount: object,
    now: datetime | None = None,
) -> dict:
    """
    Move `amount` from the sender to the player holding `receiver_handle`.

    The debit and the credit are separate writes. When the credit fails the
    debited amount is written back to the sender and TransferFailed is
    raised; a failing write-back is only logged.
    """
    value = parse_amount(amount)
    handle = _normalize_handle(receiver_handle)
    now = now or utcnow()

    receiver = get_player_by_username(handle)
    if receiver is None:
        raise NotFound(f"Player `{handle}` not found.")
    receiver_id = int(receiver["user_id"])
    if receiver_id == int(sender_id):
        raise SelfTransfer("You cannot transfer to yourself.")

    fetch_player(sender_id, now)
    sender_before = _debit(sender_id, value)
    try:
        _credit(receiver_id, value)
    except Exception as exc:
        logger.error("credit of %s to player %s failed: %s", money_str(value), receiver_id, exc)
        try:
            _credit(sender_id, value)
        except Exception:
            logger.critical(
                "compensation failed: player %s is owed %s (balance before debit %s)",
                sender_id,
                money_str(value),
                money_str(sender_before),
                exc_info=True,
            )
        raise TransferFailed("Transfer failed; your balance was restored.") from exc

    transaction_id = None
    try:
        transaction_id = add_transaction(
            sender_id,
            receiver_id,
            value,
            str(receiver.get("username") or ""),
            now.isoformat(),
        )
    except sqlite3.Error:
        logger.exception(
            "transfer %s -> %s of %s settled but the transaction record was not written",
            sender_id,
            receiver_id,
            money_str(value),
        )

    logger.info("player %s sent %s to player %s", sender_id, money_str(value), receiver_id)
    sender = get_player(sender_id)
    return {
        "transaction_id": transaction_id,
        "amount": value,
        "receiver_id": receiver_id,
        "receiver_username": str(receiver.get("username") or ""),
        "score": sender["score"] if sender else money(sender_before - value),
    }


def history(player_id: int, limit: int = HISTORY_LIMIT) -> list[dict]:
    rows = get_transactions_for(player_id, limit=limit)
    out: list[dict] = []
    for row in rows:
        outgoing = int(row["sender_id"]) == int(player_id)
        out.append(
            {
                "id": int(row["id"]),
                "direction": "out" if outgoing else "in",
                "sender_id": str(row["sender_id"]),
                "receiver_id": str(row["receiver_id"]),
                "receiver_username": str(row["receiver_username"] or ""),
                "amount": money_str(row["amount"]),
                "created_at": str(row["created_at"]),
            }
        )
    return out
