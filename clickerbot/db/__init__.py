from clickerbot.db.database import get_connection, init_db, write_transaction
from clickerbot.db.repositories import (
    add_action_log,
    add_admin_log,
    add_transaction,
    apply_score_delta_with_floor,
    compare_and_set_score,
    count_players,
    delete_player,
    get_action_logs,
    get_admin_logs,
    get_player,
    get_player_by_username,
    get_state_value,
    get_top_players,
    get_transactions_for,
    insert_player,
    list_players,
    set_player_banned,
    set_player_score,
    set_state_value,
    update_player_economy,
    update_player_profile,
)

__all__ = [
    "add_action_log",
    "add_admin_log",
    "add_transaction",
    "apply_score_delta_with_floor",
    "compare_and_set_score",
    "count_players",
    "delete_player",
    "get_action_logs",
    "get_admin_logs",
    "get_connection",
    "get_player",
    "get_player_by_username",
    "get_state_value",
    "get_top_players",
    "get_transactions_for",
    "init_db",
    "insert_player",
    "list_players",
    "set_player_banned",
    "set_player_score",
    "set_state_value",
    "update_player_economy",
    "update_player_profile",
    "write_transaction",
]
