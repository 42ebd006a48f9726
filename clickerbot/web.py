from __future__ import annotations

import os
import sqlite3
from decimal import Decimal

from flask import Flask, jsonify, request

from clickerbot.config.runtime import ensure_app_config_defaults, get_app_config
from clickerbot.core.errors import GameError, MaintenanceMode, ValidationError
from clickerbot.db import init_db
from clickerbot.services import admin, lottery, players, upgrades, wallet
from clickerbot.services.money import money_str

ADMIN_HEADER = "X-Admin-Secret"
ACTOR_HEADER = "X-Admin-Actor"


def _jsonable(value: object) -> object:
    if isinstance(value, Decimal):
        return money_str(value)
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def _body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _int_arg(name: str, default: int) -> int:
    raw = request.args.get(name)
    if raw is None or not str(raw).strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValidationError(f"{name} must be an integer") from exc


def create_app() -> Flask:
    app = Flask(__name__)
    init_db()
    ensure_app_config_defaults()

    @app.before_request
    def _gate():
        if request.method == "OPTIONS" and request.path.startswith("/api/"):
            return ("", 204)
        is_admin_path = request.path.startswith("/api/admin/")
        if is_admin_path or request.path in {"/api/player/profile", "/api/coins/add"}:
            admin.check_secret(request.headers.get(ADMIN_HEADER))
        if (
            request.method == "POST"
            and request.path.startswith("/api/")
            and not is_admin_path
            and get_app_config("MAINTENANCE_MODE")
        ):
            raise MaintenanceMode("The game is under maintenance. Try again later.")
        return None

    @app.after_request
    def _cors(resp):
        if request.path.startswith("/api/"):
            origin = (request.headers.get("Origin") or "").strip()
            resp.headers["Access-Control-Allow-Origin"] = origin or "*"
            resp.headers["Vary"] = "Origin"
            resp.headers["Access-Control-Allow-Methods"] = "GET, POST, DELETE, OPTIONS"
            resp.headers["Access-Control-Allow-Headers"] = f"Content-Type, {ADMIN_HEADER}, {ACTOR_HEADER}"
        return resp

    @app.errorhandler(GameError)
    def _game_error(exc: GameError):
        if exc.status_code >= 500:
            app.logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.path, exc.message)
        return jsonify({"error": exc.message}), exc.status_code

    @app.errorhandler(sqlite3.Error)
    def _store_error(exc: sqlite3.Error):
        app.logger.exception("store error on %s %s", request.method, request.path)
        return jsonify({"error": "Storage is unavailable. Try again later."}), 500

    def _actor() -> str:
        return (request.headers.get(ACTOR_HEADER) or "admin").strip() or "admin"

    @app.get("/api/status")
    def api_status():
        return jsonify(
            {
                "ok": True,
                "maintenance": bool(get_app_config("MAINTENANCE_MODE")),
                "message": get_app_config("BROADCAST_MESSAGE"),
            }
        )

    # -- players

    @app.get("/api/player/<user_id>")
    def api_player(user_id: str):
        player = players.fetch_player(players.parse_player_id(user_id))
        return jsonify({"ok": True, "player": players.player_public_view(player)})

    @app.post("/api/player/sync")
    def api_player_sync():
        data = _body()
        player_id = players.parse_player_id(data.get("user_id"))
        player = players.sync_balance(player_id, data.get("score"))
        return jsonify({"ok": True, "player": players.player_public_view(player)})

    @app.post("/api/player/profile")
    def api_player_profile():
        player = players.sync_profile(_body())
        return jsonify({"ok": True, "player": players.player_public_view(player)})

    @app.get("/api/leaderboard")
    def api_leaderboard():
        rows = players.leaderboard(request.args.get("column", "score"))
        return jsonify({"ok": True, "leaderboard": rows})

    @app.post("/api/coins/add")
    def api_coins_add():
        data = _body()
        player_id = players.parse_player_id(data.get("user_id"))
        player = players.add_coins(player_id, data.get("amount"))
        admin.record(_actor(), "add_coins", player_id, f"amount={data.get('amount')}")
        return jsonify({"ok": True, "player": players.player_public_view(player)})

    # -- upgrades

    @app.get("/api/upgrades")
    def api_upgrades():
        raw = request.args.get("user_id")
        player = players.fetch_player(players.parse_player_id(raw)) if raw else None
        return jsonify({"ok": True, "upgrades": upgrades.catalog_view(player)})

    @app.post("/api/upgrades/buy")
    def api_upgrades_buy():
        data = _body()
        player_id = players.parse_player_id(data.get("user_id"))
        upgrade_id = str(data.get("upgrade_id") or "").strip()
        if not upgrade_id:
            raise ValidationError("upgrade_id is required")
        result = upgrades.purchase(player_id, upgrade_id)
        result["player"] = players.player_public_view(result["player"])
        return jsonify(_jsonable({"ok": True, **result}))

    # -- wallet

    @app.post("/api/wallet/transfer")
    def api_wallet_transfer():
        data = _body()
        sender_id = players.parse_player_id(data.get("sender_id", data.get("user_id")))
        result = wallet.transfer(sender_id, data.get("receiver"), data.get("amount"))
        return jsonify(_jsonable({"ok": True, **result}))

    @app.get("/api/wallet/history/<user_id>")
    def api_wallet_history(user_id: str):
        rows = wallet.history(players.parse_player_id(user_id))
        return jsonify({"ok": True, "transactions": rows})

    # -- lottery

    def _viewer_id() -> int | None:
        raw = request.args.get("user_id")
        return players.parse_player_id(raw) if raw else None

    @app.get("/api/game")
    def api_game():
        return jsonify({"ok": True, "game": lottery.get_game_state(_viewer_id())})

    @app.post("/api/game/solo/join")
    def api_solo_join():
        data = _body()
        player_id = players.parse_player_id(data.get("user_id"))
        view = lottery.solo_join(player_id, data.get("bet"))
        return jsonify({"ok": True, "game": view})

    @app.post("/api/game/solo/withdraw")
    def api_solo_withdraw():
        player_id = players.parse_player_id(_body().get("user_id"))
        result = lottery.solo_withdraw(player_id)
        return jsonify(_jsonable({"ok": True, "refund": result["refund"], "game": result["state"]}))

    @app.post("/api/game/solo/draw")
    def api_solo_draw():
        result = lottery.solo_draw()
        return jsonify(_jsonable({"ok": True, **result}))

    @app.post("/api/game/team/create")
    def api_team_create():
        data = _body()
        player_id = players.parse_player_id(data.get("user_id"))
        result = lottery.team_create(player_id, data.get("name"), data.get("bet"))
        return jsonify({"ok": True, "team_id": result["team_id"], "game": result["state"]})

    @app.post("/api/game/team/join")
    def api_team_join():
        data = _body()
        player_id = players.parse_player_id(data.get("user_id"))
        result = lottery.team_join(player_id, data.get("team_id"), data.get("bet"))
        return jsonify({"ok": True, "team_id": result["team_id"], "game": result["state"]})

    @app.post("/api/game/team/withdraw")
    def api_team_withdraw():
        player_id = players.parse_player_id(_body().get("user_id"))
        result = lottery.team_withdraw(player_id)
        return jsonify(_jsonable({"ok": True, "refund": result["refund"], "game": result["state"]}))

    @app.post("/api/game/team/draw")
    def api_team_draw():
        result = lottery.team_draw()
        return jsonify(_jsonable({"ok": True, **result}))

    # -- admin

    @app.get("/api/admin/players")
    def api_admin_players():
        page = admin.players_page(_int_arg("limit", 50), _int_arg("offset", 0))
        return jsonify({"ok": True, **page})

    @app.post("/api/admin/players/<user_id>/ban")
    def api_admin_ban(user_id: str):
        player = admin.ban(_actor(), players.parse_player_id(user_id))
        return jsonify({"ok": True, "player": player})

    @app.post("/api/admin/players/<user_id>/unban")
    def api_admin_unban(user_id: str):
        player = admin.unban(_actor(), players.parse_player_id(user_id))
        return jsonify({"ok": True, "player": player})

    @app.post("/api/admin/players/<user_id>/adjust")
    def api_admin_adjust(user_id: str):
        data = _body()
        player = admin.adjust(
            _actor(),
            players.parse_player_id(user_id),
            score=data.get("score"),
            delta=data.get("delta"),
            reason=str(data.get("reason") or "").strip(),
        )
        return jsonify({"ok": True, "player": player})

    @app.delete("/api/admin/players/<user_id>")
    def api_admin_delete(user_id: str):
        admin.remove(_actor(), players.parse_player_id(user_id))
        return jsonify({"ok": True})

    @app.get("/api/admin/logs")
    def api_admin_logs():
        raw_user = request.args.get("user_id")
        user_id = players.parse_player_id(raw_user) if raw_user else None
        return jsonify(_jsonable({"ok": True, **admin.logs(_int_arg("limit", 100), user_id)}))

    @app.get("/api/admin/config")
    def api_admin_config():
        return jsonify({"ok": True, "configs": admin.configs()})

    @app.post("/api/admin/config")
    def api_admin_config_update():
        data = _body()
        if "value" not in data:
            raise ValidationError("value is required")
        applied = admin.update_config(_actor(), data.get("name"), data.get("value"))
        return jsonify({"ok": True, "name": str(data.get("name") or "").strip().upper(), "value": applied})

    return app


def main() -> None:
    app = create_app()
    host = os.getenv("CLICKERBOT_API_HOST", "127.0.0.1")
    port = int(os.getenv("CLICKERBOT_API_PORT", "8083"))
    app.run(host=host, port=port, debug=False)


if __name__ == "__main__":
    main()
