import sqlite3
import unittest
from unittest import mock

from dbcase import DatabaseTestCase

from clickerbot.config.runtime import set_app_config
from clickerbot.db import get_admin_logs
from clickerbot.web import create_app

SECRET = "s3cret"


class WebApiTests(DatabaseTestCase):
    def setUp(self) -> None:
        super().setUp()
        patcher = mock.patch("clickerbot.config.settings.ADMIN_SECRET", SECRET)
        patcher.start()
        self.addCleanup(patcher.stop)
        self.client = create_app().test_client()
        self.make_player(1, "5", username="alice")
        self.make_player(2, "1", username="bob")

    def _admin(self) -> dict:
        return {"X-Admin-Secret": SECRET, "X-Admin-Actor": "ops"}

    def test_status_and_cors(self) -> None:
        resp = self.client.get("/api/status", headers={"Origin": "https://game.example"})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json()["maintenance"], False)
        self.assertEqual(resp.headers["Access-Control-Allow-Origin"], "https://game.example")
        preflight = self.client.options("/api/game/solo/join")
        self.assertEqual(preflight.status_code, 204)

    def test_player_fetch_returns_decimal_strings(self) -> None:
        resp = self.client.get("/api/player/1")
        self.assertEqual(resp.status_code, 200)
        player = resp.get_json()["player"]
        self.assertEqual(player["score"], "5.000000000")
        self.assertEqual(player["user_id"], "1")
        self.assertEqual(self.client.get("/api/player/abc").status_code, 400)

    def test_purchase_route(self) -> None:
        resp = self.client.post("/api/upgrades/buy", json={"user_id": "1", "upgrade_id": "click_tier_1"})
        self.assertEqual(resp.status_code, 200)
        body = resp.get_json()
        self.assertEqual(body["cost"], "0.000000064")
        self.assertEqual(body["player"]["score"], "4.999999936")
        missing = self.client.post("/api/upgrades/buy", json={"user_id": "1", "upgrade_id": "nope"})
        self.assertEqual(missing.status_code, 404)
        self.assertIn("error", missing.get_json())

    def test_transfer_errors_map_to_status_codes(self) -> None:
        ok = self.client.post("/api/wallet/transfer", json={"sender_id": "1", "receiver": "@bob", "amount": "1"})
        self.assertEqual(ok.status_code, 200)
        self.assertEqual(ok.get_json()["amount"], "1.000000000")
        broke = self.client.post("/api/wallet/transfer", json={"sender_id": "2", "receiver": "alice", "amount": "9"})
        self.assertEqual(broke.status_code, 400)
        self_send = self.client.post("/api/wallet/transfer", json={"sender_id": "1", "receiver": "alice", "amount": "1"})
        self.assertEqual(self_send.status_code, 400)
        history = self.client.get("/api/wallet/history/2").get_json()["transactions"]
        self.assertEqual(history[0]["direction"], "in")

    def test_solo_round_over_http(self) -> None:
        self.client.post("/api/game/solo/join", json={"user_id": "1", "bet": "1"})
        resp = self.client.post("/api/game/solo/join", json={"user_id": "2", "bet": "1"})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json()["game"]["solo"]["state"], "active")
        early = self.client.post("/api/game/solo/draw")
        self.assertEqual(early.status_code, 400)
        game = self.client.get("/api/game?user_id=1").get_json()["game"]
        self.assertEqual(game["your_bets"]["solo"], "1.000000000")

    def test_out_of_range_amounts_are_client_errors(self) -> None:
        resp = self.client.post("/api/game/solo/join", json={"user_id": "1", "bet": "1e20"})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.get_json()["error"], "Invalid bet")
        sync = self.client.post("/api/player/sync", json={"user_id": "1", "score": "1e20"})
        self.assertEqual(sync.status_code, 400)
        game = self.client.get("/api/game?user_id=1").get_json()["game"]
        self.assertEqual(game["solo"]["pot"], "0.000000000")

    def test_maintenance_blocks_game_mutations(self) -> None:
        set_app_config("MAINTENANCE_MODE", True)
        resp = self.client.post("/api/game/solo/join", json={"user_id": "1", "bet": "1"})
        self.assertEqual(resp.status_code, 503)
        self.assertEqual(self.client.get("/api/status").get_json()["maintenance"], True)
        self.assertEqual(self.client.get("/api/admin/players", headers=self._admin()).status_code, 200)

    def test_admin_gate(self) -> None:
        self.assertEqual(self.client.get("/api/admin/players").status_code, 401)
        wrong = self.client.get("/api/admin/players", headers={"X-Admin-Secret": "nope"})
        self.assertEqual(wrong.status_code, 401)
        denied = self.client.post("/api/coins/add", json={"user_id": "1", "amount": "1"})
        self.assertEqual(denied.status_code, 401)
        page = self.client.get("/api/admin/players", headers=self._admin()).get_json()
        self.assertEqual(page["total"], 2)
        self.assertEqual(page["players"][0]["user_id"], "1")

    def test_admin_mutations_are_audited(self) -> None:
        headers = self._admin()
        banned = self.client.post("/api/admin/players/2/ban", headers=headers)
        self.assertTrue(banned.get_json()["player"]["is_banned"])
        blocked = self.client.post("/api/player/sync", json={"user_id": "2", "score": "3"})
        self.assertEqual(blocked.status_code, 403)
        self.client.post("/api/admin/players/2/unban", headers=headers)

        adjusted = self.client.post("/api/admin/players/2/adjust", headers=headers, json={"delta": "-5"})
        self.assertEqual(adjusted.get_json()["player"]["score"], "0.000000000")
        both = self.client.post("/api/admin/players/2/adjust", headers=headers, json={"delta": "1", "score": "1"})
        self.assertEqual(both.status_code, 400)

        config = self.client.post("/api/admin/config", headers=headers, json={"name": "solo_round_seconds", "value": "30"})
        self.assertEqual(config.get_json()["value"], 30)
        unknown = self.client.post("/api/admin/config", headers=headers, json={"name": "NOPE", "value": "1"})
        self.assertEqual(unknown.status_code, 404)

        deleted = self.client.delete("/api/admin/players/2", headers=headers)
        self.assertEqual(deleted.status_code, 200)
        self.assertEqual(self.client.delete("/api/admin/players/2", headers=headers).status_code, 404)

        actions = [row["action"] for row in get_admin_logs()]
        self.assertEqual(actions, ["delete", "config", "adjust", "unban", "ban"])
        self.assertTrue(all(row["actor"] == "ops" for row in get_admin_logs()))
        logs = self.client.get("/api/admin/logs?limit=2", headers=headers).get_json()
        self.assertEqual(len(logs["admin"]), 2)

    def test_privileged_coin_grant_and_profile_sync(self) -> None:
        headers = self._admin()
        resp = self.client.post("/api/coins/add", headers=headers, json={"user_id": "1", "amount": "0.5"})
        self.assertEqual(resp.get_json()["player"]["score"], "5.500000000")
        profile = self.client.post(
            "/api/player/profile",
            headers=headers,
            json={"user_id": "3", "username": "@carol", "first_name": "Carol"},
        )
        self.assertEqual(profile.get_json()["player"]["username"], "carol")

    def test_store_failure_is_generic_500(self) -> None:
        with mock.patch("clickerbot.services.players.get_player", side_effect=sqlite3.OperationalError("disk")):
            with self.assertLogs(level="ERROR"):
                resp = self.client.get("/api/player/1")
        self.assertEqual(resp.status_code, 500)
        self.assertNotIn("disk", resp.get_json()["error"])


class AdminDisabledTests(DatabaseTestCase):
    def test_no_secret_disables_admin(self) -> None:
        with mock.patch("clickerbot.config.settings.ADMIN_SECRET", ""):
            client = create_app().test_client()
            resp = client.get("/api/admin/players", headers={"X-Admin-Secret": ""})
        self.assertEqual(resp.status_code, 401)


if __name__ == "__main__":
    unittest.main()
