import unittest
from datetime import timedelta
from decimal import Decimal
from unittest import mock

from dbcase import DatabaseTestCase

from clickerbot.core.errors import BalanceConflict, PlayerBanned, ValidationError
from clickerbot.db import get_action_logs, get_player, set_player_banned
from clickerbot.services import lottery, players


class OfflineEarningsTests(unittest.TestCase):
    def test_formula_is_exact(self) -> None:
        granted = players.offline_earnings(Decimal("0.000000002"), Decimal("0.000003600"), 100)
        # 0.000000002 * 100 + 0.0000036 * 100 / 3600
        self.assertEqual(granted, Decimal("0.000000300"))


class PlayerLedgerTests(DatabaseTestCase):
    def test_get_or_create_inserts_floor_record(self) -> None:
        player = players.get_or_create(42, self.now)
        self.assertEqual(player["score"], Decimal("0"))
        self.assertEqual(player["click_value"], Decimal("0.000000001"))
        self.assertEqual(player["upgrade_levels"], {})
        self.assertEqual(players.get_or_create(42, self.now)["user_id"], 42)

    def test_short_absence_is_not_settled(self) -> None:
        self.make_player(1, "1", auto_click_rate="1")
        player, granted = players.settle_offline(get_player(1), self.now + timedelta(seconds=10))
        self.assertEqual(granted, Decimal("0"))
        self.assertEqual(self.score_of(1), "1.000000000")
        self.assertEqual(player["last_updated"], self.now.isoformat())
        self.assertEqual(get_action_logs(user_id=1), [])

    def test_long_absence_grants_both_rates(self) -> None:
        self.make_player(1, "1", auto_click_rate="0.000000001", offline_rate_per_hour="0.000036000")
        later = self.now + timedelta(hours=1)
        player, granted = players.settle_offline(get_player(1), later)
        # 3600 s * 1e-9 + 1 h * 3.6e-5
        self.assertEqual(granted, Decimal("0.000039600"))
        self.assertEqual(self.score_of(1), "1.000039600")
        self.assertEqual(get_player(1)["last_updated"], later.isoformat())
        logs = get_action_logs(user_id=1)
        self.assertEqual(logs[0]["action_type"], "offline_earnings")
        self.assertEqual(logs[0]["amount"], "0.000039600")

    def test_banned_players_do_not_accrue(self) -> None:
        self.make_player(1, "1", auto_click_rate="1")
        set_player_banned(1, True)
        _player, granted = players.settle_offline(get_player(1), self.now + timedelta(hours=1))
        self.assertEqual(granted, Decimal("0"))
        self.assertEqual(self.score_of(1), "1.000000000")

    def test_sync_balance_stores_reported_score(self) -> None:
        self.make_player(1, "1")
        player = players.sync_balance(1, "2.5", self.now + timedelta(seconds=5))
        self.assertEqual(player["score"], Decimal("2.5"))
        self.assertEqual(self.score_of(1), "2.500000000")

    def test_sync_balance_rejects_negative_and_banned(self) -> None:
        self.make_player(1, "1")
        with self.assertRaises(ValidationError):
            players.sync_balance(1, "-1", self.now)
        set_player_banned(1, True)
        with self.assertRaises(PlayerBanned):
            players.sync_balance(1, "5", self.now)

    def test_sync_balance_refuses_to_overwrite_a_concurrent_stake(self) -> None:
        self.make_player(1, "10")
        real_fetch = players.fetch_player

        def fetch_then_stake(player_id, now=None):
            player = real_fetch(player_id, now)
            lottery.solo_join(player_id, "5", now)
            return player

        with mock.patch.object(players, "fetch_player", side_effect=fetch_then_stake):
            with self.assertRaises(BalanceConflict):
                players.sync_balance(1, "10", self.now)
        self.assertEqual(self.score_of(1), "5.000000000")
        self.assertEqual(lottery.get_game_state(1, self.now)["solo"]["pot"], "5.000000000")
        self.assertNotIn("sync", [row["action_type"] for row in get_action_logs(user_id=1)])

    def test_sync_profile_creates_then_updates(self) -> None:
        created = players.sync_profile({"user_id": "7", "username": "@Alice", "first_name": "Alice"}, self.now)
        self.assertEqual(created["username"], "Alice")
        updated = players.sync_profile({"user_id": 7, "language_code": "en"}, self.now)
        self.assertEqual(updated["language_code"], "en")
        self.assertEqual(updated["first_name"], "Alice")

    def test_parse_player_id(self) -> None:
        self.assertEqual(players.parse_player_id("+15"), 15)
        for raw in (None, "", "abc", "0", "-3"):
            with self.subTest(raw=raw):
                with self.assertRaises(ValidationError):
                    players.parse_player_id(raw)

    def test_add_coins(self) -> None:
        self.make_player(1, "1")
        players.add_coins(1, "0.5", self.now)
        self.assertEqual(self.score_of(1), "1.500000000")
        with self.assertRaises(ValidationError):
            players.add_coins(1, "0", self.now)

    def test_leaderboard_orders_exactly(self) -> None:
        self.make_player(1, "1.000000001")
        self.make_player(2, "1.000000002")
        self.make_player(3, "0.5")
        board = players.leaderboard("score")
        self.assertEqual([row["user_id"] for row in board], ["2", "1", "3"])
        self.assertEqual(board[0]["value"], "1.000000002")
        with self.assertRaises(ValidationError):
            players.leaderboard("is_admin")

    def test_fetch_missing_player_creates_it(self) -> None:
        player = players.fetch_player(99, self.now)
        self.assertEqual(player["user_id"], 99)


if __name__ == "__main__":
    unittest.main()
