import unittest
from decimal import Decimal

from dbcase import DatabaseTestCase

from clickerbot.core.errors import InsufficientFunds, NotFound
from clickerbot.core.upgrades import UPGRADES, UpgradeKind, get_upgrade
from clickerbot.db import get_action_logs, get_player
from clickerbot.services.upgrades import catalog_view, purchase, upgrade_cost


class CostCurveTests(unittest.TestCase):
    def test_cost_grows_by_multiplier(self) -> None:
        upgrade = get_upgrade("click_tier_1")
        self.assertEqual(upgrade_cost(upgrade, 0), Decimal("0.000000064"))
        # 64e-9 * 1.215 = 77.76e-9
        self.assertEqual(upgrade_cost(upgrade, 1), Decimal("0.000000078"))
        self.assertEqual(upgrade_cost(upgrade, 2), Decimal("0.000000094"))

    def test_catalog_covers_three_kinds(self) -> None:
        kinds = {u.kind for u in UPGRADES.values()}
        self.assertEqual(kinds, set(UpgradeKind))
        self.assertEqual(get_upgrade("OFFLINE_TIER_1").kind.target_field, "offline_rate_per_hour")
        self.assertIsNone(get_upgrade("nope"))


class PurchaseTests(DatabaseTestCase):
    def test_click_tier_one_purchase(self) -> None:
        self.make_player(1, "0.000000100")
        result = purchase(1, "click_tier_1", self.now)
        player = get_player(1)
        self.assertEqual(player["score"], Decimal("0.000000036"))
        self.assertEqual(player["click_value"], Decimal("0.000000002"))
        self.assertEqual(player["upgrade_levels"], {"click_tier_1": 1})
        self.assertEqual(result["level"], 1)
        self.assertEqual(result["next_cost"], Decimal("0.000000078"))
        self.assertEqual(get_action_logs(user_id=1)[0]["action_type"], "upgrade")

    def test_offline_upgrade_raises_offline_rate(self) -> None:
        self.make_player(1, "1")
        purchase(1, "offline_tier_1", self.now)
        player = get_player(1)
        self.assertEqual(player["offline_rate_per_hour"], Decimal("0.000000036"))
        self.assertEqual(player["auto_click_rate"], Decimal("0"))

    def test_insufficient_funds_changes_nothing(self) -> None:
        self.make_player(1, "0.000000063")
        with self.assertRaises(InsufficientFunds):
            purchase(1, "click_tier_1", self.now)
        player = get_player(1)
        self.assertEqual(player["score"], Decimal("0.000000063"))
        self.assertEqual(player["upgrade_levels"], {})

    def test_unknown_upgrade(self) -> None:
        self.make_player(1, "1")
        with self.assertRaises(NotFound):
            purchase(1, "gold_tier_9", self.now)

    def test_catalog_view_reports_player_levels(self) -> None:
        self.make_player(1, "1")
        purchase(1, "auto_tier_1", self.now)
        rows = {row["id"]: row for row in catalog_view(get_player(1))}
        self.assertEqual(rows["auto_tier_1"]["level"], 1)
        self.assertEqual(rows["auto_tier_1"]["cost"], "0.000000156")
        self.assertEqual(rows["click_tier_1"]["level"], 0)


if __name__ == "__main__":
    unittest.main()
