import json
import unittest
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from clickerbot.core.game_state import (
    RoundState,
    default_game_state,
    dump_game_state,
    entries_total,
    parse_game_state,
    pick_weighted,
    round_state,
)


class GameStateDocumentTests(unittest.TestCase):
    def test_missing_or_garbage_document_gives_defaults(self) -> None:
        for raw in (None, "", "not json", "[1, 2]", json.dumps({"solo": "x", "team": 3})):
            with self.subTest(raw=raw):
                self.assertEqual(parse_game_state(raw), default_game_state())

    def test_bad_entries_are_dropped(self) -> None:
        raw = json.dumps(
            {
                "solo": {
                    "pot": "4",
                    "participants": [
                        {"user_id": "1", "bet": "1"},
                        {"user_id": "abc", "bet": "1"},
                        {"user_id": "2", "bet": "-3"},
                        {"user_id": 3, "bet": "3", "username": "c"},
                        "junk",
                    ],
                    "end_time": "2026-01-01T12:00:00Z",
                    "is_active": True,
                },
                "your_bets": {"1": {"solo": "1"}, "2": "junk"},
            }
        )
        doc = parse_game_state(raw)
        solo = doc["solo"]
        self.assertEqual([e["user_id"] for e in solo["participants"]], ["1", "3"])
        self.assertEqual(solo["participants"][1]["bet"], "3.000000000")
        self.assertEqual(solo["pot"], "4.000000000")
        self.assertEqual(solo["end_time"], "2026-01-01T12:00:00+00:00")
        self.assertEqual(doc["your_bets"], {"1": {"solo": "1.000000000", "team": "0.000000000"}})

    def test_active_flag_needs_end_time(self) -> None:
        doc = parse_game_state(json.dumps({"team": {"is_active": True, "end_time": "soon"}}))
        self.assertFalse(doc["team"]["is_active"])
        self.assertIsNone(doc["team"]["end_time"])

    def test_dump_parse_keeps_document(self) -> None:
        doc = default_game_state()
        doc["recent_winners"].append({"game": "solo", "amount": "1.000000000"})
        self.assertEqual(parse_game_state(dump_game_state(doc)), doc)


class RoundStateTests(unittest.TestCase):
    now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def test_lifecycle(self) -> None:
        section = {"is_active": False, "end_time": None}
        self.assertEqual(round_state(section, 0, self.now), RoundState.IDLE)
        self.assertEqual(round_state(section, 1, self.now), RoundState.COLLECTING)
        section = {"is_active": True, "end_time": (self.now + timedelta(seconds=1)).isoformat()}
        self.assertEqual(round_state(section, 2, self.now), RoundState.ACTIVE)
        self.assertEqual(round_state(section, 2, self.now + timedelta(seconds=1)), RoundState.DRAWABLE)


class WeightedPickTests(unittest.TestCase):
    def test_first_cumulative_match_wins(self) -> None:
        weights = [Decimal("1"), Decimal("3")]
        self.assertEqual(pick_weighted(weights, Decimal("2.5")), 1)
        self.assertEqual(pick_weighted(weights, Decimal("1")), 0)
        self.assertEqual(pick_weighted(weights, Decimal("0")), 0)
        self.assertEqual(pick_weighted(weights, Decimal("1.000000001")), 1)

    def test_empty_round_cannot_pick(self) -> None:
        with self.assertRaises(ValueError):
            pick_weighted([], Decimal("0"))

    def test_entries_total(self) -> None:
        self.assertEqual(entries_total([{"bet": "1.5"}, {"bet": "0.000000001"}]), Decimal("1.500000001"))


if __name__ == "__main__":
    unittest.main()
