import sqlite3
import unittest
from unittest import mock

from dbcase import DatabaseTestCase

from clickerbot.core.errors import InsufficientFunds, NotFound, SelfTransfer, TransferFailed, ValidationError
from clickerbot.services import wallet


class TransferTests(DatabaseTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.make_player(1, "5", username="alice")
        self.make_player(2, "1", username="Bob")

    def test_transfer_conserves_funds(self) -> None:
        result = wallet.transfer(1, "@bob", "2.5", self.now)
        self.assertEqual(self.score_of(1), "2.500000000")
        self.assertEqual(self.score_of(2), "3.500000000")
        self.assertEqual(result["receiver_id"], 2)
        self.assertIsNotNone(result["transaction_id"])

        rows = wallet.history(1)
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0]["direction"], "out")
        self.assertEqual(rows[0]["amount"], "2.500000000")
        self.assertEqual(wallet.history(2)[0]["direction"], "in")

    def test_validation_errors(self) -> None:
        with self.assertRaises(ValidationError):
            wallet.transfer(1, "bob", "0", self.now)
        with self.assertRaises(ValidationError):
            wallet.transfer(1, "bob", "lots", self.now)
        with self.assertRaises(ValidationError):
            wallet.transfer(1, "  @ ", "1", self.now)
        with self.assertRaises(NotFound):
            wallet.transfer(1, "carol", "1", self.now)
        with self.assertRaises(SelfTransfer):
            wallet.transfer(1, "ALICE", "1", self.now)
        with self.assertRaises(InsufficientFunds):
            wallet.transfer(1, "bob", "5.000000001", self.now)
        self.assertEqual(self.score_of(1), "5.000000000")
        self.assertEqual(self.score_of(2), "1.000000000")

    def test_failed_credit_restores_sender(self) -> None:
        real_credit = wallet._credit

        def flaky(player_id, amount):
            if player_id == 2:
                raise sqlite3.OperationalError("disk I/O error")
            return real_credit(player_id, amount)

        with mock.patch.object(wallet, "_credit", side_effect=flaky):
            with self.assertRaises(TransferFailed):
                wallet.transfer(1, "bob", "2", self.now)
        self.assertEqual(self.score_of(1), "5.000000000")
        self.assertEqual(self.score_of(2), "1.000000000")
        self.assertEqual(wallet.history(1), [])

    def test_failed_compensation_is_logged(self) -> None:
        with mock.patch.object(wallet, "_credit", side_effect=sqlite3.OperationalError("gone")):
            with self.assertLogs("clickerbot.wallet", level="CRITICAL"):
                with self.assertRaises(TransferFailed):
                    wallet.transfer(1, "bob", "2", self.now)
        self.assertEqual(self.score_of(1), "3.000000000")

    def test_ledger_failure_still_reports_success(self) -> None:
        with mock.patch.object(wallet, "add_transaction", side_effect=sqlite3.OperationalError("locked")):
            with self.assertLogs("clickerbot.wallet", level="ERROR"):
                result = wallet.transfer(1, "bob", "1", self.now)
        self.assertIsNone(result["transaction_id"])
        self.assertEqual(self.score_of(1), "4.000000000")
        self.assertEqual(self.score_of(2), "2.000000000")


if __name__ == "__main__":
    unittest.main()
