from __future__ import annotations

import unittest

from _support import AppTestCase
from rebooked.models import WalletTransaction
from rebooked.services.errors import InsufficientFunds, InvalidAmount, InvalidPayoutState
from rebooked.services.reconciliation_service import recompute_wallet_balances
from rebooked.services.wallet_service import (
    approve_payout,
    credit_on_collection,
    deny_payout,
    get_or_create_wallet,
    mark_payout_paid,
    request_payout,
    wallet_summary,
)
from rebooked.utils.money import PLATFORM_COMMISSION_BPS, SELLER_PAYOUT_BPS, bps_of_minor, seller_credit_minor


class WalletLedgerTestCase(AppTestCase):
    def setUp(self):
        super().setUp()
        self.seller = self.make_user("S1")
        self.admin = self.make_user("A1", role="admin")

    def test_credit_is_ninety_percent_rounded_half_up(self):
        self.assertEqual(seller_credit_minor(25000), 22500)
        self.assertEqual(seller_credit_minor(105), 95)
        self.assertEqual(seller_credit_minor(1), 1)

    def test_commission_and_payout_shares_cover_the_sale(self):
        self.assertEqual(SELLER_PAYOUT_BPS + PLATFORM_COMMISSION_BPS, 10000)
        self.assertEqual(seller_credit_minor(25000) + bps_of_minor(25000, PLATFORM_COMMISSION_BPS), 25000)

    def test_credit_on_collection_is_idempotent_per_order(self):
        first = credit_on_collection("O1", "S1", 25000)
        second = credit_on_collection("O1", "S1", 25000)

        self.assertTrue(first.success)
        self.assertFalse(first.duplicate)
        self.assertEqual(first.credit_amount, 22500)
        self.assertEqual(first.new_balance, 22500)
        self.assertTrue(second.duplicate)
        self.assertEqual(second.new_balance, 22500)
        self.assertEqual(WalletTransaction.query.filter_by(reference_order_id="O1", type="credit").count(), 1)

        wallet = get_or_create_wallet("S1")
        self.assertEqual(wallet.total_earned, 22500)

    def test_zero_credit_is_rejected(self):
        with self.assertRaises(InvalidAmount):
            credit_on_collection("O1", "S1", 0)

    def test_payout_request_reserves_funds(self):
        credit_on_collection("O1", "S1", 10000)

        payout = request_payout("S1", 5000, notes="rent")

        wallet = get_or_create_wallet("S1")
        self.assertEqual(payout.status, "pending")
        self.assertEqual(wallet.available_balance, 4000)
        self.assertEqual(wallet.pending_balance, 5000)

    def test_payout_above_balance_is_refused(self):
        credit_on_collection("O1", "S1", 10000)
        with self.assertRaises(InsufficientFunds):
            request_payout("S1", 9001)
        self.assertEqual(get_or_create_wallet("S1").available_balance, 9000)

    def test_denied_payout_returns_funds(self):
        credit_on_collection("O1", "S1", 10000)
        payout = request_payout("S1", 5000)

        denied = deny_payout(payout.id, "A1", notes="bank details invalid")

        wallet = get_or_create_wallet("S1")
        self.assertEqual(denied.status, "denied")
        self.assertEqual(wallet.available_balance, 9000)
        self.assertEqual(wallet.pending_balance, 0)

    def test_approved_payout_can_then_be_marked_paid(self):
        credit_on_collection("O1", "S1", 10000)
        payout = request_payout("S1", 5000)

        approve_payout(payout.id, "A1")
        paid = mark_payout_paid(payout.id, "A1")

        wallet = get_or_create_wallet("S1")
        self.assertEqual(paid.status, "paid")
        self.assertEqual(wallet.available_balance, 4000)
        self.assertEqual(wallet.pending_balance, 0)
        with self.assertRaises(InvalidPayoutState):
            deny_payout(payout.id, "A1")

    def test_pending_payout_cannot_be_marked_paid(self):
        credit_on_collection("O1", "S1", 10000)
        payout = request_payout("S1", 1000)
        with self.assertRaises(InvalidPayoutState):
            mark_payout_paid(payout.id, "A1")

    def test_ledger_matches_balance_after_payout_activity(self):
        credit_on_collection("O1", "S1", 10000)
        credit_on_collection("O2", "S1", 4000)
        first = request_payout("S1", 3000)
        second = request_payout("S1", 2000)
        approve_payout(first.id, "A1")
        deny_payout(second.id, "A1")

        summary = recompute_wallet_balances(user_id="S1")

        self.assertTrue(summary["ok"])
        self.assertEqual(summary["drift_count"], 0)
        self.assertEqual(get_or_create_wallet("S1").available_balance, 12600 - 3000)

    def test_wallet_summary_lists_transactions_and_payouts(self):
        credit_on_collection("O1", "S1", 10000)
        request_payout("S1", 1000)

        summary = wallet_summary("S1")

        self.assertEqual(summary["wallet"]["available_balance"], 8000)
        self.assertEqual({t["type"] for t in summary["transactions"]}, {"credit", "hold"})
        self.assertEqual(len(summary["payouts"]), 1)


if __name__ == "__main__":
    unittest.main()
