"""
Unit tests for the credit ledger.

Tests atomic debits, credits, the transaction log and reconciliation.
"""

import os
import tempfile
import threading

import pytest

from catalog_optimizer.core.billing import BillingTopUp, get_package
from catalog_optimizer.core.errors import (
    InsufficientCreditsError,
    NotFoundError,
    ValidationError,
)
from catalog_optimizer.storage.db import get_connection, initialize_schema
from catalog_optimizer.storage.ledger import CreditLedger


class TestLedger:
    """Test balance movements and their transaction records."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "test.db")
        initialize_schema(self.db_path)
        self.ledger = CreditLedger(self.db_path)

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_create_account_records_opening_balance(self):
        account = self.ledger.create_account("merchant-1", opening_balance=25)

        assert account.balance == 25
        assert self.ledger.get_balance("merchant-1") == 25
        entries = self.ledger.get_transactions("merchant-1")
        assert len(entries) == 1
        assert entries[0].delta == 25
        assert entries[0].reason == "opening_balance"

    def test_create_account_with_zero_balance_has_no_transactions(self):
        self.ledger.create_account("merchant-1")
        assert self.ledger.get_transactions("merchant-1") == []

    def test_duplicate_account_rejected(self):
        self.ledger.create_account("merchant-1", opening_balance=5)
        with pytest.raises(ValidationError, match="already exists"):
            self.ledger.create_account("merchant-1", opening_balance=5)
        assert self.ledger.get_balance("merchant-1") == 5

    def test_debit_decrements_and_logs(self):
        self.ledger.create_account("merchant-1", opening_balance=3)

        transaction = self.ledger.debit("merchant-1", 1, "title optimization", related_id="1001")

        assert transaction.delta == -1
        assert transaction.related_entity_id == "1001"
        assert self.ledger.get_balance("merchant-1") == 2
        assert self.ledger.get_transactions("merchant-1")[0].id == transaction.id

    def test_debit_with_zero_balance_fails_and_leaves_balance(self):
        self.ledger.create_account("merchant-1", opening_balance=0)

        with pytest.raises(InsufficientCreditsError) as excinfo:
            self.ledger.debit("merchant-1", 1, "title optimization")

        assert excinfo.value.required == 1
        assert excinfo.value.available == 0
        assert excinfo.value.to_dict()["error"] == "INSUFFICIENT_CREDITS"
        assert self.ledger.get_balance("merchant-1") == 0
        assert self.ledger.get_transactions("merchant-1") == []

    def test_debit_more_than_balance(self):
        self.ledger.create_account("merchant-1", opening_balance=2)
        with pytest.raises(InsufficientCreditsError):
            self.ledger.debit("merchant-1", 3, "bulk")
        assert self.ledger.get_balance("merchant-1") == 2

    @pytest.mark.parametrize("amount", [0, -1, 1.5, True, "1"])
    def test_invalid_amounts_rejected(self, amount):
        self.ledger.create_account("merchant-1", opening_balance=5)
        with pytest.raises(ValidationError):
            self.ledger.debit("merchant-1", amount, "bad")
        with pytest.raises(ValidationError):
            self.ledger.credit("merchant-1", amount, "bad")
        assert self.ledger.get_balance("merchant-1") == 5

    def test_unknown_account(self):
        with pytest.raises(NotFoundError):
            self.ledger.get_balance("nobody")
        with pytest.raises(NotFoundError):
            self.ledger.debit("nobody", 1, "x")
        with pytest.raises(NotFoundError):
            self.ledger.credit("nobody", 1, "x")

    def test_credit_increments_and_logs(self):
        self.ledger.create_account("merchant-1")
        transaction = self.ledger.credit("merchant-1", 50, "Credit purchase", related_id="pi_1")

        assert transaction.delta == 50
        assert self.ledger.get_balance("merchant-1") == 50

    def test_transactions_newest_first_with_limit(self):
        self.ledger.create_account("merchant-1", opening_balance=10)
        for i in range(5):
            self.ledger.debit("merchant-1", 1, f"debit {i}")

        entries = self.ledger.get_transactions("merchant-1", limit=3)

        assert [e.reason for e in entries] == ["debit 4", "debit 3", "debit 2"]

    def test_reconcile_consistent(self):
        self.ledger.create_account("merchant-1", opening_balance=10)
        self.ledger.debit("merchant-1", 3, "usage")
        self.ledger.credit("merchant-1", 5, "refund")

        report = self.ledger.reconcile("merchant-1")

        assert report.balance == 12
        assert report.ledger_total == 12
        assert report.transaction_count == 3
        assert report.consistent

    def test_reconcile_detects_tampering(self):
        self.ledger.create_account("merchant-1", opening_balance=10)
        conn = get_connection(self.db_path)
        try:
            conn.execute("UPDATE credit_account SET balance = 99 WHERE owner_id = 'merchant-1'")
            conn.commit()
        finally:
            conn.close()

        assert not self.ledger.reconcile("merchant-1").consistent

    def test_concurrent_debits_never_overdraw(self):
        """More concurrent debits than credits: exactly balance-many succeed."""
        self.ledger.create_account("merchant-1", opening_balance=10)
        outcomes = []
        lock = threading.Lock()

        def worker():
            try:
                self.ledger.debit("merchant-1", 1, "race")
                result = "ok"
            except InsufficientCreditsError:
                result = "insufficient"
            with lock:
                outcomes.append(result)

        threads = [threading.Thread(target=worker) for _ in range(25)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert outcomes.count("ok") == 10
        assert outcomes.count("insufficient") == 15
        assert self.ledger.get_balance("merchant-1") == 0
        assert self.ledger.reconcile("merchant-1").consistent


class TestBillingTopUp:
    """Test purchases feeding the ledger."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "test.db")
        initialize_schema(self.db_path)
        self.ledger = CreditLedger(self.db_path)
        self.ledger.create_account("merchant-1")

    def teardown_method(self):
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_credit_with_memo(self):
        BillingTopUp(self.ledger).credit("merchant-1", 20, "Manual grant", payment_id="pi_9")

        entry = self.ledger.get_transactions("merchant-1")[0]
        assert entry.delta == 20
        assert entry.reason == "Manual grant"
        assert entry.related_entity_id == "pi_9"

    def test_memo_required(self):
        with pytest.raises(ValidationError):
            BillingTopUp(self.ledger).credit("merchant-1", 20, "  ")

    def test_purchase_package(self):
        BillingTopUp(self.ledger).purchase_package("merchant-1", "growth")
        assert self.ledger.get_balance("merchant-1") == 150

    def test_unknown_package(self):
        with pytest.raises(ValidationError, match="Unknown credit package"):
            get_package("enterprise")
