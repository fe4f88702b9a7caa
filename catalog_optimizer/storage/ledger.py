"""
Credit ledger.

Atomic balance storage plus an append-only transaction log. The balance is
only ever changed together with a transaction row, inside one SQLite write
transaction, so the sum of an account's deltas always equals its balance.
"""

import logging
import sqlite3
from datetime import datetime, timezone
from typing import List, Optional

from catalog_optimizer.core.errors import (
    InsufficientCreditsError,
    NotFoundError,
    ValidationError,
)
from .db import DEFAULT_DB_PATH, get_connection
from .models import CreditAccount, CreditTransaction, ReconciliationReport

logger = logging.getLogger(__name__)


def _validate_amount(amount) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValidationError(f"amount must be a positive integer, got {amount!r}")


def _insert_transaction(
    conn: sqlite3.Connection,
    account_id: str,
    delta: int,
    reason: str,
    related_id: Optional[str]
) -> CreditTransaction:
    timestamp = datetime.now(timezone.utc)
    cursor = conn.execute("""
        INSERT INTO credit_transaction
        (account_id, delta, reason, related_entity_id, timestamp)
        VALUES (?, ?, ?, ?, ?)
    """, (account_id, delta, reason, related_id, timestamp.isoformat()))
    return CreditTransaction(
        id=cursor.lastrowid,
        account_id=account_id,
        delta=delta,
        reason=reason,
        timestamp=timestamp,
        related_entity_id=related_id,
    )


class CreditLedger:
    """SQLite-backed credit accounts and transaction log.

    Every method opens its own connection, so a single ledger instance can
    be shared by concurrent worker threads.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def create_account(self, owner_id: str, opening_balance: int = 0) -> CreditAccount:
        """Create a credit account, recording any opening balance as a credit.

        Raises:
            ValidationError: If the owner id is empty, the opening balance is
                negative, or the account already exists
        """
        if not owner_id or not str(owner_id).strip():
            raise ValidationError("owner_id is required and cannot be empty")
        if isinstance(opening_balance, bool) or not isinstance(opening_balance, int) or opening_balance < 0:
            raise ValidationError(
                f"opening_balance must be a non-negative integer, got {opening_balance!r}"
            )

        created_at = datetime.now(timezone.utc)
        conn = get_connection(self.db_path)
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                conn.execute(
                    "INSERT INTO credit_account (owner_id, balance, created_at) VALUES (?, ?, ?)",
                    (owner_id, opening_balance, created_at.isoformat())
                )
            except sqlite3.IntegrityError:
                conn.rollback()
                raise ValidationError(f"Credit account already exists for {owner_id}")
            if opening_balance:
                _insert_transaction(conn, owner_id, opening_balance, "opening_balance", None)
            conn.commit()
        except Exception:
            if conn.in_transaction:
                conn.rollback()
            raise
        finally:
            conn.close()

        logger.info(f"Created credit account {owner_id} with {opening_balance} credits")
        return CreditAccount(owner_id=owner_id, balance=opening_balance, created_at=created_at)

    def get_account(self, account_id: str) -> CreditAccount:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT owner_id, balance, created_at FROM credit_account WHERE owner_id = ?",
                (account_id,)
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            raise NotFoundError(f"Credit account not found: {account_id}")
        return CreditAccount(
            owner_id=row[0],
            balance=row[1],
            created_at=datetime.fromisoformat(row[2]),
        )

    def get_balance(self, account_id: str) -> int:
        """Current balance of an account.

        Raises:
            NotFoundError: If the account does not exist
        """
        return self.get_account(account_id).balance

    def debit(
        self,
        account_id: str,
        amount: int,
        reason: str,
        related_id: Optional[str] = None
    ) -> CreditTransaction:
        """Atomically decrement the balance if it covers the amount.

        The decrement is a single conditional UPDATE, so concurrent callers
        can never overdraw the account. The transaction row is written in the
        same database transaction.

        Args:
            account_id: Account to charge
            amount: Positive number of credits
            reason: Description stored on the transaction
            related_id: Optional id of the entity the charge is for

        Returns:
            The appended CreditTransaction (negative delta)

        Raises:
            ValidationError: If amount is not a positive integer
            NotFoundError: If the account does not exist
            InsufficientCreditsError: If the balance is below amount
        """
        _validate_amount(amount)
        conn = get_connection(self.db_path)
        try:
            conn.execute("BEGIN IMMEDIATE")
            cursor = conn.execute("""
                UPDATE credit_account
                SET balance = balance - ?
                WHERE owner_id = ? AND balance >= ?
            """, (amount, account_id, amount))
            if cursor.rowcount != 1:
                row = conn.execute(
                    "SELECT balance FROM credit_account WHERE owner_id = ?",
                    (account_id,)
                ).fetchone()
                conn.rollback()
                if row is None:
                    raise NotFoundError(f"Credit account not found: {account_id}")
                raise InsufficientCreditsError(required=amount, available=row[0])
            transaction = _insert_transaction(conn, account_id, -amount, reason, related_id)
            conn.commit()
        except Exception:
            if conn.in_transaction:
                conn.rollback()
            raise
        finally:
            conn.close()

        logger.info(f"Debited {amount} credits from {account_id} ({reason})")
        return transaction

    def credit(
        self,
        account_id: str,
        amount: int,
        reason: str,
        related_id: Optional[str] = None
    ) -> CreditTransaction:
        """Unconditionally increment the balance (refunds and top-ups).

        Raises:
            ValidationError: If amount is not a positive integer
            NotFoundError: If the account does not exist
        """
        _validate_amount(amount)
        conn = get_connection(self.db_path)
        try:
            conn.execute("BEGIN IMMEDIATE")
            cursor = conn.execute(
                "UPDATE credit_account SET balance = balance + ? WHERE owner_id = ?",
                (amount, account_id)
            )
            if cursor.rowcount != 1:
                conn.rollback()
                raise NotFoundError(f"Credit account not found: {account_id}")
            transaction = _insert_transaction(conn, account_id, amount, reason, related_id)
            conn.commit()
        except Exception:
            if conn.in_transaction:
                conn.rollback()
            raise
        finally:
            conn.close()

        logger.info(f"Credited {amount} credits to {account_id} ({reason})")
        return transaction

    def get_transactions(self, account_id: str, limit: int = 50) -> List[CreditTransaction]:
        """Transactions for an account, newest first."""
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("""
                SELECT id, account_id, delta, reason, related_entity_id, timestamp
                FROM credit_transaction
                WHERE account_id = ?
                ORDER BY id DESC
                LIMIT ?
            """, (account_id, limit))
            return [
                CreditTransaction(
                    id=row[0],
                    account_id=row[1],
                    delta=row[2],
                    reason=row[3],
                    related_entity_id=row[4],
                    timestamp=datetime.fromisoformat(row[5]),
                )
                for row in cursor.fetchall()
            ]
        finally:
            conn.close()

    def reconcile(self, account_id: str) -> ReconciliationReport:
        """Compare the stored balance against the sum of logged deltas.

        Both values are read in one statement so a concurrent debit cannot
        land between them.

        Raises:
            NotFoundError: If the account does not exist
        """
        conn = get_connection(self.db_path)
        try:
            row = conn.execute("""
                SELECT a.balance,
                       COALESCE(SUM(t.delta), 0),
                       COUNT(t.id)
                FROM credit_account a
                LEFT JOIN credit_transaction t ON t.account_id = a.owner_id
                WHERE a.owner_id = ?
                GROUP BY a.owner_id
            """, (account_id,)).fetchone()
        finally:
            conn.close()
        if row is None:
            raise NotFoundError(f"Credit account not found: {account_id}")
        report = ReconciliationReport(
            account_id=account_id,
            balance=row[0],
            ledger_total=row[1],
            transaction_count=row[2],
        )
        if not report.consistent:
            logger.error(
                f"Ledger mismatch for {account_id}: balance={report.balance} "
                f"ledger_total={report.ledger_total}"
            )
        return report
