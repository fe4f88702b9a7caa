"""
Credit top-ups from the external purchase flow.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional

from .errors import ValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CreditPackage:
    name: str
    credits: int
    price_cents: int


CREDIT_PACKAGES: Dict[str, CreditPackage] = {
    "starter": CreditPackage("starter", credits=50, price_cents=900),
    "growth": CreditPackage("growth", credits=150, price_cents=1900),
    "professional": CreditPackage("professional", credits=500, price_cents=3900),
}


def get_package(name: str) -> CreditPackage:
    """Look up a credit package by name.

    Raises:
        ValidationError: If the package is unknown
    """
    package = CREDIT_PACKAGES.get((name or "").lower())
    if package is None:
        raise ValidationError(
            f"Unknown credit package '{name}', must be one of: {sorted(CREDIT_PACKAGES)}"
        )
    return package


class BillingTopUp:
    """Feeds confirmed purchases into the credit ledger.

    The payment processor is out of scope; callers invoke this once a
    payment has been confirmed, passing the payment reference as memo.
    """

    def __init__(self, ledger):
        self.ledger = ledger

    def credit(self, account_id: str, amount: int, memo: str, payment_id: Optional[str] = None):
        """Add purchased credits to an account.

        Returns:
            The appended CreditTransaction
        """
        if not memo or not memo.strip():
            raise ValidationError("memo is required and cannot be empty")
        transaction = self.ledger.credit(account_id, amount, reason=memo, related_id=payment_id)
        logger.info(f"Top-up of {amount} credits for {account_id}: {memo}")
        return transaction

    def purchase_package(self, account_id: str, package_name: str, payment_id: Optional[str] = None):
        package = get_package(package_name)
        return self.credit(
            account_id,
            package.credits,
            memo=f"Credit purchase - {package.name} package",
            payment_id=payment_id,
        )
