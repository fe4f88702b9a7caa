"""
Data models for storage layer.

Defines ledger and optimization record entities.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple

from catalog_optimizer.core.catalog import OptimizationType


@dataclass(frozen=True)
class CreditAccount:
    """Credit balance holder; balance is never negative."""
    owner_id: str
    balance: int
    created_at: datetime


@dataclass(frozen=True)
class CreditTransaction:
    """Immutable record of a single balance movement.

    Append-only entries: the sum of deltas for an account always equals
    its current balance.
    """
    id: int
    account_id: str
    delta: int
    reason: str
    timestamp: datetime
    related_entity_id: Optional[str] = None


@dataclass(frozen=True)
class ReconciliationReport:
    """Comparison of an account's balance with its transaction log."""
    account_id: str
    balance: int
    ledger_total: int
    transaction_count: int

    @property
    def consistent(self) -> bool:
        return self.balance == self.ledger_total


@dataclass(frozen=True)
class OptimizationRecord:
    """Latest applied optimization for a (store, product, type) key."""
    store_id: str
    product_id: str
    optimization_type: OptimizationType
    original_value: Optional[str]
    optimized_value: str
    credits_used: int
    applied_at: datetime

    @property
    def key(self) -> Tuple[str, str, OptimizationType]:
        return (self.store_id, self.product_id, self.optimization_type)


@dataclass(frozen=True)
class OptimizationSummary:
    """Optimization activity for a store across all types."""
    store_id: str
    optimized_products: int
    total_optimizations: int
    types: Tuple[OptimizationType, ...]
