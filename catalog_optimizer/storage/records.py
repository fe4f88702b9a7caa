"""
Optimization record store.

Keeps the latest applied optimization per (store, product, type). This is the
source of truth for whether a product has already been optimized.
"""

from datetime import datetime, timezone
from typing import Dict, Optional

from catalog_optimizer.core.catalog import OptimizationType
from .db import DEFAULT_DB_PATH, get_connection
from .models import OptimizationRecord, OptimizationSummary

_COLUMNS = """
    store_id, product_id, optimization_type, original_value,
    optimized_value, credits_used, applied_at
"""


def _row_to_record(row) -> OptimizationRecord:
    return OptimizationRecord(
        store_id=row[0],
        product_id=row[1],
        optimization_type=OptimizationType(row[2]),
        original_value=row[3],
        optimized_value=row[4],
        credits_used=row[5],
        applied_at=datetime.fromisoformat(row[6]),
    )


class OptimizationRecordStore:
    """SQLite-backed store of applied optimizations."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def get_map(
        self,
        store_id: str,
        optimization_type: OptimizationType
    ) -> Dict[str, OptimizationRecord]:
        """All records for a store and type, keyed by product id."""
        optimization_type = OptimizationType.parse(optimization_type)
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(f"""
                SELECT {_COLUMNS}
                FROM optimization_record
                WHERE store_id = ? AND optimization_type = ?
            """, (store_id, optimization_type.value))
            return {row[1]: _row_to_record(row) for row in cursor.fetchall()}
        finally:
            conn.close()

    def get(
        self,
        store_id: str,
        product_id: str,
        optimization_type: OptimizationType
    ) -> Optional[OptimizationRecord]:
        optimization_type = OptimizationType.parse(optimization_type)
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(f"""
                SELECT {_COLUMNS}
                FROM optimization_record
                WHERE store_id = ? AND product_id = ? AND optimization_type = ?
            """, (store_id, product_id, optimization_type.value)).fetchone()
        finally:
            conn.close()
        return _row_to_record(row) if row else None

    def upsert(
        self,
        store_id: str,
        product_id: str,
        optimization_type: OptimizationType,
        original_value: Optional[str],
        optimized_value: str,
        credits_used: int
    ) -> OptimizationRecord:
        """Replace any prior record for the key.

        Callers must only record an optimization after the catalog mutation
        and the credit debit have both succeeded.
        """
        optimization_type = OptimizationType.parse(optimization_type)
        applied_at = datetime.now(timezone.utc)
        conn = get_connection(self.db_path)
        try:
            conn.execute("""
                INSERT INTO optimization_record
                (store_id, product_id, optimization_type, original_value,
                 optimized_value, credits_used, applied_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (store_id, product_id, optimization_type) DO UPDATE SET
                    original_value = excluded.original_value,
                    optimized_value = excluded.optimized_value,
                    credits_used = excluded.credits_used,
                    applied_at = excluded.applied_at
            """, (
                store_id,
                product_id,
                optimization_type.value,
                original_value,
                optimized_value,
                credits_used,
                applied_at.isoformat(),
            ))
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()
        return OptimizationRecord(
            store_id=store_id,
            product_id=product_id,
            optimization_type=optimization_type,
            original_value=original_value,
            optimized_value=optimized_value,
            credits_used=credits_used,
            applied_at=applied_at,
        )

    def summarize(self, store_id: str) -> OptimizationSummary:
        """Count optimized products and applied types for a store."""
        conn = get_connection(self.db_path)
        try:
            counts = conn.execute("""
                SELECT COUNT(DISTINCT product_id), COUNT(*)
                FROM optimization_record
                WHERE store_id = ?
            """, (store_id,)).fetchone()
            types = conn.execute("""
                SELECT DISTINCT optimization_type
                FROM optimization_record
                WHERE store_id = ?
                ORDER BY optimization_type
            """, (store_id,)).fetchall()
        finally:
            conn.close()
        return OptimizationSummary(
            store_id=store_id,
            optimized_products=counts[0] or 0,
            total_optimizations=counts[1] or 0,
            types=tuple(OptimizationType(t[0]) for t in types),
        )
