"""
Product classification rules.

Decides, from product attributes alone, whether a product needs optimization
of a given type. These rules are independent of the optimization record
store: "already optimized" (has a record) and "rule says fine" are separate
reasons a product can be left off a needs-work list, and both views are
exposed through partition_catalog.
"""

import re
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Dict, Iterable, List, Mapping

from .catalog import CatalogProduct, OptimizationType, parse_price

_TAG_PATTERN = re.compile(r"<[^>]*>")

TITLE_MIN_LENGTH = 30
TITLE_MAX_LENGTH = 70
DESCRIPTION_MIN_LENGTH = 100
DESCRIPTION_REQUIRED_TERMS = ("benefits", "features")
TAGS_MIN_LENGTH = 5


class Classification(Enum):
    NEEDS_OPTIMIZATION = "needs_optimization"
    OPTIMIZED_BY_RULE = "optimized_by_rule"


def plain_text(html: str) -> str:
    """Strip markup from an HTML fragment."""
    if not html:
        return ""
    return _TAG_PATTERN.sub("", html).strip()


def title_needs_optimization(product: CatalogProduct) -> bool:
    title = product.title or ""
    return (
        len(title) < TITLE_MIN_LENGTH
        or len(title) > TITLE_MAX_LENGTH
        or (product.product_type or "") not in title
        or title == title.upper()
    )


def description_needs_optimization(product: CatalogProduct) -> bool:
    if not product.description_html:
        return True
    text = plain_text(product.description_html)
    if len(text) < DESCRIPTION_MIN_LENGTH:
        return True
    return any(term not in text for term in DESCRIPTION_REQUIRED_TERMS)


def pricing_needs_optimization(product: CatalogProduct) -> bool:
    # Only priced products are candidates
    price = parse_price(product.price)
    if price is None:
        return False
    return price % Decimal(1) == 0 or product.compare_at_price is None


def keywords_needs_optimization(product: CatalogProduct) -> bool:
    tags = product.tags
    return not tags or len(tags) < TAGS_MIN_LENGTH or "," not in tags


_RULES = {
    OptimizationType.TITLE: title_needs_optimization,
    OptimizationType.DESCRIPTION: description_needs_optimization,
    OptimizationType.PRICING: pricing_needs_optimization,
    OptimizationType.KEYWORDS: keywords_needs_optimization,
}


def classify(product: CatalogProduct, optimization_type: OptimizationType) -> Classification:
    """Classify a product against the rule for one optimization type.

    Args:
        product: Catalog product to inspect
        optimization_type: Type of optimization being considered

    Returns:
        NEEDS_OPTIMIZATION or OPTIMIZED_BY_RULE
    """
    rule = _RULES[OptimizationType.parse(optimization_type)]
    if rule(product):
        return Classification.NEEDS_OPTIMIZATION
    return Classification.OPTIMIZED_BY_RULE


@dataclass
class CatalogPartition:
    """Products of one catalog split by optimization status for a type."""
    optimization_type: OptimizationType
    needs_optimization: List[CatalogProduct] = field(default_factory=list)
    optimized_by_record: List[CatalogProduct] = field(default_factory=list)
    optimized_by_rule: List[CatalogProduct] = field(default_factory=list)

    def counts(self) -> Dict[str, int]:
        return {
            "needs_optimization": len(self.needs_optimization),
            "optimized_by_record": len(self.optimized_by_record),
            "optimized_by_rule": len(self.optimized_by_rule),
        }


def partition_catalog(
    products: Iterable[CatalogProduct],
    optimization_type: OptimizationType,
    records: Mapping[str, object]
) -> CatalogPartition:
    """Split products into needs-work, optimized-by-record and optimized-by-rule.

    A product with an optimization record for the type is reported as
    optimized by record whatever its rule classification says.

    Args:
        products: Products to partition
        optimization_type: Type to classify against
        records: Mapping of product id to optimization record for the type

    Returns:
        CatalogPartition with every product placed in exactly one bucket
    """
    optimization_type = OptimizationType.parse(optimization_type)
    partition = CatalogPartition(optimization_type=optimization_type)
    for product in products:
        if product.id in records:
            partition.optimized_by_record.append(product)
        elif classify(product, optimization_type) is Classification.NEEDS_OPTIMIZATION:
            partition.needs_optimization.append(product)
        else:
            partition.optimized_by_rule.append(product)
    return partition
