"""
Deterministic fallback suggestions.

Used whenever the suggestion provider fails, times out or returns output
that does not validate. Every function here is pure.
"""

from decimal import Decimal, ROUND_FLOOR, ROUND_HALF_UP
from typing import Callable, Dict

from .catalog import CatalogProduct, OptimizationType, parse_price

DEFAULT_PRODUCT_TYPE = "Quality Product"
KEYWORD_TOKENS = ("premium", "quality", "bestseller")
MAX_TITLE_KEYWORDS = 3
MIN_KEYWORD_LENGTH = 3

_CENT = Decimal("0.01")


def fallback_title(product: CatalogProduct) -> str:
    return f"Premium {product.title} | {product.product_type or DEFAULT_PRODUCT_TYPE}"


def fallback_description(product: CatalogProduct) -> str:
    return (
        f"Experience the exceptional quality of our {product.title}. "
        "Premium materials and expert craftsmanship ensure lasting satisfaction."
    )


def fallback_price(product: CatalogProduct) -> str:
    """Psychological price point below the current price.

    Prices above 10 drop to the next .99 below the whole amount; smaller
    prices get a 5% reduction. Result is rounded to cents.

    Returns:
        Price rendered with two decimals, or "" if the product has no price
    """
    price = parse_price(product.price)
    if price is None:
        return ""
    if price > 10:
        proposed = price.to_integral_value(rounding=ROUND_FLOOR) - _CENT
    else:
        proposed = price * Decimal("0.95")
    return str(proposed.quantize(_CENT, rounding=ROUND_HALF_UP))


def fallback_keywords(product: CatalogProduct) -> str:
    words = [w for w in (product.title or "").split() if len(w) > MIN_KEYWORD_LENGTH]
    keywords = words[:MAX_TITLE_KEYWORDS] + [product.product_type] + list(KEYWORD_TOKENS)
    return ", ".join(k for k in keywords if k)


FALLBACKS: Dict[OptimizationType, Callable[[CatalogProduct], str]] = {
    OptimizationType.TITLE: fallback_title,
    OptimizationType.DESCRIPTION: fallback_description,
    OptimizationType.PRICING: fallback_price,
    OptimizationType.KEYWORDS: fallback_keywords,
}


def fallback_value(optimization_type: OptimizationType, product: CatalogProduct) -> str:
    """Fallback proposed value for a type."""
    return FALLBACKS[OptimizationType.parse(optimization_type)](product)
