"""
Tests for deterministic fallback suggestions.
"""

from catalog_optimizer.core.catalog import OptimizationType
from catalog_optimizer.core.fallbacks import (
    fallback_description,
    fallback_keywords,
    fallback_price,
    fallback_title,
    fallback_value,
)
from fakes import make_product


class TestFallbacks:
    """Fallback heuristics per type."""

    def test_title(self):
        assert fallback_title(make_product(title="Red Shoes", product_type="Shoes")) == "Premium Red Shoes | Shoes"

    def test_title_without_product_type(self):
        assert fallback_title(make_product(title="Red Shoes", product_type="")) == "Premium Red Shoes | Quality Product"

    def test_description(self):
        assert fallback_description(make_product(title="Red Shoes")) == (
            "Experience the exceptional quality of our Red Shoes. "
            "Premium materials and expert craftsmanship ensure lasting satisfaction."
        )

    def test_price_above_ten(self):
        assert fallback_price(make_product(price="19.00")) == "18.99"
        assert fallback_price(make_product(price="24.50")) == "23.99"

    def test_price_at_or_below_ten(self):
        assert fallback_price(make_product(price="10.00")) == "9.50"
        assert fallback_price(make_product(price="5")) == "4.75"
        assert fallback_price(make_product(price="9.99")) == "9.49"

    def test_price_missing(self):
        assert fallback_price(make_product(price=None)) == ""

    def test_keywords(self):
        product = make_product(title="Lightweight Red Running Shoes Deluxe", product_type="Shoes")
        assert fallback_keywords(product) == "Lightweight, Running, Shoes, Shoes, premium, quality, bestseller"

    def test_keywords_skip_empty_product_type(self):
        product = make_product(title="Red Shoes", product_type="")
        assert fallback_keywords(product) == "Shoes, premium, quality, bestseller"

    def test_fallback_value_dispatch(self):
        product = make_product(title="Red Shoes", product_type="Shoes")
        assert fallback_value(OptimizationType.TITLE, product) == "Premium Red Shoes | Shoes"
        assert fallback_value("pricing", product) == "18.99"
