"""
Unit tests for the catalog read model and patch construction.
"""

from decimal import Decimal

import pytest

from catalog_optimizer.core.catalog import (
    CatalogGateway,
    CatalogProduct,
    DescriptionPatch,
    OptimizationType,
    PricePatch,
    TagsPatch,
    TitlePatch,
    build_patch,
    parse_price,
)
from catalog_optimizer.core.errors import ValidationError
from fakes import make_product


class TestOptimizationType:

    def test_parse(self):
        assert OptimizationType.parse("Title") is OptimizationType.TITLE
        assert OptimizationType.parse(OptimizationType.PRICING) is OptimizationType.PRICING

    def test_parse_unknown(self):
        with pytest.raises(ValidationError, match="Unknown optimization type"):
            OptimizationType.parse("images")


class TestCatalogProduct:
    """Test product construction from catalog payloads."""

    def test_from_rest_dict(self):
        product = CatalogProduct.from_dict({
            "id": 1001,
            "title": "Red Shoes",
            "body_html": "<p>Leather</p>",
            "product_type": "Shoes",
            "tags": "red, shoes",
            "variants": [{"id": 55, "price": "19.00", "compare_at_price": ""}],
            "images": [{"src": "https://cdn.example.com/1.jpg"}],
        })

        assert product.id == "1001"
        assert product.description_html == "<p>Leather</p>"
        assert product.price == "19.00"
        assert product.compare_at_price is None
        assert product.primary_variant.id == "55"
        assert product.images == ["https://cdn.example.com/1.jpg"]

    def test_from_graphql_style_dict(self):
        product = CatalogProduct.from_dict({
            "id": "1001",
            "descriptionHtml": "<p>Leather</p>",
            "productType": "Shoes",
            "tags": ["red", "shoes"],
            "variants": [{"id": "55", "price": 19.5, "compareAtPrice": "25.00"}],
        })

        assert product.tags == "red,shoes"
        assert product.product_type == "Shoes"
        assert product.price == "19.5"
        assert product.compare_at_price == "25.00"

    def test_from_dict_requires_id(self):
        with pytest.raises(ValidationError):
            CatalogProduct.from_dict({"title": "No id"})

    def test_current_value(self):
        product = make_product(description_html="<p>x</p>", tags="a,b")

        assert product.current_value(OptimizationType.TITLE) == "Red Shoes"
        assert product.current_value(OptimizationType.DESCRIPTION) == "<p>x</p>"
        assert product.current_value(OptimizationType.PRICING) == "19.00"
        assert product.current_value(OptimizationType.KEYWORDS) == "a,b"
        assert make_product(price=None).current_value(OptimizationType.PRICING) == ""


class TestParsePrice:

    @pytest.mark.parametrize("value, expected", [
        ("19.00", Decimal("19.00")),
        (" 5 ", Decimal("5")),
        (None, None),
        ("free", None),
        ("NaN", None),
        ("Infinity", None),
    ])
    def test_parse_price(self, value, expected):
        assert parse_price(value) == expected


class TestBuildPatch:
    """Test translation of proposed values into catalog patches."""

    def test_text_patches(self):
        product = make_product()

        assert build_patch(OptimizationType.TITLE, "New", product) == TitlePatch("New")
        assert build_patch(OptimizationType.DESCRIPTION, "<p>New</p>", product) == DescriptionPatch("<p>New</p>")
        assert build_patch(OptimizationType.KEYWORDS, "a,b", product) == TagsPatch("a,b")

    def test_price_reduction_keeps_old_price_as_compare_at(self):
        patch = build_patch(OptimizationType.PRICING, "18.99", make_product(price="19.00"))

        assert patch == PricePatch(variant_id="v1001", new_price="18.99", compare_at_price="19.00")

    def test_price_increase_has_no_compare_at(self):
        patch = build_patch(OptimizationType.PRICING, "21.00", make_product(price="19.00"))

        assert patch.compare_at_price is None

    def test_existing_compare_at_is_kept(self):
        patch = build_patch(
            OptimizationType.PRICING, "18.99", make_product(price="19.00", compare_at_price="25.00")
        )

        assert patch.compare_at_price is None

    @pytest.mark.parametrize("value", ["cheap", "0", "-1.00"])
    def test_invalid_price_rejected(self, value):
        with pytest.raises(ValidationError):
            build_patch(OptimizationType.PRICING, value, make_product())

    def test_price_requires_variant(self):
        with pytest.raises(ValidationError, match="no variant"):
            build_patch(OptimizationType.PRICING, "9.99", make_product(price=None))


class TestCatalogGateway:
    """Every gateway operation must be implemented."""

    def test_gateway_without_listing_cannot_be_built(self):
        class ReadWriteOnlyGateway(CatalogGateway):
            def fetch(self, connection, product_id):
                return make_product(product_id)

            def mutate(self, connection, product_id, patch):
                pass

        with pytest.raises(TypeError):
            ReadWriteOnlyGateway()
