"""
Unit tests for the Shopify GraphQL catalog gateway.

The requests session is mocked; no network calls are made.
"""

import os
import shutil
import tempfile
from unittest.mock import Mock

import pytest
import requests

from catalog_optimizer.config.loader import EngineSettings, ProviderConfig, TimeoutConfig
from catalog_optimizer.core.catalog import (
    CatalogGatewayError,
    DescriptionPatch,
    GatewayErrorKind,
    PricePatch,
    TagsPatch,
    TitlePatch,
)
from catalog_optimizer.core.permissions import StoreConnection
from catalog_optimizer.sdk import build_orchestrator
from catalog_optimizer.sdk.shopify_gateway import (
    API_VERSION,
    ShopifyCatalogGateway,
    gid_to_id,
    product_gid,
    variant_gid,
)
from catalog_optimizer.storage.db import initialize_schema

PRODUCT_NODE = {
    "id": "gid://shopify/Product/1001",
    "title": "Red Shoes",
    "descriptionHtml": "<p>Leather</p>",
    "productType": "Shoes",
    "vendor": "Acme",
    "tags": ["red", "shoes"],
    "images": {"edges": [{"node": {"url": "https://cdn.example.com/1.jpg"}}]},
    "variants": {"edges": [
        {"node": {"id": "gid://shopify/ProductVariant/55", "price": "19.00", "compareAtPrice": None}}
    ]},
}


def _response(status_code=200, body=None):
    response = Mock()
    response.status_code = status_code
    response.ok = status_code < 400
    response.json.return_value = body if body is not None else {}
    response.text = str(body)
    return response


class TestShopifyCatalogGateway:
    """Test request building and error translation."""

    def setup_method(self):
        self.session = Mock()
        self.gateway = ShopifyCatalogGateway(timeout=7.0, session=self.session)
        self.connection = StoreConnection(
            store_id="shop-1",
            owner_id="merchant-1",
            domain="shop-1.myshopify.com",
            access_token="shpat_secret",
            scopes="read_products,write_products",
        )

    def _last_payload(self):
        return self.session.post.call_args.kwargs["json"]

    def test_fetch_maps_product(self):
        self.session.post.return_value = _response(body={"data": {"product": PRODUCT_NODE}})

        product = self.gateway.fetch(self.connection, "1001")

        assert product.id == "1001"
        assert product.tags == "red,shoes"
        assert product.price == "19.00"
        assert product.primary_variant.id == "55"
        assert product.images == ["https://cdn.example.com/1.jpg"]

        args, kwargs = self.session.post.call_args
        assert args[0] == f"https://shop-1.myshopify.com/admin/api/{API_VERSION}/graphql.json"
        assert kwargs["headers"]["X-Shopify-Access-Token"] == "shpat_secret"
        assert kwargs["timeout"] == 7.0
        assert kwargs["json"]["variables"] == {"id": "gid://shopify/Product/1001"}

    def test_fetch_missing_product(self):
        self.session.post.return_value = _response(body={"data": {"product": None}})

        with pytest.raises(CatalogGatewayError) as excinfo:
            self.gateway.fetch(self.connection, "404")

        assert excinfo.value.kind is GatewayErrorKind.NOT_FOUND

    def test_list_products(self):
        self.session.post.return_value = _response(
            body={"data": {"products": {"edges": [{"node": PRODUCT_NODE}]}}}
        )

        products = self.gateway.list_products(self.connection, limit=10)

        assert [p.id for p in products] == ["1001"]
        assert self._last_payload()["variables"] == {"first": 10}

    @pytest.mark.parametrize("patch, expected_input", [
        (TitlePatch(title="New Title"), {"id": "gid://shopify/Product/1001", "title": "New Title"}),
        (DescriptionPatch(description_html="<p>New</p>"),
         {"id": "gid://shopify/Product/1001", "descriptionHtml": "<p>New</p>"}),
        (TagsPatch(tags="red, shoes, ,leather"),
         {"id": "gid://shopify/Product/1001", "tags": ["red", "shoes", "leather"]}),
    ])
    def test_mutate_product_fields(self, patch, expected_input):
        self.session.post.return_value = _response(
            body={"data": {"productUpdate": {"product": {"id": "x"}, "userErrors": []}}}
        )

        self.gateway.mutate(self.connection, "1001", patch)

        payload = self._last_payload()
        assert "productUpdate" in payload["query"]
        assert payload["variables"] == {"input": expected_input}

    def test_mutate_price(self):
        self.session.post.return_value = _response(
            body={"data": {"productVariantsBulkUpdate": {"productVariants": [], "userErrors": []}}}
        )

        self.gateway.mutate(self.connection, "1001", PricePatch("55", "18.99", compare_at_price="19.00"))

        payload = self._last_payload()
        assert "productVariantsBulkUpdate" in payload["query"]
        assert payload["variables"] == {
            "productId": "gid://shopify/Product/1001",
            "variants": [{"id": "gid://shopify/ProductVariant/55", "price": "18.99", "compareAtPrice": "19.00"}],
        }

    def test_mutate_user_errors(self):
        self.session.post.return_value = _response(body={"data": {"productUpdate": {
            "product": None, "userErrors": [{"field": ["title"], "message": "Title is too long"}],
        }}})

        with pytest.raises(CatalogGatewayError) as excinfo:
            self.gateway.mutate(self.connection, "1001", TitlePatch(title="x"))

        assert excinfo.value.kind is GatewayErrorKind.VALIDATION
        assert "Title is too long" in str(excinfo.value)

    @pytest.mark.parametrize("status_code, kind, store_level", [
        (401, GatewayErrorKind.UNAUTHORIZED, True),
        (403, GatewayErrorKind.UNAUTHORIZED, True),
        (404, GatewayErrorKind.UNAVAILABLE, True),
        (429, GatewayErrorKind.UNAVAILABLE, False),
        (503, GatewayErrorKind.UNAVAILABLE, True),
        (422, GatewayErrorKind.VALIDATION, False),
    ])
    def test_http_errors(self, status_code, kind, store_level):
        self.session.post.return_value = _response(status_code=status_code, body={"errors": "x"})

        with pytest.raises(CatalogGatewayError) as excinfo:
            self.gateway.mutate(self.connection, "1001", TitlePatch(title="x"))

        assert excinfo.value.kind is kind
        assert excinfo.value.store_level is store_level

    def test_unknown_shop_is_not_a_missing_product(self):
        self.session.post.return_value = _response(status_code=404, body={"errors": "Not Found"})

        with pytest.raises(CatalogGatewayError) as excinfo:
            self.gateway.fetch(self.connection, "1001")

        assert excinfo.value.kind is GatewayErrorKind.UNAVAILABLE
        assert excinfo.value.store_level
        assert "Shop not found" in str(excinfo.value)

    def test_graphql_errors(self):
        self.session.post.return_value = _response(body={"errors": [{"message": "Field doesn't exist"}]})

        with pytest.raises(CatalogGatewayError) as excinfo:
            self.gateway.fetch(self.connection, "1001")

        assert excinfo.value.kind is GatewayErrorKind.VALIDATION

    def test_transport_errors(self):
        self.session.post.side_effect = requests.Timeout("read timed out")
        with pytest.raises(CatalogGatewayError) as excinfo:
            self.gateway.fetch(self.connection, "1001")
        assert excinfo.value.kind is GatewayErrorKind.TIMEOUT
        assert not excinfo.value.store_level

        self.session.post.side_effect = requests.ConnectionError("refused")
        with pytest.raises(CatalogGatewayError) as excinfo:
            self.gateway.fetch(self.connection, "1001")
        assert excinfo.value.kind is GatewayErrorKind.UNAVAILABLE
        assert excinfo.value.store_level


class TestGids:
    """Test global id conversions."""

    def test_round_trip_ids(self):
        assert product_gid("1001") == "gid://shopify/Product/1001"
        assert product_gid("gid://shopify/Product/1001") == "gid://shopify/Product/1001"
        assert variant_gid("55") == "gid://shopify/ProductVariant/55"
        assert gid_to_id("gid://shopify/ProductVariant/55") == "55"


class TestBuildOrchestrator:
    """Test wiring of settings into the concrete collaborators."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "test.db")
        initialize_schema(self.db_path)

    def teardown_method(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_settings_reach_collaborators(self):
        settings = EngineSettings(
            timeouts=TimeoutConfig(suggestion_seconds=3.0, catalog_seconds=4.0),
            provider=ProviderConfig(model="gpt-4o", temperature=0.1),
        )
        session = Mock()

        with build_orchestrator({}, settings, self.db_path, client=Mock(), session=session) as orchestrator:
            assert orchestrator.gateway.timeout == 4.0
            assert orchestrator.gateway.session is session
            assert orchestrator.provider.model == "gpt-4o"
            assert orchestrator.provider.temperature == 0.1
            assert orchestrator.ledger.db_path == self.db_path
            assert orchestrator.settings is settings
