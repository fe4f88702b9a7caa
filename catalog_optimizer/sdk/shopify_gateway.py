"""
Shopify Admin GraphQL catalog gateway.

Reads and mutates products through the Admin GraphQL API. Transport
failures are translated into CatalogGatewayError kinds; credential and
connection problems are flagged as store-level.
"""

import logging
from typing import Any, Dict, List, Optional

import requests

from ..core.catalog import (
    CatalogGateway,
    CatalogGatewayError,
    CatalogProduct,
    DescriptionPatch,
    GatewayErrorKind,
    OptimizationPatch,
    PricePatch,
    ProductVariant,
    TagsPatch,
    TitlePatch,
)
from ..core.permissions import StoreConnection

logger = logging.getLogger(__name__)

API_VERSION = "2024-04"

_PRODUCT_FIELDS = """
    id
    title
    descriptionHtml
    productType
    vendor
    tags
    images(first: 5) { edges { node { url } } }
    variants(first: 10) { edges { node { id price compareAtPrice } } }
"""

PRODUCT_QUERY = f"""
query getProduct($id: ID!) {{
  product(id: $id) {{ {_PRODUCT_FIELDS} }}
}}
"""

PRODUCTS_QUERY = f"""
query getProducts($first: Int!) {{
  products(first: $first) {{ edges {{ node {{ {_PRODUCT_FIELDS} }} }} }}
}}
"""

PRODUCT_UPDATE_MUTATION = """
mutation productUpdate($input: ProductInput!) {
  productUpdate(input: $input) {
    product { id }
    userErrors { field message }
  }
}
"""

VARIANTS_UPDATE_MUTATION = """
mutation productVariantsBulkUpdate($productId: ID!, $variants: [ProductVariantsBulkInput!]!) {
  productVariantsBulkUpdate(productId: $productId, variants: $variants) {
    productVariants { id price compareAtPrice }
    userErrors { field message }
  }
}
"""


def product_gid(product_id: str) -> str:
    if product_id.startswith("gid://"):
        return product_id
    return f"gid://shopify/Product/{product_id}"


def variant_gid(variant_id: str) -> str:
    if variant_id.startswith("gid://"):
        return variant_id
    return f"gid://shopify/ProductVariant/{variant_id}"


def gid_to_id(gid: str) -> str:
    return gid.rsplit("/", 1)[-1]


class ShopifyCatalogGateway(CatalogGateway):
    """CatalogGateway over the Shopify Admin GraphQL API."""

    def __init__(self, timeout: float = 15.0, session: Optional[requests.Session] = None):
        self.timeout = timeout
        self.session = session or requests.Session()

    def fetch(self, connection: StoreConnection, product_id: str) -> CatalogProduct:
        data = self._call(connection, PRODUCT_QUERY, {"id": product_gid(product_id)})
        node = data.get("product")
        if not node:
            raise CatalogGatewayError(GatewayErrorKind.NOT_FOUND, f"Product not found: {product_id}")
        return _to_product(node)

    def list_products(self, connection: StoreConnection, limit: int = 50) -> List[CatalogProduct]:
        data = self._call(connection, PRODUCTS_QUERY, {"first": limit})
        edges = (data.get("products") or {}).get("edges") or []
        return [_to_product(edge["node"]) for edge in edges]

    def mutate(self, connection: StoreConnection, product_id: str, patch: OptimizationPatch) -> None:
        gid = product_gid(product_id)
        if isinstance(patch, TitlePatch):
            query, variables = PRODUCT_UPDATE_MUTATION, {"input": {"id": gid, "title": patch.title}}
        elif isinstance(patch, DescriptionPatch):
            query, variables = PRODUCT_UPDATE_MUTATION, {
                "input": {"id": gid, "descriptionHtml": patch.description_html}
            }
        elif isinstance(patch, TagsPatch):
            tags = [t.strip() for t in patch.tags.split(",") if t.strip()]
            query, variables = PRODUCT_UPDATE_MUTATION, {"input": {"id": gid, "tags": tags}}
        elif isinstance(patch, PricePatch):
            variant: Dict[str, Any] = {"id": variant_gid(patch.variant_id), "price": patch.new_price}
            if patch.compare_at_price is not None:
                variant["compareAtPrice"] = patch.compare_at_price
            query, variables = VARIANTS_UPDATE_MUTATION, {"productId": gid, "variants": [variant]}
        else:
            raise TypeError(f"Unhandled patch type: {type(patch).__name__}")

        data = self._call(connection, query, variables)
        payload = data.get("productUpdate") or data.get("productVariantsBulkUpdate") or {}
        user_errors = payload.get("userErrors") or []
        if user_errors:
            messages = "; ".join(err.get("message", "") for err in user_errors)
            raise CatalogGatewayError(GatewayErrorKind.VALIDATION, f"Shopify rejected update: {messages}")
        logger.info(f"Updated product {product_id} on {connection.domain} ({type(patch).__name__})")

    def _call(self, connection: StoreConnection, query: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        url = f"https://{connection.domain}/admin/api/{API_VERSION}/graphql.json"
        headers = {
            "X-Shopify-Access-Token": connection.access_token,
            "Content-Type": "application/json",
        }
        try:
            response = self.session.post(
                url,
                headers=headers,
                json={"query": query, "variables": variables},
                timeout=self.timeout,
            )
        except requests.Timeout as e:
            raise CatalogGatewayError(GatewayErrorKind.TIMEOUT, f"Shopify request timed out: {e}")
        except requests.RequestException as e:
            raise CatalogGatewayError(
                GatewayErrorKind.UNAVAILABLE, f"Shopify request failed: {e}", store_level=True
            )

        if response.status_code in (401, 403):
            raise CatalogGatewayError(
                GatewayErrorKind.UNAUTHORIZED,
                f"Shopify rejected credentials for {connection.domain}: {response.status_code}",
            )
        if response.status_code == 404:
            raise CatalogGatewayError(
                GatewayErrorKind.UNAVAILABLE,
                f"Shop not found: {connection.domain}",
                store_level=True,
            )
        if response.status_code == 429:
            raise CatalogGatewayError(GatewayErrorKind.UNAVAILABLE, "Shopify rate limit exceeded")
        if response.status_code >= 500:
            raise CatalogGatewayError(
                GatewayErrorKind.UNAVAILABLE,
                f"Shopify returned {response.status_code}",
                store_level=True,
            )
        if not response.ok:
            raise CatalogGatewayError(
                GatewayErrorKind.VALIDATION, f"Shopify returned {response.status_code}: {response.text[:200]}"
            )

        body = response.json()
        if body.get("errors"):
            raise CatalogGatewayError(GatewayErrorKind.VALIDATION, f"GraphQL errors: {body['errors']}")
        return body.get("data") or {}


def _to_product(node: Dict[str, Any]) -> CatalogProduct:
    variants = [
        ProductVariant(
            id=gid_to_id(edge["node"]["id"]),
            price=edge["node"].get("price"),
            compare_at_price=edge["node"].get("compareAtPrice"),
        )
        for edge in (node.get("variants") or {}).get("edges") or []
    ]
    images = [edge["node"]["url"] for edge in (node.get("images") or {}).get("edges") or []]
    return CatalogProduct(
        id=gid_to_id(node["id"]),
        title=node.get("title") or "",
        description_html=node.get("descriptionHtml") or "",
        product_type=node.get("productType") or "",
        vendor=node.get("vendor") or "",
        tags=",".join(node.get("tags") or []),
        variants=variants,
        images=images,
    )
