"""
Catalog read model, mutation patches and the gateway contract.

The engine never persists catalog data; products are fetched fresh for every
preview and apply. Mutations are expressed as one of four patch types and
handed to a CatalogGateway implementation.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from .errors import ValidationError


class OptimizationType(Enum):
    """Dimension along which a product's catalog content can be improved."""
    TITLE = "title"
    DESCRIPTION = "description"
    PRICING = "pricing"
    KEYWORDS = "keywords"

    @classmethod
    def parse(cls, value: Union[str, "OptimizationType"]) -> "OptimizationType":
        """Coerce a string into an OptimizationType.

        Raises:
            ValidationError: If the value is not a known type
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            valid = [t.value for t in cls]
            raise ValidationError(
                f"Unknown optimization type '{value}', must be one of: {valid}"
            )


@dataclass(frozen=True)
class ProductVariant:
    """A purchasable variant; prices are the catalog's decimal strings."""
    id: str
    price: Optional[str] = None
    compare_at_price: Optional[str] = None


@dataclass(frozen=True)
class CatalogProduct:
    """Product as read from the storefront catalog."""
    id: str
    title: str = ""
    description_html: str = ""
    product_type: str = ""
    vendor: str = ""
    tags: str = ""
    variants: List[ProductVariant] = field(default_factory=list)
    images: List[str] = field(default_factory=list)

    @property
    def primary_variant(self) -> Optional[ProductVariant]:
        """First variant, which carries the product's displayed price."""
        return self.variants[0] if self.variants else None

    @property
    def price(self) -> Optional[str]:
        variant = self.primary_variant
        return variant.price if variant else None

    @property
    def compare_at_price(self) -> Optional[str]:
        variant = self.primary_variant
        return variant.compare_at_price if variant else None

    def current_value(self, optimization_type: OptimizationType) -> str:
        """Value a given optimization type would replace."""
        if optimization_type is OptimizationType.TITLE:
            return self.title
        if optimization_type is OptimizationType.DESCRIPTION:
            return self.description_html
        if optimization_type is OptimizationType.PRICING:
            return self.price or ""
        if optimization_type is OptimizationType.KEYWORDS:
            return self.tags
        raise TypeError(f"Unhandled optimization type: {optimization_type!r}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CatalogProduct":
        """Build a product from a plain mapping (REST-style keys accepted)."""
        if "id" not in data:
            raise ValidationError("product is missing 'id'")
        variants = [
            ProductVariant(
                id=str(v["id"]),
                price=_optional_str(v.get("price")),
                compare_at_price=_optional_str(
                    v.get("compare_at_price", v.get("compareAtPrice"))
                ),
            )
            for v in data.get("variants") or []
        ]
        tags = data.get("tags") or ""
        if isinstance(tags, (list, tuple)):
            tags = ",".join(tags)
        images = [
            img["src"] if isinstance(img, dict) else str(img)
            for img in data.get("images") or []
        ]
        return cls(
            id=str(data["id"]),
            title=data.get("title") or "",
            description_html=(
                data.get("description_html")
                or data.get("body_html")
                or data.get("descriptionHtml")
                or ""
            ),
            product_type=data.get("product_type") or data.get("productType") or "",
            vendor=data.get("vendor") or "",
            tags=tags,
            variants=variants,
            images=images,
        )


def _optional_str(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def parse_price(value: Optional[str]) -> Optional[Decimal]:
    """Parse a catalog price string, returning None when absent or malformed."""
    if value is None:
        return None
    try:
        price = Decimal(str(value).strip())
    except InvalidOperation:
        return None
    if not price.is_finite():
        return None
    return price


@dataclass(frozen=True)
class TitlePatch:
    title: str


@dataclass(frozen=True)
class DescriptionPatch:
    description_html: str


@dataclass(frozen=True)
class PricePatch:
    """Price change for a single variant.

    compare_at_price is None when the existing compare-at price is kept.
    """
    variant_id: str
    new_price: str
    compare_at_price: Optional[str] = None


@dataclass(frozen=True)
class TagsPatch:
    tags: str


OptimizationPatch = Union[TitlePatch, DescriptionPatch, PricePatch, TagsPatch]


def build_patch(
    optimization_type: OptimizationType,
    proposed_value: str,
    product: CatalogProduct
) -> OptimizationPatch:
    """Translate a proposed value into the type-specific catalog patch.

    For pricing, the first variant is updated. When the variant has no
    compare-at price and the new price is a reduction, the old price becomes
    the compare-at price.

    Raises:
        ValidationError: If a pricing patch is requested for a product
            without variants or with an unparseable proposed price
    """
    if optimization_type is OptimizationType.TITLE:
        return TitlePatch(title=proposed_value)
    if optimization_type is OptimizationType.DESCRIPTION:
        return DescriptionPatch(description_html=proposed_value)
    if optimization_type is OptimizationType.KEYWORDS:
        return TagsPatch(tags=proposed_value)
    if optimization_type is OptimizationType.PRICING:
        variant = product.primary_variant
        if variant is None:
            raise ValidationError(f"Product {product.id} has no variant to price")
        new_price = parse_price(proposed_value)
        if new_price is None or new_price <= 0:
            raise ValidationError(f"Invalid proposed price: {proposed_value!r}")
        compare_at = None
        old_price = parse_price(variant.price)
        if variant.compare_at_price is None and old_price is not None and new_price < old_price:
            compare_at = variant.price
        return PricePatch(
            variant_id=variant.id,
            new_price=proposed_value,
            compare_at_price=compare_at,
        )
    raise TypeError(f"Unhandled optimization type: {optimization_type!r}")


class GatewayErrorKind(Enum):
    NOT_FOUND = "not_found"
    UNAUTHORIZED = "unauthorized"
    VALIDATION = "validation"
    UNAVAILABLE = "unavailable"
    TIMEOUT = "timeout"


class CatalogGatewayError(Exception):
    """Raised by gateway implementations.

    store_level marks failures that affect every product in the store
    (connection or credential problems) rather than a single product.
    Unauthorized errors are always store-level.
    """

    def __init__(self, kind: GatewayErrorKind, message: str, store_level: bool = False):
        super().__init__(message)
        self.kind = kind
        self.store_level = store_level or kind is GatewayErrorKind.UNAUTHORIZED


class CatalogGateway(ABC):
    """Interface for reading and mutating storefront catalog items."""

    @abstractmethod
    def fetch(self, connection, product_id: str) -> CatalogProduct:
        """Fetch a single product.

        Raises:
            CatalogGatewayError: NOT_FOUND, UNAUTHORIZED, UNAVAILABLE or TIMEOUT
        """

    @abstractmethod
    def mutate(self, connection, product_id: str, patch: OptimizationPatch) -> None:
        """Apply a patch to a product.

        Raises:
            CatalogGatewayError: UNAUTHORIZED, VALIDATION, UNAVAILABLE or TIMEOUT
        """

    @abstractmethod
    def list_products(self, connection, limit: int = 50) -> List[CatalogProduct]:
        """List up to limit products in the store.

        Raises:
            CatalogGatewayError: UNAUTHORIZED, UNAVAILABLE or TIMEOUT
        """
