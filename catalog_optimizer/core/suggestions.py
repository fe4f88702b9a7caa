"""
Suggestion provider contract and output validation.

Providers raise SuggestionProviderError on failure. try_generate turns that
into an explicit result value so the orchestrator can match on success or
failure and apply the deterministic fallback itself.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Union

from .catalog import CatalogProduct, OptimizationType, parse_price

DEFAULT_MAX_LENGTHS: Dict[OptimizationType, int] = {
    OptimizationType.TITLE: 255,
    OptimizationType.DESCRIPTION: 5000,
    OptimizationType.KEYWORDS: 255,
    OptimizationType.PRICING: 32,
}


class SuggestionSource(Enum):
    GENERATED = "generated"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class SuggestionResult:
    """A proposed new value for one product attribute."""
    optimization_type: OptimizationType
    original_value: str
    proposed_value: str
    source: SuggestionSource = SuggestionSource.GENERATED


class ProviderErrorKind(Enum):
    TIMEOUT = "timeout"
    QUOTA_EXCEEDED = "quota_exceeded"
    INVALID_OUTPUT = "invalid_output"
    UNAVAILABLE = "unavailable"


class SuggestionProviderError(Exception):
    """Raised by providers when no usable suggestion was produced."""

    def __init__(self, kind: ProviderErrorKind, message: str = ""):
        super().__init__(message or kind.value)
        self.kind = kind


@dataclass(frozen=True)
class ProviderFailure:
    """Failed generation attempt."""
    kind: ProviderErrorKind
    message: str = ""


ProviderResult = Union[SuggestionResult, ProviderFailure]


class SuggestionProvider(ABC):
    """External generative capability producing suggestions."""

    @abstractmethod
    def generate(
        self,
        optimization_type: OptimizationType,
        product: CatalogProduct
    ) -> SuggestionResult:
        """Generate a suggestion.

        Raises:
            SuggestionProviderError: On timeout, quota or malformed output
        """

    def try_generate(
        self,
        optimization_type: OptimizationType,
        product: CatalogProduct,
        max_lengths: Optional[Dict[OptimizationType, int]] = None
    ) -> ProviderResult:
        """Generate and validate a suggestion without raising.

        Returns:
            The validated SuggestionResult, or a ProviderFailure
        """
        try:
            result = self.generate(optimization_type, product)
        except SuggestionProviderError as e:
            return ProviderFailure(kind=e.kind, message=str(e))
        problem = validate_suggestion(result, optimization_type, max_lengths)
        if problem:
            return ProviderFailure(kind=ProviderErrorKind.INVALID_OUTPUT, message=problem)
        return result


def validate_suggestion(
    result: SuggestionResult,
    optimization_type: OptimizationType,
    max_lengths: Optional[Dict[OptimizationType, int]] = None
) -> Optional[str]:
    """Check the basic shape of a generated suggestion.

    Args:
        result: Suggestion to check
        optimization_type: Type the suggestion was requested for
        max_lengths: Per-type maximum lengths (defaults apply when omitted)

    Returns:
        None if valid, otherwise a description of the problem
    """
    if not isinstance(result, SuggestionResult):
        return f"expected SuggestionResult, got {type(result).__name__}"
    if result.optimization_type is not optimization_type:
        return (
            f"suggestion type {result.optimization_type.value} does not match "
            f"requested {optimization_type.value}"
        )
    value = result.proposed_value
    if not isinstance(value, str) or not value.strip():
        return "proposed value is empty"
    limits = max_lengths or DEFAULT_MAX_LENGTHS
    max_length = limits.get(optimization_type, DEFAULT_MAX_LENGTHS[optimization_type])
    if len(value) > max_length:
        return f"proposed value exceeds {max_length} characters"
    if optimization_type is OptimizationType.PRICING:
        price = parse_price(value)
        if price is None or price <= 0:
            return f"proposed price {value!r} is not a positive amount"
    return None
