"""
OpenAI-backed suggestion provider.

Asks a chat model for one replacement value per request. Every OpenAI
failure is translated into a SuggestionProviderError so the orchestrator can
fall back to the deterministic heuristics.
"""

import re
from typing import Dict, Optional

import openai
from openai import OpenAI

from ..core.catalog import CatalogProduct, OptimizationType
from ..core.classifier import plain_text
from ..core.suggestions import (
    ProviderErrorKind,
    SuggestionProvider,
    SuggestionProviderError,
    SuggestionResult,
    SuggestionSource,
)

SYSTEM_PROMPT = (
    "You are an expert e-commerce copywriter and pricing specialist. "
    "Reply with the replacement value only, without quotes or commentary."
)

_PRICE_PATTERN = re.compile(r"\d+(?:\.\d{1,2})?")

_INSTRUCTIONS: Dict[OptimizationType, str] = {
    OptimizationType.TITLE: (
        "Write an SEO-optimized product title between 30 and 70 characters "
        "that includes the product type and is not written in all capitals."
    ),
    OptimizationType.DESCRIPTION: (
        "Write a persuasive HTML product description of at least 100 characters "
        "with a section on benefits and a section on features."
    ),
    OptimizationType.PRICING: (
        "Suggest a psychologically attractive price in the store currency. "
        "Reply with the number only, using two decimals."
    ),
    OptimizationType.KEYWORDS: (
        "Suggest 5 to 8 search keywords for this product as a comma-separated list."
    ),
}


class OpenAISuggestionProvider(SuggestionProvider):
    """Suggestion provider using OpenAI chat completions."""

    def __init__(
        self,
        model: str,
        timeout: float = 15.0,
        temperature: float = 0.7,
        client: Optional[OpenAI] = None
    ):
        """Initialize the provider.

        Args:
            model: OpenAI model name (required)
            timeout: Request timeout in seconds
            temperature: Sampling temperature
            client: Preconfigured OpenAI client (created when omitted)

        Raises:
            ValueError: If model is missing/empty
        """
        if not model or not model.strip():
            raise ValueError("model is required and cannot be empty")

        self.model = model
        self.temperature = temperature
        self.client = client or OpenAI(timeout=timeout, max_retries=0)

    def generate(
        self,
        optimization_type: OptimizationType,
        product: CatalogProduct
    ) -> SuggestionResult:
        """Ask the model for a replacement value.

        Raises:
            SuggestionProviderError: TIMEOUT, QUOTA_EXCEEDED, UNAVAILABLE or
                INVALID_OUTPUT
        """
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": build_prompt(optimization_type, product)},
                ],
                temperature=self.temperature,
            )
        except openai.APITimeoutError as e:
            raise SuggestionProviderError(ProviderErrorKind.TIMEOUT, str(e))
        except openai.RateLimitError as e:
            raise SuggestionProviderError(ProviderErrorKind.QUOTA_EXCEEDED, str(e))
        except openai.OpenAIError as e:
            raise SuggestionProviderError(ProviderErrorKind.UNAVAILABLE, str(e))

        if not response.choices:
            raise SuggestionProviderError(ProviderErrorKind.INVALID_OUTPUT, "response has no choices")
        content = response.choices[0].message.content
        value = clean_output(optimization_type, content or "")
        if not value:
            raise SuggestionProviderError(ProviderErrorKind.INVALID_OUTPUT, "empty response content")

        return SuggestionResult(
            optimization_type=optimization_type,
            original_value=product.current_value(optimization_type),
            proposed_value=value,
            source=SuggestionSource.GENERATED,
        )


def build_prompt(optimization_type: OptimizationType, product: CatalogProduct) -> str:
    """User prompt describing the product and the requested change."""
    lines = [
        _INSTRUCTIONS[optimization_type],
        "",
        f"Title: {product.title}",
        f"Product type: {product.product_type or 'unknown'}",
        f"Vendor: {product.vendor or 'unknown'}",
        f"Tags: {product.tags or 'none'}",
        f"Price: {product.price or 'unknown'}",
        f"Description: {plain_text(product.description_html)[:500]}",
    ]
    return "\n".join(lines)


def clean_output(optimization_type: OptimizationType, content: str) -> str:
    """Normalize model output into a bare value."""
    value = content.strip().strip('"').strip("'").strip()
    if optimization_type is OptimizationType.PRICING:
        match = _PRICE_PATTERN.search(value.replace(",", ""))
        return match.group(0) if match else ""
    if optimization_type is OptimizationType.TITLE:
        return value.splitlines()[0].strip() if value else ""
    return value
