"""
SDK for Catalog Optimizer.

Concrete suggestion provider and catalog gateway implementations, and a
factory wiring them into an orchestrator.
"""

from .factory import build_orchestrator
from .openai_provider import OpenAISuggestionProvider
from .shopify_gateway import ShopifyCatalogGateway

__all__ = ["OpenAISuggestionProvider", "ShopifyCatalogGateway", "build_orchestrator"]
