"""
Wires the concrete Shopify and OpenAI collaborators into an orchestrator.
"""

from typing import Mapping, Optional

import requests
from openai import OpenAI

from ..config.loader import EngineSettings
from ..core.orchestrator import OptimizationOrchestrator
from ..core.permissions import StoreConnection
from ..storage.db import DEFAULT_DB_PATH
from ..storage.ledger import CreditLedger
from ..storage.records import OptimizationRecordStore
from .openai_provider import OpenAISuggestionProvider
from .shopify_gateway import ShopifyCatalogGateway


def build_orchestrator(
    stores: Mapping[str, StoreConnection],
    settings: Optional[EngineSettings] = None,
    db_path: str = DEFAULT_DB_PATH,
    client: Optional[OpenAI] = None,
    session: Optional[requests.Session] = None
) -> OptimizationOrchestrator:
    """Create an orchestrator backed by Shopify, OpenAI and the SQLite stores.

    Args:
        stores: Connected stores by store id
        settings: Engine settings (defaults when omitted)
        db_path: SQLite database holding the ledger and records
        client: Preconfigured OpenAI client
        session: Preconfigured requests session

    Returns:
        OptimizationOrchestrator; close it when done
    """
    settings = settings or EngineSettings.default()
    provider = OpenAISuggestionProvider(
        model=settings.provider.model,
        timeout=settings.timeouts.suggestion_seconds,
        temperature=settings.provider.temperature,
        client=client,
    )
    gateway = ShopifyCatalogGateway(timeout=settings.timeouts.catalog_seconds, session=session)
    return OptimizationOrchestrator(
        ledger=CreditLedger(db_path),
        records=OptimizationRecordStore(db_path),
        gateway=gateway,
        provider=provider,
        stores=stores,
        settings=settings,
    )
