"""
Optimization orchestration.

Composes the permission gate, catalog gateway, suggestion provider, credit
ledger and record store into preview, single-apply and bulk-apply
operations.

Apply order for every product:
1. Write scope check - no side effects on failure
2. Balance pre-check - no side effects on failure
3. Fetch current product (unless supplied by a prior preview)
4. Resolve suggestion (supplied, generated, or deterministic fallback)
5. Catalog mutation - failure aborts this product with no charge
6. Atomic debit - any failure is logged for reconciliation, never raised
7. Record upsert - only after mutation and debit both succeeded; a failed
   upsert is logged as a missing record and the product still counts as applied
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Union

from .catalog import (
    CatalogGateway,
    CatalogGatewayError,
    CatalogProduct,
    GatewayErrorKind,
    OptimizationType,
    build_patch,
)
from .classifier import CatalogPartition, partition_catalog
from .errors import (
    ApplyFailedError,
    AuthExpiredError,
    CatalogUnavailableError,
    ExternalServiceError,
    InsufficientCreditsError,
    InsufficientPermissionsError,
    NotFoundError,
    OptimizationError,
    ReconciliationWarning,
    ValidationError,
)
from .fallbacks import fallback_value
from .permissions import PermissionGate, StoreConnection
from .suggestions import (
    ProviderErrorKind,
    ProviderFailure,
    SuggestionProvider,
    SuggestionResult,
    SuggestionSource,
    validate_suggestion,
)
from catalog_optimizer.config.loader import EngineSettings

logger = logging.getLogger(__name__)
reconciliation_logger = logging.getLogger("catalog_optimizer.reconciliation")

# Per-key locks are striped so memory stays bounded; unrelated keys that
# share a stripe only serialize with each other.
_LOCK_STRIPES = 64

CANCELLED = "CANCELLED"
INTERNAL_ERROR = "INTERNAL_ERROR"


class RequestState(Enum):
    IDLE = "idle"
    PREVIEWING = "previewing"
    APPLYING = "applying"
    APPLIED = "applied"
    FAILED = "failed"


@dataclass(frozen=True)
class PreviewResult:
    original: str
    suggestion: SuggestionResult
    product: CatalogProduct

    def to_dict(self) -> Dict:
        return {
            "original": self.original,
            "suggestion": self.suggestion.proposed_value,
            "source": self.suggestion.source.value,
            "product_id": self.product.id,
        }


@dataclass(frozen=True)
class ApplyResult:
    """Outcome of one applied optimization.

    reconciliation_warning is set when the catalog was changed but the
    charge could not be taken; credits_used is then 0 and no record exists.
    record_written is False when the record could not be stored after the
    change and its charge both succeeded.
    """
    success: bool
    suggestion: SuggestionResult
    original: str
    credits_used: int = 0
    reconciliation_warning: Optional[ReconciliationWarning] = None
    record_written: bool = True

    def to_dict(self) -> Dict:
        return {
            "success": self.success,
            "suggestion": self.suggestion.proposed_value,
            "original": self.original,
            "credits_used": self.credits_used,
        }


@dataclass(frozen=True)
class BulkFailure:
    product_id: str
    reason: str
    code: str


@dataclass
class BulkApplyResult:
    applied_count: int = 0
    credits_used: int = 0
    failures: List[BulkFailure] = field(default_factory=list)
    reconciliation_warnings: List[ReconciliationWarning] = field(default_factory=list)
    cancelled: bool = False

    @property
    def success(self) -> bool:
        return self.applied_count > 0

    def to_dict(self) -> Dict:
        return {
            "applied_count": self.applied_count,
            "credits_used": self.credits_used,
            "failures": [
                {"product_id": f.product_id, "reason": f.reason, "code": f.code}
                for f in self.failures
            ],
        }


class _BatchControl:
    """Shared stop signal for the items of one bulk apply."""

    def __init__(self, cancel_event: Optional[threading.Event]):
        self._cancel_event = cancel_event
        self._lock = threading.Lock()
        self.abort_reason: Optional[str] = None
        self.abort_code: Optional[str] = None

    def trip(self, reason: str, code: str) -> None:
        with self._lock:
            if self.abort_reason is None:
                self.abort_reason = reason
                self.abort_code = code

    @property
    def aborted(self) -> bool:
        return self.abort_reason is not None

    @property
    def cancelled(self) -> bool:
        return self._cancel_event is not None and self._cancel_event.is_set()


class OptimizationOrchestrator:
    """Preview and apply catalog optimizations with credit metering.

    All collaborators are injected; the orchestrator holds no global state.
    Close it (or use it as a context manager) to release the worker pool
    used for bounded suggestion generation.
    """

    def __init__(
        self,
        ledger,
        records,
        gateway: CatalogGateway,
        provider: SuggestionProvider,
        stores: Mapping[str, StoreConnection],
        gate: Optional[PermissionGate] = None,
        settings: Optional[EngineSettings] = None
    ):
        self.ledger = ledger
        self.records = records
        self.gateway = gateway
        self.provider = provider
        self.stores = stores
        self.settings = settings or EngineSettings.default()
        self.gate = gate or PermissionGate(self.settings.engine.write_scope)
        self._key_locks = [threading.Lock() for _ in range(_LOCK_STRIPES)]
        self._suggestion_pool = ThreadPoolExecutor(
            max_workers=self.settings.engine.max_workers,
            thread_name_prefix="suggestion",
        )

    def close(self) -> None:
        self._suggestion_pool.shutdown(wait=False)

    def __enter__(self) -> "OptimizationOrchestrator":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def credit_cost(self) -> int:
        return self.settings.engine.credit_cost

    def preview(
        self,
        store_id: str,
        product_id: str,
        optimization_type: Union[str, OptimizationType]
    ) -> PreviewResult:
        """Generate a suggestion for a product without changing anything.

        Never touches the credit ledger or the record store, and does not
        require the write scope.

        Raises:
            ValidationError: If the type or product id is malformed
            NotFoundError: If the store or product does not exist
            CatalogUnavailableError: If the catalog cannot be read
            AuthExpiredError: If the catalog rejects the store credentials
        """
        optimization_type = OptimizationType.parse(optimization_type)
        _require_id(product_id, "product_id")
        connection = self._resolve_store(store_id)

        self._transition(store_id, product_id, optimization_type, RequestState.PREVIEWING)
        try:
            product = self._fetch(connection, product_id)
            suggestion = self._generate(optimization_type, product)
        finally:
            self._transition(store_id, product_id, optimization_type, RequestState.IDLE)

        return PreviewResult(
            original=product.current_value(optimization_type),
            suggestion=suggestion,
            product=product,
        )

    def apply_single(
        self,
        store_id: str,
        product_id: str,
        optimization_type: Union[str, OptimizationType],
        suggestion: Union[SuggestionResult, str, None] = None,
        product: Optional[CatalogProduct] = None
    ) -> ApplyResult:
        """Apply one optimization to the catalog and charge for it.

        Args:
            store_id: Store holding the product
            product_id: Product to optimize
            optimization_type: What to optimize
            suggestion: Previously previewed suggestion or proposed value to
                apply; regenerated when omitted
            product: Product fetched by a prior preview, to skip a re-fetch

        Returns:
            ApplyResult with the applied suggestion and the replaced value

        Raises:
            ValidationError: If inputs are malformed
            InsufficientPermissionsError: If the write scope is missing
            InsufficientCreditsError: If the balance cannot cover the charge
            NotFoundError: If the store or product does not exist
            AuthExpiredError: If the catalog rejects the store credentials
            CatalogUnavailableError: If the product cannot be read
            ApplyFailedError: If the catalog mutation fails
        """
        optimization_type = OptimizationType.parse(optimization_type)
        _require_id(product_id, "product_id")
        connection = self._resolve_store(store_id)

        self._transition(store_id, product_id, optimization_type, RequestState.APPLYING)
        try:
            result = self._apply(connection, product_id, optimization_type, suggestion, product)
        except OptimizationError as e:
            self._transition(store_id, product_id, optimization_type, RequestState.FAILED, e.code)
            raise
        self._transition(store_id, product_id, optimization_type, RequestState.APPLIED)
        return result

    def apply_bulk(
        self,
        store_id: str,
        optimization_type: Union[str, OptimizationType],
        product_ids: Iterable[str],
        cancel_event: Optional[threading.Event] = None
    ) -> BulkApplyResult:
        """Apply one optimization type to many products.

        Each product is charged only if its own mutation succeeds. Per-product
        failures are collected and never stop the batch; a store-level
        failure (expired credentials, lost connection, missing write scope)
        marks every product not yet started as failed with the same reason.
        Setting cancel_event stops the batch at the next item boundary.

        Raises:
            ValidationError: If the id list is empty or malformed
            NotFoundError: If the store or its credit account does not exist
            InsufficientCreditsError: If the balance cannot cover every
                product in the batch
        """
        optimization_type = OptimizationType.parse(optimization_type)
        if product_ids is None or isinstance(product_ids, str):
            raise ValidationError("product_ids must be a list of product ids")
        ids = list(product_ids)
        if not ids:
            raise ValidationError("product_ids cannot be empty")
        for product_id in ids:
            _require_id(product_id, "product_ids entry")
        ids = list(dict.fromkeys(ids))
        connection = self._resolve_store(store_id)

        required = len(ids) * self.credit_cost
        available = self.ledger.get_balance(connection.owner_id)
        if available < required:
            logger.warning(
                f"Bulk {optimization_type.value} for store {store_id} rejected: "
                f"{required} credits required, {available} available"
            )
            raise InsufficientCreditsError(required=required, available=available)

        logger.info(
            f"Bulk {optimization_type.value} for store {store_id}: {len(ids)} products"
        )
        control = _BatchControl(cancel_event)
        result = BulkApplyResult()
        workers = min(self.settings.engine.max_workers, len(ids))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="bulk-apply") as pool:
            futures = [
                (product_id, pool.submit(self._bulk_item, connection, product_id, optimization_type, control))
                for product_id in ids
            ]
            for product_id, future in futures:
                outcome = future.result()
                if isinstance(outcome, BulkFailure):
                    result.failures.append(outcome)
                    if outcome.code == CANCELLED:
                        result.cancelled = True
                    continue
                result.applied_count += 1
                result.credits_used += outcome.credits_used
                if outcome.reconciliation_warning is not None:
                    result.reconciliation_warnings.append(outcome.reconciliation_warning)

        logger.info(
            f"Bulk {optimization_type.value} for store {store_id} finished: "
            f"{result.applied_count} applied, {len(result.failures)} failed, "
            f"{result.credits_used} credits used"
        )
        return result

    def catalog_overview(
        self,
        store_id: str,
        optimization_type: Union[str, OptimizationType],
        limit: int = 50
    ) -> CatalogPartition:
        """Split a store's products by optimization status for one type.

        Read-only. Products with a record are reported as optimized by
        record; the rest are classified by rule.
        """
        optimization_type = OptimizationType.parse(optimization_type)
        connection = self._resolve_store(store_id)
        try:
            products = self.gateway.list_products(connection, limit)
        except CatalogGatewayError as e:
            raise _read_error(e, store_id)
        records = self.records.get_map(store_id, optimization_type)
        return partition_catalog(products, optimization_type, records)

    def _bulk_item(
        self,
        connection: StoreConnection,
        product_id: str,
        optimization_type: OptimizationType,
        control: _BatchControl
    ) -> Union[ApplyResult, BulkFailure]:
        if control.aborted:
            return BulkFailure(product_id, control.abort_reason, control.abort_code)
        if control.cancelled:
            return BulkFailure(product_id, "Batch cancelled before this product started", CANCELLED)

        try:
            return self._apply(connection, product_id, optimization_type, None, None)
        except OptimizationError as e:
            if isinstance(e, InsufficientPermissionsError) or (
                isinstance(e, ExternalServiceError) and e.store_level
            ):
                logger.error(
                    f"Store-level failure for {connection.store_id}, aborting batch: {e}"
                )
                control.trip(str(e), e.code)
            return BulkFailure(product_id, str(e), e.code)
        except Exception as e:
            logger.exception(f"Unexpected error applying to product {product_id}")
            return BulkFailure(product_id, str(e), INTERNAL_ERROR)

    def _apply(
        self,
        connection: StoreConnection,
        product_id: str,
        optimization_type: OptimizationType,
        suggestion: Union[SuggestionResult, str, None],
        product: Optional[CatalogProduct]
    ) -> ApplyResult:
        self.gate.require_write_scope(connection)

        cost = self.credit_cost
        available = self.ledger.get_balance(connection.owner_id)
        if available < cost:
            raise InsufficientCreditsError(required=cost, available=available)

        if product is None:
            product = self._fetch(connection, product_id)
        elif product.id != product_id:
            raise ValidationError(
                f"Supplied product {product.id} does not match product_id {product_id}"
            )

        original = product.current_value(optimization_type)
        suggestion = self._resolve_suggestion(optimization_type, product, suggestion)
        patch = build_patch(optimization_type, suggestion.proposed_value, product)

        with self._key_lock(connection.store_id, product_id, optimization_type):
            self._mutate(connection, product_id, patch)

            # The catalog has changed; from here on failures are logged, not raised
            try:
                self.ledger.debit(
                    connection.owner_id,
                    cost,
                    reason=f"{optimization_type.value} optimization",
                    related_id=product_id,
                )
            except Exception as e:
                warning = ReconciliationWarning(
                    account_id=connection.owner_id,
                    store_id=connection.store_id,
                    product_id=product_id,
                    optimization_type=optimization_type.value,
                    optimized_value=suggestion.proposed_value,
                    required=cost,
                    available=getattr(e, "available", None),
                    reason=(
                        "insufficient credits"
                        if isinstance(e, InsufficientCreditsError)
                        else f"debit failed: {e}"
                    ),
                )
                reconciliation_logger.warning(
                    str(warning), exc_info=not isinstance(e, InsufficientCreditsError)
                )
                return ApplyResult(
                    success=True,
                    suggestion=suggestion,
                    original=original,
                    credits_used=0,
                    reconciliation_warning=warning,
                    record_written=False,
                )

            record_written = True
            try:
                self.records.upsert(
                    connection.store_id,
                    product_id,
                    optimization_type,
                    original_value=original,
                    optimized_value=suggestion.proposed_value,
                    credits_used=cost,
                )
            except Exception:
                record_written = False
                reconciliation_logger.warning(
                    f"Missing optimization record: store={connection.store_id} "
                    f"product={product_id} type={optimization_type.value} "
                    f"account={connection.owner_id} charged={cost}",
                    exc_info=True,
                )

        logger.info(
            f"Applied {optimization_type.value} to {connection.store_id}/{product_id} "
            f"({suggestion.source.value}), charged {cost}"
        )
        return ApplyResult(
            success=True,
            suggestion=suggestion,
            original=original,
            credits_used=cost,
            record_written=record_written,
        )

    def _resolve_suggestion(
        self,
        optimization_type: OptimizationType,
        product: CatalogProduct,
        supplied: Union[SuggestionResult, str, None]
    ) -> SuggestionResult:
        if supplied is None:
            return self._generate(optimization_type, product)

        if isinstance(supplied, str):
            supplied = SuggestionResult(
                optimization_type=optimization_type,
                original_value=product.current_value(optimization_type),
                proposed_value=supplied,
            )
        problem = validate_suggestion(supplied, optimization_type, self.settings.limits)
        if problem:
            raise ValidationError(f"Invalid suggestion: {problem}")
        return supplied

    def _generate(
        self,
        optimization_type: OptimizationType,
        product: CatalogProduct
    ) -> SuggestionResult:
        """Generate a suggestion, falling back deterministically on any failure."""
        future = self._suggestion_pool.submit(
            self.provider.try_generate, optimization_type, product, self.settings.limits
        )
        try:
            outcome = future.result(timeout=self.settings.timeouts.suggestion_seconds)
        except FutureTimeoutError:
            future.cancel()
            outcome = ProviderFailure(
                kind=ProviderErrorKind.TIMEOUT,
                message=f"no response within {self.settings.timeouts.suggestion_seconds}s",
            )
        except Exception as e:
            logger.warning(f"Suggestion provider raised unexpectedly: {e}", exc_info=True)
            outcome = ProviderFailure(kind=ProviderErrorKind.UNAVAILABLE, message=str(e))

        if isinstance(outcome, SuggestionResult):
            return outcome

        logger.warning(
            f"Using fallback {optimization_type.value} suggestion for product "
            f"{product.id}: {outcome.kind.value} {outcome.message}"
        )
        return SuggestionResult(
            optimization_type=optimization_type,
            original_value=product.current_value(optimization_type),
            proposed_value=fallback_value(optimization_type, product),
            source=SuggestionSource.FALLBACK,
        )

    def _resolve_store(self, store_id: str) -> StoreConnection:
        _require_id(store_id, "store_id")
        connection = self.stores.get(store_id)
        if connection is None:
            raise NotFoundError(f"Store not found: {store_id}")
        return connection

    def _fetch(self, connection: StoreConnection, product_id: str) -> CatalogProduct:
        try:
            return self.gateway.fetch(connection, product_id)
        except CatalogGatewayError as e:
            if e.kind is GatewayErrorKind.NOT_FOUND:
                raise NotFoundError(f"Product not found: {product_id}")
            raise _read_error(e, connection.store_id)

    def _mutate(self, connection: StoreConnection, product_id: str, patch) -> None:
        try:
            self.gateway.mutate(connection, product_id, patch)
        except CatalogGatewayError as e:
            logger.error(
                f"Catalog mutation failed for {connection.store_id}/{product_id}: "
                f"{e.kind.value} {e}"
            )
            if e.kind is GatewayErrorKind.UNAUTHORIZED:
                raise AuthExpiredError(
                    f"Store {connection.store_id} credentials were rejected: {e}"
                )
            if e.kind is GatewayErrorKind.NOT_FOUND:
                raise NotFoundError(f"Product not found: {product_id}")
            raise ApplyFailedError(
                f"Failed to update product {product_id}: {e}",
                product_id=product_id,
                store_level=e.store_level,
            )

    def _key_lock(
        self,
        store_id: str,
        product_id: str,
        optimization_type: OptimizationType
    ) -> threading.Lock:
        return self._key_locks[hash((store_id, product_id, optimization_type.value)) % _LOCK_STRIPES]

    def _transition(
        self,
        store_id: str,
        product_id: str,
        optimization_type: OptimizationType,
        state: RequestState,
        detail: str = ""
    ) -> None:
        logger.info(
            f"{store_id}/{product_id} [{optimization_type.value}] -> {state.value}"
            + (f" ({detail})" if detail else "")
        )


def _require_id(value, name: str) -> None:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{name} is required and cannot be empty")


def _read_error(e: CatalogGatewayError, store_id: str) -> OptimizationError:
    if e.kind is GatewayErrorKind.UNAUTHORIZED:
        return AuthExpiredError(f"Store {store_id} credentials were rejected: {e}")
    return CatalogUnavailableError(
        f"Catalog for store {store_id} is unavailable: {e}",
        store_level=e.store_level,
    )
