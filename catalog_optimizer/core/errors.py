"""
Error taxonomy for the optimization engine.

Every error raised across the engine boundary carries a stable ``code`` and
can render itself as the structured error payload callers return upward.
"""

from typing import Any, Dict, Optional


class OptimizationError(Exception):
    """Base class for all engine errors."""
    code = "OPTIMIZATION_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        """Structured error payload."""
        return {"error": self.code, "message": self.message}


class ValidationError(OptimizationError):
    """Malformed input, rejected before any side effect."""
    code = "VALIDATION_ERROR"


class InsufficientPermissionsError(OptimizationError):
    """Store connection lacks the write scope."""
    code = "INSUFFICIENT_PERMISSIONS"

    def __init__(self, message: str, needs_reconnection: bool = True):
        super().__init__(message)
        self.needs_reconnection = needs_reconnection

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["needs_reconnection"] = self.needs_reconnection
        return payload


class InsufficientCreditsError(OptimizationError):
    """Account balance cannot cover the requested amount."""
    code = "INSUFFICIENT_CREDITS"

    def __init__(self, required: int, available: int):
        super().__init__(
            f"Insufficient credits. Required: {required}, Available: {available}"
        )
        self.required = required
        self.available = available

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["required"] = self.required
        payload["available"] = self.available
        return payload


class NotFoundError(OptimizationError):
    """Store, product or credit account does not exist."""
    code = "NOT_FOUND"


class ExternalServiceError(OptimizationError):
    """Failure reported by the catalog or another remote collaborator.

    store_level marks failures that affect the whole store connection rather
    than a single product; a bulk apply stops at the first one.
    """
    code = "EXTERNAL_SERVICE_ERROR"

    def __init__(self, message: str, store_level: bool = False):
        super().__init__(message)
        self.store_level = store_level


class CatalogUnavailableError(ExternalServiceError):
    """Catalog could not be reached or timed out."""
    code = "CATALOG_UNAVAILABLE"


class AuthExpiredError(ExternalServiceError):
    """Catalog rejected the stored credentials."""
    code = "AUTH_EXPIRED"

    def __init__(self, message: str):
        super().__init__(message, store_level=True)


class ApplyFailedError(ExternalServiceError):
    """Catalog mutation failed; nothing was charged or recorded."""
    code = "APPLY_FAILED"

    def __init__(self, message: str, product_id: Optional[str] = None,
                 store_level: bool = False):
        super().__init__(message, store_level=store_level)
        self.product_id = product_id


class ReconciliationWarning(UserWarning):
    """A catalog mutation succeeded but could not be billed.

    Never raised to callers. Instances are attached to apply results and
    written to the reconciliation log for manual follow-up.
    """

    def __init__(self, account_id: str, store_id: str, product_id: str,
                 optimization_type: str, optimized_value: str,
                 required: int, available: Optional[int] = None,
                 reason: str = "insufficient credits"):
        super().__init__(
            f"Unbilled optimization ({reason}): account={account_id} store={store_id} "
            f"product={product_id} type={optimization_type} "
            f"required={required} available={available}"
        )
        self.reason = reason
        self.account_id = account_id
        self.store_id = store_id
        self.product_id = product_id
        self.optimization_type = optimization_type
        self.optimized_value = optimized_value
        self.required = required
        self.available = available
