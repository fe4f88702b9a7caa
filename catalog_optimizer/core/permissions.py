"""
Store connections and write-scope checks.
"""

import logging
from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, Union

from .errors import InsufficientPermissionsError

logger = logging.getLogger(__name__)

DEFAULT_WRITE_SCOPE = "write_products"


def parse_scopes(scopes: Union[str, Iterable[str], None]) -> FrozenSet[str]:
    """Normalize a comma-separated scope string or iterable of scopes."""
    if not scopes:
        return frozenset()
    if isinstance(scopes, str):
        scopes = scopes.split(",")
    return frozenset(s.strip() for s in scopes if s and s.strip())


@dataclass(frozen=True)
class StoreConnection:
    """A connected storefront and the scopes granted to it.

    owner_id identifies the credit account billed for optimizations
    applied to this store.
    """
    store_id: str
    owner_id: str
    domain: str = ""
    access_token: str = field(default="", repr=False)
    scopes: FrozenSet[str] = frozenset()

    def __post_init__(self):
        object.__setattr__(self, "scopes", parse_scopes(self.scopes))

    def has_scope(self, scope: str) -> bool:
        return scope in self.scopes


class PermissionGate:
    """Evaluates granted scopes before mutating operations."""

    def __init__(self, write_scope: str = DEFAULT_WRITE_SCOPE):
        self.write_scope = write_scope

    def require_write_scope(self, connection: StoreConnection) -> None:
        """Ensure the connection may mutate catalog items.

        Raises:
            InsufficientPermissionsError: If the write scope was not granted;
                the store must be reconnected to obtain it
        """
        if connection.has_scope(self.write_scope):
            return
        logger.warning(
            f"Store {connection.store_id} lacks scope '{self.write_scope}' "
            f"(granted: {sorted(connection.scopes)})"
        )
        raise InsufficientPermissionsError(
            f"Store {connection.store_id} is missing the '{self.write_scope}' "
            "permission. Reconnect the store to grant it.",
            needs_reconnection=True,
        )
