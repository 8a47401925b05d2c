"""Ledger error taxonomy.

Every error carries a stable ``code`` so callers can map it to a response
without parsing messages. Nothing here is swallowed inside the ledger.
"""

from __future__ import annotations

from typing import Any


class LedgerError(Exception):
    """Base class for all expected ledger failures."""

    code = "ledger_error"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        """Serializable form for the calling layer."""
        return {"error": self.code, "detail": self.message, **self.context}


class NotFound(LedgerError):
    """Unknown account, catalog item, course or entitlement."""

    code = "not_found"


class InsufficientFunds(LedgerError):
    """Debit would leave the account with negative coins."""

    code = "insufficient_funds"


class DuplicateEntitlement(LedgerError):
    """Entitlement already exists and the caller asked to reject duplicates."""

    code = "duplicate_entitlement"


class StoreUnavailable(LedgerError):
    """The database could not be reached or refused the operation."""

    code = "store_unavailable"


class ResourceInUse(LedgerError):
    """Catalog row is still referenced by entitlements."""

    code = "resource_in_use"


class AccountExists(LedgerError):
    """Username already registered."""

    code = "account_exists"
