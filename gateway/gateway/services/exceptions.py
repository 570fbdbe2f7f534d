"""Domain errors raised by the gateway services and translated by routers."""

from __future__ import annotations


class AccountSuspendedError(PermissionError):
    """The caller's account is suspended and may not record events."""


class QuotaExceededError(Exception):
    """The caller's free quota is used up and billing is not active."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class StoreNotFoundError(LookupError):
    """No store exists with the requested id."""

    def __init__(self, store_id: str) -> None:
        super().__init__(f"Store {store_id} not found")
        self.store_id = store_id
