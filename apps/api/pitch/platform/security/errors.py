from __future__ import annotations


class AuthorizationError(Exception):
    """Base authorization error for row-level enforcement failures."""


class AccessDeniedError(AuthorizationError):
    """Raised when a write fails the row-level check predicate."""

    def __init__(self, resource: str, action: str) -> None:
        self.resource = resource
        self.action = action
        super().__init__(f"Access denied for {action} on resource '{resource}'")


class TenantResolutionError(AuthorizationError):
    """Raised when a principal has no usable profile or tenant."""


class MembershipError(AuthorizationError):
    """Raised when a principal targets a tenant it holds no membership in."""


class RecursivePolicyError(RuntimeError):
    """A row filter re-entered access resolution for the same principal.

    This is a configuration defect, never handled gracefully.
    """
