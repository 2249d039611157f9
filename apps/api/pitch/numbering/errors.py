from __future__ import annotations


class NumberingError(Exception):
    """Base error for identifier allocation."""


class InvalidNumberError(NumberingError, ValueError):
    def __init__(self, value: object) -> None:
        self.value = value
        super().__init__(f"'{value}' is not a valid sequence number")


class TenantNotFoundError(NumberingError):
    def __init__(self, tenant_id: object) -> None:
        self.tenant_id = tenant_id
        super().__init__(f"tenant '{tenant_id}' does not exist or is deleted")


class AllocationConflictError(NumberingError):
    """A concurrent writer took the number first. Retryable."""

    def __init__(self, kind: str, scope_key: str) -> None:
        self.kind = kind
        self.scope_key = scope_key
        super().__init__(f"allocation conflict for {kind} in scope '{scope_key}'")


class AllocationExhaustedError(NumberingError):
    """Retries ran out while allocating. Not retryable by the caller."""

    def __init__(self, kind: str, attempts: int) -> None:
        self.kind = kind
        self.attempts = attempts
        super().__init__(f"could not allocate {kind} number after {attempts} attempts")


class ImmutableNumberError(NumberingError):
    def __init__(self, field_name: str) -> None:
        self.field_name = field_name
        super().__init__(f"{field_name} cannot change once assigned")


class NumberTakenError(NumberingError):
    """An explicitly supplied number is already in use. Not retryable."""

    def __init__(self, kind: str, number: int) -> None:
        self.kind = kind
        self.number = number
        super().__init__(f"{kind} number {number} is already in use")
