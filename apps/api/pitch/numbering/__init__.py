from pitch.numbering.errors import (
    AllocationConflictError,
    AllocationExhaustedError,
    ImmutableNumberError,
    InvalidNumberError,
    NumberingError,
    NumberTakenError,
    TenantNotFoundError,
)
from pitch.numbering.types import JobNumberScope, NumberKind, format_composite, parse_number

__all__ = [
    "AllocationConflictError",
    "AllocationExhaustedError",
    "ImmutableNumberError",
    "InvalidNumberError",
    "NumberingError",
    "NumberTakenError",
    "TenantNotFoundError",
    "JobNumberScope",
    "NumberKind",
    "format_composite",
    "parse_number",
]
