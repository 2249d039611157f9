from __future__ import annotations

from enum import StrEnum
from typing import Any

from pitch.numbering.errors import InvalidNumberError


class NumberKind(StrEnum):
    CONTACT = "contact"
    LEAD = "lead"
    JOB = "job"


class JobNumberScope(StrEnum):
    LEAD = "lead"
    TENANT = "tenant"
    RANDOM = "random"


def parse_number(value: Any) -> int:
    """Coerce a stored or submitted sequence number to an int.

    ``None`` and blank text mean "not assigned" and read as 0.
    """

    if value is None:
        return 0
    if isinstance(value, bool):
        raise InvalidNumberError(value)
    if isinstance(value, int):
        if value < 0:
            raise InvalidNumberError(value)
        return value
    text = str(value).strip()
    if not text:
        return 0
    if not text.isdigit():
        raise InvalidNumberError(value)
    return int(text)


def format_composite(contact_number: Any, lead_number: Any, job_number: Any) -> str:
    return f"{parse_number(contact_number)}-{parse_number(lead_number)}-{parse_number(job_number)}"
