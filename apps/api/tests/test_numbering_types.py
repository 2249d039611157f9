from __future__ import annotations

import pytest

from pitch.numbering.errors import InvalidNumberError
from pitch.numbering.types import format_composite, parse_number


@pytest.mark.parametrize(
    ("parts", "expected"),
    [
        (("", "", ""), "0-0-0"),
        (("3", "", "7"), "3-0-7"),
        ((3, 1, 2), "3-1-2"),
        (("3", "1", "2"), "3-1-2"),
        ((None, None, None), "0-0-0"),
        ((" 12 ", 4, None), "12-4-0"),
    ],
)
def test_format_composite_normalizes_mixed_inputs(parts: tuple, expected: str) -> None:
    assert format_composite(*parts) == expected


def test_format_composite_is_idempotent_over_its_own_parts() -> None:
    first = format_composite("7", "", 3)
    contact, lead, job = first.split("-")
    assert format_composite(contact, lead, job) == first


def test_parse_number_treats_blank_as_unassigned() -> None:
    assert parse_number(None) == 0
    assert parse_number("") == 0
    assert parse_number("   ") == 0
    assert parse_number("0042") == 42


@pytest.mark.parametrize("value", ["abc", "1.5", "-3", -1, True])
def test_parse_number_rejects_non_numeric_values(value: object) -> None:
    with pytest.raises(InvalidNumberError):
        parse_number(value)
