"""Payment amount grammar shared by header parsing, validation and generated code.

Amounts are plain decimals with at most six fractional digits, so every
accepted value is a whole number of micro-units. Generated middleware applies
the same pattern and does its arithmetic on those integers.
"""

from __future__ import annotations

import re
from decimal import Decimal
from typing import Optional

AMOUNT_DECIMALS = 6
UNITS_PER_TOKEN = 10**AMOUNT_DECIMALS
AMOUNT_PATTERN = re.compile(r"[0-9]+(?:\.[0-9]{1,%d})?" % AMOUNT_DECIMALS)

# optional whitespace around an HTTP field value
HEADER_WHITESPACE = " \t"


def parse_amount(raw: Optional[str]) -> Optional[Decimal]:
    """Parse a header amount; anything outside the grammar becomes ``None``."""

    if raw is None:
        return None
    text = raw.strip(HEADER_WHITESPACE)
    if AMOUNT_PATTERN.fullmatch(text) is None:
        return None
    return Decimal(text)


def has_unit_precision(amount: Decimal) -> bool:
    if not amount.is_finite():
        return False
    units = amount * UNITS_PER_TOKEN
    return units == units.to_integral_value()


def to_units(amount: Decimal) -> int:
    """Convert a token amount to integer micro-units."""

    if not has_unit_precision(amount):
        raise ValueError(f"{amount} has more than {AMOUNT_DECIMALS} decimal places")
    return int(amount * UNITS_PER_TOKEN)
