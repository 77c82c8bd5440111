"""Currency helpers for order money (Algerian dinar, DZD).

Storage unit: Decimal dinars with two places (``Numeric(12, 2)``).
COD mirror unit: integer centimes (100 centimes = 1 DA).
Carrier unit: whole dinars; the carrier API rejects fractional amounts.

All rounding is half-up, matching what the storefront displays.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Union

Number = Union[Decimal, int, float, str]

CENTIMES_PER_DINAR: int = 100
_TWO_PLACES = Decimal("0.01")
_WHOLE = Decimal("1")


def as_money(value: Number | None) -> Decimal:
    """Coerce to a two-place Decimal; ``None`` counts as zero."""
    if value is None:
        return Decimal("0.00")
    if isinstance(value, float):
        value = repr(value)
    return Decimal(value).quantize(_TWO_PLACES, rounding=ROUND_HALF_UP)


def to_centimes(dinars: Number | None) -> int:
    """Convert dinars to integer centimes (round half-up). 1 DA = 100 centimes."""
    return int((as_money(dinars) * CENTIMES_PER_DINAR).to_integral_value(ROUND_HALF_UP))


def round_dinars(dinars: Number | None) -> int:
    """Round to whole dinars (half-up) for carrier-facing prices."""
    return int(as_money(dinars).quantize(_WHOLE, rounding=ROUND_HALF_UP))
