"""Native amount conversions.

Upstream reports lumens as decimal strings with seven places; the store keeps
integer stroops.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation

STROOPS_PER_LUMEN = Decimal(10_000_000)
_SEVEN_PLACES = Decimal("0.0000001")


def lumens_to_stroops(amount: str) -> str:
    try:
        stroops = (Decimal(amount) * STROOPS_PER_LUMEN).to_integral_exact()
    except InvalidOperation as exc:
        raise ValueError(f"not a native amount: {amount!r}") from exc
    return str(int(stroops))


def stroops_to_lumens(stroops: str) -> str:
    """Format stroops as lumens with exactly seven decimals (``"500000000"`` -> ``"50.0000000"``)."""
    try:
        value = Decimal(stroops or "0") / STROOPS_PER_LUMEN
    except InvalidOperation as exc:
        raise ValueError(f"not a stroop amount: {stroops!r}") from exc
    return format(value.quantize(_SEVEN_PLACES), "f")
