"""
Quantity arithmetic for the stock ledgers.

Every weight or quantity the ledgers persist passes through ``quantize`` so
that repeated draws never accumulate binary or sub-cent drift.  Rounding is
ROUND_HALF_UP at a fixed number of places (2 by default, configurable via
``quantities.weight_places``).
"""

from decimal import ROUND_HALF_UP, Decimal

DEFAULT_PLACES = 2


def to_decimal(value: Decimal | int | str) -> Decimal:
    """Coerce an int, str or Decimal into a Decimal."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool) or isinstance(value, float):
        raise TypeError(f"Quantities must be Decimal, int or str, not {type(value).__name__}")
    return Decimal(value)


def quantize(value: Decimal | int | str, places: int = DEFAULT_PLACES) -> Decimal:
    """Round to ``places`` decimals, half up."""
    exponent = Decimal(1).scaleb(-places)
    return to_decimal(value).quantize(exponent, rounding=ROUND_HALF_UP)


def percentage(part: Decimal, whole: Decimal, places: int = DEFAULT_PLACES) -> Decimal:
    """part / whole * 100, rounded."""
    if whole == 0:
        raise ZeroDivisionError("percentage of a zero whole")
    return quantize(to_decimal(part) / to_decimal(whole) * 100, places)


def weighted_average_cost(
    on_hand: Decimal,
    current_cost: Decimal,
    received: Decimal,
    received_cost: Decimal,
) -> Decimal:
    """
    Blend the cost of stock on hand with the cost of a receipt.

    (on_hand * current_cost + received * received_cost) / (on_hand + received).
    Falls back to the receipt cost when the combined quantity is zero.
    """
    total = on_hand + received
    if total <= 0:
        return received_cost
    return (on_hand * current_cost + received * received_cost) / total
