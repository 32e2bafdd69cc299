"""
Money Handling Module

Fixed-point amount handling for balances and transactions. Every amount in the
system is a Decimal with exactly two fractional digits. NEVER uses float for
monetary values.
"""

from decimal import Decimal, InvalidOperation, getcontext
from typing import Union

from .errors import InvalidAmount

# Set global decimal context for financial precision
getcontext().prec = 28

PRECISION = 2
QUANTUM = Decimal('0.1') ** PRECISION  # Decimal('0.01')
ZERO = Decimal('0').quantize(QUANTUM)

AmountLike = Union[Decimal, int, float, str]


def to_decimal(value: AmountLike) -> Decimal:
    """
    Convert a raw value to Decimal without changing its scale.

    Floats go through str() so that 0.1 becomes Decimal('0.1') and not its
    binary expansion.

    Raises:
        InvalidAmount: If the value is not a finite number
    """
    if isinstance(value, bool):
        raise InvalidAmount(value, "Amount must be a number")
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise InvalidAmount(value, "Amount must be a number")

    if not result.is_finite():
        raise InvalidAmount(value, "Amount must be a finite number")
    return result


def quantize(value: Decimal) -> Decimal:
    """Return value at the ledger scale (two fractional digits)"""
    return value.quantize(QUANTUM)


def parse_amount(value: AmountLike) -> Decimal:
    """
    Parse an operation amount.

    The amount must be strictly positive and must not carry more fractional
    digits than the ledger scale; amounts are never rounded.

    Args:
        value: Raw amount (Decimal, int, str or float)

    Returns:
        Decimal quantized to two fractional digits

    Raises:
        InvalidAmount: If the value is not a positive two-decimal number
    """
    amount = to_decimal(value)

    try:
        quantized = quantize(amount)
    except InvalidOperation:
        raise InvalidAmount(value, "Amount is too large")

    if amount != quantized:
        raise InvalidAmount(value, f"Amount must have at most {PRECISION} decimal places")

    amount = quantized
    if amount <= ZERO:
        raise InvalidAmount(value, "Amount must be greater than zero")

    return amount


def format_amount(value: Decimal) -> str:
    """Format an amount for serialization, e.g. Decimal('750') -> '750.00'"""
    return f"{quantize(value):.{PRECISION}f}"
