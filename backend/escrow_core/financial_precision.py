"""
ESCROW LEDGER - DECIMAL PRECISION & MONEY UTILITIES

This module provides:
1. Decimal precision lock (2-decimal places)
2. Conversion to/from BSON Decimal128 for MongoDB storage
3. Value validation (no negative amounts)
4. Escrow floor arithmetic
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Union
from bson import Decimal128
import logging

from escrow_core.errors import InvalidAmountError

logger = logging.getLogger(__name__)

# Precision configuration
DECIMAL_PLACES = 2
QUANTIZE_PATTERN = Decimal('0.01')
ZERO = Decimal('0.00')

Numeric = Union[float, int, str, Decimal, Decimal128]


def to_decimal(value: Numeric) -> Decimal:
    """
    Convert any numeric value to Decimal.
    Does NOT round - preserves full precision for intermediate calculations.
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, Decimal128):
        return value.to_decimal()
    if value is None:
        return Decimal('0')
    if isinstance(value, bool):
        raise InvalidAmountError(f"Cannot convert {type(value).__name__} to Decimal")
    if isinstance(value, (int, float)):
        # Convert via string to avoid float precision issues
        return Decimal(str(value))
    if isinstance(value, str):
        try:
            return Decimal(value.strip())
        except InvalidOperation:
            raise InvalidAmountError(f"Not a valid amount: {value!r}")
    raise InvalidAmountError(f"Cannot convert {type(value).__name__} to Decimal")


def round_financial(value: Numeric) -> Decimal:
    """
    Round a value to 2 decimal places (ROUND_HALF_UP).
    This should be called ONLY at calculation boundaries.
    """
    decimal_value = to_decimal(value)
    if not decimal_value.is_finite():
        raise InvalidAmountError(f"Amount must be finite: {value}")
    return decimal_value.quantize(QUANTIZE_PATTERN, rounding=ROUND_HALF_UP)


def to_decimal128(value: Numeric) -> Decimal128:
    """Round and wrap a value for MongoDB storage."""
    return Decimal128(round_financial(value))


def validate_non_negative(value: Numeric, field_name: str) -> Decimal:
    """
    Validate that a financial value is not negative.
    Returns the rounded value; raises InvalidAmountError otherwise.
    """
    decimal_value = round_financial(value)
    if decimal_value < ZERO:
        raise InvalidAmountError(
            f"Financial value '{field_name}' cannot be negative: {value}"
        )
    return decimal_value


def validate_positive(value: Numeric, field_name: str) -> Decimal:
    """
    Validate that a financial value is strictly positive (> 0).
    Returns the rounded value; raises InvalidAmountError otherwise.
    """
    decimal_value = round_financial(value)
    if decimal_value <= ZERO:
        raise InvalidAmountError(
            f"Financial value '{field_name}' must be positive: {value}"
        )
    return decimal_value


def safe_add(*values: Numeric) -> Decimal:
    """Safe addition of multiple values"""
    result = Decimal('0')
    for v in values:
        result += to_decimal(v)
    return result


def safe_subtract(a: Numeric, b: Numeric) -> Decimal:
    """Safe subtraction preserving precision"""
    return to_decimal(a) - to_decimal(b)


def subtract_with_floor(balance: Numeric, amount: Numeric) -> Decimal:
    """
    Subtract amount from balance, never going below zero.

    Escrow can never be reported negative, even when the balance it starts
    from was already inconsistent with the ledger.
    """
    result = safe_subtract(balance, amount)
    if result < ZERO:
        logger.warning(
            f"[PRECISION] Escrow floor applied: balance={balance}, debit={amount}"
        )
        return ZERO
    return round_financial(result)
