"""Decimal arithmetic for monetary amounts.

Every amount that flows through the EDI readers and the reconciliation
services is a ``Decimal`` (or a decimal string) quantized to two places.
Binary floats never take part in a comparison.
"""
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Iterable, Optional, Union

from hcbilling.utils.logger import get_logger

logger = get_logger(__name__)

# Standard precision for financial amounts (2 decimal places)
FINANCIAL_PRECISION = Decimal("0.01")

ZERO = Decimal("0.00")

Amount = Union[str, int, Decimal]

CURRENCY_SYMBOLS = {
    "USD": "$",
    "CAD": "CA$",
    "EUR": "€",
    "GBP": "£",
}


def _quantum(scale: int) -> Decimal:
    return Decimal(1).scaleb(-scale)


def parse_decimal(value: Optional[Union[str, int, float, Decimal]], precision: Optional[Decimal] = None) -> Optional[Decimal]:
    """
    Parse a loosely formatted value to Decimal, returning None on failure.

    Used for CSV columns where blanks and junk are expected and logged rather
    than raised.

    Args:
        value: Value to parse (string, int, float, or Decimal)
        precision: Optional precision to round to

    Returns:
        Decimal value or None if parsing fails

    Example:
        >>> parse_decimal("$1,234.456", precision=FINANCIAL_PRECISION)
        Decimal('1234.46')
    """
    if value is None:
        return None

    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float)):
        try:
            result = Decimal(str(value))
        except (ValueError, InvalidOperation) as e:
            logger.warning("Failed to convert numeric value to Decimal", value=value, error=str(e))
            return None
    elif isinstance(value, str):
        value = value.strip().replace("$", "").replace(",", "")
        if not value:
            return None
        try:
            result = Decimal(value)
        except (ValueError, InvalidOperation) as e:
            logger.warning("Failed to parse decimal string", value=value, error=str(e))
            return None
    else:
        logger.warning("Unsupported type for decimal parsing", value=value, type=type(value).__name__)
        return None

    if not result.is_finite():
        logger.warning("Refusing non-finite decimal", value=value)
        return None

    if precision is not None:
        result = result.quantize(precision, rounding=ROUND_HALF_UP)

    return result


def parse_financial_amount(value: Optional[Union[str, int, float, Decimal]]) -> Optional[Decimal]:
    """Parse a financial amount with 2 decimal place precision, or None."""
    return parse_decimal(value, precision=FINANCIAL_PRECISION)


def to_money(value: Amount, scale: int = 2) -> Decimal:
    """
    Convert a decimal string, int or Decimal to a Decimal at ``scale`` places.

    Unlike :func:`parse_decimal` this is strict: floats and unparseable
    strings raise ``ValueError``.

    Example:
        >>> to_money("85")
        Decimal('85.00')
    """
    if isinstance(value, float):
        raise ValueError(f"Refusing to convert float {value!r} to a monetary amount")
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValueError(f"Invalid monetary amount: {value!r}") from None
    if not result.is_finite():
        raise ValueError(f"Invalid monetary amount: {value!r}")
    return result.quantize(_quantum(scale), rounding=ROUND_HALF_UP)


def money_add(*values: Amount, scale: int = 2) -> Decimal:
    """Exact sum of all arguments at ``scale`` places."""
    total = Decimal(0)
    for value in values:
        total += to_money(value, scale)
    return total.quantize(_quantum(scale), rounding=ROUND_HALF_UP)


def money_sum(values: Iterable[Amount], scale: int = 2) -> Decimal:
    """Exact sum of an iterable of amounts; an empty iterable sums to zero."""
    return money_add(*values, scale=scale)


def money_sub(left: Amount, right: Amount, scale: int = 2) -> Decimal:
    """``left - right`` at ``scale`` places."""
    return (to_money(left, scale) - to_money(right, scale)).quantize(_quantum(scale), rounding=ROUND_HALF_UP)


def money_mul(left: Amount, right: Amount, scale: int = 2) -> Decimal:
    """
    ``left * right`` rounded half-up to ``scale`` places.

    Operands are taken at full precision so a per-unit rate such as
    ``"12.345"`` is not rounded before multiplying.
    """
    product = _exact(left) * _exact(right)
    return product.quantize(_quantum(scale), rounding=ROUND_HALF_UP)


def money_div(dividend: Amount, divisor: Amount, scale: int = 2) -> Decimal:
    """
    ``dividend / divisor`` rounded half-up to ``scale`` places.

    Raises:
        ZeroDivisionError: If the divisor is zero
    """
    right = _exact(divisor)
    if right == 0:
        raise ZeroDivisionError("Division of a monetary amount by zero")
    return (_exact(dividend) / right).quantize(_quantum(scale), rounding=ROUND_HALF_UP)


def money_compare(left: Amount, right: Amount, scale: int = 2) -> int:
    """
    Three-way compare at ``scale`` places.

    Returns:
        -1 if left < right, 0 if equal, 1 if left > right
    """
    a = to_money(left, scale)
    b = to_money(right, scale)
    if a < b:
        return -1
    if a > b:
        return 1
    return 0


def money_equals(left: Amount, right: Amount, scale: int = 2) -> bool:
    return money_compare(left, right, scale) == 0


def round_to_precision(value: Decimal, decimal_places: int = 2) -> Decimal:
    """
    Round a Decimal value to a specific number of decimal places.

    Example:
        >>> round_to_precision(Decimal("123.455"), decimal_places=2)
        Decimal('123.46')
    """
    if value is None:
        return value
    return value.quantize(_quantum(decimal_places), rounding=ROUND_HALF_UP)


def format_currency(amount: Amount, currency_code: str = "USD") -> str:
    """
    Format an amount for display to an operator.

    Args:
        amount: Decimal or decimal string
        currency_code: ISO 4217 code; unknown codes are used as a prefix

    Returns:
        Formatted string such as ``"$1,234.50"`` or ``"-$5.00"``

    Example:
        >>> format_currency("-5", "USD")
        '-$5.00'
    """
    value = to_money(amount)
    symbol = CURRENCY_SYMBOLS.get(currency_code.upper(), f"{currency_code.upper()} ")
    sign = "-" if value < 0 else ""
    return f"{sign}{symbol}{abs(value):,.2f}"


def _exact(value: Amount) -> Decimal:
    if isinstance(value, float):
        raise ValueError(f"Refusing to convert float {value!r} to a monetary amount")
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value).strip())
    except InvalidOperation:
        raise ValueError(f"Invalid monetary amount: {value!r}") from None
