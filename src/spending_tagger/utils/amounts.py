"""Amount parsing utilities."""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
import re
from typing import Union

_INTEGER_RE = re.compile(r"^[+-]?\d+$")
# "12,50" / "1.234,56": comma as the decimal separator
_COMMA_DECIMAL_RE = re.compile(r"^[+-]?\d{1,3}(\.\d{3})*,\d{1,2}$|^[+-]?\d+,\d{1,2}$")
# "1,234" / "1,234.56": comma as the thousands separator
_COMMA_THOUSANDS_RE = re.compile(r"^[+-]?\d{1,3}(,\d{3})+(\.\d+)?$")


def to_minor_units(value: Union[int, float, str, Decimal, None]) -> int:
    """Convert an input amount into signed minor currency units.

    Handles the formats bank exports use:
    - 12345 / 12345.0 (number without a fraction, already minor units)
    - "-50000" (integer string, minor units)
    - "-123.45" / "€1,234.56" / "(12.00)" (decimal point, major units)
    - "-12,50" / "1.234,56" (decimal comma, major units)
    - Decimal("12.50") (major units)

    A float with a fractional part is rejected: it cannot be told apart
    from a major-unit amount.

    Args:
        value: Raw amount

    Returns:
        Amount in minor units (cents)

    Raises:
        ValueError: If the amount cannot be parsed or is ambiguous
    """
    if value is None:
        return 0

    if isinstance(value, bool):
        raise ValueError(f"Could not parse amount '{value}'")

    if isinstance(value, int):
        return value

    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError(f"Ambiguous amount {value!r}: use minor units or a decimal string")
        return int(value)

    if isinstance(value, Decimal):
        return _major_to_minor(value)

    amount_str = str(value).strip()
    if not amount_str:
        return 0

    if _INTEGER_RE.match(amount_str):
        return int(amount_str)

    is_negative = False
    if amount_str.startswith("(") and amount_str.endswith(")"):
        is_negative = True
        amount_str = amount_str[1:-1]

    amount_str = re.sub(r"[$€£¥\s]", "", amount_str)
    if "," in amount_str:
        if _COMMA_DECIMAL_RE.match(amount_str):
            amount_str = amount_str.replace(".", "").replace(",", ".")
        elif _COMMA_THOUSANDS_RE.match(amount_str):
            amount_str = amount_str.replace(",", "")
        else:
            raise ValueError(f"Ambiguous amount '{value}'")

    try:
        amount = Decimal(amount_str)
    except InvalidOperation as e:
        raise ValueError(f"Could not parse amount '{value}'") from e

    if is_negative:
        amount = -amount
    return _major_to_minor(amount)


def _major_to_minor(amount: Decimal) -> int:
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def format_minor_units(amount: int) -> str:
    """Render minor units as a signed major-unit string, e.g. -1500 -> '-15.00'"""
    sign = "-" if amount < 0 else ""
    return f"{sign}{abs(amount) // 100}.{abs(amount) % 100:02d}"
