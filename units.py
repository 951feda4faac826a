# units.py
from decimal import Decimal
from typing import Union


def format_smallest_units(raw: Union[str, int], exponent: int) -> str:
    """
    Renders a smallest-unit integer (wei, satoshi, lamport, nanoton) as a plain
    decimal string of the native asset, using only string arithmetic.

    Args:
        raw: Non-negative integer, or its base-10 digit string.
        exponent: The chain's scaling exponent (18 for wei, 8 for satoshi, ...).

    Returns:
        The canonical decimal string, e.g. "1.5", "0.999999999" or "1000".
    """
    if exponent < 0:
        raise ValueError("Scaling exponent must be non-negative")

    if isinstance(raw, bool):
        raise ValueError("Balance must be an integer, not a boolean")
    if isinstance(raw, int):
        if raw < 0:
            raise ValueError("Balance must be non-negative")
        digits = str(raw)
    else:
        digits = str(raw).strip()
        if not digits or not digits.isdigit() or not digits.isascii():
            raise ValueError(f"Balance {raw!r} is not a non-negative integer string")

    if exponent == 0:
        return digits.lstrip('0') or '0'

    split_at = len(digits) - exponent
    whole = digits[:split_at] if split_at > 0 else ''
    fraction = digits[split_at:] if split_at > 0 else digits
    fraction = fraction.rjust(exponent, '0')

    whole = whole.lstrip('0') or '0'
    fraction = fraction.rstrip('0')

    if not fraction:
        return whole
    return f"{whole}.{fraction}"


def to_decimal_amount(raw: Union[str, int], exponent: int) -> Decimal:
    """Converts a smallest-unit integer into an exact Decimal of the native asset."""
    return Decimal(format_smallest_units(raw, exponent))


def hex_quantity_to_int(value: str) -> int:
    """Parses a JSON-RPC hex quantity such as '0x1bc16d674ec80000'."""
    if not isinstance(value, str) or not value.lower().startswith('0x'):
        raise ValueError(f"Expected a 0x-prefixed hex quantity, got {value!r}")
    body = value[2:]
    if not body:
        return 0
    return int(body, 16)
