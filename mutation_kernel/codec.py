"""
Mutation Kernel — Percentage Codec

Converts between user-facing percentage text and internal multipliers.

    multiplier = percentage / 100 + 1
    percentage = (multiplier - 1) * 100

Arithmetic runs in Decimal on the shortest repr of each float, so
"15" maps to exactly 1.15 and 0.9 maps back to exactly -10.
Display text is truncated (toward zero) to DISPLAY_FRACTION_DIGITS.
Range checks never use display text; they compare multipliers.
"""

from __future__ import annotations

import math
import re
from decimal import Decimal, InvalidOperation, ROUND_DOWN

from .constants import DISPLAY_FRACTION_DIGITS

# Optional sign, digits, at most one decimal point. ASCII digits only.
PERCENTAGE_PATTERN = re.compile(r"[+-]?(\d+\.?\d*|\.\d+)", re.ASCII)

_HUNDRED = Decimal(100)
_ONE = Decimal(1)


class MutationValueError(Exception):
    """Base for every recoverable mutation-value input error."""


class FormatError(MutationValueError):
    """Text does not match the numeric grammar."""

    def __init__(self, text: str) -> None:
        self.text = text
        super().__init__(
            f"Invalid format {text!r}: only digits, one decimal point "
            f"and a leading sign are allowed"
        )


class NumberError(MutationValueError):
    """Text matches the grammar but does not yield a usable number."""

    def __init__(self, text: str) -> None:
        self.text = text
        super().__init__(f"Invalid number {text!r}")


def to_multiplier(text: str) -> float:
    """Parse percentage text into a multiplier. Raises FormatError / NumberError."""
    if not PERCENTAGE_PATTERN.fullmatch(text):
        raise FormatError(text)
    try:
        percentage = Decimal(text)
    except InvalidOperation:
        raise NumberError(text) from None
    multiplier = float(percentage / _HUNDRED + _ONE)
    if not math.isfinite(multiplier):
        raise NumberError(text)
    return multiplier


def to_percentage(multiplier: float) -> float:
    """Inverse of to_multiplier, without display truncation."""
    return float(_percentage_decimal(multiplier))


def format_percentage(
    multiplier: float, digits: int = DISPLAY_FRACTION_DIGITS,
) -> str:
    """Signed display form used in range messages: "+20%", "-10%", "+0%"."""
    text = _truncated_text(_percentage_decimal(multiplier), digits)
    if not text.startswith("-"):
        text = "+" + text
    return text + "%"


def format_value(
    multiplier: float, digits: int = DISPLAY_FRACTION_DIGITS,
) -> str:
    """Row display form: positive values carry no plus sign ("15%", "-8%")."""
    return _truncated_text(_percentage_decimal(multiplier), digits) + "%"


def format_for_input(
    multiplier: float, digits: int = DISPLAY_FRACTION_DIGITS,
) -> str:
    """Text pre-filled into the edit field for an existing value."""
    return _truncated_text(_percentage_decimal(multiplier), digits)


def _percentage_decimal(multiplier: float) -> Decimal:
    return (Decimal(repr(multiplier)) - _ONE) * _HUNDRED


def _truncated_text(value: Decimal, digits: int) -> str:
    quantum = Decimal(1).scaleb(-digits)
    truncated = value.quantize(quantum, rounding=ROUND_DOWN)
    if truncated == 0:
        return "0"
    return format(truncated.normalize(), "f")
