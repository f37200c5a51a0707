"""
Mutation Kernel — Input Validator

validate(text, range) -> Verdict

Pure function: no hidden state, no I/O, deterministic.
Safe to replay after a debounced validation was cancelled.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional

from .codec import MutationValueError, format_percentage, to_multiplier
from .domain_types import AttributeRange


class OutOfRangeError(MutationValueError):
    """Valid number whose multiplier falls outside the attribute's bounds."""

    def __init__(self, min_multiplier: float, max_multiplier: float) -> None:
        self.min_multiplier = min_multiplier
        self.max_multiplier = max_multiplier
        self.min_percent = format_percentage(min_multiplier)
        self.max_percent = format_percentage(max_multiplier)
        super().__init__(
            f"Value must be between {self.min_percent} and {self.max_percent}"
        )


class VerdictKind(str, enum.Enum):
    EMPTY = "empty"
    INVALID = "invalid"
    VALID = "valid"


@dataclass(frozen=True)
class Verdict:
    """Outcome of validating one piece of input text."""

    kind: VerdictKind
    multiplier: Optional[float] = None
    error: Optional[MutationValueError] = None

    @property
    def is_confirmable(self) -> bool:
        return self.kind is VerdictKind.VALID

    @property
    def message(self) -> Optional[str]:
        """Human-readable message, or None when nothing should be shown."""
        return str(self.error) if self.error is not None else None


EMPTY_VERDICT = Verdict(VerdictKind.EMPTY)


def validate(text: str, attribute_range: AttributeRange) -> Verdict:
    """
    Validate percentage text against an attribute range.

    Whitespace-only input is EMPTY. Surrounding whitespace on
    non-empty input is a format error, like any other stray character.
    """
    if not text.strip():
        return EMPTY_VERDICT
    try:
        multiplier = to_multiplier(text)
    except MutationValueError as exc:
        return Verdict(VerdictKind.INVALID, error=exc)
    if not attribute_range.contains(multiplier):
        return Verdict(
            VerdictKind.INVALID,
            error=OutOfRangeError(
                attribute_range.min_multiplier, attribute_range.max_multiplier,
            ),
        )
    return Verdict(VerdictKind.VALID, multiplier=multiplier)
