"""
Mutation Kernel — Codec + Validator Tests

Covers:
  - Percentage text -> multiplier, exact for decimal input
  - Multiplier -> percentage without float drift
  - Display truncation (never rounds up)
  - Grammar failures are always FormatError
  - Validator verdicts for the [0.90, 1.20] reference range

Run:  py -3 -m mutation_kernel.test_codec
"""

from __future__ import annotations

import math
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from mutation_kernel.codec import (
    FormatError,
    NumberError,
    format_for_input,
    format_percentage,
    format_value,
    to_multiplier,
    to_percentage,
)
from mutation_kernel.domain_types import AttributeRange
from mutation_kernel.validator import OutOfRangeError, VerdictKind, validate


REFERENCE_RANGE = AttributeRange(
    attribute_id=64,
    display_name="Damage Modifier",
    min_multiplier=0.90,
    max_multiplier=1.20,
)

GRAMMAR_FAILURES = [
    "1..5", ".", "+", "-", "abc", "15%", " 15", "15 ", "1e5", "--3",
    "+-3", "1,5", "0x10", "١٥", "1.2.3", "nan", "inf", "15\n",
]


# ───────────────────────────────────────────────────────────────
# Codec
# ───────────────────────────────────────────────────────────────

def test_01_percentage_to_multiplier_exact() -> None:
    assert to_multiplier("15") == 1.15
    assert to_multiplier("-10") == 0.9
    assert to_multiplier("+20") == 1.2
    assert to_multiplier("-8") == 0.92
    assert to_multiplier("0") == 1.0
    assert to_multiplier(".5") == 1.005
    assert to_multiplier("15.") == 1.15
    assert to_multiplier("-7.25") == 0.9275


def test_02_multiplier_to_percentage_no_drift() -> None:
    assert to_percentage(0.9) == -10.0
    assert to_percentage(1.15) == 15.0
    assert to_percentage(0.92) == -8.0
    assert to_percentage(1.0) == 0.0


def test_03_round_trip_within_display_precision() -> None:
    for text in ["15", "-10", "7.5", "-3.25", "19.99", ".01", "0"]:
        back = to_percentage(to_multiplier(text))
        assert math.isclose(back, float(text), abs_tol=0.005), (text, back)


def test_04_grammar_failures_are_format_errors() -> None:
    for text in GRAMMAR_FAILURES:
        try:
            to_multiplier(text)
        except FormatError:
            continue
        except NumberError:
            raise AssertionError(f"{text!r} raised NumberError, expected FormatError")
        raise AssertionError(f"{text!r} was accepted")


def test_05_overflowing_number_is_number_error() -> None:
    try:
        to_multiplier("9" * 400)
    except NumberError:
        return
    raise AssertionError("Expected NumberError for a non-finite multiplier")


def test_06_display_formats() -> None:
    assert format_percentage(0.9) == "-10%"
    assert format_percentage(1.2) == "+20%"
    assert format_percentage(1.0) == "+0%"
    assert format_percentage(1.0525) == "+5.25%"
    assert format_value(1.15) == "15%"
    assert format_value(0.92) == "-8%"
    assert format_for_input(1.15) == "15"
    assert format_for_input(0.925) == "-7.5"


def test_07_display_truncates_toward_zero() -> None:
    assert format_for_input(1.123456) == "12.34"
    assert format_for_input(0.876549) == "-12.34"
    assert format_percentage(1.19999) == "+19.99%"
    assert format_for_input(0.99999) == "0"


# ───────────────────────────────────────────────────────────────
# Validator
# ───────────────────────────────────────────────────────────────

def test_08_reference_range_scenario() -> None:
    verdict = validate("15", REFERENCE_RANGE)
    assert verdict.kind is VerdictKind.VALID
    assert verdict.multiplier == 1.15
    assert verdict.is_confirmable

    verdict = validate("25", REFERENCE_RANGE)
    assert verdict.kind is VerdictKind.INVALID
    assert isinstance(verdict.error, OutOfRangeError)
    assert verdict.error.min_percent == "-10%"
    assert verdict.error.max_percent == "+20%"
    assert verdict.message == "Value must be between -10% and +20%"
    assert not verdict.is_confirmable

    verdict = validate("1..5", REFERENCE_RANGE)
    assert verdict.kind is VerdictKind.INVALID
    assert isinstance(verdict.error, FormatError)


def test_09_bounds_are_inclusive() -> None:
    assert validate("20", REFERENCE_RANGE).multiplier == 1.2
    assert validate("-10", REFERENCE_RANGE).multiplier == 0.9
    assert validate("-10.01", REFERENCE_RANGE).kind is VerdictKind.INVALID
    assert validate("20.01", REFERENCE_RANGE).kind is VerdictKind.INVALID


def test_10_empty_input_is_not_an_error() -> None:
    for text in ["", " ", "\t", "   "]:
        verdict = validate(text, REFERENCE_RANGE)
        assert verdict.kind is VerdictKind.EMPTY
        assert verdict.message is None
        assert not verdict.is_confirmable


def test_11_validator_grammar_failures() -> None:
    for text in GRAMMAR_FAILURES:
        if not text.strip():
            continue
        verdict = validate(text, REFERENCE_RANGE)
        assert verdict.kind is VerdictKind.INVALID
        assert isinstance(verdict.error, FormatError), text


def test_12_validator_is_deterministic() -> None:
    first = validate("12.5", REFERENCE_RANGE)
    second = validate("12.5", REFERENCE_RANGE)
    assert first == second
    assert first.multiplier == 1.125


def test_13_all_valid_percentages_in_range() -> None:
    # Every hundredth of a percent inside [-10, +20] is accepted.
    for hundredths in range(-1000, 2001, 7):
        text = f"{hundredths / 100:.2f}"
        verdict = validate(text, REFERENCE_RANGE)
        assert verdict.kind is VerdictKind.VALID, text
        assert math.isclose(to_percentage(verdict.multiplier), float(text), abs_tol=0.005)


# ───────────────────────────────────────────────────────────────
# Runner
# ───────────────────────────────────────────────────────────────

_TESTS = [
    test_01_percentage_to_multiplier_exact,
    test_02_multiplier_to_percentage_no_drift,
    test_03_round_trip_within_display_precision,
    test_04_grammar_failures_are_format_errors,
    test_05_overflowing_number_is_number_error,
    test_06_display_formats,
    test_07_display_truncates_toward_zero,
    test_08_reference_range_scenario,
    test_09_bounds_are_inclusive,
    test_10_empty_input_is_not_an_error,
    test_11_validator_grammar_failures,
    test_12_validator_is_deterministic,
    test_13_all_valid_percentages_in_range,
]


def main() -> None:
    passed = 0
    failed = 0
    for fn in _TESTS:
        try:
            fn()
            print(f"  [PASS] {fn.__name__}")
            passed += 1
        except Exception as exc:
            print(f"  [FAIL] {fn.__name__}: {exc!r}")
            failed += 1
    print(f"\n{passed} passed, {failed} failed")
    sys.exit(1 if failed else 0)


if __name__ == "__main__":
    main()
