"""tests/test_prices.py — Unit tests for the Price Normalizer"""
import math

import pytest

from analyzer.prices import normalize_price


@pytest.mark.parametrize("text, expected", [
    ("$1,234.56", 1234.56),
    ("1.234,56 €", 1234.56),
    ("€ 9,99", 9.99),
    ("USD 1,200", 1200.0),
    ("£5", 5.0),
    ("12.00 EUR", 12.0),
])
def test_currency_anchored(text, expected):
    assert normalize_price(text) == pytest.approx(expected)


def test_free_is_zero():
    assert normalize_price("Free") == 0
    assert normalize_price("GRATIS trial") == 0


def test_no_digits_is_nan():
    assert math.isnan(normalize_price("N/A"))
    assert math.isnan(normalize_price(""))
    assert math.isnan(normalize_price("   "))
    assert math.isnan(normalize_price(None))


def test_anchor_beats_leading_quantity():
    # "3 items" must not be read as the price
    assert normalize_price("3 items for $29.99") == pytest.approx(29.99)


def test_fallback_first_word():
    assert normalize_price("49.50 per month") == pytest.approx(49.5)


def test_lone_comma_rules():
    assert normalize_price("1234,56") == pytest.approx(1234.56)
    assert normalize_price("1,234") == 1234.0
    assert normalize_price("1,234,567") == 1234567.0


def test_lone_dot_rules():
    assert normalize_price("1234.56") == pytest.approx(1234.56)
    assert normalize_price("1.234") == 1234.0


def test_numeric_strings_are_idempotent():
    for value in ("1234.56", "1234,56", "99", "0.50"):
        first = normalize_price(value)
        assert normalize_price(f"{first:.2f}") == pytest.approx(first)
        assert normalize_price(f"{first:,.2f}") == pytest.approx(first)
