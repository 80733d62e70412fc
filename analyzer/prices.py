"""
analyzer/prices.py — Price Normalizer

Turns display price strings ("$1,234.56", "1.234,56 €", "Free") into
comparable floats for catalog drift checks.
"""
import math
import re

_FREE_PATTERN = re.compile(r"\b(free|gratis)\b", re.IGNORECASE)

_CURRENCY = r"(?:[$€£¥]|USD|EUR|GBP|CAD|AUD)"

# Numeral adjacent to a currency anchor, on either side. Anchoring keeps
# quantities and dates out of the captured number.
_ANCHORED_PATTERN = re.compile(
    rf"{_CURRENCY}\s?([\d,.]*\d)|([\d,.]*\d)\s?{_CURRENCY}",
    re.IGNORECASE,
)

_NON_NUMERIC = re.compile(r"[^\d,.]")


def normalize_price(value) -> float:
    """Return the numeric value of a price string, or NaN when none is present."""
    if value is None:
        return math.nan
    text = str(value).strip()
    if not text:
        return math.nan
    if _FREE_PATTERN.search(text):
        return 0.0

    match = _ANCHORED_PATTERN.search(text)
    if match:
        raw = match.group(1) or match.group(2)
    else:
        raw = text.split()[0]
    raw = _NON_NUMERIC.sub("", raw)

    if not any(ch.isdigit() for ch in raw):
        return math.nan

    cleaned = _resolve_separators(raw)
    try:
        result = float(cleaned)
    except ValueError:
        return math.nan
    return result if math.isfinite(result) else math.nan


def _resolve_separators(raw: str) -> str:
    """Rewrite a digits/comma/dot string into a float() friendly form."""
    last_comma = raw.rfind(",")
    last_dot = raw.rfind(".")

    if last_comma != -1 and last_dot != -1:
        # 1.200,50 or 1,200.50: rightmost separator is the decimal point
        if last_comma > last_dot:
            return raw.replace(".", "").replace(",", ".")
        return raw.replace(",", "")
    if last_comma != -1:
        if len(raw) - 1 - last_comma == 2:
            return raw[:last_comma].replace(",", "") + "." + raw[last_comma + 1:]
        return raw.replace(",", "")
    if last_dot != -1:
        if len(raw) - 1 - last_dot == 2:
            return raw[:last_dot].replace(".", "") + raw[last_dot:]
        return raw.replace(".", "")
    return raw
