"""Immo Harvester — Normalization Helpers.

Shared parsing used by every provider's normalize step. All helpers
degrade to None (or False) on missing or malformed input instead of
raising, since sources routinely omit fields.

Number parsing follows German formatting:
  "225.000 €"        → 225000.0   ("." is a thousands separator)
  "2,5 Zimmer"       → 2.5        ("," is the decimal separator)
  "1.234,56 €"       → 1234.56
"""

from __future__ import annotations

import hashlib
import re
from typing import Any, Iterable, Optional

_NUMBER_RE = re.compile(r"\d+(?:,\d+)?")
_GROUPED_RE = re.compile(r"\d{1,3}(?:\.\d{3})+")


def null_or_empty(value: Any) -> bool:
    """True for None and for values whose string form is empty."""
    return value is None or len(str(value)) == 0


def extract_number(value: Any) -> Optional[float]:
    """Extract the first number from locale-formatted text.

    Numbers that are already numeric are returned as floats unchanged.

    Args:
        value: Raw text such as "225.000 € 3.629 €/m²", or a number.

    Returns:
        The first number found, or None.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).replace(".", "")
    match = _NUMBER_RE.search(text)
    if match is None:
        return None
    try:
        return float(match.group(0).replace(",", "."))
    except ValueError:
        return None


def parse_float(value: Any) -> Optional[float]:
    """Parse a plain decimal that may use a comma ("2,5" or "2.5")."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).strip().replace(",", "."))
    except ValueError:
        return None


def parse_int(value: Any) -> Optional[int]:
    """Parse an integer such as a year; non-positive results become None.

    "1.990" is read as a grouped 1990, "1998.0" as a decimal 1998.
    """
    if value is None or isinstance(value, bool):
        return None
    text = str(value).strip()
    try:
        return int(text) or None
    except ValueError:
        pass
    if not _GROUPED_RE.fullmatch(text):
        try:
            return int(float(text)) or None
        except (ValueError, OverflowError):
            pass
    number = extract_number(text)
    if number is None:
        return None
    return int(number) or None


def price_per_sqm(numeric_price: Optional[float], numeric_size: Optional[float]) -> Optional[float]:
    """Price per square meter, rounded to two decimals.

    Only computed when both values are present and strictly positive.
    """
    if not numeric_price or not numeric_size:
        return None
    if numeric_price <= 0 or numeric_size <= 0:
        return None
    return round(numeric_price / numeric_size, 2)


def is_one_of(text: Optional[str], words: Iterable[str], case_sensitive: bool = False) -> bool:
    """Whether any of the words occurs in the text as a substring."""
    if not text:
        return False
    haystack = text if case_sensitive else text.lower()
    for word in words:
        if not word:
            continue
        needle = word if case_sensitive else word.lower()
        if needle in haystack:
            return True
    return False


def build_hash(*parts: Any) -> Optional[str]:
    """Stable SHA-256 fingerprint of the non-empty parts, or None if all are empty."""
    values = [str(p) for p in parts if not null_or_empty(p)]
    if not values:
        return None
    return hashlib.sha256(",".join(values).encode("utf-8")).hexdigest()


def format_eur(value: Optional[float]) -> Optional[str]:
    """Format an amount the German way: 350000 → "350.000,00 €"."""
    if value is None:
        return None
    text = f"{value:,.2f}".replace(",", "_").replace(".", ",").replace("_", ".")
    return f"{text} €"


def format_decimal(value: Optional[float]) -> Optional[str]:
    """Format a number with German separators and no forced decimals."""
    if value is None:
        return None
    if float(value).is_integer():
        text = f"{int(value):,}"
    else:
        text = f"{value:,.2f}".rstrip("0").rstrip(".")
    return text.replace(",", "_").replace(".", ",").replace("_", ".")


def clean_text(value: Optional[str]) -> Optional[str]:
    """Collapse whitespace; empty results become None."""
    if value is None:
        return None
    text = re.sub(r"\s+", " ", str(value)).strip()
    return text or None
