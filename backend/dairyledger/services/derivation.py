# Overview: Pure coercion helpers that turn loosely-typed document values into numbers and flags.

from __future__ import annotations

"""
Derivation Utilities

Upstream documents are not under this system's schema control, so numeric
fields arrive as ints, floats, strings with currency symbols ("₹1,200.50"),
None, or entirely different shapes. Everything here degrades to 0 / False
instead of raising.

Derivation chains:
- An extractor is a callable (doc) -> value | None.
- Chains are evaluated left to right and short-circuit on the first
  strictly positive number. The ORDER of a chain is the field-priority
  policy; reordering a chain changes which upstream field wins.
"""

import math
import re
from decimal import Decimal
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence

Extractor = Callable[[Any], Any]

_THOUSANDS = re.compile(r"(?<=\d),(?=\d)")
_NUMBER_TOKEN = re.compile(r"-?(?:\d+(?:\.\d+)?|\.\d+)")

_TRUE_WORDS = {"true", "yes", "y", "1", "on", "paid", "success", "completed"}


def parse_numeric_value(value: Any) -> float:
    """
    Coerce any value to a finite float; 0.0 when nothing usable is found.

    Strings lose thousands separators and everything around the first
    numeric token ("₹1,200.50/L" -> 1200.5, "2 L" -> 2.0, "Rs. 60" -> 60.0).
    """
    if value is None:
        return 0.0
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float, Decimal)):
        try:
            number = float(value)
        except (OverflowError, ValueError):
            return 0.0
        return number if math.isfinite(number) else 0.0
    if isinstance(value, str):
        cleaned = _THOUSANDS.sub("", value)
        match = _NUMBER_TOKEN.search(cleaned)
        if not match:
            return 0.0
        try:
            number = float(match.group(0))
        except ValueError:
            return 0.0
        return number if math.isfinite(number) else 0.0
    return 0.0


def first_positive_number(*candidates: Any) -> float:
    """First candidate whose parsed value is strictly positive, else 0.0."""
    for candidate in candidates:
        number = parse_numeric_value(candidate)
        if number > 0:
            return number
    return 0.0


def parse_flag(value: Any) -> bool:
    """Loose boolean: True, non-zero numbers, and words like "yes"/"paid"."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_WORDS
    if isinstance(value, (int, float, Decimal)):
        return parse_numeric_value(value) != 0
    return False


def dig(doc: Any, *path: str) -> Any:
    """Nested lookup that returns None instead of raising on any missing hop."""
    current = doc
    for key in path:
        if not isinstance(current, Mapping):
            return None
        current = current.get(key)
    return current


def field(*path: str) -> Extractor:
    """Extractor reading a (possibly nested) field."""
    return lambda doc: dig(doc, *path)


def resolve_number(doc: Any, chain: Sequence[Extractor]) -> float:
    """Evaluate a numeric derivation chain against one document."""
    for extractor in chain:
        number = parse_numeric_value(_safe(extractor, doc))
        if number > 0:
            return number
    return 0.0


def resolve_text(doc: Any, chain: Sequence[Extractor], default: str = "") -> str:
    """First non-blank string produced by the chain, else default."""
    for extractor in chain:
        value = _safe(extractor, doc)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            value = str(value)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return default


def first_list(doc: Any, keys: Iterable[str]) -> Optional[list]:
    """First field among keys holding a list (empty lists count as present)."""
    if not isinstance(doc, Mapping):
        return None
    for key in keys:
        value = doc.get(key)
        if isinstance(value, list):
            return value
    return None


def round_money(value: float) -> float:
    return round(parse_numeric_value(value), 2)


def round_quantity(value: float) -> float:
    return round(parse_numeric_value(value), 3)


def _safe(extractor: Extractor, doc: Any) -> Any:
    # Extractors may do arithmetic on odd shapes; a bad shape means "no value".
    try:
        return extractor(doc)
    except (TypeError, ValueError, ArithmeticError, AttributeError):
        return None
