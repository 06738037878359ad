"""
Symbol normalization across the three instrument formats in use:

    raw        EURUSD
    canonical  EUR_USD   (storage / comparison key)
    display    EUR/USD

Each conversion accepts any of the three forms and is idempotent.
Anything else raises UnrecognizedSymbolFormat instead of passing
through, so audit keys never silently diverge.
"""

from __future__ import annotations

import re
from typing import Tuple

from .errors import UnrecognizedSymbolFormat

_RAW_RE = re.compile(r"^([A-Z]{3})([A-Z]{3})$")
_SEPARATED_RE = re.compile(r"^([A-Z]{3})[_/]([A-Z]{3})$")


def split_symbol(symbol: str) -> Tuple[str, str]:
    """Return (base, quote) for any supported symbol form."""
    if not isinstance(symbol, str):
        raise UnrecognizedSymbolFormat(symbol)
    token = symbol.strip().upper()
    match = _SEPARATED_RE.match(token) or _RAW_RE.match(token)
    if match is None:
        raise UnrecognizedSymbolFormat(symbol)
    base, quote = match.group(1), match.group(2)
    if base == quote:
        raise UnrecognizedSymbolFormat(symbol)
    return base, quote


def to_display_symbol(symbol: str) -> str:
    base, quote = split_symbol(symbol)
    return f"{base}/{quote}"


def to_canonical_symbol(symbol: str) -> str:
    base, quote = split_symbol(symbol)
    return f"{base}_{quote}"


def to_raw_symbol(symbol: str) -> str:
    base, quote = split_symbol(symbol)
    return f"{base}{quote}"


def is_supported_symbol(symbol: str) -> bool:
    try:
        split_symbol(symbol)
    except UnrecognizedSymbolFormat:
        return False
    return True


__all__ = [
    "is_supported_symbol",
    "split_symbol",
    "to_canonical_symbol",
    "to_display_symbol",
    "to_raw_symbol",
]
