"""
Read-only runtime checks. Nothing here changes a governance decision;
failures are logged and returned for monitoring.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from .errors import UnrecognizedSymbolFormat
from .governance_models import FRICTION_TOLERANCE, MarketContextSnapshot
from .symbols import to_canonical_symbol, to_display_symbol

logger = logging.getLogger(__name__)

FRICTION_RATIO_SANE_RANGE = (0.5, 50.0)


@dataclass
class UnitValidationResult:
    passed: bool
    violations: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"passed": self.passed, "violations": list(self.violations)}


def validate_unit_consistency(snapshot: MarketContextSnapshot) -> UnitValidationResult:
    """ATR vs spread sanity; flags likely pip/price unit mismatches."""
    violations: List[str] = []

    if snapshot.atr_value <= 0:
        violations.append(f"ATR is {snapshot.atr_value}, must be > 0")
    if snapshot.spread < 0:
        violations.append(f"Spread is {snapshot.spread}, must be >= 0")

    if snapshot.price_data_available and snapshot.spread > 0:
        lo, hi = FRICTION_RATIO_SANE_RANGE
        if snapshot.friction_ratio < lo or snapshot.friction_ratio > hi:
            violations.append(
                f"Friction ratio {snapshot.friction_ratio:.2f} outside sane range "
                f"[{lo:g}, {hi:g}], possible unit mismatch"
            )
        expected = snapshot.spread + snapshot.slippage_estimate
        if abs(snapshot.total_friction - expected) > FRICTION_TOLERANCE:
            violations.append(
                f"totalFriction {snapshot.total_friction} != spread ({snapshot.spread}) "
                f"+ slippage ({snapshot.slippage_estimate})"
            )

    if violations:
        logger.warning("Unit consistency check failed: %s", "; ".join(violations))
    return UnitValidationResult(passed=not violations, violations=violations)


@dataclass
class SymbolMappingResult:
    valid: bool
    symbol: str
    canonical_symbol: Optional[str]
    display_symbol: Optional[str]
    in_registry: bool = False
    in_live_prices: bool = False
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "symbol": self.symbol,
            "canonicalSymbol": self.canonical_symbol,
            "displaySymbol": self.display_symbol,
            "inRegistry": self.in_registry,
            "inLivePrices": self.in_live_prices,
            "message": self.message,
        }


def _canonical_set(symbols: Optional[Iterable[str]]) -> set:
    out = set()
    for s in symbols or ():
        try:
            out.add(to_canonical_symbol(s))
        except UnrecognizedSymbolFormat:
            logger.debug("Registry symbol %r is not a recognized format", s)
    return out


def verify_symbol_mapping(
    symbol: str,
    known_symbols: Iterable[str],
    live_symbols: Optional[Iterable[str]] = None,
) -> SymbolMappingResult:
    """
    Check that ``symbol`` resolves to an instrument the system knows.

    Valid when the canonical form is in either the instrument registry
    or the live-price set; registry entries may use any symbol form.
    """
    try:
        canonical = to_canonical_symbol(symbol)
        display = to_display_symbol(symbol)
    except UnrecognizedSymbolFormat as exc:
        logger.warning("Symbol mapping failed: %s", exc)
        return SymbolMappingResult(
            valid=False, symbol=str(symbol), canonical_symbol=None, display_symbol=None,
            message=str(exc),
        )

    in_registry = canonical in _canonical_set(known_symbols)
    in_live = canonical in _canonical_set(live_symbols)
    valid = in_registry or in_live
    message = "" if valid else f"Symbol {display} not found in registry or live prices"
    if not valid:
        logger.warning("Symbol mapping failed: %s", message)
    return SymbolMappingResult(
        valid=valid,
        symbol=str(symbol),
        canonical_symbol=canonical,
        display_symbol=display,
        in_registry=in_registry,
        in_live_prices=in_live,
        message=message,
    )


__all__ = [
    "FRICTION_RATIO_SANE_RANGE",
    "SymbolMappingResult",
    "UnitValidationResult",
    "validate_unit_consistency",
    "verify_symbol_mapping",
]
