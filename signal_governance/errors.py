"""Typed errors raised by the governance engine."""

from __future__ import annotations

from typing import TYPE_CHECKING, List, Optional, Sequence

if TYPE_CHECKING:
    from .governance_models import DecisionLogEntry


class GovernanceError(Exception):
    """Base class for every error the engine surfaces to a caller."""


class UnrecognizedSymbolFormat(GovernanceError, ValueError):
    """Symbol is not in raw (EURUSD), canonical (EUR_USD) or display (EUR/USD) form."""

    def __init__(self, symbol: object):
        self.symbol = symbol
        super().__init__(f"Unrecognized symbol format: {symbol!r}")


class InvalidSnapshotError(GovernanceError, ValueError):
    """MarketContextSnapshot violates one of its invariants."""

    def __init__(self, violations: Sequence[str]):
        self.violations: List[str] = list(violations)
        super().__init__("Invalid market context snapshot: " + "; ".join(self.violations))


class GateEvaluationError(GovernanceError):
    """A single gate could not evaluate its inputs (caught by GateEvaluator)."""


class AuditPersistenceError(GovernanceError):
    """
    Decision log entry could not be appended to the audit store.

    The verdict is still attached as ``entry`` so a storage outage never
    hides the trading decision from the caller.
    """

    def __init__(
        self,
        entry: "DecisionLogEntry",
        attempts: int,
        cause: Optional[BaseException] = None,
    ):
        self.entry = entry
        self.attempts = attempts
        self.cause = cause
        super().__init__(
            f"Audit append failed after {attempts} attempt(s) "
            f"for {entry.symbol} {entry.timeframe}: {cause}"
        )


__all__ = [
    "AuditPersistenceError",
    "GateEvaluationError",
    "GovernanceError",
    "InvalidSnapshotError",
    "UnrecognizedSymbolFormat",
]
