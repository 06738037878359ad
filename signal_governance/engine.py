"""
Governance engine: snapshot + trade history -> DecisionLogEntry.

``GovernanceEngine.evaluate`` is pure and synchronous. It performs no
I/O: the trade-history fetch and the audit append belong to the caller,
wired together by ``GovernanceService``.

Pipeline:
  1. normalize the symbol to canonical form
  2. rank the trade history (most recent first)
  3. run the ten gates
  4. score the gate results into a GovernanceDecision
  5. resolve the directional bias when analyses are supplied
  6. assemble the DecisionLogEntry
"""

from __future__ import annotations

import logging
import time
from typing import Any, Iterable, List, Mapping, Optional, Union

from .decision_logger import DecisionLogger
from .directional_bias import DirectionalBiasResolver
from .errors import UnrecognizedSymbolFormat
from .gates import GateEvaluator
from .governance_config import GovernanceConfig
from .governance_models import DecisionLogEntry, MarketContextSnapshot, TradeRecord
from .scoring import CompositeScorer
from .symbols import to_canonical_symbol
from .trade_history import TradeHistoryStore, rank_trades

logger = logging.getLogger(__name__)

SnapshotLike = Union[MarketContextSnapshot, Mapping[str, Any]]
TradeLike = Union[TradeRecord, Mapping[str, Any]]


def _coerce_snapshot(snapshot: SnapshotLike) -> MarketContextSnapshot:
    if isinstance(snapshot, MarketContextSnapshot):
        return snapshot
    return MarketContextSnapshot.from_dict(snapshot)


def _coerce_trades(trades: Optional[Iterable[TradeLike]], canonical_symbol: str) -> List[TradeRecord]:
    out: List[TradeRecord] = []
    for trade in trades or ():
        record = trade if isinstance(trade, TradeRecord) else TradeRecord.from_dict(trade)
        try:
            pair = to_canonical_symbol(record.pair)
        except UnrecognizedSymbolFormat:
            logger.warning("Dropping trade with unrecognized pair %r", record.pair)
            continue
        if pair != canonical_symbol:
            continue
        out.append(record)
    return out


class GovernanceEngine:
    def __init__(self, config: Optional[GovernanceConfig] = None):
        self.config = config or GovernanceConfig()
        self.gates = GateEvaluator(self.config)
        self.scorer = CompositeScorer(self.config)
        self.bias_resolver = DirectionalBiasResolver(
            direction_timeframes=self.config.direction_timeframes,
            confirmation_timeframe=self.config.confirmation_timeframe,
        )
        # only build_entry is used here; persistence is the caller's
        self._assembler = DecisionLogger()

    def evaluate(
        self,
        snapshot: SnapshotLike,
        trade_history: Optional[Iterable[TradeLike]],
        symbol: str,
        timeframe: Any,
        shadow_mode: bool,
        analyses: Optional[Mapping[Any, Any]] = None,
        now_ms: Optional[int] = None,
    ) -> DecisionLogEntry:
        canonical = to_canonical_symbol(symbol)
        snap = _coerce_snapshot(snapshot)
        if now_ms is None:
            now_ms = int(time.time() * 1000)

        ranked = rank_trades(_coerce_trades(trade_history, canonical))
        results = self.gates.evaluate(snap, ranked, now_ms)
        governance = self.scorer.score(results)
        quantlabs = self.bias_resolver.resolve(analyses) if analyses is not None else None

        entry = self._assembler.build_entry(
            symbol=canonical,
            timeframe=timeframe,
            snapshot=snap,
            governance=governance,
            quantlabs=quantlabs,
            shadow_mode=shadow_mode,
            timestamp=now_ms,
        )
        logger.debug(
            "Evaluated %s %s: %s (%d trades ranked)",
            canonical, entry.timeframe.value, entry.final_decision.decision.value, len(ranked),
        )
        return entry


class GovernanceService:
    """
    Caller-side wiring: fetch history, evaluate, then append to the audit
    store. The entry is returned either way; a failed append surfaces as
    AuditPersistenceError carrying the entry.
    """

    def __init__(
        self,
        engine: Optional[GovernanceEngine] = None,
        history_store: Optional[TradeHistoryStore] = None,
        decision_logger: Optional[DecisionLogger] = None,
    ):
        self.engine = engine or GovernanceEngine()
        self.history_store = history_store
        self.decision_logger = decision_logger or DecisionLogger(
            retry_attempts=self.engine.config.audit_retry_attempts,
        )

    def evaluate(
        self,
        snapshot: SnapshotLike,
        symbol: str,
        timeframe: Any,
        shadow_mode: bool,
        analyses: Optional[Mapping[Any, Any]] = None,
        now_ms: Optional[int] = None,
        trade_history: Optional[Iterable[TradeLike]] = None,
    ) -> DecisionLogEntry:
        if trade_history is None and self.history_store is not None:
            trade_history = self.history_store.get_recent_trades(
                symbol, self.engine.config.history_limit,
            )
        entry = self.engine.evaluate(
            snapshot,
            trade_history,
            symbol,
            timeframe,
            shadow_mode,
            analyses=analyses,
            now_ms=now_ms,
        )
        return self.decision_logger.record(entry)


_default_engine: Optional[GovernanceEngine] = None


def evaluate(
    snapshot: SnapshotLike,
    trade_history: Optional[Iterable[TradeLike]],
    symbol: str,
    timeframe: Any,
    shadow_mode: bool,
    analyses: Optional[Mapping[Any, Any]] = None,
    now_ms: Optional[int] = None,
) -> DecisionLogEntry:
    """Evaluate with the default configuration."""
    global _default_engine
    if _default_engine is None:
        _default_engine = GovernanceEngine()
    return _default_engine.evaluate(
        snapshot, trade_history, symbol, timeframe, shadow_mode,
        analyses=analyses, now_ms=now_ms,
    )


__all__ = [
    "GovernanceEngine",
    "GovernanceService",
    "evaluate",
]
