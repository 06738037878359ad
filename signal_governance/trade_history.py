"""
Trade history ranking and recency statistics.

Arrival order does not imply recency. Every recency statistic in this
module (and every gate that uses one) runs on the output of
``rank_trades``: strictly most-recent-first, ties kept in insertion order.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Protocol, Sequence

from .governance_models import TradeRecord
from .symbols import to_canonical_symbol


PROFIT_MOMENTUM = "profit-momentum"
LOSS_CLUSTER = "loss-cluster"
MIXED = "mixed"
NEUTRAL = "neutral"

# Fewer ranked trades than this and sequencing stays neutral
MIN_TRADES_FOR_SEQUENCING = 3
SEQUENCING_WINDOW = 5
EDGE_DECAY_WINDOW = 10
EDGE_DECAY_MIN_TRADES = 5


def rank_trades(trades: Iterable[TradeRecord]) -> List[TradeRecord]:
    """Sort most recent first; equal timestamps keep their input order."""
    # sorted() is stable under reverse=True
    return sorted(trades, key=lambda t: t.timestamp, reverse=True)


def wins_in_window(ranked: Sequence[TradeRecord], n: int) -> int:
    return sum(1 for t in ranked[:max(0, n)] if t.is_win)


def losses_in_window(ranked: Sequence[TradeRecord], n: int) -> int:
    window = ranked[:max(0, n)]
    return len(window) - sum(1 for t in window if t.is_win)


def win_rate(trades: Sequence[TradeRecord]) -> float:
    if not trades:
        return 0.0
    return sum(1 for t in trades if t.is_win) / len(trades)


def sequencing_cluster(
    ranked: Sequence[TradeRecord],
    window: int = SEQUENCING_WINDOW,
    min_cluster: int = 4,
) -> str:
    """Classify the most recent ``window`` trades as a win/loss cluster."""
    if len(ranked) < MIN_TRADES_FOR_SEQUENCING:
        return NEUTRAL
    wins = wins_in_window(ranked, window)
    losses = losses_in_window(ranked, window)
    if wins >= min_cluster:
        return PROFIT_MOMENTUM
    if losses >= min_cluster:
        return LOSS_CLUSTER
    if losses >= min_cluster - 1:
        return MIXED
    return NEUTRAL


@dataclass(frozen=True)
class EdgeDecay:
    decaying: bool = False
    rate: float = 0.0           # relative win-rate drop, percent
    recent_win_rate: float = 0.0
    older_win_rate: float = 0.0


def edge_decay(
    ranked: Sequence[TradeRecord],
    ratio: float = 0.85,
    window: int = EDGE_DECAY_WINDOW,
) -> EdgeDecay:
    """Compare the latest ``window`` trades with the ``window`` before them."""
    recent = ranked[:window]
    older = ranked[window:window * 2]
    if len(recent) < EDGE_DECAY_MIN_TRADES or len(older) < EDGE_DECAY_MIN_TRADES:
        return EdgeDecay()
    recent_wr = win_rate(recent)
    older_wr = win_rate(older)
    if older_wr > 0 and recent_wr < older_wr * ratio:
        return EdgeDecay(
            decaying=True,
            rate=(older_wr - recent_wr) / older_wr * 100.0,
            recent_win_rate=recent_wr,
            older_win_rate=older_wr,
        )
    return EdgeDecay(recent_win_rate=recent_wr, older_win_rate=older_wr)


def count_recent_trades(ranked: Sequence[TradeRecord], now_ms: int, window_ms: int) -> int:
    count = 0
    for trade in ranked:
        if now_ms - trade.timestamp >= window_ms:
            # ranked is newest-first, everything after is older
            break
        count += 1
    return count


class TradeHistoryStore(Protocol):
    """Read-only trade-history collaborator."""

    def get_recent_trades(self, symbol: str, limit: int) -> List[TradeRecord]:
        ...


class InMemoryTradeHistoryStore:
    """
    Trade history keyed by canonical symbol.

    ``get_recent_trades`` always returns the ranked window, never the
    insertion order.
    """

    def __init__(self, trades: Optional[Iterable[TradeRecord]] = None):
        self._trades: Dict[str, List[TradeRecord]] = defaultdict(list)
        for trade in trades or ():
            self.add(trade)

    def add(self, trade: TradeRecord):
        self._trades[to_canonical_symbol(trade.pair)].append(trade)

    def get_recent_trades(self, symbol: str, limit: int) -> List[TradeRecord]:
        key = to_canonical_symbol(symbol)
        ranked = rank_trades(self._trades.get(key, ()))
        return ranked[:max(0, int(limit))]

    def symbols(self) -> List[str]:
        return sorted(self._trades.keys())

    def __len__(self) -> int:
        return sum(len(v) for v in self._trades.values())


__all__ = [
    "EdgeDecay",
    "InMemoryTradeHistoryStore",
    "LOSS_CLUSTER",
    "MIXED",
    "NEUTRAL",
    "PROFIT_MOMENTUM",
    "TradeHistoryStore",
    "count_recent_trades",
    "edge_decay",
    "losses_in_window",
    "rank_trades",
    "sequencing_cluster",
    "win_rate",
    "wins_in_window",
]
