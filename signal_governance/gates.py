"""
Governance gates G1-G10.

Each gate is a pure function ``(snapshot, ranked_trades, now_ms, config)
-> GateResult``. Streak-sensitive gates (G3, G6, G7) only ever see the
ranked (most-recent-first) history.

Gates whose inputs belong to an unavailable data source return
``triggered=False, inputs_available=False``; the hard-block gates G9/G10
own that veto and the scorer still penalizes the unknown gate.
"""

from __future__ import annotations

import logging
import math
import time
from typing import Callable, Dict, List, Mapping, Optional, Sequence

from .errors import GateEvaluationError
from .governance_config import GovernanceConfig
from .governance_models import (
    GATE_MESSAGES,
    GateID,
    GateResult,
    MarketContextSnapshot,
    TradeRecord,
    VolatilityPhase,
)
from .trade_history import LOSS_CLUSTER, count_recent_trades, edge_decay, losses_in_window, sequencing_cluster

logger = logging.getLogger(__name__)

GateFunction = Callable[[MarketContextSnapshot, Sequence[TradeRecord], int, GovernanceConfig], GateResult]


def _fired(gate: GateID, **values) -> GateResult:
    return GateResult(id=gate, message=GATE_MESSAGES[gate].format(**values), triggered=True)


def _clear(gate: GateID) -> GateResult:
    return GateResult(id=gate, message=f"{gate.value} clear", triggered=False)


def _unavailable(gate: GateID, source: GateID) -> GateResult:
    return GateResult(
        id=gate,
        message=f"{gate.value} inputs unavailable (see {source.value})",
        triggered=False,
        inputs_available=False,
    )


def _require_number(gate: GateID, name: str, value) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise GateEvaluationError(f"{gate.value}: {name} is not numeric ({value!r})") from None
    if not math.isfinite(number):
        raise GateEvaluationError(f"{gate.value}: {name} is not finite ({value!r})")
    return number


def gate_friction(snapshot, ranked, now_ms, config) -> GateResult:
    gate = GateID.G1_FRICTION
    ratio = snapshot.observed("friction_ratio")
    if ratio is None:
        return _unavailable(gate, GateID.G9_PRICE_DATA_UNAVAILABLE)
    ratio = _require_number(gate, "friction_ratio", ratio)
    if ratio < config.friction_ratio_min:
        return _fired(gate, friction_ratio=ratio, threshold=config.friction_ratio_min)
    return _clear(gate)


def gate_no_htf_weak_mtf(snapshot, ranked, now_ms, config) -> GateResult:
    gate = GateID.G2_NO_HTF_WEAK_MTF
    mtf = snapshot.observed("mtf_alignment_score")
    if mtf is None:
        return _unavailable(gate, GateID.G10_ANALYSIS_UNAVAILABLE)
    mtf = _require_number(gate, "mtf_alignment_score", mtf)
    if not snapshot.htf_supports and mtf < config.weak_mtf_alignment_max:
        return _fired(gate, mtf_alignment_score=mtf)
    return _clear(gate)


def gate_edge_decay(snapshot, ranked, now_ms, config) -> GateResult:
    gate = GateID.G3_EDGE_DECAY
    decay = edge_decay(ranked, ratio=config.edge_decay_ratio)
    if decay.decaying and decay.rate > config.edge_decay_rate_max:
        return _fired(gate, edge_decay_rate=decay.rate)
    return _clear(gate)


def gate_spread_instability(snapshot, ranked, now_ms, config) -> GateResult:
    gate = GateID.G4_SPREAD_INSTABILITY
    rank = snapshot.observed("spread_stability_rank")
    if rank is None:
        return _unavailable(gate, GateID.G9_PRICE_DATA_UNAVAILABLE)
    rank = _require_number(gate, "spread_stability_rank", rank)
    if rank < config.spread_stability_min:
        return _fired(gate, spread_stability_rank=rank)
    return _clear(gate)


def gate_compression_low_session(snapshot, ranked, now_ms, config) -> GateResult:
    gate = GateID.G5_COMPRESSION_LOW_SESSION
    # volatility phase comes from the ATR analysis
    if not snapshot.analysis_available:
        return _unavailable(gate, GateID.G10_ANALYSIS_UNAVAILABLE)
    aggressiveness = config.session_aggressiveness(snapshot.session)
    if (
        aggressiveness < config.session_aggressiveness_min
        and snapshot.volatility_phase is VolatilityPhase.CONTRACTION
    ):
        return _fired(gate, session=snapshot.session.value)
    return _clear(gate)


def gate_overtrading(snapshot, ranked, now_ms, config) -> GateResult:
    gate = GateID.G6_OVERTRADING
    limit = config.overtrading_limit_for(snapshot.session)
    recent = count_recent_trades(ranked, now_ms, config.overtrading_window_ms)
    if recent > limit:
        return _fired(gate, recent_trades=recent, limit=limit)
    return _clear(gate)


def gate_loss_cluster_weak_mtf(snapshot, ranked, now_ms, config) -> GateResult:
    gate = GateID.G7_LOSS_CLUSTER_WEAK_MTF
    window = config.loss_cluster_window
    cluster = sequencing_cluster(ranked, window=window, min_cluster=config.loss_cluster_min_losses)
    if cluster != LOSS_CLUSTER:
        return _clear(gate)
    mtf = snapshot.observed("mtf_alignment_score")
    if mtf is None:
        return _unavailable(gate, GateID.G10_ANALYSIS_UNAVAILABLE)
    mtf = _require_number(gate, "mtf_alignment_score", mtf)
    if mtf < config.loss_cluster_mtf_max:
        return _fired(
            gate,
            losses=losses_in_window(ranked, window),
            window=min(window, len(ranked)),
            mtf_alignment_score=mtf,
        )
    return _clear(gate)


def gate_high_shock(snapshot, ranked, now_ms, config) -> GateResult:
    gate = GateID.G8_HIGH_SHOCK
    shock = _require_number(gate, "liquidity_shock_prob", snapshot.liquidity_shock_prob)
    if shock > config.liquidity_shock_max and snapshot.volatility_phase is not VolatilityPhase.IGNITION:
        return _fired(gate, liquidity_shock_prob=shock)
    return _clear(gate)


def gate_price_data(snapshot, ranked, now_ms, config) -> GateResult:
    gate = GateID.G9_PRICE_DATA_UNAVAILABLE
    if not snapshot.price_data_available:
        return _fired(gate)
    return _clear(gate)


def gate_analysis(snapshot, ranked, now_ms, config) -> GateResult:
    gate = GateID.G10_ANALYSIS_UNAVAILABLE
    if not snapshot.analysis_available:
        return _fired(gate)
    return _clear(gate)


DEFAULT_GATES: Mapping[GateID, GateFunction] = {
    GateID.G1_FRICTION: gate_friction,
    GateID.G2_NO_HTF_WEAK_MTF: gate_no_htf_weak_mtf,
    GateID.G3_EDGE_DECAY: gate_edge_decay,
    GateID.G4_SPREAD_INSTABILITY: gate_spread_instability,
    GateID.G5_COMPRESSION_LOW_SESSION: gate_compression_low_session,
    GateID.G6_OVERTRADING: gate_overtrading,
    GateID.G7_LOSS_CLUSTER_WEAK_MTF: gate_loss_cluster_weak_mtf,
    GateID.G8_HIGH_SHOCK: gate_high_shock,
    GateID.G9_PRICE_DATA_UNAVAILABLE: gate_price_data,
    GateID.G10_ANALYSIS_UNAVAILABLE: gate_analysis,
}


class GateEvaluator:
    """
    Runs every gate independently, in GateID order.

    A gate that raises is recorded as triggered with the cause attached;
    the remaining gates still run.
    """

    def __init__(
        self,
        config: Optional[GovernanceConfig] = None,
        gates: Optional[Mapping[GateID, GateFunction]] = None,
    ):
        self.config = config or GovernanceConfig()
        overrides = dict(gates or {})
        self._gates: Dict[GateID, GateFunction] = {
            gate: overrides.get(gate, DEFAULT_GATES[gate]) for gate in GateID
        }

    def evaluate(
        self,
        snapshot: MarketContextSnapshot,
        ranked_trades: Sequence[TradeRecord],
        now_ms: Optional[int] = None,
    ) -> List[GateResult]:
        if now_ms is None:
            now_ms = int(time.time() * 1000)
        results: List[GateResult] = []
        for gate, fn in self._gates.items():
            try:
                result = fn(snapshot, ranked_trades, now_ms, self.config)
                if result.id is not gate:
                    raise GateEvaluationError(f"gate returned result for {result.id.value}")
            except Exception as exc:
                logger.warning("Gate %s failed, treating as triggered: %s", gate.value, exc)
                result = GateResult(
                    id=gate,
                    message=f"{gate.value} evaluation error: {exc}",
                    triggered=True,
                    error=f"{type(exc).__name__}: {exc}",
                )
            results.append(result)
        return results


__all__ = [
    "DEFAULT_GATES",
    "GateEvaluator",
    "GateFunction",
]
