"""
Market context construction helpers.

Turns observed quotes, ATR readings and multi-timeframe analyses into a
MarketContextSnapshot. The quote feed and the analysis engine stay
external; everything here is a deterministic function of its inputs
(plus the rolling spread window held by SpreadTracker).

Missing quotes or analyses produce a fail-closed snapshot: dependent
fields are 0 and the matching availability flag is False.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Any, Deque, Dict, Mapping, Optional, Tuple

import numpy as np

from .governance_config import SESSION_AGGRESSIVENESS
from .governance_models import MarketContextSnapshot, TradingSession, VolatilityPhase
from .symbols import to_canonical_symbol

logger = logging.getLogger(__name__)

SPREAD_HISTORY_WINDOW_MS = 60_000
# Stability rank reported before a spread has any history to compare with
INITIAL_STABILITY_RANK = 60.0
DEFAULT_SLIPPAGE_ESTIMATE = 0.00002  # ~0.2 pip
# Friction ratio when total friction is 0
ZERO_FRICTION_RATIO = 10.0

# MTF alignment contributions
HTF_SUPPORT_POINTS = 40.0
MTF_CONFIRM_POINTS = 35.0
LTF_CLEAN_POINTS = 25.0
LTF_CLEAN_EFFICIENCY = 0.4


def detect_liquidity_session(utc_hour: Optional[int] = None) -> TradingSession:
    """UTC hour -> liquidity session (current hour when omitted)."""
    if utc_hour is None:
        utc_hour = time.gmtime().tm_hour
    hour = int(utc_hour) % 24
    if 1 <= hour < 7:
        return TradingSession.ASIAN
    if 7 <= hour < 12:
        return TradingSession.LONDON_OPEN
    if 12 <= hour < 17:
        return TradingSession.NY_OVERLAP
    return TradingSession.LATE_NY


def session_aggressiveness(session: Any) -> float:
    return SESSION_AGGRESSIVENESS[TradingSession.parse(session).value]


def classify_volatility_phase(atr_value: float, atr_avg: float) -> Tuple[VolatilityPhase, float]:
    """
    Phase and confidence (0-100) from the ATR / average-ATR ratio.

    ratio < 0.95 contraction, < 1.3 expansion, < 1.8 ignition, otherwise
    exhaustion. A zero average gives ratio 1.
    """
    ratio = atr_value / atr_avg if atr_avg > 0 else 1.0
    if ratio < 0.65:
        phase, confidence = VolatilityPhase.CONTRACTION, 70 + (0.65 - ratio) * 80
    elif ratio < 0.95:
        phase, confidence = VolatilityPhase.CONTRACTION, 55 + ratio * 15
    elif ratio < 1.3:
        phase, confidence = VolatilityPhase.EXPANSION, 60 + (ratio - 0.95) * 80
    elif ratio < 1.8:
        phase, confidence = VolatilityPhase.IGNITION, 70 + (ratio - 1.3) * 50
    else:
        phase, confidence = VolatilityPhase.EXHAUSTION, 65 + min((ratio - 1.8) * 30, 25)
    return phase, float(min(100.0, max(0.0, confidence)))


def compute_friction(
    atr_value: float,
    spread: float,
    slippage_estimate: float = DEFAULT_SLIPPAGE_ESTIMATE,
) -> Tuple[float, float]:
    """Return (friction_ratio, total_friction)."""
    total_friction = spread + slippage_estimate
    ratio = atr_value / total_friction if total_friction > 0 else ZERO_FRICTION_RATIO
    return float(ratio), float(total_friction)


def estimate_liquidity_shock_prob(
    spread_stability_rank: float,
    phase: Any,
    session: Any,
) -> float:
    phase = VolatilityPhase.parse(phase)
    session = TradingSession.parse(session)
    base = 100.0 - spread_stability_rank
    if phase is VolatilityPhase.EXHAUSTION:
        base += 15
    elif phase is VolatilityPhase.CONTRACTION:
        base += 5
    if session is TradingSession.LATE_NY:
        base += 10
    elif session is TradingSession.ASIAN:
        base += 5
    return float(max(0.0, min(100.0, base)))


@dataclass(frozen=True)
class SpreadObservation:
    spread_stability_rank: float = 0.0
    spread: float = 0.0
    bid: float = 0.0
    ask: float = 0.0
    price_data_available: bool = False


class SpreadTracker:
    """
    Rolling spread history per canonical symbol.

    Stability rank = clamp(100 - CV * 200) over the last 60 s of spreads,
    where CV is the coefficient of variation.
    """

    def __init__(self, window_ms: int = SPREAD_HISTORY_WINDOW_MS):
        self.window_ms = int(window_ms)
        self._history: Dict[str, Deque[Tuple[int, float]]] = defaultdict(deque)
        self._lock = threading.Lock()

    def observe(
        self,
        symbol: str,
        bid: Optional[float],
        ask: Optional[float],
        now_ms: Optional[int] = None,
    ) -> SpreadObservation:
        if bid is None or ask is None or not (bid > 0 and ask > bid):
            return SpreadObservation()
        if now_ms is None:
            now_ms = int(time.time() * 1000)
        spread = float(ask) - float(bid)
        key = to_canonical_symbol(symbol)

        with self._lock:
            history = self._history[key]
            history.append((int(now_ms), spread))
            while history and now_ms - history[0][0] >= self.window_ms:
                history.popleft()
            values = np.array([s for _, s in history], dtype=float)

        if len(values) < 2:
            rank = INITIAL_STABILITY_RANK
        else:
            mean = float(values.mean())
            cv = float(values.std()) / mean if mean > 0 else 0.0
            rank = float(np.clip(100.0 - cv * 200.0, 0.0, 100.0))
        return SpreadObservation(
            spread_stability_rank=rank,
            spread=spread,
            bid=float(bid),
            ask=float(ask),
            price_data_available=True,
        )

    def reset(self, symbol: Optional[str] = None):
        with self._lock:
            if symbol is None:
                self._history.clear()
            else:
                self._history.pop(to_canonical_symbol(symbol), None)


def _analysis_field(analysis: Any, name: str) -> Any:
    if isinstance(analysis, Mapping):
        return analysis.get(name)
    return getattr(analysis, name, None)


def derive_mtf_structure(analyses: Mapping[str, Any]) -> Dict[str, Any]:
    """
    htf/mtf/ltf structure flags and the 0-100 alignment score:
      htf_supports  4h bias agrees with 1d bias
      mtf_confirms  1h bias agrees with 4h bias
      ltf_clean     15m efficiency above 0.4
    """
    def bias(tf: str) -> Optional[str]:
        value = _analysis_field(analyses.get(tf), "bias")
        return str(value).lower() if value is not None else None

    htf_4h, htf_1d, mtf_1h = bias("4h"), bias("1d"), bias("1h")
    htf_supports = htf_4h is not None and htf_4h == htf_1d
    mtf_confirms = mtf_1h is not None and mtf_1h == htf_4h

    efficiency = _analysis_field(analyses.get("15m"), "efficiency")
    if isinstance(efficiency, Mapping):
        efficiency = efficiency.get("score")
    ltf_clean = float(efficiency or 0.0) > LTF_CLEAN_EFFICIENCY

    score = (
        (HTF_SUPPORT_POINTS if htf_supports else 0.0)
        + (MTF_CONFIRM_POINTS if mtf_confirms else 0.0)
        + (LTF_CLEAN_POINTS if ltf_clean else 0.0)
    )
    return {
        "htf_supports": htf_supports,
        "mtf_confirms": mtf_confirms,
        "ltf_clean": ltf_clean,
        "mtf_alignment_score": score,
    }


def build_snapshot(
    symbol: str,
    bid: Optional[float] = None,
    ask: Optional[float] = None,
    analyses: Optional[Mapping[str, Any]] = None,
    atr_value: Optional[float] = None,
    atr_avg: Optional[float] = None,
    mtf_alignment_score: Optional[float] = None,
    session: Any = None,
    now_ms: Optional[int] = None,
    tracker: Optional[SpreadTracker] = None,
    slippage_estimate: float = DEFAULT_SLIPPAGE_ESTIMATE,
) -> MarketContextSnapshot:
    """
    Assemble a snapshot from whatever inputs are present.

    Analysis is available when ``analyses`` is non-empty or an ATR reading
    is supplied. ATR falls back to the 1h analysis (average from 4h).
    """
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    if session is None:
        session = detect_liquidity_session(time.gmtime(now_ms / 1000).tm_hour)
    session = TradingSession.parse(session)

    tracker = tracker or SpreadTracker()
    quote = tracker.observe(symbol, bid, ask, now_ms)
    if not quote.price_data_available:
        logger.debug("No usable quote for %s; price data unavailable", symbol)

    structure = {"htf_supports": False, "mtf_confirms": False, "ltf_clean": False, "mtf_alignment_score": 0.0}
    analysis_available = bool(analyses) or atr_value is not None
    if analyses:
        structure = derive_mtf_structure(analyses)
        if atr_value is None:
            atr_value = _analysis_field(analyses.get("1h"), "atr")
        if atr_avg is None:
            atr_avg = _analysis_field(analyses.get("4h"), "atr")
    if mtf_alignment_score is not None:
        structure["mtf_alignment_score"] = float(mtf_alignment_score)

    atr = float(atr_value or 0.0)
    avg = float(atr_avg) if atr_avg is not None else atr
    if analysis_available:
        phase, phase_confidence = classify_volatility_phase(atr, avg)
    else:
        phase, phase_confidence = VolatilityPhase.NEUTRAL, 0.0

    if quote.price_data_available:
        friction_ratio, total_friction = compute_friction(atr, quote.spread, slippage_estimate)
    else:
        friction_ratio, total_friction = 0.0, slippage_estimate

    shock = estimate_liquidity_shock_prob(quote.spread_stability_rank, phase, session)

    return MarketContextSnapshot(
        spread=quote.spread,
        bid=quote.bid,
        ask=quote.ask,
        slippage_estimate=slippage_estimate,
        total_friction=total_friction,
        atr_value=atr,
        atr_avg=avg,
        volatility_phase=phase,
        session=session,
        friction_ratio=friction_ratio,
        mtf_alignment_score=structure["mtf_alignment_score"],
        spread_stability_rank=quote.spread_stability_rank,
        liquidity_shock_prob=shock,
        price_data_available=quote.price_data_available,
        analysis_available=analysis_available,
        htf_supports=structure["htf_supports"],
        mtf_confirms=structure["mtf_confirms"],
        ltf_clean=structure["ltf_clean"],
        phase_confidence=phase_confidence,
    )


__all__ = [
    "DEFAULT_SLIPPAGE_ESTIMATE",
    "SpreadObservation",
    "SpreadTracker",
    "build_snapshot",
    "classify_volatility_phase",
    "compute_friction",
    "derive_mtf_structure",
    "detect_liquidity_session",
    "estimate_liquidity_shock_prob",
    "session_aggressiveness",
]
