"""
Directional bias from multi-timeframe analyses.

This is a fixed timeframe-selection policy, not a model:
  - direction comes from the first timeframe in the preference order
    (1h, then 4h) that has an analysis
  - confirmation always comes from a separate, shorter timeframe (15m)
  - the timeframes actually used are recorded on the result

The policy is data (an ordered tuple), so the same inputs with the same
available timeframes always resolve to the same choice.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

from .governance_models import DirectionalBias, DirectionalBiasResult, Timeframe

logger = logging.getLogger(__name__)

DEFAULT_DIRECTION_TIMEFRAMES: Tuple[Timeframe, ...] = (Timeframe.H1, Timeframe.H4)
DEFAULT_CONFIRMATION_TIMEFRAME = Timeframe.M15

# Confidence adjustments applied by the confirmation timeframe
CONFIRM_AGREE_LIFT = 0.25       # fraction of remaining headroom added
CONFIRM_DISAGREE_FACTOR = 0.50
CONFIRM_NEUTRAL_FACTOR = 0.80
CONFIRM_MISSING_FACTOR = 0.90

_BIAS_ALIASES = {
    "bullish": DirectionalBias.LONG,
    "long": DirectionalBias.LONG,
    "buy": DirectionalBias.LONG,
    "bearish": DirectionalBias.SHORT,
    "short": DirectionalBias.SHORT,
    "sell": DirectionalBias.SHORT,
}


@dataclass(frozen=True)
class TimeframeAnalysis:
    """Minimal view of one timeframe's analysis output."""
    bias: DirectionalBias = DirectionalBias.FLAT
    confidence: float = 0.0        # 0-1
    efficiency: Optional[float] = None

    @classmethod
    def from_value(cls, value: Any) -> "TimeframeAnalysis":
        if isinstance(value, cls):
            return value
        if not isinstance(value, Mapping):
            return cls()
        bias = _BIAS_ALIASES.get(str(value.get("bias", "")).strip().lower(), DirectionalBias.FLAT)
        raw_conf = value.get("confidence", value.get("confidencePercent"))
        efficiency = value.get("efficiency")
        if isinstance(efficiency, Mapping):
            efficiency = efficiency.get("score")
        return cls(
            bias=bias,
            confidence=_normalize_confidence(raw_conf),
            efficiency=float(efficiency) if efficiency is not None else None,
        )


def _normalize_confidence(value: Any) -> float:
    """Accept 0-1 or 0-100 confidence; missing confidence counts as 0.5."""
    if value is None:
        return 0.5
    try:
        conf = float(value)
    except (TypeError, ValueError):
        return 0.0
    if conf > 1.0:
        conf = conf / 100.0
    return max(0.0, min(1.0, conf))


def _index_analyses(analyses: Optional[Mapping[Any, Any]]) -> Dict[Timeframe, TimeframeAnalysis]:
    indexed: Dict[Timeframe, TimeframeAnalysis] = {}
    for key, value in (analyses or {}).items():
        if value is None:
            continue
        try:
            tf = Timeframe.parse(key)
        except ValueError:
            logger.debug("Ignoring analysis for unknown timeframe %r", key)
            continue
        indexed[tf] = TimeframeAnalysis.from_value(value)
    return indexed


def select_direction_timeframe(
    available: Sequence[Timeframe],
    preference: Sequence[Timeframe] = DEFAULT_DIRECTION_TIMEFRAMES,
) -> Optional[Timeframe]:
    """First timeframe of ``preference`` that is available, else None."""
    present = set(available)
    for tf in preference:
        if tf in present:
            return tf
    return None


class DirectionalBiasResolver:
    def __init__(
        self,
        direction_timeframes: Sequence[Any] = DEFAULT_DIRECTION_TIMEFRAMES,
        confirmation_timeframe: Any = DEFAULT_CONFIRMATION_TIMEFRAME,
    ):
        self.direction_timeframes: Tuple[Timeframe, ...] = tuple(
            Timeframe.parse(tf) for tf in direction_timeframes
        )
        self.confirmation_timeframe = Timeframe.parse(confirmation_timeframe)
        if self.confirmation_timeframe in self.direction_timeframes:
            raise ValueError("confirmation timeframe must differ from the direction timeframes")

    def resolve(self, analyses: Optional[Mapping[Any, Any]]) -> DirectionalBiasResult:
        indexed = _index_analyses(analyses)
        direction_tf = select_direction_timeframe(list(indexed), self.direction_timeframes)
        confirmation_tf = self.confirmation_timeframe if self.confirmation_timeframe in indexed else None

        signals: Dict[str, Any] = {
            tf.value: indexed[tf].bias.value for tf in sorted(indexed, key=_tf_order)
        }

        if direction_tf is None:
            signals["confirmation"] = "n/a"
            return DirectionalBiasResult(
                directional_bias=DirectionalBias.FLAT,
                directional_confidence=0.0,
                source_signals=signals,
                direction_timeframe_used=None,
                confirmation_timeframe_used=confirmation_tf,
            )

        primary = indexed[direction_tf]
        bias = primary.bias
        confidence = primary.confidence if bias is not DirectionalBias.FLAT else 0.0

        if bias is DirectionalBias.FLAT:
            signals["confirmation"] = "n/a"
        elif confirmation_tf is None:
            signals["confirmation"] = "missing"
            confidence *= CONFIRM_MISSING_FACTOR
        else:
            confirm_bias = indexed[confirmation_tf].bias
            if confirm_bias is bias:
                signals["confirmation"] = "agree"
                confidence += (1.0 - confidence) * CONFIRM_AGREE_LIFT
            elif confirm_bias is DirectionalBias.FLAT:
                signals["confirmation"] = "neutral"
                confidence *= CONFIRM_NEUTRAL_FACTOR
            else:
                signals["confirmation"] = "disagree"
                confidence *= CONFIRM_DISAGREE_FACTOR

        return DirectionalBiasResult(
            directional_bias=bias,
            directional_confidence=round(max(0.0, min(1.0, confidence)), 6),
            source_signals=signals,
            direction_timeframe_used=direction_tf,
            confirmation_timeframe_used=confirmation_tf,
        )


_TF_ORDER = {tf: i for i, tf in enumerate(Timeframe)}


def _tf_order(tf: Timeframe) -> int:
    return _TF_ORDER[tf]


__all__ = [
    "DEFAULT_CONFIRMATION_TIMEFRAME",
    "DEFAULT_DIRECTION_TIMEFRAMES",
    "DirectionalBiasResolver",
    "TimeframeAnalysis",
    "select_direction_timeframe",
]
