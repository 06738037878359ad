"""
Data model for trade-signal governance.

Every type here is immutable once built: snapshots come in from the
market-data collaborator, gate results and decisions are recomputed per
evaluation, and a DecisionLogEntry is the append-only unit of audit truth.

Serialized (audit/wire) field names are camelCase; Python attributes are
snake_case. ``to_dict``/``from_dict`` convert between the two.
"""

from __future__ import annotations

import json
import math
import uuid
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .errors import InvalidSnapshotError

# Max |totalFriction - (spread + slippageEstimate)| accepted on input.
FRICTION_TOLERANCE = 1e-6


class VolatilityPhase(str, Enum):
    EXPANSION = "expansion"
    CONTRACTION = "contraction"
    NEUTRAL = "neutral"
    IGNITION = "ignition"
    EXHAUSTION = "exhaustion"

    @classmethod
    def parse(cls, value: Any) -> "VolatilityPhase":
        if isinstance(value, cls):
            return value
        token = str(value or "").strip().lower()
        if token == "compression":
            return cls.CONTRACTION
        try:
            return cls(token)
        except ValueError:
            raise ValueError(f"Unknown volatility phase: {value!r}") from None


class TradingSession(str, Enum):
    ASIAN = "asian"
    LONDON_OPEN = "london-open"
    NY_OVERLAP = "ny-overlap"
    LATE_NY = "late-ny"

    @classmethod
    def parse(cls, value: Any) -> "TradingSession":
        if isinstance(value, cls):
            return value
        token = str(value or "").strip().lower().replace("_", "-")
        try:
            return cls(token)
        except ValueError:
            raise ValueError(f"Unknown trading session: {value!r}") from None


class Timeframe(str, Enum):
    M1 = "1m"
    M5 = "5m"
    M15 = "15m"
    H1 = "1h"
    H4 = "4h"
    D1 = "1d"
    W1 = "1w"

    @classmethod
    def parse(cls, value: Any) -> "Timeframe":
        if isinstance(value, cls):
            return value
        token = str(value or "").strip().lower()
        try:
            return cls(token)
        except ValueError:
            raise ValueError(f"Unknown timeframe: {value!r}") from None


class Direction(str, Enum):
    LONG = "long"
    SHORT = "short"

    @classmethod
    def parse(cls, value: Any) -> "Direction":
        if isinstance(value, cls):
            return value
        token = str(value or "").strip().lower()
        try:
            return cls(token)
        except ValueError:
            raise ValueError(f"Unknown trade direction: {value!r}") from None


class DirectionalBias(str, Enum):
    LONG = "long"
    SHORT = "short"
    FLAT = "flat"


class GovernanceVerdict(str, Enum):
    APPROVED = "approved"
    REJECTED = "rejected"


class FinalAction(str, Enum):
    ENTER = "enter"
    SKIP = "skip"


class GateID(str, Enum):
    """
    Stable, versioned gate namespace.

    New gates get a new number; existing IDs are never renumbered or
    reused, so historical audit logs stay comparable.
    """

    G1_FRICTION = "G1_FRICTION"
    G2_NO_HTF_WEAK_MTF = "G2_NO_HTF_WEAK_MTF"
    G3_EDGE_DECAY = "G3_EDGE_DECAY"
    G4_SPREAD_INSTABILITY = "G4_SPREAD_INSTABILITY"
    G5_COMPRESSION_LOW_SESSION = "G5_COMPRESSION_LOW_SESSION"
    G6_OVERTRADING = "G6_OVERTRADING"
    G7_LOSS_CLUSTER_WEAK_MTF = "G7_LOSS_CLUSTER_WEAK_MTF"
    G8_HIGH_SHOCK = "G8_HIGH_SHOCK"
    G9_PRICE_DATA_UNAVAILABLE = "G9_PRICE_DATA_UNAVAILABLE"
    G10_ANALYSIS_UNAVAILABLE = "G10_ANALYSIS_UNAVAILABLE"

    @property
    def number(self) -> int:
        return int(self.value[1:].split("_", 1)[0])

    @property
    def is_hard_block(self) -> bool:
        return self in HARD_BLOCK_GATES


HARD_BLOCK_GATES = frozenset({GateID.G9_PRICE_DATA_UNAVAILABLE, GateID.G10_ANALYSIS_UNAVAILABLE})

# Human-readable copy, editable without touching analytics keyed on GateID.
GATE_MESSAGES: Mapping[GateID, str] = MappingProxyType({
    GateID.G1_FRICTION: "Friction ratio {friction_ratio:.1f}x < {threshold:g}x threshold",
    GateID.G2_NO_HTF_WEAK_MTF: "MTF alignment {mtf_alignment_score:.0f}% without HTF support",
    GateID.G3_EDGE_DECAY: "Edge decaying {edge_decay_rate:.0f}%",
    GateID.G4_SPREAD_INSTABILITY: "Spread instability {spread_stability_rank:.0f}%",
    GateID.G5_COMPRESSION_LOW_SESSION: "Compression + low-activity session ({session})",
    GateID.G6_OVERTRADING: "Anti-overtrading governor active ({recent_trades} trades, cap {limit})",
    GateID.G7_LOSS_CLUSTER_WEAK_MTF: "Loss cluster ({losses}/{window} losses) + weak alignment {mtf_alignment_score:.0f}%",
    GateID.G8_HIGH_SHOCK: "High shock risk {liquidity_shock_prob:.0f}% outside ignition",
    GateID.G9_PRICE_DATA_UNAVAILABLE: "Live price data unavailable",
    GateID.G10_ANALYSIS_UNAVAILABLE: "Multi-timeframe analysis unavailable",
})

# Fields that only carry meaning when their data source is available.
# When it is not, they are surfaced as 0, never as a neutral midpoint.
PRICE_DEPENDENT_FIELDS: Tuple[str, ...] = (
    "spread", "bid", "ask", "spread_stability_rank", "friction_ratio",
)
ANALYSIS_DEPENDENT_FIELDS: Tuple[str, ...] = (
    "mtf_alignment_score", "atr_value", "atr_avg", "phase_confidence",
)

_SNAPSHOT_FLOAT_FIELDS: Tuple[str, ...] = (
    "spread", "bid", "ask", "slippage_estimate", "total_friction",
    "atr_value", "atr_avg", "friction_ratio", "mtf_alignment_score",
    "spread_stability_rank", "liquidity_shock_prob", "phase_confidence",
)
_PERCENT_FIELDS: Tuple[str, ...] = (
    "mtf_alignment_score", "spread_stability_rank", "liquidity_shock_prob", "phase_confidence",
)

_SNAPSHOT_KEYS: Dict[str, str] = {
    "spread": "spread",
    "bid": "bid",
    "ask": "ask",
    "slippage_estimate": "slippageEstimate",
    "total_friction": "totalFriction",
    "atr_value": "atrValue",
    "atr_avg": "atrAvg",
    "volatility_phase": "volatilityPhase",
    "session": "session",
    "friction_ratio": "frictionRatio",
    "mtf_alignment_score": "mtfAlignmentScore",
    "spread_stability_rank": "spreadStabilityRank",
    "liquidity_shock_prob": "liquidityShockProb",
    "price_data_available": "priceDataAvailable",
    "analysis_available": "analysisAvailable",
    "htf_supports": "htfSupports",
    "mtf_confirms": "mtfConfirms",
    "ltf_clean": "ltfClean",
    "phase_confidence": "phaseConfidence",
}


def _pick(data: Mapping[str, Any], snake: str, camel: str, default: Any = None) -> Any:
    if camel in data:
        return data[camel]
    return data.get(snake, default)


@dataclass(frozen=True)
class MarketContextSnapshot:
    """
    Point-in-time market observation for one instrument/timeframe.

    Defaults describe a snapshot with no data at all, so an empty
    snapshot is fail-closed (both availability flags False).
    """

    spread: float = 0.0
    bid: float = 0.0
    ask: float = 0.0
    slippage_estimate: float = 0.0
    total_friction: float = 0.0
    atr_value: float = 0.0
    atr_avg: float = 0.0
    volatility_phase: VolatilityPhase = VolatilityPhase.NEUTRAL
    session: TradingSession = TradingSession.ASIAN
    friction_ratio: float = 0.0
    mtf_alignment_score: float = 0.0
    spread_stability_rank: float = 0.0
    liquidity_shock_prob: float = 0.0
    price_data_available: bool = False
    analysis_available: bool = False
    # Multi-timeframe structure flags behind mtf_alignment_score
    htf_supports: bool = False
    mtf_confirms: bool = False
    ltf_clean: bool = False
    phase_confidence: float = 0.0

    def __post_init__(self):
        violations: List[str] = []
        set_ = object.__setattr__

        try:
            set_(self, "volatility_phase", VolatilityPhase.parse(self.volatility_phase))
        except ValueError as exc:
            violations.append(str(exc))
        try:
            set_(self, "session", TradingSession.parse(self.session))
        except ValueError as exc:
            violations.append(str(exc))

        for name in _SNAPSHOT_FLOAT_FIELDS:
            raw = getattr(self, name)
            try:
                value = float(raw)
            except (TypeError, ValueError):
                violations.append(f"{name} is not numeric: {raw!r}")
                continue
            if not math.isfinite(value):
                violations.append(f"{name} is not finite: {raw!r}")
                continue
            set_(self, name, value)

        for name in ("price_data_available", "analysis_available", "htf_supports", "mtf_confirms", "ltf_clean"):
            set_(self, name, bool(getattr(self, name)))

        if not violations:
            # checked on the caller's values, before fail-closed zeroing rewrites them
            mismatch = self._friction_mismatch()
            if mismatch:
                violations.append(mismatch)
        if violations:
            raise InvalidSnapshotError(violations)

        # Fail-closed surfacing: unknown is 0, never "average".
        if not self.price_data_available:
            for name in PRICE_DEPENDENT_FIELDS:
                set_(self, name, 0.0)
            set_(self, "total_friction", self.slippage_estimate)
        if not self.analysis_available:
            for name in ANALYSIS_DEPENDENT_FIELDS:
                set_(self, name, 0.0)
            set_(self, "htf_supports", False)
            set_(self, "mtf_confirms", False)
            set_(self, "ltf_clean", False)
            set_(self, "volatility_phase", VolatilityPhase.NEUTRAL)

        self._validate()

    def _validate(self):
        violations: List[str] = []
        if self.price_data_available:
            if self.bid <= 0:
                violations.append(f"bid must be > 0 when price data is available, got {self.bid}")
            if self.ask <= self.bid:
                violations.append(f"ask ({self.ask}) must be > bid ({self.bid})")
            if self.spread < 0:
                violations.append(f"spread must be >= 0, got {self.spread}")
        if self.slippage_estimate < 0:
            violations.append(f"slippage_estimate must be >= 0, got {self.slippage_estimate}")
        mismatch = self._friction_mismatch()
        if mismatch:
            violations.append(mismatch)
        for name in ("atr_value", "atr_avg", "friction_ratio"):
            if getattr(self, name) < 0:
                violations.append(f"{name} must be >= 0, got {getattr(self, name)}")
        for name in _PERCENT_FIELDS:
            value = getattr(self, name)
            if value < 0 or value > 100:
                violations.append(f"{name} must be within [0, 100], got {value}")
        if violations:
            raise InvalidSnapshotError(violations)

    def _friction_mismatch(self) -> Optional[str]:
        expected = self.spread + self.slippage_estimate
        if abs(self.total_friction - expected) > FRICTION_TOLERANCE:
            return (
                f"total_friction {self.total_friction} != spread ({self.spread}) "
                f"+ slippage_estimate ({self.slippage_estimate})"
            )
        return None

    @property
    def current_spread(self) -> float:
        return self.spread

    def observed(self, name: str) -> Optional[float]:
        """Value of a numeric field, or None when its data source is unavailable."""
        if name in PRICE_DEPENDENT_FIELDS and not self.price_data_available:
            return None
        if name in ANALYSIS_DEPENDENT_FIELDS and not self.analysis_available:
            return None
        return getattr(self, name)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for attr, key in _SNAPSHOT_KEYS.items():
            value = getattr(self, attr)
            out[key] = value.value if isinstance(value, Enum) else value
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MarketContextSnapshot":
        kwargs: Dict[str, Any] = {}
        for attr, key in _SNAPSHOT_KEYS.items():
            value = _pick(data, attr, key)
            if value is not None:
                kwargs[attr] = value
        # currentSpread is accepted as an alias of spread
        if "spread" not in kwargs and data.get("currentSpread") is not None:
            kwargs["spread"] = data["currentSpread"]
        return cls(**kwargs)


@dataclass(frozen=True)
class TradeRecord:
    """One closed or in-progress trade outcome (timestamp in epoch ms)."""

    pair: str
    direction: Direction
    pnl_pips: float
    timestamp: int

    def __post_init__(self):
        object.__setattr__(self, "direction", Direction.parse(self.direction))
        object.__setattr__(self, "pnl_pips", float(self.pnl_pips))
        object.__setattr__(self, "timestamp", int(self.timestamp))

    @property
    def is_win(self) -> bool:
        return self.pnl_pips > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pair": self.pair,
            "direction": self.direction.value,
            "pnlPips": self.pnl_pips,
            "timestamp": self.timestamp,
            "isWin": self.is_win,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TradeRecord":
        return cls(
            pair=str(data["pair"]),
            direction=data["direction"],
            pnl_pips=_pick(data, "pnl_pips", "pnlPips", 0.0),
            timestamp=data["timestamp"],
        )


@dataclass(frozen=True)
class GateResult:
    """
    Outcome of one gate.

    ``inputs_available`` is False when the gate's inputs belong to a data
    source that is down; the gate is then not listed as triggered (the
    hard-block gate owns that veto) but still scores fail-closed.
    """

    id: GateID
    message: str
    triggered: bool
    inputs_available: bool = True
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.id.value,
            "message": self.message,
            "triggered": self.triggered,
        }
        if not self.inputs_available:
            out["inputsAvailable"] = False
        if self.error:
            out["error"] = self.error
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "GateResult":
        return cls(
            id=GateID(data["id"]),
            message=str(data.get("message", "")),
            triggered=bool(data.get("triggered", True)),
            inputs_available=bool(data.get("inputsAvailable", True)),
            error=data.get("error"),
        )


@dataclass(frozen=True)
class GovernanceDecision:
    multipliers: Mapping[GateID, float]
    composite_score: float
    gates_triggered: Tuple[GateID, ...]
    governance_decision: GovernanceVerdict
    gate_results: Tuple[GateResult, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "multipliers", MappingProxyType(dict(self.multipliers)))
        object.__setattr__(self, "gates_triggered", tuple(self.gates_triggered))
        object.__setattr__(self, "gate_results", tuple(self.gate_results))

    @property
    def approved(self) -> bool:
        return self.governance_decision is GovernanceVerdict.APPROVED

    @property
    def hard_blocked(self) -> bool:
        return any(gate.is_hard_block for gate in self.gates_triggered)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "multipliers": {gate.value: value for gate, value in self.multipliers.items()},
            "compositeScore": self.composite_score,
            "gatesTriggered": [gate.value for gate in self.gates_triggered],
            "gateResults": [result.to_dict() for result in self.gate_results],
            "governanceDecision": self.governance_decision.value,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "GovernanceDecision":
        return cls(
            multipliers={GateID(k): float(v) for k, v in (data.get("multipliers") or {}).items()},
            composite_score=float(data.get("compositeScore", 0.0)),
            gates_triggered=tuple(GateID(g) for g in data.get("gatesTriggered") or ()),
            governance_decision=GovernanceVerdict(data["governanceDecision"]),
            gate_results=tuple(GateResult.from_dict(r) for r in data.get("gateResults") or ()),
        )


@dataclass(frozen=True)
class DirectionalBiasResult:
    directional_bias: DirectionalBias
    directional_confidence: float
    source_signals: Mapping[str, Any] = field(default_factory=dict)
    direction_timeframe_used: Optional[Timeframe] = None
    confirmation_timeframe_used: Optional[Timeframe] = None

    def __post_init__(self):
        object.__setattr__(self, "source_signals", MappingProxyType(dict(self.source_signals)))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "directionalBias": self.directional_bias.value,
            "directionalConfidence": self.directional_confidence,
            "sourceSignals": dict(self.source_signals),
            "directionTimeframeUsed": (
                self.direction_timeframe_used.value if self.direction_timeframe_used else None
            ),
            "confirmationTimeframeUsed": (
                self.confirmation_timeframe_used.value if self.confirmation_timeframe_used else None
            ),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DirectionalBiasResult":
        direction_tf = data.get("directionTimeframeUsed")
        confirmation_tf = data.get("confirmationTimeframeUsed")
        return cls(
            directional_bias=DirectionalBias(data["directionalBias"]),
            directional_confidence=float(data.get("directionalConfidence", 0.0)),
            source_signals=data.get("sourceSignals") or {},
            direction_timeframe_used=Timeframe.parse(direction_tf) if direction_tf else None,
            confirmation_timeframe_used=Timeframe.parse(confirmation_tf) if confirmation_tf else None,
        )


@dataclass(frozen=True)
class FinalDecision:
    decision: FinalAction
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {"decision": self.decision.value, "reason": self.reason}


@dataclass(frozen=True)
class DecisionLogEntry:
    """Immutable audit record; one per evaluation."""

    timestamp: int
    symbol: str
    timeframe: Timeframe
    shadow_mode: bool
    governance: GovernanceDecision
    quantlabs: Optional[DirectionalBiasResult]
    final_decision: FinalDecision
    market_context_snapshot: MarketContextSnapshot
    entry_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def entered(self) -> bool:
        return self.final_decision.decision is FinalAction.ENTER

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entryId": self.entry_id,
            "timestamp": self.timestamp,
            "symbol": self.symbol,
            "timeframe": self.timeframe.value,
            "shadowMode": self.shadow_mode,
            "governance": self.governance.to_dict(),
            "quantlabs": self.quantlabs.to_dict() if self.quantlabs else None,
            "finalDecision": self.final_decision.to_dict(),
            "marketContextSnapshot": self.market_context_snapshot.to_dict(),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DecisionLogEntry":
        quantlabs = data.get("quantlabs")
        final = data.get("finalDecision") or {}
        return cls(
            timestamp=int(data["timestamp"]),
            symbol=str(data["symbol"]),
            timeframe=Timeframe.parse(data["timeframe"]),
            shadow_mode=bool(data["shadowMode"]),
            governance=GovernanceDecision.from_dict(data["governance"]),
            quantlabs=DirectionalBiasResult.from_dict(quantlabs) if quantlabs else None,
            final_decision=FinalDecision(
                decision=FinalAction(str(final.get("decision", "skip")).lower()),
                reason=str(final.get("reason", "")),
            ),
            market_context_snapshot=MarketContextSnapshot.from_dict(data.get("marketContextSnapshot") or {}),
            entry_id=str(data.get("entryId") or uuid.uuid4().hex),
        )


__all__ = [
    "ANALYSIS_DEPENDENT_FIELDS",
    "DecisionLogEntry",
    "Direction",
    "DirectionalBias",
    "DirectionalBiasResult",
    "FRICTION_TOLERANCE",
    "FinalAction",
    "FinalDecision",
    "GATE_MESSAGES",
    "GateID",
    "GateResult",
    "GovernanceDecision",
    "GovernanceVerdict",
    "HARD_BLOCK_GATES",
    "MarketContextSnapshot",
    "PRICE_DEPENDENT_FIELDS",
    "Timeframe",
    "TradeRecord",
    "TradingSession",
    "VolatilityPhase",
]
