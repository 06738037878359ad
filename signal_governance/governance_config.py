"""Canonical governance configuration schema."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any, Dict, Mapping, Tuple

from .governance_models import HARD_BLOCK_GATES, GateID, Timeframe, TradingSession

DEFAULT_GATE_PENALTIES: Dict[str, float] = {
    GateID.G1_FRICTION.value: 0.55,
    GateID.G2_NO_HTF_WEAK_MTF.value: 0.60,
    GateID.G3_EDGE_DECAY.value: 0.70,
    GateID.G4_SPREAD_INSTABILITY.value: 0.60,
    GateID.G5_COMPRESSION_LOW_SESSION.value: 0.75,
    GateID.G6_OVERTRADING.value: 0.80,
    GateID.G7_LOSS_CLUSTER_WEAK_MTF.value: 0.65,
    GateID.G8_HIGH_SHOCK.value: 0.55,
}

DEFAULT_OVERTRADING_LIMITS: Dict[str, int] = {
    TradingSession.LONDON_OPEN.value: 12,
    TradingSession.NY_OVERLAP.value: 10,
    TradingSession.ASIAN.value: 6,
    TradingSession.LATE_NY.value: 4,
}

# Liquidity-session activity level (0-100) used by G5 and the shock estimate.
SESSION_AGGRESSIVENESS: Dict[str, float] = {
    TradingSession.ASIAN.value: 35.0,
    TradingSession.LONDON_OPEN.value: 88.0,
    TradingSession.NY_OVERLAP.value: 78.0,
    TradingSession.LATE_NY.value: 22.0,
}

SOFT_GATES: Tuple[GateID, ...] = tuple(g for g in GateID if g not in HARD_BLOCK_GATES)

# Smallest multiplier a gate penalty may take; keeps every multiplier in (0, 1].
MIN_GATE_PENALTY = 0.01


@dataclass(frozen=True)
class GovernanceConfig:
    """Single source of truth for gate thresholds and scoring."""

    friction_ratio_min: float = 3.0
    weak_mtf_alignment_max: float = 35.0
    edge_decay_rate_max: float = 20.0
    edge_decay_ratio: float = 0.85
    spread_stability_min: float = 30.0
    session_aggressiveness_min: float = 30.0
    overtrading_window_ms: int = 30 * 60 * 1000
    overtrading_limits: Dict[str, int] = field(default_factory=lambda: dict(DEFAULT_OVERTRADING_LIMITS))
    loss_cluster_window: int = 5
    loss_cluster_min_losses: int = 4
    loss_cluster_mtf_max: float = 55.0
    liquidity_shock_max: float = 70.0
    gate_penalties: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_GATE_PENALTIES))
    # above the largest soft-gate penalty: any fired soft gate withholds approval
    composite_threshold: float = 0.85
    composite_strategy: str = "product"
    gate_weights: Dict[str, float] = field(default_factory=dict)
    direction_timeframes: Tuple[str, ...] = ("1h", "4h")
    confirmation_timeframe: str = "15m"
    history_limit: int = 50
    audit_max_entries: int = 1000
    audit_retry_attempts: int = 3

    VALID_COMPOSITE_STRATEGIES = {"product", "weighted"}

    def __post_init__(self):
        strategy = str(self.composite_strategy or "").strip().lower()
        if strategy not in self.VALID_COMPOSITE_STRATEGIES:
            raise ValueError(
                f"composite_strategy must be one of {sorted(self.VALID_COMPOSITE_STRATEGIES)}, "
                f"got {self.composite_strategy!r}"
            )
        object.__setattr__(self, "composite_strategy", strategy)

    @staticmethod
    def _to_float(value: Any, default: float) -> float:
        try:
            return float(value)
        except (TypeError, ValueError):
            return float(default)

    @staticmethod
    def _to_int(value: Any, default: int) -> int:
        try:
            return int(value)
        except (TypeError, ValueError):
            return int(default)

    @staticmethod
    def _clamp(value: float, lo: float, hi: float) -> float:
        return max(lo, min(hi, value))

    @classmethod
    def _parse_gate_map(cls, value: Any, defaults: Mapping[str, float], lo: float, hi: float) -> Dict[str, float]:
        parsed = dict(defaults)
        if not isinstance(value, Mapping):
            return parsed
        for key, raw in value.items():
            gate_key = str(key).strip().upper()
            if gate_key not in {g.value for g in SOFT_GATES}:
                continue
            parsed[gate_key] = cls._clamp(cls._to_float(raw, parsed.get(gate_key, hi)), lo, hi)
        return parsed

    @classmethod
    def _parse_timeframes(cls, value: Any, fallback: Tuple[str, ...]) -> Tuple[str, ...]:
        if isinstance(value, str):
            value = [token for token in value.split(",")]
        if isinstance(value, (list, tuple)):
            parsed = []
            for token in value:
                try:
                    tf = Timeframe.parse(token).value
                except ValueError:
                    continue
                if tf not in parsed:
                    parsed.append(tf)
            if parsed:
                return tuple(parsed)
        return tuple(fallback)

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "GovernanceConfig":
        raw = d if isinstance(d, Mapping) else {}
        defaults = cls()

        def f(name: str, lo: float, hi: float) -> float:
            return cls._clamp(cls._to_float(raw.get(name, getattr(defaults, name)), getattr(defaults, name)), lo, hi)

        def i(name: str, lo: int, hi: int) -> int:
            return int(cls._clamp(cls._to_int(raw.get(name, getattr(defaults, name)), getattr(defaults, name)), lo, hi))

        strategy = str(raw.get("composite_strategy", defaults.composite_strategy) or "").strip().lower()
        if strategy not in cls.VALID_COMPOSITE_STRATEGIES:
            strategy = defaults.composite_strategy

        limits = dict(defaults.overtrading_limits)
        raw_limits = raw.get("overtrading_limits")
        if isinstance(raw_limits, Mapping):
            for key, value in raw_limits.items():
                try:
                    session = TradingSession.parse(key).value
                except ValueError:
                    continue
                limits[session] = max(1, cls._to_int(value, limits[session]))

        confirmation = raw.get("confirmation_timeframe", defaults.confirmation_timeframe)
        try:
            confirmation = Timeframe.parse(confirmation).value
        except ValueError:
            confirmation = defaults.confirmation_timeframe

        window = i("loss_cluster_window", 1, 50)
        return cls(
            friction_ratio_min=f("friction_ratio_min", 0.0, 100.0),
            weak_mtf_alignment_max=f("weak_mtf_alignment_max", 0.0, 100.0),
            edge_decay_rate_max=f("edge_decay_rate_max", 0.0, 100.0),
            edge_decay_ratio=f("edge_decay_ratio", 0.0, 1.0),
            spread_stability_min=f("spread_stability_min", 0.0, 100.0),
            session_aggressiveness_min=f("session_aggressiveness_min", 0.0, 100.0),
            overtrading_window_ms=i("overtrading_window_ms", 1_000, 24 * 60 * 60 * 1000),
            overtrading_limits=limits,
            loss_cluster_window=window,
            loss_cluster_min_losses=int(cls._clamp(
                cls._to_int(raw.get("loss_cluster_min_losses", defaults.loss_cluster_min_losses),
                            defaults.loss_cluster_min_losses),
                1, window,
            )),
            loss_cluster_mtf_max=f("loss_cluster_mtf_max", 0.0, 100.0),
            liquidity_shock_max=f("liquidity_shock_max", 0.0, 100.0),
            gate_penalties=cls._parse_gate_map(raw.get("gate_penalties"), defaults.gate_penalties, MIN_GATE_PENALTY, 1.0),
            composite_threshold=f("composite_threshold", 0.0, 1.0),
            composite_strategy=strategy,
            gate_weights=cls._parse_gate_map(raw.get("gate_weights"), defaults.gate_weights, 0.0, 100.0),
            direction_timeframes=cls._parse_timeframes(raw.get("direction_timeframes"), defaults.direction_timeframes),
            confirmation_timeframe=confirmation,
            history_limit=i("history_limit", 1, 10_000),
            audit_max_entries=i("audit_max_entries", 1, 1_000_000),
            audit_retry_attempts=i("audit_retry_attempts", 1, 20),
        )

    def merge(self, overrides: Mapping[str, Any]) -> "GovernanceConfig":
        if not isinstance(overrides, Mapping) or not overrides:
            return self
        merged = self.to_dict()
        for key, value in overrides.items():
            if value is None:
                continue
            merged[key] = value
        return GovernanceConfig.from_dict(merged)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for item in fields(self):
            value = getattr(self, item.name)
            if isinstance(value, dict):
                value = dict(value)
            elif isinstance(value, tuple):
                value = list(value)
            out[item.name] = value
        return out

    def penalty_for(self, gate: GateID) -> float:
        return float(self.gate_penalties.get(gate.value, DEFAULT_GATE_PENALTIES.get(gate.value, 1.0)))

    def weight_for(self, gate: GateID) -> float:
        return float(self.gate_weights.get(gate.value, 1.0))

    def session_aggressiveness(self, session: TradingSession) -> float:
        return float(SESSION_AGGRESSIVENESS.get(session.value, 50.0))

    def overtrading_limit_for(self, session: TradingSession) -> int:
        return int(self.overtrading_limits.get(session.value, 8))


__all__ = [
    "DEFAULT_GATE_PENALTIES",
    "DEFAULT_OVERTRADING_LIMITS",
    "GovernanceConfig",
    "MIN_GATE_PENALTY",
    "SESSION_AGGRESSIVENESS",
    "SOFT_GATES",
]
