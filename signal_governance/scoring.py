"""
Composite scoring of gate results.

Each soft gate (G1-G8) maps to a multiplier in (0, 1]: 1.0 when the gate
is clear, its configured penalty when it fired or its inputs were
unavailable. The combination rule is a pluggable strategy; the verdict
is approved only when the composite clears the threshold and neither
hard-block gate (G9, G10) fired.
"""

from __future__ import annotations

import logging
from typing import Dict, Mapping, Optional, Sequence

from .governance_config import SOFT_GATES, GovernanceConfig
from .governance_models import GateID, GateResult, GovernanceDecision, GovernanceVerdict

logger = logging.getLogger(__name__)


class MultiplierCombiner:
    """Combines per-gate multipliers into one score."""

    name = "base"

    def combine(self, multipliers: Mapping[GateID, float], config: GovernanceConfig) -> float:
        raise NotImplementedError


class ProductCombiner(MultiplierCombiner):
    name = "product"

    def combine(self, multipliers, config):
        score = 1.0
        for gate in SOFT_GATES:
            score *= multipliers.get(gate, 1.0)
        return score


class WeightedCombiner(MultiplierCombiner):
    """Weighted arithmetic mean of the multipliers (weights from config)."""

    name = "weighted"

    def combine(self, multipliers, config):
        total_weight = 0.0
        acc = 0.0
        for gate in SOFT_GATES:
            weight = config.weight_for(gate)
            total_weight += weight
            acc += weight * multipliers.get(gate, 1.0)
        if total_weight <= 0:
            return 1.0
        return acc / total_weight


COMBINERS: Dict[str, MultiplierCombiner] = {
    ProductCombiner.name: ProductCombiner(),
    WeightedCombiner.name: WeightedCombiner(),
}


class CompositeScorer:
    def __init__(
        self,
        config: Optional[GovernanceConfig] = None,
        combiner: Optional[MultiplierCombiner] = None,
    ):
        self.config = config or GovernanceConfig()
        self.combiner = combiner or COMBINERS[self.config.composite_strategy]

    def multipliers(self, results: Sequence[GateResult]) -> Dict[GateID, float]:
        by_gate = {r.id: r for r in results}
        out: Dict[GateID, float] = {}
        for gate in SOFT_GATES:
            result = by_gate.get(gate)
            # A missing result is unknown, and unknown is penalized.
            if result is None or result.triggered or not result.inputs_available:
                out[gate] = self.config.penalty_for(gate)
            else:
                out[gate] = 1.0
        return out

    def score(self, results: Sequence[GateResult]) -> GovernanceDecision:
        ordered = sorted(results, key=lambda r: r.id.number)
        multipliers = self.multipliers(ordered)
        composite = self.combiner.combine(multipliers, self.config)
        composite = round(max(0.0, min(1.0, composite)), 6)

        triggered = tuple(r.id for r in ordered if r.triggered)
        hard_blocked = any(gate.is_hard_block for gate in triggered)
        if hard_blocked or composite < self.config.composite_threshold:
            verdict = GovernanceVerdict.REJECTED
        else:
            verdict = GovernanceVerdict.APPROVED

        logger.debug(
            "Composite %.4f (%s, threshold %.2f) gates=%s -> %s",
            composite, self.combiner.name, self.config.composite_threshold,
            [g.value for g in triggered], verdict.value,
        )
        return GovernanceDecision(
            multipliers=multipliers,
            composite_score=composite,
            gates_triggered=triggered,
            governance_decision=verdict,
            gate_results=tuple(ordered),
        )


__all__ = [
    "COMBINERS",
    "CompositeScorer",
    "MultiplierCombiner",
    "ProductCombiner",
    "WeightedCombiner",
]
