"""Trade-signal governance: gates, composite scoring and the decision audit log."""

from .decision_logger import DecisionLogger, InMemoryAuditStore, JsonlAuditStore, ShadowModeGuard
from .directional_bias import DirectionalBiasResolver
from .engine import GovernanceEngine, GovernanceService, evaluate
from .errors import (
    AuditPersistenceError,
    GateEvaluationError,
    GovernanceError,
    InvalidSnapshotError,
    UnrecognizedSymbolFormat,
)
from .gates import GateEvaluator
from .governance_config import GovernanceConfig
from .governance_models import (
    DecisionLogEntry,
    GateID,
    GateResult,
    GovernanceDecision,
    MarketContextSnapshot,
    TradeRecord,
)
from .scoring import CompositeScorer
from .symbols import to_canonical_symbol, to_display_symbol, to_raw_symbol
from .trade_history import InMemoryTradeHistoryStore, rank_trades

__all__ = [
    "AuditPersistenceError",
    "CompositeScorer",
    "DecisionLogEntry",
    "DecisionLogger",
    "DirectionalBiasResolver",
    "GateEvaluationError",
    "GateEvaluator",
    "GateID",
    "GateResult",
    "GovernanceConfig",
    "GovernanceDecision",
    "GovernanceEngine",
    "GovernanceError",
    "GovernanceService",
    "InMemoryAuditStore",
    "InMemoryTradeHistoryStore",
    "InvalidSnapshotError",
    "JsonlAuditStore",
    "MarketContextSnapshot",
    "ShadowModeGuard",
    "TradeRecord",
    "UnrecognizedSymbolFormat",
    "evaluate",
    "rank_trades",
    "to_canonical_symbol",
    "to_display_symbol",
    "to_raw_symbol",
]
