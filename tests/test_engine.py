"""End-to-end tests for the governance engine and the caller-side service."""
import pytest

from signal_governance.decision_logger import DecisionLogger, InMemoryAuditStore
from signal_governance.engine import GovernanceEngine, GovernanceService, evaluate
from signal_governance.errors import AuditPersistenceError, InvalidSnapshotError, UnrecognizedSymbolFormat
from signal_governance.governance_models import (
    FinalAction,
    GateID,
    GovernanceVerdict,
    MarketContextSnapshot,
    Timeframe,
    TradeRecord,
)
from signal_governance.trade_history import InMemoryTradeHistoryStore

NOW = 1_700_000_000_000
MINUTE = 60_000


def _make_snapshot(**overrides):
    base = dict(
        spread=0.0001,
        bid=1.1000,
        ask=1.1001,
        slippage_estimate=0.00002,
        total_friction=0.00012,
        atr_value=0.0039,
        atr_avg=0.0036,
        volatility_phase="expansion",
        session="london-open",
        friction_ratio=32.14,
        mtf_alignment_score=80.0,
        spread_stability_rank=82.0,
        liquidity_shock_prob=20.0,
        price_data_available=True,
        analysis_available=True,
        htf_supports=True,
    )
    base.update(overrides)
    return MarketContextSnapshot(**base)


def _trade(pnl, ts, pair="EUR_USD"):
    return TradeRecord(pair=pair, direction="long", pnl_pips=pnl, timestamp=ts)


class TestEvaluate:
    def test_clean_snapshot_approved(self):
        entry = GovernanceEngine().evaluate(_make_snapshot(), [], "EURUSD", "1h", False, now_ms=NOW)
        assert entry.governance.governance_decision is GovernanceVerdict.APPROVED
        assert entry.final_decision.decision is FinalAction.ENTER
        assert entry.symbol == "EUR_USD"
        assert entry.timestamp == NOW
        assert entry.quantlabs is None

    def test_price_unavailable_rejected_solely_by_g9(self):
        entry = GovernanceEngine().evaluate(
            _make_snapshot(price_data_available=False), [], "EUR/USD", "1h", False, now_ms=NOW,
        )
        gov = entry.governance
        assert gov.governance_decision is GovernanceVerdict.REJECTED
        assert gov.gates_triggered == (GateID.G9_PRICE_DATA_UNAVAILABLE,)
        assert entry.final_decision.decision is FinalAction.SKIP
        assert entry.market_context_snapshot.spread_stability_rank == 0
        assert entry.market_context_snapshot.current_spread == 0
        assert gov.composite_score < 1.0

    def test_analysis_unavailable_rejected(self):
        entry = GovernanceEngine().evaluate(
            _make_snapshot(analysis_available=False), [], "EUR_USD", "15m", True, now_ms=NOW,
        )
        assert entry.governance.gates_triggered == (GateID.G10_ANALYSIS_UNAVAILABLE,)
        assert entry.final_decision.reason.startswith("governance rejected: G10_ANALYSIS_UNAVAILABLE")

    @pytest.mark.parametrize("shadow_mode", [True, False])
    def test_shadow_mode_stamped(self, shadow_mode):
        entry = GovernanceEngine().evaluate(_make_snapshot(), [], "EURUSD", "1h", shadow_mode, now_ms=NOW)
        assert entry.shadow_mode is shadow_mode
        assert entry.to_dict()["shadowMode"] is shadow_mode

    def test_shadow_and_live_decide_identically(self):
        engine = GovernanceEngine()
        snap = _make_snapshot(friction_ratio=2.0)
        live = engine.evaluate(snap, [], "EURUSD", "1h", False, now_ms=NOW)
        shadow = engine.evaluate(snap, [], "EURUSD", "1h", True, now_ms=NOW)
        assert live.governance == shadow.governance
        assert live.final_decision == shadow.final_decision

    def test_unrecognized_symbol(self):
        with pytest.raises(UnrecognizedSymbolFormat):
            GovernanceEngine().evaluate(_make_snapshot(), [], "EURO-DOLLAR", "1h", False)

    def test_snapshot_from_mapping(self):
        data = _make_snapshot().to_dict()
        entry = GovernanceEngine().evaluate(data, [], "EURUSD", "1h", False, now_ms=NOW)
        assert entry.governance.approved

    def test_invalid_snapshot_mapping(self):
        data = _make_snapshot().to_dict()
        data["totalFriction"] = 0.5
        with pytest.raises(InvalidSnapshotError):
            GovernanceEngine().evaluate(data, [], "EURUSD", "1h", False, now_ms=NOW)

    def test_history_ranked_before_gates(self):
        # Arrival order oldest-first; newest five are four losses.
        trades = [_trade(5.0, NOW - 600 * MINUTE), _trade(5.0, NOW - 500 * MINUTE)]
        trades += [_trade(-3.0, NOW - m * MINUTE) for m in (400, 300, 200, 100)]
        entry = GovernanceEngine().evaluate(
            _make_snapshot(mtf_alignment_score=50.0), trades, "EURUSD", "1h", False, now_ms=NOW,
        )
        assert GateID.G7_LOSS_CLUSTER_WEAK_MTF in entry.governance.gates_triggered

    def test_other_pairs_ignored(self):
        trades = [_trade(2.0, NOW - i * MINUTE, pair="GBP_USD") for i in range(12)]
        entry = GovernanceEngine().evaluate(_make_snapshot(), trades, "EURUSD", "1h", False, now_ms=NOW)
        assert entry.governance.gates_triggered == ()

    def test_trade_mappings_accepted(self):
        trades = [
            {"pair": "EUR/USD", "direction": "long", "pnlPips": 2.0, "timestamp": NOW - i * MINUTE}
            for i in range(13)
        ]
        entry = GovernanceEngine().evaluate(_make_snapshot(), trades, "EURUSD", "1h", False, now_ms=NOW)
        assert entry.governance.gates_triggered == (GateID.G6_OVERTRADING,)

    def test_lone_overtrading_gate_skips(self):
        trades = [_trade(2.0, NOW - i * MINUTE) for i in range(13)]
        entry = GovernanceEngine().evaluate(_make_snapshot(), trades, "EURUSD", "1h", False, now_ms=NOW)
        assert entry.governance.composite_score == pytest.approx(0.80)
        assert not entry.governance.approved
        assert entry.final_decision.decision is FinalAction.SKIP
        assert entry.final_decision.reason == "governance rejected: G6_OVERTRADING"

    def test_lone_compression_gate_skips(self):
        snap = _make_snapshot(session="late-ny", volatility_phase="contraction")
        entry = GovernanceEngine().evaluate(snap, [], "EURUSD", "1h", False, now_ms=NOW)
        assert entry.governance.gates_triggered == (GateID.G5_COMPRESSION_LOW_SESSION,)
        assert entry.governance.composite_score == pytest.approx(0.75)
        assert entry.final_decision.decision is FinalAction.SKIP
        assert entry.final_decision.reason == "governance rejected: G5_COMPRESSION_LOW_SESSION"

    def test_module_level_evaluate(self):
        entry = evaluate(_make_snapshot(), None, "EURUSD", Timeframe.H4, False, now_ms=NOW)
        assert entry.timeframe is Timeframe.H4


class TestDirectionalDecision:
    def test_directional_analysis_enters(self):
        entry = GovernanceEngine().evaluate(
            _make_snapshot(), [], "EURUSD", "1h", False,
            analyses={"4h": {"bias": "bullish", "confidence": 70}, "15m": {"bias": "bullish"}},
            now_ms=NOW,
        )
        assert entry.quantlabs.direction_timeframe_used is Timeframe.H4
        assert entry.final_decision.decision is FinalAction.ENTER

    def test_flat_bias_skips_approved_signal(self):
        entry = GovernanceEngine().evaluate(
            _make_snapshot(), [], "EURUSD", "1h", False,
            analyses={"1h": {"bias": "neutral"}},
            now_ms=NOW,
        )
        assert entry.governance.approved
        assert entry.final_decision.decision is FinalAction.SKIP
        assert entry.final_decision.reason == "directional bias flat"


class TestService:
    def test_fetches_history_and_records(self):
        history = InMemoryTradeHistoryStore([_trade(2.0, NOW - i * MINUTE) for i in range(13)])
        store = InMemoryAuditStore()
        service = GovernanceService(history_store=history, decision_logger=DecisionLogger(store))
        entry = service.evaluate(_make_snapshot(), "EUR/USD", "1h", True, now_ms=NOW)
        assert GateID.G6_OVERTRADING in entry.governance.gates_triggered
        assert store.entries() == [entry]

    def test_persistence_failure_carries_verdict(self):
        class BrokenStore:
            def append(self, entry):
                raise OSError("read-only filesystem")

            def entries(self, symbol=None, limit=None):
                return []

        service = GovernanceService(decision_logger=DecisionLogger(BrokenStore(), retry_attempts=2))
        with pytest.raises(AuditPersistenceError) as exc:
            service.evaluate(_make_snapshot(), "EURUSD", "1h", False, now_ms=NOW)
        assert exc.value.entry.governance.approved
        assert exc.value.attempts == 2
