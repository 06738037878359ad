"""Tests for snapshot construction from quotes, ATR and multi-timeframe analyses."""
import pytest

from signal_governance.governance_models import TradingSession, VolatilityPhase
from signal_governance.market_context import (
    DEFAULT_SLIPPAGE_ESTIMATE,
    SpreadTracker,
    build_snapshot,
    classify_volatility_phase,
    compute_friction,
    derive_mtf_structure,
    detect_liquidity_session,
    estimate_liquidity_shock_prob,
    session_aggressiveness,
)

NOW = 1_700_000_000_000

ALIGNED = {
    "1d": {"bias": "bullish"},
    "4h": {"bias": "bullish", "atr": 0.0030},
    "1h": {"bias": "bullish", "atr": 0.0030},
    "15m": {"bias": "bullish", "efficiency": {"score": 0.6}},
}


class TestSession:
    @pytest.mark.parametrize("hour,expected", [
        (0, TradingSession.LATE_NY),
        (1, TradingSession.ASIAN),
        (6, TradingSession.ASIAN),
        (7, TradingSession.LONDON_OPEN),
        (11, TradingSession.LONDON_OPEN),
        (12, TradingSession.NY_OVERLAP),
        (16, TradingSession.NY_OVERLAP),
        (17, TradingSession.LATE_NY),
        (23, TradingSession.LATE_NY),
    ])
    def test_detect(self, hour, expected):
        assert detect_liquidity_session(hour) is expected

    def test_aggressiveness(self):
        assert session_aggressiveness("london-open") == 88.0
        assert session_aggressiveness(TradingSession.LATE_NY) == 22.0


class TestVolatilityPhase:
    @pytest.mark.parametrize("atr,expected", [
        (0.5, VolatilityPhase.CONTRACTION),
        (0.9, VolatilityPhase.CONTRACTION),
        (1.0, VolatilityPhase.EXPANSION),
        (1.5, VolatilityPhase.IGNITION),
        (2.5, VolatilityPhase.EXHAUSTION),
    ])
    def test_ratio_bands(self, atr, expected):
        phase, confidence = classify_volatility_phase(atr, 1.0)
        assert phase is expected
        assert 0 <= confidence <= 100

    def test_zero_average_is_ratio_one(self):
        assert classify_volatility_phase(0.002, 0.0)[0] is VolatilityPhase.EXPANSION


class TestFriction:
    def test_ratio(self):
        ratio, total = compute_friction(0.0039, 0.0001)
        assert total == pytest.approx(0.00012)
        assert ratio == pytest.approx(32.5)

    def test_zero_friction(self):
        assert compute_friction(0.003, 0.0, 0.0) == (10.0, 0.0)

    def test_shock_estimate(self):
        assert estimate_liquidity_shock_prob(80.0, "expansion", "london-open") == pytest.approx(20.0)
        assert estimate_liquidity_shock_prob(80.0, "exhaustion", "late-ny") == pytest.approx(45.0)
        assert estimate_liquidity_shock_prob(0.0, "contraction", "asian") == 100.0


class TestSpreadTracker:
    def test_first_observation_neutral_rank(self):
        obs = SpreadTracker().observe("EURUSD", 1.1000, 1.1002, NOW)
        assert obs.price_data_available
        assert obs.spread_stability_rank == 60.0
        assert obs.spread == pytest.approx(0.0002)

    def test_constant_spread_is_stable(self):
        tracker = SpreadTracker()
        tracker.observe("EURUSD", 1.1000, 1.1002, NOW)
        obs = tracker.observe("EUR/USD", 1.1000, 1.1002, NOW + 1000)
        assert obs.spread_stability_rank == pytest.approx(100.0)

    def test_volatile_spread_ranks_low(self):
        tracker = SpreadTracker()
        tracker.observe("EURUSD", 1.1000, 1.1001, NOW)
        obs = tracker.observe("EURUSD", 1.1000, 1.1004, NOW + 1000)
        assert obs.spread_stability_rank < 30.0

    def test_window_expires(self):
        tracker = SpreadTracker(window_ms=60_000)
        tracker.observe("EURUSD", 1.1000, 1.1001, NOW)
        obs = tracker.observe("EURUSD", 1.1000, 1.1004, NOW + 61_000)
        assert obs.spread_stability_rank == 60.0

    @pytest.mark.parametrize("bid,ask", [(None, 1.1), (1.1, None), (0.0, 1.1), (1.1, 1.1)])
    def test_no_usable_quote(self, bid, ask):
        obs = SpreadTracker().observe("EURUSD", bid, ask, NOW)
        assert not obs.price_data_available
        assert obs.spread_stability_rank == 0.0
        assert obs.spread == 0.0


class TestMtfStructure:
    def test_fully_aligned(self):
        structure = derive_mtf_structure(ALIGNED)
        assert structure["htf_supports"] and structure["mtf_confirms"] and structure["ltf_clean"]
        assert structure["mtf_alignment_score"] == 100.0

    def test_partial(self):
        structure = derive_mtf_structure({"4h": {"bias": "bearish"}, "1h": {"bias": "bearish"}})
        assert not structure["htf_supports"]
        assert structure["mtf_confirms"]
        assert structure["mtf_alignment_score"] == 35.0


class TestBuildSnapshot:
    def test_full_inputs(self):
        snap = build_snapshot("EURUSD", bid=1.1000, ask=1.1001, analyses=ALIGNED, session="london-open", now_ms=NOW)
        assert snap.price_data_available and snap.analysis_available
        assert snap.volatility_phase is VolatilityPhase.EXPANSION
        assert snap.mtf_alignment_score == 100.0
        assert snap.htf_supports
        assert snap.total_friction == pytest.approx(snap.spread + DEFAULT_SLIPPAGE_ESTIMATE)
        assert snap.friction_ratio == pytest.approx(0.0030 / (snap.spread + DEFAULT_SLIPPAGE_ESTIMATE))

    def test_missing_quote_fail_closed(self):
        snap = build_snapshot("EURUSD", analyses=ALIGNED, session="ny-overlap", now_ms=NOW)
        assert not snap.price_data_available
        assert snap.spread_stability_rank == 0
        assert snap.current_spread == 0
        assert snap.friction_ratio == 0

    def test_missing_analysis_fail_closed(self):
        snap = build_snapshot("EURUSD", bid=1.1000, ask=1.1001, session="asian", now_ms=NOW)
        assert snap.price_data_available
        assert not snap.analysis_available
        assert snap.mtf_alignment_score == 0
        assert snap.volatility_phase is VolatilityPhase.NEUTRAL

    def test_session_from_timestamp(self):
        # 1_700_000_000_000 ms is 22:13 UTC
        snap = build_snapshot("EURUSD", now_ms=NOW)
        assert snap.session is TradingSession.LATE_NY

    def test_shared_tracker(self):
        tracker = SpreadTracker()
        build_snapshot("EURUSD", bid=1.1, ask=1.1002, atr_value=0.003, tracker=tracker, now_ms=NOW)
        snap = build_snapshot("EURUSD", bid=1.1, ask=1.1002, atr_value=0.003, tracker=tracker, now_ms=NOW + 500)
        assert snap.spread_stability_rank == pytest.approx(100.0)
