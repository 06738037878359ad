import logging

from signal_governance.governance_models import MarketContextSnapshot
from signal_governance.validation import validate_unit_consistency, verify_symbol_mapping


def _make_snapshot(**overrides):
    base = dict(
        spread=0.0001,
        bid=1.1000,
        ask=1.1001,
        slippage_estimate=0.00002,
        total_friction=0.00012,
        atr_value=0.0039,
        atr_avg=0.0036,
        friction_ratio=32.14,
        price_data_available=True,
        analysis_available=True,
    )
    base.update(overrides)
    return MarketContextSnapshot(**base)


def test_consistent_snapshot_passes() -> None:
    result = validate_unit_consistency(_make_snapshot())
    assert result.passed
    assert result.violations == []


def test_zero_atr_flagged(caplog) -> None:
    with caplog.at_level(logging.WARNING, logger="signal_governance.validation"):
        result = validate_unit_consistency(_make_snapshot(atr_value=0.0))
    assert not result.passed
    assert "ATR" in result.violations[0]
    assert "Unit consistency check failed" in caplog.text


def test_friction_ratio_out_of_range() -> None:
    result = validate_unit_consistency(_make_snapshot(friction_ratio=390.0))
    assert not result.passed
    assert any("possible unit mismatch" in v for v in result.violations)


def test_unpriced_snapshot_skips_friction_checks() -> None:
    result = validate_unit_consistency(_make_snapshot(price_data_available=False))
    assert result.passed


def test_symbol_in_registry() -> None:
    result = verify_symbol_mapping("EURUSD", ["EUR/USD", "GBP/USD"])
    assert result.valid
    assert result.in_registry
    assert not result.in_live_prices
    assert result.canonical_symbol == "EUR_USD"
    assert result.display_symbol == "EUR/USD"


def test_symbol_in_live_prices_only() -> None:
    result = verify_symbol_mapping("USD/JPY", [], live_symbols=["USD_JPY"])
    assert result.valid
    assert result.in_live_prices


def test_unknown_symbol() -> None:
    result = verify_symbol_mapping("GBP_JPY", ["EUR/USD"])
    assert not result.valid
    assert "GBP/JPY" in result.message


def test_malformed_symbol() -> None:
    result = verify_symbol_mapping("XYZ", ["EUR/USD", "junk"])
    assert not result.valid
    assert result.canonical_symbol is None
    assert result.to_dict()["valid"] is False
