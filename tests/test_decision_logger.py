"""Tests for audit entry assembly, append-only stores, retries and the shadow-mode guard."""
import json
import logging

import pytest

from signal_governance.decision_logger import (
    FLAT_BIAS_REASON,
    DecisionLogger,
    InMemoryAuditStore,
    JsonlAuditStore,
    ShadowModeGuard,
    resolve_final_decision,
)
from signal_governance.errors import AuditPersistenceError
from signal_governance.governance_models import (
    DirectionalBias,
    DirectionalBiasResult,
    FinalAction,
    GateID,
    GovernanceDecision,
    GovernanceVerdict,
    MarketContextSnapshot,
    Timeframe,
)

TS = 1_700_000_000_000


def _governance(verdict=GovernanceVerdict.APPROVED, triggered=(), composite=1.0):
    return GovernanceDecision(
        multipliers={},
        composite_score=composite,
        gates_triggered=triggered,
        governance_decision=verdict,
    )


def _bias(direction):
    return DirectionalBiasResult(
        directional_bias=direction,
        directional_confidence=0.7,
        direction_timeframe_used=Timeframe.H1,
    )


def _entry(logger=None, symbol="EUR/USD", shadow_mode=False, **kwargs):
    logger = logger or DecisionLogger()
    return logger.build_entry(
        symbol=symbol,
        timeframe="1h",
        snapshot=MarketContextSnapshot(),
        governance=kwargs.get("governance", _governance()),
        quantlabs=kwargs.get("quantlabs"),
        shadow_mode=shadow_mode,
        timestamp=TS,
    )


class FlakyStore:
    def __init__(self, failures):
        self.failures = failures
        self.calls = 0
        self.appended = []

    def append(self, entry):
        self.calls += 1
        if self.calls <= self.failures:
            raise OSError("disk unavailable")
        self.appended.append(entry)

    def entries(self, symbol=None, limit=None):
        return list(self.appended)


class TestFinalDecision:
    def test_rejection_lists_hard_blocks_first(self):
        gov = _governance(
            GovernanceVerdict.REJECTED,
            triggered=(GateID.G1_FRICTION, GateID.G10_ANALYSIS_UNAVAILABLE, GateID.G9_PRICE_DATA_UNAVAILABLE),
        )
        final = resolve_final_decision(gov, None)
        assert final.decision is FinalAction.SKIP
        assert final.reason == (
            "governance rejected: G9_PRICE_DATA_UNAVAILABLE, G10_ANALYSIS_UNAVAILABLE, G1_FRICTION"
        )

    def test_approved_without_analysis_enters(self):
        assert resolve_final_decision(_governance(), None).decision is FinalAction.ENTER

    def test_approved_flat_bias_skips(self):
        final = resolve_final_decision(_governance(), _bias(DirectionalBias.FLAT))
        assert final.decision is FinalAction.SKIP
        assert final.reason == FLAT_BIAS_REASON

    def test_approved_directional_enters(self):
        final = resolve_final_decision(_governance(), _bias(DirectionalBias.SHORT))
        assert final.decision is FinalAction.ENTER
        assert "short via 1h" in final.reason

    def test_approved_with_fired_gate_names_it(self):
        gov = _governance(triggered=(GateID.G6_OVERTRADING,), composite=0.8)
        final = resolve_final_decision(gov, None)
        assert final.decision is FinalAction.ENTER
        assert final.reason == "approved with penalties: G6_OVERTRADING (composite 0.800)"

    def test_directional_reason_names_fired_gate(self):
        gov = _governance(triggered=(GateID.G5_COMPRESSION_LOW_SESSION,), composite=0.75)
        final = resolve_final_decision(gov, _bias(DirectionalBias.LONG))
        assert final.reason.endswith("; penalties: G5_COMPRESSION_LOW_SESSION")

    def test_flat_reason_names_fired_gate(self):
        gov = _governance(triggered=(GateID.G6_OVERTRADING,), composite=0.8)
        final = resolve_final_decision(gov, _bias(DirectionalBias.FLAT))
        assert final.decision is FinalAction.SKIP
        assert final.reason == FLAT_BIAS_REASON + "; penalties: G6_OVERTRADING"


class TestBuildEntry:
    def test_symbol_canonical_and_flags(self):
        entry = _entry(shadow_mode=True)
        assert entry.symbol == "EUR_USD"
        assert entry.timeframe is Timeframe.H1
        assert entry.shadow_mode is True
        assert entry.timestamp == TS

    def test_shadow_mode_does_not_change_decision(self):
        live = _entry(shadow_mode=False)
        shadow = _entry(shadow_mode=True)
        assert live.final_decision == shadow.final_decision
        assert live.governance == shadow.governance

    def test_unique_entry_ids(self):
        assert _entry().entry_id != _entry().entry_id


class TestInMemoryStore:
    def test_bounded(self):
        store = InMemoryAuditStore(max_entries=3)
        entries = [_entry() for _ in range(5)]
        for e in entries:
            store.append(e)
        assert len(store) == 3
        assert store.entries() == entries[2:]

    def test_filter_by_symbol_and_limit(self):
        store = InMemoryAuditStore()
        store.append(_entry(symbol="EURUSD"))
        store.append(_entry(symbol="GBP/USD"))
        store.append(_entry(symbol="EUR_USD"))
        assert len(store.entries(symbol="EUR/USD")) == 2
        assert len(store.entries(limit=1)) == 1
        assert store.entries(limit=0) == []


class TestJsonlStore:
    def test_append_and_read(self, tmp_path):
        store = JsonlAuditStore(tmp_path / "audit" / "log.jsonl")
        first = _entry(shadow_mode=True)
        second = _entry(symbol="GBPUSD")
        store.append(first)
        store.append(second)

        lines = (tmp_path / "audit" / "log.jsonl").read_text().splitlines()
        assert len(lines) == 2
        assert json.loads(lines[0])["shadowMode"] is True

        restored = store.read_all()
        assert [e.entry_id for e in restored] == [first.entry_id, second.entry_id]
        assert restored[0].shadow_mode is True
        assert [e.symbol for e in store.entries(symbol="GBP/USD")] == ["GBP_USD"]

    def test_malformed_lines_skipped(self, tmp_path):
        path = tmp_path / "log.jsonl"
        store = JsonlAuditStore(path)
        store.append(_entry())
        with open(path, "a") as f:
            f.write("{not json\n")
        assert len(store.read_all()) == 1

    def test_missing_file_is_empty(self, tmp_path):
        assert JsonlAuditStore(tmp_path / "none.jsonl").read_all() == []


class TestRecord:
    def test_logs_summary(self, caplog):
        logger = DecisionLogger()
        with caplog.at_level(logging.INFO, logger="signal_governance.decision_logger"):
            logger.record(_entry(logger, shadow_mode=True))
        assert "[GOV-LOG] EUR_USD | approved" in caplog.text
        assert "shadow=True" in caplog.text

    def test_retry_then_success(self):
        store = FlakyStore(failures=2)
        logger = DecisionLogger(store, retry_attempts=3)
        entry = _entry(logger)
        assert logger.record(entry) is entry
        assert store.calls == 3
        assert store.appended == [entry]

    def test_exhausted_retries_surface_entry(self):
        store = FlakyStore(failures=10)
        logger = DecisionLogger(store, retry_attempts=3)
        entry = _entry(logger)
        with pytest.raises(AuditPersistenceError) as exc:
            logger.record(entry)
        assert exc.value.entry is entry
        assert exc.value.attempts == 3
        assert isinstance(exc.value.cause, OSError)
        assert store.calls == 3

    def test_retry_appends_never_overwrites(self, tmp_path):
        path = tmp_path / "log.jsonl"
        inner = JsonlAuditStore(path)

        class WriteThenFail:
            calls = 0

            def append(self, entry):
                inner.append(entry)
                WriteThenFail.calls += 1
                if WriteThenFail.calls == 1:
                    raise OSError("ack lost")

            def entries(self, symbol=None, limit=None):
                return inner.entries(symbol, limit)

        logger = DecisionLogger(WriteThenFail(), retry_attempts=2)
        entry = _entry(logger)
        logger.record(entry)
        stored = inner.read_all()
        assert len(stored) == 2
        assert {e.entry_id for e in stored} == {entry.entry_id}


class TestShadowModeGuard:
    def test_blocks_shadow_entries(self, caplog):
        guard = ShadowModeGuard()
        with caplog.at_level(logging.WARNING, logger="signal_governance.decision_logger"):
            assert guard.allow_execution(_entry(shadow_mode=True)) is False
        assert guard.integrity() == {"shadow_violations": 1, "checked": 1, "verified": False}
        assert "Shadow-mode entry" in caplog.text

    def test_live_entry_follows_final_decision(self):
        guard = ShadowModeGuard()
        assert guard.allow_execution(_entry()) is True
        rejected = _entry(governance=_governance(GovernanceVerdict.REJECTED, (GateID.G1_FRICTION,), 0.55))
        assert guard.allow_execution(rejected) is False
        assert guard.integrity()["verified"] is True
