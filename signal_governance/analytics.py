"""
Decision-log analytics (read-only).

All statistics are computed from DecisionLogEntry sequences via a flat
pandas frame; gate statistics are keyed on GateID, never on message
text. Monitors log a WARNING when a rate crosses its alert threshold.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd

from .governance_models import HARD_BLOCK_GATES, DecisionLogEntry, GateID, TradingSession

logger = logging.getLogger(__name__)

NEUTRAL_RATE_THRESHOLD = 0.55
DATA_AVAILABILITY_THRESHOLD = 0.98

FRAME_COLUMNS = [
    "entry_id", "timestamp", "symbol", "timeframe", "shadow_mode", "session",
    "governance_decision", "composite_score", "decision", "gates",
    "directional_bias", "price_data_available", "analysis_available",
]


def decisions_to_frame(entries: Sequence[DecisionLogEntry]) -> pd.DataFrame:
    """One row per entry; ``gates`` holds the triggered GateID values."""
    rows = []
    for e in entries:
        snap = e.market_context_snapshot
        rows.append({
            "entry_id": e.entry_id,
            "timestamp": e.timestamp,
            "symbol": e.symbol,
            "timeframe": e.timeframe.value,
            "shadow_mode": e.shadow_mode,
            "session": snap.session.value,
            "governance_decision": e.governance.governance_decision.value,
            "composite_score": e.governance.composite_score,
            "decision": e.final_decision.decision.value,
            "gates": [g.value for g in e.governance.gates_triggered],
            "directional_bias": e.quantlabs.directional_bias.value if e.quantlabs else None,
            "price_data_available": snap.price_data_available,
            "analysis_available": snap.analysis_available,
        })
    return pd.DataFrame(rows, columns=FRAME_COLUMNS)


def _filter_time_range(df: pd.DataFrame, time_range_ms: Optional[int], now_ms: Optional[int]) -> pd.DataFrame:
    if not time_range_ms or df.empty:
        return df
    if now_ms is None:
        now_ms = int(df["timestamp"].max())
    return df[df["timestamp"] >= now_ms - time_range_ms]


def _rate(num: int, den: int) -> float:
    return float(num) / den if den > 0 else 0.0


def compute_pass_stats(
    entries: Sequence[DecisionLogEntry],
    time_range_ms: Optional[int] = None,
    now_ms: Optional[int] = None,
) -> Dict[str, Any]:
    df = _filter_time_range(decisions_to_frame(entries), time_range_ms, now_ms)
    approved = df["governance_decision"] == "approved"

    by_session: Dict[str, Dict[str, Any]] = {}
    for session in TradingSession:
        mask = df["session"] == session.value
        total = int(mask.sum())
        n_approved = int((mask & approved).sum())
        by_session[session.value] = {
            "total": total,
            "approved": n_approved,
            "rejected": total - n_approved,
            "approval_rate": _rate(n_approved, total),
        }

    total = len(df)
    n_approved = int(approved.sum())
    return {
        "total_evaluations": total,
        "approved_count": n_approved,
        "rejected_count": total - n_approved,
        "approval_rate": _rate(n_approved, total),
        "by_session": by_session,
    }


def gate_category(gate: GateID) -> str:
    return "infrastructure" if gate in HARD_BLOCK_GATES else "strategy"


def compute_gate_frequency(
    entries: Sequence[DecisionLogEntry],
    top_n: int = 10,
    time_range_ms: Optional[int] = None,
    now_ms: Optional[int] = None,
) -> List[Dict[str, Any]]:
    df = _filter_time_range(decisions_to_frame(entries), time_range_ms, now_ms)
    if df.empty:
        return []
    exploded = df["gates"].explode().dropna()
    if exploded.empty:
        return []
    counts = exploded.value_counts()

    rows = []
    for gate_value, count in counts.items():
        gate = GateID(gate_value)
        rows.append({
            "gate_id": gate.value,
            "gate_category": gate_category(gate),
            "trigger_count": int(count),
            "trigger_rate": _rate(int(count), len(df)),
        })
    rows.sort(key=lambda r: (-r["trigger_count"], GateID(r["gate_id"]).number))
    return rows[:max(0, int(top_n))]


def compute_neutral_direction_rate(
    entries: Sequence[DecisionLogEntry],
    alert_threshold: float = NEUTRAL_RATE_THRESHOLD,
) -> Dict[str, Any]:
    """Share of approved entries whose resolved directional bias is flat."""
    df = decisions_to_frame(entries)
    approved = df[df["governance_decision"] == "approved"]
    neutral = int((approved["directional_bias"] == "flat").sum())
    rate = _rate(neutral, len(approved))
    alert = rate > alert_threshold
    if alert:
        logger.warning(
            "Neutral direction rate %.1f%% above %.1f%% (%d/%d approved)",
            rate * 100, alert_threshold * 100, neutral, len(approved),
        )
    return {
        "approved_count": len(approved),
        "neutral_count": neutral,
        "neutral_rate": rate,
        "alert_threshold": alert_threshold,
        "alert_triggered": alert,
    }


def compute_data_availability(
    entries: Sequence[DecisionLogEntry],
    alert_threshold: float = DATA_AVAILABILITY_THRESHOLD,
) -> Dict[str, Any]:
    df = decisions_to_frame(entries)
    total = len(df)
    if total == 0:
        return {
            "total_evaluations": 0,
            "price_data_unavailable_count": 0,
            "analysis_unavailable_count": 0,
            "price_data_availability_rate": 1.0,
            "analysis_availability_rate": 1.0,
            "alert_triggered": False,
        }
    price_missing = int((~df["price_data_available"].astype(bool)).sum())
    analysis_missing = int((~df["analysis_available"].astype(bool)).sum())
    price_rate = 1.0 - price_missing / total
    analysis_rate = 1.0 - analysis_missing / total
    alert = price_rate < alert_threshold or analysis_rate < alert_threshold
    if alert:
        logger.warning(
            "Data availability degraded: price %.1f%%, analysis %.1f%% (threshold %.1f%%)",
            price_rate * 100, analysis_rate * 100, alert_threshold * 100,
        )
    return {
        "total_evaluations": total,
        "price_data_unavailable_count": price_missing,
        "analysis_unavailable_count": analysis_missing,
        "price_data_availability_rate": price_rate,
        "analysis_availability_rate": analysis_rate,
        "alert_triggered": alert,
    }


def summarize_decisions(entries: Sequence[DecisionLogEntry]) -> Dict[str, Any]:
    df = decisions_to_frame(entries)
    enter_count = int((df["decision"] == "enter").sum())
    return {
        "total": len(df),
        "enter_count": enter_count,
        "skip_count": len(df) - enter_count,
        "shadow_count": int(df["shadow_mode"].astype(bool).sum()),
        "mean_composite_score": float(df["composite_score"].mean()) if len(df) else 0.0,
        "pass_stats": compute_pass_stats(entries),
        "gate_frequency": compute_gate_frequency(entries),
        "neutral_direction": compute_neutral_direction_rate(entries),
        "data_availability": compute_data_availability(entries),
    }


__all__ = [
    "compute_data_availability",
    "compute_gate_frequency",
    "compute_neutral_direction_rate",
    "compute_pass_stats",
    "decisions_to_frame",
    "gate_category",
    "summarize_decisions",
]
