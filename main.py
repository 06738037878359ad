"""
Replay historical market snapshots through the governance engine.

Every row is evaluated in shadow mode; trade history for a row only
includes trades at or before that row's timestamp.
"""
import logging
import pandas as pd
from pathlib import Path
from typing import Optional

from signal_governance.analytics import compute_gate_frequency, compute_pass_stats
from signal_governance.engine import GovernanceEngine
from signal_governance.governance_config import GovernanceConfig
from signal_governance.governance_models import MarketContextSnapshot, TradeRecord
from signal_governance.trade_history import InMemoryTradeHistoryStore

logger = logging.getLogger(__name__)

# Config
DATA_DIR = Path("data")
SNAPSHOT_FILE = "snapshots.csv"
TRADES_FILE = "trades.csv"
OUTPUT_FILE = "decisions.csv"

# Columns describing the row rather than the market snapshot
ROW_COLUMNS = {"timestamp", "symbol", "timeframe"}


def _clean(row: dict) -> dict:
    return {k: v for k, v in row.items() if not (isinstance(v, float) and pd.isna(v))}


def load_trades(trades_df: Optional[pd.DataFrame]) -> InMemoryTradeHistoryStore:
    store = InMemoryTradeHistoryStore()
    if trades_df is None or trades_df.empty:
        return store
    for row in trades_df.to_dict(orient="records"):
        store.add(TradeRecord.from_dict(_clean(row)))
    return store


def replay(
    snapshots_df: pd.DataFrame,
    trades_df: Optional[pd.DataFrame] = None,
    config: Optional[GovernanceConfig] = None,
):
    """Evaluate every snapshot row; returns (results frame, entries)."""
    config = config or GovernanceConfig()
    engine = GovernanceEngine(config)
    store = load_trades(trades_df)

    df = snapshots_df.sort_values("timestamp", kind="stable")
    entries = []
    rows = []
    for row in df.to_dict(orient="records"):
        row = _clean(row)
        ts = int(row["timestamp"])
        symbol = str(row["symbol"])
        snapshot = MarketContextSnapshot.from_dict(
            {k: v for k, v in row.items() if k not in ROW_COLUMNS}
        )
        history = [
            t for t in store.get_recent_trades(symbol, len(store)) if t.timestamp <= ts
        ][:config.history_limit]

        entry = engine.evaluate(
            snapshot, history, symbol, row.get("timeframe", "1h"),
            shadow_mode=True, now_ms=ts,
        )
        entries.append(entry)
        rows.append({
            "timestamp": ts,
            "symbol": entry.symbol,
            "timeframe": entry.timeframe.value,
            "governance_decision": entry.governance.governance_decision.value,
            "composite_score": entry.governance.composite_score,
            "gates_triggered": ",".join(g.value for g in entry.governance.gates_triggered),
            "decision": entry.final_decision.decision.value,
            "reason": entry.final_decision.reason,
        })
    return pd.DataFrame(rows), entries


def main():
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    print("=" * 60)
    print("SIGNAL GOVERNANCE REPLAY (shadow mode)")
    print("=" * 60)

    # 1. Load Data
    print("\n1. Loading Data...")
    snapshots = pd.read_csv(DATA_DIR / SNAPSHOT_FILE)
    trades_path = DATA_DIR / TRADES_FILE
    trades = pd.read_csv(trades_path) if trades_path.exists() else None
    print(f"Loaded {len(snapshots)} snapshots and {0 if trades is None else len(trades)} trades.")

    # 2. Replay
    print("\n2. Evaluating...")
    results, entries = replay(snapshots, trades)

    # 3. Summary
    print("\n3. Summary")
    stats = compute_pass_stats(entries)
    print(f"Evaluations: {stats['total_evaluations']}  Approval rate: {stats['approval_rate'] * 100:.1f}%")
    for session, s in stats["by_session"].items():
        if s["total"]:
            print(f"  {session:<12} {s['approved']}/{s['total']} approved")
    for gate in compute_gate_frequency(entries, top_n=5):
        print(f"  {gate['gate_id']:<28} {gate['trigger_count']} ({gate['trigger_rate'] * 100:.1f}%)")

    # Save
    output_path = Path(OUTPUT_FILE)
    results.to_csv(output_path, index=False)
    print(f"\nResults saved to {output_path.absolute()}")


if __name__ == "__main__":
    main()
