"""
Decision log assembly and append-only audit persistence.

One DecisionLogEntry is built per evaluation. Entries are immutable;
a failed append is retried by appending the same entry again, never by
rewriting what is already stored. When every attempt fails the verdict
is still returned to the caller inside AuditPersistenceError.

Stores:
  InMemoryAuditStore  bounded ring of the most recent entries
  JsonlAuditStore     one JSON document per line, flushed and fsynced
"""

from __future__ import annotations

import json
import logging
import os
import threading
import time
from collections import deque
from pathlib import Path
from typing import Any, Deque, Dict, List, Optional, Protocol, Union

from .errors import AuditPersistenceError
from .governance_models import (
    DecisionLogEntry,
    DirectionalBias,
    DirectionalBiasResult,
    FinalAction,
    FinalDecision,
    GateID,
    GovernanceDecision,
    MarketContextSnapshot,
    Timeframe,
)
from .symbols import to_canonical_symbol

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 1000
FLAT_BIAS_REASON = "directional bias flat"


class AuditStore(Protocol):
    def append(self, entry: DecisionLogEntry) -> None:
        ...

    def entries(self, symbol: Optional[str] = None, limit: Optional[int] = None) -> List[DecisionLogEntry]:
        ...


def _filter_entries(
    entries: List[DecisionLogEntry],
    symbol: Optional[str],
    limit: Optional[int],
) -> List[DecisionLogEntry]:
    if symbol:
        key = to_canonical_symbol(symbol)
        entries = [e for e in entries if e.symbol == key]
    if limit is not None:
        limit = max(0, int(limit))
        entries = entries[-limit:] if limit else []
    return entries


class InMemoryAuditStore:
    """Keeps the most recent ``max_entries`` entries, oldest first."""

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES):
        self._entries: Deque[DecisionLogEntry] = deque(maxlen=max(1, int(max_entries)))
        self._lock = threading.Lock()

    def append(self, entry: DecisionLogEntry) -> None:
        with self._lock:
            self._entries.append(entry)

    def entries(self, symbol: Optional[str] = None, limit: Optional[int] = None) -> List[DecisionLogEntry]:
        with self._lock:
            snapshot = list(self._entries)
        return _filter_entries(snapshot, symbol, limit)

    def clear(self):
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class JsonlAuditStore:
    """
    Append-only JSON-lines audit file.

    Each append writes one complete line, then flushes and fsyncs before
    returning, so an entry is either durable or the append raised.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def append(self, entry: DecisionLogEntry) -> None:
        line = entry.to_json() + "\n"
        with self._lock:
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line)
                f.flush()
                os.fsync(f.fileno())

    def read_all(self) -> List[DecisionLogEntry]:
        if not self.path.exists():
            return []
        out: List[DecisionLogEntry] = []
        with open(self.path, encoding="utf-8") as f:
            for lineno, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    out.append(DecisionLogEntry.from_dict(json.loads(line)))
                except (ValueError, KeyError, TypeError) as exc:
                    logger.warning("Skipping malformed audit line %s:%d: %s", self.path, lineno, exc)
        return out

    def entries(self, symbol: Optional[str] = None, limit: Optional[int] = None) -> List[DecisionLogEntry]:
        return _filter_entries(self.read_all(), symbol, limit)


def _ordered_gates(governance: GovernanceDecision) -> List[GateID]:
    # hard blocks first, then GateID order
    return sorted(governance.gates_triggered, key=lambda g: (not g.is_hard_block, g.number))


def _penalty_suffix(ordered: List[GateID]) -> str:
    if not ordered:
        return ""
    return "; penalties: " + ", ".join(g.value for g in ordered)


def resolve_final_decision(
    governance: GovernanceDecision,
    quantlabs: Optional[DirectionalBiasResult],
) -> FinalDecision:
    """
    enter only when governance approved and, if a directional bias was
    resolved, it points long or short. Every reason names the gates that
    fired, including soft gates a custom threshold let through.
    """
    ordered = _ordered_gates(governance)
    if not governance.approved:
        if ordered:
            reason = "governance rejected: " + ", ".join(g.value for g in ordered)
        else:
            reason = f"governance rejected: composite {governance.composite_score:.3f} below threshold"
        return FinalDecision(decision=FinalAction.SKIP, reason=reason)

    if quantlabs is not None:
        if quantlabs.directional_bias is DirectionalBias.FLAT:
            return FinalDecision(decision=FinalAction.SKIP, reason=FLAT_BIAS_REASON + _penalty_suffix(ordered))
        tf = quantlabs.direction_timeframe_used.value if quantlabs.direction_timeframe_used else "?"
        return FinalDecision(
            decision=FinalAction.ENTER,
            reason=(
                f"approved {quantlabs.directional_bias.value} via {tf} "
                f"(confidence {quantlabs.directional_confidence:.2f}, "
                f"composite {governance.composite_score:.3f})"
                + _penalty_suffix(ordered)
            ),
        )

    if ordered:
        return FinalDecision(
            decision=FinalAction.ENTER,
            reason=(
                "approved with penalties: " + ", ".join(g.value for g in ordered)
                + f" (composite {governance.composite_score:.3f})"
            ),
        )
    return FinalDecision(
        decision=FinalAction.ENTER,
        reason=f"approved (composite {governance.composite_score:.3f})",
    )


class DecisionLogger:
    def __init__(
        self,
        store: Optional[AuditStore] = None,
        retry_attempts: int = 3,
        retry_delay_s: float = 0.0,
    ):
        self.store: AuditStore = store if store is not None else InMemoryAuditStore()
        self.retry_attempts = max(1, int(retry_attempts))
        self.retry_delay_s = max(0.0, float(retry_delay_s))

    def build_entry(
        self,
        symbol: str,
        timeframe: Any,
        snapshot: MarketContextSnapshot,
        governance: GovernanceDecision,
        quantlabs: Optional[DirectionalBiasResult],
        shadow_mode: bool,
        timestamp: Optional[int] = None,
    ) -> DecisionLogEntry:
        return DecisionLogEntry(
            timestamp=int(timestamp if timestamp is not None else time.time() * 1000),
            symbol=to_canonical_symbol(symbol),
            timeframe=Timeframe.parse(timeframe),
            shadow_mode=bool(shadow_mode),
            governance=governance,
            quantlabs=quantlabs,
            final_decision=resolve_final_decision(governance, quantlabs),
            market_context_snapshot=snapshot,
        )

    def record(self, entry: DecisionLogEntry) -> DecisionLogEntry:
        """Append ``entry`` to the store; raises AuditPersistenceError when every attempt fails."""
        last_exc: Optional[BaseException] = None
        for attempt in range(1, self.retry_attempts + 1):
            try:
                self.store.append(entry)
            except Exception as exc:
                last_exc = exc
                logger.warning(
                    "Audit append attempt %d/%d failed for %s: %s",
                    attempt, self.retry_attempts, entry.entry_id, exc,
                )
                if attempt < self.retry_attempts and self.retry_delay_s:
                    time.sleep(self.retry_delay_s)
                continue
            self._log_summary(entry)
            return entry

        logger.error(
            "Audit append exhausted %d attempt(s) for %s %s (%s)",
            self.retry_attempts, entry.symbol, entry.timeframe.value, entry.final_decision.decision.value,
        )
        raise AuditPersistenceError(entry, self.retry_attempts, last_exc)

    @staticmethod
    def _log_summary(entry: DecisionLogEntry):
        gov = entry.governance
        logger.info(
            "[GOV-LOG] %s | %s → %s | composite=%.3f | gates=[%s] | shadow=%s",
            entry.symbol,
            gov.governance_decision.value,
            entry.final_decision.decision.value,
            gov.composite_score,
            ", ".join(g.value for g in gov.gates_triggered),
            entry.shadow_mode,
        )


class ShadowModeGuard:
    """
    Execution-side check: an entry produced in shadow mode must never
    reach an order path. Blocked attempts are counted and logged.
    """

    def __init__(self):
        self._violations = 0
        self._checked = 0
        self._lock = threading.Lock()

    def allow_execution(self, entry: DecisionLogEntry) -> bool:
        with self._lock:
            self._checked += 1
            if entry.shadow_mode:
                self._violations += 1
                blocked = True
            else:
                blocked = False
        if blocked:
            logger.warning(
                "Shadow-mode entry %s (%s) reached an execution path; blocked",
                entry.entry_id, entry.symbol,
            )
            return False
        return entry.entered

    def integrity(self) -> Dict[str, Any]:
        return {
            "shadow_violations": self._violations,
            "checked": self._checked,
            "verified": self._violations == 0,
        }


__all__ = [
    "AuditStore",
    "DecisionLogger",
    "FLAT_BIAS_REASON",
    "InMemoryAuditStore",
    "JsonlAuditStore",
    "ShadowModeGuard",
    "resolve_final_decision",
]
