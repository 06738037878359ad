"""
FastAPI Server for trade-signal governance.
Evaluates signals against the governance gates and serves the audit log.
"""
import logging
import os

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from typing import Optional, List, Dict, Any
import uvicorn

from signal_governance.analytics import gate_category, summarize_decisions
from signal_governance.api_models import (
    EvaluateRequest,
    EvaluateResponse,
    GateInfo,
    TradeIngestResponse,
    TradeInput,
)
from signal_governance.decision_logger import DecisionLogger, InMemoryAuditStore, JsonlAuditStore
from signal_governance.engine import GovernanceEngine, GovernanceService
from signal_governance.errors import AuditPersistenceError, UnrecognizedSymbolFormat
from signal_governance.governance_config import GovernanceConfig
from signal_governance.governance_models import GATE_MESSAGES, GateID, TradeRecord
from signal_governance.symbols import to_canonical_symbol
from signal_governance.trade_history import InMemoryTradeHistoryStore

logger = logging.getLogger(__name__)


# FastAPI app
app = FastAPI(
    title="Signal Governance API",
    description="Gate-based approval of automated trade signals with an append-only audit log",
    version="1.0.0"
)


def _parse_origins(raw: str) -> List[str]:
    origins = list(dict.fromkeys(o.strip() for o in raw.split(",") if o.strip()))
    return ["*"] if "*" in origins else origins


_cors_allow_origins = _parse_origins(
    os.getenv("GOVERNANCE_CORS_ALLOW_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173")
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_allow_origins,
    allow_credentials=("*" not in _cors_allow_origins),
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

# Routes that change engine state or the audit trail
_INTERNAL_API_TOKEN = (os.getenv("GOVERNANCE_INTERNAL_API_TOKEN") or "").strip()
_INTERNAL_PROTECTED_PREFIXES = (
    "/api/governance/evaluate",
    "/api/governance/trades",
)


def _forbidden(request: Request) -> JSONResponse:
    """403 with CORS headers; responses from this middleware skip CORSMiddleware."""
    response = JSONResponse(
        status_code=403,
        content={"detail": "Forbidden: internal API token required."},
    )
    origin = (request.headers.get("origin") or "").strip()
    if "*" in _cors_allow_origins:
        response.headers["access-control-allow-origin"] = "*"
    elif origin and origin in _cors_allow_origins:
        response.headers["access-control-allow-origin"] = origin
        response.headers["access-control-allow-credentials"] = "true"
        response.headers["vary"] = "Origin"
    return response


@app.middleware("http")
async def _internal_api_token_guard(request: Request, call_next):
    if (
        _INTERNAL_API_TOKEN
        and request.method != "OPTIONS"
        and request.url.path.startswith(_INTERNAL_PROTECTED_PREFIXES)
        and (request.headers.get("x-internal-token") or "").strip() != _INTERNAL_API_TOKEN
    ):
        return _forbidden(request)
    return await call_next(request)


# Governance wiring
config = GovernanceConfig()
_audit_path = str(os.getenv("GOVERNANCE_AUDIT_PATH") or "").strip()
audit_store = JsonlAuditStore(_audit_path) if _audit_path else InMemoryAuditStore(config.audit_max_entries)
history_store = InMemoryTradeHistoryStore()
service = GovernanceService(
    engine=GovernanceEngine(config),
    history_store=history_store,
    decision_logger=DecisionLogger(audit_store, retry_attempts=config.audit_retry_attempts),
)


# ============ API Endpoints ============

@app.get("/")
async def root():
    return {"message": "Signal Governance API", "status": "running"}


@app.get("/api/governance/gates", response_model=List[GateInfo])
async def list_gates():
    return [
        GateInfo(
            id=gate.value,
            number=gate.number,
            category=gate_category(gate),
            hard_block=gate.is_hard_block,
            message_template=GATE_MESSAGES[gate],
        )
        for gate in GateID
    ]


@app.post("/api/governance/trades", response_model=TradeIngestResponse)
async def ingest_trades(trades: List[TradeInput]):
    """Feed closed trades into the history used when /evaluate carries none."""
    try:
        records = [TradeRecord.from_dict(t.to_record_dict()) for t in trades]
        for record in records:
            to_canonical_symbol(record.pair)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    for record in records:
        history_store.add(record)
    logger.info("Ingested %d trade(s) into history", len(records))
    return TradeIngestResponse(accepted=len(records), symbols=history_store.symbols())


@app.post("/api/governance/evaluate", response_model=EvaluateResponse)
async def evaluate_signal(request: EvaluateRequest):
    trades = [t.to_record_dict() for t in request.trades]
    try:
        entry = service.evaluate(
            request.snapshot,
            request.symbol,
            request.timeframe,
            request.shadow_mode,
            analyses=request.analyses,
            now_ms=request.now_ms,
            trade_history=trades or None,
        )
    except AuditPersistenceError as exc:
        # The verdict stands; report that the audit append failed.
        return EvaluateResponse(
            entry=exc.entry.to_dict(),
            persisted=False,
            persistence_error=str(exc.cause or exc),
        )
    except ValueError as exc:
        # UnrecognizedSymbolFormat, InvalidSnapshotError, bad timeframe/direction
        raise HTTPException(status_code=400, detail=str(exc))
    return EvaluateResponse(entry=entry.to_dict(), persisted=True)


@app.get("/api/governance/logs")
async def get_logs(symbol: Optional[str] = None, limit: int = 100) -> List[Dict[str, Any]]:
    try:
        entries = audit_store.entries(symbol=symbol, limit=limit)
    except UnrecognizedSymbolFormat as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return [entry.to_dict() for entry in entries]


@app.get("/api/governance/analytics")
async def get_analytics():
    return summarize_decisions(audit_store.entries())


# ============ Main ============

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    print("=" * 60)
    print("SIGNAL GOVERNANCE API SERVER")
    print("=" * 60)
    print("\nEndpoints:")
    print("  GET  /api/governance/gates     - Gate ID/message table")
    print("  POST /api/governance/trades    - Ingest trade history")
    print("  POST /api/governance/evaluate  - Evaluate a signal")
    print("  GET  /api/governance/logs      - Decision audit log")
    print("  GET  /api/governance/analytics - Decision analytics")
    print("=" * 60)

    uvicorn.run(app, host="0.0.0.0", port=8001)
