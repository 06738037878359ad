"""
Pydantic API models for the governance HTTP endpoints.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class TradeInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    pair: str
    direction: str
    pnl_pips: float = Field(alias="pnlPips")
    timestamp: int  # epoch ms

    def to_record_dict(self) -> Dict[str, Any]:
        return {
            "pair": self.pair,
            "direction": self.direction,
            "pnlPips": self.pnl_pips,
            "timestamp": self.timestamp,
        }


class EvaluateRequest(BaseModel):
    """Input for one governance evaluation."""

    model_config = ConfigDict(populate_by_name=True)

    snapshot: Dict[str, Any]
    trades: List[TradeInput] = Field(default_factory=list)
    symbol: str
    timeframe: str = "1h"
    shadow_mode: bool = Field(default=False, alias="shadowMode")
    # timeframe -> {"bias": ..., "confidence": ..., "efficiency": ...}
    analyses: Optional[Dict[str, Dict[str, Any]]] = None
    now_ms: Optional[int] = Field(default=None, alias="nowMs")

    @model_validator(mode="before")
    @classmethod
    def _compat_trade_history(cls, data):
        """Accept tradeHistory as an alias of trades."""
        if isinstance(data, dict):
            if data.get("trades") is None and "tradeHistory" in data:
                data["trades"] = data.pop("tradeHistory")
        return data


class EvaluateResponse(BaseModel):
    entry: Dict[str, Any]
    persisted: bool
    persistence_error: Optional[str] = None


class GateInfo(BaseModel):
    id: str
    number: int
    category: str
    hard_block: bool
    message_template: str


class TradeIngestResponse(BaseModel):
    accepted: int
    symbols: List[str]
