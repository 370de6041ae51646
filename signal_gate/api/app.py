"""
SIGNAL GATE — FastAPI Application
/healthz, /metrics, candle ingestion, indicator state and risk endpoints.
"""
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional

import pydantic
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from signal_gate.config.settings import get_settings
from signal_gate.data.models import IndicatorSignal, MarketCandle, OpenPosition, TradeHistory
from signal_gate.engines.risk_gate import TradeRequest
from signal_gate.engines.trading_engine import TradingEngine
from signal_gate.utils.errors import SignalGateError, ValidationError
from signal_gate.utils.helpers import normalize_symbol, utc_timestamp
from signal_gate.utils.logger import get_logger, setup_logging

logger = get_logger("api")


class CandleIn(BaseModel):
    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0


class CandleBatch(BaseModel):
    candles: List[CandleIn]


class AssessRequest(BaseModel):
    symbol: str
    account_balance: float = Field(gt=0)
    signal: Optional[IndicatorSignal] = None
    current_positions: List[OpenPosition] = Field(default_factory=list)
    daily_pnl: float = 0.0
    recent_trades: List[TradeHistory] = Field(default_factory=list)
    atr_pct: Optional[float] = None


def create_app(engine: Optional[TradingEngine] = None) -> FastAPI:
    """Build the API around a caller-owned engine (one is built from settings if omitted)."""
    settings = get_settings()
    engine = engine or TradingEngine.from_settings(settings)
    app_state: Dict[str, Any] = {
        "instance_id": str(uuid.uuid4())[:8],
        "started_at": None,
        "batches_received": 0,
        "assessments": 0,
        "errors": 0,
    }

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(settings)
        app_state["started_at"] = utc_timestamp()
        logger.info("signal_gate_starting", version=settings.version,
                    instance=app_state["instance_id"])
        yield
        logger.info("signal_gate_shutting_down")
        engine.shutdown()

    app = FastAPI(
        title=settings.app_name,
        description="Indicator signals and pre-trade risk checks",
        version=settings.version,
        lifespan=lifespan,
    )
    app.state.engine = engine

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError):
        return JSONResponse(status_code=422, content=exc.to_dict())

    @app.exception_handler(SignalGateError)
    async def engine_error_handler(request: Request, exc: SignalGateError):
        app_state["errors"] += 1
        logger.error("request_failed", path=request.url.path, error=exc.message)
        return JSONResponse(status_code=500, content=exc.to_dict())

    # ─── Health & Metrics ───────────────────────────────────────

    @app.get("/healthz", tags=["System"])
    async def health_check():
        return {
            "status": "healthy",
            "instance": app_state["instance_id"],
            "uptime_since": app_state["started_at"],
            "timestamp": utc_timestamp(),
        }

    @app.get("/metrics", tags=["System"])
    async def metrics():
        return {
            "app": {
                "name": settings.app_name,
                "version": settings.version,
                "instance_id": app_state["instance_id"],
                "started_at": app_state["started_at"],
            },
            "requests": {
                "batches_received": app_state["batches_received"],
                "assessments": app_state["assessments"],
                "errors": app_state["errors"],
            },
            "hub": engine.hub.get_statistics(),
            "timestamp": utc_timestamp(),
        }

    # ─── Market data & state ────────────────────────────────────

    @app.post("/api/v1/candles/{symbol}", tags=["Signals"])
    def push_candles(symbol: str, batch: CandleBatch):
        """Merge a candle batch into the symbol buffer and return the new state."""
        try:
            candles = [MarketCandle(symbol=symbol, **c.model_dump()) for c in batch.candles]
        except pydantic.ValidationError as e:
            raise HTTPException(status_code=422, detail=e.errors()[0]["msg"])
        state = engine.hub.update_market_data(symbol, candles)
        app_state["batches_received"] += 1
        return state.to_dict()

    @app.get("/api/v1/state/{symbol}", tags=["Signals"])
    def get_state(symbol: str):
        state = engine.hub.get_state(symbol)
        if state is None:
            raise HTTPException(status_code=404, detail=f"Unknown symbol {normalize_symbol(symbol)}")
        return state.to_dict()

    # ─── Risk ───────────────────────────────────────────────────

    @app.post("/api/v1/risk/assess", tags=["Risk"])
    def assess_trade(body: AssessRequest):
        signal = body.signal
        atr_pct = body.atr_pct
        if signal is None:
            state = engine.hub.get_state(body.symbol)
            if state is None or state.combined_signal is None:
                raise HTTPException(status_code=404, detail=f"No signal available for {body.symbol}")
            signal = state.combined_signal
            if atr_pct is None:
                atr_pct = state.metadata.get("atr_pct")
        request = TradeRequest(
            symbol=body.symbol,
            signal=signal,
            account_balance=body.account_balance,
            current_positions=body.current_positions,
            daily_pnl=body.daily_pnl,
            recent_trades=body.recent_trades,
            atr_pct=atr_pct,
        )
        assessment = engine.risk_gate.assess_trade(request)
        app_state["assessments"] += 1
        return assessment.to_dict()

    @app.post("/api/v1/trades", tags=["Risk"])
    def record_trade(trade: TradeHistory):
        engine.risk_gate.record_trade(trade)
        return {"recorded": True, "symbol": normalize_symbol(trade.symbol)}

    @app.get("/api/v1/risk/stats", tags=["Risk"])
    def risk_stats(account_balance: Optional[float] = None):
        return engine.risk_gate.get_risk_statistics(account_balance).to_dict()

    return app


app = create_app()
