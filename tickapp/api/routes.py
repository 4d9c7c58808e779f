"""REST API routes."""

import logging
from typing import Optional

from fastapi import APIRouter, Body, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, ValidationError

from tickapp.storage import cache
from tickcore.models import (
    AutoTraderSettings,
    ConnectionStatus,
    ExecutionResult,
    RiskMode,
    SessionStats,
    Signal,
    StakeSettings,
    TradeRecord,
)

logger = logging.getLogger(__name__)

router = APIRouter()


# Response models
class SystemStatus(BaseModel):
    """System status response."""

    status: str
    version: str
    pool: str
    connections: list[ConnectionStatus]
    markets: list[str]
    analyzers: list[str]
    active_signals: int
    open_trades: int
    auto_trading: bool
    cache: dict


class StatsResponse(BaseModel):
    """Session statistics, execution counters and the next stake."""

    session: SessionStats
    execution: dict
    performance: dict
    current_balance: float
    martingale_step: int
    next_stake: float
    should_stop: bool
    stop_reason: Optional[str] = None


# Partial-update request models: only fields sent are applied
class StakeSettingsUpdate(BaseModel):
    base_stake: Optional[float] = None
    martingale_multiplier: Optional[float] = None
    max_martingale_steps: Optional[int] = None
    take_profit_limit: Optional[float] = None
    stop_loss_limit: Optional[float] = None
    auto_stake_adjustment: Optional[bool] = None


class AutoTraderSettingsUpdate(BaseModel):
    enabled: Optional[bool] = None
    max_concurrent_trades: Optional[int] = None
    risk_mode: Optional[RiskMode] = None
    auto_loop: Optional[bool] = None
    loop_count: Optional[int] = None
    delay_between_trades: Optional[float] = None


class BalanceUpdate(BaseModel):
    balance: float


def _changes(update: BaseModel) -> dict:
    return update.model_dump(exclude_unset=True, exclude_none=True)


@router.get("/status", response_model=SystemStatus)
async def get_status(request: Request):
    """Get system status."""
    state = request.app.state
    now = state.scheduler.now()

    return SystemStatus(
        status="running",
        version=request.app.version,
        pool=state.pool.get_overall_status().value,
        connections=state.pool.get_connection_statuses(),
        markets=state.ingestion.markets,
        analyzers=[a.name for a in state.analyzers],
        active_signals=len(state.bus.get_recent_signals(now, active_only=True)),
        open_trades=len(state.execution.get_open_trades()),
        auto_trading=state.execution.get_auto_trader_settings().enabled,
        cache=await cache.get_info(),
    )


@router.post("/connections/{app_id}/restart", response_model=list[ConnectionStatus])
async def restart_connection(request: Request, app_id: str):
    """Reconnect one upstream connection, also out of the dormant state."""
    pool = request.app.state.pool
    if not await pool.restart_connection(app_id):
        raise HTTPException(status_code=404, detail="Connection not found")
    return pool.get_connection_statuses()


@router.get("/signals", response_model=list[Signal])
async def get_signals(
    request: Request,
    market: Optional[str] = Query(None, description="Filter by market"),
    active_only: bool = Query(True, description="Only unexpired ACTIVE signals"),
    limit: int = Query(100, ge=1, le=500, description="Maximum signals to return"),
):
    """Get recent signals, newest first."""
    state = request.app.state
    signals = state.bus.get_recent_signals(state.scheduler.now(), active_only=active_only)
    if market:
        signals = [s for s in signals if s.market == market]
    return signals[:limit]


@router.get("/signals/{signal_id}", response_model=Signal)
async def get_signal(request: Request, signal_id: str):
    """Get a specific signal by ID."""
    signal = request.app.state.bus.get_signal(signal_id)
    if signal is None:
        raise HTTPException(status_code=404, detail="Signal not found")
    return signal


@router.post("/signals/{signal_id}/execute", response_model=ExecutionResult)
async def execute_signal(request: Request, signal_id: str):
    """Place a trade for a signal now, bypassing the auto-trade queue."""
    signal = request.app.state.bus.get_signal(signal_id)
    if signal is None:
        raise HTTPException(status_code=404, detail="Signal not found")
    return await request.app.state.execution.execute_signal_manually(signal)


@router.get("/stats", response_model=StatsResponse)
async def get_stats(request: Request):
    """Get session statistics."""
    stake_manager = request.app.state.stake_manager
    decision = stake_manager.should_stop_trading()

    return StatsResponse(
        session=stake_manager.get_session_stats(),
        execution=request.app.state.execution.get_execution_stats(),
        performance=stake_manager.get_performance_metrics(),
        current_balance=stake_manager.get_current_balance(),
        martingale_step=stake_manager.get_current_martingale_step(),
        next_stake=stake_manager.calculate_next_stake(),
        should_stop=decision.should_stop,
        stop_reason=decision.reason,
    )


@router.get("/trades", response_model=list[TradeRecord])
async def get_trades(
    request: Request,
    limit: int = Query(100, ge=1, le=1000, description="Maximum trades to return"),
):
    """Settled trade history from the stake manager, newest first."""
    history = request.app.state.stake_manager.get_trade_history()
    return list(reversed(history))[:limit]


@router.get("/trades/open", response_model=list[TradeRecord])
async def get_open_trades(request: Request):
    return request.app.state.execution.get_open_trades()


@router.post("/trades/stop")
async def stop_all_trades(request: Request):
    """Stop tracking open trades and clear the execution queue."""
    request.app.state.execution.stop_all_trades()
    return {"success": True}


@router.delete("/trades/history")
async def clear_trade_history(request: Request):
    """Clear settled trade history; open trades keep being tracked."""
    request.app.state.execution.clear_trade_history()
    await request.app.state.stake_manager.clear_trade_history()
    return {"success": True}


@router.get("/trades/export", response_class=PlainTextResponse)
async def export_trades(request: Request):
    """Export settings, session stats and trade history as JSON text."""
    return PlainTextResponse(
        request.app.state.stake_manager.export_trade_history(),
        media_type="application/json",
    )


@router.post("/trades/import")
async def import_trades(request: Request, payload: str = Body(..., media_type="text/plain")):
    """Replace session state from a previous export."""
    ok = await request.app.state.stake_manager.import_trade_history(payload)
    if not ok:
        raise HTTPException(status_code=400, detail="Invalid trade history export")
    return {"success": True}


@router.get("/settings/stake", response_model=StakeSettings)
async def get_stake_settings(request: Request):
    return request.app.state.stake_manager.get_stake_settings()


@router.patch("/settings/stake", response_model=StakeSettings)
async def update_stake_settings(request: Request, update: StakeSettingsUpdate):
    try:
        return await request.app.state.stake_manager.update_stake_settings(**_changes(update))
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False))


@router.get("/settings/auto-trader", response_model=AutoTraderSettings)
async def get_auto_trader_settings(request: Request):
    return request.app.state.execution.get_auto_trader_settings()


@router.patch("/settings/auto-trader", response_model=AutoTraderSettings)
async def update_auto_trader_settings(request: Request, update: AutoTraderSettingsUpdate):
    try:
        return request.app.state.execution.update_auto_trader_settings(**_changes(update))
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False))


@router.post("/session/reset", response_model=SessionStats)
async def reset_session(request: Request):
    stake_manager = request.app.state.stake_manager
    await stake_manager.reset_session()
    return stake_manager.get_session_stats()


@router.put("/session/balance")
async def set_balance(request: Request, update: BalanceUpdate):
    """Set the account balance used for stake scaling and the balance stop."""
    await request.app.state.stake_manager.set_current_balance(update.balance)
    return {"current_balance": update.balance}


@router.get("/metrics")
async def get_metrics(request: Request):
    """Performance metrics plus per-analyzer and ingestion counters."""
    state = request.app.state
    heuristic = next((a for a in state.analyzers if a.name == "heuristic"), None)
    return {
        "performance": state.stake_manager.get_performance_metrics(),
        "recent": state.execution.get_recent_performance(),
        "ingestion": state.ingestion.get_stats(),
        "heuristic_accuracy": (
            {m: vars(p) for m, p in heuristic.get_performance_stats().items()}
            if heuristic
            else {}
        ),
    }


@router.get("/analyzers")
async def get_analyzers(request: Request):
    """Running analyzers with their markets and history fill levels."""
    return [
        {
            "name": a.name,
            "source": a.source,
            "markets": {m: len(a.get_digit_history(m)) for m in a.markets},
            "emit_interval": a.emit_interval,
            "validity": a.validity,
            "confidence_floor": a.confidence_floor,
        }
        for a in request.app.state.analyzers
    ]
