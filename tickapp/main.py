"""Main application entry point."""

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path

# Configure logging FIRST, before any other imports
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
)

# Reduce noise from third-party libraries (must be set before importing them)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("asyncio").setLevel(logging.WARNING)
logging.getLogger("picows").setLevel(logging.WARNING)
logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

# Try to use uvloop for better performance (Unix only)
try:
    import uvloop
    uvloop.install()
    _UVLOOP_ENABLED = True
except ImportError:
    _UVLOOP_ENABLED = False

from tickapp.api import ConnectionManager, router, websocket_endpoint
from tickapp.clients import ConnectionPool, PoolError
from tickapp.config import get_settings
from tickapp.services import ExecutionService, TickIngestionService
from tickapp.storage import cache, create_store
from tickapp.trading_config import load_trading_config
from tickcore.analyzers import create_analyzer
from tickcore.bus import SignalBus
from tickcore.models import ExecutionResult, TradeStatus
from tickcore.scheduler import AsyncioScheduler
from tickcore.staking import StakeManager

VERSION = "0.1.0"
STATUS_BROADCAST_INTERVAL = 10.0

logger = logging.getLogger(__name__)


async def sync_balance(pool: ConnectionPool, stake_manager: StakeManager) -> None:
    """Read the account balance upstream. Needs an authorized connection."""
    try:
        response = await pool.send_request({"balance": 1})
        balance = float(response["balance"]["balance"])
    except (PoolError, KeyError, TypeError, ValueError) as e:
        logger.warning(f"Balance sync failed, keeping stored balance: {e}")
        return
    await stake_manager.set_current_balance(balance)
    logger.info(f"Account balance synced: {balance:.2f}")


def make_performance_feedback(analyzers):
    """Execution subscriber feeding settled outcomes back to the heuristic analyzer."""
    heuristic = next((a for a in analyzers if a.name == "heuristic"), None)

    def on_result(result: ExecutionResult) -> None:
        if heuristic is None or result.trade is None or result.signal is None:
            return
        if not result.trade.is_settled or result.signal.strategy_source != heuristic.source:
            return
        heuristic.update_performance(result.trade.market, result.trade.status == TradeStatus.WON)

    return on_result


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    settings = get_settings()
    logging.getLogger().setLevel(settings.log_level.upper())

    logger.info("Starting tick signal service...")
    logger.info(f"Event loop: {'uvloop' if _UVLOOP_ENABLED else 'asyncio'}")

    scheduler = AsyncioScheduler()
    trading_config = load_trading_config(
        Path(settings.trading_config_path) if settings.trading_config_path else None
    )

    # Redis is optional: without it stake state lives in memory only
    try:
        await asyncio.wait_for(cache.init_cache(), timeout=10)
    except asyncio.TimeoutError:
        logger.warning("Redis cache initialization timed out - running without persistence")

    stake_manager = StakeManager(
        store=create_store(),
        clock=scheduler.now,
        history_limit=settings.trade_history_limit,
        settings=trading_config.stake,
    )
    await stake_manager.load()

    pool = ConnectionPool(
        scheduler,
        app_ids=settings.deriv_app_ids,
        url=settings.deriv_ws_url,
        request_timeout=settings.request_timeout,
        ping_interval=settings.ping_interval,
        reconnect_base_delay=settings.reconnect_base_delay,
        max_reconnect_attempts=settings.max_reconnect_attempts,
        api_token=settings.deriv_api_token,
    )

    analyzers = [
        create_analyzer(entry.name, scheduler=scheduler, **entry.to_kwargs())
        for entry in trading_config.get_enabled_analyzers()
    ]
    bus = SignalBus()
    for analyzer in analyzers:
        bus.attach(analyzer)

    execution = ExecutionService(
        pool,
        stake_manager,
        scheduler,
        settings=trading_config.auto_trader,
        queue_interval=settings.queue_interval,
        monitor_interval=settings.monitor_interval,
        currency=settings.currency,
        history_limit=settings.trade_history_limit,
    )
    ingestion = TickIngestionService(pool, analyzers)

    ws_manager = ConnectionManager()
    bus.subscribe_to_signals(ws_manager.send_signals)
    bus.subscribe_to_signals(execution.queue_signals)
    execution.subscribe_to_execution_results(ws_manager.send_execution)
    execution.subscribe_to_execution_results(make_performance_feedback(analyzers))

    async def broadcast_status():
        await ws_manager.send_status({
            "pool": pool.get_overall_status().value,
            "connections": [s.model_dump(mode="json") for s in pool.get_connection_statuses()],
        })

    app.state.scheduler = scheduler
    app.state.pool = pool
    app.state.analyzers = analyzers
    app.state.bus = bus
    app.state.stake_manager = stake_manager
    app.state.execution = execution
    app.state.ingestion = ingestion
    app.state.ws_manager = ws_manager

    try:
        await pool.start()
        ingestion.start()
        execution.start()
        scheduler.every(STATUS_BROADCAST_INTERVAL, broadcast_status)
        if settings.deriv_api_token:
            await sync_balance(pool, stake_manager)
        logger.info(
            f"Started: {len(analyzers)} analyzers on {len(ingestion.markets)} markets, "
            f"pool {pool.get_overall_status().value}"
        )
    except Exception as e:
        logger.error(f"Startup failed: {e}")
        execution.stop()
        ingestion.stop()
        await pool.stop()
        scheduler.close()
        await cache.close_cache()
        raise

    yield

    # Shutdown
    logger.info("Shutting down...")
    execution.stop()
    ingestion.stop()
    bus.detach_all()
    await pool.stop()
    scheduler.close()
    await stake_manager.save()
    await cache.close_cache()
    logger.info("Shutdown complete")


# Create FastAPI app with orjson for faster JSON serialization
app = FastAPI(
    title="Tick Signal Service",
    description="Digit-tick signal generation and martingale trade execution",
    version=VERSION,
    lifespan=lifespan,
    default_response_class=ORJSONResponse,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, restrict this
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router, prefix="/api")
app.websocket("/ws")(websocket_endpoint)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Tick Signal Service",
        "version": VERSION,
        "docs": "/docs",
        "event_loop": "uvloop" if _UVLOOP_ENABLED else "asyncio",
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


def main():
    """Run the application."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "tickapp.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    main()
