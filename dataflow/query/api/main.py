"""
Chart API

FastAPI service used by chart renderers and interval controls.

HTTP Endpoints:
- GET  /                                - Health check
- GET  /health                          - Detailed health status
- GET  /intervals                       - Supported intervals
- GET  /symbols                         - Charted symbols and their state
- GET  /symbols/{symbol}/bars           - Current bar snapshot
- POST /symbols/{symbol}/interval       - Switch the symbol's interval
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional, Union

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from engine.runtime.coordinator import SymbolCoordinator
from engine.runtime.service import ChartRuntime
from schemas.market_data import INTERVALS, Interval

logger = logging.getLogger(__name__)


# Request / response models (Pydantic)
class BarResponse(BaseModel):
    """Single bar"""
    time: int  # bucket start, epoch seconds
    open: float
    high: float
    low: float
    close: float


class BarsResponse(BaseModel):
    """Snapshot of a symbol's bars: finalized bars then the open bar"""
    symbol: str
    interval: str
    state: str
    awaiting_history: bool
    count: int
    bars: list[BarResponse]


class IntervalRequest(BaseModel):
    """Interval label ("5m") or length in seconds (300)"""
    interval: Union[str, int]


class IntervalResponse(BaseModel):
    symbol: str
    interval: str
    seconds: int
    generation: int


def _get_coordinator(runtime: ChartRuntime, symbol: str) -> SymbolCoordinator:
    coordinator = runtime.get(symbol.upper())
    if coordinator is None:
        raise HTTPException(status_code=404, detail=f"Unknown symbol: {symbol}")
    return coordinator


def create_app(runtime: ChartRuntime) -> FastAPI:
    """
    Build the chart API around a runtime.

    The app's lifespan starts and stops the runtime.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting Chart API...")
        await runtime.start()
        yield
        await runtime.stop()
        logger.info("Chart API shutdown complete")

    app = FastAPI(
        title="Live Bars - Chart API",
        description="Live OHLC bars aggregated from exchange ticks",
        version="1.0.0",
        lifespan=lifespan,
    )

    @app.get("/")
    async def root():
        """Health check endpoint"""
        return {
            "status": "running",
            "service": "chart-api",
            "timestamp": datetime.now().isoformat(),
        }

    @app.get("/health")
    async def health():
        """Detailed health status"""
        return {
            "status": "healthy",
            "service": "chart-api",
            "nats_connected": runtime.is_connected,
            "symbols": {
                symbol: coordinator.get_metrics()
                for symbol, coordinator in runtime.coordinators.items()
            },
            "timestamp": datetime.now().isoformat(),
        }

    @app.get("/intervals")
    async def intervals():
        return [{"label": i.label, "seconds": i.seconds} for i in INTERVALS.values()]

    @app.get("/symbols")
    async def symbols():
        return [
            {
                "symbol": symbol,
                "interval": coordinator.interval.label,
                "state": coordinator.aggregator.state.value,
            }
            for symbol, coordinator in runtime.coordinators.items()
        ]

    @app.get("/symbols/{symbol}/bars")
    async def get_bars(symbol: str) -> BarsResponse:
        """
        Current bars for a symbol.

        Returns an empty list while the symbol is waiting for its historical
        batch after an interval change.
        """
        coordinator = _get_coordinator(runtime, symbol)
        bars = coordinator.snapshot()
        return BarsResponse(
            symbol=coordinator.symbol,
            interval=coordinator.interval.label,
            state=coordinator.aggregator.state.value,
            awaiting_history=coordinator.awaiting_history,
            count=len(bars),
            bars=[BarResponse(**bar.to_dict()) for bar in bars],
        )

    @app.post("/symbols/{symbol}/interval")
    async def set_interval(symbol: str, request: IntervalRequest) -> IntervalResponse:
        """
        Switch a symbol to another interval.

        Raises:
            400: Unknown interval
            404: Unknown symbol
        """
        coordinator = _get_coordinator(runtime, symbol)
        try:
            interval = Interval.parse(request.interval)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

        await coordinator.change_interval(interval)
        logger.info(f"Interval for {coordinator.symbol} set to {interval.label}")

        return IntervalResponse(
            symbol=coordinator.symbol,
            interval=interval.label,
            seconds=interval.seconds,
            generation=coordinator.generation,
        )

    return app
