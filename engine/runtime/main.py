"""
Live Bars - Main Entry Point

Loads the YAML config, starts one coordinator per symbol plus the ticker
feed, and serves the chart API.
"""

import logging
import os
from pathlib import Path

import uvicorn

from dataflow.query.api.main import create_app
from engine.config.loader import ConfigLoader
from engine.runtime.service import ChartRuntime

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def main():
    """
    Main entry point.

    Environment Variables:
        CONFIG_PATH: YAML config path (default: "config/live_bars.yaml")
        HOST / PORT: Override the API bind address from the config
        NATS_SERVERS: NATS server URLs (default: "nats://localhost:4222")
        NATS_CLIENT_NAME: NATS client name (default: "live-bars")
        LOG_LEVEL: Logging level (default: "INFO")
    """
    config_path = Path(os.getenv("CONFIG_PATH", "config/live_bars.yaml"))
    config = ConfigLoader(config_path).load()

    host = os.getenv("HOST", config.api.host)
    port = int(os.getenv("PORT", str(config.api.port)))

    logger.info("=" * 60)
    logger.info("Live Bars Starting")
    logger.info("=" * 60)
    logger.info(f"Config: {config_path}")
    logger.info(f"Symbols: {[s.symbol for s in config.symbols]}")
    logger.info(f"NATS servers: {os.getenv('NATS_SERVERS', 'nats://localhost:4222')}")
    logger.info(f"Chart API on {host}:{port}")

    runtime = ChartRuntime(config)
    uvicorn.run(create_app(runtime), host=host, port=port)


if __name__ == "__main__":
    main()
