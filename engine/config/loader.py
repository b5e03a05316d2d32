"""
Config Loader

Loads the service configuration from YAML and validates it with pydantic.

Example file:

    symbols:
      - symbol: BTC-USD
        interval: 1m
      - symbol: ETH-USD
        interval: 15m
    history:
      base_url: https://api.exchange.coinbase.com
      timeout: 10
      retry_delay: 5
    feed:
      url: wss://ws-feed.exchange.coinbase.com
      reconnect_delay: 5
    tick_buffer_size: 1000
    api:
      host: 0.0.0.0
      port: 8000
"""

import logging
from pathlib import Path
from typing import List

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from schemas.market_data import DEFAULT_INTERVAL, Interval

logger = logging.getLogger(__name__)


class SymbolConfig(BaseModel):
    """One charted symbol and its starting interval"""
    symbol: str
    interval: str = DEFAULT_INTERVAL.label

    @field_validator("symbol")
    @classmethod
    def _product_id(cls, value: str) -> str:
        # Product ids are upper case on the exchange and in API lookups
        value = value.strip().upper()
        if not value:
            raise ValueError("symbol must not be empty")
        return value

    @field_validator("interval", mode="before")
    @classmethod
    def _known_interval(cls, value):
        return Interval.parse(value).label

    def get_interval(self) -> Interval:
        return Interval.parse(self.interval)


class HistoryConfig(BaseModel):
    """Historical candle endpoint"""
    base_url: str = "https://api.exchange.coinbase.com"
    timeout: float = Field(default=10.0, gt=0)
    retry_delay: float = Field(default=5.0, ge=0)


class FeedConfig(BaseModel):
    """Live ticker websocket"""
    url: str = "wss://ws-feed.exchange.coinbase.com"
    reconnect_delay: float = Field(default=5.0, ge=0)


class ApiConfig(BaseModel):
    """Chart API bind address"""
    host: str = "0.0.0.0"
    port: int = Field(default=8000, gt=0, lt=65536)


class ServiceConfig(BaseModel):
    """Complete service configuration"""
    symbols: List[SymbolConfig] = Field(default_factory=list)
    history: HistoryConfig = Field(default_factory=HistoryConfig)
    feed: FeedConfig = Field(default_factory=FeedConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)
    tick_buffer_size: int = Field(default=1000, gt=0)

    @field_validator("symbols")
    @classmethod
    def _unique_symbols(cls, symbols: List[SymbolConfig]) -> List[SymbolConfig]:
        seen = set()
        for entry in symbols:
            if entry.symbol in seen:
                raise ValueError(f"Duplicate symbol: {entry.symbol}")
            seen.add(entry.symbol)
        return symbols


class ConfigLoader:
    """
    Loads a ServiceConfig from a YAML file.

    Example usage:
        config = ConfigLoader(Path("config/live_bars.yaml")).load()
        for entry in config.symbols:
            print(entry.symbol, entry.get_interval())
    """

    def __init__(self, config_path: Path):
        self.config_path = Path(config_path)
        logger.info(f"Initialized ConfigLoader with config_path: {self.config_path}")

    def load(self) -> ServiceConfig:
        """
        Read and validate the configuration.

        Raises:
            ValueError: If the file is missing, is not valid YAML, or fails
                validation (unknown interval, duplicate symbol, ...)
        """
        if not self.config_path.exists():
            raise ValueError(f"Config file not found: {self.config_path}")

        try:
            with open(self.config_path) as f:
                raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Failed to parse {self.config_path}: {e}") from e

        if not isinstance(raw, dict):
            raise ValueError(f"Config root must be a mapping in {self.config_path}")

        try:
            config = ServiceConfig(**raw)
        except ValidationError as e:
            raise ValueError(f"Invalid config in {self.config_path}: {e}") from e

        if not config.symbols:
            logger.warning(f"No symbols configured in {self.config_path}")

        logger.info(
            f"Loaded config: {len(config.symbols)} symbols "
            f"({', '.join(f'{s.symbol}/{s.interval}' for s in config.symbols)})"
        )
        return config
