"""
Config Module

YAML service configuration loading and validation.
"""

from .loader import (
    ApiConfig,
    ConfigLoader,
    FeedConfig,
    HistoryConfig,
    ServiceConfig,
    SymbolConfig,
)

__all__ = [
    "ApiConfig",
    "ConfigLoader",
    "FeedConfig",
    "HistoryConfig",
    "ServiceConfig",
    "SymbolConfig",
]
