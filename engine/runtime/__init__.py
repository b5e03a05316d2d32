"""
Runtime Module

Per-symbol coordinators and the runtime that wires them together.
"""

from .coordinator import SymbolCoordinator
from .service import ChartRuntime

__all__ = [
    "ChartRuntime",
    "SymbolCoordinator",
]
