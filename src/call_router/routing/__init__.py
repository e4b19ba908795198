"""Routing configuration access and routing decisions"""

from .business_hours import is_open
from .config_reader import (
    CachedRoutingConfigReader,
    InMemoryRoutingConfigReader,
    RoutingConfigReader,
)
from .engine import RoutingDecisionEngine, RoutingMessages

__all__ = [
    "is_open",
    "CachedRoutingConfigReader",
    "InMemoryRoutingConfigReader",
    "RoutingConfigReader",
    "RoutingDecisionEngine",
    "RoutingMessages",
]
