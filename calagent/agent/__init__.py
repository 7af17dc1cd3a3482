"""
Calendar/Task intent routing core
"""

from .dispatcher import OperationDispatcher
from .intent_router import IntentRouter
from .registry import SchemaRegistry, default_registry
from .schemas import RoutingDecision

__all__ = [
    "IntentRouter",
    "OperationDispatcher",
    "RoutingDecision",
    "SchemaRegistry",
    "default_registry",
]
