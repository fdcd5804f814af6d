"""
Core module initialization
"""

from .config import EngineConfig
from .types import (
    Action,
    ActionType,
    Actor,
    EvaluationContext,
    FactTruthValue,
)

__all__ = [
    "EngineConfig",
    "Action",
    "ActionType",
    "Actor",
    "EvaluationContext",
    "FactTruthValue",
]
