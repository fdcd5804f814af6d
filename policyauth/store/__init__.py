"""
Package store provides the storage collaborator interface and an in-memory
implementation for development and testing.
"""

from .types import DataLayer, ExpressionCompiler, Record
from .memory import MemoryDataLayer

__all__ = [
    'DataLayer',
    'ExpressionCompiler',
    'Record',
    'MemoryDataLayer',
]
