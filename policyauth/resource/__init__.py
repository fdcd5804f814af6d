"""
Package resource describes the protected entities policies are compiled against.
"""

from .types import Cardinality, EntityDefinition, Relationship, default_actions

__all__ = [
    'Cardinality',
    'EntityDefinition',
    'Relationship',
    'default_actions',
]
