"""
Storage collaborator interface.

The engine only needs three things from storage: turning a residual
predicate into a filter it can evaluate per row, running a filter, and
loading one record by key for strict re-evaluation.
"""

from abc import ABC, abstractmethod
from typing import Any, List, Mapping, Optional

from ..errors import UncompilableFilterError
from ..expr.expression import (
    ActionIs,
    ActionTypeIs,
    ActorRef,
    Calculation,
    Changing,
    Predicate,
    Selecting,
    TenantRef,
    Unresolvable,
    walk,
)


Record = Mapping[str, Any]

_NOT_FILTERABLE = (Calculation, Unresolvable)
_STATIC_NODES = (ActorRef, TenantRef, ActionTypeIs, ActionIs, Selecting, Changing)


class DataLayer(ABC):
    """
    Base class for storage collaborators.

    Filters exchanged with the engine are residual predicates, so the engine
    can combine fragments with and/or before handing them back to
    ``run_query``.
    """

    def compile_filter(self, expression: Predicate) -> Predicate:
        """
        Check that ``expression`` can run as a storage filter.

        Raises:
            UncompilableFilterError: if the expression needs data that only
                exists after the record is materialized.
        """
        for node in walk(expression):
            if isinstance(node, _NOT_FILTERABLE):
                raise UncompilableFilterError(
                    f"{node} cannot be evaluated by {type(self).__name__}", expression
                )
            if isinstance(node, _STATIC_NODES):
                raise UncompilableFilterError(
                    f"Static fact {node} left in a filter expression", expression
                )
        return expression

    @abstractmethod
    async def run_query(self, entity: str, filter: Optional[Predicate] = None) -> List[Record]:
        """Return every record of ``entity`` matching ``filter``."""
        pass

    @abstractmethod
    async def get(self, entity: str, key: Any) -> Record:
        """
        Load one record by primary key.

        Raises:
            RecordNotFoundError: if no record has that key.
        """
        pass


class ExpressionCompiler(DataLayer):
    """Filter compiler used when an authorizer has no data layer attached."""

    async def run_query(self, entity: str, filter: Optional[Predicate] = None) -> List[Record]:
        raise NotImplementedError("ExpressionCompiler only compiles filters")

    async def get(self, entity: str, key: Any) -> Record:
        raise NotImplementedError("ExpressionCompiler only compiles filters")
