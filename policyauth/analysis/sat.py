"""
Boolean satisfiability over policy atoms, backed by the z3 solver.

Each analysis owns a SatSolver with its own z3 Context, so separate policy
sets can be analyzed from separate threads. Atomic predicates are mapped to
z3 booleans by a hashable key; formulas are built with the helper methods,
which fold boolean constants before handing anything to z3.
"""

import logging
from typing import Dict, Hashable, Iterable, Optional

from z3 import (
    And,
    Bool,
    BoolRef,
    BoolVal,
    Context,
    Not,
    Or,
    Solver,
    is_false,
    is_true,
    unknown,
    unsat,
)


logger = logging.getLogger(__name__)


class SatSolver:
    """Atom table and incremental solver for one analysis run."""

    def __init__(self):
        self.ctx = Context()
        self.true = BoolVal(True, ctx=self.ctx)
        self.false = BoolVal(False, ctx=self.ctx)
        self.calls = 0
        self._atoms: Dict[Hashable, BoolRef] = {}
        self._solver = Solver(ctx=self.ctx)

    def atom(self, key: Hashable) -> BoolRef:
        """Return the variable of ``key``, allocating it on first use."""
        var = self._atoms.get(key)
        if var is None:
            var = Bool(f"p{len(self._atoms) + 1}", self.ctx)
            self._atoms[key] = var
        return var

    @property
    def atom_count(self) -> int:
        return len(self._atoms)

    def const(self, value: bool) -> BoolRef:
        return self.true if value else self.false

    def all_of(self, terms: Iterable[BoolRef]) -> BoolRef:
        kept = []
        for term in terms:
            if is_false(term):
                return self.false
            if not is_true(term):
                kept.append(term)
        if not kept:
            return self.true
        if len(kept) == 1:
            return kept[0]
        return And(*kept)

    def any_of(self, terms: Iterable[BoolRef]) -> BoolRef:
        kept = []
        for term in terms:
            if is_true(term):
                return self.true
            if not is_false(term):
                kept.append(term)
        if not kept:
            return self.false
        if len(kept) == 1:
            return kept[0]
        return Or(*kept)

    def negate(self, term: BoolRef) -> BoolRef:
        if is_true(term):
            return self.false
        if is_false(term):
            return self.true
        return Not(term)

    def satisfiable(self, formula: BoolRef) -> bool:
        """
        Check whether ``formula`` can be true.

        An ``unknown`` answer counts as satisfiable, so nothing is ever
        reported impossible without a proof.
        """
        if is_true(formula):
            return True
        if is_false(formula):
            return False
        self.calls += 1
        self._solver.push()
        try:
            self._solver.add(formula)
            result = self._solver.check()
        finally:
            self._solver.pop()
        if result == unknown:
            logger.debug(f"Solver returned {result} for {formula}")
        return result != unsat

    def model(self, formula: BoolRef) -> Optional[Dict[str, bool]]:
        """
        Return an assignment of every allocated atom satisfying ``formula``,
        or None when it is unsatisfiable.
        """
        self._solver.push()
        try:
            self._solver.add(formula)
            if self._solver.check() == unsat:
                return None
            found = self._solver.model()
            return {
                str(var): is_true(found.eval(var, model_completion=True))
                for var in self._atoms.values()
            }
        finally:
            self._solver.pop()
