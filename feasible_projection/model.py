"""Core data structures for the feasible projection solver."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import numpy as np

VariableIndex = int
ConstraintIndex = int


class ProblemError(ValueError):
    """Raised when variables or constraints do not describe a valid problem."""


class InfeasibleStartError(ProblemError):
    """Raised when the starting positions violate a separation constraint."""


@dataclass
class Variable:
    """Scalar variable with a desired and a current position.

    ``offset`` is the displacement from the reference position of the owning
    block and is only written by the solver.  ``outgoing``/``incoming`` hold
    indices of the constraints where this variable is the left/right end.
    """

    desired: float
    position: Optional[float] = None
    offset: float = 0.0
    outgoing: List[ConstraintIndex] = field(default_factory=list)
    incoming: List[ConstraintIndex] = field(default_factory=list)
    block: Optional[int] = None

    def deviation(self) -> float:
        if self.position is None:
            raise ProblemError("variable has no position")
        return self.position - self.desired


@dataclass
class Constraint:
    """Separation constraint ``variables[right] - variables[left] >= gap``."""

    left: VariableIndex
    right: VariableIndex
    gap: float
    active: bool = False
    multiplier: float = 0.0

    def slack(self, variables: Sequence[Variable]) -> float:
        return variables[self.right].position - variables[self.left].position - self.gap


@dataclass
class SolveOptions:
    """Solver options."""

    max_iterations: Optional[int] = None
    split_tolerance: float = 1e-9
    feasibility_tolerance: float = 1e-7
    check_start: bool = True
    record_history: bool = False


@dataclass
class Solution:
    positions: np.ndarray
    success: bool
    iterations: int
    merges: int
    splits: int
    objective: float
    max_violation: float
    active: List[ConstraintIndex] = field(default_factory=list)
    history: List[float] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


def _require_finite(value: float, what: str) -> None:
    if not math.isfinite(value):
        raise ProblemError(f"{what} must be finite (got {value!r})")


def link_constraints(variables: Sequence[Variable], constraints: Sequence[Constraint]) -> None:
    """Rebuild the incoming/outgoing index lists of every variable."""

    n = len(variables)
    for idx, var in enumerate(variables):
        _require_finite(var.desired, f"variable {idx} desired position")
        if var.position is not None:
            _require_finite(var.position, f"variable {idx} position")
        var.outgoing = []
        var.incoming = []

    for idx, con in enumerate(constraints):
        if not (0 <= con.left < n and 0 <= con.right < n):
            raise ProblemError(
                f"constraint {idx} references variable outside 0..{n - 1}: ({con.left}, {con.right})"
            )
        if con.left == con.right:
            raise ProblemError(f"constraint {idx} links variable {con.left} to itself")
        _require_finite(con.gap, f"constraint {idx} gap")
        if con.gap < 0:
            raise ProblemError(f"constraint {idx} has negative gap {con.gap}")
        variables[con.left].outgoing.append(idx)
        variables[con.right].incoming.append(idx)


__all__ = [
    "VariableIndex",
    "ConstraintIndex",
    "ProblemError",
    "InfeasibleStartError",
    "Variable",
    "Constraint",
    "SolveOptions",
    "Solution",
    "link_constraints",
]
