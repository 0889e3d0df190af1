"""Feasibility and optimality measurements on variables and constraints."""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from graphlib import CycleError, TopologicalSorter
from typing import Dict, List, Optional, Sequence

import numpy as np

from .model import Constraint, ProblemError, Variable

logger = logging.getLogger(__name__)


def _positions(variables: Sequence[Variable]) -> np.ndarray:
    missing = [idx for idx, var in enumerate(variables) if var.position is None]
    if missing:
        raise ProblemError(f"variables without a position: {missing[:10]}")
    return np.fromiter((var.position for var in variables), dtype=float, count=len(variables))


def slacks(variables: Sequence[Variable], constraints: Sequence[Constraint]) -> np.ndarray:
    """Return ``right - left - gap`` for every constraint (negative means violated)."""

    if not constraints:
        return np.zeros(0, dtype=float)
    x = _positions(variables)
    left = np.fromiter((c.left for c in constraints), dtype=int, count=len(constraints))
    right = np.fromiter((c.right for c in constraints), dtype=int, count=len(constraints))
    gap = np.fromiter((c.gap for c in constraints), dtype=float, count=len(constraints))
    return x[right] - x[left] - gap


def max_violation(variables: Sequence[Variable], constraints: Sequence[Constraint]) -> float:
    values = slacks(variables, constraints)
    if not values.size:
        return 0.0
    return float(max(0.0, -values.min()))


def objective(variables: Sequence[Variable]) -> float:
    """Sum of squared deviations from the desired positions."""

    x = _positions(variables)
    d = np.fromiter((var.desired for var in variables), dtype=float, count=len(variables))
    return float(np.sum((x - d) ** 2))


def feasible_start(
    desired: Sequence[float],
    constraints: Sequence[Constraint],
    initial: Optional[Sequence[Optional[float]]] = None,
) -> np.ndarray:
    """Return positions satisfying every constraint.

    Each variable starts from its entry in ``initial`` when one is given and
    from ``desired`` otherwise.  Variables are then visited in topological
    order of the constraint graph and pushed right just far enough to clear
    their incoming constraints.  Only acyclic constraint graphs are supported.
    """

    positions = np.array(desired, dtype=float)
    n = positions.size
    if initial is not None:
        if len(initial) != n:
            raise ProblemError(f"expected {n} initial positions, got {len(initial)}")
        for idx, value in enumerate(initial):
            if value is not None:
                positions[idx] = float(value)
    sorter: TopologicalSorter = TopologicalSorter()
    incoming: Dict[int, List[Constraint]] = defaultdict(list)
    for idx in range(n):
        sorter.add(idx)
    for idx, con in enumerate(constraints):
        if not (0 <= con.left < n and 0 <= con.right < n):
            raise ProblemError(f"constraint {idx} references variable outside 0..{n - 1}")
        sorter.add(con.right, con.left)
        incoming[con.right].append(con)

    try:
        order = list(sorter.static_order())
    except CycleError as exc:
        raise ProblemError(f"constraint graph has a cycle through variables {exc.args[1]}") from exc

    for idx in order:
        for con in incoming[idx]:
            positions[idx] = max(positions[idx], positions[con.left] + con.gap)
    logger.debug("feasible_start: placed %d variable(s) over %d constraint(s)", n, len(constraints))
    return positions


@dataclass
class OptimalityReport:
    feasible: bool
    optimal: bool
    max_violation: float
    min_multiplier: float
    max_stationarity: float


def check_optimality(
    variables: Sequence[Variable], constraints: Sequence[Constraint], tolerance: float = 1e-7
) -> OptimalityReport:
    """Check the KKT conditions of a solved configuration.

    Active constraints must be tight with non-negative multipliers, inactive
    ones satisfied, and for every variable
    ``2 * (x - d) + sum(out multipliers) - sum(in multipliers)`` must vanish.
    """

    x = _positions(variables)
    d = np.fromiter((var.desired for var in variables), dtype=float, count=len(variables))
    residual = 2.0 * (x - d)
    values = slacks(variables, constraints)

    multipliers = []
    for con in constraints:
        if not con.active:
            continue
        residual[con.left] += con.multiplier
        residual[con.right] -= con.multiplier
        multipliers.append(con.multiplier)
    min_multiplier = min(multipliers, default=0.0)

    violation = float(max(0.0, -values.min())) if values.size else 0.0
    active_gap = max(
        (abs(values[idx]) for idx, con in enumerate(constraints) if con.active), default=0.0
    )
    scale = max(1.0, float(np.max(np.abs(2.0 * (x - d)), initial=0.0)))
    stationarity = float(np.max(np.abs(residual), initial=0.0))

    position_scale = max(1.0, float(np.max(np.abs(x), initial=0.0)))
    feasible = violation <= tolerance and active_gap <= tolerance * position_scale
    optimal = feasible and min_multiplier >= -tolerance * scale and stationarity <= tolerance * scale
    return OptimalityReport(
        feasible=feasible,
        optimal=optimal,
        max_violation=violation,
        min_multiplier=min_multiplier,
        max_stationarity=stationarity,
    )


__all__ = [
    "OptimalityReport",
    "check_optimality",
    "feasible_start",
    "max_violation",
    "objective",
    "slacks",
]
