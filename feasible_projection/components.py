"""Partition a projection problem into independent connected components."""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

import numpy as np
from scipy.sparse import coo_matrix
from scipy.sparse.csgraph import connected_components

from .model import Constraint, Solution, SolveOptions, Variable, link_constraints
from .solver import FeasibleProjectionSolver

logger = logging.getLogger(__name__)


def constraint_components(n_variables: int, constraints: Sequence[Constraint]) -> List[np.ndarray]:
    """Return the variable indices of each connected component of the constraint graph.

    Components are ordered by their smallest variable index.
    """

    if n_variables == 0:
        return []
    m = len(constraints)
    left = np.fromiter((c.left for c in constraints), dtype=int, count=m)
    right = np.fromiter((c.right for c in constraints), dtype=int, count=m)
    graph = coo_matrix((np.ones(m, dtype=float), (left, right)), shape=(n_variables, n_variables))
    count, labels = connected_components(graph, directed=False)
    components = [np.flatnonzero(labels == label) for label in range(count)]
    components.sort(key=lambda members: int(members[0]))
    return components


def solve_by_components(
    variables: Sequence[Variable],
    constraints: Sequence[Constraint],
    options: Optional[SolveOptions] = None,
) -> Solution:
    """Solve each component with its own solver and write the results back.

    Positions, ``active`` flags and multipliers of the caller's objects are
    updated as if a single solver had run over the whole problem.
    """

    link_constraints(variables, constraints)
    components = constraint_components(len(variables), constraints)
    logger.info("Solving %d component(s) independently", len(components))

    owner = np.empty(len(variables), dtype=int)
    for label, members in enumerate(components):
        owner[members] = label
    by_component: List[List[int]] = [[] for _ in components]
    for idx, con in enumerate(constraints):
        by_component[owner[con.left]].append(idx)

    positions = np.empty(len(variables), dtype=float)
    parts: List[Solution] = []
    warnings: List[str] = []
    active: List[int] = []
    for label, members in enumerate(components):
        local = {int(g): i for i, g in enumerate(members)}
        sub_vars = [Variable(variables[g].desired, variables[g].position) for g in members]
        sub_cons = [
            Constraint(local[constraints[c].left], local[constraints[c].right], constraints[c].gap)
            for c in by_component[label]
        ]
        part = FeasibleProjectionSolver(sub_vars, sub_cons, options).solve()
        parts.append(part)

        positions[members] = part.positions
        for g, var in zip(members, sub_vars):
            variables[g].position = var.position
        for c, sub in zip(by_component[label], sub_cons):
            constraints[c].active = sub.active
            constraints[c].multiplier = sub.multiplier
            if sub.active:
                active.append(c)
        warnings.extend(f"component {label}: {w}" for w in part.warnings)

    return Solution(
        positions=positions,
        success=all(p.success for p in parts),
        iterations=max((p.iterations for p in parts), default=0),
        merges=sum(p.merges for p in parts),
        splits=sum(p.splits for p in parts),
        objective=float(sum(p.objective for p in parts)),
        max_violation=max((p.max_violation for p in parts), default=0.0),
        active=sorted(active),
        warnings=warnings,
    )


__all__ = ["constraint_components", "solve_by_components"]
