"""Blocks of variables held rigidly together by a tree of active constraints."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

import numpy as np

from .logging_utils import apply_debug_logging
from .model import Constraint, ConstraintIndex, Variable, VariableIndex

logger = logging.getLogger(__name__)


class Block:
    """A set of variables moving as one unit.

    Every member satisfies ``position == reference + offset``.  ``active``
    lists the constraints of the spanning tree that keeps the members rigid;
    it always has ``len(members) - 1`` entries.  ``ideal_reference`` is the
    reference held at the start of the current step of the solver.
    """

    def __init__(
        self,
        variables: Sequence[Variable],
        constraints: Sequence[Constraint],
        members: Iterable[VariableIndex],
        active: Optional[Iterable[ConstraintIndex]] = None,
        reference: float = 0.0,
    ) -> None:
        self.variables = variables
        self.constraints = constraints
        self.members: List[VariableIndex] = list(members)
        self.active: List[ConstraintIndex] = list(active or [])
        self.reference = float(reference)
        self.ideal_reference = self.reference

    @classmethod
    def singleton(
        cls, variables: Sequence[Variable], constraints: Sequence[Constraint], index: VariableIndex
    ) -> "Block":
        var = variables[index]
        var.offset = 0.0
        return cls(variables, constraints, [index], reference=var.position)

    def __len__(self) -> int:
        return len(self.members)

    def __repr__(self) -> str:
        return f"Block(members={self.members!r}, active={self.active!r}, reference={self.reference:.6g})"

    def offsets(self) -> np.ndarray:
        return np.fromiter((self.variables[i].offset for i in self.members), dtype=float, count=len(self.members))

    def optimal_position(self) -> float:
        """Reference minimising the squared distance of members to their desired positions."""

        desired = np.fromiter(
            (self.variables[i].desired for i in self.members), dtype=float, count=len(self.members)
        )
        return float(np.mean(desired - self.offsets()))

    def place(self, reference: float) -> None:
        self.reference = float(reference)
        for i in self.members:
            var = self.variables[i]
            var.position = self.reference + var.offset

    def cost(self) -> float:
        return sum(self.variables[i].deviation() ** 2 for i in self.members)

    def _tree_neighbours(
        self, index: VariableIndex, tree: Set[ConstraintIndex]
    ) -> Iterable[Tuple[ConstraintIndex, VariableIndex]]:
        var = self.variables[index]
        for ci in var.outgoing:
            if ci in tree:
                yield ci, self.constraints[ci].right
        for ci in var.incoming:
            if ci in tree:
                yield ci, self.constraints[ci].left

    def compute_multipliers(self) -> None:
        """Compute the Lagrange multiplier of every constraint of the active tree.

        Walks the tree from the first member.  Each variable contributes
        ``2 * (position - desired)`` plus what its subtree pushes towards it;
        that total crosses the edge to the parent and becomes the multiplier
        of that edge (negated when the variable is the left end).  The walk is
        an explicit pre-order pass replayed in reverse, so large blocks do not
        hit the recursion limit.
        """

        tree = set(self.active)
        for ci in self.active:
            self.constraints[ci].multiplier = 0.0
        if not tree:
            return

        order: List[Tuple[VariableIndex, Optional[ConstraintIndex]]] = []
        stack: List[Tuple[VariableIndex, Optional[ConstraintIndex]]] = [(self.members[0], None)]
        while stack:
            index, via = stack.pop()
            order.append((index, via))
            for ci, neighbour in self._tree_neighbours(index, tree):
                if ci != via:
                    stack.append((neighbour, ci))

        inflow: Dict[VariableIndex, float] = {}
        for index, via in reversed(order):
            var = self.variables[index]
            dfdv = 2.0 * (var.position - var.desired) + inflow.pop(index, 0.0)
            if via is None:
                continue
            con = self.constraints[via]
            if index == con.right:
                con.multiplier = dfdv
                parent = con.left
            else:
                con.multiplier = -dfdv
                parent = con.right
            inflow[parent] = inflow.get(parent, 0.0) + dfdv

    def min_multiplier(self) -> Optional[ConstraintIndex]:
        if not self.active:
            return None
        return min(self.active, key=lambda ci: (self.constraints[ci].multiplier, ci))

    def absorb(self, other: "Block", index: ConstraintIndex) -> None:
        """Merge ``other`` into this block across constraint ``index``.

        The absorbed members are re-expressed relative to this block's
        reference so that the constraint holds with equality.
        """

        con = self.constraints[index]
        left = self.variables[con.left]
        right = self.variables[con.right]
        if con.right in other.members:
            shift = left.offset + con.gap - right.offset
        else:
            shift = right.offset - con.gap - left.offset

        for i in other.members:
            var = self.variables[i]
            var.offset += shift
            var.position = self.reference + var.offset

        self.members.extend(other.members)
        self.active.extend(other.active)
        self.active.append(index)
        con.active = True
        self.ideal_reference = self.reference

    def detach(self, index: ConstraintIndex) -> "Block":
        """Drop constraint ``index`` from the tree and return the right-hand component.

        The returned block shares this block's reference so no variable moves;
        this block keeps the members still reachable from the left end.
        """

        con = self.constraints[index]
        tree = set(self.active)
        tree.discard(index)
        con.active = False
        con.multiplier = 0.0

        reached: Set[VariableIndex] = {con.right}
        edges: Set[ConstraintIndex] = set()
        stack = [con.right]
        while stack:
            current = stack.pop()
            for ci, neighbour in self._tree_neighbours(current, tree):
                if ci in edges:
                    continue
                edges.add(ci)
                if neighbour not in reached:
                    reached.add(neighbour)
                    stack.append(neighbour)

        split_members = [i for i in self.members if i in reached]
        split_active = [ci for ci in self.active if ci in edges]
        self.members = [i for i in self.members if i not in reached]
        self.active = [ci for ci in self.active if ci != index and ci not in edges]
        return Block(self.variables, self.constraints, split_members, split_active, self.reference)

    def normalize(self) -> None:
        """Re-anchor the reference on the first member without moving anything."""

        anchor = self.variables[self.members[0]].offset
        if anchor:
            self.reference += anchor
            for i in self.members:
                self.variables[i].offset -= anchor
        self.ideal_reference = self.reference


apply_debug_logging(globals(), logger=logger, skip={"Block.__len__", "Block.offsets", "_tree_neighbours"})


__all__ = ["Block"]
