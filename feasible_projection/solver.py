"""Active-set projection onto separation constraints that never leaves the feasible region."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple, Union

import numpy as np

from .block import Block
from .config import get_default_options
from .feasibility import feasible_start, max_violation, objective
from .logging_utils import apply_debug_logging
from .model import (
    Constraint,
    ConstraintIndex,
    InfeasibleStartError,
    ProblemError,
    Solution,
    SolveOptions,
    Variable,
    link_constraints,
)

logger = logging.getLogger(__name__)

ConstraintLike = Union[Constraint, Tuple[int, int, float]]


class FeasibleProjectionSolver:
    """Move variables towards their desired positions without violating any constraint.

    The first call to :meth:`solve` starts from one block per variable.  Later
    calls resume from the block partition left by the previous solve, which
    makes re-solving with updated desired positions cheap.  Positions written
    by the caller between solves are only picked up after :meth:`reset`.
    """

    def __init__(
        self,
        variables: Sequence[Variable],
        constraints: Sequence[Constraint],
        options: Optional[SolveOptions] = None,
    ) -> None:
        self.variables: List[Variable] = list(variables)
        self.constraints: List[Constraint] = list(constraints)
        self.options = options or get_default_options()
        link_constraints(self.variables, self.constraints)

        m = len(self.constraints)
        self._left = np.fromiter((c.left for c in self.constraints), dtype=int, count=m)
        self._right = np.fromiter((c.right for c in self.constraints), dtype=int, count=m)
        self._gap = np.fromiter((c.gap for c in self.constraints), dtype=float, count=m)

        self.blocks: Dict[int, Block] = {}
        self.inactive: Set[ConstraintIndex] = set()
        self._next_block_id = 0
        self.merges = 0
        self.splits = 0
        self.reset()

    def reset(self) -> None:
        """Forget the block partition; every constraint becomes inactive."""

        for con in self.constraints:
            con.active = False
            con.multiplier = 0.0
        for var in self.variables:
            var.block = None
            var.offset = 0.0
        self.blocks = {}
        self.inactive = set(range(len(self.constraints)))

    def set_desired(self, desired: Sequence[float]) -> None:
        if len(desired) != len(self.variables):
            raise ProblemError(f"expected {len(self.variables)} desired positions, got {len(desired)}")
        for var, value in zip(self.variables, desired):
            var.desired = float(value)

    def positions(self) -> np.ndarray:
        return np.fromiter((v.position for v in self.variables), dtype=float, count=len(self.variables))

    def _cost(self) -> float:
        return float(sum(block.cost() for block in self.blocks.values()))

    def _register(self, block: Block) -> int:
        block_id = self._next_block_id
        self._next_block_id += 1
        self.blocks[block_id] = block
        for i in block.members:
            self.variables[i].block = block_id
        return block_id

    def _init_blocks(self) -> None:
        missing = [idx for idx, var in enumerate(self.variables) if var.position is None]
        if missing:
            raise ProblemError(
                f"variables {missing[:10]} have no starting position; see feasible_start()"
            )
        for idx in range(len(self.variables)):
            self._register(Block.singleton(self.variables, self.constraints, idx))
        logger.debug("Initialised %d singleton block(s)", len(self.blocks))

    def _safe_step(self) -> Tuple[Optional[ConstraintIndex], float, Dict[int, float]]:
        """Find the inactive constraint that limits the move towards the block optima.

        Returns the constraint (``None`` when nothing limits the move), the
        largest safe fraction ``alpha`` of the move, and the optimal reference
        of every block.
        """

        targets = {bid: block.optimal_position() for bid, block in self.blocks.items()}
        if not self.inactive:
            return None, 1.0, targets

        n = len(self.variables)
        start = np.empty(n, dtype=float)
        target = np.empty(n, dtype=float)
        owner = np.empty(n, dtype=int)
        for bid, block in self.blocks.items():
            members = np.asarray(block.members, dtype=int)
            offsets = block.offsets()
            start[members] = block.ideal_reference + offsets
            target[members] = targets[bid] + offsets
            owner[members] = bid

        idx = np.fromiter(sorted(self.inactive), dtype=int, count=len(self.inactive))
        left = self._left[idx]
        right = self._right[idx]
        gap = self._gap[idx]

        a_left = start[left]
        a_right = start[right]
        motion = (target[right] - a_right) - (target[left] - a_left)

        # Constraints inside one block move rigidly and stay as they are.
        binding = (target[left] + gap > target[right]) & (owner[left] != owner[right])
        # No approach between the two ends: the constraint can never become binding.
        binding &= motion < 0.0

        alpha = np.ones(idx.size, dtype=float)
        if np.any(binding):
            alpha[binding] = np.clip(
                (gap[binding] + a_left[binding] - a_right[binding]) / motion[binding], 0.0, 1.0
            )
        k = int(np.argmin(alpha))
        if alpha[k] >= 1.0:
            return None, 1.0, targets
        return int(idx[k]), float(alpha[k]), targets

    def _move(self, alpha: float, targets: Dict[int, float]) -> None:
        for bid, block in self.blocks.items():
            start = block.ideal_reference
            if alpha >= 1.0:
                block.place(targets[bid])
            else:
                block.place(start + alpha * (targets[bid] - start))
            block.ideal_reference = block.reference

    def _activate(self, index: ConstraintIndex) -> None:
        con = self.constraints[index]
        left_id = self.variables[con.left].block
        right_id = self.variables[con.right].block
        if len(self.blocks[left_id]) >= len(self.blocks[right_id]):
            keep_id, drop_id = left_id, right_id
        else:
            keep_id, drop_id = right_id, left_id

        keep = self.blocks[keep_id]
        dropped = self.blocks.pop(drop_id)
        keep.absorb(dropped, index)
        for i in dropped.members:
            self.variables[i].block = keep_id
        self.inactive.discard(index)
        self.merges += 1
        logger.debug(
            "Activated constraint %d (%d -> %d, gap=%g); block %d now has %d member(s)",
            index,
            con.left,
            con.right,
            con.gap,
            keep_id,
            len(keep),
        )

    def _advance(self) -> None:
        """Move every block towards its optimum, merging blocks on binding constraints."""

        for block in self.blocks.values():
            block.ideal_reference = block.reference

        while True:
            index, alpha, targets = self._safe_step()
            if index is None:
                break
            logger.debug("Safe step alpha=%.6g limited by constraint %d", alpha, index)
            self._move(alpha, targets)
            self._activate(index)

        self._move(1.0, targets)

    def _split_blocks(self) -> int:
        """Split every block on its most negative multiplier; return the number of splits."""

        tolerance = self.options.split_tolerance
        count = 0
        for block_id in list(self.blocks):
            block = self.blocks[block_id]
            if not block.active:
                continue
            block.compute_multipliers()
            index = block.min_multiplier()
            multiplier = self.constraints[index].multiplier
            if multiplier >= -tolerance:
                continue

            fresh = block.detach(index)
            block.normalize()
            fresh.normalize()
            self._register(fresh)
            self.inactive.add(index)
            count += 1
            logger.debug(
                "Split block %d on constraint %d (multiplier=%.6g) into sizes %d and %d",
                block_id,
                index,
                multiplier,
                len(block),
                len(fresh),
            )
        self.splits += count
        return count

    def solve(self) -> Solution:
        options = self.options
        if not self.blocks:
            self._init_blocks()

        if options.check_start:
            violation = max_violation(self.variables, self.constraints)
            if violation > options.feasibility_tolerance:
                raise InfeasibleStartError(
                    f"starting positions violate a constraint by {violation:.3e}"
                )

        merges_before, splits_before = self.merges, self.splits
        history: List[float] = []
        if options.record_history:
            history.append(self._cost())
        warnings: List[str] = []

        logger.info(
            "Solving projection with %d variable(s), %d constraint(s), %d block(s)",
            len(self.variables),
            len(self.constraints),
            len(self.blocks),
        )

        iterations = 0
        converged = False
        while True:
            if options.max_iterations is not None and iterations >= options.max_iterations:
                warnings.append(
                    f"stopped after {iterations} iteration(s) before convergence; positions are feasible"
                )
                break
            iterations += 1
            self._advance()
            if options.record_history:
                history.append(self._cost())
            if self._split_blocks() == 0:
                converged = True
                break

        solution = Solution(
            positions=self.positions(),
            success=converged,
            iterations=iterations,
            merges=self.merges - merges_before,
            splits=self.splits - splits_before,
            objective=objective(self.variables),
            max_violation=max_violation(self.variables, self.constraints),
            active=[idx for idx, con in enumerate(self.constraints) if con.active],
            history=history,
            warnings=warnings,
        )
        logger.info(
            "Projection finished success=%s iterations=%d merges=%d splits=%d objective=%.6g",
            solution.success,
            solution.iterations,
            solution.merges,
            solution.splits,
            solution.objective,
        )
        for warning in warnings:
            logger.warning(warning)
        return solution


def _as_constraint(item: ConstraintLike) -> Constraint:
    if isinstance(item, Constraint):
        return item
    try:
        left, right, gap = item
    except (TypeError, ValueError) as exc:
        raise ProblemError(f"expected (left, right, gap), got {item!r}") from exc
    return Constraint(int(left), int(right), float(gap))


def solve_projection(
    desired: Sequence[float],
    constraints: Iterable[ConstraintLike],
    positions: Optional[Sequence[float]] = None,
    options: Optional[SolveOptions] = None,
) -> Solution:
    """Project ``desired`` onto the separation constraints.

    ``positions`` must be feasible; when omitted a feasible start is computed
    with :func:`feasible_start`, which requires an acyclic constraint graph.
    """

    cons = [_as_constraint(item) for item in constraints]
    if positions is None:
        positions = feasible_start(desired, cons)
    elif len(positions) != len(desired):
        raise ProblemError(f"expected {len(desired)} starting positions, got {len(positions)}")
    variables = [Variable(float(d), float(x)) for d, x in zip(desired, positions)]
    return FeasibleProjectionSolver(variables, cons, options).solve()


apply_debug_logging(
    globals(),
    logger=logger,
    skip={"positions", "_cost", "_register", "_as_constraint"},
)


__all__ = ["ConstraintLike", "FeasibleProjectionSolver", "solve_projection"]
