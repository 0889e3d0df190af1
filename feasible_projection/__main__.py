import argparse
import logging
import sys
from typing import Optional, Sequence

from feasible_projection import (
    FeasibleProjectionSolver,
    ProblemError,
    check_optimality,
    dump_solution,
    feasible_start,
    get_default_options,
    load_problem,
    solve_by_components,
)

logger = logging.getLogger(__name__)


def _configure_logging(level: str) -> None:
    log_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format="%(levelname)s:%(name)s:%(message)s",
    )


def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Project desired positions onto separation constraints")
    parser.add_argument("path", help="Path to the JSON problem file")
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--max-iterations",
        type=int,
        help="Stop after this many merge/split cycles and report the feasible positions reached",
    )
    parser.add_argument(
        "--split-tolerance",
        type=float,
        help="Split a block only when a multiplier is below minus this value",
    )
    parser.add_argument(
        "--by-components",
        action="store_true",
        help="Solve each connected component of the constraint graph separately",
    )
    parser.add_argument(
        "--output",
        help="Write the solution as JSON to the given path",
    )
    args = parser.parse_args(argv)

    _configure_logging(args.log_level)

    options = get_default_options()
    if args.max_iterations is not None:
        options.max_iterations = args.max_iterations
    if args.split_tolerance is not None:
        options.split_tolerance = args.split_tolerance
    try:
        variables, constraints = load_problem(args.path)
        if any(var.position is None for var in variables):
            logger.info("Computing feasible starting positions")
            start = feasible_start(
                [var.desired for var in variables],
                constraints,
                initial=[var.position for var in variables],
            )
            for var, x in zip(variables, start):
                var.position = float(x)
        if args.by_components:
            solution = solve_by_components(variables, constraints, options)
        else:
            solution = FeasibleProjectionSolver(variables, constraints, options).solve()
    except ProblemError as exc:
        logger.error("Invalid problem: %s", exc)
        raise SystemExit(1)

    report = check_optimality(variables, constraints, options.feasibility_tolerance)

    print(f"Success: {solution.success}")
    print(f"Iterations: {solution.iterations} (merges={solution.merges}, splits={solution.splits})")
    print(f"Objective: {solution.objective:.6g}")
    print(f"Max violation: {solution.max_violation:.3e}")
    print(f"Optimal: {report.optimal} (min multiplier {report.min_multiplier:.3e})")
    print("Positions:")
    for idx, x in enumerate(solution.positions):
        print(f"  {idx}: {x:.6f}")
    if solution.active:
        print("Active constraints:")
        for idx in solution.active:
            con = constraints[idx]
            print(f"  [{idx}] {con.left} -> {con.right} gap={con.gap:g} multiplier={con.multiplier:.6g}")
    if solution.warnings:
        print("Solver warnings:")
        for warning in solution.warnings:
            print(f"  - {warning}")

    if args.output:
        dump_solution(args.output, solution, constraints)
        print(f"Solution written to {args.output}")


if __name__ == "__main__":
    main(sys.argv[1:])
