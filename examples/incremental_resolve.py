"""Example: reuse one solver across the iterations of an outer layout loop."""

from feasible_projection import Constraint, FeasibleProjectionSolver, Variable, feasible_start

DESIRED_PER_STEP = [
    [0.0, 0.0, 0.0],
    [0.0, 0.2, 10.0],
    [-4.0, 0.0, 4.0],
]


def main() -> None:
    constraints = [Constraint(0, 1, 1.0), Constraint(1, 2, 1.0)]
    start = feasible_start(DESIRED_PER_STEP[0], constraints)
    variables = [Variable(d, x) for d, x in zip(DESIRED_PER_STEP[0], start)]
    solver = FeasibleProjectionSolver(variables, constraints)

    for step, desired in enumerate(DESIRED_PER_STEP):
        solver.set_desired(desired)
        solution = solver.solve()
        placed = ", ".join(f"{x:.3f}" for x in solution.positions)
        print(
            f"step {step}: positions=[{placed}] merges={solution.merges} "
            f"splits={solution.splits} active={solution.active}"
        )


if __name__ == "__main__":
    main()
