"""Example: project a chain of labels onto non-overlap separation constraints."""

from feasible_projection import SolveOptions, solve_projection

WIDTHS = [2.0, 1.0, 3.0, 1.5]
DESIRED = [0.0, 0.5, 1.0, 6.0]


def main() -> None:
    constraints = [
        (i, i + 1, (WIDTHS[i] + WIDTHS[i + 1]) / 2.0) for i in range(len(WIDTHS) - 1)
    ]
    solution = solve_projection(DESIRED, constraints, options=SolveOptions(record_history=True))
    print("Success:", solution.success)
    print("Objective:", solution.objective)
    print("Objective history:", [round(v, 6) for v in solution.history])
    for idx, (d, x) in enumerate(zip(DESIRED, solution.positions)):
        print(f"{idx}: desired={d:.3f} placed={x:.6f}")


if __name__ == "__main__":
    main()
