import numpy as np
import pytest
from scipy.optimize import minimize

from feasible_projection import (
    Constraint,
    FeasibleProjectionSolver,
    InfeasibleStartError,
    ProblemError,
    SolveOptions,
    Variable,
    check_optimality,
    feasible_start,
    get_default_options,
    max_violation,
    set_default_options,
    solve_projection,
)


def _solver(desired, positions, constraints, options=None):
    variables = [Variable(d, x) for d, x in zip(desired, positions)]
    cons = [Constraint(l, r, g) for l, r, g in constraints]
    return FeasibleProjectionSolver(variables, cons, options)


def _random_problem(seed, n=30, m=50):
    rng = np.random.default_rng(seed)
    desired = rng.normal(scale=5.0, size=n)
    triples = set()
    while len(triples) < m:
        i, j = sorted(int(k) for k in rng.choice(n, size=2, replace=False))
        triples.add((i, j))
    constraints = [Constraint(i, j, float(rng.uniform(0.0, 2.0))) for i, j in sorted(triples)]
    return desired, constraints


def test_unconstrained_variables_reach_desired_positions():
    solution = solve_projection([5.0, -3.0], [])

    assert solution.success
    assert solution.positions.tolist() == pytest.approx([5.0, -3.0])
    assert solution.merges == 0
    assert solution.splits == 0
    assert solution.active == []
    assert solution.objective == pytest.approx(0.0)


def test_violated_pair_is_made_tight_around_midpoint():
    solution = solve_projection([0.0, 0.0], [(0, 1, 2.0)])

    assert solution.success
    assert solution.positions.tolist() == pytest.approx([-1.0, 1.0])
    assert solution.active == [0]
    assert solution.merges == 1
    assert solution.objective == pytest.approx(2.0)


def test_chain_spreads_evenly():
    solver = _solver([0.0, 0.0, 0.0], [0.0, 1.0, 2.0], [(0, 1, 1.0), (1, 2, 1.0)])

    solution = solver.solve()

    assert solution.success
    assert solution.positions.tolist() == pytest.approx([-1.0, 0.0, 1.0])
    assert solution.active == [0, 1]
    assert all(c.multiplier == pytest.approx(2.0) for c in solver.constraints)
    assert len(solver.blocks) == 1


def test_split_frees_variable_pulled_away():
    solver = _solver([0.0, 0.0, 0.0], [0.0, 1.0, 2.0], [(0, 1, 1.0), (1, 2, 1.0)])
    solver.solve()

    solver.set_desired([0.0, 0.2, 10.0])
    solution = solver.solve()

    assert solution.success
    assert solution.splits == 1
    assert solution.merges == 0
    assert solution.iterations == 2
    assert solution.positions.tolist() == pytest.approx([-0.4, 0.6, 10.0])
    assert solution.active == [0]
    assert solver.constraints[0].multiplier == pytest.approx(0.8)
    assert not solver.constraints[1].active
    assert len(solver.blocks) == 2


def test_resolving_converged_configuration_changes_nothing():
    solver = _solver([0.0, 0.0, 0.0, 4.0], [0.0, 1.0, 2.0, 5.0], [(0, 1, 1.0), (1, 2, 1.0), (2, 3, 0.5)])
    first = solver.solve()

    second = solver.solve()

    np.testing.assert_array_equal(second.positions, first.positions)
    assert second.merges == 0
    assert second.splits == 0
    assert second.iterations == 1
    assert second.active == first.active


def test_redundant_constraint_stays_inactive():
    solver = _solver([0.0, 0.0, 0.0], [0.0, 1.0, 2.0], [(0, 1, 1.0), (1, 2, 1.0), (0, 2, 2.0)])

    solution = solver.solve()

    assert solution.positions.tolist() == pytest.approx([-1.0, 0.0, 1.0])
    assert solution.active == [0, 1]
    assert not solver.constraints[2].active
    assert check_optimality(solver.variables, solver.constraints).optimal


def test_parallel_motion_never_binds():
    solver = _solver([1.0, 3.0], [0.0, 2.0], [(0, 1, 2.0)])

    solution = solver.solve()

    assert solution.positions.tolist() == pytest.approx([1.0, 3.0])
    assert solution.merges == 0
    assert solution.active == []


def test_satisfied_constraint_with_separating_motion_is_ignored():
    solver = _solver([-5.0, 5.0], [0.0, 1.0], [(0, 1, 1.0)])

    solution = solver.solve()

    assert solution.positions.tolist() == pytest.approx([-5.0, 5.0])
    assert solution.merges == 0


def test_partial_steps_stay_feasible(monkeypatch):
    desired, constraints = _random_problem(7)
    start = feasible_start(desired, constraints)
    solver = FeasibleProjectionSolver([Variable(d, x) for d, x in zip(desired, start)], constraints)
    observed = []
    activate = solver._activate

    def checking_activate(index):
        observed.append(max_violation(solver.variables, solver.constraints))
        activate(index)

    monkeypatch.setattr(solver, "_activate", checking_activate)
    solver.solve()

    assert observed
    assert max(observed) <= 1e-9


@pytest.mark.parametrize("seed", [0, 1, 2])
def test_objective_never_increases(seed):
    desired, constraints = _random_problem(seed)
    start = feasible_start(desired, constraints)

    solution = solve_projection(desired, constraints, start, SolveOptions(record_history=True))

    history = np.asarray(solution.history)
    assert history.size >= 2
    assert np.all(np.diff(history) <= 1e-9 * max(1.0, history[0]))
    assert solution.objective <= history[0]
    assert history[0] == pytest.approx(float(np.sum((start - desired) ** 2)))
    assert history[-1] == pytest.approx(solution.objective)


@pytest.mark.parametrize("seed", [3, 4, 5])
def test_matches_general_quadratic_program(seed):
    desired, constraints = _random_problem(seed)
    start = feasible_start(desired, constraints)

    variables = [Variable(d, x) for d, x in zip(desired, start)]
    solution = FeasibleProjectionSolver(variables, constraints).solve()

    A = np.zeros((len(constraints), len(desired)))
    for row, con in enumerate(constraints):
        A[row, con.left] = -1.0
        A[row, con.right] = 1.0
    gaps = np.array([con.gap for con in constraints])
    reference = minimize(
        lambda x: float(np.sum((x - desired) ** 2)),
        start,
        jac=lambda x: 2.0 * (x - desired),
        constraints=[{"type": "ineq", "fun": lambda x: A @ x - gaps, "jac": lambda x: A}],
        method="SLSQP",
        options={"ftol": 1e-12, "maxiter": 500},
    )

    assert solution.success
    assert solution.max_violation <= 1e-7
    assert solution.objective == pytest.approx(reference.fun, rel=1e-6, abs=1e-8)
    np.testing.assert_allclose(solution.positions, reference.x, atol=1e-4)

    report = check_optimality(variables, constraints)
    assert report.feasible
    assert report.optimal
    assert report.min_multiplier >= -1e-9


def test_iteration_cap_returns_feasible_positions():
    solver = _solver([0.0, 0.0, 0.0], [0.0, 1.0, 2.0], [(0, 1, 1.0), (1, 2, 1.0)])
    solver.solve()
    solver.options = SolveOptions(max_iterations=1)
    solver.set_desired([0.0, 0.2, 10.0])

    solution = solver.solve()

    assert not solution.success
    assert solution.iterations == 1
    assert solution.warnings
    assert solution.max_violation <= 1e-9


def test_infeasible_start_is_rejected():
    solver = _solver([0.0, 0.0], [0.0, 0.0], [(0, 1, 2.0)])

    with pytest.raises(InfeasibleStartError):
        solver.solve()


def test_missing_start_positions_are_rejected():
    variables = [Variable(0.0), Variable(1.0)]
    solver = FeasibleProjectionSolver(variables, [Constraint(0, 1, 1.0)])

    with pytest.raises(ProblemError) as excinfo:
        solver.solve()
    assert "feasible_start" in str(excinfo.value)


def test_set_desired_checks_length():
    solver = _solver([0.0, 0.0], [0.0, 2.0], [(0, 1, 2.0)])

    with pytest.raises(ProblemError):
        solver.set_desired([1.0])


def test_reset_discards_blocks():
    solver = _solver([0.0, 0.0, 0.0], [0.0, 1.0, 2.0], [(0, 1, 1.0), (1, 2, 1.0)])
    first = solver.solve()

    solver.reset()

    assert solver.blocks == {}
    assert solver.inactive == {0, 1}
    assert not any(c.active for c in solver.constraints)
    second = solver.solve()
    assert second.merges == 2
    assert second.positions.tolist() == pytest.approx(first.positions.tolist())


def test_solve_projection_rejects_bad_input():
    with pytest.raises(ProblemError):
        solve_projection([0.0, 0.0], [(0, 1)])
    with pytest.raises(ProblemError):
        solve_projection([0.0, 0.0], [(0, 1, 1.0)], positions=[0.0])


def test_default_options_are_used_when_none_given():
    saved = get_default_options()
    try:
        set_default_options(SolveOptions(record_history=True))
        solution = solve_projection([0.0, 0.0], [(0, 1, 2.0)])
    finally:
        set_default_options(saved)

    assert solution.history
    assert not get_default_options().record_history
