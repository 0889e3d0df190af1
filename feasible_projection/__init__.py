from .model import (
    Constraint,
    InfeasibleStartError,
    ProblemError,
    Solution,
    SolveOptions,
    Variable,
    link_constraints,
)
from .config import get_default_options, set_default_options
from .block import Block
from .solver import FeasibleProjectionSolver, solve_projection
from .feasibility import (
    OptimalityReport,
    check_optimality,
    feasible_start,
    max_violation,
    objective,
    slacks,
)
from .components import constraint_components, solve_by_components
from .io import dump_solution, load_problem, problem_from_dict, solution_to_dict

__all__ = [
    'Variable',
    'Constraint',
    'Block',
    'SolveOptions',
    'Solution',
    'ProblemError',
    'InfeasibleStartError',
    'link_constraints',
    'get_default_options',
    'set_default_options',
    'FeasibleProjectionSolver',
    'solve_projection',
    'OptimalityReport',
    'check_optimality',
    'feasible_start',
    'max_violation',
    'objective',
    'slacks',
    'constraint_components',
    'solve_by_components',
    'load_problem',
    'problem_from_dict',
    'solution_to_dict',
    'dump_solution',
]
