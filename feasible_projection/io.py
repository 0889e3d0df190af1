"""JSON reading and writing of projection problems and their solutions."""

from __future__ import annotations

import json
import logging
import numbers
from pathlib import Path
from typing import Any, Dict, List, Mapping, Sequence, Tuple, Union

from .model import Constraint, ProblemError, Solution, Variable

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def _number(entry: Mapping[str, Any], key: str, where: str) -> float:
    value = entry.get(key)
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        raise ProblemError(f"{where}: '{key}' must be a number (got {value!r})")
    return float(value)


def _index(entry: Mapping[str, Any], key: str, where: str) -> int:
    value = entry.get(key)
    if isinstance(value, bool) or not isinstance(value, numbers.Integral):
        raise ProblemError(f"{where}: '{key}' must be an integer (got {value!r})")
    return int(value)


def problem_from_dict(data: Mapping[str, Any]) -> Tuple[List[Variable], List[Constraint]]:
    """Build variables and constraints from a parsed problem document."""

    if not isinstance(data, Mapping):
        raise ProblemError("problem document must be a JSON object")
    raw_vars = data.get("variables")
    raw_cons = data.get("constraints", [])
    if not isinstance(raw_vars, list):
        raise ProblemError("'variables' must be a list")
    if not isinstance(raw_cons, list):
        raise ProblemError("'constraints' must be a list")

    variables: List[Variable] = []
    for idx, entry in enumerate(raw_vars):
        where = f"variables[{idx}]"
        if not isinstance(entry, Mapping):
            raise ProblemError(f"{where} must be an object")
        desired = _number(entry, "desired", where)
        position = _number(entry, "position", where) if entry.get("position") is not None else None
        variables.append(Variable(desired, position))

    constraints: List[Constraint] = []
    for idx, entry in enumerate(raw_cons):
        where = f"constraints[{idx}]"
        if not isinstance(entry, Mapping):
            raise ProblemError(f"{where} must be an object")
        constraints.append(
            Constraint(_index(entry, "left", where), _index(entry, "right", where), _number(entry, "gap", where))
        )
    return variables, constraints


def load_problem(path: PathLike) -> Tuple[List[Variable], List[Constraint]]:
    path = Path(path)
    logger.info("Loading problem from %s", path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ProblemError(f"{path}: invalid JSON ({exc.msg} at line {exc.lineno})") from exc
    return problem_from_dict(data)


def solution_to_dict(solution: Solution, constraints: Sequence[Constraint]) -> Dict[str, Any]:
    return {
        "success": solution.success,
        "positions": [float(x) for x in solution.positions],
        "objective": solution.objective,
        "max_violation": solution.max_violation,
        "iterations": solution.iterations,
        "merges": solution.merges,
        "splits": solution.splits,
        "active": [
            {"index": idx, "multiplier": constraints[idx].multiplier} for idx in solution.active
        ],
        "warnings": list(solution.warnings),
    }


def dump_solution(path: PathLike, solution: Solution, constraints: Sequence[Constraint]) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(solution_to_dict(solution, constraints), indent=2), encoding="utf-8")
    logger.info("Wrote solution to %s", path)


__all__ = ["dump_solution", "load_problem", "problem_from_dict", "solution_to_dict"]
