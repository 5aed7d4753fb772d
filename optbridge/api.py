"""
High-level API for optbridge
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from optbridge.config import Config, OptimizeOptions
from optbridge.dispatcher import Objective
from optbridge.exceptions import ConfigurationError
from optbridge.session import OptimizationResult, Session

logger = logging.getLogger(__name__)


@dataclass
class SolverConfig:
    """Name and parameters of a solver, as understood by the solver server"""

    name: str
    params: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"solver_name": self.name, **self.params}


def make_solver(name: str, **params: Any) -> SolverConfig:
    """
    Build a solver configuration

    Example:
        >>> make_solver("grid search", num_evals=50, x=[0, 1]).to_dict()
        {'solver_name': 'grid search', 'num_evals': 50, 'x': [0, 1]}
    """
    if not name:
        raise ConfigurationError("Solver name must be non-empty")
    return SolverConfig(name=name, params=params)


def _solver_dict(solver: Any) -> dict[str, Any]:
    if isinstance(solver, Mapping):
        return dict(solver)
    to_dict = getattr(solver, "to_dict", None)
    if callable(to_dict):
        return dict(to_dict())
    raise ConfigurationError(
        f"solver must be a mapping or provide to_dict(), got {type(solver).__name__}"
    )


def optimize(
    solver: Any,
    f: Objective,
    *,
    maximize: bool = True,
    max_evals: int = 0,
    constraints: Mapping[str, Mapping[str, Any]] | None = None,
    default: float | None = None,
    call_log: Mapping[str, Any] | None = None,
    parallelize: bool = True,
    config: Config | None = None,
) -> OptimizationResult:
    """
    Optimize f using a solver running in a separate process

    Args:
        solver: solver configuration (mapping, SolverConfig, or object with to_dict())
        f: objective; takes a dict of parameter name to value and returns a number
        maximize: whether to maximize f (default True)
        max_evals: maximum number of evaluations, 0 = unbounded
        constraints: domain constraints, e.g. ``{"range_oc": {"x": [1, 3]}}`` for x in (1, 3]
        default: objective value the solver should assume where constraints are violated
        call_log: existing call log of f
        parallelize: evaluate batches of points concurrently
        config: transport/dispatch configuration (defaults to Config())

    Returns:
        OptimizationResult(solution, details), unpackable as ``solution, details``

    Raises:
        SolverError: the solver reported an error; ``.last_request`` holds the last message sent
    """
    if not callable(f):
        raise ConfigurationError(f"Objective must be callable, got {type(f).__name__}")

    options = OptimizeOptions(
        maximize=maximize,
        max_evals=max_evals,
        constraints=dict(constraints) if constraints is not None else None,
        default=default,
        call_log=dict(call_log) if call_log is not None else None,
        parallelize=parallelize,
    )
    solver_dict = _solver_dict(solver)
    logger.info(
        f"Optimizing with solver '{solver_dict.get('solver_name', '<unnamed>')}' "
        f"(maximize={options.maximize}, max_evals={options.max_evals}, "
        f"parallelize={options.parallelize})"
    )
    session = Session(solver_dict, f, options, config)
    return session.run()
