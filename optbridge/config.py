"""
Configuration handling for optbridge
"""

import logging
import numbers
import os
import sys
from collections.abc import Mapping, Sequence
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

import yaml

from optbridge.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# Domain constraint kinds understood by the solver server.
# "o" marks an open bound, "c" a closed one.
BOUND_CONSTRAINTS = ("ub_o", "ub_c", "lb_o", "lb_c")
RANGE_CONSTRAINTS = ("range_oo", "range_oc", "range_co", "range_cc")
CONSTRAINT_KINDS = BOUND_CONSTRAINTS + RANGE_CONSTRAINTS

DEFAULT_SOLVER_MODULE = "optunity.standalone"


def _is_real(value: Any) -> bool:
    return isinstance(value, numbers.Real) and not isinstance(value, bool)


def validate_constraints(constraints: Any) -> dict[str, dict[str, Any]]:
    """
    Check a constraint set and return a plain-dict copy of it

    Args:
        constraints: mapping of constraint kind to a mapping of
            parameter name to bound (a number for ub/lb, ``[lo, hi]`` for ranges)

    Returns:
        The validated constraints with ranges normalised to two-element lists
    """
    if not isinstance(constraints, Mapping):
        raise ConfigurationError(
            f"constraints must be a mapping, got {type(constraints).__name__}"
        )

    validated: dict[str, dict[str, Any]] = {}
    for kind, bounds in constraints.items():
        if kind not in CONSTRAINT_KINDS:
            raise ConfigurationError(
                f"Unknown constraint kind '{kind}'. Expected one of: {', '.join(CONSTRAINT_KINDS)}"
            )
        if not isinstance(bounds, Mapping):
            raise ConfigurationError(
                f"Constraint '{kind}' must map parameter names to bounds"
            )

        checked: dict[str, Any] = {}
        for name, bound in bounds.items():
            if not isinstance(name, str):
                raise ConfigurationError(f"Constraint '{kind}' has non-string parameter {name!r}")
            if kind in BOUND_CONSTRAINTS:
                if not _is_real(bound):
                    raise ConfigurationError(
                        f"Constraint {kind}[{name}] must be a number, got {bound!r}"
                    )
                checked[name] = float(bound)
            else:
                if (
                    isinstance(bound, (str, bytes))
                    or not isinstance(bound, Sequence)
                    or len(bound) != 2
                    or not all(_is_real(b) for b in bound)
                ):
                    raise ConfigurationError(
                        f"Constraint {kind}[{name}] must be a [lower, upper] pair, got {bound!r}"
                    )
                lower, upper = float(bound[0]), float(bound[1])
                if lower > upper:
                    raise ConfigurationError(
                        f"Constraint {kind}[{name}] has lower bound {lower} above upper bound {upper}"
                    )
                checked[name] = [lower, upper]
        validated[kind] = checked

    return validated


@dataclass
class OptimizeOptions:
    """Options for one optimize() call, validated once at construction"""

    # Optimization direction
    maximize: bool = True

    # Evaluation budget forwarded to the solver, 0 = unbounded
    max_evals: int = 0

    # Domain constraints and the value the solver should assume on violation
    constraints: dict[str, dict[str, Any]] | None = None
    default: float | None = None

    # Existing call log of the objective, forwarded verbatim
    call_log: dict[str, Any] | None = None

    # Evaluate batches concurrently
    parallelize: bool = True

    def __post_init__(self):
        if not isinstance(self.maximize, bool):
            raise ConfigurationError(f"maximize must be a bool, got {self.maximize!r}")
        if not isinstance(self.parallelize, bool):
            raise ConfigurationError(f"parallelize must be a bool, got {self.parallelize!r}")

        if isinstance(self.max_evals, bool) or not isinstance(self.max_evals, numbers.Integral):
            raise ConfigurationError(f"max_evals must be an integer, got {self.max_evals!r}")
        if self.max_evals < 0:
            raise ConfigurationError(f"max_evals must be non-negative, got {self.max_evals}")
        self.max_evals = int(self.max_evals)

        if self.constraints is not None:
            self.constraints = validate_constraints(self.constraints)

        if self.default is not None:
            if not _is_real(self.default):
                raise ConfigurationError(f"default must be a number, got {self.default!r}")
            if self.constraints is None:
                logger.warning("Ignoring 'default' because no constraints were given")
                self.default = None
            else:
                self.default = float(self.default)

        if self.call_log is not None:
            if not isinstance(self.call_log, Mapping):
                raise ConfigurationError(
                    f"call_log must be a mapping, got {type(self.call_log).__name__}"
                )
            self.call_log = dict(self.call_log)


@dataclass
class TransportConfig:
    """Configuration for the solver subprocess and its pipes"""

    # Full argv of the solver process. When unset, the solver module is run
    # with the Python interpreter.
    command: list[str] | None = None
    python_executable: str | None = None
    solver_module: str = DEFAULT_SOLVER_MODULE

    # Process environment
    env: dict[str, str] = field(default_factory=dict)
    cwd: str | None = None

    # Seconds to wait for a frame, None blocks forever
    receive_timeout: float | None = None

    # Seconds the solver gets to exit after stdin is closed
    shutdown_timeout: float = 5.0

    max_frame_bytes: int = 16 * 1024 * 1024

    # Solver stderr handling
    capture_stderr: bool = True
    stderr_tail_lines: int = 50

    def __post_init__(self):
        if self.receive_timeout is not None and self.receive_timeout <= 0:
            raise ConfigurationError("transport.receive_timeout must be positive or null")
        if self.shutdown_timeout < 0:
            raise ConfigurationError("transport.shutdown_timeout must be non-negative")
        if self.max_frame_bytes <= 0:
            raise ConfigurationError("transport.max_frame_bytes must be positive")
        if self.command is not None:
            if isinstance(self.command, str) or not self.command:
                raise ConfigurationError("transport.command must be a non-empty list of strings")
            self.command = [str(part) for part in self.command]

    def build_command(self) -> list[str]:
        """Resolve the argv used to launch the solver"""
        if self.command:
            return list(self.command)
        python = self.python_executable or sys.executable
        return [python, "-m", self.solver_module]


@dataclass
class DispatchConfig:
    """Configuration for objective evaluation"""

    # "thread" or "process"; process pools need a picklable objective
    executor: str = "thread"

    # Pool width for parallel batches, None uses the executor default
    max_workers: int | None = None

    def __post_init__(self):
        if self.executor not in ("thread", "process"):
            raise ConfigurationError(
                f"dispatch.executor must be 'thread' or 'process', got {self.executor!r}"
            )
        if self.max_workers is not None and self.max_workers < 1:
            raise ConfigurationError("dispatch.max_workers must be at least 1")


@dataclass
class Config:
    """Master configuration for optbridge"""

    # General settings
    log_level: str = "INFO"
    log_dir: str | None = None

    # Component configurations
    transport: TransportConfig = field(default_factory=TransportConfig)
    dispatch: DispatchConfig = field(default_factory=DispatchConfig)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Config":
        """Load configuration from a YAML file"""
        with open(path) as f:
            config_dict = yaml.safe_load(f) or {}
        return cls.from_dict(config_dict)

    @classmethod
    def from_dict(cls, config_dict: dict[str, Any]) -> "Config":
        """Create configuration from a dictionary"""
        config = Config()

        nested_keys = ["transport", "dispatch"]

        # Update top-level fields
        for key, value in config_dict.items():
            if key not in nested_keys and hasattr(config, key):
                setattr(config, key, value)

        # Update nested configs
        try:
            if "transport" in config_dict:
                config.transport = TransportConfig(**(config_dict["transport"] or {}))
            if "dispatch" in config_dict:
                config.dispatch = DispatchConfig(**(config_dict["dispatch"] or {}))
        except TypeError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e

        return config

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def to_yaml(self, path: str | Path) -> None:
        """Save configuration to a YAML file"""
        with open(path, "w") as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False)


def load_config(config_path: str | Path | None = None) -> Config:
    """Load configuration from a YAML file or use defaults"""
    if config_path and os.path.exists(config_path):
        config = Config.from_yaml(config_path)
    else:
        config = Config()

    # Use environment variables if available
    if config.transport.python_executable is None:
        config.transport.python_executable = os.environ.get("OPTBRIDGE_PYTHON")
    solver_module = os.environ.get("OPTBRIDGE_SOLVER_MODULE")
    if solver_module and config.transport.solver_module == DEFAULT_SOLVER_MODULE:
        config.transport.solver_module = solver_module

    return config
