"""
Command-line interface for optbridge
"""

import argparse
import hashlib
import importlib
import importlib.util
import json
import logging
import os
import sys
import time
from collections.abc import Callable
from typing import Any

import yaml

from optbridge import codec
from optbridge.api import make_solver, optimize
from optbridge.config import load_config
from optbridge.exceptions import ConfigurationError, OptBridgeError, SolverError

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments"""
    parser = argparse.ArgumentParser(
        description="optbridge - optimize a Python objective with an out-of-process solver"
    )

    parser.add_argument(
        "objective",
        help="Objective function as 'package.module:function' or 'path/to/file.py:function'",
    )

    parser.add_argument("--solver", "-s", required=True, help="Solver name, e.g. 'particle swarm'")

    parser.add_argument(
        "--solver-param",
        "-p",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Solver parameter; VALUE is parsed as YAML (e.g. num_evals=100, x=[0,1]). Repeatable.",
    )

    parser.add_argument("--config", "-c", help="Path to configuration file (YAML)", default=None)

    parser.add_argument(
        "--max-evals", type=int, default=0, help="Maximum number of evaluations (0 = unbounded)"
    )

    parser.add_argument("--minimize", action="store_true", help="Minimize instead of maximize")

    parser.add_argument(
        "--no-parallel", action="store_true", help="Evaluate batches sequentially"
    )

    parser.add_argument(
        "--constraints",
        default=None,
        help='Domain constraints as JSON/YAML, e.g. \'{"range_oc": {"x": [1, 3]}}\'',
    )

    parser.add_argument(
        "--default",
        type=float,
        default=None,
        help="Objective value assumed where constraints are violated",
    )

    parser.add_argument(
        "--log-level",
        "-l",
        help="Logging level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
    )

    return parser.parse_args(argv)


def setup_logging(level: str = "INFO", log_dir: str | None = None) -> None:
    """Configure root logging for command-line runs"""
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    formatter = logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    root.addHandler(console_handler)

    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        log_file = os.path.join(log_dir, f"optbridge_{time.strftime('%Y%m%d_%H%M%S')}.log")
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)
        logger.info(f"Logging to {log_file}")


def parse_solver_params(items: list[str]) -> dict[str, Any]:
    """Turn ['k=v', ...] into a dict, parsing each value as YAML"""
    params: dict[str, Any] = {}
    for item in items:
        key, sep, raw = item.partition("=")
        if not sep or not key:
            raise ConfigurationError(f"Solver parameter must look like KEY=VALUE, got '{item}'")
        params[key.strip()] = yaml.safe_load(raw)
    return params


def load_objective(objective_ref: str) -> Callable[[dict[str, Any]], float]:
    """Resolve 'module:function' or 'file.py:function' to a callable"""
    target, sep, func_name = objective_ref.rpartition(":")
    if not sep or not target or not func_name:
        raise ConfigurationError(f"Objective must look like 'module:function', got '{objective_ref}'")

    if target.endswith(".py") or os.path.sep in target:
        if not os.path.exists(target):
            raise ConfigurationError(f"Objective file '{target}' not found")

        # Let the objective file import modules that sit next to it
        obj_dir = os.path.dirname(os.path.abspath(target))
        if obj_dir not in sys.path:
            sys.path.insert(0, obj_dir)

        digest = hashlib.md5(os.path.abspath(target).encode("utf-8")).hexdigest()[:12]
        module_name = f"optbridge_objective_{digest}"
        module_spec = importlib.util.spec_from_file_location(module_name, target)
        if module_spec is None or module_spec.loader is None:
            raise ConfigurationError(f"Failed to load objective file '{target}'")
        module = importlib.util.module_from_spec(module_spec)
        sys.modules[module_name] = module
        try:
            module_spec.loader.exec_module(module)
        except Exception as e:
            del sys.modules[module_name]
            raise ConfigurationError(
                f"Error loading objective file '{target}': {type(e).__name__}: {e}"
            ) from e
    else:
        try:
            module = importlib.import_module(target)
        except Exception as e:
            raise ConfigurationError(
                f"Cannot import objective module '{target}': {type(e).__name__}: {e}"
            ) from e

    func = getattr(module, func_name, None)
    if not callable(func):
        raise ConfigurationError(f"'{func_name}' in '{target}' is not a callable")
    return func


def main(argv: list[str] | None = None) -> int:
    """
    Main entry point

    Returns:
        Exit code
    """
    args = parse_args(argv)

    try:
        config = load_config(args.config)
        if args.log_level:
            config.log_level = args.log_level
        setup_logging(config.log_level, config.log_dir)

        solver = make_solver(args.solver, **parse_solver_params(args.solver_param))
        objective = load_objective(args.objective)
        constraints = yaml.safe_load(args.constraints) if args.constraints else None

        solution, details = optimize(
            solver,
            objective,
            maximize=not args.minimize,
            max_evals=args.max_evals,
            constraints=constraints,
            default=args.default,
            parallelize=not args.no_parallel,
            config=config,
        )
    except SolverError as e:
        print(f"Error: solver reported: {e.error_msg}", file=sys.stderr)
        if e.last_request is not None:
            print(f"Last request: {codec.encode(e.last_request).decode('utf-8')}", file=sys.stderr)
        return 1
    except (OptBridgeError, yaml.YAMLError) as e:
        print(f"Error: {e!s}", file=sys.stderr)
        return 1

    print(json.dumps({"solution": solution, "details": details}, indent=2, sort_keys=True))
    return 0


if __name__ == "__main__":
    sys.exit(main())
