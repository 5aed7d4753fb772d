"""
optbridge: drive a local objective function from an out-of-process solver
"""

from optbridge._version import __version__
from optbridge.api import SolverConfig, make_solver, optimize
from optbridge.config import Config, DispatchConfig, OptimizeOptions, TransportConfig, load_config
from optbridge.exceptions import (
    ConfigurationError,
    DecodeError,
    EncodeError,
    EvaluationError,
    OptBridgeError,
    ProtocolError,
    SolverError,
    SpawnError,
    TransportError,
)
from optbridge.session import OptimizationResult, Session

__all__ = [
    "__version__",
    # High-level API
    "optimize",
    "make_solver",
    "SolverConfig",
    "OptimizationResult",
    "Session",
    # Configuration
    "Config",
    "OptimizeOptions",
    "TransportConfig",
    "DispatchConfig",
    "load_config",
    # Errors
    "OptBridgeError",
    "ConfigurationError",
    "SpawnError",
    "TransportError",
    "ProtocolError",
    "DecodeError",
    "EncodeError",
    "EvaluationError",
    "SolverError",
]
