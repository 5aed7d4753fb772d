"""
Message shapes exchanged with the solver

The solver answers every request with exactly one of four message kinds.
``classify`` is the only place that decides which kind a decoded frame is.
"""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Union

from optbridge.config import OptimizeOptions
from optbridge.exceptions import ProtocolError

Point = dict[str, Any]

SOLUTION_KEY = "solution"
ERROR_KEY = "error_msg"


@dataclass(frozen=True)
class PointQuery:
    """The solver asks for the objective value at one point"""

    point: Point


@dataclass(frozen=True)
class BatchQuery:
    """The solver asks for the objective values at an ordered list of points"""

    points: list[Point]

    def __len__(self) -> int:
        return len(self.points)


@dataclass(frozen=True)
class Solution:
    """Terminal message: best point found plus solver diagnostics"""

    solution: Point
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ErrorReport:
    """Terminal message: the solver failed"""

    error_msg: str
    details: dict[str, Any] = field(default_factory=dict)


ResponseMessage = Union[PointQuery, BatchQuery, Solution, ErrorReport]
Query = Union[PointQuery, BatchQuery]


def is_terminal(message: ResponseMessage) -> bool:
    return isinstance(message, (Solution, ErrorReport))


def classify(message: Any) -> ResponseMessage:
    """
    Turn a decoded frame into a tagged response message

    Terminal markers are checked before anything else, so a message carrying
    ``solution`` or ``error_msg`` is never treated as a query.

    Raises:
        ProtocolError: if the frame fits none of the four kinds
    """
    if isinstance(message, Mapping):
        has_solution = SOLUTION_KEY in message
        has_error = ERROR_KEY in message
        if has_solution and has_error:
            raise ProtocolError(
                f"Message carries both '{SOLUTION_KEY}' and '{ERROR_KEY}'", payload=message
            )
        if has_solution:
            solution = message[SOLUTION_KEY]
            if not isinstance(solution, Mapping):
                raise ProtocolError(
                    f"'{SOLUTION_KEY}' must be an object, got {type(solution).__name__}",
                    payload=message,
                )
            return Solution(solution=dict(solution), details=dict(message))
        if has_error:
            return ErrorReport(error_msg=str(message[ERROR_KEY]), details=dict(message))
        return PointQuery(point=dict(message))

    if isinstance(message, list):
        for i, point in enumerate(message):
            if not isinstance(point, Mapping):
                raise ProtocolError(
                    f"Batch element {i} is a {type(point).__name__}, expected an object",
                    payload=message,
                )
        return BatchQuery(points=[dict(point) for point in message])

    raise ProtocolError(
        f"Unexpected message of type {type(message).__name__} from solver", payload=message
    )


@dataclass(frozen=True)
class ValueReply:
    """Objective values sent back for the most recent query"""

    value: float | None = None
    values: list[float] | None = None

    def __post_init__(self):
        if (self.value is None) == (self.values is None):
            raise ValueError("ValueReply needs exactly one of 'value' or 'values'")

    @classmethod
    def single(cls, value: float) -> "ValueReply":
        return cls(value=value)

    @classmethod
    def batch(cls, values: Sequence[float]) -> "ValueReply":
        return cls(values=list(values))

    def to_message(self) -> dict[str, Any]:
        if self.values is not None:
            return {"values": list(self.values)}
        return {"value": self.value}


def build_init_message(solver: Mapping[str, Any], options: OptimizeOptions) -> dict[str, Any]:
    """Assemble the first request of a session"""
    msg: dict[str, Any] = {
        "solver": dict(solver),
        "optimize": {"maximize": options.maximize, "max_evals": options.max_evals},
    }
    if options.constraints is not None:
        msg["constraints"] = options.constraints
        if options.default is not None:
            msg["default"] = options.default
    if options.call_log is not None:
        msg["call_log"] = options.call_log
    return msg
