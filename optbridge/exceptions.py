"""
Exception hierarchy for optbridge

Every failure terminates the session that raised it. Nothing here is retried.
"""

from typing import Any


class OptBridgeError(Exception):
    """Base class for all optbridge errors"""


class ConfigurationError(OptBridgeError, ValueError):
    """Invalid optimize options or configuration values"""


class SpawnError(OptBridgeError):
    """The solver subprocess could not be started"""

    def __init__(self, message: str, command: list[str] | None = None):
        super().__init__(message)
        self.command = command


class TransportError(OptBridgeError):
    """The pipe to the solver broke, timed out, or the solver exited mid-session"""

    def __init__(
        self,
        message: str,
        direction: str | None = None,
        returncode: int | None = None,
        stderr_tail: list[str] | None = None,
    ):
        self.direction = direction
        self.returncode = returncode
        self.stderr_tail = stderr_tail or []
        super().__init__(message)

    def __str__(self) -> str:
        text = super().__str__()
        if self.direction:
            text = f"{text} (while trying to {self.direction})"
        if self.returncode is not None:
            text = f"{text} [solver exit code {self.returncode}]"
        if self.stderr_tail:
            text = f"{text}\nsolver stderr (tail):\n" + "\n".join(self.stderr_tail)
        return text


class ProtocolError(OptBridgeError):
    """A malformed or out-of-sequence message"""

    def __init__(self, message: str, payload: Any = None):
        super().__init__(message)
        self.payload = payload


class DecodeError(ProtocolError):
    """A received frame is not valid UTF-8 JSON"""


class EncodeError(ProtocolError):
    """An outgoing value cannot be represented as JSON"""


class EvaluationError(OptBridgeError):
    """
    The objective function failed for at least one point of a query

    Attributes:
        point: the first failing point
        index: its position in the batch (``None`` for a single-point query)
        failures: ``(index, point, exception)`` for every failure observed
    """

    def __init__(
        self,
        message: str,
        point: dict[str, Any] | None = None,
        index: int | None = None,
        failures: list[tuple[int | None, dict[str, Any], BaseException]] | None = None,
    ):
        super().__init__(message)
        self.point = point
        self.index = index
        self.failures = failures or []


class SolverError(OptBridgeError):
    """The solver reported a logical failure through an ``error_msg`` message"""

    def __init__(
        self,
        error_msg: str,
        last_request: dict[str, Any] | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(error_msg)
        self.error_msg = error_msg
        self.last_request = last_request
        self.details = details or {}
