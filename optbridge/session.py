"""
Session driver: runs one optimization exchange with a solver process
"""

import contextlib
import enum
import logging
import time
from collections.abc import Mapping
from typing import Any, NamedTuple

from optbridge import codec
from optbridge.config import Config, OptimizeOptions
from optbridge.dispatcher import Dispatcher, Objective
from optbridge.exceptions import ProtocolError, SolverError
from optbridge.messages import (
    BatchQuery,
    ErrorReport,
    Point,
    Solution,
    build_init_message,
    classify,
)
from optbridge.transport import Channel

logger = logging.getLogger(__name__)


class SessionState(enum.Enum):
    INIT = "init"
    AWAITING_SOLVER_MESSAGE = "awaiting_solver_message"
    DISPATCHING = "dispatching"
    SOLVED = "solved"
    FAILED = "failed"


class OptimizationResult(NamedTuple):
    """Best point found and the full terminal message from the solver"""

    solution: Point
    details: dict[str, Any]


class Session:
    """
    One optimization run against one solver process

    The exchange is strictly alternating: the session sends the init message,
    then repeatedly receives one solver message and, if it is a query, sends
    exactly one value reply, until the solver sends a solution or an error.
    """

    def __init__(
        self,
        solver: Mapping[str, Any],
        objective: Objective,
        options: OptimizeOptions | None = None,
        config: Config | None = None,
    ):
        self.solver = dict(solver)
        self.objective = objective
        self.options = options or OptimizeOptions()
        self.config = config or Config()

        self.state = SessionState.INIT
        self.last_request: dict[str, Any] | None = None
        self.rounds = 0
        self.evaluations = 0
        self.channel: Channel | None = None
        self._budget_warned = False

    def run(self) -> OptimizationResult:
        """
        Drive the exchange to completion

        Returns:
            OptimizationResult(solution, details)

        Raises:
            SolverError: the solver reported an error
            SpawnError, TransportError, ProtocolError, EvaluationError: see optbridge.exceptions
        """
        if self.state is not SessionState.INIT:
            raise ProtocolError(f"Session already ran (state: {self.state.value})")

        start_time = time.time()
        try:
            with contextlib.ExitStack() as stack:
                self.channel = stack.enter_context(Channel.open(config=self.config.transport))
                dispatcher = stack.enter_context(Dispatcher(self.config.dispatch))
                result = self._loop(self.channel, dispatcher)
        except BaseException as e:
            self.state = SessionState.FAILED
            if not isinstance(e, SolverError):
                logger.error(f"Optimization session failed: {type(e).__name__}: {e}")
            raise

        logger.info(
            f"Optimization finished in {time.time() - start_time:.2f}s "
            f"({self.rounds} rounds, {self.evaluations} evaluations)"
        )
        return result

    def _send(self, channel: Channel, message: dict[str, Any]) -> None:
        payload = codec.encode(message)
        self.last_request = message
        channel.send(payload)

    def _loop(self, channel: Channel, dispatcher: Dispatcher) -> OptimizationResult:
        self._send(channel, build_init_message(self.solver, self.options))
        self.state = SessionState.AWAITING_SOLVER_MESSAGE

        while True:
            message = classify(codec.decode(channel.receive()))

            if isinstance(message, Solution):
                self.state = SessionState.SOLVED
                return OptimizationResult(message.solution, message.details)

            if isinstance(message, ErrorReport):
                logger.error(f"Solver reported an error: {message.error_msg}")
                logger.error(f"Last request: {codec.encode(self.last_request).decode('utf-8')}")
                raise SolverError(message.error_msg, self.last_request, message.details)

            self.state = SessionState.DISPATCHING
            requested = len(message) if isinstance(message, BatchQuery) else 1
            self._check_budget(requested)

            reply = dispatcher.dispatch(message, self.objective, self.options.parallelize)
            self.evaluations = dispatcher.evaluations
            self.rounds += 1

            self._send(channel, reply.to_message())
            self.state = SessionState.AWAITING_SOLVER_MESSAGE

    def _check_budget(self, requested: int) -> None:
        budget = self.options.max_evals
        if budget and not self._budget_warned and self.evaluations + requested > budget:
            logger.warning(
                f"Solver requested {self.evaluations + requested} evaluations, "
                f"exceeding max_evals={budget}"
            )
            self._budget_warned = True
