"""
Evaluation of solver queries against the objective function
"""

import logging
import numbers
import time
from collections.abc import Callable
from concurrent.futures import (
    FIRST_EXCEPTION,
    Executor,
    Future,
    ProcessPoolExecutor,
    ThreadPoolExecutor,
    wait,
)
from typing import Any

import numpy as np

from optbridge.config import DispatchConfig
from optbridge.exceptions import EvaluationError, ProtocolError
from optbridge.messages import BatchQuery, Point, PointQuery, Query, ValueReply

logger = logging.getLogger(__name__)

Objective = Callable[[Point], float]


def _call_objective(objective: Objective, point: Point) -> Any:
    """Worker entry point, module level so process pools can pickle it"""
    return objective(point)


def _where(index: int | None) -> str:
    return "point" if index is None else f"batch point {index}"


def _rejected(message: str, point: Point, index: int | None) -> EvaluationError:
    return EvaluationError(
        message, point=point, index=index, failures=[(index, point, TypeError(message))]
    )


def as_score(result: Any, point: Point, index: int | None = None) -> float:
    """Convert an objective result to a float, rejecting anything non-numeric"""
    if isinstance(result, (bool, np.bool_)):
        raise _rejected(f"Objective returned a boolean for {_where(index)} {point}", point, index)
    if isinstance(result, numbers.Real):
        return float(result)
    if (
        isinstance(result, np.ndarray)
        and result.size == 1
        and np.issubdtype(result.dtype, np.number)
        and not np.issubdtype(result.dtype, np.complexfloating)
    ):
        return float(result.reshape(()).item())
    raise _rejected(
        f"Objective returned {type(result).__name__} for {_where(index)} {point}, expected a number",
        point,
        index,
    )


class Dispatcher:
    """
    Evaluates point and batch queries and packages the results as a ValueReply

    Batches keep their input order: result i always belongs to point i. A
    failing objective call aborts the whole query with an EvaluationError;
    partial results are never returned.
    """

    def __init__(self, config: DispatchConfig | None = None):
        self.config = config or DispatchConfig()
        self.executor: Executor | None = None
        self.evaluations = 0

    def __enter__(self) -> "Dispatcher":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _get_executor(self) -> Executor:
        if self.executor is None:
            if self.config.executor == "process":
                self.executor = ProcessPoolExecutor(max_workers=self.config.max_workers)
            else:
                self.executor = ThreadPoolExecutor(
                    max_workers=self.config.max_workers, thread_name_prefix="optbridge-eval"
                )
            logger.debug(
                f"Started {self.config.executor} pool (max_workers={self.config.max_workers})"
            )
        return self.executor

    def close(self) -> None:
        """Shut down the worker pool, waiting for running evaluations"""
        if self.executor is not None:
            self.executor.shutdown(wait=True, cancel_futures=True)
            self.executor = None

    def dispatch(self, query: Query, objective: Objective, parallel: bool = False) -> ValueReply:
        """
        Evaluate a query

        Args:
            query: a PointQuery or BatchQuery received from the solver
            objective: callable taking one point and returning a number
            parallel: evaluate batches with more than one point concurrently

        Returns:
            ``ValueReply(value=...)`` for a point, ``ValueReply(values=[...])`` for a batch

        Raises:
            EvaluationError: if the objective fails or returns a non-number
        """
        if isinstance(query, PointQuery):
            return ValueReply.single(self._evaluate_one(objective, query.point, None))

        if isinstance(query, BatchQuery):
            start_time = time.time()
            if parallel and len(query) > 1:
                values = self._evaluate_parallel(objective, query.points)
            else:
                values = [
                    self._evaluate_one(objective, point, i) for i, point in enumerate(query.points)
                ]
            logger.debug(
                f"Evaluated batch of {len(values)} points in {time.time() - start_time:.3f}s"
                f"{' (parallel)' if parallel and len(query) > 1 else ''}"
            )
            return ValueReply.batch(values)

        raise ProtocolError(f"Cannot dispatch a {type(query).__name__}", payload=query)

    def _evaluate_one(self, objective: Objective, point: Point, index: int | None) -> float:
        try:
            result = objective(point)
        except Exception as e:
            raise EvaluationError(
                f"Objective failed for {_where(index)} {point}: {e!s}",
                point=point,
                index=index,
                failures=[(index, point, e)],
            ) from e

        score = as_score(result, point, index)
        self.evaluations += 1
        return score

    def _evaluate_parallel(self, objective: Objective, points: list[Point]) -> list[float]:
        executor = self._get_executor()
        futures: list[Future] = [
            executor.submit(_call_objective, objective, point) for point in points
        ]

        _, not_done = wait(futures, return_when=FIRST_EXCEPTION)
        for future in not_done:
            # Evaluations already running are left to finish; their results are dropped
            future.cancel()

        failures: list[tuple[int | None, Point, BaseException]] = []
        for i, future in enumerate(futures):
            if future.done() and not future.cancelled() and future.exception() is not None:
                failures.append((i, points[i], future.exception()))

        if failures:
            index, point, cause = failures[0]
            message = f"Objective failed for batch point {index} {point}: {cause!s}"
            if len(failures) > 1:
                message += f" ({len(failures)} points failed)"
            raise EvaluationError(
                message, point=point, index=index, failures=failures
            ) from cause

        results = [as_score(future.result(), points[i], i) for i, future in enumerate(futures)]
        self.evaluations += len(results)
        return results
