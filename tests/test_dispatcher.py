import threading
import time
import unittest

import numpy as np

from optbridge.config import DispatchConfig
from optbridge.dispatcher import Dispatcher, as_score
from optbridge.exceptions import EvaluationError, ProtocolError
from optbridge.messages import BatchQuery, PointQuery, Solution


def square(point):
    return point["x"] ** 2


def slow_then_fast(point):
    # Earlier points finish later, so completion order is the reverse of input order
    time.sleep(0.05 * (5 - point["i"]))
    return float(point["i"])


class TestDispatcher(unittest.TestCase):
    def setUp(self):
        self.dispatcher = Dispatcher(DispatchConfig(max_workers=4))

    def tearDown(self):
        self.dispatcher.close()

    def test_point_query(self):
        reply = self.dispatcher.dispatch(PointQuery({"x": 3.0}), square, parallel=True)
        self.assertEqual(reply.to_message(), {"value": 9.0})
        self.assertEqual(self.dispatcher.evaluations, 1)
        # Single points never start a pool
        self.assertIsNone(self.dispatcher.executor)

    def test_sequential_batch_preserves_order(self):
        calls = []

        def objective(point):
            calls.append(point["x"])
            return point["x"] * 10

        query = BatchQuery([{"x": 1}, {"x": 2}, {"x": 3}])
        reply = self.dispatcher.dispatch(query, objective, parallel=False)
        self.assertEqual(reply.values, [10.0, 20.0, 30.0])
        self.assertEqual(calls, [1, 2, 3])
        self.assertIsNone(self.dispatcher.executor)

    def test_parallel_batch_preserves_order(self):
        query = BatchQuery([{"i": i} for i in range(5)])
        reply = self.dispatcher.dispatch(query, slow_then_fast, parallel=True)
        self.assertEqual(reply.values, [0.0, 1.0, 2.0, 3.0, 4.0])
        self.assertEqual(self.dispatcher.evaluations, 5)

    def test_parallel_batch_runs_concurrently(self):
        barrier = threading.Barrier(3, timeout=5)

        def objective(point):
            # Deadlocks (and times out) unless all three run at once
            barrier.wait()
            return point["x"]

        query = BatchQuery([{"x": 1.0}, {"x": 2.0}, {"x": 3.0}])
        reply = self.dispatcher.dispatch(query, objective, parallel=True)
        self.assertEqual(reply.values, [1.0, 2.0, 3.0])

    def test_batch_of_one_replies_with_values(self):
        reply = self.dispatcher.dispatch(BatchQuery([{"x": 2.0}]), square, parallel=True)
        self.assertEqual(reply.to_message(), {"values": [4.0]})

    def test_empty_batch(self):
        reply = self.dispatcher.dispatch(BatchQuery([]), square, parallel=True)
        self.assertEqual(reply.to_message(), {"values": []})

    def test_failure_in_sequential_batch(self):
        def objective(point):
            if point["x"] == 2:
                raise RuntimeError("simulation diverged")
            return point["x"]

        query = BatchQuery([{"x": 1}, {"x": 2}, {"x": 3}])
        with self.assertRaises(EvaluationError) as ctx:
            self.dispatcher.dispatch(query, objective, parallel=False)
        err = ctx.exception
        self.assertEqual(err.index, 1)
        self.assertEqual(err.point, {"x": 2})
        self.assertIsInstance(err.__cause__, RuntimeError)
        self.assertIn("simulation diverged", str(err))

    def test_failure_in_parallel_batch(self):
        def objective(point):
            if point["x"] in (2, 4):
                raise ValueError(f"bad x={point['x']}")
            return point["x"]

        query = BatchQuery([{"x": x} for x in range(6)])
        with self.assertRaises(EvaluationError) as ctx:
            self.dispatcher.dispatch(query, objective, parallel=True)
        err = ctx.exception
        self.assertIn(err.index, (2, 4))
        self.assertEqual(err.point, {"x": err.index})
        failed = {index for index, _, _ in err.failures}
        self.assertTrue(failed <= {2, 4})
        self.assertIn(err.index, failed)

    def test_failure_in_point_query(self):
        def objective(point):
            raise KeyError("y")

        with self.assertRaises(EvaluationError) as ctx:
            self.dispatcher.dispatch(PointQuery({"x": 1.0}), objective)
        self.assertIsNone(ctx.exception.index)
        self.assertEqual(ctx.exception.point, {"x": 1.0})
        self.assertEqual(self.dispatcher.evaluations, 0)

    def test_non_numeric_result_is_evaluation_error(self):
        with self.assertRaises(EvaluationError):
            self.dispatcher.dispatch(PointQuery({"x": 1.0}), lambda p: "high")
        with self.assertRaises(EvaluationError):
            self.dispatcher.dispatch(
                BatchQuery([{"x": 1}, {"x": 2}]), lambda p: None, parallel=True
            )

    def test_terminal_message_cannot_be_dispatched(self):
        with self.assertRaises(ProtocolError):
            self.dispatcher.dispatch(Solution({"x": 1.0}), square)

    def test_close_is_idempotent(self):
        self.dispatcher.dispatch(BatchQuery([{"x": 1}, {"x": 2}]), square, parallel=True)
        self.assertIsNotNone(self.dispatcher.executor)
        self.dispatcher.close()
        self.dispatcher.close()
        self.assertIsNone(self.dispatcher.executor)


class TestProcessDispatcher(unittest.TestCase):
    def test_process_pool_batch(self):
        with Dispatcher(DispatchConfig(executor="process", max_workers=2)) as dispatcher:
            reply = dispatcher.dispatch(
                BatchQuery([{"x": 1.0}, {"x": 2.0}, {"x": 3.0}]), square, parallel=True
            )
        self.assertEqual(reply.values, [1.0, 4.0, 9.0])


class TestAsScore(unittest.TestCase):
    def test_accepts_numbers(self):
        self.assertEqual(as_score(3, {}), 3.0)
        self.assertEqual(as_score(2.5, {}), 2.5)
        self.assertEqual(as_score(np.float32(1.5), {}), 1.5)
        self.assertEqual(as_score(np.int64(7), {}), 7.0)
        self.assertEqual(as_score(np.array([4.0]), {}), 4.0)
        self.assertEqual(as_score(np.array(5), {}), 5.0)

    def test_rejection_is_listed_in_failures(self):
        with self.assertRaises(EvaluationError) as ctx:
            as_score("high", {"x": 1.0}, 3)
        err = ctx.exception
        self.assertEqual(err.index, 3)
        self.assertEqual(len(err.failures), 1)
        index, point, cause = err.failures[0]
        self.assertEqual((index, point), (3, {"x": 1.0}))
        self.assertIsInstance(cause, TypeError)

    def test_rejects_non_numbers(self):
        for bad in (True, np.bool_(False), "1.0", None, [1.0], np.array([1.0, 2.0]), 1j):
            with self.subTest(value=bad):
                with self.assertRaises(EvaluationError):
                    as_score(bad, {"x": 0})


if __name__ == "__main__":
    unittest.main()
