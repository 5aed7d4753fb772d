import unittest

from optbridge.config import OptimizeOptions
from optbridge.exceptions import ProtocolError
from optbridge.messages import (
    BatchQuery,
    ErrorReport,
    PointQuery,
    Solution,
    ValueReply,
    build_init_message,
    classify,
    is_terminal,
)


class TestClassify(unittest.TestCase):
    def test_solution(self):
        msg = classify({"solution": {"x": 2.5}, "evals": 10})
        self.assertIsInstance(msg, Solution)
        self.assertEqual(msg.solution, {"x": 2.5})
        self.assertEqual(msg.details, {"solution": {"x": 2.5}, "evals": 10})
        self.assertTrue(is_terminal(msg))

    def test_error_report(self):
        msg = classify({"error_msg": "infeasible constraints"})
        self.assertIsInstance(msg, ErrorReport)
        self.assertEqual(msg.error_msg, "infeasible constraints")
        self.assertTrue(is_terminal(msg))

    def test_point_query(self):
        msg = classify({"x": 1.0, "y": 2})
        self.assertIsInstance(msg, PointQuery)
        self.assertEqual(msg.point, {"x": 1.0, "y": 2})
        self.assertFalse(is_terminal(msg))

    def test_batch_query(self):
        msg = classify([{"x": 1.0}, {"x": 2.0}])
        self.assertIsInstance(msg, BatchQuery)
        self.assertEqual(msg.points, [{"x": 1.0}, {"x": 2.0}])
        self.assertEqual(len(msg), 2)

    def test_batch_of_one_stays_a_batch(self):
        msg = classify([{"x": 1.0}])
        self.assertIsInstance(msg, BatchQuery)
        self.assertEqual(len(msg), 1)

    def test_empty_batch(self):
        msg = classify([])
        self.assertIsInstance(msg, BatchQuery)
        self.assertEqual(len(msg), 0)

    def test_terminal_markers_win_over_query_shape(self):
        # A point that happens to carry a "solution" key is still terminal
        msg = classify({"solution": {"x": 1}, "x": 3.0})
        self.assertIsInstance(msg, Solution)

    def test_both_terminal_markers_is_protocol_error(self):
        with self.assertRaises(ProtocolError):
            classify({"solution": {"x": 1}, "error_msg": "boom"})

    def test_solution_must_be_object(self):
        with self.assertRaises(ProtocolError):
            classify({"solution": 3})

    def test_batch_elements_must_be_objects(self):
        with self.assertRaises(ProtocolError):
            classify([{"x": 1}, 2])

    def test_scalars_are_protocol_errors(self):
        for value in (1.0, "x", None, True):
            with self.subTest(value=value):
                with self.assertRaises(ProtocolError) as ctx:
                    classify(value)
                self.assertEqual(ctx.exception.payload, value)


class TestValueReply(unittest.TestCase):
    def test_single(self):
        self.assertEqual(ValueReply.single(3.0).to_message(), {"value": 3.0})

    def test_batch(self):
        self.assertEqual(ValueReply.batch((1.0, 2.0)).to_message(), {"values": [1.0, 2.0]})

    def test_empty_batch(self):
        self.assertEqual(ValueReply.batch([]).to_message(), {"values": []})

    def test_exactly_one_field(self):
        with self.assertRaises(ValueError):
            ValueReply()
        with self.assertRaises(ValueError):
            ValueReply(value=1.0, values=[1.0])


class TestInitMessage(unittest.TestCase):
    def test_minimal(self):
        msg = build_init_message({"solver_name": "grid search"}, OptimizeOptions())
        self.assertEqual(
            msg,
            {
                "solver": {"solver_name": "grid search"},
                "optimize": {"maximize": True, "max_evals": 0},
            },
        )

    def test_constraints_default_and_call_log(self):
        options = OptimizeOptions(
            maximize=False,
            max_evals=50,
            constraints={"range_oc": {"x": [1, 3]}},
            default=-1,
            call_log={"args": {"x": [1.5]}, "values": [2.0]},
        )
        msg = build_init_message({"solver_name": "cma-es"}, options)
        self.assertEqual(msg["optimize"], {"maximize": False, "max_evals": 50})
        self.assertEqual(msg["constraints"], {"range_oc": {"x": [1.0, 3.0]}})
        self.assertEqual(msg["default"], -1.0)
        self.assertEqual(msg["call_log"], {"args": {"x": [1.5]}, "values": [2.0]})

    def test_default_dropped_without_constraints(self):
        with self.assertLogs("optbridge.config", level="WARNING"):
            options = OptimizeOptions(default=0.0)
        msg = build_init_message({}, options)
        self.assertNotIn("default", msg)
        self.assertNotIn("constraints", msg)

    def test_constraints_without_default(self):
        options = OptimizeOptions(constraints={"ub_c": {"x": 4}})
        msg = build_init_message({}, options)
        self.assertEqual(msg["constraints"], {"ub_c": {"x": 4.0}})
        self.assertNotIn("default", msg)


if __name__ == "__main__":
    unittest.main()
