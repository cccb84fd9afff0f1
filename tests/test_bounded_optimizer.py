# Copyright (c) 2022, salesforce.com, inc and MILA.
# All rights reserved.
# SPDX-License-Identifier: BSD-3-Clause
# For full license text, see the LICENSE file in the repo root
# or https://opensource.org/licenses/BSD-3-Clause


"""
Unit tests for the bounded optimizer
"""
import time
import unittest

import numpy as np
import pytest

from bounded_optimizer import BoundedOptimizer
from bounded_optimizer import TerminationReason
from bounded_optimizer import _StopSearch


def concave(x, grad):
    return -float(np.sum((x - np.array([0.3, 2.0])) ** 2))


class TestBoundedOptimizer(unittest.TestCase):
    def make_optimizer(self, algorithm="L-BFGS-B"):
        opt = BoundedOptimizer(algorithm, 2)
        opt.set_lower_bounds([0.0, 0.0])
        opt.set_upper_bounds([1.0, 1.0])
        opt.set_max_objective(concave)
        return opt

    def test_finds_bounded_maximum(self):
        for algorithm in ("L-BFGS-B", "TNC", "SLSQP", "Powell", "Nelder-Mead"):
            opt = self.make_optimizer(algorithm)
            opt.set_ftol_rel(1e-12)
            opt.set_maxtime(30)
            best_value, best_x, reason = opt.optimize([0.5, 0.5])
            # The second coordinate is held back by its upper bound.
            np.testing.assert_allclose(best_x, [0.3, 1.0], atol=1e-2, err_msg=algorithm)
            self.assertAlmostEqual(best_value, -1.0, delta=1e-2)
            self.assertIn(
                reason,
                (
                    TerminationReason.FTOL_REACHED,
                    TerminationReason.SUCCESS,
                    TerminationReason.EXHAUSTED,
                ),
            )

    def test_loose_tolerance_reports_convergence(self):
        opt = self.make_optimizer()
        opt.set_ftol_rel(0.5)
        _, _, reason = opt.optimize([0.9, 0.1])
        self.assertTrue(reason.converged)

    def test_time_limit_returns_best_point(self):
        def slow(x, grad):
            time.sleep(0.02)
            return concave(x, grad)

        opt = BoundedOptimizer("Nelder-Mead", 2)
        opt.set_lower_bounds([0.0, 0.0])
        opt.set_upper_bounds([1.0, 1.0])
        opt.set_max_objective(slow)
        opt.set_maxtime(0.1)
        best_value, best_x, reason = opt.optimize([0.9, 0.1])

        self.assertEqual(reason, TerminationReason.MAXTIME_REACHED)
        self.assertFalse(reason.converged)
        self.assertNotEqual(reason, TerminationReason.FTOL_REACHED)
        self.assertEqual(best_x.shape, (2,))
        self.assertTrue(np.all((best_x >= 0) & (best_x <= 1)))
        self.assertEqual(best_value, concave(best_x, None))
        self.assertGreaterEqual(opt.num_evaluations, 1)

    def test_badly_scaled_variables_are_optimized(self):
        # A dollar-sized variable with a tiny gradient per dollar.
        def flat(x, grad):
            return -1e-9 * float((x[0] - 300.0) ** 2)

        opt = BoundedOptimizer("L-BFGS-B", 1)
        opt.set_lower_bounds([0.0])
        opt.set_upper_bounds([1000.0])
        opt.set_max_objective(flat)
        opt.set_ftol_rel(1e-10)
        opt.set_maxtime(30)
        _, best_x, _ = opt.optimize([500.0])
        self.assertLess(abs(best_x[0] - 300.0), 10.0)
        self.assertGreater(opt.num_evaluations, 3)

    def test_tolerance_compares_iterates(self):
        values = {0.1: -1.5, 0.2: -1.0, 0.3: -1.2, 0.4: -1.1}

        def lookup(x, grad):
            return values[round(float(x[0]), 6)]

        opt = BoundedOptimizer("L-BFGS-B", 1)
        opt.set_lower_bounds([0.0])
        opt.set_upper_bounds([1.0])
        opt.set_max_objective(lookup)
        opt.set_ftol_rel(1e-6)
        opt._reset_search(np.array([0.1]))

        opt._negated_objective(np.array([0.1]))
        opt._iteration_callback(np.array([0.1]))
        # A gradient step beats the next two iterates, the best value stalls.
        opt._negated_objective(np.array([0.2]))
        opt._negated_objective(np.array([0.3]))
        opt._iteration_callback(np.array([0.3]))
        opt._negated_objective(np.array([0.4]))
        opt._iteration_callback(np.array([0.4]))
        self.assertEqual(opt._iteration_values, [-1.5, -1.2, -1.1])
        self.assertEqual(opt._best_value, -1.0)

        # No progress between iterates ends the search.
        with pytest.raises(_StopSearch) as stop:
            opt._iteration_callback(np.array([0.4]))
        self.assertEqual(stop.value.reason, TerminationReason.FTOL_REACHED)
        self.assertEqual(opt.num_evaluations, 4)

    def test_simplex_restarts_off_the_box_faces(self):
        opt = self.make_optimizer("Nelder-Mead")
        opt.set_ftol_rel(1e-12)
        opt.set_maxtime(30)
        best_value, best_x, reason = opt.optimize([0.0, 1.0])
        np.testing.assert_allclose(best_x, [0.3, 1.0], atol=1e-2)
        self.assertAlmostEqual(best_value, -1.0, delta=1e-3)
        self.assertTrue(reason.converged)

    def test_evaluation_cap(self):
        opt = self.make_optimizer("Nelder-Mead")
        opt.set_maxeval(5)
        _, _, reason = opt.optimize([0.9, 0.1])
        self.assertEqual(reason, TerminationReason.MAXEVAL_REACHED)
        self.assertEqual(opt.num_evaluations, 5)

    def test_points_stay_within_bounds(self):
        seen = []

        def recording(x, grad):
            seen.append(x.copy())
            return concave(x, grad)

        opt = self.make_optimizer("Powell")
        opt.set_max_objective(recording)
        opt.optimize([1.0, 1.0])
        seen = np.array(seen)
        self.assertTrue(np.all(seen >= 0) and np.all(seen <= 1))

    def test_objective_errors_propagate(self):
        def failing(x, grad):
            raise ArithmeticError("model blew up")

        opt = self.make_optimizer()
        opt.set_max_objective(failing)
        with pytest.raises(ArithmeticError):
            opt.optimize([0.5, 0.5])

    def test_invalid_configuration(self):
        with pytest.raises(ValueError):
            BoundedOptimizer("simulated-annealing", 2)
        with pytest.raises(ValueError):
            BoundedOptimizer("L-BFGS-B", 0)
        opt = BoundedOptimizer("L-BFGS-B", 2)
        with pytest.raises(ValueError):
            opt.set_upper_bounds([1.0, 1.0, 1.0])
        with pytest.raises(RuntimeError):
            opt.optimize([0.0, 0.0])
        opt.set_max_objective(concave)
        opt.set_lower_bounds([1.0, 1.0])
        opt.set_upper_bounds([0.0, 0.0])
        with pytest.raises(ValueError):
            opt.optimize([0.0, 0.0])
