# Copyright (c) 2022, salesforce.com, inc and MILA.
# All rights reserved.
# SPDX-License-Identifier: BSD-3-Clause
# For full license text, see the LICENSE file in the repo root
# or https://opensource.org/licenses/BSD-3-Clause


"""
Tests for the policy optimization
"""
import time
import unittest

import numpy as np
import pytest

from bounded_optimizer import TerminationReason
from fake_rice import FakeRice
from fake_rice import fake_rice_factory
from optimize_rice import optimize_rice
from policy_translation import full_tax_path
from policy_translation import mitigation_from_tax
from rice import ModelRunError
from rice import create_rice
from rice import get_backstop_prices
from rice_objective import Regime

_BACKSTOP_PRICES = np.array([[1.0, 1.0], [8.0, 5.0], [3.0, 9.0], [4.0, 4.0]])


class TestOptimizeWithFakeModel(unittest.TestCase):
    def test_cost_minimization(self):
        result = optimize_rice(
            "L-BFGS-B",
            2,
            10,
            1e-10,
            _BACKSTOP_PRICES,
            regime=Regime.COST_MINIMIZATION,
            model_factory=fake_rice_factory(),
        )
        vector = result.optimized_policy_vector
        self.assertEqual(vector.shape, (2,))
        self.assertTrue(np.all(vector >= 0) and np.all(vector <= [8.0, 9.0]))
        self.assertIsInstance(result.convergence_result, TerminationReason)

        # The final run installs exactly the mitigation implied by the winning taxes.
        expected = mitigation_from_tax(vector, _BACKSTOP_PRICES, 2.8)
        np.testing.assert_array_equal(result.optimal_mitigation, expected)
        np.testing.assert_array_equal(result.optimal_model.installed[-1], expected)
        np.testing.assert_array_equal(
            result.optimal_tax, full_tax_path(vector, _BACKSTOP_PRICES)
        )
        self.assertEqual(
            result.maximum_objective_value,
            float(result.optimal_model["welfare", "UTILITY"]),
        )

        # One global tax cannot hit the target in both regions at once.
        start = mitigation_from_tax([4.0, 4.5], _BACKSTOP_PRICES, 2.8)
        start_welfare = -np.sum((start[1:] - 0.5) ** 2)
        self.assertGreater(result.maximum_objective_value, start_welfare)

    def test_utilitarianism(self):
        result = optimize_rice(
            "L-BFGS-B",
            2,
            10,
            1e-12,
            _BACKSTOP_PRICES,
            regime=Regime.UTILITARIANISM,
            model_factory=fake_rice_factory(),
        )
        np.testing.assert_allclose(result.optimized_policy_vector, np.full(4, 0.5), atol=1e-4)
        mitigation = result.optimal_mitigation
        np.testing.assert_array_equal(mitigation[0], 0.0)
        np.testing.assert_allclose(mitigation[1:3], 0.5, atol=1e-4)
        np.testing.assert_array_equal(mitigation[3], 1.0)
        # Regional carbon prices come from the model after the final run.
        model = result.optimal_model
        np.testing.assert_array_equal(model.installed[-1], mitigation)
        np.testing.assert_array_equal(result.optimal_tax, model["emissions", "CPRICE"])
        self.assertEqual(result.optimal_tax.shape, (4, 2))

    def test_time_limit_is_not_an_error(self):
        class SlowRice(FakeRice):
            def run(self):
                time.sleep(0.01)
                super().run()

        result = optimize_rice(
            "Nelder-Mead",
            2,
            0.05,
            0.0,
            _BACKSTOP_PRICES,
            regime=Regime.UTILITARIANISM,
            model_factory=lambda rho, eta, negishi: SlowRice(rho, eta, negishi),
        )
        self.assertEqual(result.convergence_result, TerminationReason.MAXTIME_REACHED)
        self.assertEqual(result.optimized_policy_vector.shape, (4,))
        self.assertEqual(result.optimal_mitigation.shape, (4, 2))
        np.testing.assert_array_equal(result.optimal_model.installed[-1], result.optimal_mitigation)

    def test_reports_search_evaluations_and_final_welfare(self):
        class DriftingRice(FakeRice):
            # Welfare grows by one with every run.
            def run(self):
                super().run()
                self.outputs[("welfare", "UTILITY")] += self.runs

        with self.assertLogs(level="INFO") as logs:
            result = optimize_rice(
                "Nelder-Mead",
                2,
                10,
                0.0,
                _BACKSTOP_PRICES,
                regime=Regime.UTILITARIANISM,
                max_evaluations=5,
                model_factory=lambda rho, eta, negishi: DriftingRice(rho, eta, negishi),
            )
        model = result.optimal_model
        self.assertEqual(result.convergence_result, TerminationReason.MAXEVAL_REACHED)
        self.assertEqual(result.num_evaluations, 5)
        self.assertEqual(model.runs, 6)
        final_welfare = float(model["welfare", "UTILITY"])
        self.assertNotEqual(result.maximum_objective_value, final_welfare)
        self.assertIn(f"Final run finished with welfare {final_welfare}.", logs.output[-1])

    def test_evaluation_failure_ends_the_run(self):
        with pytest.raises(ModelRunError):
            optimize_rice(
                "L-BFGS-B",
                2,
                10,
                1e-10,
                _BACKSTOP_PRICES,
                regime=Regime.COST_MINIMIZATION,
                model_factory=fake_rice_factory(fail_on_run=3),
            )

    def test_invalid_settings(self):
        factory = fake_rice_factory()
        with pytest.raises(ValueError):
            optimize_rice("L-BFGS-B", 0, 10, 1e-6, _BACKSTOP_PRICES, model_factory=factory)
        with pytest.raises(ValueError):
            optimize_rice("L-BFGS-B", 4, 10, 1e-6, _BACKSTOP_PRICES, model_factory=factory)
        with pytest.raises(ValueError):
            optimize_rice("L-BFGS-B", 2, 0, 1e-6, _BACKSTOP_PRICES, model_factory=factory)
        with pytest.raises(ValueError):
            optimize_rice("L-BFGS-B", 2, 10, -1.0, _BACKSTOP_PRICES, model_factory=factory)
        with pytest.raises(ValueError):
            optimize_rice("BOBYQA", 2, 10, 1e-6, _BACKSTOP_PRICES, model_factory=factory)


class TestOptimizeRice(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.backstop_prices = get_backstop_prices(create_rice(0.008, 1.5, False))

    def test_cost_minimization_end_to_end(self):
        result = optimize_rice(
            "L-BFGS-B",
            3,
            60,
            1e-8,
            self.backstop_prices,
            regime=Regime.COST_MINIMIZATION,
        )
        model = result.optimal_model
        self.assertEqual(result.optimal_tax.shape, (60,))
        self.assertEqual(result.optimal_tax[0], 0.0)
        np.testing.assert_array_equal(result.optimal_tax[1:4], result.optimized_policy_vector)
        np.testing.assert_array_equal(model["emissions", "MIU"], result.optimal_mitigation)
        self.assertEqual(result.maximum_objective_value, float(model["welfare", "UTILITY"]))

        start = self.backstop_prices.max(axis=1)[1:4] / 2
        self.assertFalse(np.allclose(result.optimized_policy_vector, start))
        model.set_param("emissions", "MIU", mitigation_from_tax(start, self.backstop_prices))
        model.run()
        self.assertGreater(result.maximum_objective_value, float(model["welfare", "UTILITY"]))

    def test_utilitarianism_end_to_end(self):
        result = optimize_rice(
            "L-BFGS-B",
            1,
            60,
            1e-8,
            self.backstop_prices,
            regime=Regime.UTILITARIANISM,
            use_negishi_weights=True,
        )
        model = result.optimal_model
        self.assertEqual((model.rho, model.eta), (0.015, 1.5))
        self.assertEqual(result.optimized_policy_vector.shape, (12,))
        np.testing.assert_array_equal(result.optimal_mitigation[1], result.optimized_policy_vector)
        np.testing.assert_array_equal(result.optimal_mitigation[2:], 1.0)
        np.testing.assert_array_equal(result.optimal_tax, model["emissions", "CPRICE"])
        self.assertEqual(result.optimal_tax.shape, (60, 12))
