# Copyright (c) 2022, salesforce.com, inc and MILA.
# All rights reserved.
# SPDX-License-Identifier: BSD-3-Clause
# For full license text, see the LICENSE file in the repo root
# or https://opensource.org/licenses/BSD-3-Clause


"""
RICE welfare objectives for the two social-objective regimes.

Cost-minimization optimizes a single global carbon tax that is translated
into regional mitigation rates through the backstop prices. Utilitarianism
optimizes the regional mitigation rates directly.
"""
import enum
import logging
import threading

import numpy as np

from policy_translation import DEFAULT_THETA_2
from policy_translation import embed_mitigation
from policy_translation import full_tax_path
from policy_translation import max_backstop_prices
from policy_translation import mitigation_from_tax
from rice import ModelRunError
from rice import create_rice


class Regime(enum.Enum):
    COST_MINIMIZATION = "cost_minimization"
    UTILITARIANISM = "utilitarianism"


class RiceObjective:
    """
    Total economic welfare of one RICE instance as a function of a policy
    vector.

    The objective is the single owner of its model. Every evaluation installs
    a new mitigation matrix and re-runs the full simulation in place, so
    evaluations must be strictly sequential: an overlapping call raises
    RuntimeError. Parallel searches need one objective (and model) per worker.
    """

    regime = None

    def __init__(self, model, backstop_prices):
        self.model = model
        self.backstop_prices = np.array(backstop_prices, dtype=np.float64)
        if self.backstop_prices.ndim != 2:
            raise ValueError("Backstop prices must be a (periods, regions) matrix.")
        self.backstop_prices.setflags(write=False)
        self.num_periods, self.num_regions = self.backstop_prices.shape
        self.num_evaluations = 0
        self._evaluation_lock = threading.Lock()

    def __call__(self, policy_vector):
        return self.evaluate_mitigation(self.full_mitigation(policy_vector))

    def evaluate_mitigation(self, mitigation):
        """Install a full mitigation matrix, run the model and return its welfare."""
        if not self._evaluation_lock.acquire(blocking=False):
            raise RuntimeError(
                "RICE objective evaluations share one model and must not overlap."
            )
        try:
            self.model.set_param("emissions", "MIU", mitigation)
            self.model.run()
            welfare = float(self.model["welfare", "UTILITY"])
        finally:
            self._evaluation_lock.release()
        if not np.isfinite(welfare):
            raise ModelRunError(f"The model returned a non-finite welfare: {welfare}")
        self.num_evaluations += 1
        return welfare

    def check_horizon(self, n_opt_periods):
        if not 1 <= n_opt_periods <= self.num_periods - 1:
            raise ValueError(
                f"n_opt_periods must be between 1 and {self.num_periods - 1}, "
                f"got {n_opt_periods}."
            )

    def lower_bounds(self, n_opt_periods):
        return np.zeros(self.dimension(n_opt_periods))

    def starting_point(self, n_opt_periods):
        return self.upper_bounds(n_opt_periods) / 2

    def dimension(self, n_opt_periods):
        raise NotImplementedError

    def upper_bounds(self, n_opt_periods):
        raise NotImplementedError

    def full_mitigation(self, policy_vector):
        raise NotImplementedError

    def full_tax(self, policy_vector):
        raise NotImplementedError


class CostMinimizationObjective(RiceObjective):
    """Policy vector: global carbon tax for periods 2..n+1."""

    regime = Regime.COST_MINIMIZATION
    theta_2 = DEFAULT_THETA_2

    def dimension(self, n_opt_periods):
        self.check_horizon(n_opt_periods)
        return n_opt_periods

    def upper_bounds(self, n_opt_periods):
        # A tax above the highest backstop price cannot abate more.
        self.check_horizon(n_opt_periods)
        return max_backstop_prices(self.backstop_prices)[1 : n_opt_periods + 1]

    def full_mitigation(self, policy_vector):
        return mitigation_from_tax(policy_vector, self.backstop_prices, self.theta_2)

    def full_tax(self, policy_vector):
        return full_tax_path(policy_vector, self.backstop_prices)


class UtilitarianObjective(RiceObjective):
    """Policy vector: region-major block of mitigation rates for periods 2..n+1."""

    regime = Regime.UTILITARIANISM

    def dimension(self, n_opt_periods):
        self.check_horizon(n_opt_periods)
        return n_opt_periods * self.num_regions

    def upper_bounds(self, n_opt_periods):
        return np.ones(self.dimension(n_opt_periods))

    def full_mitigation(self, policy_vector):
        return embed_mitigation(policy_vector, self.num_periods, self.num_regions)

    def full_tax(self, policy_vector):
        """Regional carbon prices the model reports for this policy."""
        mitigation = self.full_mitigation(policy_vector)
        if not np.array_equal(self.model["emissions", "MIU"], mitigation):
            self.evaluate_mitigation(mitigation)
        return self.model["emissions", "CPRICE"]


_OBJECTIVES = {
    Regime.COST_MINIMIZATION: CostMinimizationObjective,
    Regime.UTILITARIANISM: UtilitarianObjective,
}


def construct_rice_objective(
    regime, rho, eta, backstop_prices, use_negishi_weights, model_factory=create_rice
):
    """
    Create an objective function and the instance of RICE it evaluates.

    Args:
        regime: Regime (or its value) selecting cost-minimization or
            utilitarianism.
        rho: pure rate of time preference.
        eta: elasticity of marginal utility of consumption.
        backstop_prices: (num_periods, num_regions) regional backstop prices.
        use_negishi_weights: weight regional welfare with Negishi weights.
            Note: the model then discounts with rho=0.015 and eta=1.5,
            whatever `rho` and `eta` are passed.
        model_factory: callable(rho, eta, use_negishi_weights) returning a
            model with set_param, run and [component, name] access.

    Returns:
        (objective, model)
    """
    regime = Regime(regime)
    model = model_factory(rho, eta, use_negishi_weights)
    objective = _OBJECTIVES[regime](model, backstop_prices)
    logging.info(
        f"Constructed {regime.value} objective (rho={rho}, eta={eta}, "
        f"negishi weights={use_negishi_weights})."
    )
    return objective, model
