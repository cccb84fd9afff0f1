# Copyright (c) 2022, salesforce.com, inc and MILA.
# All rights reserved.
# SPDX-License-Identifier: BSD-3-Clause
# For full license text, see the LICENSE file in the repo root
# or https://opensource.org/licenses/BSD-3-Clause


"""
Search for the welfare-maximizing climate policy in RICE.
"""
import logging
from dataclasses import dataclass
from typing import Any

import numpy as np

from bounded_optimizer import BoundedOptimizer
from bounded_optimizer import TerminationReason
from rice import create_rice
from rice_objective import Regime
from rice_objective import construct_rice_objective


@dataclass
class PolicyOptimization:
    optimized_policy_vector: np.ndarray  # raw optimizer output
    optimal_mitigation: np.ndarray  # (num_periods, num_regions)
    optimal_tax: np.ndarray  # global path, or regional prices for utilitarianism
    optimal_model: Any  # the model after its final run under the optimal policy
    maximum_objective_value: float
    convergence_result: TerminationReason
    regime: Regime
    num_evaluations: int  # evaluations made by the search, without the final run


def optimize_rice(
    optimization_algorithm,
    n_opt_periods,
    stop_time,
    tolerance,
    backstop_prices,
    regime=Regime.UTILITARIANISM,
    rho=0.008,
    eta=1.5,
    use_negishi_weights=False,
    max_evaluations=0,
    model_factory=create_rice,
):
    """
    Optimize RICE for the cost-minimization (global carbon tax) or the
    utilitarian (regional mitigation rates) policy.

    Args:
        optimization_algorithm: one of bounded_optimizer.SUPPORTED_ALGORITHMS.
        n_opt_periods: number of periods after the base period to optimize;
            later periods are fully decarbonized.
        stop_time: wall-clock limit of the search, in seconds.
        tolerance: stop when |df| / |f| falls below it between iterations.
        backstop_prices: (num_periods, num_regions) regional backstop prices.
        regime: Regime or its value.
        rho: pure rate of time preference.
        eta: elasticity of marginal utility of consumption.
        use_negishi_weights: see construct_rice_objective, overrides rho/eta.
        max_evaluations: optional cap on objective evaluations (<= 0: none).
        model_factory: callable(rho, eta, use_negishi_weights) -> model.

    Returns:
        PolicyOptimization. Hitting the time limit or exhausting the
        algorithm is reported in `convergence_result`, not raised.
    """
    regime = Regime(regime)
    if stop_time <= 0:
        raise ValueError("stop_time must be positive.")
    if tolerance < 0:
        raise ValueError("tolerance must not be negative.")

    objective, optimal_model = construct_rice_objective(
        regime, rho, eta, backstop_prices, use_negishi_weights, model_factory
    )

    n_objectives = objective.dimension(n_opt_periods)
    lower_bound = objective.lower_bounds(n_opt_periods)
    upper_bound = objective.upper_bounds(n_opt_periods)
    starting_point = objective.starting_point(n_opt_periods)

    opt = BoundedOptimizer(optimization_algorithm, n_objectives)
    opt.set_lower_bounds(lower_bound)
    opt.set_upper_bounds(upper_bound)
    opt.set_max_objective(lambda x, grad: objective(x))
    opt.set_maxtime(stop_time)
    opt.set_ftol_rel(tolerance)
    opt.set_maxeval(max_evaluations)

    logging.info(
        f"Optimizing {regime.value} over {n_opt_periods} periods "
        f"({n_objectives} variables) with {optimization_algorithm}, "
        f"stop time {stop_time}s, tolerance {tolerance}."
    )
    maximum_objective_value, optimized_policy_vector, convergence_result = opt.optimize(
        starting_point
    )
    if not convergence_result.converged:
        logging.warning(
            f"Search stopped before converging ({convergence_result.name}), "
            f"keeping the best policy found."
        )

    # Final run of the model under the optimal policy.
    optimal_mitigation = objective.full_mitigation(optimized_policy_vector)
    final_welfare = objective.evaluate_mitigation(optimal_mitigation)
    optimal_tax = objective.full_tax(optimized_policy_vector)
    logging.info(f"Final run finished with welfare {final_welfare}.")

    return PolicyOptimization(
        optimized_policy_vector=optimized_policy_vector,
        optimal_mitigation=optimal_mitigation,
        optimal_tax=optimal_tax,
        optimal_model=optimal_model,
        maximum_objective_value=maximum_objective_value,
        convergence_result=convergence_result,
        regime=regime,
        num_evaluations=opt.num_evaluations,
    )
