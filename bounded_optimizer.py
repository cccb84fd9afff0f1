# Copyright (c) 2022, salesforce.com, inc and MILA.
# All rights reserved.
# SPDX-License-Identifier: BSD-3-Clause
# For full license text, see the LICENSE file in the repo root
# or https://opensource.org/licenses/BSD-3-Clause


"""
Bounded maximization with a wall-clock limit and a relative tolerance,
on top of scipy.optimize.minimize.

The search runs in coordinates scaled to the box: every variable with finite
bounds is mapped onto [0, 1], so variables measured in dollars and variables
that are fractions see the same solver tolerances.
"""
import enum
import logging
import time
from collections import OrderedDict

import numpy as np
from scipy.optimize import Bounds
from scipy.optimize import minimize

SUPPORTED_ALGORITHMS = ("L-BFGS-B", "TNC", "SLSQP", "Powell", "Nelder-Mead")

# Passed in place of a gradient buffer, objectives are called as f(x, grad).
_NO_GRADIENT = np.empty(0)

# Solver option that takes a relative tolerance on the objective.
_RELATIVE_FTOL_OPTIONS = {"L-BFGS-B": "ftol", "Powell": "ftol"}

# Forward-difference step of the gradient-based methods, in scaled coordinates.
_GRADIENT_METHODS = ("L-BFGS-B", "TNC", "SLSQP")
_FINITE_DIFFERENCE_STEP = 1e-6

# Initial simplex edge, in scaled coordinates.
_SIMPLEX_STEP = 0.25
_MAX_SIMPLEX_RUNS = 10


class TerminationReason(enum.Enum):
    FTOL_REACHED = "ftol_reached"  # relative change of the objective below tolerance
    SUCCESS = "success"  # the algorithm's own convergence test
    MAXTIME_REACHED = "maxtime_reached"
    MAXEVAL_REACHED = "maxeval_reached"
    EXHAUSTED = "exhausted"  # stopped without converging, e.g. iteration cap

    @property
    def converged(self):
        return self in (TerminationReason.FTOL_REACHED, TerminationReason.SUCCESS)


class _StopSearch(Exception):
    def __init__(self, reason):
        super().__init__(reason.value)
        self.reason = reason


class BoundedOptimizer:
    """
    Maximize f(x, grad) subject to lower <= x <= upper.

    None of the terminal outcomes is an error: `optimize` always returns the
    best point evaluated so far together with the reason the search stopped.
    Exceptions raised by the objective propagate to the caller.

    Nelder-Mead restarts its simplex at the best point until a restart no
    longer improves the objective, since bounded simplices tend to collapse
    onto the faces of the box.
    """

    def __init__(self, algorithm, dimension):
        if algorithm not in SUPPORTED_ALGORITHMS:
            raise ValueError(
                f"Unknown algorithm '{algorithm}', expected one of {SUPPORTED_ALGORITHMS}."
            )
        if dimension < 1:
            raise ValueError("The problem needs at least one dimension.")
        self.algorithm = algorithm
        self.dimension = dimension
        self.lower_bounds = np.full(dimension, -np.inf)
        self.upper_bounds = np.full(dimension, np.inf)
        self.objective = None
        self.maxtime = 0.0  # seconds, <= 0 disables the limit
        self.ftol_rel = 0.0  # <= 0 disables the test
        self.maxeval = 0  # <= 0 for no cap
        self.num_evaluations = 0

        self._best_value = -np.inf
        self._best_x = None
        self._iteration_values = []
        self._recent_values = OrderedDict()
        self._start_time = None
        self._offset = np.zeros(dimension)
        self._scale = np.ones(dimension)

    def set_lower_bounds(self, lower_bounds):
        self.lower_bounds = self._as_vector(lower_bounds, "lower bounds")

    def set_upper_bounds(self, upper_bounds):
        self.upper_bounds = self._as_vector(upper_bounds, "upper bounds")

    def set_max_objective(self, objective):
        self.objective = objective

    def set_maxtime(self, seconds):
        self.maxtime = float(seconds)

    def set_ftol_rel(self, tolerance):
        self.ftol_rel = float(tolerance)

    def set_maxeval(self, maxeval):
        self.maxeval = int(maxeval)

    def optimize(self, starting_point):
        """Returns (best value, best point, TerminationReason)."""
        if self.objective is None:
            raise RuntimeError("Set an objective with set_max_objective() first.")
        if np.any(self.lower_bounds > self.upper_bounds):
            raise ValueError("Lower bounds must not exceed upper bounds.")
        x_0 = np.clip(
            self._as_vector(starting_point, "starting point"),
            self.lower_bounds,
            self.upper_bounds,
        )
        self._reset_search(x_0)

        termination = self._search(self._to_scaled(x_0))

        logging.info(
            f"{self.algorithm} finished with {termination.name} after "
            f"{self.num_evaluations} evaluations and "
            f"{time.monotonic() - self._start_time:.1f}s, best value {self._best_value}."
        )
        return self._best_value, self._best_x.copy(), termination

    def _search(self, z_0):
        scaled_bounds = Bounds(
            self._to_scaled(self.lower_bounds), self._to_scaled(self.upper_bounds)
        )
        runs = _MAX_SIMPLEX_RUNS if self.algorithm == "Nelder-Mead" else 1
        previous_best = -np.inf
        for run in range(runs):
            self._iteration_values = []
            try:
                result = minimize(
                    self._negated_objective,
                    z_0,
                    method=self.algorithm,
                    bounds=scaled_bounds,
                    callback=self._iteration_callback,
                    options=self._solver_options(z_0, scaled_bounds),
                )
            except _StopSearch as stop:
                if stop.reason != TerminationReason.FTOL_REACHED:
                    return stop.reason
                termination = stop.reason
            else:
                termination = (
                    TerminationReason.SUCCESS if result.success else TerminationReason.EXHAUSTED
                )
                logging.debug(f"{self.algorithm} stopped: {result.message}")

            improvement = self._best_value - previous_best
            if not termination.converged or improvement <= self.ftol_rel * abs(
                self._best_value
            ):
                return termination
            previous_best = self._best_value
            z_0 = self._to_scaled(self._best_x)
            if run + 1 < runs:
                logging.debug(f"Restarting the simplex at best value {self._best_value}.")
        return termination

    def _solver_options(self, z_0, scaled_bounds):
        options = {}
        if self.ftol_rel > 0 and self.algorithm in _RELATIVE_FTOL_OPTIONS:
            options[_RELATIVE_FTOL_OPTIONS[self.algorithm]] = self.ftol_rel
        if self.algorithm in _GRADIENT_METHODS:
            options["eps"] = _FINITE_DIFFERENCE_STEP
        if self.algorithm == "Nelder-Mead":
            options["initial_simplex"] = self._initial_simplex(z_0, scaled_bounds)
        return options

    def _initial_simplex(self, z_0, scaled_bounds):
        """One vertex per coordinate, stepping from z_0 toward the wider side of the box."""
        simplex = np.tile(z_0, (self.dimension + 1, 1))
        for i in range(self.dimension):
            lower, upper = scaled_bounds.lb[i], scaled_bounds.ub[i]
            if np.isfinite(lower) and np.isfinite(upper):
                step = _SIMPLEX_STEP if upper - z_0[i] >= z_0[i] - lower else -_SIMPLEX_STEP
                step *= min(1.0, upper - lower)
            else:
                step = 0.05 * abs(z_0[i]) if z_0[i] != 0 else 0.00025
            simplex[i + 1, i] = z_0[i] + step
        return simplex

    def _reset_search(self, x_0):
        bounded = (
            np.isfinite(self.lower_bounds)
            & np.isfinite(self.upper_bounds)
            & (self.upper_bounds > self.lower_bounds)
        )
        self._offset = np.where(bounded, self.lower_bounds, 0.0)
        self._scale = np.where(bounded, self.upper_bounds - self.lower_bounds, 1.0)

        self.num_evaluations = 0
        self._best_value = -np.inf
        self._best_x = x_0.copy()
        self._iteration_values = []
        self._recent_values = OrderedDict()
        self._start_time = time.monotonic()

    def _to_scaled(self, x):
        return (x - self._offset) / self._scale

    def _from_scaled(self, z):
        # Finite-difference steps and simplex moves may leave the box slightly.
        return np.clip(
            self._offset + self._scale * z, self.lower_bounds, self.upper_bounds
        )

    def _negated_objective(self, z):
        if self.num_evaluations > 0:
            if 0 < self.maxtime <= time.monotonic() - self._start_time:
                raise _StopSearch(TerminationReason.MAXTIME_REACHED)
            if 0 < self.maxeval <= self.num_evaluations:
                raise _StopSearch(TerminationReason.MAXEVAL_REACHED)

        x = self._from_scaled(np.asarray(z, dtype=np.float64))
        value = float(self.objective(x, _NO_GRADIENT))
        self.num_evaluations += 1
        if value > self._best_value:
            self._best_value = value
            self._best_x = x.copy()
        self._remember(z, value)
        return -value

    def _remember(self, z, value):
        key = np.asarray(z, dtype=np.float64).tobytes()
        self._recent_values[key] = value
        self._recent_values.move_to_end(key)
        while len(self._recent_values) > 4 * (self.dimension + 2):
            self._recent_values.popitem(last=False)

    def _iterate_value(self, zk):
        """Objective at an accepted iterate, evaluated again only if it was forgotten."""
        key = np.asarray(zk, dtype=np.float64).tobytes()
        if key in self._recent_values:
            self._recent_values.move_to_end(key)
            return self._recent_values[key]
        return -self._negated_objective(zk)

    def _iteration_callback(self, zk):
        value = self._iterate_value(zk)
        self._iteration_values.append(value)
        logging.debug(f"Iteration: value {value} after {self.num_evaluations} evaluations.")
        window = self._tolerance_window()
        if self.ftol_rel <= 0 or len(self._iteration_values) <= window:
            return
        previous = self._iteration_values[-1 - window]
        if abs(value - previous) <= self.ftol_rel * abs(value):
            raise _StopSearch(TerminationReason.FTOL_REACHED)

    def _tolerance_window(self):
        # A simplex iteration may leave the best vertex unchanged, compare
        # against the iterate one full simplex of iterations earlier.
        if self.algorithm == "Nelder-Mead":
            return self.dimension + 1
        return 1

    def _as_vector(self, values, name):
        values = np.asarray(values, dtype=np.float64).reshape(-1)
        if len(values) != self.dimension:
            raise ValueError(
                f"The {name} must have length {self.dimension}, got {len(values)}."
            )
        return values
