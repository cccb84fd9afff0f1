# Copyright (c) 2022, salesforce.com, inc and MILA.
# All rights reserved.
# SPDX-License-Identifier: BSD-3-Clause
# For full license text, see the LICENSE file in the repo root
# or https://opensource.org/licenses/BSD-3-Clause


"""
Conversions between a global carbon tax path and regional mitigation rates.

The first model period never carries a tax or any abatement. Periods after
the optimized horizon are assumed to be fully decarbonized: the tax equals
the highest regional backstop price and every mitigation rate equals one.
"""
import numpy as np

# Exponent of the abatement cost function in RICE.
DEFAULT_THETA_2 = 2.8


def max_backstop_prices(backstop_prices):
    """Highest backstop price across regions, for every period."""
    backstop_prices = _as_backstop_matrix(backstop_prices)
    return np.max(backstop_prices, axis=1)


def full_tax_path(optimal_tax, backstop_prices):
    """
    Extend a tax sub-path (periods 2..n+1) to the full model horizon.

    Period 1 is untaxed; periods after the sub-path default to the maximum
    backstop price across regions (full decarbonization).
    """
    backstop_prices = _as_backstop_matrix(backstop_prices)
    optimal_tax = np.asarray(optimal_tax, dtype=np.float64).reshape(-1)
    num_periods = backstop_prices.shape[0]
    if len(optimal_tax) > num_periods - 1:
        raise ValueError(
            f"{len(optimal_tax)} tax values do not fit in {num_periods - 1} "
            f"taxable periods."
        )
    if np.any(~np.isfinite(optimal_tax)) or np.any(optimal_tax < 0):
        raise ValueError("Carbon taxes must be finite and non-negative.")

    full_tax = np.max(backstop_prices, axis=1)
    full_tax[0] = 0.0
    full_tax[1 : len(optimal_tax) + 1] = optimal_tax
    return full_tax


def mitigation_from_tax(optimal_tax, backstop_prices, theta_2=DEFAULT_THETA_2):
    """
    Calculate regional CO2 mitigation rates implied by a global carbon tax.

    Args:
        optimal_tax: global tax values for periods 2..n+1.
        backstop_prices: (num_periods, num_regions) regional backstop prices,
            in the same currency units as the tax.
        theta_2: exponent of the abatement cost function.

    Returns:
        (num_periods, num_regions) mitigation rates in [0, 1].

    Raises:
        ValueError: too many tax values, a negative tax, `theta_2 == 1`, or a
            non-positive backstop price in a taxable period.
    """
    if theta_2 == 1:
        raise ValueError("theta_2 must differ from 1.")
    backstop_prices = _as_backstop_matrix(backstop_prices)
    if np.any(backstop_prices[1:] <= 0):
        raise ValueError("Backstop prices must be positive after the first period.")
    full_tax = full_tax_path(optimal_tax, backstop_prices)

    mitigation = np.zeros(backstop_prices.shape)
    mitigation[1:] = np.clip(
        (full_tax[1:, np.newaxis] / backstop_prices[1:]) ** (1 / (theta_2 - 1)),
        0.0,
        1.0,
    )
    return mitigation


def tax_from_mitigation(mitigation, backstop_prices, theta_2=DEFAULT_THETA_2):
    """Regional carbon prices implied by mitigation rates (inverse direction)."""
    if theta_2 == 1:
        raise ValueError("theta_2 must differ from 1.")
    backstop_prices = _as_backstop_matrix(backstop_prices)
    mitigation = np.asarray(mitigation, dtype=np.float64)
    if mitigation.shape != backstop_prices.shape:
        raise ValueError(
            f"Mitigation shape {mitigation.shape} does not match backstop prices "
            f"{backstop_prices.shape}."
        )
    if np.any(mitigation < 0) or np.any(mitigation > 1):
        raise ValueError("Mitigation rates must lie in [0, 1].")
    return backstop_prices * mitigation ** (theta_2 - 1)


def embed_mitigation(optimal_mitigation_vector, num_periods, num_regions):
    """
    Place an optimized block of regional mitigation rates in the full horizon.

    The vector is region-major: its first n entries are periods 2..n+1 of
    the first region, the next n entries those of the second region, etc.
    Period 1 has no mitigation and periods after n+1 are fully decarbonized.
    """
    vector = np.asarray(optimal_mitigation_vector, dtype=np.float64).reshape(-1)
    if len(vector) % num_regions != 0:
        raise ValueError(
            f"{len(vector)} mitigation values cannot be split over "
            f"{num_regions} regions."
        )
    n_opt_periods = len(vector) // num_regions
    if n_opt_periods > num_periods - 1:
        raise ValueError(
            f"{n_opt_periods} optimized periods do not fit in {num_periods - 1} "
            f"periods after the base period."
        )
    if np.any(~np.isfinite(vector)) or np.any(vector < 0) or np.any(vector > 1):
        raise ValueError("Mitigation rates must lie in [0, 1].")

    mitigation = np.vstack(
        [np.zeros((1, num_regions)), np.ones((num_periods - 1, num_regions))]
    )
    mitigation[1 : n_opt_periods + 1, :] = vector.reshape(
        (n_opt_periods, num_regions), order="F"
    )
    return mitigation


def _as_backstop_matrix(backstop_prices):
    backstop_prices = np.asarray(backstop_prices, dtype=np.float64)
    if backstop_prices.ndim != 2:
        raise ValueError(
            f"Backstop prices must be a (periods, regions) matrix, "
            f"got {backstop_prices.ndim} dimensions."
        )
    if np.any(~np.isfinite(backstop_prices)) or np.any(backstop_prices < 0):
        raise ValueError("Backstop prices must be finite and non-negative.")
    return backstop_prices
