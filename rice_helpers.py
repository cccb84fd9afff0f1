# Copyright (c) 2022, salesforce.com, inc and MILA.
# All rights reserved.
# SPDX-License-Identifier: BSD-3-Clause
# For full license text, see the LICENSE file in the repo root
# or https://opensource.org/licenses/BSD-3-Clause


"""
Helper functions for the rice simulation.

All dynamics helpers accept scalars or numpy arrays holding one value per
region, so a whole period can be advanced in a single call.
"""
import os

import numpy as np
import yaml


# Load calibration data from yaml files
def read_yaml_data(yaml_file):
    """Helper function to read yaml configuration data."""
    with open(yaml_file, "r", encoding="utf-8") as file_ptr:
        data = yaml.safe_load(file_ptr)
    return data


def set_rice_params(yamls_folder=None):
    """
    Read `default.yml` and every region yaml in `yamls_folder`.

    Returns the parameter dictionary, in which each `_RICE_CONSTANT` entry
    has become a list with one value per region, and the number of regions.
    """
    assert yamls_folder is not None
    dice_params = read_yaml_data(os.path.join(yamls_folder, "default.yml"))
    yaml_files = [
        file
        for file in sorted(os.listdir(yamls_folder))
        if file.endswith(".yml") and file != "default.yml"
    ]
    if not yaml_files:
        raise ValueError(f"No region yamls found in {yamls_folder}")

    rice_params = [
        read_yaml_data(os.path.join(yamls_folder, file)) for file in yaml_files
    ]

    # Overwrite rice params
    num_regions = len(rice_params)
    for k in dice_params["_RICE_CONSTANT"].keys():
        dice_params["_RICE_CONSTANT"][k] = [
            dice_params["_RICE_CONSTANT"][k]
        ] * num_regions
    for idx, param in enumerate(rice_params):
        for k in param["_RICE_CONSTANT"].keys():
            if k not in dice_params["_RICE_CONSTANT"]:
                raise KeyError(f"Unknown regional parameter '{k}' in {yaml_files[idx]}")
            dice_params["_RICE_CONSTANT"][k][idx] = param["_RICE_CONSTANT"][k]

    return dice_params, num_regions


# RICE dynamics
def get_backstop_price(p_b, delta_pb, timestep):
    """Price of the backstop technology, at which abatement reaches 100%."""
    return p_b * pow(1 - delta_pb, timestep)


def get_mitigation_cost(backstop_price, theta_2, intensity):
    """Obtain the cost for mitigation, as a fraction of output at full abatement."""
    return backstop_price / (1000 * theta_2) * intensity


def get_carbon_price(backstop_price, mitigation_rate, theta_2):
    """Carbon price implied by a mitigation rate (marginal abatement cost)."""
    return backstop_price * pow(mitigation_rate, theta_2 - 1)


def get_exogenous_emissions(f_0, f_1, t_f, timestep):
    """Obtain the forcing of greenhouse gases other than CO2."""
    return f_0 + min(f_1 - f_0, (f_1 - f_0) / t_f * timestep)


def get_land_emissions(e_l0, delta_el, timestep, num_regions):
    """Obtain the amount of land emissions."""
    return e_l0 * pow(1 - delta_el, timestep) / num_regions


def get_production(production_factor, capital, labor, gamma):
    """Obtain the amount of goods produced."""
    return production_factor * pow(capital, gamma) * pow(labor / 1000, 1 - gamma)


def get_damages(t_at, a_1, a_2, a_3):
    """Obtain damages."""
    return 1 / (1 + a_1 * t_at + a_2 * pow(t_at, a_3))


def get_abatement_cost(mitigation_rate, mitigation_cost, theta_2):
    """Compute the abatement cost."""
    return mitigation_cost * pow(mitigation_rate, theta_2)


def get_gross_output(damages, abatement_cost, production):
    """Compute the gross production output, taking into account
    damages and abatement cost."""
    return damages * (1 - abatement_cost) * production


def get_investment(savings, gross_output):
    """Obtain the investment cost."""
    return savings * gross_output


def get_consumption(gross_output, investment):
    """Obtain the consumption."""
    return gross_output - investment


def get_capital_depreciation(x_delta_k, x_delta):
    """Compute the capital depreciation over one period."""
    return pow(1 - x_delta_k, x_delta)


def get_global_temperature(
    phi_t, temperature, b_t, f_2x, m_at, m_at_1750, exogenous_emissions
):
    """Get the temperature levels."""
    return np.dot(phi_t, temperature) + np.dot(
        b_t, get_forcing(f_2x, m_at, m_at_1750, exogenous_emissions)
    )


def get_forcing(f_2x, m_at, m_at_1750, exogenous_emissions):
    """Radiative forcing from atmospheric carbon and other gases."""
    return f_2x * np.log(m_at / m_at_1750) / np.log(2) + exogenous_emissions


def get_aux_m(intensity, mitigation_rate, production, land_emissions):
    """Auxiliary variable to denote carbon mass levels."""
    return intensity * (1 - mitigation_rate) * production + land_emissions


def get_global_carbon_mass(phi_m, carbon_mass, b_m, aux_m):
    """Get the carbon mass level."""
    return np.dot(phi_m, carbon_mass) + np.dot(b_m, aux_m)


def get_capital(capital_depreciation, capital, delta, investment):
    """Evaluate capital."""
    return capital_depreciation * capital + delta * investment


def get_labor(labor, l_a, l_g):
    """Compute total labor."""
    return labor * pow((1 + l_a) / (1 + labor), l_g)


def get_production_factor(production_factor, g_a, delta_a, delta, timestep):
    """Compute the production factor."""
    return production_factor * (
        np.exp(0.0033) + g_a * np.exp(-delta_a * delta * (timestep - 1))
    )


def get_carbon_intensity(intensity, g_sigma, delta_sigma, delta, timestep):
    """Determine the carbon emission intensity."""
    return intensity * np.exp(
        -g_sigma * pow(1 - delta_sigma, delta * (timestep - 1)) * delta
    )


def get_utility(consumption_per_capita, eta):
    """Isoelastic utility of per capita consumption (thousands of USD)."""
    if eta == 1:
        return np.log(consumption_per_capita)
    return (pow(consumption_per_capita, 1 - eta) - 1) / (1 - eta)


def get_social_welfare(utility, rho, delta, timestep):
    """Compute social welfare"""
    return utility / pow(1 + rho, delta * timestep)


def get_negishi_weights(consumption_per_capita, eta):
    """
    Negishi weights are the inverse of the marginal utility of consumption,
    normalized so that the weights of all regions sum to one in each period.
    """
    weights = pow(consumption_per_capita, eta)
    return weights / np.sum(weights, axis=-1, keepdims=True)
