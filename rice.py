# Copyright (c) 2022, salesforce.com, inc and MILA.
# All rights reserved.
# SPDX-License-Identifier: BSD-3-Clause
# For full license text, see the LICENSE file in the repo root
# or https://opensource.org/licenses/BSD-3-Clause


"""
Regional Integrated model of Climate and the Economy (RICE)

Deterministic decadal simulation driven by an exogenous path of regional
mitigation rates. Parameters are installed with `set_param`, the model is
executed with `run`, and outputs are read per component, e.g.
`rice["welfare", "UTILITY"]`.
"""
import logging

import numpy as np

from fixed_paths import REGION_YAMLS_DIR
from rice_helpers import (
    get_abatement_cost,
    get_aux_m,
    get_backstop_price,
    get_capital,
    get_capital_depreciation,
    get_carbon_intensity,
    get_carbon_price,
    get_consumption,
    get_damages,
    get_exogenous_emissions,
    get_forcing,
    get_global_carbon_mass,
    get_global_temperature,
    get_gross_output,
    get_investment,
    get_labor,
    get_land_emissions,
    get_mitigation_cost,
    get_negishi_weights,
    get_production,
    get_production_factor,
    get_social_welfare,
    get_utility,
    set_rice_params,
)

# Discounting used whenever Negishi weights are applied.
NEGISHI_RHO = 0.015
NEGISHI_ETA = 1.5

_MIU_TOLERANCE = 1e-9

COMPONENTS = {
    "emissions": ("MIU", "CPRICE", "EIND", "E", "pbacktime", "sigma"),
    "grosseconomy": ("YGROSS", "K", "L", "AL"),
    "damages": ("DAMFRAC",),
    "neteconomy": ("ABATECOST", "Y", "I", "C", "CPC", "S"),
    "climatedynamics": ("FORC", "TATM", "TOCEAN"),
    "co2cycle": ("MAT", "MU", "ML"),
    "welfare": ("UTILITY", "PERIODU", "CEMUTOTPER", "negishi_weights"),
}
SETTABLE_PARAMS = (("emissions", "MIU"), ("neteconomy", "S"))


class ModelRunError(RuntimeError):
    """The simulation reached an infeasible or non-finite state."""


class Rice:
    name = "Rice"

    def __init__(
        self,
        rho=NEGISHI_RHO,  # pure rate of time preference (per year)
        eta=NEGISHI_ETA,  # elasticity of marginal utility of consumption
        use_negishi_weights=False,
        yamls_folder=None,
    ):
        self.float_dtype = np.float64
        self.set_all_region_params(yamls_folder or REGION_YAMLS_DIR)

        self.num_periods = int(self.common_params["xN"])
        self.delta = self.common_params["xDelta"]
        self.start_year = self.common_params["xt_0"]
        self.region_names = list(self.region_params["xname"])

        self.use_negishi_weights = use_negishi_weights
        if use_negishi_weights:
            # Negishi weighting is calibrated against fixed discounting,
            # the caller's rho and eta are not used.
            if (rho, eta) != (NEGISHI_RHO, NEGISHI_ETA):
                logging.info(
                    f"Negishi weights on: using rho={NEGISHI_RHO}, eta={NEGISHI_ETA} "
                    f"instead of rho={rho}, eta={eta}."
                )
            rho, eta = NEGISHI_RHO, NEGISHI_ETA
        self.rho = rho
        self.eta = eta

        self.global_state = {}
        self.has_run = False
        self.set_exogenous_paths()
        self.params = {
            "emissions": {
                "MIU": np.zeros((self.num_periods, self.num_regions), self.float_dtype)
            },
            "neteconomy": {
                "S": np.tile(
                    self.region_params["xsaving_0"], (self.num_periods, 1)
                ).astype(self.float_dtype)
            },
        }
        self.negishi_weights = self.calc_negishi_weights()

    def __getitem__(self, key):
        component, name = key
        return self.get(component, name)

    def years(self):
        return self.start_year + self.delta * np.arange(self.num_periods)

    def set_param(self, component, name, value):
        """Install a (num_periods, num_regions) policy matrix."""
        if (component, name) not in SETTABLE_PARAMS:
            raise KeyError(f"'{name}' is not a settable parameter of '{component}'.")
        value = np.array(value, dtype=self.float_dtype)
        expected_shape = (self.num_periods, self.num_regions)
        if value.shape != expected_shape:
            raise ValueError(
                f"{component}.{name} must have shape {expected_shape}, got {value.shape}."
            )
        self.params[component][name] = value

    def get(self, component, name):
        """Read a parameter, an exogenous path or a simulated output."""
        if name not in COMPONENTS.get(component, ()):
            raise KeyError(f"Unknown variable '{name}' in component '{component}'.")
        if name in self.params.get(component, {}):
            return self.params[component][name].copy()
        if name in self.exogenous:
            return self.exogenous[name].copy()
        if name == "negishi_weights":
            return self.negishi_weights.copy()
        if not self.has_run:
            raise RuntimeError(f"'{component}.{name}' is only available after run().")
        return self.get_state(name)

    def run(self):
        """Simulate every period under the currently installed parameters."""
        mitigation_rates = self.params["emissions"]["MIU"]
        savings = self.params["neteconomy"]["S"]
        self.is_valid_policy(mitigation_rates, savings)
        mitigation_rates = np.clip(mitigation_rates, 0.0, 1.0)
        self.has_run = False
        self.simulate(mitigation_rates, savings, self.negishi_weights)
        self.has_run = True

    def simulate(self, mitigation_rates, savings, welfare_weights):
        self.global_state = {}
        params = self.region_params
        for timestep in range(self.num_periods):
            if timestep == 0:
                capitals = params["xK_0"].astype(self.float_dtype)
                carbon_mass = np.array(
                    [
                        self.common_params["xM_AT_0"],
                        self.common_params["xM_UP_0"],
                        self.common_params["xM_LO_0"],
                    ],
                    dtype=self.float_dtype,
                )
                temperature = np.array(
                    [self.common_params["xT_AT_0"], self.common_params["xT_LO_0"]],
                    dtype=self.float_dtype,
                )
            else:
                capitals = self.calc_capitals(timestep)
                carbon_mass = self.calc_global_carbon_mass(timestep)
                temperature = self.calc_global_temperature(timestep, carbon_mass)
            self.set_state("K", capitals, timestep)
            self.set_state("MAT", carbon_mass[0], timestep)
            self.set_state("MU", carbon_mass[1], timestep)
            self.set_state("ML", carbon_mass[2], timestep)
            self.set_state("TATM", temperature[0], timestep)
            self.set_state("TOCEAN", temperature[1], timestep)
            self.set_state("FORC", self.calc_forcing(timestep, carbon_mass[0]), timestep)

            damages = self.calc_damages(temperature[0], timestep)
            productions = self.calc_productions(capitals, timestep)
            abatement_costs = self.calc_abatement_costs(
                mitigation_rates[timestep], timestep
            )
            gross_outputs = get_gross_output(damages, abatement_costs, productions)
            investments = get_investment(savings[timestep], gross_outputs)
            consumptions = self.calc_consumptions(gross_outputs, investments, timestep)
            self.set_state("Y", gross_outputs, timestep)
            self.set_state("I", investments, timestep)

            self.calc_emissions(mitigation_rates[timestep], productions, timestep)
            self.calc_social_welfares(consumptions, welfare_weights[timestep], timestep)

        utility = float(np.sum(self.get_state("CEMUTOTPER")))
        if not np.isfinite(utility):
            raise ModelRunError(f"Welfare is not finite: {utility}")
        self.global_state["UTILITY"] = np.array(utility)

    def calc_capitals(self, timestep):
        capital_depreciation = get_capital_depreciation(
            self.region_params["xdelta_K"], self.delta
        )
        return get_capital(
            capital_depreciation,
            self.get_state("K", timestep - 1),
            self.delta,
            self.get_state("I", timestep - 1),
        )

    def calc_global_carbon_mass(self, timestep):
        prev_carbon_mass = np.array(
            [
                self.get_state("MAT", timestep - 1),
                self.get_state("MU", timestep - 1),
                self.get_state("ML", timestep - 1),
            ]
        )
        return get_global_carbon_mass(
            np.array(self.common_params["xPhi_M"]),
            prev_carbon_mass,
            np.array(self.common_params["xB_M"]),
            np.sum(self.get_state("E", timestep - 1)),
        )

    def calc_global_temperature(self, timestep, carbon_mass):
        prev_temperature = np.array(
            [self.get_state("TATM", timestep - 1), self.get_state("TOCEAN", timestep - 1)]
        )
        return get_global_temperature(
            np.array(self.common_params["xPhi_T"]),
            prev_temperature,
            np.array(self.common_params["xB_T"]),
            self.common_params["xF_2x"],
            carbon_mass[0],
            self.common_params["xM_AT_1750"],
            self.exogenous["forcing_other"][timestep],
        )

    def calc_forcing(self, timestep, atmospheric_carbon_mass):
        return get_forcing(
            self.common_params["xF_2x"],
            atmospheric_carbon_mass,
            self.common_params["xM_AT_1750"],
            self.exogenous["forcing_other"][timestep],
        )

    def calc_damages(self, atmospheric_temperature, timestep):
        params = self.region_params
        damages = get_damages(
            atmospheric_temperature, params["xa_1"], params["xa_2"], params["xa_3"]
        )
        self.set_state("DAMFRAC", 1 - damages, timestep)
        return damages

    def calc_productions(self, capitals, timestep):
        productions = get_production(
            self.exogenous["AL"][timestep],
            capitals,
            self.exogenous["L"][timestep],
            self.region_params["xgamma"],
        )
        self.set_state("YGROSS", productions, timestep)
        return productions

    def calc_abatement_costs(self, mitigation_rates, timestep):
        abatement_costs = get_abatement_cost(
            mitigation_rates,
            self.exogenous["mitigation_cost"][timestep],
            self.region_params["xtheta_2"],
        )
        self.set_state("ABATECOST", abatement_costs, timestep)
        self.set_state(
            "CPRICE",
            get_carbon_price(
                self.exogenous["pbacktime"][timestep],
                mitigation_rates,
                self.region_params["xtheta_2"],
            ),
            timestep,
        )
        return abatement_costs

    def calc_consumptions(self, gross_outputs, investments, timestep):
        consumptions = get_consumption(gross_outputs, investments)
        if not np.all(consumptions > 0):
            regions = [
                self.region_names[region_id]
                for region_id in np.flatnonzero(~(consumptions > 0))
            ]
            raise ModelRunError(
                f"Consumption is not positive in period {timestep + 1} for {regions}."
            )
        self.set_state("C", consumptions, timestep)
        self.set_state(
            "CPC", 1000 * consumptions / self.exogenous["L"][timestep], timestep
        )
        return consumptions

    def calc_emissions(self, mitigation_rates, productions, timestep):
        land_emissions = get_land_emissions(
            self.common_params["xE_L0"],
            self.common_params["xdelta_EL"],
            timestep,
            self.num_regions,
        )
        emissions = get_aux_m(
            self.exogenous["sigma"][timestep],
            mitigation_rates,
            productions,
            land_emissions,
        )
        self.set_state("E", emissions, timestep)
        self.set_state("EIND", emissions - land_emissions, timestep)

    def calc_social_welfares(self, consumptions, weights, timestep):
        labors = self.exogenous["L"][timestep]
        period_utilities = get_utility(1000 * consumptions / labors, self.eta)
        self.set_state("PERIODU", period_utilities, timestep)
        self.set_state(
            "CEMUTOTPER",
            get_social_welfare(
                weights * labors / 1000 * period_utilities,
                self.rho,
                self.delta,
                timestep,
            ),
            timestep,
        )

    def calc_negishi_weights(self):
        """
        Weights from a reference run without mitigation; all ones when the
        model is utilitarian.
        """
        shape = (self.num_periods, self.num_regions)
        if not self.use_negishi_weights:
            return np.ones(shape, dtype=self.float_dtype)
        self.simulate(
            np.zeros(shape), self.params["neteconomy"]["S"], np.ones(shape)
        )
        weights = get_negishi_weights(self.get_state("CPC"), self.eta)
        self.global_state = {}
        return weights

    def is_valid_policy(self, mitigation_rates, savings):
        if np.any(~np.isfinite(mitigation_rates)):
            raise ValueError("Mitigation rates must be finite.")
        if np.any(mitigation_rates < -_MIU_TOLERANCE) or np.any(
            mitigation_rates > 1 + _MIU_TOLERANCE
        ):
            raise ValueError("Mitigation rates must lie in [0, 1].")
        if np.any(~((savings >= 0) & (savings < 1))):
            raise ValueError("Savings rates must lie in [0, 1).")

    def set_exogenous_paths(self):
        """Population, productivity, intensity and backstop prices for every period."""
        params = self.region_params
        shape = (self.num_periods, self.num_regions)
        labors = np.zeros(shape, dtype=self.float_dtype)
        production_factors = np.zeros(shape, dtype=self.float_dtype)
        intensities = np.zeros(shape, dtype=self.float_dtype)
        backstop_prices = np.zeros(shape, dtype=self.float_dtype)
        forcing_other = np.zeros(self.num_periods, dtype=self.float_dtype)

        labors[0] = params["xL_0"]
        production_factors[0] = params["xA_0"]
        intensities[0] = params["xsigma_0"]
        for timestep in range(1, self.num_periods):
            labors[timestep] = get_labor(
                labors[timestep - 1], params["xL_a"], params["xl_g"]
            )
            production_factors[timestep] = get_production_factor(
                production_factors[timestep - 1],
                params["xg_A"],
                params["xdelta_A"],
                self.delta,
                timestep,
            )
            intensities[timestep] = get_carbon_intensity(
                intensities[timestep - 1],
                params["xg_sigma"],
                params["xdelta_sigma"],
                self.delta,
                timestep,
            )
        for timestep in range(self.num_periods):
            backstop_prices[timestep] = get_backstop_price(
                params["xp_b"], params["xdelta_pb"], timestep
            )
            forcing_other[timestep] = get_exogenous_emissions(
                self.common_params["xf_0"],
                self.common_params["xf_1"],
                self.common_params["xt_f"],
                timestep,
            )

        self.exogenous = {
            "L": labors,
            "AL": production_factors,
            "sigma": intensities,
            "pbacktime": backstop_prices,
            "mitigation_cost": get_mitigation_cost(
                backstop_prices, params["xtheta_2"], intensities
            ),
            "forcing_other": forcing_other,
        }

    def set_all_region_params(self, yamls_folder):
        raw_params, num_regions = set_rice_params(yamls_folder)
        self.num_regions = num_regions
        self.common_params = raw_params["_DICE_CONSTANT"]
        self.region_params = {
            key: np.array(values) for key, values in raw_params["_RICE_CONSTANT"].items()
        }

    def set_state(self, key, value, timestep):
        """
        Set the value of `key` for one timestep. Storage for the full horizon
        is allocated the first time a key is written.
        """
        value = np.asarray(value, dtype=self.float_dtype)
        if key not in self.global_state:
            self.global_state[key] = np.zeros(
                (self.num_periods,) + value.shape, dtype=self.float_dtype
            )
        self.global_state[key][timestep] = value

    def get_state(self, key, timestep=None):
        assert key in self.global_state, f"Invalid key '{key}' in global state!"
        if timestep is None:
            return self.global_state[key].copy()
        return self.global_state[key][timestep].copy()


def create_rice(rho, eta, use_negishi_weights, yamls_folder=None):
    """
    Get an instance of RICE for the given welfare settings.

    Note: with Negishi weights the model always discounts with rho=0.015 and
    eta=1.5, whatever `rho` and `eta` are passed.
    """
    return Rice(
        rho=rho,
        eta=eta,
        use_negishi_weights=use_negishi_weights,
        yamls_folder=yamls_folder,
    )


def get_backstop_prices(model):
    """Regional backstop prices (USD per tC), shape (num_periods, num_regions)."""
    return model["emissions", "pbacktime"]
