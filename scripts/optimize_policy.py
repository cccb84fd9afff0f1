# Copyright (c) 2022, salesforce.com, inc and MILA.
# All rights reserved.
# SPDX-License-Identifier: BSD-3-Clause
# For full license text, see the LICENSE file in the repo root
# or https://opensource.org/licenses/BSD-3-Clause


"""
Find the welfare-maximizing climate policy in RICE for the settings of a
yaml file in the scripts folder.
"""
import argparse
import logging
import os
import sys

import numpy as np
import yaml

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from fixed_paths import PUBLIC_REPO_DIR
from optimize_rice import optimize_rice
from rice import create_rice
from rice import get_backstop_prices
from rice_objective import Regime

_REQUIRED_KEYS = ("regime", "algorithm", "n_opt_periods", "stop_time", "tolerance", "welfare")


def get_config_yaml(yaml_path):
    config_path = yaml_path
    if not os.path.isabs(config_path):
        config_path = os.path.join(PUBLIC_REPO_DIR, "scripts", yaml_path)
    if not os.path.exists(config_path):
        raise ValueError(
            f"The run configuration {config_path} is missing. Please make sure the "
            f"correct path is specified."
        )

    with open(config_path, "r", encoding="utf8") as fp:
        run_config = yaml.safe_load(fp)

    missing = [key for key in _REQUIRED_KEYS if key not in run_config]
    if missing:
        raise ValueError(f"The run configuration lacks {missing}.")
    return run_config


def run_from_config(run_config):
    welfare_config = run_config["welfare"]
    rho = welfare_config.get("rho", 0.008)
    eta = welfare_config.get("eta", 1.5)
    use_negishi_weights = welfare_config.get("use_negishi_weights", False)

    # Backstop prices do not depend on the welfare settings.
    backstop_prices = get_backstop_prices(create_rice(rho, eta, False))

    return optimize_rice(
        run_config["algorithm"],
        run_config["n_opt_periods"],
        run_config["stop_time"],
        run_config["tolerance"],
        backstop_prices,
        regime=Regime(run_config["regime"]),
        rho=rho,
        eta=eta,
        use_negishi_weights=use_negishi_weights,
        max_evaluations=run_config.get("max_evaluations", 0),
    )


def log_summary(result, report_periods):
    model = result.optimal_model
    years = model.years()[:report_periods]
    logging.info(
        f"{result.regime.value}: {result.convergence_result.name}, "
        f"welfare {result.maximum_objective_value:.6f}, "
        f"{result.num_evaluations} evaluations."
    )
    temperature = model["climatedynamics", "TATM"]
    for period, year in enumerate(years):
        logging.info(
            f"{year}: tax {np.round(result.optimal_tax[period], 2)}, "
            f"mean mitigation {result.optimal_mitigation[period].mean():.3f}, "
            f"temperature {temperature[period]:.2f}"
        )


if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument("--yaml", "-y", type=str, default="optimize_policy.yaml")
    parser.add_argument(
        "--regime",
        "-r",
        type=str,
        default=None,
        choices=[regime.value for regime in Regime],
        help="overrides the regime of the yaml file",
    )
    parser.add_argument("--log-level", "-l", type=str, default="INFO")
    args = parser.parse_args()

    # Set logger level e.g., DEBUG, INFO, WARNING, ERROR.
    logging.basicConfig(format="%(asctime)s %(levelname)s %(message)s")
    logging.getLogger().setLevel(args.log_level.upper())

    config_yaml = get_config_yaml(args.yaml)
    if args.regime is not None:
        config_yaml["regime"] = args.regime
    result = run_from_config(config_yaml)
    log_summary(result, config_yaml.get("report_periods", 10))
